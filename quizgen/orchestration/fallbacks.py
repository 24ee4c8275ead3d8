"""Static fallback content used to pad short batches.

Fallback items are pre-vetted, so they bypass review and fact-checking.
They are neither embedded nor stored in the corpus. Phase 2 has no static
fallback because its items only make sense for the generated pairing.
"""

import logging
import random
from typing import Dict, List, Optional, Tuple

from ..data.models import (
    Batch,
    MCQBatch,
    MCQItem,
    MenuQuestion,
    MenuSet,
    Phase,
    SequenceBatch,
    SequenceItem,
)
from ..text_utils import normalize_text

logger = logging.getLogger(__name__)


def _mcq(text: str, options: List[str], correct_index: int, anecdote: str) -> MCQItem:
    return MCQItem(text=text, options=options, correct_index=correct_index, anecdote=anecdote)


FALLBACK_MCQ: Dict[str, List[MCQItem]] = {
    "fr": [
        _mcq(
            "Quel animal est le plus rapide en vitesse de pointe ?",
            ["Le guépard", "Le faucon pèlerin", "L'espadon voilier", "Le colibri"],
            1,
            "Le faucon pèlerin atteint 389 km/h en piqué, bien plus que le guépard.",
        ),
        _mcq(
            "Combien de temps dure un jour sur Vénus ?",
            ["24 heures", "243 jours terrestres", "30 minutes", "1 an terrestre"],
            1,
            "Vénus tourne si lentement qu'un jour y dure plus longtemps qu'une année vénusienne.",
        ),
        _mcq(
            "De quelle couleur est la boîte noire d'un avion ?",
            ["Noire", "Orange", "Rouge", "Jaune"],
            1,
            "Elle est orange fluo pour être repérable dans les débris.",
        ),
        _mcq(
            "Quel est le plus grand désert du monde ?",
            ["Le Sahara", "Le désert de Gobi", "L'Antarctique", "Le désert d'Arabie"],
            2,
            "L'Antarctique est un désert froid qui reçoit moins de précipitations que le Sahara.",
        ),
        _mcq(
            "Quel organe humain consomme le plus d'énergie ?",
            ["Le cœur", "Les muscles", "Le cerveau", "Le foie"],
            2,
            "Le cerveau représente 2 % du poids du corps mais consomme 20 % de l'énergie.",
        ),
        _mcq(
            "Combien de cœurs possède une pieuvre ?",
            ["Un", "Deux", "Trois", "Huit"],
            2,
            "Deux cœurs irriguent les branchies et le troisième le reste du corps.",
        ),
        _mcq(
            "Quel pays possède le plus de fuseaux horaires ?",
            ["La Russie", "Les États-Unis", "La France", "La Chine"],
            2,
            "Grâce à ses territoires d'outre-mer, la France couvre douze fuseaux horaires.",
        ),
        _mcq(
            "Quelle planète possède les journées les plus courtes ?",
            ["Mercure", "Jupiter", "Mars", "Neptune"],
            1,
            "Jupiter fait un tour sur elle-même en moins de dix heures.",
        ),
        _mcq(
            "De quelle couleur est le sang d'un homard ?",
            ["Rouge", "Vert", "Bleu", "Transparent"],
            2,
            "Son sang contient de l'hémocyanine, à base de cuivre, qui bleuit à l'air.",
        ),
        _mcq(
            "Quel fruit flotte sur l'eau ?",
            ["La pomme", "La mangue", "Le raisin", "La cerise"],
            0,
            "Une pomme contient environ 25 % d'air, ce qui la fait flotter.",
        ),
        _mcq(
            "Combien d'os compte le corps humain adulte ?",
            ["106", "206", "306", "156"],
            1,
            "Un nouveau-né en possède environ 300, dont certains fusionnent en grandissant.",
        ),
        _mcq(
            "Quel est le seul mammifère capable de voler ?",
            ["L'écureuil volant", "La chauve-souris", "Le colugo", "Le phalanger volant"],
            1,
            "Les écureuils volants ne font que planer, la chauve-souris bat des ailes.",
        ),
    ],
    "en": [
        _mcq(
            "Which animal reaches the highest top speed?",
            ["The cheetah", "The peregrine falcon", "The sailfish", "The hummingbird"],
            1,
            "A diving peregrine falcon reaches 389 km/h, far faster than a cheetah.",
        ),
        _mcq(
            "How long does one day last on Venus?",
            ["24 hours", "243 Earth days", "30 minutes", "1 Earth year"],
            1,
            "Venus spins so slowly that its day is longer than its year.",
        ),
        _mcq(
            "What colour is an airplane's black box?",
            ["Black", "Orange", "Red", "Yellow"],
            1,
            "It is bright orange so it can be spotted among the wreckage.",
        ),
        _mcq(
            "What is the largest desert in the world?",
            ["The Sahara", "The Gobi", "Antarctica", "The Arabian Desert"],
            2,
            "Antarctica is a cold desert that gets less precipitation than the Sahara.",
        ),
        _mcq(
            "Which human organ uses the most energy?",
            ["The heart", "The muscles", "The brain", "The liver"],
            2,
            "The brain is 2% of body weight but uses about 20% of its energy.",
        ),
        _mcq(
            "How many hearts does an octopus have?",
            ["One", "Two", "Three", "Eight"],
            2,
            "Two hearts serve the gills and the third pumps blood to the body.",
        ),
        _mcq(
            "Which country spans the most time zones?",
            ["Russia", "The United States", "France", "China"],
            2,
            "Thanks to its overseas territories, France covers twelve time zones.",
        ),
        _mcq(
            "Which planet has the shortest day?",
            ["Mercury", "Jupiter", "Mars", "Neptune"],
            1,
            "Jupiter completes a rotation in under ten hours.",
        ),
        _mcq(
            "What colour is a lobster's blood?",
            ["Red", "Green", "Blue", "Clear"],
            2,
            "It carries copper-based hemocyanin, which turns blue in air.",
        ),
        _mcq(
            "Which of these fruits floats in water?",
            ["The apple", "The mango", "The grape", "The cherry"],
            0,
            "An apple is about 25% air, which keeps it afloat.",
        ),
        _mcq(
            "How many bones does an adult human body have?",
            ["106", "206", "306", "156"],
            1,
            "Newborns have around 300 bones, some of which fuse as they grow.",
        ),
        _mcq(
            "What is the only mammal capable of true flight?",
            ["The flying squirrel", "The bat", "The colugo", "The sugar glider"],
            1,
            "Flying squirrels only glide; bats flap their wings.",
        ),
    ],
}


def _seq(question: str, answer: str) -> SequenceItem:
    return SequenceItem(question=question, answer=answer)


FALLBACK_SEQUENCE: Dict[str, List[SequenceItem]] = {
    "fr": [
        _seq("Combien de pattes a une araignée ?", "Huit"),
        _seq("Quelle est la capitale de l'Italie ?", "Rome"),
        _seq("Quel animal fait « meuh » ?", "La vache"),
        _seq("Combien de jours compte une année bissextile ?", "366"),
        _seq("Quelle couleur obtient-on en mélangeant bleu et jaune ?", "Vert"),
        _seq("Quel est le plus grand océan ?", "Le Pacifique"),
        _seq("Qui a peint la Joconde ?", "Léonard de Vinci"),
        _seq("Combien de côtés a un hexagone ?", "Six"),
        _seq("Quelle planète est surnommée la planète rouge ?", "Mars"),
        _seq("Dans quel pays se trouve la tour de Pise ?", "L'Italie"),
        _seq("Quel est l'aliment préféré du panda ?", "Le bambou"),
        _seq("Combien de minutes dure une heure ?", "Soixante"),
    ],
    "en": [
        _seq("How many legs does a spider have?", "Eight"),
        _seq("What is the capital of Italy?", "Rome"),
        _seq("Which animal says 'moo'?", "The cow"),
        _seq("How many days are in a leap year?", "366"),
        _seq("What colour do blue and yellow make?", "Green"),
        _seq("What is the largest ocean?", "The Pacific"),
        _seq("Who painted the Mona Lisa?", "Leonardo da Vinci"),
        _seq("How many sides does a hexagon have?", "Six"),
        _seq("Which planet is called the red planet?", "Mars"),
        _seq("In which country is the Leaning Tower of Pisa?", "Italy"),
        _seq("What is a panda's favourite food?", "Bamboo"),
        _seq("How many minutes are in an hour?", "Sixty"),
    ],
}

PLACEHOLDER_QUESTIONS = {
    "fr": "Question bonus {n} : quel est le thème de ce menu ?",
    "en": "Bonus question {n}: what is this menu's theme?",
    "de": "Bonusfrage {n}: Was ist das Thema dieses Menüs?",
    "es": "Pregunta extra {n}: ¿cuál es el tema de este menú?",
    "pt": "Pergunta bônus {n}: qual é o tema deste menu?",
}


def fallback_items(phase: Phase, language: str) -> List:
    """Static items for a phase in the requested language.

    Only French and English pools exist; other languages get the English pool.
    """
    if phase in (Phase.PHASE1, Phase.PHASE4):
        return list(FALLBACK_MCQ.get(language, FALLBACK_MCQ["en"]))
    if phase == Phase.PHASE5:
        return list(FALLBACK_SEQUENCE.get(language, FALLBACK_SEQUENCE["en"]))
    return []


def _menu_theme(title: str) -> str:
    if title.lower().startswith("menu "):
        return title[5:].strip() or title
    return title


def pad_menus(
    menu_set: MenuSet,
    items_per_group: int = 5,
    language: str = "fr",
    rng: Optional[random.Random] = None,
) -> Tuple[MenuSet, int]:
    """Bring every menu to ``items_per_group`` questions and fix the trap flag.

    Short menus get placeholder questions answered by the menu theme, long
    menus are trimmed. When the set does not hold exactly one trap menu, all
    flags are reset and one menu is picked at random.

    Returns:
        The repaired set and the number of placeholders added
    """
    rng = rng or random.Random()
    template = PLACEHOLDER_QUESTIONS.get(language, PLACEHOLDER_QUESTIONS["en"])
    added = 0
    menus = []
    for menu in menu_set.menus:
        questions = list(menu.questions[:items_per_group])
        while len(questions) < items_per_group:
            questions.append(
                MenuQuestion(
                    question=template.format(n=len(questions) + 1),
                    answer=_menu_theme(menu.title),
                )
            )
            added += 1
        menus.append(menu.model_copy(update={"questions": questions}))

    if menus and sum(1 for m in menus if m.is_trap) != 1:
        trap = rng.randrange(len(menus))
        logger.warning(f"Fixing trap flags: menu {trap + 1} is now the trap menu")
        menus = [m.model_copy(update={"is_trap": i == trap}) for i, m in enumerate(menus)]

    if added:
        logger.warning(f"Padded menus with {added} placeholder question(s)")
    return MenuSet(menus=menus), added


def pad_batch(
    phase: Phase,
    batch: Batch,
    target_count: int,
    language: str = "fr",
    items_per_group: int = 5,
    rng: Optional[random.Random] = None,
) -> Tuple[Batch, int]:
    """Pad ``batch`` up to ``target_count`` items and trim any excess.

    Fallbacks whose text already appears in the batch are skipped.

    Returns:
        The padded batch and the number of fallback items added
    """
    if phase == Phase.PHASE3:
        return pad_menus(batch, items_per_group, language, rng)

    batch = batch.truncated(target_count)
    missing = target_count - batch.item_count
    if missing <= 0 or phase == Phase.PHASE2:
        return batch, 0

    present = {normalize_text(t) for t in batch.item_texts()}
    candidates = [
        item
        for item in fallback_items(phase, language)
        if normalize_text(getattr(item, "text", None) or item.question) not in present
    ]
    extra = candidates[:missing]
    if phase == Phase.PHASE4:
        extra = [item.shuffled(rng) for item in extra]

    if len(extra) < missing:
        logger.warning(
            f"Only {len(extra)} fallback item(s) available for {phase.value}, "
            f"{missing} needed"
        )
    if extra:
        logger.warning(f"Padding {phase.value} with {len(extra)} fallback item(s)")

    if isinstance(batch, MCQBatch):
        return MCQBatch(items=batch.items + extra), len(extra)
    return SequenceBatch(items=batch.items + extra), len(extra)
