"""Prompt templates for generation, review, regeneration and fact-checking.

Templates are plain format strings; the builder functions fill in topic,
difficulty context, language instruction, accumulated feedback and the JSON
payloads each step needs.
"""

import json
import logging
from typing import Any, Dict, List, Optional, Sequence, Tuple

logger = logging.getLogger(__name__)

DIFFICULTY_CONTEXT: Dict[str, str] = {
    "easy": (
        "EASY: everyday topics, simple vocabulary, mainstream culture. "
        "The answer should feel obvious once revealed. No technical terms, "
        "precise dates or niche references."
    ),
    "normal": (
        "NORMAL: mostly accessible general knowledge with some lesser-known "
        "but findable facts. Players should hesitate between two options."
    ),
    "hard": (
        "HARD: in-depth knowledge, technical terms, precise historical "
        "references and obscure but verifiable facts."
    ),
    "wtf": (
        "WTF: absurd but TRUE facts, counter-intuitive answers, connections "
        "nobody would expect. Every option should seem fake."
    ),
}

LANGUAGE_INSTRUCTIONS: Dict[str, str] = {
    "fr": "Write every player-facing string in French.",
    "en": "Write every player-facing string in English.",
    "de": "Write every player-facing string in German.",
    "es": "Write every player-facing string in Spanish.",
    "pt": "Write every player-facing string in Portuguese.",
}

JSON_ONLY = "Respond with valid JSON only, no markdown and no commentary."

SEARCH_VERIFICATION = "Use web search to confirm every answer before giving your verdict."

NO_SEARCH_VERIFICATION = (
    "You have no web access. Rely only on well-established knowledge and give a "
    "confidence below 85 to any answer you cannot confirm with certainty."
)


def get_difficulty_context(difficulty: str) -> str:
    return DIFFICULTY_CONTEXT.get(difficulty, DIFFICULTY_CONTEXT["normal"])


def get_language_instruction(language: str) -> str:
    return LANGUAGE_INSTRUCTIONS.get(language, LANGUAGE_INSTRUCTIONS["fr"])


def to_json(data: Any) -> str:
    return json.dumps(data, ensure_ascii=False, indent=2)


# --- Generation ---

PHASE1_GENERATION_PROMPT = """You write questions for a party trivia game.

Topic: {topic}
Difficulty: {difficulty_context}

Write exactly {count} multiple choice questions with humorous, offbeat phrasing.
Rules:
- Every answer must be a verifiable fact with exactly one correct option.
- Exactly 4 options per question, all mutually exclusive. No option may be a
  synonym, alias or alternate name of the correct answer.
- Vary the sub-themes; no two questions about the same fact.
- Add a short, surprising anecdote about the answer.

Output format: a JSON array of
{{"text": "...", "options": ["...", "...", "...", "..."], "correctIndex": 0, "anecdote": "..."}}
"""

PHASE2_GENERATION_PROMPT = """You design a homophone sorting round for a party trivia game.

Topic: {topic}
Difficulty: {difficulty_context}

Pick two options A and B that sound exactly alike (a pun or homophone pair)
but mean different concrete things. Then write exactly {count} short items
that players must sort into A, B or Both.
Distribution: {distribution}.
Rules:
- Option B must name something concrete with obvious examples.
- Prefer counter-intuitive traps over items whose category is obvious.
- "Both" items must genuinely fit both meanings.
- Justify every answer in one sentence.

Output format:
{{"optionA": "...", "optionB": "...", "optionADescription": "...", "optionBDescription": "...",
  "humorousDescription": "...", "reasoning": "...",
  "items": [{{"text": "...", "answer": "A|B|Both", "justification": "...", "acceptedAnswers": ["A"]}}]}}
"""

PHASE3_GENERATION_PROMPT = """You design the menu round of a party trivia game.

Topic: {topic}
Difficulty: {difficulty_context}

Create exactly {groups} themed menus with exactly {items_per_group} questions each
({count} questions in total). Exactly ONE menu is a trap menu (isTrap: true)
whose appealing title hides unexpectedly hard questions.
Rules:
- Titles must be creative and fun; descriptions one short teasing sentence.
- Menus must cover clearly different themes.
- Answers are short (one to three words) and verifiable.

Output format:
{{"menus": [{{"title": "...", "description": "...", "isTrap": false,
  "questions": [{{"question": "...", "answer": "..."}}]}}]}}
"""

PHASE4_GENERATION_PROMPT = """You write buzzer questions for a party trivia game.

Topic: {topic}
Difficulty: {difficulty_context}

Write exactly {count} multiple choice questions, balanced between easy,
medium and hard.
Rules:
- Exactly 4 options; the wrong options must be plausible enough to make
  players hesitate, but definitively wrong.
- No option may be a synonym or alternate name of the correct answer.
- One verifiable correct answer per question.
- Add a one-sentence anecdote.

Output format: a JSON array of
{{"text": "...", "options": ["...", "...", "...", "..."], "correctIndex": 0, "anecdote": "..."}}
"""

PHASE5_GENERATION_PROMPT = """You write the memory sequence round of a party trivia game.

Topic: {topic}
Difficulty: {difficulty_context}

Write exactly {count} short, funny question/answer pairs that players hear in
a row and must answer from memory in order.
Rules:
- Each question covers a different concept.
- Answers are one or two words and verifiable.
- Questions are short and memorable.

Output format: a JSON array of {{"question": "...", "answer": "..."}}
"""

GENERATION_PROMPTS: Dict[str, str] = {
    "phase1": PHASE1_GENERATION_PROMPT,
    "phase2": PHASE2_GENERATION_PROMPT,
    "phase3": PHASE3_GENERATION_PROMPT,
    "phase4": PHASE4_GENERATION_PROMPT,
    "phase5": PHASE5_GENERATION_PROMPT,
}


def _feedback_section(feedback: str) -> str:
    if not feedback:
        return ""
    return (
        "\nYOUR PREVIOUS ATTEMPT WAS REJECTED. Fix these problems:\n"
        f"{feedback}\n"
    )


def _existing_section(existing_items: Optional[Sequence[Any]]) -> str:
    if not existing_items:
        return ""
    return (
        "\nThese items already exist. Do NOT repeat or paraphrase any of them:\n"
        f"{to_json(list(existing_items))}\n"
    )


def build_generation_prompt(
    phase: str,
    topic: str,
    difficulty: str,
    language: str,
    count: int,
    feedback: str = "",
    existing_items: Optional[Sequence[Any]] = None,
    distribution: Optional[Dict[str, int]] = None,
    groups: int = 4,
    items_per_group: int = 5,
) -> str:
    """Build the generator prompt for one phase."""
    template = GENERATION_PROMPTS[phase]
    distribution_text = ", ".join(
        f"{n} x {cat}" for cat, n in (distribution or {}).items()
    )
    body = template.format(
        topic=topic,
        difficulty_context=get_difficulty_context(difficulty),
        count=count,
        distribution=distribution_text or "balanced",
        groups=groups,
        items_per_group=items_per_group,
    )
    return (
        f"{body}{_feedback_section(feedback)}{_existing_section(existing_items)}\n"
        f"{get_language_instruction(language)}\n{JSON_ONLY}"
    )


# --- Review ---

REVIEW_FEEDBACK_FORMATS: Dict[str, str] = {
    "phase1": """"questions_feedback": [{"index": 0, "ok": true, "issue": "...",
    "issue_type": "factual_error|not_funny|too_long|ambiguous|duplicate_options|null"}]""",
    "phase2": """"items_feedback": [{"index": 0, "ok": true, "issue": "...",
    "should_be_both": false, "is_trap": false, "is_too_obvious": false}]""",
    "phase3": """"menus_feedback": [{"menu_index": 0, "title_ok": true, "title_issue": "...",
    "questions_feedback": [{"index": 0, "ok": true, "issues": ["factual_error|ambiguous|answer_too_long|off_theme"], "correction": "..."}]}]""",
    "phase4": """"questions_feedback": [{"index": 0, "ok": true, "difficulty": "easy|medium|hard",
    "issues": ["factual_error|implausible_options|ambiguous|synonym_options"], "correction": "..."}]""",
    "phase5": """"duplicate_concepts": ["..."],
  "questions_feedback": [{"index": 0, "ok": true, "funny": true,
    "issues": ["factual_error|not_funny|too_long|duplicate_concept"], "correction": "..."}]""",
}

REVIEW_PROMPT = """You are a strict quality reviewer for a party trivia game.

Topic: {topic}
Difficulty: {difficulty_context}

Score the content below from 0 to 10 on each criterion: {criteria}.
Check every answer for factual accuracy. Flag every problematic item with
ok=false and a short issue description.

CONTENT:
{content}

Output format:
{{"approved": false, "scores": {{{score_keys}}}, "overall_score": 0,
  {feedback_format},
  "global_feedback": "...", "suggestions": ["..."]}}
"""


def build_review_prompt(
    phase: str,
    content: Any,
    topic: str,
    difficulty: str,
    language: str,
    criteria: Sequence[str],
) -> str:
    """Build the reviewer prompt for one batch."""
    score_keys = ", ".join(f'"{c}": 0' for c in criteria)
    body = REVIEW_PROMPT.format(
        topic=topic,
        difficulty_context=get_difficulty_context(difficulty),
        criteria=", ".join(criteria),
        content=to_json(content),
        score_keys=score_keys,
        feedback_format=REVIEW_FEEDBACK_FORMATS[phase],
    )
    return (
        f"{body}\nWrite feedback text in the content language. "
        f"{get_language_instruction(language)}\n{JSON_ONLY}"
    )


# --- Targeted regeneration ---

REPLACEMENT_PROMPT = """You are fixing a rejected subset of a party trivia round.

Topic: {topic}
Difficulty: {difficulty_context}

These items were KEPT; do not repeat or paraphrase them:
{kept}

These items were REJECTED, with the reason:
{rejected}

Write exactly {count} NEW replacement items that avoid the rejection reasons.
{extra}
Output format: a JSON array of items in exactly this shape:
{item_format}
"""

ITEM_FORMATS: Dict[str, str] = {
    "phase1": '{"text": "...", "options": ["...", "...", "...", "..."], "correctIndex": 0, "anecdote": "..."}',
    "phase2": '{"text": "...", "answer": "A|B|Both", "justification": "..."}',
    "phase4": '{"text": "...", "options": ["...", "...", "...", "..."], "correctIndex": 0, "anecdote": "..."}',
    "phase5": '{"question": "...", "answer": "..."}',
}


def build_replacement_prompt(
    phase: str,
    topic: str,
    difficulty: str,
    language: str,
    kept: List[Any],
    rejected: List[Tuple[Any, str]],
    count: int,
    extra: str = "",
) -> str:
    """Build a prompt requesting only replacement items."""
    rejected_text = "\n".join(
        f"- {to_json(item)}\n  Reason: {reason}" for item, reason in rejected
    ) or "(none)"
    body = REPLACEMENT_PROMPT.format(
        topic=topic,
        difficulty_context=get_difficulty_context(difficulty),
        kept=to_json(kept),
        rejected=rejected_text,
        count=count,
        extra=extra,
        item_format=ITEM_FORMATS[phase],
    )
    return f"{body}\n{get_language_instruction(language)}\n{JSON_ONLY}"


def build_category_extra(
    option_a: str,
    option_b: str,
    needed: Dict[str, int],
) -> str:
    """Describe the pairing and the exact per-category counts still needed."""
    parts = [f"{n} x {cat}" for cat, n in needed.items() if n > 0]
    return (
        f'The pairing is A = "{option_a}" and B = "{option_b}".\n'
        f"You MUST produce exactly: {', '.join(parts) or 'nothing'}."
    )


MENU_REPLACEMENT_PROMPT = """You are fixing rejected questions in the menu round of a party trivia game.

Topic: {topic}
Difficulty: {difficulty_context}

Current menus:
{menus}

Replace ONLY these questions, keeping each one on its menu's theme:
{failures}

Output format:
{{"replacements": [{{"menu_index": 0, "question_index": 0, "new_question": "...", "new_answer": "..."}}]}}
"""


def build_menu_replacement_prompt(
    topic: str,
    difficulty: str,
    language: str,
    menus: Any,
    failures: List[Dict[str, Any]],
) -> str:
    """Build the phase 3 replacement prompt."""
    failure_lines = "\n".join(
        f"- menu {f['menu_index']}, question {f['question_index']}: "
        f"\"{f['question']}\" ({f['reason']})"
        for f in failures
    )
    body = MENU_REPLACEMENT_PROMPT.format(
        topic=topic,
        difficulty_context=get_difficulty_context(difficulty),
        menus=to_json(menus),
        failures=failure_lines,
    )
    return f"{body}\n{get_language_instruction(language)}\n{JSON_ONLY}"


# --- Fact-checking ---

FACT_CHECK_RESULT_FORMAT = """{"results": [{"index": 0, "isCorrect": true, "confidence": 0,
  "reasoning": "...", "correction": null, "synonymIssue": null}]}"""

FACT_CHECK_MCQ_PROMPT = """You are an independent fact-checker. For each multiple choice
question below, verify that the option at correctIndex is the single correct
answer. Give a confidence from 0 to 100.
Also check every WRONG option: if any wrong option is a synonym, alias,
alternate name or equally valid answer, describe it in synonymIssue.

QUESTIONS:
{items}

Output format:
{result_format}
"""

FACT_CHECK_QA_PROMPT = """You are an independent fact-checker. For each question below,
verify that the proposed answer is correct and unambiguous. Give a
confidence from 0 to 100 and a correction when it is wrong.

QUESTIONS:
{items}

Output format:
{result_format}
"""

FACT_CHECK_CATEGORY_PROMPT = """You are an independent fact-checker for a homophone sorting round.
A = "{option_a}", B = "{option_b}". For each item, verify that the assigned
category (A, B or Both) is correct. Give a confidence from 0 to 100 and put
the right category in correction when it is wrong.

ITEMS:
{items}

Output format:
{result_format}
"""


def _verification_note(search: bool) -> str:
    return SEARCH_VERIFICATION if search else NO_SEARCH_VERIFICATION


def build_fact_check_mcq_prompt(items: List[Dict[str, Any]], search: bool = True) -> str:
    body = FACT_CHECK_MCQ_PROMPT.format(
        items=to_json(items), result_format=FACT_CHECK_RESULT_FORMAT
    )
    return f"{body}\n{_verification_note(search)}\n{JSON_ONLY}"


def build_fact_check_qa_prompt(items: List[Dict[str, Any]], search: bool = True) -> str:
    body = FACT_CHECK_QA_PROMPT.format(
        items=to_json(items), result_format=FACT_CHECK_RESULT_FORMAT
    )
    return f"{body}\n{_verification_note(search)}\n{JSON_ONLY}"


def build_fact_check_category_prompt(
    option_a: str,
    option_b: str,
    items: List[Dict[str, Any]],
    search: bool = True,
) -> str:
    body = FACT_CHECK_CATEGORY_PROMPT.format(
        option_a=option_a,
        option_b=option_b,
        items=to_json(items),
        result_format=FACT_CHECK_RESULT_FORMAT,
    )
    return f"{body}\n{_verification_note(search)}\n{JSON_ONLY}"


TOPIC_PROMPT = """You are choosing the theme of a party trivia round.
Difficulty: {difficulty_context}

The theme must be serious and classic: humor comes from the question wording,
never from the theme. Pick from history, geography, science, cinema, music,
sport, literature, art, inventions, nature, food or technology, and match the
specificity to the difficulty (popular themes when easy, niche ones when hard,
unusual facts when wtf).

Forbidden: vague themes such as "General knowledge" or "Quiz", and humorous
themes such as "Fails" or "Weird stuff".

{language_instruction}
Be creative and original. Reply with ONLY the theme, at most 6 words, no quotes."""

TOPIC_HOMOPHONE_PROMPT = """You are choosing the theme of a party trivia round.
The round is a homophone sorting game: choose ONE thematic domain rich in
vocabulary that allows homophones and puns in the target language.

{language_instruction}
Reply with ONLY the domain, 2 to 4 words, no quotes."""


def build_topic_prompt(phase: str, difficulty: str, language: str) -> str:
    if phase == "phase2":
        return TOPIC_HOMOPHONE_PROMPT.format(
            language_instruction=get_language_instruction(language)
        )
    return TOPIC_PROMPT.format(
        difficulty_context=get_difficulty_context(difficulty),
        language_instruction=get_language_instruction(language),
    )
