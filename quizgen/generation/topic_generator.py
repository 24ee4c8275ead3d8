"""Creative topic selection for games started without a topic.

A short hot call on the reviewer model proposes a theme. Generic themes are
rejected and retried with a higher temperature; after the last attempt a
curated fallback theme is used, so topic selection never fails a run.
"""

import asyncio
import logging
import random
from typing import Dict, List, Optional, Sequence

from ..config.config import Settings
from ..data.models import DEFAULT_TOPIC
from ..providers.base import LLMProviderError
from .prompts import build_topic_prompt
from .text_client import TextGenClient

logger = logging.getLogger(__name__)

MAX_TOPIC_LENGTH = 60
TOPIC_ATTEMPTS = 3
BASE_TEMPERATURE = 1.2
TEMPERATURE_STEP = 0.1

BANNED_TOPICS: Sequence[str] = (
    "culture générale",
    "quiz général",
    "questions diverses",
    "tout et n'importe quoi",
    "le monde",
    "général",
    "divers",
    "connaissance",
    "savoir",
    "quiz",
    "questions",
    "general knowledge",
    "trivia",
    "miscellaneous",
)

FALLBACK_TOPICS: Dict[str, List[str]] = {
    "fr": [
        "Les ratés de l'histoire",
        "Les animaux qui font peur",
        "Les inventions bizarres",
        "Les dramas de célébrités",
        "Les sports qu'on ne comprend pas",
        "Les expressions mal utilisées",
        "Les records inutiles",
        "Les superstitions absurdes",
        "Les modes qui ont mal vieilli",
        "Les scandales culinaires",
        "Les chansons incompréhensibles",
        "Les prénoms improbables",
        "Les pires films de tous les temps",
        "Les légendes urbaines",
        "Les trucs qu'on fait en cachette",
    ],
    "en": [
        "History's biggest blunders",
        "Scary animals",
        "Bizarre inventions",
        "Celebrity feuds",
        "Sports nobody understands",
        "Misused expressions",
        "Useless world records",
        "Absurd superstitions",
        "Fashions that aged badly",
        "Food scandals",
        "Incomprehensible song lyrics",
        "Improbable first names",
        "The worst films ever made",
        "Urban legends",
    ],
}


def is_topic_banned(topic: str) -> bool:
    """Whether ``topic`` contains one of the generic themes."""
    lowered = topic.lower()
    return any(banned in lowered for banned in BANNED_TOPICS)


def needs_generated_topic(topic: Optional[str]) -> bool:
    return not topic or not topic.strip() or topic.strip() == DEFAULT_TOPIC


def clean_topic(raw: str) -> str:
    """Strip quotes and line breaks and cap the length."""
    topic = raw.strip().strip("\"'").replace("\n", " ").strip()
    return topic[:MAX_TOPIC_LENGTH].strip()


class TopicGenerator:
    """Proposes an original theme for a phase."""

    def __init__(
        self,
        client: TextGenClient,
        config: Settings,
        rng: Optional[random.Random] = None,
    ):
        self.client = client
        self.config = config
        self.rng = rng or random.Random()

    def fallback_topic(self, language: str) -> str:
        pool = FALLBACK_TOPICS.get(language, FALLBACK_TOPICS["en"])
        return self.rng.choice(pool)

    async def generate_topic(
        self,
        phase: str,
        difficulty: str = "normal",
        language: str = "fr",
    ) -> str:
        """Ask the model for a theme, falling back to a curated one.

        Args:
            phase: Phase identifier; phase2 asks for a homophone-rich domain
            difficulty: Difficulty level
            language: Output language code

        Returns:
            A non-generic topic of at most 60 characters
        """
        prompt = build_topic_prompt(phase, difficulty, language)

        for attempt in range(1, TOPIC_ATTEMPTS + 1):
            try:
                raw = await self.client.generate(
                    prompt,
                    profile="topic",
                    model=self.config.reviewer_model,
                    temperature=BASE_TEMPERATURE + attempt * TEMPERATURE_STEP,
                )
            except (LLMProviderError, asyncio.TimeoutError) as e:
                logger.warning(f"Topic attempt {attempt}/{TOPIC_ATTEMPTS} failed: {e}")
                continue

            topic = clean_topic(raw)
            if topic and not is_topic_banned(topic):
                logger.info(f"Generated topic (attempt {attempt}): '{topic}'")
                return topic
            logger.warning(
                f"Topic attempt {attempt}/{TOPIC_ATTEMPTS}: '{topic}' is empty or too generic"
            )

        topic = self.fallback_topic(language)
        logger.warning(f"Using fallback topic '{topic}'")
        return topic
