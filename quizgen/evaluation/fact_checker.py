"""Independent fact verification of generated answers.

A separate low-temperature call re-checks every proposed answer. The
checker fails closed: when verification cannot be obtained after all
attempts, every item is reported as failed so unverified content never
reaches acceptance.

When the provider offers web search the check is grounded and runs on the
dedicated fact-check model; otherwise the reviewer model judges from its own
knowledge under a stricter confidence instruction.
"""

import asyncio
import logging
from typing import Dict, List, Optional, Sequence, Tuple

from pydantic import ValidationError

from ..config.config import Settings
from ..data.models import (
    Batch,
    CategorizationSet,
    FactCheckOutcome,
    FactCheckVerdict,
    MCQItem,
    Phase,
)
from ..exceptions import JsonExtractionError
from ..generation.json_extractor import parse_json_from_text, unwrap_list
from ..generation.prompts import (
    build_fact_check_category_prompt,
    build_fact_check_mcq_prompt,
    build_fact_check_qa_prompt,
)
from ..generation.text_client import TextGenClient
from ..providers.base import LLMProviderError

logger = logging.getLogger(__name__)

FACT_CHECK_CONFIDENCE_THRESHOLD = 85
UNAVAILABLE_REASON = "Fact-check unavailable after retries"


class FactChecker:
    """Verifies answers with one batched call per batch."""

    def __init__(self, client: TextGenClient, config: Settings):
        """Initialize the fact checker.

        Args:
            client: Text generation client
            config: Settings providing the model, threshold and attempts
        """
        self.client = client
        self.config = config
        self.threshold = config.fact_check_confidence_threshold
        self.max_attempts = config.fact_check_max_attempts

    @property
    def search_available(self) -> bool:
        return self.client.search_available

    async def check_batch(self, phase: Phase, batch: Batch) -> FactCheckOutcome:
        """Fact-check any batch, choosing the prompt by phase."""
        if phase in (Phase.PHASE1, Phase.PHASE4):
            return await self.check_mcq(batch.flat_items())
        if phase == Phase.PHASE2:
            return await self.check_categorization(batch)
        pairs = [(item.question, item.answer) for item in batch.flat_items()]
        return await self.check_simple(pairs)

    async def check_mcq(self, items: Sequence[MCQItem]) -> FactCheckOutcome:
        """Verify MCQ answers; wrong options that are synonyms reject the item."""
        payload = [
            {
                "index": i,
                "question": item.text,
                "proposedAnswer": item.correct_option,
                "allOptions": list(item.options),
                "correctIndex": item.correct_index,
            }
            for i, item in enumerate(items)
        ]
        prompt = build_fact_check_mcq_prompt(payload, search=self.search_available)
        return await self._run(prompt, len(items))

    async def check_simple(self, pairs: Sequence[Tuple[str, str]]) -> FactCheckOutcome:
        """Verify plain question/answer pairs."""
        payload = [
            {"index": i, "question": question, "proposedAnswer": answer}
            for i, (question, answer) in enumerate(pairs)
        ]
        prompt = build_fact_check_qa_prompt(payload, search=self.search_available)
        return await self._run(prompt, len(pairs))

    async def check_categorization(self, cset: CategorizationSet) -> FactCheckOutcome:
        """Verify the category assigned to every item of a set."""
        payload = [
            {
                "index": i,
                "text": item.text,
                "assignedCategory": item.answer,
                "justification": item.justification,
            }
            for i, item in enumerate(cset.items)
        ]
        prompt = build_fact_check_category_prompt(
            cset.option_a, cset.option_b, payload, search=self.search_available
        )
        return await self._run(prompt, len(cset.items))

    async def _run(self, prompt: str, count: int) -> FactCheckOutcome:
        if count == 0:
            return FactCheckOutcome()

        search = self.search_available
        model = self.config.fact_check_model if search else self.config.reviewer_model

        for attempt in range(1, self.max_attempts + 1):
            try:
                raw = await self.client.generate(
                    prompt,
                    profile="fact_check",
                    model=model,
                    retry=False,
                    grounded=search,
                )
                results = unwrap_list(parse_json_from_text(raw), "results")
                outcome = self._aggregate(self._parse_verdicts(results), count)
                logger.info(
                    f"Fact-check: {len(outcome.passed)}/{count} passed "
                    f"(attempt {attempt})"
                )
                return outcome
            except (LLMProviderError, JsonExtractionError, asyncio.TimeoutError) as e:
                logger.warning(
                    f"Fact-check attempt {attempt}/{self.max_attempts} failed: {e}"
                )
                if attempt < self.max_attempts:
                    await asyncio.sleep(2**attempt)

        logger.error(f"Fact-check unavailable after {self.max_attempts} attempts; failing all {count} items")
        return FactCheckOutcome(
            failed=list(range(count)),
            reasons={i: UNAVAILABLE_REASON for i in range(count)},
            unavailable=True,
        )

    def _parse_verdicts(self, results: List) -> List[FactCheckVerdict]:
        verdicts = []
        for raw in results:
            try:
                verdicts.append(FactCheckVerdict.model_validate(raw))
            except ValidationError as e:
                logger.debug(f"Skipping malformed fact-check verdict: {e.errors()[0]['msg']}")
        return verdicts

    def _aggregate(self, verdicts: List[FactCheckVerdict], count: int) -> FactCheckOutcome:
        by_index: Dict[int, FactCheckVerdict] = {}
        for verdict in verdicts:
            if verdict.index < count:
                by_index.setdefault(verdict.index, verdict)

        passed, failed = [], []
        reasons: Dict[int, str] = {}
        for i in range(count):
            verdict = by_index.get(i)
            reason = self._failure_reason(verdict)
            if reason is None:
                passed.append(i)
            else:
                failed.append(i)
                reasons[i] = reason

        return FactCheckOutcome(
            verdicts=[by_index[i] for i in sorted(by_index)],
            passed=passed,
            failed=failed,
            reasons=reasons,
        )

    def _failure_reason(self, verdict: Optional[FactCheckVerdict]) -> Optional[str]:
        if verdict is None:
            return "No fact-check verdict returned"
        if verdict.synonym_issue:
            return f"Synonym issue: {verdict.synonym_issue}"
        if not verdict.is_correct:
            reason = f"Factual error: {verdict.reasoning or 'answer is incorrect'}"
            if verdict.correction:
                reason += f" (correction: {verdict.correction})"
            return reason
        if verdict.confidence < self.threshold:
            return f"Low confidence ({verdict.confidence:.0f}%): {verdict.reasoning}"
        return None
