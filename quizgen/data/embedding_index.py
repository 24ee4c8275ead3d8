"""Semantic deduplication against the corpus and within a batch.

Texts are normalized and embedded once per batch; the same vectors feed the
internal check, the paginated corpus scan and persistence.
"""

import asyncio
import hashlib
import logging
from collections import OrderedDict
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence, Set

import numpy as np

from ..exceptions import CorpusStoreError
from ..infrastructure.error_classifier import ErrorClassifier
from ..infrastructure.retry import RetryConfig, with_retry
from ..providers.base import BaseEmbeddingProvider, LLMProviderError
from ..text_utils import normalize_text, truncate
from .corpus_store import PAGINATION_BATCH_SIZE, CorpusRecord, CorpusStore

logger = logging.getLogger(__name__)

SIMILARITY_THRESHOLD = 0.85
DEFAULT_CACHE_SIZE = 10000


def cosine_similarity(vector1: Sequence[float], vector2: Sequence[float]) -> float:
    """Calculate cosine similarity between two vectors.

    Args:
        vector1: First embedding vector
        vector2: Second embedding vector

    Returns:
        Cosine similarity clamped to 0.0-1.0; 0.0 for empty, zero or
        mismatched vectors
    """
    a = np.asarray(vector1, dtype=float)
    b = np.asarray(vector2, dtype=float)
    if a.size == 0 or a.shape != b.shape:
        return 0.0

    norm1 = np.linalg.norm(a)
    norm2 = np.linalg.norm(b)
    if norm1 == 0 or norm2 == 0:
        return 0.0

    similarity = np.dot(a, b) / (norm1 * norm2)
    return float(max(0.0, min(1.0, similarity)))


@dataclass
class DuplicateMatch:
    """A flagged item.

    Attributes:
        index: Index of the flagged item in the checked batch
        similar_to: Text it duplicates
        score: Cosine similarity
        source: "corpus" or "internal"
    """

    index: int
    similar_to: str
    score: float
    source: str = "corpus"


@dataclass
class DedupResult:
    """Duplicates found for a batch plus the vectors computed for it."""

    duplicates: List[DuplicateMatch] = field(default_factory=list)
    embeddings: List[List[float]] = field(default_factory=list)

    @property
    def duplicate_indices(self) -> Set[int]:
        return {d.index for d in self.duplicates}


class EmbeddingCache:
    """In-memory cache of embeddings keyed by model and normalized text.

    Kept items survive targeted regeneration, so re-checking a merged batch
    only pays for the replacement items. The least recently used entry is
    evicted once ``max_size`` entries are held.
    """

    def __init__(self, max_size: int = DEFAULT_CACHE_SIZE) -> None:
        if max_size < 1:
            raise ValueError(f"max_size must be at least 1, got {max_size}")
        self.max_size = max_size
        self._cache: "OrderedDict[str, List[float]]" = OrderedDict()
        self._hits = 0
        self._misses = 0

    @staticmethod
    def _compute_key(text: str, model: str) -> str:
        key_input = f"{model}:{normalize_text(text)}"
        return hashlib.sha256(key_input.encode("utf-8")).hexdigest()

    def get(self, text: str, model: str) -> Optional[List[float]]:
        key = self._compute_key(text, model)
        embedding = self._cache.get(key)
        if embedding is not None:
            self._cache.move_to_end(key)
            self._hits += 1
        else:
            self._misses += 1
        return embedding

    def set(self, text: str, model: str, embedding: List[float]) -> None:
        key = self._compute_key(text, model)
        self._cache[key] = embedding
        self._cache.move_to_end(key)
        while len(self._cache) > self.max_size:
            self._cache.popitem(last=False)

    def clear(self) -> None:
        count = len(self._cache)
        self._cache.clear()
        self._hits = 0
        self._misses = 0
        logger.info(f"Cleared {count} cached embeddings")

    @property
    def stats(self) -> Dict[str, int]:
        return {"size": len(self._cache), "hits": self._hits, "misses": self._misses}


class EmbeddingIndex:
    """Embeds batches and finds semantic duplicates."""

    def __init__(
        self,
        embedder: BaseEmbeddingProvider,
        store: CorpusStore,
        similarity_threshold: float = SIMILARITY_THRESHOLD,
        page_size: int = PAGINATION_BATCH_SIZE,
        cache: Optional[EmbeddingCache] = None,
        request_timeout: Optional[float] = None,
        retry_config: Optional[RetryConfig] = None,
        semaphore: Optional[asyncio.Semaphore] = None,
    ):
        """Initialize the index.

        Args:
            embedder: Embedding provider
            store: Corpus store to scan and append to
            similarity_threshold: Similarity at or above which two items are
                duplicates
            page_size: Corpus page size
            cache: Optional embedding cache
            request_timeout: Per-attempt timeout of an embedding call, in
                seconds; None waits indefinitely
            retry_config: Retry policy for transient embedding failures;
                None makes a single attempt
            semaphore: Concurrency limit shared with the text client

        Raises:
            ValueError: If similarity_threshold is not between 0 and 1
        """
        if not 0.0 <= similarity_threshold <= 1.0:
            raise ValueError(
                f"similarity_threshold must be between 0.0 and 1.0, got {similarity_threshold}"
            )
        self.embedder = embedder
        self.corpus = store
        self.similarity_threshold = similarity_threshold
        self.page_size = page_size
        self.cache = cache if cache is not None else EmbeddingCache()
        self.request_timeout = request_timeout
        self.retry_config = retry_config or RetryConfig(max_retries=0)
        self.semaphore = semaphore

    @property
    def embedding_model(self) -> str:
        return self.embedder.model

    async def _embed_remote(self, texts: List[str]) -> List[List[float]]:
        provider_name = self.embedder.get_provider_name()

        async def _attempt():
            if self.semaphore is None:
                return await asyncio.wait_for(
                    self.embedder.embed_async(texts), timeout=self.request_timeout
                )
            async with self.semaphore:
                return await asyncio.wait_for(
                    self.embedder.embed_async(texts), timeout=self.request_timeout
                )

        vectors = await with_retry(_attempt, provider_name, self.retry_config)
        if len(vectors) != len(texts):
            error = ValueError(
                f"Embedding response has {len(vectors)} vectors for {len(texts)} texts"
            )
            raise LLMProviderError(
                classified_error=ErrorClassifier.classify_error(error, provider_name),
                original_exception=error,
            )
        return vectors

    async def embed(self, texts: List[str]) -> List[List[float]]:
        """Embed normalized texts, one provider call for all cache misses.

        Raises:
            LLMProviderError: On a failed call once retries are exhausted, or
                when the provider returns a different number of vectors
            asyncio.TimeoutError: If the last attempt timed out
        """
        normalized = [normalize_text(t) for t in texts]
        vectors: List[Optional[List[float]]] = [
            self.cache.get(t, self.embedding_model) for t in normalized
        ]
        missing = [i for i, v in enumerate(vectors) if v is None]

        if missing:
            fresh = await self._embed_remote([normalized[i] for i in missing])
            for i, vector in zip(missing, fresh):
                vectors[i] = vector
                self.cache.set(normalized[i], self.embedding_model, vector)
            logger.debug(
                f"Embedded {len(missing)} texts ({len(texts) - len(missing)} cached)"
            )

        return [v or [] for v in vectors]

    def find_internal_duplicates(
        self,
        embeddings: List[List[float]],
        texts: List[str],
    ) -> List[DuplicateMatch]:
        """Flag the later item of every near-identical pair in the batch."""
        duplicates: List[DuplicateMatch] = []
        flagged: Set[int] = set()
        for i in range(len(embeddings)):
            if i in flagged:
                continue
            for j in range(i + 1, len(embeddings)):
                if j in flagged:
                    continue
                score = cosine_similarity(embeddings[i], embeddings[j])
                if score >= self.similarity_threshold:
                    duplicates.append(
                        DuplicateMatch(
                            index=j,
                            similar_to=texts[i],
                            score=score,
                            source="internal",
                        )
                    )
                    flagged.add(j)
        return duplicates

    def _is_compatible(self, record: CorpusRecord, dims: int) -> bool:
        if not record.embedding:
            return False
        if record.embedding_model and record.embedding_model != self.embedding_model:
            return False
        return len(record.embedding) == dims

    async def _pages(self, scope: Optional[str]):
        try:
            async for page in self.corpus.iter_pages(scope, page_size=self.page_size):
                yield page
        except OSError as e:
            raise CorpusStoreError(f"Failed to read corpus: {str(e)}") from e

    async def find_corpus_duplicates(
        self,
        embeddings: List[List[float]],
        phase: str,
        check_all_phases: bool = False,
    ) -> List[DuplicateMatch]:
        """Scan the corpus newest-first for items already issued."""
        duplicates: List[DuplicateMatch] = []
        found: Set[int] = set()
        pending = [i for i, v in enumerate(embeddings) if v]
        if not pending:
            return duplicates

        dims = len(embeddings[pending[0]])
        scope = None if check_all_phases else phase
        checked = 0

        async for page in self._pages(scope):
            candidates = [r for r in page.records if self._is_compatible(r, dims)]
            checked += len(candidates)

            for i in pending:
                if i in found:
                    continue
                for record in candidates:
                    score = cosine_similarity(embeddings[i], record.embedding)
                    if score >= self.similarity_threshold:
                        duplicates.append(
                            DuplicateMatch(index=i, similar_to=record.text, score=score)
                        )
                        found.add(i)
                        break

            if len(found) >= len(pending):
                logger.info(
                    f"All {len(pending)} items have corpus duplicates, stopping early"
                )
                break

        logger.info(
            f"Checked {len(pending)} items against {checked} corpus embeddings "
            f"({'all phases' if check_all_phases else phase})"
        )
        return duplicates

    async def find_duplicates(
        self,
        texts: List[str],
        phase: str,
        check_all_phases: bool = False,
    ) -> DedupResult:
        """Run the corpus check and the internal check on one batch.

        Args:
            texts: Item texts in batch order
            phase: Current phase identifier
            check_all_phases: Compare against every phase's corpus

        Returns:
            DedupResult with at most one match per flagged index and the
            embeddings, reusable for :meth:`store`
        """
        embeddings = await self.embed(texts)

        corpus = await self.find_corpus_duplicates(embeddings, phase, check_all_phases)
        corpus_indices = {d.index for d in corpus}
        internal = [
            d
            for d in self.find_internal_duplicates(embeddings, texts)
            if d.index not in corpus_indices
        ]

        duplicates = sorted(corpus + internal, key=lambda d: d.index)
        for dup in duplicates:
            logger.info(
                f"Duplicate ({dup.source}) at index {dup.index}, "
                f"score {dup.score:.3f}: '{truncate(texts[dup.index])}' ~ "
                f"'{truncate(dup.similar_to)}'"
            )
        return DedupResult(duplicates=duplicates, embeddings=embeddings)

    async def store(
        self,
        texts: List[str],
        embeddings: List[List[float]],
        phase: str,
    ) -> int:
        """Persist accepted items with their precomputed embeddings.

        Raises:
            CorpusStoreError: If the corpus cannot be written
        """
        records = [
            CorpusRecord(
                text=text,
                embedding=list(vector),
                phase=phase,
                embedding_model=self.embedding_model,
                embedding_dims=len(vector),
            )
            for text, vector in zip(texts, embeddings)
            if vector
        ]
        if not records:
            return 0
        try:
            written = await self.corpus.append(records)
        except OSError as e:
            raise CorpusStoreError(f"Failed to append corpus records: {str(e)}") from e
        logger.info(f"Stored {written} {phase} items in the corpus")
        return written
