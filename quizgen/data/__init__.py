"""Content models and the deduplication corpus."""

from .corpus_store import (
    PAGINATION_BATCH_SIZE,
    CorpusPage,
    CorpusRecord,
    CorpusStore,
    InMemoryCorpusStore,
)
from .database import SQLCorpusStore
from .embedding_index import (
    SIMILARITY_THRESHOLD,
    DedupResult,
    DuplicateMatch,
    EmbeddingCache,
    EmbeddingIndex,
    cosine_similarity,
)

__all__ = [
    "PAGINATION_BATCH_SIZE",
    "SIMILARITY_THRESHOLD",
    "CorpusPage",
    "CorpusRecord",
    "CorpusStore",
    "DedupResult",
    "DuplicateMatch",
    "EmbeddingCache",
    "EmbeddingIndex",
    "InMemoryCorpusStore",
    "SQLCorpusStore",
    "cosine_similarity",
]
