"""Persistent corpus of accepted items used for cross-run deduplication.

The corpus is read as a newest-first, cursor-paginated stream and is only
appended to after a phase's batch has been accepted. Appends from concurrent
phase runs are serialized with an ``asyncio.Lock``; reads work on a snapshot
per page and never block writers.
"""

import asyncio
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import AsyncIterator, List, Optional

logger = logging.getLogger(__name__)

PAGINATION_BATCH_SIZE = 100


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class CorpusRecord:
    """One previously accepted item with its embedding.

    Attributes:
        text: Item text as it was embedded
        embedding: Embedding vector
        phase: Phase the item was generated for
        embedding_model: Model that produced the vector, None for legacy rows
        embedding_dims: Vector dimensionality
        created_at: Insertion time
        record_id: Store-assigned monotonically increasing id
    """

    text: str
    embedding: List[float]
    phase: str
    embedding_model: Optional[str] = None
    embedding_dims: int = 0
    created_at: datetime = field(default_factory=_utcnow)
    record_id: Optional[int] = None

    def __post_init__(self) -> None:
        if not self.embedding_dims:
            self.embedding_dims = len(self.embedding)


@dataclass
class CorpusPage:
    """A page of records plus the cursor for the next (older) page."""

    records: List[CorpusRecord]
    next_cursor: Optional[int] = None

    @property
    def has_more(self) -> bool:
        return self.next_cursor is not None


class CorpusStore(ABC):
    """Append-only store of accepted items."""

    @abstractmethod
    async def fetch_page(
        self,
        phase: Optional[str],
        cursor: Optional[int] = None,
        limit: int = PAGINATION_BATCH_SIZE,
    ) -> CorpusPage:
        """Fetch one page of records, newest first.

        Args:
            phase: Restrict to this phase, or None for every phase
            cursor: Only records older than this cursor; None starts at the
                newest record
            limit: Maximum records per page

        Returns:
            The page, with ``next_cursor`` None on the last page
        """

    @abstractmethod
    async def append(self, records: List[CorpusRecord]) -> int:
        """Append records and return how many were written."""

    async def iter_pages(
        self,
        phase: Optional[str],
        page_size: int = PAGINATION_BATCH_SIZE,
    ) -> AsyncIterator[CorpusPage]:
        """Stream every page for ``phase``, newest first."""
        cursor: Optional[int] = None
        while True:
            page = await self.fetch_page(phase, cursor=cursor, limit=page_size)
            if not page.records:
                return
            yield page
            if not page.has_more:
                return
            cursor = page.next_cursor

    async def count(self, phase: Optional[str] = None) -> int:
        """Count records by streaming pages."""
        total = 0
        async for page in self.iter_pages(phase):
            total += len(page.records)
        return total

    async def close(self) -> None:
        """Release resources held by the store."""


class InMemoryCorpusStore(CorpusStore):
    """Process-local corpus, used by default and in tests."""

    def __init__(self, records: Optional[List[CorpusRecord]] = None):
        self._records: List[CorpusRecord] = []
        self._next_id = 1
        self._lock = asyncio.Lock()
        for record in records or []:
            self._assign_id(record)

    def _assign_id(self, record: CorpusRecord) -> None:
        record.record_id = self._next_id
        self._next_id += 1
        self._records.append(record)

    async def fetch_page(
        self,
        phase: Optional[str],
        cursor: Optional[int] = None,
        limit: int = PAGINATION_BATCH_SIZE,
    ) -> CorpusPage:
        snapshot = list(self._records)
        matching = [
            r
            for r in reversed(snapshot)
            if (phase is None or r.phase == phase)
            and (cursor is None or r.record_id < cursor)
        ]
        records = matching[:limit]
        next_cursor = None
        if len(matching) > limit:
            next_cursor = records[-1].record_id
        return CorpusPage(records=records, next_cursor=next_cursor)

    async def append(self, records: List[CorpusRecord]) -> int:
        async with self._lock:
            for record in records:
                self._assign_id(record)
        logger.debug(f"Appended {len(records)} records to in-memory corpus")
        return len(records)

    def __len__(self) -> int:
        return len(self._records)
