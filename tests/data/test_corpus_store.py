"""Tests for the in-memory corpus store and cursor pagination."""

import asyncio

import pytest

from quizgen.data.corpus_store import PAGINATION_BATCH_SIZE, CorpusRecord, InMemoryCorpusStore
from tests.fakes import unit_vector


def record(n, phase="phase1"):
    return CorpusRecord(text=f"Item {n}", embedding=unit_vector(n % 128), phase=phase)


class TestCorpusRecord:
    """Tests for CorpusRecord."""

    def test_dims_default_to_vector_length(self):
        assert record(1).embedding_dims == 128
        assert record(1).created_at.tzinfo is not None


class TestInMemoryCorpusStore:
    """Tests for InMemoryCorpusStore."""

    @pytest.mark.asyncio
    async def test_pages_newest_first(self):
        store = InMemoryCorpusStore([record(n) for n in range(5)])

        first = await store.fetch_page("phase1", limit=2)
        second = await store.fetch_page("phase1", cursor=first.next_cursor, limit=2)
        third = await store.fetch_page("phase1", cursor=second.next_cursor, limit=2)

        assert [r.text for r in first.records] == ["Item 4", "Item 3"]
        assert [r.text for r in second.records] == ["Item 2", "Item 1"]
        assert [r.text for r in third.records] == ["Item 0"]
        assert first.has_more and second.has_more
        assert not third.has_more

    @pytest.mark.asyncio
    async def test_exact_page_has_no_cursor(self):
        store = InMemoryCorpusStore([record(n) for n in range(2)])
        page = await store.fetch_page(None, limit=2)
        assert len(page.records) == 2
        assert page.next_cursor is None

    @pytest.mark.asyncio
    async def test_phase_filter(self):
        store = InMemoryCorpusStore(
            [record(0, "phase1"), record(1, "phase5"), record(2, "phase1")]
        )
        page = await store.fetch_page("phase1")
        assert [r.text for r in page.records] == ["Item 2", "Item 0"]
        assert await store.count("phase5") == 1
        assert await store.count() == 3

    @pytest.mark.asyncio
    async def test_iter_pages_streams_everything(self):
        store = InMemoryCorpusStore([record(n) for n in range(PAGINATION_BATCH_SIZE * 2 + 5)])
        sizes = [len(page.records) async for page in store.iter_pages("phase1")]
        assert sizes == [100, 100, 5]

    @pytest.mark.asyncio
    async def test_iter_pages_empty_store(self, corpus):
        assert [page async for page in corpus.iter_pages(None)] == []

    @pytest.mark.asyncio
    async def test_append_assigns_increasing_ids(self, corpus):
        await asyncio.gather(
            corpus.append([record(0), record(1)]),
            corpus.append([record(2)]),
        )
        assert len(corpus) == 3
        page = await corpus.fetch_page(None)
        ids = [r.record_id for r in page.records]
        assert ids == sorted(ids, reverse=True)
        assert len(set(ids)) == 3

    @pytest.mark.asyncio
    async def test_append_during_scan_does_not_disturb_cursor(self):
        store = InMemoryCorpusStore([record(n) for n in range(4)])
        first = await store.fetch_page(None, limit=2)
        await store.append([record(99)])
        second = await store.fetch_page(None, cursor=first.next_cursor, limit=2)
        assert [r.text for r in second.records] == ["Item 1", "Item 0"]
