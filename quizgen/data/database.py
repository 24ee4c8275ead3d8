"""SQL-backed corpus store.

Accepted items and their embeddings are stored in a ``corpus_entries`` table
through SQLAlchemy. The engine is synchronous; calls are moved off the event
loop with ``asyncio.to_thread``.
"""

import asyncio
import logging
from datetime import datetime, timezone
from typing import List, Optional

from sqlalchemy import JSON, Column, DateTime, Integer, String, Text, create_engine, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import DeclarativeBase, Session, sessionmaker

from ..exceptions import CorpusStoreError
from .corpus_store import PAGINATION_BATCH_SIZE, CorpusPage, CorpusRecord, CorpusStore

logger = logging.getLogger(__name__)


class Base(DeclarativeBase):
    """Base class for SQLAlchemy models."""

    pass


class CorpusEntryModel(Base):
    """SQLAlchemy model for the corpus_entries table."""

    __tablename__ = "corpus_entries"

    id = Column(Integer, primary_key=True, autoincrement=True)
    text = Column(Text, nullable=False)
    phase = Column(String(20), nullable=False, index=True)
    embedding = Column(JSON, nullable=False)
    embedding_model = Column(String(100), nullable=True)
    embedding_dims = Column(Integer, nullable=False)
    created_at = Column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        nullable=False,
    )


class SQLCorpusStore(CorpusStore):
    """Corpus store backed by any SQLAlchemy-supported database."""

    def __init__(self, database_url: str, create_tables: bool = True):
        """Initialize the store.

        Args:
            database_url: SQLAlchemy connection URL
            create_tables: Create the corpus table if it does not exist

        Raises:
            Exception: If the database connection fails
        """
        self.database_url = database_url
        self.engine = create_engine(database_url)
        self.SessionLocal = sessionmaker(
            autocommit=False, autoflush=False, bind=self.engine
        )
        self._write_lock = asyncio.Lock()
        if create_tables:
            Base.metadata.create_all(self.engine)
        logger.info(f"SQLCorpusStore initialized ({self.engine.dialect.name})")

    def _fetch_page_sync(
        self,
        phase: Optional[str],
        cursor: Optional[int],
        limit: int,
    ) -> CorpusPage:
        session: Session = self.SessionLocal()
        try:
            stmt = select(CorpusEntryModel)
            if phase is not None:
                stmt = stmt.where(CorpusEntryModel.phase == phase)
            if cursor is not None:
                stmt = stmt.where(CorpusEntryModel.id < cursor)
            # Fetch one extra row to learn whether another page exists
            stmt = stmt.order_by(CorpusEntryModel.id.desc()).limit(limit + 1)
            rows = session.execute(stmt).scalars().all()

            records = [
                CorpusRecord(
                    text=row.text,
                    embedding=list(row.embedding or []),
                    phase=row.phase,
                    embedding_model=row.embedding_model,
                    embedding_dims=row.embedding_dims,
                    created_at=row.created_at,
                    record_id=row.id,
                )
                for row in rows[:limit]
            ]
            next_cursor = records[-1].record_id if len(rows) > limit else None
            return CorpusPage(records=records, next_cursor=next_cursor)
        finally:
            session.close()

    def _append_sync(self, records: List[CorpusRecord]) -> int:
        session: Session = self.SessionLocal()
        try:
            models = [
                CorpusEntryModel(
                    text=r.text,
                    phase=r.phase,
                    embedding=list(r.embedding),
                    embedding_model=r.embedding_model,
                    embedding_dims=r.embedding_dims,
                    created_at=r.created_at,
                )
                for r in records
            ]
            session.add_all(models)
            session.commit()
            for record, model in zip(records, models):
                record.record_id = model.id
            return len(models)
        except Exception as e:
            session.rollback()
            logger.error(f"Failed to append corpus records: {str(e)}")
            raise
        finally:
            session.close()

    async def fetch_page(
        self,
        phase: Optional[str],
        cursor: Optional[int] = None,
        limit: int = PAGINATION_BATCH_SIZE,
    ) -> CorpusPage:
        try:
            return await asyncio.to_thread(self._fetch_page_sync, phase, cursor, limit)
        except (SQLAlchemyError, OSError) as e:
            raise CorpusStoreError(f"Failed to read corpus page: {str(e)}") from e

    async def append(self, records: List[CorpusRecord]) -> int:
        if not records:
            return 0
        async with self._write_lock:
            try:
                written = await asyncio.to_thread(self._append_sync, records)
            except (SQLAlchemyError, OSError) as e:
                raise CorpusStoreError(f"Failed to append corpus records: {str(e)}") from e
        logger.info(f"Stored {written} corpus records")
        return written

    async def close(self) -> None:
        self.engine.dispose()
