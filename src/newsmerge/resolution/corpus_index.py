"""Corpus index: SQLite FTS5 over canonical items.

Only NEW items are ever inserted, so the index grows with distinct stories
rather than with reporting volume. Entries are write-once.

Locking discipline:
- Reads (``search``, ``contains``, ``count``) take no lock. SQLite in WAL
  mode serves concurrent readers.
- Every mutation (``insert``, ``rebuild``) happens while ``write_lock`` is
  held. The resolution writer acquires it around its whole transaction.

Ranking uses FTS5's ``bm25()`` with per-column weights. FTS5 negates BM25,
so lower scores mean more similar.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime
from uuid import UUID

from sqlalchemy import Column, MetaData, Table, Text, Uuid, func, insert, literal_column, select, text
from sqlalchemy.exc import DBAPIError
from sqlalchemy.ext.asyncio import AsyncConnection, AsyncSession

from newsmerge.config import settings
from newsmerge.models.content_item import ContentItem
from newsmerge.models.enums import Resolution
from newsmerge.resolution.errors import CorpusIndexError

logger = logging.getLogger(__name__)

CORPUS_TABLE = "corpus_fts"

# Kept out of Base.metadata: create_all cannot emit CREATE VIRTUAL TABLE.
_fts_metadata = MetaData()

corpus_fts = Table(
    CORPUS_TABLE,
    _fts_metadata,
    Column("headline", Text),
    Column("summary", Text),
    Column("body", Text),
    Column("item_id", Uuid),
)

# Column order matters: bm25() weights are positional (headline, summary, body).
CREATE_CORPUS_SQL = f"""
CREATE VIRTUAL TABLE IF NOT EXISTS {CORPUS_TABLE} USING fts5(
    headline,
    summary,
    body,
    item_id UNINDEXED,
    tokenize = 'porter unicode61 remove_diacritics 1'
)
"""


@dataclass(frozen=True)
class FieldWeights:
    """BM25 column weights."""

    headline: float = 10.0
    summary: float = 5.0
    body: float = 1.0

    @classmethod
    def from_settings(cls) -> FieldWeights:
        return cls(
            headline=settings.weight_headline,
            summary=settings.weight_summary,
            body=settings.weight_body,
        )


@dataclass
class IndexedCandidate:
    """A canonical item matched by a full-text query."""

    item_id: UUID
    slug: str
    headline: str
    ingested_at: datetime
    score: float
    """Weighted BM25 (lower = more similar)."""


async def ensure_corpus_table(conn: AsyncConnection) -> None:
    """Create the FTS5 table if it does not exist."""
    await conn.execute(text(CREATE_CORPUS_SQL))


class CorpusIndex:
    """Handle to the full-text corpus of canonical items.

    One instance should be shared by every scorer and writer that touches the
    same database so that they share ``write_lock``.

    Usage:
        index = CorpusIndex()
        async with index.write_lock:
            async with session_factory() as session, session.begin():
                await index.insert(session, item)
    """

    def __init__(self) -> None:
        self.write_lock = asyncio.Lock()

    async def insert(self, session: AsyncSession, item: ContentItem) -> None:
        """Project a NEW item's text fields into the index.

        Must be called with ``write_lock`` held, inside the caller's
        transaction so that it commits or rolls back with the resolution.
        """
        if not self.write_lock.locked():
            raise CorpusIndexError("Index mutation attempted without holding the write lock")
        if item.resolution != Resolution.NEW:
            raise CorpusIndexError(
                f"Refusing to index item {item.id} with resolution {item.resolution.value}"
            )
        if await self.contains(session, item.id):
            raise CorpusIndexError(f"Item {item.id} is already indexed")

        try:
            await session.execute(
                insert(corpus_fts).values(
                    headline=item.headline,
                    summary=item.summary,
                    body=item.body,
                    item_id=item.id,
                )
            )
        except DBAPIError as e:
            raise CorpusIndexError(f"Index insert failed for {item.id}: {e}") from e

        logger.debug("Indexed item %s (%s)", item.id, item.slug)

    async def contains(self, session: AsyncSession, item_id: UUID) -> bool:
        try:
            result = await session.execute(
                select(corpus_fts.c.item_id).where(corpus_fts.c.item_id == item_id).limit(1)
            )
        except DBAPIError as e:
            raise CorpusIndexError(f"Index lookup failed: {e}") from e
        return result.first() is not None

    async def count(self, session: AsyncSession) -> int:
        try:
            result = await session.execute(select(func.count()).select_from(corpus_fts))
        except DBAPIError as e:
            raise CorpusIndexError(f"Index count failed: {e}") from e
        return int(result.scalar_one())

    async def search(
        self,
        session: AsyncSession,
        match_query: str,
        *,
        window_start: datetime,
        window_end: datetime,
        weights: FieldWeights,
        limit: int,
        exclude_item_id: UUID | None = None,
    ) -> list[IndexedCandidate]:
        """Run a weighted BM25 query restricted to an ingestion window.

        Args:
            match_query: FTS5 MATCH expression.
            window_start: Oldest ingestion time considered (inclusive).
            window_end: Newest ingestion time considered (inclusive).
            weights: Column weights for bm25().
            limit: Maximum candidates returned.
            exclude_item_id: Item to leave out (the one being scored).

        Returns:
            Candidates ordered best-first (ascending score).
        """
        if not match_query:
            return []

        score = func.bm25(
            literal_column(CORPUS_TABLE), weights.headline, weights.summary, weights.body
        ).label("score")

        stmt = (
            select(
                corpus_fts.c.item_id,
                ContentItem.slug,
                ContentItem.headline,
                ContentItem.ingested_at,
                score,
            )
            .select_from(corpus_fts)
            .join(ContentItem, ContentItem.id == corpus_fts.c.item_id)
            .where(
                literal_column(CORPUS_TABLE).op("MATCH")(match_query),
                ContentItem.resolution == Resolution.NEW,
                ContentItem.ingested_at >= window_start,
                ContentItem.ingested_at <= window_end,
            )
            .order_by(score, ContentItem.ingested_at, ContentItem.id)
            .limit(limit)
        )
        if exclude_item_id is not None:
            stmt = stmt.where(ContentItem.id != exclude_item_id)

        try:
            result = await session.execute(stmt)
        except DBAPIError as e:
            raise CorpusIndexError(f"Index query failed: {e}") from e

        return [
            IndexedCandidate(
                item_id=row.item_id,
                slug=row.slug,
                headline=row.headline,
                ingested_at=row.ingested_at,
                score=float(row.score),
            )
            for row in result.all()
        ]

    async def rebuild(self, session: AsyncSession) -> int:
        """Drop the FTS table, recreate it, and repopulate from NEW items.

        Incremental repair is deliberately not offered: a partially indexed
        corpus would silently classify duplicates as NEW.

        Returns:
            Number of entries written.
        """
        async with self.write_lock:
            try:
                await session.execute(text(f"DROP TABLE IF EXISTS {CORPUS_TABLE}"))
                await session.execute(text(CREATE_CORPUS_SQL))

                result = await session.execute(
                    select(
                        ContentItem.id,
                        ContentItem.headline,
                        ContentItem.summary,
                        ContentItem.body,
                    )
                    .where(ContentItem.resolution == Resolution.NEW)
                    .order_by(ContentItem.ingested_at, ContentItem.id)
                )
                rows = [
                    {
                        "item_id": row.id,
                        "headline": row.headline,
                        "summary": row.summary,
                        "body": row.body,
                    }
                    for row in result.all()
                ]
                if rows:
                    await session.execute(insert(corpus_fts), rows)
            except DBAPIError as e:
                raise CorpusIndexError(f"Index rebuild failed: {e}") from e

        logger.info("Rebuilt corpus index with %d canonical items", len(rows))
        return len(rows)
