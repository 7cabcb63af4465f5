"""Shared pytest fixtures for newsmerge tests."""

from __future__ import annotations

import asyncio
from collections.abc import AsyncGenerator, Awaitable, Callable
from datetime import UTC, datetime, timedelta
from pathlib import Path
from typing import TYPE_CHECKING, Any
from uuid import UUID, uuid4

import pytest
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from newsmerge.db import create_engine, create_session_factory, init_db
from newsmerge.inference.schemas import ResolverResponse
from newsmerge.models import ContentItem, ItemSource, Resolution
from newsmerge.resolution.corpus_index import CorpusIndex
from newsmerge.resolution.outcome import ItemSnapshot
from newsmerge.resolution.scoring import RelevanceScorer, ScoredCandidate

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncEngine


# Day 0 of every test timeline
BASE_TIME = datetime(2025, 10, 1, 8, 0, tzinfo=UTC)


@pytest.fixture
async def test_engine(tmp_path: Path) -> AsyncGenerator[AsyncEngine, None]:
    """A fresh SQLite database file per test, with tables and corpus index."""
    engine = create_engine(f"sqlite+aiosqlite:///{tmp_path / 'test.db'}", echo=False)
    await init_db(engine)

    yield engine

    await engine.dispose()


@pytest.fixture
def session_factory(test_engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return create_session_factory(test_engine)


@pytest.fixture
async def db_session(
    session_factory: async_sessionmaker[AsyncSession],
) -> AsyncGenerator[AsyncSession, None]:
    async with session_factory() as session:
        yield session


@pytest.fixture
def index() -> CorpusIndex:
    return CorpusIndex()


# ─────────────────────────────────────────────────────────────────────────────
# Factories
# ─────────────────────────────────────────────────────────────────────────────

MakeItem = Callable[..., ContentItem]
AddItems = Callable[..., Awaitable[list[ContentItem]]]


@pytest.fixture
def make_item() -> MakeItem:
    """Factory fixture for creating ContentItem instances (not persisted)."""
    counter = iter(range(1, 10_000))

    def _make(
        *,
        headline: str = "Untitled item",
        summary: str = "",
        body: str = "",
        day: float = 0,
        slug: str | None = None,
        item_id: UUID | None = None,
        resolution: Resolution = Resolution.UNRESOLVED,
        sources: list[dict[str, Any]] | None = None,
    ) -> ContentItem:
        ingested_at = BASE_TIME + timedelta(days=day)
        new_id = item_id or uuid4()
        return ContentItem(
            id=new_id,
            slug=slug or f"item-{next(counter)}",
            headline=headline,
            summary=summary,
            body=body,
            ingested_at=ingested_at,
            created_at=ingested_at,
            updated_at=ingested_at,
            resolution=resolution,
            canonical_id=new_id if resolution == Resolution.NEW else None,
            sources=[
                ItemSource(
                    position=i,
                    url=s["url"],
                    title=s.get("title", ""),
                    publisher=s.get("publisher") or "",
                    date=s.get("date"),
                )
                for i, s in enumerate(sources or [])
            ],
        )

    return _make


@pytest.fixture
def add_items(
    session_factory: async_sessionmaker[AsyncSession], index: CorpusIndex
) -> AddItems:
    """Persist items; NEW items are also inserted into the corpus index."""

    async def _add(*items: ContentItem) -> list[ContentItem]:
        async with index.write_lock:
            async with session_factory() as session, session.begin():
                for item in items:
                    session.add(item)
                await session.flush()
                for item in items:
                    if item.resolution == Resolution.NEW:
                        await index.insert(session, item)
        return list(items)

    return _add


async def reload(
    session_factory: async_sessionmaker[AsyncSession], item_id: UUID
) -> ContentItem:
    """Load an item in a fresh session (no identity-map carry-over)."""
    async with session_factory() as session:
        item = await session.get(ContentItem, item_id)
        assert item is not None
        return item


# ─────────────────────────────────────────────────────────────────────────────
# Stubs
# ─────────────────────────────────────────────────────────────────────────────


class StubRelevanceScorer(RelevanceScorer):
    """A stub RelevanceScorer that returns predetermined candidates.

    ``scores`` maps a candidate item's slug to ``[(matched_item, score), ...]``.
    Items without an entry get no candidates.
    """

    def __init__(self, scores: dict[str, list[tuple[ContentItem, float]]] | None = None) -> None:
        # Don't call super().__init__() - no index needed
        self._scores = scores or {}
        self.calls: list[str] = []

    async def score(self, session: AsyncSession, item: ItemSnapshot) -> list[ScoredCandidate]:
        self.calls.append(item.slug)
        entries = self._scores.get(item.slug, [])
        candidates = [
            ScoredCandidate(
                item_id=matched.id,
                slug=matched.slug,
                headline=matched.headline,
                ingested_at=matched.ingested_at,
                score=score,
            )
            for matched, score in entries
        ]
        return sorted(candidates, key=lambda c: c.score)


class FakeResolver:
    """A scripted SemanticResolver.

    Each call pops the next scripted reply. A reply may be a ResolverResponse,
    a plain dict (validated by the adapter), or an exception instance to
    raise. ``delay`` makes every call sleep first.
    """

    def __init__(self, *replies: Any, delay: float = 0.0) -> None:
        self._replies = list(replies)
        self._delay = delay
        self.calls: list[tuple[str, str, str | None]] = []

    async def resolve(
        self,
        new_item: ItemSnapshot,
        matched_item: ItemSnapshot,
        *,
        feedback: str | None = None,
    ) -> ResolverResponse | dict[str, Any]:
        self.calls.append((new_item.slug, matched_item.slug, feedback))
        if self._delay:
            await asyncio.sleep(self._delay)
        if not self._replies:
            raise AssertionError(f"Unexpected resolver call for {new_item.slug}")
        reply = self._replies.pop(0)
        if isinstance(reply, BaseException):
            raise reply
        return reply


def update_reply(
    *,
    timestamp: str = "2025-10-04T12:00:00Z",
    summary: str = "Victim count rises to 12 hospitals",
    content: str = "Investigators confirmed eleven additional hospitals were affected.",
    sources: list[dict[str, Any]] | None = None,
    severity_change: str = "increased",
    reasoning: str = "Same incident with new victims",
) -> dict[str, Any]:
    """A resolver UPDATE reply in the wire shape."""
    return {
        "decision": "UPDATE",
        "reasoning": reasoning,
        "update": {
            "timestamp": timestamp,
            "summary": summary,
            "content": content,
            "sources": (
                sources
                if sources is not None
                else [{"url": "https://news.example/hospitals-12", "title": "Twelve hospitals hit"}]
            ),
            "severity_change": severity_change,
        },
    }
