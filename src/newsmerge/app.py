"""FastAPI application for newsmerge.

Read-only: the publishable set and each canonical item's history. Writes
happen only through the resolution engine.
"""

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from datetime import date, datetime
from typing import Annotated, Any
from uuid import UUID

from fastapi import Depends, FastAPI, HTTPException, Query
from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession

from newsmerge import __version__
from newsmerge.db import get_session, init_db
from newsmerge.models import ContentItem, Resolution, SeverityChange, UpdateEntry
from newsmerge.services import queries


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Application lifespan handler."""
    await init_db()
    yield


app = FastAPI(
    title="newsmerge",
    description="Canonical news items with merged duplicates and update history",
    version=__version__,
    lifespan=lifespan,
)

SessionDep = Annotated[AsyncSession, Depends(get_session)]


class SourceOut(BaseModel):
    url: str
    title: str
    publisher: str
    date: str | None = None


class UpdateOut(BaseModel):
    position: int
    timestamp: datetime
    summary: str
    content: str
    severity_change: SeverityChange
    sources: list[dict[str, Any]]

    @classmethod
    def from_entry(cls, entry: UpdateEntry) -> "UpdateOut":
        return cls(
            position=entry.position,
            timestamp=entry.timestamp,
            summary=entry.summary,
            content=entry.content,
            severity_change=entry.severity_change,
            sources=entry.sources,
        )


class ItemSummaryOut(BaseModel):
    id: UUID
    slug: str
    headline: str
    summary: str
    resolution: Resolution
    ingested_at: datetime
    updated_at: datetime
    update_count: int

    @classmethod
    def from_item(cls, item: ContentItem) -> "ItemSummaryOut":
        return cls(
            id=item.id,
            slug=item.slug,
            headline=item.headline,
            summary=item.summary,
            resolution=item.resolution,
            ingested_at=item.ingested_at,
            updated_at=item.updated_at,
            update_count=item.update_count,
        )


class ItemOut(ItemSummaryOut):
    body: str
    canonical_id: UUID | None
    similarity_score: float | None
    skip_reasoning: str | None
    sources: list[SourceOut]
    updates: list[UpdateOut]

    @classmethod
    def from_item(cls, item: ContentItem) -> "ItemOut":
        return cls(
            **ItemSummaryOut.from_item(item).model_dump(),
            body=item.body,
            canonical_id=item.canonical_id,
            similarity_score=item.similarity_score,
            skip_reasoning=item.skip_reasoning,
            sources=[
                SourceOut(url=s.url, title=s.title, publisher=s.publisher, date=s.date)
                for s in item.sources
            ],
            updates=[UpdateOut.from_entry(u) for u in item.updates],
        )


async def _require_item(session: AsyncSession, item_id: UUID) -> ContentItem:
    item = await queries.get_item(session, item_id)
    if item is None:
        raise HTTPException(status_code=404, detail=f"Item not found: {item_id}")
    return item


@app.get("/health")
async def health() -> dict[str, str]:
    """Health check endpoint."""
    return {"status": "ok", "version": __version__}


@app.get("/items")
async def list_items(
    session: SessionDep,
    on_date: Annotated[date | None, Query(alias="date")] = None,
    limit: Annotated[int, Query(ge=1, le=500)] = 100,
    offset: Annotated[int, Query(ge=0)] = 0,
) -> list[ItemSummaryOut]:
    """The publishable set: canonical items, newest first."""
    items = await queries.list_publishable(session, on_date=on_date, limit=limit, offset=offset)
    return [ItemSummaryOut.from_item(i) for i in items]


@app.get("/items/{item_id}")
async def get_item(item_id: UUID, session: SessionDep) -> ItemOut:
    return ItemOut.from_item(await _require_item(session, item_id))


@app.get("/items/{item_id}/updates")
async def get_updates(item_id: UUID, session: SessionDep) -> list[UpdateOut]:
    """Update history of a canonical item, oldest first."""
    await _require_item(session, item_id)
    entries = await queries.get_update_history(session, item_id)
    return [UpdateOut.from_entry(e) for e in entries]


@app.get("/items/{item_id}/folded")
async def get_folded(item_id: UUID, session: SessionDep) -> list[ItemSummaryOut]:
    """Items resolved into this canonical item."""
    await _require_item(session, item_id)
    items = await queries.list_folded_items(session, item_id)
    return [ItemSummaryOut.from_item(i) for i in items]
