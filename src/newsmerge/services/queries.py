"""Read-only queries for downstream consumers.

The publishable set is ``resolution = NEW``. Everything else is reachable
only through its canonical item.
"""

from __future__ import annotations

from datetime import date, datetime
from uuid import UUID

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from newsmerge.models.base import day_bounds
from newsmerge.models.content_item import ContentItem
from newsmerge.models.enums import Resolution, ResolutionMethod
from newsmerge.models.resolution_record import ResolutionRecord
from newsmerge.models.update_entry import UpdateEntry


async def list_publishable(
    session: AsyncSession,
    *,
    on_date: date | None = None,
    limit: int = 100,
    offset: int = 0,
) -> list[ContentItem]:
    """Canonical items, newest ingestion first."""
    stmt = (
        select(ContentItem)
        .where(ContentItem.resolution == Resolution.NEW)
        .order_by(ContentItem.ingested_at.desc(), ContentItem.id)
        .limit(limit)
        .offset(offset)
    )
    if on_date is not None:
        start, end = day_bounds(on_date)
        stmt = stmt.where(ContentItem.ingested_at >= start, ContentItem.ingested_at < end)
    result = await session.execute(stmt)
    return list(result.scalars().all())


async def list_items(
    session: AsyncSession,
    *,
    resolution: Resolution | None = None,
    on_date: date | None = None,
    limit: int = 100,
) -> list[ContentItem]:
    """Items of any state in ingestion order (operator view)."""
    stmt = select(ContentItem).order_by(ContentItem.ingested_at, ContentItem.id).limit(limit)
    if resolution is not None:
        stmt = stmt.where(ContentItem.resolution == resolution)
    if on_date is not None:
        start, end = day_bounds(on_date)
        stmt = stmt.where(ContentItem.ingested_at >= start, ContentItem.ingested_at < end)
    result = await session.execute(stmt)
    return list(result.scalars().all())


async def get_item(session: AsyncSession, item_id: UUID) -> ContentItem | None:
    return await session.get(ContentItem, item_id)


async def get_item_by_slug(session: AsyncSession, slug: str) -> ContentItem | None:
    result = await session.execute(select(ContentItem).where(ContentItem.slug == slug))
    return result.scalar_one_or_none()


async def get_update_history(session: AsyncSession, canonical_id: UUID) -> list[UpdateEntry]:
    """A canonical item's updates, oldest first."""
    result = await session.execute(
        select(UpdateEntry)
        .where(UpdateEntry.item_id == canonical_id)
        .order_by(UpdateEntry.position)
    )
    return list(result.scalars().all())


async def list_folded_items(session: AsyncSession, canonical_id: UUID) -> list[ContentItem]:
    """Items resolved as duplicates of, or updates to, ``canonical_id``."""
    result = await session.execute(
        select(ContentItem)
        .where(
            ContentItem.canonical_id == canonical_id,
            ContentItem.resolution != Resolution.NEW,
        )
        .order_by(ContentItem.ingested_at, ContentItem.id)
    )
    return list(result.scalars().all())


async def list_recently_updated(
    session: AsyncSession,
    *,
    since: datetime | None = None,
    limit: int = 50,
) -> list[ContentItem]:
    """Canonical items with at least one update, most recently updated first."""
    has_updates = select(UpdateEntry.item_id).distinct()
    stmt = (
        select(ContentItem)
        .where(
            ContentItem.resolution == Resolution.NEW,
            ContentItem.id.in_(has_updates),
        )
        .order_by(ContentItem.updated_at.desc())
        .limit(limit)
    )
    if since is not None:
        stmt = stmt.where(ContentItem.updated_at >= since)
    result = await session.execute(stmt)
    return list(result.scalars().all())


async def resolution_counts(
    session: AsyncSession, *, on_date: date | None = None
) -> dict[Resolution, int]:
    """Number of items per resolution state (all states present, zero-filled)."""
    stmt = select(ContentItem.resolution, func.count()).group_by(ContentItem.resolution)
    if on_date is not None:
        start, end = day_bounds(on_date)
        stmt = stmt.where(ContentItem.ingested_at >= start, ContentItem.ingested_at < end)
    result = await session.execute(stmt)
    counts = {r: 0 for r in Resolution}
    for resolution, count in result.all():
        counts[resolution] = count
    return counts


async def method_counts(session: AsyncSession) -> dict[ResolutionMethod, int]:
    result = await session.execute(
        select(ResolutionRecord.method, func.count()).group_by(ResolutionRecord.method)
    )
    counts = {m: 0 for m in ResolutionMethod}
    for method, count in result.all():
        counts[method] = count
    return counts


async def list_resolution_records(
    session: AsyncSession,
    *,
    on_date: date | None = None,
    resolution: Resolution | None = None,
    limit: int = 100,
) -> list[tuple[ResolutionRecord, ContentItem]]:
    """Audit rows joined to their items, in ingestion order."""
    stmt = (
        select(ResolutionRecord, ContentItem)
        .join(ContentItem, ContentItem.id == ResolutionRecord.item_id)
        .order_by(ContentItem.ingested_at, ContentItem.id)
        .limit(limit)
    )
    if on_date is not None:
        start, end = day_bounds(on_date)
        stmt = stmt.where(ContentItem.ingested_at >= start, ContentItem.ingested_at < end)
    if resolution is not None:
        stmt = stmt.where(ResolutionRecord.resolution == resolution)
    result = await session.execute(stmt)
    return [(record, item) for record, item in result.tuples().all()]
