"""Ingestion of upstream drafts as UNRESOLVED content items.

Drafts come from the producer as JSON, either a list of items or an object
with an ``items`` list. Field names from the older article format
(``full_report``, ``website``, ``pub_date``) are accepted.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Any
from uuid import UUID, uuid4

from pydantic import AliasChoices, BaseModel, Field, field_validator
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from newsmerge.models.base import as_utc, utcnow
from newsmerge.models.content_item import ContentItem, ItemSource
from newsmerge.models.enums import Resolution
from newsmerge.resolution.writer import merge_sources
from newsmerge.utils.slugs import slugify, unique_slug

logger = logging.getLogger(__name__)


class SourceDraft(BaseModel):
    url: str = Field(min_length=1)
    title: str = ""
    publisher: str = Field(default="", validation_alias=AliasChoices("publisher", "website"))
    date: str | None = None

    @field_validator("publisher", mode="before")
    @classmethod
    def _none_to_empty(cls, v: Any) -> Any:
        return "" if v is None else v


class ItemDraft(BaseModel):
    """One item as produced upstream."""

    id: UUID | None = None
    slug: str | None = None
    headline: str = Field(min_length=1)
    summary: str = ""
    body: str = Field(default="", validation_alias=AliasChoices("body", "full_report"))
    ingested_at: datetime | None = Field(
        default=None, validation_alias=AliasChoices("ingested_at", "pub_date")
    )
    sources: list[SourceDraft] = Field(default_factory=list)  # pyright: ignore[reportUnknownVariableType]


class DraftFile(BaseModel):
    items: list[ItemDraft]


def load_drafts(path: Path) -> list[ItemDraft]:
    """Read drafts from a JSON file.

    Raises:
        pydantic.ValidationError: If any draft is malformed.
    """
    data = json.loads(path.read_text(encoding="utf-8"))
    if isinstance(data, list):
        data = {"items": data}
    return DraftFile.model_validate(data).items


@dataclass
class IngestResult:
    created: list[ContentItem] = field(default_factory=list)  # pyright: ignore[reportUnknownVariableType]
    skipped_existing: int = 0
    duplicate_sources_dropped: int = 0


async def ingest_drafts(session: AsyncSession, drafts: list[ItemDraft]) -> IngestResult:
    """Insert drafts as UNRESOLVED items. The caller commits.

    - Slugs are derived from headlines when absent and made unique.
    - A draft whose id already exists, in the database or earlier in
      ``drafts``, is skipped, so re-ingesting a file is harmless.
    - Sources are deduplicated by ``(url, publisher)`` within each draft.
    """
    result = IngestResult()

    slug_rows = await session.execute(select(ContentItem.slug))
    taken: set[str] = set(slug_rows.scalars().all())

    ids = [d.id for d in drafts if d.id is not None]
    existing_ids: set[UUID] = set()
    if ids:
        id_rows = await session.execute(select(ContentItem.id).where(ContentItem.id.in_(ids)))
        existing_ids = set(id_rows.scalars().all())

    now = utcnow()
    for draft in drafts:
        if draft.id is not None and draft.id in existing_ids:
            result.skipped_existing += 1
            continue
        if draft.id is not None:
            existing_ids.add(draft.id)

        slug = unique_slug(draft.slug or slugify(draft.headline), taken)
        taken.add(slug)

        incoming = [s.model_dump() for s in draft.sources]
        sources = merge_sources([], incoming)
        result.duplicate_sources_dropped += len(incoming) - len(sources)

        ingested_at = as_utc(draft.ingested_at) if draft.ingested_at else now
        item = ContentItem(
            id=draft.id or uuid4(),
            slug=slug,
            headline=draft.headline,
            summary=draft.summary,
            body=draft.body,
            ingested_at=ingested_at,
            created_at=ingested_at,
            updated_at=ingested_at,
            resolution=Resolution.UNRESOLVED,
            sources=[
                ItemSource(
                    position=i,
                    url=s["url"],
                    title=s["title"],
                    publisher=s["publisher"],
                    date=s["date"],
                )
                for i, s in enumerate(sources)
            ],
        )
        session.add(item)
        result.created.append(item)

    await session.flush()
    logger.info(
        "Ingested %d item(s) (%d already present)",
        len(result.created),
        result.skipped_existing,
    )
    return result
