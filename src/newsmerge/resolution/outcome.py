"""Value objects passed between engine stages."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import TYPE_CHECKING, Any
from uuid import UUID

from newsmerge.models.enums import Resolution, ResolutionMethod

if TYPE_CHECKING:
    from newsmerge.inference.schemas import UpdatePayload
    from newsmerge.models.content_item import ContentItem
    from newsmerge.resolution.thresholds import Thresholds

# Algorithm version for the audit trail
ALGORITHM_VERSION = "fts5-bm25-three-tier-v1"


@dataclass(frozen=True)
class ItemSnapshot:
    """Detached, read-only copy of a ContentItem.

    The engine passes snapshots across its read, adjudication and write
    phases so that no ORM instance outlives the session that loaded it.
    """

    id: UUID
    slug: str
    headline: str
    summary: str
    body: str
    ingested_at: datetime
    sources: tuple[dict[str, Any], ...] = ()

    @classmethod
    def from_item(cls, item: ContentItem) -> ItemSnapshot:
        return cls(
            id=item.id,
            slug=item.slug,
            headline=item.headline,
            summary=item.summary,
            body=item.body,
            ingested_at=item.ingested_at,
            sources=tuple(
                {
                    "url": s.url,
                    "title": s.title,
                    "publisher": s.publisher,
                    "date": s.date,
                }
                for s in item.sources
            ),
        )


@dataclass
class ResolutionOutcome:
    """The final decision for one item, ready for the writer."""

    item_id: UUID
    resolution: Resolution
    method: ResolutionMethod
    thresholds: Thresholds
    slug: str = ""

    similarity_score: float | None = None
    """Top candidate's score; None when there was no candidate."""

    matched_item_id: UUID | None = None
    """Top candidate consulted (recorded for audit even when NEW)."""

    reasoning: str | None = None

    update: UpdatePayload | None = None
    """Payload to append; only for MERGED_UPDATE."""

    merge_sources: bool = False

    flags: list[str] = field(default_factory=list)

    @property
    def canonical_id(self) -> UUID | None:
        """Canonical target for folded resolutions."""
        if self.resolution == Resolution.NEW:
            return self.item_id
        return self.matched_item_id
