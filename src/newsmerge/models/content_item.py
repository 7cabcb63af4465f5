"""ContentItem model: a candidate unit of content and its sources."""

from __future__ import annotations

from datetime import datetime
from typing import TYPE_CHECKING
from uuid import UUID

from sqlalchemy import Float, ForeignKey, Index, Integer, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from newsmerge.models.base import Base, UTCDateTime, utcnow
from newsmerge.models.enums import Resolution

if TYPE_CHECKING:
    from newsmerge.models.update_entry import UpdateEntry


class ContentItem(Base):
    """A news-style item as produced upstream.

    Items arrive UNRESOLVED and are resolved exactly once. NEW items are the
    canonical records of a real-world story; every other terminal state
    points at one through ``canonical_id``.
    """

    __tablename__ = "content_items"
    __table_args__ = (
        Index("ix_content_items_resolution_ingested", "resolution", "ingested_at"),
    )

    id: Mapped[UUID] = mapped_column(primary_key=True)
    slug: Mapped[str] = mapped_column(String(255), unique=True)

    # Scoring fields
    headline: Mapped[str] = mapped_column(Text)
    summary: Mapped[str] = mapped_column(Text, default="")
    body: Mapped[str] = mapped_column(Text, default="")

    ingested_at: Mapped[datetime] = mapped_column(UTCDateTime, index=True)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(UTCDateTime, default=utcnow)
    """Derived: last update's timestamp, else created_at. Never set by hand."""

    resolution: Mapped[Resolution] = mapped_column(default=Resolution.UNRESOLVED, index=True)
    similarity_score: Mapped[float | None] = mapped_column(Float)
    canonical_id: Mapped[UUID | None] = mapped_column(
        ForeignKey("content_items.id"), index=True
    )
    skip_reasoning: Mapped[str | None] = mapped_column(Text)
    resolved_at: Mapped[datetime | None] = mapped_column(UTCDateTime)

    # Relationships
    sources: Mapped[list[ItemSource]] = relationship(
        back_populates="item",
        order_by="ItemSource.position",
        cascade="all, delete-orphan",
        lazy="selectin",
    )
    updates: Mapped[list[UpdateEntry]] = relationship(
        back_populates="item",
        order_by="UpdateEntry.position",
        foreign_keys="UpdateEntry.item_id",
        cascade="all, delete-orphan",
        lazy="selectin",
    )

    @property
    def update_count(self) -> int:
        return len(self.updates)

    @property
    def is_canonical(self) -> bool:
        return self.resolution == Resolution.NEW

    def derived_updated_at(self) -> datetime:
        """The value ``updated_at`` must hold given the current update list."""
        if self.updates:
            return self.updates[-1].timestamp
        return self.created_at

    def full_text(self) -> str:
        return f"{self.headline}\n{self.summary}\n{self.body}"


class ItemSource(Base):
    """A provenance reference attached to a ContentItem.

    ``(url, publisher)`` is the dedup key; a missing publisher is stored as
    the empty string so that the unique constraint applies to it.
    """

    __tablename__ = "item_sources"
    __table_args__ = (UniqueConstraint("item_id", "url", "publisher"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    item_id: Mapped[UUID] = mapped_column(ForeignKey("content_items.id"), index=True)
    position: Mapped[int] = mapped_column(Integer)
    url: Mapped[str] = mapped_column(String(2048))
    title: Mapped[str] = mapped_column(String(1024), default="")
    publisher: Mapped[str] = mapped_column(String(255), default="")
    date: Mapped[str | None] = mapped_column(String(64))

    item: Mapped[ContentItem] = relationship(back_populates="sources")

    @property
    def dedup_key(self) -> tuple[str, str]:
        return (self.url, self.publisher or "")
