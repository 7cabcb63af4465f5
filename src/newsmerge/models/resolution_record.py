"""ResolutionRecord model for auditing resolution decisions."""

from __future__ import annotations

from datetime import datetime
from uuid import UUID

from sqlalchemy import JSON, Float, ForeignKey, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from newsmerge.models.base import Base, UTCDateTime, utcnow
from newsmerge.models.enums import Resolution, ResolutionMethod


class ResolutionRecord(Base):
    """Records each terminal decision made by the resolution engine.

    Written in the same transaction as the item's resolution, so a record
    exists if and only if the item is terminal.

    Used for:
    - Reviewing ambiguous-band decisions when tuning thresholds
    - Explaining why an item was folded into another
    - Comparing decisions across threshold versions
    """

    __tablename__ = "resolution_records"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)

    item_id: Mapped[UUID] = mapped_column(
        ForeignKey("content_items.id"), unique=True, index=True
    )

    resolution: Mapped[Resolution] = mapped_column(index=True)

    method: Mapped[ResolutionMethod] = mapped_column(index=True)
    """automatic | semantic | fallback."""

    similarity_score: Mapped[float | None] = mapped_column(Float)
    """Top BM25 score; NULL when there was no candidate."""

    matched_item_id: Mapped[UUID | None] = mapped_column(ForeignKey("content_items.id"))
    """Top candidate consulted, even when the final decision was NEW."""

    threshold_new: Mapped[float] = mapped_column(Float)
    threshold_duplicate: Mapped[float] = mapped_column(Float)
    threshold_version: Mapped[str] = mapped_column(String(64))

    reasoning: Mapped[str | None] = mapped_column(Text)

    flags: Mapped[list[str]] = mapped_column(JSON, default=list)
    """Policy markers, e.g. resolver_fallback or update_degraded."""

    algorithm_version: Mapped[str] = mapped_column(String(64))

    created_at: Mapped[datetime] = mapped_column(UTCDateTime, default=utcnow, index=True)
