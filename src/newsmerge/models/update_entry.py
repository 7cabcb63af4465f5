"""UpdateEntry model: append-only history on a canonical item."""

from __future__ import annotations

from datetime import datetime
from typing import TYPE_CHECKING, Any
from uuid import UUID

from sqlalchemy import JSON, ForeignKey, Integer, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from newsmerge.models.base import Base, UTCDateTime, utcnow
from newsmerge.models.enums import SeverityChange

if TYPE_CHECKING:
    from newsmerge.models.content_item import ContentItem


class UpdateEntry(Base):
    """New information folded into a canonical item instead of being published.

    ``position`` is the insertion index: 0 is the oldest entry. Timestamps
    are not required to be monotonic; insertion order is what is preserved.
    """

    __tablename__ = "update_entries"
    __table_args__ = (UniqueConstraint("item_id", "position"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    item_id: Mapped[UUID] = mapped_column(ForeignKey("content_items.id"), index=True)
    """The canonical item that owns this entry."""

    origin_item_id: Mapped[UUID | None] = mapped_column(
        ForeignKey("content_items.id"), index=True
    )
    """The MERGED_UPDATE item whose payload produced this entry."""

    position: Mapped[int] = mapped_column(Integer)
    timestamp: Mapped[datetime] = mapped_column(UTCDateTime)
    summary: Mapped[str] = mapped_column(Text)
    content: Mapped[str] = mapped_column(Text)
    severity_change: Mapped[SeverityChange] = mapped_column(default=SeverityChange.UNCHANGED)
    sources: Mapped[list[dict[str, Any]]] = mapped_column(JSON, default=list)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, default=utcnow)

    item: Mapped[ContentItem] = relationship(back_populates="updates", foreign_keys=[item_id])
