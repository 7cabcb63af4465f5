"""Database models for newsmerge."""

from newsmerge.models.base import Base
from newsmerge.models.content_item import ContentItem, ItemSource
from newsmerge.models.enums import (
    Classification,
    Resolution,
    ResolutionMethod,
    SemanticDecision,
    SeverityChange,
)
from newsmerge.models.resolution_record import ResolutionRecord
from newsmerge.models.update_entry import UpdateEntry

__all__ = [
    "Base",
    "Classification",
    "ContentItem",
    "ItemSource",
    "Resolution",
    "ResolutionMethod",
    "ResolutionRecord",
    "SemanticDecision",
    "SeverityChange",
    "UpdateEntry",
]
