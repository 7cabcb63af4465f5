"""Ingestion and read-only query services for newsmerge."""

from newsmerge.services.ingest import IngestResult, ItemDraft, SourceDraft, ingest_drafts, load_drafts

__all__ = [
    "IngestResult",
    "ItemDraft",
    "SourceDraft",
    "ingest_drafts",
    "load_drafts",
]
