"""Resolution writer: applies one decision per transaction.

Per item, the following commit or roll back together:
- the item's resolution fields and its ResolutionRecord
- the corpus index insert (NEW only)
- the source merge or update append on the canonical item

The corpus index write lock is held for the whole transaction, so writers
never interleave and a scorer running afterwards sees a settled corpus.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Mapping
from typing import Any

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from newsmerge.models.base import utcnow
from newsmerge.models.content_item import ContentItem, ItemSource
from newsmerge.models.enums import Resolution
from newsmerge.models.resolution_record import ResolutionRecord
from newsmerge.models.update_entry import UpdateEntry
from newsmerge.resolution.corpus_index import CorpusIndex
from newsmerge.resolution.errors import (
    CorpusIndexError,
    ResolutionWriteError,
    TerminalStateError,
)
from newsmerge.resolution.outcome import ALGORITHM_VERSION, ResolutionOutcome

logger = logging.getLogger(__name__)


def source_key(source: Mapping[str, Any]) -> tuple[str, str]:
    """Dedup key for a source: ``(url, publisher)`` with a missing publisher as ""."""
    return (source["url"], source.get("publisher") or "")


def merge_sources(
    existing: Iterable[Mapping[str, Any]],
    incoming: Iterable[Mapping[str, Any]],
) -> list[dict[str, Any]]:
    """Return the incoming sources not already present, in incoming order.

    The same URL from two publishers counts as two sources. Repeats within
    ``incoming`` are collapsed too.
    """
    seen = {source_key(s) for s in existing}
    added: list[dict[str, Any]] = []
    for source in incoming:
        key = source_key(source)
        if key in seen:
            continue
        seen.add(key)
        added.append(dict(source))
    return added


class ResolutionWriter:
    """Durably applies ResolutionOutcomes.

    Usage:
        writer = ResolutionWriter(async_session_factory, index)
        await writer.apply(outcome)
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        index: CorpusIndex,
    ) -> None:
        self._session_factory = session_factory
        self._index = index

    async def apply(self, outcome: ResolutionOutcome) -> None:
        """Apply one outcome in a single transaction.

        Raises:
            TerminalStateError: The item is no longer UNRESOLVED. Nothing was written.
            ResolutionWriteError: The transaction failed and was rolled back.
        """
        async with self._index.write_lock:
            try:
                async with self._session_factory() as session, session.begin():
                    await self._apply(session, outcome)
            except (TerminalStateError, ResolutionWriteError):
                raise
            except (SQLAlchemyError, CorpusIndexError) as e:
                logger.error("Rolled back resolution of %s: %s", outcome.item_id, e)
                raise ResolutionWriteError(outcome.item_id, str(e)) from e

        logger.debug(
            "Applied %s to %s (canonical=%s)",
            outcome.resolution.value,
            outcome.item_id,
            outcome.canonical_id,
        )

    async def _apply(self, session: AsyncSession, outcome: ResolutionOutcome) -> None:
        item = await session.get(ContentItem, outcome.item_id)
        if item is None:
            raise ResolutionWriteError(outcome.item_id, "item not found")
        if item.resolution.is_terminal:
            raise TerminalStateError(item.id, item.resolution.value)
        if not outcome.resolution.is_terminal:
            raise ResolutionWriteError(item.id, "outcome is not a terminal resolution")

        canonical: ContentItem | None = None
        if outcome.resolution.is_folded:
            canonical = await self._load_canonical(session, outcome)

        item.resolution = outcome.resolution
        item.similarity_score = outcome.similarity_score
        item.canonical_id = outcome.canonical_id
        item.skip_reasoning = outcome.reasoning
        item.resolved_at = utcnow()

        if outcome.resolution == Resolution.NEW:
            await session.flush()
            await self._index.insert(session, item)

        elif outcome.resolution == Resolution.MERGED_UPDATE:
            assert canonical is not None
            self._append_update(canonical, item, outcome)

        elif outcome.merge_sources:
            assert canonical is not None
            self._merge_item_sources(canonical, item)

        session.add(
            ResolutionRecord(
                item_id=item.id,
                resolution=outcome.resolution,
                method=outcome.method,
                similarity_score=outcome.similarity_score,
                matched_item_id=outcome.matched_item_id,
                threshold_new=outcome.thresholds.new,
                threshold_duplicate=outcome.thresholds.duplicate,
                threshold_version=outcome.thresholds.version,
                reasoning=outcome.reasoning,
                flags=list(outcome.flags),
                algorithm_version=ALGORITHM_VERSION,
            )
        )
        await session.flush()

    async def _load_canonical(
        self, session: AsyncSession, outcome: ResolutionOutcome
    ) -> ContentItem:
        if outcome.matched_item_id is None:
            raise ResolutionWriteError(
                outcome.item_id, f"{outcome.resolution.value} requires a matched item"
            )
        if outcome.matched_item_id == outcome.item_id:
            raise ResolutionWriteError(outcome.item_id, "item cannot fold into itself")

        canonical = await session.get(ContentItem, outcome.matched_item_id)
        if canonical is None:
            raise ResolutionWriteError(
                outcome.item_id, f"canonical item {outcome.matched_item_id} not found"
            )
        if canonical.resolution != Resolution.NEW:
            raise ResolutionWriteError(
                outcome.item_id,
                f"target {canonical.id} is {canonical.resolution.value}, not a canonical item",
            )
        return canonical

    @staticmethod
    def _merge_item_sources(canonical: ContentItem, item: ContentItem) -> int:
        existing = [
            {"url": s.url, "publisher": s.publisher} for s in canonical.sources
        ]
        incoming = [
            {"url": s.url, "title": s.title, "publisher": s.publisher, "date": s.date}
            for s in item.sources
        ]
        added = merge_sources(existing, incoming)

        next_position = max((s.position for s in canonical.sources), default=-1) + 1
        for offset, source in enumerate(added):
            canonical.sources.append(
                ItemSource(
                    position=next_position + offset,
                    url=source["url"],
                    title=source.get("title") or "",
                    publisher=source.get("publisher") or "",
                    date=source.get("date"),
                )
            )

        if added:
            logger.info("Added %d source(s) from %s to %s", len(added), item.slug, canonical.slug)
        return len(added)

    @staticmethod
    def _append_update(
        canonical: ContentItem, item: ContentItem, outcome: ResolutionOutcome
    ) -> UpdateEntry:
        payload = outcome.update
        if payload is None:
            raise ResolutionWriteError(item.id, "MERGED_UPDATE without an update payload")

        entry = UpdateEntry(
            origin_item_id=item.id,
            position=len(canonical.updates),
            timestamp=payload.timestamp,
            summary=payload.summary,
            content=payload.content,
            severity_change=payload.severity_change,
            sources=payload.source_dicts(),
        )
        canonical.updates.append(entry)
        canonical.updated_at = canonical.derived_updated_at()

        logger.info(
            "Appended update #%d to %s from %s",
            entry.position + 1,
            canonical.slug,
            item.slug,
        )
        return entry

