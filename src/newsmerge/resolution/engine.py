"""Resolution engine: drives UNRESOLVED items to a terminal state.

Per item, in ingestion order:
1. Score against the corpus index (lookback window, weighted BM25)
2. Classify the top score (AUTO_NEW / AUTO_DUPLICATE / AMBIGUOUS)
3. For AMBIGUOUS, ask the semantic resolver (no lock or transaction held)
4. Write the outcome in one transaction under the index write lock

Items are processed strictly one at a time so that each item is scored
against a corpus that already contains every earlier NEW item. Rerunning is
idempotent: terminal items are never selected again.

Failure policy:
- CorpusIndexError while scoring aborts the batch (a broken index must not
  classify everything as NEW); recover with ``CorpusIndex.rebuild``.
- Resolver problems are handled by the adapter and never abort the batch.
- ResolutionWriteError aborts the batch; the failed item stays UNRESOLVED.
"""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from datetime import date
from typing import Any

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from newsmerge.config import settings
from newsmerge.inference.semantic_resolver import (
    LLMSemanticResolver,
    SemanticResolver,
    SemanticResolverAdapter,
)
from newsmerge.models.base import day_bounds
from newsmerge.models.content_item import ContentItem
from newsmerge.models.enums import (
    Classification,
    Resolution,
    ResolutionMethod,
    SemanticDecision,
)
from newsmerge.resolution.corpus_index import CorpusIndex
from newsmerge.resolution.errors import TerminalStateError
from newsmerge.resolution.outcome import ItemSnapshot, ResolutionOutcome
from newsmerge.resolution.scoring import RelevanceScorer, ScoredCandidate
from newsmerge.resolution.thresholds import ThresholdClassifier
from newsmerge.resolution.writer import ResolutionWriter

logger = logging.getLogger(__name__)


@dataclass
class RunStats:
    """Counters for one engine run."""

    on_date: date | None = None
    dry_run: bool = False

    processed: int = 0
    new: int = 0
    duplicate_auto: int = 0
    duplicate_semantic: int = 0
    merged_update: int = 0

    resolver_calls: int = 0
    resolver_failures: int = 0
    degraded_updates: int = 0

    skipped: int = 0
    """Items another writer resolved between selection and write."""

    outcomes: list[ResolutionOutcome] = field(default_factory=list, repr=False)  # pyright: ignore[reportUnknownVariableType]

    def record(self, outcome: ResolutionOutcome) -> None:
        self.processed += 1
        self.outcomes.append(outcome)
        if outcome.resolution == Resolution.NEW:
            self.new += 1
        elif outcome.resolution == Resolution.DUPLICATE_AUTO:
            self.duplicate_auto += 1
        elif outcome.resolution == Resolution.DUPLICATE_SEMANTIC:
            self.duplicate_semantic += 1
        elif outcome.resolution == Resolution.MERGED_UPDATE:
            self.merged_update += 1

    @property
    def folded(self) -> int:
        """Items that did not become publishable."""
        return self.duplicate_auto + self.duplicate_semantic + self.merged_update

    @property
    def publishable_set_shrunk(self) -> bool:
        return self.folded > 0

    def as_dict(self) -> dict[str, Any]:
        return {
            "on_date": self.on_date.isoformat() if self.on_date else None,
            "dry_run": self.dry_run,
            "processed": self.processed,
            "new": self.new,
            "duplicate_auto": self.duplicate_auto,
            "duplicate_semantic": self.duplicate_semantic,
            "merged_update": self.merged_update,
            "resolver_calls": self.resolver_calls,
            "resolver_failures": self.resolver_failures,
            "degraded_updates": self.degraded_updates,
            "skipped": self.skipped,
        }


PublishableSetHook = Callable[[RunStats], Awaitable[None]]


class ResolutionEngine:
    """Orchestrates scoring, classification, adjudication and writing.

    Usage:
        engine = build_resolution_engine(async_session_factory)
        stats = await engine.run()
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        *,
        index: CorpusIndex,
        scorer: RelevanceScorer,
        classifier: ThresholdClassifier,
        adapter: SemanticResolverAdapter,
        writer: ResolutionWriter | None = None,
        merge_sources_on_semantic_duplicate: bool | None = None,
        on_publishable_set_shrunk: PublishableSetHook | None = None,
    ) -> None:
        """Initialize the engine.

        Args:
            session_factory: Factory for read sessions (scoring, selection).
            index: Shared corpus index; must be the one the writer uses.
            scorer: Relevance scorer over ``index``.
            classifier: Threshold policy.
            adapter: Semantic resolver with failure policy applied.
            writer: Resolution writer (default: one over ``session_factory``).
            merge_sources_on_semantic_duplicate: Default from config.
            on_publishable_set_shrunk: Awaited after a non-dry run that
                committed at least one fold, including a run that aborted.
        """
        self._session_factory = session_factory
        self._index = index
        self._scorer = scorer
        self._classifier = classifier
        self._adapter = adapter
        self._writer = writer or ResolutionWriter(session_factory, index)
        self._merge_semantic = (
            merge_sources_on_semantic_duplicate
            if merge_sources_on_semantic_duplicate is not None
            else settings.merge_sources_on_semantic_duplicate
        )
        self._on_publishable_set_shrunk = on_publishable_set_shrunk

    async def select_unresolved(
        self,
        on_date: date | None = None,
        *,
        limit: int | None = None,
    ) -> list[ItemSnapshot]:
        """UNRESOLVED items in ``(ingested_at, id)`` order, optionally for one day."""
        stmt = (
            select(ContentItem)
            .where(ContentItem.resolution == Resolution.UNRESOLVED)
            .order_by(ContentItem.ingested_at, ContentItem.id)
        )
        if on_date is not None:
            start, end = day_bounds(on_date)
            stmt = stmt.where(ContentItem.ingested_at >= start, ContentItem.ingested_at < end)
        if limit is not None:
            stmt = stmt.limit(limit)

        async with self._session_factory() as session:
            result = await session.execute(stmt)
            return [ItemSnapshot.from_item(item) for item in result.scalars().all()]

    async def decide(self, item: ItemSnapshot, stats: RunStats | None = None) -> ResolutionOutcome:
        """Score, classify and (if ambiguous) adjudicate one item. Writes nothing.

        Raises:
            CorpusIndexError: If the index cannot be queried.
        """
        stats = stats if stats is not None else RunStats()
        thresholds = self._classifier.thresholds

        top: ScoredCandidate | None
        matched: ItemSnapshot | None = None
        async with self._session_factory() as session:
            candidates = await self._scorer.score(session, item)
            top = candidates[0] if candidates else None
            classification = self._classifier.classify(top.score if top else None)
            if classification == Classification.AMBIGUOUS:
                assert top is not None
                matched = await self._load_snapshot(session, top)

        base: dict[str, Any] = {
            "item_id": item.id,
            "slug": item.slug,
            "thresholds": thresholds,
            "similarity_score": top.score if top else None,
            "matched_item_id": top.item_id if top else None,
        }

        if classification == Classification.AUTO_NEW:
            return ResolutionOutcome(
                resolution=Resolution.NEW,
                method=ResolutionMethod.AUTOMATIC,
                **base,
            )

        assert top is not None

        if classification == Classification.AUTO_DUPLICATE:
            return ResolutionOutcome(
                resolution=Resolution.DUPLICATE_AUTO,
                method=ResolutionMethod.AUTOMATIC,
                reasoning=f"Auto-duplicate: BM25 score {top.score:.2f} with item {top.slug}",
                merge_sources=True,
                **base,
            )

        assert matched is not None
        adjudication = await self._adapter.adjudicate(item, matched)
        stats.resolver_calls += adjudication.calls
        stats.resolver_failures += adjudication.failures
        if adjudication.degraded:
            stats.degraded_updates += 1

        method = (
            ResolutionMethod.FALLBACK
            if adjudication.fallback or adjudication.degraded
            else ResolutionMethod.SEMANTIC
        )
        flags: list[str] = []
        if adjudication.fallback:
            flags.append("resolver_fallback")
        if adjudication.degraded:
            flags.append("update_degraded")

        if adjudication.decision == SemanticDecision.NEW:
            return ResolutionOutcome(
                resolution=Resolution.NEW,
                method=method,
                reasoning=adjudication.reasoning,
                flags=flags,
                **base,
            )
        if adjudication.decision == SemanticDecision.UPDATE:
            return ResolutionOutcome(
                resolution=Resolution.MERGED_UPDATE,
                method=method,
                reasoning=adjudication.reasoning,
                update=adjudication.update,
                flags=flags,
                **base,
            )
        return ResolutionOutcome(
            resolution=Resolution.DUPLICATE_SEMANTIC,
            method=method,
            reasoning=adjudication.reasoning,
            merge_sources=self._merge_semantic,
            flags=flags,
            **base,
        )

    async def _load_snapshot(self, session: AsyncSession, candidate: ScoredCandidate) -> ItemSnapshot:
        matched = await session.get(ContentItem, candidate.item_id)
        assert matched is not None, f"indexed item {candidate.item_id} missing from content_items"
        return ItemSnapshot.from_item(matched)

    async def run(
        self,
        on_date: date | None = None,
        *,
        dry_run: bool = False,
        limit: int | None = None,
    ) -> RunStats:
        """Resolve every selected UNRESOLVED item.

        Args:
            on_date: Only items ingested on this UTC date; None for all.
            dry_run: Decide but write nothing. Later items in the batch then
                cannot match earlier NEW items, so counts can differ from a
                real run.
            limit: Maximum items to process.

        Raises:
            CorpusIndexError: The index is unusable; rebuild it and rerun.
            ResolutionWriteError: A write failed; that item stays UNRESOLVED.
        """
        stats = RunStats(on_date=on_date, dry_run=dry_run)
        items = await self.select_unresolved(on_date, limit=limit)

        logger.info(
            "Resolving %d unresolved item(s)%s%s",
            len(items),
            f" ingested on {on_date.isoformat()}" if on_date else "",
            " (dry run)" if dry_run else "",
        )

        try:
            await self._process(items, stats, dry_run=dry_run)
        finally:
            # Committed folds are signalled even when the batch aborts
            if not dry_run and stats.publishable_set_shrunk and self._on_publishable_set_shrunk:
                await self._on_publishable_set_shrunk(stats)

        return stats

    async def _process(self, items: list[ItemSnapshot], stats: RunStats, *, dry_run: bool) -> None:
        for item in items:
            outcome = await self.decide(item, stats)

            if not dry_run:
                try:
                    await self._writer.apply(outcome)
                except TerminalStateError as e:
                    logger.warning("Skipping %s: %s", item.slug, e)
                    stats.skipped += 1
                    continue

            stats.record(outcome)
            logger.info(
                "%s %s -> %s (score=%s, method=%s)",
                "[dry-run]" if dry_run else "Resolved",
                item.slug,
                outcome.resolution.value,
                f"{outcome.similarity_score:.2f}" if outcome.similarity_score is not None else "N/A",
                outcome.method.value,
            )

        if stats.resolver_failures:
            logger.warning(
                "%d semantic resolver failure(s) this run; affected items defaulted to NEW",
                stats.resolver_failures,
            )
        if stats.degraded_updates:
            logger.warning(
                "%d UPDATE decision(s) degraded to DUPLICATE for invalid payloads",
                stats.degraded_updates,
            )

        logger.info(
            "Run complete: new=%d auto_dup=%d semantic_dup=%d updates=%d resolver_calls=%d",
            stats.new,
            stats.duplicate_auto,
            stats.duplicate_semantic,
            stats.merged_update,
            stats.resolver_calls,
        )


def build_resolution_engine(
    session_factory: async_sessionmaker[AsyncSession],
    *,
    resolver: SemanticResolver | None = None,
    index: CorpusIndex | None = None,
    lookback_days: int | None = None,
    on_publishable_set_shrunk: PublishableSetHook | None = None,
) -> ResolutionEngine:
    """Wire an engine from configuration.

    ``resolver`` defaults to the LLM-backed resolver.
    """
    index = index or CorpusIndex()
    return ResolutionEngine(
        session_factory,
        index=index,
        scorer=RelevanceScorer(index, lookback_days=lookback_days),
        classifier=ThresholdClassifier(),
        adapter=SemanticResolverAdapter(resolver or LLMSemanticResolver()),
        writer=ResolutionWriter(session_factory, index),
        on_publishable_set_shrunk=on_publishable_set_shrunk,
    )
