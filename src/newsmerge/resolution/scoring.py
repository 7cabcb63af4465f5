"""Relevance scoring against the corpus index.

Query construction:
- Tokens are the distinct lowercased alphanumeric runs of length >= 3 across
  headline, summary and body, in order of first appearance.
- Stopwords are kept. BM25's term-frequency saturation and IDF already
  down-weight them, and removing them measurably lowered scores for true
  duplicates.
- Tokens are OR-ed so items sharing more terms rank higher, instead of
  requiring every term to match.

Ranking is weighted BM25 (headline 10x, summary 5x, body 1x by default).
Scores are negative; more negative means more similar.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from datetime import datetime, timedelta
from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncSession

from newsmerge.config import settings
from newsmerge.resolution.corpus_index import CorpusIndex, FieldWeights
from newsmerge.resolution.outcome import ItemSnapshot

logger = logging.getLogger(__name__)

MIN_TOKEN_LENGTH = 3

# Unicode letters and digits; underscore excluded
_TOKEN_RE = re.compile(r"[^\W_]+")


def extract_query_terms(*texts: str) -> list[str]:
    """Distinct lowercased alphanumeric tokens of length >= 3, first-seen order."""
    seen: dict[str, None] = {}
    for chunk in texts:
        if not chunk:
            continue
        for token in _TOKEN_RE.findall(chunk.lower()):
            if len(token) >= MIN_TOKEN_LENGTH and token not in seen:
                seen[token] = None
    return list(seen)


def build_match_query(terms: list[str]) -> str:
    """Join terms into an FTS5 OR expression.

    Each term is double-quoted so that words such as ``near`` or ``not`` are
    never parsed as FTS5 operators.
    """
    return " OR ".join(f'"{term}"' for term in terms)


@dataclass
class ScoredCandidate:
    """A ranked candidate for the item being resolved."""

    item_id: UUID
    slug: str
    headline: str
    ingested_at: datetime
    score: float


class RelevanceScorer:
    """Finds the most similar canonical items for a candidate item.

    Usage:
        scorer = RelevanceScorer(index)
        async with session_factory() as session:
            candidates = await scorer.score(session, snapshot)
        top = candidates[0] if candidates else None
    """

    def __init__(
        self,
        index: CorpusIndex,
        *,
        lookback_days: int | None = None,
        limit: int | None = None,
        weights: FieldWeights | None = None,
    ) -> None:
        """Initialize the scorer.

        Args:
            index: Shared corpus index handle.
            lookback_days: Window of prior ingestion time searched (default from config).
            limit: Number of candidates returned (default from config).
            weights: BM25 column weights (default from config).
        """
        self._index = index
        self._lookback = timedelta(
            days=lookback_days if lookback_days is not None else settings.lookback_days
        )
        self._limit = limit if limit is not None else settings.candidate_limit
        self._weights = weights or FieldWeights.from_settings()

    @property
    def weights(self) -> FieldWeights:
        return self._weights

    @property
    def lookback(self) -> timedelta:
        return self._lookback

    async def score(self, session: AsyncSession, item: ItemSnapshot) -> list[ScoredCandidate]:
        """Return the top candidates for ``item``, best first.

        Raises:
            CorpusIndexError: If the index cannot be queried.
        """
        terms = extract_query_terms(item.headline, item.summary, item.body)
        if not terms:
            logger.debug("Item %s has no query terms; no candidates", item.id)
            return []

        window_start = item.ingested_at - self._lookback
        candidates = await self._index.search(
            session,
            build_match_query(terms),
            window_start=window_start,
            window_end=item.ingested_at,
            weights=self._weights,
            limit=self._limit,
            exclude_item_id=item.id,
        )

        logger.debug(
            "Scored item %s: terms=%d candidates=%d best=%s",
            item.id,
            len(terms),
            len(candidates),
            f"{candidates[0].score:.2f}" if candidates else "N/A",
        )

        return [
            ScoredCandidate(
                item_id=c.item_id,
                slug=c.slug,
                headline=c.headline,
                ingested_at=c.ingested_at,
                score=c.score,
            )
            for c in candidates
        ]
