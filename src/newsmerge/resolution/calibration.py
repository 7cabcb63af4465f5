"""Threshold calibration against a labelled fixture.

The thresholds are empirical: BM25 scores depend on corpus statistics and
field weights, so any change to either should be checked against known
pairs before it ships.

A fixture is a JSON document:

    {
      "corpus": [{"headline": ..., "summary": ..., "body": ...}, ...],
      "pairs": [
        {
          "id": "ransomware-reworded",
          "existing": {"headline": ..., "summary": ..., "body": ...},
          "candidate": {"headline": ..., "summary": ..., "body": ...},
          "expected": "auto_duplicate"
        }
      ]
    }

``corpus`` is optional background text that makes IDF realistic. Every
``existing`` text and every corpus text is indexed into a throwaway SQLite
database; each candidate is then scored against its own ``existing`` item.
"""

from __future__ import annotations

import json
import logging
import tempfile
from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta
from pathlib import Path
from uuid import UUID, uuid4

from pydantic import AliasChoices, BaseModel, Field

from newsmerge.db import create_engine, create_session_factory, init_db
from newsmerge.models.content_item import ContentItem
from newsmerge.models.enums import Classification, Resolution
from newsmerge.resolution.corpus_index import CorpusIndex, FieldWeights
from newsmerge.resolution.outcome import ItemSnapshot
from newsmerge.resolution.scoring import RelevanceScorer
from newsmerge.resolution.thresholds import ThresholdClassifier, Thresholds

logger = logging.getLogger(__name__)

# Fixed clock so calibration never depends on wall time
_EPOCH = datetime(2025, 1, 1, tzinfo=UTC)


class CalibrationText(BaseModel):
    headline: str
    summary: str = ""
    body: str = Field(default="", validation_alias=AliasChoices("body", "full_report"))


class CalibrationPair(BaseModel):
    id: str
    existing: CalibrationText
    candidate: CalibrationText
    expected: Classification
    note: str | None = None


class CalibrationFixture(BaseModel):
    corpus: list[CalibrationText] = Field(default_factory=list)  # pyright: ignore[reportUnknownVariableType]
    pairs: list[CalibrationPair] = Field(min_length=1)


def load_calibration_fixture(path: Path) -> CalibrationFixture:
    return CalibrationFixture.model_validate(json.loads(path.read_text(encoding="utf-8")))


@dataclass
class PairResult:
    pair_id: str
    expected: Classification
    actual: Classification
    score: float | None
    """Candidate's score against its own existing item; None if unmatched."""
    top_is_pair: bool
    """Whether the paired item was also the top candidate overall."""

    @property
    def passed(self) -> bool:
        return self.expected == self.actual


@dataclass
class CalibrationReport:
    thresholds: Thresholds
    weights: FieldWeights
    results: list[PairResult] = field(default_factory=list)  # pyright: ignore[reportUnknownVariableType]

    @property
    def passed(self) -> int:
        return sum(1 for r in self.results if r.passed)

    @property
    def failed(self) -> list[PairResult]:
        return [r for r in self.results if not r.passed]

    @property
    def accuracy(self) -> float:
        if not self.results:
            return 0.0
        return self.passed / len(self.results)

    def score_range(self, expected: Classification) -> tuple[float, float] | None:
        """(min, max) score observed for pairs labelled ``expected``."""
        scores = [
            r.score for r in self.results if r.expected == expected and r.score is not None
        ]
        if not scores:
            return None
        return min(scores), max(scores)


def _make_item(text: CalibrationText, slug: str, ingested_at: datetime) -> ContentItem:
    return ContentItem(
        id=uuid4(),
        slug=slug,
        headline=text.headline,
        summary=text.summary,
        body=text.body,
        ingested_at=ingested_at,
        created_at=ingested_at,
        updated_at=ingested_at,
        resolution=Resolution.NEW,
    )


async def run_calibration(
    fixture: CalibrationFixture,
    *,
    thresholds: Thresholds | None = None,
    weights: FieldWeights | None = None,
) -> CalibrationReport:
    """Score every fixture pair and classify it with ``thresholds``."""
    thresholds = thresholds or Thresholds.from_settings()
    weights = weights or FieldWeights.from_settings()
    classifier = ThresholdClassifier(thresholds)
    report = CalibrationReport(thresholds=thresholds, weights=weights)

    with tempfile.TemporaryDirectory(prefix="newsmerge-calibration-") as tmp:
        db_engine = create_engine(f"sqlite+aiosqlite:///{Path(tmp) / 'calibration.db'}", echo=False)
        try:
            await init_db(db_engine)
            session_factory = create_session_factory(db_engine)
            index = CorpusIndex()
            total = len(fixture.pairs) + len(fixture.corpus)
            scorer = RelevanceScorer(index, lookback_days=3650, limit=total, weights=weights)

            existing_ids: dict[str, UUID] = {}
            async with index.write_lock:
                async with session_factory() as session, session.begin():
                    for i, text in enumerate(fixture.corpus):
                        item = _make_item(text, f"corpus-{i}", _EPOCH)
                        session.add(item)
                        await session.flush()
                        await index.insert(session, item)
                    for pair in fixture.pairs:
                        item = _make_item(pair.existing, f"existing-{pair.id}", _EPOCH)
                        session.add(item)
                        await session.flush()
                        await index.insert(session, item)
                        existing_ids[pair.id] = item.id

            async with session_factory() as session:
                for pair in fixture.pairs:
                    snapshot = ItemSnapshot(
                        id=uuid4(),
                        slug=f"candidate-{pair.id}",
                        headline=pair.candidate.headline,
                        summary=pair.candidate.summary,
                        body=pair.candidate.body,
                        ingested_at=_EPOCH + timedelta(days=1),
                    )
                    candidates = await scorer.score(session, snapshot)
                    own = next(
                        (c for c in candidates if c.item_id == existing_ids[pair.id]), None
                    )
                    score = own.score if own else None
                    result = PairResult(
                        pair_id=pair.id,
                        expected=pair.expected,
                        actual=classifier.classify(score),
                        score=score,
                        top_is_pair=bool(candidates) and candidates[0].item_id == existing_ids[pair.id],
                    )
                    report.results.append(result)
                    logger.debug(
                        "Calibration pair %s: score=%s expected=%s actual=%s",
                        pair.id,
                        f"{score:.2f}" if score is not None else "N/A",
                        pair.expected.value,
                        result.actual.value,
                    )
        finally:
            await db_engine.dispose()

    logger.info(
        "Calibration: %d/%d pairs match thresholds %s",
        report.passed,
        len(report.results),
        thresholds.version,
    )
    return report
