"""Three-tier threshold policy over the top BM25 score."""

from __future__ import annotations

from dataclasses import dataclass

from newsmerge.config import settings
from newsmerge.models.enums import Classification


@dataclass(frozen=True)
class Thresholds:
    """Versioned threshold pair.

    Both values are BM25 scores (negative, lower = more similar) and were
    calibrated empirically for the default field weights.
    """

    new: float = -80.0
    duplicate: float = -201.0
    version: str = "bm25-10-5-1/2025-10"

    def __post_init__(self) -> None:
        if self.duplicate >= self.new:
            msg = f"duplicate threshold ({self.duplicate}) must be below new threshold ({self.new})"
            raise ValueError(msg)

    @classmethod
    def from_settings(cls) -> Thresholds:
        return cls(
            new=settings.threshold_new,
            duplicate=settings.threshold_duplicate,
            version=settings.threshold_version,
        )


class ThresholdClassifier:
    """Maps the top similarity score to a classification.

    - no candidate          -> AUTO_NEW
    - score >= T_new         -> AUTO_NEW (clearly distinct story)
    - score <= T_dup         -> AUTO_DUPLICATE (same story, no check needed)
    - T_dup < score < T_new  -> AMBIGUOUS (ask the semantic resolver)
    """

    def __init__(self, thresholds: Thresholds | None = None) -> None:
        self._thresholds = thresholds or Thresholds.from_settings()

    @property
    def thresholds(self) -> Thresholds:
        return self._thresholds

    def classify(self, score: float | None) -> Classification:
        if score is None:
            return Classification.AUTO_NEW
        if score >= self._thresholds.new:
            return Classification.AUTO_NEW
        if score <= self._thresholds.duplicate:
            return Classification.AUTO_DUPLICATE
        return Classification.AMBIGUOUS
