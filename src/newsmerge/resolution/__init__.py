"""Content resolution: scoring, classification and durable merging of items.

The engine and writer live in ``newsmerge.resolution.engine`` and
``newsmerge.resolution.writer``; they depend on ``newsmerge.inference`` and
are not re-exported here.
"""

from newsmerge.resolution.corpus_index import CorpusIndex, FieldWeights, IndexedCandidate
from newsmerge.resolution.errors import (
    CorpusIndexError,
    ResolutionError,
    ResolutionWriteError,
    TerminalStateError,
)
from newsmerge.resolution.outcome import ALGORITHM_VERSION, ItemSnapshot, ResolutionOutcome
from newsmerge.resolution.scoring import (
    RelevanceScorer,
    ScoredCandidate,
    build_match_query,
    extract_query_terms,
)
from newsmerge.resolution.thresholds import ThresholdClassifier, Thresholds

__all__ = [
    "ALGORITHM_VERSION",
    "CorpusIndex",
    "CorpusIndexError",
    "FieldWeights",
    "IndexedCandidate",
    "ItemSnapshot",
    "RelevanceScorer",
    "ResolutionError",
    "ResolutionOutcome",
    "ResolutionWriteError",
    "ScoredCandidate",
    "TerminalStateError",
    "ThresholdClassifier",
    "Thresholds",
    "build_match_query",
    "extract_query_terms",
]
