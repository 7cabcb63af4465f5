"""Enumerations for the newsmerge data model."""

from enum import Enum


class Resolution(str, Enum):
    """Resolution state of a ContentItem.

    UNRESOLVED is the only non-terminal state. Once an item leaves it, the
    value never changes again.
    """

    UNRESOLVED = "UNRESOLVED"
    NEW = "NEW"  # Canonical item of record, indexed
    DUPLICATE_AUTO = "DUPLICATE_AUTO"  # Score at or below threshold_duplicate
    DUPLICATE_SEMANTIC = "DUPLICATE_SEMANTIC"  # Resolver said same story, nothing new
    MERGED_UPDATE = "MERGED_UPDATE"  # Folded into the canonical item's updates

    @property
    def is_terminal(self) -> bool:
        return self is not Resolution.UNRESOLVED

    @property
    def is_folded(self) -> bool:
        """True when the item's content lives on under another canonical item."""
        return self in FOLDED_RESOLUTIONS


FOLDED_RESOLUTIONS = frozenset(
    {Resolution.DUPLICATE_AUTO, Resolution.DUPLICATE_SEMANTIC, Resolution.MERGED_UPDATE}
)


class Classification(str, Enum):
    """Outcome of the threshold classifier."""

    AUTO_NEW = "auto_new"
    AUTO_DUPLICATE = "auto_duplicate"
    AMBIGUOUS = "ambiguous"


class SemanticDecision(str, Enum):
    """Decisions the semantic resolver may return."""

    NEW = "NEW"
    DUPLICATE = "DUPLICATE"
    UPDATE = "UPDATE"


class SeverityChange(str, Enum):
    """How an update shifts the severity of the original story."""

    INCREASED = "increased"
    DECREASED = "decreased"
    UNCHANGED = "unchanged"


class ResolutionMethod(str, Enum):
    """How a terminal resolution was reached (audit trail)."""

    AUTOMATIC = "automatic"  # Threshold classifier alone
    SEMANTIC = "semantic"  # Resolver answered with a valid decision
    FALLBACK = "fallback"  # Resolver failed or returned an unusable payload
