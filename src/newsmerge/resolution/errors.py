"""Error taxonomy for the resolution engine."""

from __future__ import annotations

from uuid import UUID


class ResolutionError(Exception):
    """Base class for resolution engine errors."""


class CorpusIndexError(ResolutionError):
    """The corpus index is unavailable, corrupt, or was misused.

    Fatal for the batch. Recover with ``CorpusIndex.rebuild`` rather than
    patching entries one by one.
    """


class ResolutionWriteError(ResolutionError):
    """Applying a resolution failed and the transaction was rolled back."""

    def __init__(self, item_id: UUID, message: str) -> None:
        super().__init__(f"Failed to write resolution for {item_id}: {message}")
        self.item_id = item_id


class TerminalStateError(ResolutionError):
    """An item that already left UNRESOLVED was asked to resolve again."""

    def __init__(self, item_id: UUID, current: str) -> None:
        super().__init__(f"Item {item_id} is already resolved ({current})")
        self.item_id = item_id
        self.current = current
