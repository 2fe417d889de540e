"""
Custom exception classes for the board/issue synchronization engine.
"""

from __future__ import annotations

from typing import Literal

TrackerErrorKind = Literal["auth", "rate_limit", "not_found", "server", "network", "invalid"]

_RETRYABLE_KINDS: frozenset[str] = frozenset({"rate_limit", "server", "network"})


class SyncEngineError(Exception):
    """Base exception for sync engine errors."""


class TrackerError(SyncEngineError):
    """Raised when a call to the remote issue tracker fails."""

    kind: TrackerErrorKind
    status: int | None

    def __init__(self, message: str, *, kind: TrackerErrorKind, status: int | None = None) -> None:
        super().__init__(message)
        self.kind = kind
        self.status = status

    @property
    def retryable(self) -> bool:
        return self.kind in _RETRYABLE_KINDS


class ConfigValidationError(SyncEngineError):
    """Raised when a sync configuration or board document is malformed."""


class SyncInProgressError(SyncEngineError):
    """Raised when a pass is requested while another one is still active."""


class ConflictNotFoundError(SyncEngineError):
    """Raised when resolving a conflict id the engine does not know about."""


class ConflictAlreadyResolvedError(SyncEngineError):
    """Raised when resolving a conflict that already carries a resolution."""


class OperationStateError(SyncEngineError):
    """Raised on an invalid status transition of a sync operation."""
