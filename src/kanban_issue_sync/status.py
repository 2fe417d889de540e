"""Sync status store: the per-engine record of activity, errors and statistics.

A single engine instance owns one store. The engine drives the phase and
the sync times; counters and the error log are written only through the
operation executor. Readers may be any thread and always receive a deep
copy, so a reader never observes a half-updated composite.
"""

from __future__ import annotations

import copy
import datetime as dt
import logging
import threading
from dataclasses import dataclass, field
from typing import Literal

from .utils import new_id, utcnow

logger: logging.Logger = logging.getLogger(__name__)

SyncErrorKind = Literal["api_error", "conflict", "validation_error"]
SyncPhase = Literal["idle", "diffing", "conflicts_pending", "executing"]
StatName = Literal[
    "cards_created",
    "cards_updated",
    "cards_deleted",
    "issues_created",
    "issues_updated",
    "conflicts_resolved",
]


@dataclass
class SyncStats:
    """Counters accumulated across passes of one session."""

    cards_created: int = 0
    cards_updated: int = 0
    cards_deleted: int = 0
    issues_created: int = 0
    issues_updated: int = 0
    conflicts_resolved: int = 0

    def increment(self, name: StatName, amount: int = 1) -> None:
        setattr(self, name, getattr(self, name) + amount)


@dataclass
class SyncError:
    """An error recorded in the status log."""

    kind: SyncErrorKind
    message: str
    card_id: str | None = None
    issue_number: int | None = None
    fatal: bool = False
    id: str = field(default_factory=lambda: new_id("sync_error"))
    timestamp: dt.datetime = field(default_factory=utcnow)


@dataclass
class SyncStatus:
    """Snapshot of a store's state."""

    active: bool = False
    phase: SyncPhase = "idle"
    last_sync: dt.datetime | None = None
    next_sync: dt.datetime | None = None
    errors: list[SyncError] = field(default_factory=list)
    stats: SyncStats = field(default_factory=SyncStats)


class SyncStatusStore:
    """Lock-guarded owner of a SyncStatus."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._status = SyncStatus()

    def snapshot(self) -> SyncStatus:
        with self._lock:
            return copy.deepcopy(self._status)

    def begin(self, phase: SyncPhase) -> None:
        with self._lock:
            self._status.active = True
            self._status.phase = phase

    def finish(self, phase: SyncPhase = "idle") -> None:
        """Mark the pass inactive, leaving the store in ``phase``."""
        with self._lock:
            self._status.active = False
            self._status.phase = phase

    def mark_synced(self, when: dt.datetime, interval_minutes: int | None) -> None:
        with self._lock:
            self._status.last_sync = when
            self._status.next_sync = when + dt.timedelta(minutes=interval_minutes) if interval_minutes else None

    def record_error(self, error: SyncError) -> None:
        log = logger.error if error.fatal else logger.warning
        log(f"Sync {error.kind}: {error.message}")
        with self._lock:
            self._status.errors.append(error)

    def increment(self, name: StatName, amount: int = 1) -> None:
        with self._lock:
            self._status.stats.increment(name, amount)

    def clear_errors(self) -> None:
        with self._lock:
            self._status.errors.clear()

    def reset_stats(self) -> None:
        with self._lock:
            self._status.stats = SyncStats()
