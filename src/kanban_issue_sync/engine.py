"""Sync engine that coordinates a board and a remote issue tracker.

The SyncEngine class is the caller-facing entry point. It:
1. Validates the sync configuration
2. Fetches the remote snapshot and runs the diff and conflict classification
3. Executes approved operations through the tracker and the card callbacks
4. Owns the status store and the registry of unresolved conflicts

Sync Flow
---------
A pass has two phases that callers may run separately or together:

Phase 1: Diff (``sync_board``)
    - Structural config validation (no remote calls, no status changes)
    - Fetch issues: every issue of the configured repository, or the open
      issues of every owned repository in all-repos mode
    - Pair cards with issues and propose operations (DiffEngine)
    - Turn both-sides divergences into conflicts and resolve them according
      to the configured strategy (ConflictClassifier)

Phase 2: Execute (``execute_operations``)
    - Apply operations in order through the OperationExecutor
    - Failed operations are recorded and skipped, the rest still run

``run`` performs both phases while holding the pass lock once.

State Machine
-------------
    idle -> diffing -> (conflicts_pending | executing) -> idle

A fetch failure during diffing is fatal to the pass: it is recorded as a
fatal ``api_error`` and the store returns to ``idle`` with ``success=False``.
Any other exception raised while diffing propagates, and the store still
returns to ``idle``. Execution always returns to ``idle`` (or
``conflicts_pending`` while unresolved conflicts remain), whatever the
individual operation outcomes.

The recorded last sync time only moves forward after a pass whose
operations all completed. A failed or cancelled write keeps the old anchor,
so the unsynced edit is still seen as a change next time.

Concurrency
-----------
One engine runs at most one pass at a time; a second call while a pass is
active raises SyncInProgressError instead of waiting. Callers syncing several
boards hold one engine per board/config pair (see SyncEngineRegistry).
``cancel`` stops execution between operations, never in the middle of one.
"""

from __future__ import annotations

import logging
import threading
import time
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from dataclasses import dataclass, field, replace
from typing import TYPE_CHECKING, Any

from .conflicts import ConflictClassifier
from .diff import DiffEngine
from .exceptions import ConflictNotFoundError, SyncInProgressError, TrackerError
from .executor import OperationExecutor, planned_stats
from .mapping import MappingResolver
from .models import CONFLICT_STRATEGIES
from .operations import SyncResult
from .status import SyncStatus, SyncStatusStore
from .utils import utcnow

if TYPE_CHECKING:
    from collections.abc import Sequence

    from .models import Board, RemoteIssue, SyncConfig
    from .operations import ConflictResolution, SyncConflict, SyncOperation
    from .protocols import CardCreator, CardDeleter, CardUpdater, IssueTracker
    from .status import SyncPhase

logger: logging.Logger = logging.getLogger(__name__)


@dataclass
class ValidationResult:
    """Outcome of validating a sync configuration."""

    valid: bool
    errors: list[str] = field(default_factory=list)


def check_sync_config(config: SyncConfig, board: Board | None = None) -> list[str]:
    """Return structural problems with ``config``; no remote calls are made."""
    errors: list[str] = []

    if not config.all_repos and config.repository is None:
        errors.append("Repository owner and name are required")

    if not config.column_mappings:
        errors.append("At least one column mapping is required")

    seen: set[str] = set()
    for mapping in config.column_mappings:
        if not mapping.column_id or not mapping.column_title:
            errors.append("Column ID and title are required for all mappings")
            continue
        if mapping.column_id in seen:
            errors.append(f"Column '{mapping.column_id}' is mapped more than once")
        seen.add(mapping.column_id)
        if mapping.issue_state not in (None, "open", "closed"):
            errors.append(f"Invalid issue state '{mapping.issue_state}' for column '{mapping.column_id}'")
        if board is not None and mapping.column_id not in board.column_ids():
            errors.append(f"Column mapping references unknown column '{mapping.column_id}'")

    if config.conflict_resolution not in CONFLICT_STRATEGIES:
        errors.append(f"Unknown conflict resolution strategy '{config.conflict_resolution}'")

    if config.auto_sync and config.sync_interval <= 0:
        errors.append("Sync interval must be positive when auto sync is enabled")

    if config.retry_attempts < 0:
        errors.append("Retry attempts must not be negative")

    return errors


class SyncEngine:
    """Reconciles one board with the remote tracker.

    Usage:
        tracker = GitHubTracker(get_client(token))
        engine = SyncEngine(tracker)
        result = engine.sync_board(board, config)
        engine.execute_operations(result.operations, board, config, update_card, create_card)

    The engine keeps no copy of the board; all status lives in its
    SyncStatusStore and is read through ``get_sync_status``.
    """

    _tracker: IssueTracker
    _status: SyncStatusStore
    _executor: OperationExecutor

    def __init__(
        self,
        tracker: IssueTracker,
        *,
        backoff_seconds: float = 1.0,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        """Initialize the engine.

        Args:
            tracker: Remote issue tracker to sync against
            backoff_seconds: Base delay between retries of idempotent issue writes
            sleep: Sleep function used for retry backoff
        """
        self._tracker = tracker
        self._status = SyncStatusStore()
        self._executor = OperationExecutor(tracker, self._status, backoff_seconds=backoff_seconds, sleep=sleep)
        self._pass_lock = threading.Lock()
        self._cancel_event = threading.Event()
        self._conflicts_lock = threading.Lock()
        self._conflicts: dict[str, SyncConflict] = {}

    # -------------------------------------------------------------------------
    # Main Entry Points
    # -------------------------------------------------------------------------

    def sync_board(self, board: Board, config: SyncConfig) -> SyncResult:
        """Diff the board against the tracker and classify conflicts.

        Nothing is executed. Disabled or structurally invalid configurations
        return ``success=False`` without touching the status store.

        Raises:
            SyncInProgressError: If another pass of this engine is active
        """
        rejected = self._reject_config(board, config)
        if rejected is not None:
            return rejected
        with self._exclusive_pass():
            return self._diff_pass(board, config)

    def execute_operations(
        self,
        operations: Sequence[SyncOperation],
        board: Board,
        config: SyncConfig,
        apply_card_update: CardUpdater,
        apply_card_create: CardCreator,
        apply_card_delete: CardDeleter | None = None,
    ) -> None:
        """Apply operations in order, recording failures without stopping.

        Raises:
            SyncInProgressError: If another pass of this engine is active
        """
        with self._exclusive_pass():
            self._execute_pass(operations, board, config, apply_card_update, apply_card_create, apply_card_delete)

    def run(
        self,
        board: Board,
        config: SyncConfig,
        apply_card_update: CardUpdater,
        apply_card_create: CardCreator,
        apply_card_delete: CardDeleter | None = None,
    ) -> SyncResult:
        """Diff and execute in one pass; the returned operations carry their final status."""
        rejected = self._reject_config(board, config)
        if rejected is not None:
            return rejected
        with self._exclusive_pass():
            result = self._diff_pass(board, config)
            if result.success and result.operations:
                self._execute_pass(
                    result.operations, board, config, apply_card_update, apply_card_create, apply_card_delete
                )
            return result

    def get_sync_status(self) -> SyncStatus:
        return self._status.snapshot()

    def pending_conflicts(self) -> list[SyncConflict]:
        """Unresolved conflicts from the latest diff."""
        with self._conflicts_lock:
            return [c for c in self._conflicts.values() if c.resolution is None]

    def resolve_conflict(self, conflict_id: str, resolution: ConflictResolution) -> None:
        """Record how a conflict should be resolved.

        This only records intent. The next ``sync_board`` folds the resolution
        into operations if the same divergence is still present.

        Raises:
            ConflictNotFoundError: If the id is not a conflict from the latest diff
            ConflictAlreadyResolvedError: If the conflict already has a resolution
        """
        with self._conflicts_lock:
            conflict = self._conflicts.get(conflict_id)
            if conflict is None:
                msg = f"Unknown conflict '{conflict_id}'"
                raise ConflictNotFoundError(msg)
            conflict.resolve(resolution)
        self._executor.count_resolved_conflicts()
        logger.info(f"Conflict {conflict_id} resolved by {resolution.resolved_by} ({resolution.strategy})")

    def clear_errors(self) -> None:
        self._status.clear_errors()

    def start_session(self) -> None:
        """Begin a fresh reporting session: statistics restart from zero."""
        self._status.reset_stats()

    def cancel(self) -> None:
        """Stop the active execution before its next operation."""
        logger.info("Cancellation requested")
        self._cancel_event.set()

    def validate_sync_config(self, config: SyncConfig, board: Board | None = None) -> ValidationResult:
        """Check mapping completeness and, for a single repository, that it is reachable."""
        errors = check_sync_config(config, board)

        if not errors and not config.all_repos and config.repository is not None:
            try:
                self._tracker.get_repository(config.repository)
            except TrackerError as e:
                errors.append(f"Cannot access repository {config.repository}: {e}")
            else:
                self._warn_missing_labels(config)

        return ValidationResult(valid=not errors, errors=errors)

    # -------------------------------------------------------------------------
    # Pass internals
    # -------------------------------------------------------------------------

    @contextmanager
    def _exclusive_pass(self) -> Iterator[None]:
        if not self._pass_lock.acquire(blocking=False):
            msg = "A sync pass is already active for this board"
            raise SyncInProgressError(msg)
        self._cancel_event.clear()
        try:
            yield
        finally:
            self._pass_lock.release()

    def _reject_config(self, board: Board, config: SyncConfig) -> SyncResult | None:
        if not config.enabled:
            return SyncResult(success=False, error="Sync is disabled")
        errors = check_sync_config(config, board)
        if errors:
            logger.error(f"Invalid sync configuration: {'; '.join(errors)}")
            return SyncResult(success=False, error="; ".join(errors))
        return None

    def _diff_pass(self, board: Board, config: SyncConfig) -> SyncResult:
        started_at = utcnow()
        final_phase: SyncPhase = "idle"
        self._status.begin("diffing")
        try:
            try:
                issues = self._fetch_issues(config)
            except TrackerError as e:
                message = f"Failed to fetch remote issues: {e}"
                self._executor.record_fatal_error(message)
                return SyncResult(success=False, error=message, started_at=started_at)
            except Exception as e:
                self._executor.record_fatal_error(f"Failed to fetch remote issues: {type(e).__name__}: {e}")
                raise

            if config.last_sync is None:
                config = replace(config, last_sync=self._status.snapshot().last_sync)
            diff_engine = DiffEngine(config, MappingResolver(config.column_mappings))
            diff = diff_engine.diff(board, issues)
            with self._conflicts_lock:
                recorded = dict(self._conflicts)
            classification = ConflictClassifier(diff_engine, config.conflict_resolution, recorded).classify(diff)
            operations = diff.build_operations()

            stats = planned_stats(operations)
            stats.conflicts_resolved = len(classification.auto_resolved)
            self._executor.count_resolved_conflicts(len(classification.auto_resolved))

            with self._conflicts_lock:
                self._conflicts = {c.id: c for c in classification.unresolved}

            if not operations and not classification.unresolved:
                self._status.mark_synced(utcnow(), config.sync_interval if config.auto_sync else None)
            if classification.unresolved:
                final_phase = "conflicts_pending"
        finally:
            self._status.finish(final_phase)

        logger.info(
            f"Diff of board proposed {len(operations)} operation(s), "
            f"{len(classification.unresolved)} unresolved conflict(s), "
            f"{len(classification.applied_from_user)} recorded resolution(s) applied"
        )
        return SyncResult(
            success=True,
            operations=operations,
            conflicts=classification.unresolved,
            stats=stats,
            started_at=started_at,
        )

    def _fetch_issues(self, config: SyncConfig) -> list[RemoteIssue]:
        if config.all_repos:
            issues: list[RemoteIssue] = []
            for repo in self._tracker.list_repositories():
                issues.extend(self._tracker.list_issues(repo, state="open"))
            return issues
        assert config.repository is not None  # guaranteed by check_sync_config
        return self._tracker.list_issues(config.repository, state="all")

    def _execute_pass(
        self,
        operations: Sequence[SyncOperation],
        board: Board,
        config: SyncConfig,
        apply_card_update: CardUpdater,
        apply_card_create: CardCreator,
        apply_card_delete: CardDeleter | None,
    ) -> None:
        self._status.begin("executing")
        try:
            self._executor.execute(
                operations,
                board,
                config,
                apply_card_update,
                apply_card_create,
                apply_card_delete,
                cancel_event=self._cancel_event,
            )
        finally:
            unsettled = sum(1 for op in operations if op.status != "completed")
            if unsettled:
                # Writes that did not land must still look changed on the next pass.
                logger.info(f"Last sync time kept: {unsettled} operation(s) did not complete")
            else:
                self._status.mark_synced(utcnow(), config.sync_interval if config.auto_sync else None)
            self._status.finish("conflicts_pending" if self.pending_conflicts() else "idle")
        failed = sum(1 for op in operations if op.status == "failed")
        logger.info(f"Executed {len(operations)} operation(s), {failed} failed")

    def _warn_missing_labels(self, config: SyncConfig) -> None:
        assert config.repository is not None
        try:
            existing = {label.name for label in self._tracker.list_labels(config.repository)}
        except TrackerError as e:
            logger.warning(f"Could not list labels of {config.repository}: {e}")
            return
        for mapping in config.column_mappings:
            missing = [label for label in mapping.labels if label not in existing]
            if missing:
                logger.warning(
                    f"Labels {', '.join(missing)} of column '{mapping.column_title}' do not exist in "
                    f"{config.repository} yet; they will be created on first use"
                )


class SyncEngineRegistry:
    """Hands out one engine per board/config identity."""

    def __init__(self, tracker: IssueTracker, **engine_options: Any) -> None:
        self._tracker = tracker
        self._engine_options = engine_options
        self._engines: dict[tuple[str, str], SyncEngine] = {}
        self._lock = threading.Lock()

    @staticmethod
    def key(board_id: str, config: SyncConfig) -> tuple[str, str]:
        target = "*" if config.all_repos or config.repository is None else config.repository.full_name
        return (board_id, target)

    def engine_for(self, board_id: str, config: SyncConfig) -> SyncEngine:
        key = self.key(board_id, config)
        with self._lock:
            engine = self._engines.get(key)
            if engine is None:
                engine = SyncEngine(self._tracker, **self._engine_options)
                self._engines[key] = engine
            return engine
