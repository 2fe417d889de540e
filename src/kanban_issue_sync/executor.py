"""Operation executor: apply proposed operations one at a time.

Operations run strictly in list order and each one is awaited to completion
before the next starts. A failed operation is marked ``failed``, logged in the
status store and skipped; the remaining operations still run.

Only ``update_issue`` and ``close_issue`` are ever retried, and only for
retryable tracker failures: both are plain field writes that can safely be
repeated. Issue creation and all card callbacks run exactly once.
"""

from __future__ import annotations

import logging
import threading
import time
from collections.abc import Callable
from typing import TYPE_CHECKING, Any

from .exceptions import SyncEngineError, TrackerError
from .operations import (
    CloseIssuePayload,
    CreateCardPayload,
    CreateIssuePayload,
    DeleteCardPayload,
    SyncOperation,
    UpdateCardPayload,
    UpdateIssuePayload,
)
from .status import StatName, SyncError, SyncStats, SyncStatusStore

if TYPE_CHECKING:
    from collections.abc import Sequence

    from .models import Board, RepoRef, SyncConfig
    from .operations import OperationKind
    from .protocols import CardCreator, CardDeleter, CardUpdater, IssueTracker

logger: logging.Logger = logging.getLogger(__name__)

STAT_FOR_KIND: dict[OperationKind, StatName] = {
    "create_card": "cards_created",
    "update_card": "cards_updated",
    "delete_card": "cards_deleted",
    "create_issue": "issues_created",
    "update_issue": "issues_updated",
    "close_issue": "issues_updated",
}


def planned_stats(operations: Sequence[SyncOperation]) -> SyncStats:
    """Counters the given operations would produce if they all succeed."""
    stats = SyncStats()
    for operation in operations:
        stats.increment(STAT_FOR_KIND[operation.kind])
    return stats


class OperationExecutor:
    """Applies operations against the tracker and the caller's card callbacks."""

    def __init__(
        self,
        tracker: IssueTracker,
        status: SyncStatusStore,
        *,
        backoff_seconds: float = 1.0,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.tracker = tracker
        self.status = status
        self.backoff_seconds = backoff_seconds
        self._sleep = sleep

    def execute(
        self,
        operations: Sequence[SyncOperation],
        board: Board,
        config: SyncConfig,
        apply_card_update: CardUpdater,
        apply_card_create: CardCreator,
        apply_card_delete: CardDeleter | None = None,
        cancel_event: threading.Event | None = None,
    ) -> None:
        column_ids = board.column_ids()
        for index, operation in enumerate(operations):
            if cancel_event is not None and cancel_event.is_set():
                logger.info(f"Sync cancelled; leaving {len(operations) - index} operation(s) pending")
                return
            if operation.finished:
                logger.debug(f"Skipping operation {operation.id}, already {operation.status}")
                continue

            operation.start()
            try:
                self._dispatch(operation, column_ids, config, apply_card_update, apply_card_create, apply_card_delete)
            except TrackerError as e:
                self._fail(operation, str(e))
            except Exception as e:  # noqa: BLE001 - callback failures are recorded per operation
                self._fail(operation, f"{type(e).__name__}: {e}")
            else:
                operation.complete()
                self.status.increment(STAT_FOR_KIND[operation.kind])
                logger.debug(f"Completed {operation.kind} ({operation.id})")

    def count_resolved_conflicts(self, amount: int = 1) -> None:
        """Add conflicts resolved outside of execution to the session counters."""
        if amount:
            self.status.increment("conflicts_resolved", amount)

    def record_fatal_error(self, message: str) -> None:
        self.status.record_error(SyncError(kind="api_error", message=message, fatal=True))

    def _fail(self, operation: SyncOperation, message: str) -> None:
        operation.fail(message)
        self.status.record_error(
            SyncError(
                kind="api_error",
                message=f"{operation.kind} failed: {message}",
                card_id=operation.card_id,
                issue_number=operation.issue_number,
            )
        )

    def _dispatch(
        self,
        operation: SyncOperation,
        column_ids: set[str],
        config: SyncConfig,
        apply_card_update: CardUpdater,
        apply_card_create: CardCreator,
        apply_card_delete: CardDeleter | None,
    ) -> None:
        payload = operation.payload
        if isinstance(payload, CreateIssuePayload):
            self._create_issue(operation, payload, config, apply_card_update)
        elif isinstance(payload, UpdateIssuePayload):
            self._write_issue(operation, config, **payload.as_fields())
        elif isinstance(payload, CloseIssuePayload):
            self._write_issue(operation, config, state="closed")
        elif isinstance(payload, CreateCardPayload):
            if payload.column_id not in column_ids:
                msg = f"Column '{payload.column_id}' does not exist on the board"
                raise SyncEngineError(msg)
            card = apply_card_create(payload.column_id, payload.card_fields())
            operation.card_id = card.id
        elif isinstance(payload, UpdateCardPayload):
            if payload.column_id is not None and payload.column_id not in column_ids:
                msg = f"Column '{payload.column_id}' does not exist on the board"
                raise SyncEngineError(msg)
            apply_card_update(self._card_id(operation), payload.as_updates())
        elif isinstance(payload, DeleteCardPayload):
            if apply_card_delete is None:
                msg = "No card delete callback was supplied"
                raise SyncEngineError(msg)
            apply_card_delete(self._card_id(operation))

    @staticmethod
    def _card_id(operation: SyncOperation) -> str:
        if operation.card_id is None:
            msg = f"{operation.kind} operation has no card id"
            raise SyncEngineError(msg)
        return operation.card_id

    @staticmethod
    def _repo(operation: SyncOperation, config: SyncConfig) -> RepoRef:
        repo = operation.repo or config.repository
        if repo is None:
            msg = f"{operation.kind} operation has no repository and no default is configured"
            raise SyncEngineError(msg)
        return repo

    def _create_issue(
        self,
        operation: SyncOperation,
        payload: CreateIssuePayload,
        config: SyncConfig,
        apply_card_update: CardUpdater,
    ) -> None:
        repo = self._repo(operation, config)
        issue = self.tracker.create_issue(
            repo,
            title=payload.title,
            body=payload.body,
            labels=payload.labels,
            assignee=payload.assignee,
        )
        operation.issue_number = issue.number

        link: dict[str, Any] = {"issue_number": issue.number}
        if config.all_repos:
            link["repo"] = repo
        if operation.card_id is not None:
            try:
                apply_card_update(operation.card_id, link)
            except Exception as e:
                msg = f"issue {repo}#{issue.number} was created but linking card {operation.card_id} failed: {e}"
                raise SyncEngineError(msg) from e

        if payload.state == "closed":
            self._with_retries(operation, lambda: self.tracker.update_issue(repo, issue.number, state="closed"), config)

    def _write_issue(self, operation: SyncOperation, config: SyncConfig, **fields: Any) -> None:
        repo = self._repo(operation, config)
        if operation.issue_number is None:
            msg = f"{operation.kind} operation has no issue number"
            raise SyncEngineError(msg)
        number = operation.issue_number
        self._with_retries(operation, lambda: self.tracker.update_issue(repo, number, **fields), config)

    def _with_retries(self, operation: SyncOperation, call: Callable[[], object], config: SyncConfig) -> None:
        attempt = 0
        while True:
            try:
                call()
            except TrackerError as e:
                if not e.retryable or attempt >= config.retry_attempts:
                    raise
                delay = self.backoff_seconds * (2**attempt)
                attempt += 1
                logger.warning(
                    f"{operation.kind} for issue #{operation.issue_number} failed ({e.kind}); "
                    f"retry {attempt}/{config.retry_attempts} in {delay:.1f}s"
                )
                self._sleep(delay)
            else:
                return
