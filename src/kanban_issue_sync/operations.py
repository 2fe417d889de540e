"""Operations, conflicts and pass results.

Each operation kind carries its own payload type, so a ``create_issue`` can
never be built with the fields of an ``update_card``. Operations are created by
the diff engine in ``pending`` state and only ever move forward:

    pending -> in_progress -> completed | failed
"""

from __future__ import annotations

import datetime as dt
from dataclasses import dataclass, field
from typing import Any, Literal

from .exceptions import ConflictAlreadyResolvedError, OperationStateError
from .models import IssueState, RepoRef
from .status import SyncStats
from .utils import new_id, utcnow

OperationKind = Literal["create_card", "update_card", "delete_card", "create_issue", "update_issue", "close_issue"]
OperationStatus = Literal["pending", "in_progress", "completed", "failed"]
ConflictKind = Literal["title_mismatch", "description_mismatch", "state_mismatch", "label_mismatch"]
ResolutionStrategy = Literal["use_local", "use_remote", "merge"]
Resolver = Literal["user", "automatic"]
PassOutcome = Literal["success", "partial", "failure"]

# Creates first so new issues/cards have identifiers before anything references them.
OPERATION_RANK: dict[OperationKind, int] = {
    "create_issue": 0,
    "create_card": 0,
    "update_issue": 1,
    "update_card": 1,
    "close_issue": 2,
    "delete_card": 2,
}


@dataclass(frozen=True)
class CreateIssuePayload:
    title: str
    body: str
    labels: tuple[str, ...] = ()
    assignee: str | None = None
    state: IssueState = "open"


@dataclass(frozen=True)
class UpdateIssuePayload:
    """Fields to change on an issue; ``None`` leaves a field untouched."""

    title: str | None = None
    body: str | None = None
    state: IssueState | None = None
    labels: tuple[str, ...] | None = None

    def as_fields(self) -> dict[str, Any]:
        fields: dict[str, Any] = {}
        if self.title is not None:
            fields["title"] = self.title
        if self.body is not None:
            fields["body"] = self.body
        if self.state is not None:
            fields["state"] = self.state
        if self.labels is not None:
            fields["labels"] = self.labels
        return fields


@dataclass(frozen=True)
class CloseIssuePayload:
    reason: str = "completed"


@dataclass(frozen=True)
class CreateCardPayload:
    column_id: str
    title: str
    description: str = ""
    labels: frozenset[str] = frozenset()
    assignee: str | None = None
    issue_number: int | None = None
    repo: RepoRef | None = None

    def card_fields(self) -> dict[str, Any]:
        return {
            "title": self.title,
            "description": self.description,
            "labels": set(self.labels),
            "assignee": self.assignee,
            "issue_number": self.issue_number,
            "repo": self.repo,
        }


@dataclass(frozen=True)
class UpdateCardPayload:
    """Fields to change on a card; ``None`` leaves a field untouched."""

    title: str | None = None
    description: str | None = None
    labels: frozenset[str] | None = None
    column_id: str | None = None
    issue_number: int | None = None
    repo: RepoRef | None = None

    def as_updates(self) -> dict[str, Any]:
        updates: dict[str, Any] = {}
        if self.title is not None:
            updates["title"] = self.title
        if self.description is not None:
            updates["description"] = self.description
        if self.labels is not None:
            updates["labels"] = set(self.labels)
        if self.column_id is not None:
            updates["column_id"] = self.column_id
        if self.issue_number is not None:
            updates["issue_number"] = self.issue_number
        if self.repo is not None:
            updates["repo"] = self.repo
        return updates


@dataclass(frozen=True)
class DeleteCardPayload:
    reason: str = "issue closed"


OperationPayload = (
    CreateIssuePayload
    | UpdateIssuePayload
    | CloseIssuePayload
    | CreateCardPayload
    | UpdateCardPayload
    | DeleteCardPayload
)

PAYLOAD_TYPES: dict[OperationKind, type] = {
    "create_issue": CreateIssuePayload,
    "update_issue": UpdateIssuePayload,
    "close_issue": CloseIssuePayload,
    "create_card": CreateCardPayload,
    "update_card": UpdateCardPayload,
    "delete_card": DeleteCardPayload,
}


@dataclass
class SyncOperation:
    """A single proposed mutation of the board or the tracker."""

    kind: OperationKind
    payload: OperationPayload
    card_id: str | None = None
    issue_number: int | None = None
    repo: RepoRef | None = None
    status: OperationStatus = "pending"
    error: str | None = None
    id: str = ""
    timestamp: dt.datetime = field(default_factory=utcnow)

    def __post_init__(self) -> None:
        expected = PAYLOAD_TYPES[self.kind]
        if not isinstance(self.payload, expected):
            msg = f"{self.kind} operation requires {expected.__name__}, got {type(self.payload).__name__}"
            raise TypeError(msg)
        if not self.id:
            self.id = new_id(self.kind)

    @property
    def finished(self) -> bool:
        return self.status in ("completed", "failed")

    def start(self) -> None:
        if self.status != "pending":
            msg = f"Operation {self.id} cannot start from status '{self.status}'"
            raise OperationStateError(msg)
        self.status = "in_progress"

    def complete(self) -> None:
        if self.status != "in_progress":
            msg = f"Operation {self.id} cannot complete from status '{self.status}'"
            raise OperationStateError(msg)
        self.status = "completed"

    def fail(self, message: str) -> None:
        if self.finished:
            msg = f"Operation {self.id} is already {self.status}"
            raise OperationStateError(msg)
        self.status = "failed"
        self.error = message


@dataclass(frozen=True)
class ConflictResolution:
    """Chosen outcome of a conflict."""

    strategy: ResolutionStrategy
    resolved_value: Any
    resolved_by: Resolver = "user"
    resolved_at: dt.datetime = field(default_factory=utcnow)


@dataclass
class SyncConflict:
    """A field that differs between a card and its issue with no safe side to pick."""

    id: str
    card_id: str
    issue_number: int
    kind: ConflictKind
    local_value: Any
    remote_value: Any
    repo: RepoRef | None = None
    timestamp: dt.datetime = field(default_factory=utcnow)
    resolution: ConflictResolution | None = None

    @property
    def resolved(self) -> bool:
        return self.resolution is not None

    def resolve(self, resolution: ConflictResolution) -> None:
        if self.resolution is not None:
            msg = f"Conflict {self.id} is already resolved"
            raise ConflictAlreadyResolvedError(msg)
        self.resolution = resolution

    def same_divergence(self, other: SyncConflict) -> bool:
        """True if ``other`` describes the same field with the same values on both sides."""
        return (
            self.id == other.id
            and self.local_value == other.local_value
            and self.remote_value == other.remote_value
        )


@dataclass
class SyncResult:
    """Outcome of a diff pass, updated in place as its operations execute."""

    success: bool
    operations: list[SyncOperation] = field(default_factory=list)
    conflicts: list[SyncConflict] = field(default_factory=list)
    stats: SyncStats = field(default_factory=SyncStats)
    error: str | None = None
    started_at: dt.datetime | None = None

    @property
    def failed_operations(self) -> list[SyncOperation]:
        return [op for op in self.operations if op.status == "failed"]

    @property
    def outcome(self) -> PassOutcome:
        if not self.success:
            return "failure"
        if self.conflicts or self.failed_operations:
            return "partial"
        return "success"
