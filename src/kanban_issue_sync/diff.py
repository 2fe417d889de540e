"""Diff engine: pair cards with issues and propose operations.

Cards are paired with issues by their explicit link (issue number, plus
repository in all-repositories mode), else by the card marker embedded in the
issue body. For every pair the engine compares title, description, state and
labels. Which side gets written depends on what changed since ``last_sync``:

    local only   -> update_issue / close_issue
    remote only  -> update_card
    both, neither, or no last_sync -> handed to the conflict classifier

Values are always compared first, so a pass over an already consistent board
proposes nothing no matter how the timestamps look.
"""

from __future__ import annotations

import datetime as dt
import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from .issue_builder import build_issue_body, split_issue_body
from .operations import (
    OPERATION_RANK,
    CloseIssuePayload,
    CreateCardPayload,
    CreateIssuePayload,
    DeleteCardPayload,
    SyncOperation,
    UpdateCardPayload,
    UpdateIssuePayload,
)

if TYPE_CHECKING:
    from collections.abc import Iterable, Sequence

    from .mapping import MappingResolver
    from .models import Board, Card, Column, IssueState, RemoteIssue, RepoRef, SyncConfig
    from .operations import ConflictKind

logger: logging.Logger = logging.getLogger(__name__)

IssueKey = tuple[str | None, int]


def _issue_key(repo: RepoRef | None, number: int) -> IssueKey:
    return (repo.full_name if repo else None, number)


def _as_utc(timestamp: dt.datetime) -> dt.datetime:
    return timestamp if timestamp.tzinfo else timestamp.replace(tzinfo=dt.UTC)


def changed_since(timestamp: dt.datetime | None, last_sync: dt.datetime) -> bool:
    """Whether a side changed after ``last_sync``; an unknown timestamp counts as changed."""
    if timestamp is None:
        return True
    return _as_utc(timestamp) > _as_utc(last_sync)


@dataclass
class FieldDivergence:
    """One field whose local and remote values differ."""

    kind: ConflictKind
    local_value: Any
    remote_value: Any


@dataclass
class PairPlan:
    """A paired card and issue together with the writes proposed for them."""

    column: Column
    card: Card
    issue: RemoteIssue
    has_marker: bool = False
    card_updates: dict[str, Any] = field(default_factory=dict)
    issue_updates: dict[str, Any] = field(default_factory=dict)
    close_issue: bool = False
    delete_card: bool = False
    divergences: list[FieldDivergence] = field(default_factory=list)


@dataclass
class DiffResult:
    """Raw output of one diff: pair plans, creations and orphan closes."""

    plans: list[PairPlan] = field(default_factory=list)
    creations: list[SyncOperation] = field(default_factory=list)
    orphan_closes: list[SyncOperation] = field(default_factory=list)
    unmatched_cards: list[Card] = field(default_factory=list)
    unmatched_issues: list[RemoteIssue] = field(default_factory=list)

    @property
    def divergent_plans(self) -> list[PairPlan]:
        return [plan for plan in self.plans if plan.divergences]

    def build_operations(self) -> list[SyncOperation]:
        """Materialize all proposals as operations: creates, then updates, then closes/deletes."""
        operations: list[SyncOperation] = list(self.creations)
        for plan in self.plans:
            operations.extend(_plan_operations(plan))
        operations.extend(self.orphan_closes)
        # sorted() is stable, so board order is kept within a rank.
        return sorted(operations, key=lambda op: OPERATION_RANK[op.kind])


def _plan_operations(plan: PairPlan) -> list[SyncOperation]:
    card, issue = plan.card, plan.issue
    operations: list[SyncOperation] = []
    if plan.delete_card:
        operations.append(
            SyncOperation(
                kind="delete_card",
                payload=DeleteCardPayload(reason=f"issue #{issue.number} closed"),
                card_id=card.id,
                issue_number=issue.number,
                repo=issue.repo,
            )
        )
        return operations
    if plan.card_updates:
        operations.append(
            SyncOperation(
                kind="update_card",
                payload=UpdateCardPayload(**plan.card_updates),
                card_id=card.id,
                issue_number=issue.number,
                repo=issue.repo,
            )
        )
    if plan.issue_updates:
        operations.append(
            SyncOperation(
                kind="update_issue",
                payload=UpdateIssuePayload(**plan.issue_updates),
                card_id=card.id,
                issue_number=issue.number,
                repo=issue.repo,
            )
        )
    if plan.close_issue and issue.state != "closed":
        operations.append(
            SyncOperation(
                kind="close_issue",
                payload=CloseIssuePayload(),
                card_id=card.id,
                issue_number=issue.number,
                repo=issue.repo,
            )
        )
    return operations


class DiffEngine:
    """Compares a board snapshot with a snapshot of remote issues."""

    def __init__(self, config: SyncConfig, resolver: MappingResolver) -> None:
        self.config = config
        self.resolver = resolver

    def diff(self, board: Board, issues: Iterable[RemoteIssue]) -> DiffResult:
        result = DiffResult()
        issues_by_key: dict[IssueKey, RemoteIssue] = {}
        issues_by_marker: dict[str, RemoteIssue] = {}
        for issue in issues:
            if issue.is_pull_request:
                continue
            issues_by_key[_issue_key(self._issue_repo(issue), issue.number)] = issue
            _, marked_card = split_issue_body(issue.body)
            if marked_card:
                issues_by_marker.setdefault(marked_card, issue)

        card_ids = {card.id for _, card in board.iter_cards()}
        claimed: set[IssueKey] = set()

        for column, card in board.iter_cards():
            issue = self._linked_issue(card, issues_by_key, issues_by_marker, claimed)
            if issue is None:
                if card.issue_number is None:
                    self._propose_issue_creation(result, column, card)
                else:
                    logger.debug(f"Card {card.id} links issue #{card.issue_number}, which was not fetched")
                result.unmatched_cards.append(card)
                continue
            claimed.add(_issue_key(self._issue_repo(issue), issue.number))
            _, marked_card = split_issue_body(issue.body)
            plan = PairPlan(column=column, card=card, issue=issue, has_marker=marked_card is not None)
            if card.issue_number is None:
                # Paired through the body marker only: store the missing link.
                plan.card_updates["issue_number"] = issue.number
                if self.config.all_repos and issue.repo is not None:
                    plan.card_updates["repo"] = issue.repo
            self._compare_pair(plan)
            result.plans.append(plan)

        for key, issue in issues_by_key.items():
            if key in claimed:
                continue
            _, marked_card = split_issue_body(issue.body)
            if marked_card and marked_card not in card_ids:
                self._handle_removed_card(result, issue, marked_card)
            else:
                self._propose_card_creation(result, issue)
            result.unmatched_issues.append(issue)

        return result

    # -------------------------------------------------------------------------
    # Pairing
    # -------------------------------------------------------------------------

    def _issue_repo(self, issue: RemoteIssue) -> RepoRef | None:
        return issue.repo if issue.repo is not None else self.config.repository

    def _linked_issue(
        self,
        card: Card,
        issues_by_key: dict[IssueKey, RemoteIssue],
        issues_by_marker: dict[str, RemoteIssue],
        claimed: set[IssueKey],
    ) -> RemoteIssue | None:
        if card.issue_number is not None:
            key = _issue_key(self.config.repo_for(card), card.issue_number)
            if key in claimed:
                logger.warning(f"Issue #{card.issue_number} is linked from more than one card; ignoring card {card.id}")
                return None
            return issues_by_key.get(key)
        issue = issues_by_marker.get(card.id)
        if issue is None or _issue_key(self._issue_repo(issue), issue.number) in claimed:
            return None
        return issue

    # -------------------------------------------------------------------------
    # Creation and removal
    # -------------------------------------------------------------------------

    def _propose_issue_creation(self, result: DiffResult, column: Column, card: Card) -> None:
        mapping = self.resolver.mapping_for(column.id)
        if mapping is None:
            logger.debug(f"Card {card.id} is in unmapped column '{column.title}'; not creating an issue")
            return
        repo = self.config.repo_for(card)
        if repo is None:
            logger.warning(f"Card {card.id} has no repository reference; cannot create an issue in all-repos mode")
            return
        labels = self.resolver.remote_labels_for(column.id, card.labels)
        result.creations.append(
            SyncOperation(
                kind="create_issue",
                payload=CreateIssuePayload(
                    title=card.title,
                    body=build_issue_body(card.description, card.id),
                    labels=tuple(sorted(labels)),
                    assignee=card.assignee,
                    state=mapping.issue_state or "open",
                ),
                card_id=card.id,
                repo=repo,
            )
        )

    def _propose_card_creation(self, result: DiffResult, issue: RemoteIssue) -> None:
        column_id = self.resolver.resolve_column(issue.labels, issue.state)
        if column_id is None:
            logger.debug(f"Issue #{issue.number} matches no column mapping")
            return
        if issue.state == "closed" and self.resolver.state_for_column(column_id) != "closed":
            # Closed issues are only imported into columns meant for closed work.
            return
        description, _ = split_issue_body(issue.body)
        result.creations.append(
            SyncOperation(
                kind="create_card",
                payload=CreateCardPayload(
                    column_id=column_id,
                    title=issue.title,
                    description=description,
                    labels=self.resolver.free_labels(issue.labels),
                    assignee=issue.assignee,
                    issue_number=issue.number,
                    repo=issue.repo if self.config.all_repos else None,
                ),
                issue_number=issue.number,
                repo=self._issue_repo(issue),
            )
        )

    def _handle_removed_card(self, result: DiffResult, issue: RemoteIssue, card_id: str) -> None:
        """An issue created from a card that is no longer on the board."""
        if issue.state != "open" or not self.config.close_issues_for_removed_cards:
            return
        logger.info(f"Card {card_id} was removed; proposing to close issue #{issue.number}")
        result.orphan_closes.append(
            SyncOperation(
                kind="close_issue",
                payload=CloseIssuePayload(reason="card removed"),
                card_id=card_id,
                issue_number=issue.number,
                repo=self._issue_repo(issue),
            )
        )

    # -------------------------------------------------------------------------
    # Comparison
    # -------------------------------------------------------------------------

    def _compare_pair(self, plan: PairPlan) -> None:
        card, issue, column = plan.card, plan.issue, plan.column
        if (
            self.config.delete_cards_for_closed_issues
            and issue.state == "closed"
            and self.resolver.state_for_column(column.id) != "closed"
        ):
            plan.delete_card = True
            plan.card_updates.clear()
            return

        plan.divergences = self.divergences(plan)
        if not plan.divergences:
            return

        last_sync = self.config.last_sync
        if last_sync is None:
            # First sync: no basis to pick a side.
            return
        local_changed = changed_since(card.updated_at, last_sync)
        remote_changed = changed_since(issue.updated_at, last_sync)
        if local_changed and not remote_changed:
            for divergence in plan.divergences:
                self.push_to_issue(plan, divergence.kind, divergence.local_value)
            plan.divergences = []
        elif remote_changed and not local_changed:
            for divergence in plan.divergences:
                self.push_to_card(plan, divergence.kind, divergence.remote_value)
            plan.divergences = []

    def divergences(self, plan: PairPlan) -> list[FieldDivergence]:
        """Every field on which the card and its issue disagree."""
        card, issue, column = plan.card, plan.issue, plan.column
        found: list[FieldDivergence] = []

        if card.title != issue.title:
            found.append(FieldDivergence("title_mismatch", card.title, issue.title))

        description, _ = split_issue_body(issue.body)
        if card.description != description:
            found.append(FieldDivergence("description_mismatch", card.description, description))

        expected_state = self.resolver.state_for_column(column.id)
        if expected_state is not None and expected_state != issue.state:
            found.append(FieldDivergence("state_mismatch", expected_state, issue.state))

        local_labels = self._expected_labels(column, card, issue)
        if local_labels != issue.labels:
            found.append(FieldDivergence("label_mismatch", tuple(sorted(local_labels)), tuple(sorted(issue.labels))))

        return found

    def _expected_labels(self, column: Column, card: Card, issue: RemoteIssue) -> frozenset[str]:
        if self.resolver.is_mapped(column.id):
            return self.resolver.remote_labels_for(column.id, card.labels)
        # Unmapped column: the card has no say over column labels.
        return self.resolver.free_labels(card.labels) | (issue.labels & self.resolver.vocabulary)

    # -------------------------------------------------------------------------
    # Writing a chosen value to one side
    # -------------------------------------------------------------------------

    def push_to_issue(self, plan: PairPlan, kind: ConflictKind, value: Any) -> None:
        """Propose writing ``value`` for field ``kind`` to the remote issue."""
        if kind == "title_mismatch":
            plan.issue_updates["title"] = value
        elif kind == "description_mismatch":
            plan.issue_updates["body"] = build_issue_body(value, plan.card.id) if plan.has_marker else value
        elif kind == "state_mismatch":
            self._push_state_to_issue(plan, value)
        elif kind == "label_mismatch":
            plan.issue_updates["labels"] = tuple(sorted(value))

    def _push_state_to_issue(self, plan: PairPlan, state: IssueState) -> None:
        if state == "closed":
            plan.close_issue = True
        else:
            plan.close_issue = False
            plan.issue_updates["state"] = "open"

    def push_to_card(self, plan: PairPlan, kind: ConflictKind, value: Any) -> None:
        """Propose writing ``value`` for field ``kind`` to the local card."""
        if kind == "title_mismatch":
            plan.card_updates["title"] = value
        elif kind == "description_mismatch":
            plan.card_updates["description"] = value
        elif kind == "state_mismatch":
            self._move_card(plan, self.resolver.column_for_state(plan.issue.labels, value))
        elif kind == "label_mismatch":
            labels: Sequence[str] = value
            plan.card_updates["labels"] = self.resolver.free_labels(labels)
            if self.resolver.is_mapped(plan.column.id):
                self._move_card(plan, self.resolver.resolve_column(labels, plan.issue.state))

    def _move_card(self, plan: PairPlan, column_id: str | None) -> None:
        if column_id is not None and column_id != plan.column.id:
            plan.card_updates["column_id"] = column_id
