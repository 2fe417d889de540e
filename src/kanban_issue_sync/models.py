"""Data models for the board and the remote issue tracker.

These models represent the normalized data exchanged between the caller's
board layer, the IssueTracker, and the sync engine. They are intentionally
simple and tracker-agnostic.
"""

from __future__ import annotations

import datetime as dt
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Literal

from .exceptions import ConfigValidationError

if TYPE_CHECKING:
    from collections.abc import Iterator

IssueState = Literal["open", "closed"]
ConflictStrategy = Literal["remote_wins", "local_wins", "manual"]

CONFLICT_STRATEGIES: tuple[ConflictStrategy, ...] = ("remote_wins", "local_wins", "manual")


@dataclass(frozen=True)
class RepoRef:
    """Reference to a remote repository ("owner/name")."""

    owner: str
    name: str

    @property
    def full_name(self) -> str:
        return f"{self.owner}/{self.name}"

    @classmethod
    def parse(cls, repo_path: str) -> RepoRef:
        """Parse an "owner/name" path.

        Raises:
            ConfigValidationError: If the path does not have exactly one slash
                or either part is empty
        """
        repo_path = repo_path.strip()
        parts = repo_path.split("/")
        if len(parts) != 2:  # noqa: PLR2004
            msg = f"Invalid repository path '{repo_path}'. Expected format: 'owner/repository'"
            raise ConfigValidationError(msg)
        owner, name = parts
        if not owner or not name:
            msg = f"Invalid repository path '{repo_path}'. Both owner and repository name must be non-empty"
            raise ConfigValidationError(msg)
        return cls(owner=owner, name=name)

    def __str__(self) -> str:
        return self.full_name


@dataclass(frozen=True)
class Label:
    """A label that can be applied to issues."""

    name: str
    color: str = ""  # Hex color without '#' prefix (e.g., "ff0000")
    description: str = ""


@dataclass
class Card:
    """A card on the local board.

    The engine never mutates cards directly; changes go through the caller's
    callbacks. ``updated_at`` is the last local modification and is compared
    against ``SyncConfig.last_sync`` to tell whether the local side changed.
    """

    id: str
    title: str
    description: str = ""
    labels: set[str] = field(default_factory=set)
    assignee: str | None = None
    issue_number: int | None = None
    repo: RepoRef | None = None
    updated_at: dt.datetime | None = None


@dataclass
class Column:
    """A board column holding an ordered list of cards."""

    id: str
    title: str
    color: str = ""
    cards: list[Card] = field(default_factory=list)


@dataclass
class Board:
    """The caller-owned board snapshot handed to one pass."""

    id: str
    name: str = ""
    columns: list[Column] = field(default_factory=list)

    def iter_cards(self) -> Iterator[tuple[Column, Card]]:
        """Yield (column, card) pairs in board order."""
        for column in self.columns:
            for card in column.cards:
                yield column, card

    def column_ids(self) -> set[str]:
        return {column.id for column in self.columns}


@dataclass(frozen=True)
class RemoteIssue:
    """An issue as observed on the remote tracker."""

    number: int
    title: str
    body: str | None
    state: IssueState
    labels: frozenset[str] = frozenset()
    assignee: str | None = None
    created_at: dt.datetime | None = None
    updated_at: dt.datetime | None = None
    repo: RepoRef | None = None
    is_pull_request: bool = False


@dataclass(frozen=True)
class ColumnMapping:
    """Declared correspondence between a board column and remote labels/state."""

    column_id: str
    column_title: str
    labels: tuple[str, ...] = ()
    issue_state: IssueState | None = None


@dataclass(frozen=True)
class SyncConfig:
    """Configuration for one board/repository pairing.

    Supplied by the caller and treated as immutable for the duration of a pass.
    In ``all_repos`` mode issues are read from every repository the token owns,
    and create/update operations need a per-card ``repo`` since there is no
    single default repository.
    """

    enabled: bool = True
    repository: RepoRef | None = None
    all_repos: bool = False
    column_mappings: tuple[ColumnMapping, ...] = ()
    auto_sync: bool = False
    sync_interval: int = 15  # minutes
    last_sync: dt.datetime | None = None
    conflict_resolution: ConflictStrategy = "manual"
    close_issues_for_removed_cards: bool = False
    delete_cards_for_closed_issues: bool = False
    retry_attempts: int = 2

    def mapping_for(self, column_id: str) -> ColumnMapping | None:
        for mapping in self.column_mappings:
            if mapping.column_id == column_id:
                return mapping
        return None

    def repo_for(self, card: Card) -> RepoRef | None:
        """Repository a card's issue lives in: the card's own, else the configured default."""
        if card.repo is not None:
            return card.repo
        if self.all_repos:
            return None
        return self.repository
