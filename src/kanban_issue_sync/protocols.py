"""Protocols defining the contracts of the engine's collaborators.

The sync engine sits between two systems it does not own:

1. IssueTracker: the remote issue tracker (GitHub, via ``GitHubTracker``)
2. The local board layer, reached only through the card callbacks below

This separation allows:
- Testing the engine against in-memory trackers and recording callbacks
- Adding other trackers without touching the diff or execution logic
- Keeping board storage entirely in the caller's hands
"""

from __future__ import annotations

from collections.abc import Sequence
from typing import TYPE_CHECKING, Any, Protocol

if TYPE_CHECKING:
    from .models import Card, IssueState, Label, RemoteIssue, RepoRef


class IssueTracker(Protocol):
    """Protocol for reading and writing issues on the remote tracker.

    Every method may block on network I/O. Failures are raised as
    ``TrackerError`` carrying a status class (auth, rate_limit, not_found,
    server, network, invalid) so callers can tell retryable failures apart.
    """

    def list_issues(self, repo: RepoRef, *, state: str = "all") -> list[RemoteIssue]:
        """Return all issues of ``repo`` in ``state`` ("open", "closed" or "all").

        Implementations follow pagination until exhausted. Pull requests may be
        included and are flagged with ``is_pull_request``.
        """
        ...

    def list_labels(self, repo: RepoRef) -> list[Label]:
        """Return all labels defined in ``repo``."""
        ...

    def create_issue(
        self,
        repo: RepoRef,
        *,
        title: str,
        body: str,
        labels: Sequence[str],
        assignee: str | None = None,
    ) -> RemoteIssue:
        """Create an issue and return it as stored by the tracker."""
        ...

    def update_issue(
        self,
        repo: RepoRef,
        number: int,
        *,
        title: str | None = None,
        body: str | None = None,
        state: IssueState | None = None,
        labels: Sequence[str] | None = None,
    ) -> RemoteIssue:
        """Update the given fields of issue ``number``; ``None`` leaves a field untouched."""
        ...

    def get_repository(self, repo: RepoRef) -> RepoRef:
        """Check that ``repo`` is reachable with the current credentials."""
        ...

    def list_repositories(self) -> list[RepoRef]:
        """Return the repositories owned by the authenticated user."""
        ...


class CardUpdater(Protocol):
    """Applies field updates to an existing card (may block)."""

    def __call__(self, card_id: str, updates: dict[str, Any]) -> None: ...


class CardCreator(Protocol):
    """Creates a card in a column and returns it (may block)."""

    def __call__(self, column_id: str, fields: dict[str, Any]) -> Card: ...


class CardDeleter(Protocol):
    """Removes a card from the board (may block)."""

    def __call__(self, card_id: str) -> None: ...
