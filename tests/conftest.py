"""
Pytest configuration and fixtures.

- Integration tests fail on any WARNING or ERROR logged by the sync engine.
- Unit tests get an in-memory issue tracker and board builders.
"""

from __future__ import annotations

import datetime as dt
import logging
from typing import TYPE_CHECKING, Any

from typing_extensions import override

import pytest

from kanban_issue_sync.exceptions import TrackerError
from kanban_issue_sync.models import Board, Card, Column, ColumnMapping, Label, RemoteIssue, RepoRef, SyncConfig

if TYPE_CHECKING:
    from collections.abc import Callable, Generator, Sequence

REPO = RepoRef("acme", "widgets")
T0 = dt.datetime(2024, 1, 10, 12, 0, tzinfo=dt.UTC)

# Store warning records during test execution
_integration_test_warnings: dict[str, list[logging.LogRecord]] = {}


class IntegrationTestWarningHandler(logging.Handler):
    """Collects WARNING and above records emitted during one integration test."""

    test_nodeid: str

    def __init__(self, test_nodeid: str) -> None:
        super().__init__()
        self.test_nodeid = test_nodeid
        self.setLevel(logging.WARNING)

    @override
    def emit(self, record: logging.LogRecord) -> None:
        _integration_test_warnings.setdefault(self.test_nodeid, []).append(record)


@pytest.fixture(autouse=True)
def fail_on_log_warnings_for_integration_tests(request: pytest.FixtureRequest) -> Generator[None]:
    """Capture logger warnings during integration tests so the report hook can fail the test."""
    if request.node.get_closest_marker("integration") is None:
        yield
        return

    test_nodeid = request.node.nodeid
    _integration_test_warnings[test_nodeid] = []
    handler = IntegrationTestWarningHandler(test_nodeid)
    root_logger = logging.getLogger()
    root_logger.addHandler(handler)
    try:
        yield
    finally:
        root_logger.removeHandler(handler)


@pytest.hookimpl(tryfirst=True, hookwrapper=True)
def pytest_runtest_makereport(item: pytest.Item, call: pytest.CallInfo[None]) -> Generator[None]:  # type: ignore[misc]
    outcome = yield
    report = outcome.get_result()

    if call.when == "call" and report.outcome == "passed":
        warning_records = _integration_test_warnings.get(item.nodeid, [])
        if warning_records:
            report.outcome = "failed"
            report.longrepr = f"Integration test failed: {len(warning_records)} warning(s) detected:\n" + "\n".join(
                f"  - {record.levelname}: {record.getMessage()} (in {record.name}:{record.lineno})"
                for record in warning_records
            )
        _integration_test_warnings.pop(item.nodeid, None)


class FakeTracker:
    """In-memory IssueTracker.

    ``fail_on`` maps a method name to a list of errors; each call to that
    method pops and raises the first one until the list is empty.
    """

    def __init__(self, issues: Sequence[RemoteIssue] = (), *, repos: Sequence[RepoRef] = (REPO,)) -> None:
        self.issues: dict[tuple[str, int], RemoteIssue] = {}
        for issue in issues:
            self._store(issue)
        self.repos = list(repos)
        self.labels: dict[str, list[Label]] = {}
        self.calls: list[tuple[str, Any]] = []
        self.fail_on: dict[str, list[Exception]] = {}
        self.clock = T0 + dt.timedelta(days=30)

    def _store(self, issue: RemoteIssue) -> None:
        repo = issue.repo or REPO
        self.issues[(repo.full_name, issue.number)] = RemoteIssue(
            number=issue.number,
            title=issue.title,
            body=issue.body,
            state=issue.state,
            labels=issue.labels,
            assignee=issue.assignee,
            created_at=issue.created_at,
            updated_at=issue.updated_at,
            repo=repo,
            is_pull_request=issue.is_pull_request,
        )

    def _maybe_fail(self, method: str) -> None:
        errors = self.fail_on.get(method)
        if errors:
            raise errors.pop(0)

    def _tick(self) -> dt.datetime:
        self.clock += dt.timedelta(seconds=1)
        return self.clock

    def list_issues(self, repo: RepoRef, *, state: str = "all") -> list[RemoteIssue]:
        self.calls.append(("list_issues", (repo, state)))
        self._maybe_fail("list_issues")
        return [
            issue
            for (name, _), issue in sorted(self.issues.items())
            if name == repo.full_name and (state == "all" or issue.state == state)
        ]

    def list_labels(self, repo: RepoRef) -> list[Label]:
        self.calls.append(("list_labels", repo))
        self._maybe_fail("list_labels")
        return self.labels.get(repo.full_name, [])

    def create_issue(
        self,
        repo: RepoRef,
        *,
        title: str,
        body: str,
        labels: Sequence[str],
        assignee: str | None = None,
    ) -> RemoteIssue:
        self.calls.append(("create_issue", (repo, title, tuple(labels))))
        self._maybe_fail("create_issue")
        number = max((n for name, n in self.issues if name == repo.full_name), default=0) + 1
        now = self._tick()
        issue = RemoteIssue(
            number=number,
            title=title,
            body=body,
            state="open",
            labels=frozenset(labels),
            assignee=assignee,
            created_at=now,
            updated_at=now,
            repo=repo,
        )
        self._store(issue)
        return self.issues[(repo.full_name, number)]

    def update_issue(
        self,
        repo: RepoRef,
        number: int,
        *,
        title: str | None = None,
        body: str | None = None,
        state: str | None = None,
        labels: Sequence[str] | None = None,
    ) -> RemoteIssue:
        self.calls.append(("update_issue", (repo, number, {"title": title, "body": body, "state": state})))
        self._maybe_fail("update_issue")
        key = (repo.full_name, number)
        if key not in self.issues:
            msg = f"Issue {repo}#{number} not found"
            raise TrackerError(msg, kind="not_found", status=404)
        current = self.issues[key]
        updated = RemoteIssue(
            number=number,
            title=title if title is not None else current.title,
            body=body if body is not None else current.body,
            state=state if state is not None else current.state,  # type: ignore[arg-type]
            labels=frozenset(labels) if labels is not None else current.labels,
            assignee=current.assignee,
            created_at=current.created_at,
            updated_at=self._tick(),
            repo=repo,
        )
        self.issues[key] = updated
        return updated

    def get_repository(self, repo: RepoRef) -> RepoRef:
        self.calls.append(("get_repository", repo))
        self._maybe_fail("get_repository")
        if repo not in self.repos:
            msg = f"Repository {repo} not found"
            raise TrackerError(msg, kind="not_found", status=404)
        return repo

    def list_repositories(self) -> list[RepoRef]:
        self.calls.append(("list_repositories", None))
        self._maybe_fail("list_repositories")
        return list(self.repos)

    def called(self, method: str) -> list[Any]:
        return [args for name, args in self.calls if name == method]


class BoardStore:
    """Board plus the card callbacks an application would pass to the engine."""

    def __init__(self, board: Board) -> None:
        self.board = board
        self.updates: list[tuple[str, dict[str, Any]]] = []
        self.created: list[tuple[str, dict[str, Any]]] = []
        self.deleted: list[str] = []
        self._next_id = 1

    def find(self, card_id: str) -> tuple[Column, Card]:
        for column, card in self.board.iter_cards():
            if card.id == card_id:
                return column, card
        raise KeyError(card_id)

    def update_card(self, card_id: str, updates: dict[str, Any]) -> None:
        self.updates.append((card_id, dict(updates)))
        column, card = self.find(card_id)
        for name, value in updates.items():
            if name == "column_id":
                column.cards.remove(card)
                target = next(c for c in self.board.columns if c.id == value)
                target.cards.append(card)
            else:
                setattr(card, name, value)

    def create_card(self, column_id: str, fields: dict[str, Any]) -> Card:
        self.created.append((column_id, dict(fields)))
        card = Card(id=f"new-{self._next_id}", **fields)
        self._next_id += 1
        next(c for c in self.board.columns if c.id == column_id).cards.append(card)
        return card

    def delete_card(self, card_id: str) -> None:
        self.deleted.append(card_id)
        column, card = self.find(card_id)
        column.cards.remove(card)


def make_issue(number: int, title: str, **kwargs: Any) -> RemoteIssue:
    kwargs.setdefault("body", "")
    kwargs.setdefault("state", "open")
    kwargs.setdefault("repo", REPO)
    kwargs.setdefault("updated_at", T0)
    labels = kwargs.pop("labels", ())
    return RemoteIssue(number=number, title=title, labels=frozenset(labels), **kwargs)


STANDARD_MAPPINGS: tuple[ColumnMapping, ...] = (
    ColumnMapping("todo", "To Do", ("todo",), "open"),
    ColumnMapping("wip", "In Progress", ("wip",), "open"),
    ColumnMapping("done", "Done", ("done",), "closed"),
)


def make_board(*cards_by_column: tuple[str, list[Card]]) -> Board:
    titles = {"todo": "To Do", "wip": "In Progress", "done": "Done"}
    columns = {cid: Column(id=cid, title=title) for cid, title in titles.items()}
    for column_id, cards in cards_by_column:
        columns.setdefault(column_id, Column(id=column_id, title=column_id)).cards.extend(cards)
    return Board(id="board-1", name="Team board", columns=list(columns.values()))


def make_config(**overrides: Any) -> SyncConfig:
    overrides.setdefault("repository", REPO)
    overrides.setdefault("column_mappings", STANDARD_MAPPINGS)
    return SyncConfig(**overrides)


@pytest.fixture
def tracker() -> FakeTracker:
    return FakeTracker()


@pytest.fixture
def issue_factory() -> Callable[..., RemoteIssue]:
    return make_issue


@pytest.fixture
def board_factory() -> Callable[..., Board]:
    return make_board


@pytest.fixture
def config_factory() -> Callable[..., SyncConfig]:
    return make_config


@pytest.fixture
def store_factory() -> Callable[[Board], BoardStore]:
    return BoardStore


@pytest.fixture
def tracker_factory() -> Callable[..., FakeTracker]:
    return FakeTracker
