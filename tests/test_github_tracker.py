"""
Tests for the PyGithub-backed issue tracker.
"""

import datetime as dt
from unittest.mock import Mock, patch

import pytest
import requests
from github import BadCredentialsException, GithubException, RateLimitExceededException, UnknownObjectException

from kanban_issue_sync.exceptions import TrackerError
from kanban_issue_sync.github_tracker import GitHubTracker, get_client, get_token
from kanban_issue_sync.models import RepoRef
from kanban_issue_sync.utils import InvalidPassPathError

REPO = RepoRef("acme", "widgets")


def gh_issue(number: int, title: str, *, state: str = "open", labels: tuple[str, ...] = (), **kwargs: object) -> Mock:
    issue = Mock()
    issue.number = number
    issue.title = title
    issue.body = kwargs.get("body", "")
    issue.state = state
    issue.labels = [Mock(name=f"label-{name}") for name in labels]
    for label, name in zip(issue.labels, labels, strict=True):
        label.name = name
    issue.assignee = None
    issue.created_at = dt.datetime(2024, 1, 1, tzinfo=dt.UTC)
    issue.updated_at = dt.datetime(2024, 1, 2, tzinfo=dt.UTC)
    issue.pull_request = kwargs.get("pull_request")
    return issue


@pytest.fixture
def gh_repo() -> Mock:
    repo = Mock()
    repo.full_name = "acme/widgets"
    return repo


@pytest.fixture
def client(gh_repo: Mock) -> Mock:
    client = Mock()
    client.get_repo.return_value = gh_repo
    return client


@pytest.mark.unit
class TestGetToken:
    def test_explicit_pass_path(self) -> None:
        with patch("kanban_issue_sync.github_tracker.utils.get_pass_value", return_value="pass-token") as mock_pass:
            assert get_token("custom/path") == "pass-token"
        mock_pass.assert_called_once_with("custom/path")

    def test_env_var(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("GITHUB_TOKEN", "env-token")
        with patch("kanban_issue_sync.github_tracker.utils.get_pass_value") as mock_pass:
            assert get_token() == "env-token"
        mock_pass.assert_not_called()

    def test_default_pass_path(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.delenv("GITHUB_TOKEN", raising=False)
        with patch("kanban_issue_sync.github_tracker.utils.get_pass_value", return_value="default") as mock_pass:
            assert get_token() == "default"
        mock_pass.assert_called_once_with("github/cli/token")

    def test_no_token_found(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.delenv("GITHUB_TOKEN", raising=False)
        with patch(
            "kanban_issue_sync.github_tracker.utils.get_pass_value",
            side_effect=InvalidPassPathError("not in the password store"),
        ):
            assert get_token() is None


@pytest.mark.unit
class TestGetClient:
    def test_disables_pygithub_retries(self) -> None:
        with patch("kanban_issue_sync.github_tracker.Github") as mock_github:
            get_client("secret", timeout=5)
        _, kwargs = mock_github.call_args
        assert kwargs["retry"] is None
        assert kwargs["timeout"] == 5
        assert kwargs["auth"] is not None

    def test_anonymous_client(self) -> None:
        with patch("kanban_issue_sync.github_tracker.Github") as mock_github:
            get_client(None)
        _, kwargs = mock_github.call_args
        assert kwargs["auth"] is None


@pytest.mark.unit
class TestReads:
    def test_list_issues_normalizes(self, client: Mock, gh_repo: Mock) -> None:
        gh_repo.get_issues.return_value = [
            gh_issue(1, "Bug", labels=("bug", "wip")),
            gh_issue(2, "Done", state="closed"),
            gh_issue(3, "PR", pull_request=Mock()),
        ]
        issues = GitHubTracker(client).list_issues(REPO, state="all")

        gh_repo.get_issues.assert_called_once_with(state="all")
        assert [i.number for i in issues] == [1, 2, 3]
        assert issues[0].labels == frozenset({"bug", "wip"})
        assert issues[0].repo == REPO
        assert issues[1].state == "closed"
        assert issues[2].is_pull_request
        assert not issues[0].is_pull_request

    def test_repository_is_cached(self, client: Mock, gh_repo: Mock) -> None:
        gh_repo.get_issues.return_value = []
        tracker = GitHubTracker(client)
        tracker.list_issues(REPO)
        tracker.list_issues(REPO)
        client.get_repo.assert_called_once_with("acme/widgets")

    def test_list_labels(self, client: Mock, gh_repo: Mock) -> None:
        label = Mock()
        label.name = "wip"
        label.color = "ff0000"
        label.description = None
        gh_repo.get_labels.return_value = [label]
        labels = GitHubTracker(client).list_labels(REPO)
        assert [(lbl.name, lbl.color, lbl.description) for lbl in labels] == [("wip", "ff0000", "")]

    def test_list_repositories(self, client: Mock) -> None:
        owned = Mock()
        owned.full_name = "acme/gadgets"
        client.get_user.return_value.get_repos.return_value = [owned]
        assert GitHubTracker(client).list_repositories() == [RepoRef("acme", "gadgets")]
        client.get_user.return_value.get_repos.assert_called_once_with(type="owner")


@pytest.mark.unit
class TestWrites:
    def test_create_issue(self, client: Mock, gh_repo: Mock) -> None:
        gh_repo.create_issue.return_value = gh_issue(5, "Fix bug", labels=("wip",))
        issue = GitHubTracker(client).create_issue(REPO, title="Fix bug", body="b", labels=("wip",))

        gh_repo.create_issue.assert_called_once_with(title="Fix bug", body="b", labels=["wip"])
        assert issue.number == 5

    def test_create_issue_with_assignee(self, client: Mock, gh_repo: Mock) -> None:
        gh_repo.create_issue.return_value = gh_issue(5, "t")
        GitHubTracker(client).create_issue(REPO, title="t", body="b", labels=(), assignee="octocat")
        assert gh_repo.create_issue.call_args.kwargs["assignee"] == "octocat"

    def test_update_issue_sends_only_given_fields(self, client: Mock, gh_repo: Mock) -> None:
        existing = gh_issue(7, "Old")
        gh_repo.get_issue.return_value = existing
        GitHubTracker(client).update_issue(REPO, 7, title="New", state="closed")

        gh_repo.get_issue.assert_called_once_with(7)
        existing.edit.assert_called_once_with(title="New", state="closed")


@pytest.mark.unit
class TestErrorMapping:
    """PyGithub and transport failures surface as classified TrackerErrors."""

    @pytest.mark.parametrize(
        ("exception", "kind", "retryable"),
        [
            (BadCredentialsException(401, {"message": "Bad credentials"}, None), "auth", False),
            (RateLimitExceededException(403, {"message": "API rate limit exceeded"}, None), "rate_limit", True),
            (UnknownObjectException(404, {"message": "Not Found"}, None), "not_found", False),
            (GithubException(429, {"message": "Too many requests"}, None), "rate_limit", True),
            (GithubException(403, {"message": "Resource not accessible"}, None), "auth", False),
            (GithubException(502, {"message": "Bad gateway"}, None), "server", True),
            (GithubException(422, {"message": "Validation Failed"}, None), "invalid", False),
        ],
    )
    def test_github_exceptions(
        self, client: Mock, gh_repo: Mock, exception: GithubException, kind: str, retryable: bool
    ) -> None:
        gh_repo.get_issue.side_effect = exception
        with pytest.raises(TrackerError, match="Failed to update issue acme/widgets#7") as exc_info:
            GitHubTracker(client).update_issue(REPO, 7, title="x")
        assert exc_info.value.kind == kind
        assert exc_info.value.retryable is retryable
        assert exc_info.value.__cause__ is exception

    def test_network_error(self, client: Mock, gh_repo: Mock) -> None:
        gh_repo.get_issues.side_effect = requests.exceptions.ConnectionError("connection reset")
        with pytest.raises(TrackerError, match="Failed to list issues of acme/widgets") as exc_info:
            GitHubTracker(client).list_issues(REPO)
        assert exc_info.value.kind == "network"
        assert exc_info.value.retryable

    def test_missing_repository(self, client: Mock) -> None:
        client.get_repo.side_effect = UnknownObjectException(404, {"message": "Not Found"}, None)
        with pytest.raises(TrackerError, match="Failed to load repository acme/widgets") as exc_info:
            GitHubTracker(client).get_repository(REPO)
        assert exc_info.value.kind == "not_found"
        assert exc_info.value.status == 404
