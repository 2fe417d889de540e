from __future__ import annotations

import logging
import os
from collections.abc import Iterator, Sequence
from contextlib import contextmanager
from typing import TYPE_CHECKING, Any, Final

import requests
from github import (
    Auth,
    BadCredentialsException,
    Github,
    GithubException,
    RateLimitExceededException,
    UnknownObjectException,
)

from . import utils
from .exceptions import TrackerError
from .models import Label, RemoteIssue, RepoRef

if TYPE_CHECKING:
    from github.Issue import Issue as GithubIssue
    from github.Repository import Repository

    from .exceptions import TrackerErrorKind
    from .models import IssueState

# Module-wide logger
logger: logging.Logger = logging.getLogger(__name__)

_TOKEN_ENV_VAR: Final[str] = "GITHUB_TOKEN"  # noqa: S105
_DEFAULT_TOKEN_PASS_PATH: Final[str] = "github/cli/token"  # noqa: S105
DEFAULT_TIMEOUT_SECONDS: Final[int] = 15
DEFAULT_PAGE_SIZE: Final[int] = 100


def get_token(pass_path: str | None = None) -> str | None:
    """Get GitHub token from pass path, env var GITHUB_TOKEN, or default pass location."""
    if pass_path:
        return utils.get_pass_value(pass_path)

    token: str | None = os.environ.get(_TOKEN_ENV_VAR)
    if token:
        return token

    try:
        return utils.get_pass_value(_DEFAULT_TOKEN_PASS_PATH)
    except utils.PassError:
        logger.warning("No GitHub token specified nor found")
        return None


def get_client(token: str | None = None, *, timeout: int = DEFAULT_TIMEOUT_SECONDS) -> Github:
    """Get a GitHub client using the token.

    PyGithub's own retry loop is disabled; retrying is left to the operation
    executor, which knows which writes are safe to repeat.
    """
    auth = Auth.Token(token) if token else None
    return Github(auth=auth, timeout=timeout, per_page=DEFAULT_PAGE_SIZE, retry=None)


def _classify_github_exception(exc: GithubException) -> TrackerErrorKind:
    if isinstance(exc, RateLimitExceededException):
        return "rate_limit"
    if isinstance(exc, BadCredentialsException):
        return "auth"
    if isinstance(exc, UnknownObjectException):
        return "not_found"
    status = exc.status
    if status == 429 or (status == 403 and "rate limit" in str(exc).lower()):  # noqa: PLR2004
        return "rate_limit"
    if status in (401, 403):
        return "auth"
    if status == 404:  # noqa: PLR2004
        return "not_found"
    if status is not None and status >= 500:  # noqa: PLR2004
        return "server"
    return "invalid"


@contextmanager
def _tracker_errors(action: str) -> Iterator[None]:
    """Re-raise PyGithub and transport failures as TrackerError."""
    try:
        yield
    except GithubException as e:
        kind = _classify_github_exception(e)
        msg = f"Failed to {action}: {e}"
        raise TrackerError(msg, kind=kind, status=e.status) from e
    except requests.exceptions.RequestException as e:
        msg = f"Failed to {action}: {e}"
        raise TrackerError(msg, kind="network") from e


def _to_remote_issue(issue: GithubIssue, repo: RepoRef) -> RemoteIssue:
    return RemoteIssue(
        number=issue.number,
        title=issue.title,
        body=issue.body,
        state="closed" if issue.state == "closed" else "open",
        labels=frozenset(label.name for label in issue.labels),
        assignee=issue.assignee.login if issue.assignee else None,
        created_at=issue.created_at,
        updated_at=issue.updated_at,
        repo=repo,
        is_pull_request=issue.pull_request is not None,
    )


class GitHubTracker:
    """IssueTracker backed by the GitHub REST API through PyGithub."""

    _client: Github
    _repos: dict[str, Repository]

    def __init__(self, client: Github) -> None:
        self._client = client
        self._repos = {}

    def _repo(self, repo: RepoRef) -> Repository:
        cached = self._repos.get(repo.full_name)
        if cached is None:
            with _tracker_errors(f"load repository {repo}"):
                cached = self._client.get_repo(repo.full_name)
            self._repos[repo.full_name] = cached
        return cached

    def list_issues(self, repo: RepoRef, *, state: str = "all") -> list[RemoteIssue]:
        gh_repo = self._repo(repo)
        with _tracker_errors(f"list issues of {repo}"):
            issues = [_to_remote_issue(issue, repo) for issue in gh_repo.get_issues(state=state)]
        logger.debug(f"Fetched {len(issues)} issues ({state}) from {repo}")
        return issues

    def list_labels(self, repo: RepoRef) -> list[Label]:
        gh_repo = self._repo(repo)
        with _tracker_errors(f"list labels of {repo}"):
            return [
                Label(name=label.name, color=label.color, description=label.description or "")
                for label in gh_repo.get_labels()
            ]

    def create_issue(
        self,
        repo: RepoRef,
        *,
        title: str,
        body: str,
        labels: Sequence[str],
        assignee: str | None = None,
    ) -> RemoteIssue:
        gh_repo = self._repo(repo)
        kwargs: dict[str, Any] = {"title": title, "body": body, "labels": list(labels)}
        if assignee:
            kwargs["assignee"] = assignee
        with _tracker_errors(f"create issue '{title}' in {repo}"):
            issue = gh_repo.create_issue(**kwargs)
        logger.info(f"Created issue {repo}#{issue.number}: {title}")
        return _to_remote_issue(issue, repo)

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
        gh_repo = self._repo(repo)
        kwargs: dict[str, Any] = {}
        if title is not None:
            kwargs["title"] = title
        if body is not None:
            kwargs["body"] = body
        if state is not None:
            kwargs["state"] = state
        if labels is not None:
            kwargs["labels"] = list(labels)
        with _tracker_errors(f"update issue {repo}#{number}"):
            issue = gh_repo.get_issue(number)
            if kwargs:
                issue.edit(**kwargs)
        logger.info(f"Updated issue {repo}#{number}: {', '.join(sorted(kwargs)) or 'no changes'}")
        return _to_remote_issue(issue, repo)

    def get_repository(self, repo: RepoRef) -> RepoRef:
        gh_repo = self._repo(repo)
        return RepoRef.parse(gh_repo.full_name)

    def list_repositories(self) -> list[RepoRef]:
        with _tracker_errors("list repositories"):
            user = self._client.get_user()
            return [RepoRef.parse(r.full_name) for r in user.get_repos(type="owner")]
