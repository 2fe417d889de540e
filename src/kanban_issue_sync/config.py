"""Build SyncConfig and Board objects from JSON-shaped data.

Keys are snake_case. Repositories are given as ``"owner/name"`` strings or as
``{"owner": ..., "name": ...}`` objects; timestamps are ISO-8601 strings, a
trailing ``Z`` meaning UTC.
"""

from __future__ import annotations

import datetime as dt
import json
import logging
from pathlib import Path
from typing import TYPE_CHECKING, Any

from .exceptions import ConfigValidationError
from .models import CONFLICT_STRATEGIES, Board, Card, Column, ColumnMapping, RepoRef, SyncConfig

if TYPE_CHECKING:
    from collections.abc import Mapping

    from .models import ConflictStrategy, IssueState

logger: logging.Logger = logging.getLogger(__name__)


def load_json(path: str | Path) -> dict[str, Any]:
    """Read a JSON object from ``path``.

    Raises:
        ConfigValidationError: If the file cannot be read or is not a JSON object
    """
    try:
        with Path(path).open(encoding="utf-8") as f:
            data = json.load(f)
    except OSError as e:
        msg = f"Cannot read {path}: {e}"
        raise ConfigValidationError(msg) from e
    except json.JSONDecodeError as e:
        msg = f"Invalid JSON in {path}: {e}"
        raise ConfigValidationError(msg) from e
    if not isinstance(data, dict):
        msg = f"{path} must contain a JSON object"
        raise ConfigValidationError(msg)
    logger.debug(f"Loaded {path}")
    return data


def parse_timestamp(value: Any, field_name: str) -> dt.datetime | None:
    if value is None:
        return None
    if not isinstance(value, str):
        msg = f"'{field_name}' must be an ISO-8601 string"
        raise ConfigValidationError(msg)
    try:
        timestamp = dt.datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError as e:
        msg = f"'{field_name}' is not a valid ISO-8601 timestamp: {value!r}"
        raise ConfigValidationError(msg) from e
    return timestamp if timestamp.tzinfo else timestamp.replace(tzinfo=dt.UTC)


def parse_repo(value: Any) -> RepoRef | None:
    if value is None:
        return None
    if isinstance(value, str):
        return RepoRef.parse(value)
    if isinstance(value, dict):
        return RepoRef.parse(f"{value.get('owner', '')}/{value.get('name', '')}")
    msg = f"Invalid repository {value!r}. Expected 'owner/repository'"
    raise ConfigValidationError(msg)


def _require(data: Mapping[str, Any], key: str, kind: type, context: str) -> Any:
    if key not in data:
        msg = f"{context}: missing '{key}'"
        raise ConfigValidationError(msg)
    value = data[key]
    if not isinstance(value, kind):
        msg = f"{context}: '{key}' must be of type {kind.__name__}"
        raise ConfigValidationError(msg)
    return value


def _optional(data: Mapping[str, Any], key: str, kind: type | tuple[type, ...], default: Any, context: str) -> Any:
    value = data.get(key, default)
    # bool is a subclass of int; reject it where a number is expected
    if value is not default and (not isinstance(value, kind) or (kind is int and isinstance(value, bool))):
        names = kind.__name__ if isinstance(kind, type) else "/".join(k.__name__ for k in kind)
        msg = f"{context}: '{key}' must be of type {names}"
        raise ConfigValidationError(msg)
    return value


def _load_mapping(data: Any, index: int) -> ColumnMapping:
    context = f"column_mappings[{index}]"
    if not isinstance(data, dict):
        msg = f"{context} must be an object"
        raise ConfigValidationError(msg)
    labels = _optional(data, "labels", list, [], context)
    if not all(isinstance(label, str) for label in labels):
        msg = f"{context}: 'labels' must be a list of strings"
        raise ConfigValidationError(msg)
    issue_state: IssueState | None = data.get("issue_state")
    if issue_state not in (None, "open", "closed"):
        msg = f"{context}: 'issue_state' must be 'open', 'closed' or null"
        raise ConfigValidationError(msg)
    return ColumnMapping(
        column_id=_require(data, "column_id", str, context),
        column_title=_require(data, "column_title", str, context),
        labels=tuple(labels),
        issue_state=issue_state,
    )


def load_sync_config(data: Mapping[str, Any]) -> SyncConfig:
    """Build a SyncConfig; only shape errors are reported here, see ``check_sync_config``."""
    context = "sync config"
    strategy: ConflictStrategy = _optional(data, "conflict_resolution", str, "manual", context)
    if strategy not in CONFLICT_STRATEGIES:
        msg = f"Unknown conflict resolution strategy '{strategy}'. Expected one of: {', '.join(CONFLICT_STRATEGIES)}"
        raise ConfigValidationError(msg)

    mappings = _optional(data, "column_mappings", list, [], context)
    return SyncConfig(
        enabled=_optional(data, "enabled", bool, True, context),
        repository=parse_repo(data.get("repository")),
        all_repos=_optional(data, "all_repos", bool, False, context),
        column_mappings=tuple(_load_mapping(m, i) for i, m in enumerate(mappings)),
        auto_sync=_optional(data, "auto_sync", bool, False, context),
        sync_interval=_optional(data, "sync_interval", int, 15, context),
        last_sync=parse_timestamp(data.get("last_sync"), "last_sync"),
        conflict_resolution=strategy,
        close_issues_for_removed_cards=_optional(data, "close_issues_for_removed_cards", bool, False, context),
        delete_cards_for_closed_issues=_optional(data, "delete_cards_for_closed_issues", bool, False, context),
        retry_attempts=_optional(data, "retry_attempts", int, 2, context),
    )


def _load_card(data: Any, context: str) -> Card:
    if not isinstance(data, dict):
        msg = f"{context} must be an object"
        raise ConfigValidationError(msg)
    labels = _optional(data, "labels", list, [], context)
    return Card(
        id=_require(data, "id", str, context),
        title=_require(data, "title", str, context),
        description=_optional(data, "description", str, "", context),
        labels=set(labels),
        assignee=_optional(data, "assignee", str, None, context),
        issue_number=_optional(data, "issue_number", int, None, context),
        repo=parse_repo(data.get("repo")),
        updated_at=parse_timestamp(data.get("updated_at"), f"{context}.updated_at"),
    )


def load_board(data: Mapping[str, Any]) -> Board:
    columns: list[Column] = []
    for index, column_data in enumerate(_optional(data, "columns", list, [], "board")):
        context = f"columns[{index}]"
        if not isinstance(column_data, dict):
            msg = f"{context} must be an object"
            raise ConfigValidationError(msg)
        cards = _optional(column_data, "cards", list, [], context)
        columns.append(
            Column(
                id=_require(column_data, "id", str, context),
                title=_require(column_data, "title", str, context),
                color=_optional(column_data, "color", str, "", context),
                cards=[_load_card(card, f"{context}.cards[{i}]") for i, card in enumerate(cards)],
            )
        )
    return Board(
        id=_require(data, "id", str, "board"),
        name=_optional(data, "name", str, "", "board"),
        columns=columns,
    )
