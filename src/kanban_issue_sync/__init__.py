"""
Kanban Issue Sync

Keeps a local kanban board and the issues of a GitHub repository in step:
cards become issues, issues become cards, and edits on either side are
reconciled under a configurable conflict strategy.
"""

from __future__ import annotations

from .cli import main
from .engine import SyncEngine, SyncEngineRegistry, ValidationResult
from .exceptions import (
    ConfigValidationError,
    ConflictAlreadyResolvedError,
    ConflictNotFoundError,
    SyncEngineError,
    SyncInProgressError,
    TrackerError,
)
from .github_tracker import GitHubTracker
from .models import Board, Card, Column, ColumnMapping, RemoteIssue, RepoRef, SyncConfig
from .operations import ConflictResolution, SyncConflict, SyncOperation, SyncResult
from .utils import setup_logging

# Package version
__version__ = "0.1.0"

__all__ = [
    "Board",
    "Card",
    "Column",
    "ColumnMapping",
    "ConfigValidationError",
    "ConflictAlreadyResolvedError",
    "ConflictNotFoundError",
    "ConflictResolution",
    "GitHubTracker",
    "RemoteIssue",
    "RepoRef",
    "SyncConfig",
    "SyncConflict",
    "SyncEngine",
    "SyncEngineError",
    "SyncEngineRegistry",
    "SyncInProgressError",
    "SyncOperation",
    "SyncResult",
    "TrackerError",
    "ValidationResult",
    "main",
    "setup_logging",
]
