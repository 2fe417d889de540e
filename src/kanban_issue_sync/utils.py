"""
Utility functions for the board/issue synchronization engine.
"""

from __future__ import annotations

import datetime as dt
import logging
import os
import re
import subprocess
import uuid
from subprocess import CompletedProcess

_CONSOLE_LEVELS: tuple[int, ...] = (logging.WARNING, logging.INFO, logging.DEBUG)


class PassError(Exception):
    """Base class for pass-related errors."""


class InvalidPassPathError(PassError):
    """Raised when the pass path format is invalid."""


class PassphraseRequiredError(PassError):
    """Raised when a GPG passphrase is required for the pass utility."""


def setup_logging(*, verbosity: int = 0, log_file: str | None = "kanban-sync.log") -> None:
    """Configure logging for sync runs.

    The console shows warnings by default, info with -v and debug with -vv.
    The log file, when enabled, always receives debug output.
    """
    formatter = logging.Formatter("%(asctime)s - %(levelname)s - %(name)s - %(message)s")

    console_handler = logging.StreamHandler()
    console_handler.setLevel(_CONSOLE_LEVELS[min(max(verbosity, 0), len(_CONSOLE_LEVELS) - 1)])
    console_handler.setFormatter(formatter)
    handlers: list[logging.Handler] = [console_handler]

    if log_file:
        file_handler = logging.FileHandler(log_file, mode="a")
        file_handler.setLevel(logging.DEBUG)
        file_handler.setFormatter(formatter)
        handlers.append(file_handler)

    logging.basicConfig(level=logging.DEBUG, handlers=handlers, force=True)


def utcnow() -> dt.datetime:
    """Timezone-aware current UTC time."""
    return dt.datetime.now(dt.UTC)


def new_id(prefix: str) -> str:
    """Return a unique identifier such as ``update_issue_3f9a1c2b7d4e``."""
    return f"{prefix}_{uuid.uuid4().hex[:12]}"


_PASS_PATH_PATTERN = re.compile(r"[A-Za-z0-9_-]+(?:/[A-Za-z0-9_-]+)*")
_LOOPBACK_GPG_OPTS = "--pinentry-mode=loopback --passphrase-fd 0"


def _run_pass(pass_path: str, passphrase: str | None = None) -> str:
    env = None
    if passphrase is not None:
        env = os.environ.copy() | {"PASSWORD_STORE_GPG_OPTS": _LOOPBACK_GPG_OPTS}
    result: CompletedProcess[str] = subprocess.run(  # noqa: S603
        ["pass", pass_path], input=passphrase, capture_output=True, text=True, check=True, env=env
    )
    return result.stdout.strip()


def _describe_failure(pass_path: str, error: subprocess.CalledProcessError) -> str:
    return f"pass exited with {error.returncode} for '{pass_path}': {error.stderr.strip()}"


def _needs_passphrase(error: subprocess.CalledProcessError) -> bool:
    stderr = error.stderr.lower()
    return error.returncode == 2 and "gpg" in stderr and "public key decryption failed" in stderr  # noqa: PLR2004


def get_pass_value(pass_path: str) -> str:
    """Read a secret from the ``pass`` password store.

    When the GPG key is locked, the passphrase is asked for once on stdin and
    handed to gpg in loopback mode. Non-interactive sessions get
    PassphraseRequiredError instead.

    Raises:
        InvalidPassPathError: If the path is malformed or not in the store
        PassphraseRequiredError: If the key is locked and no passphrase works
        PassError: For any other failure of the pass utility
    """
    if not _PASS_PATH_PATTERN.fullmatch(pass_path):
        msg = f"Invalid pass path: {pass_path}"
        raise InvalidPassPathError(msg)

    try:
        return _run_pass(pass_path)
    except FileNotFoundError as e:
        msg = "The pass utility is not installed"
        raise PassError(msg) from e
    except subprocess.CalledProcessError as e:
        if e.returncode == 1 and "not in the password store" in e.stderr.lower():
            msg = f"Pass path '{pass_path}' not found or invalid."
            raise InvalidPassPathError(msg) from e
        if not _needs_passphrase(e):
            raise PassError(_describe_failure(pass_path, e)) from e

    try:
        passphrase = input(f"Enter passphrase for the GPG key protecting '{pass_path}': ")
    except EOFError as e:
        msg = "Passphrase input was interrupted. Please run the command in an interactive session."
        raise PassphraseRequiredError(msg) from e
    try:
        return _run_pass(pass_path, passphrase)
    except subprocess.CalledProcessError as e:
        raise PassphraseRequiredError(_describe_failure(pass_path, e)) from e
