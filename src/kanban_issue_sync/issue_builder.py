"""Build issue bodies from cards and read card references back out of them."""

from __future__ import annotations

import datetime as dt
import re

# Issues created from a card carry a hidden marker naming the card. It lets a
# later pass pair the two even if storing the issue number on the card failed.
_CARD_MARKER_TEMPLATE = "<!-- kanban-card-id: {card_id} -->"
_CARD_MARKER_PATTERN = re.compile(r"(?:\n\n)?<!-- kanban-card-id: (?P<card_id>\S+) -->\s*\Z")


def format_timestamp(timestamp: dt.datetime | None) -> str:
    """Format a timestamp for display.

    Args:
        timestamp: Timezone-aware or naive datetime

    Returns:
        Formatted timestamp (e.g., "2024-01-15 10:30:45Z"), or "never" for None.
    """
    if timestamp is None:
        return "never"
    formatted = timestamp.isoformat(sep=" ", timespec="seconds")
    return formatted.replace("+00:00", "Z")


def build_issue_body(description: str, card_id: str) -> str:
    """Build the issue body for a card: its description followed by the card marker."""
    marker = _CARD_MARKER_TEMPLATE.format(card_id=card_id)
    if not description:
        return marker
    return f"{description}\n\n{marker}"


def split_issue_body(body: str | None) -> tuple[str, str | None]:
    """Split an issue body into (description, card id).

    Returns:
        The body without the card marker, and the marked card id if present.
        Windows line endings are normalized since the web editor introduces them.
    """
    if not body:
        return "", None
    body = body.replace("\r\n", "\n")
    match = _CARD_MARKER_PATTERN.search(body)
    if match is None:
        return body, None
    return body[: match.start()], match.group("card_id")
