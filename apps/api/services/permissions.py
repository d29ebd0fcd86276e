"""Ownership, starring and moderation rules.

Pure functions over a viewer and a video-like object (anything with ``user_id``
and ``hidden``). The moderator allow-list is always passed in by the caller.
"""

from __future__ import annotations

from typing import AbstractSet, Any, Iterable, List, Optional, TypeVar


RowT = TypeVar("RowT")


def is_moderator(email: Optional[str], moderator_emails: AbstractSet[str]) -> bool:
    if not email:
        return False
    return email.strip().lower() in moderator_emails


def can_mutate(user_id: str, video: Any) -> bool:
    return bool(user_id) and user_id == video.user_id


def can_star(user_id: str, video: Any) -> bool:
    return bool(user_id) and user_id != video.user_id


def can_view_hidden(email: Optional[str], moderator_emails: AbstractSet[str]) -> bool:
    return is_moderator(email, moderator_emails)


def visible_rows(
    email: Optional[str],
    rows: Iterable[RowT],
    moderator_emails: AbstractSet[str],
) -> List[RowT]:
    """Drop hidden rows unless the viewer is a moderator."""
    show_hidden = can_view_hidden(email, moderator_emails)
    return [row for row in rows if show_hidden or not getattr(row, "hidden", False)]
