from __future__ import annotations

from typing import Any

_PRIVATE_FIELDS = ("password",)


def public_user(user: dict[str, Any] | None) -> dict[str, Any] | None:
    """The user as handed to API callers: credential hash removed."""
    if not user:
        return None
    return {k: v for k, v in user.items() if k not in _PRIVATE_FIELDS}


def actor_action(actor_id: str | None, subject_id: str, *, self_action: str, other_action: str) -> str:
    return self_action if actor_id and str(actor_id) == str(subject_id) else other_action
