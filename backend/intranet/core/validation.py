from __future__ import annotations

from typing import Any, Iterable

from sqlalchemy.orm import Session

from intranet.core.exceptions import ValidationError
from intranet.models.user import User


def require_non_empty_text(value: Any, field_name: str) -> str:
    text = str(value or "").strip()
    if not text:
        raise ValidationError(f"{field_name} is required", details={"field": field_name})
    return text


def require_non_empty_list(values: Iterable[Any] | None, detail: str) -> list[Any]:
    normalized = list(values or [])
    if not normalized:
        raise ValidationError(detail)
    return normalized


def unique_ids(values: Iterable[Any]) -> list[int]:
    """Positive ints in first-seen order, duplicates dropped."""
    seen: dict[int, None] = {}
    for value in values:
        user_id = int(value)
        if user_id > 0:
            seen.setdefault(user_id, None)
    return list(seen)


def require_active_users(db: Session, user_ids: list[int]) -> list[User]:
    if not user_ids:
        return []
    users = db.query(User).filter(
        User.id.in_(user_ids),
        User.is_active == True,  # noqa: E712
    ).all()
    if len(users) != len(set(user_ids)):
        found = {user.id for user in users}
        raise ValidationError(
            "One or more participants are invalid or inactive",
            details={"invalid_ids": sorted(set(user_ids) - found)},
        )
    return users
