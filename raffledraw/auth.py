"""Identity and authorization gate.

Callers are resolved from opaque bearer tokens. Only the SHA-256 hash of a
token is stored on the :class:`~raffledraw.models.User` row, so a leaked
database does not leak usable credentials.
"""

from __future__ import annotations

import hashlib
import logging
import math
import secrets
from dataclasses import dataclass
from typing import Any, Optional

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from .errors import AuthenticationError, AuthorizationError, NotFoundError
from .models import ROLE_ADMIN, Raffle, User

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Caller:
    """Identity and role of whoever invokes an operation."""

    user_id: int
    role: str

    @property
    def is_admin(self) -> bool:
        return self.role == ROLE_ADMIN

    @classmethod
    def for_user(cls, user: User) -> "Caller":
        if user.id is None:
            raise ValueError("User must be persisted before acting as a caller")
        return cls(user_id=user.id, role=user.role)


def hash_token(token: str) -> str:
    return hashlib.sha256(token.encode("utf-8")).hexdigest()


def issue_api_token(session: Session, user: User) -> str:
    """Mint a new API token for ``user`` and store its hash.

    Any previously issued token stops working. The plain token is returned
    once and never persisted.
    """
    token = secrets.token_urlsafe(32)
    user.api_token_hash = hash_token(token)
    session.flush()
    return token


def resolve_caller(session: Session, token: Optional[str]) -> Caller:
    """Map a bearer token to a :class:`Caller`.

    Raises
    ------
    AuthenticationError
        If the token is missing, unknown, or belongs to an inactive user.
    """
    if not token:
        raise AuthenticationError("Access token is required")
    user = User.get_by_token_hash(session, hash_token(token))
    if user is None:
        raise AuthenticationError("Invalid access token")
    if not user.is_active:
        raise AuthenticationError("User account is inactive")
    return Caller.for_user(user)


def require_admin(caller: Caller) -> None:
    if not caller.is_admin:
        raise AuthorizationError("Admin access required")


def can_modify(caller: Caller, raffle: Raffle) -> bool:
    return caller.is_admin or raffle.owner_id == caller.user_id


def ensure_can_modify(caller: Caller, raffle: Raffle) -> None:
    """Raise :class:`AuthorizationError` unless ``caller`` owns ``raffle`` or is admin."""
    if not can_modify(caller, raffle):
        raise AuthorizationError("You do not have permission to modify this raffle draw")


def ensure_can_view(caller: Caller, raffle: Raffle) -> None:
    # private raffles of other users are reported as missing
    if raffle.is_public or can_modify(caller, raffle):
        return
    raise NotFoundError("Raffle draw", raffle.id)


def list_users(
    session: Session, caller: Caller, *, page: int = 1, limit: int = 10
) -> dict[str, Any]:
    """Admin listing of accounts, newest first, with raffle counts."""
    require_admin(caller)
    page = max(int(page), 1)
    limit = min(max(int(limit), 1), 100)
    total = session.scalar(select(func.count(User.id))) or 0
    users = session.scalars(
        select(User)
        .order_by(User.created_at.desc(), User.id.desc())
        .limit(limit)
        .offset((page - 1) * limit)
    ).all()
    rows = []
    for user in users:
        data = user.to_json()
        data["raffleDrawCount"] = len(user.raffles)
        rows.append(data)
    return {
        "users": rows,
        "pagination": {
            "currentPage": page,
            "totalPages": math.ceil(total / limit),
            "totalItems": total,
            "itemsPerPage": limit,
        },
    }


def set_user_active(
    session: Session, caller: Caller, user_id: int, is_active: bool
) -> User:
    """Activate or deactivate an account (admin only).

    Deactivated users keep their raffles but can no longer authenticate.
    """
    require_admin(caller)
    user = session.get(User, user_id)
    if user is None:
        raise NotFoundError("User", user_id)
    if user.id == caller.user_id and not is_active:
        raise AuthorizationError("Admins cannot deactivate their own account")
    user.is_active = bool(is_active)
    session.flush()
    logger.info(
        "User %s %s by admin %s",
        user.id,
        "activated" if user.is_active else "deactivated",
        caller.user_id,
    )
    return user


__all__ = [
    "Caller",
    "can_modify",
    "ensure_can_modify",
    "ensure_can_view",
    "hash_token",
    "issue_api_token",
    "list_users",
    "require_admin",
    "resolve_caller",
    "set_user_active",
]
