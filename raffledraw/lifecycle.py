"""Raffle lifecycle: creation, edits, status changes, deletion and listings.

Every function takes an open :class:`~sqlalchemy.orm.Session` and the acting
:class:`~raffledraw.auth.Caller`. Callers own the transaction boundary, for
example::

    with Session.begin() as session:
        raffle = create_raffle(session, caller, title="Gala", draw_date=when)
"""

from __future__ import annotations

import logging
import math
from datetime import datetime
from typing import Any, Mapping, Optional

from sqlalchemy import func, select, update
from sqlalchemy.orm import Session

from .auth import Caller, ensure_can_modify, ensure_can_view, require_admin
from .db.utils import parse_timestamp
from .errors import InvalidStateError, NotFoundError, ValidationError
from .models import Participant, Prize, Raffle, RaffleStatus, StatusChange, User
from .models.raffle import INITIAL_STATUSES

logger = logging.getLogger(__name__)

TITLE_MAX_LENGTH = 200
DEFAULT_PAGE_SIZE = 10
MAX_PAGE_SIZE = 100
UPDATABLE_FIELDS = frozenset(
    {"title", "description", "draw_date", "max_participants", "is_public", "status"}
)


def _clean_title(value: Any) -> str:
    title = value.strip() if isinstance(value, str) else ""
    if not title or len(title) > TITLE_MAX_LENGTH:
        raise ValidationError(
            "Title is required and must be less than 200 characters",
            fields={"title": "must be 1-200 characters"},
        )
    return title


def _clean_draw_date(value: Any) -> datetime:
    try:
        return parse_timestamp(value)
    except (TypeError, ValueError) as exc:
        raise ValidationError(
            "Please provide a valid draw date",
            fields={"drawDate": "must be an ISO 8601 timestamp"},
        ) from exc


def _clean_max_participants(value: Any) -> Optional[int]:
    if value is None:
        return None
    if isinstance(value, bool) or not isinstance(value, int) or value < 0:
        raise ValidationError(
            "Max participants must be a non-negative integer",
            fields={"maxParticipants": "must be a non-negative integer"},
        )
    return value


def _clean_description(value: Any) -> Optional[str]:
    if value is None:
        return None
    if not isinstance(value, str):
        raise ValidationError(
            "Description must be text", fields={"description": "must be a string"}
        )
    return value.strip() or None


def load_raffle(
    session: Session,
    caller: Caller,
    raffle_id: int,
    *,
    for_update: bool = False,
    modify: bool = True,
) -> Raffle:
    """Fetch a raffle and apply the access gate.

    Parameters
    ----------
    for_update : bool, default: False
        Re-read the row with ``SELECT ... FOR UPDATE`` so it becomes the
        serialization point of the surrounding transaction.
    modify : bool, default: True
        Require owner-or-admin rights. With ``False`` only visibility is
        checked (public raffles are readable by every authenticated caller).

    Raises
    ------
    NotFoundError
        If the raffle does not exist or is private to another user.
    AuthorizationError
        If ``modify`` is requested by a caller who only may read it.
    """
    raffle = Raffle.get(session, raffle_id, lock=for_update)
    if raffle is None:
        raise NotFoundError("Raffle draw", raffle_id)
    ensure_can_view(caller, raffle)
    if modify:
        ensure_can_modify(caller, raffle)
    return raffle


def create_raffle(
    session: Session,
    caller: Caller,
    *,
    title: Any,
    draw_date: Any,
    description: Any = None,
    max_participants: Any = None,
    is_public: bool = True,
    status: Any = RaffleStatus.DRAFT,
) -> Raffle:
    """Create a raffle owned by ``caller``.

    The initial status may be ``draft`` (default) or ``active``.

    Raises
    ------
    ValidationError
        If the title is empty or too long, the draw date is not a valid
        timestamp, the participant cap is negative, or the initial status is
        not allowed.
    """
    initial = RaffleStatus.parse(status)
    if initial not in INITIAL_STATUSES:
        raise ValidationError(
            "A raffle draw can only be created as draft or active",
            fields={"status": "must be draft or active"},
        )
    raffle = Raffle(
        title=_clean_title(title),
        draw_date=_clean_draw_date(draw_date),
        description=_clean_description(description),
        max_participants=_clean_max_participants(max_participants),
        is_public=bool(is_public),
        status=initial,
        owner_id=caller.user_id,
    )
    session.add(raffle)
    session.flush()
    logger.info(
        "Raffle %s created by user %s (status=%s)", raffle.id, caller.user_id, raffle.status
    )
    return raffle


def get_raffle(session: Session, caller: Caller, raffle_id: int) -> Raffle:
    """Return a raffle readable by ``caller``; prizes and participants load lazily."""
    raffle = load_raffle(session, caller, raffle_id, modify=False)
    session.expire(raffle, ["prizes", "participants"])
    return raffle


def update_raffle(
    session: Session, caller: Caller, raffle_id: int, fields: Mapping[str, Any]
) -> Raffle:
    """Apply a partial update to a raffle.

    Recognised keys are ``title``, ``description``, ``draw_date``,
    ``max_participants``, ``is_public`` and ``status``. A status change must
    follow the ordinary transition graph; use :func:`transition_raffle` for
    an admin override.

    Raises
    ------
    InvalidStateError
        If the raffle is completed or closed, or the status change is illegal.
    ValidationError
        If no recognised field is given or a value is malformed.
    """
    raffle = load_raffle(session, caller, raffle_id, for_update=True)
    raffle.ensure_open("update")

    changes = {key: value for key, value in fields.items() if key in UPDATABLE_FIELDS}
    if not changes:
        raise ValidationError(
            "At least one field must be provided to update",
            fields={"body": "no updatable field supplied"},
        )
    if "title" in changes:
        raffle.title = _clean_title(changes["title"])
    if "description" in changes:
        raffle.description = _clean_description(changes["description"])
    if "draw_date" in changes:
        raffle.draw_date = _clean_draw_date(changes["draw_date"])
    if "max_participants" in changes:
        raffle.max_participants = _clean_max_participants(changes["max_participants"])
    if "is_public" in changes:
        raffle.is_public = bool(changes["is_public"])
    if "status" in changes and changes["status"] is not None:
        target = RaffleStatus.parse(changes["status"])
        if target != raffle.state:
            raffle.transition_to(target)
    session.flush()
    logger.info("Raffle %s updated by user %s", raffle.id, caller.user_id)
    return raffle


def transition_raffle(
    session: Session, caller: Caller, raffle_id: int, new_status: Any
) -> StatusChange:
    """Admin status override. Returns the recorded old -> new change."""
    require_admin(caller)
    target = RaffleStatus.parse(new_status)
    raffle = load_raffle(session, caller, raffle_id, for_update=True)
    change = raffle.transition_to(target, override=True)
    session.flush()
    return change


def mark_closed(session: Session, caller: Caller, raffle_id: int) -> StatusChange:
    """Close a raffle permanently.

    Afterwards every mutating roster or draw operation on the raffle fails
    with :class:`InvalidStateError`.
    """
    raffle = load_raffle(session, caller, raffle_id, for_update=True)
    if raffle.state == RaffleStatus.CLOSED:
        raise InvalidStateError("Raffle draw is already closed", status=raffle.status)
    change = raffle.transition_to(RaffleStatus.CLOSED)
    session.flush()
    return change


def delete_raffle(session: Session, caller: Caller, raffle_id: int) -> None:
    """Delete a raffle together with its prizes and participants."""
    raffle = load_raffle(session, caller, raffle_id, for_update=True)
    if raffle.is_locked:
        raise InvalidStateError(
            f"Cannot delete {raffle.status} raffle draw", status=raffle.status
        )
    # Drop the prize <-> participant cross links so the cascade can delete
    # both tables in any order.
    session.execute(
        update(Prize)
        .where(Prize.raffle_id == raffle.id)
        .values(winner_id=None)
        .execution_options(synchronize_session=False)
    )
    session.execute(
        update(Participant)
        .where(Participant.raffle_id == raffle.id)
        .values(is_winner=False, prize_id=None)
        .execution_options(synchronize_session=False)
    )
    session.expire(raffle, ["prizes", "participants"])
    session.delete(raffle)
    session.flush()
    logger.info("Raffle %s deleted by user %s", raffle_id, caller.user_id)


def _paginate(page: int, limit: int) -> tuple[int, int]:
    if isinstance(page, bool) or not isinstance(page, int) or page < 1:
        raise ValidationError("Page must be a positive integer", fields={"page": "must be >= 1"})
    if isinstance(limit, bool) or not isinstance(limit, int) or not 1 <= limit <= MAX_PAGE_SIZE:
        raise ValidationError(
            f"Limit must be between 1 and {MAX_PAGE_SIZE}",
            fields={"limit": f"must be between 1 and {MAX_PAGE_SIZE}"},
        )
    return page, limit


def list_raffles(
    session: Session,
    caller: Caller,
    *,
    page: int = 1,
    limit: int = DEFAULT_PAGE_SIZE,
    status: Any = None,
    owner_id: Optional[int] = None,
    all_owners: bool = False,
) -> dict[str, Any]:
    """Return a page of raffles, newest first.

    Regular callers only see their own raffles. ``all_owners`` (optionally
    narrowed by ``owner_id``) is reserved for admins.
    """
    page, limit = _paginate(page, limit)
    stmt = select(Raffle)
    if all_owners:
        require_admin(caller)
        if owner_id is not None:
            stmt = stmt.where(Raffle.owner_id == owner_id)
    else:
        stmt = stmt.where(Raffle.owner_id == caller.user_id)
    if status:
        stmt = stmt.where(Raffle.status == RaffleStatus.parse(status).value)

    total = session.scalar(select(func.count()).select_from(stmt.subquery())) or 0
    rows = session.scalars(
        stmt.order_by(Raffle.created_at.desc(), Raffle.id.desc())
        .limit(limit)
        .offset((page - 1) * limit)
    ).all()
    return {
        "raffleDraws": [_summary_json(session, raffle) for raffle in rows],
        "pagination": {
            "currentPage": page,
            "totalPages": math.ceil(total / limit),
            "totalItems": total,
            "itemsPerPage": limit,
        },
    }


def _summary_json(session: Session, raffle: Raffle) -> dict[str, Any]:
    data = raffle.to_json()
    data["prizeCount"] = session.scalar(
        select(func.count(Prize.id)).where(Prize.raffle_id == raffle.id)
    )
    data["participantCount"] = Participant.count_for_raffle(session, raffle.id)
    return data


def dashboard_stats(session: Session, caller: Caller, *, recent: int = 5) -> dict[str, Any]:
    """Admin dashboard: global counts and the most recently created raffles."""
    require_admin(caller)

    def count(stmt) -> int:
        return session.scalar(stmt) or 0

    recent_rows = session.scalars(
        select(Raffle).order_by(Raffle.created_at.desc(), Raffle.id.desc()).limit(recent)
    ).all()
    return {
        "stats": {
            "totalUsers": count(select(func.count(User.id))),
            "totalRaffleDraws": count(select(func.count(Raffle.id))),
            "activeRaffleDraws": count(
                select(func.count(Raffle.id)).where(
                    Raffle.status == RaffleStatus.ACTIVE.value
                )
            ),
            "completedRaffleDraws": count(
                select(func.count(Raffle.id)).where(
                    Raffle.status == RaffleStatus.COMPLETED.value
                )
            ),
            "totalParticipants": count(select(func.count(Participant.id))),
            "totalPrizes": count(select(func.count(Prize.id))),
        },
        "recentRaffleDraws": [raffle.to_json() for raffle in recent_rows],
    }


__all__ = [
    "create_raffle",
    "dashboard_stats",
    "delete_raffle",
    "get_raffle",
    "list_raffles",
    "load_raffle",
    "mark_closed",
    "transition_raffle",
    "update_raffle",
]
