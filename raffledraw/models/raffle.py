"""Raffle aggregate and its status state machine."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import TYPE_CHECKING, Any, Optional

from sqlalchemy import (
    Boolean,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    select,
    text,
)
from sqlalchemy.orm import Mapped, Session, mapped_column, relationship

from ..db.utils import dt_iso
from ..errors import InvalidStateError, ValidationError
from .base import ID_TYPE, Base, utcnow

if TYPE_CHECKING:
    from .participant import Participant
    from .prize import Prize
    from .user import User

logger = logging.getLogger(__name__)


class RaffleStatus(str, Enum):
    """Lifecycle states of a raffle."""

    DRAFT = "draft"
    ACTIVE = "active"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    CLOSED = "closed"

    @classmethod
    def parse(cls, value: Any) -> "RaffleStatus":
        """Return the member for ``value`` or raise :class:`ValidationError`."""
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).strip().lower())
        except ValueError as exc:
            allowed = ", ".join(member.value for member in cls)
            raise ValidationError(
                f"Invalid status. Must be one of: {allowed}",
                fields={"status": f"must be one of: {allowed}"},
            ) from exc


# Ordinary transitions. MarkClosed may close any raffle that is not closed yet.
ALLOWED_TRANSITIONS: dict[RaffleStatus, frozenset[RaffleStatus]] = {
    RaffleStatus.DRAFT: frozenset({RaffleStatus.ACTIVE, RaffleStatus.CLOSED}),
    RaffleStatus.ACTIVE: frozenset(
        {RaffleStatus.COMPLETED, RaffleStatus.CANCELLED, RaffleStatus.CLOSED}
    ),
    RaffleStatus.COMPLETED: frozenset({RaffleStatus.CLOSED}),
    RaffleStatus.CANCELLED: frozenset({RaffleStatus.CLOSED}),
    RaffleStatus.CLOSED: frozenset(),
}

# Statuses in which the roster and the draw results are frozen.
LOCKED_STATUSES = frozenset({RaffleStatus.COMPLETED, RaffleStatus.CLOSED})

# Statuses a raffle may be created in.
INITIAL_STATUSES = frozenset({RaffleStatus.DRAFT, RaffleStatus.ACTIVE})


def check_transition(
    current: RaffleStatus, target: RaffleStatus, *, override: bool = False
) -> None:
    """Validate ``current -> target`` against the transition graph.

    With ``override`` (admin status override) any target is accepted except
    leaving ``closed`` and reopening a ``completed`` raffle.

    Raises
    ------
    ValidationError
        If ``target`` equals ``current``.
    InvalidStateError
        If the transition is not permitted.
    """
    if current == target:
        raise ValidationError(
            f"Raffle draw is already {current.value}",
            fields={"status": "must differ from the current status"},
        )
    if override:
        if current == RaffleStatus.CLOSED:
            raise InvalidStateError(
                "A closed raffle draw cannot change status", status=current.value
            )
        if current == RaffleStatus.COMPLETED and target in INITIAL_STATUSES:
            raise InvalidStateError(
                f"Cannot reopen a completed raffle draw as {target.value}",
                status=current.value,
            )
        return
    if target not in ALLOWED_TRANSITIONS[current]:
        raise InvalidStateError(
            f"Cannot change raffle draw status from {current.value} to {target.value}",
            status=current.value,
        )


@dataclass(frozen=True)
class StatusChange:
    """Record of a status transition, kept for audit and messaging."""

    raffle_id: int
    old_status: RaffleStatus
    new_status: RaffleStatus

    @property
    def message(self) -> str:
        return (
            f"Raffle draw status updated from {self.old_status.value} "
            f"to {self.new_status.value}"
        )


class Raffle(Base):
    """A named raffle event owning its prizes and participants."""

    __tablename__ = "raffles"

    id: Mapped[int] = mapped_column(ID_TYPE, primary_key=True, index=True, autoincrement=True)
    title: Mapped[str] = mapped_column(String(200), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    draw_date: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=RaffleStatus.DRAFT.value
    )
    max_participants: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    """Participant cap; ``None`` or ``0`` means unlimited."""

    owner_id: Mapped[int] = mapped_column(
        ID_TYPE, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True
    )
    is_public: Mapped[bool] = mapped_column(
        Boolean, nullable=False, default=True, server_default=text("true")
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=utcnow,
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=utcnow,
        onupdate=utcnow,
    )

    owner: Mapped["User"] = relationship(back_populates="raffles")
    prizes: Mapped[list["Prize"]] = relationship(
        back_populates="raffle",
        cascade="all, delete-orphan",
        order_by="[Prize.position, Prize.id]",
    )
    participants: Mapped[list["Participant"]] = relationship(
        back_populates="raffle",
        cascade="all, delete-orphan",
        order_by="Participant.id",
    )

    __table_args__ = (Index("ix_raffles_owner_status", "owner_id", "status"),)

    def __init__(
        self,
        *,
        title: str,
        draw_date: datetime,
        owner: Optional["User"] = None,
        owner_id: Optional[int] = None,
        description: Optional[str] = None,
        status: RaffleStatus | str = RaffleStatus.DRAFT,
        max_participants: Optional[int] = None,
        is_public: bool = True,
        created_at: Optional[datetime] = None,
    ) -> None:
        self.title = title
        self.draw_date = draw_date
        if owner is not None:
            self.owner = owner
        if owner_id is not None:
            self.owner_id = owner_id
        self.description = description
        self.status = RaffleStatus.parse(status).value
        self.max_participants = max_participants
        self.is_public = is_public
        if created_at is not None:
            self.created_at = created_at

    def __repr__(self) -> str:  # pragma: no cover - repr is trivial
        return f"<Raffle(id={self.id}, title='{self.title}', status='{self.status}')>"

    @classmethod
    def get(
        cls, session: Session, raffle_id: int, *, lock: bool = False
    ) -> Optional["Raffle"]:
        """Return the raffle with ``raffle_id``.

        With ``lock`` the row is re-read with ``SELECT ... FOR UPDATE`` and the
        identity-map copy is overwritten, so callers see committed state.
        """
        stmt = select(cls).where(cls.id == raffle_id)
        if lock:
            stmt = stmt.with_for_update().execution_options(populate_existing=True)
        return session.scalar(stmt)

    @property
    def state(self) -> RaffleStatus:
        return RaffleStatus(self.status)

    @property
    def is_locked(self) -> bool:
        """``True`` once the raffle is completed or closed."""
        return self.state in LOCKED_STATUSES

    @property
    def has_capacity_limit(self) -> bool:
        return bool(self.max_participants and self.max_participants > 0)

    def ensure_not_closed(self, action: str) -> None:
        if self.state == RaffleStatus.CLOSED:
            raise InvalidStateError(
                f"Cannot {action} a closed raffle draw", status=self.status
            )

    def ensure_open(self, action: str) -> None:
        """Raise :class:`InvalidStateError` if the raffle is completed or closed."""
        if self.is_locked:
            raise InvalidStateError(
                f"Cannot {action} a {self.status} raffle draw", status=self.status
            )

    def transition_to(
        self, target: RaffleStatus | str, *, override: bool = False
    ) -> StatusChange:
        """Move the raffle to ``target`` after validating the transition."""
        new_status = RaffleStatus.parse(target)
        old_status = self.state
        check_transition(old_status, new_status, override=override)
        self.status = new_status.value
        logger.info(
            "Raffle %s status %s -> %s%s",
            self.id,
            old_status.value,
            new_status.value,
            " (override)" if override else "",
        )
        return StatusChange(
            raffle_id=self.id, old_status=old_status, new_status=new_status
        )

    def to_json(self, *, include_roster: bool = False) -> dict[str, Any]:
        """Return a JSON-serializable dict. ``include_roster`` embeds prizes
        (with winners) and participants."""
        data: dict[str, Any] = {
            "id": self.id,
            "title": self.title,
            "description": self.description,
            "drawDate": dt_iso(self.draw_date),
            "status": self.status,
            "maxParticipants": self.max_participants,
            "userId": self.owner_id,
            "isPublic": self.is_public,
            "createdAt": dt_iso(self.created_at),
            "updatedAt": dt_iso(self.updated_at),
        }
        if include_roster:
            data["prizes"] = [p.to_json(include_winner=True) for p in self.prizes]
            data["participants"] = [p.to_json() for p in self.participants]
        return data


__all__ = [
    "ALLOWED_TRANSITIONS",
    "INITIAL_STATUSES",
    "LOCKED_STATUSES",
    "Raffle",
    "RaffleStatus",
    "StatusChange",
    "check_transition",
]
