from datetime import datetime
from typing import TYPE_CHECKING, Any, Optional

from sqlalchemy import (
    Boolean,
    DateTime,
    ForeignKey,
    String,
    UniqueConstraint,
    func,
    select,
    text,
)
from sqlalchemy.orm import Mapped, Session, mapped_column, relationship, validates

from ..db.utils import dt_iso
from .base import ID_TYPE, Base, utcnow

if TYPE_CHECKING:
    from .prize import Prize
    from .raffle import Raffle


class Participant(Base):
    """One entrant of a raffle.

    ``is_winner`` is true exactly when ``prize_id`` is set and that prize's
    ``winner_id`` points back here. Only the draw engine changes the trio.
    """

    __tablename__ = "participants"

    id: Mapped[int] = mapped_column(ID_TYPE, primary_key=True, index=True, autoincrement=True)
    raffle_id: Mapped[int] = mapped_column(
        ID_TYPE, ForeignKey("raffles.id", ondelete="CASCADE"), nullable=False, index=True
    )
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    email: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    phone: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)
    designation: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    ticket_number: Mapped[str] = mapped_column(String(50), unique=True, nullable=False)
    is_winner: Mapped[bool] = mapped_column(
        Boolean, nullable=False, default=False, server_default=text("false")
    )
    prize_id: Mapped[Optional[int]] = mapped_column(
        ID_TYPE,
        # prizes.winner_id points the other way; use_alter breaks the DDL cycle.
        ForeignKey("prizes.id", ondelete="SET NULL", use_alter=True),
        nullable=True,
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utcnow,
        onupdate=utcnow,
    )

    raffle: Mapped["Raffle"] = relationship(back_populates="participants")
    prize: Mapped[Optional["Prize"]] = relationship(
        "Prize", foreign_keys=[prize_id], viewonly=True
    )

    __table_args__ = (
        UniqueConstraint("raffle_id", "email", name="uq_participants_raffle_email"),
    )

    def __repr__(self) -> str:
        return (
            f"<Participant(id={self.id}, raffle_id={self.raffle_id}, name='{self.name}', "
            f"ticket_number='{self.ticket_number}', is_winner={self.is_winner})>"
        )

    @validates("email")
    def _normalize_email(self, _key: str, value: Optional[str]) -> Optional[str]:
        if value is None:
            return None
        normalized = value.strip().lower()
        return normalized or None

    @classmethod
    def get_by_email(
        cls, session: Session, raffle_id: int, email: str
    ) -> Optional["Participant"]:
        """Return the participant of ``raffle_id`` registered with ``email``."""
        return session.scalar(
            select(cls).where(
                cls.raffle_id == raffle_id,
                cls.email == email.strip().lower(),
            )
        )

    @classmethod
    def count_for_raffle(cls, session: Session, raffle_id: int) -> int:
        return session.scalar(
            select(func.count(cls.id)).where(cls.raffle_id == raffle_id)
        ) or 0

    def to_json(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "raffleDrawId": self.raffle_id,
            "name": self.name,
            "email": self.email,
            "phone": self.phone,
            "designation": self.designation,
            "ticketNumber": self.ticket_number,
            "isWinner": self.is_winner,
            "prizeId": self.prize_id,
            "createdAt": dt_iso(self.created_at),
            "updatedAt": dt_iso(self.updated_at),
        }
