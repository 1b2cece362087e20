from datetime import datetime
from decimal import Decimal
from typing import TYPE_CHECKING, Any, Optional

from sqlalchemy import DateTime, ForeignKey, Index, Integer, Numeric, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from ..db.utils import dt_iso
from .base import ID_TYPE, Base, utcnow

if TYPE_CHECKING:
    from .participant import Participant
    from .raffle import Raffle


class Prize(Base):
    """An awardable item within a raffle.

    ``position`` is the draw order (duplicates allowed; ties fall back to
    ``id``). ``winner_id`` is written only by the draw engine, together with
    the winning participant's ``is_winner``/``prize_id`` pair.
    """

    __tablename__ = "prizes"

    id: Mapped[int] = mapped_column(ID_TYPE, primary_key=True, index=True, autoincrement=True)
    raffle_id: Mapped[int] = mapped_column(
        ID_TYPE, ForeignKey("raffles.id", ondelete="CASCADE"), nullable=False
    )
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    value: Mapped[Optional[Decimal]] = mapped_column(Numeric(10, 2), nullable=True)
    position: Mapped[int] = mapped_column(Integer, nullable=False)
    winner_id: Mapped[Optional[int]] = mapped_column(
        ID_TYPE,
        ForeignKey("participants.id", ondelete="SET NULL"),
        unique=True,
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

    raffle: Mapped["Raffle"] = relationship(back_populates="prizes")
    # Read-only view of the winner link; writes go through the draw engine.
    winner: Mapped[Optional["Participant"]] = relationship(
        "Participant", foreign_keys=[winner_id], viewonly=True
    )

    __table_args__ = (Index("ix_prizes_raffle_position", "raffle_id", "position"),)

    def __repr__(self) -> str:
        return (
            f"<Prize(id={self.id}, raffle_id={self.raffle_id}, name='{self.name}', "
            f"position={self.position}, winner_id={self.winner_id})>"
        )

    @property
    def has_winner(self) -> bool:
        return self.winner_id is not None

    def to_json(self, *, include_winner: bool = False) -> dict[str, Any]:
        data: dict[str, Any] = {
            "id": self.id,
            "raffleDrawId": self.raffle_id,
            "name": self.name,
            "description": self.description,
            "value": None if self.value is None else str(self.value),
            "position": self.position,
            "winnerId": self.winner_id,
            "createdAt": dt_iso(self.created_at),
            "updatedAt": dt_iso(self.updated_at),
        }
        if include_winner:
            winner = self.winner
            data["winner"] = winner.to_json() if winner is not None else None
        return data
