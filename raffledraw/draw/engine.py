"""Draw engine: winner selection, bulk draw, redraw and reset."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Optional

from sqlalchemy import func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ..errors import ConflictError, InvalidStateError, NotFoundError, PreconditionError
from ..models import Participant, Prize, Raffle, RaffleStatus
from .randomness import DEFAULT_RANDOM_SOURCE, RandomSource, shuffle

logger = logging.getLogger(__name__)


@dataclass
class DrawOutcome:
    """Result of drawing a single prize.

    Attributes
    ----------
    prize : Prize
        The prize that received a winner.
    winner : Participant
        The selected participant.
    is_last_prize : bool
        ``True`` when no prize of the raffle is left without a winner; the
        raffle has then been moved to ``completed``.
    """

    prize: Prize
    winner: Participant
    is_last_prize: bool

    def to_json(self) -> dict[str, Any]:
        return {
            "prize": self.prize.to_json(),
            "winner": self.winner.to_json(),
            "isLastPrize": self.is_last_prize,
        }


@dataclass
class BulkDrawOutcome:
    """Result of :meth:`DrawEngine.draw_all`.

    ``awards`` pairs prizes (in draw order) with their winners;
    ``unassigned`` lists prizes left without a winner because eligible
    participants ran out.
    """

    awards: list[tuple[Prize, Participant]] = field(default_factory=list)
    unassigned: list[Prize] = field(default_factory=list)

    def to_json(self) -> dict[str, Any]:
        return {
            "winners": [
                {"prize": prize.to_json(), "winner": winner.to_json()}
                for prize, winner in self.awards
            ],
            "unassignedPrizes": [prize.to_json() for prize in self.unassigned],
            "totalWinners": len(self.awards),
        }


@dataclass
class RedrawOutcome:
    """Prize whose winner was cleared, and who held it before."""

    prize: Prize
    previous_winner: Participant

    def to_json(self) -> dict[str, Any]:
        return {
            "prize": self.prize.to_json(),
            "previousWinner": self.previous_winner.to_json(),
        }


@dataclass
class ResetOutcome:
    raffle_id: int
    cleared_prizes: int

    def to_json(self) -> dict[str, Any]:
        return {"raffleDrawId": self.raffle_id, "clearedPrizes": self.cleared_prizes}


@dataclass
class StepPreview:
    """Next prize to draw in step mode. No draw is performed."""

    next_prize: Prize
    total_prizes: int
    remaining_prizes: int

    def to_json(self) -> dict[str, Any]:
        return {
            "mode": "step",
            "nextPrize": self.next_prize.to_json(),
            "totalPrizes": self.total_prizes,
            "remainingPrizes": self.remaining_prizes,
        }


class DrawEngine:
    """Assigns winners to prizes inside the caller's transaction.

    The engine expects the raffle to have been loaded with a row lock (see
    :meth:`Raffle.get <raffledraw.models.Raffle.get>` with ``lock=True``), so
    the raffle row serializes concurrent draws. Prize and participant state is
    always re-read from the database, never taken from the identity map.
    """

    def __init__(
        self,
        session: Session,
        *,
        random_source: Optional[RandomSource] = None,
    ) -> None:
        """Create a draw engine bound to a SQLAlchemy session.

        Parameters
        ----------
        session : Session
            Active SQLAlchemy session used for lookups and persistence.
        random_source : Optional[RandomSource], default: None
            Source of uniform random choices. Defaults to the system CSPRNG.
        """
        self._session = session
        self._random = random_source or DEFAULT_RANDOM_SOURCE

    # -- reads -------------------------------------------------------------

    def get_prize(self, raffle: Raffle, prize_id: int) -> Prize:
        """Return the prize ``prize_id`` of ``raffle`` freshly loaded."""
        prize = self._session.scalar(
            select(Prize)
            .where(Prize.id == prize_id, Prize.raffle_id == raffle.id)
            .execution_options(populate_existing=True)
        )
        if prize is None:
            raise NotFoundError("Prize", prize_id)
        return prize

    def eligible_participants(self, raffle: Raffle) -> list[Participant]:
        """Participants of ``raffle`` that have not won a prize, by id."""
        return list(
            self._session.scalars(
                select(Participant)
                .where(
                    Participant.raffle_id == raffle.id,
                    Participant.is_winner.is_(False),
                )
                .order_by(Participant.id)
                .execution_options(populate_existing=True)
            )
        )

    def pending_prizes(self, raffle: Raffle) -> list[Prize]:
        """Prizes of ``raffle`` without a winner, in draw order."""
        return list(
            self._session.scalars(
                select(Prize)
                .where(Prize.raffle_id == raffle.id, Prize.winner_id.is_(None))
                .order_by(Prize.position, Prize.id)
                .execution_options(populate_existing=True)
            )
        )

    def _count(self, model, raffle: Raffle) -> int:
        return self._session.scalar(
            select(func.count(model.id)).where(model.raffle_id == raffle.id)
        ) or 0

    def _ensure_drawable(self, raffle: Raffle) -> None:
        """Shared draw preconditions: active raffle with prizes and participants."""
        if raffle.state != RaffleStatus.ACTIVE:
            raise InvalidStateError(
                "Raffle draw must be active to conduct draws", status=raffle.status
            )
        if self._count(Prize, raffle) == 0:
            logger.debug("Raffle %s has no prizes", raffle.id)
            raise PreconditionError("No prizes found for this raffle draw")
        if self._count(Participant, raffle) == 0:
            logger.debug("Raffle %s has no participants", raffle.id)
            raise PreconditionError("No participants found for this raffle draw")

    # -- winner links ------------------------------------------------------

    def award(self, prize: Prize, participant: Participant) -> None:
        """Link ``participant`` as the winner of ``prize``.

        Both sides are written with compare-and-swap updates inside one
        savepoint: the participant must still hold no prize and the prize
        must still have no winner. A failed write leaves neither side changed.

        Raises
        ------
        ConflictError
            If either side was already taken.
        """
        try:
            with self._session.begin_nested():
                result = self._session.execute(
                    update(Participant)
                    .where(Participant.id == participant.id, Participant.prize_id.is_(None))
                    .values(is_winner=True, prize_id=prize.id)
                    .execution_options(synchronize_session=False)
                )
                if result.rowcount != 1:
                    raise ConflictError("Participant has already won a prize")
                result = self._session.execute(
                    update(Prize)
                    .where(Prize.id == prize.id, Prize.winner_id.is_(None))
                    .values(winner_id=participant.id)
                    .execution_options(synchronize_session=False)
                )
                if result.rowcount != 1:
                    raise ConflictError("This prize already has a winner")
        except IntegrityError as exc:
            raise ConflictError("Participant has already won a prize") from exc
        self._session.expire(prize)
        self._session.expire(participant)

    def revoke(self, prize: Prize, participant: Participant) -> None:
        """Undo :meth:`award` for one prize/participant pair."""
        with self._session.begin_nested():
            result = self._session.execute(
                update(Prize)
                .where(Prize.id == prize.id, Prize.winner_id == participant.id)
                .values(winner_id=None)
                .execution_options(synchronize_session=False)
            )
            if result.rowcount != 1:
                raise ConflictError("The prize winner changed concurrently")
            result = self._session.execute(
                update(Participant)
                .where(Participant.id == participant.id, Participant.prize_id == prize.id)
                .values(is_winner=False, prize_id=None)
                .execution_options(synchronize_session=False)
            )
            if result.rowcount != 1:
                raise ConflictError("The prize winner changed concurrently")
        self._session.expire(prize)
        self._session.expire(participant)

    def _expire_roster(self) -> None:
        for obj in list(self._session.identity_map.values()):
            if isinstance(obj, (Prize, Participant)):
                self._session.expire(obj)

    # -- operations --------------------------------------------------------

    def draw_single(self, raffle: Raffle, prize_id: int) -> DrawOutcome:
        """Draw a winner for one prize.

        The raffle moves to ``completed`` only when this draw leaves no prize
        without a winner.

        Raises
        ------
        NotFoundError
            If ``prize_id`` is not a prize of ``raffle``.
        InvalidStateError
            If the raffle is closed or not active.
        ConflictError
            If the prize already has a winner.
        PreconditionError
            If the raffle has no prizes, no participants, or no participant
            is still eligible.
        """
        prize = self.get_prize(raffle, prize_id)
        raffle.ensure_not_closed("draw")
        if prize.has_winner:
            raise ConflictError("This prize already has a winner")
        self._ensure_drawable(raffle)

        eligible = self.eligible_participants(raffle)
        if not eligible:
            logger.debug("Raffle %s has no eligible participants", raffle.id)
            raise PreconditionError(
                "No eligible participants remaining "
                "(all participants have already won prizes)"
            )
        winner = eligible[self._random.pick(len(eligible))]
        self.award(prize, winner)

        is_last_prize = not self.pending_prizes(raffle)
        if is_last_prize:
            raffle.transition_to(RaffleStatus.COMPLETED)
        self._session.flush()
        logger.info(
            "Raffle %s: prize %s awarded to participant %s%s",
            raffle.id,
            prize.id,
            winner.id,
            " (last prize)" if is_last_prize else "",
        )
        return DrawOutcome(prize=prize, winner=winner, is_last_prize=is_last_prize)

    def draw_all(self, raffle: Raffle) -> BulkDrawOutcome:
        """Draw every prize still without a winner in one pass.

        Prizes in position order are paired with a random permutation of the
        eligible participants. Prizes beyond the number of eligible
        participants stay unassigned. The raffle is moved to ``completed``
        regardless.
        """
        raffle.ensure_not_closed("draw")
        self._ensure_drawable(raffle)

        prizes = self.pending_prizes(raffle)
        participants = shuffle(self.eligible_participants(raffle), self._random)
        outcome = BulkDrawOutcome()
        for prize, participant in zip(prizes, participants):
            self.award(prize, participant)
            outcome.awards.append((prize, participant))
        outcome.unassigned = prizes[len(outcome.awards):]

        raffle.transition_to(RaffleStatus.COMPLETED)
        self._session.flush()
        logger.info(
            "Raffle %s: bulk draw awarded %s prizes, %s unassigned",
            raffle.id,
            len(outcome.awards),
            len(outcome.unassigned),
        )
        return outcome

    def next_prize(self, raffle: Raffle) -> StepPreview:
        """Report the next prize to draw in step mode without drawing it."""
        raffle.ensure_not_closed("draw")
        self._ensure_drawable(raffle)
        pending = self.pending_prizes(raffle)
        if not pending:
            raise PreconditionError("All prizes already have winners")
        return StepPreview(
            next_prize=pending[0],
            total_prizes=self._count(Prize, raffle),
            remaining_prizes=len(pending),
        )

    def reset(self, raffle: Raffle) -> ResetOutcome:
        """Clear every winner link of ``raffle``. The status is left as is.

        Raises
        ------
        InvalidStateError
            If the raffle is completed or closed.
        """
        raffle.ensure_open("reset")
        result = self._session.execute(
            update(Prize)
            .where(Prize.raffle_id == raffle.id, Prize.winner_id.is_not(None))
            .values(winner_id=None)
            .execution_options(synchronize_session=False)
        )
        self._session.execute(
            update(Participant)
            .where(
                Participant.raffle_id == raffle.id,
                Participant.is_winner.is_(True) | Participant.prize_id.is_not(None),
            )
            .values(is_winner=False, prize_id=None)
            .execution_options(synchronize_session=False)
        )
        self._expire_roster()
        logger.info("Raffle %s: draw reset, %s prizes cleared", raffle.id, result.rowcount)
        return ResetOutcome(raffle_id=raffle.id, cleared_prizes=result.rowcount)

    def redraw(self, raffle: Raffle, prize_id: int) -> RedrawOutcome:
        """Clear the winner of one prize so it can be drawn again.

        Other prizes and participants are untouched and the raffle status does
        not change. The previous winner becomes eligible again.

        Raises
        ------
        InvalidStateError
            If the raffle is completed or closed.
        NotFoundError
            If ``prize_id`` is not a prize of ``raffle``.
        PreconditionError
            If the prize has no winner.
        """
        if raffle.is_locked:
            raise InvalidStateError(
                f"Cannot redraw prizes in a {raffle.status} raffle draw. "
                "Please reset the entire draw first.",
                status=raffle.status,
            )
        prize = self.get_prize(raffle, prize_id)
        if not prize.has_winner:
            raise PreconditionError("This prize does not have a winner yet. Nothing to redraw.")
        previous = self._session.get(
            Participant, prize.winner_id, populate_existing=True
        )
        self.revoke(prize, previous)
        logger.info(
            "Raffle %s: winner %s cleared from prize %s", raffle.id, previous.id, prize.id
        )
        return RedrawOutcome(prize=prize, previous_winner=previous)


__all__ = [
    "BulkDrawOutcome",
    "DrawEngine",
    "DrawOutcome",
    "RedrawOutcome",
    "ResetOutcome",
    "StepPreview",
]
