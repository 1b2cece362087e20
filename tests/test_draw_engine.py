from __future__ import annotations

import unittest

from sqlalchemy import create_engine, select
from sqlalchemy.orm import sessionmaker

from raffledraw.auth import Caller
from raffledraw.draw import (
    DrawEngine,
    RandomSource,
    SystemRandomSource,
    conduct_draw,
    draw_prize,
    redraw_prize,
    reset_draw,
    shuffle,
)
from raffledraw.errors import (
    ConflictError,
    InvalidStateError,
    NotFoundError,
    PreconditionError,
    ValidationError,
)
from raffledraw.lifecycle import create_raffle, delete_raffle, mark_closed, update_raffle
from raffledraw.models import Base, Participant, Prize, Raffle, RaffleStatus, User
from raffledraw.roster import (
    add_participant,
    add_prize,
    delete_participant,
    update_prize,
)


class FixedRandomSource(RandomSource):
    """Returns queued indices (modulo ``n``); 0 once the queue is empty."""

    def __init__(self, picks=()):
        self.picks = list(picks)
        self.calls: list[int] = []

    def pick(self, n: int) -> int:
        self.calls.append(n)
        value = self.picks.pop(0) if self.picks else 0
        return value % n


class DrawEngineTests(unittest.TestCase):
    def setUp(self) -> None:
        self.engine = create_engine("sqlite+pysqlite:///:memory:", future=True)
        Base.metadata.create_all(self.engine)
        self.Session = sessionmaker(
            bind=self.engine, future=True, expire_on_commit=False
        )

    def tearDown(self) -> None:
        self.engine.dispose()

    def _seed(
        self,
        session,
        *,
        prizes: int = 2,
        participants: int = 3,
        status: str = "active",
    ) -> tuple[Caller, Raffle]:
        owner = User(username="owner")
        session.add(owner)
        session.flush()
        caller = Caller.for_user(owner)
        raffle = create_raffle(
            session,
            caller,
            title="Office Party",
            draw_date="2030-01-01T18:00:00Z",
            status=status,
        )
        for position in range(1, prizes + 1):
            add_prize(session, caller, raffle.id, name=f"Prize {position}", position=position)
        for index in range(1, participants + 1):
            add_participant(
                session,
                caller,
                raffle.id,
                name=f"Person {index}",
                email=f"person{index}@example.com",
            )
        return caller, raffle

    def _prizes(self, session, raffle_id: int) -> list[Prize]:
        return list(
            session.scalars(
                select(Prize)
                .where(Prize.raffle_id == raffle_id)
                .order_by(Prize.position, Prize.id)
                .execution_options(populate_existing=True)
            )
        )

    def _participants(self, session, raffle_id: int) -> list[Participant]:
        return list(
            session.scalars(
                select(Participant)
                .where(Participant.raffle_id == raffle_id)
                .order_by(Participant.id)
                .execution_options(populate_existing=True)
            )
        )

    def assertLinksConsistent(self, session, raffle_id: int) -> None:
        winners = {
            prize.id: prize.winner_id
            for prize in self._prizes(session, raffle_id)
            if prize.winner_id is not None
        }
        self.assertEqual(len(set(winners.values())), len(winners))
        for participant in self._participants(session, raffle_id):
            if participant.is_winner:
                self.assertIsNotNone(participant.prize_id)
                self.assertEqual(winners.get(participant.prize_id), participant.id)
            else:
                self.assertIsNone(participant.prize_id)
                self.assertNotIn(participant.id, winners.values())

    # -- draw all ----------------------------------------------------------

    def test_draw_all_pairs_prizes_with_shuffled_participants(self) -> None:
        with self.Session.begin() as session:
            caller, raffle = self._seed(session, prizes=2, participants=3)
            source = FixedRandomSource()
            outcome = conduct_draw(session, caller, raffle.id, random_source=source)

            p1, p2, p3 = self._participants(session, raffle.id)
            prize1, prize2 = self._prizes(session, raffle.id)
            # Fisher-Yates with every pick 0 turns [p1, p2, p3] into [p2, p3, p1]
            self.assertEqual(source.calls, [3, 2])
            self.assertEqual(prize1.winner_id, p2.id)
            self.assertEqual(prize2.winner_id, p3.id)
            self.assertFalse(p1.is_winner)
            self.assertEqual(len(outcome.awards), 2)
            self.assertEqual(outcome.unassigned, [])
            self.assertEqual(session.get(Raffle, raffle.id).status, "completed")
            self.assertLinksConsistent(session, raffle.id)

    def test_draw_all_completes_even_with_participant_shortfall(self) -> None:
        with self.Session.begin() as session:
            caller, raffle = self._seed(session, prizes=3, participants=1)
            outcome = conduct_draw(
                session, caller, raffle.id, random_source=FixedRandomSource()
            )

            self.assertEqual(len(outcome.awards), 1)
            self.assertEqual([p.position for p in outcome.unassigned], [2, 3])
            first, second, third = self._prizes(session, raffle.id)
            self.assertIsNotNone(first.winner_id)
            self.assertIsNone(second.winner_id)
            self.assertIsNone(third.winner_id)
            self.assertEqual(session.get(Raffle, raffle.id).state, RaffleStatus.COMPLETED)
            self.assertLinksConsistent(session, raffle.id)

    def test_draw_all_skips_prizes_that_already_have_winners(self) -> None:
        with self.Session.begin() as session:
            caller, raffle = self._seed(session, prizes=2, participants=3)
            prize1, prize2 = self._prizes(session, raffle.id)
            first = draw_prize(
                session, caller, raffle.id, prize2.id, random_source=FixedRandomSource([2])
            )
            outcome = conduct_draw(
                session, caller, raffle.id, random_source=FixedRandomSource()
            )

            self.assertEqual([prize.id for prize, _ in outcome.awards], [prize1.id])
            self.assertNotEqual(outcome.awards[0][1].id, first.winner.id)
            self.assertLinksConsistent(session, raffle.id)

    def test_draw_requires_active_raffle(self) -> None:
        with self.Session.begin() as session:
            caller, raffle = self._seed(session, status="draft")
            prize = self._prizes(session, raffle.id)[0]
            with self.assertRaises(InvalidStateError):
                conduct_draw(session, caller, raffle.id)
            with self.assertRaises(InvalidStateError):
                draw_prize(session, caller, raffle.id, prize.id)

    def test_draw_rejects_unknown_mode(self) -> None:
        with self.Session.begin() as session:
            caller, raffle = self._seed(session)
            with self.assertRaises(ValidationError):
                conduct_draw(session, caller, raffle.id, mode="everything")

    def test_draw_all_without_prizes_raises_precondition(self) -> None:
        with self.Session.begin() as session:
            caller, raffle = self._seed(session, prizes=0, participants=2)
            with self.assertRaises(PreconditionError):
                conduct_draw(session, caller, raffle.id)
            self.assertEqual(session.get(Raffle, raffle.id).status, "active")

    # -- draw single -------------------------------------------------------

    def test_draw_single_without_participants_raises_precondition(self) -> None:
        with self.Session.begin() as session:
            caller, raffle = self._seed(session, prizes=1, participants=0)
            prize = self._prizes(session, raffle.id)[0]
            with self.assertRaises(PreconditionError):
                draw_prize(session, caller, raffle.id, prize.id)

            self.assertIsNone(self._prizes(session, raffle.id)[0].winner_id)
            self.assertEqual(session.get(Raffle, raffle.id).status, "active")

    def test_draw_single_on_won_prize_raises_conflict(self) -> None:
        with self.Session.begin() as session:
            caller, raffle = self._seed(session, prizes=2, participants=3)
            prize = self._prizes(session, raffle.id)[0]
            outcome = draw_prize(session, caller, raffle.id, prize.id)
            winner_id = outcome.winner.id

            with self.assertRaises(ConflictError):
                draw_prize(session, caller, raffle.id, prize.id)

            self.assertEqual(self._prizes(session, raffle.id)[0].winner_id, winner_id)
            self.assertLinksConsistent(session, raffle.id)

    def test_draw_single_completes_only_after_last_prize(self) -> None:
        with self.Session.begin() as session:
            caller, raffle = self._seed(session, prizes=2, participants=3)
            prize1, prize2 = self._prizes(session, raffle.id)

            first = draw_prize(session, caller, raffle.id, prize1.id)
            self.assertFalse(first.is_last_prize)
            self.assertEqual(session.get(Raffle, raffle.id).status, "active")

            second = draw_prize(session, caller, raffle.id, prize2.id)
            self.assertTrue(second.is_last_prize)
            self.assertEqual(session.get(Raffle, raffle.id).status, "completed")
            self.assertNotEqual(first.winner.id, second.winner.id)

    def test_draw_single_picks_from_eligible_participants_only(self) -> None:
        with self.Session.begin() as session:
            caller, raffle = self._seed(session, prizes=3, participants=3)
            prizes = self._prizes(session, raffle.id)
            source = FixedRandomSource([0, 0, 0])
            winners = [
                draw_prize(session, caller, raffle.id, prize.id, random_source=source).winner.id
                for prize in prizes
            ]

            self.assertEqual(source.calls, [3, 2, 1])
            self.assertEqual(len(set(winners)), 3)
            self.assertLinksConsistent(session, raffle.id)

    def test_draw_single_fails_when_everyone_has_won(self) -> None:
        with self.Session.begin() as session:
            caller, raffle = self._seed(session, prizes=2, participants=1)
            prize1, prize2 = self._prizes(session, raffle.id)
            draw_prize(session, caller, raffle.id, prize1.id)
            with self.assertRaises(PreconditionError):
                draw_prize(session, caller, raffle.id, prize2.id)
            self.assertEqual(session.get(Raffle, raffle.id).status, "active")

    def test_draw_single_rejects_prize_of_other_raffle(self) -> None:
        with self.Session.begin() as session:
            caller, raffle = self._seed(session)
            other = create_raffle(
                session, caller, title="Other", draw_date="2030-01-01", status="active"
            )
            foreign = add_prize(session, caller, other.id, name="Elsewhere", position=1)
            with self.assertRaises(NotFoundError):
                draw_prize(session, caller, raffle.id, foreign.id)

    def test_award_refuses_participant_who_already_won(self) -> None:
        with self.Session.begin() as session:
            caller, raffle = self._seed(session, prizes=2, participants=2)
            prize1, prize2 = self._prizes(session, raffle.id)
            winner = draw_prize(session, caller, raffle.id, prize1.id).winner

            engine = DrawEngine(session)
            with self.assertRaises(ConflictError) as ctx:
                engine.award(prize2, winner)
            self.assertEqual(ctx.exception.message, "Participant has already won a prize")

            prize1, prize2 = self._prizes(session, raffle.id)
            self.assertEqual(prize1.winner_id, winner.id)
            self.assertIsNone(prize2.winner_id)
            self.assertLinksConsistent(session, raffle.id)

    def test_award_to_taken_prize_leaves_participant_untouched(self) -> None:
        with self.Session.begin() as session:
            caller, raffle = self._seed(session, prizes=2, participants=2)
            prize1, _ = self._prizes(session, raffle.id)
            winner = draw_prize(session, caller, raffle.id, prize1.id).winner
            other = next(
                p for p in self._participants(session, raffle.id) if p.id != winner.id
            )

            with self.assertRaises(ConflictError) as ctx:
                DrawEngine(session).award(prize1, other)
            self.assertEqual(ctx.exception.message, "This prize already has a winner")

            other = session.get(Participant, other.id, populate_existing=True)
            self.assertFalse(other.is_winner)
            self.assertIsNone(other.prize_id)
            self.assertLinksConsistent(session, raffle.id)

    def test_failed_award_can_be_committed_without_partial_link(self) -> None:
        with self.Session.begin() as session:
            caller, raffle = self._seed(session, prizes=2, participants=2)
            raffle_id = raffle.id
            prize1, _ = self._prizes(session, raffle_id)
            winner_id = draw_prize(session, caller, raffle_id, prize1.id).winner.id
            other = next(
                p for p in self._participants(session, raffle_id) if p.id != winner_id
            )
            with self.assertRaises(ConflictError):
                DrawEngine(session).award(prize1, other)

        with self.Session() as session:
            prizes = self._prizes(session, raffle_id)
            self.assertEqual(prizes[0].winner_id, winner_id)
            self.assertIsNone(prizes[1].winner_id)
            winners = [p.id for p in self._participants(session, raffle_id) if p.is_winner]
            self.assertEqual(winners, [winner_id])
            self.assertLinksConsistent(session, raffle_id)

    # -- redraw and reset --------------------------------------------------

    def _seed_three_prizes(self, session) -> tuple[Caller, Raffle]:
        """Three prizes and four participants, so two draws leave it active."""
        return self._seed(session, prizes=3, participants=4)

    def test_redraw_clears_only_the_target_prize(self) -> None:
        with self.Session.begin() as session:
            caller, raffle = self._seed_three_prizes(session)
            prize1, prize2, _ = self._prizes(session, raffle.id)
            w1 = draw_prize(session, caller, raffle.id, prize1.id).winner.id
            w2 = draw_prize(session, caller, raffle.id, prize2.id).winner.id

            outcome = redraw_prize(session, caller, raffle.id, prize1.id)

            self.assertEqual(outcome.previous_winner.id, w1)
            prize1, prize2, _ = self._prizes(session, raffle.id)
            self.assertIsNone(prize1.winner_id)
            self.assertEqual(prize2.winner_id, w2)
            previous = session.get(Participant, w1)
            self.assertFalse(previous.is_winner)
            self.assertIsNone(previous.prize_id)
            self.assertTrue(session.get(Participant, w2).is_winner)
            self.assertEqual(session.get(Raffle, raffle.id).status, "active")
            self.assertLinksConsistent(session, raffle.id)

    def test_redrawn_winner_is_eligible_again(self) -> None:
        with self.Session.begin() as session:
            caller, raffle = self._seed_three_prizes(session)
            prize = self._prizes(session, raffle.id)[0]
            w1 = draw_prize(
                session, caller, raffle.id, prize.id, random_source=FixedRandomSource([0])
            ).winner.id
            redraw_prize(session, caller, raffle.id, prize.id)

            eligible_ids = [p.id for p in DrawEngine(session).eligible_participants(raffle)]
            self.assertIn(w1, eligible_ids)
            again = draw_prize(
                session,
                caller,
                raffle.id,
                prize.id,
                random_source=FixedRandomSource([eligible_ids.index(w1)]),
            )
            self.assertEqual(again.winner.id, w1)
            self.assertLinksConsistent(session, raffle.id)

    def test_redraw_rejected_on_completed_raffle(self) -> None:
        with self.Session.begin() as session:
            caller, raffle = self._seed(session, prizes=1, participants=2)
            prize = self._prizes(session, raffle.id)[0]
            draw_prize(session, caller, raffle.id, prize.id)
            self.assertEqual(session.get(Raffle, raffle.id).status, "completed")

            with self.assertRaises(InvalidStateError) as ctx:
                redraw_prize(session, caller, raffle.id, prize.id)
            self.assertEqual(
                ctx.exception.message,
                "Cannot redraw prizes in a completed raffle draw. "
                "Please reset the entire draw first.",
            )
            self.assertEqual(ctx.exception.details["status"], "completed")
            self.assertIsNotNone(self._prizes(session, raffle.id)[0].winner_id)

    def test_redraw_rejects_prize_of_other_raffle(self) -> None:
        with self.Session.begin() as session:
            caller, raffle = self._seed(session)
            other = create_raffle(
                session, caller, title="Other", draw_date="2030-01-01", status="active"
            )
            foreign = add_prize(session, caller, other.id, name="Elsewhere", position=1)
            with self.assertRaises(NotFoundError):
                redraw_prize(session, caller, raffle.id, foreign.id)

    def test_redraw_without_winner_raises_precondition(self) -> None:
        with self.Session.begin() as session:
            caller, raffle = self._seed(session)
            prize = self._prizes(session, raffle.id)[0]
            with self.assertRaises(PreconditionError):
                redraw_prize(session, caller, raffle.id, prize.id)

    def test_reset_clears_all_links_and_is_idempotent(self) -> None:
        with self.Session.begin() as session:
            caller, raffle = self._seed_three_prizes(session)
            prize1, prize2, _ = self._prizes(session, raffle.id)
            draw_prize(session, caller, raffle.id, prize1.id)
            draw_prize(session, caller, raffle.id, prize2.id)

            first = reset_draw(session, caller, raffle.id)
            self.assertEqual(first.cleared_prizes, 2)
            second = reset_draw(session, caller, raffle.id)
            self.assertEqual(second.cleared_prizes, 0)

            self.assertTrue(all(p.winner_id is None for p in self._prizes(session, raffle.id)))
            for participant in self._participants(session, raffle.id):
                self.assertFalse(participant.is_winner)
                self.assertIsNone(participant.prize_id)
            self.assertEqual(session.get(Raffle, raffle.id).status, "active")

    def test_reset_rejected_on_completed_raffle(self) -> None:
        with self.Session.begin() as session:
            caller, raffle = self._seed(session)
            conduct_draw(session, caller, raffle.id)
            with self.assertRaises(InvalidStateError):
                reset_draw(session, caller, raffle.id)

    # -- step mode ---------------------------------------------------------

    def test_step_mode_reports_lowest_undrawn_position(self) -> None:
        with self.Session.begin() as session:
            caller, raffle = self._seed_three_prizes(session)
            prize1, prize2, prize3 = self._prizes(session, raffle.id)
            draw_prize(session, caller, raffle.id, prize1.id)

            preview = conduct_draw(session, caller, raffle.id, mode="step")

            self.assertEqual(preview.next_prize.id, prize2.id)
            self.assertEqual(preview.total_prizes, 3)
            self.assertEqual(preview.remaining_prizes, 2)
            # step mode never draws
            self.assertIsNone(self._prizes(session, raffle.id)[1].winner_id)

    # -- closed raffles ----------------------------------------------------

    def test_closed_raffle_rejects_every_mutation(self) -> None:
        with self.Session.begin() as session:
            caller, raffle = self._seed(session, prizes=2, participants=2)
            prize = self._prizes(session, raffle.id)[0]
            participant = self._participants(session, raffle.id)[0]
            mark_closed(session, caller, raffle.id)

            attempts = [
                lambda: draw_prize(session, caller, raffle.id, prize.id),
                lambda: conduct_draw(session, caller, raffle.id),
                lambda: reset_draw(session, caller, raffle.id),
                lambda: redraw_prize(session, caller, raffle.id, prize.id),
                lambda: update_prize(session, caller, raffle.id, prize.id, {"name": "New"}),
                lambda: delete_participant(session, caller, raffle.id, participant.id),
                lambda: add_prize(session, caller, raffle.id, name="Late", position=9),
                lambda: add_participant(session, caller, raffle.id, name="Late"),
                lambda: update_raffle(session, caller, raffle.id, {"title": "Renamed"}),
                lambda: delete_raffle(session, caller, raffle.id),
                lambda: mark_closed(session, caller, raffle.id),
            ]
            for attempt in attempts:
                with self.assertRaises(InvalidStateError):
                    attempt()

            self.assertEqual(len(self._prizes(session, raffle.id)), 2)
            self.assertEqual(len(self._participants(session, raffle.id)), 2)
            self.assertEqual(self._prizes(session, raffle.id)[0].name, "Prize 1")
            self.assertEqual(session.get(Raffle, raffle.id).status, "closed")


class RandomnessTests(unittest.TestCase):
    def test_system_source_stays_in_range(self) -> None:
        source = SystemRandomSource()
        for n in (1, 2, 7):
            for _ in range(50):
                self.assertIn(source.pick(n), range(n))

    def test_system_source_rejects_empty_range(self) -> None:
        with self.assertRaises(ValueError):
            SystemRandomSource().pick(0)

    def test_shuffle_returns_permutation_without_mutating_input(self) -> None:
        items = [1, 2, 3, 4, 5]
        result = shuffle(items, SystemRandomSource())
        self.assertEqual(sorted(result), items)
        self.assertEqual(items, [1, 2, 3, 4, 5])

    def test_shuffle_uses_one_pick_per_position(self) -> None:
        source = FixedRandomSource([1, 0])
        self.assertEqual(shuffle(["a", "b", "c"], source), ["c", "a", "b"])
        self.assertEqual(source.calls, [3, 2])


if __name__ == "__main__":
    unittest.main()
