import csv
import io
import unittest

from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from raffledraw.auth import Caller
from raffledraw.draw import RandomSource, conduct_draw, draw_prize
from raffledraw.errors import EmptyResultError, NotFoundError, ValidationError
from raffledraw.lifecycle import create_raffle
from raffledraw.models import Base, User
from raffledraw.reporting import (
    WINNERS_CSV_HEADER,
    DrawStatus,
    get_draw_status,
    get_winners_export,
    winners_csv,
    winners_filename,
)
from raffledraw.roster import add_participant, add_prize


class FirstPick(RandomSource):
    def pick(self, n):
        return 0


class TestReporting(unittest.TestCase):
    def setUp(self):
        self.engine = create_engine("sqlite+pysqlite:///:memory:", future=True)
        Base.metadata.create_all(self.engine)
        self.Session = sessionmaker(bind=self.engine, future=True, expire_on_commit=False)
        with self.Session.begin() as session:
            owner = User(username="owner")
            viewer = User(username="viewer")
            session.add_all([owner, viewer])
            session.flush()
            self.owner = Caller.for_user(owner)
            self.viewer = Caller.for_user(viewer)
            raffle = create_raffle(
                session,
                self.owner,
                title="Year-End Party!",
                draw_date="2030-12-20T18:00:00Z",
                status="active",
            )
            self.raffle_id = raffle.id
            self.prize_ids = [
                add_prize(
                    session,
                    self.owner,
                    raffle.id,
                    name="TV",
                    position=1,
                    description='55" screen',
                    value=899,
                ).id,
                add_prize(session, self.owner, raffle.id, name="Mug", position=2).id,
            ]
            add_participant(
                session,
                self.owner,
                raffle.id,
                name="Ann Lee",
                email="ann@example.com",
                phone="555-0101",
                designation="Engineer, Platform",
            )
            add_participant(session, self.owner, raffle.id, name="Bob")
            add_participant(session, self.owner, raffle.id, name="Cid")

    def tearDown(self):
        self.engine.dispose()

    def test_status_not_started(self):
        with self.Session.begin() as session:
            report = get_draw_status(session, self.owner, self.raffle_id)
            self.assertEqual(report.draw_status, DrawStatus.NOT_STARTED)
            data = report.to_json()
            self.assertEqual(data["drawStatus"], "not_started")
            self.assertEqual(data["nextPrize"]["id"], self.prize_ids[0])
            self.assertEqual(data["totalPrizes"], 2)
            self.assertEqual(data["drawnCount"], 0)

    def test_status_in_progress_then_completed(self):
        with self.Session.begin() as session:
            draw_prize(session, self.owner, self.raffle_id, self.prize_ids[0])
            report = get_draw_status(session, self.owner, self.raffle_id)
            self.assertEqual(report.draw_status, DrawStatus.IN_PROGRESS)
            self.assertEqual(report.next_prize.id, self.prize_ids[1])
            data = report.to_json()
            self.assertEqual(data["drawnPrizes"][0]["prize"]["id"], self.prize_ids[0])
            self.assertEqual(data["remainingCount"], 1)
            self.assertEqual(data["raffleStatus"], "active")

            draw_prize(session, self.owner, self.raffle_id, self.prize_ids[1])
            report = get_draw_status(session, self.owner, self.raffle_id)
            self.assertEqual(report.draw_status, DrawStatus.COMPLETED)
            self.assertIsNone(report.to_json()["nextPrize"])

    def test_public_raffle_status_visible_to_others(self):
        with self.Session.begin() as session:
            report = get_draw_status(session, self.viewer, self.raffle_id)
            self.assertEqual(report.raffle.id, self.raffle_id)

    def test_export_without_winners_is_empty_result(self):
        with self.Session.begin() as session:
            with self.assertRaises(EmptyResultError):
                get_winners_export(session, self.owner, self.raffle_id, "csv")
            with self.assertRaises(ValidationError):
                get_winners_export(session, self.owner, self.raffle_id, "xml")

    def test_export_csv(self):
        with self.Session.begin() as session:
            conduct_draw(session, self.owner, self.raffle_id, random_source=FirstPick())
            _, text = get_winners_export(session, self.owner, self.raffle_id, "csv")

        lines = text.splitlines()
        self.assertEqual(lines[0], ",".join(WINNERS_CSV_HEADER))
        rows = list(csv.reader(io.StringIO(text)))
        self.assertEqual(len(rows), 3)
        self.assertEqual([row[0] for row in rows[1:]], ["1", "2"])
        # all-zero picks shuffle [Ann, Bob, Cid] into [Bob, Cid, Ann]
        self.assertEqual(rows[1][1:5], ["TV", '55" screen', "899.00", "Bob"])
        self.assertEqual(rows[2][1], "Mug")
        self.assertEqual(rows[2][4], "Cid")
        self.assertIn('"55"" screen"', lines[1])

    def test_winners_csv_quotes_text_fields(self):
        text = winners_csv(
            [
                {
                    "position": 1,
                    "prizeName": "Bike",
                    "prizeDescription": None,
                    "prizeValue": "10.00",
                    "winnerName": "Ann Lee",
                    "winnerEmail": "ann@example.com",
                    "winnerPhone": None,
                    "winnerDesignation": "Engineer, Platform",
                    "ticketNumber": "TKT-1-abc",
                }
            ]
        )
        row = text.splitlines()[1]
        self.assertEqual(
            row,
            '1,"Bike","","10.00","Ann Lee","ann@example.com","",'
            '"Engineer, Platform","TKT-1-abc"',
        )

    def test_export_json(self):
        with self.Session.begin() as session:
            draw_prize(session, self.owner, self.raffle_id, self.prize_ids[1])
            raffle, data = get_winners_export(session, self.owner, self.raffle_id, "json")
            self.assertEqual(raffle.id, self.raffle_id)
            self.assertEqual(
                data["raffleDraw"],
                {
                    "id": self.raffle_id,
                    "title": "Year-End Party!",
                    "drawDate": "2030-12-20T18:00:00+00:00",
                    "status": "active",
                },
            )
            self.assertEqual(len(data["winners"]), 1)
            self.assertEqual(data["winners"][0]["prizeName"], "Mug")
            self.assertIsNone(data["winners"][0]["prizeValue"])

    def test_private_raffle_export_hidden(self):
        with self.Session.begin() as session:
            raffle_id = create_raffle(
                session,
                self.owner,
                title="Private",
                draw_date="2030-01-01",
                is_public=False,
            ).id
            with self.assertRaises(NotFoundError):
                get_winners_export(session, self.viewer, raffle_id, "json")

    def test_winners_filename(self):
        with self.Session.begin() as session:
            report = get_draw_status(session, self.owner, self.raffle_id)
            self.assertEqual(
                winners_filename(report.raffle, now_ms=1700000000000),
                "Year_End_Party__winners_1700000000000.csv",
            )


if __name__ == "__main__":
    unittest.main()
