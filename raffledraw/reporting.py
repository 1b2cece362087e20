"""Read views over draw results: draw status and winners export."""

from __future__ import annotations

import csv
import io
import re
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional, Union

from sqlalchemy import select
from sqlalchemy.orm import Session, selectinload

from .auth import Caller
from .errors import EmptyResultError, ValidationError
from .lifecycle import load_raffle
from .models import Participant, Prize, Raffle, RaffleStatus

WINNERS_CSV_HEADER = [
    "Position",
    "Prize Name",
    "Prize Description",
    "Prize Value",
    "Winner Name",
    "Winner Email",
    "Winner Phone",
    "Winner Designation",
    "Ticket Number",
]
EXPORT_FORMATS = ("csv", "json")


class DrawStatus(str, Enum):
    NOT_STARTED = "not_started"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"


@dataclass
class DrawStatusReport:
    """Snapshot of how far the draw of a raffle has progressed."""

    raffle: Raffle
    draw_status: DrawStatus
    drawn: list[tuple[Prize, Participant]] = field(default_factory=list)
    remaining: list[Prize] = field(default_factory=list)

    @property
    def total_prizes(self) -> int:
        return len(self.drawn) + len(self.remaining)

    @property
    def next_prize(self) -> Optional[Prize]:
        return self.remaining[0] if self.remaining else None

    def to_json(self) -> dict[str, Any]:
        next_prize = self.next_prize
        return {
            "drawStatus": self.draw_status.value,
            "raffleStatus": self.raffle.status,
            "nextPrize": next_prize.to_json() if next_prize is not None else None,
            "drawnPrizes": [
                {"prize": prize.to_json(), "winner": winner.to_json()}
                for prize, winner in self.drawn
            ],
            "remainingPrizes": [prize.to_json() for prize in self.remaining],
            "totalPrizes": self.total_prizes,
            "drawnCount": len(self.drawn),
            "remainingCount": len(self.remaining),
        }


def _prizes_with_winners(session: Session, raffle: Raffle) -> list[Prize]:
    return list(
        session.scalars(
            select(Prize)
            .where(Prize.raffle_id == raffle.id)
            .order_by(Prize.position, Prize.id)
            .options(selectinload(Prize.winner))
            .execution_options(populate_existing=True)
        )
    )


def draw_status(session: Session, raffle: Raffle) -> DrawStatusReport:
    """Derive the draw status of ``raffle``.

    ``completed`` follows the raffle status; otherwise the status is
    ``in_progress`` as soon as one prize has a winner, else ``not_started``.
    """
    report = DrawStatusReport(raffle=raffle, draw_status=DrawStatus.NOT_STARTED)
    for prize in _prizes_with_winners(session, raffle):
        if prize.winner is not None:
            report.drawn.append((prize, prize.winner))
        else:
            report.remaining.append(prize)
    if raffle.state == RaffleStatus.COMPLETED:
        report.draw_status = DrawStatus.COMPLETED
    elif report.drawn:
        report.draw_status = DrawStatus.IN_PROGRESS
    return report


def winner_rows(session: Session, raffle: Raffle) -> list[dict[str, Any]]:
    """One row per prize with a winner, ordered by position.

    Raises
    ------
    EmptyResultError
        If no prize has a winner.
    """
    rows = []
    for prize in _prizes_with_winners(session, raffle):
        winner = prize.winner
        if winner is None:
            continue
        rows.append(
            {
                "position": prize.position,
                "prizeName": prize.name,
                "prizeDescription": prize.description,
                "prizeValue": None if prize.value is None else str(prize.value),
                "winnerName": winner.name,
                "winnerEmail": winner.email,
                "winnerPhone": winner.phone,
                "winnerDesignation": winner.designation,
                "ticketNumber": winner.ticket_number,
            }
        )
    if not rows:
        raise EmptyResultError("No winners found for this raffle draw")
    return rows


def winners_csv(rows: list[dict[str, Any]]) -> str:
    """Render winner rows as CSV.

    The header row is written bare; in data rows every text field is quoted
    and embedded quotes are doubled.
    """
    buffer = io.StringIO()
    writer = csv.writer(buffer, quoting=csv.QUOTE_NONNUMERIC, lineterminator="\n")
    buffer.write(",".join(WINNERS_CSV_HEADER) + "\n")
    for row in rows:
        writer.writerow(
            [
                row["position"],
                row["prizeName"] or "",
                row["prizeDescription"] or "",
                row["prizeValue"] or "",
                row["winnerName"] or "",
                row["winnerEmail"] or "",
                row["winnerPhone"] or "",
                row["winnerDesignation"] or "",
                row["ticketNumber"] or "",
            ]
        )
    return buffer.getvalue()


def export_winners(
    session: Session, raffle: Raffle, fmt: str = "csv"
) -> Union[str, dict[str, Any]]:
    """Export the winners of ``raffle`` as CSV text or a JSON-ready dict."""
    if fmt not in EXPORT_FORMATS:
        raise ValidationError(
            "Invalid format. Must be one of: csv, json",
            fields={"format": "must be csv or json"},
        )
    rows = winner_rows(session, raffle)
    if fmt == "csv":
        return winners_csv(rows)
    return {
        "raffleDraw": {
            "id": raffle.id,
            "title": raffle.title,
            "drawDate": raffle.to_json()["drawDate"],
            "status": raffle.status,
        },
        "winners": rows,
    }


def winners_filename(raffle: Raffle, *, now_ms: Optional[int] = None) -> str:
    stamp = now_ms if now_ms is not None else int(time.time() * 1000)
    safe_title = re.sub(r"[^A-Za-z0-9]", "_", raffle.title)
    return f"{safe_title}_winners_{stamp}.csv"


def get_draw_status(session: Session, caller: Caller, raffle_id: int) -> DrawStatusReport:
    raffle = load_raffle(session, caller, raffle_id, modify=False)
    return draw_status(session, raffle)


def get_winners_export(
    session: Session, caller: Caller, raffle_id: int, fmt: str = "csv"
) -> tuple[Raffle, Union[str, dict[str, Any]]]:
    raffle = load_raffle(session, caller, raffle_id, modify=False)
    return raffle, export_winners(session, raffle, fmt)


__all__ = [
    "DrawStatus",
    "DrawStatusReport",
    "WINNERS_CSV_HEADER",
    "draw_status",
    "export_winners",
    "get_draw_status",
    "get_winners_export",
    "winner_rows",
    "winners_csv",
    "winners_filename",
]
