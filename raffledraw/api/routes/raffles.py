"""Raffle, roster and draw endpoints."""

from typing import Optional

from fastapi import APIRouter, Depends, Query
from fastapi.responses import Response
from sqlalchemy.orm import Session

from ... import lifecycle, reporting, roster
from ...auth import Caller
from ...draw import StepPreview, conduct_draw, draw_prize, redraw_prize, reset_draw
from ..deps import get_caller, get_session, ok
from ..schemas import (
    BulkParticipants,
    ParticipantCreate,
    ParticipantUpdate,
    PrizeCreate,
    PrizeUpdate,
    RaffleCreate,
    RaffleUpdate,
)

router = APIRouter(prefix="/raffles", tags=["raffles"])


@router.get("")
def list_raffles(
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    status: Optional[str] = None,
    session: Session = Depends(get_session),
    caller: Caller = Depends(get_caller),
):
    """Raffles owned by the caller, newest first."""
    return ok(lifecycle.list_raffles(session, caller, page=page, limit=limit, status=status))


@router.post("", status_code=201)
def create_raffle(
    payload: RaffleCreate,
    session: Session = Depends(get_session),
    caller: Caller = Depends(get_caller),
):
    raffle = lifecycle.create_raffle(session, caller, **payload.model_dump())
    return ok(raffle.to_json(), "Raffle draw created successfully")


@router.get("/{raffle_id}")
def get_raffle(
    raffle_id: int,
    session: Session = Depends(get_session),
    caller: Caller = Depends(get_caller),
):
    raffle = lifecycle.get_raffle(session, caller, raffle_id)
    return ok(raffle.to_json(include_roster=True))


@router.put("/{raffle_id}")
def update_raffle(
    raffle_id: int,
    payload: RaffleUpdate,
    session: Session = Depends(get_session),
    caller: Caller = Depends(get_caller),
):
    raffle = lifecycle.update_raffle(session, caller, raffle_id, payload.fields_set())
    return ok(raffle.to_json(), "Raffle draw updated successfully")


@router.delete("/{raffle_id}")
def delete_raffle(
    raffle_id: int,
    session: Session = Depends(get_session),
    caller: Caller = Depends(get_caller),
):
    lifecycle.delete_raffle(session, caller, raffle_id)
    return ok(message="Raffle draw deleted successfully")


@router.post("/{raffle_id}/mark-closed")
def mark_closed(
    raffle_id: int,
    session: Session = Depends(get_session),
    caller: Caller = Depends(get_caller),
):
    change = lifecycle.mark_closed(session, caller, raffle_id)
    return ok(
        {"id": change.raffle_id, "status": change.new_status.value},
        "Raffle draw has been marked as closed. No further edits are allowed.",
    )


# -- prizes -----------------------------------------------------------------


@router.post("/{raffle_id}/prizes", status_code=201)
def add_prize(
    raffle_id: int,
    payload: PrizeCreate,
    session: Session = Depends(get_session),
    caller: Caller = Depends(get_caller),
):
    prize = roster.add_prize(session, caller, raffle_id, **payload.model_dump())
    return ok(prize.to_json(), "Prize added successfully")


@router.put("/{raffle_id}/prizes/{prize_id}")
def update_prize(
    raffle_id: int,
    prize_id: int,
    payload: PrizeUpdate,
    session: Session = Depends(get_session),
    caller: Caller = Depends(get_caller),
):
    prize = roster.update_prize(session, caller, raffle_id, prize_id, payload.fields_set())
    return ok(prize.to_json(), "Prize updated successfully")


@router.delete("/{raffle_id}/prizes/{prize_id}")
def delete_prize(
    raffle_id: int,
    prize_id: int,
    session: Session = Depends(get_session),
    caller: Caller = Depends(get_caller),
):
    roster.delete_prize(session, caller, raffle_id, prize_id)
    return ok(message="Prize deleted successfully")


# -- participants -----------------------------------------------------------


@router.post("/{raffle_id}/participants", status_code=201)
def add_participant(
    raffle_id: int,
    payload: ParticipantCreate,
    session: Session = Depends(get_session),
    caller: Caller = Depends(get_caller),
):
    participant = roster.add_participant(
        session, caller, raffle_id, mode=roster.AddMode.STRICT, **payload.model_dump()
    )
    return ok(participant.to_json(), "Participant added successfully")


@router.post("/{raffle_id}/participants/bulk")
def add_participants_bulk(
    raffle_id: int,
    payload: BulkParticipants,
    session: Session = Depends(get_session),
    caller: Caller = Depends(get_caller),
):
    rows = roster.parse_bulk_text(payload.text)
    result = roster.bulk_import(session, caller, raffle_id, rows)
    return ok(result.to_json(), f"Successfully added {result.added_count} participants")


@router.put("/{raffle_id}/participants/{participant_id}")
def update_participant(
    raffle_id: int,
    participant_id: int,
    payload: ParticipantUpdate,
    session: Session = Depends(get_session),
    caller: Caller = Depends(get_caller),
):
    participant = roster.update_participant(
        session, caller, raffle_id, participant_id, payload.fields_set()
    )
    return ok(participant.to_json(), "Participant updated successfully")


@router.delete("/{raffle_id}/participants/{participant_id}")
def delete_participant(
    raffle_id: int,
    participant_id: int,
    session: Session = Depends(get_session),
    caller: Caller = Depends(get_caller),
):
    roster.delete_participant(session, caller, raffle_id, participant_id)
    return ok(message="Participant deleted successfully")


# -- draw -------------------------------------------------------------------


@router.post("/{raffle_id}/draw")
def draw(
    raffle_id: int,
    mode: str = "all",
    session: Session = Depends(get_session),
    caller: Caller = Depends(get_caller),
):
    """Bulk draw (``mode=all``) or step-mode preparation (``mode=step``)."""
    outcome = conduct_draw(session, caller, raffle_id, mode=mode)
    if isinstance(outcome, StepPreview):
        return ok(
            outcome.to_json(),
            "Step-by-step mode activated. Use /draw-prize/{prizeId} "
            "to draw winners one by one.",
        )
    return ok(outcome.to_json(), "Raffle draw completed successfully")


@router.post("/{raffle_id}/draw-prize/{prize_id}")
def draw_single_prize(
    raffle_id: int,
    prize_id: int,
    session: Session = Depends(get_session),
    caller: Caller = Depends(get_caller),
):
    outcome = draw_prize(session, caller, raffle_id, prize_id)
    return ok(outcome.to_json(), f"Winner drawn for {outcome.prize.name}")


@router.get("/{raffle_id}/draw-status")
def draw_status(
    raffle_id: int,
    session: Session = Depends(get_session),
    caller: Caller = Depends(get_caller),
):
    return ok(reporting.get_draw_status(session, caller, raffle_id).to_json())


@router.post("/{raffle_id}/reset-draw")
def reset(
    raffle_id: int,
    session: Session = Depends(get_session),
    caller: Caller = Depends(get_caller),
):
    outcome = reset_draw(session, caller, raffle_id)
    return ok(
        outcome.to_json(), "Raffle draw reset successfully. All winners have been cleared."
    )


@router.post("/{raffle_id}/prizes/{prize_id}/redraw")
def redraw(
    raffle_id: int,
    prize_id: int,
    session: Session = Depends(get_session),
    caller: Caller = Depends(get_caller),
):
    outcome = redraw_prize(session, caller, raffle_id, prize_id)
    return ok(outcome.to_json(), f"Winner cleared for {outcome.prize.name}. Ready to redraw.")


@router.get("/{raffle_id}/winners")
@router.get("/{raffle_id}/winners/download", include_in_schema=False)
def winners(
    raffle_id: int,
    format: str = "csv",
    session: Session = Depends(get_session),
    caller: Caller = Depends(get_caller),
):
    raffle, export = reporting.get_winners_export(session, caller, raffle_id, format)
    if format == "json":
        return ok(export)
    filename = reporting.winners_filename(raffle)
    return Response(
        content=export,
        media_type="text/csv",
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )
