"""Caller-facing draw operations.

Each function loads the raffle with a row lock, applies the access gate and
delegates to :class:`~raffledraw.draw.engine.DrawEngine`.
"""

from __future__ import annotations

from typing import Optional, Union

from sqlalchemy.orm import Session

from ..auth import Caller
from ..errors import ValidationError
from ..lifecycle import load_raffle
from .engine import (
    BulkDrawOutcome,
    DrawEngine,
    DrawOutcome,
    RedrawOutcome,
    ResetOutcome,
    StepPreview,
)
from .randomness import RandomSource

DRAW_MODES = ("all", "step")


def draw_prize(
    session: Session,
    caller: Caller,
    raffle_id: int,
    prize_id: int,
    *,
    random_source: Optional[RandomSource] = None,
) -> DrawOutcome:
    """Draw a winner for ``prize_id``."""
    raffle = load_raffle(session, caller, raffle_id, for_update=True)
    return DrawEngine(session, random_source=random_source).draw_single(raffle, prize_id)


def conduct_draw(
    session: Session,
    caller: Caller,
    raffle_id: int,
    *,
    mode: str = "all",
    random_source: Optional[RandomSource] = None,
) -> Union[BulkDrawOutcome, StepPreview]:
    """Run a bulk draw (``mode="all"``) or report the next prize (``"step"``)."""
    if mode not in DRAW_MODES:
        raise ValidationError(
            "Invalid draw mode. Must be one of: all, step",
            fields={"mode": "must be all or step"},
        )
    raffle = load_raffle(session, caller, raffle_id, for_update=True)
    engine = DrawEngine(session, random_source=random_source)
    if mode == "step":
        return engine.next_prize(raffle)
    return engine.draw_all(raffle)


def reset_draw(session: Session, caller: Caller, raffle_id: int) -> ResetOutcome:
    raffle = load_raffle(session, caller, raffle_id, for_update=True)
    return DrawEngine(session).reset(raffle)


def redraw_prize(
    session: Session, caller: Caller, raffle_id: int, prize_id: int
) -> RedrawOutcome:
    raffle = load_raffle(session, caller, raffle_id, for_update=True)
    return DrawEngine(session).redraw(raffle, prize_id)


__all__ = ["DRAW_MODES", "conduct_draw", "draw_prize", "redraw_prize", "reset_draw"]
