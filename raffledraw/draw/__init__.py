"""Winner selection for raffles."""

from .engine import (
    BulkDrawOutcome,
    DrawEngine,
    DrawOutcome,
    RedrawOutcome,
    ResetOutcome,
    StepPreview,
)
from .randomness import DEFAULT_RANDOM_SOURCE, RandomSource, SystemRandomSource, shuffle
from .workflows import conduct_draw, draw_prize, redraw_prize, reset_draw

__all__ = [
    "BulkDrawOutcome",
    "DEFAULT_RANDOM_SOURCE",
    "DrawEngine",
    "DrawOutcome",
    "RandomSource",
    "RedrawOutcome",
    "ResetOutcome",
    "StepPreview",
    "SystemRandomSource",
    "conduct_draw",
    "draw_prize",
    "redraw_prize",
    "reset_draw",
    "shuffle",
]
