from .base import Base

# import models so metadata.create_all and mapper configuration see every table
from .user import User, ROLE_ADMIN, ROLE_USER  # noqa: F401
from .raffle import (  # noqa: F401
    ALLOWED_TRANSITIONS,
    LOCKED_STATUSES,
    Raffle,
    RaffleStatus,
    StatusChange,
    check_transition,
)
from .prize import Prize  # noqa: F401
from .participant import Participant  # noqa: F401

__all__ = [
    "Base",
    "User",
    "ROLE_ADMIN",
    "ROLE_USER",
    "Raffle",
    "RaffleStatus",
    "StatusChange",
    "ALLOWED_TRANSITIONS",
    "LOCKED_STATUSES",
    "check_transition",
    "Prize",
    "Participant",
]
