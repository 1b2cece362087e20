"""Ticket numbers for participants."""

from __future__ import annotations

import os
import secrets
import string
import time
from typing import Optional

from sqlalchemy import select
from sqlalchemy.orm import Session

from .participant import Participant

BASE62_ALPHABET = string.digits + string.ascii_uppercase + string.ascii_lowercase
DEFAULT_TICKET_PREFIX = os.getenv("TICKET_PREFIX", "TKT")
TICKET_NUMBER_MAX_LENGTH = 50


def new_ticket_number(prefix: str, length: int = 9) -> str:
    """``<prefix>-<epoch milliseconds>-<base62 suffix>`` from :mod:`secrets`."""
    suffix = "".join(secrets.choice(BASE62_ALPHABET) for _ in range(length))
    return f"{prefix}-{int(time.time() * 1000)}-{suffix}"[:TICKET_NUMBER_MAX_LENGTH]


def ticket_number_taken(session: Session, ticket_number: str) -> bool:
    return (
        session.scalar(
            select(Participant.id).where(Participant.ticket_number == ticket_number)
        )
        is not None
    )


def generate_ticket_number(
    session: Optional[Session] = None,
    prefix: Optional[str] = None,
    length: int = 9,
    max_attempts: int = 32,
) -> str:
    """Return a participant ticket number.

    With a session, numbers already stored in ``participants`` are skipped.
    Tickets issued in the same millisecond differ in their random suffix.
    """
    prefix = prefix or DEFAULT_TICKET_PREFIX
    for _ in range(max_attempts):
        ticket_number = new_ticket_number(prefix, length)
        if session is None or not ticket_number_taken(session, ticket_number):
            return ticket_number
    raise RuntimeError(
        f"No free ticket number found after {max_attempts} attempts"
    )
