"""Prize and participant membership of a raffle.

Roster mutations are rejected once a raffle is completed or closed, and once
the prize or participant is tied to a draw result. Winner links are never
written here; see :mod:`raffledraw.draw`.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from decimal import Decimal, InvalidOperation
from enum import Enum
from typing import Any, Iterable, Mapping, Optional

from sqlalchemy import select
from sqlalchemy.orm import Session

from .auth import Caller
from .errors import CapacityError, InvalidStateError, NotFoundError, ValidationError
from .lifecycle import load_raffle
from .models import Participant, Prize, Raffle
from .models.utils import generate_ticket_number

logger = logging.getLogger(__name__)

EMAIL_PATTERN = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")
PARTICIPANT_FIELDS = ("name", "email", "phone", "designation")
PRIZE_FIELDS = ("name", "description", "value", "position")
NAME_MAX_LENGTH = 100
EMAIL_MAX_LENGTH = 100
PRIZE_NAME_MAX_LENGTH = 200
PHONE_MAX_LENGTH = 20
DESIGNATION_MAX_LENGTH = 100
MAX_PRIZE_VALUE = Decimal("99999999.99")


class AddMode(str, Enum):
    """How :func:`add_participant` treats an email already in the raffle."""

    STRICT = "strict"
    SKIP_DUPLICATE = "skip_duplicate"


# ---------------------------------------------------------------------------
# Prizes
# ---------------------------------------------------------------------------


def _clean_prize_name(value: Any) -> str:
    name = value.strip() if isinstance(value, str) else ""
    if not name or len(name) > PRIZE_NAME_MAX_LENGTH:
        raise ValidationError(
            "Prize name is required and must be less than 200 characters",
            fields={"name": "must be 1-200 characters"},
        )
    return name


def _clean_position(value: Any) -> int:
    if isinstance(value, bool) or not isinstance(value, int) or value < 1:
        raise ValidationError(
            "Position must be a positive integer",
            fields={"position": "must be a positive integer"},
        )
    return value


def _clean_value(value: Any) -> Optional[Decimal]:
    if value is None or (isinstance(value, str) and not value.strip()):
        return None
    if isinstance(value, bool):
        parsed = None
    else:
        try:
            parsed = Decimal(str(value).strip())
        except InvalidOperation:
            parsed = None
    if parsed is None or not parsed.is_finite() or parsed < 0 or parsed > MAX_PRIZE_VALUE:
        raise ValidationError(
            "Value must be a valid non-negative decimal number",
            fields={"value": "must be a non-negative decimal"},
        )
    return parsed.quantize(Decimal("0.01"))


def _clean_text(value: Any, field_name: str, max_length: Optional[int] = None) -> Optional[str]:
    """Strip ``value``; empty strings normalise to ``None``."""
    if value is None:
        return None
    if not isinstance(value, str):
        value = str(value)
    value = value.strip()
    if not value:
        return None
    if max_length is not None and len(value) > max_length:
        raise ValidationError(
            f"{field_name.capitalize()} must be less than {max_length} characters",
            fields={field_name: f"must be at most {max_length} characters"},
        )
    return value


def _load_prize(session: Session, raffle: Raffle, prize_id: int) -> Prize:
    prize = session.scalar(
        select(Prize)
        .where(Prize.id == prize_id, Prize.raffle_id == raffle.id)
        .execution_options(populate_existing=True)
    )
    if prize is None:
        raise NotFoundError("Prize", prize_id)
    return prize


def _ensure_prize_editable(prize: Prize) -> None:
    if prize.has_winner:
        raise InvalidStateError("Cannot modify a prize with a winner", status="won")


def add_prize(
    session: Session,
    caller: Caller,
    raffle_id: int,
    *,
    name: Any,
    position: Any,
    description: Any = None,
    value: Any = None,
) -> Prize:
    """Add a prize to an open raffle.

    Raises
    ------
    InvalidStateError
        If the raffle is completed or closed.
    ValidationError
        If the name is empty, ``position`` is not a positive integer or
        ``value`` is not a non-negative decimal.
    """
    raffle = load_raffle(session, caller, raffle_id, for_update=True)
    raffle.ensure_open("add prizes to")
    prize = Prize(
        raffle_id=raffle.id,
        name=_clean_prize_name(name),
        position=_clean_position(position),
        description=_clean_text(description, "description"),
        value=_clean_value(value),
    )
    session.add(prize)
    session.flush()
    logger.info("Prize %s added to raffle %s at position %s", prize.id, raffle.id, prize.position)
    return prize


def update_prize(
    session: Session,
    caller: Caller,
    raffle_id: int,
    prize_id: int,
    fields: Mapping[str, Any],
) -> Prize:
    """Apply a partial update (``name``, ``description``, ``value``, ``position``)."""
    raffle = load_raffle(session, caller, raffle_id, for_update=True)
    raffle.ensure_open("update prizes in")
    prize = _load_prize(session, raffle, prize_id)
    _ensure_prize_editable(prize)

    changes = {key: fields[key] for key in PRIZE_FIELDS if key in fields}
    if not changes:
        raise ValidationError(
            "At least one field (name, description, value, position) must be provided to update",
            fields={"body": "no updatable field supplied"},
        )
    if "name" in changes:
        prize.name = _clean_prize_name(changes["name"])
    if "position" in changes:
        prize.position = _clean_position(changes["position"])
    if "description" in changes:
        prize.description = _clean_text(changes["description"], "description")
    if "value" in changes:
        prize.value = _clean_value(changes["value"])
    session.flush()
    logger.info("Prize %s of raffle %s updated", prize.id, raffle.id)
    return prize


def delete_prize(session: Session, caller: Caller, raffle_id: int, prize_id: int) -> None:
    raffle = load_raffle(session, caller, raffle_id, for_update=True)
    raffle.ensure_open("delete prizes from")
    prize = _load_prize(session, raffle, prize_id)
    _ensure_prize_editable(prize)
    session.delete(prize)
    session.flush()
    logger.info("Prize %s deleted from raffle %s", prize_id, raffle.id)


# ---------------------------------------------------------------------------
# Participants
# ---------------------------------------------------------------------------


def _clean_name(value: Any) -> str:
    name = value.strip() if isinstance(value, str) else ""
    if not name or len(name) > NAME_MAX_LENGTH:
        raise ValidationError(
            "Name is required and must be less than 100 characters",
            fields={"name": "must be 1-100 characters"},
        )
    return name


def _clean_email(value: Any) -> Optional[str]:
    email = _clean_text(value, "email", EMAIL_MAX_LENGTH)
    if email is None:
        return None
    if not EMAIL_PATTERN.match(email):
        raise ValidationError(
            "Please provide a valid email address",
            fields={"email": "must be a valid email address"},
        )
    return email.lower()


def clean_participant(row: Mapping[str, Any]) -> dict[str, Optional[str]]:
    """Validate one candidate participant and return its normalised fields.

    Raises
    ------
    ValidationError
        With one entry per offending field.
    """
    cleaned: dict[str, Optional[str]] = {}
    errors: dict[str, str] = {}
    checks = (
        ("name", _clean_name),
        ("email", _clean_email),
        ("phone", lambda v: _clean_text(v, "phone", PHONE_MAX_LENGTH)),
        ("designation", lambda v: _clean_text(v, "designation", DESIGNATION_MAX_LENGTH)),
    )
    for key, check in checks:
        try:
            cleaned[key] = check(row.get(key))
        except ValidationError as exc:
            errors[key] = exc.message
    if errors:
        raise ValidationError(next(iter(errors.values())), fields=errors)
    return cleaned


def ensure_capacity(session: Session, raffle: Raffle) -> None:
    if raffle.has_capacity_limit:
        count = Participant.count_for_raffle(session, raffle.id)
        if count >= raffle.max_participants:
            raise CapacityError(raffle.max_participants)


def _insert_participant(
    session: Session, raffle: Raffle, data: Mapping[str, Optional[str]]
) -> Participant:
    participant = Participant(
        raffle_id=raffle.id,
        name=data["name"],
        email=data.get("email"),
        phone=data.get("phone"),
        designation=data.get("designation"),
        ticket_number=generate_ticket_number(session),
    )
    session.add(participant)
    session.flush()
    return participant


def add_participant(
    session: Session,
    caller: Caller,
    raffle_id: int,
    *,
    name: Any,
    email: Any = None,
    phone: Any = None,
    designation: Any = None,
    mode: AddMode = AddMode.STRICT,
) -> Optional[Participant]:
    """Enrol a participant and issue a ticket number.

    In :attr:`AddMode.STRICT` a duplicate email within the raffle raises
    :class:`ValidationError`; in :attr:`AddMode.SKIP_DUPLICATE` it is logged
    and ``None`` is returned.

    Raises
    ------
    InvalidStateError
        If the raffle is completed or closed.
    CapacityError
        If the participant cap is already reached.
    ValidationError
        If a field is malformed (or the email is taken, in strict mode).
    """
    raffle = load_raffle(session, caller, raffle_id, for_update=True)
    raffle.ensure_open("add participants to")
    ensure_capacity(session, raffle)
    data = clean_participant(
        {"name": name, "email": email, "phone": phone, "designation": designation}
    )
    if data["email"] and Participant.get_by_email(session, raffle.id, data["email"]):
        if AddMode(mode) == AddMode.SKIP_DUPLICATE:
            logger.warning(
                "Skipping participant with duplicate email in raffle %s", raffle.id
            )
            return None
        raise ValidationError(
            "A participant with this email already exists in this raffle draw",
            fields={"email": "already registered in this raffle draw"},
        )
    participant = _insert_participant(session, raffle, data)
    logger.info(
        "Participant %s added to raffle %s (ticket %s)",
        participant.id,
        raffle.id,
        participant.ticket_number,
    )
    return participant


def _load_participant(session: Session, raffle: Raffle, participant_id: int) -> Participant:
    participant = session.scalar(
        select(Participant)
        .where(Participant.id == participant_id, Participant.raffle_id == raffle.id)
        .execution_options(populate_existing=True)
    )
    if participant is None:
        raise NotFoundError("Participant", participant_id)
    return participant


def _ensure_not_winner(participant: Participant) -> None:
    if participant.is_winner:
        raise InvalidStateError("Cannot modify a winner", status="won")


def update_participant(
    session: Session,
    caller: Caller,
    raffle_id: int,
    participant_id: int,
    fields: Mapping[str, Any],
) -> Participant:
    """Apply a partial update; empty strings clear optional fields."""
    raffle = load_raffle(session, caller, raffle_id, for_update=True)
    raffle.ensure_open("update participants in")
    participant = _load_participant(session, raffle, participant_id)
    _ensure_not_winner(participant)

    present = [key for key in PARTICIPANT_FIELDS if key in fields]
    if not present:
        raise ValidationError(
            "At least one field (name, email, phone, designation) must be provided to update",
            fields={"body": "no updatable field supplied"},
        )

    if "name" in fields:
        participant.name = _clean_name(fields["name"])
    if "email" in fields:
        email = _clean_email(fields["email"])
        if email:
            existing = Participant.get_by_email(session, raffle.id, email)
            if existing is not None and existing.id != participant.id:
                raise ValidationError(
                    "A participant with this email already exists in this raffle draw",
                    fields={"email": "already registered in this raffle draw"},
                )
        participant.email = email
    if "phone" in fields:
        participant.phone = _clean_text(fields["phone"], "phone", PHONE_MAX_LENGTH)
    if "designation" in fields:
        participant.designation = _clean_text(
            fields["designation"], "designation", DESIGNATION_MAX_LENGTH
        )
    session.flush()
    logger.info("Participant %s of raffle %s updated", participant.id, raffle.id)
    return participant


def delete_participant(
    session: Session, caller: Caller, raffle_id: int, participant_id: int
) -> None:
    raffle = load_raffle(session, caller, raffle_id, for_update=True)
    raffle.ensure_open("delete participants from")
    participant = _load_participant(session, raffle, participant_id)
    _ensure_not_winner(participant)
    session.delete(participant)
    session.flush()
    logger.info("Participant %s deleted from raffle %s", participant_id, raffle.id)


# ---------------------------------------------------------------------------
# Bulk import
# ---------------------------------------------------------------------------


@dataclass
class BulkImportResult:
    """Outcome of :func:`bulk_import`.

    ``errors`` holds one message per invalid field, prefixed with the 1-based
    row number; ``skipped`` pairs row numbers with the reason they were not
    added.
    """

    total_rows: int = 0
    valid_rows: int = 0
    added: list[Participant] = field(default_factory=list)
    skipped: list[tuple[int, str]] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)

    @property
    def added_count(self) -> int:
        return len(self.added)

    def to_json(self) -> dict[str, Any]:
        return {
            "totalRows": self.total_rows,
            "validRows": self.valid_rows,
            "addedCount": self.added_count,
            "skippedCount": len(self.skipped),
            "skipped": [{"row": row, "reason": reason} for row, reason in self.skipped],
            "errors": self.errors,
            "participants": [p.to_json() for p in self.added],
        }


def validate_rows(rows: Iterable[Mapping[str, Any]]) -> tuple[list[tuple[int, dict]], list[str]]:
    """Split candidate rows into ``(row_number, cleaned)`` pairs and error lines."""
    valid: list[tuple[int, dict]] = []
    errors: list[str] = []
    for index, row in enumerate(rows, start=1):
        try:
            valid.append((index, clean_participant(row)))
        except ValidationError as exc:
            errors.extend(f"Row {index}: {message}" for message in exc.fields.values())
    return valid, errors


def bulk_import(
    session: Session,
    caller: Caller,
    raffle_id: int,
    rows: Iterable[Mapping[str, Any]],
) -> BulkImportResult:
    """Add many participants; invalid rows are reported instead of aborting.

    Valid rows go through the add-or-skip-duplicate path: an email already in
    the raffle (or earlier in the same batch) is skipped with a warning. Rows
    that would exceed the participant cap are skipped as well.

    Raises
    ------
    InvalidStateError
        If the raffle is completed or closed.
    CapacityError
        If the raffle is already full before the first row.
    """
    raffle = load_raffle(session, caller, raffle_id, for_update=True)
    raffle.ensure_open("add participants to")
    ensure_capacity(session, raffle)

    rows = list(rows)
    valid, errors = validate_rows(rows)
    result = BulkImportResult(total_rows=len(rows), valid_rows=len(valid), errors=errors)

    count = Participant.count_for_raffle(session, raffle.id)
    seen_emails: set[str] = set()
    for row_number, data in valid:
        if raffle.has_capacity_limit and count >= raffle.max_participants:
            result.skipped.append((row_number, "capacity reached"))
            continue
        email = data["email"]
        if email and (
            email in seen_emails
            or Participant.get_by_email(session, raffle.id, email) is not None
        ):
            logger.warning(
                "Row %s skipped: duplicate email in raffle %s", row_number, raffle.id
            )
            result.skipped.append((row_number, "duplicate email"))
            continue
        if email:
            seen_emails.add(email)
        result.added.append(_insert_participant(session, raffle, data))
        count += 1

    logger.info(
        "Bulk import into raffle %s: %s rows, %s valid, %s added, %s skipped",
        raffle.id,
        result.total_rows,
        result.valid_rows,
        result.added_count,
        len(result.skipped),
    )
    return result


def parse_bulk_text(text: str) -> list[dict[str, Optional[str]]]:
    """Parse ``Name, Email, Phone, Designation`` lines into candidate rows.

    Blank lines are ignored; missing trailing columns are ``None``.
    """
    rows = []
    for line in (text or "").splitlines():
        if not line.strip():
            continue
        parts = [part.strip() for part in line.split(",")]
        parts += [""] * (len(PARTICIPANT_FIELDS) - len(parts))
        name, email, phone, designation = parts[:4]
        rows.append(
            {
                "name": name,
                "email": email or None,
                "phone": phone or None,
                "designation": designation or None,
            }
        )
    return rows


__all__ = [
    "AddMode",
    "BulkImportResult",
    "add_participant",
    "add_prize",
    "bulk_import",
    "clean_participant",
    "ensure_capacity",
    "delete_participant",
    "delete_prize",
    "parse_bulk_text",
    "update_participant",
    "update_prize",
    "validate_rows",
]
