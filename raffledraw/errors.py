"""Error taxonomy shared by the lifecycle, roster, draw and reporting layers.

Every failure carries a stable machine-readable :class:`ErrorCode` plus a
human-readable message. The HTTP layer maps codes to status codes; library
callers can branch on the subclass or on ``err.code``.
"""

from __future__ import annotations

from enum import Enum
from typing import Any, Mapping, Optional


class ErrorCode(Enum):
    """Domain error codes."""

    VALIDATION_ERROR = "VALIDATION_ERROR"
    INVALID_STATE = "INVALID_STATE"
    CONFLICT = "CONFLICT"
    PRECONDITION_FAILED = "PRECONDITION_FAILED"
    CAPACITY_REACHED = "CAPACITY_REACHED"
    NOT_FOUND = "NOT_FOUND"
    AUTHORIZATION_ERROR = "AUTHORIZATION_ERROR"
    AUTHENTICATION_ERROR = "AUTHENTICATION_ERROR"
    EMPTY_RESULT = "EMPTY_RESULT"


class RaffleError(Exception):
    """Base domain error with code and user-safe message."""

    code: ErrorCode = ErrorCode.VALIDATION_ERROR

    def __init__(
        self, message: str, *, details: Optional[Mapping[str, Any]] = None
    ) -> None:
        super().__init__(message)
        self.message = message
        self.details: dict[str, Any] = dict(details or {})

    def __str__(self) -> str:
        return f"{self.code.value}: {self.message}"

    def to_json(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "error": self.code.value,
            "message": self.message,
        }
        if self.details:
            payload["details"] = self.details
        return payload


class ValidationError(RaffleError):
    """Malformed input. ``details`` maps field names to messages."""

    code = ErrorCode.VALIDATION_ERROR

    def __init__(
        self,
        message: str = "Validation failed",
        *,
        fields: Optional[Mapping[str, str]] = None,
        details: Optional[Mapping[str, Any]] = None,
    ) -> None:
        merged: dict[str, Any] = dict(details or {})
        if fields:
            merged["fields"] = dict(fields)
        super().__init__(message, details=merged)

    @property
    def fields(self) -> dict[str, str]:
        return self.details.get("fields", {})


class InvalidStateError(RaffleError):
    """Operation is not legal in the current raffle/prize/participant state."""

    code = ErrorCode.INVALID_STATE

    def __init__(self, message: str, *, status: Optional[str] = None) -> None:
        super().__init__(message, details={"status": status} if status else None)
        self.status = status


class ConflictError(RaffleError):
    """A concurrent mutation won the race (e.g. the prize already has a winner)."""

    code = ErrorCode.CONFLICT


class PreconditionError(RaffleError):
    """A structural prerequisite is missing (no prizes, no participants, ...)."""

    code = ErrorCode.PRECONDITION_FAILED


class CapacityError(RaffleError):
    """The raffle's participant cap has been reached."""

    code = ErrorCode.CAPACITY_REACHED

    def __init__(self, max_participants: int) -> None:
        super().__init__(
            "Maximum participants limit reached",
            details={"maxParticipants": max_participants},
        )
        self.max_participants = max_participants


class NotFoundError(RaffleError):
    """Referenced entity does not exist or is not visible to the caller."""

    code = ErrorCode.NOT_FOUND

    def __init__(self, entity: str, entity_id: Any = None) -> None:
        super().__init__(f"{entity} not found")
        self.entity = entity
        self.entity_id = entity_id


class AuthorizationError(RaffleError):
    """Caller lacks ownership or the required role."""

    code = ErrorCode.AUTHORIZATION_ERROR


class AuthenticationError(RaffleError):
    """No caller identity could be resolved from the request credentials."""

    code = ErrorCode.AUTHENTICATION_ERROR


class EmptyResultError(RaffleError):
    """A report was requested but there is nothing to report."""

    code = ErrorCode.EMPTY_RESULT


__all__ = [
    "ErrorCode",
    "RaffleError",
    "ValidationError",
    "InvalidStateError",
    "ConflictError",
    "PreconditionError",
    "CapacityError",
    "NotFoundError",
    "AuthorizationError",
    "AuthenticationError",
    "EmptyResultError",
]
