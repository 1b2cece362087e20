"""Request bodies of the HTTP API.

Field names follow the camelCase JSON contract; attribute names are the
snake_case keyword arguments of the service layer. Value rules (lengths,
ranges, formats) are enforced by the services so every caller gets the same
error messages.
"""

from __future__ import annotations

from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field


class _Body(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    def fields_set(self) -> dict[str, Any]:
        """Only the fields the client actually sent, by attribute name."""
        return self.model_dump(exclude_unset=True)


class RaffleCreate(_Body):
    title: Optional[str] = None
    description: Optional[str] = None
    draw_date: Any = Field(default=None, alias="drawDate")
    max_participants: Optional[int] = Field(default=None, alias="maxParticipants")
    is_public: bool = Field(default=True, alias="isPublic")
    status: str = "draft"


class RaffleUpdate(_Body):
    title: Optional[str] = None
    description: Optional[str] = None
    draw_date: Any = Field(default=None, alias="drawDate")
    max_participants: Optional[int] = Field(default=None, alias="maxParticipants")
    is_public: Optional[bool] = Field(default=None, alias="isPublic")
    status: Optional[str] = None


class StatusUpdate(_Body):
    status: str


class PrizeCreate(_Body):
    name: Optional[str] = None
    position: Optional[int] = None
    description: Optional[str] = None
    value: Any = None


class PrizeUpdate(_Body):
    name: Optional[str] = None
    position: Optional[int] = None
    description: Optional[str] = None
    value: Any = None


class ParticipantCreate(_Body):
    name: Optional[str] = None
    email: Optional[str] = None
    phone: Optional[str] = None
    designation: Optional[str] = None


class ParticipantUpdate(ParticipantCreate):
    pass


class BulkParticipants(_Body):
    text: str = ""


class UserStatusUpdate(_Body):
    is_active: bool = Field(alias="isActive")
