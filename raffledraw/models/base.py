"""Declarative base and column helpers shared by every model."""

from datetime import datetime, timezone

from sqlalchemy import BigInteger, Integer
from sqlalchemy.orm import DeclarativeBase

from raffledraw.db.metadata import metadata_obj

# BigInteger keys, with an Integer variant so SQLite autoincrements them.
ID_TYPE = BigInteger().with_variant(Integer, "sqlite")


def utcnow() -> datetime:
    """Column default for ``created_at``/``updated_at`` timestamps."""
    return datetime.now(timezone.utc)


class Base(DeclarativeBase):
    metadata = metadata_obj
