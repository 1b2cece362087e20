from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

import os
from pathlib import Path
from dotenv import load_dotenv
from .utils import resolve_sqlite_url

# Get DB url
load_dotenv()
# Project root directory (repo root)
ROOT_DIR = Path(__file__).resolve().parents[2]
DEFAULT_SQLITE_URL = resolve_sqlite_url(
    os.getenv("DB_URL", "sqlite:///./dev.db"), ROOT_DIR
)
DEFAULT_ECHO = os.getenv("DB_ECHO", "").lower() in {"1", "true", "yes"}


from typing import Optional


def make_engine(database_url: Optional[str] = None, echo: bool = False, **kwargs):
    """Build the SQLAlchemy engine for ``database_url`` (or ``DB_URL``).

    Extra keyword arguments are forwarded to :func:`sqlalchemy.create_engine`,
    which lets tests pass ``poolclass``/``connect_args`` for in-memory SQLite.
    """
    url = database_url or DEFAULT_SQLITE_URL
    engine = create_engine(
        url,
        echo=echo or DEFAULT_ECHO,
        future=True,
        **kwargs,
    )
    if url.startswith("sqlite"):
        from sqlalchemy import event

        @event.listens_for(engine, "connect")
        def _set_sqlite_pragma(dbapi_connection, connection_record):
            # transactions are opened by the "begin" listener below so that
            # SAVEPOINTs nest inside them
            dbapi_connection.isolation_level = None
            # ensure FK constraints are enforced on SQLite
            cursor = dbapi_connection.cursor()
            cursor.execute("PRAGMA foreign_keys=ON")
            cursor.close()

        @event.listens_for(engine, "begin")
        def _do_begin(conn):
            conn.exec_driver_sql("BEGIN")

    return engine


def get_sessionmaker(engine):
    return sessionmaker(
        bind=engine,
        expire_on_commit=False,  # Keep objects accessible after commit for response rendering
        future=True,
    )
