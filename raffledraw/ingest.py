"""Turn uploaded participant files into candidate rows for bulk import."""

from __future__ import annotations

import csv
import io
import logging
import os
from pathlib import PurePath
from typing import Any, Optional

from dotenv import load_dotenv
from openpyxl import load_workbook
from sqlalchemy.orm import Session

from .auth import Caller
from .errors import ValidationError
from .lifecycle import load_raffle
from .roster import BulkImportResult, bulk_import, ensure_capacity, validate_rows

load_dotenv()
MAX_UPLOAD_BYTES = int(os.getenv("MAX_UPLOAD_BYTES", str(5 * 1024 * 1024)))
ALLOWED_EXTENSIONS = (".csv", ".xlsx")
COLUMNS = ("name", "email", "phone", "designation")

logger = logging.getLogger(__name__)


def _normalize_row(raw: dict[Any, Any]) -> Optional[dict[str, Optional[str]]]:
    """Map headers case-insensitively onto the participant columns.

    Returns ``None`` for rows where every cell is empty.
    """
    row: dict[str, Optional[str]] = {column: None for column in COLUMNS}
    for header, value in raw.items():
        if header is None:
            continue
        key = str(header).strip().lower()
        if key not in row:
            continue
        if value is None:
            continue
        text = str(value).strip()
        row[key] = text or None
    if all(value is None for value in row.values()):
        return None
    return row


def parse_csv(content: bytes) -> list[dict[str, Optional[str]]]:
    try:
        text = content.decode("utf-8-sig")
    except UnicodeDecodeError as exc:
        raise ValidationError(
            "Error parsing file: CSV must be UTF-8 encoded",
            fields={"file": "must be UTF-8 encoded"},
        ) from exc
    reader = csv.DictReader(io.StringIO(text))
    rows = []
    for raw in reader:
        row = _normalize_row(raw)
        if row is not None:
            rows.append(row)
    return rows


def parse_xlsx(content: bytes) -> list[dict[str, Optional[str]]]:
    """Read the first worksheet; its first row holds the headers."""
    try:
        workbook = load_workbook(io.BytesIO(content), read_only=True, data_only=True)
    except Exception as exc:  # openpyxl raises several unrelated types
        raise ValidationError(
            f"Error parsing file: {exc}", fields={"file": "not a valid XLSX workbook"}
        ) from exc
    try:
        sheet = workbook.worksheets[0]
        values = sheet.iter_rows(values_only=True)
        headers = next(values, None)
        if headers is None:
            return []
        rows = []
        for cells in values:
            row = _normalize_row(dict(zip(headers, cells)))
            if row is not None:
                rows.append(row)
        return rows
    finally:
        workbook.close()


def parse_upload(
    filename: str, content: bytes, *, max_bytes: Optional[int] = None
) -> list[dict[str, Optional[str]]]:
    """Parse an uploaded ``.csv`` or ``.xlsx`` file into candidate rows.

    Raises
    ------
    ValidationError
        If the file is empty, too large, of an unsupported type or cannot be
        parsed.
    """
    limit = MAX_UPLOAD_BYTES if max_bytes is None else max_bytes
    if not content:
        raise ValidationError("No file uploaded", fields={"file": "is required"})
    if len(content) > limit:
        raise ValidationError(
            f"File too large (max {limit} bytes)",
            fields={"file": f"must be at most {limit} bytes"},
        )
    extension = PurePath(filename or "").suffix.lower()
    if extension not in ALLOWED_EXTENSIONS:
        raise ValidationError(
            "Only CSV and Excel (.xlsx) files are allowed",
            fields={"file": "must be a .csv or .xlsx file"},
        )
    rows = parse_csv(content) if extension == ".csv" else parse_xlsx(content)
    logger.info("Parsed %s rows from %s", len(rows), filename)
    return rows


def import_participants_file(
    session: Session,
    caller: Caller,
    raffle_id: int,
    filename: str,
    content: bytes,
) -> BulkImportResult:
    """Parse an uploaded file and feed its rows to :func:`~raffledraw.roster.bulk_import`.

    The raffle is checked (open, below its cap) before the file is parsed.

    Raises
    ------
    ValidationError
        If the file is rejected or contains no valid row; ``details["errors"]``
        then lists the row errors.
    CapacityError
        If the raffle is already full.
    """
    raffle = load_raffle(session, caller, raffle_id, for_update=True)
    raffle.ensure_open("add participants to")
    ensure_capacity(session, raffle)

    rows = parse_upload(filename, content)
    valid, errors = validate_rows(rows)
    if not valid:
        raise ValidationError(
            "No valid participants found in file", details={"errors": errors}
        )
    return bulk_import(session, caller, raffle_id, rows)


__all__ = [
    "ALLOWED_EXTENSIONS",
    "MAX_UPLOAD_BYTES",
    "import_participants_file",
    "parse_csv",
    "parse_upload",
    "parse_xlsx",
]
