"""Participant file uploads."""

from fastapi import APIRouter, Depends, File, UploadFile
from sqlalchemy.orm import Session

from ...auth import Caller
from ...ingest import MAX_UPLOAD_BYTES, import_participants_file
from ..deps import get_caller, get_session, ok

router = APIRouter(prefix="/uploads", tags=["uploads"])


@router.post("/participants/{raffle_id}")
def upload_participants(
    raffle_id: int,
    file: UploadFile = File(...),
    session: Session = Depends(get_session),
    caller: Caller = Depends(get_caller),
):
    """Import participants from a ``.csv`` or ``.xlsx`` file."""
    # one extra byte lets the parser detect oversized files
    content = file.file.read(MAX_UPLOAD_BYTES + 1)
    result = import_participants_file(
        session, caller, raffle_id, file.filename or "", content
    )
    return ok(
        result.to_json(),
        f"Successfully uploaded {result.added_count} participants",
    )
