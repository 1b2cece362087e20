from typing import Iterator, Optional

from fastapi import Depends, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.orm import Session

from ..auth import Caller, resolve_caller

bearer_scheme = HTTPBearer(auto_error=False)


def get_session(request: Request) -> Iterator[Session]:
    """One transaction per request; any raised error rolls it back."""
    session_factory = request.app.state.session_factory
    with session_factory.begin() as session:
        yield session


def get_caller(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
    session: Session = Depends(get_session),
) -> Caller:
    token = credentials.credentials if credentials is not None else None
    return resolve_caller(session, token)


def ok(data=None, message: Optional[str] = None) -> dict:
    """Success envelope shared by every JSON endpoint."""
    body = {"success": True}
    if message is not None:
        body["message"] = message
    if data is not None:
        body["data"] = data
    return body
