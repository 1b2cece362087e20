"""
FastAPI application for the raffle draw service.

Run with ``uvicorn raffledraw.api.app:create_app --factory`` or the
``raffledraw-api`` console script.
"""

import logging
import os
import time
from datetime import datetime, timezone
from typing import Optional

from dotenv import load_dotenv
from fastapi import Depends, FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session, sessionmaker

from ..auth import Caller
from ..db.engine import get_sessionmaker, make_engine
from ..errors import ErrorCode, RaffleError
from ..models import User
from .deps import get_caller, get_session, ok
from .routes import admin, raffles, uploads

load_dotenv()
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()
LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

HTTP_STATUS = {
    ErrorCode.VALIDATION_ERROR: 400,
    ErrorCode.EMPTY_RESULT: 400,
    ErrorCode.AUTHENTICATION_ERROR: 401,
    ErrorCode.AUTHORIZATION_ERROR: 403,
    ErrorCode.NOT_FOUND: 404,
    ErrorCode.INVALID_STATE: 409,
    ErrorCode.CONFLICT: 409,
    ErrorCode.CAPACITY_REACHED: 409,
    ErrorCode.PRECONDITION_FAILED: 422,
}

logger = logging.getLogger(__name__)


def configure_logging(level: Optional[str] = None) -> None:
    logging.basicConfig(level=level or LOG_LEVEL, format=LOG_FORMAT)


def _error_response(status_code: int, body: dict) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"success": False, **body})


async def handle_raffle_error(request: Request, exc: RaffleError) -> JSONResponse:
    status_code = HTTP_STATUS.get(exc.code, 400)
    logger.debug("%s %s failed: %s", request.method, request.url.path, exc)
    return _error_response(status_code, exc.to_json())


async def handle_request_validation(
    request: Request, exc: RequestValidationError
) -> JSONResponse:
    fields = {}
    for error in exc.errors():
        location = [str(part) for part in error.get("loc", ()) if part != "body"]
        fields[".".join(location) or "body"] = error.get("msg", "invalid value")
    return _error_response(
        400,
        {
            "error": ErrorCode.VALIDATION_ERROR.value,
            "message": "Validation failed",
            "details": {"fields": fields},
        },
    )


def create_app(session_factory: Optional[sessionmaker] = None) -> FastAPI:
    """Build the application.

    ``session_factory`` defaults to a sessionmaker over ``DB_URL``; tests pass
    one bound to an in-memory database.
    """
    configure_logging()
    if session_factory is None:
        session_factory = get_sessionmaker(make_engine())

    app = FastAPI(
        title="Raffle Draw API",
        description="Raffle draws with prizes, participants and random winner selection",
        version="0.1.0",
    )
    app.state.session_factory = session_factory

    app.add_exception_handler(RaffleError, handle_raffle_error)
    app.add_exception_handler(RequestValidationError, handle_request_validation)

    @app.middleware("http")
    async def log_requests(request: Request, call_next):
        started = time.perf_counter()
        response = await call_next(request)
        elapsed_ms = (time.perf_counter() - started) * 1000
        logger.info(
            "%s %s -> %s (%.1f ms)",
            request.method,
            request.url.path,
            response.status_code,
            elapsed_ms,
        )
        return response

    app.include_router(raffles.router)
    app.include_router(uploads.router)
    app.include_router(admin.router)

    @app.get("/health")
    def health():
        return {
            "success": True,
            "status": "ok",
            "timestamp": datetime.now(timezone.utc).isoformat(),
        }

    @app.get("/auth/me")
    def me(
        session: Session = Depends(get_session),
        caller: Caller = Depends(get_caller),
    ):
        """Profile of the authenticated caller."""
        return ok(session.get(User, caller.user_id).to_json())

    return app


def main() -> None:
    import uvicorn

    uvicorn.run(
        "raffledraw.api.app:create_app",
        factory=True,
        host=os.getenv("HOST", "127.0.0.1"),
        port=int(os.getenv("PORT", "8000")),
    )


if __name__ == "__main__":
    main()
