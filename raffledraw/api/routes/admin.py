"""Admin-only endpoints."""

from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from ... import auth, lifecycle
from ...auth import Caller, require_admin
from ..deps import get_caller, get_session, ok
from ..schemas import StatusUpdate, UserStatusUpdate

router = APIRouter(prefix="/admin", tags=["admin"])


def admin_caller(caller: Caller = Depends(get_caller)) -> Caller:
    require_admin(caller)
    return caller


@router.get("/dashboard")
def dashboard(
    session: Session = Depends(get_session),
    caller: Caller = Depends(admin_caller),
):
    return ok(lifecycle.dashboard_stats(session, caller))


@router.get("/raffles")
def list_all_raffles(
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    status: Optional[str] = None,
    user_id: Optional[int] = Query(None, alias="userId"),
    session: Session = Depends(get_session),
    caller: Caller = Depends(admin_caller),
):
    return ok(
        lifecycle.list_raffles(
            session,
            caller,
            page=page,
            limit=limit,
            status=status,
            owner_id=user_id,
            all_owners=True,
        )
    )


@router.get("/raffles/{raffle_id}")
def get_any_raffle(
    raffle_id: int,
    session: Session = Depends(get_session),
    caller: Caller = Depends(admin_caller),
):
    raffle = lifecycle.get_raffle(session, caller, raffle_id)
    data = raffle.to_json(include_roster=True)
    data["owner"] = raffle.owner.to_json()
    return ok(data)


@router.put("/raffles/{raffle_id}/status")
def override_status(
    raffle_id: int,
    payload: StatusUpdate,
    session: Session = Depends(get_session),
    caller: Caller = Depends(admin_caller),
):
    change = lifecycle.transition_raffle(session, caller, raffle_id, payload.status)
    return ok(
        {
            "id": change.raffle_id,
            "oldStatus": change.old_status.value,
            "newStatus": change.new_status.value,
        },
        change.message,
    )


@router.get("/users")
def list_users(
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    session: Session = Depends(get_session),
    caller: Caller = Depends(admin_caller),
):
    return ok(auth.list_users(session, caller, page=page, limit=limit))


@router.put("/users/{user_id}/status")
def update_user_status(
    user_id: int,
    payload: UserStatusUpdate,
    session: Session = Depends(get_session),
    caller: Caller = Depends(admin_caller),
):
    user = auth.set_user_active(session, caller, user_id, payload.is_active)
    return ok(
        user.to_json(),
        f"User {'activated' if user.is_active else 'deactivated'} successfully",
    )
