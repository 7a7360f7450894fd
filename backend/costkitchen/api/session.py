"""
CostKitchen - Session API Routes
Login, logout, sync state and user notices
"""

import datetime as dt
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import BaseModel

from costkitchen.dependencies import kitchen_session
from costkitchen.models.finance import LoginResult, Notice, SyncState
from costkitchen.services.kitchen import KitchenSession

router = APIRouter(prefix="/session", tags=["Session"])


class LoginRequest(BaseModel):
    email: str
    password: str


class SessionState(BaseModel):
    user_id: Optional[str] = None
    state: SyncState
    is_loading: bool
    last_sync_epoch_millis: int
    last_alive_at: Optional[dt.datetime] = None
    queued_operations: int


@router.post("/login", response_model=LoginResult)
async def login(request: LoginRequest, kitchen: KitchenSession = Depends(kitchen_session)) -> LoginResult:
    """
    Sign in, then load cache and remote data.

    Returns 429 while locked out after repeated failures.
    """
    result = await kitchen.login(request.email, request.password)
    if result.lockout_seconds and not result.success:
        raise HTTPException(
            status_code=status.HTTP_429_TOO_MANY_REQUESTS,
            detail=result.error,
            headers={"Retry-After": str(result.lockout_seconds)},
        )
    return result


@router.post("/logout")
async def logout(kitchen: KitchenSession = Depends(kitchen_session)) -> dict:
    await kitchen.logout()
    return {"status": "signed-out"}


@router.get("/state", response_model=SessionState)
async def get_state(kitchen: KitchenSession = Depends(kitchen_session)) -> SessionState:
    await kitchen.guard.check_timeout()
    sync = kitchen.sync
    return SessionState(
        user_id=sync.user_id,
        state=sync.state,
        is_loading=sync.is_loading,
        last_sync_epoch_millis=sync.last_sync_epoch_millis,
        last_alive_at=sync.last_alive_at,
        queued_operations=len(kitchen.mutations.queue),
    )


@router.get("/notices", response_model=list[Notice])
async def get_notices(kitchen: KitchenSession = Depends(kitchen_session)) -> list[Notice]:
    """Recent user-visible notices, oldest first."""
    return kitchen.notifier.recent()
