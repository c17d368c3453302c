from fastapi import APIRouter, Depends
from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession
from typing import Optional
from datetime import datetime

from ....core.database import get_async_db
from ....core.security import Principal
from ....services.round_service import RoundService
from ...deps import require_admin

router = APIRouter()


class RoundStatusResponse(BaseModel):
    id: str
    event_id: str
    name: str
    round_number: int
    duration_minutes: int
    status: str
    results_published: bool
    started_at: Optional[datetime] = None
    ended_at: Optional[datetime] = None

    class Config:
        from_attributes = True


@router.post("/{round_id}/start", response_model=RoundStatusResponse)
async def start_round(
    round_id: str,
    admin: Principal = Depends(require_admin),
    db: AsyncSession = Depends(get_async_db),
):
    return await RoundService(db).start_round(round_id, admin_id=admin.user_id)


@router.post("/{round_id}/end", response_model=RoundStatusResponse)
async def end_round(
    round_id: str,
    admin: Principal = Depends(require_admin),
    db: AsyncSession = Depends(get_async_db),
):
    return await RoundService(db).end_round(round_id, admin_id=admin.user_id)


@router.post("/{round_id}/publish-results", response_model=RoundStatusResponse)
async def publish_results(
    round_id: str,
    admin: Principal = Depends(require_admin),
    db: AsyncSession = Depends(get_async_db),
):
    return await RoundService(db).publish_results(round_id, admin_id=admin.user_id)


@router.post("/{round_id}/restart", response_model=RoundStatusResponse)
async def restart_round(
    round_id: str,
    admin: Principal = Depends(require_admin),
    db: AsyncSession = Depends(get_async_db),
):
    """Discard the round's attempts and return it to not_started"""
    return await RoundService(db).restart_round(round_id, admin_id=admin.user_id)
