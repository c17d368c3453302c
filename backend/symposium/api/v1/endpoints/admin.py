from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select
from typing import Any, Dict, List, Optional
from datetime import datetime

from ....core.database import get_async_db
from ....core.security import Principal
from ....models.attempt import TestAttempt
from ....models.audit_log import AuditLog
from ....schemas.attempt import AttemptResponse, ManualGradeRequest, OverrideRequest
from ....services.attempt_service import AttemptService
from ....services.notifier import get_notifier, round_channel
from ....services.scoring_service import ScoringEngine
from ...deps import require_admin

router = APIRouter()


class OverrideResult(AttemptResponse):
    applied: bool


class AuditLogEntry(BaseModel):
    id: int
    admin_id: str
    action: str
    target_type: str
    target_id: str
    changes: Optional[Dict[str, Any]] = None
    reason: Optional[str] = None
    timestamp: datetime

    class Config:
        from_attributes = True


@router.get("/rounds/{round_id}/attempts", response_model=List[AttemptResponse])
async def list_round_attempts(
    round_id: str,
    status: Optional[str] = Query(None),
    admin: Principal = Depends(require_admin),
    db: AsyncSession = Depends(get_async_db),
):
    service = AttemptService(db)
    await service.get_round(round_id)
    # Heal anything past its deadline so the dashboard never shows a stale in-progress row
    await service.sweep_expired(round_id=round_id)

    stmt = select(TestAttempt).filter(TestAttempt.round_id == round_id)
    if status:
        stmt = stmt.filter(TestAttempt.status == status)
    result = await db.execute(stmt.order_by(TestAttempt.started_at))
    return [AttemptResponse.from_attempt(a) for a in result.scalars().all()]


@router.post("/attempts/{attempt_id}/override", response_model=OverrideResult)
async def override_attempt(
    attempt_id: str,
    request: OverrideRequest,
    admin: Principal = Depends(require_admin),
    db: AsyncSession = Depends(get_async_db),
):
    """Force an attempt into a terminal state. A terminal attempt is returned unchanged."""
    service = AttemptService(db)
    attempt, applied = await service.override_attempt(
        attempt_id, admin.user_id, status=request.status, reason=request.reason
    )
    return OverrideResult.from_attempt(attempt, applied=applied)


@router.post("/attempts/{attempt_id}/answers/{question_id}/grade", response_model=AttemptResponse)
async def grade_answer(
    attempt_id: str,
    question_id: str,
    request: ManualGradeRequest,
    admin: Principal = Depends(require_admin),
    db: AsyncSession = Depends(get_async_db),
):
    """Resolve a pending answer by hand"""
    attempt, _ = await ScoringEngine(db).grade_manually(
        attempt_id, question_id, request.awarded_points, admin_id=admin.user_id
    )

    changes = {"question_id": question_id, "awarded_points": request.awarded_points}
    await get_notifier().override_action(
        "grade_answer", "attempt", attempt_id, changes, channels=[round_channel(attempt.round_id)]
    )
    return AttemptResponse.from_attempt(attempt)


@router.get("/audit-logs", response_model=List[AuditLogEntry])
async def list_audit_logs(
    target_id: Optional[str] = Query(None),
    limit: int = Query(100, ge=1, le=500),
    admin: Principal = Depends(require_admin),
    db: AsyncSession = Depends(get_async_db),
):
    stmt = select(AuditLog).order_by(AuditLog.timestamp.desc(), AuditLog.id.desc()).limit(limit)
    if target_id:
        stmt = stmt.filter(AuditLog.target_id == target_id)
    result = await db.execute(stmt)
    return result.scalars().all()
