from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession
from typing import List

from ....core.database import get_async_db
from ....core.security import Principal
from ....schemas.attempt import ViolationOutcome, ViolationRecord, ViolationReport
from ....services.violation_service import ViolationMonitor
from ...deps import get_current_principal, require_admin
from .attempts import authorize_attempt

router = APIRouter()


@router.post("/attempts/{attempt_id}/violations", response_model=ViolationOutcome)
async def report_violation(
    attempt_id: str,
    report: ViolationReport,
    principal: Principal = Depends(get_current_principal),
    db: AsyncSession = Depends(get_async_db),
):
    """Report a proctoring violation detected by the test client"""
    await authorize_attempt(db, attempt_id, principal)
    monitor = ViolationMonitor(db)
    return await monitor.record_violation(attempt_id, report.kind)


@router.get("/attempts/{attempt_id}/violations", response_model=List[ViolationRecord])
async def get_attempt_violations(
    attempt_id: str,
    principal: Principal = Depends(require_admin),
    db: AsyncSession = Depends(get_async_db),
):
    await authorize_attempt(db, attempt_id, principal)
    monitor = ViolationMonitor(db)
    return await monitor.list_violations(attempt_id)
