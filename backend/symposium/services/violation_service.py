from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select
from datetime import datetime
from typing import Callable, List, Optional
import logging

from ..core.exceptions import AttemptAlreadyTerminal, InvalidAnswer
from ..models.attempt import FinalizeReason, TestAttempt
from ..models.proctoring_violations import ProctoringViolation, ViolationKind
from ..schemas.attempt import ViolationOutcome
from ..schemas.rules import EffectiveRules
from ..utils.timezone import utc_now
from .attempt_service import AttemptService
from .notifier import Notifier

logger = logging.getLogger(__name__)


def snapshot_rules(attempt: TestAttempt) -> EffectiveRules:
    """Rules as they were when the attempt started"""
    return EffectiveRules(**(attempt.rules_snapshot or {}))


class ViolationMonitor:
    """Counts rule violations and auto-submits once the warning budget is spent.

    Shares the attempt's critical section with the session manager, so the
    counter, the threshold decision and finalize always see each other's
    writes in arrival order.
    """

    def __init__(
        self,
        db: AsyncSession,
        notifier: Optional[Notifier] = None,
        clock: Callable[[], datetime] = utc_now,
        attempts: Optional[AttemptService] = None,
    ):
        self.db = db
        self.attempts = attempts or AttemptService(db, notifier=notifier, clock=clock)
        self.clock = self.attempts.clock

    async def record_violation(self, attempt_id: str, kind: str) -> ViolationOutcome:
        if kind not in ViolationKind.ALL:
            raise InvalidAnswer(f"Unknown violation kind '{kind}'", kind=kind)

        async with self.attempts.locked_attempt(attempt_id) as attempt:
            if attempt.is_terminal:
                raise AttemptAlreadyTerminal(
                    f"Attempt {attempt_id} is already {attempt.status}",
                    attempt_id=attempt_id,
                    status=attempt.status,
                )

            rules = snapshot_rules(attempt)
            counted = rules.is_enforced(kind)
            if counted:
                attempt.violation_count += 1

            self.db.add(ProctoringViolation(
                attempt_id=attempt.id,
                kind=kind,
                counted=counted,
                count_after=attempt.violation_count,
                attempt_status=attempt.status,
                timestamp=self.clock(),
            ))

            finalized = False
            if counted and rules.limit_exceeded(attempt.violation_count):
                logger.warning(
                    f"Attempt {attempt_id} exceeded {rules.max_warning_count} warnings "
                    f"({attempt.violation_count} violations), auto-submitting"
                )
                finalized = await self.attempts.finalize_locked(attempt, FinalizeReason.VIOLATION)
            else:
                await self.db.commit()
                await self.db.refresh(attempt)

            if counted:
                logger.info(f"Violation {kind} on attempt {attempt_id}, count now {attempt.violation_count}")
            else:
                logger.info(f"Violation {kind} on attempt {attempt_id} recorded for audit only")

            warnings_remaining = None
            if rules.auto_submit_on_violation and not attempt.is_terminal:
                warnings_remaining = max(rules.max_warning_count - attempt.violation_count, 0)

            return ViolationOutcome(
                attempt_id=attempt.id,
                kind=kind,
                counted=counted,
                violation_count=attempt.violation_count,
                warnings_remaining=warnings_remaining,
                finalized=finalized,
                status=attempt.status,
            )

    async def list_violations(self, attempt_id: str) -> List[ProctoringViolation]:
        result = await self.db.execute(
            select(ProctoringViolation)
            .filter(ProctoringViolation.attempt_id == attempt_id)
            .order_by(ProctoringViolation.id)
        )
        return list(result.scalars().all())
