from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import delete, func, select
from datetime import datetime
from typing import Callable, Optional
import logging

from ..core.exceptions import InvalidRoundTransition, RoundNotFound
from ..models.attempt import Answer, TestAttempt
from ..models.audit_log import AuditLog
from ..models.event import Round, RoundStatus
from ..models.participant import Participant
from ..models.proctoring_violations import ProctoringViolation
from ..utils.timezone import utc_now
from .notifier import Notifier, get_notifier

logger = logging.getLogger(__name__)


class RoundService:
    """Round lifecycle: not_started -> in_progress -> completed, then results publication.

    A restart returns any round to not_started and throws away its attempts.
    """

    def __init__(
        self,
        db: AsyncSession,
        notifier: Optional[Notifier] = None,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.db = db
        self.notifier = notifier or get_notifier()
        self.clock = clock

    async def get_round(self, round_id: str) -> Round:
        round_ = await self.db.get(Round, round_id, populate_existing=True)
        if round_ is None:
            raise RoundNotFound(f"Round {round_id} not found", round_id=round_id)
        return round_

    def _audit(self, admin_id: Optional[str], action: str, round_: Round, changes: dict):
        if admin_id is None:
            return
        self.db.add(AuditLog(
            admin_id=admin_id,
            action=action,
            target_type="round",
            target_id=round_.id,
            changes=changes,
            timestamp=self.clock(),
        ))

    def _require_status(self, round_: Round, expected: str, action: str):
        if round_.status != expected:
            raise InvalidRoundTransition(
                f"Cannot {action} a round that is {round_.status}",
                round_id=round_.id,
                status=round_.status,
            )

    async def start_round(self, round_id: str, admin_id: Optional[str] = None) -> Round:
        """Open the round and enable the test for every participant of its event"""
        round_ = await self.get_round(round_id)
        self._require_status(round_, RoundStatus.NOT_STARTED, "start")

        now = self.clock()
        round_.status = RoundStatus.IN_PROGRESS
        round_.started_at = now

        result = await self.db.execute(
            select(Participant).filter(
                Participant.event_id == round_.event_id,
                Participant.test_enabled.is_(False),
            )
        )
        enabled = 0
        for participant in result.scalars().all():
            participant.test_enabled = True
            participant.enabled_at = now
            enabled += 1

        self._audit(admin_id, "start_round", round_, {
            "before": {"status": RoundStatus.NOT_STARTED},
            "after": {"status": RoundStatus.IN_PROGRESS},
        })
        await self.db.commit()
        await self.db.refresh(round_)

        logger.info(f"Round {round_id} started, enabled tests for {enabled} participant(s)")
        await self.notifier.round_status(round_)
        return round_

    async def end_round(self, round_id: str, admin_id: Optional[str] = None) -> Round:
        round_ = await self.get_round(round_id)
        self._require_status(round_, RoundStatus.IN_PROGRESS, "end")

        round_.status = RoundStatus.COMPLETED
        round_.ended_at = self.clock()
        self._audit(admin_id, "end_round", round_, {
            "before": {"status": RoundStatus.IN_PROGRESS},
            "after": {"status": RoundStatus.COMPLETED},
        })
        await self.db.commit()
        await self.db.refresh(round_)

        logger.info(f"Round {round_id} ended")
        await self.notifier.round_status(round_)
        return round_

    async def publish_results(self, round_id: str, admin_id: Optional[str] = None) -> Round:
        round_ = await self.get_round(round_id)
        if round_.results_published:
            return round_
        self._require_status(round_, RoundStatus.COMPLETED, "publish results of")

        round_.results_published = True
        self._audit(admin_id, "publish_results", round_, {
            "before": {"results_published": False},
            "after": {"results_published": True},
        })
        await self.db.commit()
        await self.db.refresh(round_)

        logger.info(f"Results published for round {round_id}")
        await self.notifier.results_published(round_)
        return round_

    async def restart_round(self, round_id: str, admin_id: Optional[str] = None) -> Round:
        """Discard every attempt of the round and put it back to not_started.

        Tests are disabled again for the event's participants; starting the
        round re-enables them.
        """
        round_ = await self.get_round(round_id)
        before = {"status": round_.status, "results_published": round_.results_published}

        round_attempts = select(TestAttempt.id).filter(TestAttempt.round_id == round_id)
        discarded = (await self.db.execute(
            select(func.count()).select_from(round_attempts.subquery())
        )).scalar_one()
        for model in (Answer, ProctoringViolation):
            await self.db.execute(
                delete(model)
                .where(model.attempt_id.in_(round_attempts))
                .execution_options(synchronize_session=False)
            )
        await self.db.execute(
            delete(TestAttempt)
            .where(TestAttempt.round_id == round_id)
            .execution_options(synchronize_session=False)
        )

        round_.status = RoundStatus.NOT_STARTED
        round_.started_at = None
        round_.ended_at = None
        round_.results_published = False

        result = await self.db.execute(
            select(Participant).filter(
                Participant.event_id == round_.event_id,
                Participant.test_enabled.is_(True),
            )
        )
        for participant in result.scalars().all():
            participant.test_enabled = False
            participant.enabled_at = None

        self._audit(admin_id, "restart_round", round_, {
            "before": before,
            "after": {"status": RoundStatus.NOT_STARTED, "results_published": False},
            "discarded_attempts": discarded,
        })
        await self.db.commit()
        await self.db.refresh(round_)

        logger.warning(f"Round {round_id} restarted, discarded {discarded} attempt(s)")
        await self.notifier.round_status(round_)
        return round_
