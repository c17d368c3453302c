"""
Attempt session manager.

Owns the attempt state machine::

    not_started -> in_progress -> completed | auto_submitted | disqualified

Terminal states are absorbing. Every mutation of an attempt runs under the
per-attempt keyed lock and a row lock (``SELECT ... FOR UPDATE`` where the
database supports it), and commits before the lock is released, so the next
waiter always sees the previous writer's result.

``deadline_at`` is computed once at start from the round duration and is
the only clock that matters. Any access to an in-progress attempt whose
deadline has passed finalizes it with reason ``deadline`` first, so a
missed sweep never leaves an attempt open.
"""
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from contextlib import asynccontextmanager
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, List, Optional, Tuple
import logging

from ..core.exceptions import (
    AttemptAlreadyTerminal,
    AttemptNotFound,
    InvalidOverride,
    ParticipantNotFound,
    QuestionNotFound,
    RoundNotAcceptingAttempts,
    RoundNotFound,
    TestNotEnabled,
)
from ..core.locks import KeyedLock, attempt_locks
from ..models.attempt import Answer, AttemptStatus, FinalizeReason, TestAttempt
from ..models.audit_log import AuditLog
from ..models.event import Round
from ..models.participant import Participant
from ..models.question import Question
from ..utils.timezone import utc_now
from .notifier import Notifier, attempt_finalized_data, get_notifier, round_channel, participant_channel
from .rules_service import RuleResolver
from .scoring_service import ScoringEngine, grader_for

logger = logging.getLogger(__name__)


@dataclass
class AnswerResult:
    attempt: TestAttempt
    question_id: str
    accepted: bool
    ignored: bool = False
    answer: Optional[Answer] = None


def results_visible(round_: Round, attempt: Optional[TestAttempt], now: datetime, is_admin: bool = False) -> bool:
    """Participants see scores once results are published and their own window has closed"""
    if is_admin:
        return True
    if not round_.results_published:
        return False
    return attempt is None or now >= attempt.deadline_at


class AttemptService:
    def __init__(
        self,
        db: AsyncSession,
        notifier: Optional[Notifier] = None,
        clock: Callable[[], datetime] = utc_now,
        locks: KeyedLock = attempt_locks,
    ):
        self.db = db
        self.notifier = notifier or get_notifier()
        self.clock = clock
        self.locks = locks
        self.scoring = ScoringEngine(db)
        self.rules = RuleResolver(db)
        # attempt_finalized payloads waiting for the critical section to end
        self._finalized: List[Dict[str, Any]] = []

    async def _load_attempt(self, attempt_id: str, for_update: bool = False) -> TestAttempt:
        stmt = (
            select(TestAttempt)
            .filter(TestAttempt.id == attempt_id)
            .execution_options(populate_existing=True)
        )
        if for_update:
            stmt = stmt.with_for_update()
        result = await self.db.execute(stmt)
        attempt = result.scalars().first()
        if attempt is None:
            raise AttemptNotFound(f"Attempt {attempt_id} not found", attempt_id=attempt_id)
        return attempt

    async def get_round(self, round_id: str) -> Round:
        round_ = await self.db.get(Round, round_id)
        if round_ is None:
            raise RoundNotFound(f"Round {round_id} not found", round_id=round_id)
        return round_

    async def get_participant_for_round(self, user_id: str, round_id: str) -> Participant:
        round_ = await self.get_round(round_id)
        result = await self.db.execute(
            select(Participant).filter(
                Participant.event_id == round_.event_id,
                Participant.user_id == user_id,
            )
        )
        participant = result.scalars().first()
        if participant is None:
            raise ParticipantNotFound(
                f"User {user_id} is not registered for this event",
                round_id=round_id,
            )
        return participant

    async def find_attempt(self, participant_id: str, round_id: str) -> Optional[TestAttempt]:
        """The open attempt for the pair if there is one, else the most recent finished one"""
        result = await self.db.execute(
            select(TestAttempt)
            .filter(
                TestAttempt.participant_id == participant_id,
                TestAttempt.round_id == round_id,
            )
            .order_by(TestAttempt.started_at.desc())
            .execution_options(populate_existing=True)
        )
        attempts = list(result.scalars().all())
        if not attempts:
            return None
        for attempt in attempts:
            if attempt.status == AttemptStatus.IN_PROGRESS:
                return attempt
        return attempts[0]

    async def get_answers(self, attempt_id: str) -> List[Answer]:
        return await self.scoring.get_attempt_answers(attempt_id)

    @asynccontextmanager
    async def locked_attempt(self, attempt_id: str, heal: bool = True):
        """Hold the attempt's critical section and yield a freshly loaded row.

        With ``heal`` an expired in-progress attempt is finalized with reason
        ``deadline`` before the caller sees it. Finalize notifications queued
        inside are published once the lock is released.
        """
        try:
            async with self.locks.hold(attempt_id):
                try:
                    attempt = await self._load_attempt(attempt_id, for_update=True)
                    if heal:
                        await self._heal(attempt)
                    yield attempt
                except BaseException:
                    await self.db.rollback()
                    raise
        finally:
            await self._publish_finalized()

    async def _publish_finalized(self):
        # Only committed finalizes are queued, so this runs on error paths too
        pending, self._finalized = self._finalized, []
        for data in pending:
            await self.notifier.publish_attempt_finalized(data)

    async def _heal(self, attempt: TestAttempt) -> bool:
        if attempt.status == AttemptStatus.IN_PROGRESS and attempt.is_expired(self.clock()):
            return await self.finalize_locked(attempt, FinalizeReason.DEADLINE)
        return False

    async def start_attempt(self, participant_id: str, round_id: str) -> Tuple[TestAttempt, bool]:
        """Create the pair's attempt, or return the existing one unchanged.

        Returns ``(attempt, created)``.
        """
        async with self.locks.hold(("start", participant_id, round_id)):
            existing = await self.find_attempt(participant_id, round_id)
            if existing is not None:
                return await self.get_attempt(existing.id), False

            round_ = await self.get_round(round_id)
            if not round_.is_accepting_attempts:
                raise RoundNotAcceptingAttempts(
                    f"Round {round_id} is {round_.status}",
                    round_id=round_id,
                    round_status=round_.status,
                )

            participant = await self.db.get(Participant, participant_id)
            if participant is None or participant.event_id != round_.event_id:
                raise ParticipantNotFound(
                    f"Participant {participant_id} is not registered for this event",
                    participant_id=participant_id,
                )
            if not participant.test_enabled:
                raise TestNotEnabled(
                    "The test has not been enabled for this participant",
                    participant_id=participant_id,
                )

            rules = await self.rules.resolve(round_id)
            questions = await self.scoring.get_round_questions(round_id)

            now = self.clock()
            attempt = TestAttempt(
                participant_id=participant_id,
                round_id=round_id,
                status=AttemptStatus.IN_PROGRESS,
                started_at=now,
                deadline_at=now + timedelta(minutes=round_.duration_minutes),
                violation_count=0,
                rules_snapshot=rules.model_dump(),
                max_score=sum(q.points for q in questions),
                pending_count=0,
            )
            self.db.add(attempt)
            try:
                await self.db.commit()
            except IntegrityError:
                # Another worker won the race; the open-pair index rejected our row
                await self.db.rollback()
                winner = await self.find_attempt(participant_id, round_id)
                if winner is None:
                    raise
                logger.info(
                    f"Concurrent start for participant {participant_id} round {round_id} "
                    f"resolved to attempt {winner.id}"
                )
                return winner, False

            await self.db.refresh(attempt)
            logger.info(
                f"Started attempt {attempt.id} for participant {participant_id} in round {round_id}, "
                f"deadline {attempt.deadline_at.isoformat()}"
            )
            return attempt, True

    async def get_attempt(self, attempt_id: str) -> TestAttempt:
        async with self.locked_attempt(attempt_id) as attempt:
            return attempt

    async def _get_round_question(self, round_id: str, question_id: str) -> Question:
        result = await self.db.execute(
            select(Question).filter(Question.id == question_id, Question.round_id == round_id)
        )
        question = result.scalars().first()
        if question is None:
            raise QuestionNotFound(
                f"Question {question_id} does not belong to this round",
                question_id=question_id,
            )
        return question

    async def _get_answer(self, attempt_id: str, question_id: str) -> Optional[Answer]:
        result = await self.db.execute(
            select(Answer)
            .filter(Answer.attempt_id == attempt_id, Answer.question_id == question_id)
            .execution_options(populate_existing=True)
        )
        return result.scalars().first()

    async def submit_answer(self, attempt_id: str, question_id: str, value: Any) -> AnswerResult:
        async with self.locked_attempt(attempt_id, heal=False) as attempt:
            question = await self._get_round_question(attempt.round_id, question_id)
            normalized = grader_for(question).validate(question, value)
            now = self.clock()

            if attempt.is_terminal:
                if attempt.is_expired(now):
                    logger.info(f"Ignoring late answer for question {question_id} on closed attempt {attempt_id}")
                    return AnswerResult(attempt, question_id, accepted=False, ignored=True)
                raise AttemptAlreadyTerminal(
                    f"Attempt {attempt_id} is already {attempt.status}",
                    attempt_id=attempt_id,
                    status=attempt.status,
                )

            answer = await self._get_answer(attempt_id, question_id)

            if attempt.is_expired(now):
                # Past the deadline: keep the submission for audit, never grade it
                if answer is None:
                    answer = Answer(attempt_id=attempt_id, question_id=question_id, value=None)
                    self.db.add(answer)
                answer.ignored_value = normalized
                answer.ignored_at = now
                await self.db.flush()
                logger.info(f"Late answer for question {question_id} on attempt {attempt_id} stored as ignored")
                await self.finalize_locked(attempt, FinalizeReason.DEADLINE)
                return AnswerResult(attempt, question_id, accepted=False, ignored=True, answer=answer)

            if answer is None:
                answer = Answer(attempt_id=attempt_id, question_id=question_id)
                self.db.add(answer)
            answer.value = normalized
            answer.answered_at = now
            await self.db.commit()
            await self.db.refresh(answer)
            return AnswerResult(attempt, question_id, accepted=True, answer=answer)

    def _terminal_status(self, reason: str, override_status: Optional[str]) -> str:
        if reason in (FinalizeReason.MANUAL, FinalizeReason.DEADLINE):
            return AttemptStatus.COMPLETED
        if reason == FinalizeReason.VIOLATION:
            return AttemptStatus.AUTO_SUBMITTED
        if reason == FinalizeReason.ADMIN_OVERRIDE:
            status = override_status or AttemptStatus.DISQUALIFIED
            if status not in AttemptStatus.TERMINAL:
                raise InvalidOverride(f"'{status}' is not a terminal status", status=status)
            return status
        raise InvalidOverride(f"Unknown finalize reason '{reason}'", reason=reason)

    async def finalize_locked(
        self,
        attempt: TestAttempt,
        reason: str,
        override_status: Optional[str] = None,
    ) -> bool:
        """Finalize an attempt whose critical section the caller already holds.

        Must run inside ``locked_attempt``, which publishes the
        ``attempt_finalized`` notification after releasing the lock. Returns
        False when the attempt was already terminal.
        """
        if attempt.is_terminal:
            return False

        status = self._terminal_status(reason, override_status)
        now = self.clock()
        if reason != FinalizeReason.DEADLINE and attempt.is_expired(now):
            # The deadline passed first; it wins over whatever was requested
            reason, status = FinalizeReason.DEADLINE, AttemptStatus.COMPLETED

        attempt.status = status
        attempt.finalize_reason = reason
        attempt.completed_at = attempt.deadline_at if reason == FinalizeReason.DEADLINE else now

        await self.db.flush()
        await self.scoring.grade_attempt(attempt)
        await self.db.commit()
        await self.db.refresh(attempt)

        logger.info(
            f"Attempt {attempt.id} finalized as {attempt.status} ({reason}), "
            f"score {attempt.total_score}/{attempt.max_score}, {attempt.pending_count} pending"
        )

        round_ = await self.db.get(Round, attempt.round_id)
        self._finalized.append(attempt_finalized_data(attempt, round_.event_id if round_ else None))
        return True

    async def finalize(
        self,
        attempt_id: str,
        reason: str,
        override_status: Optional[str] = None,
    ) -> TestAttempt:
        """Idempotent: finalizing a terminal attempt returns it unchanged"""
        self._terminal_status(reason, override_status)
        async with self.locked_attempt(attempt_id) as attempt:
            await self.finalize_locked(attempt, reason, override_status)
            return attempt

    async def override_attempt(
        self,
        attempt_id: str,
        admin_id: str,
        status: str = AttemptStatus.DISQUALIFIED,
        reason: Optional[str] = None,
    ) -> Tuple[TestAttempt, bool]:
        self._terminal_status(FinalizeReason.ADMIN_OVERRIDE, status)
        async with self.locked_attempt(attempt_id) as attempt:
            if attempt.is_terminal:
                return attempt, False

            changes = {"before": {"status": attempt.status}, "after": {"status": status}}
            self.db.add(AuditLog(
                admin_id=admin_id,
                action="override_attempt",
                target_type="attempt",
                target_id=attempt.id,
                changes=changes,
                reason=reason,
                timestamp=self.clock(),
            ))
            await self.finalize_locked(attempt, FinalizeReason.ADMIN_OVERRIDE, override_status=status)

        logger.warning(f"Admin {admin_id} overrode attempt {attempt_id} to {attempt.status}: {reason}")
        await self.notifier.override_action(
            "override_attempt",
            "attempt",
            attempt.id,
            changes,
            channels=[round_channel(attempt.round_id), participant_channel(attempt.participant_id)],
        )
        return attempt, True

    async def expire_attempt(self, attempt_id: str) -> bool:
        async with self.locked_attempt(attempt_id, heal=False) as attempt:
            return await self._heal(attempt)

    async def sweep_expired(self, round_id: Optional[str] = None) -> List[str]:
        """Finalize every in-progress attempt whose deadline has passed, optionally in one round"""
        now = self.clock()
        stmt = select(TestAttempt.id).filter(
            TestAttempt.status == AttemptStatus.IN_PROGRESS,
            TestAttempt.deadline_at <= now,
        )
        if round_id is not None:
            stmt = stmt.filter(TestAttempt.round_id == round_id)
        result = await self.db.execute(stmt)
        expired_ids = list(result.scalars().all())

        finalized = []
        for attempt_id in expired_ids:
            try:
                if await self.expire_attempt(attempt_id):
                    finalized.append(attempt_id)
            except SQLAlchemyError as e:
                logger.error(f"Deadline sweep failed for attempt {attempt_id}: {e}", exc_info=True)

        if finalized:
            logger.info(f"Deadline sweep finalized {len(finalized)} attempt(s)")
        return finalized
