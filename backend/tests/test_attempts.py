import asyncio
from datetime import timedelta

import pytest
from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError

from symposium.core.exceptions import (
    AttemptAlreadyTerminal,
    AttemptNotFound,
    InvalidAnswer,
    InvalidOverride,
    ParticipantNotFound,
    QuestionNotFound,
    RoundNotAcceptingAttempts,
    TestNotEnabled as NotEnabled,
)
from symposium.core.locks import attempt_locks
from symposium.models import AttemptStatus, AuditLog, FinalizeReason, Round, RoundStatus, TestAttempt
from symposium.services.attempt_service import AttemptService
from symposium.services.notifier import ADMIN_CHANNEL, InMemoryBroker, Notifier


@pytest.fixture
def service_for(notifier, clock):
    def _service(session, **kwargs):
        return AttemptService(session, notifier=notifier, clock=clock, **kwargs)
    return _service


async def count_open(session, participant_id, round_id):
    result = await session.execute(
        select(func.count(TestAttempt.id)).filter(
            TestAttempt.participant_id == participant_id,
            TestAttempt.round_id == round_id,
            TestAttempt.status == AttemptStatus.IN_PROGRESS,
        )
    )
    return result.scalar()


class LockCheckingBroker(InMemoryBroker):
    """Records whether the attempt's lock was held when its finalize went out"""

    def __init__(self):
        super().__init__()
        self.finalized = []

    async def publish(self, channel, message):
        if message["type"] == "attempt_finalized" and channel == ADMIN_CHANNEL:
            attempt_id = message["data"]["attempt_id"]
            self.finalized.append((attempt_id, attempt_locks.is_held(attempt_id)))
        return await super().publish(channel, message)


class TestStart:
    async def test_start_computes_deadline_and_snapshots_rules(self, seed, db, service_for, clock):
        seeded = await seed(round_rules={"max_warning_count": 4})

        attempt, created = await service_for(db).start_attempt(seeded.participant.id, seeded.round.id)

        assert created is True
        assert attempt.status == AttemptStatus.IN_PROGRESS
        assert attempt.started_at == clock.now
        assert attempt.deadline_at == clock.now + timedelta(minutes=30)
        assert attempt.violation_count == 0
        assert attempt.max_score == 10
        assert attempt.rules_snapshot["max_warning_count"] == 4

    async def test_second_start_resumes_unchanged(self, seed, db, service_for, clock):
        seeded = await seed()
        service = service_for(db)
        first, _ = await service.start_attempt(seeded.participant.id, seeded.round.id)

        clock.advance(minutes=5)
        again, created = await service.start_attempt(seeded.participant.id, seeded.round.id)

        assert created is False
        assert again.id == first.id
        assert again.deadline_at == first.deadline_at

    async def test_concurrent_starts_yield_one_attempt(self, seed, session_factory, service_for):
        seeded = await seed()

        async def start():
            async with session_factory() as session:
                attempt, created = await service_for(session).start_attempt(seeded.participant.id, seeded.round.id)
                return attempt.id, created

        results = await asyncio.gather(*(start() for _ in range(10)))

        assert len({attempt_id for attempt_id, _ in results}) == 1
        assert sum(1 for _, created in results if created) == 1
        async with session_factory() as session:
            assert await count_open(session, seeded.participant.id, seeded.round.id) == 1

    async def test_lost_race_returns_winner(self, seed, session_factory, service_for, monkeypatch):
        seeded = await seed()
        async with session_factory() as session:
            winner, _ = await service_for(session).start_attempt(seeded.participant.id, seeded.round.id)

        # A worker whose existence check ran before the winner committed
        original = AttemptService.find_attempt
        calls = []

        async def stale_find(self, participant_id, round_id):
            calls.append(participant_id)
            if len(calls) == 1:
                return None
            return await original(self, participant_id, round_id)

        monkeypatch.setattr(AttemptService, "find_attempt", stale_find)

        async with session_factory() as session:
            attempt, created = await service_for(session).start_attempt(seeded.participant.id, seeded.round.id)

        assert created is False
        assert attempt.id == winner.id
        assert len(calls) == 2

    async def test_database_rejects_second_open_attempt(self, seed, db, clock):
        seeded = await seed()

        def open_attempt(status=AttemptStatus.IN_PROGRESS):
            return TestAttempt(
                participant_id=seeded.participant.id,
                round_id=seeded.round.id,
                status=status,
                started_at=clock.now,
                deadline_at=clock.now + timedelta(minutes=30),
                rules_snapshot={},
            )

        db.add(open_attempt(AttemptStatus.COMPLETED))
        db.add(open_attempt())
        await db.commit()

        db.add(open_attempt())
        with pytest.raises(IntegrityError):
            await db.commit()
        await db.rollback()

    async def test_round_must_be_in_progress(self, seed, db, service_for):
        seeded = await seed(round_status=RoundStatus.NOT_STARTED)
        with pytest.raises(RoundNotAcceptingAttempts):
            await service_for(db).start_attempt(seeded.participant.id, seeded.round.id)

    async def test_test_must_be_enabled(self, seed, db, service_for):
        seeded = await seed(test_enabled=False)
        with pytest.raises(NotEnabled):
            await service_for(db).start_attempt(seeded.participant.id, seeded.round.id)

    async def test_participant_from_another_event(self, seed, db, service_for):
        first = await seed()
        other = await seed()
        with pytest.raises(ParticipantNotFound):
            await service_for(db).start_attempt(other.participant.id, first.round.id)


class TestAnswers:
    async def test_answers_are_upserted(self, seed, db, service_for):
        seeded = await seed()
        service = service_for(db)
        attempt, _ = await service.start_attempt(seeded.participant.id, seeded.round.id)
        mcq = seeded.question(1)

        await service.submit_answer(attempt.id, mcq.id, "A")
        result = await service.submit_answer(attempt.id, mcq.id, "B")

        assert result.accepted
        answers = await service.get_answers(attempt.id)
        assert len(answers) == 1
        assert answers[0].value == "B"

    async def test_unknown_question(self, seed, db, service_for):
        seeded = await seed()
        other = await seed()
        service = service_for(db)
        attempt, _ = await service.start_attempt(seeded.participant.id, seeded.round.id)

        with pytest.raises(QuestionNotFound):
            await service.submit_answer(attempt.id, other.question(1).id, "B")

    async def test_malformed_answer(self, seed, db, service_for):
        seeded = await seed()
        service = service_for(db)
        attempt, _ = await service.start_attempt(seeded.participant.id, seeded.round.id)
        attempt_id = attempt.id

        with pytest.raises(InvalidAnswer):
            await service.submit_answer(attempt_id, seeded.question(1).id, "Z")
        with pytest.raises(InvalidAnswer):
            await service.submit_answer(attempt_id, seeded.question(2).id, {"text": 1})

    async def test_answer_after_deadline_is_ignored_and_finalizes(self, seed, db, service_for, clock):
        seeded = await seed()
        service = service_for(db)
        attempt, _ = await service.start_attempt(seeded.participant.id, seeded.round.id)
        mcq = seeded.question(1)

        clock.advance(minutes=30, seconds=1)
        result = await service.submit_answer(attempt.id, mcq.id, "B")

        assert result.ignored and not result.accepted
        assert result.attempt.status == AttemptStatus.COMPLETED
        assert result.attempt.finalize_reason == FinalizeReason.DEADLINE
        assert result.attempt.total_score == 0

        answer = next(a for a in await service.get_answers(attempt.id) if a.question_id == mcq.id)
        assert answer.value is None
        assert answer.ignored_value == "B"
        assert answer.awarded_points == 0

    async def test_late_answer_does_not_replace_earlier_one(self, seed, db, service_for, clock):
        seeded = await seed()
        service = service_for(db)
        attempt, _ = await service.start_attempt(seeded.participant.id, seeded.round.id)
        mcq = seeded.question(1)

        await service.submit_answer(attempt.id, mcq.id, "B")
        clock.advance(minutes=31)
        await service.submit_answer(attempt.id, mcq.id, "A")

        final = await service.get_attempt(attempt.id)
        assert final.total_score == 5

    async def test_answer_on_submitted_attempt_before_deadline(self, seed, db, service_for, clock):
        seeded = await seed()
        service = service_for(db)
        attempt, _ = await service.start_attempt(seeded.participant.id, seeded.round.id)
        await service.finalize(attempt.id, FinalizeReason.MANUAL)

        clock.advance(minutes=1)
        with pytest.raises(AttemptAlreadyTerminal):
            await service.submit_answer(attempt.id, seeded.question(1).id, "B")

    async def test_answer_on_closed_attempt_after_deadline_changes_nothing(self, seed, db, service_for, clock):
        seeded = await seed()
        service = service_for(db)
        attempt, _ = await service.start_attempt(seeded.participant.id, seeded.round.id)
        await service.finalize(attempt.id, FinalizeReason.MANUAL)

        clock.advance(hours=1)
        result = await service.submit_answer(attempt.id, seeded.question(1).id, "B")

        assert result.ignored
        answer = next(a for a in await service.get_answers(attempt.id) if a.question_id == seeded.question(1).id)
        assert answer.ignored_value is None
        assert answer.value is None


class TestFinalize:
    async def test_manual_submit_scenario(self, seed, db, service_for, clock):
        """30 minute round: correct 5-point MCQ, unanswered 5-point short answer, submitted at T+10"""
        seeded = await seed(duration_minutes=30)
        service = service_for(db)
        attempt, _ = await service.start_attempt(seeded.participant.id, seeded.round.id)
        await service.submit_answer(attempt.id, seeded.question(1).id, "B")

        clock.advance(minutes=10)
        final = await service.finalize(attempt.id, FinalizeReason.MANUAL)

        assert final.status == AttemptStatus.COMPLETED
        assert final.finalize_reason == FinalizeReason.MANUAL
        assert final.completed_at == clock.now
        assert final.total_score == 5
        assert final.max_score == 10
        assert final.pending_count == 0

        answers = {a.question_id: a for a in await service.get_answers(attempt.id)}
        mcq = answers[seeded.question(1).id]
        short = answers[seeded.question(2).id]
        assert (mcq.awarded_points, mcq.is_correct) == (5, True)
        assert (short.awarded_points, short.is_correct) == (0, False)
        assert not short.is_pending

    async def test_finalize_is_idempotent_and_notifies_once(self, seed, db, service_for, notifier, clock):
        seeded = await seed()
        service = service_for(db)
        attempt, _ = await service.start_attempt(seeded.participant.id, seeded.round.id)

        async with notifier.subscribe([ADMIN_CHANNEL]) as subscription:
            first = await service.finalize(attempt.id, FinalizeReason.MANUAL)
            clock.advance(minutes=1)
            second = await service.finalize(attempt.id, FinalizeReason.VIOLATION)

            message = await subscription.get(timeout=1)
            assert message["type"] == "attempt_finalized"
            assert message["data"]["status"] == AttemptStatus.COMPLETED
            with pytest.raises(asyncio.TimeoutError):
                await subscription.get(timeout=0.05)

        assert second.status == AttemptStatus.COMPLETED
        assert second.completed_at == first.completed_at

    async def test_reason_maps_to_status(self, seed, db, service_for):
        seeded = await seed(participant_names=("A", "B", "C"))
        service = service_for(db)
        expected = {
            seeded.participants[0].id: (FinalizeReason.VIOLATION, None, AttemptStatus.AUTO_SUBMITTED),
            seeded.participants[1].id: (FinalizeReason.ADMIN_OVERRIDE, None, AttemptStatus.DISQUALIFIED),
            seeded.participants[2].id: (FinalizeReason.ADMIN_OVERRIDE, AttemptStatus.COMPLETED, AttemptStatus.COMPLETED),
        }
        for participant_id, (reason, override_status, status) in expected.items():
            attempt, _ = await service.start_attempt(participant_id, seeded.round.id)
            final = await service.finalize(attempt.id, reason, override_status=override_status)
            assert final.status == status

    async def test_invalid_override_status(self, seed, db, service_for):
        seeded = await seed()
        service = service_for(db)
        attempt, _ = await service.start_attempt(seeded.participant.id, seeded.round.id)
        with pytest.raises(InvalidOverride):
            await service.finalize(attempt.id, FinalizeReason.ADMIN_OVERRIDE, override_status=AttemptStatus.IN_PROGRESS)
        with pytest.raises(InvalidOverride):
            await service.finalize(attempt.id, "timeout")

    async def test_unknown_attempt(self, db, service_for):
        with pytest.raises(AttemptNotFound):
            await service_for(db).get_attempt("nope")


    async def test_finalized_notification_is_sent_after_lock_release(self, seed, db, clock):
        seeded = await seed(participant_names=("Asha", "Bilal"))
        broker = LockCheckingBroker()
        service = AttemptService(db, notifier=Notifier(broker), clock=clock)
        submitted, _ = await service.start_attempt(seeded.participants[0].id, seeded.round.id)
        expired, _ = await service.start_attempt(seeded.participants[1].id, seeded.round.id)

        submitted_id, expired_id = submitted.id, expired.id

        await service.finalize(submitted_id, FinalizeReason.MANUAL)
        clock.advance(minutes=31)
        await service.get_attempt(expired_id)

        assert broker.finalized == [(submitted_id, False), (expired_id, False)]


class TestDeadline:
    async def test_read_after_deadline_self_heals(self, seed, db, service_for, clock):
        seeded = await seed()
        service = service_for(db)
        attempt, _ = await service.start_attempt(seeded.participant.id, seeded.round.id)

        clock.advance(minutes=45)
        healed = await service.get_attempt(attempt.id)

        assert healed.status == AttemptStatus.COMPLETED
        assert healed.finalize_reason == FinalizeReason.DEADLINE
        assert healed.completed_at == healed.deadline_at

    async def test_resume_after_deadline_returns_finalized_attempt(self, seed, db, service_for, clock):
        seeded = await seed()
        service = service_for(db)
        attempt, _ = await service.start_attempt(seeded.participant.id, seeded.round.id)

        clock.advance(minutes=31)
        resumed, created = await service.start_attempt(seeded.participant.id, seeded.round.id)

        assert not created
        assert resumed.id == attempt.id
        assert resumed.status == AttemptStatus.COMPLETED

    async def test_sweep_finalizes_only_expired(self, seed, session_factory, service_for, clock):
        seeded = await seed(participant_names=("Early", "Late"))
        async with session_factory() as session:
            service = service_for(session)
            early, _ = await service.start_attempt(seeded.participants[0].id, seeded.round.id)
            clock.advance(minutes=20)
            late, _ = await service.start_attempt(seeded.participants[1].id, seeded.round.id)

        clock.advance(minutes=15)
        async with session_factory() as session:
            finalized = await service_for(session).sweep_expired()

        assert finalized == [early.id]
        async with session_factory() as session:
            assert (await session.get(TestAttempt, late.id)).status == AttemptStatus.IN_PROGRESS
            assert (await session.get(TestAttempt, early.id)).status == AttemptStatus.COMPLETED

        async with session_factory() as session:
            assert await service_for(session).sweep_expired() == []


    async def test_sweep_limited_to_one_round(self, seed, session_factory, service_for, clock):
        seeded = await seed()
        async with session_factory() as session:
            second_round = Round(event_id=seeded.event.id, name="Round 2", round_number=2,
                                 duration_minutes=30, status=RoundStatus.IN_PROGRESS)
            session.add(second_round)
            await session.commit()
            second_round_id = second_round.id

            service = service_for(session)
            first, _ = await service.start_attempt(seeded.participant.id, seeded.round.id)
            second, _ = await service.start_attempt(seeded.participant.id, second_round_id)
            first_id, second_id = first.id, second.id

        clock.advance(minutes=31)
        async with session_factory() as session:
            assert await service_for(session).sweep_expired(round_id=second_round_id) == [second_id]

        async with session_factory() as session:
            assert (await session.get(TestAttempt, first_id)).status == AttemptStatus.IN_PROGRESS
            assert (await session.get(TestAttempt, second_id)).status == AttemptStatus.COMPLETED


class TestOverride:
    async def test_override_disqualifies_and_audits(self, seed, db, service_for, notifier):
        seeded = await seed()
        service = service_for(db)
        attempt, _ = await service.start_attempt(seeded.participant.id, seeded.round.id)

        async with notifier.subscribe([ADMIN_CHANNEL]) as subscription:
            final, applied = await service.override_attempt(attempt.id, "admin-1", reason="Phone on desk")
            types = [(await subscription.get(timeout=1))["type"] for _ in range(2)]

        assert applied
        assert final.status == AttemptStatus.DISQUALIFIED
        assert final.finalize_reason == FinalizeReason.ADMIN_OVERRIDE
        assert types == ["attempt_finalized", "override_action"]

        logs = (await db.execute(select(AuditLog))).scalars().all()
        assert len(logs) == 1
        assert logs[0].admin_id == "admin-1"
        assert logs[0].changes["after"]["status"] == AttemptStatus.DISQUALIFIED

    async def test_override_on_terminal_attempt_is_noop(self, seed, db, service_for):
        seeded = await seed()
        service = service_for(db)
        attempt, _ = await service.start_attempt(seeded.participant.id, seeded.round.id)
        await service.finalize(attempt.id, FinalizeReason.MANUAL)

        final, applied = await service.override_attempt(attempt.id, "admin-1")

        assert not applied
        assert final.status == AttemptStatus.COMPLETED
        assert (await db.execute(select(func.count(AuditLog.id)))).scalar() == 0
