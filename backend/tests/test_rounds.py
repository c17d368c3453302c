import pytest
from sqlalchemy import func, select

from symposium.core.exceptions import InvalidRoundTransition, RoundNotFound
from symposium.models import (
    Answer,
    AuditLog,
    FinalizeReason,
    Participant,
    ProctoringViolation,
    RoundStatus,
    TestAttempt,
)
from symposium.services.attempt_service import AttemptService
from symposium.services.notifier import event_channel
from symposium.services.round_service import RoundService
from symposium.services.violation_service import ViolationMonitor


async def test_round_lifecycle(seed, session_factory, notifier, clock):
    seeded = await seed(round_status=RoundStatus.NOT_STARTED, test_enabled=False, participant_names=("A", "B"))

    async with notifier.subscribe([event_channel(seeded.event.id)]) as subscription:
        async with session_factory() as session:
            service = RoundService(session, notifier=notifier, clock=clock)
            started = await service.start_round(seeded.round.id, admin_id="admin-1")
            assert started.status == RoundStatus.IN_PROGRESS
            assert started.started_at == clock.now

            clock.advance(minutes=45)
            ended = await service.end_round(seeded.round.id, admin_id="admin-1")
            assert ended.status == RoundStatus.COMPLETED

            published = await service.publish_results(seeded.round.id, admin_id="admin-1")
            assert published.results_published

        types = [(await subscription.get(timeout=1))["type"] for _ in range(3)]

    assert types == ["round_status", "round_status", "results_published"]

    async with session_factory() as session:
        for participant in seeded.participants:
            refreshed = await session.get(Participant, participant.id)
            assert refreshed.test_enabled
            assert refreshed.enabled_at is not None


async def test_invalid_transitions(seed, db, notifier, clock):
    seeded = await seed(round_status=RoundStatus.NOT_STARTED)
    service = RoundService(db, notifier=notifier, clock=clock)

    with pytest.raises(InvalidRoundTransition):
        await service.end_round(seeded.round.id)
    with pytest.raises(InvalidRoundTransition):
        await service.publish_results(seeded.round.id)
    with pytest.raises(RoundNotFound):
        await service.start_round("missing")


async def test_restart_discards_attempts_and_disables_tests(seed, session_factory, notifier, clock):
    seeded = await seed(participant_names=("A", "B"))
    round_id = seeded.round.id

    async with session_factory() as session:
        attempts = AttemptService(session, notifier=notifier, clock=clock)
        attempt, _ = await attempts.start_attempt(seeded.participant.id, round_id)
        await attempts.submit_answer(attempt.id, seeded.question(1).id, "B")
        await ViolationMonitor(session, attempts=attempts).record_violation(attempt.id, "tab_switch")
        await attempts.finalize(attempt.id, FinalizeReason.MANUAL)

        rounds = RoundService(session, notifier=notifier, clock=clock)
        await rounds.end_round(round_id)
        await rounds.publish_results(round_id)

    async with notifier.subscribe([event_channel(seeded.event.id)]) as subscription:
        async with session_factory() as session:
            restarted = await RoundService(session, notifier=notifier, clock=clock).restart_round(
                round_id, admin_id="admin-1"
            )
        message = await subscription.get(timeout=1)

    assert restarted.status == RoundStatus.NOT_STARTED
    assert not restarted.results_published
    assert restarted.started_at is None and restarted.ended_at is None
    assert message["type"] == "round_status"
    assert message["data"]["status"] == RoundStatus.NOT_STARTED

    async with session_factory() as session:
        for model in (TestAttempt, Answer, ProctoringViolation):
            assert (await session.execute(select(func.count()).select_from(model))).scalar() == 0
        for participant in seeded.participants:
            assert not (await session.get(Participant, participant.id)).test_enabled
        log = (await session.execute(select(AuditLog))).scalars().one()
        assert log.action == "restart_round"
        assert log.changes["discarded_attempts"] == 1

    # The round can run again and hands out a fresh attempt
    async with session_factory() as session:
        await RoundService(session, notifier=notifier, clock=clock).start_round(round_id)
        fresh, created = await AttemptService(session, notifier=notifier, clock=clock).start_attempt(
            seeded.participant.id, round_id
        )
    assert created
    assert fresh.violation_count == 0
