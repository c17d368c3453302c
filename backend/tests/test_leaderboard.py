from datetime import datetime

import pytest

from conftest import FakeClock
from symposium.api.v1.endpoints.leaderboard import visible_round_ids
from symposium.core.exceptions import EventNotFound, RoundNotFound
from symposium.models import FinalizeReason, MultipleChoiceQuestion, Round, RoundStatus
from symposium.services.attempt_service import AttemptService
from symposium.services.scoring_service import ScoringEngine
from symposium.services.leaderboard_service import (
    LeaderboardBuilder,
    Standing,
    combine_standings,
    rank_standings,
)


def standing(pid, score, submitted, name=None, max_score=10):
    return Standing(
        participant_id=pid,
        participant_name=name or pid,
        total_score=score,
        max_score=max_score,
        pending_count=0,
        submitted_at=submitted,
    )


def test_equal_scores_rank_earlier_submission_first():
    a = standing("A", 8, datetime(2026, 3, 14, 10, 0, 5))
    b = standing("B", 8, datetime(2026, 3, 14, 10, 0, 2))

    entries = rank_standings([a, b])

    assert [(e.rank, e.participant_id) for e in entries] == [(1, "B"), (2, "A")]


def test_higher_score_wins_regardless_of_time():
    early = standing("early", 5, datetime(2026, 3, 14, 9, 0))
    late = standing("late", 9, datetime(2026, 3, 14, 11, 0))
    assert [e.participant_id for e in rank_standings([early, late])] == ["late", "early"]


def test_ranks_are_never_shared():
    when = datetime(2026, 3, 14, 10, 0)
    entries = rank_standings([standing(pid, 7, when) for pid in ("c", "a", "b")])
    assert [e.rank for e in entries] == [1, 2, 3]
    assert [e.participant_id for e in entries] == ["a", "b", "c"]


def test_event_standings_sum_per_participant():
    rows = [
        standing("A", 5, datetime(2026, 3, 14, 10, 0), max_score=10),
        standing("A", 7, datetime(2026, 3, 15, 10, 0), max_score=10),
        standing("B", 9, datetime(2026, 3, 14, 11, 0), max_score=10),
    ]
    combined = {s.participant_id: s for s in combine_standings(rows)}
    assert (combined["A"].total_score, combined["A"].max_score) == (12, 20)
    assert combined["A"].submitted_at == datetime(2026, 3, 15, 10, 0)
    assert combined["B"].total_score == 9


def two_mcq(round_id):
    return [
        MultipleChoiceQuestion(round_id=round_id, question_number=n, question_text=f"Q{n}", points=5,
                               options=["A", "B"], correct_answer="A")
        for n in (1, 2)
    ]


async def finish(session, seeded, participant, answers, notifier, clock, reason=FinalizeReason.MANUAL):
    service = AttemptService(session, notifier=notifier, clock=clock)
    attempt, _ = await service.start_attempt(participant.id, seeded.round.id)
    for number, value in answers.items():
        await service.submit_answer(attempt.id, seeded.question(number).id, value)
    if reason is None:
        return attempt
    return await service.finalize(attempt.id, reason)


async def test_round_leaderboard_from_attempts(seed, db, notifier, clock):
    seeded = await seed(questions=two_mcq, participant_names=("Asha", "Bilal", "Chen", "Dana", "Esi"))
    asha, bilal, chen, dana, esi = seeded.participants

    await finish(db, seeded, asha, {1: "A", 2: "A"}, notifier, clock)
    clock.advance(seconds=3)
    await finish(db, seeded, bilal, {1: "A", 2: "B"}, notifier, clock)
    clock.advance(seconds=3)
    await finish(db, seeded, chen, {1: "A", 2: "A"}, notifier, clock, reason=FinalizeReason.ADMIN_OVERRIDE)
    await finish(db, seeded, dana, {1: "A"}, notifier, clock, reason=None)

    board = await LeaderboardBuilder(db).build_round(seeded.round.id)

    # Disqualified and unfinished attempts are not ranked; Esi never started
    assert [(e.rank, e.participant_name, e.total_score) for e in board.entries] == [
        (1, "Asha", 10),
        (2, "Bilal", 5),
    ]
    assert all(e.max_score == 10 for e in board.entries)


async def test_event_leaderboard_spans_rounds(seed, session_factory, notifier, clock):
    seeded = await seed(questions=two_mcq, participant_names=("Asha", "Bilal"))
    asha, bilal = seeded.participants

    async with session_factory() as session:
        await finish(session, seeded, asha, {1: "A"}, notifier, clock)
        clock.advance(seconds=1)
        await finish(session, seeded, bilal, {1: "A", 2: "A"}, notifier, clock)

        second = Round(event_id=seeded.event.id, name="Round 2", round_number=2,
                       duration_minutes=30, status=RoundStatus.IN_PROGRESS)
        session.add(second)
        await session.flush()
        session.add_all(two_mcq(second.id))
        await session.commit()
        seeded.round = second
        seeded.questions = await ScoringEngine(session).get_round_questions(second.id)

        clock.advance(minutes=40)
        await finish(session, seeded, asha, {1: "A", 2: "A"}, notifier, clock)

    async with session_factory() as session:
        board = await LeaderboardBuilder(session).build_event(seeded.event.id)
        published = await LeaderboardBuilder(session).build_event(seeded.event.id, published_only=True)

    assert [(e.participant_name, e.total_score, e.max_score) for e in board.entries] == [
        ("Asha", 15, 20),
        ("Bilal", 10, 10),
    ]
    assert published.entries == []


async def test_unknown_scope(db):
    with pytest.raises(RoundNotFound):
        await LeaderboardBuilder(db).build_round("missing")
    with pytest.raises(EventNotFound):
        await LeaderboardBuilder(db).build_event("missing")


async def test_participant_event_board_skips_rounds_with_open_window(seed, session_factory, notifier):
    seeded = await seed(questions=two_mcq)
    first_round_id = seeded.round.id
    long_ago = FakeClock(datetime(2020, 1, 1, 9, 0))
    far_ahead = FakeClock(datetime(2100, 1, 1, 9, 0))

    async with session_factory() as session:
        await finish(session, seeded, seeded.participant, {1: "A"}, notifier, long_ago)

        second = Round(event_id=seeded.event.id, name="Round 2", round_number=2,
                       duration_minutes=30, status=RoundStatus.IN_PROGRESS)
        session.add(second)
        await session.flush()
        session.add_all(two_mcq(second.id))
        await session.commit()
        second_round_id = second.id
        seeded.round = second
        seeded.questions = await ScoringEngine(session).get_round_questions(second_round_id)

        # Submitted early, but the 30 minute window is still running
        await finish(session, seeded, seeded.participant, {1: "A", 2: "A"}, notifier, far_ahead)

        for round_id in (first_round_id, second_round_id):
            (await session.get(Round, round_id)).results_published = True
        await session.commit()

    async with session_factory() as session:
        visible = await visible_round_ids(session, seeded.event.id, "user-1")
        board = await LeaderboardBuilder(session).build_event(
            seeded.event.id, published_only=True, round_ids=visible
        )

    assert visible == [first_round_id]
    assert [(e.participant_name, e.total_score, e.max_score) for e in board.entries] == [("Asha", 5, 10)]
