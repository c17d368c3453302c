"""
Pytest configuration for the proctoring backend tests
"""
import os
import tempfile

# Settings are read at import time, so the environment goes first
_TEST_DB_DIR = tempfile.mkdtemp(prefix="symposium-tests-")
os.environ.setdefault("DATABASE_URL", f"sqlite+aiosqlite:///{os.path.join(_TEST_DB_DIR, 'app.db')}")
os.environ.setdefault("SECRET_KEY", "test-secret-key-for-symposium-tests")
os.environ.setdefault("RUN_INPROCESS_SWEEPER", "false")
os.environ.setdefault("NOTIFIER_BACKEND", "memory")

from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Dict, List, Optional

import pytest

from symposium.core.database import build_async_engine, build_session_factory, create_db_and_tables
from symposium.core.security import create_access_token
from symposium.models import (
    Event,
    EventRules,
    MultipleChoiceQuestion,
    Participant,
    Round,
    RoundRules,
    RoundStatus,
    ShortAnswerQuestion,
)
from symposium.services.notifier import InMemoryBroker, Notifier, set_notifier


class FakeClock:
    """Controllable replacement for utc_now"""

    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs):
        self.now += timedelta(**kwargs)
        return self.now


@dataclass
class Seeded:
    event: Event
    round: Round
    questions: List = field(default_factory=list)
    participants: List[Participant] = field(default_factory=list)

    @property
    def participant(self) -> Participant:
        return self.participants[0]

    def question(self, number: int):
        return next(q for q in self.questions if q.question_number == number)


@pytest.fixture
async def engine(tmp_path):
    engine = build_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'test.db'}")
    await create_db_and_tables(engine)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return build_session_factory(engine)


@pytest.fixture
async def db(session_factory):
    async with session_factory() as session:
        yield session


@pytest.fixture
def notifier():
    notifier = Notifier(InMemoryBroker(queue_size=50))
    set_notifier(notifier)
    yield notifier
    set_notifier(None)


@pytest.fixture
def clock():
    return FakeClock(datetime(2026, 3, 14, 10, 0, 0))


def default_questions(round_id: str) -> list:
    """A 5-point MCQ and a 5-point short answer with no reference"""
    return [
        MultipleChoiceQuestion(
            round_id=round_id,
            question_number=1,
            question_text="Which keyword defines a coroutine?",
            points=5,
            options=["A", "B", "C", "D"],
            correct_answer="B",
        ),
        ShortAnswerQuestion(
            round_id=round_id,
            question_number=2,
            question_text="Explain the GIL in one sentence.",
            points=5,
            reference_answer=None,
        ),
    ]


@pytest.fixture
def seed(session_factory):
    """Factory that creates an event, one round, its questions and participants"""

    async def _seed(
        *,
        duration_minutes: int = 30,
        round_status: str = RoundStatus.IN_PROGRESS,
        questions=None,
        event_rules: Optional[Dict] = None,
        round_rules: Optional[Dict] = None,
        participant_names=("Asha",),
        test_enabled: bool = True,
    ) -> Seeded:
        async with session_factory() as session:
            event = Event(name="Symposium 2026")
            session.add(event)
            await session.flush()

            round_ = Round(
                event_id=event.id,
                name="Round 1",
                round_number=1,
                duration_minutes=duration_minutes,
                status=round_status,
            )
            session.add(round_)
            await session.flush()

            if event_rules is not None:
                session.add(EventRules(event_id=event.id, **event_rules))
            if round_rules is not None:
                session.add(RoundRules(round_id=round_.id, **round_rules))

            question_rows = questions(round_.id) if questions else default_questions(round_.id)
            session.add_all(question_rows)

            participants = []
            for i, name in enumerate(participant_names):
                participant = Participant(
                    event_id=event.id,
                    user_id=f"user-{i + 1}",
                    full_name=name,
                    test_enabled=test_enabled,
                )
                session.add(participant)
                participants.append(participant)

            await session.commit()
            return Seeded(event=event, round=round_, questions=question_rows, participants=participants)

    return _seed


def auth_headers(user_id: str, role: str = "participant") -> dict:
    return {"Authorization": f"Bearer {create_access_token(user_id, role)}"}
