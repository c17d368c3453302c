from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select
from dataclasses import dataclass
from datetime import datetime
from typing import Dict, Iterable, List, Optional
import logging

from ..core.exceptions import EventNotFound, RoundNotFound
from ..models.attempt import AttemptStatus, TestAttempt
from ..models.event import Event, Round
from ..models.participant import Participant
from ..schemas.leaderboard import Leaderboard, LeaderboardEntry

logger = logging.getLogger(__name__)


@dataclass
class Standing:
    participant_id: str
    participant_name: str
    total_score: int
    max_score: int
    pending_count: int
    submitted_at: datetime


def rank_standings(standings: Iterable[Standing]) -> List[LeaderboardEntry]:
    """Order by score, then earliest submission; participant id breaks exact ties.

    Ranks are 1..n and never shared.
    """
    ordered = sorted(
        standings,
        key=lambda s: (-s.total_score, s.submitted_at, s.participant_id),
    )
    return [
        LeaderboardEntry(
            rank=position,
            participant_id=s.participant_id,
            participant_name=s.participant_name,
            total_score=s.total_score,
            max_score=s.max_score,
            pending_count=s.pending_count,
            submitted_at=s.submitted_at,
        )
        for position, s in enumerate(ordered, start=1)
    ]


def combine_standings(rows: Iterable[Standing]) -> List[Standing]:
    """Fold per-round standings into one per participant for an event"""
    combined: Dict[str, Standing] = {}
    for row in rows:
        current = combined.get(row.participant_id)
        if current is None:
            combined[row.participant_id] = Standing(**row.__dict__)
            continue
        current.total_score += row.total_score
        current.max_score += row.max_score
        current.pending_count += row.pending_count
        current.submitted_at = max(current.submitted_at, row.submitted_at)
    return list(combined.values())


class LeaderboardBuilder:
    def __init__(self, db: AsyncSession):
        self.db = db

    def _ranked_attempts(self):
        return (
            select(TestAttempt, Participant.full_name)
            .join(Participant, Participant.id == TestAttempt.participant_id)
            .filter(
                TestAttempt.status.in_(AttemptStatus.RANKED),
                TestAttempt.total_score.isnot(None),
                TestAttempt.completed_at.isnot(None),
            )
        )

    @staticmethod
    def _standing(attempt: TestAttempt, name: str) -> Standing:
        return Standing(
            participant_id=attempt.participant_id,
            participant_name=name,
            total_score=attempt.total_score,
            max_score=attempt.max_score,
            pending_count=attempt.pending_count,
            submitted_at=attempt.completed_at,
        )

    async def build_round(self, round_id: str) -> Leaderboard:
        round_ = await self.db.get(Round, round_id)
        if round_ is None:
            raise RoundNotFound(f"Round {round_id} not found", round_id=round_id)

        result = await self.db.execute(
            self._ranked_attempts().filter(TestAttempt.round_id == round_id)
        )
        standings = [self._standing(attempt, name) for attempt, name in result.all()]
        entries = rank_standings(standings)
        logger.debug(f"Built round leaderboard {round_id} with {len(entries)} entries")
        return Leaderboard(scope="round", scope_id=round_id, entries=entries)

    async def build_event(
        self,
        event_id: str,
        published_only: bool = False,
        round_ids: Optional[Iterable[str]] = None,
    ) -> Leaderboard:
        """Sum each participant's scores across the event's rounds.

        With ``published_only`` rounds whose results are not yet public are
        left out. ``round_ids`` narrows the board further to the given rounds.
        """
        event = await self.db.get(Event, event_id)
        if event is None:
            raise EventNotFound(f"Event {event_id} not found", event_id=event_id)

        stmt = (
            self._ranked_attempts()
            .join(Round, Round.id == TestAttempt.round_id)
            .filter(Round.event_id == event_id)
        )
        if published_only:
            stmt = stmt.filter(Round.results_published.is_(True))
        if round_ids is not None:
            stmt = stmt.filter(TestAttempt.round_id.in_(list(round_ids)))

        result = await self.db.execute(stmt)
        standings = combine_standings(self._standing(attempt, name) for attempt, name in result.all())
        entries = rank_standings(standings)
        logger.debug(f"Built event leaderboard {event_id} with {len(entries)} entries")
        return Leaderboard(scope="event", scope_id=event_id, entries=entries)
