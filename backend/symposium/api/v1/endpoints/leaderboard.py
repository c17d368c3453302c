from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select
from typing import List

from ....core.database import get_async_db
from ....core.exceptions import ParticipantNotFound
from ....core.security import Principal
from ....models.event import Round
from ....models.participant import Participant
from ....schemas.leaderboard import Leaderboard
from ....services.attempt_service import AttemptService, results_visible
from ....services.leaderboard_service import LeaderboardBuilder
from ...deps import get_current_principal

router = APIRouter()


async def visible_round_ids(db: AsyncSession, event_id: str, user_id: str) -> List[str]:
    """Published rounds of the event whose attempt window has closed for this user"""
    service = AttemptService(db)
    rounds = (await db.execute(
        select(Round).filter(Round.event_id == event_id, Round.results_published.is_(True))
    )).scalars().all()
    participant = (await db.execute(
        select(Participant).filter(Participant.event_id == event_id, Participant.user_id == user_id)
    )).scalars().first()

    now = service.clock()
    visible = []
    for round_ in rounds:
        attempt = await service.find_attempt(participant.id, round_.id) if participant else None
        if results_visible(round_, attempt, now):
            visible.append(round_.id)
    return visible


@router.get("/rounds/{round_id}", response_model=Leaderboard)
async def get_round_leaderboard(
    round_id: str,
    principal: Principal = Depends(get_current_principal),
    db: AsyncSession = Depends(get_async_db),
):
    service = AttemptService(db)
    round_ = await service.get_round(round_id)

    if not principal.is_admin:
        attempt = None
        try:
            participant = await service.get_participant_for_round(principal.user_id, round_id)
            attempt = await service.find_attempt(participant.id, round_id)
        except ParticipantNotFound:
            pass
        if not results_visible(round_, attempt, service.clock()):
            raise HTTPException(status_code=403, detail="Results for this round are not available yet")

    return await LeaderboardBuilder(db).build_round(round_id)


@router.get("/events/{event_id}", response_model=Leaderboard)
async def get_event_leaderboard(
    event_id: str,
    principal: Principal = Depends(get_current_principal),
    db: AsyncSession = Depends(get_async_db),
):
    """Participants only see rounds whose results they could also see on the round board"""
    builder = LeaderboardBuilder(db)
    if principal.is_admin:
        return await builder.build_event(event_id)

    round_ids = await visible_round_ids(db, event_id, principal.user_id)
    return await builder.build_event(event_id, published_only=True, round_ids=round_ids)
