from fastapi import APIRouter, Depends, HTTPException, Response, status
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select
from typing import List

from ....core.database import get_async_db
from ....core.exceptions import AttemptNotFound
from ....core.security import Principal
from ....models.attempt import Answer, FinalizeReason, TestAttempt
from ....models.participant import Participant
from ....schemas.attempt import (
    AnswerAck,
    AnswerResponse,
    AnswerSubmit,
    AttemptDetail,
    AttemptResponse,
)
from ....services.attempt_service import AttemptService, results_visible
from ...deps import get_current_principal

router = APIRouter()


async def authorize_attempt(db: AsyncSession, attempt_id: str, principal: Principal) -> TestAttempt:
    """Admins may touch any attempt; participants only their own"""
    result = await db.execute(
        select(TestAttempt, Participant.user_id)
        .join(Participant, Participant.id == TestAttempt.participant_id)
        .filter(TestAttempt.id == attempt_id)
    )
    row = result.first()
    if row is None:
        raise AttemptNotFound(f"Attempt {attempt_id} not found", attempt_id=attempt_id)
    attempt, owner_id = row
    if not principal.is_admin and owner_id != principal.user_id:
        raise HTTPException(status_code=403, detail="Not your attempt")
    return attempt


def answer_views(answers: List[Answer], visible: bool) -> List[AnswerResponse]:
    views = []
    for answer in sorted(answers, key=lambda a: a.question_id):
        views.append(AnswerResponse(
            question_id=answer.question_id,
            value=answer.value,
            answered_at=answer.answered_at,
            awarded_points=answer.awarded_points if visible else None,
            is_correct=answer.is_correct if visible else None,
            graded_manually=answer.graded_manually,
            pending=answer.is_pending if visible else False,
        ))
    return views


@router.post("/rounds/{round_id}/start", response_model=AttemptResponse)
async def start_attempt(
    round_id: str,
    response: Response,
    principal: Principal = Depends(get_current_principal),
    db: AsyncSession = Depends(get_async_db),
):
    """Start the caller's attempt for a round, or resume the one they already have"""
    service = AttemptService(db)
    participant = await service.get_participant_for_round(principal.user_id, round_id)
    attempt, created = await service.start_attempt(participant.id, round_id)

    response.status_code = status.HTTP_201_CREATED if created else status.HTTP_200_OK
    round_ = await service.get_round(round_id)
    visible = results_visible(round_, attempt, service.clock(), principal.is_admin)
    return AttemptResponse.from_attempt(attempt, hide_scores=not visible)


@router.get("/{attempt_id}", response_model=AttemptDetail)
async def get_attempt(
    attempt_id: str,
    principal: Principal = Depends(get_current_principal),
    db: AsyncSession = Depends(get_async_db),
):
    await authorize_attempt(db, attempt_id, principal)
    service = AttemptService(db)
    attempt = await service.get_attempt(attempt_id)

    round_ = await service.get_round(attempt.round_id)
    visible = results_visible(round_, attempt, service.clock(), principal.is_admin)
    answers = await service.get_answers(attempt_id)
    return AttemptDetail.from_attempt(
        attempt,
        hide_scores=not visible,
        results_visible=visible,
        answers=answer_views(answers, visible),
    )


@router.post("/{attempt_id}/answers", response_model=AnswerAck)
async def submit_answer(
    attempt_id: str,
    payload: AnswerSubmit,
    principal: Principal = Depends(get_current_principal),
    db: AsyncSession = Depends(get_async_db),
):
    await authorize_attempt(db, attempt_id, principal)
    service = AttemptService(db)
    result = await service.submit_answer(attempt_id, payload.question_id, payload.value)

    return AnswerAck(
        attempt_id=attempt_id,
        question_id=payload.question_id,
        accepted=result.accepted,
        ignored=result.ignored,
        status=result.attempt.status,
        message="Time is up; this answer was not counted" if result.ignored else None,
    )


@router.post("/{attempt_id}/submit", response_model=AttemptResponse)
async def submit_attempt(
    attempt_id: str,
    principal: Principal = Depends(get_current_principal),
    db: AsyncSession = Depends(get_async_db),
):
    """Finish the attempt. Submitting twice returns the same final state."""
    await authorize_attempt(db, attempt_id, principal)
    service = AttemptService(db)
    attempt = await service.finalize(attempt_id, FinalizeReason.MANUAL)

    round_ = await service.get_round(attempt.round_id)
    visible = results_visible(round_, attempt, service.clock(), principal.is_admin)
    return AttemptResponse.from_attempt(attempt, hide_scores=not visible)
