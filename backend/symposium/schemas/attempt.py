from pydantic import BaseModel, Field, field_serializer
from datetime import datetime
from typing import Any, List, Literal, Optional

from ..models.attempt import AttemptStatus
from ..models.proctoring_violations import ViolationKind
from ..utils.timezone import format_display_time
from .rules import EffectiveRules


class AnswerSubmit(BaseModel):
    question_id: str
    value: Any = None


class AnswerAck(BaseModel):
    attempt_id: str
    question_id: str
    accepted: bool
    ignored: bool = False
    status: str
    message: Optional[str] = None


class AnswerResponse(BaseModel):
    question_id: str
    value: Any = None
    answered_at: Optional[datetime] = None
    awarded_points: Optional[int] = None
    is_correct: Optional[bool] = None
    graded_manually: bool = False
    pending: bool = False

    class Config:
        from_attributes = True


class AttemptResponse(BaseModel):
    id: str
    participant_id: str
    round_id: str
    status: str
    started_at: datetime
    deadline_at: datetime
    completed_at: Optional[datetime] = None
    finalize_reason: Optional[str] = None
    violation_count: int
    total_score: Optional[int] = None
    max_score: Optional[int] = None
    pending_count: int = 0
    rules: Optional[EffectiveRules] = None

    deadline_at_local: Optional[str] = None
    completed_at_local: Optional[str] = None

    @field_serializer("deadline_at_local")
    def serialize_deadline_at_local(self, value):
        return format_display_time(self.deadline_at)

    @field_serializer("completed_at_local")
    def serialize_completed_at_local(self, value):
        return format_display_time(self.completed_at)

    class Config:
        from_attributes = True

    @classmethod
    def from_attempt(cls, attempt, hide_scores: bool = False, **extra):
        # Validate against the base shape so ORM relationships are never touched
        data = AttemptResponse.model_validate(attempt).model_dump(exclude={"rules"})
        data["rules"] = EffectiveRules(**attempt.rules_snapshot) if attempt.rules_snapshot else None
        if hide_scores:
            data.update(total_score=None, max_score=None, pending_count=0)
        data.update(extra)
        return cls(**data)


class AttemptDetail(AttemptResponse):
    results_visible: bool = True
    answers: List[AnswerResponse] = []


class ViolationReport(BaseModel):
    kind: Literal[
        ViolationKind.TAB_SWITCH,
        ViolationKind.FULLSCREEN_EXIT,
        ViolationKind.REFRESH_ATTEMPT,
        ViolationKind.SHORTCUT_BLOCKED,
    ]


class ViolationOutcome(BaseModel):
    attempt_id: str
    kind: str
    counted: bool
    violation_count: int
    warnings_remaining: Optional[int] = None
    finalized: bool = False
    status: str


class ViolationRecord(BaseModel):
    kind: str
    counted: bool
    count_after: int
    attempt_status: str
    timestamp: datetime

    class Config:
        from_attributes = True


class OverrideRequest(BaseModel):
    status: Literal[
        AttemptStatus.DISQUALIFIED,
        AttemptStatus.COMPLETED,
        AttemptStatus.AUTO_SUBMITTED,
    ] = AttemptStatus.DISQUALIFIED
    reason: Optional[str] = None


class ManualGradeRequest(BaseModel):
    awarded_points: int = Field(ge=0)
