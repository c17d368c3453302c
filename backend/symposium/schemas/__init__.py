from .rules import EffectiveRules
from .attempt import (
    AnswerSubmit,
    AnswerAck,
    AnswerResponse,
    AttemptResponse,
    AttemptDetail,
    ViolationReport,
    ViolationOutcome,
    ViolationRecord,
    OverrideRequest,
    ManualGradeRequest,
)
from .leaderboard import LeaderboardEntry, Leaderboard

__all__ = [
    "EffectiveRules",
    "AnswerSubmit",
    "AnswerAck",
    "AnswerResponse",
    "AttemptResponse",
    "AttemptDetail",
    "ViolationReport",
    "ViolationOutcome",
    "ViolationRecord",
    "OverrideRequest",
    "ManualGradeRequest",
    "LeaderboardEntry",
    "Leaderboard",
]
