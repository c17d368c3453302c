from .event import Event, Round, EventRules, RoundRules, RoundStatus
from .participant import Participant
from .question import (
    Question,
    QuestionType,
    MultipleChoiceQuestion,
    TrueFalseQuestion,
    ShortAnswerQuestion,
    CodingQuestion,
)
from .attempt import TestAttempt, Answer, AttemptStatus, FinalizeReason
from .proctoring_violations import ProctoringViolation, ViolationKind
from .audit_log import AuditLog

__all__ = [
    "Event",
    "Round",
    "EventRules",
    "RoundRules",
    "RoundStatus",
    "Participant",
    "Question",
    "QuestionType",
    "MultipleChoiceQuestion",
    "TrueFalseQuestion",
    "ShortAnswerQuestion",
    "CodingQuestion",
    "TestAttempt",
    "Answer",
    "AttemptStatus",
    "FinalizeReason",
    "ProctoringViolation",
    "ViolationKind",
    "AuditLog",
]
