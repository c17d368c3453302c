from sqlalchemy import Column, String, DateTime, ForeignKey, Boolean, Integer, JSON, Index, UniqueConstraint, text
from sqlalchemy.orm import relationship
from datetime import datetime
from ..core.database import Base
from .event import new_id


class AttemptStatus:
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    AUTO_SUBMITTED = "auto_submitted"
    DISQUALIFIED = "disqualified"

    TERMINAL = frozenset({COMPLETED, AUTO_SUBMITTED, DISQUALIFIED})
    RANKED = frozenset({COMPLETED, AUTO_SUBMITTED})


class FinalizeReason:
    MANUAL = "manual"
    DEADLINE = "deadline"
    VIOLATION = "violation"
    ADMIN_OVERRIDE = "admin_override"

    ALL = frozenset({MANUAL, DEADLINE, VIOLATION, ADMIN_OVERRIDE})


_OPEN_ATTEMPT = text("status = 'in_progress'")


class TestAttempt(Base):
    __test__ = False
    __tablename__ = "test_attempts"
    __table_args__ = (
        # At most one open attempt per (participant, round); terminal rows are unconstrained
        Index(
            "uq_test_attempts_open_pair",
            "participant_id",
            "round_id",
            unique=True,
            postgresql_where=_OPEN_ATTEMPT,
            sqlite_where=_OPEN_ATTEMPT,
        ),
        Index("ix_test_attempts_status_deadline", "status", "deadline_at"),
    )

    id = Column(String(36), primary_key=True, index=True, default=new_id)
    participant_id = Column(String(36), ForeignKey("participants.id", ondelete="CASCADE"), nullable=False, index=True)
    round_id = Column(String(36), ForeignKey("rounds.id", ondelete="CASCADE"), nullable=False, index=True)
    status = Column(String, nullable=False, default=AttemptStatus.IN_PROGRESS)
    started_at = Column(DateTime, nullable=False)
    deadline_at = Column(DateTime, nullable=False)
    completed_at = Column(DateTime, nullable=True)
    finalize_reason = Column(String, nullable=True)

    violation_count = Column(Integer, nullable=False, default=0)
    rules_snapshot = Column(JSON, nullable=False)

    total_score = Column(Integer, nullable=True)
    max_score = Column(Integer, nullable=False, default=0)
    pending_count = Column(Integer, nullable=False, default=0)

    participant = relationship("Participant", back_populates="attempts")
    round = relationship("Round")
    answers = relationship("Answer", back_populates="attempt", cascade="all, delete-orphan")
    violations = relationship("ProctoringViolation", back_populates="attempt", cascade="all, delete-orphan")

    @property
    def is_terminal(self) -> bool:
        return self.status in AttemptStatus.TERMINAL

    def is_expired(self, now: datetime) -> bool:
        return now >= self.deadline_at

    def __repr__(self):
        return f"<TestAttempt {self.id} {self.status} round={self.round_id}>"


class Answer(Base):
    __tablename__ = "answers"
    __table_args__ = (
        UniqueConstraint("attempt_id", "question_id", name="uq_answers_attempt_question"),
    )

    id = Column(String(36), primary_key=True, index=True, default=new_id)
    attempt_id = Column(String(36), ForeignKey("test_attempts.id", ondelete="CASCADE"), nullable=False, index=True)
    question_id = Column(String(36), ForeignKey("questions.id", ondelete="CASCADE"), nullable=False)
    value = Column(JSON, nullable=True)
    answered_at = Column(DateTime, nullable=True)

    awarded_points = Column(Integer, nullable=True)
    is_correct = Column(Boolean, nullable=True)
    graded_manually = Column(Boolean, nullable=False, default=False)

    # Submissions that arrived after the deadline; kept for audit, never graded
    ignored_value = Column(JSON, nullable=True)
    ignored_at = Column(DateTime, nullable=True)

    attempt = relationship("TestAttempt", back_populates="answers")
    question = relationship("Question")

    @property
    def is_pending(self) -> bool:
        return self.value is not None and self.awarded_points is None
