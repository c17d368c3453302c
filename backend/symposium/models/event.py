from sqlalchemy import Column, String, DateTime, ForeignKey, Text, Boolean, Integer
from sqlalchemy.orm import relationship
from datetime import datetime
import uuid
from ..core.database import Base


def new_id() -> str:
    return str(uuid.uuid4())


class RoundStatus:
    NOT_STARTED = "not_started"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"

    ALL = frozenset({NOT_STARTED, IN_PROGRESS, COMPLETED})


class Event(Base):
    __tablename__ = "events"

    id = Column(String(36), primary_key=True, index=True, default=new_id)
    name = Column(String, nullable=False)
    status = Column(String, default="active")
    created_at = Column(DateTime, default=datetime.utcnow)

    rounds = relationship("Round", back_populates="event", order_by="Round.round_number")
    rules = relationship("EventRules", back_populates="event", uselist=False)
    participants = relationship("Participant", back_populates="event")


class Round(Base):
    __tablename__ = "rounds"

    id = Column(String(36), primary_key=True, index=True, default=new_id)
    event_id = Column(String(36), ForeignKey("events.id", ondelete="CASCADE"), nullable=False, index=True)
    name = Column(String, nullable=False)
    round_number = Column(Integer, nullable=False, default=1)
    duration_minutes = Column(Integer, nullable=False)
    status = Column(String, nullable=False, default=RoundStatus.NOT_STARTED)
    results_published = Column(Boolean, nullable=False, default=False)
    started_at = Column(DateTime, nullable=True)
    ended_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow)

    event = relationship("Event", back_populates="rounds")
    rules = relationship("RoundRules", back_populates="round", uselist=False)
    questions = relationship("Question", back_populates="round", order_by="Question.question_number")

    @property
    def is_accepting_attempts(self) -> bool:
        return self.status == RoundStatus.IN_PROGRESS


class _RuleColumns:
    """Proctoring flags shared by event and round rule records.

    Every flag is nullable: null means "not configured at this level" and
    lets the resolver fall through to the next level.
    """

    no_refresh = Column(Boolean, nullable=True)
    no_tab_switch = Column(Boolean, nullable=True)
    force_fullscreen = Column(Boolean, nullable=True)
    disable_shortcuts = Column(Boolean, nullable=True)
    auto_submit_on_violation = Column(Boolean, nullable=True)
    max_warning_count = Column(Integer, nullable=True)
    additional_rules = Column(Text, nullable=True)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)


class EventRules(_RuleColumns, Base):
    __tablename__ = "event_rules"

    id = Column(String(36), primary_key=True, default=new_id)
    event_id = Column(String(36), ForeignKey("events.id", ondelete="CASCADE"), nullable=False, unique=True)

    event = relationship("Event", back_populates="rules")


class RoundRules(_RuleColumns, Base):
    __tablename__ = "round_rules"

    id = Column(String(36), primary_key=True, default=new_id)
    round_id = Column(String(36), ForeignKey("rounds.id", ondelete="CASCADE"), nullable=False, unique=True)

    round = relationship("Round", back_populates="rules")
