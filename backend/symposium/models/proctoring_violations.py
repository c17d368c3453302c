from sqlalchemy import Column, Integer, String, DateTime, ForeignKey, Boolean
from sqlalchemy.orm import relationship
from datetime import datetime
from ..core.database import Base


class ViolationKind:
    TAB_SWITCH = "tab_switch"
    FULLSCREEN_EXIT = "fullscreen_exit"
    REFRESH_ATTEMPT = "refresh_attempt"
    SHORTCUT_BLOCKED = "shortcut_blocked"

    ALL = (TAB_SWITCH, FULLSCREEN_EXIT, REFRESH_ATTEMPT, SHORTCUT_BLOCKED)


class ProctoringViolation(Base):
    """Audit trail of violation signals; the attempt's counter is the live state."""
    __tablename__ = "proctoring_violations"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    attempt_id = Column(String(36), ForeignKey("test_attempts.id", ondelete="CASCADE"), nullable=False, index=True)
    kind = Column(String, nullable=False)
    counted = Column(Boolean, nullable=False, default=True)
    count_after = Column(Integer, nullable=False)
    attempt_status = Column(String, nullable=False)
    timestamp = Column(DateTime, default=datetime.utcnow)

    attempt = relationship("TestAttempt", back_populates="violations")

    def __repr__(self):
        return f"<ProctoringViolation {self.kind} for attempt {self.attempt_id}>"
