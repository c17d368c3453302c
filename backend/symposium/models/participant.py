from sqlalchemy import Column, String, DateTime, ForeignKey, Boolean, UniqueConstraint
from sqlalchemy.orm import relationship
from datetime import datetime
from ..core.database import Base
from .event import new_id


class Participant(Base):
    """A user's registration for one event, as issued by the credential service."""
    __tablename__ = "participants"
    __table_args__ = (
        UniqueConstraint("event_id", "user_id", name="uq_participants_event_user"),
    )

    id = Column(String(36), primary_key=True, index=True, default=new_id)
    event_id = Column(String(36), ForeignKey("events.id", ondelete="CASCADE"), nullable=False, index=True)
    user_id = Column(String(36), nullable=False, index=True)
    full_name = Column(String, nullable=False)
    test_enabled = Column(Boolean, nullable=False, default=False)
    enabled_at = Column(DateTime, nullable=True)
    registered_at = Column(DateTime, default=datetime.utcnow)

    event = relationship("Event", back_populates="participants")
    attempts = relationship("TestAttempt", back_populates="participant")

    def __repr__(self):
        return f"<Participant {self.full_name} in event {self.event_id}>"
