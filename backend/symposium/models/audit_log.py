from sqlalchemy import Column, String, DateTime, Text, Integer, JSON
from datetime import datetime
from ..core.database import Base


class AuditLog(Base):
    """Administrative overrides applied to attempts and rounds."""
    __tablename__ = "audit_logs"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    admin_id = Column(String(36), nullable=False, index=True)
    action = Column(String, nullable=False, index=True)
    target_type = Column(String, nullable=False)
    target_id = Column(String(36), nullable=False)
    changes = Column(JSON, nullable=True)
    reason = Column(Text, nullable=True)
    timestamp = Column(DateTime, default=datetime.utcnow)
