"""Sync log model"""
from sqlalchemy import Column, Integer, String, DateTime, Text, Enum
from datetime import datetime
import enum
from reconciler.models.base import Base


class SyncStatus(str, enum.Enum):
    """Sync run outcome"""
    SUCCESS = "success"
    PARTIAL = "partial"
    CONFLICT = "conflict"
    FAILED = "failed"


class SyncLog(Base):
    """Log of sync runs"""

    __tablename__ = "sync_logs"

    id = Column(Integer, primary_key=True, index=True)

    status = Column(Enum(SyncStatus), nullable=False)
    direction = Column(String, nullable=True)  # "source-to-target" | "target-to-source" | "both"

    # Counts
    source_to_target = Column(Integer, default=0)
    target_to_source = Column(Integer, default=0)
    conflicts = Column(Integer, default=0)
    errors = Column(Integer, default=0)
    skipped = Column(Integer, default=0)

    message = Column(Text, nullable=True)
    details = Column(Text, nullable=True)  # JSON list of error strings

    created_at = Column(DateTime, default=datetime.utcnow, index=True)

    def __repr__(self):
        return f"<SyncLog(status={self.status}, direction={self.direction})>"
