"""Conflict model"""
from sqlalchemy import Column, Integer, String, ForeignKey, DateTime, Text, Boolean
from sqlalchemy.orm import relationship
from datetime import datetime
from reconciler.models.base import Base


class Conflict(Base):
    """Conflict log for manual resolution"""

    __tablename__ = "conflicts"

    id = Column(Integer, primary_key=True, index=True)

    # Run that reported the conflict
    sync_log_id = Column(Integer, ForeignKey("sync_logs.id"), nullable=True)

    # Issue information (provider-local ids)
    source_issue_id = Column(String, nullable=False, index=True)
    target_issue_id = Column(String, nullable=False)

    # Conflict details
    fields = Column(String, nullable=False)  # comma-separated field names, e.g. "title,labels"
    description = Column(Text, nullable=False)
    source_data = Column(Text, nullable=True)  # JSON snapshot of source values
    target_data = Column(Text, nullable=True)  # JSON snapshot of target values
    last_sync_fingerprint = Column(String, nullable=True)

    # Resolution
    resolved = Column(Boolean, default=False)
    resolved_at = Column(DateTime, nullable=True)
    resolution_notes = Column(Text, nullable=True)

    # Timestamps
    created_at = Column(DateTime, default=datetime.utcnow, index=True)

    # Relationships
    sync_log = relationship("SyncLog")

    def __repr__(self):
        return f"<Conflict(fields={self.fields}, resolved={self.resolved})>"
