"""Assignee mapping model"""
from sqlalchemy import Column, Integer, String, DateTime, UniqueConstraint
from datetime import datetime
from reconciler.models.base import Base


class AssigneeMapping(Base):
    """Assignee identifier mapping between the source and target providers"""

    __tablename__ = "assignee_mappings"
    __table_args__ = (
        UniqueConstraint("source_identifier", name="uq_assignee_source_identifier"),
        UniqueConstraint("target_identifier", name="uq_assignee_target_identifier"),
    )

    id = Column(Integer, primary_key=True, index=True)

    source_identifier = Column(String, nullable=False, index=True)
    target_identifier = Column(String, nullable=False, index=True)

    # Timestamps
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    def __repr__(self):
        return f"<AssigneeMapping({self.source_identifier} -> {self.target_identifier})>"
