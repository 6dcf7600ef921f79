"""Sync state model"""
from sqlalchemy import Column, DateTime, Integer
from reconciler.models.base import Base


class SyncState(Base):
    """Single-row table holding the timestamp of the last completed run"""

    __tablename__ = "sync_state"

    id = Column(Integer, primary_key=True)
    last_sync_at = Column(DateTime, nullable=True)

    def __repr__(self):
        return f"<SyncState(last_sync_at={self.last_sync_at})>"
