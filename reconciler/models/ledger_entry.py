"""Ledger entry model"""
from sqlalchemy import Boolean, Column, DateTime, Integer, String
from datetime import datetime, timezone
from reconciler.models.base import Base


def utcnow() -> datetime:
    """UTC 'now' as tz-naive datetime (SQLite drops tzinfo anyway)."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


class LedgerEntryRow(Base):
    """Linked source/target issue pair and its last synchronized fingerprint"""

    __tablename__ = "ledger_entries"

    id = Column(Integer, primary_key=True, index=True)

    # Stable tracking key, normally the source issue id
    tracking_key = Column(String, unique=True, nullable=False, index=True)

    source_id = Column(String, nullable=False, index=True)
    target_id = Column(String, nullable=False, index=True)

    last_fingerprint = Column(String, nullable=True)
    is_derived_item = Column(Boolean, default=False, nullable=False)

    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    def __repr__(self):
        return f"<LedgerEntryRow(key='{self.tracking_key}', source={self.source_id}, target={self.target_id})>"
