"""Sync ledger: append/update-only record of linked issue pairs"""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, replace
from datetime import datetime, timezone
from typing import Dict, List, Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import sessionmaker

from reconciler.models import LedgerEntryRow, SyncState

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class LedgerEntry:
    tracking_key: str
    source_id: str
    target_id: str
    last_fingerprint: Optional[str] = None
    is_derived_item: bool = False


def _to_utc(dt: Optional[datetime]) -> Optional[datetime]:
    if dt is None:
        return None
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


class Ledger(ABC):
    """Keyed record set plus a single last-sync timestamp.

    There is no delete: entries outlive the issues they describe and only
    `last_fingerprint` changes after creation. One writer per run.
    """

    @abstractmethod
    def lookup(self, tracking_key: str) -> Optional[LedgerEntry]:
        ...

    @abstractmethod
    def lookup_by_target(self, target_id: str) -> Optional[LedgerEntry]:
        ...

    @abstractmethod
    def upsert(self, entry: LedgerEntry) -> LedgerEntry:
        ...

    @abstractmethod
    def entries(self) -> List[LedgerEntry]:
        ...

    @abstractmethod
    def get_last_sync(self) -> Optional[datetime]:
        ...

    @abstractmethod
    def set_last_sync(self, when: datetime) -> None:
        ...

    @staticmethod
    def _merge(existing: Optional[LedgerEntry], entry: LedgerEntry) -> LedgerEntry:
        """Apply the update rule: only the fingerprint of an existing entry moves."""
        if existing is None:
            return entry
        if (existing.source_id, existing.target_id) != (entry.source_id, entry.target_id):
            logger.warning(
                f"Ledger entry '{existing.tracking_key}' links {existing.source_id}->"
                f"{existing.target_id}; ignoring new pair {entry.source_id}->{entry.target_id}"
            )
        return replace(existing, last_fingerprint=entry.last_fingerprint)


class InMemoryLedger(Ledger):
    """Ledger kept in a dict; used for tests and one-shot runs"""

    def __init__(self, entries: Optional[List[LedgerEntry]] = None):
        self._entries: Dict[str, LedgerEntry] = {e.tracking_key: e for e in entries or []}
        self._last_sync: Optional[datetime] = None

    def lookup(self, tracking_key: str) -> Optional[LedgerEntry]:
        return self._entries.get(str(tracking_key))

    def lookup_by_target(self, target_id: str) -> Optional[LedgerEntry]:
        for entry in self._entries.values():
            if entry.target_id == str(target_id):
                return entry
        return None

    def upsert(self, entry: LedgerEntry) -> LedgerEntry:
        stored = self._merge(self._entries.get(entry.tracking_key), entry)
        self._entries[stored.tracking_key] = stored
        return stored

    def entries(self) -> List[LedgerEntry]:
        return list(self._entries.values())

    def get_last_sync(self) -> Optional[datetime]:
        return self._last_sync

    def set_last_sync(self, when: datetime) -> None:
        self._last_sync = _to_utc(when)


class SqlLedger(Ledger):
    """Ledger persisted through SQLAlchemy; the session factory is injected"""

    def __init__(self, session_factory: sessionmaker):
        self.session_factory = session_factory

    @staticmethod
    def _entry(row: Optional[LedgerEntryRow]) -> Optional[LedgerEntry]:
        if row is None:
            return None
        return LedgerEntry(
            tracking_key=row.tracking_key,
            source_id=row.source_id,
            target_id=row.target_id,
            last_fingerprint=row.last_fingerprint,
            is_derived_item=bool(row.is_derived_item),
        )

    def lookup(self, tracking_key: str) -> Optional[LedgerEntry]:
        db = self.session_factory()
        try:
            row = (
                db.query(LedgerEntryRow)
                .filter(LedgerEntryRow.tracking_key == str(tracking_key))
                .first()
            )
            return self._entry(row)
        finally:
            db.close()

    def lookup_by_target(self, target_id: str) -> Optional[LedgerEntry]:
        db = self.session_factory()
        try:
            row = (
                db.query(LedgerEntryRow)
                .filter(LedgerEntryRow.target_id == str(target_id))
                .first()
            )
            return self._entry(row)
        finally:
            db.close()

    def upsert(self, entry: LedgerEntry) -> LedgerEntry:
        db = self.session_factory()
        try:
            row = (
                db.query(LedgerEntryRow)
                .filter(LedgerEntryRow.tracking_key == entry.tracking_key)
                .first()
            )
            stored = self._merge(self._entry(row), entry)
            if row is None:
                row = LedgerEntryRow(
                    tracking_key=stored.tracking_key,
                    source_id=stored.source_id,
                    target_id=stored.target_id,
                    is_derived_item=stored.is_derived_item,
                )
                db.add(row)
            row.last_fingerprint = stored.last_fingerprint
            try:
                db.commit()
            except IntegrityError:
                # Only one writer is supported; surface the violation instead of guessing.
                db.rollback()
                raise
            return stored
        finally:
            db.close()

    def entries(self) -> List[LedgerEntry]:
        db = self.session_factory()
        try:
            rows = db.query(LedgerEntryRow).order_by(LedgerEntryRow.id).all()
            return [self._entry(r) for r in rows]
        finally:
            db.close()

    def get_last_sync(self) -> Optional[datetime]:
        db = self.session_factory()
        try:
            state = db.query(SyncState).first()
            return _to_utc(state.last_sync_at) if state else None
        finally:
            db.close()

    def set_last_sync(self, when: datetime) -> None:
        db = self.session_factory()
        try:
            state = db.query(SyncState).first()
            if state is None:
                state = SyncState(id=1)
                db.add(state)
            state.last_sync_at = _to_utc(when).replace(tzinfo=None)
            db.commit()
        finally:
            db.close()
