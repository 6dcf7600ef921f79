"""Database models"""

from reconciler.models.assignee_mapping import AssigneeMapping
from reconciler.models.base import Base
from reconciler.models.conflict import Conflict
from reconciler.models.ledger_entry import LedgerEntryRow
from reconciler.models.sync_log import SyncLog
from reconciler.models.sync_state import SyncState

__all__ = [
    "Base",
    "AssigneeMapping",
    "Conflict",
    "LedgerEntryRow",
    "SyncLog",
    "SyncState",
]
