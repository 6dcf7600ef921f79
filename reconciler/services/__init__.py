"""Services"""

from reconciler.services.gitlab_client import GitLabClient
from reconciler.services.ledger import InMemoryLedger, Ledger, LedgerEntry, SqlLedger
from reconciler.services.sync_service import ReconciliationEngine

__all__ = [
    "GitLabClient",
    "InMemoryLedger",
    "Ledger",
    "LedgerEntry",
    "ReconciliationEngine",
    "SqlLedger",
]
