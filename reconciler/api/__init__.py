"""API routes"""

from reconciler.api import assignee_mappings, sync

__all__ = ["assignee_mappings", "sync"]
