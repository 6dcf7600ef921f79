"""Pure reconciliation logic: model, state mapping, fingerprint, diff, matching"""

from reconciler.core.assignees import AssigneeMap
from reconciler.core.conflicts import FieldConflict, diff
from reconciler.core.fingerprint import compute_fingerprint
from reconciler.core.matcher import IssuePair, MatchKind, MatchPlan, match
from reconciler.core.normalized import (
    IssueDraft,
    IssueMetadata,
    IssueUpdate,
    NormalizedIssue,
    NormalizedLabel,
    NormalizedState,
    StateCategory,
)
from reconciler.core.results import (
    ChangeKind,
    IssueChange,
    IssueConflict,
    ProposedChange,
    SyncDirection,
    SyncResult,
)
from reconciler.core.state_mapping import StateMappingConfig, category_of

__all__ = [
    "AssigneeMap",
    "ChangeKind",
    "FieldConflict",
    "IssueChange",
    "IssueConflict",
    "IssueDraft",
    "IssueMetadata",
    "IssuePair",
    "IssueUpdate",
    "MatchKind",
    "MatchPlan",
    "NormalizedIssue",
    "NormalizedLabel",
    "NormalizedState",
    "ProposedChange",
    "StateCategory",
    "StateMappingConfig",
    "SyncDirection",
    "SyncResult",
    "category_of",
    "compute_fingerprint",
    "diff",
    "match",
]
