"""Result and report values returned by a sync run"""

import enum
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from reconciler.core.conflicts import FieldConflict
from reconciler.core.normalized import IssueDraft, IssueUpdate, NormalizedIssue


class SyncDirection(str, enum.Enum):
    """Which halves of the reconciliation are allowed to write"""

    SOURCE_TO_TARGET = "source-to-target"
    TARGET_TO_SOURCE = "target-to-source"
    BOTH = "both"

    @property
    def allows_source_to_target(self) -> bool:
        return self in (SyncDirection.SOURCE_TO_TARGET, SyncDirection.BOTH)

    @property
    def allows_target_to_source(self) -> bool:
        return self in (SyncDirection.TARGET_TO_SOURCE, SyncDirection.BOTH)


class ChangeKind(str, enum.Enum):
    CREATE = "create"
    UPDATE = "update"
    LINK = "link"
    CANCEL = "cancel"


@dataclass
class IssueChange:
    """A change propagated from `source` (provider name) carrying `issue`."""

    source: str
    issue: NormalizedIssue
    kind: ChangeKind = ChangeKind.UPDATE


@dataclass
class IssueConflict:
    source_issue: NormalizedIssue
    target_issue: NormalizedIssue
    last_sync_fingerprint: Optional[str]
    conflicting_fields: List[FieldConflict] = field(default_factory=list)

    @property
    def field_names(self) -> List[str]:
        return [c.field for c in self.conflicting_fields]


@dataclass
class ProposedChange:
    """What the engine is about to write, handed to the reviewer callback."""

    kind: ChangeKind
    from_provider: str
    to_provider: str
    issue: NormalizedIssue
    counterpart: Optional[NormalizedIssue] = None
    payload: Optional[Any] = None

    @property
    def is_create(self) -> bool:
        return isinstance(self.payload, IssueDraft)

    @property
    def is_update(self) -> bool:
        return isinstance(self.payload, IssueUpdate)


@dataclass
class SyncResult:
    source_to_target_changes: List[IssueChange] = field(default_factory=list)
    target_to_source_changes: List[IssueChange] = field(default_factory=list)
    conflicts: List[IssueConflict] = field(default_factory=list)
    errors: List[Exception] = field(default_factory=list)
    skipped: List[ProposedChange] = field(default_factory=list)
    aborted: bool = False

    @property
    def is_clean(self) -> bool:
        """Only a run with neither conflicts nor errors is fully successful."""
        return not self.conflicts and not self.errors

    @property
    def has_changes(self) -> bool:
        return bool(self.source_to_target_changes or self.target_to_source_changes)

    def summary(self) -> Dict[str, int]:
        return {
            "source_to_target": len(self.source_to_target_changes),
            "target_to_source": len(self.target_to_source_changes),
            "conflicts": len(self.conflicts),
            "errors": len(self.errors),
            "skipped": len(self.skipped),
        }
