"""Provider-agnostic issue model"""

import enum
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Optional, Set, Union


class StateCategory(str, enum.Enum):
    """Canonical state buckets every provider state folds into"""

    BACKLOG = "backlog"
    TODO = "todo"
    IN_PROGRESS = "in_progress"
    READY = "ready"
    DONE = "done"


@dataclass(frozen=True)
class NormalizedState:
    """Issue state: `category` drives logic, `name`/`color` are display-only."""

    category: StateCategory
    name: str
    color: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict, compare=False, hash=False)


@dataclass(frozen=True)
class NormalizedLabel:
    name: str
    color: Optional[str] = None
    description: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict, compare=False, hash=False)

    @property
    def key(self) -> str:
        return label_key(self.name)


@dataclass(frozen=True)
class IssueMetadata:
    """Link metadata plus the few provider extras the core knows about.

    `external_id` + `provider` identify the paired record in the *other*
    system. No `external_id` means the issue is not linked yet.
    """

    external_id: Optional[str] = None
    provider: Optional[str] = None
    node_id: Optional[str] = None
    state_id: Optional[str] = None

    @property
    def is_linked(self) -> bool:
        return bool(self.external_id)

    def linked_to(self, external_id: str, provider: str) -> "IssueMetadata":
        return replace(self, external_id=str(external_id), provider=provider)


@dataclass(frozen=True)
class NormalizedIssue:
    id: str
    title: str
    description: str
    state: NormalizedState
    labels: List[NormalizedLabel] = field(default_factory=list)
    assignees: List[str] = field(default_factory=list)
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    source_provider: str = ""
    metadata: IssueMetadata = field(default_factory=IssueMetadata)

    @property
    def external_id(self) -> Optional[str]:
        return self.metadata.external_id

    @property
    def is_linked(self) -> bool:
        return self.metadata.is_linked


@dataclass(frozen=True)
class IssueDraft:
    """Payload for creating an issue (no id, timestamps or owning provider)."""

    title: str
    description: str
    state: NormalizedState
    labels: List[NormalizedLabel] = field(default_factory=list)
    assignees: List[str] = field(default_factory=list)
    metadata: IssueMetadata = field(default_factory=IssueMetadata)


@dataclass(frozen=True)
class IssueUpdate:
    """Partial update; `None` means "leave this field alone"."""

    title: Optional[str] = None
    description: Optional[str] = None
    state: Optional[NormalizedState] = None
    labels: Optional[List[NormalizedLabel]] = None
    assignees: Optional[List[str]] = None
    metadata: Optional[IssueMetadata] = None

    def is_empty(self) -> bool:
        return all(
            value is None
            for value in (
                self.title,
                self.description,
                self.state,
                self.labels,
                self.assignees,
                self.metadata,
            )
        )


def label_key(name: Optional[str]) -> str:
    """Label identity: trimmed, lowercased name."""
    return (name or "").strip().lower()


def label_keys(labels: Iterable[Union[NormalizedLabel, str]]) -> Set[str]:
    keys = set()
    for label in labels or []:
        name = label.name if isinstance(label, NormalizedLabel) else label
        keys.add(label_key(name))
    return keys


def assignee_keys(assignees: Iterable[str]) -> Set[str]:
    return {str(a).strip().lower() for a in assignees or []}


def _same_set(a: Set[str], b: Set[str]) -> bool:
    return len(a) == len(b) and all(member in b for member in a)


def same_label_set(
    a: Iterable[Union[NormalizedLabel, str]], b: Iterable[Union[NormalizedLabel, str]]
) -> bool:
    return _same_set(label_keys(a), label_keys(b))


def same_assignee_set(a: Iterable[str], b: Iterable[str]) -> bool:
    return _same_set(assignee_keys(a), assignee_keys(b))


def has_label(issue: NormalizedIssue, name: str) -> bool:
    return label_key(name) in label_keys(issue.labels)


def parse_timestamp(value: Union[str, datetime, None]) -> Optional[datetime]:
    """Parse ISO8601 strings (including a trailing `Z`) into tz-aware UTC datetimes."""
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        dt = value
    else:
        dt = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)
