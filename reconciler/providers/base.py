"""Provider port: the only surface the engine uses to talk to a backend"""

from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional

from reconciler.core.normalized import (
    IssueDraft,
    IssueUpdate,
    NormalizedIssue,
    NormalizedLabel,
    NormalizedState,
)
from reconciler.core.state_mapping import StateMappingConfig, normalize_state


class Provider(ABC):
    """Normalized CRUD plus label/state listing for one issue tracker.

    Implementations raise `reconciler.core.errors.SyncError` subclasses for
    I/O failures so the engine can classify them.
    """

    @abstractmethod
    async def get_issues(self) -> List[NormalizedIssue]:
        ...

    @abstractmethod
    async def get_issue(self, issue_id: str) -> NormalizedIssue:
        ...

    @abstractmethod
    async def create_issue(self, draft: IssueDraft) -> NormalizedIssue:
        ...

    @abstractmethod
    async def update_issue(self, issue_id: str, update: IssueUpdate) -> NormalizedIssue:
        ...

    @abstractmethod
    async def delete_issue(self, issue_id: str) -> None:
        """Close the issue. Never a hard delete."""

    @abstractmethod
    async def get_labels(self) -> List[NormalizedLabel]:
        ...

    @abstractmethod
    async def get_states(self) -> List[NormalizedState]:
        ...

    @abstractmethod
    def get_name(self) -> str:
        ...

    @abstractmethod
    def get_state_mapping_config(self) -> StateMappingConfig:
        ...

    def is_source_of_truth(self, issue: NormalizedIssue) -> bool:
        return issue.source_provider == self.get_name()


class BaseProvider(Provider):
    """Shared name/state-mapping plumbing for concrete adapters"""

    def __init__(self, name: str, state_mapping: StateMappingConfig):
        if not name:
            raise ValueError("Provider name must not be empty")
        self.name = name
        self.state_mapping = state_mapping

    def get_name(self) -> str:
        return self.name

    def get_state_mapping_config(self) -> StateMappingConfig:
        return self.state_mapping

    def normalize_state(
        self,
        state_name: str,
        color: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> NormalizedState:
        return normalize_state(state_name, self.state_mapping, color=color, metadata=metadata)

    def __repr__(self):
        return f"<{type(self).__name__}(name='{self.name}')>"
