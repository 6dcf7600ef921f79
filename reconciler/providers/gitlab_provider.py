"""GitLab implementation of the provider port"""

import asyncio
import base64
import json
import logging
import re
from typing import Any, Dict, List, Optional

from reconciler.core.errors import NotFoundError
from reconciler.core.normalized import (
    IssueDraft,
    IssueMetadata,
    IssueUpdate,
    NormalizedIssue,
    NormalizedLabel,
    NormalizedState,
    StateCategory,
    label_key,
    parse_timestamp,
)
from reconciler.core.state_mapping import StateMappingConfig
from reconciler.providers.base import BaseProvider
from reconciler.services.gitlab_client import GitLabClient

logger = logging.getLogger(__name__)

STATUS_LABEL_PREFIX = "status::"
OPENED = "opened"
CLOSED = "closed"

DEFAULT_GITLAB_STATE_MAPPING = StateMappingConfig(
    state_mapping={
        OPENED: StateCategory.BACKLOG,
        CLOSED: StateCategory.DONE,
        "backlog": StateCategory.BACKLOG,
        "todo": StateCategory.TODO,
        "to do": StateCategory.TODO,
        "in progress": StateCategory.IN_PROGRESS,
        "doing": StateCategory.IN_PROGRESS,
        "ready": StateCategory.READY,
        "done": StateCategory.DONE,
        "cancelled": StateCategory.DONE,
    },
    default_category=StateCategory.BACKLOG,
)

_LINK_MARKER_RE = re.compile(
    r"<!--\s*issue-reconciler:(?P<b64>[A-Za-z0-9+/=]+)\s*-->",
    re.IGNORECASE,
)


def _safe_attr(obj: Any, name: str, default: Any = None) -> Any:
    """Get attribute or dict key safely."""
    if obj is None:
        return default
    if isinstance(obj, dict):
        return obj.get(name, default)
    return getattr(obj, name, default)


def _b64_json(data: Dict[str, Any]) -> str:
    raw = json.dumps(data, sort_keys=True, separators=(",", ":")).encode("utf-8")
    return base64.b64encode(raw).decode("ascii")


def _b64_json_load(value: str) -> Optional[Dict[str, Any]]:
    try:
        obj = json.loads(base64.b64decode(value.encode("ascii")).decode("utf-8"))
    except (ValueError, UnicodeDecodeError):
        return None
    return obj if isinstance(obj, dict) else None


def link_marker(metadata: IssueMetadata) -> str:
    payload = {"v": 1, "external_id": str(metadata.external_id)}
    if metadata.provider:
        payload["provider"] = metadata.provider
    return f"<!-- issue-reconciler:{_b64_json(payload)} -->"


def split_description(description: Optional[str]) -> tuple[str, IssueMetadata]:
    """Separate the human description from the embedded link marker."""
    text = description or ""
    m = _LINK_MARKER_RE.search(text)
    if not m:
        return text, IssueMetadata()
    data = _b64_json_load(m.group("b64"))
    if data is None:
        logger.warning("Ignoring unreadable issue-reconciler link marker")
        data = {}
    head = text[: m.start()]
    # Only the separator join_description adds; user newlines survive.
    if head.endswith("\n\n"):
        head = head[:-2]
    stripped = head + text[m.end():]
    external_id = data.get("external_id")
    return stripped, IssueMetadata(
        external_id=str(external_id) if external_id is not None else None,
        provider=data.get("provider"),
    )


def join_description(description: str, metadata: Optional[IssueMetadata]) -> str:
    if metadata is None or not metadata.is_linked:
        return description or ""
    body = description or ""
    return f"{body}\n\n{link_marker(metadata)}" if body else link_marker(metadata)


def _is_status_label(name: str) -> bool:
    return name.lower().startswith(STATUS_LABEL_PREFIX)


def _status_name(label: str) -> str:
    return label[len(STATUS_LABEL_PREFIX):].strip()


class GitLabProvider(BaseProvider):
    """GitLab project as a sync provider.

    GitLab only knows opened/closed; scoped `status::<name>` labels refine
    that into a richer workflow and are treated as state, not as labels.
    Link metadata lives in a marker comment at the end of the description.
    """

    def __init__(
        self,
        name: str,
        client: GitLabClient,
        project_id: str,
        state_mapping: StateMappingConfig = DEFAULT_GITLAB_STATE_MAPPING,
    ):
        super().__init__(name, state_mapping)
        self.client = client
        self.project_id = project_id
        self._user_ids: Dict[str, Optional[int]] = {}

    # -- normalization -------------------------------------------------

    def _state_from(self, gl_state: str, raw_labels: List[str]) -> NormalizedState:
        status_labels = [_status_name(l) for l in raw_labels if _is_status_label(l)]
        state_name = CLOSED if gl_state == CLOSED else OPENED
        for status in status_labels:
            closed_status = self.normalize_state(status).category == StateCategory.DONE
            if closed_status == (gl_state == CLOSED):
                state_name = status
                break
        return self.normalize_state(state_name)

    def normalize(self, issue: Any) -> NormalizedIssue:
        raw_labels = [str(l) for l in (_safe_attr(issue, "labels", []) or [])]
        description, metadata = split_description(_safe_attr(issue, "description", ""))
        assignees = [
            u
            for u in (_safe_attr(a, "username") for a in (_safe_attr(issue, "assignees", []) or []))
            if u
        ]
        return NormalizedIssue(
            id=str(_safe_attr(issue, "iid")),
            title=_safe_attr(issue, "title", "") or "",
            description=description,
            state=self._state_from(_safe_attr(issue, "state", OPENED), raw_labels),
            labels=[NormalizedLabel(name=l) for l in raw_labels if not _is_status_label(l)],
            assignees=assignees,
            created_at=parse_timestamp(_safe_attr(issue, "created_at")),
            updated_at=parse_timestamp(_safe_attr(issue, "updated_at")),
            source_provider=self.name,
            metadata=metadata,
        )

    def _label_names(self, labels: List[NormalizedLabel], state: NormalizedState) -> List[str]:
        names = [l.name for l in labels if not _is_status_label(l.name)]
        if label_key(state.name) not in (OPENED, CLOSED):
            names.append(f"{STATUS_LABEL_PREFIX}{state.name}")
        return names

    def _assignee_ids(self, usernames: List[str]) -> List[int]:
        ids = []
        for username in usernames:
            if username not in self._user_ids:
                user = self.client.get_user_by_username(username)
                self._user_ids[username] = user.id if user else None
            user_id = self._user_ids[username]
            if user_id is None:
                # Writing without the user would drop the assignee on the next run.
                raise NotFoundError(
                    f"No GitLab user '{username}'",
                    provider=self.name,
                    operation="resolve_assignee",
                )
            ids.append(user_id)
        return ids

    # -- blocking implementations --------------------------------------

    def _create(self, draft: IssueDraft) -> NormalizedIssue:
        payload: Dict[str, Any] = {
            "title": draft.title,
            "description": join_description(draft.description, draft.metadata),
            "labels": self._label_names(draft.labels, draft.state),
        }
        assignee_ids = self._assignee_ids(draft.assignees)
        if assignee_ids:
            payload["assignee_ids"] = assignee_ids
        created = self.client.create_issue(self.project_id, payload)
        if draft.state.category == StateCategory.DONE:
            created = self.client.close_issue(self.project_id, created.iid)
        return self.normalize(created)

    def _update(self, issue_id: str, update: IssueUpdate) -> NormalizedIssue:
        current = self.normalize(self.client.get_issue(self.project_id, int(issue_id)))
        if update.is_empty():
            return current
        payload: Dict[str, Any] = {}
        if update.title is not None:
            payload["title"] = update.title
        if update.description is not None or update.metadata is not None:
            description = update.description if update.description is not None else current.description
            metadata = update.metadata if update.metadata is not None else current.metadata
            payload["description"] = join_description(description, metadata)
        if update.labels is not None or update.state is not None:
            labels = update.labels if update.labels is not None else current.labels
            state = update.state if update.state is not None else current.state
            payload["labels"] = self._label_names(labels, state)
            if state.category != current.state.category:
                if state.category == StateCategory.DONE:
                    payload["state_event"] = "close"
                elif current.state.category == StateCategory.DONE:
                    payload["state_event"] = "reopen"
        if update.assignees is not None:
            payload["assignee_ids"] = self._assignee_ids(update.assignees)
        if not payload:
            return current
        return self.normalize(self.client.update_issue(self.project_id, int(issue_id), payload))

    def _states(self) -> List[NormalizedState]:
        states = [self.normalize_state(OPENED), self.normalize_state(CLOSED)]
        for label in self.client.get_project_labels(self.project_id):
            name = _safe_attr(label, "name", "") or ""
            if _is_status_label(name):
                states.append(
                    self.normalize_state(_status_name(name), color=_safe_attr(label, "color"))
                )
        return states

    def _labels(self) -> List[NormalizedLabel]:
        return [
            NormalizedLabel(
                name=_safe_attr(label, "name"),
                color=_safe_attr(label, "color"),
                description=_safe_attr(label, "description"),
                metadata={"id": _safe_attr(label, "id")},
            )
            for label in self.client.get_project_labels(self.project_id)
            if not _is_status_label(_safe_attr(label, "name", "") or "")
        ]

    # -- provider port -------------------------------------------------

    async def get_issues(self) -> List[NormalizedIssue]:
        issues = await asyncio.to_thread(self.client.get_issues, self.project_id)
        return [self.normalize(i) for i in issues]

    async def get_issue(self, issue_id: str) -> NormalizedIssue:
        issue = await asyncio.to_thread(self.client.get_issue, self.project_id, int(issue_id))
        return self.normalize(issue)

    async def create_issue(self, draft: IssueDraft) -> NormalizedIssue:
        return await asyncio.to_thread(self._create, draft)

    async def update_issue(self, issue_id: str, update: IssueUpdate) -> NormalizedIssue:
        return await asyncio.to_thread(self._update, issue_id, update)

    async def delete_issue(self, issue_id: str) -> None:
        await asyncio.to_thread(self.client.close_issue, self.project_id, int(issue_id))

    async def get_labels(self) -> List[NormalizedLabel]:
        return await asyncio.to_thread(self._labels)

    async def get_states(self) -> List[NormalizedState]:
        return await asyncio.to_thread(self._states)
