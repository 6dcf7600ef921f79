"""GitLab API client wrapper"""
import gitlab
import logging
from typing import List, Dict, Any, Optional
import time

from reconciler.core.errors import (
    NotFoundError,
    RateLimitedError,
    SyncError,
    TransportError,
)

logger = logging.getLogger(__name__)


class GitLabClient:
    """Wrapper for GitLab API operations"""

    def __init__(self, url: str, access_token: str):
        """Initialize GitLab client"""
        self.url = url
        self.gl = gitlab.Gitlab(url, private_token=access_token)
        self.gl.auth()

    @staticmethod
    def _should_retry(exc: Exception) -> bool:
        """Retry predicate for transient server-side GitLab failures."""
        # 429 is deliberately excluded: the engine owns the rate-limit retry budget.
        rc = getattr(exc, "response_code", None)
        return rc in (500, 502, 503, 504)

    def _with_retries(self, fn, *, max_attempts: int = 3, base_delay_s: float = 0.5):
        """Run callable with small exponential backoff on transient errors."""
        attempt = 1
        while True:
            try:
                return fn()
            except Exception as e:
                if attempt >= max_attempts or not self._should_retry(e):
                    raise
                time.sleep(base_delay_s * (2 ** (attempt - 1)))
                attempt += 1

    @staticmethod
    def _translate(exc: Exception, operation: str) -> SyncError:
        """Map python-gitlab / transport failures onto the sync error taxonomy."""
        rc = getattr(exc, "response_code", None)
        message = f"{operation} failed: {exc}"
        if rc == 429:
            return RateLimitedError(message, operation=operation)
        if rc == 404:
            return NotFoundError(message, operation=operation)
        return TransportError(message, operation=operation)

    def _call(self, fn, operation: str):
        try:
            return self._with_retries(fn)
        except SyncError:
            raise
        except (gitlab.exceptions.GitlabError, OSError) as e:
            logger.error(f"GitLab call '{operation}' failed: {e}")
            raise self._translate(e, operation) from e

    @staticmethod
    def _normalize_issue_payload(issue_data: Dict[str, Any], *, for_update: bool) -> Dict[str, Any]:
        """Normalize payload fields for GitLab API quirks."""
        data = dict(issue_data)

        # GitLab API expects comma-separated string for `labels`. Some servers ignore empty lists.
        if "labels" in data:
            labels = data.get("labels")
            if labels is None or (isinstance(labels, list) and len(labels) == 0):
                if for_update:
                    data["labels"] = ""
                else:
                    data.pop("labels", None)
            elif isinstance(labels, list):
                data["labels"] = ",".join(labels)

        return data

    def get_project(self, project_id: str):
        """Get project by ID or path"""
        return self._call(lambda: self.gl.projects.get(project_id), f"get project {project_id}")

    def get_issues(self, project_id: str) -> List[Any]:
        """Get all issues (open and closed) from a project"""
        project = self.get_project(project_id)
        # GitLab defaults to state=opened; closed issues are needed to sync Done states.
        params = {
            "order_by": "updated_at",
            "sort": "desc",
            "state": "all",
            "per_page": 100,
        }
        return self._call(
            lambda: project.issues.list(get_all=True, **params),
            f"list issues of {project_id}",
        )

    def get_issue(self, project_id: str, issue_iid: int) -> Any:
        """Get a specific issue by IID"""
        project = self.get_project(project_id)
        return self._call(
            lambda: project.issues.get(issue_iid), f"get issue {issue_iid} of {project_id}"
        )

    def create_issue(self, project_id: str, issue_data: Dict[str, Any]) -> Any:
        """Create a new issue"""
        project = self.get_project(project_id)
        payload = self._normalize_issue_payload(issue_data, for_update=False)
        issue = self._call(
            lambda: project.issues.create(payload), f"create issue in {project_id}"
        )
        logger.info(f"Created issue #{issue.iid} in project {project_id}")
        return issue

    def update_issue(self, project_id: str, issue_iid: int, issue_data: Dict[str, Any]) -> Any:
        """Update an existing issue"""
        project = self.get_project(project_id)
        operation = f"update issue {issue_iid} of {project_id}"
        issue = self._call(lambda: project.issues.get(issue_iid), operation)
        payload = self._normalize_issue_payload(issue_data, for_update=True)
        for key, value in payload.items():
            setattr(issue, key, value)
        self._call(lambda: issue.save(), operation)
        logger.info(f"Updated issue #{issue_iid} in project {project_id}")
        return issue

    def close_issue(self, project_id: str, issue_iid: int) -> Any:
        """Close an issue (the sync never hard-deletes)"""
        return self.update_issue(project_id, issue_iid, {"state_event": "close"})

    def get_user_by_username(self, username: str) -> Optional[Any]:
        """Get user by username"""
        try:
            users = self._with_retries(lambda: self.gl.users.list(username=username))
            return users[0] if users else None
        except Exception as e:
            logger.error(f"Failed to get user {username}: {e}")
            return None

    def get_project_labels(self, project_id: str) -> List[Any]:
        """Get all labels for a project"""
        project = self.get_project(project_id)
        return self._call(
            lambda: project.labels.list(get_all=True, per_page=100),
            f"list labels of {project_id}",
        )

