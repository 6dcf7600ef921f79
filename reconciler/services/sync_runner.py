"""Run the reconciliation engine from settings and record the outcome"""

import asyncio
import json
import logging
import threading
from typing import Any, Dict, Optional, Tuple

from sqlalchemy.orm import Session

from reconciler.config import Settings, settings, state_mapping_config, validate_sync_settings
from reconciler.core.assignees import AssigneeMap
from reconciler.core.results import IssueConflict, SyncDirection, SyncResult
from reconciler.models import AssigneeMapping, Conflict, SyncLog
from reconciler.models.base import create_session_factory
from reconciler.models.sync_log import SyncStatus
from reconciler.providers.base import Provider
from reconciler.providers.gitlab_provider import DEFAULT_GITLAB_STATE_MAPPING, GitLabProvider
from reconciler.services.gitlab_client import GitLabClient
from reconciler.services.ledger import SqlLedger
from reconciler.services.sync_service import ReconciliationEngine, Reviewer

logger = logging.getLogger(__name__)

# One run at a time per process, whether scheduled or triggered by hand.
_run_lock = threading.Lock()


class SyncInProgressError(RuntimeError):
    """Another reconciliation run holds the ledger"""


def sync_status(result: SyncResult) -> SyncStatus:
    """Collapse a run result into the status stored on its sync log"""
    if result.aborted and not result.has_changes:
        return SyncStatus.FAILED
    if result.errors:
        return SyncStatus.PARTIAL
    if result.conflicts:
        return SyncStatus.CONFLICT
    return SyncStatus.SUCCESS


class SyncRunner:
    """Builds providers, ledger and engine for one run, then logs the result"""

    def __init__(
        self,
        db: Session,
        config: Optional[Settings] = None,
        providers: Optional[Tuple[Provider, Provider]] = None,
    ):
        self.db = db
        self.config = config or settings
        self._providers = providers

    def _build_providers(self) -> Tuple[Provider, Provider]:
        if self._providers is not None:
            return self._providers
        cfg = self.config
        source = GitLabProvider(
            cfg.source_name,
            GitLabClient(cfg.source_gitlab_url, cfg.source_gitlab_token),
            cfg.source_project_id,
            state_mapping_config(cfg.source_state_mapping) or DEFAULT_GITLAB_STATE_MAPPING,
        )
        target = GitLabProvider(
            cfg.target_name,
            GitLabClient(cfg.target_gitlab_url, cfg.target_gitlab_token),
            cfg.target_project_id,
            state_mapping_config(cfg.target_state_mapping) or DEFAULT_GITLAB_STATE_MAPPING,
        )
        return source, target

    def _assignee_map(self) -> AssigneeMap:
        assignees = AssigneeMap()
        for row in self.db.query(AssigneeMapping).all():
            assignees.add(row.source_identifier, row.target_identifier)
        return assignees

    def build_engine(self, direction: SyncDirection, reviewer: Optional[Reviewer] = None) -> ReconciliationEngine:
        source, target = self._build_providers()
        return ReconciliationEngine(
            source,
            target,
            SqlLedger(create_session_factory(self.db.get_bind())),
            direction=direction,
            reviewer=reviewer,
            assignee_map=self._assignee_map(),
            retry_delay_seconds=self.config.rate_limit_retry_delay_seconds,
        )

    def _log_sync(
        self,
        status: SyncStatus,
        direction: SyncDirection,
        message: str,
        result: Optional[SyncResult] = None,
    ) -> SyncLog:
        """Log sync operation"""
        summary = result.summary() if result else {}
        log = SyncLog(
            status=status,
            direction=direction.value,
            source_to_target=summary.get("source_to_target", 0),
            target_to_source=summary.get("target_to_source", 0),
            conflicts=summary.get("conflicts", 0),
            errors=summary.get("errors", 0),
            skipped=summary.get("skipped", 0),
            message=message,
            details=json.dumps([str(e) for e in result.errors]) if result and result.errors else None,
        )
        self.db.add(log)
        self.db.commit()
        self.db.refresh(log)
        return log

    def _log_conflict(self, sync_log: SyncLog, conflict: IssueConflict):
        """Log a conflict for manual resolution"""
        rendered = [c.as_dict() for c in conflict.conflicting_fields]
        row = Conflict(
            sync_log_id=sync_log.id,
            source_issue_id=str(conflict.source_issue.id),
            target_issue_id=str(conflict.target_issue.id),
            fields=",".join(conflict.field_names),
            description=f"Both sides changed: {', '.join(conflict.field_names)}",
            source_data=json.dumps({c["field"]: c["source_value"] for c in rendered}),
            target_data=json.dumps({c["field"]: c["target_value"] for c in rendered}),
            last_sync_fingerprint=conflict.last_sync_fingerprint,
        )
        self.db.add(row)
        self.db.commit()

    def run(self, reviewer: Optional[Reviewer] = None) -> Dict[str, Any]:
        """Run one sync; configuration errors propagate, everything else is logged.

        Raises SyncInProgressError without touching the ledger when another
        run is already active.
        """
        if not _run_lock.acquire(blocking=False):
            logger.warning("Sync already in progress; not starting another run")
            raise SyncInProgressError("A sync run is already in progress")
        try:
            return self._run(reviewer)
        finally:
            _run_lock.release()

    def _run(self, reviewer: Optional[Reviewer]) -> Dict[str, Any]:
        if self._providers is None:
            direction = validate_sync_settings(self.config)
        else:
            direction = SyncDirection(self.config.sync_direction)

        try:
            engine = self.build_engine(direction, reviewer=reviewer)
            result = asyncio.run(engine.sync())
        except Exception as e:
            logger.error(f"Sync failed: {e}")
            self._log_sync(SyncStatus.FAILED, direction, f"Sync failed: {str(e)}")
            return {"status": SyncStatus.FAILED.value, "error": str(e)}

        status = sync_status(result)
        stats = result.summary()
        log = self._log_sync(status, direction, f"Sync completed: {stats}", result)
        for conflict in result.conflicts:
            self._log_conflict(log, conflict)

        return {"status": status.value, "stats": stats, "sync_log_id": log.id}
