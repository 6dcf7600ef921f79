"""Issue reconciliation engine"""

import asyncio
import inspect
import logging
from dataclasses import replace
from datetime import datetime, timezone
from typing import Awaitable, Callable, Dict, List, Optional, Union

from reconciler.core.assignees import AssigneeMap
from reconciler.core.conflicts import FieldConflict, diff
from reconciler.core.errors import FatalSyncError, RateLimitedError, SyncError
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
    has_label,
)
from reconciler.core.results import (
    ChangeKind,
    IssueChange,
    IssueConflict,
    ProposedChange,
    SyncDirection,
    SyncResult,
)
from reconciler.core.state_mapping import choose_target_labels, choose_target_state
from reconciler.providers.base import Provider
from reconciler.services.ledger import Ledger, LedgerEntry

logger = logging.getLogger(__name__)

# One extra attempt after a rate-limit signal, never more.
MAX_RATE_LIMIT_RETRIES = 1
DEFAULT_RETRY_DELAY_SECONDS = 1.0

CANCELLED = "Cancelled"

Reviewer = Callable[[ProposedChange], Union[bool, Awaitable[bool]]]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ReconciliationEngine:
    """Keeps one source and one target provider consistent.

    Fetches both sides concurrently, matches them, then applies changes one
    pair at a time: source pairs first, then orphaned and target-only issues.
    Conflicts are reported, never merged.
    """

    def __init__(
        self,
        source: Provider,
        target: Provider,
        ledger: Ledger,
        direction: SyncDirection = SyncDirection.BOTH,
        reviewer: Optional[Reviewer] = None,
        assignee_map: Optional[AssigneeMap] = None,
        retry_delay_seconds: float = DEFAULT_RETRY_DELAY_SECONDS,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        clock: Callable[[], datetime] = _utcnow,
    ):
        self.source = source
        self.target = target
        self.ledger = ledger
        self.direction = SyncDirection(direction)
        self.reviewer = reviewer
        self.assignee_map = assignee_map or AssigneeMap()
        self.retry_delay_seconds = retry_delay_seconds
        self._sleep = sleep
        self._clock = clock
        self._states: Dict[str, List[NormalizedState]] = {}
        self._labels: Dict[str, List[NormalizedLabel]] = {}

    @property
    def source_name(self) -> str:
        return self.source.get_name()

    @property
    def target_name(self) -> str:
        return self.target.get_name()

    # ------------------------------------------------------------------
    # I/O boundary
    # ------------------------------------------------------------------

    async def _call(self, provider: Provider, operation: str, fn, *args, issue_id=None):
        """Run a provider call, retrying exactly once on a rate-limit signal."""
        attempt = 0
        while True:
            try:
                return await fn(*args)
            except RateLimitedError as e:
                e.with_context(provider=provider.get_name(), operation=operation, issue_id=issue_id)
                if attempt >= MAX_RATE_LIMIT_RETRIES:
                    raise
                attempt += 1
                logger.warning(
                    f"Rate limited during {operation} on '{provider.get_name()}'; "
                    f"retrying in {self.retry_delay_seconds}s"
                )
                await self._sleep(self.retry_delay_seconds)
            except SyncError as e:
                raise e.with_context(
                    provider=provider.get_name(), operation=operation, issue_id=issue_id
                )

    @staticmethod
    def _as_sync_error(exc: Exception, provider: Optional[str], operation: str, issue_id=None) -> SyncError:
        if isinstance(exc, SyncError):
            return exc.with_context(provider=provider, operation=operation, issue_id=issue_id)
        wrapped = SyncError(
            f"Unexpected error: {exc}", provider=provider, operation=operation, issue_id=issue_id
        )
        wrapped.__cause__ = exc
        return wrapped

    async def _states_of(self, provider: Provider) -> List[NormalizedState]:
        name = provider.get_name()
        if name not in self._states:
            self._states[name] = list(await self._call(provider, "get_states", provider.get_states))
        return self._states[name]

    async def _labels_of(self, provider: Provider) -> List[NormalizedLabel]:
        name = provider.get_name()
        if name not in self._labels:
            self._labels[name] = list(await self._call(provider, "get_labels", provider.get_labels))
        return self._labels[name]

    # ------------------------------------------------------------------
    # Views, payloads, bookkeeping
    # ------------------------------------------------------------------

    def _to_target_view(self, issue: NormalizedIssue) -> NormalizedIssue:
        return replace(issue, assignees=self.assignee_map.to_target(issue.assignees))

    def _to_source_view(self, issue: NormalizedIssue) -> NormalizedIssue:
        return replace(issue, assignees=self.assignee_map.to_source(issue.assignees))

    def _conflicting_fields(self, source: NormalizedIssue, target: NormalizedIssue) -> List[FieldConflict]:
        """Diff in the target namespace, reported with both sides' raw values."""
        return [
            FieldConflict(c.field, getattr(source, c.field), getattr(target, c.field))
            for c in diff(self._to_target_view(source), target)
        ]

    async def _update_payload(
        self,
        winner: NormalizedIssue,
        loser: NormalizedIssue,
        receiver: Provider,
        metadata: Optional[IssueMetadata] = None,
    ) -> IssueUpdate:
        states = await self._states_of(receiver)
        labels = await self._labels_of(receiver)
        return IssueUpdate(
            title=winner.title,
            description=winner.description,
            state=choose_target_state(winner.state, loser.state, states),
            labels=choose_target_labels(winner.labels, labels),
            assignees=list(winner.assignees),
            metadata=metadata,
        )

    async def _draft(self, issue: NormalizedIssue, receiver: Provider, metadata: IssueMetadata) -> IssueDraft:
        states = await self._states_of(receiver)
        labels = await self._labels_of(receiver)
        return IssueDraft(
            title=issue.title,
            description=issue.description,
            state=choose_target_state(issue.state, None, states),
            labels=choose_target_labels(issue.labels, labels),
            assignees=list(issue.assignees),
            metadata=metadata,
        )

    async def _approve(self, proposed: ProposedChange, result: SyncResult) -> bool:
        if self.reviewer is None:
            return True
        decision = self.reviewer(proposed)
        if inspect.isawaitable(decision):
            decision = await decision
        if not decision:
            logger.info(
                f"Change rejected by reviewer: {proposed.kind.value} "
                f"{proposed.from_provider}#{proposed.issue.id} -> {proposed.to_provider}"
            )
            result.skipped.append(proposed)
            return False
        return True

    def _record_link(self, source_id: str, target_id: str, fingerprint: str, derived: bool = False):
        self.ledger.upsert(
            LedgerEntry(
                tracking_key=str(source_id),
                source_id=str(source_id),
                target_id=str(target_id),
                last_fingerprint=fingerprint,
                is_derived_item=derived,
            )
        )

    def _report_conflict(
        self,
        source: NormalizedIssue,
        target: NormalizedIssue,
        fields: List[FieldConflict],
        result: SyncResult,
    ):
        entry = self.ledger.lookup(str(source.id))
        result.conflicts.append(
            IssueConflict(
                source_issue=source,
                target_issue=target,
                last_sync_fingerprint=entry.last_fingerprint if entry else None,
                conflicting_fields=fields,
            )
        )
        logger.warning(
            f"Conflict between {self.source_name}#{source.id} and {self.target_name}#{target.id}: "
            f"{', '.join(f.field for f in fields)}"
        )

    def _link_for_target(self, source: NormalizedIssue, target: NormalizedIssue) -> Optional[IssueMetadata]:
        """Link metadata to write on the target, or None when it is already correct."""
        meta = target.metadata
        if meta.external_id == str(source.id) and meta.provider == self.source_name:
            return None
        return meta.linked_to(source.id, self.source_name)

    # ------------------------------------------------------------------
    # Per-classification handlers
    # ------------------------------------------------------------------

    async def _push_to_target(
        self,
        source: NormalizedIssue,
        target: NormalizedIssue,
        kind: ChangeKind,
        result: SyncResult,
        link: Optional[IssueMetadata],
    ):
        view = self._to_target_view(source)
        update = await self._update_payload(view, target, self.target, metadata=link)
        proposed = ProposedChange(kind, self.source_name, self.target_name, source, target, update)
        if not await self._approve(proposed, result):
            return
        await self._call(
            self.target, "update_issue", self.target.update_issue, target.id, update, issue_id=target.id
        )
        result.source_to_target_changes.append(IssueChange(self.source_name, source, kind))
        self._record_link(source.id, target.id, compute_fingerprint(source))
        logger.info(f"Updated {self.target_name}#{target.id} from {self.source_name}#{source.id}")

    async def _pull_to_source(self, source: NormalizedIssue, target: NormalizedIssue, result: SyncResult):
        view = self._to_source_view(target)
        update = await self._update_payload(view, source, self.source)
        proposed = ProposedChange(
            ChangeKind.UPDATE, self.target_name, self.source_name, target, source, update
        )
        if not await self._approve(proposed, result):
            return
        await self._call(
            self.source, "update_issue", self.source.update_issue, source.id, update, issue_id=source.id
        )
        result.target_to_source_changes.append(IssueChange(self.target_name, target, ChangeKind.UPDATE))
        self._record_link(source.id, target.id, compute_fingerprint(view))
        logger.info(f"Updated {self.source_name}#{source.id} from {self.target_name}#{target.id}")

    async def _create_in_target(self, source: NormalizedIssue, result: SyncResult):
        if not self.direction.allows_source_to_target:
            return
        link = IssueMetadata().linked_to(source.id, self.source_name)
        draft = await self._draft(self._to_target_view(source), self.target, link)
        proposed = ProposedChange(ChangeKind.CREATE, self.source_name, self.target_name, source, None, draft)
        if not await self._approve(proposed, result):
            return
        created = await self._call(
            self.target, "create_issue", self.target.create_issue, draft, issue_id=source.id
        )
        result.source_to_target_changes.append(IssueChange(self.source_name, source, ChangeKind.CREATE))
        self._record_link(source.id, created.id, compute_fingerprint(source))
        logger.info(f"Created {self.target_name}#{created.id} for {self.source_name}#{source.id}")

    def _unchanged_since_last_sync(self, source: NormalizedIssue, target: NormalizedIssue) -> bool:
        """Both sides still carry the fingerprint the ledger stored for this pair."""
        entry = self.ledger.lookup(str(source.id))
        if entry is None or entry.target_id != str(target.id) or not entry.last_fingerprint:
            return False
        return (
            compute_fingerprint(source) == entry.last_fingerprint
            and compute_fingerprint(self._to_source_view(target)) == entry.last_fingerprint
        )

    async def _handle_linked(self, pair: IssuePair, result: SyncResult):
        source, target = pair.source, pair.target

        if pair.kind == MatchKind.LINKED_NEEDS_BACKFILL:
            if self.direction.allows_source_to_target:
                await self._push_to_target(
                    source, target, ChangeKind.LINK, result, self._link_for_target(source, target)
                )
            return

        if self._unchanged_since_last_sync(source, target):
            logger.debug(f"{self.source_name}#{source.id} unchanged since last sync")
            return

        fields = self._conflicting_fields(source, target)
        if not fields:
            logger.debug(f"{self.source_name}#{source.id} and {self.target_name}#{target.id} in sync")
            return

        if pair.kind == MatchKind.SOURCE_AHEAD:
            if self.direction.allows_source_to_target:
                await self._push_to_target(
                    source, target, ChangeKind.UPDATE, result, self._link_for_target(source, target)
                )
            else:
                logger.debug(
                    f"Not pushing {self.source_name}#{source.id}: direction is {self.direction.value}"
                )
        elif pair.kind == MatchKind.TARGET_AHEAD and self.direction.allows_target_to_source:
            await self._pull_to_source(source, target, result)
        else:
            # Tied timestamps, or a newer target that may not be written back.
            self._report_conflict(source, target, fields, result)

    async def _handle_orphan(self, pair: IssuePair, result: SyncResult):
        """Source issue is gone: mark the target Done + Cancelled, keep its ledger entry."""
        target = pair.target
        if not self.direction.allows_source_to_target:
            return
        if target.state.category == StateCategory.DONE and has_label(target, CANCELLED):
            return

        states = await self._states_of(self.target)
        labels = await self._labels_of(self.target)
        desired = NormalizedState(category=StateCategory.DONE, name=CANCELLED)
        update = IssueUpdate(
            state=choose_target_state(desired, target.state, states),
            labels=choose_target_labels(list(target.labels) + [NormalizedLabel(name=CANCELLED)], labels),
        )
        proposed = ProposedChange(ChangeKind.CANCEL, self.source_name, self.target_name, target, None, update)
        if not await self._approve(proposed, result):
            return
        updated = await self._call(
            self.target, "update_issue", self.target.update_issue, target.id, update, issue_id=target.id
        )
        result.source_to_target_changes.append(IssueChange(self.source_name, target, ChangeKind.CANCEL))
        source_id = str(target.external_id)
        existing = self.ledger.lookup(source_id)
        self._record_link(
            source_id,
            existing.target_id if existing else target.id,
            compute_fingerprint(self._to_source_view(updated)),
            derived=existing.is_derived_item if existing else False,
        )
        logger.info(f"Cancelled {self.target_name}#{target.id}: {self.source_name}#{source_id} no longer exists")

    async def _handle_target_only(self, pair: IssuePair, result: SyncResult):
        target = pair.target
        if not self.direction.allows_target_to_source:
            return
        view = self._to_source_view(target)
        link = IssueMetadata().linked_to(target.id, self.target_name)
        draft = await self._draft(view, self.source, link)
        proposed = ProposedChange(ChangeKind.CREATE, self.target_name, self.source_name, target, None, draft)
        if not await self._approve(proposed, result):
            return
        created = await self._call(
            self.source, "create_issue", self.source.create_issue, draft, issue_id=target.id
        )
        result.target_to_source_changes.append(IssueChange(self.target_name, target, ChangeKind.CREATE))
        # Record before the backfill so a failed backfill is re-linked, not re-created, next run.
        self._record_link(created.id, target.id, compute_fingerprint(view))
        logger.info(f"Created {self.source_name}#{created.id} for {self.target_name}#{target.id}")

        backfill = IssueUpdate(metadata=target.metadata.linked_to(created.id, self.source_name))
        await self._call(
            self.target, "update_issue", self.target.update_issue, target.id, backfill, issue_id=target.id
        )

    async def _handle(self, pair: IssuePair, result: SyncResult):
        if pair.kind == MatchKind.NEW:
            await self._create_in_target(pair.source, result)
        elif pair.kind == MatchKind.ORPHANED_TARGET:
            await self._handle_orphan(pair, result)
        elif pair.kind == MatchKind.TARGET_ONLY:
            await self._handle_target_only(pair, result)
        else:
            await self._handle_linked(pair, result)

    # ------------------------------------------------------------------
    # Run
    # ------------------------------------------------------------------

    def _relink_from_ledger(self, plan: MatchPlan):
        """Re-pair NEW sources with unlinked targets the ledger already knows about."""
        unlinked = {t.target.id: t for t in plan.target_only}
        for pair in plan.pairs:
            if pair.kind != MatchKind.NEW:
                continue
            entry = self.ledger.lookup(str(pair.source.id))
            if entry is None or entry.target_id not in unlinked:
                continue
            target_pair = unlinked.pop(entry.target_id)
            plan.target_only.remove(target_pair)
            pair.kind = MatchKind.LINKED_NEEDS_BACKFILL
            pair.target = target_pair.target
            logger.info(
                f"Ledger links {self.source_name}#{pair.source.id} to unlinked "
                f"{self.target_name}#{entry.target_id}; backfilling"
            )

    async def _fetch(self, provider: Provider) -> List[NormalizedIssue]:
        return list(await self._call(provider, "get_issues", provider.get_issues))

    async def _process(self, pair: IssuePair, result: SyncResult) -> bool:
        """Handle one unit of work; returns False when the run must stop."""
        issue = pair.source or pair.target
        try:
            await self._handle(pair, result)
        except FatalSyncError as e:
            logger.error(f"Fatal error while processing issue {issue.id}: {e}")
            result.errors.append(e.with_context(issue_id=issue.id))
            result.aborted = True
            return False
        except Exception as e:
            err = self._as_sync_error(e, None, pair.kind.value, issue_id=issue.id)
            logger.error(f"Failed to sync issue {issue.id} ({pair.kind.value}): {err}")
            result.errors.append(err)
        return True

    async def sync(self) -> SyncResult:
        """Run one reconciliation pass and return what happened"""
        result = SyncResult()
        self._states.clear()
        self._labels.clear()
        logger.info(
            f"Starting sync: {self.source_name} <-> {self.target_name} ({self.direction.value})"
        )

        fetched = await asyncio.gather(
            self._fetch(self.source), self._fetch(self.target), return_exceptions=True
        )
        for provider, outcome in zip((self.source, self.target), fetched):
            if isinstance(outcome, BaseException):
                if not isinstance(outcome, Exception):
                    raise outcome
                err = self._as_sync_error(outcome, provider.get_name(), "get_issues")
                logger.error(f"Failed to fetch issues from '{provider.get_name()}': {err}")
                result.errors.append(err)
        if result.errors:
            result.aborted = True
            return result

        source_issues, target_issues = fetched
        plan = match(source_issues, target_issues, source_provider=self.source_name)
        self._relink_from_ledger(plan)

        for pair in plan.pairs + plan.orphans + plan.target_only:
            if not await self._process(pair, result):
                break

        if not result.aborted:
            self.ledger.set_last_sync(self._clock())

        logger.info(f"Sync completed: {result.summary()}")
        return result
