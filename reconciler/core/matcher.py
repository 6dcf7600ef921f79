"""Link source issues to target issues and classify each pair"""

import enum
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Dict, List, Optional, Sequence

from reconciler.core.conflicts import FieldConflict, diff
from reconciler.core.normalized import NormalizedIssue

logger = logging.getLogger(__name__)

_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


class MatchKind(str, enum.Enum):
    """How a source/target pair relates"""

    NEW = "new"
    LINKED_NEEDS_BACKFILL = "linked_needs_backfill"
    SOURCE_AHEAD = "source_ahead"
    TARGET_AHEAD = "target_ahead"
    TIED = "tied"
    ORPHANED_TARGET = "orphaned_target"
    TARGET_ONLY = "target_only"


@dataclass
class IssuePair:
    kind: MatchKind
    source: Optional[NormalizedIssue]
    target: Optional[NormalizedIssue]
    conflicting_fields: List[FieldConflict] = field(default_factory=list)


@dataclass
class MatchPlan:
    """Classification of every fetched issue.

    `pairs` holds exactly one entry per source issue, in source fetch order.
    `orphans` are linked targets whose source no longer exists, `target_only`
    are unlinked targets nothing matched.
    """

    pairs: List[IssuePair] = field(default_factory=list)
    orphans: List[IssuePair] = field(default_factory=list)
    target_only: List[IssuePair] = field(default_factory=list)

    def by_kind(self, kind: MatchKind) -> List[IssuePair]:
        return [p for p in self.pairs + self.orphans + self.target_only if p.kind == kind]


def _links_to_provider(target: NormalizedIssue, source_provider: Optional[str]) -> bool:
    provider = target.metadata.provider
    if not provider or not source_provider:
        return True
    return provider == source_provider


def _timestamp(issue: NormalizedIssue) -> datetime:
    return issue.updated_at or _EPOCH


def classify_linked(source: NormalizedIssue, target: NormalizedIssue) -> IssuePair:
    """Classify an already-linked pair by `updated_at` precedence."""
    source_ts = _timestamp(source)
    target_ts = _timestamp(target)
    if source_ts > target_ts:
        return IssuePair(MatchKind.SOURCE_AHEAD, source, target)
    if target_ts > source_ts:
        return IssuePair(MatchKind.TARGET_AHEAD, source, target)
    return IssuePair(MatchKind.TIED, source, target, conflicting_fields=diff(source, target))


def _index_linked_targets(
    target_issues: Sequence[NormalizedIssue], source_provider: Optional[str]
) -> Dict[str, NormalizedIssue]:
    linked: Dict[str, NormalizedIssue] = {}
    for target in target_issues:
        if not target.is_linked:
            continue
        if not _links_to_provider(target, source_provider):
            logger.debug(
                f"Ignoring target issue {target.id}: linked to provider "
                f"'{target.metadata.provider}'"
            )
            continue
        external_id = str(target.external_id)
        if external_id in linked:
            logger.warning(
                f"Target issues {linked[external_id].id} and {target.id} both link source "
                f"issue {external_id}; keeping {linked[external_id].id}"
            )
            continue
        linked[external_id] = target
    return linked


def match(
    source_issues: Sequence[NormalizedIssue],
    target_issues: Sequence[NormalizedIssue],
    source_provider: Optional[str] = None,
) -> MatchPlan:
    """Pair every source issue with at most one target issue.

    Link metadata wins; otherwise an unlinked target with identical title and
    description is adopted. When several unlinked targets qualify the first
    one in target fetch order is taken and the ambiguity is logged.
    """
    plan = MatchPlan()
    source_ids = {str(s.id) for s in source_issues}
    linked = _index_linked_targets(target_issues, source_provider)
    unlinked = [t for t in target_issues if not t.is_linked]
    claimed = set()

    for source in source_issues:
        target = linked.get(str(source.id))
        if target is not None:
            plan.pairs.append(classify_linked(source, target))
            continue

        candidates = [
            t
            for t in unlinked
            if t.id not in claimed
            and t.title == source.title
            and t.description == source.description
        ]
        if not candidates:
            plan.pairs.append(IssuePair(MatchKind.NEW, source, None))
            continue

        if len(candidates) > 1:
            logger.warning(
                f"Ambiguous content match for source issue {source.id}: "
                f"{len(candidates)} target candidates, using {candidates[0].id}"
            )
        chosen = candidates[0]
        claimed.add(chosen.id)
        plan.pairs.append(IssuePair(MatchKind.LINKED_NEEDS_BACKFILL, source, chosen))

    for external_id, target in linked.items():
        if external_id not in source_ids:
            plan.orphans.append(IssuePair(MatchKind.ORPHANED_TARGET, None, target))

    for target in unlinked:
        if target.id not in claimed:
            plan.target_only.append(IssuePair(MatchKind.TARGET_ONLY, None, target))

    return plan
