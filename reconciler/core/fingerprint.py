"""Canonical fingerprint of an issue's mutable fields"""

import hashlib
import json
from typing import Union

from reconciler.core.normalized import (
    IssueDraft,
    NormalizedIssue,
    assignee_keys,
    label_keys,
)


def fingerprint_payload(issue: Union[NormalizedIssue, IssueDraft]) -> dict:
    return {
        "title": issue.title,
        "description": issue.description or "",
        "state": issue.state.category.value,
        "labels": sorted(label_keys(issue.labels)),
        "assignees": sorted(assignee_keys(issue.assignees)),
    }


def compute_fingerprint(issue: Union[NormalizedIssue, IssueDraft]) -> str:
    """SHA-256 over title, description, state category, labels and assignees.

    This is the only fingerprint definition; the ledger stores it and every
    comparison recomputes it the same way.
    """
    data = json.dumps(fingerprint_payload(issue), sort_keys=True, separators=(",", ":"))
    return hashlib.sha256(data.encode("utf-8")).hexdigest()
