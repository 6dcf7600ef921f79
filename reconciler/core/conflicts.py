"""Field-level diff between two normalized issues"""

from dataclasses import dataclass
from typing import Any, List

from reconciler.core.normalized import (
    NormalizedIssue,
    same_assignee_set,
    same_label_set,
)

COMPARED_FIELDS = ("title", "description", "state", "labels", "assignees")


@dataclass(frozen=True)
class FieldConflict:
    field: str
    source_value: Any
    target_value: Any

    def as_dict(self) -> dict:
        return {
            "field": self.field,
            "source_value": _render(self.source_value),
            "target_value": _render(self.target_value),
        }


def _render(value: Any) -> Any:
    """JSON-friendly rendering of a raw field value for reports."""
    if hasattr(value, "category") and hasattr(value, "name"):
        return {"category": value.category.value, "name": value.name}
    if isinstance(value, list):
        return [getattr(v, "name", v) for v in value]
    return value


def _field_differs(field: str, a: NormalizedIssue, b: NormalizedIssue) -> bool:
    if field == "state":
        return a.state.category != b.state.category
    if field == "labels":
        return not same_label_set(a.labels, b.labels)
    if field == "assignees":
        return not same_assignee_set(a.assignees, b.assignees)
    return getattr(a, field) != getattr(b, field)


def diff(a: NormalizedIssue, b: NormalizedIssue) -> List[FieldConflict]:
    """Return the fields whose values differ, in a fixed order, with both raw values."""
    return [
        FieldConflict(field=name, source_value=getattr(a, name), target_value=getattr(b, name))
        for name in COMPARED_FIELDS
        if _field_differs(name, a, b)
    ]


def conflicting_field_names(a: NormalizedIssue, b: NormalizedIssue) -> List[str]:
    return [c.field for c in diff(a, b)]
