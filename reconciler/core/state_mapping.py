"""Fold provider-specific state names into canonical categories"""

from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any, Dict, Iterable, List, Mapping, Optional

from reconciler.core.normalized import (
    NormalizedLabel,
    NormalizedState,
    StateCategory,
    label_key,
)


@dataclass(frozen=True)
class StateMappingConfig:
    """Per-provider state mapping, built once at startup.

    Keys are stored lowercased so lookups only need to lowercase the probe.
    """

    state_mapping: Mapping[str, StateCategory] = field(default_factory=dict)
    default_category: StateCategory = StateCategory.BACKLOG

    def __post_init__(self):
        normalized = {
            str(name).strip().lower(): StateCategory(category)
            for name, category in dict(self.state_mapping).items()
        }
        object.__setattr__(self, "state_mapping", MappingProxyType(normalized))
        object.__setattr__(self, "default_category", StateCategory(self.default_category))

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "StateMappingConfig":
        """Build from a plain mapping such as a parsed settings value."""
        return cls(
            state_mapping=data.get("state_mapping") or {},
            default_category=data.get("default_category") or StateCategory.BACKLOG,
        )


def category_of(name: Optional[str], config: StateMappingConfig) -> StateCategory:
    """Return the category for `name`; unmapped names degrade to the default."""
    key = (name or "").strip().lower()
    return config.state_mapping.get(key, config.default_category)


def normalize_state(
    name: str,
    config: StateMappingConfig,
    color: Optional[str] = None,
    metadata: Optional[Dict[str, Any]] = None,
) -> NormalizedState:
    return NormalizedState(
        category=category_of(name, config),
        name=name,
        color=color,
        metadata=dict(metadata or {}),
    )


def choose_target_state(
    desired: NormalizedState,
    current: Optional[NormalizedState],
    available: Iterable[NormalizedState],
) -> NormalizedState:
    """Pick the state to write on the receiving side.

    A current state already in the desired category is kept as-is, even if its
    name differs, so equivalent states never flap between runs.
    """
    if current is not None and current.category == desired.category:
        return current

    in_category = [s for s in available or [] if s.category == desired.category]
    for state in in_category:
        if state.name.strip().lower() == desired.name.strip().lower():
            return state
    if in_category:
        return in_category[0]
    return NormalizedState(category=desired.category, name=desired.name, color=desired.color)


def choose_target_labels(
    desired: Iterable[NormalizedLabel], available: Iterable[NormalizedLabel]
) -> List[NormalizedLabel]:
    """Project desired labels onto the receiving side's existing label objects."""
    by_key = {}
    for label in available or []:
        by_key.setdefault(label.key, label)

    chosen: List[NormalizedLabel] = []
    seen = set()
    for label in desired or []:
        key = label_key(label.name)
        if not key or key in seen:
            continue
        seen.add(key)
        chosen.append(by_key.get(key, label))
    return chosen
