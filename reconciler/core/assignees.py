"""Translate assignee identifiers between provider namespaces"""

import logging
from typing import Dict, Iterable, List, Mapping, Optional

logger = logging.getLogger(__name__)


class AssigneeMap:
    """Source identifier -> target identifier, with reverse lookup.

    Lookups are case-insensitive. Identifiers without a mapping pass through
    unchanged, so an empty map is the identity.
    """

    def __init__(self, mappings: Optional[Mapping[str, str]] = None):
        self._to_target: Dict[str, str] = {}
        self._to_source: Dict[str, str] = {}
        for source_id, target_id in (mappings or {}).items():
            self.add(source_id, target_id)

    def add(self, source_id: str, target_id: str):
        self._to_target[str(source_id).strip().lower()] = str(target_id)
        self._to_source[str(target_id).strip().lower()] = str(source_id)

    def __len__(self):
        return len(self._to_target)

    @staticmethod
    def _translate(ids: Iterable[str], table: Dict[str, str]) -> List[str]:
        out = []
        for ident in ids or []:
            mapped = table.get(str(ident).strip().lower())
            out.append(mapped if mapped is not None else ident)
        return out

    def to_target(self, source_ids: Iterable[str]) -> List[str]:
        return self._translate(source_ids, self._to_target)

    def to_source(self, target_ids: Iterable[str]) -> List[str]:
        return self._translate(target_ids, self._to_source)
