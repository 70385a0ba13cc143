"""
Column matching between a result's column names and a type descriptor.

Resolution runs in passes so that stronger evidence always wins over weaker
evidence, and a column claimed by one member is never handed to another:

1. Explicit column overrides (case-insensitive).
2. Exact member name (case-insensitive).
3. Heuristics, per member in declaration order, over the unclaimed columns:
   identifier-prefix stripping, substring containment, then word-boundary
   underscore expansion.

Members left without a column stay unset for that result.
"""

import re
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence, Tuple

from data_access_hub.mapping.descriptors import MemberDescriptor, TypeDescriptor
from data_access_hub.utils.logging import get_logger

logger = get_logger(__name__)

# Checked in order; "id" strips "IdCustomer" and "ID_Customer" alike
ID_PREFIXES = ("id", "id_")

_WORD_BOUNDARY = re.compile(r"(?<=[a-z0-9])(?=[A-Z])|(?<=[A-Z])(?=[A-Z][a-z])")


@dataclass(frozen=True)
class ColumnMapping:
    """Member-name to column-name assignments for one result shape."""

    assignments: Dict[str, str] = field(default_factory=dict)
    unmatched: Tuple[str, ...] = ()

    def column_for(self, member: str) -> Optional[str]:
        return self.assignments.get(member)

    def __contains__(self, member: str) -> bool:
        return member in self.assignments

    def __len__(self) -> int:
        return len(self.assignments)


def underscore_words(name: str) -> str:
    """Lower-case ``name`` with ``_`` inserted at capitalization boundaries.

    >>> underscore_words("CustomerID")
    'customer_id'
    """
    return _WORD_BOUNDARY.sub("_", name).lower()


def _prefix_match(name: str, columns: Sequence[str]) -> Optional[str]:
    lowered = name.lower()
    for prefix in ID_PREFIXES:
        if not lowered.startswith(prefix):
            continue
        suffix = lowered[len(prefix):]
        if not suffix:
            continue
        for column in columns:
            if column.lower().endswith(suffix):
                return column
    return None


def _containment_match(name: str, columns: Sequence[str]) -> Optional[str]:
    lowered = name.lower()
    for column in columns:
        candidate = column.lower()
        if candidate and (candidate in lowered or lowered in candidate):
            return column
    return None


def _underscore_match(name: str, columns: Sequence[str]) -> Optional[str]:
    expanded = underscore_words(name)
    for column in columns:
        if underscore_words(column) == expanded:
            return column
    return None


def find_best_column(name: str, columns: Sequence[str]) -> Optional[str]:
    """Apply the heuristic passes to one member name over free ``columns``."""
    for strategy in (_prefix_match, _containment_match, _underscore_match):
        column = strategy(name, columns)
        if column is not None:
            return column
    return None


def match_columns(columns: Sequence[str], descriptor: TypeDescriptor) -> ColumnMapping:
    """Compute the member-to-column mapping for ``descriptor`` over ``columns``.

    Deterministic for a given ``(columns, descriptor)`` pair and never assigns
    one column to two members.
    """
    available: List[str] = [c for c in columns if isinstance(c, str)]
    by_lower: Dict[str, str] = {}
    for column in available:
        by_lower.setdefault(column.lower(), column)

    assignments: Dict[str, str] = {}
    claimed = set()
    resolved_by_override = set()

    def claim(member: MemberDescriptor, column: str) -> None:
        assignments[member.name] = column
        claimed.add(column)

    for member in descriptor.members:
        if member.column is None:
            continue
        resolved_by_override.add(member.name)
        column = by_lower.get(member.column.lower())
        if column is not None and column not in claimed:
            claim(member, column)
        elif column is not None:
            logger.warning(
                "mapping.column.already_claimed",
                target=descriptor.target.__qualname__,
                member=member.name,
                column=member.column,
            )
        elif not member.optional:
            logger.warning(
                "mapping.column.missing",
                target=descriptor.target.__qualname__,
                member=member.name,
                column=member.column,
            )

    pending = [m for m in descriptor.members if m.name not in resolved_by_override]

    for member in pending:
        column = by_lower.get(member.name.lower())
        if column is not None and column not in claimed:
            claim(member, column)

    for member in pending:
        if member.name in assignments:
            continue
        free = [c for c in available if c not in claimed]
        column = find_best_column(member.name, free)
        if column is not None:
            claim(member, column)

    unmatched = tuple(m.name for m in descriptor.members if m.name not in assignments)
    if unmatched:
        logger.debug(
            "mapping.column.unmatched",
            target=descriptor.target.__qualname__,
            members=list(unmatched),
        )
    return ColumnMapping(assignments=assignments, unmatched=unmatched)
