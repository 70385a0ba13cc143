"""
Mapping engine: tabular results to typed objects.

The column mapping is computed once per result and reused for every row, so
matching cost grows with the number of members, not members times rows.

Usage:
    >>> from data_access_hub.mapping import TabularResult, map_many
    >>> result = TabularResult.from_records([{"Id": 1, "Name": "A"}])
    >>> map_many(result, Customer)
    [Customer(id=1, name='A')]
"""

from typing import Any, Dict, List, Optional, Sequence, Type, TypeVar, Union

from data_access_hub.mapping.coercion import coerce, fallback_value
from data_access_hub.mapping.descriptors import (
    TypeDescriptor,
    TypeRegistry,
    default_registry,
)
from data_access_hub.mapping.matcher import ColumnMapping, match_columns
from data_access_hub.mapping.tabular import TabularResult
from data_access_hub.utils.logging import get_logger

logger = get_logger(__name__)

T = TypeVar("T")

Target = Union[Type[T], TypeDescriptor]


class MappingEngine:
    """Composes descriptor lookup, column matching and coercion."""

    def __init__(self, registry: Optional[TypeRegistry] = None):
        self.registry = registry or default_registry

    def _descriptor(self, target: Any) -> TypeDescriptor:
        if isinstance(target, TypeDescriptor):
            return target
        return self.registry.describe(target)

    def _build(
        self,
        descriptor: TypeDescriptor,
        mapping: ColumnMapping,
        positions: Dict[str, int],
        row: Sequence[Any],
    ) -> Any:
        values: Dict[str, Any] = {}
        fallbacks = 0
        for member in descriptor.members:
            column = mapping.column_for(member.name)
            if column is None:
                if member.has_default:
                    values[member.name] = member.default
                continue
            result = coerce(row[positions[column]], member)
            if result.fell_back:
                fallbacks += 1
            values[member.name] = result.value

        if descriptor.kind == "plain":
            obj = descriptor.target()
            for name, value in values.items():
                setattr(obj, name, value)
            return obj

        # Constructors require every member without its own default
        for member in descriptor.members:
            if member.name in values or member.has_type_default:
                continue
            values[member.name] = fallback_value(member)

        if descriptor.kind == "pydantic":
            return descriptor.target.model_construct(**values)
        return descriptor.target(**values)

    def map_many(self, result: TabularResult, target: Target) -> List[Any]:
        """Map every row of ``result`` to an instance of ``target``."""
        descriptor = self._descriptor(target)
        if not result.rows:
            return []
        mapping = match_columns(result.columns, descriptor)
        positions = result.column_index()
        objects = [
            self._build(descriptor, mapping, positions, row) for row in result.rows
        ]
        logger.debug(
            "mapping.result.mapped",
            target=descriptor.target.__qualname__,
            rows=len(objects),
            matched_members=len(mapping),
            unmatched_members=list(mapping.unmatched),
        )
        return objects

    def map_one(self, result: TabularResult, target: Target) -> Optional[Any]:
        """Map row zero of ``result``; ``None`` when the result has no rows."""
        if not result.rows:
            return None
        descriptor = self._descriptor(target)
        mapping = match_columns(result.columns, descriptor)
        return self._build(descriptor, mapping, result.column_index(), result.rows[0])


default_engine = MappingEngine()


def map_many(result: TabularResult, target: Target) -> List[Any]:
    return default_engine.map_many(result, target)


def map_one(result: TabularResult, target: Target) -> Optional[Any]:
    return default_engine.map_one(result, target)
