"""
Result-to-object mapping.

Turns tabular query results into dataclasses, pydantic models or plain
classes without per-type mapping code. Column names are matched to members
case-insensitively with heuristic fallbacks, and cell values are coerced to
the declared member types.
"""

from .coercion import CoercionResult, coerce
from .descriptors import (
    NO_DEFAULT,
    CustomConversion,
    MappingConfigurationError,
    MemberConfig,
    MemberDescriptor,
    TypeDescriptor,
    TypeRegistry,
    default_registry,
    describe,
    mapped,
    register,
)
from .engine import MappingEngine, map_many, map_one
from .matcher import ColumnMapping, match_columns
from .tabular import TabularResult

__all__ = [
    "NO_DEFAULT",
    "CoercionResult",
    "ColumnMapping",
    "CustomConversion",
    "MappingConfigurationError",
    "MappingEngine",
    "MemberConfig",
    "MemberDescriptor",
    "TabularResult",
    "TypeDescriptor",
    "TypeRegistry",
    "coerce",
    "default_registry",
    "describe",
    "map_many",
    "map_one",
    "mapped",
    "match_columns",
    "register",
]
