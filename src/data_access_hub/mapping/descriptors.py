"""Type descriptors for result-to-object mapping.

A :class:`TypeDescriptor` lists the members a result row can populate on a
target type, together with any per-member configuration supplied when the
type was registered. Descriptors are built once per type, are immutable, and
live in a :class:`TypeRegistry` that is safe to read from many threads.

Supported targets are dataclasses, pydantic models, and plain classes with
class-level annotations (instantiated without arguments, then assigned).

Usage:
    >>> from data_access_hub.mapping import MemberConfig, mapped
    >>> @mapped(full_name=MemberConfig(column="customer_name"))
    ... @dataclass
    ... class Customer:
    ...     id: int
    ...     full_name: str
"""

import dataclasses
import datetime as dt
import enum
import threading
import types
import uuid
from dataclasses import dataclass
from decimal import Decimal
from typing import (
    Any,
    ClassVar,
    Dict,
    List,
    Mapping,
    Optional,
    Tuple,
    Union,
    get_args,
    get_origin,
    get_type_hints,
)

from pydantic import BaseModel

from data_access_hub.utils.logging import get_logger

logger = get_logger(__name__)


class _NoDefault:
    """Marker for 'no default configured' (``None`` is a legitimate default)."""

    _instance = None

    def __new__(cls):
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self) -> str:
        return "NO_DEFAULT"

    def __bool__(self) -> bool:
        return False


NO_DEFAULT: Any = _NoDefault()


class MappingConfigurationError(Exception):
    """Raised when a type cannot be described or its member configuration is invalid."""


@dataclass(frozen=True)
class CustomConversion:
    """Convert a cell to ``target`` before assignment, optionally using ``format``.

    ``format`` is a ``strptime`` pattern for datetime/date targets; for Decimal
    targets any non-empty format enables lenient parsing of currency symbols
    and thousands separators.
    """

    target: type
    format: Optional[str] = None


@dataclass(frozen=True)
class MemberConfig:
    """Declarative per-member mapping configuration supplied at registration."""

    column: Optional[str] = None
    optional: bool = False
    default: Any = NO_DEFAULT
    conversion: Optional[CustomConversion] = None
    ignore: bool = False


_TYPE_TAGS: Dict[Any, str] = {
    bool: "bool",
    int: "int",
    float: "float",
    Decimal: "decimal",
    str: "str",
    bytes: "bytes",
    dt.datetime: "datetime",
    dt.date: "date",
    dt.time: "time",
    uuid.UUID: "uuid",
}


def type_tag(value_type: Any) -> str:
    """Return a stable, serializable name for a member's declared type."""
    if value_type in _TYPE_TAGS:
        return _TYPE_TAGS[value_type]
    if isinstance(value_type, type) and issubclass(value_type, enum.Enum):
        return f"enum:{value_type.__name__}"
    if value_type is Any or value_type is object:
        return "any"
    return getattr(value_type, "__name__", None) or str(value_type)


@dataclass(frozen=True)
class MemberDescriptor:
    """One settable member of a described type."""

    name: str
    value_type: Any
    nullable: bool = False
    column: Optional[str] = None
    optional: bool = False
    default: Any = NO_DEFAULT
    conversion: Optional[CustomConversion] = None
    has_type_default: bool = False

    @property
    def has_default(self) -> bool:
        return self.default is not NO_DEFAULT

    @property
    def type_tag(self) -> str:
        return type_tag(self.value_type)

    def to_dict(self) -> Dict[str, Any]:
        """Serializable view of the member (types rendered as tags)."""
        return {
            "name": self.name,
            "type": self.type_tag,
            "nullable": self.nullable,
            "column": self.column,
            "optional": self.optional,
            "default": None if not self.has_default else repr(self.default),
            "conversion": (
                None
                if self.conversion is None
                else {
                    "target": type_tag(self.conversion.target),
                    "format": self.conversion.format,
                }
            ),
        }


@dataclass(frozen=True)
class TypeDescriptor:
    """Immutable description of a mapping target."""

    target: type
    kind: str
    members: Tuple[MemberDescriptor, ...]
    ignored: Tuple[str, ...] = ()

    def member(self, name: str) -> MemberDescriptor:
        for member in self.members:
            if member.name == name:
                return member
        raise KeyError(name)

    @property
    def member_names(self) -> List[str]:
        return [m.name for m in self.members]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "type": f"{self.target.__module__}.{self.target.__qualname__}",
            "kind": self.kind,
            "members": [m.to_dict() for m in self.members],
            "ignored": list(self.ignored),
        }


def unwrap_optional(annotation: Any) -> Tuple[Any, bool]:
    """Split ``Optional[X]`` / ``X | None`` into ``(X, True)``."""
    origin = get_origin(annotation)
    if origin is Union or origin is types.UnionType:
        args = [a for a in get_args(annotation) if a is not type(None)]
        nullable = len(args) != len(get_args(annotation))
        if len(args) == 1:
            return args[0], nullable
        return annotation, nullable
    return annotation, annotation is None or annotation is type(None)


def _resolve_hints(target: type) -> Dict[str, Any]:
    try:
        return get_type_hints(target)
    except (NameError, TypeError) as exc:
        # Unresolvable forward references: fall back to raw annotations
        logger.warning(
            "mapping.descriptor.unresolved_hints",
            target=target.__qualname__,
            error=str(exc),
        )
        annotations: Dict[str, Any] = {}
        for klass in reversed(target.__mro__):
            annotations.update(getattr(klass, "__annotations__", {}))
        return annotations


def _raw_members(target: type) -> Tuple[str, List[Tuple[str, Any, bool]]]:
    """Return the target kind and ``(name, annotation, has_type_default)`` triples."""
    if isinstance(target, type) and issubclass(target, BaseModel):
        return "pydantic", [
            (name, field.annotation, not field.is_required())
            for name, field in target.model_fields.items()
        ]

    hints = _resolve_hints(target)
    if dataclasses.is_dataclass(target):
        members = []
        for f in dataclasses.fields(target):
            if not f.init:
                continue
            has_default = (
                f.default is not dataclasses.MISSING
                or f.default_factory is not dataclasses.MISSING
            )
            members.append((f.name, hints.get(f.name, f.type), has_default))
        return "dataclass", members

    members = []
    for name, annotation in hints.items():
        if name.startswith("_") or get_origin(annotation) is ClassVar:
            continue
        members.append((name, annotation, hasattr(target, name)))
    return "plain", members


def build_descriptor(
    target: type, config: Optional[Mapping[str, MemberConfig]] = None
) -> TypeDescriptor:
    """Inspect ``target`` once and combine it with ``config``."""
    if not isinstance(target, type):
        raise MappingConfigurationError(f"Mapping target must be a class, got {target!r}")

    config = dict(config or {})
    kind, raw = _raw_members(target)
    known = {name for name, _, _ in raw}
    unknown = sorted(set(config).difference(known))
    if unknown:
        raise MappingConfigurationError(
            f"{target.__qualname__} has no members named {unknown}"
        )

    members: List[MemberDescriptor] = []
    ignored: List[str] = []
    for name, annotation, has_type_default in raw:
        if name.startswith("_"):
            continue
        member_config = config.get(name, MemberConfig())
        if member_config.ignore:
            ignored.append(name)
            continue
        value_type, nullable = unwrap_optional(annotation)
        members.append(
            MemberDescriptor(
                name=name,
                value_type=value_type,
                nullable=nullable,
                column=member_config.column,
                optional=member_config.optional,
                default=member_config.default,
                conversion=member_config.conversion,
                has_type_default=has_type_default,
            )
        )

    return TypeDescriptor(
        target=target, kind=kind, members=tuple(members), ignored=tuple(ignored)
    )


class TypeRegistry:
    """Read-mostly cache of type descriptors keyed by type identity."""

    def __init__(self) -> None:
        self._descriptors: Dict[type, TypeDescriptor] = {}
        self._lock = threading.Lock()

    def register(
        self, target: type, members: Optional[Mapping[str, MemberConfig]] = None
    ) -> TypeDescriptor:
        """Build and store the descriptor for ``target`` with explicit member config.

        Raises:
            MappingConfigurationError: If ``target`` already has a descriptor
        """
        with self._lock:
            if target in self._descriptors:
                raise MappingConfigurationError(
                    f"{target.__qualname__} is already registered; "
                    "register types before they are first mapped"
                )
            descriptor = build_descriptor(target, members)
            self._descriptors[target] = descriptor
        logger.debug(
            "mapping.descriptor.registered",
            target=target.__qualname__,
            members=len(descriptor.members),
            ignored=list(descriptor.ignored),
        )
        return descriptor

    def describe(self, target: type) -> TypeDescriptor:
        """Return the descriptor for ``target``, building it on first use."""
        descriptor = self._descriptors.get(target)
        if descriptor is not None:
            return descriptor
        with self._lock:
            descriptor = self._descriptors.get(target)
            if descriptor is None:
                descriptor = build_descriptor(target)
                self._descriptors[target] = descriptor
        return descriptor

    def is_registered(self, target: type) -> bool:
        return target in self._descriptors

    def clear(self) -> None:
        with self._lock:
            self._descriptors.clear()


default_registry = TypeRegistry()


def register(
    target: type, members: Optional[Mapping[str, MemberConfig]] = None
) -> TypeDescriptor:
    """Register ``target`` in the default registry."""
    return default_registry.register(target, members)


def describe(target: type) -> TypeDescriptor:
    """Describe ``target`` using the default registry."""
    return default_registry.describe(target)


def mapped(**members: MemberConfig):
    """Class decorator registering the class with per-member configuration."""

    def decorator(cls: type) -> type:
        default_registry.register(cls, members)
        return cls

    return decorator
