"""
Cell value coercion for result-to-object mapping.

:func:`coerce` turns one raw cell into the declared type of a member. It never
raises for a bad cell: conversion failures come back as a
:class:`CoercionResult` with ``fell_back=True`` carrying the member default
(or the type's zero value) and the error text, and a
``mapping.coercion.fallback`` warning is logged. One malformed cell therefore
never aborts mapping of the rest of the result.
"""

import datetime as dt
import enum
import re
import uuid
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from typing import Any, Optional, get_origin

import numpy as np
import pandas as pd

from data_access_hub.mapping.descriptors import CustomConversion, MemberDescriptor
from data_access_hub.utils.logging import get_logger

logger = get_logger(__name__)

TRUE_STRINGS = frozenset({"true", "t", "yes", "y", "1"})
FALSE_STRINGS = frozenset({"false", "f", "no", "n", "0"})

# Currency symbols and grouping characters accepted by lenient decimal parsing
_DECIMAL_NOISE = re.compile(r"[\s,_$€£¥]")

_ZERO_VALUES = {
    bool: False,
    int: 0,
    float: 0.0,
    Decimal: Decimal(0),
    str: "",
}

_CONVERSION_ERRORS = (ValueError, TypeError, ArithmeticError, KeyError, OverflowError)


@dataclass(frozen=True)
class CoercionResult:
    """Outcome of coercing one cell.

    Attributes:
        value: The value to assign
        fell_back: True when conversion failed and ``value`` is the fallback
        error: Failure description when ``fell_back`` is True
    """

    value: Any
    fell_back: bool = False
    error: Optional[str] = None


def is_null(raw: Any) -> bool:
    """True for None and the pandas/numpy missing markers (NaN, NaT, NA)."""
    if raw is None:
        return True
    if isinstance(raw, (str, bytes)):
        return False
    try:
        return bool(pd.api.types.is_scalar(raw) and pd.isna(raw))
    except (TypeError, ValueError):
        return False


def zero_value(member: MemberDescriptor) -> Any:
    """The type's empty value; ``None`` for nullable and reference-like members."""
    if member.nullable:
        return None
    return _ZERO_VALUES.get(member.value_type)


def fallback_value(member: MemberDescriptor) -> Any:
    """The configured default when present, else :func:`zero_value`."""
    if member.has_default:
        return member.default
    return zero_value(member)


def matches_type(raw: Any, target: Any) -> bool:
    """Return True when ``raw`` can be assigned to ``target`` unchanged."""
    if target is Any or target is object:
        return True
    if not isinstance(target, type):
        origin = get_origin(target)
        return isinstance(raw, origin) if isinstance(origin, type) else True
    if isinstance(raw, bool) and target is not bool:
        return False
    if target is dt.date and isinstance(raw, dt.datetime):
        return False
    return isinstance(raw, target)


def parse_bool(raw: Any) -> bool:
    if isinstance(raw, str):
        text = raw.strip().lower()
        if text in TRUE_STRINGS:
            return True
        if text in FALSE_STRINGS:
            return False
        raise ValueError(f"not a boolean literal: {raw!r}")
    if isinstance(raw, (int, float, Decimal)):
        return raw != 0
    raise TypeError(f"cannot convert {type(raw).__name__} to bool")


def parse_int(raw: Any) -> int:
    if isinstance(raw, str):
        text = raw.strip()
        try:
            return int(text)
        except ValueError:
            number = Decimal(text)
            if number != number.to_integral_value():
                raise ValueError(f"not an integral number: {raw!r}")
            return int(number)
    if isinstance(raw, (float, Decimal, np.floating)):
        number = int(raw)
        if number != raw:
            raise ValueError(f"not an integral number: {raw!r}")
        return number
    return int(raw)


def parse_decimal(raw: Any, lenient: bool = False) -> Decimal:
    if isinstance(raw, float):
        return Decimal(str(raw))
    if isinstance(raw, str):
        text = raw.strip()
        if lenient:
            negative = text.startswith("(") and text.endswith(")")
            text = _DECIMAL_NOISE.sub("", text.strip("()"))
            if negative:
                text = f"-{text}"
        return Decimal(text)
    return Decimal(raw)


def parse_datetime(raw: Any) -> dt.datetime:
    if isinstance(raw, str):
        return dt.datetime.fromisoformat(raw.strip())
    if isinstance(raw, dt.date):
        return dt.datetime.combine(raw, dt.time())
    raise TypeError(f"cannot convert {type(raw).__name__} to datetime")


def parse_date(raw: Any) -> dt.date:
    if isinstance(raw, dt.datetime):
        return raw.date()
    if isinstance(raw, str):
        text = raw.strip()
        try:
            return dt.date.fromisoformat(text)
        except ValueError:
            return dt.datetime.fromisoformat(text).date()
    raise TypeError(f"cannot convert {type(raw).__name__} to date")


def parse_time(raw: Any) -> dt.time:
    if isinstance(raw, dt.datetime):
        return raw.time()
    if isinstance(raw, str):
        return dt.time.fromisoformat(raw.strip())
    raise TypeError(f"cannot convert {type(raw).__name__} to time")


def parse_uuid(raw: Any) -> uuid.UUID:
    if isinstance(raw, (bytes, bytearray)) and len(raw) == 16:
        return uuid.UUID(bytes=bytes(raw))
    return uuid.UUID(str(raw).strip())


def parse_enum(raw: Any, target: type) -> enum.Enum:
    if isinstance(raw, str):
        text = raw.strip()
        for member in target:
            if member.name.lower() == text.lower():
                return member
        return target(text)
    if isinstance(raw, int) and not isinstance(raw, bool):
        return target(raw)
    raise TypeError(f"cannot convert {type(raw).__name__} to {target.__name__}")


def convert(raw: Any, target: Any) -> Any:
    """Built-in conversion of ``raw`` to ``target``; raises on failure."""
    if matches_type(raw, target):
        return raw
    if target is str:
        if isinstance(raw, (bytes, bytearray)):
            return bytes(raw).decode("utf-8")
        return str(raw)
    if target is bool:
        return parse_bool(raw)
    if target is int:
        return parse_int(raw)
    if target is float:
        return float(raw)
    if target is Decimal:
        return parse_decimal(raw)
    if target is dt.datetime:
        return parse_datetime(raw)
    if target is dt.date:
        return parse_date(raw)
    if target is dt.time:
        return parse_time(raw)
    if target is uuid.UUID:
        return parse_uuid(raw)
    if isinstance(target, type) and issubclass(target, enum.Enum):
        return parse_enum(raw, target)
    if target is bytes:
        if isinstance(raw, str):
            return raw.encode("utf-8")
        return bytes(raw)
    if isinstance(target, type):
        return target(raw)
    raise TypeError(f"no conversion available for {target!r}")


def apply_custom_conversion(raw: Any, conversion: CustomConversion) -> Any:
    """Convert ``raw`` to ``conversion.target``, honouring ``conversion.format``.

    A format-constrained parse is tried first; when it fails the format-free
    conversion is used instead. Raises when both fail.
    """
    target = conversion.target
    if conversion.format and isinstance(raw, str):
        try:
            if target is dt.datetime:
                return dt.datetime.strptime(raw.strip(), conversion.format)
            if target is dt.date:
                return dt.datetime.strptime(raw.strip(), conversion.format).date()
            if target is Decimal:
                return parse_decimal(raw, lenient=True)
        except _CONVERSION_ERRORS as exc:
            logger.debug(
                "mapping.coercion.format_mismatch",
                target=getattr(target, "__name__", str(target)),
                format=conversion.format,
                error=str(exc),
            )
    return convert(raw, target)


def coerce(raw: Any, member: MemberDescriptor) -> CoercionResult:
    """Coerce ``raw`` to the declared type of ``member``.

    Rules, in order: null cell gives the member default or zero value;
    a value already of the declared type passes through; a custom conversion
    runs when configured; otherwise the built-in conversions apply.
    """
    if is_null(raw):
        return CoercionResult(fallback_value(member))

    target = member.value_type
    if matches_type(raw, target):
        return CoercionResult(raw)

    try:
        if member.conversion is not None:
            value = apply_custom_conversion(raw, member.conversion)
            if not matches_type(value, target):
                value = convert(value, target)
        else:
            value = convert(raw, target)
    except Exception as exc:
        fallback = fallback_value(member)
        logger.warning(
            "mapping.coercion.fallback",
            member=member.name,
            target=member.type_tag,
            raw_type=type(raw).__name__,
            error=str(exc),
        )
        return CoercionResult(fallback, fell_back=True, error=str(exc))

    return CoercionResult(value)
