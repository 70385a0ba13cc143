"""
Payload preparation for bulk writes.

Turns the caller's objects (dataclasses, pydantic models, mappings or plain
objects) into an object-dtype pandas DataFrame keyed by target column name,
and renders DataFrame batches for the two transfer paths: a COPY text stream
for inserts and JSON-ready records for the staged row-set statements.
"""

import dataclasses
import datetime as dt
import enum
import io
import json
import uuid
from decimal import Decimal
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence

import numpy as np
import pandas as pd
from pydantic import BaseModel

from data_access_hub.mapping.coercion import is_null


def to_record(obj: Any) -> Dict[str, Any]:
    """Return the public member values of ``obj`` as a dict."""
    if isinstance(obj, Mapping):
        return dict(obj)
    if isinstance(obj, BaseModel):
        return obj.model_dump()
    if dataclasses.is_dataclass(obj) and not isinstance(obj, type):
        return {f.name: getattr(obj, f.name) for f in dataclasses.fields(obj)}
    if hasattr(obj, "__dict__"):
        return {k: v for k, v in vars(obj).items() if not k.startswith("_")}
    raise TypeError(f"cannot build a row from {type(obj).__name__}")


def build_payload(
    data: Iterable[Any],
    column_mappings: Optional[Mapping[str, str]] = None,
    exclude_columns: Sequence[str] = (),
) -> pd.DataFrame:
    """
    Build the tabular payload for a bulk write.

    Members named in ``exclude_columns`` are dropped first, then the remaining
    members are renamed through ``column_mappings``. Values keep their Python
    types (object dtype), so integers with missing values are not widened to
    floats.
    """
    records = [to_record(obj) for obj in data]
    columns: Dict[str, None] = {}
    for record in records:
        for key in record:
            columns.setdefault(key, None)

    excluded = set(exclude_columns)
    kept = [c for c in columns if c not in excluded]
    df = pd.DataFrame(
        [[record.get(c) for c in kept] for record in records],
        columns=kept,
        dtype=object,
    )
    if column_mappings:
        df = df.rename(columns=dict(column_mappings))
    duplicated = df.columns[df.columns.duplicated()].tolist()
    if duplicated:
        raise ValueError(f"column mappings produce duplicate columns: {duplicated}")
    return df


def drop_all_null_columns(df: pd.DataFrame) -> pd.DataFrame:
    """Drop columns in which every value is missing."""
    keep = [c for c in df.columns if not all(is_null(v) for v in df[c])]
    return df[keep]


def find_column(columns: Iterable[str], name: str) -> Optional[str]:
    """Exact lookup, then case-insensitive lookup of ``name`` in ``columns``."""
    columns = list(columns)
    if name in columns:
        return name
    lowered = name.lower()
    for column in columns:
        if column.lower() == lowered:
            return column
    return None


_SCALAR_KEYS = (str, bytes, int, float, Decimal, uuid.UUID, dt.date)


def extract_keys(data: Iterable[Any], key_column: str) -> List[Any]:
    """
    Collect key values for a delete.

    Items may be bare key values or objects carrying ``key_column``.
    """
    keys: List[Any] = []
    for index, item in enumerate(data):
        if item is None or isinstance(item, _SCALAR_KEYS):
            keys.append(item)
            continue
        record = to_record(item)
        column = find_column(record, key_column)
        if column is None:
            raise KeyError(f"item {index} has no key member {key_column!r}")
        keys.append(record[column])
    return keys


def _plain_value(value: Any) -> Any:
    if is_null(value):
        return None
    if isinstance(value, enum.Enum):
        return value.value
    if isinstance(value, np.generic):
        return value.item()
    if isinstance(value, np.ndarray):
        return value.tolist()
    return value


def json_value(value: Any) -> Any:
    """Render one cell as a JSON-compatible value PostgreSQL can cast back.

    Lists become JSON arrays (array columns) and mappings become JSON
    objects (json/jsonb columns); their members are rendered recursively.
    """
    value = _plain_value(value)
    if value is None or isinstance(value, (bool, int, float, str)):
        return value
    if isinstance(value, (dt.datetime, dt.date, dt.time)):
        return value.isoformat()
    if isinstance(value, (Decimal, uuid.UUID)):
        return str(value)
    if isinstance(value, (bytes, bytearray, memoryview)):
        return "\\x" + bytes(value).hex()
    if isinstance(value, Mapping):
        return {str(k): json_value(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [json_value(v) for v in value]
    return str(value)


def staged_records(df: pd.DataFrame, columns: Sequence[str]) -> List[Dict[str, Any]]:
    """JSON-ready row objects for the staged row-set parameter."""
    return [
        {column: json_value(value) for column, value in zip(columns, row)}
        for row in df[list(columns)].itertuples(index=False, name=None)
    ]


def _array_literal(items: Sequence[Any]) -> str:
    # every element is quoted; nested sequences become sub-arrays
    parts = []
    for item in items:
        item = _plain_value(item)
        if isinstance(item, (list, tuple)):
            parts.append(_array_literal(item))
            continue
        text = _text_value(item)
        if text is None:
            parts.append("NULL")
        else:
            parts.append('"' + text.replace("\\", "\\\\").replace('"', '\\"') + '"')
    return "{" + ",".join(parts) + "}"


def _text_value(value: Any) -> Optional[str]:
    value = _plain_value(value)
    if value is None:
        return None
    if isinstance(value, bool):
        return "t" if value else "f"
    if isinstance(value, (dt.datetime, dt.date, dt.time)):
        return value.isoformat()
    if isinstance(value, (bytes, bytearray, memoryview)):
        return "\\x" + bytes(value).hex()
    if isinstance(value, Mapping):
        return json.dumps(json_value(value))
    if isinstance(value, (list, tuple)):
        return _array_literal(value)
    return str(value)


def copy_text_value(value: Any) -> str:
    """Render one cell in COPY text format.

    Mappings are written as JSON text and lists as PostgreSQL array literals.
    """
    text = _text_value(value)
    if text is None:
        return "\\N"
    return (
        text.replace("\\", "\\\\")
        .replace("\t", "\\t")
        .replace("\n", "\\n")
        .replace("\r", "\\r")
    )


def copy_buffer(df: pd.DataFrame, columns: Sequence[str]) -> io.StringIO:
    """Tab-separated COPY text stream for ``columns`` of ``df``."""
    buffer = io.StringIO()
    for row in df[list(columns)].itertuples(index=False, name=None):
        buffer.write("\t".join(copy_text_value(v) for v in row))
        buffer.write("\n")
    buffer.seek(0)
    return buffer
