"""Batch sizing and chunking helpers for bulk writes."""

from typing import Iterable, Iterator, List, Sequence, TypeVar

import pandas as pd

T = TypeVar("T")


def recommend_batch_size(row_count: int) -> int:
    """
    Suggest a batch size for ``row_count`` rows.

    Small loads go in batches of at most 500; larger loads step up through
    1000, 2000 and 5000 to 10000 rows per statement above one million rows.

    Examples:
        >>> recommend_batch_size(120)
        120
        >>> recommend_batch_size(50_000)
        2000
    """
    if row_count <= 1000:
        return max(min(row_count, 500), 1)
    if row_count <= 10_000:
        return 1000
    if row_count <= 100_000:
        return 2000
    if row_count <= 1_000_000:
        return 5000
    return 10_000


def chunked(items: Iterable[T], size: int) -> Iterator[List[T]]:
    """Yield lists of at most ``size`` items, preserving order."""
    if size < 1:
        raise ValueError("size must be positive")
    batch: List[T] = []
    for item in items:
        batch.append(item)
        if len(batch) >= size:
            yield batch
            batch = []
    if batch:
        yield batch


def chunk_dataframe(df: pd.DataFrame, size: int) -> Iterator[pd.DataFrame]:
    """Yield DataFrame slices of at most ``size`` rows."""
    if size < 1:
        raise ValueError("size must be positive")
    for start in range(0, len(df), size):
        yield df.iloc[start : start + size]


def chunk_sequence(items: Sequence[T], size: int) -> Iterator[Sequence[T]]:
    """Slice-based variant of :func:`chunked` for sequences."""
    if size < 1:
        raise ValueError("size must be positive")
    for start in range(0, len(items), size):
        yield items[start : start + size]
