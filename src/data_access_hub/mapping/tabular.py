"""In-memory rectangular results: ordered column names plus rows of values."""

from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence, Tuple

import pandas as pd


@dataclass(frozen=True)
class TabularResult:
    """An ordered sequence of rows sharing one ordered column set."""

    columns: Tuple[str, ...]
    rows: Tuple[Tuple[Any, ...], ...]

    def __post_init__(self) -> None:
        width = len(self.columns)
        for index, row in enumerate(self.rows):
            if len(row) != width:
                raise ValueError(
                    f"row {index} has {len(row)} values for {width} columns"
                )

    @classmethod
    def empty(cls, columns: Sequence[str] = ()) -> "TabularResult":
        return cls(tuple(columns), ())

    @classmethod
    def from_rows(
        cls, columns: Sequence[str], rows: Iterable[Sequence[Any]]
    ) -> "TabularResult":
        return cls(tuple(columns), tuple(tuple(row) for row in rows))

    @classmethod
    def from_records(
        cls,
        records: Sequence[Mapping[str, Any]],
        columns: Optional[Sequence[str]] = None,
    ) -> "TabularResult":
        """Build from dictionaries; columns default to first-seen key order."""
        if columns is None:
            ordered: Dict[str, None] = {}
            for record in records:
                for key in record:
                    ordered.setdefault(key, None)
            columns = list(ordered)
        return cls.from_rows(
            columns, ([record.get(c) for c in columns] for record in records)
        )

    @classmethod
    def from_cursor(cls, cursor: Any) -> "TabularResult":
        """Materialize the pending result of a DB-API cursor."""
        if cursor.description is None:
            return cls.empty()
        columns = [d[0] for d in cursor.description]
        return cls.from_rows(columns, cursor.fetchall())

    @classmethod
    def from_dataframe(cls, df: pd.DataFrame) -> "TabularResult":
        """Convert a DataFrame, turning NaN/NaT/NA cells into ``None``."""
        cleaned = df.astype(object).where(pd.notna(df), None)
        return cls.from_rows(
            [str(c) for c in df.columns], cleaned.itertuples(index=False, name=None)
        )

    @property
    def column_names(self) -> List[str]:
        return list(self.columns)

    def __len__(self) -> int:
        return len(self.rows)

    def __bool__(self) -> bool:
        return bool(self.rows)

    def column_index(self) -> Dict[str, int]:
        """Column name to position; the first occurrence wins for duplicates."""
        index: Dict[str, int] = {}
        for position, name in enumerate(self.columns):
            index.setdefault(name, position)
        return index

    def to_dicts(self) -> List[Dict[str, Any]]:
        return [dict(zip(self.columns, row)) for row in self.rows]

    def first_row_dict(self) -> Optional[Dict[str, Any]]:
        if not self.rows:
            return None
        return dict(zip(self.columns, self.rows[0]))

    def to_dataframe(self) -> pd.DataFrame:
        return pd.DataFrame(list(self.rows), columns=list(self.columns))
