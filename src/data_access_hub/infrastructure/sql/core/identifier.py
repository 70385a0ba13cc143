"""
SQL identifier handling utilities.

Table, column and key names reach the SQL strategies from callers, so every
name is validated and double-quoted before it is placed into statement text.
Values never go through these helpers; they are always bound as parameters.
"""

from typing import Iterable, List, Optional

# PostgreSQL truncates identifiers beyond NAMEDATALEN - 1 bytes
MAX_IDENTIFIER_LENGTH = 63


class IdentifierError(ValueError):
    """Raised when a table, column or key name cannot be used as an identifier."""


def validate_identifier(name: str) -> str:
    """
    Check that ``name`` is usable as a single PostgreSQL identifier.

    Rejected: non-strings, empty or whitespace-only names, names longer than
    63 characters, NUL bytes, and ``%`` (which would collide with psycopg2
    placeholders).

    Returns:
        The unchanged name

    Raises:
        IdentifierError: If the name is not acceptable
    """
    if not isinstance(name, str) or not name.strip():
        raise IdentifierError("Identifier name must be non-empty string")
    if len(name) > MAX_IDENTIFIER_LENGTH:
        raise IdentifierError(
            f"Identifier too long (max {MAX_IDENTIFIER_LENGTH} characters): {name[:20]}..."
        )
    if "\x00" in name:
        raise IdentifierError("Identifier must not contain NUL characters")
    if "%" in name:
        raise IdentifierError(f"Identifier must not contain '%': {name!r}")
    return name


def quote_identifier(name: str) -> str:
    """
    Quote a SQL identifier (table or column name).

    Examples:
        >>> quote_identifier("customer_id")
        '"customer_id"'
        >>> quote_identifier('odd"name')
        '"odd""name"'
    """
    validate_identifier(name)
    escaped = name.replace('"', '""')
    return f'"{escaped}"'


def qualify_table(table: str, schema: Optional[str] = None) -> str:
    """
    Quote a table reference, splitting ``schema.table`` when no schema is given.

    Examples:
        >>> qualify_table("orders")
        '"orders"'
        >>> qualify_table("sales.orders")
        '"sales"."orders"'
        >>> qualify_table("orders", schema="sales")
        '"sales"."orders"'
    """
    if not isinstance(table, str) or not table.strip():
        raise IdentifierError("Table name must be non-empty string")

    if schema is None and "." in table:
        schema_part, table_part = table.split(".", 1)
        if schema_part.strip() and table_part.strip():
            schema, table = schema_part.strip(), table_part.strip()

    if schema and schema.strip():
        return f"{quote_identifier(schema.strip())}.{quote_identifier(table)}"
    return quote_identifier(table)


def quote_column_list(columns: Iterable[str]) -> List[str]:
    """Quote every column name, rejecting exact duplicates."""
    quoted: List[str] = []
    seen = set()
    for column in columns:
        if column in seen:
            raise IdentifierError(f"Duplicate column name: {column!r}")
        seen.add(column)
        quoted.append(quote_identifier(column))
    return quoted
