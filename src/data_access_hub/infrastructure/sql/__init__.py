"""
SQL module for the bulk-write strategies.

Builds parameterized PostgreSQL statements with validated, quoted identifiers.
"""

from .core.identifier import (
    IdentifierError,
    qualify_table,
    quote_identifier,
    validate_identifier,
)
from .dialects.postgresql import PostgreSQLDialect
from .operations.bulk import BulkStatementBuilder, UpsertStrategy

__all__ = [
    "IdentifierError",
    "quote_identifier",
    "qualify_table",
    "validate_identifier",
    "PostgreSQLDialect",
    "BulkStatementBuilder",
    "UpsertStrategy",
]
