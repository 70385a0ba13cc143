"""Read queries returning mapped objects."""

from .query_reader import QueryReader, QueryResult

__all__ = ["QueryReader", "QueryResult"]
