"""
DataAccessHub - generic data access for PostgreSQL.

Maps tabular query results onto dataclasses and pydantic models without
hand-written mapping code, and runs high-volume bulk writes with transaction
scoping and per-item failure reporting.
"""

__version__ = "0.1.0"
