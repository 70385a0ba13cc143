"""I/O layer: PostgreSQL bulk loading and query reading."""
