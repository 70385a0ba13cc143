"""Statement builders grouped by operation."""
