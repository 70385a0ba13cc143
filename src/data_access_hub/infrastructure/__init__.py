"""Infrastructure layer: SQL generation."""
