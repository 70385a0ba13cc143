"""Shared utilities for DataAccessHub."""
