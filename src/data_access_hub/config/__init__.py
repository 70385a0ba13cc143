"""Configuration management for DataAccessHub.

Usage:
    >>> from data_access_hub.config import get_settings
    >>> settings = get_settings()
    >>> settings.DB_BATCH_SIZE
    1000
"""

from data_access_hub.config.settings import (
    ConnectionParts,
    Settings,
    get_settings,
    mask_url,
)

__all__ = [
    "ConnectionParts",
    "Settings",
    "get_settings",
    "mask_url",
]
