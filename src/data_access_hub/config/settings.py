"""
Configuration for DataAccessHub.

Settings are read from the process environment and an optional ``.env`` file
(``DAH_ENV_FILE`` points elsewhere, relative paths resolve against the
project root). The database DSN is either given whole as ``DATABASE_URL`` or
assembled from the ``DB_HOST``/``DB_PORT``/``DB_NAME``/``DB_USER``/
``DB_PASSWORD`` components.
"""

import os
from dataclasses import dataclass
from functools import lru_cache
from pathlib import Path
from typing import Literal, Optional
from urllib.parse import quote, urlsplit, urlunsplit

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

PROJECT_ROOT = Path(__file__).resolve().parents[3]


def resolve_env_file(override: Optional[str] = None) -> Path:
    """Return the env file to load, honouring a ``DAH_ENV_FILE``-style override."""
    if not override:
        return PROJECT_ROOT / ".env"
    candidate = Path(override).expanduser()
    return candidate if candidate.is_absolute() else PROJECT_ROOT / candidate


SETTINGS_ENV_FILE = resolve_env_file(os.getenv("DAH_ENV_FILE"))


@dataclass(frozen=True)
class ConnectionParts:
    """Component form of a PostgreSQL DSN."""

    host: str
    name: str
    port: int = 5432
    user: str = ""
    password: str = ""
    application_name: str = ""

    def to_url(self) -> str:
        credentials = ""
        if self.user:
            credentials = quote(self.user, safe="")
            if self.password:
                credentials += ":" + quote(self.password, safe="")
            credentials += "@"
        url = f"postgresql://{credentials}{self.host}:{self.port}/{quote(self.name, safe='')}"
        if self.application_name:
            url += f"?application_name={quote(self.application_name, safe='')}"
        return url


def mask_url(url: str) -> str:
    """Replace the password in a DSN with ``***``; other text is returned unchanged."""
    try:
        parts = urlsplit(url)
    except ValueError:
        return url
    if not parts.scheme or parts.password is None:
        return url
    netloc = parts.netloc.rsplit("@", 1)
    userinfo = netloc[0].split(":", 1)[0]
    return urlunsplit(parts._replace(netloc=f"{userinfo}:***@{netloc[1]}"))


class Settings(BaseSettings):
    """
    Environment-backed settings.

    Database:
    - DATABASE_URL: full DSN; wins over the DB_* components
    - DB_HOST, DB_PORT, DB_NAME, DB_USER, DB_PASSWORD: DSN components
    - DB_APPLICATION_NAME: reported to the server as ``application_name``

    Driver and bulk defaults:
    - DB_POOL_SIZE: maximum connections held by the pool
    - DB_BATCH_SIZE: rows per bulk-write batch when options give none
    - DB_TIMEOUT_SECONDS: statement timeout for bulk and query calls
    - DB_CONNECT_TIMEOUT: connect timeout handed to psycopg2
    - DB_RETRY_ATTEMPTS / DB_RETRY_BACKOFF_MS: connection acquisition retries
    """

    ENVIRONMENT: Literal["dev", "staging", "prod"] = "dev"
    LOG_LEVEL: str = "INFO"

    DATABASE_URL: Optional[str] = None
    DB_HOST: Optional[str] = None
    DB_PORT: int = Field(default=5432, ge=1, le=65535)
    DB_NAME: Optional[str] = None
    DB_USER: Optional[str] = None
    DB_PASSWORD: Optional[str] = None
    DB_APPLICATION_NAME: str = "data-access-hub"

    DB_POOL_SIZE: int = Field(default=10, ge=1, description="Connection pool size")
    DB_BATCH_SIZE: int = Field(default=1000, ge=1, description="Rows per bulk batch")
    DB_TIMEOUT_SECONDS: int = Field(
        default=30, ge=0, description="Statement timeout; 0 disables it"
    )
    DB_CONNECT_TIMEOUT: int = Field(default=5, ge=1)
    DB_RETRY_ATTEMPTS: int = Field(default=3, ge=1)
    DB_RETRY_BACKOFF_MS: int = Field(
        default=1000, ge=0, description="Base backoff, doubled per attempt"
    )

    model_config = SettingsConfigDict(
        env_file=str(SETTINGS_ENV_FILE),
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    @field_validator("LOG_LEVEL")
    @classmethod
    def normalize_log_level(cls, v: str) -> str:
        return v.strip().upper()

    @field_validator("DATABASE_URL", "DB_HOST", "DB_NAME")
    @classmethod
    def blank_as_unset(cls, v: Optional[str]) -> Optional[str]:
        if v is not None and not v.strip():
            return None
        return v

    def connection_parts(self) -> Optional[ConnectionParts]:
        """DSN components, or None when host or database name is missing."""
        if not (self.DB_HOST and self.DB_NAME):
            return None
        return ConnectionParts(
            host=self.DB_HOST,
            name=self.DB_NAME,
            port=self.DB_PORT,
            user=self.DB_USER or "",
            password=self.DB_PASSWORD or "",
            application_name=self.DB_APPLICATION_NAME,
        )

    def get_database_connection_string(self) -> str:
        """Return the PostgreSQL DSN.

        ``DATABASE_URL`` is used as given, except that the legacy
        ``postgres://`` scheme is rewritten to ``postgresql://``. Without it
        the DSN is built from the DB_* components.

        Raises:
            ValueError: If neither form is configured
        """
        if self.DATABASE_URL:
            url = self.DATABASE_URL
            if url.startswith("postgres://"):
                url = "postgresql://" + url[len("postgres://"):]
            return url
        parts = self.connection_parts()
        if parts is None:
            raise ValueError(
                "No database configured: set DATABASE_URL, or DB_HOST and DB_NAME"
            )
        return parts.to_url()


@lru_cache()
def get_settings() -> Settings:
    """Return the process-wide settings; tests reset it with ``cache_clear()``."""
    return Settings()
