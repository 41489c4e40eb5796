"""Application settings models."""

from __future__ import annotations

from functools import lru_cache
from urllib.parse import quote_plus

from pydantic import ConfigDict, Field
from pydantic_settings import BaseSettings

from models import RecurrenceSpec


class MongoSettings(BaseSettings):
    """Settings for MongoDB connection.

    Environment variables follow the ``MONGO_`` prefix. For example,
    ``MONGO_HOST`` and ``MONGO_PORT`` configure the connection host and port.
    ``MONGO_URI`` takes precedence over the individual parameters when set.
    """

    uri: str | None = None
    host: str = "localhost"
    port: int = 27017
    username: str | None = None
    password: str | None = None
    database: str = ""
    auth: str = "admin"
    timeout_ms: int = 5000

    model_config = ConfigDict(extra="ignore", env_prefix="MONGO_")

    def build_uri(self) -> str:
        """Return a MongoDB URI, quoting credentials when both are present."""

        if self.uri:
            return self.uri
        has_user = self.username is not None and str(self.username) != ""
        has_pass = self.password is not None and str(self.password) != ""
        if has_user and has_pass:
            auth_part = f"{quote_plus(str(self.username))}:{quote_plus(str(self.password))}@"
            auth_db_part = f"/{self.auth}"
        else:
            auth_part = ""
            auth_db_part = ""
        return f"mongodb://{auth_part}{self.host}:{self.port}{auth_db_part}"


class BackupSettings(BaseSettings):
    """Snapshot location, retention and schedule.

    Variables use the ``BACKUP_`` prefix. ``BACKUP_SCHEDULE`` holds a JSON
    recurrence spec such as ``{"hour": 23, "minute": 30, "day_of_week": [4, 5]}``
    and ``BACKUP_UTC_OFFSET`` the hours added to that local time to reach UTC
    (``-3`` for a schedule written in UTC+3).
    """

    path: str = ""
    retention: int = 10
    list_limit: int = 20
    schedule: RecurrenceSpec | None = None
    utc_offset: float = 0.0
    job_name: str = "scheduled-backup"
    restore_password_sha256: str | None = None

    model_config = ConfigDict(extra="ignore", env_prefix="BACKUP_")


class Settings(BaseSettings):
    """Top level application settings loaded from ``.env``.

    Nested models use environment prefixes such as ``MONGO_`` and ``BACKUP_``.
    The :class:`pydantic_settings.BaseSettings` machinery automatically reads
    these variables when the application starts.
    """

    debug: bool = False

    mongo: MongoSettings = Field(default_factory=MongoSettings)
    backup: BackupSettings = Field(default_factory=BackupSettings)

    model_config = ConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        # Use double underscore to avoid collisions with top-level names
        env_nested_delimiter="__",
        case_sensitive=False,
        extra="ignore",
    )


@lru_cache(maxsize=1)
def get_settings() -> "Settings":
    """Return cached application settings."""

    return Settings()
