"""Environment-driven configuration for database preparation."""

from functools import lru_cache
from pathlib import Path

from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

_TRUE_VALUES = {"1", "true", "yes", "on"}
_FALSE_VALUES = {"0", "false", "no", "off", ""}


class Settings(BaseSettings):
    """Settings loaded from environment variables (prefix ``DBPREP_``)."""

    app_name: str = "dbprep remote build service"
    app_version: str = "0.1.0"
    project_name: str | None = None
    connections: dict[str, str] = {"default": "sqlite:///database/database.sqlite"}
    default_connection: str = "default"
    storage_dir: Path = Path(".dbprep")
    snapshot_prefix: str = "snapshot."
    database_prefix: str = "test_"
    cache_invalidation_enabled: bool = True
    cache_invalidation_method: str = "content"
    checksum_paths: list[str] = []
    initial_imports: dict[str, list[str]] = {}
    migrations: bool | str = True
    default_migrations_path: Path = Path("alembic")
    seeders: list[str] = []
    remote_build_url: str | None = None
    remote_build_enabled: bool = False
    remote_build_timeout_seconds: float = 600.0
    reuse_transaction: bool = True
    reuse_journal: bool = False
    verify_database: bool = False
    scenarios: bool = True
    snapshots: str | None = None
    force_rebuild: bool = False
    stale_grace_seconds: int = 14400
    pg_dump_path: str = "pg_dump"
    psql_path: str = "psql"
    mysqldump_path: str = "mysqldump"
    mysql_path: str = "mysql"

    model_config = SettingsConfigDict(
        env_prefix="DBPREP_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    @field_validator("migrations", mode="before")
    @classmethod
    def _coerce_migrations_flag(cls, value: object) -> object:
        # "false" from the environment must mean "no migrations", not a path
        if isinstance(value, str):
            lowered = value.strip().lower()
            if lowered in _TRUE_VALUES:
                return True
            if lowered in _FALSE_VALUES:
                return False
        return value


@lru_cache
def get_settings() -> Settings:
    """Return cached settings."""
    return Settings()
