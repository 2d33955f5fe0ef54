"""Database adapters, one per supported driver."""

from __future__ import annotations

from sqlalchemy.engine import URL

from apps.api.app.core.config import Settings
from apps.api.app.services.adapters.base import DatabaseAdapter
from apps.api.app.services.adapters.mysql import MySQLAdapter
from apps.api.app.services.adapters.postgresql import PostgreSQLAdapter
from apps.api.app.services.adapters.sqlite import SQLiteAdapter
from apps.api.app.services.build_spec import driver_for_url
from apps.api.app.services.errors import ConfigError

_ADAPTERS: dict[str, type[DatabaseAdapter]] = {
    "sqlite": SQLiteAdapter,
    "postgresql": PostgreSQLAdapter,
    "mysql": MySQLAdapter,
}


def adapter_for_driver(
    driver: str, url: str | URL, settings: Settings, *, connection: str = ""
) -> DatabaseAdapter:
    adapter_class = _ADAPTERS.get(driver)
    if adapter_class is None:
        raise ConfigError.unsupported_driver(connection, driver)
    return adapter_class(url=url, settings=settings)


def adapter_for_connection(connection: str, settings: Settings) -> DatabaseAdapter:
    url = settings.connections.get(connection)
    if url is None:
        raise ConfigError.invalid_connection(connection)
    return adapter_for_driver(driver_for_url(url), url, settings, connection=connection)


__all__ = [
    "DatabaseAdapter",
    "MySQLAdapter",
    "PostgreSQLAdapter",
    "SQLiteAdapter",
    "adapter_for_connection",
    "adapter_for_driver",
]
