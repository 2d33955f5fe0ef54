"""Migration and seeder execution against a freshly reset database."""

from __future__ import annotations

import importlib
import logging
import time
from collections.abc import Callable, Mapping, Sequence
from pathlib import Path

from alembic import command
from alembic.config import Config
from sqlalchemy.engine import Connection, Engine

from apps.api.app.services.errors import ConfigError, MigrationsFailedError, SeederFailedError

logger = logging.getLogger("dbprep.builder")

Seeder = Callable[[Connection], None]


def alembic_config_for(migrations_path: Path, connection: Connection) -> Config:
    config = Config()
    config.set_main_option("script_location", str(migrations_path))
    config.attributes["connection"] = connection
    return config


def run_migrations(engine: Engine, migrations_path: Path) -> None:
    """Upgrade the database to ``head`` using the Alembic scripts at ``migrations_path``."""
    if not migrations_path.is_dir():
        raise ConfigError.migrations_path_invalid(str(migrations_path))
    started = time.monotonic()
    try:
        with engine.begin() as connection:
            command.upgrade(alembic_config_for(migrations_path, connection), "head")
    except Exception as exc:
        raise MigrationsFailedError(str(migrations_path)) from exc
    logger.info(
        "migrations applied path=%s elapsed_ms=%d",
        migrations_path,
        int((time.monotonic() - started) * 1000),
    )


def resolve_seeder(name: str, registry: Mapping[str, Seeder] | None = None) -> Seeder:
    if registry is not None and name in registry:
        return registry[name]
    module_name, _, attribute = name.partition(":")
    if not module_name or not attribute:
        raise ConfigError.unknown_seeder(name)
    try:
        module = importlib.import_module(module_name)
    except ImportError as exc:
        raise ConfigError.unknown_seeder(name) from exc
    seeder = getattr(module, attribute, None)
    if not callable(seeder):
        raise ConfigError.unknown_seeder(name)
    return seeder


def run_seeders(
    engine: Engine,
    seeders: Sequence[str],
    registry: Mapping[str, Seeder] | None = None,
) -> None:
    """Run each seeder in order, one transaction per seeder."""
    resolved = [(name, resolve_seeder(name, registry)) for name in seeders]
    for name, seeder in resolved:
        started = time.monotonic()
        try:
            with engine.begin() as connection:
                seeder(connection)
        except Exception as exc:
            raise SeederFailedError(name) from exc
        logger.info(
            "seeder ran seeder=%s elapsed_ms=%d",
            name,
            int((time.monotonic() - started) * 1000),
        )
