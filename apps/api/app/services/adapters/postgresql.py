"""PostgreSQL: databases live on a server; snapshots go through pg_dump/psql."""

from __future__ import annotations

import logging
import os
import subprocess
from pathlib import Path

from sqlalchemy import text

from apps.api.app.services.adapters.base import DatabaseAdapter
from apps.api.app.services.errors import InitialImportFailedError, SnapshotError
from apps.api.app.services.reuse_strategy import DriverCapabilities

logger = logging.getLogger("dbprep.adapters")

ADMIN_DATABASE = "postgres"


class PostgreSQLAdapter(DatabaseAdapter):
    driver = "postgresql"
    snapshot_extension = "sql"
    admin_database = ADMIN_DATABASE

    @property
    def capabilities(self) -> DriverCapabilities:
        return DriverCapabilities(
            supports_reuse=True,
            supports_snapshots=True,
            supports_scenarios=True,
            supports_transactions=True,
            supports_journaling=False,
            supports_verification=True,
        )

    def database_exists(self, database: str) -> bool:
        with self._admin_engine().connect() as conn:
            found = conn.execute(
                text("SELECT 1 FROM pg_database WHERE datname = :name"), {"name": database}
            ).first()
        return found is not None

    def reset_database(self, database: str, exists: bool) -> None:
        if exists:
            self.drop_database(database)
        with self._admin_engine().connect() as conn:
            conn.exec_driver_sql(f"CREATE DATABASE {self._quote(database)}")

    def drop_database(self, database: str) -> None:
        self.dispose(database)
        with self._admin_engine().connect() as conn:
            conn.execute(
                text(
                    "SELECT pg_terminate_backend(pid) FROM pg_stat_activity "
                    "WHERE datname = :name AND pid <> pg_backend_pid()"
                ),
                {"name": database},
            )
            conn.exec_driver_sql(f"DROP DATABASE IF EXISTS {self._quote(database)}")

    def _connection_args(self) -> list[str]:
        args: list[str] = []
        if self._url.host:
            args += ["--host", self._url.host]
        if self._url.port:
            args += ["--port", str(self._url.port)]
        if self._url.username:
            args += ["--username", self._url.username]
        return args

    def _tool_env(self) -> dict[str, str]:
        env = dict(os.environ)
        if self._url.password:
            env["PGPASSWORD"] = str(self._url.password)
        return env

    def dump(self, database: str, path: Path) -> None:
        try:
            self._run_tool(
                [
                    self._settings.pg_dump_path,
                    "--no-owner",
                    "--no-privileges",
                    "--format=plain",
                    "--file",
                    str(path),
                    *self._connection_args(),
                    database,
                ],
                env=self._tool_env(),
            )
        except (OSError, subprocess.CalledProcessError) as exc:
            raise SnapshotError(f'Could not dump database "{database}" to "{path}"') from exc

    def _load(self, database: str, path: Path) -> None:
        self._run_tool(
            [
                self._settings.psql_path,
                "--quiet",
                "--no-psqlrc",
                "--set",
                "ON_ERROR_STOP=1",
                "--file",
                str(path),
                *self._connection_args(),
                "--dbname",
                database,
            ],
            env=self._tool_env(),
        )

    def restore(self, database: str, path: Path) -> bool:
        if not path.is_file():
            return False
        self.reset_database(database, self.database_exists(database))
        try:
            self._load(database, path)
        except (OSError, subprocess.CalledProcessError) as exc:
            logger.warning("postgres snapshot import failed path=%s error=%s", path, exc)
            return False
        return True

    def import_initial(self, database: str, path: Path) -> None:
        if not path.is_file():
            raise InitialImportFailedError(str(path))
        try:
            self._load(database, path)
        except (OSError, subprocess.CalledProcessError) as exc:
            raise InitialImportFailedError(str(path)) from exc

    def list_databases(self) -> list[str]:
        with self._admin_engine().connect() as conn:
            names = conn.execute(
                text("SELECT datname FROM pg_database WHERE NOT datistemplate ORDER BY datname")
            ).scalars().all()
        return [name for name in names if self.owns_database(name)]
