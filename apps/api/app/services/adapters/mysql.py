"""MySQL and MariaDB: snapshots go through mysqldump/mysql."""

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


class MySQLAdapter(DatabaseAdapter):
    driver = "mysql"
    snapshot_extension = "sql"

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
                text(
                    "SELECT SCHEMA_NAME FROM information_schema.SCHEMATA "
                    "WHERE SCHEMA_NAME = :name"
                ),
                {"name": database},
            ).first()
        return found is not None

    def reset_database(self, database: str, exists: bool) -> None:
        self.dispose(database)
        with self._admin_engine().connect() as conn:
            if exists:
                conn.exec_driver_sql(f"DROP DATABASE IF EXISTS {self._quote(database)}")
            conn.exec_driver_sql(f"CREATE DATABASE {self._quote(database)}")

    def drop_database(self, database: str) -> None:
        self.dispose(database)
        with self._admin_engine().connect() as conn:
            conn.exec_driver_sql(f"DROP DATABASE IF EXISTS {self._quote(database)}")

    def _connection_args(self) -> list[str]:
        args: list[str] = []
        if self._url.host:
            args.append(f"--host={self._url.host}")
        if self._url.port:
            args.append(f"--port={self._url.port}")
        if self._url.username:
            args.append(f"--user={self._url.username}")
        return args

    def _tool_env(self) -> dict[str, str]:
        env = dict(os.environ)
        if self._url.password:
            env["MYSQL_PWD"] = str(self._url.password)
        return env

    def dump(self, database: str, path: Path) -> None:
        try:
            self._run_tool(
                [
                    self._settings.mysqldump_path,
                    *self._connection_args(),
                    "--routines",
                    "--skip-comments",
                    f"--result-file={path}",
                    database,
                ],
                env=self._tool_env(),
            )
        except (OSError, subprocess.CalledProcessError) as exc:
            raise SnapshotError(f'Could not dump database "{database}" to "{path}"') from exc

    def _load(self, database: str, path: Path) -> None:
        self._run_tool(
            [self._settings.mysql_path, *self._connection_args(), database],
            env=self._tool_env(),
            stdin_path=path,
        )

    def restore(self, database: str, path: Path) -> bool:
        if not path.is_file():
            return False
        self.reset_database(database, self.database_exists(database))
        try:
            self._load(database, path)
        except (OSError, subprocess.CalledProcessError) as exc:
            logger.warning("mysql snapshot import failed path=%s error=%s", path, exc)
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
                text("SELECT SCHEMA_NAME FROM information_schema.SCHEMATA ORDER BY SCHEMA_NAME")
            ).scalars().all()
        return [name for name in names if self.owns_database(name)]
