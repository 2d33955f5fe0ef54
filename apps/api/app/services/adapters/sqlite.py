"""SQLite: databases are files, so snapshots are plain file copies."""

from __future__ import annotations

import logging
import os
import shutil
import sqlite3
from pathlib import Path

from sqlalchemy.engine import Engine

from apps.api.app.services.adapters.base import CHECKSUM_NAME_LENGTH, DatabaseAdapter
from apps.api.app.services.errors import InitialImportFailedError
from apps.api.app.services.reuse_journal import SQLiteJournal
from apps.api.app.services.reuse_strategy import DriverCapabilities

logger = logging.getLogger("dbprep.adapters")

SQLITE_HEADER = b"SQLite format 3\x00"
MEMORY_DATABASE = ":memory:"
DATABASES_DIR_NAME = "databases"
_SIDECAR_SUFFIXES = ("-journal", "-wal", "-shm")


def is_sqlite_file(path: Path) -> bool:
    with path.open("rb") as handle:
        return handle.read(len(SQLITE_HEADER)) == SQLITE_HEADER


class SQLiteAdapter(DatabaseAdapter):
    driver = "sqlite"
    snapshot_extension = "sqlite"
    snapshot_files_are_simply_copied = True

    @property
    def capabilities(self) -> DriverCapabilities:
        supported = not self.database_is_ephemeral()
        return DriverCapabilities(
            supports_reuse=supported,
            supports_snapshots=supported,
            supports_scenarios=supported,
            supports_transactions=supported,
            supports_journaling=supported,
            supports_verification=supported,
        )

    @property
    def databases_dir(self) -> Path:
        return Path(self._settings.storage_dir) / DATABASES_DIR_NAME

    def database_is_ephemeral(self) -> bool:
        database = self._url.database or ""
        return database in ("", MEMORY_DATABASE) or database.startswith("file::memory:")

    def is_compatible_with_browser_tests(self) -> bool:
        return not self.database_is_ephemeral()

    def can_be_built_remotely(self) -> bool:
        return not self.database_is_ephemeral()

    def pick_database_name(
        self, orig: str, modifier: str, scenario_checksum: str | None
    ) -> str:
        if self.database_is_ephemeral():
            return MEMORY_DATABASE
        orig_path = Path(orig)
        extension = orig_path.suffix or ".sqlite"
        prefix = self._settings.database_prefix
        modifier_part = f"-{modifier}" if modifier else ""
        if scenario_checksum:
            checksum_part = scenario_checksum[:CHECKSUM_NAME_LENGTH]
            filename = f"{prefix}{orig_path.stem}{modifier_part}.{checksum_part}{extension}"
            return str(self.databases_dir / filename)
        return str(orig_path.with_name(f"{prefix}{orig_path.stem}{modifier_part}{extension}"))

    def owns_database(self, name: str) -> bool:
        return Path(name).name.startswith(self._settings.database_prefix)

    def database_exists(self, database: str) -> bool:
        if database == MEMORY_DATABASE:
            return False
        return Path(database).is_file()

    def reset_database(self, database: str, exists: bool) -> None:
        # whole-file imports need the destination gone, so reset means delete
        self.drop_database(database)
        if database != MEMORY_DATABASE:
            Path(database).parent.mkdir(parents=True, exist_ok=True)

    def drop_database(self, database: str) -> None:
        self.dispose(database)
        if database == MEMORY_DATABASE:
            return
        path = Path(database)
        path.unlink(missing_ok=True)
        for suffix in _SIDECAR_SUFFIXES:
            path.with_name(path.name + suffix).unlink(missing_ok=True)

    def dump(self, database: str, path: Path) -> None:
        self.dispose(database)
        shutil.copyfile(database, path)

    def restore(self, database: str, path: Path) -> bool:
        try:
            if not is_sqlite_file(path):
                logger.warning("not a sqlite snapshot path=%s", path)
                return False
            self.drop_database(database)
            target = Path(database)
            target.parent.mkdir(parents=True, exist_ok=True)
            partial = target.with_name(f".{target.name}.{os.getpid()}.partial")
            shutil.copyfile(path, partial)
            os.replace(partial, target)
        except OSError as exc:
            logger.warning("sqlite snapshot import failed path=%s error=%s", path, exc)
            return False
        return True

    def import_initial(self, database: str, path: Path) -> None:
        try:
            if is_sqlite_file(path):
                self.drop_database(database)
                shutil.copyfile(path, database)
                return
            script = path.read_text(encoding="utf-8")
            raw = self.engine_for(database).raw_connection()
            try:
                raw.driver_connection.executescript(script)
            finally:
                raw.close()
        except (OSError, UnicodeDecodeError, sqlite3.Error) as exc:
            raise InitialImportFailedError(str(path)) from exc

    def start_journaling(self, engine: Engine) -> bool:
        return SQLiteJournal(engine).start()

    def reverse_journal(self, engine: Engine) -> bool:
        return SQLiteJournal(engine).reverse()

    def list_databases(self) -> list[str]:
        if not self.databases_dir.is_dir():
            return []
        return sorted(
            str(path)
            for path in self.databases_dir.iterdir()
            if path.is_file()
            and self.owns_database(path.name)
            and not path.name.endswith(_SIDECAR_SUFFIXES)
        )
