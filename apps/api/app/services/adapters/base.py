"""Per-driver operations needed to build, snapshot and reuse test databases."""

from __future__ import annotations

import logging
import subprocess
from abc import ABC, abstractmethod
from collections.abc import Sequence
from pathlib import Path

from sqlalchemy.engine import URL, Engine, make_url

from apps.api.app.core.config import Settings
from apps.api.app.db.session import create_database_engine
from apps.api.app.services.reuse_strategy import DriverCapabilities

logger = logging.getLogger("dbprep.adapters")

SERVER_DATABASE_NAME_LIMIT = 63
CHECKSUM_NAME_LENGTH = 12


class DatabaseAdapter(ABC):
    """Driver-specific behaviour, selected once per build."""

    driver: str = ""
    snapshot_extension: str = "sql"
    snapshot_files_are_simply_copied: bool = False
    admin_database: str | None = None

    def __init__(self, *, url: str | URL, settings: Settings) -> None:
        self._url = make_url(url)
        self._settings = settings
        self._engines: dict[str, Engine] = {}
        self._admin: Engine | None = None

    @property
    @abstractmethod
    def capabilities(self) -> DriverCapabilities: ...

    @property
    def host(self) -> str | None:
        return self._url.host

    def orig_database_name(self) -> str:
        return self._url.database or ""

    def pick_database_name(
        self, orig: str, modifier: str, scenario_checksum: str | None
    ) -> str:
        """Name the test database; never the original database itself."""
        suffix = f"_{modifier}" if modifier else ""
        if scenario_checksum:
            suffix = f"{suffix}_{scenario_checksum[:CHECKSUM_NAME_LENGTH]}"
        room = SERVER_DATABASE_NAME_LIMIT - len(self._settings.database_prefix) - len(suffix)
        return f"{self._settings.database_prefix}{orig[:room]}{suffix}"

    def owns_database(self, name: str) -> bool:
        return name.startswith(self._settings.database_prefix)

    def url_for(self, database: str) -> URL:
        return self._url.set(database=database)

    def engine_for(self, database: str) -> Engine:
        if database not in self._engines:
            self._engines[database] = create_database_engine(self.url_for(database))
        return self._engines[database]

    def dispose(self, database: str | None = None) -> None:
        names = [database] if database is not None else list(self._engines)
        for name in names:
            engine = self._engines.pop(name, None)
            if engine is not None:
                engine.dispose()
        if database is None and self._admin is not None:
            self._admin.dispose()
            self._admin = None

    def _admin_engine(self) -> Engine:
        """Server-level engine in autocommit mode, for CREATE and DROP DATABASE."""
        if self._admin is None:
            self._admin = create_database_engine(
                self._url.set(database=self.admin_database), isolation_level="AUTOCOMMIT"
            )
        return self._admin

    def _quote(self, name: str) -> str:
        return self._admin_engine().dialect.identifier_preparer.quote(name)

    @abstractmethod
    def database_exists(self, database: str) -> bool: ...

    @abstractmethod
    def reset_database(self, database: str, exists: bool) -> None: ...

    @abstractmethod
    def drop_database(self, database: str) -> None: ...

    def is_compatible_with_browser_tests(self) -> bool:
        return True

    def can_be_built_remotely(self) -> bool:
        return True

    def database_is_ephemeral(self) -> bool:
        return False

    @abstractmethod
    def dump(self, database: str, path: Path) -> None: ...

    @abstractmethod
    def restore(self, database: str, path: Path) -> bool:
        """Import ``path`` into ``database``; ``False`` on any import failure."""

    @abstractmethod
    def import_initial(self, database: str, path: Path) -> None: ...

    def start_journaling(self, engine: Engine) -> bool:
        # the journal stays disarmed, so the next run rebuilds
        logger.warning("journaling unavailable driver=%s", self.driver)
        return False

    def reverse_journal(self, engine: Engine) -> bool:
        logger.warning("journaling unavailable driver=%s", self.driver)
        return False

    def server_version(self, engine: Engine) -> str:
        with engine.connect():
            info = engine.dialect.server_version_info or ()
        return ".".join(str(part) for part in info)

    @abstractmethod
    def list_databases(self) -> list[str]: ...

    def _run_tool(
        self,
        args: Sequence[str],
        *,
        env: dict[str, str] | None = None,
        stdin_path: Path | None = None,
    ) -> None:
        logger.debug("running tool=%s", args[0])
        if stdin_path is None:
            subprocess.run(list(args), check=True, capture_output=True, env=env)
            return
        with stdin_path.open("rb") as handle:
            subprocess.run(list(args), check=True, capture_output=True, env=env, stdin=handle)
