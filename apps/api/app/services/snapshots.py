"""Content-addressed snapshot files of built databases."""

from __future__ import annotations

import logging
import os
import time
from collections.abc import Iterator, Sequence
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING

from apps.api.app.services.build_spec import BuildSpec
from apps.api.app.services.checksums import ChecksumEngine
from apps.api.app.services.errors import ConfigError, SnapshotDeleteError

if TYPE_CHECKING:
    from apps.api.app.services.adapters.base import DatabaseAdapter

logger = logging.getLogger("dbprep.snapshots")

SNAPSHOT_DIR_NAME = "snapshots"


@dataclass(frozen=True)
class SnapshotInfo:
    path: Path
    filename: str
    token: str
    accessed_at: float
    is_valid: bool
    stale_grace_seconds: int

    def size(self) -> int | None:
        try:
            return self.path.stat().st_size
        except OSError:
            return None

    def should_purge_now(self, now: float | None = None) -> bool:
        if self.is_valid:
            return False
        current = time.time() if now is None else now
        return current - self.accessed_at > self.stale_grace_seconds


class SnapshotStore:
    def __init__(
        self,
        spec: BuildSpec,
        adapter: DatabaseAdapter,
        checksums: ChecksumEngine,
        *,
        database: str | None = None,
    ) -> None:
        self._spec = spec
        self._adapter = adapter
        self._checksums = checksums
        self._database = database

    @property
    def directory(self) -> Path:
        return Path(self._spec.storage_dir) / SNAPSHOT_DIR_NAME

    def path_for(self, token: str) -> Path:
        filename = f"{self._spec.snapshot_prefix}{token}.{self._adapter.snapshot_extension}"
        return self.directory / filename

    def has(self, token: str) -> bool:
        return self.path_for(token).is_file()

    def take(self, seeders: Sequence[str]) -> Path:
        path = self.path_for(self._checksums.snapshot_token(seeders))
        self._ensure_directory()
        # dump beside the target and rename so readers never see a partial file
        partial = path.with_name(f".{path.name}.{os.getpid()}.partial")
        started = time.monotonic()
        try:
            self._adapter.dump(self._require_database(), partial)
            os.replace(partial, path)
        finally:
            partial.unlink(missing_ok=True)
        logger.info(
            "snapshot taken path=%s seeders=%d elapsed_ms=%d",
            path,
            len(seeders),
            int((time.monotonic() - started) * 1000),
        )
        return path

    def restore(self, path: Path) -> bool:
        started = time.monotonic()
        restored = self._adapter.restore(self._require_database(), path)
        if not restored:
            logger.warning("snapshot could not be imported path=%s", path)
            return False
        logger.info(
            "snapshot imported path=%s elapsed_ms=%d",
            path,
            int((time.monotonic() - started) * 1000),
        )
        return True

    def find_and_restore(self, seeders: Sequence[str]) -> tuple[Path | None, list[str]]:
        """Import the snapshot covering the longest leading run of ``seeders``.

        Returns the imported path and the seeders still to be run after it.
        Seeders are dropped from the end one at a time until a snapshot is
        found; ``(None, seeders)`` means nothing usable exists.
        """
        candidate = list(seeders)
        left_to_run: list[str] = []
        while True:
            path = self.path_for(self._checksums.snapshot_token(candidate))
            if path.is_file() and self.restore(path):
                path.touch()
                return path, left_to_run
            if not candidate:
                return None, list(seeders)
            left_to_run.insert(0, candidate.pop())

    def enumerate(self) -> Iterator[SnapshotInfo]:
        if not self.directory.is_dir():
            return
        prefix = self._spec.snapshot_prefix
        for path in sorted(self.directory.iterdir()):
            if not path.name.startswith(prefix):
                continue
            try:
                if not path.is_file():
                    continue
                stat = path.stat()
                yield SnapshotInfo(
                    path=path,
                    filename=path.name,
                    token=path.name[len(prefix):].split(".", 1)[0],
                    accessed_at=stat.st_mtime,
                    is_valid=self._checksums.filename_has_build_checksum(path.name),
                    stale_grace_seconds=self._spec.stale_grace_seconds,
                )
            except OSError as exc:
                logger.warning("skipping snapshot path=%s error=%s", path, exc)

    def purge(self, info: SnapshotInfo) -> bool:
        try:
            info.path.unlink()
        except FileNotFoundError:
            # another worker got there first
            return True
        except OSError as exc:
            raise SnapshotDeleteError(str(info.path)) from exc
        logger.info("snapshot removed path=%s", info.path)
        return True

    def purge_stale(self, now: float | None = None) -> list[SnapshotInfo]:
        purged: list[SnapshotInfo] = []
        for info in self.enumerate():
            if not info.should_purge_now(now):
                continue
            try:
                self.purge(info)
            except SnapshotDeleteError as exc:
                logger.warning("stale snapshot not removed path=%s error=%s", info.path, exc)
                continue
            purged.append(info)
        return purged

    def _ensure_directory(self) -> None:
        storage_dir = Path(self._spec.storage_dir)
        if storage_dir.exists() and not storage_dir.is_dir():
            raise ConfigError.storage_dir_is_a_file(str(storage_dir))
        self.directory.mkdir(parents=True, exist_ok=True)

    def _require_database(self) -> str:
        if self._database is None:
            raise ValueError("SnapshotStore needs a database to dump or restore")
        return self._database
