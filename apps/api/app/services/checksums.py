"""Build, scenario and snapshot checksums for test databases."""

from __future__ import annotations

import importlib.util
import inspect
import logging
import time
from collections.abc import Iterator, Mapping, Sequence
from pathlib import Path
from typing import Any

from apps.api.app.services.build_runners import Seeder
from apps.api.app.services.build_spec import BuildSpec
from apps.api.app.services.errors import ConfigError
from dbprep.identity import build_input_fingerprint, sha256_file, short_token

logger = logging.getLogger("dbprep.checksums")

BUILD_PREFIX_LENGTH = 6
SNAPSHOT_PART_LENGTH = 12
_IGNORED_DIR_NAMES = {"__pycache__", ".git"}
_IGNORED_SUFFIXES = {".pyc", ".pyo"}


class ChecksumEngine:
    """Derive the checksums that decide whether a database can be reused.

    Values are memoised for the lifetime of the engine, so one engine
    should be used per build.
    """

    def __init__(
        self, spec: BuildSpec, seeder_registry: Mapping[str, Seeder] | None = None
    ) -> None:
        self._spec = spec
        self._seeder_registry = seeder_registry
        self._seeder_identities: dict[str, list[str]] = {}
        self._build_checksum: str | None = None
        self._scenario_checksums: dict[tuple[str, ...], str] = {}

    def build_checksum(self) -> str:
        if self._build_checksum is None:
            if self._spec.pre_calculated_build_checksum:
                self._build_checksum = self._spec.pre_calculated_build_checksum
            else:
                started = time.monotonic()
                self._build_checksum = build_input_fingerprint(self._build_payload())
                logger.debug(
                    "build checksum computed checksum=%s elapsed_ms=%d",
                    self._build_checksum,
                    int((time.monotonic() - started) * 1000),
                )
        return self._build_checksum

    def scenario_checksum(self, seeders: Sequence[str]) -> str:
        key = tuple(seeders)
        if key not in self._scenario_checksums:
            strategy = self._spec.reuse_strategy
            self._scenario_checksums[key] = build_input_fingerprint(
                {
                    "build_checksum": self.build_checksum(),
                    "snapshot_inputs": self._snapshot_inputs(key),
                    "reuse_mechanism": strategy.mechanism,
                    "is_browser_test": self._spec.is_browser_test,
                    "verify": strategy.verify,
                }
            )
        return self._scenario_checksums[key]

    def snapshot_token(self, seeders: Sequence[str]) -> str:
        """Return ``<build[:6]>-<inputs[:12]>``, used to name snapshot files."""
        inputs = build_input_fingerprint(self._snapshot_inputs(tuple(seeders)))
        return (
            f"{self.build_prefix()}-{short_token(inputs, SNAPSHOT_PART_LENGTH)}"
        )

    def current_scenario_checksum(self) -> str:
        return self.scenario_checksum(self._spec.seeders_to_include)

    def current_snapshot_token(self) -> str:
        return self.snapshot_token(self._spec.seeders_to_include)

    def build_prefix(self) -> str:
        return short_token(self.build_checksum(), BUILD_PREFIX_LENGTH)

    def filename_has_build_checksum(self, filename: str) -> bool:
        name = Path(filename).name
        prefix = self._spec.snapshot_prefix
        if not name.startswith(prefix):
            return False
        return name[len(prefix):].startswith(f"{self.build_prefix()}-")

    def _snapshot_inputs(self, seeders: tuple[str, ...]) -> dict[str, Any]:
        return {
            "seeders": [self._seeder_identity(name) for name in seeders],
            "initial_imports": self._spec.initial_imports_for_driver,
            "migrations": self._spec.migrations,
        }

    def _build_payload(self) -> dict[str, Any]:
        spec = self._spec
        payload: dict[str, Any] = {
            "driver": spec.driver,
            "migrations": spec.migrations,
            "initial_imports": [
                self._initial_import_identity(path) for path in spec.initial_imports_for_driver
            ],
        }
        if spec.cache_invalidation_enabled:
            payload["files"] = self._file_fingerprints()
        return payload

    def _initial_import_identity(self, raw_path: str) -> dict[str, str]:
        path = Path(raw_path)
        if not path.is_file():
            raise ConfigError.initial_import_path_invalid(raw_path)
        identity = {"path": raw_path}
        if self._spec.cache_invalidation_enabled:
            identity["fingerprint"] = self._fingerprint(path)
        return identity

    def _file_fingerprints(self) -> list[list[str]]:
        roots: list[tuple[str, bool]] = [(path, False) for path in self._spec.checksum_paths]
        migrations_dir = self._spec.migrations_dir
        if migrations_dir is not None:
            roots.append((str(migrations_dir), True))

        fingerprints: list[list[str]] = []
        for raw_root, is_migrations in roots:
            root = Path(raw_root)
            if not root.exists():
                if is_migrations:
                    raise ConfigError.migrations_path_invalid(raw_root)
                raise ConfigError.checksum_path_invalid(raw_root)
            for file_path in self._iter_files(root):
                label = raw_root
                if file_path != root:
                    label = f"{raw_root}/{file_path.relative_to(root).as_posix()}"
                fingerprints.append([label, self._fingerprint(file_path)])
        return sorted(fingerprints)

    def _iter_files(self, root: Path) -> Iterator[Path]:
        if root.is_file():
            yield root
            return
        storage_dir = Path(self._spec.storage_dir).resolve()
        for path in sorted(root.rglob("*")):
            if not path.is_file():
                continue
            if path.suffix in _IGNORED_SUFFIXES:
                continue
            if any(part in _IGNORED_DIR_NAMES for part in path.relative_to(root).parts):
                continue
            if storage_dir in path.resolve().parents:
                continue
            yield path

    def _fingerprint(self, path: Path) -> str:
        if self._spec.cache_invalidation_method == "modified":
            return str(path.stat().st_mtime_ns)
        return sha256_file(path)

    def _seeder_identity(self, name: str) -> list[str]:
        """Pair a seeder name with a fingerprint of the file that defines it.

        Seeders that cannot be located contribute their name only; running
        them reports the problem.
        """
        if name not in self._seeder_identities:
            identity = [name]
            source = self._seeder_source(name)
            if source is not None and self._spec.cache_invalidation_enabled:
                identity.append(self._fingerprint(source))
            self._seeder_identities[name] = identity
        return self._seeder_identities[name]

    def _seeder_source(self, name: str) -> Path | None:
        registry = self._seeder_registry
        if registry is not None and name in registry:
            try:
                source = inspect.getsourcefile(registry[name])
            except TypeError:
                return None
            return Path(source) if source else None
        module_name, _, attribute = name.partition(":")
        if not module_name or not attribute:
            return None
        try:
            module_spec = importlib.util.find_spec(module_name)
        except (ImportError, ValueError):
            return None
        if module_spec is None or not module_spec.has_location or not module_spec.origin:
            return None
        source = Path(module_spec.origin)
        return source if source.is_file() else None
