"""Build, reuse or delegate the database one test needs."""

from __future__ import annotations

import logging
import time
from collections.abc import Mapping
from datetime import datetime
from pathlib import Path

from sqlalchemy.engine import Connection, Engine

from apps.api.app.core.config import Settings
from apps.api.app.services.adapters import adapter_for_driver
from apps.api.app.services.adapters.base import DatabaseAdapter
from apps.api.app.services.audit import log_structured_event
from apps.api.app.services.build_caches import BuildCaches
from apps.api.app.services.build_runners import Seeder, run_migrations, run_seeders
from apps.api.app.services.build_spec import BuildSpec, driver_for_url
from apps.api.app.services.checksums import ChecksumEngine
from apps.api.app.services.errors import (
    AccessDeniedError,
    AlreadyExecutedError,
    BrowserTestIncompatibleError,
    ConfigError,
    RemoteBuildNotSupportedError,
    SnapshotImportsNotAllowedError,
    TransactionCommittedError,
    VerificationError,
    find_access_denied,
)
from apps.api.app.services.remote_build import send_build_request
from apps.api.app.services.resolved_settings import ResolvedSettings, VersionInfo
from apps.api.app.services.reuse_metadata import ARMED, ReuseMetadataStore, ReuseRecord
from apps.api.app.services.reuse_transaction import ReuseTransaction
from apps.api.app.services.snapshots import SnapshotStore
from apps.api.app.services.verification import (
    DatabaseFingerprint,
    capture_baseline,
    compare_data,
    compare_structure,
)

logger = logging.getLogger("dbprep.builder")


class DatabaseBuilder:
    """Drives one build: remote shortcut, local reuse, or a fresh build.

    ``execute`` prepares the database, ``run_post_build_steps`` arms the reuse
    mechanism right before the test body, and ``run_post_test_steps`` undoes
    the test's changes and checks they were undoable.
    """

    def __init__(
        self,
        spec: BuildSpec,
        *,
        settings: Settings,
        adapter: DatabaseAdapter,
        caches: BuildCaches,
        seeder_registry: Mapping[str, Seeder] | None = None,
    ) -> None:
        self._spec = spec
        self._settings = settings
        self._adapter = adapter
        self._caches = caches
        self._seeder_registry = seeder_registry
        self._checksums = ChecksumEngine(spec, seeder_registry)
        self._executed = False
        self._resolved: ResolvedSettings | None = None
        self._baseline: DatabaseFingerprint | None = None
        self._transaction: ReuseTransaction | None = None
        self._journal_started = False

    @property
    def resolved_settings(self) -> ResolvedSettings | None:
        return self._resolved

    def execute(self) -> ResolvedSettings:
        if self._executed:
            raise AlreadyExecutedError("This database builder has already been executed")
        self._executed = True

        started = time.monotonic()
        try:
            resolved = self._prepare()
        except AccessDeniedError:
            raise
        except Exception as exc:
            if find_access_denied(exc) is not None:
                raise AccessDeniedError.for_connection(self._spec.connection) from exc
            raise

        resolved = resolved.model_copy(
            update={
                "test_name": self._spec.test_name,
                "preparation_seconds": round(time.monotonic() - started, 4),
            }
        )
        self._resolved = resolved
        log_structured_event(
            "database_prepared",
            connection=resolved.connection,
            database=resolved.database,
            test_name=resolved.test_name,
            reused=resolved.database_was_reused,
            built_remotely=resolved.built_remotely,
            scenario_checksum=resolved.scenario_checksum,
            elapsed_ms=int(resolved.preparation_seconds * 1000),
        )
        return resolved

    def run_post_build_steps(self) -> Connection | None:
        """Capture the verification baseline and arm the reuse mechanism."""
        resolved = self._require_resolved()
        engine = self.engine()
        store = ReuseMetadataStore(engine)
        if resolved.verify_database:
            self._baseline = capture_baseline(engine)
        if resolved.using_transaction:
            self._transaction = ReuseTransaction(engine, store)
            return self._transaction.begin()
        if resolved.using_journal:
            store.arm_journal()
            self._journal_started = self._adapter.start_journaling(engine)
        return None

    def run_post_test_steps(self) -> None:
        resolved = self._require_resolved()
        engine = self.engine()
        store = ReuseMetadataStore(engine)

        if self._transaction is not None:
            transaction, self._transaction = self._transaction, None
            if transaction.finish():
                raise TransactionCommittedError(self._spec.connection, self._spec.test_name)

        differences: list[str] = []
        if self._baseline is not None:
            differences += compare_structure(engine, self._baseline)

        if self._journal_started:
            self._journal_started = False
            if self._adapter.reverse_journal(engine):
                store.mark_journal_reversed()

        if self._baseline is not None:
            baseline, self._baseline = self._baseline, None
            differences += compare_data(engine, baseline)
            if differences:
                store.mark_validation(False)
                raise VerificationError(resolved.database, differences)

    def abandon(self) -> None:
        """Undo what can be undone after a failed test body, without verifying."""
        self._baseline = None
        if self._transaction is not None:
            transaction, self._transaction = self._transaction, None
            transaction.finish()
        if self._journal_started:
            self._journal_started = False
            engine = self.engine()
            if self._adapter.reverse_journal(engine):
                ReuseMetadataStore(engine).mark_journal_reversed()

    def engine(self) -> Engine:
        return self._adapter.engine_for(self._require_resolved().database)

    def _require_resolved(self) -> ResolvedSettings:
        if self._resolved is None:
            raise RuntimeError("The database builder has not been executed")
        return self._resolved

    def _prepare(self) -> ResolvedSettings:
        spec = self._spec
        if not spec.connection_exists:
            raise ConfigError.invalid_connection(spec.connection)
        if spec.is_browser_test and not self._adapter.is_compatible_with_browser_tests():
            raise BrowserTestIncompatibleError(spec.driver)
        if spec.has_initial_imports and not spec.supports_snapshots:
            raise SnapshotImportsNotAllowedError(spec.driver, spec.orig_database)
        if spec.should_build_remotely and not spec.is_remote_build:
            return self._prepare_remotely()
        return self._prepare_locally()

    def _prepare_remotely(self) -> ResolvedSettings:
        spec = self._spec
        remote_url = spec.remote_build_url or ""
        if not self._adapter.can_be_built_remotely():
            raise RemoteBuildNotSupportedError(spec.driver)

        force_rebuild = spec.force_rebuild
        remote_build_checksum = self._caches.remote_build_checksums.get(remote_url)
        if remote_build_checksum is not None:
            cached = self._cached_remote_build(remote_build_checksum)
            if cached is not None and not force_rebuild:
                if self._remote_database_is_clean(cached):
                    logger.info(
                        "reusing remotely built database database=%s", cached.database
                    )
                    ReuseMetadataStore(self._adapter.engine_for(cached.database)).touch()
                    return cached.model_copy(
                        update={"database_was_reused": True, "built_remotely": True}
                    )
                force_rebuild = True

        remote_spec = spec.for_remote(
            force_rebuild=force_rebuild, pre_calculated_build_checksum=remote_build_checksum
        )
        resolved = send_build_request(
            remote_spec, remote_url, timeout=self._settings.remote_build_timeout_seconds
        )
        self._caches.remember_remote_build(remote_url, resolved)
        # the peer may have replaced the database underneath pooled connections
        self._adapter.dispose(resolved.database)
        return resolved.model_copy(update={"versions": self._version_info(resolved.database)})

    def _cached_remote_build(self, remote_build_checksum: str) -> ResolvedSettings | None:
        checksums = ChecksumEngine(
            self._spec.for_remote(
                force_rebuild=False, pre_calculated_build_checksum=remote_build_checksum
            ),
            self._seeder_registry,
        )
        return self._caches.resolved_settings.get(checksums.current_scenario_checksum())

    def _remote_database_is_clean(self, cached: ResolvedSettings) -> bool:
        if not cached.is_reusable or cached.build_checksum is None:
            return False
        if not self._adapter.database_exists(cached.database):
            return False
        store = ReuseMetadataStore(self._adapter.engine_for(cached.database))
        return store.is_clean(
            build_checksum=cached.build_checksum,
            scenario_checksum=cached.scenario_checksum or "",
            project_name=self._spec.project_name,
            mechanism=self._spec.reuse_strategy.mechanism,
            verify=self._spec.should_verify,
        )

    def _prepare_locally(self) -> ResolvedSettings:
        spec = self._spec
        build_checksum = self._checksums.build_checksum()
        scenario_checksum = self._checksums.current_scenario_checksum()
        database = self._adapter.pick_database_name(
            spec.orig_database,
            spec.database_modifier,
            scenario_checksum if spec.using_scenarios else None,
        )
        existed = self._adapter.database_exists(database)

        reused = False
        if existed and not spec.force_rebuild:
            store = ReuseMetadataStore(self._adapter.engine_for(database))
            reused = store.is_clean(
                build_checksum=build_checksum,
                scenario_checksum=scenario_checksum,
                project_name=spec.project_name,
                mechanism=spec.reuse_strategy.mechanism,
                verify=spec.should_verify,
            )
            if reused:
                store.touch()
            else:
                logger.info(
                    "rebuilding database database=%s reason=%s",
                    database,
                    store.cant_reuse_reason,
                )

        if not reused:
            self._build_database(database, existed)
            self._write_metadata(database, build_checksum, scenario_checksum)

        strategy = spec.reuse_strategy
        return ResolvedSettings(
            project_name=spec.project_name,
            test_name=spec.test_name,
            connection=spec.connection,
            driver=spec.driver,
            host=self._adapter.host,
            database=database,
            storage_dir=spec.storage_dir,
            initial_imports=spec.initial_imports_for_driver,
            migrations=spec.migrations,
            seeders=spec.seeders_to_include,
            snapshot_type=spec.snapshot_type,
            is_browser_test=spec.is_browser_test,
            is_parallel_test=bool(spec.database_modifier),
            using_transaction=strategy.mechanism == "transaction",
            using_journal=strategy.mechanism == "journal",
            verify_database=strategy.verify,
            force_rebuild=spec.force_rebuild,
            using_scenarios=spec.using_scenarios,
            build_checksum=build_checksum,
            scenario_checksum=scenario_checksum,
            snapshot_checksum=self._checksums.current_snapshot_token(),
            database_existed_before=existed,
            database_was_reused=reused,
            versions=self._version_info(database),
        )

    def _build_database(self, database: str, existed: bool) -> None:
        spec = self._spec
        adapter = self._adapter
        snapshots = SnapshotStore(spec, adapter, self._checksums, database=database)
        seeders = spec.seeders_to_include

        if spec.snapshots_enabled:
            snapshots.purge_stale()

        # dump-based restores recreate the database themselves
        if not spec.snapshots_enabled or adapter.snapshot_files_are_simply_copied:
            adapter.reset_database(database, existed)
        if spec.snapshots_enabled:
            restored, left_to_run = snapshots.find_and_restore(seeders)
            if restored is not None:
                if left_to_run:
                    run_seeders(adapter.engine_for(database), left_to_run, self._seeder_registry)
                    if spec.should_take_snapshot_after_seeders:
                        snapshots.take(seeders)
                return
            # nothing usable was imported; build from an empty database
            adapter.reset_database(database, adapter.database_exists(database))

        for initial_import in spec.initial_imports_for_driver:
            adapter.import_initial(database, Path(initial_import))
        migrations_dir = spec.migrations_dir
        if migrations_dir is not None:
            run_migrations(adapter.engine_for(database), migrations_dir)
        if spec.should_take_snapshot_after_migrations:
            snapshots.take([])
        if seeders:
            run_seeders(adapter.engine_for(database), seeders, self._seeder_registry)
        if spec.should_take_snapshot_after_seeders:
            snapshots.take(seeders)

    def _write_metadata(self, database: str, build_checksum: str, scenario_checksum: str) -> None:
        spec = self._spec
        strategy = spec.reuse_strategy
        ReuseMetadataStore(self._adapter.engine_for(database)).write(
            ReuseRecord(
                project_name=spec.project_name,
                orig_db_name=spec.orig_database,
                build_checksum=build_checksum,
                snapshot_checksum=self._checksums.current_snapshot_token(),
                scenario_checksum=scenario_checksum,
                transaction_reusable=ARMED if strategy.mechanism == "transaction" else None,
                journal_reusable=ARMED if strategy.mechanism == "journal" else None,
                validation_passed=ARMED if strategy.verify else None,
                last_used=datetime.utcnow(),
            )
        )

    def _version_info(self, database: str) -> VersionInfo:
        key = (self._spec.connection, self._spec.driver)
        if key not in self._caches.versions:
            self._caches.versions[key] = VersionInfo(
                driver=self._spec.driver,
                server_version=self._adapter.server_version(self._adapter.engine_for(database)),
                package_version=self._settings.app_version,
            )
        return self._caches.versions[key]


def build_for_remote_peer(
    spec: BuildSpec,
    *,
    settings: Settings,
    caches: BuildCaches,
    seeder_registry: Mapping[str, Seeder] | None = None,
) -> ResolvedSettings:
    """Build the database a peer asked for, using this installation's connections."""
    url = settings.connections.get(spec.connection)
    if url is None:
        raise ConfigError.invalid_connection(spec.connection)
    adapter = adapter_for_driver(driver_for_url(url), url, settings, connection=spec.connection)
    local_spec = spec.model_copy(
        update={
            "is_remote_build": True,
            "remote_build_url": None,
            "connection_exists": True,
            "driver": adapter.driver,
            "orig_database": adapter.orig_database_name(),
            "storage_dir": str(settings.storage_dir),
            "snapshot_prefix": settings.snapshot_prefix,
            "database_prefix": settings.database_prefix,
            "stale_grace_seconds": settings.stale_grace_seconds,
        }
    ).with_capabilities(adapter.capabilities)
    builder = DatabaseBuilder(
        local_spec,
        settings=settings,
        adapter=adapter,
        caches=caches,
        seeder_registry=seeder_registry,
    )
    try:
        return builder.execute()
    finally:
        adapter.dispose()
