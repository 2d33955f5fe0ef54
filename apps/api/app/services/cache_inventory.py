"""List and remove cached snapshots and scenario databases."""

from __future__ import annotations

import logging
from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone

from apps.api.app.core.config import Settings
from apps.api.app.services.adapters import adapter_for_connection
from apps.api.app.services.adapters.base import DatabaseAdapter
from apps.api.app.services.build_runners import Seeder
from apps.api.app.services.build_spec import BuildRequest, BuildSpec
from apps.api.app.services.checksums import ChecksumEngine
from apps.api.app.services.reuse_metadata import ReuseMetadataStore
from apps.api.app.services.snapshots import SnapshotInfo, SnapshotStore

logger = logging.getLogger("dbprep.inventory")


@dataclass(frozen=True)
class DatabaseInfo:
    name: str
    is_valid: bool
    last_used: datetime | None
    should_purge: bool


@dataclass
class CacheRemoval:
    snapshots: list[str] = field(default_factory=list)
    databases: list[str] = field(default_factory=list)


def list_snapshots(store: SnapshotStore) -> list[SnapshotInfo]:
    return list(store.enumerate())


def list_databases(
    adapter: DatabaseAdapter,
    spec: BuildSpec,
    checksums: ChecksumEngine,
    *,
    now: float | None = None,
) -> list[DatabaseInfo]:
    """Describe every test database this installation created on the connection."""
    current = _naive_utc(now)
    grace = timedelta(seconds=spec.stale_grace_seconds)
    build_checksum = checksums.build_checksum()
    found: list[DatabaseInfo] = []
    for name in adapter.list_databases():
        if name == spec.orig_database:
            continue
        try:
            record = ReuseMetadataStore(adapter.engine_for(name)).read()
        finally:
            adapter.dispose(name)
        is_valid = record is not None and record.build_checksum == build_checksum
        last_used = record.last_used if record is not None else None
        stale = last_used is None or current - last_used > grace
        found.append(
            DatabaseInfo(
                name=name,
                is_valid=is_valid,
                last_used=last_used,
                should_purge=not is_valid and stale,
            )
        )
    return found


def remove_caches(
    store: SnapshotStore,
    adapter: DatabaseAdapter,
    spec: BuildSpec,
    checksums: ChecksumEngine,
    *,
    stale_only: bool = False,
    now: float | None = None,
) -> CacheRemoval:
    """Delete snapshots and test databases; ``stale_only`` keeps anything still usable."""
    removal = CacheRemoval()
    for info in list_snapshots(store):
        if stale_only and not info.should_purge_now(now):
            continue
        store.purge(info)
        removal.snapshots.append(info.filename)

    for database in list_databases(adapter, spec, checksums, now=now):
        if stale_only and not database.should_purge:
            continue
        adapter.drop_database(database.name)
        logger.info("test database removed database=%s", database.name)
        removal.databases.append(database.name)
    return removal


def _naive_utc(timestamp: float | None) -> datetime:
    # last_used is stored as naive UTC
    if timestamp is None:
        return datetime.utcnow()
    return datetime.fromtimestamp(timestamp, tz=timezone.utc).replace(tzinfo=None)


@dataclass(frozen=True)
class CacheScope:
    adapter: DatabaseAdapter
    spec: BuildSpec
    checksums: ChecksumEngine
    store: SnapshotStore


def cache_scope(
    settings: Settings,
    connection: str | None = None,
    seeder_registry: Mapping[str, Seeder] | None = None,
) -> CacheScope:
    """Resolve the configured build for ``connection`` so its caches can be judged."""
    adapter = adapter_for_connection(connection or settings.default_connection, settings)
    spec = BuildRequest(connection=connection).resolve(
        settings, capabilities=adapter.capabilities
    )
    checksums = ChecksumEngine(spec, seeder_registry)
    return CacheScope(
        adapter=adapter,
        spec=spec,
        checksums=checksums,
        store=SnapshotStore(spec, adapter, checksums),
    )
