"""Test-side entry point: prepare a database around one test body."""

from __future__ import annotations

import dataclasses
import os
from collections.abc import Iterator, Mapping
from contextlib import contextmanager
from dataclasses import dataclass

from sqlalchemy.engine import Connection, Engine

from apps.api.app.core.config import Settings, get_settings
from apps.api.app.services.adapters import adapter_for_connection
from apps.api.app.services.build_caches import BuildCaches
from apps.api.app.services.build_runners import Seeder
from apps.api.app.services.build_spec import BuildRequest
from apps.api.app.services.database_builder import DatabaseBuilder
from apps.api.app.services.resolved_settings import ResolvedSettings

PARALLEL_WORKER_ENV = "PYTEST_XDIST_WORKER"


@dataclass(frozen=True)
class PreparedDatabase:
    resolved: ResolvedSettings
    engine: Engine
    # set when the test must run inside the reuse transaction
    connection: Connection | None

    @property
    def bind(self) -> Connection | Engine:
        return self.connection if self.connection is not None else self.engine


def _with_worker_modifier(request: BuildRequest) -> BuildRequest:
    if request.database_modifier is not None:
        return request
    return dataclasses.replace(
        request, database_modifier=os.environ.get(PARALLEL_WORKER_ENV, "")
    )


@contextmanager
def prepared_database(
    request: BuildRequest | None = None,
    *,
    caches: BuildCaches,
    settings: Settings | None = None,
    seeder_registry: Mapping[str, Seeder] | None = None,
) -> Iterator[PreparedDatabase]:
    """Build or reuse the test database, yield it, then undo the test's changes.

    Post-test steps only run when the body finishes without raising, so a failing
    test is reported as itself rather than as a verification failure.
    """
    settings = settings or get_settings()
    request = _with_worker_modifier(request or BuildRequest())
    adapter = adapter_for_connection(request.connection or settings.default_connection, settings)
    spec = request.resolve(settings, capabilities=adapter.capabilities)
    builder = DatabaseBuilder(
        spec,
        settings=settings,
        adapter=adapter,
        caches=caches,
        seeder_registry=seeder_registry,
    )
    try:
        resolved = builder.execute()
        connection = builder.run_post_build_steps()
        try:
            yield PreparedDatabase(
                resolved=resolved, engine=builder.engine(), connection=connection
            )
        except BaseException:
            builder.abandon()
            raise
        builder.run_post_test_steps()
    finally:
        adapter.dispose()
