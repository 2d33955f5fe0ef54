"""FastAPI application factory and app instance."""

from __future__ import annotations

from collections.abc import Mapping

from fastapi import FastAPI

from apps.api.app.api.routers.remote_build import router as remote_build_router
from apps.api.app.api.routers.system import router as system_router
from apps.api.app.core.config import get_settings
from apps.api.app.core.ops import validate_runtime_configuration
from apps.api.app.services.build_caches import BuildCaches
from apps.api.app.services.build_runners import Seeder


def create_app(
    *,
    caches: BuildCaches | None = None,
    seeder_registry: Mapping[str, Seeder] | None = None,
) -> FastAPI:
    """Create FastAPI app with deterministic configuration wiring."""
    settings = get_settings()
    validate_runtime_configuration(settings)
    app = FastAPI(title=settings.app_name, version=settings.app_version)
    app.state.build_caches = caches if caches is not None else BuildCaches()
    app.state.seeder_registry = seeder_registry
    app.include_router(system_router)
    app.include_router(remote_build_router)
    return app


app = create_app()
