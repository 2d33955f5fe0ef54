"""Endpoint that builds databases on behalf of remote peers."""

from __future__ import annotations

from fastapi import APIRouter, Form, HTTPException, Request, status

from apps.api.app.core.config import get_settings
from apps.api.app.services.audit import log_structured_event
from apps.api.app.services.build_caches import BuildCaches
from apps.api.app.services.build_spec import BuildSpec
from apps.api.app.services.database_builder import build_for_remote_peer
from apps.api.app.services.errors import DBPrepError, RemoteShareError
from apps.api.app.services.remote_build import CONFIG_FIELD
from apps.api.app.services.resolved_settings import ResolvedSettings

router = APIRouter(prefix="/_dbprep", tags=["remote-build"])


@router.post("/build", response_model=ResolvedSettings)
def build_database(
    request: Request,
    config: str = Form(..., alias=CONFIG_FIELD),
) -> ResolvedSettings:
    settings = get_settings()
    if not settings.remote_build_enabled:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND, detail="remote builds are disabled"
        )
    try:
        spec = BuildSpec.from_payload(config)
    except RemoteShareError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc

    caches: BuildCaches = request.app.state.build_caches
    try:
        return build_for_remote_peer(
            spec,
            settings=settings,
            caches=caches,
            seeder_registry=request.app.state.seeder_registry,
        )
    except DBPrepError as exc:
        log_structured_event(
            "remote_build_failed",
            connection=spec.connection,
            error_type=type(exc).__name__,
            detail=str(exc),
        )
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=str(exc)
        ) from exc
