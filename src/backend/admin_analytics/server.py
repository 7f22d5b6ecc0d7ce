"""FastAPI server that exposes the admin analytics refresh coordinator."""
from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Any, AsyncIterator, Dict, Optional

from fastapi import FastAPI, HTTPException, Query
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict, Field

from .configuration import AnalyticsConfig, load_analytics_config
from .coordinator import RefreshCoordinator
from .export import build_export_document, export_filename
from .models import TimeRange
from .modes import AuthState, ModeSelector
from .normalizer import coerce_timezone
from .repository import AnalyticsDataSource, build_repository_from_env
from .service import AnalyticsService

logger = logging.getLogger(__name__)


class SessionHolder:
    """Latest session pushed by the authentication layer; read at the start of every cycle."""

    def __init__(self) -> None:
        self.current = AuthState()

    def __call__(self) -> AuthState:
        return self.current


class AutoRefreshRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    enabled: bool
    interval_seconds: Optional[float] = Field(None, gt=0, alias="intervalSeconds")


class SessionRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    is_authenticated: bool = Field(False, alias="isAuthenticated")
    user_id: Optional[str] = Field(None, alias="userId")
    email: Optional[str] = None
    is_connected: bool = Field(True, alias="isConnected")


class TimeRangeRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    time_range: TimeRange = Field(alias="timeRange")


class RefreshResponse(BaseModel):
    succeeded: bool
    error: Optional[str] = None
    status: Dict[str, Any]


def create_app(
    config: Optional[AnalyticsConfig] = None,
    data_source: Optional[AnalyticsDataSource] = None,
    local_source: Optional[AnalyticsDataSource] = None,
) -> FastAPI:
    """
    Build the HTTP app around a single refresh coordinator.

    Without an explicit ``data_source`` the platform repository is built from
    the configured database URL; with neither, only local mode is available.
    """

    cfg = config or load_analytics_config()
    logging.getLogger().setLevel(cfg.log_level)

    session = SessionHolder()
    coordinator = RefreshCoordinator(
        data_source if data_source is not None else build_repository_from_env(cfg.data_source),
        auth_provider=session,
        local_source=local_source,
        config=cfg.refresh,
        service=AnalyticsService(coerce_timezone(cfg.display.timezone)),
        time_range=TimeRange(cfg.display.default_time_range),
    )

    @asynccontextmanager
    async def lifespan(_: FastAPI) -> AsyncIterator[None]:
        if cfg.refresh.auto_refresh_enabled:
            coordinator.set_auto_refresh(True, cfg.refresh.auto_refresh_interval_seconds)
        yield
        await coordinator.aclose()

    app = FastAPI(title="Admin Analytics API", version="0.1.0", lifespan=lifespan)
    app.state.coordinator = coordinator
    app.state.session = session

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.get("/health")
    async def health() -> Dict[str, str]:
        return {"status": "ok"}

    @app.get("/status")
    async def status() -> Dict[str, Any]:
        return coordinator.get_status().as_dict()

    @app.post("/refresh", response_model=RefreshResponse)
    async def refresh() -> RefreshResponse:
        outcome = await coordinator.request_refresh()
        return RefreshResponse(succeeded=outcome.succeeded, error=outcome.error, status=outcome.status.as_dict())

    @app.delete("/refresh/errors")
    async def clear_refresh_errors() -> Dict[str, Any]:
        coordinator.reset_refresh_errors()
        return coordinator.get_status().as_dict()

    @app.put("/auto-refresh")
    async def auto_refresh(request: AutoRefreshRequest) -> Dict[str, Any]:
        try:
            updated = coordinator.set_auto_refresh(request.enabled, request.interval_seconds)
        except ValueError as exc:
            raise HTTPException(status_code=422, detail=str(exc)) from exc
        return updated.as_dict()

    @app.put("/session")
    async def update_session(request: SessionRequest) -> Dict[str, Any]:
        session.current = AuthState(
            is_authenticated=request.is_authenticated,
            user_id=request.user_id,
            email=request.email,
            is_connected=request.is_connected,
        )
        logger.info(
            "Session updated (authenticated=%s, connected=%s)",
            request.is_authenticated,
            request.is_connected,
        )
        return {
            "mode": coordinator.mode.value,
            "targetMode": ModeSelector.target_for(session.current).value,
        }

    @app.put("/time-range")
    async def update_time_range(request: TimeRangeRequest) -> Dict[str, Any]:
        coordinator.set_time_range(request.time_range)
        logger.info("Default time range set to %s", request.time_range.value)
        return {"timeRange": coordinator.time_range.value}

    @app.get("/analytics")
    async def analytics(time_range: Optional[TimeRange] = Query(None, alias="timeRange")) -> Dict[str, Any]:
        snapshot = coordinator.get_snapshot(time_range)
        if snapshot is None:
            raise HTTPException(status_code=404, detail="No analytics snapshot yet; trigger a refresh first.")
        return snapshot.as_dict()

    @app.get("/export")
    async def export() -> JSONResponse:
        snapshot = coordinator.get_snapshot()
        if snapshot is None:
            raise HTTPException(status_code=404, detail="No analytics snapshot to export.")
        exported_at = datetime.now(timezone.utc)
        document = build_export_document(snapshot, coordinator.get_status(), exported_at)
        filename = export_filename(exported_at)
        return JSONResponse(
            content=document,
            headers={"Content-Disposition": f'attachment; filename="{filename}"'},
        )

    return app


app = create_app()
