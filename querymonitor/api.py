"""
HTTP API for the query monitor.

Exposes the monitoring lifecycle, the stored metrics and leaderboard, and the
on-demand target operations. The app lifespan resumes a persisted profile on
startup and stops the background scheduler on shutdown.

Run with:
    querymonitor serve
or:
    uvicorn querymonitor.api:create_app --factory
"""

from __future__ import annotations

from contextlib import asynccontextmanager
from datetime import timedelta
from typing import Any, Dict, List, Optional

from fastapi import FastAPI, HTTPException, Query, Request
from fastapi.middleware.cors import CORSMiddleware

from querymonitor import __version__
from querymonitor.domain.models import (
    ConnectionProfile,
    DailyLeaderboardEntry,
    MonitoringStatus,
    QueryStatCandidate,
    SystemMetricSample,
)
from querymonitor.errors import ConnectivityError, MissingExtensionError, MonitorError
from querymonitor.service import MonitoringService, build_service
from querymonitor.utils.logging import get_logger

log = get_logger(__name__)


def _raise_http(exc: MonitorError) -> None:
    if isinstance(exc, MissingExtensionError):
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    if isinstance(exc, ConnectivityError):
        raise HTTPException(status_code=502, detail=str(exc)) from exc
    raise HTTPException(status_code=500, detail=str(exc)) from exc


def create_app(service: Optional[MonitoringService] = None) -> FastAPI:
    """
    Build the FastAPI application.

    A prebuilt service can be injected (tests); otherwise one is built from
    settings when the app starts.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        svc = service or build_service()
        app.state.service = svc
        if svc.reconcile_on_boot():
            log.info("Persisted monitoring profile found; resume scheduled")
        yield
        log.info("Shutting down query monitor")
        svc.close()

    app = FastAPI(
        title="Query Monitor",
        description="Samples PostgreSQL statistics and keeps a daily slow-query leaderboard.",
        version=__version__,
        lifespan=lifespan,
    )
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["*"],
        allow_headers=["*"],
    )

    def _service(request: Request) -> MonitoringService:
        return request.app.state.service

    @app.get("/health")
    def health() -> Dict[str, Any]:
        return {"status": "ok", "version": __version__}

    # -- monitoring lifecycle ----------------------------------------------

    @app.post("/api/monitoring/start")
    def start_monitoring(profile: ConnectionProfile, request: Request) -> Dict[str, Any]:
        try:
            report = _service(request).start_monitoring(profile)
        except MonitorError as exc:
            _raise_http(exc)
        return {
            "success": True,
            "message": "Monitoring started",
            "first_cycle_error": report.get("error"),
        }

    @app.post("/api/monitoring/stop")
    def stop_monitoring(request: Request) -> Dict[str, Any]:
        try:
            _service(request).stop_monitoring()
        except MonitorError as exc:
            _raise_http(exc)
        return {"success": True, "message": "Monitoring stopped"}

    @app.get("/api/monitoring/status", response_model=MonitoringStatus)
    def monitoring_status(request: Request) -> MonitoringStatus:
        return _service(request).get_status()

    # -- stored data --------------------------------------------------------

    @app.get("/api/monitoring/metrics", response_model=List[SystemMetricSample])
    def recent_metrics(
        request: Request,
        minutes: Optional[float] = Query(None, gt=0, le=24 * 60),
    ) -> List[SystemMetricSample]:
        window = timedelta(minutes=minutes) if minutes is not None else None
        try:
            return _service(request).recent_metrics(window)
        except MonitorError as exc:
            _raise_http(exc)

    @app.get("/api/history/daily-top", response_model=List[DailyLeaderboardEntry])
    def daily_top(request: Request) -> List[DailyLeaderboardEntry]:
        try:
            return _service(request).todays_leaderboard()
        except MonitorError as exc:
            _raise_http(exc)

    # -- on-demand target operations -------------------------------------

    @app.post("/api/pg-stat-statements", response_model=List[QueryStatCandidate])
    def live_catalogue(profile: ConnectionProfile, request: Request) -> List[QueryStatCandidate]:
        try:
            return _service(request).live_catalogue(profile)
        except MonitorError as exc:
            log.warning("Live catalogue failed", extra={"target": profile.label, "error": str(exc)})
            _raise_http(exc)

    @app.post("/api/pg-stat-statements/reset")
    def reset_statistics(profile: ConnectionProfile, request: Request) -> Dict[str, Any]:
        try:
            _service(request).reset_statistics(profile)
        except MonitorError as exc:
            log.warning("Statistics reset failed", extra={"target": profile.label, "error": str(exc)})
            _raise_http(exc)
        return {"success": True}

    return app


__all__ = ["create_app"]
