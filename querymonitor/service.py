"""
Boundary operations of the query monitor.

`MonitoringService` is what the HTTP API and the CLI talk to. It wires the
scheduler, the snapshot store and the on-demand target operations together
from a Settings object.

Usage (example):
    from querymonitor.service import build_service

    service = build_service()
    service.reconcile_on_boot()
    service.start_monitoring(profile)
    print(service.todays_leaderboard())
"""

from __future__ import annotations

from datetime import date, timedelta
from typing import List, Optional

from querymonitor.collector import MetricsCollector, fetch_live_catalogue, reset_statistics
from querymonitor.config import Settings, get_settings
from querymonitor.domain.models import (
    ConnectionProfile,
    CycleReport,
    DailyLeaderboardEntry,
    MonitoringStatus,
    QueryStatCandidate,
    SystemMetricSample,
)
from querymonitor.infrastructure.profile_store import ProfileStore
from querymonitor.infrastructure.store import SnapshotStore
from querymonitor.scheduler import MonitoringScheduler
from querymonitor.utils.logging import get_logger

log = get_logger(__name__)


class MonitoringService:
    """
    Facade over the monitoring core.

    Monitoring lifecycle calls are forwarded to the scheduler; reads go to the
    store; live catalogue and reset open their own connection to the target
    and propagate any error to the caller.
    """

    def __init__(
        self,
        settings: Settings,
        store: SnapshotStore,
        scheduler: MonitoringScheduler,
    ) -> None:
        self.settings = settings
        self.store = store
        self.scheduler = scheduler

    # -- lifecycle ------------------------------------------------------

    def start_monitoring(self, profile: ConnectionProfile) -> CycleReport:
        return self.scheduler.start(profile)

    def stop_monitoring(self) -> bool:
        return self.scheduler.stop()

    def get_status(self) -> MonitoringStatus:
        return self.scheduler.status()

    def reconcile_on_boot(self) -> bool:
        return self.scheduler.reconcile_on_boot()

    def persisted_profile(self) -> Optional[ConnectionProfile]:
        return self.scheduler.persisted_profile()

    def close(self) -> None:
        self.scheduler.shutdown(wait=False)
        self.store.close()

    # -- reads ----------------------------------------------------------

    def today(self) -> date:
        return self.scheduler.today()

    def recent_metrics(self, window: Optional[timedelta] = None) -> List[SystemMetricSample]:
        """Samples from the last `window` (default: settings.metrics_window), oldest first."""
        span = window if window is not None else self.settings.metrics_window
        return self.store.samples_since(self.scheduler.now() - span)

    def todays_leaderboard(self) -> List[DailyLeaderboardEntry]:
        return self.store.leaderboard_for(self.today())

    # -- on-demand target operations --------------------------------------

    def live_catalogue(
        self, profile: ConnectionProfile, limit: Optional[int] = None
    ) -> List[QueryStatCandidate]:
        return fetch_live_catalogue(
            profile,
            limit=limit or self.settings.live_catalogue_limit,
            connect_timeout=self.settings.connect_timeout_seconds,
        )

    def reset_statistics(self, profile: ConnectionProfile) -> None:
        reset_statistics(profile, connect_timeout=self.settings.connect_timeout_seconds)


def build_service(settings: Optional[Settings] = None) -> MonitoringService:
    """
    Build a MonitoringService from settings (defaults to get_settings()).
    """
    settings = settings or get_settings()
    store = SnapshotStore.from_url(settings.store_url)

    def collector_factory(profile: ConnectionProfile) -> MetricsCollector:
        return MetricsCollector(
            profile,
            candidate_window=settings.candidate_window,
            connect_timeout=settings.connect_timeout_seconds,
        )

    scheduler = MonitoringScheduler(
        store,
        ProfileStore(settings.profile_path),
        collector_factory=collector_factory,
        interval_seconds=settings.sample_interval_seconds,
        resume_delay_seconds=settings.resume_delay_seconds,
        leaderboard_size=settings.leaderboard_size,
        metrics_retention=settings.metrics_retention,
        day_tz=settings.day_timezone(),
    )
    log.debug(
        "Monitoring service built",
        extra={"store": store.engine.url.render_as_string(hide_password=True)},
    )
    return MonitoringService(settings, store, scheduler)


__all__ = ["MonitoringService", "build_service"]
