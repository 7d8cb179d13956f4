"""
Sampling scheduler for the query monitor.

Owns the monitoring lifecycle (Stopped / Running), the persisted connection
profile and a single APScheduler job that drives sampling cycles:

    collect -> append sample -> upsert leaderboard -> sweep

Ticks use fixed-delay semantics: the next tick is armed only after the
current cycle has finished, on a one-worker executor, so cycles never
overlap. Every failure inside a cycle is logged and recorded in the cycle
report; it never stops future ticks.

Usage:
    scheduler = MonitoringScheduler(store, ProfileStore(path))
    scheduler.reconcile_on_boot()   # resume after a restart, if applicable
    scheduler.start(profile)
    ...
    scheduler.stop()
"""

from __future__ import annotations

import threading
from datetime import date, datetime, timedelta, timezone, tzinfo
from typing import Callable, Optional

from apscheduler.executors.pool import ThreadPoolExecutor
from apscheduler.jobstores.base import JobLookupError
from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.date import DateTrigger

from querymonitor.collector import Collector, MetricsCollector, derive_tps
from querymonitor.domain.models import (
    ConnectionProfile,
    CycleReport,
    MonitoringStatus,
)
from querymonitor.errors import MonitorError
from querymonitor.infrastructure.profile_store import ProfileStore
from querymonitor.infrastructure.store import SnapshotStore
from querymonitor.leaderboard import DEFAULT_CAPACITY, LeaderboardMaintainer
from querymonitor.retention import DEFAULT_METRICS_RETENTION, RetentionSweeper
from querymonitor.utils.logging import get_logger
from querymonitor.utils.profiler import profile_block
from querymonitor.utils.timeutil import day_key, utc_now

log = get_logger(__name__)

DEFAULT_INTERVAL_SECONDS = 60.0
DEFAULT_RESUME_DELAY_SECONDS = 1.0

TICK_JOB_ID = "sampling_cycle"
RESUME_JOB_ID = "resume_monitoring"

CollectorFactory = Callable[[ConnectionProfile], Collector]


def _wall_clock() -> datetime:
    # Timers always follow real time, even when data stamps use an injected clock.
    return datetime.now(timezone.utc)


class MonitoringScheduler:
    """
    Start/stop-controllable sampling service.

    Parameters
    ----------
    store : SnapshotStore
        Destination for samples and leaderboard entries.
    profile_store : ProfileStore
        Durable record of the active profile, used for restart recovery.
    collector_factory : callable, optional
        Builds the collector for a profile. Defaults to MetricsCollector.
    interval_seconds : float
        Delay between the end of one cycle and the start of the next.
    resume_delay_seconds : float
        Delay before a persisted profile is resumed on boot.
    leaderboard_size : int
        K, the maximum number of leaderboard entries per day.
    metrics_retention : timedelta
        Age after which samples are swept.
    day_tz : tzinfo, optional
        Timezone of the day keys; None means the host's local timezone.
    clock : callable
        Returns the current aware datetime.
    """

    def __init__(
        self,
        store: SnapshotStore,
        profile_store: ProfileStore,
        collector_factory: Optional[CollectorFactory] = None,
        interval_seconds: float = DEFAULT_INTERVAL_SECONDS,
        resume_delay_seconds: float = DEFAULT_RESUME_DELAY_SECONDS,
        leaderboard_size: int = DEFAULT_CAPACITY,
        metrics_retention: timedelta = DEFAULT_METRICS_RETENTION,
        day_tz: Optional[tzinfo] = None,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self._store = store
        self._profile_store = profile_store
        self._collector_factory = collector_factory or (
            lambda profile: MetricsCollector(profile, clock=clock)
        )
        self.interval = timedelta(seconds=interval_seconds)
        self.resume_delay = timedelta(seconds=resume_delay_seconds)
        self._maintainer = LeaderboardMaintainer(store, capacity=leaderboard_size)
        self._sweeper = RetentionSweeper(store, metrics_retention=metrics_retention)
        self._day_tz = day_tz
        self._clock = clock

        self._lock = threading.RLock()
        self._cycle_lock = threading.Lock()
        self._profile: Optional[ConnectionProfile] = None
        self._generation = 0
        self._last_report: Optional[CycleReport] = None
        self._scheduler = BackgroundScheduler(
            executors={"default": ThreadPoolExecutor(max_workers=1)},
            job_defaults={"coalesce": True, "max_instances": 1, "misfire_grace_time": None},
            timezone=timezone.utc,
        )

    # -- lifecycle ------------------------------------------------------

    @property
    def is_running(self) -> bool:
        with self._lock:
            return self._profile is not None

    def start(self, profile: ConnectionProfile) -> CycleReport:
        """
        Transition to Running with `profile` (last start wins).

        Persists the profile, runs one cycle synchronously and arms the timer.
        Returns the report of that first cycle.
        """
        with self._lock:
            self._profile_store.save(profile)
            self._disarm()
            self._generation += 1
            generation = self._generation
            self._profile = profile
            self._ensure_started()
        log.info("Monitoring started", extra={"target": profile.label})

        try:
            report = self.run_cycle(profile)
        finally:
            with self._lock:
                if generation == self._generation:
                    self._arm(generation)
        return report

    def stop(self) -> bool:
        """
        Transition to Stopped. Returns False when already stopped.

        A cycle already in progress is allowed to finish but will not arm
        another tick.
        """
        with self._lock:
            was_running = self._profile is not None
            self._generation += 1
            self._disarm()
            self._profile = None
            self._profile_store.clear()
        if was_running:
            log.info("Monitoring stopped")
        return was_running

    def reconcile_on_boot(self) -> bool:
        """
        Resume a persisted profile after a short delay.

        Returns True when a resume was scheduled. Safe to call repeatedly.
        """
        profile = self._profile_store.load()
        if profile is None:
            return False
        with self._lock:
            if self._profile is not None:
                return False
            self._ensure_started()
            self._scheduler.add_job(
                self._resume,
                trigger=DateTrigger(run_date=_wall_clock() + self.resume_delay),
                args=[profile, self._generation],
                id=RESUME_JOB_ID,
                name="Resume monitoring",
                replace_existing=True,
            )
        log.info("Resuming persisted monitoring profile", extra={"target": profile.label})
        return True

    def shutdown(self, wait: bool = True) -> None:
        """
        Stop the background thread for process exit.

        The persisted profile is kept so the next boot resumes monitoring.
        """
        with self._lock:
            self._generation += 1
            self._profile = None
            running = self._scheduler.running
        if running:
            self._scheduler.shutdown(wait=wait)

    def now(self) -> datetime:
        return self._clock()

    def today(self) -> date:
        """Day key used for the leaderboard and retention."""
        return day_key(self._clock(), self._day_tz)

    def persisted_profile(self) -> Optional[ConnectionProfile]:
        return self._profile_store.load()

    def status(self) -> MonitoringStatus:
        with self._lock:
            profile = self._profile
            job = self._scheduler.get_job(TICK_JOB_ID) if profile is not None else None
            last = dict(self._last_report) if self._last_report is not None else None
        return MonitoringStatus(
            running=profile is not None,
            profile=profile.redacted() if profile is not None else None,
            next_run_at=job.next_run_time if job is not None else None,
            last_cycle=last,
        )

    # -- cycle ----------------------------------------------------------

    def run_cycle(self, profile: ConnectionProfile) -> CycleReport:
        """
        Run collect -> upsert -> sweep once, serialized with other cycles.

        Never raises for collector or storage failures; they are logged and
        recorded in the returned report.
        """
        with self._cycle_lock:
            now = self._clock()
            today = day_key(now, self._day_tz)
            report = CycleReport(
                started_at=now, day=today, sample_written=False, candidates=0, error=None
            )
            with profile_block("sampling-cycle") as stats:
                self._collect_and_store(profile, today, report)
                self._sweep(self._clock(), today, report)
            report["duration_seconds"] = round(stats.duration_seconds, 3)
            report["rss_bytes"] = stats.rss_bytes
            report["cpu_percent"] = stats.cpu_percent

            with self._lock:
                self._last_report = report
        log.info(
            "Sampling cycle finished",
            extra={
                "target": profile.label,
                "duration_seconds": report["duration_seconds"],
                "rss_bytes": report["rss_bytes"],
                "cpu_percent": report["cpu_percent"],
                "sample_written": report["sample_written"],
                "failed": report.get("error") is not None,
            },
        )
        return report

    def _collect_and_store(
        self, profile: ConnectionProfile, today: date, report: CycleReport
    ) -> None:
        try:
            snapshot = self._collector_factory(profile).collect()
        except MonitorError as exc:
            log.error(
                "Sampling cycle failed",
                extra={"target": profile.label, "error": str(exc), "kind": type(exc).__name__},
            )
            report["error"] = str(exc)
            return
        except Exception as exc:  # noqa: BLE001 - a bad cycle must not kill the timer
            log.exception("Sampling cycle failed unexpectedly", extra={"target": profile.label})
            report["error"] = str(exc)
            return

        report["candidates"] = len(snapshot.candidates)
        try:
            sample = derive_tps(snapshot.sample, self._store.latest_sample())
            self._store.append_sample(sample)
            report["sample_written"] = True
        except MonitorError as exc:
            log.error("Cannot persist system metrics", extra={"error": str(exc)})
            report["error"] = str(exc)
        except Exception as exc:  # noqa: BLE001 - a bad cycle must not kill the timer
            log.exception("Cannot persist system metrics")
            report["error"] = str(exc)

        try:
            outcome = self._maintainer.upsert(today, snapshot.candidates, self._clock())
            report["leaderboard"] = {
                "inserted": outcome.inserted,
                "updated": outcome.updated,
                "evicted": outcome.evicted,
                "dropped": outcome.dropped,
                "unchanged": outcome.unchanged,
                "trimmed": outcome.trimmed,
            }
        except MonitorError as exc:
            log.error("Cannot update leaderboard", extra={"error": str(exc)})
            report["error"] = str(exc)
        except Exception as exc:  # noqa: BLE001
            log.exception("Cannot update leaderboard")
            report["error"] = str(exc)

    def _sweep(self, now: datetime, today: date, report: CycleReport) -> None:
        try:
            result = self._sweeper.sweep(now, today)
            report["swept"] = {
                "metrics": result.metrics_deleted,
                "entries": result.entries_deleted,
            }
        except MonitorError as exc:
            log.error("Cleanup failed", extra={"error": str(exc)})
            report["error"] = report.get("error") or str(exc)
        except Exception as exc:  # noqa: BLE001
            log.exception("Cleanup failed")
            report["error"] = report.get("error") or str(exc)

    # -- timer ----------------------------------------------------------

    def _tick(self, generation: int) -> None:
        with self._lock:
            if generation != self._generation or self._profile is None:
                return
            profile = self._profile

        try:
            self.run_cycle(profile)
        finally:
            with self._lock:
                if generation == self._generation:
                    self._arm(generation)

    def _resume(self, profile: ConnectionProfile, generation: int) -> None:
        with self._lock:
            # A start or stop issued since boot takes precedence.
            if generation != self._generation or self._profile is not None:
                return
        self.start(profile)

    def _arm(self, generation: int) -> None:
        self._scheduler.add_job(
            self._tick,
            trigger=DateTrigger(run_date=_wall_clock() + self.interval),
            args=[generation],
            id=TICK_JOB_ID,
            name="Sampling cycle",
            replace_existing=True,
        )

    def _disarm(self) -> None:
        for job_id in (TICK_JOB_ID, RESUME_JOB_ID):
            try:
                self._scheduler.remove_job(job_id)
            except JobLookupError:
                pass

    def _ensure_started(self) -> None:
        if not self._scheduler.running:
            self._scheduler.start()


__all__ = [
    "CollectorFactory",
    "DEFAULT_INTERVAL_SECONDS",
    "DEFAULT_RESUME_DELAY_SECONDS",
    "MonitoringScheduler",
]
