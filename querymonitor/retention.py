"""Rolling-window cleanup of the snapshot store."""

from __future__ import annotations

from datetime import date, datetime, timedelta

from querymonitor.domain.models import SweepResult
from querymonitor.infrastructure.store import SnapshotStore
from querymonitor.utils.logging import get_logger

log = get_logger(__name__)

DEFAULT_METRICS_RETENTION = timedelta(hours=24)


class RetentionSweeper:
    """
    Drops samples older than the retention window and leaderboard entries of
    past days. Running it twice with the same arguments deletes nothing the
    second time.
    """

    def __init__(
        self, store: SnapshotStore, metrics_retention: timedelta = DEFAULT_METRICS_RETENTION
    ) -> None:
        self._store = store
        self.metrics_retention = metrics_retention

    def sweep(self, now: datetime, today: date) -> SweepResult:
        result = SweepResult(
            metrics_deleted=self._store.delete_samples_before(now - self.metrics_retention),
            entries_deleted=self._store.delete_entries_before(today),
        )
        if result.metrics_deleted or result.entries_deleted:
            log.info(
                "Cleanup removed old data",
                extra={
                    "metrics_deleted": result.metrics_deleted,
                    "entries_deleted": result.entries_deleted,
                },
            )
        return result


__all__ = ["DEFAULT_METRICS_RETENTION", "RetentionSweeper"]
