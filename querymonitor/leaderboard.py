"""
Bounded per-day leaderboard of the slowest statements.

For every candidate the maintainer performs at most one of: update in place,
insert, swap with the day's fastest entry, or drop. The store is the only
source of truth; nothing is cached between calls, so a restart loses no
leaderboard state.

Usage:
    maintainer = LeaderboardMaintainer(store, capacity=20)
    outcome = maintainer.upsert(day, snapshot.candidates, now)
"""

from __future__ import annotations

from datetime import date, datetime
from enum import Enum
from typing import Iterable

from sqlalchemy.orm import Session

from querymonitor.domain.models import LeaderboardOutcome, QueryStatCandidate
from querymonitor.infrastructure.store import LeaderboardRow, SnapshotStore
from querymonitor.utils.logging import get_logger

log = get_logger(__name__)

DEFAULT_CAPACITY = 20


class Action(str, Enum):
    INSERTED = "inserted"
    UPDATED = "updated"
    EVICTED = "evicted"
    DROPPED = "dropped"
    UNCHANGED = "unchanged"


class LeaderboardMaintainer:
    """
    Applies the top-K upsert/eviction policy for one day at a time.

    Each candidate is applied in its own transaction, so a swap (delete the
    fastest entry, insert the newcomer) is atomic and readers never observe
    more than `capacity` entries for a day.
    """

    def __init__(self, store: SnapshotStore, capacity: int = DEFAULT_CAPACITY) -> None:
        if capacity < 1:
            raise ValueError("capacity must be at least 1")
        self._store = store
        self.capacity = capacity

    def upsert(
        self, day: date, candidates: Iterable[QueryStatCandidate], now: datetime
    ) -> LeaderboardOutcome:
        outcome = LeaderboardOutcome()
        with self._store.transaction() as session:
            outcome.trimmed = self._trim(session, day)
        for candidate in candidates:
            with self._store.transaction() as session:
                action = self._apply(session, day, candidate, now)
            setattr(outcome, action.value, getattr(outcome, action.value) + 1)

        if outcome.writes:
            log.info(
                "Leaderboard updated",
                extra={
                    "day": day.isoformat(),
                    "inserted": outcome.inserted,
                    "updated": outcome.updated,
                    "evicted": outcome.evicted,
                    "trimmed": outcome.trimmed,
                },
            )
        return outcome

    def _trim(self, session: Session, day: date) -> int:
        """
        Evict the fastest entries until the day fits within `capacity`.

        Only does work after the capacity was lowered while the day already
        held more entries.
        """
        excess = self._store.count_entries(session, day) - self.capacity
        for _ in range(excess):
            session.delete(self._store.find_minimum(session, day))
            session.flush()
        return max(excess, 0)

    def _apply(
        self, session: Session, day: date, candidate: QueryStatCandidate, now: datetime
    ) -> Action:
        existing = self._store.find_entry(session, day, candidate.query_id)
        if existing is not None:
            # Keep the day's peak: a momentarily faster reading never lowers it.
            if candidate.mean_time_ms > existing.mean_time_ms:
                existing.absorb(candidate, now)
                return Action.UPDATED
            return Action.UNCHANGED

        if self._store.count_entries(session, day) < self.capacity:
            session.add(LeaderboardRow.from_candidate(day, candidate, now))
            return Action.INSERTED

        fastest = self._store.find_minimum(session, day)
        if fastest is None or candidate.mean_time_ms <= fastest.mean_time_ms:
            return Action.DROPPED

        log.debug(
            "Evicting fastest leaderboard entry",
            extra={
                "day": day.isoformat(),
                "evicted_query_id": fastest.query_id,
                "evicted_mean_ms": fastest.mean_time_ms,
                "query_id": candidate.query_id,
                "mean_ms": candidate.mean_time_ms,
            },
        )
        session.delete(fastest)
        session.flush()
        session.add(LeaderboardRow.from_candidate(day, candidate, now))
        return Action.EVICTED


__all__ = ["Action", "DEFAULT_CAPACITY", "LeaderboardMaintainer"]
