"""
Snapshot store: durable storage for the metrics time series and the daily
slow-query leaderboard.

The store holds no business rules. It exposes point queries and row
primitives; the leaderboard maintainer and the retention sweeper compose
them inside `transaction()` blocks.
"""

from __future__ import annotations

from contextlib import contextmanager
from datetime import date, datetime
from typing import Generator, List, Optional

from sqlalchemy import (
    BigInteger,
    Date,
    Float,
    Index,
    Integer,
    String,
    Text,
    delete,
    func,
    select,
)
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import DeclarativeBase, Mapped, Session, mapped_column, sessionmaker

from querymonitor.domain.models import (
    DailyLeaderboardEntry,
    QueryStatCandidate,
    SystemMetricSample,
)
from querymonitor.errors import StorageError
from querymonitor.infrastructure.db_factory import create_store_engine
from querymonitor.utils.logging import get_logger
from querymonitor.utils.timeutil import from_epoch_ms, to_epoch_ms

log = get_logger(__name__)


class Base(DeclarativeBase):
    pass


class SystemMetricRow(Base):
    """One sampling cycle's system-level counters."""

    __tablename__ = "system_metrics"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    timestamp_ms: Mapped[int] = mapped_column(BigInteger, nullable=False, index=True)
    active_connections: Mapped[int] = mapped_column(Integer, nullable=False)
    cache_hit_ratio: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    db_size_bytes: Mapped[int] = mapped_column(BigInteger, nullable=False)
    transactions_total: Mapped[Optional[int]] = mapped_column(BigInteger, nullable=True)
    tps: Mapped[Optional[float]] = mapped_column(Float, nullable=True)

    def to_model(self) -> SystemMetricSample:
        return SystemMetricSample(
            timestamp=from_epoch_ms(self.timestamp_ms),
            active_connections=self.active_connections,
            cache_hit_ratio=self.cache_hit_ratio,
            db_size_bytes=self.db_size_bytes,
            transactions_total=self.transactions_total,
            tps=self.tps,
        )


class LeaderboardRow(Base):
    """A member of one day's top-K slowest queries."""

    __tablename__ = "daily_top_queries"
    __table_args__ = (Index("ix_daily_top_queries_day_mean", "day", "mean_time_ms"),)

    day: Mapped[date] = mapped_column(Date, primary_key=True)
    query_id: Mapped[str] = mapped_column(String(64), primary_key=True)
    query_text: Mapped[str] = mapped_column(Text, nullable=False)
    mean_time_ms: Mapped[float] = mapped_column(Float, nullable=False)
    max_time_ms: Mapped[float] = mapped_column(Float, nullable=False)
    total_time_ms: Mapped[float] = mapped_column(Float, nullable=False)
    calls: Mapped[int] = mapped_column(BigInteger, nullable=False)
    rows: Mapped[int] = mapped_column(BigInteger, nullable=False)
    shared_blocks_read: Mapped[int] = mapped_column(BigInteger, nullable=False)
    shared_blocks_hit: Mapped[int] = mapped_column(BigInteger, nullable=False)
    last_seen_ms: Mapped[int] = mapped_column(BigInteger, nullable=False)

    @classmethod
    def from_candidate(
        cls, day: date, candidate: QueryStatCandidate, now: datetime
    ) -> "LeaderboardRow":
        return cls(
            day=day,
            query_id=candidate.query_id,
            query_text=candidate.query_text,
            mean_time_ms=candidate.mean_time_ms,
            max_time_ms=candidate.mean_time_ms,
            total_time_ms=candidate.total_time_ms,
            calls=candidate.calls,
            rows=candidate.rows,
            shared_blocks_read=candidate.shared_blocks_read,
            shared_blocks_hit=candidate.shared_blocks_hit,
            last_seen_ms=to_epoch_ms(now),
        )

    def absorb(self, candidate: QueryStatCandidate, now: datetime) -> None:
        """Overwrite the counters with a slower sighting of the same query."""
        self.max_time_ms = max(self.max_time_ms, candidate.mean_time_ms)
        self.mean_time_ms = candidate.mean_time_ms
        self.total_time_ms = candidate.total_time_ms
        self.calls = candidate.calls
        self.rows = candidate.rows
        self.shared_blocks_read = candidate.shared_blocks_read
        self.shared_blocks_hit = candidate.shared_blocks_hit
        self.query_text = candidate.query_text
        self.last_seen_ms = to_epoch_ms(now)

    def to_model(self) -> DailyLeaderboardEntry:
        return DailyLeaderboardEntry(
            day=self.day,
            query_id=self.query_id,
            query_text=self.query_text,
            mean_time_ms=self.mean_time_ms,
            max_time_ms=self.max_time_ms,
            total_time_ms=self.total_time_ms,
            calls=self.calls,
            rows=self.rows,
            shared_blocks_read=self.shared_blocks_read,
            shared_blocks_hit=self.shared_blocks_hit,
            last_seen=from_epoch_ms(self.last_seen_ms),
        )


class SnapshotStore:
    """
    SQLAlchemy-backed persistence for samples and leaderboard entries.

    Every public method opens its own session, so foreground reads never
    share state with a cycle that is writing at the same time.
    """

    def __init__(self, engine: Engine) -> None:
        self._engine = engine
        self._sessions = sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)

    @classmethod
    def from_url(cls, url: str) -> "SnapshotStore":
        store = cls(create_store_engine(url))
        store.create_schema()
        return store

    @property
    def engine(self) -> Engine:
        return self._engine

    def create_schema(self) -> None:
        try:
            Base.metadata.create_all(self._engine)
        except SQLAlchemyError as exc:
            raise StorageError(f"cannot create store schema: {exc}") from exc

    def close(self) -> None:
        self._engine.dispose()

    @contextmanager
    def transaction(self) -> Generator[Session, None, None]:
        """
        Session scoped to one unit of work: committed on success, rolled back
        on any error. Database errors surface as StorageError.
        """
        session = self._sessions()
        try:
            yield session
            session.commit()
        except SQLAlchemyError as exc:
            session.rollback()
            raise StorageError(str(exc)) from exc
        except BaseException:
            session.rollback()
            raise
        finally:
            session.close()

    # -- system metrics -------------------------------------------------

    def append_sample(self, sample: SystemMetricSample) -> None:
        with self.transaction() as session:
            session.add(
                SystemMetricRow(
                    timestamp_ms=to_epoch_ms(sample.timestamp),
                    active_connections=sample.active_connections,
                    cache_hit_ratio=sample.cache_hit_ratio,
                    db_size_bytes=sample.db_size_bytes,
                    transactions_total=sample.transactions_total,
                    tps=sample.tps,
                )
            )

    def latest_sample(self) -> Optional[SystemMetricSample]:
        with self.transaction() as session:
            row = session.scalars(
                select(SystemMetricRow)
                .order_by(SystemMetricRow.timestamp_ms.desc(), SystemMetricRow.id.desc())
                .limit(1)
            ).first()
            return row.to_model() if row else None

    def samples_since(self, since: datetime) -> List[SystemMetricSample]:
        """Samples strictly newer than `since`, oldest first."""
        with self.transaction() as session:
            rows = session.scalars(
                select(SystemMetricRow)
                .where(SystemMetricRow.timestamp_ms > to_epoch_ms(since))
                .order_by(SystemMetricRow.timestamp_ms.asc(), SystemMetricRow.id.asc())
            ).all()
            return [row.to_model() for row in rows]

    def count_samples(self) -> int:
        with self.transaction() as session:
            return session.scalar(select(func.count()).select_from(SystemMetricRow)) or 0

    def delete_samples_before(self, cutoff: datetime) -> int:
        with self.transaction() as session:
            result = session.execute(
                delete(SystemMetricRow).where(SystemMetricRow.timestamp_ms < to_epoch_ms(cutoff))
            )
            return result.rowcount or 0

    # -- leaderboard ----------------------------------------------------

    @staticmethod
    def find_entry(session: Session, day: date, query_id: str) -> Optional[LeaderboardRow]:
        return session.get(LeaderboardRow, (day, query_id))

    @staticmethod
    def count_entries(session: Session, day: date) -> int:
        return (
            session.scalar(
                select(func.count()).select_from(LeaderboardRow).where(LeaderboardRow.day == day)
            )
            or 0
        )

    @staticmethod
    def find_minimum(session: Session, day: date) -> Optional[LeaderboardRow]:
        """
        Fastest entry of the day.

        Ties on mean_time_ms go to the entry seen least recently, then to the
        smallest query_id.
        """
        return session.scalars(
            select(LeaderboardRow)
            .where(LeaderboardRow.day == day)
            .order_by(
                LeaderboardRow.mean_time_ms.asc(),
                LeaderboardRow.last_seen_ms.asc(),
                LeaderboardRow.query_id.asc(),
            )
            .limit(1)
        ).first()

    def leaderboard_for(self, day: date) -> List[DailyLeaderboardEntry]:
        """Entries for `day`, slowest first."""
        with self.transaction() as session:
            rows = session.scalars(
                select(LeaderboardRow)
                .where(LeaderboardRow.day == day)
                .order_by(LeaderboardRow.mean_time_ms.desc(), LeaderboardRow.query_id.asc())
            ).all()
            return [row.to_model() for row in rows]

    def delete_entries_before(self, day: date) -> int:
        with self.transaction() as session:
            result = session.execute(delete(LeaderboardRow).where(LeaderboardRow.day < day))
            return result.rowcount or 0


__all__ = ["Base", "LeaderboardRow", "SnapshotStore", "SystemMetricRow"]
