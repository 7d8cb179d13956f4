"""
Connection factory utilities for the query monitor.

Two kinds of connections live here:

- short-lived psycopg connections to the *monitored* database, opened for a
  single sampling cycle or on-demand request and always closed on exit;
- the SQLAlchemy engine backing the snapshot store.

Connecting to the monitored database includes retry logic for transient
failures using tenacity.
"""

from __future__ import annotations

from contextlib import contextmanager
from pathlib import Path
from typing import Generator

import psycopg
from psycopg import Connection
from psycopg.rows import dict_row
from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine, make_url
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from querymonitor.domain.models import ConnectionProfile
from querymonitor.errors import ConnectivityError
from querymonitor.utils.logging import get_logger

log = get_logger(__name__)

APPLICATION_NAME = "querymonitor"


@retry(
    stop=stop_after_attempt(3),
    wait=wait_exponential(multiplier=0.5, min=0.5, max=5),
    retry=retry_if_exception_type((psycopg.OperationalError, psycopg.InterfaceError)),
    reraise=True,
)
def _connect(profile: ConnectionProfile, connect_timeout: int) -> Connection:
    """
    Open a dedicated connection with automatic retry.

    Retries up to 3 times with exponential backoff for transient connection
    errors before re-raising the last one.
    """
    return psycopg.connect(
        **profile.connect_kwargs(),
        connect_timeout=connect_timeout,
        application_name=APPLICATION_NAME,
        autocommit=True,
        row_factory=dict_row,
    )


@contextmanager
def target_connection(
    profile: ConnectionProfile, connect_timeout: int = 10
) -> Generator[Connection, None, None]:
    """
    Context manager for a short-lived connection to the monitored database.

    The connection is closed on every exit path. Connection failures are
    reported as ConnectivityError; the password never appears in the message
    because psycopg does not echo it and the profile is rendered redacted.

    Example
    -------
        with target_connection(profile) as conn:
            with conn.cursor() as cur:
                cur.execute("SELECT 1")
    """
    try:
        conn = _connect(profile, connect_timeout)
    except (psycopg.OperationalError, psycopg.InterfaceError) as exc:
        raise ConnectivityError(f"cannot connect to {profile.label}: {exc}") from exc

    try:
        yield conn
    finally:
        conn.close()


def create_store_engine(url: str, echo: bool = False) -> Engine:
    """
    Build the SQLAlchemy engine backing the snapshot store.

    SQLite files get their parent directory created and are opened so the
    scheduler thread and request threads can share the engine.
    """
    parsed = make_url(url)
    connect_args = {}
    if parsed.get_backend_name() == "sqlite":
        connect_args["check_same_thread"] = False
        if parsed.database and parsed.database != ":memory:":
            Path(parsed.database).parent.mkdir(parents=True, exist_ok=True)

    engine = create_engine(url, echo=echo, pool_pre_ping=True, connect_args=connect_args)

    if parsed.get_backend_name() == "sqlite":

        @event.listens_for(engine, "connect")
        def _sqlite_pragmas(dbapi_conn, _record) -> None:  # pragma: no cover - driver hook
            cursor = dbapi_conn.cursor()
            cursor.execute("PRAGMA journal_mode=WAL")
            cursor.execute("PRAGMA busy_timeout=5000")
            cursor.close()

    log.debug("Store engine created", extra={"backend": parsed.get_backend_name()})
    return engine


__all__ = ["APPLICATION_NAME", "create_store_engine", "target_connection"]
