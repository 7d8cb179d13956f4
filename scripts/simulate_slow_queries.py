"""
Workload script for the query monitor.

Issues a deterministic mix of intentionally slow statements against a target
database so that pg_stat_statements (and therefore the monitor's daily
leaderboard) has something to rank. Statements only read; nothing is written
to the target.
"""

from __future__ import annotations

import random
import sys
import time
from typing import List, Optional

import psycopg
import typer

from querymonitor.config import get_settings

app = typer.Typer(help="Generate a slow-query workload against Postgres.")

# Each statement has a distinct shape, so pg_stat_statements tracks each one
# under its own queryid.
SLOW_STATEMENTS: List[str] = [
    "SELECT pg_sleep(%s)",
    "SELECT count(*) FROM generate_series(1, 200000) AS g(i), pg_sleep(%s) WHERE i %% 7 = 0",
    "SELECT md5(string_agg(i::text, ',')) FROM generate_series(1, 100000) AS g(i), pg_sleep(%s)",
    "SELECT a.i FROM generate_series(1, 2000) a(i) JOIN generate_series(1, 2000) b(j) ON a.i = b.j, pg_sleep(%s) LIMIT 1",
    "SELECT relname FROM pg_class, pg_sleep(%s) ORDER BY relname DESC LIMIT 5",
]


def _build_dsn(dsn_override: str | None) -> str:
    if dsn_override:
        return dsn_override
    settings = get_settings()
    return (
        f"postgresql://{settings.db_user}:{settings.db_password}"
        f"@{settings.db_host}:{settings.db_port}/{settings.db_name}"
    )


def _pick_workload(iterations: int, max_sleep: float, seed: int) -> List[tuple[str, float]]:
    """Deterministic (statement, sleep seconds) pairs."""
    rng = random.Random(seed)
    workload = []
    for _ in range(iterations):
        statement = rng.choice(SLOW_STATEMENTS)
        workload.append((statement, round(rng.uniform(0.01, max_sleep), 3)))
    return workload


def _run_workload(dsn: str, workload: List[tuple[str, float]]) -> float:
    start = time.perf_counter()
    with psycopg.connect(dsn, autocommit=True) as conn:
        with conn.cursor() as cur:
            for statement, sleep_seconds in workload:
                cur.execute(statement, (sleep_seconds,))
                cur.fetchall()
    return time.perf_counter() - start


@app.command()
def main(
    iterations: int = typer.Option(
        50,
        "--iterations",
        "-n",
        help="Number of statements to execute.",
    ),
    max_sleep: float = typer.Option(
        0.5,
        "--max-sleep",
        help="Upper bound, in seconds, of the sleep injected into each statement.",
    ),
    seed: int = typer.Option(
        42,
        "--seed",
        help="Deterministic RNG seed.",
    ),
    dsn: Optional[str] = typer.Option(
        None,
        "--dsn",
        help="Optional DSN override for Postgres.",
    ),
) -> None:
    """
    Execute a slow-query workload against the target database.
    """
    workload = _pick_workload(iterations, max_sleep=max_sleep, seed=seed)
    expected = sum(sleep for _, sleep in workload)
    typer.echo(
        f"Running {iterations} statements (seed={seed}, ~{expected:.1f}s of injected sleep)"
    )
    duration = _run_workload(_build_dsn(dsn), workload)
    typer.echo(f"Workload completed in {duration:.2f}s.")


if __name__ == "__main__":
    try:
        app()
    except KeyboardInterrupt:
        typer.echo("Cancelled by user.", err=True)
        sys.exit(130)
