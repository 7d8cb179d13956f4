from __future__ import annotations

import sys
import threading
from datetime import timedelta
from typing import Optional

import typer

from querymonitor.config import get_settings
from querymonitor.domain.models import ConnectionProfile
from querymonitor.errors import MonitorError
from querymonitor.reporter import print_catalogue, print_leaderboard, print_metrics, print_status
from querymonitor.service import build_service
from querymonitor.utils.logging import configure_logging

app = typer.Typer(help="PostgreSQL slow-query monitor CLI.")

HostOption = typer.Option(None, "--host", help="Target host (default: DB_HOST).")
PortOption = typer.Option(None, "--port", "-p", help="Target port (default: DB_PORT).")
UserOption = typer.Option(None, "--user", "-U", help="Target user (default: DB_USER).")
DatabaseOption = typer.Option(None, "--database", "-d", help="Target database (default: DB_NAME).")


def _profile(
    host: Optional[str], port: Optional[int], user: Optional[str], database: Optional[str]
) -> ConnectionProfile:
    """Build a profile from CLI options, falling back to settings."""
    settings = get_settings()
    return ConnectionProfile(
        host=host or settings.db_host,
        port=port or settings.db_port,
        username=user or settings.db_user,
        password=settings.db_password,
        database=database or settings.db_name,
    )


def _configure() -> None:
    settings = get_settings()
    configure_logging(level=settings.log_level, json_logs=settings.log_json)


@app.command()
def info() -> None:
    """
    Show effective configuration values.
    """
    settings = get_settings()
    typer.echo(
        f"target={settings.db_user}@{settings.db_host}:{settings.db_port}/{settings.db_name} | "
        f"store={settings.store_url} | interval={settings.sample_interval_seconds:g}s "
        f"top={settings.leaderboard_size} window={settings.candidate_window} "
        f"retention={settings.metrics_retention_hours:g}h"
    )


@app.command()
def serve() -> None:
    """
    Run the HTTP API; a persisted monitoring profile is resumed on startup.
    """
    import uvicorn

    from querymonitor.api import create_app

    settings = get_settings()
    _configure()
    uvicorn.run(create_app(), host=settings.api_host, port=settings.api_port, log_config=None)


@app.command()
def run(
    host: Optional[str] = HostOption,
    port: Optional[int] = PortOption,
    user: Optional[str] = UserOption,
    database: Optional[str] = DatabaseOption,
    resume: bool = typer.Option(
        True,
        "--resume/--no-resume",
        help="Resume the persisted profile instead of the given target when one exists.",
    ),
) -> None:
    """
    Run the monitoring agent in the foreground until interrupted.
    """
    _configure()
    service = build_service()
    try:
        if not (resume and service.reconcile_on_boot()):
            profile = _profile(host, port, user, database)
            typer.echo(f"Monitoring {profile.label} (Ctrl-C to exit, profile is kept for resume).")
            report = service.start_monitoring(profile)
            if report.get("error"):
                typer.echo(f"First cycle failed: {report['error']}", err=True)
        else:
            typer.echo("Resuming persisted monitoring profile (Ctrl-C to exit).")
        print_status(service.get_status())
        idle = threading.Event()
        while not idle.wait(timeout=1.0):
            pass
    finally:
        service.close()


@app.command()
def stop() -> None:
    """
    Forget the persisted monitoring profile so the next start does not resume it.
    """
    _configure()
    service = build_service()
    try:
        service.stop_monitoring()
    finally:
        service.close()
    typer.echo("Persisted monitoring profile removed.")


@app.command()
def status() -> None:
    """
    Show the persisted monitoring profile and the most recent sample.
    """
    service = build_service()
    try:
        profile = service.persisted_profile()
        latest = service.store.latest_sample()
    finally:
        service.close()
    typer.echo(f"Persisted profile: {profile.label if profile else 'none'}")
    if latest is None:
        typer.echo("Last sample: none")
    else:
        typer.echo(f"Last sample: {latest.timestamp.astimezone():%Y-%m-%d %H:%M:%S}")


@app.command()
def top() -> None:
    """
    Print today's leaderboard of the slowest statements.
    """
    service = build_service()
    try:
        print_leaderboard(service.todays_leaderboard())
    finally:
        service.close()


@app.command()
def metrics(
    minutes: float = typer.Option(60.0, "--minutes", "-m", min=1, help="Window to display."),
) -> None:
    """
    Print recent system metrics.
    """
    service = build_service()
    try:
        print_metrics(service.recent_metrics(timedelta(minutes=minutes)))
    finally:
        service.close()


@app.command()
def live(
    host: Optional[str] = HostOption,
    port: Optional[int] = PortOption,
    user: Optional[str] = UserOption,
    database: Optional[str] = DatabaseOption,
    limit: Optional[int] = typer.Option(None, "--limit", "-n", min=1, help="Rows to fetch."),
) -> None:
    """
    Fetch the live pg_stat_statements catalogue (bypasses the store).
    """
    _configure()
    service = build_service()
    try:
        print_catalogue(service.live_catalogue(_profile(host, port, user, database), limit=limit))
    except MonitorError as exc:
        typer.echo(f"Error: {exc}", err=True)
        raise typer.Exit(code=1)
    finally:
        service.close()


@app.command()
def reset(
    host: Optional[str] = HostOption,
    port: Optional[int] = PortOption,
    user: Optional[str] = UserOption,
    database: Optional[str] = DatabaseOption,
    yes: bool = typer.Option(False, "--yes", "-y", help="Do not ask for confirmation."),
) -> None:
    """
    Reset the accumulated pg_stat_statements statistics on the target.
    """
    _configure()
    profile = _profile(host, port, user, database)
    if not yes:
        typer.confirm(f"Reset statement statistics on {profile.label}?", abort=True)
    service = build_service()
    try:
        service.reset_statistics(profile)
    except MonitorError as exc:
        typer.echo(f"Error: {exc}", err=True)
        raise typer.Exit(code=1)
    finally:
        service.close()
    typer.echo("Statistics reset.")


def main() -> None:
    try:
        app()
    except KeyboardInterrupt:
        typer.echo("Cancelled by user.", err=True)
        sys.exit(130)


if __name__ == "__main__":
    main()
