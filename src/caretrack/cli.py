"""CLI for caretrack: run the notification scheduler and query analyses."""

from __future__ import annotations

import asyncio
import json
import logging
import signal
import sys
from collections.abc import AsyncIterator, Awaitable, Callable
from contextlib import asynccontextmanager
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import click

from caretrack.analysis.coordinator import AnalysisCoordinator
from caretrack.analysis.reports import REPORT_PERIODS
from caretrack.config import (
    CONFIG_FILENAME,
    CaretrackConfig,
    ConfigError,
    load_config,
    parse_config,
)
from caretrack.core.logging import configure_logging
from caretrack.core.metrics import SchedulerMetrics, init_metrics
from caretrack.core.scheduler import NotificationScheduler
from caretrack.core.telemetry import init_telemetry
from caretrack.db import Database
from caretrack.errors import CaretrackError, public_error_message
from caretrack.models import DataType
from caretrack.notify.sink import EmailSink, build_sink
from caretrack.store.postgres import PostgresReadingStore

logger = logging.getLogger(__name__)

_config_option = click.option(
    "--config",
    "config_dir",
    type=click.Path(exists=True, file_okay=False, path_type=Path),
    default=None,
    help=f"Directory containing {CONFIG_FILENAME} (defaults to the current directory)",
)


@dataclass
class Runtime:
    config: CaretrackConfig
    db: Database
    sink: EmailSink
    coordinator: AnalysisCoordinator
    scheduler: NotificationScheduler


def _load(config_dir: Path | None) -> CaretrackConfig:
    """Load the config, falling back to defaults when no directory was given."""
    if config_dir is not None:
        return load_config(config_dir)
    if (Path.cwd() / CONFIG_FILENAME).exists():
        return load_config(Path.cwd())
    return parse_config({})


@asynccontextmanager
async def _runtime(config: CaretrackConfig) -> AsyncIterator[Runtime]:
    db = Database.from_env(config.db.name)
    pool = await db.connect()
    sink = build_sink(config.notifications)
    try:
        await db.ensure_schema()
        store = PostgresReadingStore(pool)
        coordinator = AnalysisCoordinator(store, config=config.analysis, sink=sink)
        scheduler = NotificationScheduler(
            store,
            sink,
            coordinator=coordinator,
            config=config.scheduler,
            metrics=SchedulerMetrics(),
        )
        yield Runtime(config, db, sink, coordinator, scheduler)
    finally:
        await sink.close()
        await db.close()


def _echo_json(data: Any) -> None:
    click.echo(json.dumps(data, indent=2, default=str))


def _execute(
    ctx: click.Context,
    config_dir: Path | None,
    action: Callable[[Runtime], Awaitable[Any]],
) -> None:
    """Run *action* against a live runtime and print its result as JSON."""
    try:
        config = _load(config_dir)
    except ConfigError as exc:
        click.echo(f"Config error: {exc}", err=True)
        sys.exit(2)
    _setup(ctx, config)

    async def _main() -> Any:
        async with _runtime(config) as runtime:
            return await action(runtime)

    try:
        result = asyncio.run(_main())
    except CaretrackError as exc:
        click.echo(f"Error: {public_error_message(exc, config.development)}", err=True)
        sys.exit(1)
    if result is not None:
        _echo_json(result)


def _setup(ctx: click.Context, config: CaretrackConfig) -> None:
    level = ctx.obj.get("log_level") or config.logging.level
    log_root = Path(config.logging.log_root) if config.logging.log_root else None
    configure_logging(level=level, fmt=config.logging.format, log_root=log_root, name=config.name)
    init_telemetry(config.name)
    init_metrics(config.name)


@click.group()
@click.version_option(version="0.1.0")
@click.option("--log-level", default=None, help="Override the configured log level")
@click.pass_context
def cli(ctx: click.Context, log_level: str | None) -> None:
    """caretrack: health-reading analysis and patient notifications."""
    ctx.ensure_object(dict)
    ctx.obj["log_level"] = log_level.upper() if log_level else None


@cli.command()
@_config_option
@click.pass_context
def run(ctx: click.Context, config_dir: Path | None) -> None:
    """Run the notification scheduler until interrupted."""
    try:
        config = _load(config_dir)
    except ConfigError as exc:
        click.echo(f"Config error: {exc}", err=True)
        sys.exit(2)
    _setup(ctx, config)
    click.echo(f"Starting {config.name} scheduler ({config.notifications.backend.value} backend)")
    asyncio.run(_run_scheduler(config))


async def _run_scheduler(config: CaretrackConfig) -> None:
    loop = asyncio.get_running_loop()
    shutdown_event = asyncio.Event()

    def _signal_handler() -> None:
        click.echo("\nShutting down...")
        shutdown_event.set()

    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, _signal_handler)

    async with _runtime(config) as runtime:
        await runtime.scheduler.start()
        await shutdown_event.wait()
        await runtime.scheduler.stop()


@cli.command("init-db")
@_config_option
@click.pass_context
def init_db(ctx: click.Context, config_dir: Path | None) -> None:
    """Create the database (if missing) and its tables."""
    try:
        config = _load(config_dir)
    except ConfigError as exc:
        click.echo(f"Config error: {exc}", err=True)
        sys.exit(2)
    _setup(ctx, config)

    async def _init() -> None:
        db = Database.from_env(config.db.name)
        await db.provision()
        await db.connect()
        try:
            await db.ensure_schema()
        finally:
            await db.close()

    asyncio.run(_init())
    click.echo(f"Database {config.db.name} is ready")


@cli.command("check-config")
@_config_option
def check_config(config_dir: Path | None) -> None:
    """Validate the configuration and print the resolved scheduler settings."""
    try:
        config = _load(config_dir)
    except ConfigError as exc:
        click.echo(f"Config error: {exc}", err=True)
        sys.exit(2)
    scheduler = config.scheduler
    click.echo(f"{'name':<24} {config.name}")
    click.echo(f"{'backend':<24} {config.notifications.backend.value}")
    click.echo(f"{'timezone':<24} {scheduler.timezone}")
    click.echo(
        f"{'medication hours':<24} {scheduler.medication_hours[0]:02d}:00-"
        f"{scheduler.medication_hours[1]:02d}:00"
    )
    click.echo(
        f"{'daily update hours':<24} {scheduler.daily_update_hours[0]:02d}:00-"
        f"{scheduler.daily_update_hours[1]:02d}:00"
    )


@cli.command()
@_config_option
@click.pass_context
def check(ctx: click.Context, config_dir: Path | None) -> None:
    """Load schedules and run the daily-update and medication ticks once."""

    async def _check(runtime: Runtime) -> dict[str, int]:
        await runtime.scheduler.reload_schedules()
        return await runtime.scheduler.manual_check()

    _execute(ctx, config_dir, _check)


@cli.command()
@_config_option
@click.pass_context
def status(ctx: click.Context, config_dir: Path | None) -> None:
    """Show the loaded schedule and scheduler settings."""

    async def _status(runtime: Runtime) -> dict[str, Any]:
        await runtime.scheduler.reload_schedules()
        return runtime.scheduler.status()

    _execute(ctx, config_dir, _status)


@cli.command()
@_config_option
@click.pass_context
def upcoming(ctx: click.Context, config_dir: Path | None) -> None:
    """List daily-update recipients in email-time order."""

    async def _upcoming(runtime: Runtime) -> list[dict[str, Any]]:
        await runtime.scheduler.reload_schedules()
        return runtime.scheduler.upcoming_schedule()

    _execute(ctx, config_dir, _upcoming)


@cli.command()
@click.argument("patient_id")
@click.argument("medication_id")
@_config_option
@click.pass_context
def remind(
    ctx: click.Context, patient_id: str, medication_id: str, config_dir: Path | None
) -> None:
    """Send one medication reminder now."""

    async def _remind(runtime: Runtime) -> dict[str, Any]:
        result = await runtime.scheduler.send_immediate_medication_reminder(
            patient_id, medication_id
        )
        return {
            "status": result.status.value,
            "message_id": result.message_id,
            "error": result.error,
        }

    _execute(ctx, config_dir, _remind)


@cli.command("test-email")
@click.argument("patient_id")
@_config_option
@click.pass_context
def send_test_email(ctx: click.Context, patient_id: str, config_dir: Path | None) -> None:
    """Send a test email to PATIENT_ID to check delivery."""

    async def _test_email(runtime: Runtime) -> dict[str, Any]:
        result = await runtime.scheduler.send_test_email(patient_id)
        return {
            "status": result.status.value,
            "message_id": result.message_id,
            "error": result.error,
        }

    _execute(ctx, config_dir, _test_email)


@cli.command()
@click.argument("patient_id")
@click.option(
    "--view",
    type=click.Choice(
        ["comprehensive", "risk", "recommendations", "medication", "motivation", "drift"]
    ),
    default="comprehensive",
    show_default=True,
)
@_config_option
@click.pass_context
def analyze(ctx: click.Context, patient_id: str, view: str, config_dir: Path | None) -> None:
    """Print an analysis of PATIENT_ID's readings."""

    async def _analyze(runtime: Runtime) -> Any:
        coordinator = runtime.coordinator
        if view == "risk":
            return await coordinator.risk_assessment(patient_id)
        if view == "recommendations":
            return await coordinator.recommendations(patient_id)
        if view == "medication":
            return await coordinator.medication_insights(patient_id)
        if view == "motivation":
            return await coordinator.motivational_insights(patient_id)
        if view == "drift":
            report = await coordinator.verify_cached_risk(patient_id)
            return {
                "checked": report.checked,
                "consistent": report.consistent,
                "drifted": [vars(d) for d in report.drifted],
            }
        return (await coordinator.comprehensive_analysis(patient_id)).to_dict()

    _execute(ctx, config_dir, _analyze)


@cli.command()
@click.argument("patient_id")
@click.argument("data_type", type=click.Choice([t.value for t in DataType]))
@click.option("--days", type=int, default=30, show_default=True)
@click.option("--predict", is_flag=True, help="Forecast instead of describing the trend")
@_config_option
@click.pass_context
def trend(
    ctx: click.Context,
    patient_id: str,
    data_type: str,
    days: int,
    predict: bool,
    config_dir: Path | None,
) -> None:
    """Describe (or forecast) one metric for PATIENT_ID."""

    async def _trend(runtime: Runtime) -> dict[str, Any]:
        if predict:
            return await runtime.coordinator.get_predictions(patient_id, data_type, days)
        return await runtime.coordinator.get_trend(patient_id, data_type, days)

    _execute(ctx, config_dir, _trend)


@cli.command()
@click.argument("patient_id")
@click.option("--period", type=click.Choice(sorted(REPORT_PERIODS)), default="week")
@_config_option
@click.pass_context
def report(ctx: click.Context, patient_id: str, period: str, config_dir: Path | None) -> None:
    """Print PATIENT_ID's progress report for a period."""

    async def _report(runtime: Runtime) -> dict[str, Any]:
        return await runtime.coordinator.progress_report(patient_id, period)

    _execute(ctx, config_dir, _report)


@cli.command()
@click.argument("patient_id")
@click.argument("data_type", type=click.Choice([t.value for t in DataType]))
@click.argument("value")
@click.option("--unit", required=True)
@click.option("--notes", default=None)
@_config_option
@click.pass_context
def submit(
    ctx: click.Context,
    patient_id: str,
    data_type: str,
    value: str,
    unit: str,
    notes: str | None,
    config_dir: Path | None,
) -> None:
    """Record a reading, analyze it and alert if it is high risk."""
    payload = {
        "patient_id": patient_id,
        "data_type": data_type,
        "value": value,
        "unit": unit,
        "notes": notes,
    }

    async def _submit(runtime: Runtime) -> dict[str, Any]:
        return (await runtime.coordinator.submit_reading(payload)).to_dict()

    _execute(ctx, config_dir, _submit)
