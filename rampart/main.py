"""
Main entry point for the Rampart configuration service.

This module provides the command-line interface for validating, inspecting,
rolling back and running the bot configuration service.
"""

import asyncio
import dataclasses
import json
import logging
import signal
import sys
from contextlib import asynccontextmanager
from datetime import timedelta
from pathlib import Path
from typing import Any, AsyncIterator, Coroutine, Optional, TypeVar

import typer

from .application.startup import ApplicationStartup
from .core.domain.audit import AuditAction, AuditQuery, utc_now
from .core.domain.health import HealthStatus
from .core.exceptions import RampartError, StartupValidationError
from .infrastructure.config.loader import ConfigurationLoader
from .infrastructure.config.settings import ServiceSettings, load_service_settings
from .infrastructure.config.validator import validate_configuration
from .infrastructure.logging.setup import setup_logging
from .infrastructure.storage import atomic_write_data, atomic_write_text, format_for_path, parse_data

cli = typer.Typer(
    name="rampart",
    help="Versioned, audited, hot-reloadable configuration service for the Discord bot"
)

logger = logging.getLogger(__name__)

T = TypeVar('T')

SETTINGS_OPTION = typer.Option(None, "--settings", "-s", help="Service settings file (YAML or JSON)")
DATA_DIR_OPTION = typer.Option(None, "--data-dir", "-d", help="Base directory for relative record paths")


def _load_settings(settings_file: Optional[str], data_dir: Optional[str]) -> ServiceSettings:
    try:
        settings = load_service_settings(settings_file)
    except (FileNotFoundError, ValueError, TypeError) as e:
        typer.echo(f"Invalid service settings: {e}", err=True)
        sys.exit(1)
    if data_dir:
        settings = settings.with_base_directory(Path(data_dir))
    return settings


def _quiet_logging(settings: ServiceSettings) -> None:
    setup_logging(dataclasses.replace(settings.logging, level="WARNING", file_enabled=False))


@asynccontextmanager
async def _service(settings: ServiceSettings) -> AsyncIterator[ApplicationStartup]:
    """Initialize the manager for a one-shot command, without watching or polling."""
    one_shot = ServiceSettings.from_dict({
        **settings.to_dict(),
        'watcher': {**dataclasses.asdict(settings.watcher), 'enabled': False},
    })
    app = ApplicationStartup(one_shot, configure_logging=False)
    await app.manager.initialize()
    try:
        yield app
    finally:
        await app.manager.shutdown()


def _run(operation: Coroutine[Any, Any, T]) -> T:
    try:
        return asyncio.run(operation)
    except RampartError as e:
        typer.echo(f"Error [{e.code.name}]: {e.message}", err=True)
        for detail in getattr(e, 'errors', []):
            typer.echo(f"  - {detail}", err=True)
        sys.exit(1)


@cli.command()
def validate(
    config_file: Optional[str] = typer.Argument(
        None, help="Configuration file to validate, the managed file when omitted"
    ),
    settings_file: Optional[str] = SETTINGS_OPTION,
    data_dir: Optional[str] = DATA_DIR_OPTION
) -> None:
    """Validate a bot configuration file without loading it into the service."""
    if config_file is None:
        config_file = _load_settings(settings_file, data_dir).paths.config_file
    path = Path(config_file)

    if not path.exists():
        typer.echo(f"Configuration file not found: {path}", err=True)
        sys.exit(1)

    try:
        candidate = parse_data(path.read_text(encoding='utf-8'), format_for_path(path))
    except ValueError as e:
        typer.echo(f"Configuration file {path} cannot be parsed: {e}", err=True)
        sys.exit(1)
    if not isinstance(candidate, dict):
        typer.echo(f"Configuration file {path} must contain an object", err=True)
        sys.exit(1)

    result = validate_configuration(candidate)
    for warning in result.warnings:
        typer.echo(f"Warning: {warning}")
    if not result.valid:
        typer.echo(f"Configuration file {path} is invalid:", err=True)
        for error in result.errors:
            typer.echo(f"  - {error}", err=True)
        sys.exit(1)
    typer.echo(f"Configuration file {path} is valid")


@cli.command()
def health(
    settings_file: Optional[str] = SETTINGS_OPTION,
    data_dir: Optional[str] = DATA_DIR_OPTION,
    as_json: bool = typer.Option(False, "--json", help="Print the result as JSON")
) -> None:
    """Run all health checks once against the managed configuration."""
    settings = _load_settings(settings_file, data_dir)
    _quiet_logging(settings)

    async def check() -> Any:
        async with _service(settings) as app:
            return await app.monitor.run_checks()

    status = _run(check())
    if as_json:
        typer.echo(json.dumps(status.to_dict(), indent=2))
    else:
        typer.echo(f"Overall: {status.overall.value} "
                   f"({status.checks_passed} passed, {status.checks_failed} failed)")
        for result in status.checks:
            typer.echo(f"  {result.status.value:<9} {result.check_name}: {result.message}")
        for recommendation in status.recommendations:
            typer.echo(f"  Recommendation: {recommendation}")

    if status.overall is HealthStatus.UNHEALTHY:
        sys.exit(1)


@cli.command()
def readiness(
    settings_file: Optional[str] = SETTINGS_OPTION,
    data_dir: Optional[str] = DATA_DIR_OPTION,
    report: bool = typer.Option(False, "--report", help="Print the full markdown health report")
) -> None:
    """Check whether the managed configuration is ready for production."""
    settings = _load_settings(settings_file, data_dir)
    _quiet_logging(settings)

    async def evaluate() -> Any:
        async with _service(settings) as app:
            if report:
                return await app.gate.generate_report(), None
            return None, await app.gate.production_readiness()

    text, verdict = _run(evaluate())
    if text is not None:
        typer.echo(text)
        return

    for name, passed in verdict.criteria.items():
        typer.echo(f"  [{'x' if passed else ' '}] {name.replace('_', ' ')}")
    if verdict.ready:
        typer.echo("Configuration is production ready")
    else:
        typer.echo(f"Not production ready: {', '.join(verdict.blockers)}", err=True)
        sys.exit(1)


@cli.command()
def history(
    settings_file: Optional[str] = SETTINGS_OPTION,
    data_dir: Optional[str] = DATA_DIR_OPTION,
    limit: int = typer.Option(20, "--limit", "-n", help="Number of versions to show")
) -> None:
    """List archived configuration versions, newest first."""
    settings = _load_settings(settings_file, data_dir)
    _quiet_logging(settings)

    async def list_versions() -> Any:
        async with _service(settings) as app:
            return app.manager.get_version_history()[:limit]

    records = _run(list_versions())
    if not records:
        typer.echo("No archived versions")
        return
    for record in records:
        typer.echo(f"{record.version}  {record.timestamp}  {record.hash[:12]}")


@cli.command()
def rollback(
    version: str = typer.Argument(..., help="Version id to restore"),
    settings_file: Optional[str] = SETTINGS_OPTION,
    data_dir: Optional[str] = DATA_DIR_OPTION,
    modified_by: str = typer.Option("cli", "--by", help="Who performed the rollback"),
    reason: Optional[str] = typer.Option(None, "--reason", "-r", help="Reason recorded in the audit log")
) -> None:
    """Restore an archived configuration version."""
    settings = _load_settings(settings_file, data_dir)
    _quiet_logging(settings)

    async def restore() -> Any:
        async with _service(settings) as app:
            return await app.manager.rollback_to_version(version, modified_by=modified_by, reason=reason)

    record = _run(restore())
    typer.echo(f"Restored {version} as version {record.version}")


@cli.command()
def audit(
    settings_file: Optional[str] = SETTINGS_OPTION,
    data_dir: Optional[str] = DATA_DIR_OPTION,
    limit: int = typer.Option(50, "--limit", "-n", help="Maximum number of entries"),
    path: Optional[str] = typer.Option(None, "--path", help="Only entries whose path contains this text"),
    action: Optional[str] = typer.Option(None, "--action", help="Only entries with this action"),
    days: Optional[int] = typer.Option(None, "--days", help="Only entries from the last N days"),
    significant: bool = typer.Option(False, "--significant", help="Only significant entries"),
    fmt: str = typer.Option("table", "--format", "-f", help="table, json, csv or markdown"),
    output: Optional[str] = typer.Option(None, "--output", "-o", help="Write the report to a file")
) -> None:
    """Query the configuration audit log."""
    settings = _load_settings(settings_file, data_dir)
    _quiet_logging(settings)

    try:
        actions = AuditAction(action.lower()) if action else None
    except ValueError:
        typer.echo(f"Unknown audit action: {action}", err=True)
        sys.exit(1)

    filters = AuditQuery(
        from_date=utc_now() - timedelta(days=days) if days is not None else None,
        action=actions,
        path=path,
        significant=True if significant else None,
        limit=limit,
    )

    async def query() -> Any:
        async with _service(settings) as app:
            if output:
                return await app.manager.auditor.export(output, fmt, filters, exported_by="cli")
            if fmt == "table":
                return app.manager.get_audit_log(filters=filters)
            return app.manager.auditor.generate_report(fmt, filters)

    try:
        result = _run(query())
    except ValueError as e:
        typer.echo(str(e), err=True)
        sys.exit(1)

    if output:
        typer.echo(f"Audit report written to {result}")
    elif isinstance(result, str):
        typer.echo(result)
    elif not result:
        typer.echo("No matching audit entries")
    else:
        for entry in result:
            marker = '!' if entry.significant else ' '
            typer.echo(f"{marker} {entry.timestamp.isoformat()}  {entry.action.value:<8} "
                       f"{entry.path or '-'}  {entry.modified_by}")


@cli.command()
def export(
    settings_file: Optional[str] = SETTINGS_OPTION,
    data_dir: Optional[str] = DATA_DIR_OPTION,
    fmt: str = typer.Option("json", "--format", "-f", help="json or yaml"),
    output: Optional[str] = typer.Option(None, "--output", "-o", help="Output file, stdout when omitted")
) -> None:
    """Export the current configuration."""
    settings = _load_settings(settings_file, data_dir)
    _quiet_logging(settings)

    async def serialize() -> str:
        async with _service(settings) as app:
            return await app.manager.export_configuration(fmt, modified_by="cli")

    try:
        text = _run(serialize())
    except ValueError as e:
        typer.echo(str(e), err=True)
        sys.exit(1)

    if output:
        atomic_write_text(Path(output), text)
        typer.echo(f"Configuration exported to {output}")
    else:
        typer.echo(text)


@cli.command()
def init_config(
    output: str = typer.Option(
        "data/bot-config.json", "--output", "-o", help="Output configuration file"
    ),
    force: bool = typer.Option(False, "--force", help="Overwrite an existing file")
) -> None:
    """Generate a default bot configuration file."""
    path = Path(output)
    if path.exists() and not force:
        typer.echo(f"{path} already exists, use --force to overwrite", err=True)
        sys.exit(1)

    defaults = ConfigurationLoader(path, environ={}).get_default_configuration()
    try:
        atomic_write_data(path, defaults)
    except RampartError as e:
        typer.echo(f"Error saving configuration: {e}", err=True)
        sys.exit(1)
    typer.echo(f"Default configuration saved to {path}")


@cli.command()
def run(
    settings_file: Optional[str] = SETTINGS_OPTION,
    data_dir: Optional[str] = DATA_DIR_OPTION,
    log_level: Optional[str] = typer.Option(None, "--log-level", help="Logging level")
) -> None:
    """Run the configuration service until interrupted."""
    settings = _load_settings(settings_file, data_dir)
    if log_level:
        settings.logging.level = log_level.upper()

    try:
        asyncio.run(run_service(settings))
    except KeyboardInterrupt:
        logger.info("Service interrupted by user")
    except StartupValidationError as e:
        typer.echo(f"Startup validation failed: {', '.join(e.failed_checks)}", err=True)
        sys.exit(1)
    except RampartError as e:
        typer.echo(f"Service failed to start: {e}", err=True)
        sys.exit(1)


async def run_service(settings: ServiceSettings, stop_event: Optional[asyncio.Event] = None) -> None:
    """
    Start the service and block until ``stop_event`` is set or a signal arrives.

    Args:
        settings: Service settings
        stop_event: Event that ends the run, one is created when omitted
    """
    startup = ApplicationStartup(settings)
    stop_event = stop_event or asyncio.Event()
    loop = asyncio.get_running_loop()

    def signal_handler(signum: int, frame: Any) -> None:
        logger.info(f"Received signal {signum}, initiating shutdown...")
        loop.call_soon_threadsafe(stop_event.set)

    status = await startup.start_application()
    logger.info(f"Configuration service running, health {status.overall.value}")
    previous_handlers = {
        signum: signal.signal(signum, signal_handler) for signum in (signal.SIGINT, signal.SIGTERM)
    }
    try:
        await stop_event.wait()
    finally:
        for signum, handler in previous_handlers.items():
            signal.signal(signum, handler)
        await startup.stop_application()


def main() -> None:
    """Main entry point for the CLI."""
    cli()


if __name__ == "__main__":
    main()
