import json
import logging
import os
import time

import click
from rich.logging import RichHandler
from rich.table import Table

from .constants import BACKUP_SUFFIX
from .core import ImageUpdater, UpdaterError, console
from .services.config_loader import ConfigLoader

DEFAULT_CONFIG_FILE = ".imageswap.yml"

EXIT_CODES = {
    "updated": 0,
    "current": 0,
    "failed": 1,
    "rolled_back": 1,
    "rollback_failed": 2,
}

# CLI option name -> (config key, type, ImageUpdater keyword)
UPDATER_OPTIONS = (
    ("registry", str, "registry"),
    ("repository", str, "repository"),
    ("timeout", float, "timeout"),
    ("page_size", int, "page_size"),
    ("manifest_path", str, "manifest_path"),
    ("data_path", str, "data_path"),
    ("disk_threshold_percent", float, "disk_threshold_percent"),
    ("settle_seconds", float, "settle_seconds"),
    ("health_timeout_seconds", float, "health_timeout_seconds"),
    ("health_interval_seconds", float, "health_interval_seconds"),
    ("cleanup_delay_seconds", float, "cleanup_delay_seconds"),
    ("command_timeout", float, "command_timeout"),
    ("pull_timeout", float, "pull_timeout"),
    ("operation_log", str, "operation_log"),
)


def _resolve_option(cli_value, config, key, default=None):
    if cli_value is not None:
        return cli_value
    if key in config:
        return config[key]
    return default


logging.basicConfig(
    level="INFO",
    format="%(message)s",
    datefmt="[%X]",
    handlers=[RichHandler(rich_tracebacks=True, show_level=False, show_path=False)],
)


def _default_config_path():
    path = os.path.join(os.getcwd(), DEFAULT_CONFIG_FILE)
    return path if os.path.exists(path) else None


def _configure_logging(verbose: bool, log_file):
    logger = logging.getLogger("imageswap")
    if verbose:
        logging.getLogger().setLevel(logging.DEBUG)
        logger.setLevel(logging.DEBUG)
    else:
        logger.setLevel(logging.INFO)

    if log_file:
        file_handler = logging.FileHandler(log_file)
        file_handler.setLevel(logging.DEBUG if verbose else logging.INFO)
        file_handler.setFormatter(logging.Formatter("%(asctime)s [%(levelname)s] %(message)s"))
        logger.addHandler(file_handler)


def _build_updater(ctx) -> ImageUpdater:
    settings = ctx.obj["settings"]
    try:
        return ImageUpdater(detached_cleanup=True, **settings)
    except UpdaterError as exc:
        raise click.ClickException(str(exc)) from exc


@click.group()
@click.option(
    "--config",
    required=False,
    type=click.Path(),
    help=f"Path to a YAML configuration file. Defaults to {DEFAULT_CONFIG_FILE} if present.",
)
@click.option("--registry", required=False, help="Registry API base URL (default: $DOCKER_HUB_REGISTRY or Docker Hub).")
@click.option("--repository", required=False, help="Image repository, e.g. ceru007/tmdb-helper.")
@click.option("--timeout", required=False, type=float, default=None, help="Registry request timeout in seconds.")
@click.option("--page-size", required=False, type=int, default=None, help="Number of tags fetched per request.")
@click.option("--manifest-path", required=False, help="Bundled manifest holding the local version.")
@click.option("--data-path", required=False, help="Path whose disk usage is checked before updating.")
@click.option("--disk-threshold-percent", required=False, type=float, default=None, help="Maximum disk usage allowed.")
@click.option("--settle-seconds", required=False, type=float, default=None, help="Delay before validating the new container.")
@click.option("--health-timeout-seconds", required=False, type=float, default=None, help="How long to poll the new container.")
@click.option("--health-interval-seconds", required=False, type=float, default=None, help="Delay between health polls.")
@click.option("--cleanup-delay-seconds", required=False, type=float, default=None, help="Delay before deleting the backup container.")
@click.option("--command-timeout", required=False, type=float, default=None, help="Timeout for docker commands in seconds.")
@click.option("--pull-timeout", required=False, type=float, default=None, help="Timeout for docker pull in seconds.")
@click.option("--operation-log", required=False, type=click.Path(), help="Path of the JSON operation log.")
@click.option("--verbose", is_flag=True, default=None, help="Enable verbose logging")
@click.option("--log-file", type=click.Path(), help="Path to log file")
@click.pass_context
def main(ctx, config, verbose, log_file, **options):
    """Check for and apply new releases of a containerized application."""
    try:
        resolved_config = config if config is not None else _default_config_path()
        config_values = ConfigLoader().load(resolved_config)
    except UpdaterError as exc:
        raise click.ClickException(str(exc)) from exc

    settings = {}
    for key, cast, keyword in UPDATER_OPTIONS:
        value = _resolve_option(options.get(key), config_values, key)
        if value is not None:
            settings[keyword] = cast(value)

    verbose = bool(_resolve_option(verbose, config_values, "verbose", default=False))
    log_file = _resolve_option(log_file, config_values, "log_file")
    _configure_logging(verbose, log_file)

    ctx.ensure_object(dict)
    ctx.obj["settings"] = settings
    ctx.obj["config_path"] = resolved_config or os.path.join(os.getcwd(), DEFAULT_CONFIG_FILE)


@main.command()
@click.option("--json", "as_json", is_flag=True, help="Print the result as JSON.")
@click.pass_context
def check(ctx, as_json):
    """Compare the running version with the latest published tag."""
    updater = _build_updater(ctx)
    try:
        result = updater.check_version()
    except UpdaterError as exc:
        raise click.ClickException(str(exc)) from exc

    if as_json:
        click.echo(json.dumps(result.to_dict(), indent=2))
        return

    local = result.local.version if result.local.exists else "not installed"
    console.print(f"Local version:  [bold]{local}[/bold]")
    console.print(f"Latest version: [bold]{result.remote.version}[/bold] ({result.remote.last_updated})")
    if result.needs_update:
        console.print("[yellow]An update is available.[/yellow]")
    else:
        console.print("[green]Up to date.[/green]")


@main.command()
@click.option("--json", "as_json", is_flag=True, help="Print the result as JSON.")
@click.pass_context
def update(ctx, as_json):
    """Pull the latest image and swap the running container to it."""
    updater = _build_updater(ctx)
    result = updater.perform_update()

    if as_json:
        click.echo(json.dumps(result.to_dict(), indent=2))
    elif result.outcome == "updated":
        console.print(f"Updated {result.previous_version} -> {result.applied_version}")
    elif result.outcome == "rolled_back":
        console.print("[yellow]The previous container was restored.[/yellow]")

    ctx.exit(EXIT_CODES.get(result.outcome, 1))


@main.command()
@click.pass_context
def pull(ctx):
    """Download the latest image without restarting the container."""
    updater = _build_updater(ctx)
    try:
        latest = updater.pull_latest()
    except UpdaterError as exc:
        raise click.ClickException(str(exc)) from exc
    click.echo(latest.version)


@main.command()
@click.option("--json", "as_json", is_flag=True, help="Print the result as JSON.")
@click.pass_context
def status(ctx, as_json):
    """Show container detection and pending cleanup jobs."""
    data = _build_updater(ctx).get_status()
    if as_json:
        click.echo(json.dumps(data, indent=2))
        return

    console.print(f"Docker environment: [bold]{data['is_docker_environment']}[/bold]")
    console.print(f"Container: {data['container_name'] or '-'} ({data['container_id'] or '-'})")
    for job in data["pending_cleanups"]:
        console.print(f"[dim]Cleanup of {job['container']} due at {job['due_at']}[/dim]")


@main.command()
@click.option("--limit", type=int, default=10, show_default=True, help="Number of versions to list.")
@click.pass_context
def history(ctx, limit):
    """List recently published versions, newest first."""
    updater = _build_updater(ctx)
    try:
        versions = updater.version_history(limit=limit)
    except UpdaterError as exc:
        raise click.ClickException(str(exc)) from exc

    table = Table(title=f"Published versions of {updater.repository}")
    table.add_column("Version")
    table.add_column("Published")
    for descriptor in versions:
        table.add_row(descriptor.version, descriptor.last_updated)
    console.print(table)


@main.command()
@click.option("--limit", type=int, default=50, show_default=True, help="Number of entries to show.")
@click.pass_context
def logs(ctx, limit):
    """Show the most recent update operations."""
    entries = _build_updater(ctx).operation_log.read(limit=limit)
    table = Table(title=f"Update operations ({len(entries)})")
    table.add_column("Time")
    table.add_column("Level")
    table.add_column("Action")
    table.add_column("Message")
    for entry in entries:
        table.add_row(entry.get("timestamp", ""), entry.get("level", ""), entry.get("action", ""), entry.get("message", ""))
    console.print(table)


@main.command()
@click.argument("container")
@click.option("--delay", type=float, default=0.0, show_default=True, help="Seconds to wait before removing.")
@click.pass_context
def cleanup(ctx, container, delay):
    """Remove a backup container left by an update, optionally after a delay."""
    if BACKUP_SUFFIX not in container:
        raise click.ClickException(f"Refusing to remove {container}: it is not a backup container.")

    updater = _build_updater(ctx)
    if delay > 0:
        time.sleep(delay)
    if not updater.cleanup_scheduler.remove_now(container):
        ctx.exit(1)


@main.group("config")
def config_group():
    """Manage persisted settings."""


@config_group.command("set-registry")
@click.argument("url")
@click.pass_context
def set_registry(ctx, url):
    """Persist the preferred registry URL in the config file."""
    config_path = ctx.obj["config_path"]
    try:
        ConfigLoader().save_value(config_path, "registry", url.rstrip("/"))
    except UpdaterError as exc:
        raise click.ClickException(str(exc)) from exc
    console.print(f"[green]Registry set to {url} in {config_path}.[/green]")


if __name__ == "__main__":
    main()
