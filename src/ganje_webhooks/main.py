"""
Main entry point for the Ganje webhook dispatcher.

This module provides the command-line interface for the dispatcher,
handling startup, configuration, and graceful shutdown.
"""

import asyncio
import sys
from pathlib import Path
from typing import Optional

import click

from .config.settings import create_default_config, load_config
from .service import WebhookDispatcherService
from .utils.logging import get_logger, setup_logging

logger = get_logger(__name__)


@click.command()
@click.option(
    "--config",
    "-c",
    type=click.Path(exists=True, path_type=Path),
    help="Path to configuration file",
)
@click.option(
    "--log-level",
    type=click.Choice(["DEBUG", "INFO", "WARNING", "ERROR"], case_sensitive=False),
    help="Set logging level",
)
@click.option(
    "--subscriptions",
    "-s",
    type=click.Path(exists=True, path_type=Path),
    help="JSON file holding webhook subscriptions",
)
@click.option(
    "--workers",
    "-w",
    type=int,
    help="Number of delivery workers",
)
@click.option(
    "--shutdown-timeout",
    type=float,
    help="Seconds to wait for in-flight deliveries on shutdown",
)
def serve(
    config: Optional[Path] = None,
    log_level: Optional[str] = None,
    subscriptions: Optional[Path] = None,
    workers: Optional[int] = None,
    shutdown_timeout: Optional[float] = None,
) -> None:
    """
    Run the webhook dispatcher.

    Reads newline-delimited JSON artifact events from stdin and delivers
    them to the webhooks subscribed to each event's repository.
    """
    try:
        config_data = load_config(config_path=config)

        if log_level:
            config_data.server.log_level = log_level.upper()
        if subscriptions:
            config_data.store.subscriptions_path = subscriptions
        if workers is not None:
            config_data.dispatcher.workers = workers if workers > 0 else 2

        setup_logging(config_data.server.log_level, json_logs=config_data.server.json_logs)
        if not config_data.dispatcher.enabled:
            logger.info("Webhook dispatcher disabled by config; exiting")
            return

        logger.info(
            "Starting Ganje webhook dispatcher",
            version=config_data.version,
            config_file=str(config) if config else "default",
            log_level=config_data.server.log_level,
            workers=config_data.dispatcher.workers,
        )

        service = WebhookDispatcherService(config_data, shutdown_timeout=shutdown_timeout)
        asyncio.run(service.run())

    except KeyboardInterrupt:
        logger.info("Dispatcher shutdown requested")
        sys.exit(0)
    except Exception as e:
        logger.error("Dispatcher failed", error=str(e), exc_info=True)
        sys.exit(1)


@click.command()
@click.option(
    "--config",
    "-c",
    type=click.Path(path_type=Path),
    help="Path to save configuration file",
)
def init_config(config: Optional[Path] = None) -> None:
    """Initialize a configuration file with default settings."""
    config_path = config or Path("config.json")

    if config_path.exists():
        click.echo(f"Configuration file already exists: {config_path}")
        if not click.confirm("Overwrite?"):
            return

    try:
        create_default_config(config_path)
        click.echo(f"Created configuration file: {config_path}")
        click.echo("\nNext steps:")
        click.echo("1. List your webhooks in subscriptions.json")
        click.echo("2. Pipe artifact events into the dispatcher:")
        click.echo(f"   ganje-webhooks serve --config {config_path} < events.jsonl")
    except OSError as e:
        click.echo(f"Failed to create configuration file: {e}", err=True)
        sys.exit(1)


@click.group()
@click.version_option(package_name="ganje-webhook-dispatcher")
def cli() -> None:
    """Ganje webhook dispatcher CLI."""
    pass


cli.add_command(serve, name="serve")
cli.add_command(init_config, name="init")


if __name__ == "__main__":
    cli()
