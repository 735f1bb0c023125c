"""Shared utilities for Engage CLI commands."""
import logging
import sqlite3
import sys
from pathlib import Path
from typing import Optional

import click

from ..config import CONFIG_FILENAME, ConfigError, EngageConfig, get_base_path, load_config
from ..migrations import MigrationError
from ..storage import StoreError
from ..sync import SyncService, build_sync_service

# Verbosity levels
VERBOSITY_QUIET = 0
VERBOSITY_NORMAL = 1
VERBOSITY_VERBOSE = 2

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


def should_print(verbosity: int, message_level: int) -> bool:
    """Determine if a message should be printed based on verbosity settings.

    Args:
        verbosity: Current verbosity level (0=quiet, 1=normal, 2=verbose).
        message_level: Minimum verbosity level required for this message.
    """
    return verbosity >= message_level


def echo_verbose(message: str, verbosity: int) -> None:
    """Print a message only in verbose mode."""
    if should_print(verbosity, VERBOSITY_VERBOSE):
        click.echo(message, err=False)


def echo_normal(message: str, verbosity: int) -> None:
    """Print a message in normal and verbose modes."""
    if should_print(verbosity, VERBOSITY_NORMAL):
        click.echo(message, err=False)


def echo_quiet(message: str, verbosity: int) -> None:
    """Print a message that is always shown, even in quiet mode."""
    click.echo(message, err=False)


def echo_error(message: str) -> None:
    click.echo(click.style(f"Error: {message}", fg="red"), err=True)


def configure_logging(verbosity: int, level: Optional[str] = None) -> None:
    """Configure the root logger.

    --verbose forces DEBUG and --quiet forces ERROR; otherwise the
    configured logging.level applies.

    Args:
        verbosity: Current verbosity level.
        level: Level name from config (default WARNING).
    """
    if verbosity >= VERBOSITY_VERBOSE:
        resolved = logging.DEBUG
    elif verbosity <= VERBOSITY_QUIET:
        resolved = logging.ERROR
    else:
        resolved = getattr(logging, (level or "WARNING").upper(), logging.WARNING)
    logging.basicConfig(level=resolved, format=LOG_FORMAT, force=True)


def config_path_for(ctx: click.Context) -> Path:
    return get_base_path(ctx.obj.get('data_dir')) / CONFIG_FILENAME


def require_config(ctx: click.Context) -> EngageConfig:
    """Load configuration for an initialized data directory, or exit 1."""
    base_path = get_base_path(ctx.obj.get('data_dir'))
    if not (base_path / CONFIG_FILENAME).exists():
        echo_error("Engage not initialized. Run 'engage init' first.")
        sys.exit(1)
    try:
        config = load_config(base_path)
    except ConfigError as e:
        echo_error(str(e))
        sys.exit(1)
    configure_logging(ctx.obj.get('verbosity', VERBOSITY_NORMAL), config.logging.level)
    return config


def open_service(ctx: click.Context) -> SyncService:
    """Build and open the sync service for the current data directory.

    Tests can inject a requests session through ctx.obj['session'].
    """
    config = require_config(ctx)
    service = build_sync_service(config, session=ctx.obj.get('session'))
    try:
        service.open()
    except (StoreError, MigrationError, sqlite3.Error) as e:
        echo_error(f"Cannot open database {config.db_path}: {e}")
        sys.exit(1)
    return service
