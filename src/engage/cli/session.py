"""Initialization command for Engage CLI."""
import sqlite3
import sys
import click

from ..config import CONFIG_FILENAME, ConfigError, default_config_yaml, get_base_path, load_config
from ..migrations import MigrationError
from ..storage import Database, StoreError

# Local CLI imports
from .common import echo_error, echo_normal


@click.group()
def session_group():
    """Session management commands."""
    pass


@session_group.command("init")
@click.pass_context
def init(ctx) -> None:
    """Initialize the Engage data directory.

    Creates the following:
    - the base directory (~/.engage360 by default)
    - config.yaml with default settings
    - the SQLite database with the current schema
    """
    base_path = get_base_path(ctx.obj.get('data_dir'))
    verbosity = ctx.obj.get('verbosity', 1)

    echo_normal(click.style("Initializing Engage...", fg="cyan", bold=True), verbosity)

    # 1. Create directory
    base_path.mkdir(parents=True, exist_ok=True)
    echo_normal(f" ✓ Created directory: {base_path}", verbosity)

    # 2. Create config.yaml
    config_path = base_path / CONFIG_FILENAME
    if not config_path.exists():
        config_path.write_text(default_config_yaml())
        echo_normal(f" ✓ Created config: {config_path}", verbosity)
    else:
        echo_normal(f" ⚠ Config exists: {config_path}", verbosity)

    # 3. Create database and apply migrations
    try:
        config = load_config(base_path)
        existed = config.db_path.exists()
        with Database(config.db_path) as db:
            version = db.schema_version()
    except (ConfigError, StoreError, MigrationError, sqlite3.Error) as e:
        echo_error(str(e))
        sys.exit(1)

    if existed:
        echo_normal(f" ⚠ Database exists: {config.db_path} (schema v{version})", verbosity)
    else:
        echo_normal(f" ✓ Initialized database: {config.db_path} (schema v{version})", verbosity)

    echo_normal(click.style("\nEngage is ready. Run 'engage sync run' to synchronize.", fg="green"), verbosity)
