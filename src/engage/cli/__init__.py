"""Engage CLI - offline-first CRM client

Command groups are organized into separate modules:
- session.py: init
- records.py: record put, delete, list, show
- sync.py: sync run, status, conflicts, resolve, pull, push, watch
- config.py: config set, get, show
- common.py: shared utilities
"""
from pathlib import Path
import click

from .. import __version__
from .common import (
    VERBOSITY_NORMAL,
    VERBOSITY_QUIET,
    VERBOSITY_VERBOSE,
    configure_logging,
    get_base_path,
)
from .session import session_group
from .records import records_group
from .sync import sync_group
from .config import config_group


@click.group()
@click.version_option(version=__version__, prog_name="engage")
@click.option('--data-dir', type=click.Path(), default=None, envvar='ENGAGE_BASE_PATH',
              help='Base directory for Engage data (default: ~/.engage360)')
@click.option('--verbose', '-v', is_flag=True, default=False,
              help='Enable verbose output')
@click.option('--quiet', '-q', is_flag=True, default=False,
              help='Suppress non-essential output')
@click.pass_context
def cli(ctx, data_dir, verbose, quiet):
    """Engage - offline-first CRM client

    Keeps people, groups, notes, action items and devices in a local
    database and synchronizes them with the Engage sync server.

    \b
    Examples:
        engage init
        engage config set remote.base_url https://engage.example.com
        engage record put people '{"id": "p1", "firstName": "Ana"}'
        engage sync run
        engage sync status
        engage sync conflicts
        engage sync resolve people p1 --use local
    """
    ctx.ensure_object(dict)

    if verbose and quiet:
        raise click.UsageError("--verbose and --quiet are mutually exclusive")

    verbosity = VERBOSITY_QUIET if quiet else VERBOSITY_VERBOSE if verbose else VERBOSITY_NORMAL
    ctx.obj['verbosity'] = verbosity
    ctx.obj['data_dir'] = Path(data_dir) if data_dir else None
    configure_logging(verbosity)


cli.add_command(session_group.commands['init'])
cli.add_command(records_group, name='record')
cli.add_command(sync_group, name='sync')
cli.add_command(config_group, name='config')


def main():
    cli()


__all__ = [
    '__version__',
    'cli',
    'main',
    'get_base_path',
]
