"""Configuration management commands for Engage CLI."""
import sys
import click
import yaml

from ..config import (
    ConfigError,
    build_config,
    get_base_path,
    get_dotted,
    parse_value,
    read_config_file,
    set_dotted,
    write_config_file,
)

# Local CLI imports
from .common import config_path_for, echo_error, echo_normal, echo_quiet


@click.group()
def config_group():
    """Configuration management commands."""
    pass


def _require_config_file(ctx):
    config_path = config_path_for(ctx)
    if not config_path.exists():
        echo_error("Engage not initialized. Run 'engage init' first.")
        sys.exit(1)
    return config_path


@config_group.command('set')
@click.argument('key')
@click.argument('value')
@click.pass_context
def config_set(ctx, key: str, value: str) -> None:
    """Set a configuration value.

    Values are read as YAML scalars, so numbers and booleans keep their type.
    The file is only written when the result is a valid configuration.

    Examples:
        engage config set remote.base_url https://engage.example.com
        engage config set sync.interval_seconds 120
        engage config set logging.level INFO
    """
    config_path = _require_config_file(ctx)
    verbosity = ctx.obj.get('verbosity', 1)

    try:
        config_data = read_config_file(config_path)
        parsed = parse_value(value)
        set_dotted(config_data, key, parsed)
        build_config(config_data, get_base_path(ctx.obj.get('data_dir')))
        write_config_file(config_path, config_data)
    except ConfigError as e:
        echo_error(f"Failed to set config: {e}")
        sys.exit(1)

    echo_normal(click.style(f"✓ Set {key} = {parsed}", fg="green"), verbosity)


@config_group.command('get')
@click.argument('key')
@click.pass_context
def config_get(ctx, key: str) -> None:
    """Get a configuration value (file value, or the default).

    Examples:
        engage config get remote.base_url
        engage config get sync
    """
    config_path = _require_config_file(ctx)
    verbosity = ctx.obj.get('verbosity', 1)

    try:
        config = build_config(read_config_file(config_path), get_base_path(ctx.obj.get('data_dir')))
        value = get_dotted(config.to_dict(), key)
    except ConfigError as e:
        echo_error(str(e))
        sys.exit(1)
    except KeyError:
        echo_quiet(click.style(f"Key '{key}' not found", fg="yellow"), verbosity)
        sys.exit(1)

    if isinstance(value, dict):
        echo_quiet(yaml.safe_dump(value, default_flow_style=False, sort_keys=False).rstrip(), verbosity)
    else:
        echo_quiet(str(value), verbosity)


@config_group.command('show')
@click.pass_context
def config_show(ctx) -> None:
    """Display the effective configuration (token masked)."""
    config_path = _require_config_file(ctx)
    verbosity = ctx.obj.get('verbosity', 1)

    try:
        config = build_config(read_config_file(config_path), get_base_path(ctx.obj.get('data_dir')))
    except ConfigError as e:
        echo_error(str(e))
        sys.exit(1)

    echo_normal(click.style(f"Current configuration ({config_path}):", fg="cyan", bold=True), verbosity)
    echo_quiet(yaml.safe_dump(config.to_dict(), default_flow_style=False, sort_keys=False).rstrip(), verbosity)
