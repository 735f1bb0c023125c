"""Synchronization commands for Engage CLI."""
import json
import sys
import time
from typing import Any, Dict, Optional

import click

from ..storage import Table
from ..sync import ResolutionChoice, SyncResult

# Local CLI imports
from .common import echo_error, echo_normal, echo_quiet, echo_verbose, open_service


@click.group()
@click.pass_context
def sync_group(ctx):
    """Synchronization with the Engage sync server.

    Local edits are pulled and pushed by 'sync run'; conflicts are listed
    by 'sync conflicts' and settled by 'sync resolve'.
    """
    pass


def _print_result(result: SyncResult, verbosity: int, as_json: bool) -> None:
    if as_json:
        echo_quiet(json.dumps(result.to_dict(), indent=2), verbosity)
        return

    if result.success:
        echo_normal(click.style(f"✓ Sync completed ({result.trigger})", fg="green"), verbosity)
    else:
        echo_quiet(click.style(f"✗ Sync aborted ({result.trigger})", fg="red"), verbosity)
    echo_normal(f"  Synchronized: {result.synchronized}", verbosity)
    echo_normal(f"  Conflicts:    {result.conflicts}", verbosity)
    if result.duration_ms is not None:
        echo_verbose(f"  Duration:     {result.duration_ms} ms", verbosity)
    if result.errors:
        echo_quiet(click.style(f"  Errors ({len(result.errors)}):", fg="yellow"), verbosity)
        for error in result.errors:
            echo_quiet(f"    - {error}", verbosity)


def _finish(result: SyncResult, verbosity: int, as_json: bool = False) -> None:
    _print_result(result, verbosity, as_json)
    if not result.success:
        sys.exit(1)


@sync_group.command('run')
@click.option('--json', 'as_json', is_flag=True, help='Output as JSON')
@click.pass_context
def sync_run(ctx, as_json: bool):
    """Run one reconciliation now (pull, then push)."""
    verbosity = ctx.obj.get('verbosity', 1)
    service = open_service(ctx)
    try:
        echo_verbose("Synchronizing with server...", verbosity)
        result = service.manual_sync()
    finally:
        service.close()
    _finish(result, verbosity, as_json)


@sync_group.command('status')
@click.option('--json', 'as_json', is_flag=True, help='Output as JSON')
@click.pass_context
def sync_status(ctx, as_json: bool):
    """Show pending changes, conflicts and the last sync."""
    verbosity = ctx.obj.get('verbosity', 1)
    service = open_service(ctx)
    try:
        status = service.get_sync_status()
        remote = service.client.base_url
    finally:
        service.close()

    if as_json:
        echo_quiet(json.dumps(status, indent=2), verbosity)
        return

    echo_normal(click.style("=== Sync Status ===", fg="cyan", bold=True), verbosity)
    echo_normal(f"Server:        {remote}", verbosity)
    echo_quiet(f"Last sync:     {status['last_sync'] or 'never'}", verbosity)
    echo_quiet(f"Pending:       {status['pending_count']}", verbosity)
    conflicts = status['conflict_count']
    line = f"Conflicts:     {conflicts}"
    echo_quiet(click.style(line, fg="yellow") if conflicts else line, verbosity)

    last_result: Optional[Dict[str, Any]] = status.get('last_result')
    if last_result:
        outcome = "ok" if last_result.get("success") else "aborted"
        echo_normal(f"Last run:      {outcome} ({last_result.get('trigger')}, "
                    f"{last_result.get('synchronized', 0)} synchronized)", verbosity)
        for error in last_result.get("errors") or []:
            echo_verbose(f"  - {error}", verbosity)


@sync_group.command('conflicts')
@click.option('--json', 'as_json', is_flag=True, help='Output as JSON')
@click.pass_context
def sync_conflicts(ctx, as_json: bool):
    """List records in conflict."""
    verbosity = ctx.obj.get('verbosity', 1)
    service = open_service(ctx)
    try:
        conflicts = service.get_conflicts()
    finally:
        service.close()

    if as_json:
        echo_quiet(json.dumps([entry.to_dict() for entry in conflicts], indent=2), verbosity)
        return

    if not conflicts:
        echo_normal("No conflicts", verbosity)
        return
    for entry in conflicts:
        echo_quiet(f"{entry.table.value}/{entry.record_id}  local_updated={entry.local_updated}", verbosity)
    echo_normal(f"\n{len(conflicts)} conflict(s). Resolve with: "
                f"engage sync resolve TABLE ID --use local|remote|merge", verbosity)


@sync_group.command('resolve')
@click.argument('table', type=click.Choice([table.value for table in Table]))
@click.argument('record_id')
@click.option('--use', 'use', required=True,
              type=click.Choice([choice.value for choice in ResolutionChoice]),
              help='Which side to keep')
@click.option('--data', default=None, help='Merged record as JSON (with --use merge)')
@click.pass_context
def sync_resolve(ctx, table: str, record_id: str, use: str, data: Optional[str]):
    """Resolve one conflicting record.

    Examples:
        engage sync resolve people p1 --use local
        engage sync resolve notes n1 --use merge --data '{"title": "Merged"}'
    """
    verbosity = ctx.obj.get('verbosity', 1)
    merged_data = None
    if data is not None:
        if use != ResolutionChoice.MERGE.value:
            echo_error("--data is only valid with --use merge")
            sys.exit(1)
        try:
            merged_data = json.loads(data)
        except json.JSONDecodeError as e:
            echo_error(f"Invalid JSON: {e}")
            sys.exit(1)
        if not isinstance(merged_data, dict):
            echo_error("Merged data must be a JSON object")
            sys.exit(1)

    service = open_service(ctx)
    try:
        result = service.resolve_conflict(table, record_id, use, merged_data)
    finally:
        service.close()

    if result.success and not result.errors:
        echo_normal(click.style(f"✓ Resolved {table}/{record_id} using {use}", fg="green"), verbosity)
        return
    _print_result(result, verbosity, as_json=False)
    sys.exit(1)


@sync_group.command('pull')
@click.option('--force', is_flag=True, help='Required: discard local data and reload from the server')
@click.option('--json', 'as_json', is_flag=True, help='Output as JSON')
@click.pass_context
def sync_pull(ctx, force: bool, as_json: bool):
    """Replace all local data with the server's copy."""
    verbosity = ctx.obj.get('verbosity', 1)
    if not force:
        echo_error("This discards local data, including unsynced changes. Re-run with --force.")
        sys.exit(1)

    service = open_service(ctx)
    try:
        echo_normal("Pulling all data from server...", verbosity)
        result = service.force_pull()
    finally:
        service.close()
    _finish(result, verbosity, as_json)


@sync_group.command('push')
@click.option('--force', is_flag=True, help='Required: overwrite server copies with local data')
@click.option('--json', 'as_json', is_flag=True, help='Output as JSON')
@click.pass_context
def sync_push(ctx, force: bool, as_json: bool):
    """Upload every local record, overriding server copies."""
    verbosity = ctx.obj.get('verbosity', 1)
    if not force:
        echo_error("This overwrites server data with local copies. Re-run with --force.")
        sys.exit(1)

    service = open_service(ctx)
    try:
        echo_normal("Pushing all local data to server...", verbosity)
        result = service.force_push()
    finally:
        service.close()
    _finish(result, verbosity, as_json)


@sync_group.command('watch')
@click.option('--duration', type=float, default=0,
              help='Stop after this many seconds (default: run until interrupted)')
@click.option('--no-probe', is_flag=True, help='Do not probe /health for connectivity')
@click.pass_context
def sync_watch(ctx, duration: float, no_probe: bool):
    """Synchronize in the background on the configured interval.

    Runs immediately, then every sync.interval_seconds, and again as soon
    as the server becomes reachable after an outage.
    """
    verbosity = ctx.obj.get('verbosity', 1)
    service = open_service(ctx)

    def on_completed(event):
        if event.success:
            echo_normal(f"[{event.timestamp:%H:%M:%S}] {event.trigger}: "
                        f"{event.synchronized} synchronized, {event.conflicts} conflict(s)", verbosity)
        else:
            echo_quiet(click.style(f"[{event.timestamp:%H:%M:%S}] {event.trigger}: "
                                   f"{'; '.join(event.errors)}", fg="red"), verbosity)

    def on_connectivity(event):
        state = "online" if event.online else "offline"
        echo_normal(f"[{event.timestamp:%H:%M:%S}] {state} ({event.reason})", verbosity)

    service.event_bus.subscribe("sync.completed", on_completed)
    service.event_bus.subscribe("connectivity.changed", on_connectivity)

    echo_normal(click.style(f"Watching (interval {service.scheduler.interval_seconds}s). "
                            f"Press Ctrl+C to stop.", fg="cyan"), verbosity)
    try:
        service.start_auto_sync(probe=not no_probe)
        service.scheduler.trigger("startup")
        deadline = time.monotonic() + duration if duration > 0 else None
        while deadline is None or time.monotonic() < deadline:
            time.sleep(0.2)
    except KeyboardInterrupt:
        echo_normal("\nStopping...", verbosity)
    finally:
        service.close()
