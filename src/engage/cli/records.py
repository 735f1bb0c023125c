"""Local record commands for Engage CLI.

Every change made here is a local edit: the ledger marks it pending and the
next 'engage sync run' pushes it.
"""
import json
import sys
import uuid
import click

from ..storage import LedgerError, RecordOrigin, StoreError, Table, record_type

# Local CLI imports
from .common import echo_error, echo_normal, echo_quiet, echo_verbose, open_service

TABLE_CHOICE = click.Choice([table.value for table in Table])


@click.group()
def records_group():
    """Local record management (people, groups, notes, ...)."""
    pass


@records_group.command('put')
@click.argument('table', type=TABLE_CHOICE)
@click.argument('data')
@click.pass_context
def record_put(ctx, table: str, data: str) -> None:
    """Create or update a record from a JSON object.

    Field names may be given as columns (first_name) or wire names
    (firstName). A record without an id gets a new UUID.

    Examples:
        engage record put people '{"id": "p1", "firstName": "Ana"}'
        engage record put notes '{"title": "1:1", "content": "Goals"}'
    """
    verbosity = ctx.obj.get('verbosity', 1)
    try:
        payload = json.loads(data)
    except json.JSONDecodeError as e:
        echo_error(f"Invalid JSON: {e}")
        sys.exit(1)
    if not isinstance(payload, dict):
        echo_error("Record data must be a JSON object")
        sys.exit(1)

    table = Table.parse(table)
    record_id = str(payload.get("id") or uuid.uuid4())
    payload["id"] = record_id

    service = open_service(ctx)
    try:
        if service.store.find_by_id(table, record_id) is None:
            record = service.store.insert(record_type(table).from_wire(payload), RecordOrigin.LOCAL)
            action = "Created"
        else:
            record = service.store.update(table, record_id, payload, RecordOrigin.LOCAL)
            action = "Updated"
    except (StoreError, LedgerError, ValueError) as e:
        echo_error(str(e))
        sys.exit(1)
    finally:
        service.close()

    echo_normal(click.style(f"✓ {action} {table.value}/{record.id}", fg="green"), verbosity)
    echo_verbose(json.dumps(record.to_wire(), indent=2), verbosity)


@records_group.command('delete')
@click.argument('table', type=TABLE_CHOICE)
@click.argument('record_id')
@click.pass_context
def record_delete(ctx, table: str, record_id: str) -> None:
    """Delete a record (the deletion is pushed on the next sync)."""
    verbosity = ctx.obj.get('verbosity', 1)
    service = open_service(ctx)
    try:
        deleted = service.store.delete(Table.parse(table), record_id, RecordOrigin.LOCAL)
    except (StoreError, LedgerError) as e:
        echo_error(str(e))
        sys.exit(1)
    finally:
        service.close()

    if not deleted:
        echo_error(f"{table}/{record_id} not found")
        sys.exit(1)
    echo_normal(click.style(f"✓ Deleted {table}/{record_id}", fg="green"), verbosity)


@records_group.command('list')
@click.argument('table', type=TABLE_CHOICE)
@click.option('--json', 'as_json', is_flag=True, help='Output as JSON')
@click.pass_context
def record_list(ctx, table: str, as_json: bool) -> None:
    """List records of a table, most recently updated first."""
    verbosity = ctx.obj.get('verbosity', 1)
    service = open_service(ctx)
    try:
        records = service.store.find_all(Table.parse(table))
        entries = {entry.record_id: entry for entry in service.ledger.list_entries(Table.parse(table))}
    except (StoreError, LedgerError) as e:
        echo_error(str(e))
        sys.exit(1)
    finally:
        service.close()

    if as_json:
        echo_quiet(json.dumps([record.to_dict() for record in records], indent=2), verbosity)
        return

    if not records:
        echo_normal(f"No {table} records", verbosity)
        return
    for record in records:
        entry = entries.get(record.id)
        status = entry.status.value if entry else "untracked"
        echo_quiet(f"{record.id}  {record.updated_at or '-'}  [{status}]", verbosity)
    echo_normal(f"\n{len(records)} {table} record(s)", verbosity)


@records_group.command('show')
@click.argument('table', type=TABLE_CHOICE)
@click.argument('record_id')
@click.pass_context
def record_show(ctx, table: str, record_id: str) -> None:
    """Show one record as JSON."""
    verbosity = ctx.obj.get('verbosity', 1)
    service = open_service(ctx)
    try:
        record = service.store.find_by_id(Table.parse(table), record_id)
        entry = service.ledger.get_entry(Table.parse(table), record_id)
    except (StoreError, LedgerError) as e:
        echo_error(str(e))
        sys.exit(1)
    finally:
        service.close()

    if record is None:
        echo_error(f"{table}/{record_id} not found")
        sys.exit(1)
    echo_quiet(json.dumps(record.to_dict(), indent=2), verbosity)
    if entry is not None:
        echo_verbose(f"sync status: {entry.status.value} (last synced: {entry.last_synced or 'never'})", verbosity)
