"""
State CLI commands.

Inspects and clears the persisted de-duplication state of a user.
"""

import json

import click

from servicefinder_sync.config import get_state_dir
from servicefinder_sync.dedup_store import DedupStateStore, storage_keys
from servicefinder_sync.models import PollCategory
from servicefinder_sync.storage import JsonFileStorage


def _get_store() -> DedupStateStore:
    return DedupStateStore(JsonFileStorage(get_state_dir()))


@click.group()
@click.pass_context
def state(ctx: click.Context) -> None:
    """
    Manage persisted de-duplication state.

    The pollers remember which bookings and ratings they already
    announced. Clearing this state makes the next poll re-seed it.
    """
    ctx.ensure_object(dict)


@state.command("show")
@click.argument("user_id", type=int)
@click.option("--json", "as_json", is_flag=True, help="Output as JSON")
def show(user_id: int, as_json: bool) -> None:
    """
    Show the stored state of a user, per poll category.

    Example:

        servicefinder-sync state show 42
    """
    store = _get_store()
    summary = {}
    for category in PollCategory:
        loaded = store.load(user_id, category)
        entry = {}
        for field_name in storage_keys(user_id, category):
            value = getattr(loaded, field_name)
            if isinstance(value, dict):
                entry[field_name] = {
                    str(k): (v.value if hasattr(v, "value") else v) for k, v in value.items()
                }
            else:
                entry[field_name] = sorted(value)
        summary[category.value] = entry

    if as_json:
        click.echo(json.dumps(summary, indent=2))
        return

    click.echo(f"State for user {user_id} ({get_state_dir()}):")
    for category_name, fields in summary.items():
        click.echo(click.style(f"  {category_name}", bold=True))
        for field_name, value in fields.items():
            click.echo(f"    {field_name}: {len(value)} entries")


@state.command("clear")
@click.argument("user_id", type=int)
@click.option("--yes", "-y", is_flag=True, help="Skip confirmation")
@click.pass_context
def clear(ctx: click.Context, user_id: int, yes: bool) -> None:
    """
    Delete the stored state of a user.

    Example:

        servicefinder-sync state clear 42 --yes
    """
    if not yes and not click.confirm(f"Delete all stored state of user {user_id}?"):
        click.echo("Aborted.")
        ctx.exit(1)
        return

    removed = _get_store().clear(user_id)
    click.echo(click.style("Cleared ", fg="green") + f"{removed} state entries of user {user_id}")
