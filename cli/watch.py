"""
Watch CLI command.

Runs the pollers of the configured session and prints notifications.
"""

import sys
from typing import Optional

import click

from servicefinder_sync.config import VALID_ROLES, ClientConfig, ConfigError
from servicefinder_sync.main import run_session
from servicefinder_sync.models import Notification, Role, Session


def format_notification(notification: Notification) -> str:
    """Render a notification as one line of terminal output."""
    stamp = notification.created_at.astimezone().strftime("%H:%M:%S")
    title = click.style(notification.title, bold=True)
    return f"{stamp} {title}: {notification.message}"


def _echo_notification(notification: Notification) -> None:
    click.echo(format_notification(notification))


@click.command()
@click.option("--user-id", type=int, default=None, help="User to watch (defaults to config)")
@click.option(
    "--role",
    type=click.Choice(sorted(VALID_ROLES), case_sensitive=False),
    default=None,
    help="Role of the user (defaults to config)",
)
@click.pass_context
def watch(ctx: click.Context, user_id: Optional[int], role: Optional[str]) -> None:
    """
    Watch the marketplace for booking and rating changes.

    Starts the pollers for the user's role and prints every notification
    they produce. Runs until stopped with Ctrl+C or SIGTERM.

    Example:

        servicefinder-sync watch --user-id 42 --role SERVICE_PROVIDER
    """
    try:
        config = ClientConfig()
    except ConfigError as e:
        click.echo(click.style("Error: ", fg="red", bold=True) + str(e))
        ctx.exit(1)
        return

    if not config.is_configured:
        click.echo(
            click.style("Error: ", fg="red", bold=True)
            + "Client is not configured with a server URL."
        )
        click.echo("Run 'servicefinder-sync config set server_url URL' first.")
        ctx.exit(1)
        return

    user_id = user_id if user_id is not None else config.user_id
    role = (role or config.role or "").upper()
    if user_id is None or not role:
        click.echo(
            click.style("Error: ", fg="red", bold=True)
            + "No user to watch. Pass --user-id and --role or set them in the config."
        )
        ctx.exit(1)
        return

    session = Session(user_id=user_id, role=Role(role))

    click.echo(f"Watching user {session.user_id} ({session.role.value})...")
    click.echo(f"  Server: {config.server_url}")
    click.echo()
    click.echo("Press Ctrl+C to stop")
    click.echo()

    exit_code = run_session(session, config, on_notification=_echo_notification)
    sys.exit(exit_code)
