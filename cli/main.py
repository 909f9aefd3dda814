"""
Sync client CLI entry point.

Main command group for the ServiceFinder sync client CLI.
"""

import click

from servicefinder_sync import __version__


@click.group()
@click.version_option(version=__version__, prog_name="servicefinder-sync")
@click.pass_context
def cli(ctx: click.Context) -> None:
    """
    ServiceFinder Sync - Marketplace notification client.

    Polls the ServiceFinder marketplace for booking and rating changes of
    the signed-in user and turns them into notifications.

    Use 'servicefinder-sync COMMAND --help' for more information on a command.
    """
    ctx.ensure_object(dict)


# Import and register subcommands
from cli.watch import watch  # noqa: E402
from cli.config import config  # noqa: E402
from cli.state import state  # noqa: E402

cli.add_command(watch)
cli.add_command(config)
cli.add_command(state)


def main() -> None:
    """Main entry point for CLI."""
    cli()


if __name__ == "__main__":
    main()
