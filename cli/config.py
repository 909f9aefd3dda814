"""
Config CLI commands.

Shows and updates the client configuration file.
"""

import click

from servicefinder_sync.config import ClientConfig, ConfigError, ConfigValidationError


def _mask(value: str) -> str:
    if not value:
        return ""
    return value[:4] + "…" if len(value) > 8 else "****"


# ============================================================================
# Config Command Group
# ============================================================================


@click.group()
@click.pass_context
def config(ctx: click.Context) -> None:
    """
    Manage client configuration.

    Values set here are written to the YAML config file. The server URL,
    API token and log level can also be overridden with environment
    variables.
    """
    ctx.ensure_object(dict)


@config.command("show")
@click.option("--show-token", is_flag=True, help="Print the API token unmasked")
@click.pass_context
def show(ctx: click.Context, show_token: bool) -> None:
    """
    Display the effective configuration.

    Example:

        servicefinder-sync config show
    """
    try:
        client_config = ClientConfig()
    except ConfigError as e:
        click.echo(click.style("Error: ", fg="red", bold=True) + str(e))
        ctx.exit(1)
        return

    values = client_config.to_dict()
    values["server_url"] = client_config.server_url
    values["log_level"] = client_config.log_level
    token = client_config.api_token
    values["api_token"] = token if show_token else _mask(token)

    click.echo(f"Config file: {client_config.config_path}")
    for key, value in values.items():
        shown = "" if value is None else value
        click.echo(f"  {key}: {shown}")


@config.command("set")
@click.argument("key")
@click.argument("value")
@click.pass_context
def set_value(ctx: click.Context, key: str, value: str) -> None:
    """
    Set a configuration value.

    Example:

        servicefinder-sync config set booking_poll_interval_seconds 20
    """
    try:
        client_config = ClientConfig()
        client_config.set_value(key, value)
        client_config.validate()
    except ConfigValidationError as e:
        click.echo(click.style("Invalid value: ", fg="red", bold=True) + str(e))
        ctx.exit(1)
        return
    except ConfigError as e:
        click.echo(click.style("Error: ", fg="red", bold=True) + str(e))
        ctx.exit(1)
        return

    client_config.save()
    shown = _mask(value) if key == "api_token" else value
    click.echo(click.style("Updated ", fg="green") + f"{key} = {shown}")
