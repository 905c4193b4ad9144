"""Main CLI entry point for nansql."""

from __future__ import annotations

import click

from nansql import __version__
from nansql.cli.commands import register_commands
from nansql.cli.commands.configuration import config_group
from nansql.cli.commands.database import db_group
from nansql.cli.utils import console, setup_logging
from nansql.config import EnvironmentSettings


@click.group(invoke_without_command=True)
@click.option("--version", is_flag=True, help="Show version information")
@click.option("--config", type=click.Path(exists=True), help="Path to configuration file")
@click.option("--db", help="Database connection name")
@click.option("--output", type=click.Choice(["table", "json"]), default="table", help="Output format")
@click.option("--verbose", "-v", is_flag=True, help="Enable verbose logging")
@click.pass_context
def cli(
    ctx: click.Context,
    version: bool,
    config: str,
    db: str,
    output: str,
    verbose: bool,
) -> None:
    """nansql - query, scan and transaction tooling over SQLAlchemy."""
    ctx.ensure_object(dict)
    ctx.obj.update(
        {
            "config": config,
            "db": db,
            "output": output,
            "verbose": verbose,
        }
    )
    setup_logging(EnvironmentSettings().log_level, verbose)

    if version:
        console.print(f"nansql v{__version__}")
        return

    if ctx.invoked_subcommand is None:
        click.echo(ctx.get_help())


COMMAND_REGISTRY = [
    db_group,
    config_group,
]

register_commands(cli, COMMAND_REGISTRY)


if __name__ == "__main__":
    cli()
