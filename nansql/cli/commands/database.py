"""Database CLI commands."""

from __future__ import annotations

import time
from typing import Optional, Tuple

import click
from rich.table import Table

from nansql.cli.utils import console, print_exception
from nansql.config import get_config
from nansql.db import ConnectionManager, connect
from nansql.exceptions import ConfigurationError, NanSQLError


def _open_manager(ctx: click.Context, database: Optional[str]) -> Tuple[str, ConnectionManager]:
    config = get_config(ctx.obj.get('config'), reload=True)
    db_name = database or ctx.obj.get('db') or config.default_database
    return db_name, connect(config.get_database(db_name))


def _fail(ctx: click.Context, exc: Exception) -> None:
    label = "Configuration Error" if isinstance(exc, ConfigurationError) else "Error"
    print_exception(label, exc, ctx.obj.get('verbose', False))
    raise SystemExit(1) from exc


@click.group(name="db")
@click.pass_context
def db_group(ctx: click.Context) -> None:
    """🗄️  Database connection commands."""
    pass


@db_group.command(name="ping")
@click.option("--database", "-d", help="Database to ping (default: default database)")
@click.pass_context
def ping_command(ctx: click.Context, database: Optional[str]) -> None:
    """Open the pool and check the database answers."""
    start_time = time.time()
    try:
        db_name, manager = _open_manager(ctx, database)
        with manager:
            elapsed = round((time.time() - start_time) * 1000, 2)
            console.print(
                f"[green]✅ Connected to {manager.dialect} database "
                f"'{db_name}' in {elapsed} ms[/green]"
            )
    except NanSQLError as exc:
        _fail(ctx, exc)


@db_group.command(name="pool")
@click.option("--database", "-d", help="Database to inspect (default: default database)")
@click.pass_context
def pool_command(ctx: click.Context, database: Optional[str]) -> None:
    """Show connection pool limits and counters."""
    try:
        db_name, manager = _open_manager(ctx, database)
        with manager:
            status = manager.pool_status()

        console.print(f"[bold blue]Connection Pool: {db_name}[/bold blue]\n")
        table = Table(show_header=False, box=None)
        table.add_column("Property", style="cyan", width=15)
        table.add_column("Value", style="green")
        for key, value in status.to_dict().items():
            if value is not None:
                table.add_row(f"{key.replace('_', ' ').title()}:", str(value))
        console.print(table)
    except NanSQLError as exc:
        _fail(ctx, exc)


@db_group.command(name="query")
@click.argument("sql")
@click.argument("args", nargs=-1)
@click.option("--database", "-d", help="Database to query (default: default database)")
@click.option("--limit", type=int, default=50, show_default=True, help="Maximum rows to display")
@click.option("--rebind/--no-rebind", default=True, help="Rewrite ? placeholders for the driver")
@click.pass_context
def query_command(
    ctx: click.Context,
    sql: str,
    args: Tuple[str, ...],
    database: Optional[str],
    limit: int,
    rebind: bool,
) -> None:
    """Run a query and print its rows."""
    try:
        _, manager = _open_manager(ctx, database)
        with manager:
            executor = manager.get_single_executor()
            statement = executor.rebind(sql) if rebind else sql
            with executor.query(statement, *args) as rows:
                frame = rows.to_dataframe()

        if ctx.obj.get('output') == 'json':
            console.print_json(frame.head(limit).to_json(orient='records', default_handler=str))
            return

        table = Table(show_header=True, header_style="bold magenta")
        for column in frame.columns:
            table.add_column(str(column))
        for record in frame.head(limit).itertuples(index=False):
            table.add_row(*[str(value) for value in record])
        console.print(table)
        console.print(f"\n{len(frame)} row(s)")
    except NanSQLError as exc:
        _fail(ctx, exc)


@db_group.command(name="exec")
@click.argument("sql")
@click.argument("args", nargs=-1)
@click.option("--database", "-d", help="Database to run against (default: default database)")
@click.option("--rebind/--no-rebind", default=True, help="Rewrite ? placeholders for the driver")
@click.pass_context
def exec_command(
    ctx: click.Context,
    sql: str,
    args: Tuple[str, ...],
    database: Optional[str],
    rebind: bool,
) -> None:
    """Run a command that returns no rows."""
    try:
        _, manager = _open_manager(ctx, database)
        with manager:
            executor = manager.get_single_executor()
            result = executor.exec(executor.rebind(sql) if rebind else sql, *args)
        console.print(f"[green]✅ {result.rows_affected} row(s) affected[/green]")
        if result.last_insert_id:
            console.print(f"Last insert id: [cyan]{result.last_insert_id}[/cyan]")
    except NanSQLError as exc:
        _fail(ctx, exc)
