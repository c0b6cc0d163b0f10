"""
SurrealDB client command line interface.

Commands:
- health: Check server health
- version: Show the server version
- sql: Run a query
- live: Print live query notifications
- export: Dump the database to a file
- import: Load a SurrealQL dump

Connection options fall back to SURREALDB_* environment variables, also read
from a ``.env`` file.
"""

import asyncio
import json
import logging
import sys
from collections.abc import Awaitable, Callable
from pathlib import Path
from typing import Any, TypeVar

import click
from dotenv import load_dotenv

from .client import Surreal, connect, open_client
from .config import ConnectionSettings
from .exceptions import SurrealDBError
from .protocol.rpc import SurrealJSONEncoder
from .streaming.live_query import collect

T = TypeVar("T")


def run_with_client(ctx: click.Context, action: Callable[[Surreal], Awaitable[T]]) -> T:
    """Open a client from the CLI settings, run ``action`` and close the client."""
    settings: ConnectionSettings = ctx.obj["settings"]

    async def main() -> T:
        if settings.namespace or settings.database:
            db = await open_client(
                settings.target,
                settings.credentials,
                namespace=settings.namespace or "",
                database=settings.database or "",
                protocol=settings.protocol,
            )
        else:
            # Nothing to select; the server may reject an empty use()
            db = await connect(settings.target, settings.credentials, protocol=settings.protocol)
        async with db:
            return await action(db)

    try:
        return asyncio.run(main())
    except SurrealDBError as e:
        click.echo(f"Error: {e.message}", err=True)
        sys.exit(1)


def echo_json(value: Any) -> None:
    click.echo(json.dumps(value, indent=2, cls=SurrealJSONEncoder))


@click.group()
@click.option("--url", "-u", help="SurrealDB URL (HTTP or WebSocket); the other transport is inferred")
@click.option("--http-url", help="Explicit HTTP endpoint")
@click.option("--ws-url", help="Explicit WebSocket endpoint")
@click.option("--namespace", "-n", help="SurrealDB namespace")
@click.option("--database", "-d", help="SurrealDB database")
@click.option("--user", help="SurrealDB user")
@click.option("--password", help="SurrealDB password")
@click.option("--protocol", type=click.Choice(["json", "cbor"]), help="WebSocket frame encoding")
@click.option("--verbose", "-v", is_flag=True, help="Enable debug logging")
@click.pass_context
def cli(
    ctx: click.Context,
    url: str | None,
    http_url: str | None,
    ws_url: str | None,
    namespace: str | None,
    database: str | None,
    user: str | None,
    password: str | None,
    protocol: str | None,
    verbose: bool,
) -> None:
    """SurrealDB client tool."""
    load_dotenv()
    logging.basicConfig(level=logging.DEBUG if verbose else logging.WARNING)

    ctx.ensure_object(dict)
    ctx.obj["settings"] = ConnectionSettings.from_env(
        url=url,
        http_url=http_url,
        ws_url=ws_url,
        namespace=namespace,
        database=database,
        user=user,
        password=password,
        protocol=protocol,
    )


@cli.command()
@click.pass_context
def health(ctx: click.Context) -> None:
    """Check server health."""
    healthy = run_with_client(ctx, lambda db: db.health())
    click.echo("OK" if healthy else "UNHEALTHY")
    if not healthy:
        sys.exit(1)


@cli.command()
@click.pass_context
def version(ctx: click.Context) -> None:
    """Show the server version."""
    click.echo(run_with_client(ctx, lambda db: db.version()))


@cli.command()
@click.argument("query")
@click.pass_context
def sql(ctx: click.Context, query: str) -> None:
    """Run QUERY and print each statement's result."""
    response = run_with_client(ctx, lambda db: db.sql(query))
    echo_json([{"status": r.status.value, "time": r.time, "result": r.result} for r in response.results])
    if not response.is_ok:
        sys.exit(1)


@cli.command()
@click.argument("query")
@click.option("--limit", "-l", default=1, show_default=True, help="Stop after this many notifications")
@click.pass_context
def live(ctx: click.Context, query: str, limit: int) -> None:
    """Print notifications of the live query QUERY (without the LIVE keyword)."""
    changes = run_with_client(ctx, lambda db: collect(db.live(query), limit))
    for change in changes:
        echo_json({"id": change.id, "action": change.action.value, "result": change.result})


@cli.command()
@click.argument("file", type=click.Path(dir_okay=False, path_type=Path))
@click.pass_context
def export(ctx: click.Context, file: Path) -> None:
    """Export the database to FILE."""
    data = run_with_client(ctx, lambda db: db.export())
    file.write_bytes(data)
    click.echo(f"Exported {len(data)} bytes to {file}")


@cli.command("import")
@click.argument("file", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.pass_context
def import_(ctx: click.Context, file: Path) -> None:
    """Import the SurrealQL dump FILE."""
    response = run_with_client(ctx, lambda db: db.import_(file.read_bytes()))
    click.echo(f"Imported {len(response)} statements")
    if not response.is_ok:
        sys.exit(1)


if __name__ == "__main__":
    cli()
