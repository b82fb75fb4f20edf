"""BusNotify CLI — run the server and poke the notification API.

Usage:
    busnotify serve                                   # uvicorn busnotify.main:app
    busnotify init-db                                 # create tables
    busnotify token USER_ID                           # mint an access token
    busnotify send --all "Snow day" "No buses today"  # admin fan-out
    busnotify send --route ROUTE_ID "Delay" "10 min late" --type delay
    busnotify targets                                 # routes with subscribers
    busnotify presence ROUTE_ID                       # who is connected right now
"""

from __future__ import annotations

import asyncio
import json
import os
import sys
from typing import Optional

import click
import httpx

# ---------------------------------------------------------------------------
# Config
# ---------------------------------------------------------------------------

DEFAULT_API_URL = "http://localhost:5000"


def _api_url() -> str:
    return os.environ.get("BUSNOTIFY_API_URL", DEFAULT_API_URL).rstrip("/")


def _client(token: Optional[str]) -> httpx.AsyncClient:
    """Build an async HTTP client pointed at the BusNotify backend."""
    headers = {"Authorization": f"Bearer {token}"} if token else {}
    return httpx.AsyncClient(base_url=_api_url(), headers=headers, timeout=30.0)


def _token(token: Optional[str]) -> str:
    """Resolve the bearer token from --token or BUSNOTIFY_TOKEN."""
    tok = token or os.environ.get("BUSNOTIFY_TOKEN")
    if not tok:
        click.secho(
            "Error: --token required (or set BUSNOTIFY_TOKEN env var)",
            fg="red",
            err=True,
        )
        sys.exit(1)
    return tok


def _pretty_json(data: dict | list) -> str:
    return json.dumps(data, indent=2, default=str)


def _fail(r: httpx.Response) -> None:
    """Print the API's error detail and exit non-zero."""
    try:
        detail = r.json().get("detail", r.text)
    except ValueError:
        detail = r.text
    click.secho(f"Error {r.status_code}: {detail}", fg="red", err=True)
    sys.exit(1)


def _print_table(rows: list[dict], columns: list[tuple[str, str, int]]):
    """Print a simple ASCII table.

    columns: list of (header, dict_key, width)
    """
    header = "  ".join(h.ljust(w) for h, _, w in columns)
    click.secho(header, bold=True)
    click.echo("-" * len(header))
    for row in rows:
        line = "  ".join(str(row.get(k) or "-")[:w].ljust(w) for _, k, w in columns)
        click.echo(line)


token_option = click.option(
    "--token", "-T", help="Bearer token (or set BUSNOTIFY_TOKEN)"
)


# ---------------------------------------------------------------------------
# CLI group
# ---------------------------------------------------------------------------


@click.group()
@click.version_option(version="0.1.0", prog_name="busnotify")
def main():
    """BusNotify — realtime notifications for the school-bus tracker."""


# ---------------------------------------------------------------------------
# Server-side commands
# ---------------------------------------------------------------------------


@main.command()
@click.option("--host", default=None, help="Bind host (default: BUSNOTIFY_HOST)")
@click.option("--port", type=int, default=None, help="Bind port (default: BUSNOTIFY_PORT)")
@click.option("--reload", is_flag=True, help="Auto-reload on code changes")
def serve(host: Optional[str], port: Optional[int], reload: bool):
    """Run the HTTP API and socket.io server."""
    import uvicorn

    from busnotify.config import settings

    uvicorn.run(
        "busnotify.main:app",
        host=host or settings.host,
        port=port or settings.port,
        reload=reload,
    )


@main.command("init-db")
def init_db_cmd():
    """Create database tables."""
    from busnotify.db.engine import init_db

    asyncio.run(init_db())
    click.secho("Tables created", fg="green")


@main.command()
@click.argument("user_id")
@click.option("--minutes", type=int, default=None, help="Lifetime in minutes")
def token(user_id: str, minutes: Optional[int]):
    """Mint an access token for USER_ID (signed with BUSNOTIFY_JWT_SECRET)."""
    from busnotify.auth.jwt import create_access_token

    click.echo(create_access_token(user_id, expires_minutes=minutes))


# ---------------------------------------------------------------------------
# API commands
# ---------------------------------------------------------------------------


@main.command()
@click.argument("title")
@click.argument("message")
@click.option("--all", "to_all", is_flag=True, help="Every route")
@click.option("--route", "route_id", help="One route id")
@click.option("--bus", "bus_id", help="Every route served by this bus")
@click.option(
    "--type", "notification_type",
    type=click.Choice(["general", "delay", "cancellation", "update"]),
    default="general",
)
@click.option(
    "--priority",
    type=click.Choice(["low", "medium", "high", "urgent"]),
    default="medium",
)
@token_option
def send(title: str, message: str, to_all: bool, route_id: Optional[str],
         bus_id: Optional[str], notification_type: str, priority: str,
         token: Optional[str]):
    """Send an admin notification (inbox rows + live broadcast)."""
    chosen = [flag for flag, on in (("all", to_all), ("route", route_id), ("bus", bus_id)) if on]
    if len(chosen) != 1:
        click.secho("Error: pick exactly one of --all, --route, --bus", fg="red", err=True)
        sys.exit(1)
    asyncio.run(_send_impl(
        _token(token),
        {
            "targetType": chosen[0],
            "relatedRoute": route_id,
            "relatedBus": bus_id,
            "title": title,
            "message": message,
            "notificationType": notification_type,
            "priority": priority,
        },
    ))


async def _send_impl(tok: str, body: dict):
    async with _client(tok) as c:
        r = await c.post("/api/v1/notifications/admin/send", json=body)
        if r.is_error:
            _fail(r)
        data = r.json()
    click.secho(data["message"], fg="green")
    click.echo(f"  Notification: {data['globalNotificationId']}")
    click.echo(f"  Inbox rows:   {data['dbCopiesCreated']}")


@main.command()
@token_option
@click.option("--json", "as_json", is_flag=True, help="Raw JSON output")
def targets(token: Optional[str], as_json: bool):
    """Routes that currently have subscribed users."""
    asyncio.run(_targets_impl(_token(token), as_json))


async def _targets_impl(tok: str, as_json: bool):
    async with _client(tok) as c:
        r = await c.get("/api/v1/notifications/targets")
        if r.is_error:
            _fail(r)
        rows = r.json()

    if as_json:
        click.echo(_pretty_json(rows))
        return
    if not rows:
        click.echo("No routes have subscribers.")
        return
    _print_table(rows, [
        ("ROUTE", "routeName", 24),
        ("ID", "id", 36),
        ("BUS", "busNumber", 10),
        ("USERS", "userCount", 6),
    ])


@main.command()
@click.argument("route_id")
@token_option
def presence(route_id: str, token: Optional[str]):
    """Who is connected to ROUTE_ID on the server right now."""
    asyncio.run(_presence_impl(_token(token), route_id))


async def _presence_impl(tok: str, route_id: str):
    async with _client(tok) as c:
        r = await c.get(f"/api/v1/realtime/routes/{route_id}/members")
        if r.is_error:
            _fail(r)
        data = r.json()

    click.secho(
        f"Route {route_id}: {data['memberCount']} user(s), "
        f"{data['connectionCount']} connection(s)",
        bold=True,
    )
    for uid in data["userIds"]:
        click.echo(f"  {uid}")


if __name__ == "__main__":
    main()
