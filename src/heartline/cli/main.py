"""Heartline CLI — run the server, mint dev tokens, poke the REST API.

Usage:
    heartline serve                          # Run the API + WebSocket server
    heartline token 42                       # Print an access token for user 42
    heartline health                         # Server and dependency status
    heartline chats                          # Your chats
    heartline create-chat 42 7               # Open a chat between 42 and 7
    heartline delete-chat 42 7               # Delete it with all messages
    heartline messages 3                     # Reconciled history of chat 3
    heartline notifications                  # Your notifications

Authenticated commands read the token from --token or HEARTLINE_TOKEN.
"""

from __future__ import annotations

import asyncio
import concurrent.futures
import json
import os
import sys
from typing import Optional

import click
import httpx

from heartline import __version__

# ---------------------------------------------------------------------------
# Config
# ---------------------------------------------------------------------------

DEFAULT_API_URL = "http://localhost:8000"


def _api_url() -> str:
    return os.environ.get("HEARTLINE_API_URL", DEFAULT_API_URL).rstrip("/")


def _client(token: Optional[str] = None) -> httpx.AsyncClient:
    """Build an async HTTP client pointed at the Heartline backend."""
    headers = {"Authorization": f"Bearer {token}"} if token else {}
    return httpx.AsyncClient(base_url=_api_url(), headers=headers, timeout=30.0)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _run(coro):
    """Run an async coroutine from synchronous Click handler.

    Handles nested event loops (e.g. when invoked via Click CliRunner
    inside an existing async context like tests) by offloading to a thread.
    """
    try:
        asyncio.get_running_loop()
    except RuntimeError:
        # No running loop: normal CLI invocation
        return asyncio.run(coro)
    else:
        # Already inside an event loop (e.g. test runner): run in a thread
        with concurrent.futures.ThreadPoolExecutor(max_workers=1) as pool:
            return pool.submit(asyncio.run, coro).result()


def _token_from_ctx(token: Optional[str]) -> str:
    """Resolve the access token from flag or HEARTLINE_TOKEN env var."""
    tok = token or os.environ.get("HEARTLINE_TOKEN")
    if not tok:
        click.secho(
            "Error: --token required (or set HEARTLINE_TOKEN env var)",
            fg="red",
            err=True,
        )
        sys.exit(1)
    return tok


def _check(r: httpx.Response) -> None:
    """Exit with the server's error detail on a non-2xx response."""
    if r.is_success:
        return
    try:
        detail = r.json().get("detail", r.text)
    except ValueError:
        detail = r.text
    click.secho(f"Error {r.status_code}: {detail}", fg="red", err=True)
    sys.exit(1)


def _pretty_json(data: dict | list) -> str:
    return json.dumps(data, indent=2, default=str)


token_option = click.option(
    "--token", "-t", envvar="HEARTLINE_TOKEN", help="Access token (or set HEARTLINE_TOKEN)"
)


# ---------------------------------------------------------------------------
# CLI group
# ---------------------------------------------------------------------------


@click.group()
@click.version_option(version=__version__, prog_name="heartline")
def main():
    """Heartline — real-time chat and notification delivery."""


# ---------------------------------------------------------------------------
# heartline serve
# ---------------------------------------------------------------------------


@main.command()
@click.option("--host", default=None, help="Bind address (default: HEARTLINE_HOST)")
@click.option("--port", "-p", type=int, default=None, help="Port (default: HEARTLINE_PORT)")
@click.option("--reload", is_flag=True, help="Restart on code changes")
def serve(host: Optional[str], port: Optional[int], reload: bool):
    """Run the API and WebSocket server."""
    import uvicorn

    from heartline.config import settings

    uvicorn.run(
        "heartline.main:app",
        host=host or settings.host,
        port=port or settings.port,
        reload=reload,
    )


# ---------------------------------------------------------------------------
# heartline token
# ---------------------------------------------------------------------------


@main.command()
@click.argument("user_id", type=click.IntRange(min=1))
@click.option("--minutes", "-m", type=int, default=None, help="Lifetime in minutes")
def token(user_id: int, minutes: Optional[int]):
    """Print an access token for USER_ID signed with HEARTLINE_JWT_SECRET."""
    from heartline.auth.jwt import create_access_token

    click.echo(create_access_token(user_id, expires_minutes=minutes))


# ---------------------------------------------------------------------------
# heartline health
# ---------------------------------------------------------------------------


@main.command()
def health():
    """Show server health and dependency status."""
    _run(_health_impl())


async def _health_impl():
    async with _client() as c:
        try:
            r = await c.get("/api/v1/health")
        except httpx.HTTPError as e:
            click.secho(f"Server unreachable: {e}", fg="red", err=True)
            sys.exit(1)
        _check(r)
        body = r.json()

    color = "green" if body.get("status") == "healthy" else "yellow"
    click.secho(f"Status: {body.get('status')}", fg=color, bold=True)
    for key in ("server", "postgres", "redis"):
        value = body.get(key, "—")
        click.echo(f"  {key:10s} {click.style(value, fg='green' if value == 'ok' else 'red')}")
    click.echo(f"  version    {body.get('version', '—')}")


# ---------------------------------------------------------------------------
# heartline chats / create-chat / delete-chat
# ---------------------------------------------------------------------------


@main.command()
@token_option
def chats(token: Optional[str]):
    """List your chats."""
    _run(_chats_impl(_token_from_ctx(token)))


async def _chats_impl(tok: str):
    async with _client(tok) as c:
        r = await c.get("/api/v1/chats")
        _check(r)
        rows = r.json()

    if not rows:
        click.echo("No chats yet.")
        return

    click.secho(f"Chats ({len(rows)}):", bold=True)
    for row in rows:
        unread = "" if row["is_read"] else click.style(" (unread)", fg="yellow")
        click.echo(f"  #{row['chat_id']:<6d} with {row['profile_id']:<8d} {row['last_message'][:50]}{unread}")


@main.command("create-chat")
@click.argument("first_id", type=click.IntRange(min=1))
@click.argument("second_id", type=click.IntRange(min=1))
@token_option
def create_chat(first_id: int, second_id: int, token: Optional[str]):
    """Open the chat between FIRST_ID and SECOND_ID."""
    _run(_create_chat_impl(first_id, second_id, _token_from_ctx(token)))


async def _create_chat_impl(first_id: int, second_id: int, tok: str):
    async with _client(tok) as c:
        r = await c.post("/api/v1/chats", json={"first_id": first_id, "second_id": second_id})
        _check(r)
        chat = r.json()
    click.secho(f"Chat #{chat['id']} between {chat['first_id']} and {chat['second_id']}", fg="green")


@main.command("delete-chat")
@click.argument("first_id", type=click.IntRange(min=1))
@click.argument("second_id", type=click.IntRange(min=1))
@token_option
def delete_chat(first_id: int, second_id: int, token: Optional[str]):
    """Delete the chat between FIRST_ID and SECOND_ID with all its messages."""
    _run(_delete_chat_impl(first_id, second_id, _token_from_ctx(token)))


async def _delete_chat_impl(first_id: int, second_id: int, tok: str):
    async with _client(tok) as c:
        r = await c.request(
            "DELETE", "/api/v1/chats", json={"first_id": first_id, "second_id": second_id}
        )
        _check(r)
    click.secho(f"Deleted chat between {first_id} and {second_id}", fg="green")


# ---------------------------------------------------------------------------
# heartline messages
# ---------------------------------------------------------------------------


@main.command()
@click.argument("chat_id", type=int)
@token_option
@click.option("--json", "as_json", is_flag=True, help="Raw JSON output")
def messages(chat_id: int, token: Optional[str], as_json: bool):
    """Show the history of CHAT_ID."""
    _run(_messages_impl(chat_id, _token_from_ctx(token), as_json))


async def _messages_impl(chat_id: int, tok: str, as_json: bool):
    async with _client(tok) as c:
        r = await c.get(f"/api/v1/chats/{chat_id}/messages")
        _check(r)
        rows = r.json()

    if as_json:
        click.echo(_pretty_json(rows))
        return
    if not rows:
        click.echo("No messages.")
        return
    for m in rows:
        click.echo(f"  [{m['created_at'][:19]}] {m['sender_id']}: {m['content']}")


# ---------------------------------------------------------------------------
# heartline notifications
# ---------------------------------------------------------------------------


@main.command()
@token_option
def notifications(token: Optional[str]):
    """List your notifications."""
    _run(_notifications_impl(_token_from_ctx(token)))


async def _notifications_impl(tok: str):
    async with _client(tok) as c:
        r = await c.get("/api/v1/notifications")
        _check(r)
        rows = r.json()

    if not rows:
        click.echo("No notifications.")
        return
    for n in rows:
        marker = " " if n["read"] else click.style("•", fg="yellow")
        click.echo(f"  {marker} #{n['id']:<6d} {n['type']:8s} {n['content']}")


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------

if __name__ == "__main__":
    main()
