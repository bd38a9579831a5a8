"""mpdfav command line: MPD queries, Click commands and output formatters."""

from __future__ import annotations

import asyncio
import json
import sys
from typing import Any, Awaitable, Callable

import click

from .config import load_config
from .protocol.client import MPDClient
from .protocol.errors import MPDError
from .protocol.messages import Info

# ---------------------------------------------------------------------------
# MPD queries
# ---------------------------------------------------------------------------


def run_query(host: str, port: int, query: Callable[[MPDClient], Awaitable[Any]]) -> Any:
    """Connect, run ``query`` against the client, disconnect."""

    async def _run() -> Any:
        client = await MPDClient.connect(host, port, timeout=10.0)
        try:
            return await query(client)
        finally:
            await client.close()

    return asyncio.run(_run())


async def fetch_status(client: MPDClient) -> dict:
    status = await client.status()
    song = await client.current_song()
    return {"status": dict(status), "song": dict(song)}


async def fetch_current(client: MPDClient) -> dict:
    return dict(await client.current_song())


def playcount_query(file: str | None, sticker: str) -> Callable[[MPDClient], Awaitable[dict]]:
    async def query(client: MPDClient) -> dict:
        from .daemon.playcount import read_playcount

        uri = file or (await client.current_song()).get("file")
        if not uri:
            return {"file": None, "playcount": None}
        return {"file": uri, "playcount": await read_playcount(client, uri, sticker)}

    return query


def idle_query(subsystems: tuple[str, ...]) -> Callable[[MPDClient], Awaitable[dict]]:
    async def query(client: MPDClient) -> dict:
        return {"changed": await client.idle(*subsystems)}

    return query


# ---------------------------------------------------------------------------
# Output formatters
# ---------------------------------------------------------------------------


def fmt_duration(seconds: int) -> str:
    """Minutes and seconds, as MPD clients show track times (61:01, not 1:01:01)."""
    minutes, secs = divmod(max(seconds, 0), 60)
    return f"{minutes}:{secs:02d}"


def fmt_track(song: dict | None) -> str:
    if not song:
        return "(no track)"
    parts = []
    if song.get("Artist"):
        parts.append(song["Artist"])
    if song.get("Title"):
        parts.append(song["Title"])
    elif song.get("file"):
        parts.append(song["file"].split("/")[-1])
    return " - ".join(parts) if parts else song.get("file", "(unknown)")


def fmt_status(data: dict) -> str:
    status = Info(data.get("status", {}))
    state = status.get("state", "stop")
    icon = {"play": "▶", "pause": "⏸", "stop": "⏹"}.get(state, "?")
    lines = [f"{icon} {fmt_track(data.get('song'))}"]

    elapsed, total = status.progress()
    if total > 0:
        filled = int(40 * elapsed / total)
        bar = "▓" * filled + "░" * (40 - filled)
        lines.append(f"  {bar} {fmt_duration(elapsed)} / {fmt_duration(total)}")

    if "volume" in status:
        lines.append(f"  Volume: {status['volume']}%")
    return "\n".join(lines)


def fmt_playcount(data: dict) -> str:
    if not data.get("file"):
        return "(no track)"
    return f"{data['file']}: {data['playcount']}"


def print_result(data: Any, json_output: bool = False, formatter=None) -> None:
    if json_output:
        print(json.dumps(data, indent=2))
    elif formatter:
        print(formatter(data))
    elif isinstance(data, dict) and data:
        for k, v in data.items():
            print(f"{k}: {v}")
    else:
        print("OK")


# ---------------------------------------------------------------------------
# Click CLI
# ---------------------------------------------------------------------------


@click.group(invoke_without_command=True)
@click.option("--host", default=None, help="MPD host (default: config or MPD_HOST)")
@click.option("--port", type=int, default=None, help="MPD port (default: config or MPD_PORT)")
@click.option("--json", "json_output", is_flag=True, help="Output raw JSON")
@click.pass_context
def cli(ctx, host: str | None, port: int | None, json_output: bool):
    """mpdfav - MPD favourites: playcount tracking via stickers."""
    config = load_config()
    if host:
        config.mpd.host = host
    if port:
        config.mpd.port = port
    ctx.ensure_object(dict)
    ctx.obj["config"] = config
    ctx.obj["json"] = json_output
    if ctx.invoked_subcommand is None:
        ctx.invoke(status)


def _query(ctx, query: Callable[[MPDClient], Awaitable[Any]]) -> Any:
    mpd = ctx.obj["config"].mpd
    try:
        return run_query(mpd.host, mpd.port, query)
    except MPDError as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(1)


@cli.command()
@click.pass_context
def status(ctx):
    """Show player status and the current song."""
    print_result(_query(ctx, fetch_status), ctx.obj["json"], fmt_status)


@cli.command()
@click.pass_context
def current(ctx):
    """Show the current song's metadata."""
    print_result(_query(ctx, fetch_current), ctx.obj["json"])


@cli.command()
@click.argument("file", required=False)
@click.pass_context
def playcount(ctx, file):
    """Show the playcount of FILE (default: the current song)."""
    sticker = ctx.obj["config"].playcount.sticker
    print_result(_query(ctx, playcount_query(file, sticker)), ctx.obj["json"], fmt_playcount)


@cli.command()
@click.argument("subsystems", nargs=-1)
@click.pass_context
def idle(ctx, subsystems):
    """Wait for one change in SUBSYSTEMS (default: any) and print it."""
    print_result(_query(ctx, idle_query(subsystems)), ctx.obj["json"])


@cli.command()
@click.option("--no-playcounts", is_flag=True, help="Disable playcounts service")
@click.pass_context
def run(ctx, no_playcounts: bool):
    """Run the mpdfav services in the foreground."""
    from .daemon.main import main as daemon_main

    config = ctx.obj["config"]
    if no_playcounts:
        config.playcount.enabled = False
    daemon_main(config)


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------


def main():
    cli()
