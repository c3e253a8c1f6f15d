"""AirLink CLI — the main entry point for all operations.

Usage:
    airlink serve        — Start the session server
    airlink signature    — Print the signature of a recorded path
    airlink match        — Score a recorded path against the shape catalog
    airlink templates    — List the shape catalog
    airlink keygen       — Print a fresh payload key
    airlink send         — Create a session on a running server
    airlink receive      — Claim a session on a running server
"""

from __future__ import annotations

import asyncio
import json
import logging
from pathlib import Path
from typing import Optional

import typer

from airlink.config import get_config, load_config, set_config

app = typer.Typer(
    name="airlink",
    help="✋ Pair two devices by drawing the same gesture in the air.",
    add_completion=False,
)


@app.callback()
def main_options(
    config: Optional[str] = typer.Option(None, "--config", "-c", help="Path to YAML config"),
    log_level: Optional[str] = typer.Option(None, help="Log level (overrides config)"),
):
    """Load configuration and set up logging for every command."""
    cfg = load_config(config) if config else get_config()
    if log_level:
        cfg.log_level = log_level
    set_config(cfg)

    logging.basicConfig(
        level=getattr(logging, cfg.log_level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)-7s %(name)s: %(message)s",
    )


def _load_points(path: str):
    from airlink.recorder import PathPlayer

    p = Path(path)
    if not p.exists():
        typer.echo(f"❌ Path file not found: {path}", err=True)
        raise typer.Exit(1)
    return PathPlayer.load(p).points


@app.command()
def serve(
    host: Optional[str] = typer.Option(None, help="Bind address"),
    port: Optional[int] = typer.Option(None, help="Port"),
):
    """Start the AirLink session server."""
    import uvicorn
    from airlink.server import app as fastapi_app, state

    cfg = get_config()
    state.configure(config=cfg)
    host = host or cfg.host
    port = port or cfg.port

    typer.echo(f"🚀 Starting AirLink server on {host}:{port}")
    typer.echo(f"   Sessions expire after {cfg.session_ttl_seconds:.0f}s")
    uvicorn.run(fastapi_app, host=host, port=port, log_level=cfg.log_level)


@app.command()
def signature(
    path_file: str = typer.Argument(..., help="Recorded path (.json)"),
    replay: bool = typer.Option(False, help="Replay through the recorder's capture timings first"),
):
    """Print the gesture signature of a recorded path."""
    from airlink.recorder import GestureRecorder, PathPlayer
    from airlink.signature import generate_signature

    points = _load_points(path_file)
    if replay:
        result = PathPlayer(points).replay_into(GestureRecorder.from_config(get_config()))
        typer.echo(f"🎬 Replay kept {len(result.points)} of {len(points)} points ({result.reason})", err=True)
        points = result.points
    sig = generate_signature(points)
    if not sig:
        typer.echo(f"❌ Only {len(points)} points; at least 10 are needed", err=True)
        raise typer.Exit(1)
    typer.echo(sig)


@app.command()
def match(
    path_file: str = typer.Argument(..., help="Recorded path (.json)"),
    show_all: bool = typer.Option(False, "--all", help="Show every template's score"),
):
    """Score a recorded path against the shape catalog."""
    from airlink.templates import find_best_match, score_all

    cfg = get_config()
    points = _load_points(path_file)

    if show_all:
        typer.echo(f"📊 Scores for {len(points)} points:")
        for result in score_all(points):
            typer.echo(f"   {result.template.name:12s} {result.similarity:.3f}")

    best = find_best_match(points, floor=cfg.match_floor)
    if best is None:
        typer.echo("🤷 No template matched")
        raise typer.Exit(1)

    verdict = "✅" if best.similarity >= cfg.actionable_threshold else "〰️"
    typer.echo(f"{verdict} {best.template.icon} {best.template.name} (similarity {best.similarity:.3f})")


@app.command()
def templates():
    """List the built-in shape catalog."""
    from airlink.templates import TemplateCatalog

    for t in TemplateCatalog.templates():
        typer.echo(f"   {t.icon}  {t.id:10s} {t.name:12s} {t.difficulty.value:7s} {len(t.points)} points")


@app.command()
def keygen():
    """Print a fresh 256-bit payload key."""
    from airlink.cipher import generate_key

    typer.echo(generate_key())


def _ws_url(server: str, session_id: str) -> str:
    base = server.rstrip("/")
    if base.startswith("https://"):
        base = "wss://" + base[len("https://"):]
    elif base.startswith("http://"):
        base = "ws://" + base[len("http://"):]
    return f"{base}/ws/sessions/{session_id}"


def _unreachable(server: str, error: Exception):
    typer.echo(f"❌ Could not reach {server} ({error}); try again", err=True)
    raise typer.Exit(1)


async def _wait_for_receiver(ws, countdown) -> Optional[str]:
    """Read session pushes until a receiver claims the session or time runs out.

    Returns "matched" or "completed", or None if the session expired first.
    """
    while not countdown.expired:
        try:
            raw = await asyncio.wait_for(ws.recv(), timeout=max(1, countdown.remaining_seconds()))
        except asyncio.TimeoutError:
            continue

        msg = json.loads(raw)
        if msg.get("type") == "error":
            return None
        if msg.get("type") not in ("subscribed", "session_update"):
            continue

        status = msg["session"]["status"]
        if status in ("matched", "completed"):
            return status
        if status == "expired":
            return None
    return None


async def _listen(server: str, record: dict) -> Optional[str]:
    import websockets

    from airlink.countdown import SessionCountdown
    from airlink.session import Session

    countdown = SessionCountdown.for_session(Session.from_record(record))
    async with websockets.connect(_ws_url(server, record["id"])) as ws:
        return await _wait_for_receiver(ws, countdown)


@app.command()
def send(
    path_file: str = typer.Argument(..., help="Recorded path (.json)"),
    content: str = typer.Option(..., help="Payload text"),
    data_type: str = typer.Option("text", "--type", help="text, contact, credentials or link"),
    title: Optional[str] = typer.Option(None, help="Optional payload title"),
    server: str = typer.Option("http://localhost:8765", help="Server URL"),
    wait: bool = typer.Option(True, help="Wait for a receiver until the session expires"),
):
    """Create a session on a running server and wait for a receiver."""
    import httpx
    import websockets

    points = _load_points(path_file)
    body = {
        "points": [p.to_dict() for p in points],
        "data": {"type": data_type, "content": content, "title": title},
    }

    try:
        with httpx.Client(base_url=server, timeout=10) as client:
            r = client.post("/api/sessions", json=body)
    except httpx.HTTPError as e:
        _unreachable(server, e)

    if r.status_code != 200:
        typer.echo(f"❌ {r.status_code}: {r.json().get('detail')}", err=True)
        raise typer.Exit(1)

    session = r.json()["session"]
    typer.echo(f"📤 Session {session['id']} waiting (signature {session['gesture_hash']})")
    if not wait:
        return

    try:
        status = asyncio.run(_listen(server, session))
    except (OSError, asyncio.TimeoutError, websockets.exceptions.WebSocketException) as e:
        _unreachable(server, e)

    if status:
        typer.echo(f"🤝 Receiver {status} the session")
        return

    try:
        with httpx.Client(base_url=server, timeout=10) as client:
            client.post(f"/api/sessions/{session['id']}/expire")
    except httpx.HTTPError as e:
        logging.getLogger("airlink.cli").warning("Could not mark session expired: %s", e)
    typer.echo("⌛ Session expired without a receiver", err=True)
    raise typer.Exit(2)


@app.command()
def receive(
    path_file: str = typer.Argument(..., help="Recorded path (.json)"),
    server: str = typer.Option("http://localhost:8765", help="Server URL"),
):
    """Claim a waiting session whose gesture matches a recorded path."""
    import httpx

    points = _load_points(path_file)
    try:
        with httpx.Client(base_url=server, timeout=10) as client:
            r = client.post("/api/sessions/match", json={"points": [p.to_dict() for p in points]})
            if r.status_code != 200:
                typer.echo(f"❌ {r.status_code}: {r.json().get('detail')}", err=True)
                raise typer.Exit(1)

            result = r.json()
            if not result["matched"]:
                typer.echo("🔍 No waiting session for this gesture; try again or redraw")
                raise typer.Exit(1)

            session_id = result["session"]["id"]
            done = client.post(f"/api/sessions/{session_id}/complete")
    except httpx.HTTPError as e:
        _unreachable(server, e)

    data = result["data"]
    typer.echo(f"📥 Received {data['type']}" + (f" ({data['title']})" if data.get("title") else ""))
    typer.echo(data["content"])

    if done.status_code != 200 or not done.json().get("completed"):
        typer.echo("⚠️ Could not mark the session completed; the sender was not told", err=True)


def main():
    app()


if __name__ == "__main__":
    main()
