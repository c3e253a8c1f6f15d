"""HTTP/WebSocket server exposing the session protocol.

Both devices talk to this server instead of to each other. It holds the
shared session store, runs the matching protocol on their behalf and pushes
session changes to the sender over a WebSocket.

Features:
- Session create / match / complete over REST
- Live session updates over WebSocket
- Gesture signature and template guidance endpoints
- Prometheus metrics endpoint

Usage:
    airlink serve
    # or
    uvicorn airlink.server:app --host 0.0.0.0 --port 8765
"""

from __future__ import annotations

import asyncio
import json
import logging
import time
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, HTTPException, Request, WebSocket, WebSocketDisconnect
from fastapi.responses import JSONResponse, PlainTextResponse
from pydantic import BaseModel, Field

from airlink import __version__
from airlink.config import AirLinkConfig, get_config
from airlink.errors import SignatureError, StoreError
from airlink.metrics import MetricsCollector
from airlink.protocol import SessionMatcher
from airlink.session import DataType, Session, TransferData
from airlink.signature import generate_signature
from airlink.store import MemorySessionStore, SessionStore
from airlink.templates import TemplateCatalog, find_best_match, guide

logger = logging.getLogger("airlink.server")


# --- Request models ---

class PointModel(BaseModel):
    x: float
    y: float
    timestamp: int = 0


class PathRequest(BaseModel):
    points: list[PointModel]

    def xy(self) -> list[tuple[float, float]]:
        return [(p.x, p.y) for p in self.points]


class TransferDataModel(BaseModel):
    type: DataType
    content: str = Field(min_length=1)
    title: Optional[str] = None


class CreateSessionRequest(PathRequest):
    data: TransferDataModel
    sender_id: Optional[str] = None


# --- State ---

class ServerState:
    def __init__(self):
        self.config: AirLinkConfig = get_config()
        self.metrics: MetricsCollector = MetricsCollector()
        self.store: SessionStore = MemorySessionStore()
        self.matcher: SessionMatcher = SessionMatcher(
            self.store, ttl_seconds=self.config.session_ttl_seconds, metrics=self.metrics
        )
        self.subscribers: set[WebSocket] = set()
        self.started_at = time.time()

    def configure(
        self,
        config: Optional[AirLinkConfig] = None,
        store: Optional[SessionStore] = None,
    ):
        """Swap in a config and/or store; rebuilds the matcher."""
        if config is not None:
            self.config = config
        if store is not None:
            self.store = store
        self.matcher = SessionMatcher(
            self.store, ttl_seconds=self.config.session_ttl_seconds, metrics=self.metrics
        )


state = ServerState()


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info(
        "AirLink server ready (session TTL %ss, store=%s)",
        state.config.session_ttl_seconds, type(state.store).__name__,
    )
    yield
    logger.info("AirLink server stopped")


app = FastAPI(title="AirLink", version=__version__, lifespan=lifespan)


@app.exception_handler(SignatureError)
async def signature_error_handler(request: Request, exc: SignatureError):
    return JSONResponse(
        status_code=422,
        content={"error": "signature", "detail": str(exc), "retry": "keep_recording"},
    )


@app.exception_handler(StoreError)
async def store_error_handler(request: Request, exc: StoreError):
    logger.error("Store failure on %s: %s", request.url.path, exc)
    return JSONResponse(
        status_code=503,
        content={"error": "store", "detail": str(exc), "retry": "try_again"},
    )


# --- API endpoints ---

@app.get("/api/status")
async def api_status():
    return {
        "server": "running",
        "version": __version__,
        "uptime": round(time.time() - state.started_at, 1),
        "sessions": len(state.store) if hasattr(state.store, "__len__") else None,
        "subscribers": len(state.subscribers),
        "session_ttl_seconds": state.config.session_ttl_seconds,
    }


@app.get("/api/templates")
async def list_templates():
    return {"templates": [t.to_dict() for t in TemplateCatalog.templates()]}


@app.post("/api/templates/match")
async def match_templates(body: PathRequest):
    """Best catalog shape for a path, or null when nothing clears the floor."""
    result = find_best_match(body.xy(), floor=state.config.match_floor)
    if result is None:
        return {"match": None}
    data = result.to_dict()
    data["actionable"] = result.similarity >= state.config.actionable_threshold
    return {"match": data}


@app.post("/api/templates/{template_id}/score")
async def score_template(template_id: str, body: PathRequest):
    """Guidance feedback for a user tracing one chosen template."""
    template = TemplateCatalog.get(template_id)
    if template is None:
        raise HTTPException(status_code=404, detail=f"Unknown template: {template_id}")

    feedback = guide(body.xy(), template)
    state.metrics.record_guidance(template.id)
    data = feedback.to_dict()
    data["actionable"] = feedback.similarity >= state.config.actionable_threshold
    return data


@app.post("/api/signature")
async def compute_signature(body: PathRequest):
    signature = generate_signature(body.xy())
    if not signature:
        raise SignatureError(len(body.points))
    return {"signature": signature, "points": len(body.points)}


@app.post("/api/sessions")
async def create_session(body: CreateSessionRequest):
    payload = TransferData(
        type=body.data.type,
        content=body.data.content,
        title=body.data.title,
    )
    created = await state.matcher.create_session(body.xy(), payload, sender_id=body.sender_id)
    return {
        "session": created.session.to_record(),
        "encryption_key": created.encryption_key,
    }


@app.post("/api/sessions/match")
async def match_session(body: PathRequest):
    session = await state.matcher.find_matching_session(body.xy())
    if session is None:
        return {"matched": False, "session": None, "data": None}

    content = state.matcher.decrypt_session_data(session)
    return {
        "matched": True,
        "session": session.to_record(),
        "data": session.transfer_data(content).to_dict(),
    }


@app.post("/api/sessions/{session_id}/complete")
async def complete_session(session_id: str):
    ok = await state.matcher.complete_session(session_id)
    return {"completed": ok}


@app.post("/api/sessions/{session_id}/expire")
async def expire_session(session_id: str):
    ok = await state.matcher.expire_session(session_id)
    return {"expired": ok}


@app.get("/api/sessions/{session_id}")
async def get_session(session_id: str):
    session = await state.store.get(session_id)
    if session is None:
        raise HTTPException(status_code=404, detail="Session not found")
    return {"session": session.to_record()}


# --- Prometheus metrics ---

@app.get("/metrics")
async def metrics():
    state.metrics.set_subscribers(len(state.subscribers))
    return PlainTextResponse(
        state.metrics.render(),
        media_type="text/plain; version=0.0.4; charset=utf-8",
    )


# --- WebSocket: session updates ---

@app.websocket("/ws/sessions/{session_id}")
async def session_updates(ws: WebSocket, session_id: str):
    await ws.accept()

    session = await state.store.get(session_id)
    if session is None:
        await ws.send_json({"type": "error", "detail": "Session not found"})
        await ws.close(code=4404)
        return

    async def push(updated: Session):
        await ws.send_json({"type": "session_update", "session": updated.to_record()})

    unsubscribe = state.matcher.subscribe_to_updates(session_id, push)
    state.subscribers.add(ws)
    logger.info("Subscriber attached to session %s (%d total)", session_id, len(state.subscribers))

    try:
        await ws.send_json({"type": "subscribed", "session": session.to_record()})

        while True:
            try:
                msg = await asyncio.wait_for(ws.receive_text(), timeout=30)
                data = json.loads(msg)
                if data.get("type") == "ping":
                    await ws.send_json({"type": "pong", "server_time": time.time()})
            except asyncio.TimeoutError:
                await ws.send_json({"type": "ping"})
    except WebSocketDisconnect:
        pass
    except Exception as e:
        logger.debug("WebSocket error: %s", e)
    finally:
        unsubscribe()
        state.subscribers.discard(ws)
        logger.info("Subscriber left session %s (%d total)", session_id, len(state.subscribers))


# --- CLI entry point ---

def main():
    import argparse
    import uvicorn

    config = get_config()
    parser = argparse.ArgumentParser(description="AirLink session server")
    parser.add_argument("--host", default=config.host, help="Bind address")
    parser.add_argument("--port", type=int, default=config.port, help="Port")
    parser.add_argument("--log-level", default=config.log_level)
    args = parser.parse_args()

    uvicorn.run(app, host=args.host, port=args.port, log_level=args.log_level)


if __name__ == "__main__":
    main()
