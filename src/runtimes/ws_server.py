from __future__ import annotations

import asyncio
import contextlib
import json
import logging
import time
import uuid
from enum import Enum
from typing import Any

from dotenv import load_dotenv
from fastapi import FastAPI, WebSocket, WebSocketDisconnect
from fastapi.responses import JSONResponse

from src.sandboxes import config
from src.sandboxes.lifecycle import AlwaysRetain
from src.sandboxes.orchestrator import SandboxContext, SandboxNotFound

# Load local env after imports to keep linting (E402) happy.
load_dotenv()

app = FastAPI()
_ctx: SandboxContext | None = None
logger = logging.getLogger(__name__)


class MessageType(Enum):
    INIT = "init"
    CONTENT = "content"
    CLOSE = "close"
    CONFIRM = "confirm"
    CONFIRM_RESULT = "confirm_result"
    CLOSED = "closed"
    CLOSE_ABORTED = "close_aborted"
    ERROR = "error"
    PING = "ping"


def _message(type: MessageType, data: dict[str, Any], *, sandbox_id: str) -> dict[str, Any]:
    return {
        "id": str(uuid.uuid4()),
        "type": type.value,
        "data": data,
        "timestamp": time.time_ns() // 1_000_000,
        "sandbox_id": sandbox_id,
    }


def _parse(raw: str) -> tuple[str | None, dict[str, Any]]:
    try:
        msg = json.loads(raw)
    except Exception:
        return None, {}
    if not isinstance(msg, dict):
        return None, {}
    data = msg.get("data")
    return msg.get("type"), data if isinstance(data, dict) else {}


class WebSocketView:
    """One open connection displaying a sandbox.

    Outgoing messages go through a queue so set_content can be called from
    synchronous broadcast code.
    """

    def __init__(self, ws: WebSocket, sandbox_id: str, *, content: str = "") -> None:
        self.ws = ws
        self.sandbox_id = sandbox_id
        self._content = content
        self._outbox: asyncio.Queue[dict[str, Any] | None] = asyncio.Queue()

    def get_content(self) -> str:
        return self._content

    def set_content(self, content: str) -> None:
        self._content = content
        self.send(MessageType.CONTENT, {"content": content})

    def apply_local(self, content: str) -> None:
        self._content = content

    def send(self, type: MessageType, data: dict[str, Any]) -> None:
        self._outbox.put_nowait(_message(type, data, sandbox_id=self.sandbox_id))

    def stop(self) -> None:
        self._outbox.put_nowait(None)

    async def pump(self) -> None:
        while True:
            msg = await self._outbox.get()
            if msg is None:
                return
            await self.ws.send_json(msg)


class WebSocketConfirm:
    """Asks the closing connection itself and waits for its answer."""

    def __init__(self, view: WebSocketView, ctx: SandboxContext) -> None:
        self._view = view
        self._ctx = ctx

    async def confirm(self, title: str, message: str) -> bool:
        self._view.send(MessageType.CONFIRM, {"title": title, "message": message})
        while True:
            mtype, data = _parse(await self._view.ws.receive_text())
            if mtype == MessageType.CONFIRM_RESULT.value:
                return bool(data.get("confirmed"))
            if mtype == MessageType.CONTENT.value and isinstance(data.get("content"), str):
                self._view.apply_local(data["content"])
                self._ctx.content_changed(self._view.sandbox_id, data["content"], self._view)


def _configure_logging() -> None:
    logging.getLogger("src.sandboxes").setLevel(config.log_level())
    logging.getLogger(__name__).setLevel(config.log_level())


def _get_context() -> SandboxContext:
    if _ctx is None:
        raise RuntimeError("sandbox context not started")
    return _ctx


@app.on_event("startup")
async def _startup() -> None:
    global _ctx
    _configure_logging()
    if _ctx is None:
        _ctx = SandboxContext(confirmer=AlwaysRetain())
    await _ctx.start()


@app.on_event("shutdown")
async def _shutdown() -> None:
    global _ctx
    if _ctx is not None:
        await _ctx.close()
        _ctx = None


@app.get("/healthz")
async def healthz() -> dict[str, str]:
    return {"status": "ok"}


@app.get("/api/sandboxes")
async def list_sandboxes() -> dict[str, Any]:
    return {"sandboxes": _get_context().describe()}


@app.post("/api/sandboxes")
async def create_sandbox() -> dict[str, Any]:
    ctx = _get_context()
    sid = ctx.new_sandbox_id()
    return {"id": sid}


@app.get("/api/sandboxes/{sandbox_id}")
async def get_sandbox(sandbox_id: str) -> JSONResponse:
    ctx = _get_context()
    try:
        content = ctx.content(sandbox_id)
    except SandboxNotFound:
        return JSONResponse({"error": "not_found"}, status_code=404)
    rec = ctx.cache.get(sandbox_id)
    return JSONResponse(
        {
            "id": sandbox_id,
            "title": ctx.title(sandbox_id),
            "content": content,
            "mtime": rec.mtime if rec is not None else None,
        }
    )


async def _handle_ws(ws: WebSocket, sandbox_id: str) -> None:
    ctx = _get_context()
    sid = (sandbox_id or "").strip()
    await ws.accept()
    if not sid:
        await ws.send_json(_message(MessageType.ERROR, {"error": "missing_sandbox_id"}, sandbox_id=""))
        await ws.close(code=1008)
        return

    cached = ctx.cache.get(sid)
    view = WebSocketView(ws, sid, content=cached.content if cached is not None else "")
    ctx.open_view(sid, view)
    view.send(
        MessageType.INIT,
        {"title": ctx.title(sid), "content": ctx.content(sid), "ordinal": ctx.ordinal(sid)},
    )
    pump = asyncio.create_task(view.pump())
    closed = False
    try:
        while True:
            try:
                raw = await ws.receive_text()
            except WebSocketDisconnect:
                return

            mtype, data = _parse(raw)

            if mtype == MessageType.CONTENT.value:
                content = data.get("content")
                if not isinstance(content, str):
                    view.send(MessageType.ERROR, {"error": "content_must_be_string"})
                    continue
                view.apply_local(content)
                ctx.content_changed(sid, content, view)
                continue

            if mtype == MessageType.CLOSE.value:
                outcome = await ctx.close_view(
                    sid, view, abortable=True, confirmer=WebSocketConfirm(view, ctx)
                )
                if not outcome.view_closed:
                    view.send(MessageType.CLOSE_ABORTED, {"state": outcome.state.value})
                    continue
                closed = True
                view.send(MessageType.CLOSED, {"state": outcome.state.value})
                view.stop()
                # The peer may already be gone if the prompt failed.
                with contextlib.suppress(RuntimeError, WebSocketDisconnect):
                    await pump
                    await ws.close()
                return

            # Ignore unknowns (clients can send ping)
            if mtype == MessageType.PING.value:
                view.send(MessageType.PING, {})
                continue
    finally:
        if not pump.done():
            pump.cancel()
            with contextlib.suppress(asyncio.CancelledError, Exception):
                await pump
        if not closed:
            # Nobody is left to answer a prompt on this connection.
            await ctx.close_view(sid, view, abortable=False, confirmer=AlwaysRetain())


@app.websocket("/ws/sandboxes/{sandbox_id}")
async def websocket_sandbox(ws: WebSocket, sandbox_id: str) -> None:
    await _handle_ws(ws, sandbox_id)
