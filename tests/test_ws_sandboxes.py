from __future__ import annotations

import pytest

pytest.importorskip("fastapi")
pytest.importorskip("dotenv")
pytest.importorskip("httpx")


@pytest.fixture
def client(monkeypatch):
    from fastapi.testclient import TestClient

    from src.runtimes.ws_server import app

    monkeypatch.setenv("HOT_SANDBOX_DEBOUNCE_MS", "20")
    monkeypatch.setenv("HOT_SANDBOX_SWEEP_INTERVAL_S", "0")
    with TestClient(app) as c:
        yield c


def _receive_until(ws, mtype: str) -> dict:
    for _ in range(20):
        msg = ws.receive_json()
        if msg["type"] == mtype:
            return msg
    raise AssertionError(f"no {mtype} message received")


def test_healthz(client):
    resp = client.get("/healthz")
    assert resp.status_code == 200
    assert resp.json() == {"status": "ok"}


def test_create_and_list(client):
    created = client.post("/api/sandboxes").json()
    assert created["id"].startswith("hsbox-")

    with client.websocket_connect(f"/ws/sandboxes/{created['id']}") as ws:
        init = _receive_until(ws, "init")
        assert init["data"]["title"].startswith("Hot Sandbox-")
        assert init["data"]["content"] == ""

        listed = client.get("/api/sandboxes").json()["sandboxes"]
        assert [s["id"] for s in listed] == [created["id"]]
        assert listed[0]["open_views"] == 1


def test_unknown_sandbox_is_404(client):
    resp = client.get("/api/sandboxes/hsbox-missing")
    assert resp.status_code == 404
    assert resp.json() == {"error": "not_found"}


def test_two_connections_share_edits_then_delete_on_confirm(client):
    sid = "hsbox-shared"
    with client.websocket_connect(f"/ws/sandboxes/{sid}") as a:
        _receive_until(a, "init")
        with client.websocket_connect(f"/ws/sandboxes/{sid}") as b:
            _receive_until(b, "init")

            a.send_json({"type": "content", "data": {"content": "hello"}})
            pushed = _receive_until(b, "content")
            assert pushed["data"]["content"] == "hello"
            assert pushed["sandbox_id"] == sid

            b.send_json({"type": "close", "data": {}})
            closed = _receive_until(b, "closed")
            assert closed["data"]["state"] == "active"

        fetched = client.get(f"/api/sandboxes/{sid}").json()
        assert fetched["content"] == "hello"

        a.send_json({"type": "close", "data": {}})
        prompt = _receive_until(a, "confirm")
        assert prompt["data"]["title"] == "Delete Sandbox"
        a.send_json({"type": "confirm_result", "data": {"confirmed": True}})
        closed = _receive_until(a, "closed")
        assert closed["data"]["state"] == "deleted"

    assert client.get(f"/api/sandboxes/{sid}").status_code == 404


def test_declined_close_keeps_connection_open(client):
    sid = "hsbox-keep"
    with client.websocket_connect(f"/ws/sandboxes/{sid}") as ws:
        _receive_until(ws, "init")
        ws.send_json({"type": "content", "data": {"content": "draft"}})

        ws.send_json({"type": "close", "data": {}})
        _receive_until(ws, "confirm")
        ws.send_json({"type": "confirm_result", "data": {"confirmed": False}})
        aborted = _receive_until(ws, "close_aborted")
        assert aborted["data"]["state"] == "active"

        ws.send_json({"type": "ping", "data": {}})
        assert _receive_until(ws, "ping")["type"] == "ping"

        ws.send_json({"type": "content", "data": {"content": 42}})
        err = _receive_until(ws, "error")
        assert err["data"]["error"] == "content_must_be_string"

        assert client.get(f"/api/sandboxes/{sid}").json()["content"] == "draft"

        ws.send_json({"type": "close", "data": {}})
        _receive_until(ws, "confirm")
        ws.send_json({"type": "confirm_result", "data": {"confirmed": True}})
        assert _receive_until(ws, "closed")["data"]["state"] == "deleted"
