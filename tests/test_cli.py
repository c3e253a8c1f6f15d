"""Tests for the airlink command line."""

import asyncio
import base64
import json
from datetime import timedelta

import httpx
import pytest
from fastapi.testclient import TestClient
from typer.testing import CliRunner

from airlink.cli import _wait_for_receiver, _ws_url, app
from airlink import config as config_module
from airlink.config import AirLinkConfig
from airlink.countdown import SessionCountdown
from airlink.metrics import MetricsCollector
from airlink.recorder import save_path
from airlink.server import app as server_app, state
from airlink.signature import Point
from airlink.store import MemorySessionStore
from airlink.templates import TemplateCatalog

from paths import E2E_SIGNATURE, FakeClock, path_for_signature

runner = CliRunner()


@pytest.fixture(autouse=True)
def fresh_config(monkeypatch):
    monkeypatch.setattr(config_module, "_config", None)


@pytest.fixture
def e2e_file(tmp_path):
    path = tmp_path / "e2e.json"
    save_path(path_for_signature(E2E_SIGNATURE), path)
    return path


class TestCLI:
    def test_templates(self):
        result = runner.invoke(app, ["templates"])
        assert result.exit_code == 0
        for t in TemplateCatalog.templates():
            assert t.id in result.output

    def test_keygen(self):
        result = runner.invoke(app, ["keygen"])
        assert result.exit_code == 0
        assert len(base64.b64decode(result.output.strip())) == 32

    def test_signature(self, e2e_file):
        result = runner.invoke(app, ["signature", str(e2e_file)])
        assert result.exit_code == 0
        assert result.output.strip() == E2E_SIGNATURE

    def test_signature_short_path(self, tmp_path):
        path = tmp_path / "short.json"
        save_path(path_for_signature(E2E_SIGNATURE)[:5], path, signature="")
        result = runner.invoke(app, ["signature", str(path)])
        assert result.exit_code == 1

    def test_missing_file(self, tmp_path):
        result = runner.invoke(app, ["signature", str(tmp_path / "nope.json")])
        assert result.exit_code == 1

    def test_match(self, tmp_path):
        path = tmp_path / "star.json"
        star = [Point(x, y, i * 40) for i, (x, y) in enumerate(TemplateCatalog.get("star").points)]
        save_path(star, path)
        result = runner.invoke(app, ["match", str(path), "--all"])
        assert result.exit_code == 0
        assert "Star" in result.output
        assert "Heart" in result.output

    def test_match_nothing(self, tmp_path):
        path = tmp_path / "dots.json"
        save_path([Point(0.5, 0.5, 0), Point(0.6, 0.5, 40)], path)
        result = runner.invoke(app, ["match", str(path)])
        assert result.exit_code == 1

    def test_config_option(self, tmp_path):
        cfg = tmp_path / "airlink.yml"
        cfg.write_text("log_level: warning\n")
        result = runner.invoke(app, ["--config", str(cfg), "templates"])
        assert result.exit_code == 0

    def test_signature_replay_uses_config_timings(self, tmp_path, e2e_file):
        cfg = tmp_path / "slow.yml"
        cfg.write_text("min_interval_ms: 100\n")
        result = runner.invoke(app, ["--config", str(cfg), "signature", str(e2e_file), "--replay"])
        # 40 ms between points: a 100 ms throttle keeps every third one, too few to sign
        assert result.exit_code == 1

    def test_signature_replay_default_timings(self, e2e_file):
        result = runner.invoke(app, ["signature", str(e2e_file), "--replay"])
        assert result.exit_code == 0
        assert E2E_SIGNATURE in result.output.splitlines()


class FakeSocket:
    def __init__(self, messages):
        self._messages = [json.dumps(m) for m in messages]

    async def recv(self):
        if self._messages:
            return self._messages.pop(0)
        await asyncio.sleep(3600)


def session_record(status="waiting"):
    return {"id": "s1", "status": status, "gesture_hash": E2E_SIGNATURE}


class TestWaitForReceiver:
    def countdown(self, seconds=60):
        clock = FakeClock()
        return SessionCountdown(clock() + timedelta(seconds=seconds), clock=clock)

    def test_matched_push(self):
        ws = FakeSocket([
            {"type": "subscribed", "session": session_record()},
            {"type": "ping"},
            {"type": "session_update", "session": session_record("matched")},
        ])
        assert asyncio.run(_wait_for_receiver(ws, self.countdown())) == "matched"

    def test_already_completed_on_subscribe(self):
        ws = FakeSocket([{"type": "subscribed", "session": session_record("completed")}])
        assert asyncio.run(_wait_for_receiver(ws, self.countdown())) == "completed"

    def test_expired_push(self):
        ws = FakeSocket([{"type": "session_update", "session": session_record("expired")}])
        assert asyncio.run(_wait_for_receiver(ws, self.countdown())) is None

    def test_unknown_session(self):
        ws = FakeSocket([{"type": "error", "detail": "Session not found"}])
        assert asyncio.run(_wait_for_receiver(ws, self.countdown())) is None

    def test_deadline_already_passed(self):
        ws = FakeSocket([{"type": "session_update", "session": session_record("matched")}])
        assert asyncio.run(_wait_for_receiver(ws, self.countdown(seconds=0))) is None

    def test_ws_url(self):
        assert _ws_url("http://localhost:8765/", "s1") == "ws://localhost:8765/ws/sessions/s1"
        assert _ws_url("https://air.link", "s1") == "wss://air.link/ws/sessions/s1"


UNREACHABLE = "http://127.0.0.1:9"


class TestServerCommands:
    @pytest.fixture
    def server_client(self, monkeypatch):
        state.metrics = MetricsCollector()
        state.configure(config=AirLinkConfig(), store=MemorySessionStore())
        monkeypatch.setattr(httpx, "Client", lambda base_url, timeout: TestClient(server_app))

    def test_send_unreachable(self, e2e_file):
        result = runner.invoke(app, ["send", str(e2e_file), "--content", "hello", "--server", UNREACHABLE])
        assert result.exit_code == 1
        assert "try again" in result.output

    def test_receive_unreachable(self, e2e_file):
        result = runner.invoke(app, ["receive", str(e2e_file), "--server", UNREACHABLE])
        assert result.exit_code == 1
        assert "try again" in result.output

    def test_send_then_receive(self, server_client, e2e_file):
        sent = runner.invoke(app, ["send", str(e2e_file), "--content", "hello", "--no-wait"])
        assert sent.exit_code == 0
        assert E2E_SIGNATURE in sent.output

        received = runner.invoke(app, ["receive", str(e2e_file)])
        assert received.exit_code == 0
        assert "hello" in received.output
        assert "Could not mark" not in received.output
        assert "airlink_completions_total 1" in state.metrics.render()

    def test_receive_warns_when_completion_fails(self, server_client, e2e_file, monkeypatch):
        async def refuse(session_id):
            return False

        runner.invoke(app, ["send", str(e2e_file), "--content", "hello", "--no-wait"])
        monkeypatch.setattr(state.matcher, "complete_session", refuse)
        received = runner.invoke(app, ["receive", str(e2e_file)])
        assert "hello" in received.output
        assert "Could not mark the session completed" in received.output
