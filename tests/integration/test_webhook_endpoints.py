"""Integration tests for the Slack webhook and direct triage endpoints."""

from __future__ import annotations

import hashlib
import hmac
import json
import time
from pathlib import Path
from typing import Any
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from fastapi.testclient import TestClient
from httpx import ASGITransport, AsyncClient

from tests.conftest import make_slack_payload
from triage_router.api.app import create_app, create_app_from_env
from triage_router.models import AuditEventType, TextMessage
from triage_router.router.agent import CHANNEL_INFO_TOOL, WORKER_TOOL, TriageRouter
from triage_router.runtime import TaskRunner
from triage_router.state.store import StateStore
from triage_router.webhook.replay_protection import ReplayProtection

SIGNING_SECRET = "slack-signing-secret"
API_TOKEN = "router-api-token"


def _signed_headers(body: bytes, timestamp: int | None = None) -> dict[str, str]:
    ts = str(timestamp if timestamp is not None else int(time.time()))
    digest = hmac.new(
        SIGNING_SECRET.encode(), f"v0:{ts}:".encode() + body, hashlib.sha256,
    ).hexdigest()
    return {
        "x-slack-request-timestamp": ts,
        "x-slack-signature": f"v0={digest}",
        "content-type": "application/json",
    }


class _Pipeline:
    """Real router and store with mocked Slack and worker tools."""

    def __init__(self, tmp_path: Path, channel_name: str = "its-broken",
                 worker_text: str = "Created issue #7") -> None:
        self.store = StateStore(str(tmp_path / "state.db"))
        self.lookup = AsyncMock(
            return_value={"ok": True, "channel": {"id": "C222", "name": channel_name}},
        )
        self.worker = AsyncMock(return_value={"type": "text", "text": worker_text})
        self.runner = TaskRunner(
            router=TriageRouter(),
            store=self.store,
            tools={CHANNEL_INFO_TOOL: self.lookup, WORKER_TOOL: self.worker},
        )


def _make_app(tmp_path: Path, runner: Any, **kwargs: Any) -> Any:
    defaults: dict[str, Any] = {
        "runner": runner,
        "signing_secret": SIGNING_SECRET,
        "api_token": API_TOKEN,
        "replay_protection": ReplayProtection(str(tmp_path / "replay.db")),
    }
    defaults.update(kwargs)
    return create_app(**defaults)


async def _post_event(app: Any, body: bytes, headers: dict[str, str] | None = None) -> Any:
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        return await client.post(
            "/webhook/slack",
            content=body,
            headers=headers if headers is not None else _signed_headers(body),
        )


class TestHealth:
    @pytest.mark.asyncio
    async def test_health_is_public(self, tmp_path: Path) -> None:
        app = _make_app(tmp_path, MagicMock())
        async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
            resp = await client.get("/health")
        assert resp.status_code == 200
        assert resp.json() == {"status": "ok"}


class TestSlackWebhook:
    @pytest.mark.asyncio
    async def test_monitored_channel_runs_triage(self, tmp_path: Path) -> None:
        pipeline = _Pipeline(tmp_path)
        app = _make_app(tmp_path, pipeline.runner)
        body = make_slack_payload(channel="C222").encode()

        resp = await _post_event(app, body)

        assert resp.status_code == 200
        assert resp.json() == {"ok": True}
        pipeline.lookup.assert_awaited_once_with({"channel": "C222"})
        pipeline.worker.assert_awaited_once_with({"type": "text", "text": body.decode()})

    @pytest.mark.asyncio
    async def test_other_channel_never_reaches_worker(self, tmp_path: Path) -> None:
        pipeline = _Pipeline(tmp_path, channel_name="random-chan")
        app = _make_app(tmp_path, pipeline.runner)

        resp = await _post_event(app, make_slack_payload(channel="C111").encode())

        assert resp.status_code == 200
        pipeline.lookup.assert_awaited_once()
        pipeline.worker.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_invalid_signature_401(self, tmp_path: Path) -> None:
        runner = MagicMock()
        runner.run = AsyncMock()
        app = _make_app(tmp_path, runner)
        body = make_slack_payload().encode()
        headers = _signed_headers(body)
        headers["x-slack-signature"] = "v0=" + "0" * 64

        resp = await _post_event(app, body, headers)

        assert resp.status_code == 401
        assert resp.json()["error"] == "Invalid signature"
        runner.run.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_stale_timestamp_401(self, tmp_path: Path) -> None:
        runner = MagicMock()
        runner.run = AsyncMock()
        app = _make_app(tmp_path, runner)
        body = make_slack_payload().encode()

        resp = await _post_event(app, body, _signed_headers(body, int(time.time()) - 3600))

        assert resp.status_code == 401
        runner.run.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_webhook_does_not_need_bearer_token(self, tmp_path: Path) -> None:
        app = _make_app(tmp_path, MagicMock())
        body = make_slack_payload().encode()
        # No signature and no bearer: the 401 comes from signing, not auth middleware
        resp = await _post_event(app, body, {"content-type": "application/json"})
        assert resp.status_code == 401
        assert resp.json()["error"] == "Invalid signature"

    @pytest.mark.asyncio
    async def test_url_verification_challenge(self, tmp_path: Path) -> None:
        runner = MagicMock()
        runner.run = AsyncMock()
        app = _make_app(tmp_path, runner)
        body = json.dumps({"type": "url_verification", "challenge": "3eZbrw1aBm"}).encode()

        resp = await _post_event(app, body)

        assert resp.status_code == 200
        assert resp.json() == {"challenge": "3eZbrw1aBm"}
        runner.run.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_invalid_json_400(self, tmp_path: Path) -> None:
        app = _make_app(tmp_path, MagicMock())
        resp = await _post_event(app, b"not json")
        assert resp.status_code == 400

    @pytest.mark.asyncio
    async def test_oversized_body_413(self, tmp_path: Path) -> None:
        app = _make_app(tmp_path, MagicMock())
        body = b"x" * (1024 * 1024 + 1)
        resp = await _post_event(app, body)
        assert resp.status_code == 413

    @pytest.mark.asyncio
    async def test_redelivered_event_runs_once(self, tmp_path: Path) -> None:
        pipeline = _Pipeline(tmp_path)
        app = _make_app(tmp_path, pipeline.runner)
        body = make_slack_payload().encode()

        first = await _post_event(app, body)
        second = await _post_event(app, body)

        assert first.json() == {"ok": True}
        assert second.json() == {"ok": True, "duplicate": True}
        pipeline.worker.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_bot_messages_ignored(self, tmp_path: Path) -> None:
        pipeline = _Pipeline(tmp_path)
        app = _make_app(tmp_path, pipeline.runner)
        body = make_slack_payload(bot_id="B0WORKER", subtype="bot_message").encode()

        resp = await _post_event(app, body)

        assert resp.json() == {"ok": True, "ignored": "bot_message"}
        pipeline.lookup.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_pipeline_crash_still_acknowledged(self, tmp_path: Path) -> None:
        runner = MagicMock()
        runner.run = AsyncMock(side_effect=RuntimeError("db gone"))
        app = _make_app(tmp_path, runner)

        resp = await _post_event(app, make_slack_payload().encode())

        assert resp.status_code == 200
        runner.run.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_rejection_is_audited(self, tmp_path: Path) -> None:
        audit = MagicMock()
        app = _make_app(tmp_path, MagicMock(), audit_logger=audit)
        await _post_event(app, b"{}", {"content-type": "application/json"})
        events = [call[0][0] for call in audit.log.call_args_list]
        assert any(e.event_type == AuditEventType.WEBHOOK_REJECTED for e in events)


class TestDirectTriage:
    @pytest.mark.asyncio
    async def test_requires_bearer_token(self, tmp_path: Path) -> None:
        app = _make_app(tmp_path, MagicMock())
        async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
            resp = await client.post("/v1/triage", json={"type": "text", "text": "{}"})
        assert resp.status_code == 401

    @pytest.mark.asyncio
    async def test_returns_router_output(self, tmp_path: Path) -> None:
        pipeline = _Pipeline(tmp_path, channel_name="random-chan")
        app = _make_app(tmp_path, pipeline.runner)
        async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
            resp = await client.post(
                "/v1/triage",
                json={"type": "text", "text": '{"channel":"C111"}'},
                headers={"Authorization": f"Bearer {API_TOKEN}"},
            )
        assert resp.status_code == 200
        assert resp.json() == {
            "type": "text",
            "text": "Skipped: Message was in #random-chan, not #its-broken",
        }

    @pytest.mark.asyncio
    async def test_worker_answer_relayed(self, tmp_path: Path) -> None:
        pipeline = _Pipeline(tmp_path, worker_text="Issue #42 created")
        app = _make_app(tmp_path, pipeline.runner)
        async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
            resp = await client.post(
                "/v1/triage",
                json={"type": "text", "text": '{"channel":"C222"}'},
                headers={"Authorization": f"Bearer {API_TOKEN}"},
            )
        assert resp.json()["text"] == "Issue #42 created"

    @pytest.mark.asyncio
    async def test_rejects_wrong_message_type(self, tmp_path: Path) -> None:
        runner = MagicMock()
        runner.run = AsyncMock(return_value=TextMessage(text="x"))
        app = _make_app(tmp_path, runner)
        async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
            resp = await client.post(
                "/v1/triage",
                json={"type": "image", "text": "x"},
                headers={"Authorization": f"Bearer {API_TOKEN}"},
            )
        assert resp.status_code == 422
        runner.run.assert_not_awaited()


class TestAppFromEnv:
    def _env(self, tmp_path: Path) -> dict[str, str]:
        return {
            "SLACK_SIGNING_SECRET": SIGNING_SECRET,
            "SLACK_BOT_TOKEN": "xoxb-test",
            "ROUTER_API_TOKEN": API_TOKEN,
            "WORKER_URL": "http://agents.test",
            "WORKER_TOKEN": "worker-token",
            "STATE_DB_PATH": str(tmp_path / "state.db"),
            "REPLAY_DB_PATH": str(tmp_path / "replay.db"),
        }

    def test_startup_forgets_old_event_ids(self, tmp_path: Path) -> None:
        seeded = ReplayProtection(str(tmp_path / "replay.db"))
        seeded.check_event("Ev-old")
        seeded._conn.execute("UPDATE slack_events SET received_at = 0")
        seeded._conn.commit()
        seeded.close()

        with patch.dict("os.environ", self._env(tmp_path), clear=True):
            app = create_app_from_env()
        with TestClient(app) as client:
            assert client.get("/health").status_code == 200

        check = ReplayProtection(str(tmp_path / "replay.db"))
        assert check.check_event("Ev-old") is True

    def test_shutdown_closes_databases(self, tmp_path: Path) -> None:
        with patch.dict("os.environ", self._env(tmp_path), clear=True):
            app = create_app_from_env()
        with (
            patch.object(StateStore, "close") as store_close,
            patch.object(ReplayProtection, "close") as replay_close,
        ):
            with TestClient(app):
                store_close.assert_not_called()
            store_close.assert_called_once()
            replay_close.assert_called_once()
