"""Shared test fixtures for its-broken-triage."""

from __future__ import annotations

import json
from collections.abc import Iterator
from pathlib import Path
from typing import Any
from unittest.mock import MagicMock

import pytest

from triage_router.audit.logger import AuditLogger
from triage_router.models import RouterStage, RouterState, ToolResult
from triage_router.router.agent import CHANNEL_INFO_TOOL, WORKER_TOOL
from triage_router.state.store import StateStore


@pytest.fixture
def state_store(tmp_path: Path) -> Iterator[StateStore]:
    store = StateStore(str(tmp_path / "state.db"))
    yield store
    store.close()


@pytest.fixture
def mock_audit_logger() -> MagicMock:
    return MagicMock(spec=AuditLogger)


# --- Factory functions for test data ---


def make_slack_payload(channel: str = "C222", **event: Any) -> str:
    """Slack Events API envelope for a channel message, serialized as text."""
    body: dict[str, Any] = {
        "type": "message",
        "channel": channel,
        "user": "U123",
        "text": "checkout page returns 500",
        "ts": "1700000000.000100",
    }
    body.update(event)
    return json.dumps({
        "type": "event_callback",
        "event_id": "Ev01",
        "event": body,
    })


def make_router_state(**kwargs: Any) -> RouterState:
    defaults: dict[str, Any] = {
        "original_input": make_slack_payload(),
        "channel_id": "C222",
        "channel_name": "",
        "stage": RouterStage.CHECKING_CHANNEL,
    }
    defaults.update(kwargs)
    return RouterState(**defaults)


def channel_info_result(name: str | None) -> ToolResult:
    channel: dict[str, Any] = {"id": "C222"}
    if name is not None:
        channel["name"] = name
    return ToolResult(
        tool_call_id="check-channel",
        tool_name=CHANNEL_INFO_TOOL,
        output={"ok": True, "channel": channel},
    )


def worker_result(text: str) -> ToolResult:
    return ToolResult(
        tool_call_id="run-triage",
        tool_name=WORKER_TOOL,
        output={"type": "text", "text": text},
    )
