"""Shared Pydantic data models for its-broken-triage."""

from __future__ import annotations

from datetime import UTC, datetime
from enum import Enum
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field

# --- Enums ---


class RouterStage(str, Enum):
    CHECKING_CHANNEL = "checking_channel"
    RUNNING_TRIAGE = "running_triage"


class AuditEventType(str, Enum):
    AUTH_SUCCESS = "auth_success"
    AUTH_FAILURE = "auth_failure"
    WEBHOOK_RECEIVED = "webhook_received"
    WEBHOOK_REJECTED = "webhook_rejected"
    TRIAGE_SKIPPED = "triage_skipped"
    TRIAGE_DELEGATED = "triage_delegated"
    TRIAGE_COMPLETED = "triage_completed"
    ROUTER_ERROR = "router_error"


class RiskLevel(str, Enum):
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"
    INFO = "info"


# --- Agent I/O Models ---


class TextMessage(BaseModel):
    """The only message shape the router accepts, emits and forwards."""

    model_config = ConfigDict(frozen=True)

    type: Literal["text"] = "text"
    text: str


class ToolCall(BaseModel):
    model_config = ConfigDict(frozen=True)

    tool_call_id: str
    tool_name: str
    input: dict[str, Any] = Field(default_factory=dict)


class ToolResult(BaseModel):
    model_config = ConfigDict(frozen=True)

    tool_call_id: str
    tool_name: str
    output: dict[str, Any] = Field(default_factory=dict)


class AgentResult(BaseModel):
    """What a router handler hands back to the runner.

    Either a terminal ``output`` or a batch of ``tool_calls`` to execute
    before the next resumption.
    """

    model_config = ConfigDict(frozen=True)

    type: Literal["output", "tool_calls"]
    output: TextMessage | None = None
    tool_calls: list[ToolCall] = Field(default_factory=list)

    @classmethod
    def text(cls, text: str) -> AgentResult:
        return cls(type="output", output=TextMessage(text=text))

    @classmethod
    def call_tools(cls, calls: list[ToolCall]) -> AgentResult:
        return cls(type="tool_calls", tool_calls=calls)


# --- Router State ---


class RouterState(BaseModel):
    """Per-task progress record persisted across suspension points."""

    original_input: str
    channel_id: str
    channel_name: str = ""
    stage: RouterStage


# --- Audit Models ---


def _now_iso() -> str:
    return datetime.now(UTC).isoformat()


class AuditEvent(BaseModel):
    timestamp: str = Field(default_factory=_now_iso)
    event_type: AuditEventType
    source_ip: str | None = None
    task_id: str | None = None
    action: str
    result: str  # "success" | "failure" | "skipped" | "blocked"
    risk_level: RiskLevel
    details: dict[str, object] | None = None
