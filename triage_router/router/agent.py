"""Its-broken triage router — channel gate in front of the triage worker.

The router never calls a language model itself. It pulls the channel id
out of the webhook payload, asks Slack for the channel name (a cheap API
call), and only delegates to the triage worker when the message was
posted in the target channel.

Stages:
1. start: extract channel id, save state, request channel info
2. checking_channel: compare channel name, skip or request the worker
3. running_triage: relay the worker's answer
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

from triage_router.models import (
    AgentResult,
    AuditEvent,
    AuditEventType,
    RiskLevel,
    RouterStage,
    RouterState,
    TextMessage,
    ToolCall,
    ToolResult,
)
from triage_router.router.extractor import extract_channel_id

if TYPE_CHECKING:
    from triage_router.audit.logger import AuditLogger
    from triage_router.state.store import Task

logger = logging.getLogger(__name__)

TARGET_CHANNEL = "its-broken"

CHANNEL_INFO_TOOL = "slack_get_conversation_info"
WORKER_TOOL = "its_broken_triage_worker"

MSG_NO_CHANNEL_ID = "Could not extract channel ID from webhook payload. Skipping."
MSG_NO_STATE = "Error: Could not restore state"
MSG_NO_CHANNEL_INFO = "Error: Could not get channel info from Slack"
MSG_NO_CHANNEL_NAME = "Error: Could not determine channel name"
MSG_NO_WORKER_RESULT = "Error: Triage worker did not return a result"
MSG_TRIAGE_COMPLETED = "Triage completed"
MSG_UNEXPECTED_STATE = "Unexpected state"


def _find_result(results: list[ToolResult], tool_name: str) -> ToolResult | None:
    return next((r for r in results if r.tool_name == tool_name), None)


def _channel_name(output: dict[str, Any]) -> str | None:
    channel = output.get("channel")
    if not isinstance(channel, dict):
        return None
    name = channel.get("name")
    return name if isinstance(name, str) and name else None


class TriageRouter:
    """Two-step router: channel check, then delegation to the worker."""

    identifier = "its-broken-triage"
    description = (
        "Triages bug reports from the #its-broken Slack channel. Filters on "
        "channel name before invoking an LLM; when the channel matches, "
        "delegates to the worker which investigates the report, searches "
        "code, and creates a GitHub issue."
    )

    def __init__(
        self,
        target_channel: str = TARGET_CHANNEL,
        audit_logger: AuditLogger | None = None,
    ) -> None:
        self.target_channel = target_channel
        self._audit = audit_logger

    def start(self, message: TextMessage, task: Task) -> AgentResult:
        """Entry point: extract the channel id and request channel info."""
        channel_id = extract_channel_id(message.text)
        if not channel_id:
            logger.info("Task %s: no channel id in payload", task.task_id)
            self._record(task, AuditEventType.TRIAGE_SKIPPED, "extract_channel", MSG_NO_CHANNEL_ID)
            return AgentResult.text(MSG_NO_CHANNEL_ID)

        task.save(RouterState(
            original_input=message.text,
            channel_id=channel_id,
            channel_name="",
            stage=RouterStage.CHECKING_CHANNEL,
        ))
        return AgentResult.call_tools([
            ToolCall(
                tool_call_id="check-channel",
                tool_name=CHANNEL_INFO_TOOL,
                input={"channel": channel_id},
            ),
        ])

    def on_tool_results(self, results: list[ToolResult], task: Task) -> AgentResult:
        """Resume after the runner delivers the results of the last tool calls."""
        state = task.restore()
        if state is None:
            return self._fail(task, "restore_state", MSG_NO_STATE)

        if state.stage == RouterStage.CHECKING_CHANNEL:
            return self._check_channel(state, results, task)
        if state.stage == RouterStage.RUNNING_TRIAGE:
            return self._finish_triage(results, task)

        return self._fail(task, "dispatch_stage", MSG_UNEXPECTED_STATE)

    def _check_channel(
        self, state: RouterState, results: list[ToolResult], task: Task,
    ) -> AgentResult:
        channel_result = _find_result(results, CHANNEL_INFO_TOOL)
        if channel_result is None:
            return self._fail(task, "check_channel", MSG_NO_CHANNEL_INFO)

        channel_name = _channel_name(channel_result.output)
        if channel_name is None:
            return self._fail(task, "check_channel", MSG_NO_CHANNEL_NAME)

        if channel_name != self.target_channel:
            text = f"Skipped: Message was in #{channel_name}, not #{self.target_channel}"
            logger.info("Task %s: %s", task.task_id, text)
            self._record(
                task, AuditEventType.TRIAGE_SKIPPED, "check_channel", text,
                channel_id=state.channel_id, channel_name=channel_name,
            )
            return AgentResult.text(text)

        task.save(state.model_copy(update={
            "channel_name": channel_name,
            "stage": RouterStage.RUNNING_TRIAGE,
        }))
        logger.info("Task %s: #%s matched, delegating to worker", task.task_id, channel_name)
        self._record(
            task, AuditEventType.TRIAGE_DELEGATED, "delegate", "success",
            channel_id=state.channel_id, channel_name=channel_name,
        )
        return AgentResult.call_tools([
            ToolCall(
                tool_call_id="run-triage",
                tool_name=WORKER_TOOL,
                input={"type": "text", "text": state.original_input},
            ),
        ])

    def _finish_triage(self, results: list[ToolResult], task: Task) -> AgentResult:
        triage_result = _find_result(results, WORKER_TOOL)
        if triage_result is None:
            return self._fail(task, "run_triage", MSG_NO_WORKER_RESULT)

        text = triage_result.output.get("text") or MSG_TRIAGE_COMPLETED
        self._record(task, AuditEventType.TRIAGE_COMPLETED, "run_triage", "success")
        return AgentResult.text(str(text))

    def _fail(self, task: Task, action: str, text: str) -> AgentResult:
        logger.warning("Task %s: %s", task.task_id, text)
        self._record(task, AuditEventType.ROUTER_ERROR, action, text, risk=RiskLevel.MEDIUM)
        return AgentResult.text(text)

    def _record(
        self,
        task: Task,
        event_type: AuditEventType,
        action: str,
        result: str,
        risk: RiskLevel = RiskLevel.INFO,
        **details: object,
    ) -> None:
        if self._audit is None:
            return
        self._audit.log(AuditEvent(
            event_type=event_type,
            task_id=task.task_id,
            action=action,
            result=result,
            risk_level=risk,
            details=details or None,
        ))
