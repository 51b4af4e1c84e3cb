"""Task runner — hosts one router invocation from start to terminal output.

Plays the part of the agent hosting platform: allocates the task, executes
the tool calls the router asks for, delivers the results back to the
router's resumption handler, and clears persisted state at the end.
"""

from __future__ import annotations

import logging
import uuid
from typing import TYPE_CHECKING, Any, Protocol

from triage_router.models import TextMessage, ToolCall, ToolResult

if TYPE_CHECKING:
    from triage_router.router.agent import TriageRouter
    from triage_router.state.store import StateStore

logger = logging.getLogger(__name__)


class ToolExecutionError(Exception):
    """Raised by a tool executor when its external call cannot produce a result."""

    def __init__(self, tool_name: str, reason: str) -> None:
        self.tool_name = tool_name
        self.reason = reason
        super().__init__(f"{tool_name} failed: {reason}")


class ToolExecutor(Protocol):
    async def __call__(self, tool_input: dict[str, Any]) -> dict[str, Any]: ...


class TaskRunner:
    """Drives a TriageRouter through its suspension points.

    Tool calls are executed one at a time, in the order requested. A failed
    or unknown tool produces no result, which the router reports as a
    terminal error. Nothing is retried.
    """

    def __init__(
        self,
        router: TriageRouter,
        store: StateStore,
        tools: dict[str, ToolExecutor],
    ) -> None:
        self._router = router
        self._store = store
        self._tools = tools

    async def run(self, message: TextMessage, task_id: str | None = None) -> TextMessage:
        """Run the router to completion and return its terminal output."""
        task = self._store.task(task_id or str(uuid.uuid4()))
        try:
            result = self._router.start(message, task)
            while result.type == "tool_calls":
                results = [await self._execute(call) for call in result.tool_calls]
                result = self._router.on_tool_results(
                    [r for r in results if r is not None], task,
                )
            if result.output is None:
                raise RuntimeError("Router returned an output result without a message")
            return result.output
        finally:
            task.clear()

    async def _execute(self, call: ToolCall) -> ToolResult | None:
        executor = self._tools.get(call.tool_name)
        if executor is None:
            logger.error("No executor registered for tool %s", call.tool_name)
            return None

        try:
            output = await executor(call.input)
        except ToolExecutionError as exc:
            logger.warning("Tool call %s failed: %s", call.tool_call_id, exc.reason)
            return None

        return ToolResult(
            tool_call_id=call.tool_call_id,
            tool_name=call.tool_name,
            output=output,
        )
