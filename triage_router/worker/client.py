"""Delegation client for the triage worker agent.

Sends the original webhook text to the agent host as an OpenAI-compatible
chat request and maps the reply back to a TextMessage.
"""

from __future__ import annotations

import json
import logging
import os
from typing import Any

import httpx
from pydantic import ValidationError

from triage_router.models import TextMessage
from triage_router.runtime import ToolExecutionError
from triage_router.worker.definition import WorkerDefinition

logger = logging.getLogger(__name__)

_DEFAULT_TIMEOUT_SECONDS = 600.0


class WorkerError(ToolExecutionError):
    """Raised when the triage worker cannot be reached or returns an error."""

    def __init__(self, reason: str) -> None:
        super().__init__("triage_worker", reason)


class WorkerClient:
    """Invokes the triage worker on the agent host."""

    def __init__(
        self,
        worker_url: str,
        worker_token: str,
        definition: WorkerDefinition,
        timeout: float = _DEFAULT_TIMEOUT_SECONDS,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._worker_url = worker_url.rstrip("/")
        self._worker_token = worker_token
        self._definition = definition
        self._timeout = timeout
        self._transport = transport

    @classmethod
    def from_env(cls) -> WorkerClient:
        return cls(
            worker_url=os.environ["WORKER_URL"],
            worker_token=os.environ["WORKER_TOKEN"],
            definition=WorkerDefinition.from_env(),
            timeout=float(os.environ.get("WORKER_TIMEOUT", str(_DEFAULT_TIMEOUT_SECONDS))),
        )

    def build_request(self, message: TextMessage) -> dict[str, Any]:
        return {
            "model": self._definition.identifier,
            "messages": [
                {"role": "system", "content": self._definition.system_prompt},
                {"role": "user", "content": message.text},
            ],
            "metadata": {
                "source": "its-broken-triage",
                "tools": list(self._definition.tools),
            },
        }

    async def run(self, message: TextMessage) -> TextMessage:
        """Delegate one triage and wait for the worker's final answer."""
        url = f"{self._worker_url}/v1/chat/completions"
        headers = {
            "Authorization": f"Bearer {self._worker_token}",
            "Content-Type": "application/json",
        }

        try:
            async with httpx.AsyncClient(transport=self._transport) as client:
                resp = await client.post(
                    url,
                    json=self.build_request(message),
                    headers=headers,
                    timeout=self._timeout,
                )
        except httpx.HTTPError as exc:
            raise WorkerError(f"unreachable: {exc}") from exc

        if resp.status_code >= 400:
            raise WorkerError(f"HTTP {resp.status_code}")

        try:
            content = resp.json()["choices"][0]["message"].get("content") or ""
        except (json.JSONDecodeError, AttributeError, IndexError, KeyError, TypeError) as exc:
            raise WorkerError("malformed response") from exc

        logger.info("Triage worker returned %d chars", len(content))
        return TextMessage(text=str(content))

    async def invoke(self, tool_input: dict[str, Any]) -> dict[str, Any]:
        """Tool-call adapter: ``{type, text}`` in, ``{type, text}`` out."""
        try:
            message = TextMessage.model_validate(tool_input)
        except ValidationError as exc:
            raise WorkerError("invalid worker input") from exc
        result = await self.run(message)
        return result.model_dump()
