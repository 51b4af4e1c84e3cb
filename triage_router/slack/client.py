"""Slack Web API client for the router's channel lookup."""

from __future__ import annotations

import logging
import os
from typing import Any

import httpx

from triage_router.runtime import ToolExecutionError

logger = logging.getLogger(__name__)

SLACK_API_URL = "https://slack.com/api"


class SlackApiError(ToolExecutionError):
    """Raised when Slack cannot answer a Web API call."""

    def __init__(self, method: str, reason: str) -> None:
        self.method = method
        super().__init__(f"slack:{method}", reason)


class SlackClient:
    """Minimal async client for the Slack Web API.

    NFR: TLS verification on, 30s timeout, no retries.
    """

    def __init__(
        self,
        bot_token: str,
        api_url: str = SLACK_API_URL,
        timeout: float = 30.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._bot_token = bot_token
        self._api_url = api_url.rstrip("/")
        self._timeout = timeout
        self._transport = transport

    @classmethod
    def from_env(cls) -> SlackClient:
        return cls(
            bot_token=os.environ["SLACK_BOT_TOKEN"],
            api_url=os.environ.get("SLACK_API_URL", SLACK_API_URL),
        )

    async def get_conversation_info(self, channel: str) -> dict[str, Any]:
        """Call conversations.info and return the decoded response body.

        The body has the shape ``{"ok": true, "channel": {"name": ...}}``.
        """
        return await self._call("conversations.info", {"channel": channel})

    async def _call(self, method: str, params: dict[str, str]) -> dict[str, Any]:
        url = f"{self._api_url}/{method}"
        headers = {"Authorization": f"Bearer {self._bot_token}"}

        try:
            async with httpx.AsyncClient(verify=True, transport=self._transport) as client:
                resp = await client.get(
                    url, params=params, headers=headers, timeout=self._timeout,
                )
        except httpx.HTTPError as exc:
            raise SlackApiError(method, f"unreachable: {exc}") from exc

        if resp.status_code >= 400:
            raise SlackApiError(method, f"HTTP {resp.status_code}")

        try:
            body = resp.json()
        except ValueError as exc:
            raise SlackApiError(method, "response was not JSON") from exc
        if not isinstance(body, dict):
            raise SlackApiError(method, "response was not a JSON object")

        if not body.get("ok"):
            raise SlackApiError(method, str(body.get("error", "unknown_error")))

        logger.debug("Slack %s ok", method)
        return body
