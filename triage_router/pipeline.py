"""Wires the router, state store and external clients into a TaskRunner."""

from __future__ import annotations

import os
from typing import Any

from triage_router.audit.logger import AuditLogger
from triage_router.router.agent import (
    CHANNEL_INFO_TOOL,
    TARGET_CHANNEL,
    WORKER_TOOL,
    TriageRouter,
)
from triage_router.runtime import TaskRunner
from triage_router.slack.client import SlackClient
from triage_router.state.store import StateStore
from triage_router.worker.client import WorkerClient


def build_runner(
    store: StateStore,
    slack: SlackClient,
    worker: WorkerClient,
    target_channel: str = TARGET_CHANNEL,
    audit_logger: AuditLogger | None = None,
) -> TaskRunner:
    async def channel_info(tool_input: dict[str, Any]) -> dict[str, Any]:
        return await slack.get_conversation_info(tool_input["channel"])

    return TaskRunner(
        router=TriageRouter(target_channel=target_channel, audit_logger=audit_logger),
        store=store,
        tools={
            CHANNEL_INFO_TOOL: channel_info,
            WORKER_TOOL: worker.invoke,
        },
    )


def build_runner_from_env(
    store: StateStore, audit_logger: AuditLogger | None = None,
) -> TaskRunner:
    """Build a runner from SLACK_*, WORKER_* and TRIAGE_* environment variables."""
    return build_runner(
        store=store,
        slack=SlackClient.from_env(),
        worker=WorkerClient.from_env(),
        target_channel=os.environ.get("TRIAGE_TARGET_CHANNEL", TARGET_CHANNEL),
        audit_logger=audit_logger,
    )
