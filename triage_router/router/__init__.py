"""Router layer for its-broken-triage.

This module provides the cheap pre-LLM gate:
- Channel-id extraction from the raw webhook payload
- The two-stage router state machine
"""

from triage_router.router.agent import (
    CHANNEL_INFO_TOOL,
    TARGET_CHANNEL,
    WORKER_TOOL,
    TriageRouter,
)
from triage_router.router.extractor import extract_channel_id

__all__ = [
    "CHANNEL_INFO_TOOL",
    "TARGET_CHANNEL",
    "WORKER_TOOL",
    "TriageRouter",
    "extract_channel_id",
]
