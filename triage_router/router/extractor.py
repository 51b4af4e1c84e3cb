"""Channel-ID extraction from raw Slack webhook payload text."""

from __future__ import annotations

import re

# "channel": "C1234567" anywhere in the payload; first match wins.
_CHANNEL_PATTERN = re.compile(r'"channel"\s*:\s*"([A-Z0-9]+)"', re.IGNORECASE)


def extract_channel_id(payload_text: str) -> str | None:
    """Return the first channel id embedded in ``payload_text``, or None.

    The payload is not parsed as JSON: anything that does not contain a
    ``"channel": "<alphanumeric>"`` field yields None.
    """
    match = _CHANNEL_PATTERN.search(payload_text)
    return match.group(1) if match else None
