"""Slack request signing verification.

Slack signs every Events API delivery with
``v0=HMAC-SHA256(signing_secret, "v0:{timestamp}:{body}")`` in the
``X-Slack-Signature`` header and sends the timestamp in
``X-Slack-Request-Timestamp``.
"""

from __future__ import annotations

import hashlib
import hmac
import time

_VERSION = "v0"


class SlackSignatureVerifier:
    """Verifies Slack webhook signatures and rejects stale deliveries."""

    def __init__(self, signing_secret: str, max_age_seconds: int = 300) -> None:
        self._secret = signing_secret.encode()
        self._max_age_seconds = max_age_seconds

    def sign(self, timestamp: str, body: bytes) -> str:
        base = f"{_VERSION}:{timestamp}:".encode() + body
        digest = hmac.new(self._secret, base, hashlib.sha256).hexdigest()
        return f"{_VERSION}={digest}"

    def verify(self, headers: dict[str, str], body: bytes, now: int | None = None) -> bool:
        """Return True if the delivery is correctly signed and fresh.

        Uses constant-time comparison via hmac.compare_digest.
        """
        timestamp = headers.get("x-slack-request-timestamp", "")
        signature = headers.get("x-slack-signature", "")
        if not timestamp or not signature:
            return False

        try:
            sent_at = int(timestamp)
        except ValueError:
            return False

        current = int(time.time()) if now is None else now
        if abs(current - sent_at) > self._max_age_seconds:
            return False

        return hmac.compare_digest(signature, self.sign(timestamp, body))
