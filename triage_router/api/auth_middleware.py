"""ASGI middleware for Bearer token authentication on the router API."""

from __future__ import annotations

import hmac

from starlette.requests import Request
from starlette.responses import JSONResponse
from starlette.types import ASGIApp, Receive, Scope, Send

from triage_router.audit.logger import AuditLogger
from triage_router.models import AuditEvent, AuditEventType, RiskLevel

# Paths that bypass authentication (exact match)
PUBLIC_PATHS = frozenset({"/health"})


class AuthMiddleware:
    """Validates Bearer tokens using constant-time comparison.

    Webhook paths are exempt: Slack authenticates them with request signing.
    """

    def __init__(
        self,
        app: ASGIApp,
        token: str,
        audit_logger: AuditLogger | None = None,
        webhook_paths: frozenset[str] = frozenset(),
    ) -> None:
        self.app = app
        self._token = token.encode()
        self.audit_logger = audit_logger
        self._public_paths = PUBLIC_PATHS | webhook_paths

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        request = Request(scope)
        if request.url.path in self._public_paths:
            await self.app(scope, receive, send)
            return

        auth_header = request.headers.get("authorization", "")
        if not auth_header.startswith("Bearer "):
            reason = "missing_token" if not auth_header else "invalid_format"
            await self._reject(request, reason, 401, "Authentication required")(
                scope, receive, send,
            )
            return

        if not hmac.compare_digest(auth_header[7:].encode(), self._token):
            await self._reject(request, "invalid_token", 403, "Access denied")(
                scope, receive, send,
            )
            return

        self._log(request, AuditEventType.AUTH_SUCCESS, "success", RiskLevel.INFO)
        await self.app(scope, receive, send)

    def _reject(self, request: Request, reason: str, status: int, message: str) -> JSONResponse:
        self._log(
            request, AuditEventType.AUTH_FAILURE, "failure", RiskLevel.HIGH,
            {"reason": reason},
        )
        return JSONResponse({"error": message}, status_code=status)

    def _log(
        self,
        request: Request,
        event_type: AuditEventType,
        result: str,
        risk: RiskLevel,
        details: dict[str, object] | None = None,
    ) -> None:
        if self.audit_logger is None:
            return
        self.audit_logger.log(AuditEvent(
            event_type=event_type,
            source_ip=request.client.host if request.client else None,
            action=f"{request.method} {request.url.path}",
            result=result,
            risk_level=risk,
            details=details,
        ))
