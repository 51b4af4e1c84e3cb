"""FastAPI application: Slack Events webhook and direct triage endpoint."""

from __future__ import annotations

import json
import logging
import os
from collections.abc import AsyncIterator, Callable
from contextlib import AbstractAsyncContextManager, asynccontextmanager

from fastapi import BackgroundTasks, FastAPI, Request, Response
from fastapi.responses import JSONResponse

from triage_router.api.auth_middleware import AuthMiddleware
from triage_router.audit.logger import AuditLogger
from triage_router.models import AuditEvent, AuditEventType, RiskLevel, TextMessage
from triage_router.pipeline import build_runner_from_env
from triage_router.runtime import TaskRunner
from triage_router.slack.signature import SlackSignatureVerifier
from triage_router.state.store import StateStore
from triage_router.webhook.replay_protection import ReplayProtection

logger = logging.getLogger(__name__)

SLACK_WEBHOOK_PATH = "/webhook/slack"

_MAX_BODY_SIZE = 1024 * 1024  # 1MB


def create_app_from_env() -> FastAPI:
    """Factory for uvicorn --factory: reads config from environment variables."""
    audit_log = os.environ.get("AUDIT_LOG_PATH")
    audit_logger = AuditLogger.from_env(audit_log) if audit_log else None
    store = StateStore(os.environ.get("STATE_DB_PATH", "data/state.db"))
    replay_protection = ReplayProtection(os.environ.get("REPLAY_DB_PATH", "data/replay.db"))

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        removed = replay_protection.cleanup()
        expired = store.cleanup_expired()
        logger.info("Startup cleanup: %d replay record(s), %d task state(s)", removed, expired)
        try:
            yield
        finally:
            replay_protection.close()
            store.close()

    return create_app(
        runner=build_runner_from_env(store, audit_logger),
        signing_secret=os.environ["SLACK_SIGNING_SECRET"],
        api_token=os.environ["ROUTER_API_TOKEN"],
        replay_protection=replay_protection,
        audit_logger=audit_logger,
        lifespan=lifespan,
    )


def create_app(
    runner: TaskRunner,
    signing_secret: str,
    api_token: str,
    replay_protection: ReplayProtection | None = None,
    audit_logger: AuditLogger | None = None,
    lifespan: Callable[[FastAPI], AbstractAsyncContextManager[None]] | None = None,
) -> FastAPI:
    """Create the router app with Slack signing and bearer auth."""
    app = FastAPI(docs_url=None, redoc_url=None, lifespan=lifespan)
    verifier = SlackSignatureVerifier(signing_secret)

    def reject(request: Request, reason: str, status_code: int, message: str) -> JSONResponse:
        logger.warning("Rejected Slack delivery: %s", reason)
        if audit_logger:
            audit_logger.log(AuditEvent(
                event_type=AuditEventType.WEBHOOK_REJECTED,
                source_ip=request.client.host if request.client else None,
                action="slack_webhook",
                result="blocked",
                risk_level=RiskLevel.HIGH,
                details={"reason": reason},
            ))
        return JSONResponse({"error": message}, status_code=status_code)

    async def run_triage(message: TextMessage) -> None:
        try:
            output = await runner.run(message)
        except Exception:
            logger.exception("Triage pipeline crashed")
            return
        logger.info("Triage finished: %s", output.text[:200])

    @app.get("/health")
    async def health() -> dict[str, str]:
        return {"status": "ok"}

    @app.post(SLACK_WEBHOOK_PATH)
    async def slack_events(request: Request, background_tasks: BackgroundTasks) -> Response:
        body = await request.body()
        if len(body) > _MAX_BODY_SIZE:
            return reject(request, "body_too_large", 413, "Request body too large")

        if not verifier.verify(dict(request.headers), body):
            return reject(request, "invalid_signature", 401, "Invalid signature")

        try:
            payload = json.loads(body)
        except json.JSONDecodeError:
            return reject(request, "invalid_json", 400, "Invalid JSON")
        if not isinstance(payload, dict):
            return reject(request, "invalid_json", 400, "Invalid JSON")

        # Slack's one-time endpoint ownership check
        if payload.get("type") == "url_verification":
            return JSONResponse({"challenge": payload.get("challenge", "")})

        event_id = payload.get("event_id")
        if replay_protection and event_id and not replay_protection.check_event(str(event_id)):
            logger.info("Dropping redelivered Slack event %s", event_id)
            return JSONResponse({"ok": True, "duplicate": True})

        event = payload.get("event") or {}
        if isinstance(event, dict) and (
            event.get("bot_id") or event.get("subtype") == "bot_message"
        ):
            return JSONResponse({"ok": True, "ignored": "bot_message"})

        if audit_logger:
            audit_logger.log(AuditEvent(
                event_type=AuditEventType.WEBHOOK_RECEIVED,
                source_ip=request.client.host if request.client else None,
                action="slack_webhook",
                result="success",
                risk_level=RiskLevel.INFO,
                details={"event_id": event_id},
            ))

        # Slack expects an ack within 3 seconds; triage runs after the response.
        background_tasks.add_task(run_triage, TextMessage(text=body.decode(errors="replace")))
        return JSONResponse({"ok": True})

    @app.post("/v1/triage")
    async def triage(message: TextMessage) -> TextMessage:
        return await runner.run(message)

    app.add_middleware(
        AuthMiddleware,
        token=api_token,
        audit_logger=audit_logger,
        webhook_paths=frozenset({SLACK_WEBHOOK_PATH}),
    )

    return app
