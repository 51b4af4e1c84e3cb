"""Click CLI for running the triage router and maintaining its state."""

from __future__ import annotations

import asyncio
from typing import TextIO

import click

from triage_router.audit.logger import AuditLogger
from triage_router.models import TextMessage
from triage_router.pipeline import build_runner_from_env
from triage_router.router.extractor import extract_channel_id
from triage_router.state.store import StateStore
from triage_router.webhook.replay_protection import ReplayProtection


@click.group()
@click.option("--db", default="data/state.db", help="Router state database path.")
@click.option("--replay-db", default="data/replay.db", help="Slack event replay database path.")
@click.option("--audit-log", default=None, help="Audit log file path.")
@click.pass_context
def cli(ctx: click.Context, db: str, replay_db: str, audit_log: str | None) -> None:
    """its-broken triage router CLI."""
    ctx.ensure_object(dict)
    ctx.obj["db"] = db
    ctx.obj["replay_db"] = replay_db
    ctx.obj["audit_logger"] = AuditLogger(audit_log) if audit_log else None


@cli.command()
@click.argument("payload", type=click.File("r"))
def extract(payload: TextIO) -> None:
    """Print the channel id found in a webhook payload file ('-' for stdin)."""
    channel_id = extract_channel_id(payload.read())
    if channel_id is None:
        click.echo("No channel id found", err=True)
        raise SystemExit(1)
    click.echo(channel_id)


@cli.command()
@click.argument("payload", type=click.File("r"))
@click.pass_context
def route(ctx: click.Context, payload: TextIO) -> None:
    """Run the full router pipeline on a webhook payload file."""
    message = TextMessage(text=payload.read())
    with StateStore(ctx.obj["db"]) as store:
        runner = build_runner_from_env(store, ctx.obj["audit_logger"])
        output = asyncio.run(runner.run(message))
    click.echo(output.model_dump_json(indent=2))


@cli.group("state")
def state_group() -> None:
    """Manage persisted router state."""


@state_group.command("cleanup")
@click.option("--ttl", default=StateStore.DEFAULT_TTL_SECONDS, show_default=True,
              help="Age in seconds after which a task's state is expired.")
@click.pass_context
def state_cleanup(ctx: click.Context, ttl: int) -> None:
    """Remove router state left behind by abandoned tasks."""
    with StateStore(ctx.obj["db"], ttl_seconds=ttl) as store:
        removed = store.cleanup_expired()
    click.echo(f"Removed {removed} expired task state(s)")


@cli.group("replay")
def replay_group() -> None:
    """Manage remembered Slack event ids."""


@replay_group.command("cleanup")
@click.option("--max-age", default=ReplayProtection.DEFAULT_MAX_AGE_SECONDS, show_default=True,
              help="Age in seconds after which an event id is forgotten.")
@click.pass_context
def replay_cleanup(ctx: click.Context, max_age: int) -> None:
    """Forget Slack event ids older than the redelivery window."""
    replay = ReplayProtection(ctx.obj["replay_db"])
    try:
        removed = replay.cleanup(max_age_seconds=max_age)
    finally:
        replay.close()
    click.echo(f"Removed {removed} expired event id(s)")
