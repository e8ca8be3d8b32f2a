"""Admin CLI for the reminders service."""

from __future__ import annotations

import asyncio
import json
import os

import click


def run_async(coro):
    """Run an async function in a new event loop."""
    return asyncio.run(coro)


@click.group()
def cli():
    """Daily reminders administration CLI."""
    pass


# --- Setup ---


@cli.command()
def setup():
    """Run database migrations."""
    click.echo("Running database migrations...")
    _run_migrations()
    click.echo("Setup complete.")


def _run_migrations():
    """Run Alembic migrations using the Python API."""
    from alembic import command
    from alembic.config import Config

    # Look for alembic.ini in /app (Docker) or alongside this script (local)
    for candidate in ["/app/alembic.ini", os.path.join(os.path.dirname(__file__), "alembic.ini")]:
        if os.path.exists(candidate):
            alembic_cfg = Config(candidate)
            script_dir = os.path.join(os.path.dirname(candidate), "alembic")
            if os.path.isdir(script_dir):
                alembic_cfg.set_main_option("script_location", script_dir)
            db_url = os.environ.get("DATABASE_URL")
            if db_url:
                alembic_cfg.set_main_option("sqlalchemy.url", db_url)
            command.upgrade(alembic_cfg, "head")
            return

    click.echo("  Warning: alembic.ini not found, skipping migrations.")


# --- Reminders ---


async def _with_service(fn, use_redis: bool = False):
    """Build a ReminderService, run ``fn(service)`` and release its resources."""
    from modules.reminders.service import ReminderService
    from shared.config import get_settings
    from shared.database import dispose_engine, get_session_factory
    from shared.redis import close_redis, get_redis

    redis_client = await get_redis() if use_redis else None
    service = ReminderService.from_settings(get_settings(), get_session_factory(), redis=redis_client)
    try:
        return await fn(service)
    finally:
        await service.channel.close()
        if redis_client is not None:
            await close_redis()
        await dispose_engine()


def _call_service(fn, use_redis: bool = False):
    """Run fn against a service; reminders errors print and exit 1."""
    from modules.reminders.errors import ReminderError

    try:
        return run_async(_with_service(fn, use_redis=use_redis))
    except ReminderError as e:
        click.echo(f"Error: {e}")
        raise SystemExit(1)


def _echo_model(model, as_json: bool) -> bool:
    if as_json:
        click.echo(json.dumps(model.model_dump(mode="json"), indent=2))
    return as_json


@cli.group()
def reminders():
    """Daily reminder commands."""
    pass


@reminders.command("health")
def reminders_health():
    """Check the user store and the Telegram channel."""
    result = run_async(_with_service(lambda s: s.health_report()))
    click.echo(f"Database: {'OK' if result.store_ok else 'FAILED'}")
    click.echo(f"Telegram API: {'OK' if result.channel_ok else 'FAILED'}")
    if not result.healthy:
        raise SystemExit(1)


@reminders.command("broadcast")
@click.argument("text")
@click.option("--yes", is_flag=True, help="Skip the confirmation prompt")
def reminders_broadcast(text, yes):
    """Send TEXT to every user."""
    if not yes:
        click.confirm(f"Send to every user?\n\n{text}\n", abort=True)
    result = _call_service(lambda s: s.broadcast(text))
    click.echo(f"Sent: {result.sent}  Failed: {result.failed}")
    for failure in result.failures:
        click.echo(f"  {failure}")


@reminders.command("report")
@click.option("--limit", default=20, show_default=True, help="Max failing users to list")
@click.option("--json", "as_json", is_flag=True, help="Print as JSON")
def reminders_report(limit, as_json):
    """Show enabled users and recent delivery failures."""
    report = _call_service(lambda s: s.delivery_report(limit=limit))
    if _echo_model(report, as_json):
        return
    click.echo(f"Users with reminders enabled: {report.enabled_users}")
    if not report.failing:
        click.echo("No failing deliveries.")
    for item in report.failing:
        when = item.last_attempt_at.isoformat() if item.last_attempt_at else "never"
        click.echo(f"  {item.recipient_id} | {when} | {item.error}")


@reminders.command("tick")
def reminders_tick():
    """Run one scheduler tick for the current minute."""
    summary = run_async(_with_service(lambda s: s.run_tick(), use_redis=True))
    if summary.skipped:
        click.echo(f"Tick {summary.minute} UTC skipped: {summary.skipped}")
        return
    click.echo(f"Tick {summary.minute} UTC: due={summary.due} sent={summary.sent} failed={summary.failed}")


@reminders.group()
def schedule():
    """Inspect or change one user's reminder."""
    pass


def _echo_schedule(view) -> None:
    state = "on" if view.enabled else "off"
    click.echo(f"User {view.recipient_id}: reminders {state}")
    if view.display:
        click.echo(f"  Local: {view.display}  UTC: {view.utc_time}")


@schedule.command("get")
@click.argument("recipient_id", type=int)
def schedule_get(recipient_id):
    """Show RECIPIENT_ID's reminder settings."""
    from modules.reminders.errors import ProfileNotFound, ReminderError

    try:
        view = run_async(_with_service(lambda s: s.get_user_schedule(recipient_id)))
    except ProfileNotFound:
        click.echo(f"Error: No user found for {recipient_id}")
        raise SystemExit(1)
    except ReminderError as e:
        click.echo(f"Error: {e}")
        raise SystemExit(1)
    _echo_schedule(view)


@schedule.command("set")
@click.argument("recipient_id", type=int)
@click.option("--time", "local_time", default=None, help="Local time, HH:MM")
@click.option("--offset", "utc_offset", default=None, help="UTC offset, e.g. +2 or -5:30")
@click.option("--disable", is_flag=True, help="Turn reminders off")
def schedule_set(recipient_id, local_time, utc_offset, disable):
    """Change RECIPIENT_ID's reminder settings."""
    async def _update(service):
        return await service.update_user_schedule(
            recipient_id,
            enabled=not disable,
            local_time=local_time,
            utc_offset=utc_offset,
        )

    view = _call_service(_update)
    _echo_schedule(view)


if __name__ == "__main__":
    cli()
