"""Typer CLI for EventDesk."""

from __future__ import annotations

import json
from pathlib import Path

from sqlalchemy.exc import IntegrityError, OperationalError
import typer
import uvicorn

from .config import (
    DEFAULTS,
    load_settings,
    settings,
    settings_as_dict,
    update_config_file,
)
from .crud import create_user, get_user_by_email, rotate_session_token
from .database import get_session
from .scheduler import run_registration_sweep, start_scheduler, stop_scheduler
from .seed import seed_fake_data
from .storage import init_db, upgrade_database

app = typer.Typer(help="EventDesk command-line interface")
config_app = typer.Typer(help="Inspect or change the persistent configuration")
app.add_typer(config_app, name="config")


def _exit_if_readonly(exc: OperationalError, action: str) -> None:
    message = str(getattr(exc, "orig", exc)).lower()
    if "readonly" in message or "read-only" in message:
        typer.secho(
            f"Unable to {action} because the database is read-only. "
            f"Ensure write access to {settings.database_path}.",
            err=True,
            fg=typer.colors.RED,
        )
        raise typer.Exit(code=1)


@app.callback(invoke_without_command=True)
def main(ctx: typer.Context) -> None:
    """Show help when no subcommand is provided."""
    if ctx.invoked_subcommand is None:
        typer.echo(ctx.get_help())
        raise typer.Exit()


@app.command("upgrade-db")
def upgrade_db(
    no_backup: bool = typer.Option(
        False,
        "--no-backup",
        help="Skip creating a .bak copy of the database before upgrading",
    ),
) -> None:
    """Upgrade the SQLite database schema if needed."""
    try:
        actions = upgrade_database(make_backup=not no_backup)
    except OperationalError as exc:
        _exit_if_readonly(exc, "upgrade")
        raise

    if not actions:
        typer.echo("Database already up to date.")
        return

    typer.echo("Database upgrade complete:")
    for action in actions:
        typer.echo(f"- {action}")


@app.command("create-user")
def create_user_command(
    email: str = typer.Argument(..., help="Email address (unique)"),
    first_name: str = typer.Option(..., "--first-name", help="Given name"),
    last_name: str = typer.Option(..., "--last-name", help="Family name"),
) -> None:
    """Create a user and print their session token."""
    init_db()
    try:
        with get_session() as session:
            user = create_user(
                session, first_name=first_name, last_name=last_name, email=email
            )
            token = user.session_token
    except ValueError as exc:
        typer.secho(str(exc), err=True, fg=typer.colors.RED)
        raise typer.Exit(code=1)
    except IntegrityError:
        typer.secho(
            f"A user with email {email} already exists.", err=True, fg=typer.colors.RED
        )
        raise typer.Exit(code=1)
    typer.echo(token)


@app.command("rotate-user-token")
def rotate_user_token(
    email: str = typer.Argument(..., help="Email address of the user"),
) -> None:
    """Issue a new session token for a user, invalidating the old one."""
    init_db()
    try:
        with get_session() as session:
            user = get_user_by_email(session, email)
            if user is None:
                typer.secho(f"No user with email {email}.", err=True, fg=typer.colors.RED)
                raise typer.Exit(code=1)
            token = rotate_session_token(session, user)
    except OperationalError as exc:
        _exit_if_readonly(exc, "rotate the token")
        raise
    typer.echo(token)


@app.command("sweep")
def sweep() -> None:
    """Close registration on every open event whose window has passed."""
    init_db()
    closed = run_registration_sweep()
    typer.echo(f"Sweep complete: {closed} event(s) closed.")


@app.command("runserver")
def runserver(
    host: str = typer.Option(settings.app_host, "--host", help="Host to bind"),
    port: int = typer.Option(settings.app_port, "--port", help="Port to bind"),
):
    """Start FastAPI with APScheduler."""
    init_db()
    start_scheduler()
    config = uvicorn.Config(
        "eventdesk.api:app",
        host=host,
        port=port,
        reload=False,
        proxy_headers=True,
        forwarded_allow_ips="*",
    )
    server = uvicorn.Server(config)
    try:
        typer.echo(f"Starting EventDesk on {host}:{port}")
        server.run()
    finally:
        stop_scheduler()


@app.command("seed-data")
def seed_data(
    users: int = typer.Option(
        settings.seed_users, "--users", min=1, help="Number of users to create"
    ),
    events: int = typer.Option(
        settings.seed_events, "--events", min=0, help="Number of events to create"
    ),
    draft_percent: int = typer.Option(
        10,
        "--draft-percent",
        min=0,
        max=100,
        help="Percentage of events left as drafts (0-100)",
    ),
):
    """Populate the database with fake users, events and registrations."""
    stats = seed_fake_data(
        user_count=users, event_count=events, draft_percentage=draft_percent
    )
    typer.echo(
        f"Seed complete: {stats['users']} users, {stats['events']} events, "
        f"{stats['registrations']} registrations created."
    )


@config_app.command("show")
def config_show(
    config_path: Path | None = typer.Option(
        None, "--config-path", help="Path to eventdesk.toml (default: ./eventdesk.toml)"
    ),
) -> None:
    """Show the current effective configuration."""
    target_path = config_path or settings.config_path
    effective = settings_as_dict(load_settings(target_path))
    effective["config_path"] = str(target_path)
    typer.echo(json.dumps(effective, indent=2))


@config_app.command("set")
def config_set(
    pairs: list[str] = typer.Argument(..., help="KEY=VALUE pairs to persist"),
    config_path: Path | None = typer.Option(
        None, "--config-path", help="Path to eventdesk.toml (default: ./eventdesk.toml)"
    ),
) -> None:
    """Persist one or more settings to the TOML file."""
    updates: dict[str, str] = {}
    for pair in pairs:
        key, sep, value = pair.partition("=")
        key = key.strip().lower()
        if not sep or key not in DEFAULTS:
            typer.secho(
                f"Invalid setting {pair!r}; known keys: {', '.join(sorted(DEFAULTS))}",
                err=True,
                fg=typer.colors.RED,
            )
            raise typer.Exit(code=1)
        updates[key] = value.strip()

    target_path = config_path or settings.config_path
    try:
        update_config_file(updates, path=target_path)
    except ValueError as exc:
        typer.secho(f"Invalid value: {exc}", err=True, fg=typer.colors.RED)
        raise typer.Exit(code=1)
    typer.echo(f"Updated configuration in {target_path}")


if __name__ == "__main__":
    app()
