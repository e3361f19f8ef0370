"""
Administration Commands
=======================

Flask CLI commands for database setup and account maintenance.

Usage:
    loransems init-db
    loransems create-user admin --role admin --first-name Lina --last-name Haddad \
        --employee-code EMP001 --email lina@example.com --location-id 1 --department-id 4
    loransems unlock-user admin
    loransems purge-sessions
    loransems run
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Optional

import click
from flask import Flask
from flask.cli import FlaskGroup, with_appcontext

from loransems.core.auth.roles import Role
from loransems.db.base import UserExistsError
from loransems.utils.validators import ValidationError, validate_new_password, validate_new_username
from loransems.web.guards import get_services


@click.command("init-db")
@click.option("--no-seed", is_flag=True, help="Do not insert the default locations and departments.")
@with_appcontext
def init_db_command(no_seed: bool) -> None:
    """Create the schema if it does not exist."""
    get_services().backend.database.initialize(seed=not no_seed)
    click.echo("Database initialized.")


@click.command("create-user")
@click.argument("username")
@click.option("--password", prompt=True, hide_input=True, confirmation_prompt=True)
@click.option("--role", type=click.Choice([r.value for r in Role]), default=Role.EMPLOYEE.value,
              show_default=True)
@click.option("--employee-id", type=int, default=None,
              help="Attach the account to an existing employee instead of creating one.")
@click.option("--first-name", default="")
@click.option("--last-name", default="")
@click.option("--employee-code", default=None)
@click.option("--email", default=None)
@click.option("--location-id", type=int, default=1, show_default=True)
@click.option("--department-id", type=int, default=1, show_default=True)
@click.option("--position", default="Staff", show_default=True)
@with_appcontext
def create_user_command(
    username: str,
    password: str,
    role: str,
    employee_id: Optional[int],
    first_name: str,
    last_name: str,
    employee_code: Optional[str],
    email: Optional[str],
    location_id: int,
    department_id: int,
    position: str,
) -> None:
    """Create a login for USERNAME with an Argon2id password hash."""
    try:
        username = validate_new_username(username)
        validate_new_password(password)
    except ValidationError as e:
        raise click.BadParameter(str(e)) from e

    services = get_services()
    store = services.backend.credentials

    try:
        if employee_id is None:
            if not (first_name and last_name and employee_code and email):
                raise click.UsageError(
                    "--first-name, --last-name, --employee-code and --email are required "
                    "unless --employee-id is given"
                )
            employee_id = store.create_employee(
                employee_code, first_name, last_name, email,
                location_id, department_id, position,
            )
        user_id = store.create_user(
            employee_id, username, services.hasher.hash(password), role=role,
        )
    except UserExistsError as e:
        raise click.ClickException(str(e)) from e

    click.echo(f"Created user '{username}' (user_id={user_id}, role={role}).")


@click.command("unlock-user")
@click.argument("username")
@with_appcontext
def unlock_user_command(username: str) -> None:
    """Clear the lock flag and failed-attempt counter of USERNAME."""
    if not get_services().backend.credentials.unlock_user(username):
        raise click.ClickException(f"No such user: {username}")
    click.echo(f"Unlocked '{username}'.")


@click.command("purge-sessions")
@click.option("--older-than", type=int, default=None,
              help="Idle seconds after which a session is removed (default: session timeout).")
@with_appcontext
def purge_sessions_command(older_than: Optional[int]) -> None:
    """Delete stored sessions that are already past their idle timeout."""
    services = get_services()
    seconds = older_than if older_than is not None else services.config.security.session_timeout
    cutoff = datetime.now(timezone.utc) - timedelta(seconds=seconds)
    removed = services.backend.sessions.purge_expired(cutoff)
    click.echo(f"Removed {removed} expired session(s).")


def register_commands(app: Flask) -> None:
    for command in (init_db_command, create_user_command, unlock_user_command, purge_sessions_command):
        app.cli.add_command(command)


def _create_cli_app() -> Flask:
    from loransems.core.config import EMSConfig
    from loransems.core.logging import configure_logging
    from loransems.web.app import create_app

    config = EMSConfig.load()
    # The SQLite file and the log file live in these
    config.ensure_directories()
    configure_logging(config.logging, log_dir=config.paths.log_dir)
    return create_app(config)


def main() -> None:
    cli = FlaskGroup(create_app=_create_cli_app, help="Lorans Medical EMS authentication service.")
    cli.main(prog_name="loransems")
