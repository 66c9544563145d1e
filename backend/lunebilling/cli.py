# Overview: Flask CLI command groups for bootstrap, inspection, and maintenance.

# backend/lunebilling/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to wsgi.py (PowerShell: $env:FLASK_APP="wsgi.py").
# - Use: python -m flask <group> <command> [options]
#
# System bootstrap/repair:
# - python -m flask system init
#   Create all tables if missing (idempotent).
# - python -m flask system reset-db --yes
#   DEV/TEST only: drop and recreate all tables (deletes all data).
#
# User inspection/bootstrap:
# - python -m flask users list [--all]
#   List users with role and active status.
# - python -m flask users create --username admin --email admin@lune.local --password "secret1" --role admin
#   Create a user (prompts if options are omitted).
# - python -m flask users promote admin
#   Grant the admin role to an existing user.
#
# Demo data:
# - python -m flask usage generate-sample 3 --year 2026 --month 9 --per-day 10
#   Fill a month of button usage for a lune machine.
#
# Maintenance:
# - python -m flask maintenance cleanup-sessions --retention-days 30
#   Delete expired/revoked session tokens older than the retention window.
# - python -m flask maintenance cleanup-login-attempts --retention-days 30
#   Delete login attempt records older than the retention window.

import click
from flask.cli import with_appcontext

from .extensions import db
from .services import auth_service, login_throttle_service, session_service, usage_service
from .services.auth_service import AuthError, PasswordValidationError
from .validation import ValidationError
from .time_utils import utcnow


@click.group('system')
def system_group():
    """System bootstrap and repair commands."""


@system_group.command('init')
@with_appcontext
def init_system():
    """Create all tables that do not exist yet."""
    db.create_all()
    click.echo("PASS Database tables ready")


@system_group.command('reset-db')
@click.option('--yes', is_flag=True, help='Confirm destructive reset')
@with_appcontext
def reset_db(yes):
    """DEV/TEST only: drop and recreate every table."""
    if not yes:
        click.echo("FAIL Refusing to reset without --yes")
        raise SystemExit(1)
    db.drop_all()
    db.create_all()
    click.echo("PASS Database reset")


@click.group('users')
def users_group():
    """User inspection and bootstrap commands."""


@users_group.command('create')
@click.option('--username', prompt=True)
@click.option('--email', prompt=True)
@click.option('--password', prompt=True, hide_input=True, confirmation_prompt=True)
@click.option('--full-name', default=None)
@click.option('--role', type=click.Choice(['user', 'admin']), default=None,
              help='Defaults to the bootstrap rules (first user is admin)')
@with_appcontext
def create_user_cli(username, email, password, full_name, role):
    try:
        user = auth_service.create_user(username, email, password, full_name=full_name, role=role)
    except (AuthError, PasswordValidationError) as e:
        click.echo(f"FAIL {e}")
        raise SystemExit(1)
    click.echo(f"PASS Created user {user.username} (ID: {user.id}, role: {user.role})")


@users_group.command('list')
@click.option('--all', 'include_inactive', is_flag=True, help='Include deactivated users')
@with_appcontext
def list_users_cli(include_inactive):
    users = auth_service.list_users(include_inactive=include_inactive)
    if not users:
        click.echo("No users found.")
        return

    click.echo("\n" + "=" * 80)
    click.echo(f"{'ID':<6} {'Username':<20} {'Email':<32} {'Role':<8} {'Active':<6}")
    click.echo("=" * 80)
    for user in users:
        click.echo(f"{user.id:<6} {user.username:<20} {user.email:<32} {user.role:<8} {'yes' if user.is_active else 'no':<6}")
    click.echo("=" * 80 + "\n")


@users_group.command('promote')
@click.argument('username')
@with_appcontext
def promote_user_cli(username):
    try:
        user = auth_service.promote_user(username)
    except AuthError as e:
        click.echo(f"FAIL {e}")
        raise SystemExit(1)
    click.echo(f"PASS {user.username} is now an admin")


@click.group('usage')
def usage_group():
    """Button usage demo data."""


@usage_group.command('generate-sample')
@click.argument('device_id', type=int)
@click.option('--year', type=int, default=None)
@click.option('--month', type=int, default=None)
@click.option('--per-day', type=int, default=10, show_default=True)
@click.option('--seed', type=int, default=None)
@with_appcontext
def generate_sample_cli(device_id, year, month, per_day, seed):
    now = utcnow()
    try:
        created = usage_service.generate_sample_usage(
            device_id,
            year=year or now.year,
            month=month or now.month,
            records_per_day=per_day,
            seed=seed,
        )
    except (usage_service.UsageError, ValidationError) as e:
        click.echo(f"FAIL {e}")
        raise SystemExit(1)
    click.echo(f"PASS Generated {created} usage records for lune machine {device_id}")


@click.group('maintenance')
def maintenance_group():
    """Maintenance commands."""


@maintenance_group.command('cleanup-sessions')
@click.option('--retention-days', type=int, default=30, show_default=True)
@with_appcontext
def cleanup_sessions_cli(retention_days):
    """
    Cleanup expired and revoked session tokens.

    Default retention: 30 days.
    """
    deleted = session_service.cleanup_expired_sessions(retention_days=retention_days)
    click.echo(f"Deleted {deleted} session tokens older than {retention_days} days.")


@maintenance_group.command('cleanup-login-attempts')
@click.option('--retention-days', type=int, default=30, show_default=True)
@with_appcontext
def cleanup_login_attempts_cli(retention_days):
    """Delete login attempt records older than the retention window."""
    deleted = login_throttle_service.cleanup_login_attempts(retention_days=retention_days)
    click.echo(f"Deleted {deleted} login attempts older than {retention_days} days.")


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(system_group)
    app.cli.add_command(users_group)
    app.cli.add_command(usage_group)
    app.cli.add_command(maintenance_group)
