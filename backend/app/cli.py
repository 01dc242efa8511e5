# Overview: Flask CLI command groups for bootstrap, tag provisioning, and maintenance.

# backend/app/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to wsgi.py (PowerShell: $env:FLASK_APP="wsgi.py").
# - Use: python -m flask <group> <command> [options]
#
# System bootstrap/repair:
# - python -m flask system init [--admin-email admin@grocery.local --admin-password "Password123!"]
#   Idempotent bootstrap: creates tables and a first admin user.
# - python -m flask system reset-db --yes
#   DEV/TEST only: drop and recreate all tables (deletes all data).
#
# Users:
# - python -m flask users list
#   List all users with role and active status.
# - python -m flask users create --email someone@example.com --password "Password123!" [--role admin]
#   Create a user (prompts if options are omitted).
# - python -m flask users promote someone@example.com
#   Give an existing user the admin role.
#
# Tags:
# - python -m flask tags create-batch --slug store-12 --name "Store 12"
#   Create a tag batch (one print run).
# - python -m flask tags generate store-12 --count 50 [--label "Dairy aisle"]
#   Mint tags in a batch and print their URLs.
# - python -m flask tags list [--batch store-12]
#   List tags with status and tap counts.
#
# Maintenance:
# - python -m flask maintenance cleanup-sessions
#   Delete expired/revoked sessions older than 30 days.
# - python -m flask maintenance cleanup-rate-limits
#   Delete expired rate-limit buckets.
# - python -m flask maintenance cleanup-security-events --retention-days 90
#   Delete security events older than the retention window.

import click
from flask import current_app
from flask.cli import with_appcontext

from .extensions import db
from .models import NfcTag, TapEvent, User
from .services import audit_service, rate_limit_service, session_service, tag_service
from .services.auth_service import PasswordValidationError, create_user, get_user_by_email, set_role
from .validation import ConflictError, NotFoundError, ValidationError


def _tag_url(tag: NfcTag) -> str:
    base = (current_app.config.get("PUBLIC_BASE_URL") or "").rstrip("/")
    return f"{base}{tag_service.tag_path(tag)}"


@click.group('system')
def system_group():
    """System bootstrap and repair commands."""


@system_group.command('init')
@click.option('--admin-email', default='admin@grocery.local', show_default=True, help='First admin email')
@click.option('--admin-password', default='Password123!', show_default=True, help='First admin password')
@with_appcontext
def init_system(admin_email, admin_password):
    """
    Create all tables and a first admin user.

    SECURITY: Change the default password immediately in production!
    """
    click.echo("START Initializing grocery tap service...")
    db.create_all()
    click.echo("PASS Tables ready")

    existing = get_user_by_email(admin_email)
    if existing:
        if not existing.is_admin:
            set_role(existing, "admin")
        click.echo(f"PASS Using existing admin: {existing.email} (ID: {existing.id})")
        return

    try:
        user = create_user(admin_email, admin_password, name="Administrator", role="admin")
    except (ValueError, PasswordValidationError) as e:
        click.echo(f"FAIL Could not create admin: {e}")
        return
    click.echo(f"PASS Created admin: {user.email} (ID: {user.id})")


@system_group.command('reset-db')
@click.option('--yes', is_flag=True, help='Skip confirmation')
@with_appcontext
def reset_db(yes):
    """
    DANGER: Drop all tables and recreate schema.

    This will DELETE ALL DATA!
    """
    if not yes:
        click.confirm("WARN This will DELETE ALL DATA. Are you sure?", abort=True)

    click.echo("DELETE  Dropping all tables...")
    db.drop_all()

    click.echo("BUILD  Creating all tables...")
    db.create_all()

    click.echo("PASS Database reset complete. Run 'python -m flask system init' to bootstrap.")


@click.group('users')
def users_group():
    """User inspection and bootstrap commands."""


@users_group.command('list')
@with_appcontext
def list_users():
    users = db.session.query(User).order_by(User.id).all()
    if not users:
        click.echo("No users found.")
        return
    for user in users:
        status = "active" if user.is_active else "inactive"
        click.echo(f"{user.id:>5}  {user.email:<40} {user.role:<6} {status}")


@users_group.command('create')
@click.option('--email', prompt=True, help='Email address')
@click.option('--password', prompt=True, hide_input=True, confirmation_prompt=True, help='Password')
@click.option('--name', default=None, help='Display name')
@click.option('--role', type=click.Choice(['user', 'admin']), default='user', show_default=True)
@with_appcontext
def create_user_cli(email, password, name, role):
    """
    Create a new user.

    Password must meet strength requirements:
    - Minimum 8 characters
    - At least one uppercase letter
    - At least one lowercase letter
    - At least one digit
    - At least one special character
    """
    try:
        user = create_user(email, password, name=name, role=role)
    except PasswordValidationError as e:
        click.echo(f"FAIL Password validation failed: {e}")
        return
    except ValueError as e:
        click.echo(f"FAIL {e}")
        return
    click.echo(f"PASS Created user {user.email} (ID: {user.id}, role: {user.role})")


@users_group.command('promote')
@click.argument('email')
@with_appcontext
def promote_user_cli(email):
    """Give an existing user the admin role."""
    user = get_user_by_email(email)
    if not user:
        click.echo(f"FAIL User {email} not found")
        return
    set_role(user, "admin")
    click.echo(f"PASS {user.email} is now an admin")


@click.group('tags')
def tags_group():
    """Tag batch provisioning commands."""


@tags_group.command('create-batch')
@click.option('--slug', prompt=True, help='URL slug (lowercase, digits, dashes)')
@click.option('--name', prompt=True, help='Display name')
@click.option('--description', default=None)
@with_appcontext
def create_batch_cli(slug, name, description):
    try:
        batch = tag_service.create_batch(slug, name, description)
    except (ValidationError, ConflictError) as e:
        click.echo(f"FAIL {e}")
        return
    click.echo(f"PASS Created batch {batch.slug} (ID: {batch.id})")


@tags_group.command('generate')
@click.argument('batch_slug')
@click.option('--count', type=int, default=1, show_default=True)
@click.option('--label', default=None, help='Label prefix for the new tags')
@with_appcontext
def generate_tags_cli(batch_slug, count, label):
    """Mint tags and print the URL to write onto each one."""
    try:
        tags = tag_service.generate_tags(batch_slug, count, label)
    except (ValidationError, NotFoundError) as e:
        click.echo(f"FAIL {e}")
        return
    for tag in tags:
        click.echo(f"{tag.public_uuid}  {_tag_url(tag)}  {tag.label or ''}".rstrip())
    click.echo(f"PASS Generated {len(tags)} tags in {batch_slug}")


@tags_group.command('list')
@click.option('--batch', 'batch_slug', default=None)
@with_appcontext
def list_tags_cli(batch_slug):
    try:
        tags = tag_service.list_tags(batch_slug=batch_slug)
    except NotFoundError as e:
        click.echo(f"FAIL {e}")
        return
    for tag in tags:
        taps = tag.tap_events.filter(TapEvent.is_duplicate == False).count()  # noqa: E712
        click.echo(f"{tag.public_uuid}  {tag.status:<8} taps={taps:<6} {tag.label or ''}".rstrip())


@click.group('maintenance')
def maintenance_group():
    """Maintenance commands."""


@maintenance_group.command('cleanup-sessions')
@with_appcontext
def cleanup_sessions_cli():
    deleted = session_service.cleanup_expired_sessions()
    click.echo(f"Deleted {deleted} expired or revoked sessions.")


@maintenance_group.command('cleanup-rate-limits')
@with_appcontext
def cleanup_rate_limits_cli():
    deleted = rate_limit_service.cleanup_expired()
    click.echo(f"Deleted {deleted} expired rate-limit buckets.")


@maintenance_group.command('cleanup-security-events')
@click.option('--retention-days', type=int, default=90, show_default=True)
@with_appcontext
def cleanup_security_events_cli(retention_days):
    """
    Cleanup old security events.

    Default retention: 90 days.
    """
    deleted = audit_service.cleanup_security_events(retention_days=retention_days)
    click.echo(f"Deleted {deleted} security events older than {retention_days} days.")


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(system_group)
    app.cli.add_command(users_group)
    app.cli.add_command(tags_group)
    app.cli.add_command(maintenance_group)
