# Overview: Flask CLI command groups for bootstrap, inspection, and maintenance.

# backend/fleetguard/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to fleetguard (PowerShell: $env:FLASK_APP="fleetguard").
# - Use: python -m flask <group> <command> [options]
#
# System bootstrap/repair:
# - python -m flask system init
#   Idempotent bootstrap: creates tables and the reserved system actor.
# - python -m flask system reset-db --yes
#   DEV/TEST only: drop and recreate all tables (deletes all data).
#
# Tenant management:
# - python -m flask tenants list
#   List all companies with owner and member counts.
# - python -m flask tenants create --name "Acme" --contact-email ops@acme.com --owner-email owner@acme.com
#   Create a company owned by an existing user (owner becomes admin).
# - python -m flask tenants seed-permissions --company-id 1
#   Seed or refresh the default permission grants of a company.
#
# User inspection/bootstrap:
# - python -m flask users list
#   List all users with their memberships.
# - python -m flask users create --email owner@acme.com --password "Password123!"
#   Create a verified account directly (domain auto-link applies).
# - python -m flask users set-override owner@acme.com --enable
#   Grant or revoke cross-tenant access (attributed to the system actor).
# - python -m flask users promote owner@acme.com
#   Run the admin promotion for a user.
#
# Maintenance:
# - python -m flask maintenance cleanup-verifications
#   Delete unconsumed verification tokens past their expiry.
# - python -m flask maintenance cleanup-sessions
#   Delete expired or revoked sessions older than 30 days.

import click
from flask.cli import with_appcontext

from .extensions import db
from .errors import AuthzError
from .models import Company, Membership, User, new_identity
from .services import (
    audit_service,
    permission_service,
    provisioning_service,
    session_service,
    tenant_service,
    user_service,
    verification_service,
)
from .services.auth_service import hash_password
from .validation import ValidationError, normalize_email


def _user_by_email(email: str) -> User | None:
    try:
        email = normalize_email(email)
    except ValidationError:
        return None
    return db.session.query(User).filter_by(email=email).first()


@click.group('system')
def system_group():
    """System bootstrap and repair commands."""


@system_group.command('init')
@with_appcontext
def init_system():
    """
    Initialize the FleetGuard store.

    Creates:
    - All tables (no-op for tables that exist)
    - The reserved system actor used for non-interactive audit attribution
    """
    click.echo("START Initializing FleetGuard...")
    db.create_all()
    actor = audit_service.get_system_actor()
    click.echo(f"PASS System actor: {actor.email} (ID: {actor.id})")
    click.echo("DONE FleetGuard initialized")


@system_group.command('reset-db')
@click.option('--yes', is_flag=True, help='Confirm destructive reset')
@with_appcontext
def reset_db(yes):
    """DEV/TEST only: drop and recreate all tables."""
    if not yes:
        click.echo("FAIL Refusing to reset without --yes")
        return
    db.drop_all()
    db.create_all()
    click.echo("PASS Database reset")


@click.group('tenants')
def tenants_group():
    """Tenant (company) management commands."""


@tenants_group.command('list')
@with_appcontext
def list_tenants():
    companies = db.session.query(Company).order_by(Company.id).all()
    if not companies:
        click.echo("No companies found.")
        return

    click.echo("\n" + "="*90)
    click.echo(f"{'ID':<5} {'Name':<30} {'Contact':<30} {'Active':<8} {'Members'}")
    click.echo("="*90)
    for company in companies:
        members = db.session.query(Membership).filter_by(company_id=company.id).count()
        active_str = "yes" if company.is_active else "no"
        click.echo(f"{company.id:<5} {company.name:<30} {company.contact_email:<30} {active_str:<8} {members}")
    click.echo("="*90 + "\n")


@tenants_group.command('create')
@click.option('--name', required=True, help='Company name')
@click.option('--contact-email', required=True, help='Company contact email')
@click.option('--owner-email', required=True, help='Email of an existing user who will own the company')
@click.option('--industry', default=None, help='Industry')
@with_appcontext
def create_tenant(name, contact_email, owner_email, industry):
    owner = _user_by_email(owner_email)
    if owner is None:
        click.echo(f"FAIL No user with email {owner_email}")
        return
    try:
        company = tenant_service.create_company(owner, name, contact_email, industry=industry)
    except ValidationError as e:
        click.echo(f"FAIL {e}")
        return
    click.echo(f"PASS Created company: {company.name} (ID: {company.id}, owner: {owner.email})")


@tenants_group.command('seed-permissions')
@click.option('--company-id', type=int, required=True, help='Company ID')
@with_appcontext
def seed_permissions(company_id):
    try:
        inserted = permission_service.seed_default_grants(company_id)
    except AuthzError as e:
        click.echo(f"FAIL {e.message}")
        return
    click.echo(f"PASS Seeded company {company_id}: {inserted} new grants")


@click.group('users')
def users_group():
    """User inspection and bootstrap commands."""


@users_group.command('list')
@click.option('--include-system', is_flag=True, help='Include the system actor')
@with_appcontext
def list_users(include_system):
    users = user_service.list_users(include_system=include_system)
    if not users:
        click.echo("No users found.")
        return

    for user in users:
        memberships = ", ".join(
            f"{m.company_id}:{m.role}" for m in db.session.query(Membership).filter_by(user_id=user.id).all()
        ) or "-"
        override = " [override]" if user.global_override else ""
        click.echo(f"{user.email:<35} {user.role:<8} {user.status:<9} {memberships}{override}")


@users_group.command('create')
@click.option('--email', required=True)
@click.option('--password', prompt=True, hide_input=True, confirmation_prompt=True)
@click.option('--first-name', default=None)
@click.option('--last-name', default=None)
@with_appcontext
def create_user_cli(email, password, first_name, last_name):
    """Create a verified account without the email round trip."""
    if _user_by_email(email) is not None:
        click.echo(f"WARN  User {email} already exists, skipping")
        return
    try:
        profile = {
            "first_name": first_name,
            "last_name": last_name,
            "password_hash": hash_password(password),
        }
        user = provisioning_service.provision_new_account(new_identity(), email, profile)
    except (AuthzError, ValidationError) as e:
        click.echo(f"FAIL {e}")
        return
    click.echo(f"PASS Created user: {user.email} (ID: {user.id}, role: {user.role})")


@users_group.command('set-override')
@click.argument('email')
@click.option('--enable/--disable', default=True, help='Grant or revoke global override')
@with_appcontext
def set_override(email, enable):
    user = _user_by_email(email)
    if user is None:
        click.echo(f"FAIL No user with email {email}")
        return
    try:
        user_service.set_global_override(user.id, enable)
    except AuthzError as e:
        click.echo(f"FAIL {e.message}")
        return
    state = "enabled" if enable else "disabled"
    click.echo(f"PASS Global override {state} for {user.email}")


@users_group.command('promote')
@click.argument('email')
@with_appcontext
def promote_user(email):
    user = _user_by_email(email)
    if user is None:
        click.echo(f"FAIL No user with email {email}")
        return
    result = provisioning_service.promote_to_admin(user.id)
    if result.success:
        suffix = " (already admin)" if result.already_admin else ""
        click.echo(f"PASS {user.email} is admin of company {result.company_id}{suffix}")
    else:
        click.echo(f"FAIL {result.reason}")


@click.group('maintenance')
def maintenance_group():
    """Maintenance commands."""


@maintenance_group.command('cleanup-verifications')
@with_appcontext
def cleanup_verifications_cli():
    deleted = verification_service.cleanup_expired_verifications()
    click.echo(f"Deleted {deleted} expired verification tokens.")


@maintenance_group.command('cleanup-sessions')
@with_appcontext
def cleanup_sessions_cli():
    deleted = session_service.cleanup_expired_sessions()
    click.echo(f"Deleted {deleted} expired or revoked sessions.")


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(system_group)
    app.cli.add_command(tenants_group)
    app.cli.add_command(users_group)
    app.cli.add_command(maintenance_group)
