# Overview: Flask CLI command groups for bootstrap, tenant administration, and maintenance.

# backend/branchpos/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to wsgi.py (PowerShell: $env:FLASK_APP="wsgi.py").
# - Use: python -m flask <group> <command> [options]
#
# System bootstrap/repair:
# - python -m flask system init-db
#   Create all tables (use `flask db upgrade` for migrated deployments).
# - python -m flask system reset-db --yes
#   DEV/TEST only: drop and recreate all tables (deletes all data).
# - python -m flask system cleanup-sessions
#   Delete expired or revoked sessions older than 30 days.
#
# Business management (MULTI-TENANT):
# - python -m flask business register --name "Duka Ltd" --owner-email owner@duka.test --owner-name "Amina" --password "Password123!"
#   Create a business with its owner and first branch.
# - python -m flask business list
# - python -m flask business suspend 1
# - python -m flask business reactivate 1
#
# Staff:
# - python -m flask staff list --business-id 1
# - python -m flask staff create --business-id 1 --email c@duka.test --name "Cashier" --role cashier --branch-id 1 --password "Password123!"
#   Created as the business owner; the new account must change its password at first login.
#
# Branches:
# - python -m flask branches list --business-id 1
# - python -m flask branches deactivate --business-id 1 2
# - python -m flask branches reactivate --business-id 1 2
#
# Maintenance:
# - python -m flask maintenance cleanup-security-events --retention-days 90

import click
from flask.cli import with_appcontext

from .extensions import db
from .models import Business, StaffMember
from .services import branch_service, permission_service, session_service, tenant_service
from .services.auth_service import PasswordValidationError, create_staff
from .services.branch_service import BranchError
from .validation import ConflictError, ValidationError


def _owner_actor(business_id: int):
    business = db.session.get(Business, business_id)
    if business is None:
        raise click.ClickException(f"Business {business_id} not found")
    owner = db.session.get(StaffMember, business.owner_id) if business.owner_id else None
    if owner is None:
        raise click.ClickException(f"Business {business_id} has no owner account")
    return tenant_service.actor_for(owner)


@click.group('system')
def system_group():
    """System bootstrap and repair commands."""


@system_group.command('init-db')
@with_appcontext
def init_db():
    """Create all tables that do not exist yet."""
    db.create_all()
    click.echo("PASS Database tables created")


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


@system_group.command('cleanup-sessions')
@with_appcontext
def cleanup_sessions():
    deleted = session_service.cleanup_expired_sessions()
    click.echo(f"Deleted {deleted} expired or revoked sessions.")


@click.group('business')
def business_group():
    """Business (tenant) management commands."""


@business_group.command('register')
@click.option('--name', required=True)
@click.option('--owner-email', required=True)
@click.option('--owner-name', required=True)
@click.option('--password', prompt=True, hide_input=True, confirmation_prompt=True)
@click.option('--branch-name', default='Main Branch', show_default=True)
@click.option('--plan', default=tenant_service.DEFAULT_PLAN, show_default=True,
              type=click.Choice(sorted(tenant_service.PLAN_LIMITS)))
@click.option('--currency', default=None)
@click.option('--timezone', default=None)
@with_appcontext
def register_business_cli(name, owner_email, owner_name, password, branch_name, plan, currency, timezone):
    """Create a business, its owner and its first branch."""
    try:
        registration = tenant_service.register_business(
            business_name=name,
            owner_email=owner_email,
            owner_name=owner_name,
            password=password,
            branch_name=branch_name,
            plan=plan,
            currency=currency,
            timezone=timezone,
        )
    except (ValidationError, PasswordValidationError) as e:
        raise click.ClickException(str(e))

    click.echo(f"PASS Created business: {registration.business.name} (ID: {registration.business.id})")
    click.echo(f"     Owner: {registration.owner.email} (ID: {registration.owner.id})")
    click.echo(f"     Branch: {registration.branch.name} (ID: {registration.branch.id})")


@business_group.command('list')
@with_appcontext
def list_businesses():
    businesses = db.session.query(Business).order_by(Business.id).all()
    if not businesses:
        click.echo("No businesses found.")
        return
    for b in businesses:
        click.echo(
            f"  {b.id}: {b.name} [{b.status}] plan={b.subscription_plan} "
            f"currency={b.currency} tz={b.timezone}"
        )


@business_group.command('suspend')
@click.argument('business_id', type=int)
@with_appcontext
def suspend_business(business_id):
    """Suspend a business. Its sessions stop validating immediately."""
    try:
        business = tenant_service.set_business_status(business_id, "suspended")
    except tenant_service.TenantAccessError as e:
        raise click.ClickException(str(e))
    click.echo(f"PASS Business {business.id} suspended")


@business_group.command('reactivate')
@click.argument('business_id', type=int)
@with_appcontext
def reactivate_business(business_id):
    try:
        business = tenant_service.set_business_status(business_id, "active")
    except tenant_service.TenantAccessError as e:
        raise click.ClickException(str(e))
    click.echo(f"PASS Business {business.id} reactivated")


@click.group('staff')
def staff_group():
    """Staff account commands."""


@staff_group.command('list')
@click.option('--business-id', type=int, required=True)
@click.option('--all', 'show_all', is_flag=True, help='Include inactive accounts')
@with_appcontext
def list_staff_cli(business_id, show_all):
    query = db.session.query(StaffMember).filter_by(business_id=business_id)
    if not show_all:
        query = query.filter(StaffMember.is_active.is_(True))
    staff = query.order_by(StaffMember.id).all()
    if not staff:
        click.echo("No staff found.")
        return
    for s in staff:
        status = "active" if s.is_active else "inactive"
        branch = s.branch_id if s.branch_id is not None else "-"
        click.echo(f"  {s.id}: {s.email} ({s.full_name}) role={s.role.value} branch={branch} [{status}]")


@staff_group.command('create')
@click.option('--business-id', type=int, required=True)
@click.option('--email', required=True)
@click.option('--name', 'full_name', required=True)
@click.option('--role', required=True)
@click.option('--branch-id', type=int, default=None)
@click.option('--password', prompt=True, hide_input=True, confirmation_prompt=True)
@with_appcontext
def create_staff_cli(business_id, email, full_name, role, branch_id, password):
    """Create a staff account on behalf of the business owner."""
    actor = _owner_actor(business_id)
    try:
        staff = create_staff(
            actor,
            email=email,
            full_name=full_name,
            role=role,
            password=password,
            branch_id=branch_id,
        )
    except (ValidationError, ConflictError, PasswordValidationError, tenant_service.TenantAccessError) as e:
        raise click.ClickException(str(e))
    click.echo(f"PASS Created staff: {staff.email} (ID: {staff.id}) role={staff.role.value}")


@click.group('branches')
def branches_group():
    """Branch commands, run as the business owner."""


@branches_group.command('list')
@click.option('--business-id', type=int, required=True)
@with_appcontext
def list_branches_cli(business_id):
    branches = tenant_service.get_business_branches(business_id)
    if not branches:
        click.echo("No branches found.")
        return
    for b in branches:
        click.echo(f"  {b.id}: {b.name} [{b.status}] {b.location or ''}".rstrip())


@branches_group.command('deactivate')
@click.option('--business-id', type=int, required=True)
@click.argument('branch_id', type=int)
@with_appcontext
def deactivate_branch_cli(business_id, branch_id):
    actor = _owner_actor(business_id)
    try:
        branch = branch_service.deactivate_branch(actor, branch_id)
    except (BranchError, tenant_service.TenantAccessError) as e:
        raise click.ClickException(str(e))
    click.echo(f"PASS Branch {branch.id} ({branch.name}) deactivated")


@branches_group.command('reactivate')
@click.option('--business-id', type=int, required=True)
@click.argument('branch_id', type=int)
@with_appcontext
def reactivate_branch_cli(business_id, branch_id):
    actor = _owner_actor(business_id)
    try:
        branch = branch_service.reactivate_branch(actor, branch_id)
    except (BranchError, tenant_service.TenantAccessError) as e:
        raise click.ClickException(str(e))
    click.echo(f"PASS Branch {branch.id} ({branch.name}) reactivated")


@click.group('maintenance')
def maintenance_group():
    """Maintenance commands."""


@maintenance_group.command('cleanup-security-events')
@click.option('--retention-days', type=int, default=90, show_default=True)
@with_appcontext
def cleanup_security_events_cli(retention_days):
    """
    Cleanup old security events.

    Default retention: 90 days.
    """
    deleted = permission_service.cleanup_security_events(retention_days=retention_days)
    click.echo(f"Deleted {deleted} security events older than {retention_days} days.")


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(system_group)
    app.cli.add_command(business_group)
    app.cli.add_command(staff_group)
    app.cli.add_command(branches_group)
    app.cli.add_command(maintenance_group)
