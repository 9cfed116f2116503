"""
Tenant Directory: business registration, settings and tenant validation helpers

WHY: Every record belongs to exactly one business, and ids arriving from
client input must be checked against the caller's business before use.
Cross-tenant access attempts are logged as security events.

USAGE:
    from branchpos.services.tenant_service import require_branch_in_business

    branch = require_branch_in_business(branch_id, g.actor.business_id)
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import timedelta

from flask import current_app

from ..extensions import db
from ..models import Branch, Business, ReceiptSequence, StaffMember
from ..models.tenancy import BUSINESS_ACTIVE, BUSINESS_SUSPENDED
from ..permissions import Role
from ..time_utils import get_zone, utcnow
from ..validation import ConflictError, ValidationError, parse_int
from ..visibility import Actor, ScopeViolation
from .permission_service import log_security_event, require_permission


# Subscription plans and the caps they carry
PLAN_LIMITS = {
    "Free Trial": {"max_branches": 1, "max_staff": 5},
    "Basic": {"max_branches": 2, "max_staff": 10},
    "Pro": {"max_branches": 10, "max_staff": 50},
    "Enterprise": {"max_branches": 999, "max_staff": 999},
}
DEFAULT_PLAN = "Free Trial"

BUSINESS_SETTINGS_FIELDS = {
    "name",
    "currency",
    "timezone",
    "tax_enabled",
    "tax_name",
    "tax_rate_bps",
    "tax_inclusive",
}


class TenantAccessError(ScopeViolation):
    """Raised when cross-tenant access is attempted."""


@dataclass
class Registration:
    business: Business
    owner: StaffMember
    branch: Branch


def actor_for(staff: StaffMember) -> Actor:
    """Resolve a staff record to the immutable actor snapshot used for scoping."""
    return Actor.from_staff(staff)


def get_business(business_id: int) -> Business:
    business = db.session.get(Business, business_id)
    if business is None:
        raise TenantAccessError("Business not found")
    return business


def validate_business_active(business_id: int) -> Business:
    business = get_business(business_id)
    if not business.is_active:
        raise TenantAccessError("Business is not active")
    return business


def apply_plan(business: Business, plan: str) -> None:
    limits = PLAN_LIMITS.get(plan)
    if limits is None:
        raise ValidationError(f"Unknown subscription plan: {plan}")
    business.subscription_plan = plan
    business.max_branches = limits["max_branches"]
    business.max_staff = limits["max_staff"]


def register_business(
    *,
    business_name: str,
    owner_email: str,
    owner_name: str,
    password: str,
    branch_name: str = "Main Branch",
    branch_location: str | None = None,
    plan: str = DEFAULT_PLAN,
    currency: str | None = None,
    timezone: str | None = None,
) -> Registration:
    """
    Create a business, its owner and its first branch in one transaction.

    The owner is never branch-pinned and is not forced to rotate the
    credential chosen at registration.
    """
    from .auth_service import hash_password, normalize_email

    business_name = (business_name or "").strip()
    owner_name = (owner_name or "").strip()
    branch_name = (branch_name or "").strip()
    if not business_name:
        raise ValidationError("business_name is required")
    if not owner_name:
        raise ValidationError("owner_name is required")
    if not branch_name:
        raise ValidationError("branch_name is required")
    email = normalize_email(owner_email)

    config = current_app.config
    tz_name = timezone or config.get("DEFAULT_TIMEZONE", "Africa/Nairobi")
    if get_zone(tz_name).key != tz_name:
        raise ValidationError(f"Unknown timezone: {tz_name}")

    password_hash = hash_password(password)
    now = utcnow()

    business = Business(
        name=business_name,
        status=BUSINESS_ACTIVE,
        subscription_status="trial",
        trial_ends_at=now + timedelta(days=config.get("TRIAL_PERIOD_DAYS", 14)),
        currency=(currency or config.get("DEFAULT_CURRENCY", "KES")).upper(),
        timezone=tz_name,
    )
    apply_plan(business, plan)
    db.session.add(business)
    db.session.flush()

    branch = Branch(business_id=business.id, name=branch_name, location=branch_location)
    owner = StaffMember(
        business_id=business.id,
        branch_id=None,
        email=email,
        full_name=owner_name,
        role=Role.OWNER,
        password_hash=password_hash,
        must_change_credential=False,
        credential_changed_at=now,
        is_active=True,
    )
    db.session.add_all([branch, owner, ReceiptSequence(business_id=business.id, next_number=1)])
    db.session.flush()

    business.owner_id = owner.id
    db.session.commit()

    return Registration(business=business, owner=owner, branch=branch)


def update_business_settings(actor: Actor, patch: dict) -> Business:
    """Owner-only edits of name, currency, timezone and the tax rule."""
    require_permission(actor, "MANAGE_BUSINESS", resource="/api/business")
    if not isinstance(patch, dict):
        raise ValidationError("Invalid JSON payload")

    unknown = sorted(set(patch) - BUSINESS_SETTINGS_FIELDS)
    if unknown:
        raise ValidationError(f"Field not allowed: {unknown[0]}")

    business = validate_business_active(actor.business_id)

    if "name" in patch:
        name = str(patch["name"] or "").strip()
        if not name:
            raise ValidationError("name cannot be blank")
        business.name = name
    if "currency" in patch:
        currency = str(patch["currency"] or "").strip().upper()
        if not currency or len(currency) > 8:
            raise ValidationError("currency must be a short currency code")
        business.currency = currency
    if "timezone" in patch:
        tz_name = str(patch["timezone"] or "").strip()
        if get_zone(tz_name).key != tz_name:
            raise ValidationError(f"Unknown timezone: {tz_name}")
        business.timezone = tz_name
    for flag in ("tax_enabled", "tax_inclusive"):
        if flag in patch:
            if not isinstance(patch[flag], bool):
                raise ValidationError(f"{flag} must be true or false")
            setattr(business, flag, patch[flag])
    if "tax_name" in patch:
        tax_name = str(patch["tax_name"] or "").strip()
        if not tax_name or len(tax_name) > 32:
            raise ValidationError("tax_name must be 1-32 characters")
        business.tax_name = tax_name
    if "tax_rate_bps" in patch:
        bps = parse_int(patch["tax_rate_bps"], "tax_rate_bps")
        if bps < 0 or bps > 10000:
            raise ValidationError("tax_rate_bps must be between 0 and 10000")
        business.tax_rate_bps = bps

    db.session.commit()
    return business


def set_business_status(business_id: int, status: str) -> Business:
    """Soft-suspend or reactivate a business. Businesses are never deleted."""
    if status not in (BUSINESS_ACTIVE, BUSINESS_SUSPENDED):
        raise ValidationError(f"Invalid business status: {status}")
    business = get_business(business_id)
    business.status = status
    db.session.commit()
    return business


def _log_cross_tenant_attempt(reason: str, business_id: int | None, attempted_branch_id: int | None = None):
    log_security_event(
        staff_id=None,
        event_type="CROSS_TENANT_ACCESS_DENIED",
        success=False,
        resource="branch",
        action="access",
        reason=reason,
        business_id=business_id,
        branch_id=attempted_branch_id,
    )


def require_branch_in_business(branch_id: int, business_id: int) -> Branch:
    """
    Validate that a branch belongs to the business.

    Raises TenantAccessError for a missing branch and for another tenant's
    branch alike, so existence is not revealed.
    """
    branch = db.session.get(Branch, branch_id) if branch_id is not None else None

    if branch is None:
        _log_cross_tenant_attempt(f"Branch {branch_id} not found", business_id)
        raise TenantAccessError("Branch not found")

    if branch.business_id != business_id:
        _log_cross_tenant_attempt(
            f"Branch {branch_id} belongs to business {branch.business_id}, not {business_id}",
            business_id,
        )
        raise TenantAccessError("Branch not found")

    return branch


def get_business_branches(business_id: int) -> list[Branch]:
    return db.session.query(Branch).filter_by(business_id=business_id).order_by(Branch.name).all()


def count_active_staff(business_id: int) -> int:
    return db.session.query(StaffMember).filter_by(business_id=business_id, is_active=True).count()


def ensure_staff_capacity(business: Business) -> None:
    if count_active_staff(business.id) >= business.max_staff:
        raise ConflictError(
            f"Staff limit reached for the {business.subscription_plan} plan",
            details={"max_staff": business.max_staff},
        )


def ensure_branch_capacity(business: Business) -> None:
    count = db.session.query(Branch).filter_by(business_id=business.id).count()
    if count >= business.max_branches:
        raise ConflictError(
            f"Branch limit reached for the {business.subscription_plan} plan",
            details={"max_branches": business.max_branches},
        )
