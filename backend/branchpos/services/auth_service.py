# Overview: Staff accounts, credential hashing and authentication.

"""
Authentication and Staff Directory Service

WHY: Every sale and stock change must be attributable to a staff member,
and every staff member belongs to exactly one business.

SECURITY NOTES:
- Passwords hashed with bcrypt (cost factor 12)
- Minimum 8 characters, upper, lower, digit and special char required
- Session tokens managed separately (see session_service.py)
- Authentication rejects inactive staff and suspended businesses

ROLE RULES:
- Exactly one OWNER per business, created at registration, never pinned
- MANAGER, CASHIER and STAFF must be pinned to a branch of the same business
- ACCOUNTANT may be pinned or business-wide
- A manager may only create or edit CASHIER / STAFF members of their own branch
"""

from __future__ import annotations

import re

import bcrypt

from ..extensions import db
from ..models import Business, SessionToken, StaffMember
from ..permissions import MANAGER_ASSIGNABLE_ROLES, Role
from ..time_utils import utcnow
from ..validation import ConflictError, ValidationError, parse_optional_int
from ..visibility import Actor, require_visible, scope
from .permission_service import PermissionDeniedError, log_security_event, require_permission
from .tenant_service import ensure_staff_capacity, require_branch_in_business, validate_business_active


EMAIL_PATTERN = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")

# Roles that must always carry a branch assignment
BRANCH_PINNED_ROLES = frozenset({Role.MANAGER, Role.CASHIER, Role.STAFF})


class AuthError(Exception):
    """Base class for authentication failures. Both subclasses block session creation."""
    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message)
        self.details = details or {}


class InvalidCredentialError(AuthError):
    """Unknown email, wrong password, inactive staff or suspended business."""


class BranchInactiveError(AuthError):
    """The staff member's assigned branch is inactive; login is refused."""
    def __init__(self, branch_id: int, branch_name: str | None = None):
        self.branch_id = branch_id
        super().__init__(
            "Your branch is currently inactive",
            details={"branch_id": branch_id, "branch_name": branch_name},
        )


class PasswordValidationError(AuthError):
    """Raised when password doesn't meet strength requirements."""


def validate_password_strength(password: str) -> None:
    """
    Validate password meets strength requirements.

    Requirements:
    - Minimum 8 characters
    - At least one uppercase letter
    - At least one lowercase letter
    - At least one digit
    - At least one special character (!@#$%^&*(),.'":{}|<>)

    Raises PasswordValidationError if requirements not met.
    """
    if not isinstance(password, str):
        raise PasswordValidationError("Password is required")

    if len(password) < 8:
        raise PasswordValidationError("Password must be at least 8 characters long")

    if not re.search(r'[A-Z]', password):
        raise PasswordValidationError("Password must contain at least one uppercase letter")

    if not re.search(r'[a-z]', password):
        raise PasswordValidationError("Password must contain at least one lowercase letter")

    if not re.search(r'\d', password):
        raise PasswordValidationError("Password must contain at least one digit")

    if not re.search(r"[!@#$%^&*(),.'\":{}|<>]", password):
        raise PasswordValidationError("Password must contain at least one special character")


def hash_password(password: str) -> str:
    """
    Hash password using bcrypt with cost factor 12.

    Password is validated for strength before hashing.
    """
    validate_password_strength(password)
    salt = bcrypt.gensalt(rounds=12)
    hashed = bcrypt.hashpw(password.encode('utf-8'), salt)
    return hashed.decode('utf-8')


def verify_password(password: str, password_hash: str) -> bool:
    """Timing-safe bcrypt comparison. Malformed hashes never verify."""
    if not password or not password_hash:
        return False
    try:
        return bcrypt.checkpw(password.encode('utf-8'), password_hash.encode('utf-8'))
    except ValueError:
        return False


def normalize_email(email: str | None) -> str:
    value = (email or "").strip().lower()
    if not EMAIL_PATTERN.match(value) or len(value) > 255:
        raise ValidationError("A valid email address is required")
    return value


def validate_assignment(business_id: int, role: Role, branch_id: int | None) -> None:
    """Enforce the pinning rules for a role / branch pair."""
    if role == Role.OWNER:
        raise ValidationError("Each business has exactly one owner, created at registration")
    if role in BRANCH_PINNED_ROLES and branch_id is None:
        raise ValidationError(f"{role.value} must be assigned to a branch")
    if branch_id is not None:
        require_branch_in_business(branch_id, business_id)


def _require_manager_limits(actor: Actor, role: Role, branch_id: int | None) -> None:
    if actor.role != Role.MANAGER:
        return
    if role not in MANAGER_ASSIGNABLE_ROLES:
        raise PermissionDeniedError(
            "Managers can only assign cashier or staff roles",
            details={"role": role.value},
        )
    if branch_id != actor.branch_id:
        raise PermissionDeniedError(
            "Managers can only assign staff to their own branch",
            details={"branch_id": branch_id},
        )


def create_staff(
    actor: Actor,
    *,
    email: str,
    full_name: str,
    role,
    password: str,
    branch_id=None,
) -> StaffMember:
    """
    Create a staff member in the actor's business.

    New staff must change the issued credential at first login.

    Raises:
        PermissionDeniedError: actor lacks MANAGE_STAFF or exceeds manager limits
        ValidationError / PasswordValidationError: bad input
        ConflictError: email taken in this business, or plan staff cap reached
    """
    require_permission(actor, "MANAGE_STAFF", resource="/api/staff")

    try:
        target_role = Role.parse(role)
    except ValueError as exc:
        raise ValidationError(str(exc))
    target_branch_id = parse_optional_int(branch_id, "branch_id")
    normalized_email = normalize_email(email)
    full_name = (full_name or "").strip()
    if not full_name:
        raise ValidationError("full_name is required")

    _require_manager_limits(actor, target_role, target_branch_id)
    validate_assignment(actor.business_id, target_role, target_branch_id)

    business = validate_business_active(actor.business_id)
    ensure_staff_capacity(business)

    existing = db.session.query(StaffMember).filter_by(
        business_id=actor.business_id, email=normalized_email
    ).first()
    if existing:
        raise ConflictError("Email already exists in this business")

    staff = StaffMember(
        business_id=actor.business_id,
        branch_id=target_branch_id,
        email=normalized_email,
        full_name=full_name,
        role=target_role,
        password_hash=hash_password(password),
        must_change_credential=True,
        is_active=True,
    )
    db.session.add(staff)
    db.session.commit()
    return staff


def _load_staff_for_write(actor: Actor, staff_id: int) -> StaffMember:
    staff = db.session.get(StaffMember, staff_id)
    require_visible(actor, staff, action="write", resource="staff")
    if staff.role == Role.OWNER and actor.role != Role.OWNER:
        raise PermissionDeniedError("Only the owner can modify the owner account")
    if actor.role == Role.MANAGER and staff.role not in MANAGER_ASSIGNABLE_ROLES and staff.id != actor.staff_id:
        raise PermissionDeniedError("Managers can only modify cashier or staff accounts")
    return staff


def update_staff(actor: Actor, staff_id: int, patch: dict) -> StaffMember:
    """
    Reassign role / branch or rename a staff member in place.

    The owner's role and branch never change.
    """
    require_permission(actor, "MANAGE_STAFF", resource="/api/staff")
    if not isinstance(patch, dict):
        raise ValidationError("Invalid JSON payload")
    unknown = sorted(set(patch) - {"role", "branch_id", "full_name"})
    if unknown:
        raise ValidationError(f"Field not allowed: {unknown[0]}")

    staff = _load_staff_for_write(actor, staff_id)

    if "full_name" in patch:
        full_name = (patch["full_name"] or "").strip()
        if not full_name:
            raise ValidationError("full_name cannot be blank")
        staff.full_name = full_name

    if "role" in patch or "branch_id" in patch:
        if staff.role == Role.OWNER:
            raise ValidationError("The owner's role and branch cannot be changed")
        try:
            new_role = Role.parse(patch["role"]) if "role" in patch else staff.role
        except ValueError as exc:
            raise ValidationError(str(exc))
        new_branch_id = parse_optional_int(patch["branch_id"], "branch_id") if "branch_id" in patch else staff.branch_id

        _require_manager_limits(actor, new_role, new_branch_id)
        validate_assignment(actor.business_id, new_role, new_branch_id)

        staff.role = new_role
        staff.branch_id = new_branch_id

    db.session.commit()
    return staff


def deactivate_staff(actor: Actor, staff_id: int) -> StaffMember:
    """Soft-deactivate and revoke every open session. Historical sales keep the reference."""
    require_permission(actor, "MANAGE_STAFF", resource="/api/staff")
    staff = _load_staff_for_write(actor, staff_id)
    if staff.role == Role.OWNER:
        raise ValidationError("The owner account cannot be deactivated")
    if staff.id == actor.staff_id:
        raise ValidationError("You cannot deactivate your own account")

    now = utcnow()
    staff.is_active = False
    db.session.query(SessionToken).filter_by(staff_id=staff.id, is_revoked=False).update(
        {"is_revoked": True, "revoked_at": now, "revoked_reason": "Staff deactivated"},
        synchronize_session=False,
    )
    db.session.commit()
    return staff


def list_staff(actor: Actor, include_inactive: bool = False) -> list[StaffMember]:
    require_permission(actor, "VIEW_STAFF", resource="/api/staff")
    query = scope(actor).apply(db.session.query(StaffMember), StaffMember)
    if not include_inactive:
        query = query.filter(StaffMember.is_active.is_(True))
    return query.order_by(StaffMember.full_name, StaffMember.id).all()


def authenticate(email: str, password: str, business_id: int | None = None) -> StaffMember | None:
    """
    Authenticate staff by email and password.

    If business_id is given, authentication is scoped to that business.
    Otherwise each active account with that email is tried in id order.

    Returns StaffMember if credentials valid and the business is active,
    None otherwise. Branch status is checked by the caller (session gate).
    """
    email = (email or "").strip().lower()
    if not email or not password:
        return None

    query = db.session.query(StaffMember).filter(
        StaffMember.email == email,
        StaffMember.is_active.is_(True),
    )
    if business_id is not None:
        query = query.filter(StaffMember.business_id == business_id)

    for staff in query.order_by(StaffMember.id).all():
        business = db.session.get(Business, staff.business_id)
        if not business or not business.is_active:
            continue
        if verify_password(password, staff.password_hash):
            return staff

    return None


def record_failed_login(email: str, reason: str, business_id: int | None = None) -> None:
    log_security_event(
        staff_id=None,
        event_type="LOGIN_FAILED",
        success=False,
        resource="/api/auth/login",
        action="login",
        reason=f"{reason}: {(email or '')[:120]}",
        business_id=business_id,
    )
