# Overview: Role permission checks and the security event audit trail.

"""
Permission Checking and Security Event Logging

Roles are a fixed set, so permissions resolve from the static role table in
branchpos.permissions rather than from database rows.

DESIGN PRINCIPLES:
- Fail closed: deny unless the role table grants the permission
- Log denials only: grants are not logged
- Tenant context: every event carries business_id and branch_id
"""

from datetime import timedelta

from flask import has_request_context, request

from ..extensions import db
from ..models import SecurityEvent
from ..permissions import PERMISSIONS, role_has_permission
from ..time_utils import utcnow


class PermissionDeniedError(Exception):
    """Raised when the actor's role lacks a required permission."""
    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message)
        self.details = details or {}


def _request_origin() -> tuple[str | None, str | None]:
    if not has_request_context():
        return None, None
    return request.remote_addr, request.headers.get("User-Agent")


def log_security_event(
    staff_id: int | None,
    event_type: str,
    success: bool,
    resource: str | None = None,
    action: str | None = None,
    reason: str | None = None,
    ip_address: str | None = None,
    user_agent: str | None = None,
    business_id: int | None = None,
    branch_id: int | None = None,
) -> SecurityEvent:
    """
    Log security event to audit trail with tenant context.

    When called inside a request, client IP and user agent default to the
    request's values.

    event_type examples:
    - LOGIN_FAILED
    - LOGIN_BRANCH_INACTIVE
    - LOGOUT
    - PERMISSION_DENIED
    - SCOPE_VIOLATION
    - CROSS_TENANT_ACCESS_DENIED
    - GATE_REDIRECT
    - UNKNOWN_PRODUCT
    """
    if ip_address is None and user_agent is None:
        ip_address, user_agent = _request_origin()

    event = SecurityEvent(
        staff_id=staff_id,
        business_id=business_id,
        branch_id=branch_id,
        event_type=event_type,
        resource=resource,
        action=action,
        success=success,
        reason=reason,
        ip_address=ip_address,
        user_agent=user_agent[:512] if user_agent else None,
        occurred_at=utcnow(),
    )

    db.session.add(event)
    db.session.commit()

    return event


def actor_has_permission(actor, permission_code: str) -> bool:
    return role_has_permission(actor.role, permission_code)


def require_permission(actor, permission_code: str, resource: str | None = None) -> None:
    """
    Require the actor's role to hold permission_code.

    Logs the denial and raises PermissionDeniedError.

    Usage:
        require_permission(g.actor, "PROCESS_SALE", resource="/api/sales")
    """
    if permission_code not in PERMISSIONS:
        raise KeyError(f"Unknown permission code: {permission_code}")

    if actor_has_permission(actor, permission_code):
        return

    log_security_event(
        staff_id=actor.staff_id,
        event_type="PERMISSION_DENIED",
        success=False,
        resource=resource,
        action=permission_code,
        reason=f"Missing permission: {permission_code}",
        business_id=actor.business_id,
        branch_id=actor.branch_id,
    )
    raise PermissionDeniedError(
        f"Permission denied: {permission_code}",
        details={"permission": permission_code},
    )


def cleanup_security_events(retention_days: int = 90) -> int:
    """Delete security events older than the retention window. Returns count deleted."""
    cutoff = utcnow() - timedelta(days=retention_days)
    deleted = db.session.query(SecurityEvent).filter(
        SecurityEvent.occurred_at < cutoff
    ).delete(synchronize_session=False)
    db.session.commit()
    return deleted
