# Overview: Session tokens, login and credential rotation feeding the session gate.

"""
Session Token Management Service

WHY: Secure session management with automatic timeout and revocation.
Tokens are cryptographically secure, hashed in database, and time-limited.

Staff, business and branch rows are re-read on every validation, so a branch
deactivated mid-session blocks its pinned staff at their next request.

SECURITY FEATURES:
- Cryptographically secure random tokens (32 bytes)
- Tokens hashed with SHA-256 before storage
- 24-hour absolute timeout, 2-hour idle timeout (configurable)
- Revocable on logout, credential change and staff deactivation
- Tenant context (business_id) is fixed for the session lifetime
"""

from __future__ import annotations

import hashlib
import secrets
from dataclasses import dataclass
from datetime import timedelta

from flask import current_app

from ..extensions import db
from ..models import Branch, Business, SessionToken, StaffMember
from ..permissions import Role
from ..time_utils import utcnow
from ..visibility import Actor
from .auth_service import (
    BranchInactiveError,
    InvalidCredentialError,
    PasswordValidationError,
    authenticate,
    hash_password,
    record_failed_login,
    verify_password,
)
from .permission_service import log_security_event
from .session_gate import SessionEvent, SessionSnapshot, SessionState, resolve_state, transition


@dataclass
class SessionContext:
    """
    Complete session context returned by validate_session.

    actor is the frozen scoping snapshot; snapshot feeds the session gate.
    """
    staff: StaffMember
    session: SessionToken
    actor: Actor
    snapshot: SessionSnapshot

    @property
    def state(self) -> SessionState:
        return resolve_state(self.snapshot)


@dataclass
class LoginResult:
    session: SessionToken
    token: str
    state: SessionState
    staff: StaffMember


def _absolute_timeout() -> timedelta:
    return timedelta(hours=current_app.config.get("SESSION_ABSOLUTE_TIMEOUT_HOURS", 24))


def _idle_timeout() -> timedelta:
    return timedelta(hours=current_app.config.get("SESSION_IDLE_TIMEOUT_HOURS", 2))


def generate_token() -> str:
    """64-character hex string (32 bytes of entropy). Sent to the client, never stored."""
    return secrets.token_hex(32)


def hash_token(token: str) -> str:
    """
    Hash token for database storage using SHA-256.

    Tokens are already high-entropy, so a fast hash is sufficient.
    """
    return hashlib.sha256(token.encode('utf-8')).hexdigest()


def _branch_active(staff: StaffMember) -> bool:
    if staff.branch_id is None:
        return True
    branch = db.session.get(Branch, staff.branch_id)
    return branch is not None and branch.is_active


def snapshot_for(staff: StaffMember) -> SessionSnapshot:
    return SessionSnapshot(
        authenticated=True,
        role=staff.role,
        must_change_credential=bool(staff.must_change_credential),
        branch_active=_branch_active(staff),
    )


def create_session(
    staff: StaffMember,
    user_agent: str | None = None,
    ip_address: str | None = None,
) -> tuple[SessionToken, str]:
    """
    Create a session token for staff with tenant context.

    Returns (session_record, plaintext_token). The database stores only the hash.
    """
    plaintext_token = generate_token()
    now = utcnow()

    session = SessionToken(
        staff_id=staff.id,
        business_id=staff.business_id,
        branch_id=staff.branch_id,
        token_hash=hash_token(plaintext_token),
        created_at=now,
        last_used_at=now,
        expires_at=now + _absolute_timeout(),
        user_agent=user_agent[:512] if user_agent else None,
        ip_address=ip_address,
        is_revoked=False,
    )

    db.session.add(session)
    db.session.commit()

    return session, plaintext_token


def login(
    email: str,
    password: str,
    business_id: int | None = None,
    *,
    user_agent: str | None = None,
    ip_address: str | None = None,
) -> LoginResult:
    """
    Authenticate and open a session.

    Raises:
        InvalidCredentialError: bad credentials, inactive staff, suspended business
        BranchInactiveError: a non-owner's branch is inactive; no session is created
    """
    staff = authenticate(email, password, business_id=business_id)
    if staff is None:
        record_failed_login(email, "Invalid credentials", business_id=business_id)
        raise InvalidCredentialError("Invalid email or password")

    if staff.role != Role.OWNER and not _branch_active(staff):
        transition(SessionState.UNAUTHENTICATED, SessionEvent.LOGIN_BRANCH_INACTIVE)
        branch = db.session.get(Branch, staff.branch_id)
        log_security_event(
            staff_id=staff.id,
            event_type="LOGIN_BRANCH_INACTIVE",
            success=False,
            resource="/api/auth/login",
            action="login",
            reason=f"Branch {staff.branch_id} is inactive",
            business_id=staff.business_id,
            branch_id=staff.branch_id,
        )
        raise BranchInactiveError(staff.branch_id, branch.name if branch else None)

    event = (
        SessionEvent.LOGIN_REQUIRES_CREDENTIAL_CHANGE
        if staff.must_change_credential
        else SessionEvent.LOGIN_SUCCEEDED
    )
    state = transition(SessionState.UNAUTHENTICATED, event)

    staff.last_login_at = utcnow()
    session, token = create_session(staff, user_agent=user_agent, ip_address=ip_address)

    return LoginResult(session=session, token=token, state=state, staff=staff)


def _revoke(session: SessionToken, reason: str) -> None:
    session.is_revoked = True
    session.revoked_at = utcnow()
    session.revoked_reason = reason
    db.session.commit()


def validate_session(token: str) -> SessionContext | None:
    """
    Validate session token and return SessionContext if valid.

    Returns None if:
    - Token is invalid, expired, or revoked
    - Staff account is deactivated
    - Business is suspended

    A session whose branch was closed stays valid; the gate blocks it.
    Updates last_used_at on successful validation.
    """
    if not token:
        return None

    now = utcnow()
    session = db.session.query(SessionToken).filter_by(
        token_hash=hash_token(token),
        is_revoked=False,
    ).first()

    if not session:
        return None

    if session.expires_at < now:
        return None

    if now - session.last_used_at > _idle_timeout():
        _revoke(session, "Idle timeout")
        return None

    staff = session.staff
    if not staff or not staff.is_active:
        _revoke(session, "Staff account deactivated")
        return None

    business = db.session.get(Business, session.business_id)
    if not business or not business.is_active or staff.business_id != session.business_id:
        _revoke(session, "Business suspended")
        return None

    session.last_used_at = now
    db.session.commit()

    return SessionContext(
        staff=staff,
        session=session,
        actor=Actor.from_staff(staff),
        snapshot=snapshot_for(staff),
    )


def change_credential(
    staff_id: int,
    current_password: str,
    new_password: str,
    *,
    keep_session_id: int | None = None,
) -> SessionState:
    """
    Rotate a staff member's password.

    Clears must_change_credential and revokes every other open session.
    Returns the resulting gate state.
    """
    staff = db.session.get(StaffMember, staff_id)
    if staff is None or not staff.is_active:
        raise InvalidCredentialError("Invalid credentials")

    if not verify_password(current_password, staff.password_hash):
        record_failed_login(staff.email, "Credential change with wrong current password", business_id=staff.business_id)
        raise InvalidCredentialError("Current password is incorrect")

    if current_password == new_password:
        raise PasswordValidationError("New password must differ from the current password")

    was_pending = bool(staff.must_change_credential)
    staff.password_hash = hash_password(new_password)
    staff.must_change_credential = False
    staff.credential_changed_at = utcnow()

    query = db.session.query(SessionToken).filter(
        SessionToken.staff_id == staff.id,
        SessionToken.is_revoked.is_(False),
    )
    if keep_session_id is not None:
        query = query.filter(SessionToken.id != keep_session_id)
    query.update(
        {"is_revoked": True, "revoked_at": utcnow(), "revoked_reason": "Credential changed"},
        synchronize_session=False,
    )
    db.session.commit()

    snapshot = snapshot_for(staff)
    if was_pending and resolve_state(snapshot) != SessionState.BRANCH_CLOSED_BLOCKED:
        return transition(SessionState.PENDING_CREDENTIAL_CHANGE, SessionEvent.CREDENTIAL_CHANGED)
    return resolve_state(snapshot)


def logout(token: str) -> bool:
    """Revoke the session. Returns False if it was not found or already revoked."""
    return revoke_session(token, reason="User logout")


def revoke_session(token: str, reason: str = "User logout") -> bool:
    session = db.session.query(SessionToken).filter_by(
        token_hash=hash_token(token),
        is_revoked=False,
    ).first()

    if not session:
        return False

    _revoke(session, reason)
    return True


def cleanup_expired_sessions() -> int:
    """
    Delete expired and revoked sessions older than 30 days.

    Returns count of sessions deleted.
    """
    now = utcnow()
    cutoff = now - timedelta(days=30)

    deleted = db.session.query(SessionToken).filter(
        db.or_(
            SessionToken.expires_at < now,
            SessionToken.is_revoked.is_(True),
        ),
        SessionToken.created_at < cutoff,
    ).delete(synchronize_session=False)

    db.session.commit()
    return deleted
