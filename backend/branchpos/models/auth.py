from __future__ import annotations

from ..extensions import db
from ..permissions import Role
from ..time_utils import to_utc_z


class StaffMember(db.Model):
    """
    Staff accounts for authentication and sale attribution.

    MULTI-TENANT: every staff member belongs to exactly one business.
    Email is unique within a business, not globally.

    Exactly one OWNER per business. The owner is never pinned to a branch.
    Staff are soft-deactivated (is_active=False), never deleted, because
    historical sales reference them.
    """
    __tablename__ = "staff_members"
    __table_args__ = (
        db.UniqueConstraint("business_id", "email", name="uq_staff_business_email"),
        db.Index("ix_staff_business_branch", "business_id", "branch_id"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    business_id = db.Column(db.Integer, db.ForeignKey("businesses.id"), nullable=False, index=True)

    # Branch pin (nullable for owners and business-wide accountants)
    branch_id = db.Column(db.Integer, db.ForeignKey("branches.id"), nullable=True, index=True)

    email = db.Column(db.String(255), nullable=False, index=True)
    full_name = db.Column(db.String(255), nullable=False)
    role = db.Column(
        db.Enum(Role, name="staff_role", native_enum=False, length=16, validate_strings=True),
        nullable=False,
    )

    # Bcrypt hashed password
    password_hash = db.Column(db.String(255), nullable=False)
    must_change_credential = db.Column(db.Boolean, nullable=False, default=True)
    credential_changed_at = db.Column(db.DateTime(timezone=True), nullable=True)

    is_active = db.Column(db.Boolean, nullable=False, default=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    last_login_at = db.Column(db.DateTime(timezone=True), nullable=True)

    business = db.relationship("Business", backref=db.backref("staff", lazy=True))
    branch = db.relationship("Branch", backref=db.backref("staff", lazy=True))

    def __repr__(self) -> str:
        return f"<StaffMember id={self.id} email={self.email!r} role={self.role.value}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "business_id": self.business_id,
            "branch_id": self.branch_id,
            "email": self.email,
            "full_name": self.full_name,
            "role": self.role.value,
            "must_change_credential": self.must_change_credential,
            "is_active": self.is_active,
            "created_at": to_utc_z(self.created_at),
            "last_login_at": to_utc_z(self.last_login_at) if self.last_login_at else None,
        }


class SessionToken(db.Model):
    """
    Session token with tenant context.

    Tokens are stored hashed (SHA-256). business_id is captured at login and
    never changes for the session lifetime; branch status and credential
    state are re-read on every request by the session gate.
    """
    __tablename__ = "session_tokens"
    __table_args__ = (
        db.Index("ix_session_tokens_staff_active", "staff_id", "is_revoked"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    staff_id = db.Column(db.Integer, db.ForeignKey("staff_members.id"), nullable=False, index=True)
    business_id = db.Column(db.Integer, db.ForeignKey("businesses.id"), nullable=False, index=True)
    branch_id = db.Column(db.Integer, db.ForeignKey("branches.id"), nullable=True, index=True)

    # Token hash (never store plaintext tokens!)
    token_hash = db.Column(db.String(255), nullable=False, unique=True, index=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    last_used_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    expires_at = db.Column(db.DateTime(timezone=True), nullable=False, index=True)

    is_revoked = db.Column(db.Boolean, nullable=False, default=False, index=True)
    revoked_at = db.Column(db.DateTime(timezone=True), nullable=True)
    revoked_reason = db.Column(db.String(255), nullable=True)

    user_agent = db.Column(db.String(512), nullable=True)
    ip_address = db.Column(db.String(45), nullable=True)  # IPv6 max length

    staff = db.relationship("StaffMember", backref=db.backref("session_tokens", lazy=True))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "staff_id": self.staff_id,
            "business_id": self.business_id,
            "branch_id": self.branch_id,
            "created_at": to_utc_z(self.created_at),
            "last_used_at": to_utc_z(self.last_used_at),
            "expires_at": to_utc_z(self.expires_at),
            "is_revoked": self.is_revoked,
        }
