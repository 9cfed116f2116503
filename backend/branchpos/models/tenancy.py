from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z


BUSINESS_ACTIVE = "active"
BUSINESS_SUSPENDED = "suspended"

BRANCH_ACTIVE = "active"
BRANCH_INACTIVE = "inactive"
BRANCH_STATUSES = (BRANCH_ACTIVE, BRANCH_INACTIVE)


class Business(db.Model):
    """
    Multi-tenant root: every tenant is a Business.

    All branches, staff, products and sales belong to exactly one business.
    No data may cross business boundaries, not even for owners.

    Businesses are never hard-deleted; `status` carries the soft state.
    """
    __tablename__ = "businesses"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(255), nullable=False)

    # The single OWNER staff member (set right after registration creates them)
    owner_id = db.Column(db.Integer, nullable=True, unique=True)

    status = db.Column(db.String(16), nullable=False, default=BUSINESS_ACTIVE, index=True)

    # Subscription state (plan limits are copied into max_* at registration)
    subscription_plan = db.Column(db.String(32), nullable=False, default="Free Trial")
    subscription_status = db.Column(db.String(16), nullable=False, default="trial")
    trial_ends_at = db.Column(db.DateTime(timezone=True), nullable=True)
    max_branches = db.Column(db.Integer, nullable=False, default=1)
    max_staff = db.Column(db.Integer, nullable=False, default=5)

    # Per-tenant configuration
    currency = db.Column(db.String(8), nullable=False, default="KES")
    timezone = db.Column(db.String(64), nullable=False, default="Africa/Nairobi")
    tax_enabled = db.Column(db.Boolean, nullable=False, default=False)
    tax_name = db.Column(db.String(32), nullable=False, default="VAT")
    tax_rate_bps = db.Column(db.Integer, nullable=False, default=1600)  # Basis points (1600 = 16%)
    tax_inclusive = db.Column(db.Boolean, nullable=False, default=False)

    created_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
    )
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    @property
    def is_active(self) -> bool:
        return self.status == BUSINESS_ACTIVE

    def __repr__(self) -> str:
        return f"<Business id={self.id} name={self.name!r}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "owner_id": self.owner_id,
            "status": self.status,
            "subscription_plan": self.subscription_plan,
            "subscription_status": self.subscription_status,
            "trial_ends_at": to_utc_z(self.trial_ends_at),
            "max_branches": self.max_branches,
            "max_staff": self.max_staff,
            "currency": self.currency,
            "timezone": self.timezone,
            "tax": {
                "enabled": self.tax_enabled,
                "name": self.tax_name,
                "rate_bps": self.tax_rate_bps,
                "inclusive": self.tax_inclusive,
            },
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }


class Branch(db.Model):
    """
    Branch (location) within a business.

    An inactive branch rejects sales and stock changes, and staff pinned to it
    cannot establish a session. Branches are deactivated, never deleted, so
    historical sales keep resolving.
    """
    __tablename__ = "branches"
    __table_args__ = (
        db.UniqueConstraint("business_id", "name", name="uq_branches_business_name"),
        db.Index("ix_branches_business_status", "business_id", "status"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    business_id = db.Column(db.Integer, db.ForeignKey("businesses.id"), nullable=False, index=True)
    name = db.Column(db.String(120), nullable=False)
    location = db.Column(db.String(255), nullable=True)

    status = db.Column(db.String(16), nullable=False, default=BRANCH_ACTIVE)
    deactivated_at = db.Column(db.DateTime(timezone=True), nullable=True)

    created_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
    )

    business = db.relationship("Business", backref=db.backref("branches", lazy=True))

    @property
    def is_active(self) -> bool:
        return self.status == BRANCH_ACTIVE

    def __repr__(self) -> str:
        return f"<Branch id={self.id} name={self.name!r} business_id={self.business_id}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "business_id": self.business_id,
            "name": self.name,
            "location": self.location,
            "status": self.status,
            "deactivated_at": to_utc_z(self.deactivated_at),
            "created_at": to_utc_z(self.created_at),
        }
