from __future__ import annotations

from ..extensions import db
from ..models import Branch
from ..models.tenancy import BRANCH_ACTIVE, BRANCH_INACTIVE
from ..time_utils import utcnow
from ..validation import ConflictError, ValidationError
from ..visibility import Actor, require_branch_access, scope
from .concurrency import lock_for_update, run_with_retry
from .permission_service import require_permission
from .tenant_service import ensure_branch_capacity, require_branch_in_business, validate_business_active


class BranchError(Exception):
    """Raised when branch operations fail."""
    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message)
        self.details = details or {}


def create_branch(actor: Actor, name: str, location: str | None = None) -> Branch:
    require_permission(actor, "MANAGE_BRANCHES", resource="/api/branches")

    def _op():
        clean_name = (name or "").strip()
        if not clean_name:
            raise ValidationError("Branch name is required")
        if len(clean_name) > 120:
            raise ValidationError("Branch name exceeds max length 120")

        business = validate_business_active(actor.business_id)
        ensure_branch_capacity(business)

        existing = db.session.query(Branch).filter_by(business_id=business.id, name=clean_name).first()
        if existing:
            raise ConflictError("A branch with this name already exists")

        branch = Branch(
            business_id=business.id,
            name=clean_name,
            location=(location or "").strip() or None,
            status=BRANCH_ACTIVE,
        )
        db.session.add(branch)
        db.session.commit()
        return branch

    return run_with_retry(_op)


def update_branch(actor: Actor, branch_id: int, *, name: str | None = None, location: str | None = None) -> Branch:
    require_permission(actor, "MANAGE_BRANCHES", resource="/api/branches")

    def _op():
        branch = require_branch_in_business(branch_id, actor.business_id)
        require_branch_access(actor, branch, action="write", resource="branch")
        if not branch.is_active:
            raise BranchError("Branch is inactive; reactivate it before editing", details={"branch_id": branch.id})

        if name is not None:
            clean_name = name.strip()
            if not clean_name:
                raise ValidationError("Branch name cannot be blank")
            clash = db.session.query(Branch).filter(
                Branch.business_id == branch.business_id,
                Branch.name == clean_name,
                Branch.id != branch.id,
            ).first()
            if clash:
                raise ConflictError("A branch with this name already exists")
            branch.name = clean_name
        if location is not None:
            branch.location = location.strip() or None

        db.session.commit()
        return branch

    return run_with_retry(_op)


def get_branch(actor: Actor, branch_id: int) -> Branch:
    require_permission(actor, "VIEW_BRANCHES", resource="/api/branches")
    branch = db.session.get(Branch, branch_id)
    return require_branch_access(actor, branch, action="read", resource="branch")


def list_branches(actor: Actor, include_inactive: bool = True) -> list[Branch]:
    """Owners and accountants see every branch; branch-pinned roles see their own."""
    require_permission(actor, "VIEW_BRANCHES", resource="/api/branches")
    current = scope(actor)
    if current.deny_all:
        return []
    query = db.session.query(Branch).filter(Branch.business_id == current.business_id)
    if current.branch_id is not None:
        query = query.filter(Branch.id == current.branch_id)
    if not include_inactive:
        query = query.filter(Branch.status == BRANCH_ACTIVE)
    return query.order_by(Branch.name.asc()).all()


def _set_status(actor: Actor, branch_id: int, status: str) -> Branch:
    require_permission(actor, "CHANGE_BRANCH_STATUS", resource="/api/branches")

    def _op():
        require_branch_in_business(branch_id, actor.business_id)
        branch = lock_for_update(db.session.query(Branch).filter_by(id=branch_id)).first()
        if branch.status == status:
            raise BranchError(f"Branch is already {status}", details={"branch_id": branch.id})

        branch.status = status
        branch.deactivated_at = utcnow() if status == BRANCH_INACTIVE else None
        db.session.commit()
        return branch

    return run_with_retry(_op)


def deactivate_branch(actor: Actor, branch_id: int) -> Branch:
    """
    Close a branch. Sales and stock changes are rejected from now on, and
    sessions of staff pinned to it are blocked at their next request.
    Historical sales stay readable.
    """
    return _set_status(actor, branch_id, BRANCH_INACTIVE)


def reactivate_branch(actor: Actor, branch_id: int) -> Branch:
    return _set_status(actor, branch_id, BRANCH_ACTIVE)
