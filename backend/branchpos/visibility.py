# Overview: Role-based visibility scoping shared by every read and write path.

"""
Visibility Filter

One rule table decides what an actor may see:

    Role         Business    Branch            Staff
    OWNER        own only    all               all
    ACCOUNTANT   own only    all               all
    MANAGER      own only    assigned only     all within that branch
    CASHIER      own only    assigned only     own records only
    STAFF        own only    assigned only     own records only

scope(actor) is a pure function of the frozen Actor snapshot. The resulting
Scope works on plain objects and mappings (permits) and on SQLAlchemy
models (criteria / apply), so dashboards, reports and exports all filter the
same way.

Records whose business_id does not match are excluded unconditionally,
including for owners. A branch-scoped role without a branch assignment sees
nothing.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from functools import lru_cache
from typing import Any, Iterable

from sqlalchemy import false

from .permissions import Role


class ScopeViolation(Exception):
    """Raised when an actor touches a record outside its scope. Always fails closed."""
    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message)
        self.details = details or {}


@dataclass(frozen=True)
class Actor:
    """Immutable snapshot of who is acting: tenant, branch pin, role and identity."""
    business_id: int
    role: Role
    staff_id: int
    branch_id: int | None = None

    @classmethod
    def from_staff(cls, staff) -> "Actor":
        return cls(
            business_id=staff.business_id,
            role=Role.parse(staff.role),
            staff_id=staff.id,
            branch_id=staff.branch_id,
        )

    def to_dict(self) -> dict:
        return {
            "business_id": self.business_id,
            "role": self.role.value,
            "staff_id": self.staff_id,
            "branch_id": self.branch_id,
        }


@dataclass(frozen=True)
class ScopeRule:
    branch_restricted: bool
    own_records_only: bool


ROLE_SCOPE_RULES: dict[Role, ScopeRule] = {
    Role.OWNER: ScopeRule(branch_restricted=False, own_records_only=False),
    Role.ACCOUNTANT: ScopeRule(branch_restricted=False, own_records_only=False),
    Role.MANAGER: ScopeRule(branch_restricted=True, own_records_only=False),
    Role.CASHIER: ScopeRule(branch_restricted=True, own_records_only=True),
    Role.STAFF: ScopeRule(branch_restricted=True, own_records_only=True),
}


def _field(record: Any, name: str, default: Any = None) -> Any:
    if isinstance(record, dict):
        return record.get(name, default)
    return getattr(record, name, default)


def _has_field(record: Any, name: str) -> bool:
    if isinstance(record, dict):
        return name in record
    return hasattr(record, name)


@dataclass(frozen=True)
class Scope:
    """
    Resolved visibility for one actor.

    branch_id / staff_id of None mean "all branches" / "all staff".
    """
    business_id: int | None
    branch_id: int | None = None
    staff_id: int | None = None
    deny_all: bool = False

    @classmethod
    def nothing(cls) -> "Scope":
        return cls(business_id=None, deny_all=True)

    def permits(self, record: Any) -> bool:
        """
        True if record is visible under this scope.

        The staff check only applies to records that carry a staff_id
        (sales do, products do not).
        """
        if self.deny_all or self.business_id is None:
            return False
        if _field(record, "business_id") != self.business_id:
            return False
        if self.branch_id is not None and _field(record, "branch_id") != self.branch_id:
            return False
        if self.staff_id is not None and _has_field(record, "staff_id"):
            if _field(record, "staff_id") != self.staff_id:
                return False
        return True

    def filter(self, records: Iterable[Any]) -> list:
        return [record for record in records if self.permits(record)]

    def can_write_branch(self, branch_id: int | None) -> bool:
        """Whether the actor may act on branch_id (tenant membership is checked separately)."""
        if self.deny_all or self.business_id is None or branch_id is None:
            return False
        return self.branch_id is None or self.branch_id == branch_id

    def criteria(self, model) -> list:
        """SQLAlchemy filter expressions equivalent to permits() for `model`."""
        if self.deny_all or self.business_id is None:
            return [false()]
        clauses = [model.business_id == self.business_id]
        if self.branch_id is not None:
            clauses.append(model.branch_id == self.branch_id)
        if self.staff_id is not None and hasattr(model, "staff_id"):
            clauses.append(model.staff_id == self.staff_id)
        return clauses

    def apply(self, query, model):
        return query.filter(*self.criteria(model))

    def narrow(self, *, branch_id: int | None = None, staff_id: int | None = None) -> "Scope":
        """
        Intersect with caller-supplied filters.

        A filter can only shrink the scope; asking for a branch or staff
        member outside it yields an empty scope.
        """
        result = self
        if branch_id is not None:
            if result.branch_id is not None and result.branch_id != branch_id:
                return Scope.nothing()
            result = replace(result, branch_id=branch_id)
        if staff_id is not None:
            if result.staff_id is not None and result.staff_id != staff_id:
                return Scope.nothing()
            result = replace(result, staff_id=staff_id)
        return result


@lru_cache(maxsize=1024)
def scope(actor: Actor) -> Scope:
    """Resolve the visibility scope for an actor snapshot."""
    rule = ROLE_SCOPE_RULES.get(actor.role)
    if rule is None or actor.business_id is None:
        return Scope.nothing()

    branch_id = None
    if rule.branch_restricted:
        if actor.branch_id is None:
            return Scope.nothing()
        branch_id = actor.branch_id

    staff_id = actor.staff_id if rule.own_records_only else None
    return Scope(business_id=actor.business_id, branch_id=branch_id, staff_id=staff_id)


def require_visible(actor: Actor, record: Any, *, action: str = "read", resource: str | None = None):
    """
    Return record if the actor may see it; otherwise log and raise ScopeViolation.

    Callers render read violations as "not found" so existence is not revealed.
    """
    if record is not None and scope(actor).permits(record):
        return record

    from .services.permission_service import log_security_event

    record_desc = f"{type(record).__name__} {_field(record, 'id')}" if record is not None else "missing record"
    log_security_event(
        staff_id=actor.staff_id,
        event_type="SCOPE_VIOLATION",
        success=False,
        resource=resource,
        action=action,
        reason=f"{actor.role.value} cannot {action} {record_desc}",
        business_id=actor.business_id,
        branch_id=actor.branch_id,
    )
    raise ScopeViolation("Record not found", details={"action": action})


def require_branch_access(actor: Actor, branch, *, action: str = "write", resource: str | None = None):
    """Return branch if it belongs to the actor's business and lies within its branch scope."""
    current = scope(actor)
    if branch is not None and branch.business_id == actor.business_id and current.can_write_branch(branch.id):
        return branch

    from .services.permission_service import log_security_event

    log_security_event(
        staff_id=actor.staff_id,
        event_type="SCOPE_VIOLATION",
        success=False,
        resource=resource,
        action=action,
        reason=f"{actor.role.value} cannot {action} branch {getattr(branch, 'id', None)}",
        business_id=actor.business_id,
        branch_id=actor.branch_id,
    )
    raise ScopeViolation("Branch not found", details={"action": action})
