# Overview: Pytest coverage for tenant registration, settings, staff and branch management.

"""
Tenant Directory Tests

Registration creates a business, its single owner and a first branch.
Plan caps bound branches and staff. Every id arriving from a caller is
checked against the caller's business, and cross-tenant attempts are
logged.
"""

import pytest

from branchpos.models import Branch, ReceiptSequence, SecurityEvent, SessionToken, StaffMember
from branchpos.models.tenancy import BRANCH_ACTIVE, BRANCH_INACTIVE
from branchpos.permissions import Role
from branchpos.services import auth_service, branch_service, session_service, tenant_service
from branchpos.services.auth_service import PasswordValidationError
from branchpos.services.branch_service import BranchError
from branchpos.services.permission_service import PermissionDeniedError
from branchpos.services.tenant_service import TenantAccessError
from branchpos.validation import ConflictError, ValidationError
from branchpos.visibility import Actor, ScopeViolation


class TestRegistration:

    def test_register_business_creates_owner_and_branch(self, app, db_session):
        registration = tenant_service.register_business(
            business_name="Mama Mboga",
            owner_email="Owner@MamaMboga.test",
            owner_name="Wanjiru",
            password="Password123!",
        )

        business = registration.business
        assert business.owner_id == registration.owner.id
        assert business.subscription_plan == "Free Trial"
        assert (business.max_branches, business.max_staff) == (1, 5)
        assert business.currency == "KES"
        assert business.timezone == "Africa/Nairobi"
        assert business.trial_ends_at is not None

        owner = registration.owner
        assert owner.role == Role.OWNER
        assert owner.branch_id is None
        assert owner.email == "owner@mamamboga.test"
        assert owner.must_change_credential is False

        assert registration.branch.name == "Main Branch"
        assert registration.branch.status == BRANCH_ACTIVE
        assert db_session.query(ReceiptSequence).filter_by(business_id=business.id).count() == 1

    def test_register_applies_plan_limits(self, db_session):
        registration = tenant_service.register_business(
            business_name="Big Chain",
            owner_email="ceo@chain.test",
            owner_name="CEO",
            password="Password123!",
            plan="Basic",
        )
        assert (registration.business.max_branches, registration.business.max_staff) == (2, 10)

    def test_register_rejects_weak_password(self, db_session):
        with pytest.raises(PasswordValidationError):
            tenant_service.register_business(
                business_name="Weak", owner_email="weak@x.test", owner_name="W", password="password"
            )

    @pytest.mark.parametrize("overrides", [
        {"business_name": " "},
        {"owner_email": "not-an-email"},
        {"plan": "Platinum"},
        {"timezone": "Mars/Olympus"},
    ])
    def test_register_validates_input(self, db_session, overrides):
        kwargs = dict(
            business_name="Valid",
            owner_email="valid@x.test",
            owner_name="Valid Owner",
            password="Password123!",
        )
        kwargs.update(overrides)
        with pytest.raises(ValidationError):
            tenant_service.register_business(**kwargs)


class TestBusinessSettings:

    def test_owner_updates_tax_rule(self, db_session, owner_a):
        business = tenant_service.update_business_settings(
            Actor.from_staff(owner_a),
            {"tax_enabled": True, "tax_rate_bps": 1600, "tax_inclusive": True, "timezone": "UTC"},
        )
        assert business.tax_enabled is True
        assert business.tax_rate_bps == 1600
        assert business.timezone == "UTC"

    def test_manager_cannot_change_settings(self, db_session, manager_a1):
        with pytest.raises(PermissionDeniedError):
            tenant_service.update_business_settings(Actor.from_staff(manager_a1), {"currency": "USD"})

    @pytest.mark.parametrize("patch", [
        {"tax_rate_bps": 10001},
        {"tax_rate_bps": -1},
        {"tax_enabled": "yes"},
        {"timezone": "Nowhere/City"},
        {"owner_id": 5},
    ])
    def test_invalid_settings_rejected(self, db_session, owner_a, patch):
        with pytest.raises(ValidationError):
            tenant_service.update_business_settings(Actor.from_staff(owner_a), patch)

    def test_suspended_business_sessions_stop_validating(self, db_session, business_a, cashier_a1):
        _, token = session_service.create_session(cashier_a1)
        assert session_service.validate_session(token) is not None

        tenant_service.set_business_status(business_a.id, "suspended")
        assert session_service.validate_session(token) is None


class TestTenantValidation:

    def test_branch_in_own_business(self, db_session, business_a, branch_a1):
        assert tenant_service.require_branch_in_business(branch_a1.id, business_a.id).id == branch_a1.id

    def test_cross_tenant_branch_rejected_and_logged(self, db_session, business_a, branch_b1):
        with pytest.raises(TenantAccessError):
            tenant_service.require_branch_in_business(branch_b1.id, business_a.id)

        event = db_session.query(SecurityEvent).filter_by(event_type="CROSS_TENANT_ACCESS_DENIED").one()
        assert event.business_id == business_a.id

    def test_missing_branch_looks_like_foreign_branch(self, db_session, business_a):
        with pytest.raises(TenantAccessError) as exc_info:
            tenant_service.require_branch_in_business(987654, business_a.id)
        assert str(exc_info.value) == "Branch not found"


class TestStaffManagement:

    def test_owner_creates_cashier_pinned_to_branch(self, db_session, owner_a, branch_a1):
        staff = auth_service.create_staff(
            Actor.from_staff(owner_a),
            email="new.cashier@a.test",
            full_name="New Cashier",
            role="cashier",
            password="Password123!",
            branch_id=branch_a1.id,
        )
        assert staff.role == Role.CASHIER
        assert staff.branch_id == branch_a1.id
        assert staff.must_change_credential is True

    def test_cashier_requires_branch(self, db_session, owner_a):
        with pytest.raises(ValidationError):
            auth_service.create_staff(
                Actor.from_staff(owner_a),
                email="floating@a.test",
                full_name="Floating",
                role="CASHIER",
                password="Password123!",
            )

    def test_second_owner_rejected(self, db_session, owner_a):
        with pytest.raises(ValidationError):
            auth_service.create_staff(
                Actor.from_staff(owner_a),
                email="owner2@a.test",
                full_name="Owner Two",
                role="OWNER",
                password="Password123!",
            )

    def test_foreign_branch_assignment_rejected(self, db_session, owner_a, branch_b1):
        with pytest.raises(TenantAccessError):
            auth_service.create_staff(
                Actor.from_staff(owner_a),
                email="spy@a.test",
                full_name="Spy",
                role="CASHIER",
                password="Password123!",
                branch_id=branch_b1.id,
            )

    def test_manager_limited_to_own_branch_and_junior_roles(self, db_session, manager_a1, branch_a1, branch_a2):
        actor = Actor.from_staff(manager_a1)
        with pytest.raises(PermissionDeniedError):
            auth_service.create_staff(
                actor, email="m2@a.test", full_name="M2", role="MANAGER", password="Password123!",
                branch_id=branch_a1.id,
            )
        with pytest.raises(PermissionDeniedError):
            auth_service.create_staff(
                actor, email="c2@a.test", full_name="C2", role="CASHIER", password="Password123!",
                branch_id=branch_a2.id,
            )

        staff = auth_service.create_staff(
            actor, email="c1@a.test", full_name="C1", role="STAFF", password="Password123!",
            branch_id=branch_a1.id,
        )
        assert staff.branch_id == branch_a1.id

    def test_duplicate_email_within_business_conflicts(self, db_session, owner_a, cashier_a1, branch_a1):
        with pytest.raises(ConflictError):
            auth_service.create_staff(
                Actor.from_staff(owner_a),
                email=cashier_a1.email,
                full_name="Dup",
                role="CASHIER",
                password="Password123!",
                branch_id=branch_a1.id,
            )

    def test_same_email_allowed_in_another_business(self, db_session, owner_b, branch_b1, cashier_a1):
        staff = auth_service.create_staff(
            Actor.from_staff(owner_b),
            email=cashier_a1.email,
            full_name="Namesake",
            role="CASHIER",
            password="Password123!",
            branch_id=branch_b1.id,
        )
        assert staff.business_id == owner_b.business_id

    def test_staff_cap_enforced(self, db_session, business_a, owner_a, branch_a1):
        business_a.max_staff = 1
        db_session.commit()

        with pytest.raises(ConflictError):
            auth_service.create_staff(
                Actor.from_staff(owner_a),
                email="extra@a.test",
                full_name="Extra",
                role="CASHIER",
                password="Password123!",
                branch_id=branch_a1.id,
            )

    def test_reassign_branch(self, db_session, owner_a, cashier_a1, branch_a2):
        staff = auth_service.update_staff(Actor.from_staff(owner_a), cashier_a1.id, {"branch_id": branch_a2.id})
        assert staff.branch_id == branch_a2.id

    def test_owner_role_cannot_change(self, db_session, owner_a):
        with pytest.raises(ValidationError):
            auth_service.update_staff(Actor.from_staff(owner_a), owner_a.id, {"role": "MANAGER"})

    def test_deactivate_revokes_sessions(self, db_session, owner_a, cashier_a1):
        _, token = session_service.create_session(cashier_a1)

        auth_service.deactivate_staff(Actor.from_staff(owner_a), cashier_a1.id)

        assert db_session.get(StaffMember, cashier_a1.id).is_active is False
        assert session_service.validate_session(token) is None
        assert db_session.query(SessionToken).filter_by(staff_id=cashier_a1.id, is_revoked=False).count() == 0

    def test_manager_cannot_touch_other_branch_staff(self, db_session, manager_a1, cashier_a2):
        with pytest.raises(ScopeViolation):
            auth_service.deactivate_staff(Actor.from_staff(manager_a1), cashier_a2.id)

    def test_list_staff_is_scoped(self, db_session, owner_a, manager_a1, cashier_a1, cashier_a2):
        owner_view = {s.id for s in auth_service.list_staff(Actor.from_staff(owner_a))}
        manager_view = {s.id for s in auth_service.list_staff(Actor.from_staff(manager_a1))}

        assert {manager_a1.id, cashier_a1.id, cashier_a2.id, owner_a.id} <= owner_view
        assert manager_view == {manager_a1.id, cashier_a1.id}


class TestBranchManagement:

    def test_create_branch_within_cap(self, db_session, owner_a, branch_a1):
        branch = branch_service.create_branch(Actor.from_staff(owner_a), "Karen", "Karen Road")
        assert branch.status == BRANCH_ACTIVE
        assert branch.business_id == owner_a.business_id

    def test_branch_cap_enforced(self, db_session, business_a, owner_a, branch_a1):
        business_a.max_branches = 1
        db_session.commit()

        with pytest.raises(ConflictError):
            branch_service.create_branch(Actor.from_staff(owner_a), "Second")

    def test_duplicate_branch_name_conflicts(self, db_session, owner_a, branch_a1):
        with pytest.raises(ConflictError):
            branch_service.create_branch(Actor.from_staff(owner_a), branch_a1.name)

    def test_deactivate_and_reactivate(self, db_session, owner_a, branch_a1):
        actor = Actor.from_staff(owner_a)

        closed = branch_service.deactivate_branch(actor, branch_a1.id)
        assert closed.status == BRANCH_INACTIVE
        assert closed.deactivated_at is not None

        with pytest.raises(BranchError):
            branch_service.deactivate_branch(actor, branch_a1.id)

        reopened = branch_service.reactivate_branch(actor, branch_a1.id)
        assert reopened.status == BRANCH_ACTIVE
        assert reopened.deactivated_at is None

    def test_only_owner_changes_branch_status(self, db_session, manager_a1, branch_a1):
        with pytest.raises(PermissionDeniedError):
            branch_service.deactivate_branch(Actor.from_staff(manager_a1), branch_a1.id)

    def test_foreign_branch_status_change_rejected(self, db_session, owner_a, branch_b1):
        with pytest.raises(TenantAccessError):
            branch_service.deactivate_branch(Actor.from_staff(owner_a), branch_b1.id)
        assert db_session.get(Branch, branch_b1.id).status == BRANCH_ACTIVE

    def test_list_branches_scoped(self, db_session, owner_a, manager_a1, branch_a1, branch_a2, branch_b1):
        owner_view = [b.id for b in branch_service.list_branches(Actor.from_staff(owner_a))]
        manager_view = [b.id for b in branch_service.list_branches(Actor.from_staff(manager_a1))]

        assert set(owner_view) == {branch_a1.id, branch_a2.id}
        assert manager_view == [branch_a1.id]

    def test_closed_branch_cannot_be_edited_until_reopened(self, db_session, owner_a, branch_a1):
        actor = Actor.from_staff(owner_a)
        branch_service.deactivate_branch(actor, branch_a1.id)

        with pytest.raises(BranchError):
            branch_service.update_branch(actor, branch_a1.id, name="Westlands Mall")
        assert db_session.get(Branch, branch_a1.id).name == "Westlands"

        branch_service.reactivate_branch(actor, branch_a1.id)
        renamed = branch_service.update_branch(actor, branch_a1.id, name="Westlands Mall")
        assert renamed.name == "Westlands Mall"
