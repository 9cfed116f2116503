# Overview: Pytest coverage for role-based visibility scoping.

"""
Visibility Filter Tests

One rule table decides what each role sees. These tests exercise it on
plain mappings (permits / filter) and on SQLAlchemy queries (apply), and
check that caller-supplied filters can only narrow a scope.
"""

import pytest

from branchpos.models import Sale, SecurityEvent
from branchpos.permissions import Role
from branchpos.services import sales_service
from branchpos.visibility import Actor, Scope, ScopeViolation, require_visible, scope


OWNER = Actor(business_id=1, role=Role.OWNER, staff_id=10)
ACCOUNTANT = Actor(business_id=1, role=Role.ACCOUNTANT, staff_id=11)
MANAGER = Actor(business_id=1, role=Role.MANAGER, staff_id=12, branch_id=100)
CASHIER = Actor(business_id=1, role=Role.CASHIER, staff_id=13, branch_id=100)
STAFF = Actor(business_id=1, role=Role.STAFF, staff_id=14, branch_id=101)

RECORDS = [
    {"id": 1, "business_id": 1, "branch_id": 100, "staff_id": 13},
    {"id": 2, "business_id": 1, "branch_id": 100, "staff_id": 12},
    {"id": 3, "business_id": 1, "branch_id": 101, "staff_id": 14},
    {"id": 4, "business_id": 2, "branch_id": 200, "staff_id": 13},
]


def _ids(actor, records=RECORDS):
    return [r["id"] for r in scope(actor).filter(records)]


class TestRuleTable:

    def test_owner_sees_whole_business_only(self):
        assert _ids(OWNER) == [1, 2, 3]

    def test_accountant_sees_whole_business(self):
        assert _ids(ACCOUNTANT) == [1, 2, 3]

    def test_manager_sees_own_branch_all_staff(self):
        assert _ids(MANAGER) == [1, 2]

    def test_cashier_sees_own_records_in_own_branch(self):
        assert _ids(CASHIER) == [1]

    def test_staff_role_sees_own_records(self):
        assert _ids(STAFF) == [3]

    def test_other_business_never_visible(self):
        other_owner = Actor(business_id=2, role=Role.OWNER, staff_id=20)
        assert _ids(other_owner) == [4]

    def test_branch_role_without_branch_sees_nothing(self):
        unassigned = Actor(business_id=1, role=Role.MANAGER, staff_id=15)
        assert scope(unassigned).deny_all
        assert _ids(unassigned) == []

    def test_records_without_staff_field_skip_staff_check(self):
        products = [{"id": 5, "business_id": 1, "branch_id": 100}]
        assert _ids(CASHIER, products) == [5]

    def test_scope_is_pure(self):
        assert scope(CASHIER) == scope(Actor(business_id=1, role=Role.CASHIER, staff_id=13, branch_id=100))


class TestNarrow:

    def test_owner_can_narrow_to_branch_and_staff(self):
        narrowed = scope(OWNER).narrow(branch_id=101)
        assert [r["id"] for r in narrowed.filter(RECORDS)] == [3]

        narrowed = scope(OWNER).narrow(staff_id=13)
        assert [r["id"] for r in narrowed.filter(RECORDS)] == [1]

    def test_filter_outside_scope_yields_nothing(self):
        assert scope(MANAGER).narrow(branch_id=101) == Scope.nothing()
        assert scope(CASHIER).narrow(staff_id=12).filter(RECORDS) == []

    def test_filter_matching_scope_is_unchanged(self):
        assert scope(MANAGER).narrow(branch_id=100) == scope(MANAGER)


class TestBranchWrites:

    def test_can_write_branch(self):
        assert scope(OWNER).can_write_branch(101)
        assert scope(MANAGER).can_write_branch(100)
        assert not scope(MANAGER).can_write_branch(101)
        assert not Scope.nothing().can_write_branch(100)


class TestQueryScoping:

    def test_apply_filters_sales_like_permits(
        self, db_session, owner_a, manager_a1, cashier_a1, make_staff, business_a, branch_a1, branch_a2,
        sugar_a1, sugar_a2
    ):
        second_cashier = make_staff(business_a, Role.CASHIER, branch_a1)
        cashier_a2 = make_staff(business_a, Role.CASHIER, branch_a2)
        for staff, branch, product in (
            (cashier_a1, branch_a1, sugar_a1),
            (second_cashier, branch_a1, sugar_a1),
            (cashier_a2, branch_a2, sugar_a2),
        ):
            sales_service.checkout(
                Actor.from_staff(staff), branch_id=branch.id, lines=[{"product_id": product.id, "quantity": 1}]
            )

        def visible(staff):
            current = scope(Actor.from_staff(staff))
            return current.apply(db_session.query(Sale), Sale).count()

        assert visible(owner_a) == 3
        assert visible(manager_a1) == 2
        assert visible(cashier_a1) == 1

        all_sales = db_session.query(Sale).all()
        for staff in (owner_a, manager_a1, cashier_a1):
            assert len(scope(Actor.from_staff(staff)).filter(all_sales)) == visible(staff)

    def test_require_visible_logs_and_hides(self, db_session, cashier_a1, cashier_a2, branch_a2, sugar_a2):
        sale = sales_service.checkout(
            Actor.from_staff(cashier_a2), branch_id=branch_a2.id, lines=[{"product_id": sugar_a2.id, "quantity": 1}]
        )

        with pytest.raises(ScopeViolation) as exc_info:
            require_visible(Actor.from_staff(cashier_a1), sale, resource="sale")

        assert str(exc_info.value) == "Record not found"
        event = db_session.query(SecurityEvent).filter_by(event_type="SCOPE_VIOLATION").one()
        assert event.staff_id == cashier_a1.id
        assert event.business_id == cashier_a1.business_id

    def test_require_visible_missing_record(self, db_session, owner_a):
        with pytest.raises(ScopeViolation):
            require_visible(Actor.from_staff(owner_a), None)
