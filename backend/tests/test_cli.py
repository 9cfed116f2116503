# Overview: Flask CLI command tests for tenant administration and maintenance.

from datetime import timedelta

from branchpos.models import Branch, Business, SecurityEvent, StaffMember
from branchpos.time_utils import utcnow


class TestBusinessCommands:

    def test_register_business(self, app, db_session):
        runner = app.test_cli_runner()
        result = runner.invoke(args=[
            'business', 'register',
            '--name', 'Duka Ltd',
            '--owner-email', 'amina@duka.test',
            '--owner-name', 'Amina',
            '--password', 'Password123!',
            '--plan', 'Basic',
        ])

        assert result.exit_code == 0, result.output
        assert "PASS Created business: Duka Ltd" in result.output
        business = db_session.query(Business).filter_by(name="Duka Ltd").one()
        assert business.max_branches == 2
        assert db_session.query(Branch).filter_by(business_id=business.id).count() == 1

    def test_register_rejects_weak_password(self, app, db_session):
        result = app.test_cli_runner().invoke(args=[
            'business', 'register',
            '--name', 'Weak', '--owner-email', 'w@weak.test', '--owner-name', 'W', '--password', 'weak',
        ])
        assert result.exit_code != 0
        assert db_session.query(Business).count() == 0

    def test_suspend_and_reactivate(self, app, db_session, business_a):
        runner = app.test_cli_runner()

        assert runner.invoke(args=['business', 'suspend', str(business_a.id)]).exit_code == 0
        assert db_session.get(Business, business_a.id).status == "suspended"

        assert runner.invoke(args=['business', 'reactivate', str(business_a.id)]).exit_code == 0
        assert db_session.get(Business, business_a.id).status == "active"


class TestStaffAndBranchCommands:

    def test_create_staff_as_owner(self, app, db_session, owner_a, business_a, branch_a1):
        result = app.test_cli_runner().invoke(args=[
            'staff', 'create',
            '--business-id', str(business_a.id),
            '--email', 'till@a.test',
            '--name', 'Till Operator',
            '--role', 'cashier',
            '--branch-id', str(branch_a1.id),
            '--password', 'Password123!',
        ])

        assert result.exit_code == 0, result.output
        staff = db_session.query(StaffMember).filter_by(email="till@a.test").one()
        assert staff.must_change_credential is True

    def test_create_staff_for_foreign_branch_fails(self, app, db_session, owner_a, business_a, branch_b1):
        result = app.test_cli_runner().invoke(args=[
            'staff', 'create',
            '--business-id', str(business_a.id),
            '--email', 'spy@a.test',
            '--name', 'Spy',
            '--role', 'cashier',
            '--branch-id', str(branch_b1.id),
            '--password', 'Password123!',
        ])
        assert result.exit_code != 0
        assert "Branch not found" in result.output

    def test_deactivate_branch(self, app, db_session, owner_a, business_a, branch_a1):
        result = app.test_cli_runner().invoke(
            args=['branches', 'deactivate', '--business-id', str(business_a.id), str(branch_a1.id)]
        )

        assert result.exit_code == 0, result.output
        assert db_session.get(Branch, branch_a1.id).status == "inactive"

    def test_deactivate_other_tenant_branch_fails(self, app, db_session, owner_a, business_a, branch_b1):
        result = app.test_cli_runner().invoke(
            args=['branches', 'deactivate', '--business-id', str(business_a.id), str(branch_b1.id)]
        )
        assert result.exit_code != 0
        assert db_session.get(Branch, branch_b1.id).status == "active"


class TestMaintenanceCommands:

    def test_cleanup_security_events(self, app, db_session, business_a):
        db_session.add_all([
            SecurityEvent(business_id=business_a.id, event_type="LOGIN_FAILED", success=False,
                          occurred_at=utcnow() - timedelta(days=120)),
            SecurityEvent(business_id=business_a.id, event_type="LOGIN_FAILED", success=False,
                          occurred_at=utcnow() - timedelta(days=1)),
        ])
        db_session.commit()

        result = app.test_cli_runner().invoke(args=['maintenance', 'cleanup-security-events'])

        assert result.exit_code == 0
        assert "Deleted 1 security events" in result.output
        assert db_session.query(SecurityEvent).count() == 1
