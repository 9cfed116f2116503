# Overview: HTTP tests for registration, login outcomes, credential change and logout.

"""
Authentication API Tests

Login results map onto session gate states. Staff created by the business
start in PENDING_CREDENTIAL_CHANGE; staff of a closed branch get no session
at all; logout always works.
"""

from branchpos.models import SecurityEvent, SessionToken
from branchpos.permissions import Role

PASSWORD = "Password123!"


def _login(client, email, password=PASSWORD, business_id=None):
    body = {"email": email, "password": password}
    if business_id is not None:
        body["business_id"] = business_id
    return client.post('/api/auth/login', json=body)


def _bearer(token):
    return {'Authorization': f'Bearer {token}'}


class TestRegistrationEndpoint:

    def test_register_logs_owner_in(self, client, db_session):
        response = client.post('/api/business/register', json={
            "business_name": "Duka La Mama",
            "owner_name": "Achieng",
            "email": "achieng@duka.test",
            "password": PASSWORD,
            "branch_name": "Kisumu CBD",
        })

        assert response.status_code == 201
        body = response.get_json()
        assert body["state"] == "ACTIVE"
        assert body["staff"]["role"] == "OWNER"
        assert body["staff"]["branch_id"] is None
        assert body["branch"]["name"] == "Kisumu CBD"

        me = client.get('/api/business', headers=_bearer(body["token"]))
        assert me.status_code == 200
        assert me.get_json()["business"]["name"] == "Duka La Mama"

    def test_register_rejects_weak_password(self, client, db_session):
        response = client.post('/api/business/register', json={
            "business_name": "Weak", "owner_name": "W", "email": "w@weak.test", "password": "short",
        })
        assert response.status_code == 400

    def test_register_requires_password(self, client, db_session):
        response = client.post('/api/business/register', json={"business_name": "NoPass"})
        assert response.status_code == 400


class TestLogin:

    def test_login_success(self, client, db_session, cashier_a1, branch_a1):
        response = _login(client, cashier_a1.email)

        assert response.status_code == 200
        body = response.get_json()
        assert body["state"] == "ACTIVE"
        assert body["must_change_credential"] is False
        assert body["branch_id"] == branch_a1.id
        assert "PROCESS_SALE" in body["permissions"]

        session = client.get('/api/auth/session', headers=_bearer(body["token"]))
        assert session.status_code == 200
        assert session.get_json()["role"] == "CASHIER"

    def test_wrong_password_is_401_and_logged(self, client, db_session, cashier_a1):
        response = _login(client, cashier_a1.email, password="Wrong123!")

        assert response.status_code == 401
        assert db_session.query(SecurityEvent).filter_by(event_type="LOGIN_FAILED").count() == 1

    def test_missing_fields(self, client, db_session):
        assert client.post('/api/auth/login', json={"email": "x@y.test"}).status_code == 400

    def test_inactive_staff_cannot_login(self, client, db_session, cashier_a1):
        cashier_a1.is_active = False
        db_session.commit()
        assert _login(client, cashier_a1.email).status_code == 401

    def test_suspended_business_cannot_login(self, client, db_session, business_a, cashier_a1):
        business_a.status = "suspended"
        db_session.commit()
        assert _login(client, cashier_a1.email).status_code == 401

    def test_closed_branch_gets_no_session(self, client, db_session, cashier_a1, branch_a1):
        branch_a1.status = "inactive"
        db_session.commit()

        response = _login(client, cashier_a1.email)

        assert response.status_code == 403
        body = response.get_json()
        assert body["state"] == "BRANCH_CLOSED_BLOCKED"
        assert body["redirect"] == "/branch-closed"
        assert body["actions"] == ["logout", "exit"]
        assert "token" not in body
        assert db_session.query(SessionToken).filter_by(staff_id=cashier_a1.id).count() == 0

    def test_owner_logs_in_while_branch_closed(self, client, db_session, owner_a, branch_a1):
        branch_a1.status = "inactive"
        db_session.commit()

        response = _login(client, owner_a.email)
        assert response.status_code == 200
        assert response.get_json()["state"] == "ACTIVE"

    def test_email_shared_across_businesses(self, client, db_session, business_a, business_b, make_staff, branch_a1, branch_b1):
        in_a = make_staff(business_a, Role.CASHIER, branch_a1, email="shared@pos.test")
        in_b = make_staff(business_b, Role.CASHIER, branch_b1, email="shared@pos.test")

        assert _login(client, "shared@pos.test", business_id=business_b.id).get_json()["staff"]["id"] == in_b.id
        assert _login(client, "shared@pos.test").get_json()["staff"]["id"] == in_a.id


class TestCredentialChange:

    def test_new_staff_must_rotate_credential(self, client, db_session, owner_a, branch_a1, login_headers):
        created = client.post('/api/staff', json={
            "email": "fresh@a.test",
            "full_name": "Fresh Cashier",
            "role": "CASHIER",
            "password": "Issued123!",
            "branch_id": branch_a1.id,
        }, headers=login_headers(owner_a))
        assert created.status_code == 201
        assert created.get_json()["staff"]["must_change_credential"] is True

        login = _login(client, "fresh@a.test", password="Issued123!")
        assert login.status_code == 200
        assert login.get_json()["state"] == "PENDING_CREDENTIAL_CHANGE"
        headers = _bearer(login.get_json()["token"])

        blocked = client.get('/api/sales', headers=headers)
        assert blocked.status_code == 403
        assert blocked.get_json()["redirect"] == "/change-password"

        changed = client.post('/api/auth/change-credential', json={
            "current_password": "Issued123!",
            "new_password": "Chosen456!",
        }, headers=headers)
        assert changed.status_code == 200
        assert changed.get_json()["state"] == "ACTIVE"

        assert client.get('/api/sales', headers=headers).status_code == 200
        assert _login(client, "fresh@a.test", password="Chosen456!").status_code == 200

    def test_wrong_current_password(self, client, db_session, cashier_a1, login_headers):
        response = client.post('/api/auth/change-credential', json={
            "current_password": "Nope1234!",
            "new_password": "Chosen456!",
        }, headers=login_headers(cashier_a1))
        assert response.status_code == 401

    def test_weak_new_password(self, client, db_session, cashier_a1, login_headers):
        response = client.post('/api/auth/change-credential', json={
            "current_password": PASSWORD,
            "new_password": "weak",
        }, headers=login_headers(cashier_a1))
        assert response.status_code == 400

    def test_other_sessions_revoked(self, client, db_session, cashier_a1, login_headers):
        keep = login_headers(cashier_a1)
        other = login_headers(cashier_a1)

        client.post('/api/auth/change-credential', json={
            "current_password": PASSWORD,
            "new_password": "Chosen456!",
        }, headers=keep)

        assert client.get('/api/auth/session', headers=keep).status_code == 200
        assert client.get('/api/auth/session', headers=other).status_code == 401


class TestLogout:

    def test_logout_revokes_token(self, client, db_session, cashier_a1, login_headers):
        headers = login_headers(cashier_a1)

        response = client.post('/api/auth/logout', headers=headers)
        assert response.status_code == 200
        assert response.get_json()["state"] == "UNAUTHENTICATED"

        assert client.get('/api/auth/session', headers=headers).status_code == 401
        assert client.post('/api/auth/logout', headers=headers).status_code == 401

    def test_logout_without_token(self, client, db_session):
        assert client.post('/api/auth/logout').status_code == 401

    def test_deactivated_staff_token_rejected(self, client, db_session, owner_a, cashier_a1, login_headers):
        headers = login_headers(cashier_a1)
        client.post(f'/api/staff/{cashier_a1.id}/deactivate', headers=login_headers(owner_a))

        assert client.get('/api/auth/session', headers=headers).status_code == 401


class TestSystemEndpoints:

    def test_health(self, client, db_session):
        response = client.get('/health')
        assert response.status_code == 200
        assert response.get_json()["status"] == "healthy"

    def test_version(self, client):
        assert client.get('/version').get_json()["api_version"] == "1.0.0"
