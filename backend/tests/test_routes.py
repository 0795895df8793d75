# Overview: Pytest coverage for the HTTP surface through the Flask test client.

"""
API tests.

Verifies:
- Unauthenticated requests return 401
- The signup flow (register, resend, verify, login) end to end
- Tenant switching is rejected for ordinary principals
- Admin endpoints are gated per tenant
"""

import pytest

from fleetguard.models import Membership
from conftest import TEST_PASSWORD, auth_headers, get_auth_token


# =============================================================================
# UNAUTHENTICATED ACCESS (401)
# =============================================================================


class TestUnauthenticatedAccess:

    @pytest.mark.parametrize(
        "method,path",
        [
            ("GET", "/api/auth/me"),
            ("POST", "/api/auth/logout"),
            ("POST", "/api/auth/promote"),
            ("GET", "/api/tenants"),
            ("POST", "/api/tenants"),
            ("GET", "/api/tenants/current"),
            ("POST", "/api/tenants/switch"),
            ("GET", "/api/admin/memberships"),
            ("GET", "/api/admin/permissions"),
            ("GET", "/api/admin/audit"),
            ("GET", "/api/authorize"),
        ],
    )
    def test_requires_auth(self, client, db_session, method, path):
        resp = getattr(client, method.lower())(path)
        assert resp.status_code == 401, f"{method} {path} returned {resp.status_code}"

    def test_garbage_token(self, client, db_session):
        resp = client.get("/api/auth/me", headers=auth_headers("not-a-token"))
        assert resp.status_code == 401


class TestHealth:

    def test_health(self, client, db_session):
        resp = client.get("/health")
        assert resp.status_code == 200
        assert resp.json["checks"]["database"]["status"] == "healthy"


# =============================================================================
# SIGNUP AND SESSION
# =============================================================================


class TestSignupFlow:

    def test_register_resend_verify_login(self, client, acme):
        resp = client.post("/api/auth/register", json={
            "email": "bob@acme.com",
            "first_name": "Bob",
            "password": TEST_PASSWORD,
        })
        assert resp.status_code == 201
        t1 = resp.json["token"]
        assert resp.json["verification"]["status"] == "pending"

        resp = client.post("/api/auth/resend-verification", json={"email": "bob@acme.com"})
        assert resp.status_code == 200
        t2 = resp.json["token"]
        assert t2 != t1

        resp = client.post("/api/auth/verify", json={"token": t1})
        assert resp.status_code == 404
        assert resp.json["reason"] == "invalid_or_expired"

        resp = client.post("/api/auth/verify", json={"token": t2})
        assert resp.status_code == 201
        assert resp.json["memberships"][0]["company_id"] == acme.id

        token = get_auth_token(client, "bob@acme.com")
        assert token

        resp = client.get("/api/auth/me", headers=auth_headers(token))
        assert resp.status_code == 200
        assert resp.json["tenant_id"] == acme.id
        assert resp.json["permissions"]["vehicles"] == ["view"]

    def test_resend_unknown_email(self, client, db_session):
        resp = client.post("/api/auth/resend-verification", json={"email": "ghost@example.com"})
        assert resp.status_code == 404
        assert resp.json["reason"] == "not_found"

    def test_register_weak_password(self, client, db_session):
        resp = client.post("/api/auth/register", json={"email": "weak@example.com", "password": "abc"})
        assert resp.status_code == 400

    def test_bad_credentials(self, client, owner):
        resp = client.post("/api/auth/login", json={"email": "owner@acme.com", "password": "Wrong123!"})
        assert resp.status_code == 401

    def test_logout_revokes_token(self, client, owner):
        token = get_auth_token(client, "owner@acme.com")
        assert client.post("/api/auth/logout", headers=auth_headers(token)).status_code == 200
        assert client.get("/api/auth/me", headers=auth_headers(token)).status_code == 401


# =============================================================================
# TENANTS
# =============================================================================


class TestTenantRoutes:

    def test_ordinary_user_cannot_switch(self, client, acme, globex, owner):
        token = get_auth_token(client, "owner@acme.com")
        resp = client.post("/api/tenants/switch", json={"company_id": globex.id}, headers=auth_headers(token))
        assert resp.status_code == 403
        assert resp.json["reason"] == "not_global_override"

        resp = client.get("/api/tenants/current", headers=auth_headers(token))
        assert resp.json["tenant_id"] == acme.id

    def test_operator_switch_takes_effect_immediately(self, client, acme, globex, operator):
        token = get_auth_token(client, "ops@fleetguard.io")
        headers = auth_headers(token)

        resp = client.get("/api/admin/memberships", headers=headers)
        assert resp.status_code == 400
        assert resp.json["reason"] == "no_tenant_selected"

        resp = client.post("/api/tenants/switch", json={"company_id": globex.id}, headers=headers)
        assert resp.status_code == 200

        resp = client.get("/api/tenants/current", headers=headers)
        assert resp.json["tenant_id"] == globex.id

        resp = client.get("/api/admin/memberships", headers=headers)
        assert resp.status_code == 200
        assert resp.json["count"] == 1

    def test_switch_to_unknown_company(self, client, operator):
        token = get_auth_token(client, "ops@fleetguard.io")
        resp = client.post("/api/tenants/switch", json={"company_id": 999}, headers=auth_headers(token))
        assert resp.status_code == 404

    def test_create_tenant(self, client, make_user):
        make_user("founder@initech.com")
        token = get_auth_token(client, "founder@initech.com")
        resp = client.post("/api/tenants", json={
            "name": "Initech",
            "contact_email": "founder@initech.com",
        }, headers=auth_headers(token))
        assert resp.status_code == 201

        resp = client.get("/api/authorize", query_string={
            "resource": "settings", "action": "edit",
        }, headers=auth_headers(token))
        assert resp.json["allowed"] is True


# =============================================================================
# PERMISSION DECORATOR
# =============================================================================


class TestRequirePermission:

    def test_admin_allowed(self, client, acme, owner):
        token = get_auth_token(client, "owner@acme.com")
        resp = client.post("/api/fleet/vehicles", headers=auth_headers(token))
        assert resp.status_code == 200
        assert resp.json["tenant_id"] == acme.id

    def test_viewer_denied(self, client, acme, make_user):
        from fleetguard.services.membership_service import add_membership
        viewer = make_user("viewer@example.com")
        add_membership(viewer.id, acme.id, "viewer")
        token = get_auth_token(client, "viewer@example.com")

        resp = client.post("/api/fleet/vehicles", headers=auth_headers(token))
        assert resp.status_code == 403
        assert resp.json["required_permission"] == "vehicles:edit"

    def test_unaffiliated_denied(self, client, make_user):
        make_user("loner@nowhere.org")
        token = get_auth_token(client, "loner@nowhere.org")
        assert client.post("/api/fleet/vehicles", headers=auth_headers(token)).status_code == 403

    def test_override_needs_selected_tenant(self, client, acme, operator):
        token = get_auth_token(client, "ops@fleetguard.io")
        headers = auth_headers(token)

        resp = client.post("/api/fleet/vehicles", headers=headers)
        assert resp.status_code == 400
        assert resp.json["reason"] == "no_tenant_selected"

        client.post("/api/tenants/switch", json={"company_id": acme.id}, headers=headers)
        assert client.post("/api/fleet/vehicles", headers=headers).status_code == 200


# =============================================================================
# ADMIN
# =============================================================================


class TestAdminRoutes:

    def test_admin_adds_member(self, client, acme, owner, make_user, db_session):
        u2 = make_user("u2@example.com")
        token = get_auth_token(client, "owner@acme.com")

        resp = client.put(f"/api/admin/memberships/{u2.id}", json={"role": "viewer"}, headers=auth_headers(token))
        assert resp.status_code == 200
        assert db_session.query(Membership).filter_by(user_id=u2.id, company_id=acme.id).one().role == "viewer"

    def test_viewer_cannot_manage(self, client, acme, make_user):
        from fleetguard.services.membership_service import add_membership
        viewer = make_user("viewer@example.com")
        add_membership(viewer.id, acme.id, "viewer")
        token = get_auth_token(client, "viewer@example.com")
        headers = auth_headers(token)

        resp = client.put(f"/api/admin/memberships/{viewer.id}", json={"role": "admin"}, headers=headers)
        assert resp.status_code == 403

        resp = client.put("/api/admin/permissions", json={
            "role": "viewer", "resource": "vehicles", "action": "delete",
        }, headers=headers)
        assert resp.status_code == 403

        resp = client.get("/api/admin/audit", headers=headers)
        assert resp.status_code == 200

    def test_cross_tenant_query_param_denied(self, client, acme, globex, owner):
        token = get_auth_token(client, "owner@acme.com")
        resp = client.get(f"/api/admin/audit?company_id={globex.id}", headers=auth_headers(token))
        assert resp.status_code == 403

    def test_company_id_zero_is_not_the_callers_tenant(self, client, acme, owner):
        headers = auth_headers(get_auth_token(client, "owner@acme.com"))

        resp = client.get("/api/authorize", query_string={
            "resource": "settings", "action": "edit", "company_id": 0,
        }, headers=headers)
        assert resp.json["company_id"] == 0
        assert resp.json["allowed"] is False

        resp = client.get("/api/admin/audit?company_id=0", headers=headers)
        assert resp.status_code == 403

    def test_grant_roundtrip(self, client, acme, owner):
        token = get_auth_token(client, "owner@acme.com")
        headers = auth_headers(token)
        body = {"role": "viewer", "resource": "reports", "action": "create"}

        assert client.put("/api/admin/permissions", json=body, headers=headers).status_code == 200
        resp = client.get("/api/admin/permissions?role=viewer", headers=headers)
        assert {"reports:create"} <= {f"{g['resource']}:{g['action']}" for g in resp.json["grants"]}

        assert client.delete("/api/admin/permissions", json=body, headers=headers).status_code == 200
        assert client.delete("/api/admin/permissions", json=body, headers=headers).status_code == 404

    def test_promote_route(self, client, acme, make_user):
        make_user("ops@acme.com")
        token = get_auth_token(client, "ops@acme.com")
        resp = client.post("/api/auth/promote", headers=auth_headers(token))
        assert resp.status_code == 409
        assert resp.json["reason"] == "company_has_admin"

    def test_profile_cannot_escalate(self, client, owner):
        token = get_auth_token(client, "owner@acme.com")
        resp = client.patch(f"/api/admin/users/{owner.id}", json={"global_override": True}, headers=auth_headers(token))
        assert resp.status_code == 400

    def test_override_flag_requires_override(self, client, owner, make_user):
        u2 = make_user("u2@example.com")
        token = get_auth_token(client, "owner@acme.com")
        resp = client.post(f"/api/admin/users/{u2.id}/global-override", json={"enabled": True}, headers=auth_headers(token))
        assert resp.status_code == 403
