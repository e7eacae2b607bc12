from decimal import Decimal

from sqlalchemy import select

from creatorhub.config import settings as _settings
from creatorhub.models import Coupon, CreditTransaction, Project, UsageLog


class TestAdminAccess:

    def test_regular_user_is_refused(self, client, test_user, auth_headers):
        assert client.get("/admin/users", headers=auth_headers(test_user)).status_code == 403

    def test_anonymous_is_refused(self, client):
        assert client.get("/admin/users").status_code == 401

    def test_admin_email_list_grants_access(self, client, test_user, auth_headers, monkeypatch):
        monkeypatch.setattr(_settings, "admin_emails", [test_user.email.upper()])

        assert client.get("/admin/users", headers=auth_headers(test_user)).status_code == 200


class TestAdminUsers:

    def test_search_users(self, client, make_user, admin_user, auth_headers):
        make_user(email="alice@example.com")
        make_user(email="bob@example.com")

        response = client.get("/admin/users", params={"q": "ALICE"}, headers=auth_headers(admin_user))

        assert [u["email"] for u in response.json()] == ["alice@example.com"]

    def test_manual_grant(self, client, db_session, test_user, admin_user, auth_headers, balance_of):
        response = client.post(
            f"/admin/users/{test_user.id}/credits",
            json={"amount": "500", "reason": "support goodwill"},
            headers=auth_headers(admin_user),
        )

        assert response.status_code == 200
        assert balance_of(test_user) == Decimal("500")
        tx = db_session.execute(select(CreditTransaction)).scalar_one()
        assert tx.type == "manual_grant"
        assert tx.payment_method == "admin"
        assert tx.metadata_["reason"] == "support goodwill"

    def test_manual_removal_floors_at_zero(self, client, db_session, make_user, admin_user, auth_headers, balance_of):
        user = make_user(credits="200")

        client.post(
            f"/admin/users/{user.id}/credits",
            json={"amount": "-1000", "reason": "chargeback"},
            headers=auth_headers(admin_user),
        )

        assert balance_of(user) == Decimal("0")
        tx = db_session.execute(select(CreditTransaction)).scalar_one()
        assert tx.amount == Decimal("-200")
        assert tx.metadata_["requested"] == "-1000"

    def test_grant_to_unknown_user(self, client, admin_user, auth_headers):
        response = client.post(
            "/admin/users/00000000-0000-0000-0000-000000000000/credits",
            json={"amount": "5"},
            headers=auth_headers(admin_user),
        )

        assert response.status_code == 404

    def test_usage_is_paginated_ten_per_page(self, client, db_session, test_user, admin_user, auth_headers):
        for i in range(12):
            db_session.add(UsageLog(user_id=test_user.id, model="Claude Haiku 4.5", tokens_input=i))
        db_session.add(UsageLog(user_id=admin_user.id, model="Ideogram"))
        db_session.commit()

        page1 = client.get(
            "/admin/usage", params={"user_id": str(test_user.id)}, headers=auth_headers(admin_user)
        ).json()
        page2 = client.get(
            "/admin/usage", params={"user_id": str(test_user.id), "page": 2}, headers=auth_headers(admin_user)
        ).json()

        assert page1["total"] == 12
        assert page1["totalPages"] == 2
        assert len(page1["items"]) == 10
        assert len(page2["items"]) == 2
        everyone = client.get("/admin/usage", headers=auth_headers(admin_user)).json()
        assert everyone["total"] == 13


class TestAdminCoupons:

    def test_create_list_delete(self, client, db_session, admin_user, auth_headers):
        headers = auth_headers(admin_user)

        created = client.post("/admin/coupons", json={"months": 2, "max_uses": 50}, headers=headers)
        assert created.status_code == 201
        code = created.json()["code"]
        assert code.startswith("TRIAL") and len(code) == 13

        listed = client.get("/admin/coupons", headers=headers).json()
        assert [c["code"] for c in listed] == [code]

        assert client.delete(f"/admin/coupons/{code}", headers=headers).status_code == 204
        db_session.expire_all()
        assert db_session.get(Coupon, code) is None

    def test_explicit_code_is_uppercased(self, client, admin_user, auth_headers):
        response = client.post("/admin/coupons", json={"code": "launch50", "months": 1}, headers=auth_headers(admin_user))

        assert response.json()["code"] == "LAUNCH50"

    def test_duplicate_code(self, client, admin_user, auth_headers):
        headers = auth_headers(admin_user)
        client.post("/admin/coupons", json={"code": "DUP", "months": 1}, headers=headers)

        assert client.post("/admin/coupons", json={"code": "DUP", "months": 1}, headers=headers).status_code == 400

    def test_delete_unknown_coupon(self, client, admin_user, auth_headers):
        assert client.delete("/admin/coupons/NOPE", headers=auth_headers(admin_user)).status_code == 404


class TestAdminProjects:

    def test_create_update_list(self, client, db_session, admin_user, auth_headers):
        headers = auth_headers(admin_user)

        created = client.post(
            "/admin/projects",
            json={"slug": "brand-strategist", "name": "Brand Strategist", "coming_soon": True},
            headers=headers,
        )
        assert created.status_code == 201

        updated = client.patch(
            "/admin/projects/brand-strategist",
            json={"coming_soon": False, "requires_tier2": True},
            headers=headers,
        )
        assert updated.status_code == 200
        assert updated.json()["coming_soon"] is False
        assert updated.json()["requires_tier2"] is True
        assert updated.json()["name"] == "Brand Strategist"

        listed = client.get("/admin/projects", headers=headers).json()
        assert [p["slug"] for p in listed] == ["brand-strategist"]

    def test_update_unknown_project(self, client, admin_user, auth_headers):
        response = client.patch("/admin/projects/missing", json={"name": "x"}, headers=auth_headers(admin_user))

        assert response.status_code == 404
