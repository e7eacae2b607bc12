from datetime import datetime, timedelta, timezone
from decimal import Decimal
import uuid

import jwt
import pytest

from creatorhub.auth import create_access_token, decode_access_token
from creatorhub.config import settings as _settings
from creatorhub.exceptions import InvalidTokenError, TokenExpiredError
from creatorhub.models import CreditTransaction, User


def test_signup_lowercases_and_hashes_password(client, db_session):
    response = client.post(
        "/auth/signup", json={"email": "Maker@Example.com", "password": "s3cret-pass", "name": "Maker"}
    )

    assert response.status_code == 200
    assert response.json()["email"] == "maker@example.com"
    assert response.json()["subscription_tier"] == "free"
    assert "password_hash" not in response.json()
    user = db_session.get(User, uuid.UUID(response.json()["id"]))
    assert user.password_hash and user.password_hash != "s3cret-pass"


def test_signup_refuses_existing_email(client, make_user):
    make_user(email="maker@example.com")

    response = client.post("/auth/signup", json={"email": "MAKER@example.com", "password": "s3cret-pass"})

    assert response.status_code == 400


def test_signup_requires_password(client):
    assert client.post("/auth/signup", json={"email": "maker@example.com"}).status_code == 422


def test_login_issues_usable_token(client):
    client.post("/auth/signup", json={"email": "maker@example.com", "password": "s3cret-pass"})

    token = client.post(
        "/auth/login", json={"email": "maker@example.com", "password": "s3cret-pass"}
    ).json()["access_token"]
    me = client.get("/auth/me", headers={"Authorization": f"Bearer {token}"})

    assert me.status_code == 200
    assert me.json()["email"] == "maker@example.com"


def test_login_wrong_password(client):
    client.post("/auth/signup", json={"email": "maker@example.com", "password": "s3cret-pass"})

    response = client.post("/auth/login", json={"email": "maker@example.com", "password": "guess-guess"})

    assert response.status_code == 401
    assert "access_token" not in response.json()


def test_login_unknown_email(client):
    response = client.post("/auth/login", json={"email": "ghost@example.com", "password": "whatever1"})

    assert response.status_code == 401


def test_email_alone_cannot_log_into_admin_account(client, db_session, make_user, monkeypatch, balance_of):
    monkeypatch.setattr(_settings, "admin_emails", ["boss@example.com"])
    make_user(email="boss@example.com")
    victim = make_user()

    response = client.post("/auth/login", json={"email": "boss@example.com"})

    assert response.status_code == 400
    assert response.json()["error"] == "Missing email or password"
    grant = client.post(f"/admin/users/{victim.id}/credits", json={"amount": "999999"})
    assert grant.status_code == 401
    assert balance_of(victim) == Decimal("0")


def test_webhook_provisioned_account_has_no_password(client, make_user):
    make_user(email="buyer@example.com")

    response = client.post("/auth/login", json={"email": "buyer@example.com", "password": "anything-at-all"})

    assert response.status_code == 401


def test_garbage_token(client):
    response = client.get("/credits/me", headers={"Authorization": "Bearer not-a-jwt"})

    assert response.status_code == 401
    assert response.json()["code"] == "InvalidTokenError"


def test_expired_token_is_rejected():
    past = datetime.now(timezone.utc) - timedelta(hours=2)
    token = jwt.encode(
        {"sub": "abc", "iat": past, "exp": past + timedelta(minutes=5)},
        _settings.jwt_secret,
        algorithm=_settings.jwt_algorithm,
    )

    with pytest.raises(TokenExpiredError):
        decode_access_token(token)


def test_token_without_subject_is_rejected():
    token = jwt.encode({"exp": datetime.now(timezone.utc) + timedelta(minutes=5)}, _settings.jwt_secret)

    with pytest.raises(InvalidTokenError):
        decode_access_token(token)


def test_token_round_trip():
    assert decode_access_token(create_access_token("user-1")) == "user-1"


class TestBalanceEndpoints:

    def test_free_account_without_credits_has_no_access(self, client, test_user, auth_headers):
        body = client.get("/credits/me", headers=auth_headers(test_user)).json()

        assert Decimal(body["credits"]) == 0
        assert body["tier"] == "free"
        assert body["has_access"] is False

    def test_free_account_with_credits_has_access(self, client, make_user, auth_headers):
        user = make_user(credits="25")

        assert client.get("/credits/me", headers=auth_headers(user)).json()["has_access"] is True

    def test_paid_tier_has_access_at_zero_balance(self, client, make_user, auth_headers):
        user = make_user(tier="tier1")

        assert client.get("/credits/me", headers=auth_headers(user)).json()["has_access"] is True

    def test_transactions_are_listed_for_the_caller_only(self, client, db_session, make_user, auth_headers):
        me, other = make_user(), make_user()
        db_session.add_all([
            CreditTransaction(user_id=me.id, amount=Decimal("25"), type="purchase", payment_method="thrivecart",
                              metadata_={"order_id": "O-1"}),
            CreditTransaction(user_id=other.id, amount=Decimal("10"), type="purchase"),
        ])
        db_session.commit()

        rows = client.get("/credits/me/transactions", headers=auth_headers(me)).json()

        assert len(rows) == 1
        assert rows[0]["type"] == "purchase"
        assert rows[0]["metadata"] == {"order_id": "O-1"}
