from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest
from sqlalchemy import select

from creatorhub.models import Coupon, CreditTransaction
from creatorhub.services.coupons import generate_code, is_expired


@pytest.fixture
def make_coupon(db_session):
    def _make(code="TRIALABC123", **fields):
        fields.setdefault("type", "trial")
        fields.setdefault("months", 3)
        fields.setdefault("uses", 0)
        coupon = Coupon(code=code, **fields)
        db_session.add(coupon)
        db_session.commit()
        return coupon
    return _make


def _uses(db_session, code):
    db_session.expire_all()
    return db_session.get(Coupon, code).uses


class TestCouponRedemption:

    def test_trial_coupon_grants_three_months(
        self, client, db_session, test_user, make_coupon, auth_headers, balance_of
    ):
        make_coupon("TRIALABC123", months=3, max_uses=10)

        response = client.post(
            "/coupons/redeem", json={"code": "trialabc123"}, headers=auth_headers(test_user)
        )

        assert response.status_code == 200
        body = response.json()
        assert body["success"] is True
        assert Decimal(body["credits_granted"]) == Decimal("30000")
        assert body["message"] == "Success! 30,000 credits added to your account"
        assert balance_of(test_user) == Decimal("30000")
        assert _uses(db_session, "TRIALABC123") == 1

        tx = db_session.execute(
            select(CreditTransaction).where(CreditTransaction.user_id == test_user.id)
        ).scalar_one()
        assert tx.type == "trial"
        assert tx.amount == Decimal("30000")
        assert tx.payment_method == "coupon"
        assert tx.metadata_ == {"coupon_code": "TRIALABC123"}

    def test_unknown_code(self, client, test_user, auth_headers):
        response = client.post("/coupons/redeem", json={"code": "NOPE"}, headers=auth_headers(test_user))

        assert response.status_code == 404
        assert response.json()["error"] == "Invalid coupon code"

    def test_expired_coupon(self, client, db_session, test_user, make_coupon, auth_headers, balance_of):
        make_coupon("TRIALOLD", expires_at=datetime.now(timezone.utc) - timedelta(days=1))

        response = client.post("/coupons/redeem", json={"code": "TRIALOLD"}, headers=auth_headers(test_user))

        assert response.status_code == 410
        assert balance_of(test_user) == Decimal("0")
        assert _uses(db_session, "TRIALOLD") == 0

    def test_exhausted_coupon(self, client, db_session, test_user, make_coupon, auth_headers, balance_of):
        make_coupon("TRIALFULL", max_uses=2, uses=2)

        response = client.post("/coupons/redeem", json={"code": "TRIALFULL"}, headers=auth_headers(test_user))

        assert response.status_code == 409
        assert balance_of(test_user) == Decimal("0")
        assert _uses(db_session, "TRIALFULL") == 2

    def test_last_use_then_exhausted(self, client, make_user, make_coupon, auth_headers):
        make_coupon("TRIALLAST", max_uses=1)
        first, second = make_user(), make_user()

        assert client.post(
            "/coupons/redeem", json={"code": "TRIALLAST"}, headers=auth_headers(first)
        ).status_code == 200
        assert client.post(
            "/coupons/redeem", json={"code": "TRIALLAST"}, headers=auth_headers(second)
        ).status_code == 409

    def test_discount_coupon_is_refused_without_consuming_a_use(
        self, client, db_session, test_user, make_coupon, auth_headers, balance_of
    ):
        make_coupon("SAVE20", type="discount", months=None, discount_percent=20)

        response = client.post("/coupons/redeem", json={"code": "SAVE20"}, headers=auth_headers(test_user))

        assert response.status_code == 422
        assert balance_of(test_user) == Decimal("0")
        assert _uses(db_session, "SAVE20") == 0

    def test_redeem_requires_login(self, client, make_coupon):
        make_coupon("TRIALABC123")

        response = client.post("/coupons/redeem", json={"code": "TRIALABC123"})

        assert response.status_code == 401


def test_generated_codes_are_trial_prefixed():
    code = generate_code()

    assert code.startswith("TRIAL")
    assert len(code) == 13
    assert code == code.upper()


def test_naive_expiry_is_read_as_utc():
    coupon = Coupon(code="X", expires_at=datetime.utcnow() - timedelta(minutes=1))

    assert is_expired(coupon)
