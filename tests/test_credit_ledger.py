import uuid
from decimal import Decimal

import pytest
from sqlalchemy import select

from creatorhub.exceptions import InsufficientCreditsError, NotFoundError, ValidationFailedError
from creatorhub.models import CreditTransaction, SubscriptionAllowance
from creatorhub.services.credits import (
    add_credits, apply_credit_delta, debit_credits, record_transaction, set_subscription,
)

MISSING = uuid.UUID("00000000-0000-0000-0000-000000000000")


class TestBalanceUpdates:

    def test_delta_is_floored_at_zero(self, db_session, make_user):
        user = make_user(credits="30")

        assert apply_credit_delta(db_session, user.id, Decimal("-50")) == Decimal("0")

    def test_delta_can_change_tier_in_the_same_update(self, db_session, make_user):
        user = make_user()

        apply_credit_delta(db_session, user.id, Decimal("10000"), tier="tier1")
        db_session.commit()
        db_session.refresh(user)

        assert user.subscription_tier == "tier1"
        assert user.credits == Decimal("10000")
        assert user.last_credit_update is not None

    def test_unknown_tier(self, db_session, make_user):
        with pytest.raises(ValidationFailedError):
            apply_credit_delta(db_session, make_user().id, Decimal("1"), tier="platinum")

    def test_delta_for_missing_account(self, db_session):
        with pytest.raises(NotFoundError):
            apply_credit_delta(db_session, MISSING, Decimal("1"))

    def test_debit_requires_covering_balance(self, db_session, make_user):
        user = make_user(credits="0.20")

        with pytest.raises(InsufficientCreditsError) as exc_info:
            debit_credits(db_session, user.id, Decimal("0.30"))

        assert exc_info.value.details["available_credits"] == "0.2000"
        assert debit_credits(db_session, user.id, Decimal("0.20")) == Decimal("0")


class TestTransactions:

    @pytest.mark.parametrize("tx_type,amount", [
        ("purchase", "-5"),
        ("trial", "-5"),
        ("refund", "5"),
        ("manual_grant", "0"),
        ("bonus", "5"),
    ])
    def test_sign_rules(self, db_session, test_user, tx_type, amount):
        with pytest.raises(ValidationFailedError):
            record_transaction(db_session, test_user.id, Decimal(amount), tx_type)

    def test_manual_grant_may_be_negative(self, db_session, test_user):
        tx = record_transaction(db_session, test_user.id, Decimal("-5"), "manual_grant", payment_method="admin")

        assert tx.id is not None

    def test_add_credits_commits_balance_and_row_together(self, db_session, test_user, balance_of):
        add_credits(db_session, test_user.id, Decimal("25"), type="purchase", payment_method="thrivecart")

        assert balance_of(test_user) == Decimal("25")
        tx = db_session.execute(select(CreditTransaction)).scalar_one()
        assert tx.amount == Decimal("25")
        assert tx.type == "purchase"


class TestSubscriptionAllowance:

    def test_paid_tier_sets_renewal(self, db_session, test_user):
        set_subscription(db_session, test_user, "tier2", Decimal("40000"))
        db_session.commit()

        allowance = db_session.execute(select(SubscriptionAllowance)).scalar_one()
        assert allowance.tier == "tier2"
        assert allowance.renewal_date is not None
        assert test_user.subscription_tier == "tier2"

    def test_downgrade_reuses_allowance_row(self, db_session, test_user):
        set_subscription(db_session, test_user, "tier1", Decimal("10000"))
        set_subscription(db_session, test_user, "free")
        db_session.commit()

        allowance = db_session.execute(select(SubscriptionAllowance)).scalar_one()
        assert allowance.tier == "free"
        assert allowance.monthly_allowance == Decimal("0")
        assert allowance.renewal_date is None
