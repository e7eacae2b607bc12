"""Balance primitives for the credit ledger.

Every balance change is a single UPDATE evaluated by the database
(``credits = credits + :delta``), so concurrent grants and debits against the
same account cannot overwrite each other. Callers own the commit: these
helpers only flush, which lets a handler apply a balance change, a tier change
and a transaction row in one unit of work.
"""
import logging
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import Any, Dict, Optional

from sqlalchemy import case, select, update
from sqlalchemy.orm import Session

from ..db import atomic
from ..exceptions import InsufficientCreditsError, NotFoundError, ValidationFailedError
from ..models import CreditTransaction, SubscriptionAllowance, TIERS, TRANSACTION_TYPES, User

logger = logging.getLogger(__name__)

# Sign each transaction type must carry
_POSITIVE_TYPES = {"purchase", "trial"}
_NEGATIVE_TYPES = {"refund"}


def get_balance(db: Session, user_id) -> Decimal:
    balance = db.execute(select(User.credits).where(User.id == user_id)).scalar_one_or_none()
    return Decimal(balance) if balance is not None else Decimal("0")


def apply_credit_delta(db: Session, user_id, delta: Decimal, tier: Optional[str] = None) -> Decimal:
    """Add ``delta`` to the balance, flooring the result at zero. Returns the new balance.

    When ``tier`` is given the tier change rides on the same UPDATE.
    """
    delta = Decimal(delta)
    new_value = User.credits + delta
    values = {
        "credits": case((new_value < 0, Decimal("0")), else_=new_value),
        "last_credit_update": datetime.now(timezone.utc),
    }
    if tier is not None:
        if tier not in TIERS:
            raise ValidationFailedError(f"Unknown tier: {tier}", field="tier")
        values["subscription_tier"] = tier
    result = db.execute(
        update(User)
        .where(User.id == user_id)
        .values(**values)
        .execution_options(synchronize_session="fetch")
    )
    if result.rowcount == 0:
        raise NotFoundError("user", "User not found")
    balance = get_balance(db, user_id)
    logger.info(f"Credit delta {delta} applied to user {user_id}; balance now {balance}")
    return balance


def debit_credits(db: Session, user_id, amount: Decimal) -> Decimal:
    """Take ``amount`` from the balance only if the balance covers it.

    The check and the subtraction are one conditional UPDATE; when no row
    matches the account either does not exist or cannot afford the debit.
    """
    amount = Decimal(amount)
    if amount <= 0:
        return get_balance(db, user_id)
    result = db.execute(
        update(User)
        .where(User.id == user_id, User.credits >= amount)
        .values(
            credits=User.credits - amount,
            last_credit_update=datetime.now(timezone.utc),
        )
        .execution_options(synchronize_session="fetch")
    )
    if result.rowcount == 0:
        available = db.execute(select(User.credits).where(User.id == user_id)).scalar_one_or_none()
        if available is None:
            raise NotFoundError("user", "User not found")
        raise InsufficientCreditsError(required=amount, available=Decimal(available), user_id=str(user_id))
    return get_balance(db, user_id)


def record_transaction(
    db: Session,
    user_id,
    amount: Decimal,
    type: str,
    payment_method: Optional[str] = None,
    metadata: Optional[Dict[str, Any]] = None,
) -> CreditTransaction:
    amount = Decimal(amount)
    if type not in TRANSACTION_TYPES:
        raise ValidationFailedError(f"Unknown transaction type: {type}", field="type")
    if amount == 0:
        raise ValidationFailedError("Transaction amount must be non-zero", field="amount")
    if type in _POSITIVE_TYPES and amount < 0:
        raise ValidationFailedError(f"A {type} transaction must be positive", field="amount")
    if type in _NEGATIVE_TYPES and amount > 0:
        raise ValidationFailedError(f"A {type} transaction must be negative", field="amount")

    tx = CreditTransaction(
        user_id=user_id,
        amount=amount,
        type=type,
        payment_method=payment_method,
        metadata_=metadata or {},
    )
    db.add(tx)
    db.flush()
    return tx


def set_subscription(db: Session, user: User, tier: str, monthly_allowance: Decimal = Decimal("0")) -> None:
    """Move the account to ``tier`` and keep its allowance record in step."""
    if tier not in TIERS:
        raise ValidationFailedError(f"Unknown tier: {tier}", field="tier")
    user.subscription_tier = tier

    allowance = db.execute(
        select(SubscriptionAllowance).where(SubscriptionAllowance.user_id == user.id)
    ).scalar_one_or_none()
    if allowance is None:
        allowance = SubscriptionAllowance(user_id=user.id)
        db.add(allowance)
    allowance.tier = tier
    allowance.monthly_allowance = Decimal(monthly_allowance)
    allowance.renewal_date = (
        datetime.now(timezone.utc) + timedelta(days=30) if tier not in ("free", "admin") else None
    )
    db.flush()


def add_credits(
    db: Session,
    user_id,
    credits: Decimal,
    type: str = "manual_grant",
    payment_method: Optional[str] = None,
    metadata: Optional[Dict[str, Any]] = None,
) -> Decimal:
    """Apply a grant (or removal) and its transaction row, then commit both.

    A removal larger than the balance stops at zero; the transaction records
    the change that was actually applied.
    """
    with atomic(db):
        before = get_balance(db, user_id)
        balance = apply_credit_delta(db, user_id, credits)
        applied = balance - before
        if applied != 0:
            meta = dict(metadata or {})
            if applied != Decimal(credits):
                meta["requested"] = str(credits)
            record_transaction(db, user_id, applied, type, payment_method=payment_method, metadata=meta)
    return balance
