import logging
import secrets
import string
from datetime import datetime, timezone
from decimal import Decimal
from typing import List, Optional

from sqlalchemy import or_, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ..db import atomic
from ..exceptions import (
    CouponExhaustedError, CouponExpiredError, NotFoundError, UnsupportedCouponError, ValidationFailedError,
)
from ..models import Coupon, User
from ..schemas import CouponCreate
from .credits import apply_credit_delta, record_transaction

logger = logging.getLogger(__name__)

_CODE_ALPHABET = string.ascii_uppercase + string.digits


def normalize_code(code: str) -> str:
    return (code or "").strip().upper()


def generate_code(prefix: str = "TRIAL") -> str:
    return prefix + "".join(secrets.choice(_CODE_ALPHABET) for _ in range(8))


def _as_utc(value: Optional[datetime]) -> Optional[datetime]:
    # SQLite hands back naive datetimes; they are stored in UTC
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def is_expired(coupon: Coupon, now: Optional[datetime] = None) -> bool:
    expires_at = _as_utc(coupon.expires_at)
    return expires_at is not None and expires_at <= (now or datetime.now(timezone.utc))


def is_exhausted(coupon: Coupon) -> bool:
    return coupon.max_uses is not None and (coupon.uses or 0) >= coupon.max_uses


def get_coupon(db: Session, code: str) -> Coupon:
    coupon = db.get(Coupon, normalize_code(code))
    if coupon is None:
        raise NotFoundError("coupon", "Invalid coupon code")
    return coupon


def list_coupons(db: Session) -> List[Coupon]:
    return list(db.execute(select(Coupon).order_by(Coupon.code)).scalars())


def create_coupon(db: Session, payload: CouponCreate) -> Coupon:
    code = normalize_code(payload.code) if payload.code else generate_code()
    if payload.type == "trial" and not payload.months:
        raise ValidationFailedError("Trial coupons need a month count", field="months")
    if payload.type == "discount" and not payload.discount_percent:
        raise ValidationFailedError("Discount coupons need a percentage", field="discount_percent")

    coupon = Coupon(
        code=code,
        type=payload.type,
        months=payload.months if payload.type == "trial" else None,
        discount_percent=payload.discount_percent if payload.type == "discount" else None,
        max_uses=payload.max_uses,
        uses=0,
        expires_at=_as_utc(payload.expires_at),
    )
    try:
        with atomic(db):
            db.add(coupon)
    except IntegrityError:
        raise ValidationFailedError(f"Coupon {code} already exists", field="code")
    logger.info(f"Coupon {code} created ({payload.type})")
    return coupon


def delete_coupon(db: Session, code: str) -> None:
    coupon = get_coupon(db, code)
    with atomic(db):
        db.delete(coupon)
    logger.info(f"Coupon {coupon.code} deleted")


def _claim_use(db: Session, code: str, now: datetime) -> bool:
    """Increment ``uses`` only while the coupon is live and under its cap."""
    result = db.execute(
        update(Coupon)
        .where(
            Coupon.code == code,
            or_(Coupon.max_uses.is_(None), Coupon.uses < Coupon.max_uses),
            or_(Coupon.expires_at.is_(None), Coupon.expires_at > now),
        )
        .values(uses=Coupon.uses + 1)
        .execution_options(synchronize_session="fetch")
    )
    return result.rowcount == 1


def redeem_coupon(db: Session, user: User, code: str, monthly_credits: int) -> Decimal:
    """Redeem ``code`` for ``user``; returns the credits granted.

    The grant, the ``trial`` transaction and the use-count increment commit
    together. The use-count check and increment are one conditional UPDATE, so
    concurrent redemptions cannot push a coupon past ``max_uses``.
    """
    coupon = get_coupon(db, code)
    now = datetime.now(timezone.utc)

    if is_expired(coupon, now):
        raise CouponExpiredError(coupon.code)
    if is_exhausted(coupon):
        raise CouponExhaustedError(coupon.code)
    if coupon.type != "trial":
        raise UnsupportedCouponError(coupon.code, coupon.type)

    grant = Decimal(monthly_credits) * (coupon.months or 0)
    if grant <= 0:
        raise ValidationFailedError("Coupon grants no credits", field="months")

    with atomic(db):
        if not _claim_use(db, coupon.code, now):
            db.refresh(coupon)
            if is_expired(coupon, now):
                raise CouponExpiredError(coupon.code)
            raise CouponExhaustedError(coupon.code)
        apply_credit_delta(db, user.id, grant)
        record_transaction(
            db, user.id, grant, "trial",
            payment_method="coupon",
            metadata={"coupon_code": coupon.code},
        )

    logger.info(f"Coupon {coupon.code} redeemed by {user.id}: +{grant} credits")
    return grant
