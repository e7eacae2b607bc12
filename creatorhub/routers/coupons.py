from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from ..auth import get_current_user
from ..config import Settings, get_settings
from ..db import get_db
from ..models import User
from ..schemas import CouponRedeem, CouponRedeemResult
from ..services.coupons import redeem_coupon
from ..services.credits import get_balance

router = APIRouter()


@router.post('/redeem', response_model=CouponRedeemResult)
def redeem(
    payload: CouponRedeem,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    settings: Settings = Depends(get_settings),
):
    granted = redeem_coupon(db, user, payload.code, settings.trial_monthly_credits)
    return CouponRedeemResult(
        message=f"Success! {granted:,.0f} credits added to your account",
        credits_granted=granted,
        credits=get_balance(db, user.id),
    )
