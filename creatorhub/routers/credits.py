from typing import List

from fastapi import APIRouter, Depends
from sqlalchemy import select
from sqlalchemy.orm import Session

from ..auth import get_current_user
from ..db import get_db
from ..models import CreditTransaction, User
from ..schemas import CreditBalance, TransactionOut
from ..services.credits import get_balance

router = APIRouter()


@router.get('/me', response_model=CreditBalance)
def my_balance(user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    credits = get_balance(db, user.id)
    # Paying subscribers and anyone holding credits get past the paywall
    has_access = user.subscription_tier != "free" or credits > 0
    return CreditBalance(credits=credits, tier=user.subscription_tier, has_access=has_access)


@router.get('/me/transactions', response_model=List[TransactionOut])
def my_transactions(limit: int = 50, user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    rows = db.execute(
        select(CreditTransaction)
        .where(CreditTransaction.user_id == user.id)
        .order_by(CreditTransaction.created_at.desc())
        .limit(min(max(limit, 1), 200))
    ).scalars()
    return list(rows)
