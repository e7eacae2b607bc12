import logging
import math
from typing import List, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Query, Response
from sqlalchemy import func, or_, select
from sqlalchemy.orm import Session

from ..auth import require_admin
from ..db import get_db
from ..exceptions import NotFoundError
from ..models import UsageLog, User
from ..schemas import (
    CouponCreate, CouponOut, ManualGrant, ProjectIn, ProjectOut, ProjectUpdate, UsageLogOut, UserOut,
)
from ..services import coupons as coupon_service
from ..services import projects as project_service
from ..services.credits import add_credits

router = APIRouter(dependencies=[Depends(require_admin)])
logger = logging.getLogger(__name__)

USAGE_PAGE_SIZE = 10


@router.get('/users', response_model=List[UserOut])
def list_users(q: Optional[str] = None, limit: int = 100, db: Session = Depends(get_db)):
    stmt = select(User).order_by(User.created_at.desc()).limit(min(max(limit, 1), 500))
    if q:
        pattern = f"%{q.lower()}%"
        stmt = stmt.where(or_(func.lower(User.email).like(pattern), func.lower(User.name).like(pattern)))
    return list(db.execute(stmt).scalars())


@router.post('/users/{user_id}/credits')
def grant_credits(
    user_id: UUID,
    payload: ManualGrant,
    admin: User = Depends(require_admin),
    db: Session = Depends(get_db),
):
    balance = add_credits(
        db,
        user_id,
        payload.amount,
        type="manual_grant",
        payment_method="admin",
        metadata={"reason": payload.reason, "granted_by": admin.email},
    )
    logger.info(f"Admin {admin.email} adjusted credits of {user_id} by {payload.amount}")
    return {"success": True, "credits": balance}


@router.get('/usage')
def usage(
    user_id: Optional[UUID] = None,
    page: int = Query(1, ge=1),
    db: Session = Depends(get_db),
):
    filters = [UsageLog.user_id == user_id] if user_id else []
    total = db.execute(select(func.count(UsageLog.id)).where(*filters)).scalar_one()
    rows = db.execute(
        select(UsageLog)
        .where(*filters)
        .order_by(UsageLog.created_at.desc())
        .offset((page - 1) * USAGE_PAGE_SIZE)
        .limit(USAGE_PAGE_SIZE)
    ).scalars()
    return {
        "items": [UsageLogOut.model_validate(r) for r in rows],
        "page": page,
        "pageSize": USAGE_PAGE_SIZE,
        "total": total,
        "totalPages": max(1, math.ceil(total / USAGE_PAGE_SIZE)),
    }


# Coupons

@router.get('/coupons', response_model=List[CouponOut])
def list_coupons(db: Session = Depends(get_db)):
    return coupon_service.list_coupons(db)


@router.post('/coupons', response_model=CouponOut, status_code=201)
def create_coupon(payload: CouponCreate, db: Session = Depends(get_db)):
    return coupon_service.create_coupon(db, payload)


@router.delete('/coupons/{code}', status_code=204)
def delete_coupon(code: str, db: Session = Depends(get_db)):
    coupon_service.delete_coupon(db, code)
    return Response(status_code=204)


# Projects

@router.get('/projects', response_model=List[ProjectOut])
def list_projects(db: Session = Depends(get_db)):
    return project_service.list_projects(db)


@router.post('/projects', response_model=ProjectOut, status_code=201)
def create_project(payload: ProjectIn, db: Session = Depends(get_db)):
    return project_service.create_project(db, payload)


@router.patch('/projects/{slug}', response_model=ProjectOut)
def update_project(slug: str, payload: ProjectUpdate, db: Session = Depends(get_db)):
    return project_service.update_project(db, slug, payload)


@router.get('/users/{user_id}', response_model=UserOut)
def get_user(user_id: UUID, db: Session = Depends(get_db)):
    user = db.get(User, user_id)
    if user is None:
        raise NotFoundError("user", "User not found")
    return user
