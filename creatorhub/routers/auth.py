from fastapi import APIRouter, Depends
from sqlalchemy import func, select
from sqlalchemy.orm import Session
from ..db import atomic, get_db
from ..exceptions import AuthenticationError, ValidationFailedError
from ..models import User
from ..schemas import LoginRequest, UserCreate, UserOut, Token
from ..auth import create_access_token, get_current_user, hash_password, verify_password

router = APIRouter()

def _find_by_email(db: Session, email: str):
    return db.execute(select(User).where(func.lower(User.email) == email.lower())).scalar_one_or_none()

@router.post('/signup', response_model=UserOut)
def signup(payload: UserCreate, db: Session = Depends(get_db)):
    # Webhook-provisioned accounts are not claimable here; they have no password to prove ownership with
    if _find_by_email(db, payload.email):
        raise ValidationFailedError("Account already exists", field="email")
    email = payload.email.lower()
    user = User(
        email=email,
        name=payload.name or email.split("@")[0],
        password_hash=hash_password(payload.password),
        credits=0,
        subscription_tier="free",
    )
    with atomic(db):
        db.add(user)
    db.refresh(user)
    return user

@router.post('/login', response_model=Token)
def login(payload: LoginRequest, db: Session = Depends(get_db)):
    if not payload.email or not payload.password:
        raise ValidationFailedError("Missing email or password")
    user = _find_by_email(db, payload.email)
    if not user or not verify_password(payload.password, user.password_hash):
        raise AuthenticationError("Invalid credentials")
    token = create_access_token(str(user.id))
    return Token(access_token=token)

@router.get('/me', response_model=UserOut)
def me(user: User = Depends(get_current_user)):
    return user
