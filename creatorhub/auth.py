from datetime import datetime, timedelta, timezone
from typing import Optional
import uuid

import bcrypt
import jwt
from fastapi import Depends, Header
from sqlalchemy.orm import Session

from .config import settings
from .db import get_db
from .exceptions import AuthenticationError, AuthorizationError, InvalidTokenError, TokenExpiredError
from .models import User


def create_access_token(sub: str, expires_minutes: Optional[int] = None) -> str:
    now = datetime.now(timezone.utc)
    payload = {
        "sub": sub,
        "exp": now + timedelta(minutes=expires_minutes or settings.access_token_expire_minutes),
        "iat": now,
    }
    return jwt.encode(payload, settings.jwt_secret, algorithm=settings.jwt_algorithm)


def hash_password(password: str) -> str:
    return bcrypt.hashpw(password.encode("utf-8"), bcrypt.gensalt()).decode("utf-8")


def verify_password(plain_password: str, hashed_password: Optional[str]) -> bool:
    """Check a login attempt; accounts created by a webhook carry no password."""
    if not hashed_password:
        return False
    return bcrypt.checkpw(plain_password.encode("utf-8"), hashed_password.encode("utf-8"))


def decode_access_token(token: str) -> str:
    try:
        payload = jwt.decode(token, settings.jwt_secret, algorithms=[settings.jwt_algorithm])
    except jwt.ExpiredSignatureError:
        raise TokenExpiredError()
    except jwt.InvalidTokenError as e:
        raise InvalidTokenError(str(e))
    sub = payload.get("sub")
    if not sub:
        raise InvalidTokenError("missing subject")
    return sub


def get_current_user(
    authorization: Optional[str] = Header(None),
    db: Session = Depends(get_db),
) -> User:
    if not authorization or not authorization.lower().startswith("bearer "):
        raise AuthenticationError("Please log in first")
    sub = decode_access_token(authorization.split(" ", 1)[1].strip())
    try:
        user_id = uuid.UUID(sub)
    except ValueError:
        raise InvalidTokenError("malformed subject")
    user = db.get(User, user_id)
    if user is None:
        raise AuthenticationError("Account no longer exists")
    return user


def is_admin(user: User) -> bool:
    admin_emails = {e.lower() for e in settings.admin_emails}
    return user.subscription_tier == "admin" or user.email.lower() in admin_emails


def require_admin(user: User = Depends(get_current_user)) -> User:
    if not is_admin(user):
        raise AuthorizationError("Admin access required")
    return user
