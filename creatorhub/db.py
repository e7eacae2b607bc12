from contextlib import contextmanager

import redis
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker, declarative_base

from .config import settings

# SQLite needs cross-thread access for the threadpool FastAPI runs sync routes in
_connect_args = {"check_same_thread": False} if settings.database_url.startswith("sqlite") else {}

engine = create_engine(settings.database_url, pool_pre_ping=True, future=True, connect_args=_connect_args)
SessionLocal = sessionmaker(bind=engine, autocommit=False, autoflush=False, future=True)
Base = declarative_base()


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


@contextmanager
def atomic(db: Session):
    """Commit the enclosed ledger writes together, or roll all of them back."""
    try:
        yield db
        db.commit()
    except Exception:
        db.rollback()
        raise


_redis_client = None


def get_redis() -> "redis.Redis":
    """Return a Redis client built from settings.redis_url."""
    global _redis_client
    if _redis_client is None:
        try:
            _redis_client = redis.Redis.from_url(settings.redis_url, decode_responses=True)
        except Exception as e:
            raise RuntimeError(f"Redis initialization failed: {e}")
    return _redis_client
