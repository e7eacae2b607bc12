import os
import tempfile
import uuid
from decimal import Decimal

# The engine is built at import time, so point it at a throwaway database first
os.environ["DATABASE_URL"] = "sqlite:///" + os.path.join(
    tempfile.gettempdir(), f"creatorhub_test_{os.getpid()}.db"
)

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.orm import Session

from creatorhub.auth import create_access_token
from creatorhub.config import settings as _settings
from creatorhub.db import Base, SessionLocal, engine
from creatorhub.main import app
from creatorhub.models import Project, User


@pytest.fixture(scope="session", autouse=True)
def create_test_schema():
    Base.metadata.create_all(bind=engine)
    yield
    Base.metadata.drop_all(bind=engine)


@pytest.fixture(autouse=True)
def _clean_tables():
    with engine.begin() as conn:
        for table in reversed(Base.metadata.sorted_tables):
            conn.execute(table.delete())
    yield


@pytest.fixture(autouse=True)
def _configure_settings_for_tests(monkeypatch):
    # Predictable settings regardless of any local .env
    monkeypatch.setattr(_settings, "thrivecart_secret", None)
    monkeypatch.setattr(_settings, "auto_provision_accounts", True)
    monkeypatch.setattr(_settings, "n8n_chat_webhook_url", None)
    monkeypatch.setattr(_settings, "n8n_image_webhook_url", None)
    monkeypatch.setattr(_settings, "chat_billing_enabled", False)
    monkeypatch.setattr(_settings, "admin_emails", [])
    monkeypatch.setattr(_settings, "vdocipher_api_key", None)
    monkeypatch.setattr(_settings, "trial_monthly_credits", 10000)
    yield


@pytest.fixture
def client() -> TestClient:
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture
def db_session() -> Session:
    session: Session = SessionLocal()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def make_user(db_session: Session):
    def _make(credits="0", tier="free", email=None) -> User:
        user = User(
            email=email or f"test_{uuid.uuid4().hex[:8]}@example.com",
            name="Test",
            credits=Decimal(credits),
            subscription_tier=tier,
        )
        db_session.add(user)
        db_session.commit()
        db_session.refresh(user)
        return user
    return _make


@pytest.fixture
def test_user(make_user) -> User:
    return make_user()


@pytest.fixture
def admin_user(make_user) -> User:
    return make_user(tier="admin")


@pytest.fixture
def auth_headers():
    def _headers(user: User):
        return {"Authorization": f"Bearer {create_access_token(str(user.id))}"}
    return _headers


@pytest.fixture
def make_project(db_session: Session):
    def _make(slug="content-creator", **fields) -> Project:
        project = Project(slug=slug, name=slug.replace("-", " ").title(), **fields)
        db_session.add(project)
        db_session.commit()
        db_session.refresh(project)
        return project
    return _make


@pytest.fixture
def balance_of(db_session: Session):
    def _balance(user: User) -> Decimal:
        db_session.expire_all()
        return db_session.get(User, user.id).credits
    return _balance
