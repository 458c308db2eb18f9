"""Pytest configuration and fixtures."""

import os
import sys
from pathlib import Path

# Repository root on sys.path for reliable pytest imports
sys.path.insert(0, str(Path(__file__).resolve().parents[1]))

# db.session builds its engine at import time
os.environ.setdefault("DATABASE_URL", "sqlite://")

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from tests.helpers import (
    TEST_CLIENT_URL,
    TEST_JWT_SECRET,
    TEST_WEBHOOK_SECRET,
    FakeMailer,
    FakeStripeClient,
)
from trackfit_api.billing.stripe import get_stripe_client
from trackfit_api.db.models import ROLE_ADMIN, ROLE_USER, Base, Membership, SpaBooking, User
from trackfit_api.db.session import get_db
from trackfit_api.mail.mailer import get_mailer
from trackfit_api.main import app


@pytest.fixture(autouse=True)
def payment_env(monkeypatch):
    """Baseline configuration for every test."""
    monkeypatch.setenv("JWT_SECRET", TEST_JWT_SECRET)
    monkeypatch.setenv("CLIENT_URL", TEST_CLIENT_URL)
    monkeypatch.setenv("STRIPE_WEBHOOK_SECRET", TEST_WEBHOOK_SECRET)
    monkeypatch.setenv("PAYMENT_CURRENCY", "inr")
    monkeypatch.delenv("TRACKFIT_WEBHOOK_END_DATE_POLICY", raising=False)
    monkeypatch.delenv("TRACKFIT_ENABLE_DIAGNOSTICS", raising=False)
    monkeypatch.delenv("TRACKFIT_ENV", raising=False)
    monkeypatch.delenv("NODE_ENV", raising=False)


@pytest.fixture(scope="function")
def db_session() -> Session:
    """Fresh in-memory SQLite database per test."""
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)

    SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)
    session = SessionLocal()

    try:
        yield session
        session.rollback()
    finally:
        session.close()
        engine.dispose()


@pytest.fixture
def fake_stripe() -> FakeStripeClient:
    return FakeStripeClient()


@pytest.fixture
def fake_mailer() -> FakeMailer:
    return FakeMailer()


@pytest.fixture
def client(db_session: Session, fake_stripe: FakeStripeClient, fake_mailer: FakeMailer):
    """TestClient with database, provider and mailer overridden."""

    def _get_db():
        yield db_session

    app.dependency_overrides[get_db] = _get_db
    app.dependency_overrides[get_stripe_client] = lambda: fake_stripe
    app.dependency_overrides[get_mailer] = lambda: fake_mailer
    try:
        yield TestClient(app)
    finally:
        app.dependency_overrides.clear()


# ============================================================================
# Data fixtures
# ============================================================================


@pytest.fixture
def member(db_session: Session) -> User:
    user = User(name="Asha Member", email="asha@example.com", role=ROLE_USER)
    db_session.add(user)
    db_session.commit()
    db_session.refresh(user)
    return user


@pytest.fixture
def admin(db_session: Session) -> User:
    user = User(name="Gym Admin", email="admin@example.com", role=ROLE_ADMIN)
    db_session.add(user)
    db_session.commit()
    db_session.refresh(user)
    return user


@pytest.fixture
def pending_membership(db_session: Session, member: User) -> Membership:
    membership = Membership(
        user_id=member.id,
        plan_type="Premium",
        duration="Quarterly",
        price=2999.0,
    )
    db_session.add(membership)
    db_session.commit()
    db_session.refresh(membership)
    return membership


@pytest.fixture
def spa_booking(db_session: Session, member: User) -> SpaBooking:
    booking = SpaBooking(user_id=member.id, service_name="Deep Tissue Massage", price=1200.0)
    db_session.add(booking)
    db_session.commit()
    db_session.refresh(booking)
    return booking
