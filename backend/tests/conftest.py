"""Shared fixtures: in-memory SQLite database, seeded users and reference data."""
import os
from datetime import datetime
from decimal import Decimal

# Configure before the app modules read settings
os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("SEED_ADMIN_EMAIL", "")

import pytest
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from app.core.database import Base, build_engine, get_db
from app.core.security import get_current_user
from app.models import (
    CalculationMethod, Client, FieldUserCommissionAssignment, RateType, User, UserRole,
)


@pytest.fixture
def engine():
    engine = build_engine("sqlite://", poolclass=StaticPool)
    Base.metadata.create_all(bind=engine)
    yield engine
    Base.metadata.drop_all(bind=engine)
    engine.dispose()


@pytest.fixture
def db(engine):
    session = sessionmaker(autocommit=False, autoflush=False, bind=engine)()
    try:
        yield session
    finally:
        session.close()


def _user(db, username, role):
    user = User(email=f"{username}@crm.test", username=username, full_name=username.title(), role=role)
    db.add(user)
    db.commit()
    db.refresh(user)
    return user


@pytest.fixture
def admin(db):
    return _user(db, "admin", UserRole.ADMIN.value)


@pytest.fixture
def manager(db):
    return _user(db, "manager", UserRole.MANAGER.value)


@pytest.fixture
def agent(db):
    return _user(db, "ravi", UserRole.FIELD_AGENT.value)


@pytest.fixture
def other_agent(db):
    return _user(db, "meena", UserRole.FIELD_AGENT.value)


@pytest.fixture
def backend_user(db):
    return _user(db, "backoffice", UserRole.BACKEND_USER.value)


@pytest.fixture
def hdfc(db):
    client = Client(name="HDFC Bank", code="HDFC")
    db.add(client)
    db.commit()
    db.refresh(client)
    return client


@pytest.fixture
def icici(db):
    client = Client(name="ICICI Bank", code="ICICI")
    db.add(client)
    db.commit()
    db.refresh(client)
    return client


@pytest.fixture
def local(db):
    rate_type = RateType(name="Local", description="Within city limits")
    db.add(rate_type)
    db.commit()
    db.refresh(rate_type)
    return rate_type


@pytest.fixture
def outstation(db):
    rate_type = RateType(name="Outstation")
    db.add(rate_type)
    db.commit()
    db.refresh(rate_type)
    return rate_type


@pytest.fixture
def make_assignment(db):
    """Insert an assignment row directly, bypassing admin validation."""

    def _make(
        user,
        rate_type,
        client=None,
        amount=None,
        percentage=None,
        effective_from=datetime(2025, 1, 1),
        effective_to=None,
        is_active=True,
        currency="INR",
    ):
        if percentage is not None:
            method = CalculationMethod.PERCENTAGE
        else:
            method = CalculationMethod.FIXED_AMOUNT
            amount = Decimal("150") if amount is None else Decimal(str(amount))
        assignment = FieldUserCommissionAssignment(
            user_id=user.id,
            rate_type_id=rate_type.id,
            client_id=client.id if client else None,
            calculation_method=method.value,
            commission_amount=amount,
            commission_percentage=Decimal(str(percentage)) if percentage is not None else None,
            currency=currency,
            is_active=is_active,
            effective_from=effective_from,
            effective_to=effective_to,
        )
        db.add(assignment)
        db.commit()
        db.refresh(assignment)
        return assignment

    return _make


class _Auth:
    user = None


@pytest.fixture
def auth():
    return _Auth()


@pytest.fixture
def client(db, auth):
    from fastapi.testclient import TestClient
    from app.main import app

    def _get_db():
        yield db

    def _get_current_user():
        return auth.user

    app.dependency_overrides[get_db] = _get_db
    app.dependency_overrides[get_current_user] = _get_current_user
    try:
        yield TestClient(app)
    finally:
        app.dependency_overrides.clear()
