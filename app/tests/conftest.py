import os

os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("JWT_SECRET_KEY", "test-secret-key")
os.environ.setdefault("PAYMENT_WEBHOOK_SECRET", "test-webhook-secret")

from decimal import Decimal

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

# FORCE model registration
import app.models  # noqa

from app.core.security import create_access_token
from app.db.base import Base
from app.db.session import get_db
from app.services.ledger_service import LedgerService
from app.services.shipment_lifecycle import ShipmentLifecycle


@pytest.fixture(scope="function")
def engine():
    # one in-memory database per test, shared by every session of that test
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    try:
        yield engine
    finally:
        Base.metadata.drop_all(engine)
        engine.dispose()


@pytest.fixture(scope="function")
def session_factory(engine):
    return sessionmaker(bind=engine, autoflush=False, autocommit=False, future=True)


@pytest.fixture(scope="function")
def db(session_factory):
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture(scope="function")
def client(session_factory):
    from app.main import create_app

    application = create_app()

    def override_get_db():
        session = session_factory()
        try:
            yield session
        finally:
            session.close()

    application.dependency_overrides[get_db] = override_get_db
    with TestClient(application) as c:
        yield c


# ---------------------------------------------------------------------
# helpers
# ---------------------------------------------------------------------


def _auth_headers(user_id: str, role: str, fleet_manager_id: str = None) -> dict:
    claims = {"role": role}
    if fleet_manager_id:
        claims["fleet_manager_id"] = fleet_manager_id
    return {"Authorization": f"Bearer {create_access_token(user_id, claims)}"}


def _fund(db, account_id: str, amount, reference: str = None) -> None:
    LedgerService().credit(
        db,
        account_id=account_id,
        amount=Decimal(str(amount)),
        reference=reference or f"FUND-{account_id}-{amount}",
        description="Wallet funding",
    )
    db.commit()


def _make_shipment(db, shipper_id: str = "shipper-1", estimated_cost="50000"):
    row = ShipmentLifecycle().create(
        db,
        shipper_id=shipper_id,
        estimated_cost=Decimal(str(estimated_cost)),
        pickup_location="Ikeja, Lagos",
        destination="Wuse, Abuja",
        cargo_type="electronics",
    )
    db.commit()
    return row


@pytest.fixture
def auth_headers():
    return _auth_headers


@pytest.fixture
def fund(db):
    return lambda account_id, amount, reference=None: _fund(db, account_id, amount, reference)


@pytest.fixture
def make_shipment(db):
    return lambda shipper_id="shipper-1", estimated_cost="50000": _make_shipment(db, shipper_id, estimated_cost)
