import os
from datetime import date, timedelta

# Settings are read at import time; point them at an in-memory database first.
os.environ["DATABASE_URL"] = "sqlite://"
os.environ["PAYMENT_RETRY_BACKOFF_SECONDS"] = "0"
os.environ["PAYMENT_SANDBOX"] = "false"
os.environ["STRIPE_WEBHOOK_SECRET"] = ""

import pytest
from fastapi.testclient import TestClient

from bathhouse.db.session import Base, SessionLocal, engine
from bathhouse.main import app
from bathhouse.schemas.booking import BookingCreate

@pytest.fixture()
def db():
    Base.metadata.create_all(bind=engine)
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(bind=engine)


@pytest.fixture()
def client(db):
    with TestClient(app) as c:
        yield c


@pytest.fixture()
def session_date() -> str:
    return (date.today() + timedelta(days=7)).isoformat()


@pytest.fixture()
def booking_data(session_date):
    """Factory for valid create payloads; keyword overrides win."""
    def _make(**overrides) -> BookingCreate:
        payload = {
            "customerName": "Ada Lovelace",
            "customerEmail": "ada@example.com",
            "customerPhone": "+44 7700 900000",
            "serviceType": "combined",
            "sessionDate": session_date,
            "sessionTime": "10:00",
            "bookingType": "communal",
            "guestCount": 1,
            "paymentMethod": "card",
        }
        payload.update(overrides)
        return BookingCreate(**payload)
    return _make
