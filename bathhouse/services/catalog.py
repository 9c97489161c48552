"""Bookable services, their durations and list prices.

Prices are in pence. Any of them can be overridden per studio through the
settings table (``PRICE_SAUNA``, ``PRICE_ICE_BATH``, ``PRICE_COMBINED``,
``PRICE_PRIVATE``).
"""
from dataclasses import dataclass

from sqlalchemy.orm import Session

from bathhouse.core.config import settings
from bathhouse.services.settings_service import get_int_setting


@dataclass(frozen=True)
class Service:
    key: str
    name: str
    duration_minutes: int
    unit_price: int  # per guest, communal


SERVICES = {
    "ice_bath": Service("ice_bath", "Ice Bath Session", 20, 3000),
    "sauna": Service("sauna", "Sauna Session", 30, 2500),
    "combined": Service("combined", "Combined Session", 50, 4500),
}

# Flat price for taking a whole slot privately
DEFAULT_PRIVATE_PRICE = 7000


def get_service(service_type: str) -> Service | None:
    return SERVICES.get(service_type)


def default_capacity(service_type: str) -> int:
    return settings.DEFAULT_SLOT_CAPACITY


def unit_price(db: Session, service_type: str) -> int:
    svc = SERVICES[service_type]
    return get_int_setting(db, f"PRICE_{service_type.upper()}", svc.unit_price)


def private_price(db: Session) -> int:
    return get_int_setting(db, "PRICE_PRIVATE", DEFAULT_PRIVATE_PRICE)


def quote(db: Session, service_type: str, booking_type: str, guest_count: int) -> int:
    """List price of a booking before discounts and tokens."""
    if booking_type == "private":
        return private_price(db)
    return unit_price(db, service_type) * guest_count
