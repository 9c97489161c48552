from dataclasses import dataclass

from fastapi import Depends, Header, HTTPException

from bathhouse.core.errors import BookingError
from bathhouse.services.payment_reconciliation import get_gateway

STAFF_ROLES = ("staff", "admin")


@dataclass
class Actor:
    id: str
    role: str


def get_actor(
    x_actor_id: str | None = Header(default=None),
    x_actor_role: str | None = Header(default=None),
) -> Actor:
    # Identity is established upstream (gateway / auth proxy) and forwarded in headers.
    role = (x_actor_role or "customer").strip().lower()
    return Actor(id=(x_actor_id or "public").strip(), role=role)


def require_roles(*roles: str):
    def _guard(actor: Actor = Depends(get_actor)) -> Actor:
        if actor.role not in roles:
            raise HTTPException(status_code=403, detail={"error": "forbidden", "message": "Forbidden"})
        return actor
    return _guard


def get_payment_gateway():
    try:
        return get_gateway()
    except BookingError as e:
        raise HTTPException(status_code=e.status_code, detail=e.to_dict())


def http_error(e: BookingError) -> HTTPException:
    return HTTPException(status_code=e.status_code, detail=e.to_dict())
