"""Typed failures raised by the booking engine.

Every operation exposed to routes, webhooks and scripts raises one of these
(or returns a result). Routes translate them into HTTP responses via
``status_code`` and ``to_dict()``.
"""
from typing import Optional


class BookingError(Exception):
    code = "booking_error"
    status_code = 400

    def __init__(self, message: str, **context):
        super().__init__(message)
        self.message = message
        self.context = context

    def to_dict(self) -> dict:
        return {"error": self.code, "message": self.message, **self.context}


class ValidationError(BookingError):
    code = "validation_error"
    status_code = 422

    def __init__(self, issues: dict[str, str], message: str = "Invalid booking details"):
        super().__init__(message, issues=issues)
        self.issues = issues


class BookingNotFound(BookingError):
    code = "booking_not_found"
    status_code = 404


class CapacityExceeded(BookingError):
    code = "capacity_exceeded"
    status_code = 409

    def __init__(self, remaining: int, requested: int, slot_id: Optional[str] = None):
        if remaining > 0:
            msg = f"Not enough space - only {remaining} spaces remaining"
        else:
            msg = "No spaces available for this time slot"
        super().__init__(msg, remaining=remaining, requested=requested, slotId=slot_id)
        self.remaining = remaining
        self.requested = requested


class SlotConflict(BookingError):
    code = "slot_conflict"
    status_code = 409


class InsufficientTokens(BookingError):
    code = "insufficient_tokens"
    status_code = 409

    def __init__(self, available: int, requested: int):
        super().__init__(
            f"Not enough session tokens: {available} available, {requested} needed",
            available=available,
            requested=requested,
        )
        self.available = available
        self.requested = requested


class InsufficientCredit(BookingError):
    code = "insufficient_credit"
    status_code = 409

    def __init__(self, available: int, requested: int):
        super().__init__(
            f"Insufficient credit: \u00a3{available / 100:.2f} available, \u00a3{requested / 100:.2f} needed",
            available=available,
            requested=requested,
        )
        self.available = available
        self.requested = requested


class MembershipUnavailable(BookingError):
    code = "membership_unavailable"
    status_code = 409


class AlreadyCancelled(BookingError):
    code = "already_cancelled"
    status_code = 409


class InvalidTransition(BookingError):
    code = "invalid_transition"
    status_code = 409


class PaymentGatewayError(BookingError):
    code = "payment_gateway_error"
    status_code = 502


class InconsistentStateError(BookingError):
    code = "inconsistent_state"
    status_code = 500
