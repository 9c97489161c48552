from pydantic import BaseModel
from typing import Literal, Optional


class RefundRequest(BaseModel):
    refundType: Literal["full", "partial"] = "full"


class CheckoutRequest(BaseModel):
    # If omitted, backend builds them from CLIENT_BASE_URL.
    successUrl: Optional[str] = None
    cancelUrl: Optional[str] = None


class CheckoutOut(BaseModel):
    bookingRef: str
    sessionId: str
    url: Optional[str] = None


class VerificationOut(BaseModel):
    bookingRef: str
    success: bool
    status: str
    message: str
    paymentStatus: str
    stripeStatus: Optional[str] = None


class RefundOut(BaseModel):
    bookingRef: str
    refundId: str
    refundAmount: int
    paymentStatus: str
    status: str
