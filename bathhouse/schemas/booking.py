from pydantic import BaseModel
from typing import List, Optional

class BookingCreate(BaseModel):
    customerName: str = ""
    customerEmail: str = ""  # plain str; the engine validates so every caller gets the same field errors
    customerPhone: Optional[str] = None
    serviceType: str = "combined"
    sessionDate: str = ""  # YYYY-MM-DD
    sessionTime: str = ""  # HH:MM
    bookingType: str = "communal"
    guestCount: int = 1
    paymentMethod: str = "card"
    discountAmount: int = 0
    giftCardCode: Optional[str] = None
    applyCredit: bool = False  # card only: draw on gift card credit first
    specialRequests: Optional[str] = None
    userId: Optional[str] = None

class BookingUpdate(BaseModel):
    # Only fields sent by the caller are applied.
    customerName: Optional[str] = None
    customerEmail: Optional[str] = None
    customerPhone: Optional[str] = None
    serviceType: Optional[str] = None
    sessionDate: Optional[str] = None
    sessionTime: Optional[str] = None
    guestCount: Optional[int] = None
    paymentStatus: Optional[str] = None
    specialRequests: Optional[str] = None

class BookingOut(BaseModel):
    id: str
    bookingRef: str
    customerName: str
    customerEmail: str
    customerPhone: Optional[str] = None
    sessionDate: str
    sessionTime: str
    serviceType: str
    bookingType: str
    guestCount: int
    durationMinutes: int
    priceAmount: int = 0
    discountAmount: int = 0
    creditAmount: int = 0
    finalAmount: int = 0
    currency: str = "GBP"
    paymentMethod: str
    paymentStatus: str
    bookingStatus: str
    specialRequests: Optional[str] = None
    timeSlotId: str
    stripeSessionId: Optional[str] = None
    membershipId: Optional[str] = None

class CancelOut(BaseModel):
    bookingRef: str
    slotsFreed: int
    tokenRefunded: bool
    tokensRefunded: int = 0
    creditRefunded: int = 0
    sessionRestored: bool = False

class SlotOut(BaseModel):
    id: str
    slotDate: str
    slotTime: str
    serviceType: str
    capacity: int
    bookedCount: int
    remaining: int
    isPrivate: bool
    isAvailable: bool

class SlotGenerateRequest(BaseModel):
    startDate: str
    endDate: str
    times: List[str]
    serviceTypes: List[str] = ["combined"]


def booking_out(b) -> BookingOut:
    return BookingOut(
        id=b.id,
        bookingRef=b.booking_ref,
        customerName=b.customer_name,
        customerEmail=b.customer_email,
        customerPhone=b.customer_phone,
        sessionDate=b.slot_date,
        sessionTime=b.slot_time,
        serviceType=b.service_type,
        bookingType=b.booking_type,
        guestCount=b.guest_count,
        durationMinutes=b.duration_minutes,
        priceAmount=b.price_amount or 0,
        discountAmount=b.discount_amount or 0,
        creditAmount=b.credit_amount or 0,
        finalAmount=b.final_amount or 0,
        currency=b.currency,
        paymentMethod=b.payment_method,
        paymentStatus=b.payment_status,
        bookingStatus=b.booking_status,
        specialRequests=b.special_requests,
        timeSlotId=b.time_slot_id,
        stripeSessionId=b.stripe_session_id,
        membershipId=b.membership_id,
    )


def slot_out(s, remaining: int) -> SlotOut:
    return SlotOut(
        id=s.id,
        slotDate=s.slot_date,
        slotTime=s.slot_time,
        serviceType=s.service_type,
        capacity=s.capacity,
        bookedCount=s.booked_count,
        remaining=remaining,
        isPrivate=s.is_private,
        isAvailable=s.is_available,
    )
