from pydantic import BaseModel
from typing import Optional

class MembershipCreate(BaseModel):
    customerEmail: str
    customerName: Optional[str] = None
    membershipType: str = "weekly"  # weekly|unlimited
    sessionsPerWeek: int = 1
    startDate: str
    endDate: str

class MembershipOut(BaseModel):
    id: str
    customerEmail: str
    customerName: Optional[str] = None
    membershipType: str
    sessionsPerWeek: int
    sessionsRemaining: int
    startDate: str
    endDate: str
    status: str

class MembershipStatusOut(BaseModel):
    customerEmail: str
    hasMembership: bool
    canBook: bool
    isUnlimited: bool = False
    sessionsRemaining: int = 0
    membership: Optional[MembershipOut] = None


def membership_out(m) -> MembershipOut:
    return MembershipOut(
        id=m.id,
        customerEmail=m.customer_email,
        customerName=m.customer_name,
        membershipType=m.membership_type,
        sessionsPerWeek=m.sessions_per_week,
        sessionsRemaining=m.sessions_remaining,
        startDate=m.start_date,
        endDate=m.end_date,
        status=m.status,
    )


def membership_status_out(email: str, status) -> MembershipStatusOut:
    return MembershipStatusOut(
        customerEmail=email,
        hasMembership=status.has_membership,
        canBook=status.can_book,
        isUnlimited=status.is_unlimited,
        sessionsRemaining=status.sessions_remaining,
        membership=membership_out(status.membership) if status.membership else None,
    )
