from pydantic import BaseModel
from typing import List, Optional

class GiftCardIssue(BaseModel):
    amount: int  # pence
    purchaserEmail: Optional[str] = None
    recipientName: Optional[str] = None
    expiresAt: Optional[str] = None  # ISO-8601; omitted = never expires

class GiftCardOut(BaseModel):
    id: str
    giftCode: str
    amount: int
    paymentStatus: str
    isRedeemed: bool
    redeemedBy: Optional[str] = None
    expiresAt: Optional[str] = None

class GiftCardRedeem(BaseModel):
    giftCardCode: str
    customerEmail: str

class CreditEntryOut(BaseModel):
    id: str
    creditBalance: int
    expiresAt: Optional[str] = None
    notes: Optional[str] = None

class CreditSummaryOut(BaseModel):
    customerEmail: str
    hasCredit: bool
    creditBalance: int
    entries: List[CreditEntryOut]


def gift_card_out(c) -> GiftCardOut:
    return GiftCardOut(
        id=c.id,
        giftCode=c.gift_code,
        amount=c.amount,
        paymentStatus=c.payment_status,
        isRedeemed=c.is_redeemed,
        redeemedBy=c.redeemed_by,
        expiresAt=c.expires_at.isoformat() if c.expires_at else None,
    )


def credit_summary_out(email: str, summary) -> CreditSummaryOut:
    return CreditSummaryOut(
        customerEmail=email,
        hasCredit=summary.total > 0,
        creditBalance=summary.total,
        entries=[
            CreditEntryOut(
                id=e.id,
                creditBalance=e.credit_balance,
                expiresAt=e.expires_at.isoformat() if e.expires_at else None,
                notes=e.notes,
            )
            for e in summary.entries
        ],
    )
