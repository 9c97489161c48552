from pydantic import BaseModel
from typing import List, Optional

class TokenGrant(BaseModel):
    customerEmail: str
    tokens: int = 1
    expiresAt: Optional[str] = None  # ISO-8601; omitted = never expires
    notes: Optional[str] = None

class TokenEntryOut(BaseModel):
    id: str
    tokensRemaining: int
    expiresAt: Optional[str] = None
    notes: Optional[str] = None

class TokenSummaryOut(BaseModel):
    customerEmail: str
    hasTokens: bool
    tokensRemaining: int
    entries: List[TokenEntryOut]


def token_summary_out(email: str, summary) -> TokenSummaryOut:
    return TokenSummaryOut(
        customerEmail=email,
        hasTokens=summary.total > 0,
        tokensRemaining=summary.total,
        entries=[
            TokenEntryOut(
                id=e.id,
                tokensRemaining=e.tokens_remaining,
                expiresAt=e.expires_at.isoformat() if e.expires_at else None,
                notes=e.notes,
            )
            for e in summary.entries
        ],
    )
