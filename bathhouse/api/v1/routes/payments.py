import json
import logging

from fastapi import APIRouter, Depends, HTTPException, Request
from sqlalchemy.orm import Session

from bathhouse.api.deps import http_error
from bathhouse.core.config import settings
from bathhouse.core.errors import BookingError
from bathhouse.db.session import get_db
from bathhouse.services.payment_reconciliation import handle_webhook_event
from bathhouse.services.stripe_client import verify_webhook_signature

logger = logging.getLogger(__name__)

router = APIRouter(tags=["payments"])


@router.post("/webhooks/stripe")
async def stripe_webhook(req: Request, db: Session = Depends(get_db)):
    body = await req.body()
    if not settings.STRIPE_WEBHOOK_SECRET:
        if not (settings.PAYMENT_SANDBOX or settings.ENV == "local"):
            logger.error("Stripe webhook received but STRIPE_WEBHOOK_SECRET is not configured")
            raise HTTPException(status_code=500, detail={"error": "webhook_not_configured", "message": "Webhook configuration error"})
        logger.warning("Accepting unsigned Stripe webhook (ENV=%s, sandbox=%s)", settings.ENV, settings.PAYMENT_SANDBOX)
    else:
        ok = verify_webhook_signature(
            body,
            req.headers.get("stripe-signature") or "",
            settings.STRIPE_WEBHOOK_SECRET,
            tolerance=settings.STRIPE_WEBHOOK_TOLERANCE_SECONDS,
        )
        if not ok:
            logger.warning("Rejected Stripe webhook with invalid signature")
            raise HTTPException(status_code=400, detail={"error": "invalid_signature", "message": "Invalid webhook signature"})
    try:
        event = json.loads(body or b"{}")
    except ValueError:
        raise HTTPException(status_code=400, detail={"error": "invalid_payload", "message": "Invalid JSON"})
    try:
        result = handle_webhook_event(db, event)
    except BookingError as e:
        raise http_error(e)
    return {"received": True, **result}
