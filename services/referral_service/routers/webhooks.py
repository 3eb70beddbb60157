"""Stripe webhook handler."""

import json

from fastapi import APIRouter, Depends, HTTPException, Request, status
from libs.common.logging import bind_log_context, get_logger
from libs.db.session import get_async_db
from services.referral_service.services.commission_ops import process_completed_order
from services.referral_service.services.stripe_webhook import (
    upsert_order_from_payment_intent,
    verify_stripe_signature,
)
from sqlalchemy.ext.asyncio import AsyncSession

router = APIRouter(prefix="/webhooks", tags=["webhooks"])
logger = get_logger(__name__)


@router.post("/stripe")
async def stripe_webhook(
    request: Request,
    db: AsyncSession = Depends(get_async_db),
):
    """
    Stripe webhook endpoint (no auth; verified by Stripe-Signature).
    """
    raw = await request.body()
    signature = request.headers.get("stripe-signature")
    if not signature or not verify_stripe_signature(raw, signature):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid signature"
        )

    try:
        payload = json.loads(raw.decode("utf-8") or "{}")
    except ValueError:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid payload"
        )

    event_type = payload.get("type")
    event_id = payload.get("id")
    bind_log_context(stripe_event_id=event_id, stripe_event_type=event_type)
    if event_type != "payment_intent.succeeded":
        logger.info("Ignoring Stripe event %s (%s)", event_id, event_type)
        return {"received": True}

    payment_intent = (payload.get("data") or {}).get("object") or {}
    order = await upsert_order_from_payment_intent(db, payment_intent)
    if order is None:
        return {"received": True}
    bind_log_context(
        order_id=str(order.id), payment_intent_id=order.payment_intent_id
    )

    outcome = await process_completed_order(db, order)
    if outcome.balance_update_error or outcome.redemption_error:
        logger.error(
            "Order %s processed with errors",
            outcome.order_id,
            extra={
                "extra_fields": {
                    "event_id": event_id,
                    "balance_update_error": outcome.balance_update_error,
                    "redemption_error": outcome.redemption_error,
                }
            },
        )

    return {
        "received": True,
        "order_id": str(outcome.order_id),
        "commissions": [str(c.id) for c in outcome.commissions],
        "redemption_id": str(outcome.redemption.id) if outcome.redemption else None,
        "balance_update_error": outcome.balance_update_error,
        "redemption_error": outcome.redemption_error,
    }
