"""Stripe webhook signature checks and order capture from payment intents."""

import hashlib
import hmac
import time
import uuid
from typing import Optional

from libs.common.config import get_settings
from libs.common.logging import get_logger
from services.referral_service.models import (
    Customer,
    Order,
    OrderStatus,
    PaymentStatus,
    ReferralType,
)
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

settings = get_settings()
logger = get_logger(__name__)


def _parse_signature_header(header: str) -> tuple[Optional[int], list[str]]:
    timestamp = None
    signatures = []
    for item in header.split(","):
        key, _, value = item.strip().partition("=")
        if key == "t":
            try:
                timestamp = int(value)
            except ValueError:
                return None, []
        elif key == "v1":
            signatures.append(value)
    return timestamp, signatures


def compute_stripe_signature(raw_body: bytes, timestamp: int, secret: str) -> str:
    signed_payload = f"{timestamp}.".encode("utf-8") + raw_body
    return hmac.new(secret.encode("utf-8"), signed_payload, hashlib.sha256).hexdigest()


def verify_stripe_signature(
    raw_body: bytes,
    header: str,
    *,
    secret: Optional[str] = None,
    tolerance_seconds: Optional[int] = None,
    now: Optional[int] = None,
) -> bool:
    """Check a ``Stripe-Signature`` header (``t=<ts>,v1=<hex>``).

    Rejects signatures older than the tolerance window to block replays.
    """
    secret = secret or settings.STRIPE_WEBHOOK_SECRET
    tolerance = (
        settings.STRIPE_WEBHOOK_TOLERANCE_SECONDS
        if tolerance_seconds is None
        else tolerance_seconds
    )
    timestamp, signatures = _parse_signature_header(header)
    if timestamp is None or not signatures:
        return False

    current = int(time.time()) if now is None else now
    if abs(current - timestamp) > tolerance:
        return False

    expected = compute_stripe_signature(raw_body, timestamp, secret)
    return any(hmac.compare_digest(expected, sig) for sig in signatures)


def _int_meta(metadata: dict, key: str) -> int:
    try:
        return int(metadata.get(key) or 0)
    except (TypeError, ValueError):
        return 0


def _referral_type_meta(metadata: dict) -> Optional[ReferralType]:
    value = (metadata.get("referralType") or "").strip().lower()
    try:
        return ReferralType(value) if value else None
    except ValueError:
        logger.warning("Ignoring unknown referralType %r in payment metadata", value)
        return None


async def upsert_order_from_payment_intent(
    db: AsyncSession, payment_intent: dict
) -> Optional[Order]:
    """Create (or fetch) the confirmed order for a succeeded payment intent.

    The intent's amount is what the customer paid, after referral discount and
    credit. The subtotal is stored post-discount so commissions are computed on
    what was actually paid for items.
    """
    intent_id = payment_intent.get("id")
    metadata = payment_intent.get("metadata") or {}
    customer_email = (metadata.get("customerEmail") or "").strip().lower()
    if not intent_id or not customer_email:
        logger.warning(
            "Payment intent %s has no customer email; skipping order capture",
            intent_id,
        )
        return None

    result = await db.execute(select(Order).where(Order.payment_intent_id == intent_id))
    existing = result.scalar_one_or_none()
    if existing:
        logger.info("Order %s already captured for intent %s", existing.order_number, intent_id)
        return existing

    amount = int(payment_intent.get("amount") or 0)
    shipping = _int_meta(metadata, "shippingCost")
    discount = _int_meta(metadata, "referralDiscount")
    credit_applied = _int_meta(metadata, "rewardRedemption")
    referral_code = metadata.get("referralCode") or None
    referral_type = _referral_type_meta(metadata)

    result = await db.execute(select(Customer.id).where(Customer.email == customer_email))
    customer_id = result.scalar_one_or_none()

    order = Order(
        order_number=f"PW-{int(time.time())}-{intent_id[-6:].upper()}-{uuid.uuid4().hex[:4].upper()}",
        customer_email=customer_email,
        customer_id=customer_id,
        subtotal_amount=max(0, amount - shipping),
        discount_amount=discount,
        credit_applied=credit_applied,
        shipping_amount=shipping,
        total_amount=amount,
        currency=(payment_intent.get("currency") or "gbp").upper(),
        status=OrderStatus.CONFIRMED,
        payment_status=PaymentStatus.PAID,
        # Only orders that actually received the discount use up eligibility
        referral_code=referral_code.strip().upper() if referral_code and discount > 0 else None,
        referral_type=referral_type.value if referral_type else None,
        payment_intent_id=intent_id,
    )
    db.add(order)
    try:
        await db.commit()
    except IntegrityError:
        await db.rollback()
        result = await db.execute(
            select(Order).where(Order.payment_intent_id == intent_id)
        )
        return result.scalar_one()

    await db.refresh(order)
    logger.info(
        "Captured order %s for %s (total=%d, discount=%d, credit=%d)",
        order.order_number,
        customer_email,
        amount,
        discount,
        credit_applied,
    )
    return order
