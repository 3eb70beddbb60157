"""Commission recording, customer credit balance updates and credit redemption.

Balance mutations are single ``UPDATE ... SET balance = balance +/- :amount``
statements so concurrent order completions for the same customer cannot lose
an update.
"""

import uuid
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Optional

from fastapi import HTTPException, status
from libs.common.config import get_settings
from libs.common.currency import percentage_of, to_rate
from libs.common.datetime_utils import utc_now
from libs.common.logging import get_logger
from services.referral_service.models import (
    REVENUE_RECOGNIZED_STATUSES,
    Commission,
    CommissionStatus,
    CommissionType,
    CreditRedemption,
    Customer,
    Influencer,
    Order,
    Partner,
    RecipientType,
    ReferralType,
)
from services.referral_service.services.validation import resolve_referral_code
from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

logger = get_logger(__name__)
settings = get_settings()

# Admin-driven status moves. Anything else is rejected.
ALLOWED_STATUS_TRANSITIONS: dict[CommissionStatus, set[CommissionStatus]] = {
    CommissionStatus.PENDING: {CommissionStatus.APPROVED, CommissionStatus.CANCELLED},
    CommissionStatus.APPROVED: {
        CommissionStatus.PAID,
        CommissionStatus.CANCELLED,
        CommissionStatus.REDEEMED,
    },
    CommissionStatus.PAID: {CommissionStatus.REDEEMED},
}

# Customer credits that still count towards the spendable balance
SPENDABLE_CREDIT_STATUSES = (CommissionStatus.APPROVED, CommissionStatus.PAID)


@dataclass
class CreditRecordResult:
    commission: Commission
    new_balance: Optional[int] = None
    balance_update_error: Optional[str] = None
    created: bool = True


@dataclass
class ProcessedOrderResult:
    order_id: uuid.UUID
    commissions: list[Commission] = field(default_factory=list)
    redemption: Optional[CreditRedemption] = None
    redemption_error: Optional[str] = None
    balance_update_error: Optional[str] = None


# ---------------------------------------------------------------------------
# Amounts
# ---------------------------------------------------------------------------


def calculate_commission_amount(order_amount: int, rate: Decimal) -> int:
    """``round(order_amount * rate / 100)`` in pence, half-up."""
    return percentage_of(order_amount, rate)


def calculate_discount_amount(subtotal: int, percentage: Decimal) -> int:
    return percentage_of(subtotal, percentage)


# ---------------------------------------------------------------------------
# Recording
# ---------------------------------------------------------------------------


async def _get_existing_commission(
    db: AsyncSession, order_id: uuid.UUID, recipient_type: RecipientType
) -> Optional[Commission]:
    result = await db.execute(
        select(Commission).where(
            Commission.order_id == order_id,
            Commission.recipient_type == recipient_type,
        )
    )
    return result.scalar_one_or_none()


async def _record_commission(
    db: AsyncSession,
    *,
    order_id: uuid.UUID,
    order_amount: int,
    recipient_type: RecipientType,
    recipient_id: uuid.UUID,
    recipient_email: Optional[str],
    commission_type: CommissionType,
    commission_rate: Decimal,
    initial_status: CommissionStatus,
    referral_code: Optional[str] = None,
    metadata: Optional[dict] = None,
) -> tuple[Commission, bool]:
    """Insert one commission row. Returns ``(commission, created)``.

    Idempotent per (order_id, recipient_type): a replay returns the stored row
    untouched, including its original rate and amount.
    """
    existing = await _get_existing_commission(db, order_id, recipient_type)
    if existing:
        logger.info(
            "Idempotent replay for order=%s recipient_type=%s -> commission=%s",
            order_id,
            recipient_type.value,
            existing.id,
        )
        return existing, False

    rate = to_rate(commission_rate)
    commission = Commission(
        order_id=order_id,
        order_amount=order_amount,
        recipient_type=recipient_type,
        recipient_id=recipient_id,
        recipient_email=recipient_email,
        referral_code=referral_code,
        commission_type=commission_type,
        commission_rate=rate,
        commission_amount=calculate_commission_amount(order_amount, rate),
        status=initial_status,
        commission_metadata=dict(metadata or {}),
    )
    db.add(commission)
    try:
        await db.commit()
    except IntegrityError:
        # Lost a race with a concurrent replay of the same order
        await db.rollback()
        existing = await _get_existing_commission(db, order_id, recipient_type)
        if existing is None:
            raise
        return existing, False

    await db.refresh(commission)
    logger.info(
        "Recorded %s %s for order %s: %d pence at %s%% (status=%s)",
        commission.commission_type.value,
        commission.id,
        order_id,
        commission.commission_amount,
        rate,
        commission.status.value,
    )
    return commission, True


async def record_partner_commission(
    db: AsyncSession,
    *,
    order_id: uuid.UUID,
    order_amount: int,
    partner_id: uuid.UUID,
    partner_email: Optional[str],
    commission_rate: Decimal,
    referral_code: Optional[str] = None,
    metadata: Optional[dict] = None,
) -> tuple[Commission, bool]:
    """Record a partner commission at the rate the caller captured.

    The rate is never re-read from the partner here. Partner commissions wait
    in ``pending`` for payout review.
    """
    return await _record_commission(
        db,
        order_id=order_id,
        order_amount=order_amount,
        recipient_type=RecipientType.PARTNER,
        recipient_id=partner_id,
        recipient_email=partner_email,
        commission_type=CommissionType.PARTNER_COMMISSION,
        commission_rate=commission_rate,
        initial_status=CommissionStatus.PENDING,
        referral_code=referral_code,
        metadata=metadata,
    )


async def record_influencer_commission(
    db: AsyncSession,
    *,
    order_id: uuid.UUID,
    order_amount: int,
    influencer_id: uuid.UUID,
    influencer_email: Optional[str],
    commission_rate: Decimal,
    referral_code: Optional[str] = None,
    metadata: Optional[dict] = None,
) -> tuple[Commission, bool]:
    return await _record_commission(
        db,
        order_id=order_id,
        order_amount=order_amount,
        recipient_type=RecipientType.INFLUENCER,
        recipient_id=influencer_id,
        recipient_email=influencer_email,
        commission_type=CommissionType.INFLUENCER_COMMISSION,
        commission_rate=commission_rate,
        initial_status=CommissionStatus.PENDING,
        referral_code=referral_code,
        metadata=metadata,
    )


async def get_credit_balance(db: AsyncSession, customer_id: uuid.UUID) -> int:
    result = await db.execute(
        select(Customer.current_credit_balance).where(Customer.id == customer_id)
    )
    return result.scalar_one()


async def record_customer_credit(
    db: AsyncSession,
    *,
    order_id: uuid.UUID,
    order_amount: int,
    referred_customer: Optional[str],
    referring_customer_id: uuid.UUID,
    commission_rate: Optional[Decimal] = None,
    referral_code: Optional[str] = None,
    metadata: Optional[dict] = None,
) -> CreditRecordResult:
    """Record an auto-approved customer credit and add it to the referrer's balance.

    The credit row is committed before the balance is touched. If the balance
    update fails the row is kept and the result carries
    ``balance_update_error``; replaying the same order retries the update.
    The ``balance_credited`` flag is claimed with a guarded UPDATE in the same
    transaction as the balance increment, so concurrent replays credit once.
    """
    rate = commission_rate if commission_rate is not None else settings.CUSTOMER_CREDIT_RATE

    referring_customer = await db.get(Customer, referring_customer_id)
    if not referring_customer:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Referring customer not found",
        )

    credit_metadata = dict(metadata or {})
    credit_metadata["source_customer"] = referred_customer
    commission, created = await _record_commission(
        db,
        order_id=order_id,
        order_amount=order_amount,
        recipient_type=RecipientType.CUSTOMER,
        recipient_id=referring_customer_id,
        recipient_email=referring_customer.email,
        commission_type=CommissionType.CUSTOMER_CREDIT,
        commission_rate=rate,
        initial_status=CommissionStatus.APPROVED,
        referral_code=referral_code,
        metadata=credit_metadata,
    )

    if commission.balance_credited:
        return CreditRecordResult(
            commission=commission,
            new_balance=await get_credit_balance(db, referring_customer_id),
            created=created,
        )

    commission_id = commission.id
    amount = commission.commission_amount
    try:
        claim = await db.execute(
            update(Commission)
            .where(
                Commission.id == commission_id,
                Commission.balance_credited.is_(False),
            )
            .values(balance_credited=True)
        )
        if claim.rowcount == 1:
            await db.execute(
                update(Customer)
                .where(Customer.id == referring_customer_id)
                .values(
                    current_credit_balance=Customer.current_credit_balance + amount,
                    updated_at=utc_now(),
                )
            )
        await db.commit()
    except SQLAlchemyError as exc:
        await db.rollback()
        await db.refresh(commission)
        logger.error(
            "Credit %s recorded but balance update failed for customer %s: %s",
            commission.id,
            referring_customer_id,
            exc,
            exc_info=exc,
        )
        return CreditRecordResult(
            commission=commission,
            balance_update_error=str(exc),
            created=created,
        )

    await db.refresh(commission)
    new_balance = await get_credit_balance(db, referring_customer_id)
    logger.info(
        "Credited %d pence to customer %s for order %s (balance=%d)",
        amount,
        referring_customer_id,
        order_id,
        new_balance,
    )
    return CreditRecordResult(
        commission=commission, new_balance=new_balance, created=created
    )


# ---------------------------------------------------------------------------
# Redemption
# ---------------------------------------------------------------------------


async def _mark_credits_redeemed(
    db: AsyncSession,
    *,
    customer_id: uuid.UUID,
    order_id: uuid.UUID,
    amount: int,
) -> None:
    """Consume spendable credits oldest-first.

    A credit flips to ``redeemed`` once fully consumed; partial consumption is
    tracked in its metadata as ``redeemed_amount``.
    """
    result = await db.execute(
        select(Commission)
        .where(
            Commission.recipient_type == RecipientType.CUSTOMER,
            Commission.recipient_id == customer_id,
            Commission.commission_type == CommissionType.CUSTOMER_CREDIT,
            Commission.status.in_(SPENDABLE_CREDIT_STATUSES),
        )
        .order_by(Commission.created_at, Commission.id)
    )
    remaining = amount
    now = utc_now().isoformat()
    for credit in result.scalars().all():
        if remaining <= 0:
            break
        meta = dict(credit.commission_metadata or {})
        already = int(meta.get("redeemed_amount", 0))
        available = credit.commission_amount - already
        if available <= 0:
            continue
        take = min(available, remaining)
        remaining -= take
        meta["redeemed_amount"] = already + take
        meta["redemption_order_ids"] = list(meta.get("redemption_order_ids", [])) + [
            str(order_id)
        ]
        if meta["redeemed_amount"] >= credit.commission_amount:
            credit.status = CommissionStatus.REDEEMED
            meta["redeemed_at"] = now
        credit.commission_metadata = meta


async def redeem_credit(
    db: AsyncSession,
    *,
    customer_id: uuid.UUID,
    order_id: uuid.UUID,
    amount: int,
) -> tuple[CreditRedemption, bool]:
    """Spend ``amount`` pence of a customer's credit on an order.

    Returns ``(redemption, created)``; one redemption per order. The balance is
    decremented only when it covers the amount, so it never goes negative.
    """
    if amount <= 0:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Redemption amount must be positive",
        )

    result = await db.execute(
        select(CreditRedemption).where(CreditRedemption.order_id == order_id)
    )
    existing = result.scalar_one_or_none()
    if existing:
        logger.info(
            "Idempotent replay for redemption on order=%s -> %s", order_id, existing.id
        )
        return existing, False

    customer = await db.get(Customer, customer_id)
    if not customer:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Customer not found",
        )

    debit = await db.execute(
        update(Customer)
        .where(
            Customer.id == customer_id,
            Customer.current_credit_balance >= amount,
        )
        .values(
            current_credit_balance=Customer.current_credit_balance - amount,
            updated_at=utc_now(),
        )
    )
    if debit.rowcount == 0:
        await db.rollback()
        balance = await get_credit_balance(db, customer_id)
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Insufficient credit balance: requested {amount}, available {balance}",
        )

    balance_after = await get_credit_balance(db, customer_id)
    redemption = CreditRedemption(
        customer_id=customer_id,
        order_id=order_id,
        amount=amount,
        balance_before=balance_after + amount,
        balance_after=balance_after,
    )
    db.add(redemption)
    await _mark_credits_redeemed(
        db, customer_id=customer_id, order_id=order_id, amount=amount
    )

    try:
        await db.commit()
    except IntegrityError:
        # Concurrent redemption for the same order won; ours is rolled back
        await db.rollback()
        result = await db.execute(
            select(CreditRedemption).where(CreditRedemption.order_id == order_id)
        )
        existing = result.scalar_one_or_none()
        if existing is None:
            raise
        return existing, False

    await db.refresh(redemption)
    logger.info(
        "Redeemed %d pence for customer %s on order %s, balance %d->%d",
        amount,
        customer_id,
        order_id,
        redemption.balance_before,
        redemption.balance_after,
    )
    return redemption, True


# ---------------------------------------------------------------------------
# Admin status transitions
# ---------------------------------------------------------------------------


async def get_commission(db: AsyncSession, commission_id: uuid.UUID) -> Commission:
    """Get a commission by ID. Raises 404 if not found."""
    commission = await db.get(Commission, commission_id)
    if not commission:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Commission not found",
        )
    return commission


async def update_commission_status(
    db: AsyncSession,
    commission_id: uuid.UUID,
    new_status: CommissionStatus,
    *,
    changed_by: Optional[str] = None,
    note: Optional[str] = None,
) -> Commission:
    commission = await get_commission(db, commission_id)
    old_status = commission.status

    if new_status not in ALLOWED_STATUS_TRANSITIONS.get(old_status, set()):
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Cannot move commission from {old_status.value} to {new_status.value}",
        )

    # Cancelling an earned customer credit takes it back off the balance
    if (
        commission.commission_type == CommissionType.CUSTOMER_CREDIT
        and new_status == CommissionStatus.CANCELLED
        and commission.balance_credited
    ):
        outstanding = commission.commission_amount - int(
            (commission.commission_metadata or {}).get("redeemed_amount", 0)
        )
        if outstanding > 0:
            debit = await db.execute(
                update(Customer)
                .where(
                    Customer.id == commission.recipient_id,
                    Customer.current_credit_balance >= outstanding,
                )
                .values(
                    current_credit_balance=Customer.current_credit_balance
                    - outstanding,
                    updated_at=utc_now(),
                )
            )
            if debit.rowcount == 0:
                await db.rollback()
                raise HTTPException(
                    status_code=status.HTTP_409_CONFLICT,
                    detail="Credit has already been spent and cannot be cancelled",
                )

    now = utc_now().isoformat()
    meta = dict(commission.commission_metadata or {})
    history = list(meta.get("status_history", []))
    history.append(
        {
            "from": old_status.value,
            "to": new_status.value,
            "at": now,
            "by": changed_by,
            "note": note,
        }
    )
    meta["status_history"] = history
    if new_status == CommissionStatus.PAID:
        meta["paid_at"] = now
    if new_status == CommissionStatus.REDEEMED:
        meta.setdefault("redeemed_at", now)

    commission.status = new_status
    commission.commission_metadata = meta
    await db.commit()
    await db.refresh(commission)

    logger.info(
        "Commission %s moved %s -> %s by %s",
        commission.id,
        old_status.value,
        new_status.value,
        changed_by or "system",
    )
    return commission


# ---------------------------------------------------------------------------
# Order completion orchestration
# ---------------------------------------------------------------------------


async def _find_order_customer(db: AsyncSession, order: Order) -> Optional[Customer]:
    if order.customer_id:
        customer = await db.get(Customer, order.customer_id)
        if customer:
            return customer
    result = await db.execute(
        select(Customer).where(Customer.email == order.customer_email.strip().lower())
    )
    return result.scalar_one_or_none()


async def _credit_checkout_referral(
    db: AsyncSession,
    outcome: ProcessedOrderResult,
    *,
    code: str,
    order_amount: int,
    order_number: str,
    buyer_email: str,
    buyer_id: Optional[uuid.UUID],
) -> None:
    """Credit the owner of a personal code used at checkout by an unattributed buyer.

    Covers guest checkouts, which have no customer row to carry attribution.
    """
    descriptor = await resolve_referral_code(db, code)
    if descriptor is None or descriptor.referral_type != ReferralType.CUSTOMER:
        logger.warning(
            "Checkout code %s on order %s is not a customer code; no credit",
            code,
            order_number,
        )
        return
    if descriptor.owner_id == buyer_id or (
        descriptor.owner_email.strip().lower() == buyer_email.strip().lower()
    ):
        logger.warning("Ignoring self-referral on order %s", order_number)
        return

    try:
        credit = await record_customer_credit(
            db,
            order_id=outcome.order_id,
            order_amount=order_amount,
            referred_customer=buyer_email,
            referring_customer_id=descriptor.owner_id,
            referral_code=descriptor.code,
            metadata={
                "referral_type": ReferralType.CUSTOMER.value,
                "order_number": order_number,
                "created_via": "checkout_metadata",
            },
        )
    except HTTPException as exc:
        logger.error(
            "Customer credit for order %s skipped: %s", order_number, exc.detail
        )
        return
    outcome.commissions.append(credit.commission)
    outcome.balance_update_error = credit.balance_update_error


async def process_completed_order(
    db: AsyncSession, order: Order
) -> ProcessedOrderResult:
    """Apply credit redemption and referral commissions for a paid order.

    Attribution stored on the ordering customer wins. Buyers without one (guests
    included) fall back to a customer code sent with the checkout metadata.
    Safe to call repeatedly for the same order: every write underneath is
    idempotent per order.
    """
    order_id = order.id
    order_number = order.order_number
    outcome = ProcessedOrderResult(order_id=order_id)

    if order.status not in REVENUE_RECOGNIZED_STATUSES:
        logger.info(
            "Order %s is %s; skipping referral processing",
            order_number,
            order.status.value,
        )
        return outcome

    # Snapshot what we need; a rollback below expires loaded instances
    order_amount = order.subtotal_amount
    order_email = order.customer_email
    credit_applied = order.credit_applied
    checkout_code = (
        order.referral_code
        if order.referral_type == ReferralType.CUSTOMER.value
        else None
    )

    customer = await _find_order_customer(db, order)
    if customer is None:
        if checkout_code:
            await _credit_checkout_referral(
                db,
                outcome,
                code=checkout_code,
                order_amount=order_amount,
                order_number=order_number,
                buyer_email=order_email,
                buyer_id=None,
            )
        else:
            logger.info("No customer record for order %s; nothing to do", order_number)
        return outcome

    customer_id = customer.id
    customer_email = customer.email
    referral_type = customer.referral_type
    referrer_id = customer.referrer_id
    referral_code_used = customer.referral_code_used
    captured_rate = customer.referral_commission_rate
    is_first_order = customer.referral_order_id in (None, order_id)

    if credit_applied > 0:
        try:
            outcome.redemption, _ = await redeem_credit(
                db,
                customer_id=customer_id,
                order_id=order_id,
                amount=credit_applied,
            )
        except HTTPException as exc:
            # Stripe already took payment; flag it for follow-up instead of failing
            outcome.redemption_error = str(exc.detail)
            logger.error(
                "Credit redemption failed for order %s: %s", order_number, exc.detail
            )

    if referral_type == ReferralType.ORGANIC or referrer_id is None:
        if checkout_code:
            await _credit_checkout_referral(
                db,
                outcome,
                code=checkout_code,
                order_amount=order_amount,
                order_number=order_number,
                buyer_email=customer_email,
                buyer_id=customer_id,
            )
        return outcome

    metadata = {
        "customer_id": str(customer_id),
        "referral_type": referral_type.value,
        "order_number": order_number,
        "first_order": is_first_order,
        "created_via": "webhook",
    }

    if referral_type == ReferralType.PARTNER:
        partner = await db.get(Partner, referrer_id)
        if partner is None:
            logger.error(
                "Partner %s for customer %s not found; no commission for order %s",
                referrer_id,
                customer_id,
                order_number,
            )
            return outcome
        # First order pays the rate captured at referral time
        if is_first_order:
            rate = captured_rate or partner.commission_rate
        else:
            rate = partner.lifetime_commission_rate
        commission, _ = await record_partner_commission(
            db,
            order_id=order_id,
            order_amount=order_amount,
            partner_id=partner.id,
            partner_email=partner.email,
            commission_rate=rate,
            referral_code=referral_code_used,
            metadata=metadata,
        )
        outcome.commissions.append(commission)

    elif referral_type == ReferralType.INFLUENCER:
        influencer = await db.get(Influencer, referrer_id)
        if influencer is None:
            logger.error(
                "Influencer %s for customer %s not found; no commission for order %s",
                referrer_id,
                customer_id,
                order_number,
            )
            return outcome
        commission, _ = await record_influencer_commission(
            db,
            order_id=order_id,
            order_amount=order_amount,
            influencer_id=influencer.id,
            influencer_email=influencer.email,
            commission_rate=captured_rate or influencer.commission_rate,
            referral_code=referral_code_used,
            metadata=metadata,
        )
        outcome.commissions.append(commission)

    elif referral_type == ReferralType.CUSTOMER:
        try:
            credit = await record_customer_credit(
                db,
                order_id=order_id,
                order_amount=order_amount,
                referred_customer=customer_email,
                referring_customer_id=referrer_id,
                referral_code=referral_code_used,
                metadata=metadata,
            )
        except HTTPException as exc:
            logger.error(
                "Customer credit for order %s skipped: %s", order_number, exc.detail
            )
            return outcome
        outcome.commissions.append(credit.commission)
        outcome.balance_update_error = credit.balance_update_error

    await db.execute(
        update(Customer)
        .where(Customer.id == customer_id, Customer.referral_order_id.is_(None))
        .values(referral_order_id=order_id)
    )
    await db.commit()

    return outcome
