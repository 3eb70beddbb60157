"""Read-only rollups over referrals, commissions and customer credit."""

import uuid
from typing import Optional

from fastapi import HTTPException, status
from libs.common.currency import percent_share
from libs.common.datetime_utils import ensure_utc
from libs.common.logging import get_logger
from services.referral_service.models import (
    Commission,
    CommissionStatus,
    CommissionType,
    CreditRedemption,
    Customer,
    Influencer,
    Partner,
    RecipientType,
    ReferralType,
)
from services.referral_service.schemas import (
    CommissionBreakdownResponse,
    CreditEntry,
    CreditLiabilitySummaryResponse,
    CustomerCreditSummaryResponse,
    MonthlyCredits,
    RecipientBreakdown,
    RedemptionEntry,
    ReferralActivity,
    ReferralAnalyticsResponse,
    ReferralSummary,
    StatusBreakdown,
    TopCustomerBalance,
)
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

logger = get_logger(__name__)

RECENT_ACTIVITY_LIMIT = 20
TOP_BALANCES_LIMIT = 10

# Credits that have been earned (whether or not they were spent since)
EARNED_CREDIT_STATUSES = (
    CommissionStatus.APPROVED,
    CommissionStatus.PAID,
    CommissionStatus.REDEEMED,
)

def earned_credit_amount(
    credit_status: CommissionStatus, amount: int, metadata: Optional[dict]
) -> int:
    """Pence of a customer credit that counts as earned.

    A cancelled credit keeps whatever was spent before the cancellation; only
    the unspent remainder was taken back off the balance.
    """
    if credit_status in EARNED_CREDIT_STATUSES:
        return amount
    if credit_status == CommissionStatus.CANCELLED:
        return int((metadata or {}).get("redeemed_amount", 0))
    return 0


_RECIPIENT_FOR_REFERRAL = {
    ReferralType.PARTNER: RecipientType.PARTNER,
    ReferralType.INFLUENCER: RecipientType.INFLUENCER,
    ReferralType.CUSTOMER: RecipientType.CUSTOMER,
}


async def resolve_referrer(
    db: AsyncSession, auth_id: str
) -> Optional[tuple[ReferralType, uuid.UUID]]:
    """Find which kind of referrer an authenticated user is."""
    for model, referral_type in (
        (Partner, ReferralType.PARTNER),
        (Influencer, ReferralType.INFLUENCER),
        (Customer, ReferralType.CUSTOMER),
    ):
        result = await db.execute(select(model.id).where(model.auth_id == auth_id))
        referrer_id = result.scalar_one_or_none()
        if referrer_id is not None:
            return referral_type, referrer_id
    return None


# ---------------------------------------------------------------------------
# Referrer dashboard
# ---------------------------------------------------------------------------


async def get_referral_analytics(
    db: AsyncSession,
    *,
    user_type: ReferralType,
    referrer_id: uuid.UUID,
) -> ReferralAnalyticsResponse:
    """Summary plus anonymised activity for a partner, influencer or customer.

    Scans are not tracked separately: every attributed signup counts as one
    scan, so ``total_scans == total_signups``.
    """
    if user_type not in _RECIPIENT_FOR_REFERRAL:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Invalid user type for referrals",
        )

    result = await db.execute(
        select(Customer).where(
            Customer.referral_type == user_type,
            Customer.referrer_id == referrer_id,
        )
    )
    referred = result.scalars().all()

    result = await db.execute(
        select(Commission).where(
            Commission.recipient_type == _RECIPIENT_FOR_REFERRAL[user_type],
            Commission.recipient_id == referrer_id,
            Commission.status != CommissionStatus.CANCELLED,
        )
    )
    earnings = result.scalars().all()

    total_signups = len(referred)
    total_scans = total_signups
    total_purchases = sum(1 for c in referred if c.referral_order_id is not None)
    total_earned = sum(c.commission_amount for c in earnings)
    total_order_value = sum(c.order_amount for c in earnings)
    avg_order_value = round(total_order_value / len(earnings)) if earnings else 0

    is_customer = user_type == ReferralType.CUSTOMER
    summary = ReferralSummary(
        total_scans=total_scans,
        total_signups=total_signups,
        total_purchases=total_purchases,
        conversion_rate=percent_share(total_purchases, total_scans),
        total_commissions=None if is_customer else total_earned,
        total_rewards=total_earned if is_customer else None,
        total_order_value=total_order_value,
        avg_order_value=avg_order_value,
    )

    activity: list[ReferralActivity] = []
    for customer in referred:
        activity.append(
            ReferralActivity(
                id=customer.id,
                type="signup",
                date=ensure_utc(customer.referral_applied_at or customer.created_at),
            )
        )
    for earning in earnings:
        activity.append(
            ReferralActivity(
                id=earning.id,
                type="purchase",
                date=ensure_utc(earning.created_at),
                order_value=earning.order_amount,
                reward=earning.commission_amount if is_customer else None,
                commission=None if is_customer else earning.commission_amount,
            )
        )
    activity.sort(key=lambda a: a.date, reverse=True)

    return ReferralAnalyticsResponse(
        user_type=user_type.value,
        summary=summary,
        recent_activity=activity[:RECENT_ACTIVITY_LIMIT],
    )


# ---------------------------------------------------------------------------
# Admin rollups
# ---------------------------------------------------------------------------


async def get_commission_breakdown(db: AsyncSession) -> CommissionBreakdownResponse:
    result = await db.execute(
        select(
            Commission.status,
            Commission.recipient_type,
            func.count(Commission.id),
            func.coalesce(func.sum(Commission.commission_amount), 0),
        ).group_by(Commission.status, Commission.recipient_type)
    )
    rows = result.all()

    by_status: dict[CommissionStatus, list[int]] = {}
    by_recipient: dict[RecipientType, list[int]] = {}
    for status_value, recipient_type, count, amount in rows:
        by_status.setdefault(status_value, [0, 0])
        by_status[status_value][0] += count
        by_status[status_value][1] += int(amount)
        by_recipient.setdefault(recipient_type, [0, 0])
        by_recipient[recipient_type][0] += count
        by_recipient[recipient_type][1] += int(amount)

    total_count = sum(count for count, _ in by_status.values())
    total_amount = sum(amount for _, amount in by_status.values())

    return CommissionBreakdownResponse(
        total_count=total_count,
        total_amount=total_amount,
        by_status=[
            StatusBreakdown(
                status=s,
                count=count,
                amount=amount,
                percentage_of_total=percent_share(amount, total_amount),
            )
            for s, (count, amount) in sorted(by_status.items(), key=lambda i: i[0].value)
        ],
        by_recipient_type=[
            RecipientBreakdown(
                recipient_type=r,
                count=count,
                amount=amount,
                percentage_of_total=percent_share(amount, total_amount),
            )
            for r, (count, amount) in sorted(
                by_recipient.items(), key=lambda i: i[0].value
            )
        ],
    )


async def get_customer_credit_summary(
    db: AsyncSession, customer_id: uuid.UUID
) -> CustomerCreditSummaryResponse:
    """Earned vs redeemed credit for one customer, reconciled against the balance.

    Both totals are sums over their own ledgers, so a mismatch with the stored
    balance (for example after a failed balance update) shows up as
    ``is_consistent = False``.
    """
    customer = await db.get(Customer, customer_id)
    if not customer:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Customer not found",
        )

    result = await db.execute(
        select(Commission)
        .where(
            Commission.recipient_type == RecipientType.CUSTOMER,
            Commission.recipient_id == customer_id,
            Commission.commission_type == CommissionType.CUSTOMER_CREDIT,
        )
        .order_by(Commission.created_at.desc())
    )
    credits = result.scalars().all()

    result = await db.execute(
        select(CreditRedemption)
        .where(CreditRedemption.customer_id == customer_id)
        .order_by(CreditRedemption.created_at.desc())
    )
    redemptions = result.scalars().all()

    total_earned = sum(
        earned_credit_amount(c.status, c.commission_amount, c.commission_metadata)
        for c in credits
    )
    pending = sum(
        c.commission_amount for c in credits if c.status == CommissionStatus.PENDING
    )
    total_redeemed = sum(r.amount for r in redemptions)
    ledger_balance = total_earned - total_redeemed

    if ledger_balance != customer.current_credit_balance:
        logger.warning(
            "Credit ledger mismatch for customer %s: ledger=%d stored=%d",
            customer_id,
            ledger_balance,
            customer.current_credit_balance,
        )

    return CustomerCreditSummaryResponse(
        customer_id=customer_id,
        current_balance=customer.current_credit_balance,
        total_earned=total_earned,
        pending_credits=pending,
        total_redeemed=total_redeemed,
        ledger_balance=ledger_balance,
        is_consistent=ledger_balance == customer.current_credit_balance,
        credits=[
            CreditEntry(
                id=c.id,
                order_id=c.order_id,
                amount=c.commission_amount,
                status=c.status,
                created_at=c.created_at,
            )
            for c in credits
        ],
        redemptions=[
            RedemptionEntry(
                id=r.id,
                order_id=r.order_id,
                amount=r.amount,
                balance_after=r.balance_after,
                created_at=r.created_at,
            )
            for r in redemptions
        ],
    )


async def get_credit_liability_summary(
    db: AsyncSession,
) -> CreditLiabilitySummaryResponse:
    """Platform-wide outstanding credit liability for the admin dashboard."""
    result = await db.execute(
        select(
            func.count(Customer.id),
            func.coalesce(func.sum(Customer.current_credit_balance), 0),
        )
    )
    total_customers, total_outstanding = result.one()
    total_outstanding = int(total_outstanding)

    result = await db.execute(
        select(Customer)
        .where(Customer.current_credit_balance > 0)
        .order_by(Customer.current_credit_balance.desc())
    )
    with_credits = result.scalars().all()

    result = await db.execute(
        select(
            Commission.status,
            Commission.commission_amount,
            Commission.commission_metadata,
            Commission.created_at,
        )
        .where(
            Commission.recipient_type == RecipientType.CUSTOMER,
            Commission.commission_type == CommissionType.CUSTOMER_CREDIT,
        )
        .order_by(Commission.created_at)
    )
    credit_rows = result.all()

    result = await db.execute(
        select(
            func.count(CreditRedemption.id),
            func.coalesce(func.sum(CreditRedemption.amount), 0),
        )
    )
    redemption_count, total_redeemed = result.one()
    total_redeemed = int(total_redeemed)

    earned = 0
    pending = 0
    approved = 0
    monthly: dict[str, int] = {}
    for credit_status, amount, metadata, created_at in credit_rows:
        if credit_status == CommissionStatus.PENDING:
            pending += amount
            continue
        if credit_status in (CommissionStatus.APPROVED, CommissionStatus.PAID):
            approved += amount
        earned_amount = earned_credit_amount(credit_status, amount, metadata)
        if earned_amount:
            earned += earned_amount
            month = ensure_utc(created_at).strftime("%Y-%m")
            monthly[month] = monthly.get(month, 0) + earned_amount

    customers_with_credits = len(with_credits)
    return CreditLiabilitySummaryResponse(
        total_outstanding_credits=total_outstanding,
        total_credits_earned=earned,
        pending_credits=pending,
        approved_credits=approved,
        total_redeemed=total_redeemed,
        customers_with_credits=customers_with_credits,
        total_customers=total_customers,
        average_credit_balance=(
            round(total_outstanding / customers_with_credits)
            if customers_with_credits
            else 0
        ),
        total_credit_records=len(credit_rows),
        total_redemption_records=redemption_count,
        redemption_rate_percent=percent_share(total_redeemed, earned),
        total_potential_liability=total_outstanding + pending,
        top_customers_by_balance=[
            TopCustomerBalance(
                id=c.id,
                email=c.email,
                name=" ".join(p for p in (c.first_name, c.last_name) if p) or c.email,
                credit_balance=c.current_credit_balance,
            )
            for c in with_credits[:TOP_BALANCES_LIMIT]
        ],
        monthly_credits_earned=[
            MonthlyCredits(month=month, amount=amount)
            for month, amount in sorted(monthly.items())
        ],
    )
