"""Referral code resolution, discount eligibility and referral attribution."""

import re
import secrets
import uuid
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Optional

from fastapi import HTTPException, status
from libs.auth.models import AuthUser
from libs.common.config import get_settings
from libs.common.currency import percentage_of, to_rate
from libs.common.datetime_utils import ensure_utc, utc_now
from libs.common.logging import get_logger
from services.referral_service.models import (
    REVENUE_RECOGNIZED_STATUSES,
    Customer,
    Influencer,
    Order,
    Partner,
    ReferralCode,
    ReferralCodeOwnerType,
    ReferralType,
)
from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

logger = get_logger(__name__)
settings = get_settings()

PERSONAL_CODE_ATTEMPTS = 10

# Reason codes returned with non-eligible outcomes
REASON_NOT_FOUND = "not_found"
REASON_EXPIRED = "expired"
REASON_SELF_REFERRAL = "self_referral"
REASON_ALREADY_USED = "already_used"


@dataclass
class ReferralDescriptor:
    """A resolved referral code and the party that owns it."""

    code: str
    referral_type: ReferralType
    owner_id: uuid.UUID
    owner_email: str
    owner_name: Optional[str]
    commission_rate: Decimal
    expires_at: Optional[datetime] = None
    referral_code_id: Optional[uuid.UUID] = None

    @property
    def is_expired(self) -> bool:
        expires_at = ensure_utc(self.expires_at)
        return expires_at is not None and expires_at <= utc_now()


@dataclass
class ReferralValidationResult:
    valid: bool
    eligible: bool
    message: str
    reason: Optional[str] = None
    referral: Optional[ReferralDescriptor] = None
    discount_percentage: Decimal = Decimal("0")
    discount_amount: int = 0
    commission_rate: Decimal = Decimal("0")
    commission_amount: int = 0

    @property
    def http_status(self) -> int:
        if self.reason == REASON_NOT_FOUND:
            return status.HTTP_404_NOT_FOUND
        if self.reason == REASON_EXPIRED:
            return status.HTTP_410_GONE
        return status.HTTP_200_OK


def normalize_code(code: str) -> str:
    return code.strip().upper()


def _same_email(a: Optional[str], b: Optional[str]) -> bool:
    return bool(a and b) and a.strip().lower() == b.strip().lower()


# ---------------------------------------------------------------------------
# Resolution
# ---------------------------------------------------------------------------


async def resolve_referral_code(
    db: AsyncSession, code: str
) -> Optional[ReferralDescriptor]:
    """Resolve a code against partner/influencer codes, then customer codes.

    Inactive codes and codes owned by inactive parties resolve to ``None``.
    Expired codes are still resolved; the caller decides what expiry means.
    """
    normalized = normalize_code(code)
    if not normalized:
        return None

    result = await db.execute(
        select(ReferralCode).where(
            func.upper(ReferralCode.code) == normalized,
            ReferralCode.is_active.is_(True),
        )
    )
    referral_code = result.scalar_one_or_none()

    if referral_code is not None:
        if referral_code.owner_type == ReferralCodeOwnerType.PARTNER:
            partner = await db.get(Partner, referral_code.owner_id)
            if partner is None or not partner.is_active:
                return None
            return ReferralDescriptor(
                code=referral_code.code,
                referral_type=ReferralType.PARTNER,
                owner_id=partner.id,
                owner_email=partner.email,
                owner_name=partner.display_name,
                commission_rate=to_rate(
                    referral_code.commission_rate or partner.commission_rate
                ),
                expires_at=referral_code.expires_at,
                referral_code_id=referral_code.id,
            )

        influencer = await db.get(Influencer, referral_code.owner_id)
        if influencer is None or not influencer.is_active:
            return None
        return ReferralDescriptor(
            code=referral_code.code,
            referral_type=ReferralType.INFLUENCER,
            owner_id=influencer.id,
            owner_email=influencer.email,
            owner_name=influencer.username,
            commission_rate=to_rate(
                referral_code.commission_rate or influencer.commission_rate
            ),
            expires_at=referral_code.expires_at,
            referral_code_id=referral_code.id,
        )

    # Personal customer codes never expire
    result = await db.execute(
        select(Customer).where(
            func.upper(Customer.personal_referral_code) == normalized,
            Customer.is_registered.is_(True),
        )
    )
    owner = result.scalar_one_or_none()
    if owner is None:
        return None

    owner_name = " ".join(p for p in (owner.first_name, owner.last_name) if p)
    return ReferralDescriptor(
        code=owner.personal_referral_code,
        referral_type=ReferralType.CUSTOMER,
        owner_id=owner.id,
        owner_email=owner.email,
        owner_name=owner_name or None,
        commission_rate=to_rate(settings.CUSTOMER_CREDIT_RATE),
    )


async def is_customer_eligible(db: AsyncSession, email: str) -> bool:
    """A referral discount is a once-per-customer-lifetime benefit.

    Any earlier order by this email that carried a referral code and reached a
    revenue-recognized status uses it up, regardless of who referred them.
    """
    result = await db.execute(
        select(func.count(Order.id)).where(
            func.lower(Order.customer_email) == email.strip().lower(),
            Order.referral_code.is_not(None),
            Order.status.in_(REVENUE_RECOGNIZED_STATUSES),
        )
    )
    return result.scalar_one() == 0


# ---------------------------------------------------------------------------
# Validation
# ---------------------------------------------------------------------------


async def validate_referral(
    db: AsyncSession,
    *,
    referral_code: str,
    customer_email: str,
    order_total: int,
) -> ReferralValidationResult:
    """Quote the discount and referrer commission for a checkout.

    Not-found, expired and ineligible outcomes are results, not exceptions.
    """
    descriptor = await resolve_referral_code(db, referral_code)
    if descriptor is None:
        logger.info("Referral code %s not found", normalize_code(referral_code))
        return ReferralValidationResult(
            valid=False,
            eligible=False,
            reason=REASON_NOT_FOUND,
            message="Referral code not found",
        )

    if descriptor.is_expired:
        logger.info("Referral code %s has expired", descriptor.code)
        return ReferralValidationResult(
            valid=False,
            eligible=False,
            reason=REASON_EXPIRED,
            message="This referral code has expired",
        )

    if _same_email(descriptor.owner_email, customer_email):
        logger.info("Rejected self-referral for code %s", descriptor.code)
        return ReferralValidationResult(
            valid=False,
            eligible=False,
            reason=REASON_SELF_REFERRAL,
            referral=descriptor,
            message="You cannot use your own referral code",
        )

    commission_rate = descriptor.commission_rate
    commission_amount = percentage_of(order_total, commission_rate)

    if not await is_customer_eligible(db, customer_email):
        return ReferralValidationResult(
            valid=True,
            eligible=False,
            reason=REASON_ALREADY_USED,
            referral=descriptor,
            commission_rate=commission_rate,
            commission_amount=commission_amount,
            message="The referral discount has already been used on a previous order",
        )

    discount_percentage = to_rate(settings.REFERRAL_DISCOUNT_PERCENT)
    return ReferralValidationResult(
        valid=True,
        eligible=True,
        referral=descriptor,
        discount_percentage=discount_percentage,
        discount_amount=percentage_of(order_total, discount_percentage),
        commission_rate=commission_rate,
        commission_amount=commission_amount,
        message=f"{discount_percentage.normalize():f}% referral discount applied",
    )


# ---------------------------------------------------------------------------
# Attribution
# ---------------------------------------------------------------------------


async def get_customer(db: AsyncSession, customer_id: uuid.UUID) -> Customer:
    """Get a customer by ID. Raises 404 if not found."""
    customer = await db.get(Customer, customer_id)
    if not customer:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Customer not found",
        )
    return customer


async def apply_referral(
    db: AsyncSession,
    *,
    code: str,
    customer_id: uuid.UUID,
) -> tuple[Customer, ReferralDescriptor]:
    """Attribute a customer to the owner of ``code``.

    The referrer's commission rate is captured on the customer now and used
    for their first order commission, whatever the rate is by then.
    """
    customer = await get_customer(db, customer_id)

    descriptor = await resolve_referral_code(db, code)
    if descriptor is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Referral code not found",
        )
    if descriptor.is_expired:
        raise HTTPException(
            status_code=status.HTTP_410_GONE,
            detail="This referral code has expired",
        )
    if descriptor.owner_id == customer.id or _same_email(
        descriptor.owner_email, customer.email
    ):
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="You cannot use your own referral code",
        )
    if customer.referral_type != ReferralType.ORGANIC:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail="Customer already has a referral applied",
        )

    customer.referral_type = descriptor.referral_type
    customer.referrer_id = descriptor.owner_id
    customer.referral_code_used = descriptor.code
    customer.referral_commission_rate = descriptor.commission_rate
    customer.referral_applied_at = utc_now()

    if descriptor.referral_code_id is not None:
        await db.execute(
            update(ReferralCode)
            .where(ReferralCode.id == descriptor.referral_code_id)
            .values(uses_count=ReferralCode.uses_count + 1)
        )

    await db.commit()
    await db.refresh(customer)

    logger.info(
        "Applied %s referral %s to customer %s (rate=%s)",
        descriptor.referral_type.value,
        descriptor.code,
        customer.id,
        descriptor.commission_rate,
    )
    return customer, descriptor


def _code_prefix(customer: Customer) -> str:
    source = customer.first_name or customer.email.split("@")[0]
    letters = re.sub(r"[^A-Za-z]", "", source).upper()
    return (letters[:6] or "PAW").ljust(3, "X")


async def _code_taken(db: AsyncSession, code: str) -> bool:
    result = await db.execute(
        select(func.count(Customer.id)).where(
            func.upper(Customer.personal_referral_code) == code
        )
    )
    if result.scalar_one():
        return True
    result = await db.execute(
        select(func.count(ReferralCode.id)).where(func.upper(ReferralCode.code) == code)
    )
    return bool(result.scalar_one())


async def generate_personal_code(db: AsyncSession, customer: Customer) -> str:
    """Assign a personal referral code to a registered customer.

    Idempotent: an existing code is returned unchanged.
    """
    if customer.personal_referral_code:
        return customer.personal_referral_code

    if not customer.is_registered:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Only registered customers can have a referral code",
        )

    prefix = _code_prefix(customer)
    for _ in range(PERSONAL_CODE_ATTEMPTS):
        candidate = f"{prefix}{secrets.token_hex(3).upper()}"
        if not await _code_taken(db, candidate):
            break
    else:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail="Could not allocate a unique referral code",
        )

    customer.personal_referral_code = candidate
    await db.commit()
    await db.refresh(customer)

    logger.info("Assigned personal referral code %s to customer %s", candidate, customer.id)
    return candidate


async def ensure_customer_access(
    db: AsyncSession, customer_id: uuid.UUID, current_user: AuthUser
) -> Customer:
    """Customers may only act on themselves; admins and services on anyone."""
    customer = await get_customer(db, customer_id)
    if current_user.is_admin or current_user.is_service:
        return customer
    if customer.auth_id != current_user.user_id:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Not allowed to act on this customer",
        )
    return customer
