"""Customer-facing referral code and credit endpoints."""

import uuid

from fastapi import APIRouter, Depends
from libs.auth.dependencies import get_current_user, require_service_or_admin
from libs.auth.models import AuthUser
from libs.common.logging import get_logger
from libs.db.session import get_async_db
from services.referral_service.schemas import (
    CustomerCreditSummaryResponse,
    PersonalCodeResponse,
)
from services.referral_service.services.analytics import get_customer_credit_summary
from services.referral_service.services.validation import (
    ensure_customer_access,
    generate_personal_code,
)
from sqlalchemy.ext.asyncio import AsyncSession

logger = get_logger(__name__)
router = APIRouter(prefix="/customers", tags=["customers"])


@router.post("/{customer_id}/referral-code", response_model=PersonalCodeResponse)
async def create_personal_referral_code(
    customer_id: uuid.UUID,
    current_user: AuthUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_async_db),
):
    """Assign (or return) the customer's personal referral code."""
    customer = await ensure_customer_access(db, customer_id, current_user)
    code = await generate_personal_code(db, customer)
    return PersonalCodeResponse(customer_id=customer_id, personal_referral_code=code)


@router.get("/{customer_id}/credits", response_model=CustomerCreditSummaryResponse)
async def customer_credits(
    customer_id: uuid.UUID,
    _caller: AuthUser = Depends(require_service_or_admin),
    db: AsyncSession = Depends(get_async_db),
):
    """Earned, pending and redeemed credit with a ledger consistency check."""
    return await get_customer_credit_summary(db, customer_id)
