"""Public referral endpoints: validation at checkout, verification and attribution."""

from fastapi import APIRouter, Depends, HTTPException, Request, status
from fastapi.responses import JSONResponse
from libs.auth.dependencies import get_current_user
from libs.auth.models import AuthUser
from libs.common.logging import bind_log_context, get_logger
from libs.common.rate_limit import limiter
from libs.db.session import get_async_db
from services.referral_service.schemas import (
    ApplyReferralRequest,
    CommissionQuote,
    CustomerReferralResponse,
    DiscountQuote,
    ReferralAnalyticsResponse,
    ReferralInfo,
    ReferralValidateRequest,
    ReferralValidateResponse,
    ReferralVerifyResponse,
)
from services.referral_service.services.analytics import (
    get_referral_analytics,
    resolve_referrer,
)
from services.referral_service.services.validation import (
    ReferralDescriptor,
    ReferralValidationResult,
    apply_referral,
    ensure_customer_access,
    resolve_referral_code,
    validate_referral,
)
from sqlalchemy.ext.asyncio import AsyncSession

logger = get_logger(__name__)
router = APIRouter(prefix="/referrals", tags=["referrals"])


def _referral_info(descriptor: ReferralDescriptor) -> ReferralInfo:
    # Owner email stays server-side
    return ReferralInfo(
        code=descriptor.code,
        type=descriptor.referral_type,
        owner_name=descriptor.owner_name,
        commission_rate=float(descriptor.commission_rate),
        expires_at=descriptor.expires_at,
    )


def _validation_response(result: ReferralValidationResult) -> ReferralValidateResponse:
    return ReferralValidateResponse(
        valid=result.valid,
        eligible=result.eligible,
        reason=result.reason,
        message=result.message,
        referral=_referral_info(result.referral) if result.referral else None,
        discount=DiscountQuote(
            percentage=float(result.discount_percentage),
            amount=result.discount_amount,
        ),
        commission=CommissionQuote(
            rate=float(result.commission_rate),
            amount=result.commission_amount,
        ),
    )


@router.post(
    "/validate",
    response_model=ReferralValidateResponse,
    responses={404: {"model": ReferralValidateResponse}, 410: {"model": ReferralValidateResponse}},
)
@limiter.limit("30/minute")
async def validate_referral_code(
    request: Request,
    body: ReferralValidateRequest,
    db: AsyncSession = Depends(get_async_db),
):
    """Quote the referral discount and referrer commission for a checkout.

    Unknown codes answer 404 and expired codes 410, both with ``valid: false``;
    self-referral and an already-used discount answer 200 with
    ``eligible: false``.
    """
    bind_log_context(referral_code=body.referral_code)
    result = await validate_referral(
        db,
        referral_code=body.referral_code,
        customer_email=body.customer_email,
        order_total=body.order_total,
    )
    payload = _validation_response(result)
    return JSONResponse(
        status_code=result.http_status, content=payload.model_dump(mode="json")
    )


@router.get(
    "/verify/{code}",
    response_model=ReferralVerifyResponse,
    responses={404: {"model": ReferralVerifyResponse}, 410: {"model": ReferralVerifyResponse}},
)
@limiter.limit("30/minute")
async def verify_referral_code(
    request: Request,
    code: str,
    db: AsyncSession = Depends(get_async_db),
):
    """Look up a code for the signup landing page."""
    bind_log_context(referral_code=code)
    descriptor = await resolve_referral_code(db, code)
    if descriptor is None:
        payload = ReferralVerifyResponse(valid=False, message="Referral code not found")
        return JSONResponse(
            status_code=status.HTTP_404_NOT_FOUND, content=payload.model_dump(mode="json")
        )
    if descriptor.is_expired:
        payload = ReferralVerifyResponse(
            valid=False, message="This referral code has expired"
        )
        return JSONResponse(
            status_code=status.HTTP_410_GONE, content=payload.model_dump(mode="json")
        )
    return ReferralVerifyResponse(
        valid=True,
        message="Referral code is valid",
        referral=_referral_info(descriptor),
    )


@router.post("/verify/{code}/apply", response_model=CustomerReferralResponse)
async def apply_referral_code(
    code: str,
    body: ApplyReferralRequest,
    current_user: AuthUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_async_db),
):
    """Attribute the signed-up customer to the code's owner."""
    bind_log_context(referral_code=code, customer_id=str(body.customer_id))
    await ensure_customer_access(db, body.customer_id, current_user)
    customer, _ = await apply_referral(db, code=code, customer_id=body.customer_id)
    return CustomerReferralResponse.model_validate(customer)


@router.get("/analytics", response_model=ReferralAnalyticsResponse)
async def referral_analytics(
    current_user: AuthUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_async_db),
):
    """Dashboard analytics for the signed-in partner, influencer or customer."""
    referrer = await resolve_referrer(db, current_user.user_id)
    if referrer is None:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Invalid user type for referrals",
        )
    user_type, referrer_id = referrer
    logger.info("Fetching referral analytics for %s %s", user_type.value, referrer_id)
    return await get_referral_analytics(db, user_type=user_type, referrer_id=referrer_id)

