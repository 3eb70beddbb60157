"""Internal service-to-service commission endpoints.

Called by the order pipeline via service-role JWT, not by the storefront.
"""

from fastapi import APIRouter, Depends, status
from libs.auth.dependencies import require_service_role
from libs.auth.models import AuthUser
from libs.common.logging import get_logger
from libs.db.session import get_async_db
from services.referral_service.schemas import (
    CommissionRecordResponse,
    CommissionResponse,
    CreditRedemptionResponse,
    CustomerCreditRequest,
    CustomerCreditResponse,
    PartnerCommissionRequest,
    RedeemCreditRequest,
)
from services.referral_service.services.commission_ops import (
    record_customer_credit,
    record_partner_commission,
    redeem_credit,
)
from sqlalchemy.ext.asyncio import AsyncSession

logger = get_logger(__name__)
router = APIRouter(prefix="/commissions", tags=["commissions"])


@router.post(
    "/partner",
    response_model=CommissionRecordResponse,
    status_code=status.HTTP_201_CREATED,
)
async def create_partner_commission(
    body: PartnerCommissionRequest,
    _service: AuthUser = Depends(require_service_role),
    db: AsyncSession = Depends(get_async_db),
):
    """Record a partner commission at the supplied rate."""
    commission, created = await record_partner_commission(
        db,
        order_id=body.order_id,
        order_amount=body.order_amount,
        partner_id=body.partner_id,
        partner_email=body.partner_email,
        commission_rate=body.commission_rate,
        referral_code=body.referral_code,
        metadata={"created_via": "api"},
    )
    return CommissionRecordResponse(
        commission=CommissionResponse.model_validate(commission), created=created
    )


@router.post(
    "/customer-credit",
    response_model=CustomerCreditResponse,
    status_code=status.HTTP_201_CREATED,
)
async def create_customer_credit(
    body: CustomerCreditRequest,
    _service: AuthUser = Depends(require_service_role),
    db: AsyncSession = Depends(get_async_db),
):
    """Record a customer credit and add it to the referrer's balance.

    A failed balance update still answers 201 with ``balance_update_error`` set.
    """
    result = await record_customer_credit(
        db,
        order_id=body.order_id,
        order_amount=body.order_amount,
        referred_customer=body.referred_customer,
        referring_customer_id=body.referring_customer_id,
        referral_code=body.referral_code,
        metadata={"created_via": "api"},
    )
    return CustomerCreditResponse(
        commission=CommissionResponse.model_validate(result.commission),
        created=result.created,
        new_balance=result.new_balance,
        balance_update_error=result.balance_update_error,
    )


@router.post("/redeem", response_model=CreditRedemptionResponse)
async def redeem_customer_credit(
    body: RedeemCreditRequest,
    _service: AuthUser = Depends(require_service_role),
    db: AsyncSession = Depends(get_async_db),
):
    """Spend customer credit on an order (once per order)."""
    redemption, created = await redeem_credit(
        db,
        customer_id=body.customer_id,
        order_id=body.order_id,
        amount=body.amount,
    )
    response = CreditRedemptionResponse.model_validate(redemption)
    response.created = created
    return response
