"""Admin commission management and reporting endpoints."""

import uuid
from typing import Optional

from fastapi import APIRouter, Depends, Query
from libs.auth.dependencies import require_admin
from libs.auth.models import AuthUser
from libs.common.logging import get_logger
from libs.db.session import get_async_db
from services.referral_service.models import (
    Commission,
    CommissionStatus,
    RecipientType,
)
from services.referral_service.schemas import (
    CommissionBreakdownResponse,
    CommissionListResponse,
    CommissionResponse,
    CommissionStatusUpdateRequest,
    CreditLiabilitySummaryResponse,
)
from services.referral_service.services.analytics import (
    get_commission_breakdown,
    get_credit_liability_summary,
)
from services.referral_service.services.commission_ops import (
    update_commission_status,
)
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

logger = get_logger(__name__)
router = APIRouter(prefix="/admin", tags=["admin-referrals"])


@router.get("/commissions", response_model=CommissionListResponse)
async def list_commissions(
    status_filter: Optional[CommissionStatus] = Query(None, alias="status"),
    recipient_type: Optional[RecipientType] = None,
    recipient_id: Optional[uuid.UUID] = None,
    skip: int = Query(0, ge=0),
    limit: int = Query(50, ge=1, le=200),
    _admin: AuthUser = Depends(require_admin),
    db: AsyncSession = Depends(get_async_db),
):
    """List commissions, newest first."""
    query = select(Commission)
    count_query = select(func.count(Commission.id))
    if status_filter:
        query = query.where(Commission.status == status_filter)
        count_query = count_query.where(Commission.status == status_filter)
    if recipient_type:
        query = query.where(Commission.recipient_type == recipient_type)
        count_query = count_query.where(Commission.recipient_type == recipient_type)
    if recipient_id:
        query = query.where(Commission.recipient_id == recipient_id)
        count_query = count_query.where(Commission.recipient_id == recipient_id)

    total = (await db.execute(count_query)).scalar_one()
    result = await db.execute(
        query.order_by(Commission.created_at.desc()).offset(skip).limit(limit)
    )
    return CommissionListResponse(
        commissions=[
            CommissionResponse.model_validate(c) for c in result.scalars().all()
        ],
        total=total,
        skip=skip,
        limit=limit,
    )


@router.get("/commissions/breakdown", response_model=CommissionBreakdownResponse)
async def commission_breakdown(
    _admin: AuthUser = Depends(require_admin),
    db: AsyncSession = Depends(get_async_db),
):
    return await get_commission_breakdown(db)


@router.patch("/commissions/{commission_id}/status", response_model=CommissionResponse)
async def change_commission_status(
    commission_id: uuid.UUID,
    body: CommissionStatusUpdateRequest,
    admin: AuthUser = Depends(require_admin),
    db: AsyncSession = Depends(get_async_db),
):
    """Approve, pay, redeem or cancel a commission."""
    commission = await update_commission_status(
        db,
        commission_id,
        body.status,
        changed_by=admin.email or admin.user_id,
        note=body.note,
    )
    return CommissionResponse.model_validate(commission)


@router.get("/credits/summary", response_model=CreditLiabilitySummaryResponse)
async def credit_liability_summary(
    _admin: AuthUser = Depends(require_admin),
    db: AsyncSession = Depends(get_async_db),
):
    """Outstanding customer credit liability."""
    return await get_credit_liability_summary(db)
