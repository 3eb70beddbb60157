"""Commission, customer credit and redemption schemas."""

import uuid
from datetime import datetime
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, ConfigDict, EmailStr, Field
from services.referral_service.models.enums import (
    CommissionStatus,
    CommissionType,
    RecipientType,
)


class CommissionResponse(BaseModel):
    id: uuid.UUID
    order_id: uuid.UUID
    order_amount: int
    recipient_type: RecipientType
    recipient_id: uuid.UUID
    recipient_email: Optional[str] = None
    referral_code: Optional[str] = None
    commission_type: CommissionType
    commission_rate: float
    commission_amount: int
    status: CommissionStatus
    metadata: Optional[dict] = Field(
        default=None, validation_alias="commission_metadata"
    )
    created_at: datetime
    updated_at: datetime

    model_config = ConfigDict(from_attributes=True)


class CommissionListResponse(BaseModel):
    commissions: list[CommissionResponse]
    total: int
    skip: int
    limit: int


class PartnerCommissionRequest(BaseModel):
    order_id: uuid.UUID
    order_amount: int = Field(..., ge=0, description="Order amount in pence")
    partner_id: uuid.UUID
    partner_email: Optional[EmailStr] = None
    commission_rate: Decimal = Field(..., ge=0, le=100)
    referral_code: Optional[str] = None


class CommissionRecordResponse(BaseModel):
    commission: CommissionResponse
    created: bool


class CustomerCreditRequest(BaseModel):
    order_id: uuid.UUID
    order_amount: int = Field(..., ge=0, description="Order amount in pence")
    referred_customer: Optional[str] = Field(
        default=None, description="Email of the customer who placed the order"
    )
    referring_customer_id: uuid.UUID
    referral_code: Optional[str] = None


class CustomerCreditResponse(BaseModel):
    commission: CommissionResponse
    created: bool
    new_balance: Optional[int] = None
    balance_update_error: Optional[str] = None


class RedeemCreditRequest(BaseModel):
    customer_id: uuid.UUID
    order_id: uuid.UUID
    amount: int = Field(..., gt=0, description="Credit to spend in pence")


class CreditRedemptionResponse(BaseModel):
    id: uuid.UUID
    customer_id: uuid.UUID
    order_id: uuid.UUID
    amount: int
    balance_before: int
    balance_after: int
    created_at: datetime
    created: bool = True

    model_config = ConfigDict(from_attributes=True)


class CommissionStatusUpdateRequest(BaseModel):
    status: CommissionStatus
    note: Optional[str] = Field(default=None, max_length=500)
