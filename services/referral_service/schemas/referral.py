"""Referral validation and attribution schemas."""

import uuid
from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, EmailStr, Field
from services.referral_service.models.enums import ReferralType


class ReferralValidateRequest(BaseModel):
    referral_code: str = Field(..., min_length=1, max_length=32)
    customer_email: EmailStr
    order_total: int = Field(..., ge=0, description="Order subtotal in pence")


class ReferralInfo(BaseModel):
    code: str
    type: ReferralType
    owner_name: Optional[str] = None
    commission_rate: float
    expires_at: Optional[datetime] = None


class DiscountQuote(BaseModel):
    percentage: float
    amount: int


class CommissionQuote(BaseModel):
    rate: float
    amount: int


class ReferralValidateResponse(BaseModel):
    valid: bool
    eligible: bool
    reason: Optional[str] = None
    message: str
    referral: Optional[ReferralInfo] = None
    discount: DiscountQuote
    commission: CommissionQuote


class ReferralVerifyResponse(BaseModel):
    valid: bool
    message: str
    referral: Optional[ReferralInfo] = None


class ApplyReferralRequest(BaseModel):
    customer_id: uuid.UUID


class CustomerReferralResponse(BaseModel):
    id: uuid.UUID
    email: str
    personal_referral_code: Optional[str] = None
    referral_type: ReferralType
    referrer_id: Optional[uuid.UUID] = None
    referral_code_used: Optional[str] = None
    referral_commission_rate: Optional[float] = None
    referral_applied_at: Optional[datetime] = None
    current_credit_balance: int

    model_config = ConfigDict(from_attributes=True)


class PersonalCodeResponse(BaseModel):
    customer_id: uuid.UUID
    personal_referral_code: str
