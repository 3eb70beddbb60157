"""Dashboard analytics schemas. Amounts are pence."""

import uuid
from datetime import datetime
from typing import Literal, Optional

from pydantic import BaseModel
from services.referral_service.models.enums import CommissionStatus, RecipientType


class ReferralSummary(BaseModel):
    total_scans: int
    total_signups: int
    total_purchases: int
    conversion_rate: float
    total_commissions: Optional[int] = None
    total_rewards: Optional[int] = None
    total_order_value: int
    avg_order_value: int


class ReferralActivity(BaseModel):
    """One anonymised referral event; never carries the referred customer's identity."""

    id: uuid.UUID
    type: Literal["signup", "purchase"]
    date: datetime
    order_value: Optional[int] = None
    commission: Optional[int] = None
    reward: Optional[int] = None


class ReferralAnalyticsResponse(BaseModel):
    user_type: str
    summary: ReferralSummary
    recent_activity: list[ReferralActivity]


class StatusBreakdown(BaseModel):
    status: CommissionStatus
    count: int
    amount: int
    percentage_of_total: float


class RecipientBreakdown(BaseModel):
    recipient_type: RecipientType
    count: int
    amount: int
    percentage_of_total: float


class CommissionBreakdownResponse(BaseModel):
    total_count: int
    total_amount: int
    by_status: list[StatusBreakdown]
    by_recipient_type: list[RecipientBreakdown]


class CreditEntry(BaseModel):
    id: uuid.UUID
    order_id: uuid.UUID
    amount: int
    status: CommissionStatus
    created_at: datetime


class RedemptionEntry(BaseModel):
    id: uuid.UUID
    order_id: uuid.UUID
    amount: int
    balance_after: int
    created_at: datetime


class CustomerCreditSummaryResponse(BaseModel):
    customer_id: uuid.UUID
    current_balance: int
    total_earned: int
    pending_credits: int
    total_redeemed: int
    ledger_balance: int
    is_consistent: bool
    credits: list[CreditEntry]
    redemptions: list[RedemptionEntry]


class TopCustomerBalance(BaseModel):
    id: uuid.UUID
    email: str
    name: str
    credit_balance: int


class MonthlyCredits(BaseModel):
    month: str
    amount: int


class CreditLiabilitySummaryResponse(BaseModel):
    total_outstanding_credits: int
    total_credits_earned: int
    pending_credits: int
    approved_credits: int
    total_redeemed: int
    customers_with_credits: int
    total_customers: int
    average_credit_balance: int
    total_credit_records: int
    total_redemption_records: int
    redemption_rate_percent: float
    total_potential_liability: int
    top_customers_by_balance: list[TopCustomerBalance]
    monthly_credits_earned: list[MonthlyCredits]
