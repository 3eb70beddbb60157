"""Referral Service schemas package.

Re-exports all schemas so routers import from one place.
"""

from services.referral_service.schemas.analytics import (  # noqa: F401
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
from services.referral_service.schemas.commission import (  # noqa: F401
    CommissionListResponse,
    CommissionRecordResponse,
    CommissionResponse,
    CommissionStatusUpdateRequest,
    CreditRedemptionResponse,
    CustomerCreditRequest,
    CustomerCreditResponse,
    PartnerCommissionRequest,
    RedeemCreditRequest,
)
from services.referral_service.schemas.referral import (  # noqa: F401
    ApplyReferralRequest,
    CommissionQuote,
    CustomerReferralResponse,
    DiscountQuote,
    PersonalCodeResponse,
    ReferralInfo,
    ReferralValidateRequest,
    ReferralValidateResponse,
    ReferralVerifyResponse,
)

__all__ = [
    # Analytics
    "CommissionBreakdownResponse",
    "CreditEntry",
    "CreditLiabilitySummaryResponse",
    "CustomerCreditSummaryResponse",
    "MonthlyCredits",
    "RecipientBreakdown",
    "RedemptionEntry",
    "ReferralActivity",
    "ReferralAnalyticsResponse",
    "ReferralSummary",
    "StatusBreakdown",
    "TopCustomerBalance",
    # Commissions
    "CommissionListResponse",
    "CommissionRecordResponse",
    "CommissionResponse",
    "CommissionStatusUpdateRequest",
    "CreditRedemptionResponse",
    "CustomerCreditRequest",
    "CustomerCreditResponse",
    "PartnerCommissionRequest",
    "RedeemCreditRequest",
    # Referrals
    "ApplyReferralRequest",
    "CommissionQuote",
    "CustomerReferralResponse",
    "DiscountQuote",
    "PersonalCodeResponse",
    "ReferralInfo",
    "ReferralValidateRequest",
    "ReferralValidateResponse",
    "ReferralVerifyResponse",
]
