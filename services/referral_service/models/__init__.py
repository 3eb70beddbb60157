"""Referral Service models package.

Re-exports all models and enums so that SQLAlchemy's mapper registry sees
every model class on import.
"""

from services.referral_service.models.commission import (  # noqa: F401
    Commission,
    CreditRedemption,
)
from services.referral_service.models.customer import Customer  # noqa: F401
from services.referral_service.models.enums import (  # noqa: F401
    REVENUE_RECOGNIZED_STATUSES,
    CommissionStatus,
    CommissionType,
    OrderStatus,
    PaymentStatus,
    RecipientType,
    ReferralCodeOwnerType,
    ReferralType,
)
from services.referral_service.models.order import Order  # noqa: F401
from services.referral_service.models.partner import Influencer, Partner  # noqa: F401
from services.referral_service.models.referral_code import ReferralCode  # noqa: F401

__all__ = [
    # Enums
    "CommissionStatus",
    "CommissionType",
    "OrderStatus",
    "PaymentStatus",
    "RecipientType",
    "ReferralCodeOwnerType",
    "ReferralType",
    "REVENUE_RECOGNIZED_STATUSES",
    # Models
    "Commission",
    "CreditRedemption",
    "Customer",
    "Influencer",
    "Order",
    "Partner",
    "ReferralCode",
]
