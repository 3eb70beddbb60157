"""Enums for the Referral Service models."""

import enum


def enum_values(enum_cls):
    """Return persistent DB values for SAEnum mappings."""
    return [member.value for member in enum_cls]


class ReferralCodeOwnerType(str, enum.Enum):
    PARTNER = "partner"
    INFLUENCER = "influencer"


class ReferralType(str, enum.Enum):
    ORGANIC = "organic"
    PARTNER = "partner"
    CUSTOMER = "customer"
    INFLUENCER = "influencer"


class RecipientType(str, enum.Enum):
    PARTNER = "partner"
    CUSTOMER = "customer"
    INFLUENCER = "influencer"


class CommissionType(str, enum.Enum):
    PARTNER_COMMISSION = "partner_commission"
    INFLUENCER_COMMISSION = "influencer_commission"
    CUSTOMER_CREDIT = "customer_credit"


class CommissionStatus(str, enum.Enum):
    PENDING = "pending"
    APPROVED = "approved"
    PAID = "paid"
    REDEEMED = "redeemed"
    CANCELLED = "cancelled"


class OrderStatus(str, enum.Enum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    PROCESSING = "processing"
    SHIPPED = "shipped"
    DELIVERED = "delivered"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    REFUNDED = "refunded"


class PaymentStatus(str, enum.Enum):
    PENDING = "pending"
    PAID = "paid"
    FAILED = "failed"
    REFUNDED = "refunded"


# Orders in these states count as revenue (and as a used referral discount).
REVENUE_RECOGNIZED_STATUSES = (
    OrderStatus.CONFIRMED,
    OrderStatus.PROCESSING,
    OrderStatus.SHIPPED,
    OrderStatus.DELIVERED,
    OrderStatus.COMPLETED,
)
