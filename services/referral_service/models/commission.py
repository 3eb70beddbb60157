"""Commission/credit ledger and credit redemption ledger."""

import uuid
from datetime import datetime
from decimal import Decimal
from typing import Optional

from libs.common.datetime_utils import utc_now
from libs.db.base import Base
from services.referral_service.models.enums import (
    CommissionStatus,
    CommissionType,
    RecipientType,
    enum_values,
)
from sqlalchemy import JSON, Boolean, CheckConstraint, DateTime
from sqlalchemy import Enum as SAEnum
from sqlalchemy import ForeignKey, Integer, Numeric, String, UniqueConstraint
from sqlalchemy.dialects.postgresql import JSONB, UUID
from sqlalchemy.orm import Mapped, mapped_column


class Commission(Base):
    """One row per referral-attributed order and recipient type.

    ``commission_amount`` is always ``round(order_amount * commission_rate / 100)``
    in pence.
    """

    __tablename__ = "commissions"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    order_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("orders.id"), index=True, nullable=False
    )
    order_amount: Mapped[int] = mapped_column(Integer, nullable=False)
    recipient_type: Mapped[RecipientType] = mapped_column(
        SAEnum(
            RecipientType,
            name="commission_recipient_type_enum",
            values_callable=enum_values,
            validate_strings=True,
        ),
        nullable=False,
    )
    recipient_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), index=True, nullable=False
    )
    recipient_email: Mapped[Optional[str]] = mapped_column(String, nullable=True)
    referral_code: Mapped[Optional[str]] = mapped_column(String(32), nullable=True)
    commission_type: Mapped[CommissionType] = mapped_column(
        SAEnum(
            CommissionType,
            name="commission_type_enum",
            values_callable=enum_values,
            validate_strings=True,
        ),
        nullable=False,
    )
    commission_rate: Mapped[Decimal] = mapped_column(Numeric(5, 2), nullable=False)
    commission_amount: Mapped[int] = mapped_column(Integer, nullable=False)
    status: Mapped[CommissionStatus] = mapped_column(
        SAEnum(
            CommissionStatus,
            name="commission_status_enum",
            values_callable=enum_values,
            validate_strings=True,
        ),
        default=CommissionStatus.PENDING,
        nullable=False,
    )
    # Customer credits only: set in the same commit that adds the amount to the balance
    balance_credited: Mapped[bool] = mapped_column(
        Boolean, default=False, nullable=False
    )
    commission_metadata: Mapped[Optional[dict]] = mapped_column(
        "metadata", JSON().with_variant(JSONB, "postgresql"), nullable=True
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utc_now, nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utc_now, onupdate=utc_now, nullable=False
    )

    __table_args__ = (
        UniqueConstraint(
            "order_id", "recipient_type", name="uq_commission_order_recipient_type"
        ),
        CheckConstraint("commission_amount >= 0", name="ck_commission_amount_non_negative"),
    )

    def __repr__(self) -> str:
        return (
            f"<Commission {self.id} {self.commission_type.value} "
            f"amount={self.commission_amount} status={self.status.value}>"
        )


class CreditRedemption(Base):
    """Customer credit spent on an order. Redeemed totals are summed from here."""

    __tablename__ = "credit_redemptions"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    customer_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("customers.id"), index=True, nullable=False
    )
    order_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("orders.id"), unique=True, nullable=False
    )
    amount: Mapped[int] = mapped_column(Integer, nullable=False)
    balance_before: Mapped[int] = mapped_column(Integer, nullable=False)
    balance_after: Mapped[int] = mapped_column(Integer, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utc_now, nullable=False
    )

    __table_args__ = (
        CheckConstraint("amount > 0", name="ck_credit_redemption_amount_positive"),
    )

    def __repr__(self) -> str:
        return f"<CreditRedemption order={self.order_id} amount={self.amount}>"
