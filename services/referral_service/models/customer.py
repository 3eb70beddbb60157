"""Customer model with personal referral code, credit balance and attribution."""

import uuid
from datetime import datetime
from decimal import Decimal
from typing import Optional

from libs.common.datetime_utils import utc_now
from libs.db.base import Base
from services.referral_service.models.enums import ReferralType, enum_values
from sqlalchemy import Boolean, CheckConstraint, DateTime
from sqlalchemy import Enum as SAEnum
from sqlalchemy import Integer, Numeric, String
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column


class Customer(Base):
    __tablename__ = "customers"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    auth_id: Mapped[Optional[str]] = mapped_column(
        String, unique=True, index=True, nullable=True
    )
    email: Mapped[str] = mapped_column(String, unique=True, index=True, nullable=False)
    first_name: Mapped[Optional[str]] = mapped_column(String, nullable=True)
    last_name: Mapped[Optional[str]] = mapped_column(String, nullable=True)
    personal_referral_code: Mapped[Optional[str]] = mapped_column(
        String(32), unique=True, index=True, nullable=True
    )
    is_registered: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    # Pence. Credited by earned referral credits, debited by redemptions.
    current_credit_balance: Mapped[int] = mapped_column(
        Integer, default=0, nullable=False
    )

    # Referral attribution (who referred this customer)
    referral_type: Mapped[ReferralType] = mapped_column(
        SAEnum(
            ReferralType,
            name="referral_type_enum",
            values_callable=enum_values,
            validate_strings=True,
        ),
        default=ReferralType.ORGANIC,
        nullable=False,
    )
    referrer_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUID(as_uuid=True), index=True, nullable=True
    )
    referral_code_used: Mapped[Optional[str]] = mapped_column(String(32), nullable=True)
    # Captured when the referral is applied so later rate changes don't apply
    referral_commission_rate: Mapped[Optional[Decimal]] = mapped_column(
        Numeric(5, 2), nullable=True
    )
    referral_applied_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    referral_order_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUID(as_uuid=True), nullable=True
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utc_now, nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utc_now, onupdate=utc_now, nullable=False
    )

    __table_args__ = (
        CheckConstraint(
            "current_credit_balance >= 0", name="ck_customer_credit_non_negative"
        ),
    )

    def __repr__(self) -> str:
        return f"<Customer {self.id} {self.email} credit={self.current_credit_balance}>"
