"""Catalog portraits that customers can re-render with their own pet."""

import uuid
from datetime import datetime
from typing import Optional

from libs.common.datetime_utils import utc_now
from libs.db.base import Base
from sqlalchemy import Boolean, DateTime, String, Text
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column


class CatalogImage(Base):
    __tablename__ = "catalog_images"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    image_url: Mapped[str] = mapped_column(String, nullable=False)
    breed_name: Mapped[Optional[str]] = mapped_column(String, nullable=True)
    theme_name: Mapped[Optional[str]] = mapped_column(String, nullable=True)
    style_name: Mapped[Optional[str]] = mapped_column(String, nullable=True)
    format_name: Mapped[Optional[str]] = mapped_column(String, nullable=True)
    # "W:H", e.g. "2:3"
    aspect_ratio: Mapped[Optional[str]] = mapped_column(String(16), nullable=True)
    composition_template: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    is_public: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utc_now, nullable=False
    )

    def __repr__(self) -> str:
        return f"<CatalogImage {self.id} public={self.is_public}>"
