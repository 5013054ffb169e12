"""Discount rows and their location associations."""

from datetime import datetime
from typing import Optional

from sqlalchemy import JSON, Boolean, DateTime, Float, ForeignKey, Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from promosync.models.base import Base


class Discount(Base):
    """One promotion, shared by every location that offers it."""

    __tablename__ = "discounts"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    discount_id: Mapped[str] = mapped_column(String(64), unique=True, nullable=False)
    discount_name: Mapped[str] = mapped_column(String(512), nullable=False, default="")
    discount_code: Mapped[Optional[str]] = mapped_column(String(128))
    discount_amount: Mapped[Optional[float]] = mapped_column(Float)
    discount_type: Mapped[Optional[str]] = mapped_column(String(64))
    discount_method: Mapped[Optional[str]] = mapped_column(String(64))
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    is_deleted: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    valid_from: Mapped[Optional[datetime]] = mapped_column(DateTime)
    valid_until: Mapped[Optional[datetime]] = mapped_column(DateTime, index=True)
    products: Mapped[Optional[dict]] = mapped_column(JSON)
    product_categories: Mapped[Optional[dict]] = mapped_column(JSON)
    brands: Mapped[Optional[dict]] = mapped_column(JSON)
    vendors: Mapped[Optional[dict]] = mapped_column(JSON)
    strains: Mapped[Optional[dict]] = mapped_column(JSON)
    tags: Mapped[Optional[dict]] = mapped_column(JSON)
    updated_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)


class DiscountLocation(Base):
    """Which locations offer a discount; rebuilt per location on each pass."""

    __tablename__ = "discount_locations"

    discount_id: Mapped[str] = mapped_column(
        String(64), ForeignKey("discounts.discount_id", ondelete="CASCADE"), primary_key=True
    )
    location_id: Mapped[str] = mapped_column(String(100), primary_key=True, index=True)
