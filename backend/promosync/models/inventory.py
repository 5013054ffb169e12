"""Inventory rows, replaced wholesale per location on every pass."""

from datetime import datetime
from typing import Optional

from sqlalchemy import JSON, Boolean, DateTime, Float, Integer, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from promosync.models.base import Base


class Inventory(Base):
    __tablename__ = "inventories"
    __table_args__ = (UniqueConstraint("location_id", "inventory_id", name="uq_inventories_location_item"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    inventory_id: Mapped[str] = mapped_column(String(64), nullable=False)
    location_id: Mapped[str] = mapped_column(String(100), nullable=False, index=True)
    product_id: Mapped[Optional[str]] = mapped_column(String(64))
    sku: Mapped[Optional[str]] = mapped_column(String(128))
    product_name: Mapped[Optional[str]] = mapped_column(String(512))
    brand_id: Mapped[Optional[str]] = mapped_column(String(64))
    brand_name: Mapped[Optional[str]] = mapped_column(String(255))
    category_id: Mapped[Optional[str]] = mapped_column(String(64))
    category: Mapped[Optional[str]] = mapped_column(String(255))
    vendor_id: Mapped[Optional[str]] = mapped_column(String(64))
    strain_id: Mapped[Optional[str]] = mapped_column(String(64))
    tags: Mapped[Optional[list]] = mapped_column(JSON)
    quantity_available: Mapped[float] = mapped_column(Float, nullable=False, default=0)
    unit_price: Mapped[Optional[float]] = mapped_column(Float)
    allow_automatic_discounts: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    image_url: Mapped[Optional[str]] = mapped_column(String(1024))
    updated_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)
