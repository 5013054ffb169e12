"""Sink row builders.

Both adapters write the same snake_case field names; timestamps are stored
as naive UTC.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Optional

from promosync.schemas.catalog import CatalogItem, FilterSet, Promotion


def naive_utc(value: Optional[datetime]) -> Optional[datetime]:
    if value is None:
        return None
    if value.tzinfo is not None:
        value = value.astimezone(timezone.utc).replace(tzinfo=None)
    return value


def _filter_payload(fs: Optional[FilterSet]) -> Optional[dict[str, Any]]:
    if fs is None or not fs.populated:
        return None
    return {"ids": list(fs.ids), "is_exclusion": fs.is_exclusion}


def item_row(location_id: str, item: CatalogItem, now: datetime) -> dict[str, Any]:
    return {
        "inventory_id": item.item_id,
        "location_id": location_id,
        "product_id": item.product_id,
        "sku": item.sku,
        "product_name": item.product_name,
        "brand_id": item.brand_id,
        "brand_name": item.brand_name,
        "category_id": item.category_id,
        "category": item.category,
        "vendor_id": item.vendor_id,
        "strain_id": item.strain_id,
        "tags": list(item.tags),
        "quantity_available": item.quantity_available,
        "unit_price": item.unit_price,
        "allow_automatic_discounts": item.allow_automatic_discounts,
        "image_url": item.image_url,
        "updated_at": naive_utc(now),
    }


def promotion_row(promotion: Promotion, now: datetime) -> dict[str, Any]:
    return {
        "discount_id": promotion.promotion_id,
        "discount_name": promotion.name,
        "discount_code": promotion.discount_code,
        "discount_amount": promotion.amount,
        "discount_type": promotion.discount_type,
        "discount_method": promotion.discount_method,
        "is_active": promotion.is_active,
        "is_deleted": promotion.is_deleted,
        "valid_from": naive_utc(promotion.valid_from),
        "valid_until": naive_utc(promotion.valid_until),
        "products": _filter_payload(promotion.products),
        "product_categories": _filter_payload(promotion.product_categories),
        "brands": _filter_payload(promotion.brands),
        "vendors": _filter_payload(promotion.vendors),
        "strains": _filter_payload(promotion.strains),
        "tags": _filter_payload(promotion.tags),
        "updated_at": naive_utc(now),
    }


def as_json_payload(row: dict[str, Any]) -> dict[str, Any]:
    """Row with datetimes rendered as ISO-8601 UTC strings, for HTTP bodies."""

    out = {}
    for key, value in row.items():
        if isinstance(value, datetime):
            value = value.replace(tzinfo=timezone.utc).isoformat().replace("+00:00", "Z")
        out[key] = value
    return out
