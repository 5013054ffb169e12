"""Canonical catalog and promotion records parsed from upstream POS payloads."""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Iterable, Optional, TypeVar

from loguru import logger
from pydantic import AliasChoices, BaseModel, ConfigDict, Field, ValidationError, field_validator, model_validator


def _to_id(value: Any) -> Optional[str]:
    if value is None:
        return None
    if isinstance(value, float) and value.is_integer():
        value = int(value)
    text = str(value).strip()
    return text or None


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


class DiscountKind(str, Enum):
    PERCENTAGE = "percentage"
    FIXED = "fixed"


def discount_kind(discount_type: Optional[str]) -> Optional[DiscountKind]:
    if not discount_type:
        return None
    lowered = discount_type.lower()
    if "percent" in lowered or "%" in lowered:
        return DiscountKind.PERCENTAGE
    return DiscountKind.FIXED


class FilterSet(BaseModel):
    """Inclusion or exclusion membership for one attribute dimension."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    ids: list[str] = Field(default_factory=list)
    is_exclusion: bool = Field(default=False, validation_alias=AliasChoices("is_exclusion", "isExclusion"))

    @field_validator("ids", mode="before")
    @classmethod
    def _normalize_ids(cls, value: Any) -> list[str]:
        if value is None:
            return []
        if isinstance(value, (str, int)):
            value = [value]
        ids = []
        for raw in value:
            if isinstance(raw, dict):
                raw = raw.get("id", raw.get("tagName", raw.get("name")))
            normalized = _to_id(raw)
            if normalized is not None:
                ids.append(normalized)
        return ids

    @field_validator("is_exclusion", mode="before")
    @classmethod
    def _none_is_inclusion(cls, value: Any) -> bool:
        return bool(value)

    @property
    def populated(self) -> bool:
        return bool(self.ids)


class CatalogItem(BaseModel):
    """One sellable inventory unit reported by one location."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    item_id: str = Field(validation_alias=AliasChoices("item_id", "inventoryId", "productId"))
    product_id: Optional[str] = Field(default=None, validation_alias=AliasChoices("product_id", "productId"))
    brand_id: Optional[str] = Field(default=None, validation_alias=AliasChoices("brand_id", "brandId"))
    category_id: Optional[str] = Field(default=None, validation_alias=AliasChoices("category_id", "categoryId"))
    vendor_id: Optional[str] = Field(default=None, validation_alias=AliasChoices("vendor_id", "vendorId"))
    strain_id: Optional[str] = Field(default=None, validation_alias=AliasChoices("strain_id", "strainId"))
    tags: list[str] = Field(default_factory=list)
    quantity_available: float = Field(
        default=0, validation_alias=AliasChoices("quantity_available", "quantityAvailable")
    )
    unit_price: Optional[float] = Field(
        default=None,
        validation_alias=AliasChoices("unit_price", "unitPrice", "recUnitPrice", "price", "recPrice"),
    )
    allow_automatic_discounts: bool = Field(
        default=True,
        validation_alias=AliasChoices("allow_automatic_discounts", "allowAutomaticDiscounts"),
    )

    product_name: Optional[str] = Field(default=None, validation_alias=AliasChoices("product_name", "productName"))
    brand_name: Optional[str] = Field(default=None, validation_alias=AliasChoices("brand_name", "brandName"))
    category: Optional[str] = None
    sku: Optional[str] = None
    image_url: Optional[str] = Field(default=None, validation_alias=AliasChoices("image_url", "imageUrl"))

    @field_validator("item_id", mode="before")
    @classmethod
    def _require_id(cls, value: Any) -> str:
        normalized = _to_id(value)
        if normalized is None:
            raise ValueError("item id is required")
        return normalized

    @field_validator("product_id", "brand_id", "category_id", "vendor_id", "strain_id", mode="before")
    @classmethod
    def _normalize_id(cls, value: Any) -> Optional[str]:
        return _to_id(value)

    @field_validator("tags", mode="before")
    @classmethod
    def _normalize_tags(cls, value: Any) -> list[str]:
        if not value:
            return []
        if isinstance(value, (str, dict)):
            value = [value]
        tags = []
        for raw in value:
            if isinstance(raw, dict):
                raw = raw.get("tagName") or raw.get("name") or raw.get("tag")
            if raw is not None and str(raw).strip():
                tags.append(str(raw).strip())
        return tags

    @field_validator("quantity_available", mode="before")
    @classmethod
    def _none_is_zero(cls, value: Any) -> Any:
        return 0 if value is None else value

    @field_validator("allow_automatic_discounts", mode="before")
    @classmethod
    def _none_is_allowed(cls, value: Any) -> Any:
        return True if value is None else value


class Promotion(BaseModel):
    """A named discount rule scoped by filter sets and a validity window."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    promotion_id: str = Field(validation_alias=AliasChoices("promotion_id", "discountId"))
    name: str = Field(default="", validation_alias=AliasChoices("name", "discountName"))
    amount: Optional[float] = Field(default=None, validation_alias=AliasChoices("amount", "discountAmount"))
    discount_type: Optional[str] = Field(default=None, validation_alias=AliasChoices("discount_type", "discountType"))
    discount_code: Optional[str] = Field(default=None, validation_alias=AliasChoices("discount_code", "discountCode"))
    discount_method: Optional[str] = Field(
        default=None, validation_alias=AliasChoices("discount_method", "discountMethod")
    )
    is_active: bool = Field(default=True, validation_alias=AliasChoices("is_active", "isActive"))
    is_deleted: bool = Field(default=False, validation_alias=AliasChoices("is_deleted", "isDeleted"))
    valid_from: Optional[datetime] = Field(default=None, validation_alias=AliasChoices("valid_from", "validFrom"))
    valid_until: Optional[datetime] = Field(default=None, validation_alias=AliasChoices("valid_until", "validUntil"))

    products: Optional[FilterSet] = None
    product_categories: Optional[FilterSet] = Field(
        default=None, validation_alias=AliasChoices("product_categories", "productCategories")
    )
    brands: Optional[FilterSet] = None
    vendors: Optional[FilterSet] = None
    strains: Optional[FilterSet] = None
    tags: Optional[FilterSet] = None

    applies_to_locations: list[str] = Field(
        default_factory=list, validation_alias=AliasChoices("applies_to_locations", "appliesToLocations")
    )

    @model_validator(mode="before")
    @classmethod
    def _inventory_tags_fallback(cls, data: Any) -> Any:
        if isinstance(data, dict) and not data.get("tags") and data.get("inventoryTags"):
            data = {**data, "tags": data["inventoryTags"]}
        return data

    @field_validator("promotion_id", mode="before")
    @classmethod
    def _require_id(cls, value: Any) -> str:
        normalized = _to_id(value)
        if normalized is None:
            raise ValueError("promotion id is required")
        return normalized

    @field_validator("name", mode="before")
    @classmethod
    def _none_is_blank(cls, value: Any) -> str:
        return "" if value is None else str(value)

    @field_validator("is_active", mode="before")
    @classmethod
    def _none_is_active(cls, value: Any) -> Any:
        return True if value is None else value

    @field_validator("is_deleted", mode="before")
    @classmethod
    def _none_is_not_deleted(cls, value: Any) -> Any:
        return False if value is None else value

    @field_validator("valid_from", "valid_until", mode="before")
    @classmethod
    def _blank_is_none(cls, value: Any) -> Any:
        if isinstance(value, str) and not value.strip():
            return None
        return value

    @field_validator("valid_from", "valid_until")
    @classmethod
    def _force_utc(cls, value: Optional[datetime]) -> Optional[datetime]:
        return as_utc(value)

    @field_validator("applies_to_locations", mode="before")
    @classmethod
    def _normalize_locations(cls, value: Any) -> list[str]:
        if not value:
            return []
        return [loc for loc in (_to_id(v) for v in value) if loc is not None]

    @property
    def kind(self) -> Optional[DiscountKind]:
        return discount_kind(self.discount_type)

    def filter_sets(self) -> list[tuple[str, FilterSet]]:
        """Populated filter sets, in evaluation order."""

        dims = (
            ("products", self.products),
            ("product_categories", self.product_categories),
            ("brands", self.brands),
            ("vendors", self.vendors),
            ("strains", self.strains),
            ("tags", self.tags),
        )
        return [(name, fs) for name, fs in dims if fs is not None and fs.populated]

    def is_expired(self, now: datetime) -> bool:
        return self.valid_until is not None and self.valid_until < now

    def is_current(self, now: datetime) -> bool:
        if not self.is_active or self.is_deleted:
            return False
        if self.valid_from is not None and self.valid_from > now:
            return False
        return not self.is_expired(now)


ModelT = TypeVar("ModelT", CatalogItem, Promotion)


def parse_records(model: type[ModelT], rows: Iterable[Any], *, kind: str) -> tuple[list[ModelT], int]:
    """Validate raw upstream rows, dropping (and counting) malformed ones."""

    parsed: list[ModelT] = []
    rejected = 0
    for row in rows:
        if not isinstance(row, dict):
            rejected += 1
            continue
        try:
            parsed.append(model.model_validate(row))
        except ValidationError as exc:
            rejected += 1
            logger.bind(kind=kind, errors=exc.error_count(), detail=str(exc.errors()[:1])).warning(
                "record_rejected"
            )
    return parsed, rejected
