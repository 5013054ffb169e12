from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel


class CachedPromotion(BaseModel):
    promotion_id: str
    name: str
    amount: Optional[float] = None
    discount_type: Optional[str] = None
    valid_from: Optional[datetime] = None
    valid_until: Optional[datetime] = None
    is_active: bool = True


class CachedItem(BaseModel):
    item_id: str
    product_id: Optional[str] = None
    product_name: Optional[str] = None
    brand_name: Optional[str] = None
    category: Optional[str] = None
    image_url: Optional[str] = None
    unit_price: Optional[float] = None
    quantity_available: float = 0


class CacheEntry(BaseModel):
    location_id: str
    location_name: str = ""
    item: CachedItem
    promotions: List[CachedPromotion]
    last_updated: datetime
    expires_at: Optional[datetime] = None


class RankedCacheEntry(CacheEntry):
    total_promotions: int
    showing_top: int


class CacheEntryPage(BaseModel):
    page: int
    limit: int
    total: int
    total_pages: int
    count: int
    data: List[RankedCacheEntry]
    location_id: Optional[str] = None
    locations_count: Optional[int] = None
    products_per_store: Optional[int] = None


class CacheStats(BaseModel):
    backend: str
    total_keys: int
    memory_used: str = "unknown"
