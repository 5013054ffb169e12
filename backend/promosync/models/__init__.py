"""ORM model exports for convenient imports elsewhere in the package."""

from promosync.models.base import Base
from promosync.models.discount import Discount, DiscountLocation
from promosync.models.inventory import Inventory
from promosync.models.store import Store

__all__ = [
    "Base",
    "Discount",
    "DiscountLocation",
    "Inventory",
    "Store",
]
