"""Decide which promotions apply to which catalog items.

A promotion applies to an item when every populated filter set on the
promotion is satisfied by the item:

* inclusion: the item's attribute is present and listed;
* exclusion: the item's attribute is absent or not listed;
* tags compare by set intersection (inclusion needs at least one shared
  tag, exclusion needs none).

Inactive, soft-deleted and out-of-window promotions never apply, and items
that opt out of automatic discounts never receive one. Everything in this
module is pure; a missing attribute is an unsatisfied filter, not an error.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Iterable, Optional, Sequence, TypeVar

from promosync.schemas.cache import CachedPromotion
from promosync.schemas.catalog import CatalogItem, DiscountKind, Promotion, discount_kind

# filter set name -> CatalogItem attribute
DIMENSION_ATTRIBUTES = {
    "products": "product_id",
    "product_categories": "category_id",
    "brands": "brand_id",
    "vendors": "vendor_id",
    "strains": "strain_id",
    "tags": "tags",
}

_PERCENT_RE = re.compile(r"(\d+(?:\.\d+)?)\s*%")
_DOLLAR_RE = re.compile(r"\$\s*(\d+(?:\.\d+)?)")


@dataclass(frozen=True, slots=True)
class _Dimension:
    attribute: str
    ids: frozenset[str]
    is_exclusion: bool


@dataclass(frozen=True, slots=True)
class CompiledPromotion:
    promotion: Promotion
    dimensions: tuple[_Dimension, ...]


def compile_promotion(promotion: Promotion) -> CompiledPromotion:
    dims = tuple(
        _Dimension(DIMENSION_ATTRIBUTES[name], frozenset(fs.ids), fs.is_exclusion)
        for name, fs in promotion.filter_sets()
    )
    return CompiledPromotion(promotion=promotion, dimensions=dims)


def _dimension_satisfied(item: CatalogItem, dim: _Dimension) -> bool:
    value = getattr(item, dim.attribute, None)
    if dim.attribute == "tags":
        hit = bool(dim.ids.intersection(value or ()))
    else:
        hit = value is not None and value in dim.ids
    return not hit if dim.is_exclusion else hit


def _satisfies(item: CatalogItem, compiled: CompiledPromotion) -> bool:
    # short-circuits on the first failing dimension
    return all(_dimension_satisfied(item, dim) for dim in compiled.dimensions)


def applies(item: CatalogItem, promotion: Promotion, now: Optional[datetime] = None) -> bool:
    """Return True when ``promotion`` currently applies to ``item``."""

    now = now or datetime.now(timezone.utc)
    if not item.allow_automatic_discounts or not promotion.is_current(now):
        return False
    return _satisfies(item, compile_promotion(promotion))


def match_promotions(
    items: Iterable[CatalogItem],
    promotions: Iterable[Promotion],
    now: Optional[datetime] = None,
) -> dict[str, list[Promotion]]:
    """Map item id -> applicable promotions, omitting items with no match.

    Promotion-level checks (window, flags) run once per promotion rather
    than once per pair.
    """

    now = now or datetime.now(timezone.utc)
    live = [compile_promotion(p) for p in promotions if p.is_current(now)]
    matches: dict[str, list[Promotion]] = {}
    if not live:
        return matches
    for item in items:
        if not item.allow_automatic_discounts:
            continue
        hits = [c.promotion for c in live if _satisfies(item, c)]
        if hits:
            matches.setdefault(item.item_id, []).extend(hits)
    return matches


def _first_number(pattern: re.Pattern[str], text: str) -> float:
    found = pattern.search(text or "")
    return float(found.group(1)) if found else 0.0


def percentage_value(promotion: Promotion | CachedPromotion) -> float:
    if discount_kind(promotion.discount_type) is DiscountKind.PERCENTAGE and promotion.amount is not None:
        return float(promotion.amount)
    return _first_number(_PERCENT_RE, promotion.name)


def fixed_value(promotion: Promotion | CachedPromotion) -> float:
    if discount_kind(promotion.discount_type) is DiscountKind.FIXED and promotion.amount is not None:
        return float(promotion.amount)
    return _first_number(_DOLLAR_RE, promotion.name)


RankedT = TypeVar("RankedT", Promotion, CachedPromotion)


def rank_promotions(promotions: Sequence[RankedT], limit: Optional[int] = None) -> list[RankedT]:
    """Order promotions for display: biggest percentage first, then biggest fixed amount.

    The name parsing is a display heuristic; it never changes which promotions
    are applicable.
    """

    ranked = sorted(promotions, key=lambda p: (percentage_value(p), fixed_value(p)), reverse=True)
    return ranked if limit is None else ranked[:limit]
