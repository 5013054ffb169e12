from datetime import timedelta

import pytest

from factories import NOW, exclude, include, make_item, make_promotion
from promosync.schemas.cache import CachedPromotion
from promosync.schemas.catalog import CatalogItem, DiscountKind, Promotion
from promosync.services.filters import applies, match_promotions, rank_promotions


def test_promotion_without_filters_applies_to_everything():
    assert applies(make_item(), make_promotion(), NOW)
    assert applies(make_item(brand_id=None, category_id=None), make_promotion(), NOW)


def test_inclusion_requires_listed_attribute():
    promo = make_promotion(products=include("p1", "p2"))

    assert applies(make_item(product_id="p2"), promo, NOW)
    assert not applies(make_item(product_id="p3"), promo, NOW)
    assert not applies(make_item(product_id=None), promo, NOW)


def test_exclusion_passes_unlisted_and_missing_attributes():
    promo = make_promotion(brands=exclude("b9"))

    assert not applies(make_item(brand_id="b9"), promo, NOW)
    assert applies(make_item(brand_id="b1"), promo, NOW)
    assert applies(make_item(brand_id=None), promo, NOW)


@pytest.mark.parametrize(
    "item_tags, filter_set, expected",
    [
        (["sale", "indica"], include("sale"), True),
        (["indica"], include("sale"), False),
        ([], include("sale"), False),
        (["sale"], exclude("sale", "clearance"), False),
        (["indica"], exclude("sale"), True),
        ([], exclude("sale"), True),
    ],
)
def test_tags_compare_by_intersection(item_tags, filter_set, expected):
    promo = make_promotion(tags=filter_set)
    assert applies(make_item(tags=item_tags), promo, NOW) is expected


def test_every_populated_dimension_must_hold():
    promo = make_promotion(
        products=include("p1"),
        product_categories=include("c1"),
        brands=exclude("b2"),
        vendors=include("v1"),
    )

    assert applies(make_item(vendor_id="v1"), promo, NOW)
    assert not applies(make_item(vendor_id="v2"), promo, NOW)
    assert not applies(make_item(vendor_id="v1", brand_id="b2"), promo, NOW)


def test_empty_filter_set_is_vacuous():
    promo = make_promotion(products=include(), brands=exclude())
    assert applies(make_item(product_id="anything"), promo, NOW)


@pytest.mark.parametrize(
    "fields",
    [
        {"is_active": False},
        {"is_deleted": True},
        {"valid_until": NOW - timedelta(seconds=1)},
        {"valid_from": NOW + timedelta(days=1)},
    ],
)
def test_non_current_promotions_never_apply(fields):
    assert not applies(make_item(), make_promotion(**fields), NOW)


def test_items_opting_out_never_receive_promotions():
    assert not applies(make_item(allow_automatic_discounts=False), make_promotion(), NOW)


def test_match_promotions_omits_items_without_matches():
    items = [make_item("i1", brand_id="b1"), make_item("i2", brand_id="b2"), make_item("i3", brand_id="b3")]
    promos = [
        make_promotion("d1", brands=include("b1")),
        make_promotion("d2", brands=include("b1", "b2")),
        make_promotion("d3", brands=include("b1"), is_active=False),
    ]

    matches = match_promotions(items, promos, NOW)

    assert {k: [p.promotion_id for p in v] for k, v in matches.items()} == {"i1": ["d1", "d2"], "i2": ["d2"]}


def test_upstream_payload_parsing():
    promo = Promotion.model_validate(
        {
            "discountId": 42,
            "discountName": "20% off edibles",
            "discountType": "Percent Off",
            "discountAmount": 20,
            "isActive": None,
            "validUntil": "2026-07-01T00:00:00",
            "productCategories": {"ids": [{"id": 7}, 8], "isExclusion": False},
            "tags": None,
            "inventoryTags": {"ids": [{"tagName": "sale"}], "isExclusion": True},
        }
    )

    assert promo.promotion_id == "42"
    assert promo.is_active is True
    assert promo.kind is DiscountKind.PERCENTAGE
    assert promo.valid_until.tzinfo is not None
    assert promo.product_categories.ids == ["7", "8"]
    assert promo.tags.ids == ["sale"] and promo.tags.is_exclusion


def test_rank_prefers_percentage_then_fixed_amount():
    promos = [
        make_promotion("fixed10", discount_type="Dollar Off", amount=10),
        make_promotion("pct15", discount_type="Percent Off", amount=15),
        make_promotion("named25", name="Happy hour 25% off"),
        make_promotion("named5", name="$5 off pre-rolls"),
        make_promotion("plain", name="Member pricing"),
    ]

    ranked = [p.promotion_id for p in rank_promotions(promos)]

    assert ranked == ["named25", "pct15", "fixed10", "named5", "plain"]
    assert [p.promotion_id for p in rank_promotions(promos, 2)] == ["named25", "pct15"]


def test_rank_accepts_cached_promotions():
    cached = [
        CachedPromotion(promotion_id="a", name="10% off"),
        CachedPromotion(promotion_id="b", name="30% off"),
    ]
    assert [p.promotion_id for p in rank_promotions(cached, 1)] == ["b"]


def test_scalar_tag_is_one_tag():
    item = CatalogItem.model_validate({"inventoryId": 1, "tags": "sale"})

    assert item.tags == ["sale"]
    assert not applies(item, make_promotion(tags=include("s")), NOW)
    assert applies(item, make_promotion(tags=include("sale")), NOW)
