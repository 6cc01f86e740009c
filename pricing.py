"""
Promotional pricing.

A promotion discounts every book whose sub-category it is attached to, for the
whole days between its start and end date. Listing, detail, cart and the back
office all price books through the same PromotionCatalog snapshot so that a
book shows one price everywhere on a page.
"""
import asyncio
import logging
from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal
from typing import Iterable, Mapping

from models import Book, Promotion

logger = logging.getLogger(__name__)

HUNDRED = Decimal(100)


def _today(now: date | datetime | None = None) -> date:
    if now is None:
        return date.today()
    if isinstance(now, datetime):
        return now.date()
    return now


def _money(value) -> Decimal:
    return value if isinstance(value, Decimal) else Decimal(str(value))


def is_promotion_active(promotion: Promotion, now: date | datetime | None = None) -> bool:
    """Active flag set and today within [start_date, end_date], both ends inclusive."""
    today = _today(now)
    return bool(promotion.active) and promotion.start_date <= today <= promotion.end_date


def resolve_promotion(category_id: int | None, promotions: Iterable[Promotion],
                      subcategories_by_promotion: Mapping[int, Iterable[int]],
                      now: date | datetime | None = None) -> Promotion | None:
    """
    First active promotion, in the order given, whose sub-categories include
    `category_id`. Promotions missing from the mapping match nothing.
    """
    if category_id is None:
        return None
    today = _today(now)
    for promotion in promotions:
        if not is_promotion_active(promotion, today):
            continue
        if category_id in subcategories_by_promotion.get(promotion.id, ()):
            return promotion
    return None


def discounted_price(price, percentage) -> Decimal:
    """price x (1 - percentage/100), unrounded."""
    return _money(price) * (1 - _money(percentage) / HUNDRED)


@dataclass(frozen=True)
class PromotionPrice:
    original_price: Decimal
    discounted_price: Decimal
    percentage: int

    @property
    def unit_discount(self) -> Decimal:
        return self.original_price * _money(self.percentage) / HUNDRED


def promotional_price(price, category_id: int | None, promotions: Iterable[Promotion],
                      subcategories_by_promotion: Mapping[int, Iterable[int]],
                      now: date | datetime | None = None) -> PromotionPrice | None:
    promotion = resolve_promotion(category_id, promotions, subcategories_by_promotion, now)
    if promotion is None:
        return None
    original = _money(price)
    return PromotionPrice(original, discounted_price(original, promotion.percentage), promotion.percentage)


def build_subcategory_promotions(subcategory_ids: Iterable[int], promotions: Iterable[Promotion],
                                 subcategories_by_promotion: Mapping[int, Iterable[int]],
                                 now: date | datetime | None = None) -> dict[int, Promotion | None]:
    """Sub-category id -> its promotion (or None), resolved once for a whole page."""
    promotions = list(promotions)
    today = _today(now)
    return {
        subcategory_id: resolve_promotion(subcategory_id, promotions, subcategories_by_promotion, today)
        for subcategory_id in subcategory_ids
    }


@dataclass(frozen=True)
class PromotionCatalog:
    """Promotions and their sub-category sets as fetched for one page, frozen at `today`."""

    promotions: tuple[Promotion, ...] = ()
    subcategories: Mapping[int, frozenset[int]] = field(default_factory=dict)
    today: date = field(default_factory=date.today)

    def subcategories_of(self, promotion_id: int) -> frozenset[int]:
        return self.subcategories.get(promotion_id, frozenset())

    def promotion_for(self, category_id: int | None) -> Promotion | None:
        return resolve_promotion(category_id, self.promotions, self.subcategories, self.today)

    def price_for(self, book: Book) -> PromotionPrice | None:
        return promotional_price(book.price, book.category_id, self.promotions, self.subcategories, self.today)

    def by_subcategory(self, subcategory_ids: Iterable[int]) -> dict[int, Promotion | None]:
        return build_subcategory_promotions(subcategory_ids, self.promotions, self.subcategories, self.today)

    def is_active(self, promotion: Promotion) -> bool:
        return is_promotion_active(promotion, self.today)


async def load_promotion_catalog(api, active_only: bool = True,
                                 now: date | datetime | None = None) -> PromotionCatalog:
    """
    Fetch promotions, then each promotion's sub-categories with one concurrent
    call per promotion. A promotion whose lookup fails keeps its place in the
    list and simply matches no sub-category.
    """
    fetch = api.promotions.get_active if active_only else api.promotions.get_all
    promotions = (await fetch()).unwrap_or([], "promotions")
    lookups = await asyncio.gather(*(api.promotions.get_sub_categories(p.id) for p in promotions))

    mapping = {}
    for promotion, result in zip(promotions, lookups):
        subcategories = result.unwrap_or([], f"sub-categories of promotion {promotion.id}")
        mapping[promotion.id] = frozenset(subcategory.id for subcategory in subcategories)

    logger.debug("Loaded %d promotions", len(promotions))
    return PromotionCatalog(tuple(promotions), mapping, _today(now))
