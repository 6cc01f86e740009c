"""
Catalogue filtering, sorting and pagination for the book listing pages.
"""
from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal, InvalidOperation
from math import ceil
from typing import Callable, Iterable, Sequence

from models import Book

SORTS = {
    "title": "Title A-Z",
    "price-asc": "Price: low to high",
    "price-desc": "Price: high to low",
    "newest": "Newest",
    "oldest": "Oldest",
}


def _decimal(value) -> Decimal | None:
    if value in (None, ""):
        return None
    try:
        number = Decimal(str(value).strip())
    except InvalidOperation:
        return None
    return number if number >= 0 else None


def _int(value) -> int | None:
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


@dataclass
class BookFilter:
    """Filter and sort choices of the all-books page, as parsed from the query string."""
    sup_category_id: int | None = None
    sub_category_ids: frozenset[int] = field(default_factory=frozenset)
    min_price: Decimal | None = None
    max_price: Decimal | None = None
    sort: str | None = None

    @classmethod
    def from_args(cls, args) -> "BookFilter":
        subs = frozenset(i for i in (_int(v) for v in args.getlist("sub")) if i is not None)
        sort = args.get("sort")
        return cls(
            sup_category_id=_int(args.get("sup")),
            sub_category_ids=subs,
            min_price=_decimal(args.get("min_price")),
            max_price=_decimal(args.get("max_price")),
            sort=sort if sort in SORTS else None,
        )

    @property
    def active(self) -> bool:
        return bool(self.sup_category_id or self.sub_category_ids or self.min_price is not None
                    or self.max_price is not None)


def filter_books(books: Iterable[Book], category_ids: Iterable[int] | None = None,
                 min_price: Decimal | None = None, max_price: Decimal | None = None,
                 price_of: Callable[[Book], Decimal] | None = None) -> list[Book]:
    """
    Keep books in `category_ids` (any, when None) priced within [min_price, max_price].
    `price_of` gives the price to compare, e.g. the promotional one.
    """
    price_of = price_of or (lambda book: book.price)
    allowed = set(category_ids) if category_ids is not None else None
    result = []
    for book in books:
        if allowed is not None and book.category_id not in allowed:
            continue
        price = price_of(book)
        if min_price is not None and price < min_price:
            continue
        if max_price is not None and price > max_price:
            continue
        result.append(book)
    return result


def sort_books(books: Iterable[Book], sort: str | None,
               price_of: Callable[[Book], Decimal] | None = None) -> list[Book]:
    price_of = price_of or (lambda book: book.price)
    books = list(books)
    if sort == "title":
        return sorted(books, key=lambda b: b.title.lower())
    if sort == "price-asc":
        return sorted(books, key=price_of)
    if sort == "price-desc":
        return sorted(books, key=price_of, reverse=True)
    if sort in ("newest", "oldest"):
        # undated books always last
        dated = [b for b in books if b.published_date]
        undated = [b for b in books if not b.published_date]
        dated.sort(key=lambda b: b.published_date or date.min, reverse=(sort == "newest"))
        return dated + undated
    return books


@dataclass
class Page:
    items: list
    page: int
    size: int
    total: int

    @property
    def pages(self) -> int:
        return max(1, ceil(self.total / self.size)) if self.size else 1

    @property
    def has_prev(self) -> bool:
        return self.page > 1

    @property
    def has_next(self) -> bool:
        return self.page < self.pages

    @property
    def prev_num(self) -> int | None:
        return self.page - 1 if self.has_prev else None

    @property
    def next_num(self) -> int | None:
        return self.page + 1 if self.has_next else None


def paginate(items: Sequence, page, size: int) -> Page:
    """Slice one page out of `items`; out-of-range page numbers are clamped."""
    total = len(items)
    pages = max(1, ceil(total / size)) if size else 1
    page = min(max(_int(page) or 1, 1), pages)
    start = (page - 1) * size
    return Page(list(items[start:start + size]), page, size, total)
