"""
Shopping cart.

The server owns the cart lines (book and quantity). The "selected" flag of a
line is ours alone: it lives in the browser session next to the lines and
decides what counts toward checkout. Every derived figure (subtotal, promotion
discount, shipping, total) is recomputed from the lines plus live book data on
each read.
"""
import asyncio
import logging
from dataclasses import asdict, dataclass, field
from decimal import Decimal
from typing import Iterable, Mapping, MutableMapping

from api_client import gather_results
from core import FREE_SHIPPING_MIN, PLACEHOLDER_IMAGE, SHIPPING_FLAT
from exceptions import CartError
from models import Book, Role, SubCategory
from pricing import PromotionCatalog, load_promotion_catalog

logger = logging.getLogger(__name__)

CART_KEY = "cart"
NO_CART_ROLES = (Role.ADMIN.value, Role.STAFF.value)
ZERO = Decimal("0.00")


@dataclass
class CartLine:
    book_id: int
    quantity: int = 1
    selected: bool = True


class CartState:
    """
    Cart lines of one browser session.

    Backed by any mutable mapping: the Flask session in the app, a plain dict in
    tests. Every write stores a fresh list so the session notices the change.
    """

    def __init__(self, store: MutableMapping, key: str = CART_KEY):
        self.store = store
        self.key = key

    @property
    def loaded(self) -> bool:
        return self.key in self.store

    def lines(self) -> list[CartLine]:
        return [CartLine(**raw) for raw in self.store.get(self.key, [])]

    def replace(self, lines: Iterable[CartLine]) -> None:
        self.store[self.key] = [asdict(line) for line in lines]

    def find(self, book_id: int) -> CartLine | None:
        return next((line for line in self.lines() if line.book_id == book_id), None)

    def _update(self, book_id: int, **changes) -> None:
        lines = self.lines()
        for line in lines:
            if line.book_id == book_id:
                for name, value in changes.items():
                    setattr(line, name, value)
        self.replace(lines)

    def upsert(self, book_id: int, quantity: int) -> None:
        """Add `quantity` to an existing line, or append a new selected line."""
        lines = self.lines()
        existing = next((line for line in lines if line.book_id == book_id), None)
        if existing:
            existing.quantity += quantity
        else:
            lines.append(CartLine(book_id, quantity, True))
        self.replace(lines)

    def set_quantity(self, book_id: int, quantity: int) -> None:
        self._update(book_id, quantity=quantity)

    def set_selected(self, book_id: int, selected: bool) -> None:
        self._update(book_id, selected=selected)

    def deselect(self, book_ids: Iterable[int]) -> None:
        ids = set(book_ids)
        self.replace(CartLine(line.book_id, line.quantity, line.selected and line.book_id not in ids)
                     for line in self.lines())

    def remove(self, book_ids: Iterable[int]) -> None:
        ids = set(book_ids)
        self.replace(line for line in self.lines() if line.book_id not in ids)

    def clear(self) -> None:
        self.store.pop(self.key, None)


@dataclass
class CartItemView:
    book_id: int
    quantity: int
    selected: bool
    title: str
    image: str
    stock_quantity: int
    price: Decimal
    original_price: Decimal
    promotion_percentage: int | None = None
    unit_discount: Decimal = ZERO
    category_name: str | None = None
    # False when the book lookup failed; stock and price are then unknown
    found: bool = True

    @property
    def in_stock(self) -> bool:
        return self.stock_quantity > 0

    @property
    def line_total(self) -> Decimal:
        return self.price * self.quantity


@dataclass
class CartSummary:
    items: list[CartItemView] = field(default_factory=list)
    subtotal: Decimal = ZERO
    promotion_discount: Decimal = ZERO
    shipping_fee: Decimal = ZERO
    total: Decimal = ZERO
    # ids whose stored selection was still on while out of stock
    auto_deselected: list[int] = field(default_factory=list)

    @property
    def selected_items(self) -> list[CartItemView]:
        return [item for item in self.items if item.selected]

    @property
    def selected_count(self) -> int:
        return len(self.selected_items)

    @property
    def total_count(self) -> int:
        return len(self.items)

    @property
    def available_count(self) -> int:
        return sum(1 for item in self.items if item.in_stock)

    @property
    def out_of_stock_count(self) -> int:
        return self.total_count - self.available_count

    @property
    def all_selected(self) -> bool:
        available = [item for item in self.items if item.in_stock]
        return bool(available) and all(item.selected for item in available)


@dataclass(frozen=True)
class QuantityUpdate:
    book_id: int
    quantity: int
    capped: bool
    stock_quantity: int


def shipping_fee(subtotal: Decimal) -> Decimal:
    if subtotal >= FREE_SHIPPING_MIN:
        return ZERO
    return SHIPPING_FLAT


def clamp_quantity(requested: int, stock: int) -> tuple[int, bool]:
    """Clamp to [1, stock]; the flag tells whether the request asked for more than the stock."""
    quantity = max(1, min(requested, stock))
    return quantity, requested > stock


def aggregate_cart(lines: Iterable[CartLine], books: Mapping[int, Book], catalog: PromotionCatalog | None = None,
                   categories: Mapping[int, SubCategory] | None = None) -> CartSummary:
    """
    Join cart lines with live book data and compute the checkout figures.

    A line whose book is unknown or has no stock is never selected and never
    counted. Only lines whose book was found with no stock are reported in
    `auto_deselected`; an unknown book keeps its stored flag for the next read.
    Subtotal uses the pre-discount price; the promotion discount is reported
    separately and subtracted in the total.
    """
    categories = categories or {}
    items = []
    auto_deselected = []
    for line in lines:
        book = books.get(line.book_id)
        stock = book.stock_quantity if book else 0
        original = book.price if book else ZERO
        promo = catalog.price_for(book) if (book and catalog) else None

        if book is not None and line.selected and stock <= 0:
            auto_deselected.append(line.book_id)

        category = categories.get(book.category_id) if book and book.category_id is not None else None
        items.append(CartItemView(
            book_id=line.book_id,
            quantity=line.quantity,
            selected=line.selected and stock > 0,
            title=book.title if book else f"Product {line.book_id}",
            image=(book.image if book else None) or PLACEHOLDER_IMAGE,
            stock_quantity=stock,
            price=promo.discounted_price if promo else original,
            original_price=original,
            promotion_percentage=promo.percentage if promo else None,
            unit_discount=promo.unit_discount if promo else ZERO,
            category_name=category.name if category else None,
            found=book is not None,
        ))

    # in-stock lines first, order otherwise kept
    items.sort(key=lambda item: not item.in_stock)

    selected = [item for item in items if item.selected]
    subtotal = sum((item.original_price * item.quantity for item in selected), ZERO)
    discount = sum((item.unit_discount * item.quantity for item in selected if item.promotion_percentage), ZERO)
    shipping = shipping_fee(subtotal)
    return CartSummary(
        items=items,
        subtotal=subtotal,
        promotion_discount=discount,
        shipping_fee=shipping,
        total=subtotal - discount + shipping,
        auto_deselected=auto_deselected,
    )


class CartService:
    """
    Cart operations for the signed-in user.

    Server first, session second: a line changes locally only after the
    backend accepted the change, so a failed call (raised as ApiError) leaves
    the session cart exactly as it was.
    """

    def __init__(self, api, state: CartState, role: str | None = None):
        self.api = api
        self.state = state
        self.role = role

    async def load(self, force: bool = False) -> list[CartLine]:
        """Fetch the server cart once per session; every line starts selected."""
        if self.state.loaded and not force:
            return self.state.lines()
        cart = (await self.api.carts.get_my_cart()).unwrap_or(None, "cart")
        if cart is None:
            return []
        lines = [CartLine(item.book_id, item.quantity, True) for item in cart.cart_items]
        self.state.replace(lines)
        logger.info("Cart loaded with %d lines", len(lines))
        return lines

    async def summary(self) -> CartSummary:
        lines = await self.load()
        if not lines:
            return aggregate_cart([], {})

        book_ids = [line.book_id for line in lines]
        book_results, catalog = await asyncio.gather(
            asyncio.gather(*(self.api.books.get(book_id) for book_id in book_ids)),
            load_promotion_catalog(self.api),
        )
        books = {}
        for book_id, result in zip(book_ids, book_results):
            book = result.unwrap_or(None, f"book {book_id}")
            if book is not None:
                books[book_id] = book

        category_ids = sorted({book.category_id for book in books.values() if book.category_id is not None})
        category_results = await asyncio.gather(*(self.api.sub_categories.get(c) for c in category_ids))
        categories = {}
        for category_id, result in zip(category_ids, category_results):
            category = result.unwrap_or(None, f"sub-category {category_id}")
            if category is not None:
                categories[category_id] = category

        summary = aggregate_cart(lines, books, catalog, categories)
        if summary.auto_deselected:
            self._deselect_out_of_stock(summary.auto_deselected)
        return summary

    def _deselect_out_of_stock(self, book_ids: list[int]) -> None:
        # best effort, never retried
        try:
            self.state.deselect(book_ids)
            logger.info("Deselected out-of-stock cart lines %s", book_ids)
        except Exception:
            logger.exception("Could not deselect out-of-stock cart lines %s", book_ids)

    async def _stock_of(self, book_id: int) -> int:
        """Live stock of a book. A failed lookup raises ApiError; it is not read as zero."""
        book = (await self.api.books.get(book_id)).unwrap()
        return book.stock_quantity

    async def add(self, book_id: int, quantity: int = 1) -> None:
        if self.role is None:
            raise CartError("Please sign in to add books to your cart.", book_id)
        if self.role in NO_CART_ROLES:
            raise CartError("Admin and Staff accounts cannot add items to cart.", book_id)
        if quantity < 1:
            raise CartError("Quantity must be at least 1.", book_id)

        await self.load()
        if not self.state.loaded:
            # without the server lines we cannot tell add-one from a new line
            raise CartError("Your cart could not be loaded. Please try again.", book_id)
        if self.state.find(book_id):
            if quantity == 1:
                (await self.api.carts.add_one(book_id)).unwrap()
            else:
                (await self.api.carts.add_multiple(book_id, quantity)).unwrap()
        else:
            (await self.api.carts.add_one(book_id)).unwrap()
            if quantity > 1:
                (await self.api.carts.update_quantity(book_id, quantity)).unwrap()

        self.state.upsert(book_id, quantity)
        logger.info("Added book %s x%d to cart", book_id, quantity)

    async def update_quantity(self, book_id: int, requested: int, stock: int | None = None) -> QuantityUpdate:
        if self.state.find(book_id) is None:
            raise CartError("This book is not in your cart.", book_id)
        if stock is None:
            stock = await self._stock_of(book_id)
        if stock <= 0:
            raise CartError("This book is out of stock.", book_id)

        quantity, capped = clamp_quantity(requested, stock)
        (await self.api.carts.update_quantity(book_id, quantity)).unwrap()
        self.state.set_quantity(book_id, quantity)
        if capped:
            logger.info("Quantity of book %s capped at stock %d (asked %d)", book_id, stock, requested)
        return QuantityUpdate(book_id, quantity, capped, stock)

    async def remove(self, book_id: int) -> None:
        (await self.api.carts.clear_item(book_id)).unwrap()
        self.state.remove([book_id])

    async def remove_selected(self) -> list[int]:
        book_ids = [line.book_id for line in self.state.lines() if line.selected]
        if not book_ids:
            return []
        (await gather_results(*(self.api.carts.clear_item(book_id) for book_id in book_ids))).unwrap()
        self.state.remove(book_ids)
        return book_ids

    async def toggle(self, book_id: int, stock: int | None = None) -> bool:
        """
        Flip one line's selection. Selecting an out-of-stock line does nothing.
        When the stock lookup fails the ApiError propagates and the selection is kept.
        """
        line = self.state.find(book_id)
        if line is None:
            return False
        if not line.selected:
            if stock is None:
                stock = await self._stock_of(book_id)
            if stock <= 0:
                return False
        self.state.set_selected(book_id, not line.selected)
        return True

    async def toggle_select_all(self, summary: CartSummary | None = None) -> bool:
        """
        Select every in-stock line, or deselect them all when they already are.
        Out-of-stock lines always end up deselected; lines whose book could not
        be fetched keep their flag. Returns the new target state.
        """
        if summary is None:
            summary = await self.summary()
        in_stock = {item.book_id for item in summary.items if item.in_stock}
        unknown = {item.book_id for item in summary.items if not item.found}
        lines = self.state.lines()
        available = [line for line in lines if line.book_id in in_stock]
        target = not (bool(available) and all(line.selected for line in available))
        self.state.replace(
            CartLine(line.book_id, line.quantity,
                     line.selected if line.book_id in unknown else target and line.book_id in in_stock)
            for line in lines
        )
        return target

    def forget(self) -> None:
        self.state.clear()
