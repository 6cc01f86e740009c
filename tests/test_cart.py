"""
Unit Tests: cart aggregation and CartService

Covers cart.py:
- aggregate_cart() - totals, promotions, out-of-stock exclusion, ordering
- shipping_fee() / clamp_quantity() - boundaries
- CartState - session-backed line storage
- CartService - server-first mutations and selection rules
"""

from decimal import Decimal
from unittest.mock import AsyncMock, MagicMock

import pytest

from api_client import Err, Ok
from cart import CartLine, CartService, CartState, aggregate_cart, clamp_quantity, shipping_fee
from conftest import TODAY, make_book, make_promotion
from core import PLACEHOLDER_IMAGE, SHIPPING_FLAT
from exceptions import ApiError, CartError, ErrorKind
from pricing import PromotionCatalog


@pytest.fixture
def books():
    return {
        1: make_book(1, "10.00", stock=5, category_id=1),
        2: make_book(2, "50.00", stock=3, category_id=7),
        3: make_book(3, "15.00", stock=0, category_id=1),
    }


@pytest.fixture
def catalog():
    return PromotionCatalog((make_promotion(1, 20),), {1: frozenset({7})}, TODAY)


def server_error():
    return Err(ApiError(ErrorKind.SERVER, "Server exploded", 500))


def failing_first(api, book_id):
    """Make the first lookup of `book_id` fail; later lookups reach the catalogue again."""
    real = api.books.get.side_effect
    calls = []

    async def get_book(requested):
        if requested == book_id:
            calls.append(requested)
            if len(calls) == 1:
                return Err(ApiError(ErrorKind.SERVER, "Catalogue unavailable", 503))
        return await real(requested)

    api.books.get = AsyncMock(side_effect=get_book)


class TestAggregateCart:

    def test_promotion_and_free_shipping(self, books, catalog):
        summary = aggregate_cart([CartLine(1, 2), CartLine(2, 1)], books, catalog)

        assert summary.subtotal == Decimal("70.00")
        assert summary.promotion_discount == Decimal("10.00")
        assert summary.shipping_fee == Decimal("0")
        assert summary.total == Decimal("60.00")

    def test_line_prices(self, books, catalog):
        summary = aggregate_cart([CartLine(1, 2), CartLine(2, 1)], books, catalog)
        plain, promoted = summary.items

        assert plain.price == Decimal("10.00") and plain.promotion_percentage is None
        assert promoted.original_price == Decimal("50.00")
        assert promoted.price == Decimal("40.00")
        assert promoted.promotion_percentage == 20
        assert promoted.line_total == Decimal("40.00")

    def test_out_of_stock_excluded_from_totals(self, books, catalog):
        with_oos = aggregate_cart([CartLine(1, 2), CartLine(3, 4), CartLine(2, 1)], books, catalog)
        without = aggregate_cart([CartLine(1, 2), CartLine(2, 1)], books, catalog)

        assert with_oos.subtotal == without.subtotal
        assert with_oos.promotion_discount == without.promotion_discount
        assert with_oos.total == without.total
        oos = next(i for i in with_oos.items if i.book_id == 3)
        assert not oos.selected
        assert with_oos.auto_deselected == [3]

    def test_in_stock_lines_first(self, books):
        summary = aggregate_cart([CartLine(3, 1), CartLine(1, 1), CartLine(2, 1)], books)
        assert [i.book_id for i in summary.items] == [1, 2, 3]

    def test_unknown_book_is_not_reported_as_out_of_stock(self, books):
        summary = aggregate_cart([CartLine(1, 1), CartLine(9, 1)], books)

        assert summary.auto_deselected == []
        assert not summary.items[-1].found
        assert summary.subtotal == Decimal("10.00")

    def test_already_deselected_out_of_stock_is_not_reported(self, books):
        summary = aggregate_cart([CartLine(3, 1, selected=False)], books)
        assert summary.auto_deselected == []

    def test_unselected_lines_do_not_count(self, books):
        summary = aggregate_cart([CartLine(1, 2, selected=False), CartLine(2, 1)], books)
        assert summary.subtotal == Decimal("50.00")
        assert summary.selected_count == 1
        assert summary.total_count == 2

    def test_unknown_book_renders_as_placeholder(self):
        summary = aggregate_cart([CartLine(9, 1)], {})
        item = summary.items[0]

        assert item.title == "Product 9"
        assert item.stock_quantity == 0
        assert item.image == PLACEHOLDER_IMAGE
        assert not item.selected
        assert summary.subtotal == Decimal("0")

    def test_counts_and_all_selected(self, books):
        summary = aggregate_cart([CartLine(1, 1), CartLine(2, 1), CartLine(3, 1)], books)
        assert summary.available_count == 2
        assert summary.out_of_stock_count == 1
        assert summary.all_selected

    def test_nothing_available_is_never_all_selected(self, books):
        summary = aggregate_cart([CartLine(3, 1)], books)
        assert not summary.all_selected


class TestShippingAndClamp:

    def test_free_shipping_boundary(self):
        assert shipping_fee(Decimal("50.00")) == Decimal("0")
        assert shipping_fee(Decimal("49.99")) == SHIPPING_FLAT
        assert SHIPPING_FLAT == Decimal("5.00")

    @pytest.mark.parametrize("requested, stock, expected", [
        (2, 5, (2, False)),
        (5, 5, (5, False)),
        (8, 5, (5, True)),
        (0, 5, (1, False)),
        (-3, 5, (1, False)),
    ])
    def test_clamp_quantity(self, requested, stock, expected):
        assert clamp_quantity(requested, stock) == expected


class TestCartState:

    def test_writes_go_to_the_store(self):
        store = {}
        state = CartState(store)
        assert not state.loaded

        state.upsert(1, 2)
        state.upsert(1, 1)
        state.upsert(2, 1)

        assert store["cart"] == [
            {"book_id": 1, "quantity": 3, "selected": True},
            {"book_id": 2, "quantity": 1, "selected": True},
        ]

    def test_select_deselect_remove(self):
        state = CartState({})
        state.replace([CartLine(1), CartLine(2), CartLine(3)])

        state.set_selected(1, False)
        state.deselect([2])
        state.remove([3])

        assert state.lines() == [CartLine(1, 1, False), CartLine(2, 1, False)]

    def test_clear(self):
        state = CartState({})
        state.replace([CartLine(1)])
        state.clear()
        assert not state.loaded and state.lines() == []


class TestCartServiceReads:

    @pytest.mark.asyncio
    async def test_load_once_per_session(self, sample_api):
        service = CartService(sample_api, CartState({}), "CUSTOMER")

        first = await service.load()
        second = await service.load()

        assert first == second == [CartLine(1, 2, True), CartLine(2, 1, True)]
        sample_api.carts.get_my_cart.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_failed_load_leaves_empty_cart(self, sample_api):
        sample_api.carts.get_my_cart = AsyncMock(return_value=server_error())
        state = CartState({})

        assert await CartService(sample_api, state).load() == []
        assert not state.loaded

    @pytest.mark.asyncio
    async def test_summary_end_to_end(self, sample_api):
        summary = await CartService(sample_api, CartState({}), "CUSTOMER").summary()

        assert summary.subtotal == Decimal("70.00")
        assert summary.promotion_discount == Decimal("10.00")
        assert summary.shipping_fee == Decimal("0")
        assert summary.total == Decimal("60.00")
        assert summary.items[1].category_name == "Sub 7"

    @pytest.mark.asyncio
    async def test_auto_deselect_is_stored_and_idempotent(self, sample_api):
        state = CartState({})
        state.replace([CartLine(1, 1), CartLine(3, 2)])
        service = CartService(sample_api, state, "CUSTOMER")

        first = await service.summary()
        second = await service.summary()

        assert first.auto_deselected == [3]
        assert second.auto_deselected == []
        assert state.find(3).selected is False
        assert first.total == second.total

    @pytest.mark.asyncio
    async def test_missing_book_does_not_break_summary(self, sample_api):
        state = CartState({})
        state.replace([CartLine(1, 1), CartLine(99, 1)])

        summary = await CartService(sample_api, state, "CUSTOMER").summary()

        assert summary.subtotal == Decimal("10.00")
        assert summary.items[-1].title == "Product 99"

    @pytest.mark.asyncio
    async def test_failed_book_lookup_keeps_selection(self, sample_api):
        failing_first(sample_api, 1)
        state = CartState({})
        state.replace([CartLine(1, 1), CartLine(2, 1)])
        service = CartService(sample_api, state, "CUSTOMER")

        first = await service.summary()

        assert first.auto_deselected == []
        assert state.find(1).selected is True
        assert first.subtotal == Decimal("50.00")

        second = await service.summary()

        assert second.subtotal == Decimal("60.00")
        assert second.items[0].found and second.items[0].selected

    @pytest.mark.asyncio
    async def test_deselect_failure_still_returns_summary(self, sample_api):
        state = CartState({})
        state.replace([CartLine(1, 1), CartLine(3, 2)])
        state.deselect = MagicMock(side_effect=RuntimeError("session store unavailable"))

        summary = await CartService(sample_api, state, "CUSTOMER").summary()

        state.deselect.assert_called_once_with([3])
        assert summary.auto_deselected == [3]
        assert summary.subtotal == Decimal("10.00")


class TestCartServiceAdd:

    @pytest.mark.asyncio
    async def test_staff_cannot_add(self, sample_api):
        service = CartService(sample_api, CartState({}), "STAFF")
        with pytest.raises(CartError, match="Admin and Staff accounts cannot add items to cart."):
            await service.add(1)
        sample_api.carts.add_one.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_anonymous_cannot_add(self, sample_api):
        with pytest.raises(CartError):
            await CartService(sample_api, CartState({}), None).add(1)

    @pytest.mark.asyncio
    async def test_new_line_with_quantity(self, sample_api):
        state = CartState({})
        service = CartService(sample_api, state, "CUSTOMER")

        await service.add(3, 4)

        sample_api.carts.add_one.assert_awaited_once_with(3)
        sample_api.carts.update_quantity.assert_awaited_once_with(3, 4)
        assert state.find(3) == CartLine(3, 4, True)

    @pytest.mark.asyncio
    async def test_existing_line_adds_one_or_many(self, sample_api):
        state = CartState({})
        service = CartService(sample_api, state, "CUSTOMER")

        await service.add(1)
        await service.add(1, 3)

        sample_api.carts.add_one.assert_awaited_once_with(1)
        sample_api.carts.add_multiple.assert_awaited_once_with(1, 3)
        assert state.find(1).quantity == 6

    @pytest.mark.asyncio
    async def test_failed_add_leaves_state_unchanged(self, sample_api):
        state = CartState({})
        service = CartService(sample_api, state, "CUSTOMER")
        await service.load()
        before = state.lines()
        sample_api.carts.add_one = AsyncMock(return_value=server_error())

        with pytest.raises(ApiError):
            await service.add(3)

        assert state.lines() == before

    @pytest.mark.asyncio
    async def test_add_refused_while_cart_cannot_load(self, sample_api):
        answers = [server_error()]
        working = sample_api.carts.get_my_cart.return_value

        async def get_my_cart():
            return answers.pop() if answers else working

        sample_api.carts.get_my_cart = AsyncMock(side_effect=get_my_cart)
        state = CartState({})
        service = CartService(sample_api, state, "CUSTOMER")

        with pytest.raises(CartError, match="Your cart could not be loaded"):
            await service.add(1)

        sample_api.carts.add_one.assert_not_awaited()
        assert not state.loaded

        summary = await service.summary()
        assert [item.book_id for item in summary.items] == [1, 2]
        assert state.find(1).quantity == 2


class TestCartServiceUpdates:

    @pytest.mark.asyncio
    async def test_quantity_capped_at_stock(self, sample_api):
        state = CartState({})
        service = CartService(sample_api, state, "CUSTOMER")
        await service.load()

        update = await service.update_quantity(2, 5)

        assert update.quantity == 3 and update.capped
        sample_api.carts.update_quantity.assert_awaited_once_with(2, 3)
        assert state.find(2).quantity == 3

    @pytest.mark.asyncio
    async def test_out_of_stock_quantity_refused(self, sample_api):
        state = CartState({})
        state.replace([CartLine(3, 1, False)])

        with pytest.raises(CartError):
            await CartService(sample_api, state, "CUSTOMER").update_quantity(3, 2)
        sample_api.carts.update_quantity.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_failed_update_leaves_state_unchanged(self, sample_api):
        state = CartState({})
        service = CartService(sample_api, state, "CUSTOMER")
        await service.load()
        sample_api.carts.update_quantity = AsyncMock(return_value=server_error())

        with pytest.raises(ApiError):
            await service.update_quantity(1, 4)

        assert state.find(1).quantity == 2

    @pytest.mark.asyncio
    async def test_failed_stock_lookup_is_not_out_of_stock(self, sample_api):
        failing_first(sample_api, 1)
        state = CartState({})
        state.replace([CartLine(1, 2)])

        with pytest.raises(ApiError):
            await CartService(sample_api, state, "CUSTOMER").update_quantity(1, 3)

        sample_api.carts.update_quantity.assert_not_awaited()
        assert state.find(1).quantity == 2

    @pytest.mark.asyncio
    async def test_remove_selected_is_all_or_nothing(self, sample_api):
        state = CartState({})
        service = CartService(sample_api, state, "CUSTOMER")
        await service.load()

        async def clear_item(book_id):
            return server_error() if book_id == 2 else Ok(None)

        sample_api.carts.clear_item = AsyncMock(side_effect=clear_item)

        with pytest.raises(ApiError):
            await service.remove_selected()
        assert [line.book_id for line in state.lines()] == [1, 2]

    @pytest.mark.asyncio
    async def test_remove_selected(self, sample_api):
        state = CartState({})
        state.replace([CartLine(1, 1, True), CartLine(2, 1, False)])

        removed = await CartService(sample_api, state, "CUSTOMER").remove_selected()

        assert removed == [1]
        assert state.lines() == [CartLine(2, 1, False)]


class TestSelection:

    @pytest.mark.asyncio
    async def test_selecting_out_of_stock_is_a_no_op(self, sample_api):
        state = CartState({})
        state.replace([CartLine(3, 1, False)])

        changed = await CartService(sample_api, state, "CUSTOMER").toggle(3)

        assert not changed
        assert state.find(3).selected is False

    @pytest.mark.asyncio
    async def test_toggle_in_stock(self, sample_api):
        state = CartState({})
        state.replace([CartLine(1, 1, True)])
        service = CartService(sample_api, state, "CUSTOMER")

        assert await service.toggle(1)
        assert state.find(1).selected is False
        assert await service.toggle(1)
        assert state.find(1).selected is True

    @pytest.mark.asyncio
    async def test_select_all_flips_in_stock_only(self, sample_api):
        state = CartState({})
        state.replace([CartLine(1, 1, True), CartLine(2, 1, False), CartLine(3, 1, True)])
        service = CartService(sample_api, state, "CUSTOMER")

        assert await service.toggle_select_all() is True
        assert [line.selected for line in state.lines()] == [True, True, False]

        assert await service.toggle_select_all() is False
        assert [line.selected for line in state.lines()] == [False, False, False]

    @pytest.mark.asyncio
    async def test_failed_stock_lookup_keeps_selection(self, sample_api):
        failing_first(sample_api, 1)
        state = CartState({})
        state.replace([CartLine(1, 1, False)])
        service = CartService(sample_api, state, "CUSTOMER")

        with pytest.raises(ApiError):
            await service.toggle(1)
        assert state.find(1).selected is False

        assert await service.toggle(1)
        assert state.find(1).selected is True

    @pytest.mark.asyncio
    async def test_select_all_leaves_unknown_lines_alone(self, sample_api):
        failing_first(sample_api, 1)
        state = CartState({})
        state.replace([CartLine(1, 1, True), CartLine(2, 1, False)])

        assert await CartService(sample_api, state, "CUSTOMER").toggle_select_all() is True
        assert state.lines() == [CartLine(1, 1, True), CartLine(2, 1, True)]
