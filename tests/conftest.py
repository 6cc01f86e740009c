"""
Shared fixtures: sample catalogue data and a Flask app wired to mocked endpoint groups.
"""

import os
import sys
from datetime import date, timedelta
from decimal import Decimal
from unittest.mock import AsyncMock, MagicMock

import pytest

# Add parent directory to Python path so tests can import the root modules
sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), '..')))

from api_client import Err, Ok  # noqa: E402
from exceptions import ApiError, ErrorKind  # noqa: E402
from models import Book, CartItemResponse, CartResponse, Promotion, SubCategory  # noqa: E402

TODAY = date.today()


def make_book(book_id, price, stock=10, category_id=1, title=None):
    return Book(id=book_id, title=title or f"Book {book_id}", price=Decimal(price),
                stock_quantity=stock, category_id=category_id)


def make_promotion(promotion_id, percentage, start=None, end=None, active=True):
    return Promotion(
        id=promotion_id,
        content=f"Promo {promotion_id}",
        percentage=percentage,
        start_date=start or TODAY - timedelta(days=1),
        end_date=end or TODAY + timedelta(days=1),
        active=active,
    )


def make_api(books=(), promotions=(), promo_subcategories=None, cart_lines=()):
    """
    A BookVerseApi stand-in whose endpoint groups are AsyncMocks returning Ok(...).
    """
    api = MagicMock()
    by_id = {b.id: b for b in books}
    promo_subcategories = promo_subcategories or {}

    async def get_book(book_id):
        if book_id in by_id:
            return Ok(by_id[book_id])
        return Err(ApiError(ErrorKind.NOT_FOUND, "Book not found", 404))

    async def promo_subs(promotion_id):
        return Ok([SubCategory(id=i, name=f"Sub {i}") for i in promo_subcategories.get(promotion_id, ())])

    async def get_sub_category(category_id):
        return Ok(SubCategory(id=category_id, name=f"Sub {category_id}"))

    api.books.get = AsyncMock(side_effect=get_book)
    api.promotions.get_active = AsyncMock(return_value=Ok(list(promotions)))
    api.promotions.get_all = AsyncMock(return_value=Ok(list(promotions)))
    api.promotions.get_sub_categories = AsyncMock(side_effect=promo_subs)
    api.sub_categories.get = AsyncMock(side_effect=get_sub_category)
    api.carts.get_my_cart = AsyncMock(return_value=Ok(CartResponse(
        id=1, cart_items=[CartItemResponse(book_id=b, quantity=q) for b, q in cart_lines])))
    for name in ("add_one", "add_multiple", "update_quantity", "clear_item"):
        setattr(api.carts, name, AsyncMock(return_value=Ok(None)))
    return api


@pytest.fixture
def sample_api():
    """Book 1: 10.00 no promo; book 2: 50.00 in sub-category 7 with a 20% promotion; book 3 out of stock."""
    books = [
        make_book(1, "10.00", stock=5, category_id=1),
        make_book(2, "50.00", stock=3, category_id=7),
        make_book(3, "15.00", stock=0, category_id=1),
    ]
    return make_api(books=books, promotions=[make_promotion(1, 20)], promo_subcategories={1: [7]},
                    cart_lines=[(1, 2), (2, 1)])


@pytest.fixture
def app():
    from core import create_app

    holder = {"api": make_api()}
    app = create_app({"TESTING": True, "SECRET_KEY": "test", "API_FACTORY": lambda: holder["api"]})
    app.api_holder = holder
    return app


@pytest.fixture
def client(app):
    return app.test_client()


def sign_in(client, role="CUSTOMER", token="test-token"):
    with client.session_transaction() as s:
        s["token"] = token
        s["role"] = role
        s["username"] = "reader"
        s["user_id"] = "u-1"
