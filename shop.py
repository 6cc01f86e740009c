# shop.py
from flask import Blueprint, render_template, redirect, url_for, session, request, flash, abort
import asyncio
import logging

from cart import CartService, CartState
from core import (
    get_api, current_role, require_login, require_customer, back,
    PAGE_SIZE, RANDOM_BOOKS_LIMIT, OUT_OF_STOCK_WARNING_SECONDS,
)
from exceptions import BookVerseError
from listing import SORTS, BookFilter, filter_books, paginate, sort_books
from models import PaymentMethod
from payments import process_vnpay_return, start_checkout
from pricing import load_promotion_catalog

logger = logging.getLogger(__name__)

shop_bp = Blueprint("shop", __name__)

OUT_OF_STOCK_WARNING = "Some items are out of stock and have been deselected from your order."

# --- Helpers (storefront-specific) ---
def get_cart_service():
    return CartService(get_api(), CartState(session), current_role())

def price_map(catalog, books):
    """book id -> PromotionPrice for the books that are on promotion."""
    prices = {}
    for book in books:
        promo = catalog.price_for(book)
        if promo:
            prices[book.id] = promo
    return prices

def effective_price(catalog):
    def price_of(book):
        promo = catalog.price_for(book)
        return promo.discounted_price if promo else book.price
    return price_of

async def nav_categories(api):
    return (await api.sup_categories.get_active()).unwrap_or([], "menu categories")

def form_int(name, default):
    try:
        return int(request.form.get(name, default))
    except (TypeError, ValueError):
        return default

# --- Routes: Catalogue ---
@shop_bp.route("/")
async def index():
    api = get_api()
    random_books, top_selling, categories, catalog = await asyncio.gather(
        api.books.get_random(RANDOM_BOOKS_LIMIT),
        api.books.get_top_selling(),
        api.sup_categories.get_active(),
        load_promotion_catalog(api),
    )
    random_books = random_books.unwrap_or([], "random books")
    top_selling = top_selling.unwrap_or([], "top selling books")
    return render_template(
        "index.html",
        random_books=random_books,
        top_selling=top_selling,
        prices=price_map(catalog, random_books + top_selling),
        categories=categories.unwrap_or([], "menu categories"),
    )

@shop_bp.route("/books")
async def books():
    api = get_api()
    choice = BookFilter.from_args(request.args)
    all_books, categories, sub_categories, catalog = await asyncio.gather(
        api.books.get_active(),
        api.sup_categories.get_active(),
        api.sub_categories.get_active(),
        load_promotion_catalog(api),
    )
    all_books = all_books.unwrap_or([], "books")
    sub_categories = sub_categories.unwrap_or([], "sub-categories")

    category_ids = None
    if choice.sub_category_ids:
        category_ids = choice.sub_category_ids
    elif choice.sup_category_id:
        category_ids = {c.id for c in sub_categories if c.sup_category_id == choice.sup_category_id}

    price_of = effective_price(catalog)
    found = filter_books(all_books, category_ids, choice.min_price, choice.max_price, price_of)
    found = sort_books(found, choice.sort, price_of)
    page = paginate(found, request.args.get("page", 1), PAGE_SIZE)
    return render_template(
        "books.html",
        page=page,
        choice=choice,
        sorts=SORTS,
        sub_categories=sub_categories,
        prices=price_map(catalog, page.items),
        categories=categories.unwrap_or([], "menu categories"),
    )

@shop_bp.route("/category/<int:category_id>")
async def category(category_id):
    api = get_api()
    found, books, categories, catalog = await asyncio.gather(
        api.sub_categories.get(category_id),
        api.sub_categories.get_active_books(category_id),
        api.sup_categories.get_active(),
        load_promotion_catalog(api),
    )
    sub_category = found.unwrap_or(None, f"sub-category {category_id}")
    if sub_category is None:
        abort(404)
    books = books.unwrap_or([], f"books of sub-category {category_id}")
    page = paginate(books, request.args.get("page", 1), PAGE_SIZE)
    return render_template(
        "category.html",
        category=sub_category,
        page=page,
        promotion=catalog.promotion_for(category_id),
        prices=price_map(catalog, page.items),
        categories=categories.unwrap_or([], "menu categories"),
    )

@shop_bp.route("/search")
async def search():
    api = get_api()
    q = request.args.get("q", "").strip()
    results = []
    if q:
        found, catalog = await asyncio.gather(api.books.search(q), load_promotion_catalog(api))
        results = found.unwrap_or([], f"search {q!r}")
        prices = price_map(catalog, results)
    else:
        prices = {}
    return render_template("search.html", q=q, results=results, prices=prices,
                           categories=await nav_categories(api))

@shop_bp.route("/book/<int:book_id>")
async def book_detail(book_id):
    api = get_api()
    book = (await api.books.get(book_id)).unwrap()
    calls = [api.reviews.get_for_book(book_id), load_promotion_catalog(api), api.sup_categories.get_active()]
    if current_role() == "CUSTOMER":
        calls.append(api.reviews.is_reviewed(book_id))
    reviews, catalog, categories, *reviewed = await asyncio.gather(*calls)
    return render_template(
        "book.html",
        book=book,
        promo=catalog.price_for(book),
        reviews=reviews.unwrap_or([], f"reviews of book {book_id}"),
        reviewed=reviewed[0].unwrap_or(False, "reviewed flag") if reviewed else False,
        categories=categories.unwrap_or([], "menu categories"),
    )

# --- Routes: Cart ---
@shop_bp.route("/add/<int:book_id>", methods=["POST"])
async def add_to_cart(book_id):
    denied = require_login()
    if denied:
        return denied
    quantity = form_int("quantity", 1)
    try:
        await get_cart_service().add(book_id, quantity)
    except BookVerseError as e:
        flash(e.message, "error")
        return back()
    flash("Added to cart.", "success")
    return back()

@shop_bp.route("/cart")
async def cart_view():
    denied = require_customer()
    if denied:
        return denied
    api = get_api()
    summary, categories = await asyncio.gather(get_cart_service().summary(), nav_categories(api))
    if summary.auto_deselected:
        flash(OUT_OF_STOCK_WARNING, "warning")
    return render_template("cart.html", summary=summary, categories=categories,
                           warning_seconds=OUT_OF_STOCK_WARNING_SECONDS)

@shop_bp.route("/cart/quantity/<int:book_id>", methods=["POST"])
async def update_quantity(book_id):
    denied = require_customer()
    if denied:
        return denied
    try:
        update = await get_cart_service().update_quantity(book_id, form_int("quantity", 1))
    except BookVerseError as e:
        flash(e.message, "error")
        return redirect(url_for("shop.cart_view"))
    if update.capped:
        flash(f"Only {update.stock_quantity} left in stock.", "info")
    return redirect(url_for("shop.cart_view"))

@shop_bp.route("/cart/toggle/<int:book_id>", methods=["POST"])
async def toggle(book_id):
    denied = require_customer()
    if denied:
        return denied
    try:
        changed = await get_cart_service().toggle(book_id)
    except BookVerseError as e:
        flash(e.message, "error")
        return redirect(url_for("shop.cart_view"))
    if not changed:
        flash("This book is out of stock and cannot be selected.", "warning")
    return redirect(url_for("shop.cart_view"))

@shop_bp.route("/cart/select-all", methods=["POST"])
async def toggle_select_all():
    denied = require_customer()
    if denied:
        return denied
    await get_cart_service().toggle_select_all()
    return redirect(url_for("shop.cart_view"))

@shop_bp.route("/cart/remove/<int:book_id>", methods=["POST"])
async def remove(book_id):
    denied = require_customer()
    if denied:
        return denied
    try:
        await get_cart_service().remove(book_id)
    except BookVerseError as e:
        flash(e.message, "error")
        return redirect(url_for("shop.cart_view"))
    flash("Item removed.", "success")
    return redirect(url_for("shop.cart_view"))

@shop_bp.route("/cart/remove-selected", methods=["POST"])
async def remove_selected():
    denied = require_customer()
    if denied:
        return denied
    try:
        removed = await get_cart_service().remove_selected()
    except BookVerseError as e:
        flash(e.message, "error")
        return redirect(url_for("shop.cart_view"))
    if removed:
        flash(f"Removed {len(removed)} item(s).", "success")
    return redirect(url_for("shop.cart_view"))

# --- Routes: Checkout & payment ---
@shop_bp.route("/checkout", methods=["GET", "POST"])
async def checkout():
    denied = require_customer()
    if denied:
        return denied
    api = get_api()
    service = get_cart_service()

    if request.method == "POST":
        method = request.form.get("method", PaymentMethod.COD.value)
        if method not in PaymentMethod.__members__:
            flash("Please choose a payment method.", "error")
            return redirect(url_for("shop.checkout"))
        try:
            result = await start_checkout(api, service, request.form.get("address", ""), PaymentMethod(method))
        except BookVerseError as e:
            flash(e.message, "error")
            return redirect(url_for("shop.checkout"))
        if result.redirect_url:
            return redirect(result.redirect_url)
        flash("Order placed. You will pay on delivery.", "success")
        return redirect(url_for("account.order_detail", order_id=result.order.id))

    summary, me = await asyncio.gather(service.summary(), api.users.get_my_info())
    if summary.auto_deselected:
        flash(OUT_OF_STOCK_WARNING, "warning")
    if not summary.selected_items:
        flash("Please select at least one item to checkout.", "error")
        return redirect(url_for("shop.cart_view"))
    me = me.unwrap_or(None, "my info")
    return render_template("checkout.html", summary=summary, address=me.address if me else "",
                           methods=list(PaymentMethod))

@shop_bp.route("/payment/vnpay-return")
async def vnpay_return():
    denied = require_login()
    if denied:
        return denied
    try:
        outcome = await process_vnpay_return(get_api(), request.args)
    except BookVerseError as e:
        logger.error("VNPay return failed: %r", e)
        return render_template("payment_result.html", outcome=None, error=e.message)
    return render_template("payment_result.html", outcome=outcome, error=None)
