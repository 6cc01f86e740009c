# admin.py
from flask import Blueprint, render_template, redirect, url_for, request, flash, abort
from datetime import date
from decimal import Decimal, InvalidOperation
import asyncio
import logging

from api_client import gather_results
from core import get_api, current_role, require_staff, require_admin, back, ADMIN_PAGE_SIZE
from exceptions import BookVerseError
from listing import paginate
from models import NotificationType, OrderStatus, Role
from pricing import load_promotion_catalog
from uploads import ImageUpload, validate_image_upload

logger = logging.getLogger(__name__)

admin_bp = Blueprint("admin", __name__)

# url segment -> endpoint group that supports activate/deactivate
STATUS_TARGETS = {
    "books": "books",
    "sup-categories": "sup_categories",
    "sub-categories": "sub_categories",
    "promotions": "promotions",
    "users": "users",
}
ADMIN_ONLY_TARGETS = ("users",)

def by_status(items, status):
    if status == "active":
        return [i for i in items if i.active]
    if status == "inactive":
        return [i for i in items if not i.active]
    return list(items)

def parse_date(value):
    try:
        return date.fromisoformat((value or "").strip())
    except ValueError:
        return None

# --- Routes: Dashboard & statistics ---
@admin_bp.route("/")
async def dashboard():
    denied = require_staff()
    if denied:
        return denied
    if current_role() == Role.ADMIN.value:
        return redirect(url_for("admin.statistics"))
    return redirect(url_for("admin.orders"))

@admin_bp.route("/statistics")
async def statistics():
    denied = require_admin()
    if denied:
        return denied
    s = get_api().statistics
    # one page, one batch: a partial dashboard would be misleading
    result = await gather_results(
        s.total_revenue(), s.total_orders(), s.total_customers(), s.top_customers(),
        s.top_books(), s.sales_over_time(), s.orders_over_time(), s.orders_status(),
    )
    if not result.ok:
        flash(f"Could not load statistics: {result.error.message}", "error")
        return render_template("admin_statistics.html", stats=None)
    keys = ("revenue", "orders", "customers", "top_customers", "top_books", "sales", "order_counts", "status")
    return render_template("admin_statistics.html", stats=dict(zip(keys, result.value)))

# --- Routes: Books ---
@admin_bp.route("/books")
async def books():
    denied = require_staff()
    if denied:
        return denied
    api = get_api()
    found, catalog = await asyncio.gather(api.books.get_all(), load_promotion_catalog(api))
    status = request.args.get("status", "all")
    q = request.args.get("q", "").strip().lower()
    items = by_status(found.unwrap_or([], "books"), status)
    if q:
        items = [b for b in items if q in b.title.lower()]
    page = paginate(items, request.args.get("page", 1), ADMIN_PAGE_SIZE)
    prices = {b.id: catalog.price_for(b) for b in page.items}
    return render_template("admin_books.html", page=page, prices=prices, status=status, q=q)

async def book_form_choices(api):
    subs, authors, publishers = await asyncio.gather(
        api.sub_categories.get_active(), api.authors.get_active(), api.publishers.get_active())
    return {
        "sub_categories": subs.unwrap_or([], "sub-categories"),
        "authors": authors.unwrap_or([], "authors"),
        "publishers": publishers.unwrap_or([], "publishers"),
    }

def read_book_form():
    """Form fields plus an optional validated image; returns (fields, image, error)."""
    form = request.form
    fields = {
        "title": form.get("title", "").strip(),
        "description": form.get("description", "").strip(),
        "author_id": form.get("author_id") or None,
        "publisher_id": form.get("publisher_id") or None,
        "category_id": form.get("category_id") or None,
        "published_date": form.get("published_date") or None,
        "image_url": form.get("image_url", "").strip() or None,
        "active": form.get("active") == "on" if "active" in form else None,
    }
    try:
        price = form.get("price", "").strip()
        fields["price"] = Decimal(price) if price else None
        stock = form.get("stock_quantity", "").strip()
        fields["stock_quantity"] = int(stock) if stock else None
    except (InvalidOperation, ValueError):
        return fields, None, "Invalid price or stock quantity."
    if fields["price"] is not None and fields["price"] < 0:
        return fields, None, "Price cannot be negative."

    image = ImageUpload.from_storage(request.files.get("image"))
    if image is not None:
        error = validate_image_upload(image)
        if error:
            return fields, None, error
    return fields, image, None

@admin_bp.route("/books/new", methods=["GET", "POST"])
async def book_new():
    denied = require_staff()
    if denied:
        return denied
    api = get_api()
    if request.method == "POST":
        fields, image, error = read_book_form()
        if not error and not fields["title"]:
            error = "Please provide a title."
        if error:
            flash(error, "error")
            return redirect(url_for("admin.book_new"))
        try:
            book = (await api.books.create(fields, image)).unwrap()
        except BookVerseError as e:
            flash(e.message, "error")
            return redirect(url_for("admin.book_new"))
        logger.info("Book %s created", book.id)
        flash("Book created.", "success")
        return redirect(url_for("admin.books"))
    return render_template("admin_book_edit.html", book=None, **await book_form_choices(api))

@admin_bp.route("/books/<int:book_id>/edit", methods=["GET", "POST"])
async def book_edit(book_id):
    denied = require_staff()
    if denied:
        return denied
    api = get_api()
    if request.method == "POST":
        fields, image, error = read_book_form()
        if error:
            flash(error, "error")
            return redirect(url_for("admin.book_edit", book_id=book_id))
        try:
            (await api.books.update(book_id, fields, image)).unwrap()
        except BookVerseError as e:
            flash(e.message, "error")
            return redirect(url_for("admin.book_edit", book_id=book_id))
        flash("Book updated.", "success")
        return redirect(url_for("admin.books"))
    book = (await api.books.get(book_id)).unwrap()
    return render_template("admin_book_edit.html", book=book, **await book_form_choices(api))

@admin_bp.route("/<target>/<item_id>/status", methods=["POST"])
async def set_status(target, item_id):
    denied = require_admin() if target in ADMIN_ONLY_TARGETS else require_staff()
    if denied:
        return denied
    if target not in STATUS_TARGETS:
        abort(404)
    group = getattr(get_api(), STATUS_TARGETS[target])
    active = request.form.get("active") == "true"
    try:
        (await group.set_active(item_id, active)).unwrap()
    except BookVerseError as e:
        flash(e.message, "error")
        return back("admin.dashboard")
    flash("Activated." if active else "Deactivated.", "success")
    return back("admin.dashboard")

# --- Routes: Categories ---
@admin_bp.route("/categories")
async def categories():
    denied = require_staff()
    if denied:
        return denied
    api = get_api()
    sups, subs = await asyncio.gather(api.sup_categories.get_all(), api.sub_categories.get_all())
    return render_template("admin_categories.html",
                           sup_categories=sups.unwrap_or([], "sup-categories"),
                           sub_categories=subs.unwrap_or([], "sub-categories"))

@admin_bp.route("/categories/save", methods=["POST"])
async def category_save():
    denied = require_staff()
    if denied:
        return denied
    api = get_api()
    kind = request.form.get("kind")
    name = request.form.get("name", "").strip()
    description = request.form.get("description", "").strip()
    category_id = request.form.get("id", type=int)
    if not name or kind not in ("sup", "sub"):
        flash("Please provide a category name.", "error")
        return redirect(url_for("admin.categories"))
    try:
        if kind == "sup":
            if category_id:
                call = api.sup_categories.update(category_id, name, description)
            else:
                call = api.sup_categories.create(name, description)
        else:
            parent = request.form.get("sup_category_id", type=int)
            if not parent:
                flash("Please choose a parent category.", "error")
                return redirect(url_for("admin.categories"))
            if category_id:
                call = api.sub_categories.update(category_id, name, parent, description)
            else:
                call = api.sub_categories.create(name, parent, description)
        (await call).unwrap()
    except BookVerseError as e:
        flash(e.message, "error")
        return redirect(url_for("admin.categories"))
    flash("Category saved.", "success")
    return redirect(url_for("admin.categories"))

# --- Routes: Users (admin only) ---
@admin_bp.route("/users")
async def users():
    denied = require_admin()
    if denied:
        return denied
    api = get_api()
    role = request.args.get("role", "")
    fetch = {"CUSTOMER": api.users.get_customers, "STAFF": api.users.get_staffs}.get(role, api.users.get_all)
    found = (await fetch()).unwrap_or([], "users")
    page = paginate(found, request.args.get("page", 1), ADMIN_PAGE_SIZE)
    return render_template("admin_users.html", page=page, role=role, roles=list(Role))

@admin_bp.route("/users/save", methods=["POST"])
async def user_save():
    denied = require_admin()
    if denied:
        return denied
    users = get_api().users
    user_id = request.form.get("id", "").strip()
    data = {k: request.form.get(k, "").strip() for k in ("username", "name", "email", "phone", "address")}
    password = request.form.get("password", "")
    if password:
        data["password"] = password
    if not user_id and (not data["username"] or not password):
        flash("Username and password are required.", "error")
        return redirect(url_for("admin.users"))
    try:
        if user_id:
            (await users.update(user_id, data)).unwrap()
        else:
            data["role"] = request.form.get("role", Role.STAFF.value)
            (await users.create(data)).unwrap()
    except BookVerseError as e:
        flash(e.message, "error")
        return redirect(url_for("admin.users"))
    flash("User saved.", "success")
    return redirect(url_for("admin.users"))

@admin_bp.route("/users/<user_id>/role", methods=["POST"])
async def user_role(user_id):
    denied = require_admin()
    if denied:
        return denied
    role = request.form.get("role", "")
    if role not in Role.__members__:
        flash("Unknown role.", "error")
        return redirect(url_for("admin.users"))
    try:
        (await get_api().users.change_role(user_id, Role(role))).unwrap()
    except BookVerseError as e:
        flash(e.message, "error")
        return redirect(url_for("admin.users"))
    flash("Role changed.", "success")
    return redirect(url_for("admin.users"))

# --- Routes: Promotions ---
@admin_bp.route("/promotions")
async def promotions():
    denied = require_staff()
    if denied:
        return denied
    catalog = await load_promotion_catalog(get_api(), active_only=False)
    subs = (await get_api().sub_categories.get_all()).unwrap_or([], "sub-categories")
    names = {c.id: c.name for c in subs}
    rows = [
        {
            "promotion": p,
            "running": catalog.is_active(p),
            "sub_categories": sorted(names.get(i, f"#{i}") for i in catalog.subcategories_of(p.id)),
        }
        for p in by_status(catalog.promotions, request.args.get("status", "all"))
    ]
    return render_template("admin_promotions.html", rows=rows, status=request.args.get("status", "all"))

@admin_bp.route("/promotions/save", methods=["POST"])
async def promotion_save():
    denied = require_staff()
    if denied:
        return denied
    form = request.form
    promotion_id = form.get("id", type=int)
    start, end = parse_date(form.get("start_date")), parse_date(form.get("end_date"))
    percentage = form.get("percentage", type=int)
    content = form.get("content", "").strip()
    if not content:
        flash("Please provide the promotion content.", "error")
        return redirect(url_for("admin.promotions"))
    if percentage is None or not 1 <= percentage <= 100:
        flash("Discount percentage must be between 1-100%.", "error")
        return redirect(url_for("admin.promotions"))
    if not start or not end:
        flash("Please provide a start and an end date.", "error")
        return redirect(url_for("admin.promotions"))
    # only new promotions: a running one keeps its original start date
    if not promotion_id and start < date.today():
        flash("Start date cannot be in the past.", "error")
        return redirect(url_for("admin.promotions"))
    if end <= start:
        flash("End date must be after start date.", "error")
        return redirect(url_for("admin.promotions"))
    data = {
        "content": content,
        "percentage": percentage,
        "startDate": start.isoformat(),
        "endDate": end.isoformat(),
        "active": form.get("active") == "on",
    }
    promotions = get_api().promotions
    try:
        if promotion_id:
            (await promotions.update(promotion_id, data)).unwrap()
        else:
            (await promotions.create(data)).unwrap()
    except BookVerseError as e:
        flash(e.message, "error")
        return redirect(url_for("admin.promotions"))
    flash("Promotion saved.", "success")
    return redirect(url_for("admin.promotions"))

# --- Routes: Orders ---
@admin_bp.route("/orders")
async def orders():
    denied = require_staff()
    if denied:
        return denied
    api = get_api()
    status = request.args.get("status", "")
    if status in OrderStatus.__members__:
        found = await api.orders.get_by_status(OrderStatus(status))
    else:
        found = await api.orders.get_all()
    items = sorted(found.unwrap_or([], "orders"), key=lambda o: o.id, reverse=True)
    page = paginate(items, request.args.get("page", 1), ADMIN_PAGE_SIZE)
    return render_template("admin_orders.html", page=page, status=status, statuses=list(OrderStatus))

@admin_bp.route("/orders/<int:order_id>/status", methods=["POST"])
async def order_status(order_id):
    denied = require_staff()
    if denied:
        return denied
    status = request.form.get("status", "")
    if status not in OrderStatus.__members__:
        flash("Unknown order status.", "error")
        return back("admin.orders")
    reason = request.form.get("cancel_reason", "").strip() or None
    try:
        (await get_api().orders.update(order_id, OrderStatus(status), reason)).unwrap()
    except BookVerseError as e:
        flash(e.message, "error")
        return back("admin.orders")
    flash(f"Order #{order_id} is now {status}.", "success")
    return back("admin.orders")

# --- Routes: Reviews ---
@admin_bp.route("/reviews")
async def reviews():
    denied = require_staff()
    if denied:
        return denied
    found = (await get_api().reviews.get_all_flat()).unwrap_or([], "reviews")
    page = paginate(found, request.args.get("page", 1), ADMIN_PAGE_SIZE)
    return render_template("admin_reviews.html", page=page)

@admin_bp.route("/reviews/<int:review_id>/delete", methods=["POST"])
async def review_delete(review_id):
    denied = require_staff()
    if denied:
        return denied
    book_id = request.form.get("book_id", type=int)
    user_id = request.form.get("user_id", "")
    try:
        (await get_api().reviews.delete_by_staff(book_id, user_id, review_id,
                                                 request.form.get("message", "").strip())).unwrap()
    except BookVerseError as e:
        flash(e.message, "error")
        return redirect(url_for("admin.reviews"))
    flash("Review deleted.", "success")
    return redirect(url_for("admin.reviews"))

# --- Routes: Notifications ---
@admin_bp.route("/notifications")
async def notifications():
    denied = require_staff()
    if denied:
        return denied
    api = get_api()
    kind = request.args.get("type", "")
    if kind in NotificationType.__members__:
        found = await api.notifications.get_by_type(NotificationType(kind))
    else:
        found = await api.notifications.get_all()
    page = paginate(found.unwrap_or([], "notifications"), request.args.get("page", 1), ADMIN_PAGE_SIZE)
    return render_template("admin_notifications.html", page=page, kind=kind, types=list(NotificationType))

@admin_bp.route("/notifications/save", methods=["POST"])
async def notification_save():
    denied = require_staff()
    if denied:
        return denied
    notifications = get_api().notifications
    content = request.form.get("content", "").strip()
    kind = request.form.get("type", "")
    if not content or kind not in NotificationType.__members__:
        flash("Please provide content and a notification type.", "error")
        return redirect(url_for("admin.notifications"))
    kind = NotificationType(kind)
    notification_id = request.form.get("id", type=int)
    target = request.form.get("target_user_id", "").strip()
    try:
        if notification_id:
            (await notifications.update(notification_id, content, kind)).unwrap()
        elif kind.personal:
            if not target:
                flash("Personal notifications need a target user.", "error")
                return redirect(url_for("admin.notifications"))
            (await notifications.create_personal(content, kind, target)).unwrap()
        else:
            (await notifications.create_broadcast(content, kind)).unwrap()
    except BookVerseError as e:
        flash(e.message, "error")
        return redirect(url_for("admin.notifications"))
    flash("Notification saved.", "success")
    return redirect(url_for("admin.notifications"))

@admin_bp.route("/notifications/<int:notification_id>/delete", methods=["POST"])
async def notification_delete(notification_id):
    denied = require_staff()
    if denied:
        return denied
    try:
        (await get_api().notifications.admin_delete(notification_id)).unwrap()
    except BookVerseError as e:
        flash(e.message, "error")
        return redirect(url_for("admin.notifications"))
    flash("Notification deleted.", "success")
    return redirect(url_for("admin.notifications"))
