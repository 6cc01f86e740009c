# account.py
from flask import Blueprint, render_template, redirect, url_for, session, request, flash, jsonify
import logging

from core import (
    get_api, current_token, current_role, signed_in, store_credentials, clear_credentials,
    require_login, require_customer, back, STAFF_ROLES,
)
from exceptions import BookVerseError
from models import OrderStatus
from payments import resume_vnpay_payment
from uploads import ImageUpload, validate_image_upload

logger = logging.getLogger(__name__)

account_bp = Blueprint("account", __name__)

PROFILE_FIELDS = ("name", "email", "phone", "address")

def safe_next(default):
    target = request.values.get("next", "")
    # local paths only
    if target.startswith("/") and not target.startswith("//"):
        return target
    return default

# --- Routes: Sign in / out ---
@account_bp.route("/signin", methods=["GET", "POST"])
async def signin():
    if request.method == "POST":
        username = request.form.get("username", "").strip()
        password = request.form.get("password", "")
        if not username or not password:
            flash("Please enter your username and password.", "error")
            return redirect(url_for("account.signin", next=request.form.get("next", "")))
        api = get_api()
        try:
            auth = (await api.auth.login(username, password)).unwrap()
            if not auth.authenticated:
                flash("Incorrect username or password.", "error")
                return redirect(url_for("account.signin"))
            api.client.token = auth.token
            me = (await api.users.get_my_info()).unwrap()
        except BookVerseError as e:
            clear_credentials()
            flash(e.message, "error")
            return redirect(url_for("account.signin"))
        store_credentials(auth.token, me)
        logger.info("User %s signed in as %s", me.username, me.role.value)
        flash(f"Welcome back, {me.name or me.username}!", "success")
        default = url_for("admin.dashboard") if me.role.value in STAFF_ROLES else url_for("shop.index")
        return redirect(safe_next(default))
    return render_template("signin.html", next=request.args.get("next", ""))

@account_bp.route("/signout", methods=["POST"])
async def signout():
    token = current_token()
    if token:
        # server-side logout is best effort, the session is dropped either way
        (await get_api().auth.logout(token)).unwrap_or(None, "logout")
    clear_credentials()
    flash("Signed out.", "success")
    return redirect(url_for("shop.index"))

@account_bp.route("/signup", methods=["GET", "POST"])
async def signup():
    if request.method == "POST":
        api = get_api()
        email = request.form.get("email", "").strip()
        if request.form.get("step") == "send_otp":
            if not email:
                flash("Please enter your e-mail address.", "error")
                return redirect(url_for("account.signup"))
            try:
                (await api.auth.send_otp(email)).unwrap()
            except BookVerseError as e:
                flash(e.message, "error")
                return redirect(url_for("account.signup"))
            session["signup_email"] = email
            flash("We sent a verification code to your e-mail.", "info")
            return redirect(url_for("account.signup"))

        email = session.get("signup_email") or email
        password = request.form.get("password", "")
        if password != request.form.get("confirm_password", ""):
            flash("Passwords do not match.", "error")
            return redirect(url_for("account.signup"))
        data = {
            "username": request.form.get("username", "").strip(),
            "password": password,
            "name": request.form.get("name", "").strip(),
            "email": email,
            "phone": request.form.get("phone", "").strip(),
            "address": request.form.get("address", "").strip(),
        }
        try:
            (await api.auth.verify_otp(email, request.form.get("otp", "").strip())).unwrap()
            (await api.users.signup(data)).unwrap()
        except BookVerseError as e:
            flash(e.message, "error")
            return redirect(url_for("account.signup"))
        session.pop("signup_email", None)
        flash("Account created. Please sign in.", "success")
        return redirect(url_for("account.signin"))
    return render_template("signup.html", email=session.get("signup_email"))

# --- Routes: Profile ---
@account_bp.route("/account", methods=["GET", "POST"])
async def profile():
    denied = require_login()
    if denied:
        return denied
    api = get_api()
    if request.method == "POST":
        data = {f: request.form.get(f, "").strip() for f in PROFILE_FIELDS}
        try:
            (await api.users.update_my_info(data)).unwrap()
        except BookVerseError as e:
            flash(e.message, "error")
            return redirect(url_for("account.profile"))
        flash("Profile updated.", "success")
        return redirect(url_for("account.profile"))
    me = (await api.users.get_my_info()).unwrap()
    return render_template("profile.html", me=me)

@account_bp.route("/account/password", methods=["POST"])
async def change_password():
    denied = require_login()
    if denied:
        return denied
    new_password = request.form.get("new_password", "")
    if not new_password or new_password != request.form.get("confirm_password", ""):
        flash("New passwords do not match.", "error")
        return redirect(url_for("account.profile"))
    try:
        (await get_api().users.change_my_password(request.form.get("old_password", ""), new_password)).unwrap()
    except BookVerseError as e:
        flash(e.message, "error")
        return redirect(url_for("account.profile"))
    flash("Password changed.", "success")
    return redirect(url_for("account.profile"))

# --- Routes: Orders ---
@account_bp.route("/account/orders")
async def orders():
    denied = require_customer()
    if denied:
        return denied
    status = request.args.get("status", "")
    mine = (await get_api().orders.get_mine()).unwrap_or([], "my orders")
    if status in OrderStatus.__members__:
        mine = [o for o in mine if o.status is OrderStatus(status)]
    # newest first
    mine.sort(key=lambda o: o.id, reverse=True)
    return render_template("orders.html", orders=mine, status=status, statuses=list(OrderStatus))

@account_bp.route("/account/orders/<int:order_id>")
async def order_detail(order_id):
    denied = require_login()
    if denied:
        return denied
    order = (await get_api().orders.get(order_id)).unwrap()
    return render_template("order.html", order=order)

@account_bp.route("/account/orders/<int:order_id>/cancel", methods=["POST"])
async def cancel_order(order_id):
    denied = require_customer()
    if denied:
        return denied
    try:
        (await get_api().orders.cancel_mine(order_id)).unwrap()
    except BookVerseError as e:
        flash(e.message, "error")
        return back("account.orders")
    flash(f"Order #{order_id} cancelled.", "success")
    return back("account.orders")

@account_bp.route("/account/orders/<int:order_id>/address", methods=["POST"])
async def change_order_address(order_id):
    denied = require_customer()
    if denied:
        return denied
    address = request.form.get("address", "").strip()
    if not address:
        flash("Please enter a delivery address.", "error")
        return back("account.orders")
    try:
        (await get_api().orders.change_my_address(order_id, address)).unwrap()
    except BookVerseError as e:
        flash(e.message, "error")
        return back("account.orders")
    flash("Delivery address updated.", "success")
    return back("account.orders")

@account_bp.route("/account/orders/<int:order_id>/pay", methods=["POST"])
async def pay_order(order_id):
    denied = require_customer()
    if denied:
        return denied
    try:
        url = await resume_vnpay_payment(get_api(), order_id)
    except BookVerseError as e:
        flash(e.message, "error")
        return back("account.orders")
    return redirect(url)

# --- Routes: Reviews ---
@account_bp.route("/book/<int:book_id>/review", methods=["POST"])
async def save_review(book_id):
    denied = require_customer()
    if denied:
        return denied
    comment = request.form.get("comment", "").strip()
    if not comment:
        flash("Please write a comment.", "error")
        return redirect(url_for("shop.book_detail", book_id=book_id))
    reviews = get_api().reviews
    save = reviews.update if request.form.get("mode") == "update" else reviews.create
    try:
        (await save(book_id, comment)).unwrap()
    except BookVerseError as e:
        flash(e.message, "error")
        return redirect(url_for("shop.book_detail", book_id=book_id))
    flash("Review saved.", "success")
    return redirect(url_for("shop.book_detail", book_id=book_id))

@account_bp.route("/book/<int:book_id>/review/delete", methods=["POST"])
async def delete_review(book_id):
    denied = require_customer()
    if denied:
        return denied
    try:
        (await get_api().reviews.delete_mine(book_id)).unwrap()
    except BookVerseError as e:
        flash(e.message, "error")
        return redirect(url_for("shop.book_detail", book_id=book_id))
    flash("Review deleted.", "success")
    return redirect(url_for("shop.book_detail", book_id=book_id))

# --- Routes: Notifications ---
@account_bp.route("/account/notifications")
async def notifications():
    denied = require_login()
    if denied:
        return denied
    mine = (await get_api().notifications.get_mine()).unwrap_or([], "my notifications")
    return render_template("notifications.html", notifications=mine)

@account_bp.route("/notifications/unread-count")
async def unread_count():
    if not signed_in():
        return jsonify(count=0)
    count = (await get_api().notifications.unread_count()).unwrap_or(0, "unread count")
    return jsonify(count=count, role=current_role())

@account_bp.route("/account/notifications/<int:notification_id>/read", methods=["POST"])
async def mark_read(notification_id):
    denied = require_login()
    if denied:
        return denied
    try:
        (await get_api().notifications.mark_read(notification_id)).unwrap()
    except BookVerseError as e:
        flash(e.message, "error")
    return redirect(url_for("account.notifications"))

@account_bp.route("/account/notifications/read-all", methods=["POST"])
async def mark_all_read():
    denied = require_login()
    if denied:
        return denied
    try:
        (await get_api().notifications.mark_all_read()).unwrap()
    except BookVerseError as e:
        flash(e.message, "error")
    return redirect(url_for("account.notifications"))

@account_bp.route("/account/notifications/<int:notification_id>/delete", methods=["POST"])
async def delete_notification(notification_id):
    denied = require_login()
    if denied:
        return denied
    try:
        (await get_api().notifications.delete_mine(notification_id)).unwrap()
    except BookVerseError as e:
        flash(e.message, "error")
        return redirect(url_for("account.notifications"))
    flash("Notification deleted.", "success")
    return redirect(url_for("account.notifications"))

@account_bp.route("/account/avatar", methods=["POST"])
async def upload_avatar():
    denied = require_login()
    if denied:
        return denied
    image = ImageUpload.from_storage(request.files.get("image"))
    if image is None:
        flash("Please choose an image.", "error")
        return redirect(url_for("account.profile"))
    error = validate_image_upload(image)
    if error:
        flash(error, "error")
        return redirect(url_for("account.profile"))
    api = get_api()
    try:
        url = (await api.uploads.image(image, "avatar")).unwrap()
        (await api.users.update_my_info({"image": url})).unwrap()
    except BookVerseError as e:
        flash(e.message, "error")
        return redirect(url_for("account.profile"))
    flash("Profile picture updated.", "success")
    return redirect(url_for("account.profile"))
