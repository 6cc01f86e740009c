# core.py
from flask import Flask, current_app, flash, g, redirect, render_template, request, session, url_for
from dotenv import load_dotenv
from decimal import Decimal
import logging
import os

from api_client import ApiClient
from endpoints import BookVerseApi
from exceptions import ApiError, ErrorKind
from logging_config import setup_logging

load_dotenv()

logger = logging.getLogger(__name__)

# --- Constants / Config shared across blueprints ---
API_URL = os.environ.get("BOOKVERSE_API_URL", "http://localhost:8080/bookverse/api")
API_TIMEOUT = float(os.environ.get("BOOKVERSE_API_TIMEOUT", "60"))
LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")
LOG_FILE = os.environ.get("LOG_FILE") or None

SHIPPING_FLAT = Decimal("5.00")
FREE_SHIPPING_MIN = Decimal("50.00")
OUT_OF_STOCK_WARNING_SECONDS = 5
CART_NOTICE_SECONDS = 2
NOTIFICATION_POLL_SECONDS = 30
PAGE_SIZE = 12
ADMIN_PAGE_SIZE = 10
RANDOM_BOOKS_LIMIT = 9
PLACEHOLDER_IMAGE = "/img/book/placeholder-book.jpg"

# A 401 on these pages only drops the credentials, elsewhere it sends the user to sign in
PUBLIC_PAGE_PREFIXES = ("/books", "/book/", "/category", "/about", "/qa", "/faq", "/search", "/signin", "/signup")

STAFF_ROLES = ("ADMIN", "STAFF")

# --- Session credentials ---
def current_token():
    return session.get("token")

def current_role():
    return session.get("role")

def signed_in():
    return bool(current_token())

def store_credentials(token, user):
    session["token"] = token
    session["role"] = user.role.value
    session["username"] = user.username
    session["user_id"] = user.id
    session.pop("cart", None)
    # the cached client still carries the old token
    g.pop("api", None)

def clear_credentials():
    for key in ("token", "role", "username", "user_id", "cart"):
        session.pop(key, None)

def is_public_page(path):
    return path == "/" or path.startswith(PUBLIC_PAGE_PREFIXES)

# --- API handle (one per request) ---
def get_api() -> BookVerseApi:
    if "api" not in g:
        factory = current_app.config.get("API_FACTORY")
        if factory is not None:
            g.api = factory()
        else:
            client = ApiClient(
                current_app.config["BOOKVERSE_API_URL"],
                token=current_token(),
                timeout=current_app.config["BOOKVERSE_API_TIMEOUT"],
                on_unauthorized=clear_credentials,
            )
            g.api = BookVerseApi(client)
    return g.api

# --- Guards: return a redirect when access is denied, else None ---
def require_login():
    if signed_in():
        return None
    flash("Please sign in to continue.", "error")
    return redirect(url_for("account.signin", next=request.path))

def require_roles(*roles):
    denied = require_login()
    if denied:
        return denied
    if current_role() in roles:
        return None
    flash("You do not have access to that page.", "error")
    return redirect(url_for("shop.index"))

def require_staff():
    return require_roles(*STAFF_ROLES)

def require_admin():
    return require_roles("ADMIN")

def require_customer():
    return require_roles("CUSTOMER")

def back(default_endpoint="shop.index", **values):
    """Redirect to the page the action was posted from."""
    return redirect(request.form.get("next") or request.referrer or url_for(default_endpoint, **values))

def format_money(value):
    if value is None:
        value = 0
    return f"${Decimal(str(value)):,.2f}"

# --- App factory ---
def create_app(test_config=None):
    app = Flask(__name__)
    app.config.from_mapping(
        SECRET_KEY=os.environ.get("SECRET_KEY", "dev-secret-change-me"),
        BOOKVERSE_API_URL=API_URL,
        BOOKVERSE_API_TIMEOUT=API_TIMEOUT,
        API_FACTORY=None,
    )
    if test_config:
        app.config.update(test_config)

    if not app.testing:
        setup_logging(LOG_LEVEL, LOG_FILE)

    # Register blueprints (import inside to avoid circular imports)
    from shop import shop_bp
    from account import account_bp
    from admin import admin_bp
    from notifications import register_cli
    app.register_blueprint(shop_bp)          # storefront at /
    app.register_blueprint(account_bp)       # sign-in, profile, orders
    app.register_blueprint(admin_bp, url_prefix="/admin")
    register_cli(app)

    app.add_template_filter(format_money, "money")

    @app.template_global()
    def page_url(page):
        args = request.args.to_dict()
        args.update(request.view_args or {})
        args["page"] = page
        return url_for(request.endpoint, **args)

    @app.context_processor
    def inject_user():
        return {
            "signed_in": signed_in(),
            "current_role": current_role(),
            "username": session.get("username"),
            "is_staff": current_role() in STAFF_ROLES,
            "cart_notice_seconds": CART_NOTICE_SECONDS,
            "warning_seconds": OUT_OF_STOCK_WARNING_SECONDS,
            "poll_seconds": NOTIFICATION_POLL_SECONDS,
        }

    @app.errorhandler(ApiError)
    def handle_api_error(e):
        if e.is_unauthorized:
            flash(e.message, "error")
            if is_public_page(request.path):
                return redirect(url_for("shop.index"))
            return redirect(url_for("account.signin", next=request.path))
        logger.error("Unhandled API error on %s: %r", request.path, e)
        status = e.status if e.status and e.status >= 400 else 502
        if e.kind is ErrorKind.TIMEOUT:
            status = 504
        return render_template("error.html", error=e, status=status), status

    logger.info("App created, API at %s", app.config["BOOKVERSE_API_URL"])
    return app
