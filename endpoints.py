"""
Endpoint groups of the BookVerse REST API.

One small class per resource, each a thin mapping from a Python call to a
path on the shared ApiClient. Nothing here decides what a failure means; every
method hands back the Result untouched.
"""
from datetime import date
from decimal import Decimal
from urllib.parse import quote

import aiohttp

from api_client import ApiClient, Result
from models import (
    Author, AuthToken, Book, BookReviews, CartResponse, Notification, NotificationType, Order,
    OrderStatus, OrderStatusBreakdown, Payment, PaymentMethod, Promotion, Publisher, Review, Role,
    SalesPoint, SubCategory, SupCategory, TopBook, TopCustomer, User,
)
from uploads import ImageUpload

BOOK_SORTS = {
    "title": "sort-by-title",
    "price-asc": "sort-by-price-asc",
    "price-desc": "sort-by-price-desc",
    "newest": "sort-by-newest",
    "oldest": "sort-by-oldest",
}


class Endpoint:
    PATH = ""

    def __init__(self, client: ApiClient):
        self.client = client


class StatusToggleMixin:
    """Resources that are soft-deleted through PUT /active/{id} and /inactive/{id}."""

    MODEL = None

    async def activate(self, item_id) -> Result:
        return await self.client.put(f"{self.PATH}/active/{item_id}", model=self.MODEL)

    async def deactivate(self, item_id) -> Result:
        return await self.client.put(f"{self.PATH}/inactive/{item_id}", model=self.MODEL)

    async def set_active(self, item_id, active: bool) -> Result:
        return await (self.activate(item_id) if active else self.deactivate(item_id))


def build_book_form(fields: dict, image: ImageUpload | None = None, creating: bool = False) -> aiohttp.FormData:
    """
    Multipart body for book create/update.

    On create, price and stock default to 0 and the published date to today;
    on update only the fields that were supplied are sent.
    """
    form = aiohttp.FormData()
    title = (fields.get("title") or "").strip()
    if title:
        form.add_field("title", title)
    description = (fields.get("description") or "").strip()
    if description:
        form.add_field("description", description)

    price = fields.get("price")
    if price is not None and Decimal(str(price)) >= 0:
        form.add_field("price", str(price))
    elif creating:
        form.add_field("price", "0")

    for key, name in (("author_id", "authorId"), ("publisher_id", "publisherId"), ("category_id", "categoryId")):
        if fields.get(key):
            form.add_field(name, str(fields[key]))

    stock = fields.get("stock_quantity")
    if stock is not None and int(stock) >= 0:
        form.add_field("stockQuantity", str(stock))
    elif creating:
        form.add_field("stockQuantity", "0")

    published = fields.get("published_date")
    if published:
        form.add_field("publishedDate", str(published))
    elif creating:
        form.add_field("publishedDate", date.today().isoformat())

    if creating and fields.get("active") is not None:
        form.add_field("active", "true" if fields["active"] else "false")

    if image is not None:
        image.add_to(form, "image")
    elif fields.get("image_url"):
        form.add_field("imageUrl", fields["image_url"])
    return form


class Books(StatusToggleMixin, Endpoint):
    PATH = "/books"
    MODEL = Book

    async def get_all(self) -> Result:
        return await self.client.get(self.PATH, model=list[Book])

    async def get_active(self) -> Result:
        return await self.client.get(f"{self.PATH}/active", model=list[Book])

    async def get_inactive(self) -> Result:
        return await self.client.get(f"{self.PATH}/inactive", model=list[Book])

    async def get_random(self, limit: int = 9) -> Result:
        return await self.client.get(f"{self.PATH}/active/random", params={"limit": limit}, model=list[Book])

    async def get_sorted(self, sort: str) -> Result:
        return await self.client.get(f"{self.PATH}/active/{BOOK_SORTS[sort]}", model=list[Book])

    async def get_top_selling(self) -> Result:
        return await self.client.get(f"{self.PATH}/active/top-selling", model=list[Book])

    async def search(self, title: str) -> Result:
        return await self.client.get(f"{self.PATH}/active/search/{quote(title, safe='')}", model=list[Book])

    async def get(self, book_id: int) -> Result:
        # single books come back flat or wrapped; the client unwraps either
        return await self.client.get(f"{self.PATH}/{book_id}", model=Book)

    async def create(self, fields: dict, image: ImageUpload | None = None) -> Result:
        return await self.client.post(f"{self.PATH}/create", data=build_book_form(fields, image, creating=True),
                                      model=Book)

    async def update(self, book_id: int, fields: dict, image: ImageUpload | None = None) -> Result:
        return await self.client.put(f"{self.PATH}/update/{book_id}", data=build_book_form(fields, image),
                                     model=Book)


class SupCategories(StatusToggleMixin, Endpoint):
    PATH = "/sup-categories"
    MODEL = SupCategory

    async def get_all(self) -> Result:
        return await self.client.get(self.PATH, model=list[SupCategory])

    async def get_active(self) -> Result:
        return await self.client.get(f"{self.PATH}/active", model=list[SupCategory])

    async def get_inactive(self) -> Result:
        return await self.client.get(f"{self.PATH}/inactive", model=list[SupCategory])

    async def get(self, category_id: int) -> Result:
        return await self.client.get(f"{self.PATH}/{category_id}", model=SupCategory)

    async def get_sub_categories(self, category_id: int) -> Result:
        return await self.client.get(f"{self.PATH}/{category_id}/sub-categories", model=list[SubCategory])

    async def create(self, name: str, description: str = "") -> Result:
        return await self.client.post(f"{self.PATH}/create", json={"name": name, "description": description},
                                      model=SupCategory)

    async def update(self, category_id: int, name: str, description: str = "") -> Result:
        return await self.client.put(f"{self.PATH}/update/{category_id}",
                                     json={"name": name, "description": description}, model=SupCategory)


class SubCategories(StatusToggleMixin, Endpoint):
    PATH = "/sub-categories"
    MODEL = SubCategory

    async def get_all(self) -> Result:
        return await self.client.get(self.PATH, model=list[SubCategory])

    async def get_active(self) -> Result:
        return await self.client.get(f"{self.PATH}/active", model=list[SubCategory])

    async def get_inactive(self) -> Result:
        return await self.client.get(f"{self.PATH}/inactive", model=list[SubCategory])

    async def get(self, category_id: int) -> Result:
        return await self.client.get(f"{self.PATH}/{category_id}", model=SubCategory)

    async def get_active_books(self, category_id: int) -> Result:
        return await self.client.get(f"{self.PATH}/{category_id}/books/active", model=list[Book])

    async def create(self, name: str, sup_category_id: int, description: str = "") -> Result:
        body = {"name": name, "description": description, "supCategoryId": sup_category_id}
        return await self.client.post(f"{self.PATH}/create", json=body, model=SubCategory)

    async def update(self, category_id: int, name: str, sup_category_id: int, description: str = "") -> Result:
        body = {"name": name, "description": description, "supCategoryId": sup_category_id}
        return await self.client.put(f"{self.PATH}/update/{category_id}", json=body, model=SubCategory)


class Authors(Endpoint):
    PATH = "/authors"

    async def get_all(self) -> Result:
        return await self.client.get(self.PATH, model=list[Author])

    async def get_active(self) -> Result:
        return await self.client.get(f"{self.PATH}/active", model=list[Author])


class Publishers(Endpoint):
    PATH = "/publishers"

    async def get_all(self) -> Result:
        return await self.client.get(self.PATH, model=list[Publisher])

    async def get_active(self) -> Result:
        return await self.client.get(f"{self.PATH}/active", model=list[Publisher])


class Auth(Endpoint):
    PATH = "/auth"

    async def login(self, username: str, password: str) -> Result:
        return await self.client.post(f"{self.PATH}/token", json={"username": username, "password": password},
                                      model=AuthToken)

    async def logout(self, token: str) -> Result:
        return await self.client.post(f"{self.PATH}/logout", json={"token": token})

    async def send_otp(self, email: str) -> Result:
        return await self.client.post("/otp/send-by-email", json={"email": email})

    async def verify_otp(self, email: str, otp: str) -> Result:
        return await self.client.post("/otp/verify", json={"email": email, "otp": otp})


class Users(StatusToggleMixin, Endpoint):
    PATH = "/users"
    MODEL = User

    async def signup(self, data: dict) -> Result:
        return await self.client.post(f"{self.PATH}/signup", json=data, model=User)

    async def get_my_info(self) -> Result:
        return await self.client.get(f"{self.PATH}/myInfo", model=User)

    async def update_my_info(self, data: dict) -> Result:
        return await self.client.put(f"{self.PATH}/update-my-info", json=data, model=User)

    async def change_my_password(self, old_password: str, new_password: str) -> Result:
        body = {"oldPassword": old_password, "newPassword": new_password}
        return await self.client.put(f"{self.PATH}/change-my-password", json=body)

    async def get_all(self) -> Result:
        return await self.client.get(self.PATH, model=list[User])

    async def get_customers(self) -> Result:
        return await self.client.get(f"{self.PATH}/customers", model=list[User])

    async def get_staffs(self) -> Result:
        return await self.client.get(f"{self.PATH}/staffs", model=list[User])

    async def create(self, data: dict) -> Result:
        return await self.client.post(f"{self.PATH}/create", json=data, model=User)

    async def update(self, user_id: str, data: dict) -> Result:
        return await self.client.put(f"{self.PATH}/update/{user_id}", json=data, model=User)

    async def change_role(self, user_id: str, role: Role) -> Result:
        return await self.client.put(f"{self.PATH}/change-role/{user_id}", json={"role": role.value}, model=User)


class Carts(Endpoint):
    PATH = "/carts"

    async def get_my_cart(self) -> Result:
        return await self.client.get(f"{self.PATH}/myCart", model=CartResponse)

    async def add_one(self, book_id: int) -> Result:
        return await self.client.post(f"{self.PATH}/add-one", json={"bookId": book_id})

    async def add_multiple(self, book_id: int, quantity: int) -> Result:
        return await self.client.post(f"{self.PATH}/add-multiple", json={"bookId": book_id, "quantity": quantity})

    async def update_quantity(self, book_id: int, quantity: int) -> Result:
        return await self.client.put(f"{self.PATH}/update-quantity", json={"bookId": book_id, "quantity": quantity})

    async def clear_item(self, book_id: int) -> Result:
        return await self.client.delete(f"{self.PATH}/clear-an-item", json={"bookId": book_id})


class Orders(Endpoint):
    PATH = "/orders"

    async def get_all(self) -> Result:
        return await self.client.get(self.PATH, model=list[Order])

    async def get(self, order_id: int) -> Result:
        return await self.client.get(f"{self.PATH}/{order_id}", model=Order)

    async def get_by_status(self, status: OrderStatus) -> Result:
        return await self.client.get(f"{self.PATH}/status/{status.value}", model=list[Order])

    async def get_mine(self) -> Result:
        return await self.client.get(f"{self.PATH}/myOrders", model=list[Order])

    async def create(self, address: str) -> Result:
        return await self.client.post(f"{self.PATH}/create", json={"address": address}, model=Order)

    async def update(self, order_id: int, status: OrderStatus, cancel_reason: str | None = None) -> Result:
        body = {"status": status.value}
        if cancel_reason:
            body["cancelReason"] = cancel_reason
        return await self.client.put(f"{self.PATH}/update/{order_id}", json=body, model=Order)

    async def cancel_mine(self, order_id: int) -> Result:
        return await self.client.put(f"{self.PATH}/myOrders/cancel/{order_id}", model=Order)

    async def change_my_address(self, order_id: int, address: str) -> Result:
        return await self.client.put(f"{self.PATH}/myOrders/change-address/{order_id}", json={"address": address},
                                     model=Order)


class Payments(Endpoint):
    PATH = "/payments"

    async def create_record(self, order_id: int, method: PaymentMethod, amount: Decimal) -> Result:
        body = {"orderId": order_id, "method": method.value, "amount": float(amount)}
        return await self.client.post(f"{self.PATH}/create-payment-record", json=body, model=Payment)

    async def create_vnpay_url(self, amount: Decimal) -> Result:
        # plain string body, not wrapped in {result}
        return await self.client.post(f"{self.PATH}/create-vnpay-url", json={"amount": float(amount)}, model=str)

    async def mark_done(self, payment_id: int) -> Result:
        return await self.client.put(f"{self.PATH}/payment-done/{payment_id}", model=Payment)


class Promotions(StatusToggleMixin, Endpoint):
    PATH = "/promotions"
    MODEL = Promotion

    async def get_all(self) -> Result:
        return await self.client.get(self.PATH, model=list[Promotion])

    async def get_active(self) -> Result:
        return await self.client.get(f"{self.PATH}/active", model=list[Promotion])

    async def get_inactive(self) -> Result:
        return await self.client.get(f"{self.PATH}/inactive", model=list[Promotion])

    async def get(self, promotion_id: int) -> Result:
        return await self.client.get(f"{self.PATH}/{promotion_id}", model=Promotion)

    async def get_sub_categories(self, promotion_id: int) -> Result:
        return await self.client.get(f"{self.PATH}/{promotion_id}/sub-categories", model=list[SubCategory])

    async def create(self, data: dict) -> Result:
        return await self.client.post(f"{self.PATH}/create", json=data, model=Promotion)

    async def update(self, promotion_id: int, data: dict) -> Result:
        return await self.client.put(f"{self.PATH}/update/{promotion_id}", json=data, model=Promotion)


class Reviews(Endpoint):
    PATH = "/reviews"

    async def get_all(self) -> Result:
        return await self.client.get(self.PATH, model=list[BookReviews])

    async def get_all_flat(self) -> Result:
        """Every review as one list, each tagged with its book title."""
        def flatten(groups: list[BookReviews]) -> list[Review]:
            return [review.model_copy(update={"book_title": group.book_title})
                    for group in groups for review in group.reviews]
        return (await self.get_all()).map(flatten)

    async def get_for_book(self, book_id: int) -> Result:
        return await self.client.get(f"{self.PATH}/{book_id}", model=list[Review])

    async def is_reviewed(self, book_id: int) -> Result:
        return await self.client.get(f"{self.PATH}/is-reviewed/{book_id}", model=bool)

    async def create(self, book_id: int, comment: str) -> Result:
        return await self.client.post(f"{self.PATH}/create", json={"bookId": book_id, "comment": comment},
                                      model=Review)

    async def update(self, book_id: int, comment: str) -> Result:
        return await self.client.put(f"{self.PATH}/update", json={"bookId": book_id, "comment": comment},
                                     model=Review)

    async def delete_mine(self, book_id: int) -> Result:
        return await self.client.delete(f"{self.PATH}/myReview/{book_id}")

    async def delete_by_staff(self, book_id: int, user_id: str, review_id: int, message: str = "") -> Result:
        body = {"userId": user_id, "reviewId": review_id, "message": message}
        return await self.client.delete(f"{self.PATH}/deleteByAdminStaff/{book_id}", json=body)


class Notifications(Endpoint):
    PATH = "/notifications"

    async def get_all(self) -> Result:
        return await self.client.get(self.PATH, model=list[Notification])

    async def get_by_type(self, notification_type: NotificationType) -> Result:
        return await self.client.get(f"{self.PATH}/type/{notification_type.value}", model=list[Notification])

    async def create_personal(self, content: str, notification_type: NotificationType, target_user_id: str) -> Result:
        body = {"content": content, "type": notification_type.value, "targetUserId": target_user_id}
        return await self.client.post(f"{self.PATH}/admin-create/personal", json=body, model=Notification)

    async def create_broadcast(self, content: str, notification_type: NotificationType) -> Result:
        body = {"content": content, "type": notification_type.value}
        return await self.client.post(f"{self.PATH}/admin-create/broadcast", json=body, model=list[User])

    async def update(self, notification_id: int, content: str, notification_type: NotificationType) -> Result:
        body = {"content": content, "type": notification_type.value}
        return await self.client.put(f"{self.PATH}/update/{notification_id}", json=body, model=Notification)

    async def admin_delete(self, notification_id: int) -> Result:
        return await self.client.delete(f"{self.PATH}/admin-delete/{notification_id}")

    async def get_mine(self) -> Result:
        return await self.client.get(f"{self.PATH}/myNotifications", model=list[Notification])

    async def get_first_five(self) -> Result:
        return await self.client.get(f"{self.PATH}/myNotifications/first-5", model=list[Notification])

    async def unread_count(self) -> Result:
        return await self.client.get(f"{self.PATH}/myNotifications/unread-count", model=int)

    async def mark_read(self, notification_id: int) -> Result:
        return await self.client.put(f"{self.PATH}/myNotifications/mark-one-read/{notification_id}")

    async def mark_all_read(self) -> Result:
        return await self.client.put(f"{self.PATH}/myNotifications/mark-all-read")

    async def delete_mine(self, notification_id: int) -> Result:
        return await self.client.delete(f"{self.PATH}/myNotifications/delete/{notification_id}")


class Statistics(Endpoint):
    PATH = "/statistics"

    async def total_revenue(self) -> Result:
        return await self.client.get(f"{self.PATH}/total-revenue", model=Decimal)

    async def total_orders(self) -> Result:
        return await self.client.get(f"{self.PATH}/total-orders", model=int)

    async def total_customers(self) -> Result:
        return await self.client.get(f"{self.PATH}/total-customers", model=int)

    async def top_customers(self) -> Result:
        return await self.client.get(f"{self.PATH}/top-5-customers", model=list[TopCustomer])

    async def top_books(self) -> Result:
        return await self.client.get(f"{self.PATH}/top-5-books", model=list[TopBook])

    async def sales_over_time(self) -> Result:
        return await self.client.get(f"{self.PATH}/sales-over-time", model=list[SalesPoint])

    async def orders_over_time(self) -> Result:
        # backend names the field totalSales but it holds an order count
        return await self.client.get(f"{self.PATH}/orders-over-time", model=list[SalesPoint])

    async def orders_status(self) -> Result:
        return await self.client.get(f"{self.PATH}/orders-status", model=OrderStatusBreakdown)


class Uploads(Endpoint):
    PATH = "/upload"

    async def image(self, upload: ImageUpload, folder: str) -> Result:
        form = aiohttp.FormData()
        upload.add_to(form, "file")
        form.add_field("folder", folder)
        return await self.client.post(f"{self.PATH}/image", data=form, model=str)


class BookVerseApi:
    """All endpoint groups over one ApiClient."""

    def __init__(self, client: ApiClient):
        self.client = client
        self.books = Books(client)
        self.sup_categories = SupCategories(client)
        self.sub_categories = SubCategories(client)
        self.authors = Authors(client)
        self.publishers = Publishers(client)
        self.auth = Auth(client)
        self.users = Users(client)
        self.carts = Carts(client)
        self.orders = Orders(client)
        self.payments = Payments(client)
        self.promotions = Promotions(client)
        self.reviews = Reviews(client)
        self.notifications = Notifications(client)
        self.statistics = Statistics(client)
        self.uploads = Uploads(client)
