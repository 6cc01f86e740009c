"""
Payload models of the BookVerse REST API.
"""
from datetime import date, datetime
from decimal import Decimal
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class ApiModel(BaseModel):
    """Payload shape of the BookVerse API: camelCase on the wire, snake_case here."""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore")

    def to_api(self) -> dict:
        return self.model_dump(by_alias=True, exclude_none=True, mode="json")


# --- Catalogue ---
class Book(ApiModel):
    id: int
    title: str
    price: Decimal = Decimal("0")
    stock_quantity: int = 0
    category_id: int | None = None
    category_name: str | None = None
    description: str | None = None
    image: str | None = None
    author_id: int | None = None
    author_name: str | None = None
    publisher_id: int | None = None
    publisher_name: str | None = None
    published_date: date | None = None
    active: bool = True

    @property
    def in_stock(self) -> bool:
        return self.stock_quantity > 0


class SupCategory(ApiModel):
    id: int
    name: str
    description: str | None = None
    active: bool = True


class SubCategory(ApiModel):
    id: int
    name: str
    description: str | None = None
    active: bool = True
    sup_category_id: int | None = None
    sup_category_name: str | None = None


class Author(ApiModel):
    id: int
    name: str
    active: bool = True


class Publisher(ApiModel):
    id: int
    name: str
    active: bool = True


class Promotion(ApiModel):
    id: int
    content: str = ""
    percentage: int = Field(default=0, ge=0, le=100)
    start_date: date
    end_date: date
    active: bool = True


# --- Cart ---
class CartItemResponse(ApiModel):
    book_id: int
    quantity: int = 1


class CartResponse(ApiModel):
    id: int | None = None
    cart_items: list[CartItemResponse] = []


# --- Orders & payments ---
class OrderStatus(str, Enum):
    PENDING = "PENDING"                  # COD, waiting for approval
    PENDING_PAYMENT = "PENDING_PAYMENT"  # VNPay, waiting for payment
    CONFIRMED = "CONFIRMED"
    PREPARING = "PREPARING"
    DELIVERING = "DELIVERING"
    DELIVERED = "DELIVERED"
    CANCELLED = "CANCELLED"
    RETURNED = "RETURNED"


CANCELLABLE_STATUSES = (OrderStatus.PENDING, OrderStatus.PENDING_PAYMENT)


class PaymentMethod(str, Enum):
    COD = "COD"
    VNPAY = "VNPAY"


class PaymentStatus(str, Enum):
    PENDING = "PENDING"
    SUCCESS = "SUCCESS"
    FAILED = "FAILED"


class Payment(ApiModel):
    id: int
    order_id: int | None = None
    method: PaymentMethod = PaymentMethod.COD
    status: PaymentStatus = PaymentStatus.PENDING
    amount: Decimal = Decimal("0")
    paid_at: datetime | None = None
    created_at: datetime | None = None


class OrderItem(ApiModel):
    id: int | None = None
    book_id: int
    book_title: str = ""
    quantity: int = 1
    price: Decimal = Decimal("0")


class Order(ApiModel):
    id: int
    user_id: str | None = None
    user_name: str | None = None
    status: OrderStatus = OrderStatus.PENDING
    total_amount: Decimal = Decimal("0")
    address: str = ""
    created_at: datetime | None = None
    active: bool = True
    cancel_reason: str | None = None
    order_items: list[OrderItem] = []
    payment: Payment | None = None

    @property
    def payment_pending(self) -> bool:
        return (self.payment is not None and self.payment.method is PaymentMethod.VNPAY
                and self.payment.status is PaymentStatus.PENDING)

    @property
    def cancellable(self) -> bool:
        return self.status in CANCELLABLE_STATUSES


# --- Reviews ---
class Review(ApiModel):
    id: int
    user_id: str | None = None
    user_name: str | None = None
    name: str | None = None
    book_id: int
    book_title: str | None = None
    comment: str | None = None
    created_at: datetime | None = None


class BookReviews(ApiModel):
    book_id: int
    book_title: str = ""
    reviews: list[Review] = []


# --- Users & auth ---
class Role(str, Enum):
    CUSTOMER = "CUSTOMER"
    STAFF = "STAFF"
    ADMIN = "ADMIN"


class User(ApiModel):
    id: str
    username: str
    name: str | None = None
    email: str | None = None
    phone: str | None = None
    address: str | None = None
    image: str | None = None
    role: Role = Role.CUSTOMER
    active: bool = True


class AuthToken(ApiModel):
    token: str
    authenticated: bool = True


# --- Notifications ---
class NotificationType(str, Enum):
    FOR_CUSTOMERS_PERSONAL = "FOR_CUSTOMERS_PERSONAL"
    FOR_STAFFS_PERSONAL = "FOR_STAFFS_PERSONAL"
    FOR_ADMINS_PERSONAL = "FOR_ADMINS_PERSONAL"
    FOR_CUSTOMERS = "FOR_CUSTOMERS"
    FOR_STAFFS = "FOR_STAFFS"
    FOR_ADMINS = "FOR_ADMINS"

    @property
    def personal(self) -> bool:
        return self.value.endswith("_PERSONAL")


class Notification(ApiModel):
    id: int
    content: str
    type: NotificationType
    read: bool = False
    created_at: datetime | None = None
    user_id: str | None = None


# --- Statistics ---
class TopCustomer(ApiModel):
    id: str
    username: str
    name: str | None = None
    image: str | None = None
    total_spent: Decimal = Decimal("0")


class TopBook(ApiModel):
    id: int
    title: str
    image: str | None = None
    total_sold: int = 0


class SalesPoint(ApiModel):
    day: date = Field(alias="date")
    total_sales: Decimal = Decimal("0")


class OrderStatusBreakdown(ApiModel):
    pending: int = 0
    confirmed: int = 0
    processing: int = 0
    delivering: int = 0
    delivered: int = 0
    cancelled: int = 0
