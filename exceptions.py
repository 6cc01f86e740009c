"""
Exception classes for the BookVerse web client.
"""
from enum import Enum


class ErrorKind(Enum):
    NETWORK = "NETWORK"            # connection refused, DNS, reset
    TIMEOUT = "TIMEOUT"            # shared client timeout expired
    UNAUTHORIZED = "UNAUTHORIZED"  # 401, stored credentials are cleared
    FORBIDDEN = "FORBIDDEN"        # 403
    NOT_FOUND = "NOT_FOUND"        # 404
    REJECTED = "REJECTED"          # any other 4xx, usually a validation message
    SERVER = "SERVER"              # 5xx
    DECODE = "DECODE"              # body did not match the expected shape


class BookVerseError(Exception):
    """
    Base exception for all web client errors.

    Attributes:
        message: Human-readable error message, safe to show to the user
        details: Optional dict with additional context (ids, statuses)
    """

    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def __str__(self) -> str:
        return self.message

    def __repr__(self) -> str:
        if self.details:
            details_str = ', '.join(f"{k}={v}" for k, v in self.details.items())
            return f"{self.__class__.__name__}('{self.message}', {details_str})"
        return f"{self.__class__.__name__}('{self.message}')"


class ApiError(BookVerseError):
    """A failed call to the BookVerse REST API."""

    def __init__(self, kind: ErrorKind, message: str, status: int | None = None, details: dict | None = None):
        details = dict(details or {})
        details.setdefault("kind", kind.value)
        if status is not None:
            details.setdefault("status", status)
        super().__init__(message, details)
        self.kind = kind
        self.status = status

    @property
    def is_unauthorized(self) -> bool:
        return self.kind is ErrorKind.UNAUTHORIZED


class CartError(BookVerseError):
    """Cart action refused locally, before any server call."""

    def __init__(self, message: str, book_id: int | None = None):
        super().__init__(message, {"book_id": book_id} if book_id is not None else None)
        self.book_id = book_id


class PaymentError(BookVerseError):
    """Payment return could not be processed."""

    def __init__(self, message: str, order_id: int | None = None):
        super().__init__(message, {"order_id": order_id} if order_id is not None else None)
        self.order_id = order_id
