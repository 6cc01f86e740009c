"""
HTTP transport for the BookVerse REST API.

Every call returns a Result: Ok(value) with the unwrapped `result` payload, or
Err(ApiError) carrying an ErrorKind and the backend message. Callers decide
per call whether a failure is a read to shrug off (unwrap_or) or a mutation to
surface (unwrap raises the ApiError).
"""
import asyncio
import functools
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Generic, TypeVar, Union

import aiohttp
from pydantic import TypeAdapter, ValidationError

from exceptions import ApiError, ErrorKind

logger = logging.getLogger(__name__)

T = TypeVar("T")

# GETs under these prefixes are public catalogue reads
PUBLIC_GET_ENDPOINTS = (
    "/books",
    "/authors",
    "/publishers",
    "/series",
    "/sup-categories",
    "/sub-categories",
)

# Never send a token here, an expired one would make login itself fail
PUBLIC_AUTH_ENDPOINTS = (
    "/auth/token",
    "/auth/refresh",
    "/users/signup",
    "/users/id-by-email",
    "/otp/send-by-email",
    "/otp/send-by-email-reset-password",
    "/otp/verify",
    "/otp/verify-reset-password",
)

DEFAULT_MESSAGES = {
    ErrorKind.NETWORK: "Could not reach the BookVerse server.",
    ErrorKind.TIMEOUT: "The BookVerse server took too long to respond.",
    ErrorKind.UNAUTHORIZED: "Your session has expired. Please sign in again.",
    ErrorKind.FORBIDDEN: "You do not have permission to do that.",
    ErrorKind.NOT_FOUND: "The requested item was not found.",
    ErrorKind.REJECTED: "The request was rejected.",
    ErrorKind.SERVER: "The BookVerse server failed to handle the request.",
    ErrorKind.DECODE: "The BookVerse server sent an unexpected response.",
}


@dataclass(frozen=True)
class Ok(Generic[T]):
    value: T

    @property
    def ok(self) -> bool:
        return True

    def unwrap(self) -> T:
        return self.value

    def unwrap_or(self, default: Any, what: str = "") -> T:
        return self.value

    def map(self, fn: Callable[[T], Any]) -> "Ok":
        return Ok(fn(self.value))


@dataclass(frozen=True)
class Err:
    error: ApiError

    @property
    def ok(self) -> bool:
        return False

    def unwrap(self):
        raise self.error

    def unwrap_or(self, default: Any, what: str = "") -> Any:
        """Read-side fallback: log the failure and carry on with `default`."""
        logger.warning("Read failed%s: %r", f" ({what})" if what else "", self.error)
        return default

    def map(self, fn: Callable) -> "Err":
        return self


Result = Union[Ok[T], Err]


async def gather_results(*calls: Awaitable[Result]) -> Result:
    """
    Issue calls concurrently and join them.

    The batch succeeds only when every call does; otherwise the first Err in
    argument order is returned and the other values are discarded.
    """
    results = await asyncio.gather(*calls)
    for result in results:
        if not result.ok:
            return result
    return Ok(tuple(result.value for result in results))


@functools.lru_cache(maxsize=None)
def _adapter(model: Any) -> TypeAdapter:
    return TypeAdapter(model)


def _clean_params(params: dict | None) -> dict | None:
    if not params:
        return None
    cleaned = {}
    for key, value in params.items():
        if value is None:
            continue
        if isinstance(value, bool):
            value = "true" if value else "false"
        cleaned[key] = str(value)
    return cleaned


def kind_for_status(status: int) -> ErrorKind:
    if status == 401:
        return ErrorKind.UNAUTHORIZED
    if status == 403:
        return ErrorKind.FORBIDDEN
    if status == 404:
        return ErrorKind.NOT_FOUND
    if status < 500:
        return ErrorKind.REJECTED
    return ErrorKind.SERVER


class ApiClient:
    """
    Thin aiohttp wrapper around the BookVerse API.

    Args:
        base_url: API root, e.g. http://localhost:8080/bookverse/api
        token: Bearer token of the signed-in user, if any
        timeout: Total timeout per request in seconds
        on_unauthorized: Called once on every 401, before the Err is returned
        session: Optional shared aiohttp session; without one each call opens
            its own, so a client can be used from any event loop
    """

    def __init__(self, base_url: str, token: str | None = None, timeout: float = 60.0,
                 on_unauthorized: Callable[[], None] | None = None,
                 session: aiohttp.ClientSession | None = None):
        self.base_url = base_url.rstrip("/")
        self.token = token
        self.timeout = aiohttp.ClientTimeout(total=timeout)
        self.on_unauthorized = on_unauthorized
        self._session = session

    @staticmethod
    def needs_token(method: str, path: str) -> bool:
        if any(path.startswith(endpoint) for endpoint in PUBLIC_AUTH_ENDPOINTS):
            return False
        if method.upper() == "GET" and any(path.startswith(endpoint) for endpoint in PUBLIC_GET_ENDPOINTS):
            return False
        return True

    def headers_for(self, method: str, path: str) -> dict:
        # No Content-Type here: aiohttp sets JSON or multipart (with boundary) from the body
        headers = {"Accept": "application/json"}
        if self.token and self.needs_token(method, path):
            headers["Authorization"] = f"Bearer {self.token}"
        return headers

    async def request(self, method: str, path: str, *, params: dict | None = None, json: Any = None,
                      data: Any = None, model: Any = None) -> Result:
        method = method.upper()
        try:
            if self._session is not None:
                status, payload = await self._send(self._session, method, path, params, json, data)
            else:
                async with aiohttp.ClientSession(timeout=self.timeout) as session:
                    status, payload = await self._send(session, method, path, params, json, data)
        except asyncio.TimeoutError:
            logger.error("%s %s timed out", method, path)
            return Err(ApiError(ErrorKind.TIMEOUT, DEFAULT_MESSAGES[ErrorKind.TIMEOUT], details={"path": path}))
        except aiohttp.ClientError as e:
            logger.error("%s %s failed: %s", method, path, e)
            return Err(ApiError(ErrorKind.NETWORK, DEFAULT_MESSAGES[ErrorKind.NETWORK], details={"path": path}))

        if status >= 400:
            return Err(self._error(status, payload, method, path))

        body = payload["result"] if isinstance(payload, dict) and "result" in payload else payload
        if model is None:
            return Ok(body)
        try:
            return Ok(_adapter(model).validate_python(body))
        except ValidationError as e:
            logger.error("%s %s returned an unexpected body: %s", method, path, e)
            return Err(ApiError(ErrorKind.DECODE, DEFAULT_MESSAGES[ErrorKind.DECODE], status, {"path": path}))

    async def _send(self, session: aiohttp.ClientSession, method: str, path: str, params: dict | None,
                    json: Any, data: Any) -> tuple[int, Any]:
        logger.debug("%s %s", method, path)
        async with session.request(
            method,
            f"{self.base_url}{path}",
            params=_clean_params(params),
            json=json,
            data=data,
            headers=self.headers_for(method, path),
            timeout=self.timeout,
        ) as response:
            if response.content_type == "application/json":
                payload = await response.json()
            else:
                payload = await response.text()
            return response.status, payload

    def _error(self, status: int, payload: Any, method: str, path: str) -> ApiError:
        kind = kind_for_status(status)
        message = None
        details = {"path": path}
        if isinstance(payload, dict):
            message = payload.get("message")
            if "code" in payload:
                details["code"] = payload["code"]

        if kind is ErrorKind.UNAUTHORIZED:
            logger.error("401 Unauthorized on %s %s - token expired or invalid", method, path)
            if self.on_unauthorized is not None:
                self.on_unauthorized()
        elif kind is ErrorKind.FORBIDDEN:
            logger.error("Access forbidden on %s %s", method, path)
        else:
            logger.warning("%s %s -> %s: %s", method, path, status, message or "-")

        return ApiError(kind, message or DEFAULT_MESSAGES[kind], status, details)

    async def get(self, path: str, *, params: dict | None = None, model: Any = None) -> Result:
        return await self.request("GET", path, params=params, model=model)

    async def post(self, path: str, *, json: Any = None, data: Any = None, params: dict | None = None,
                   model: Any = None) -> Result:
        return await self.request("POST", path, json=json, data=data, params=params, model=model)

    async def put(self, path: str, *, json: Any = None, data: Any = None, model: Any = None) -> Result:
        return await self.request("PUT", path, json=json, data=data, model=model)

    async def delete(self, path: str, *, json: Any = None, model: Any = None) -> Result:
        return await self.request("DELETE", path, json=json, model=model)
