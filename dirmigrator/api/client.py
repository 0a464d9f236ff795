"""Async REST client for a directory-service tenant."""

import asyncio
import time
from contextlib import aclosing
from typing import Any, AsyncIterator, Dict, Optional, Protocol

import httpx

from dirmigrator.config import TenantConfig
from dirmigrator.logging import get_logger, logger
from dirmigrator.utils.errors import (
    AuthenticationError,
    ConflictError,
    MigrationError,
    PayloadRejectedError,
    RecoverableError,
)


class DirectoryClient(Protocol):
    """The only channel processors use to reach a tenant."""

    def list_objects(
        self,
        object_type: str,
        filter: Optional[str] = None,
    ) -> AsyncIterator[Dict[str, Any]]:
        ...

    async def find_object(self, object_type: str, filter: str) -> Optional[Dict[str, Any]]:
        ...

    async def create_object(self, object_type: str, payload: Dict[str, Any]) -> str:
        ...

    async def delete_object(self, object_type: str, object_id: str) -> None:
        ...


class RateLimiter:
    """Token bucket rate limiter."""

    def __init__(self, rate: int, per: float = 60.0) -> None:
        """Initialize rate limiter.

        Args:
            rate: Number of allowed requests
            per: Time period in seconds (default 60 for per minute)
        """
        self.rate = rate
        self.per = per
        self.tokens = float(rate)
        self.updated_at = time.monotonic()
        self._lock = asyncio.Lock()

    async def acquire(self) -> None:
        """Acquire a token, waiting if necessary."""
        async with self._lock:
            while True:
                now = time.monotonic()
                elapsed = now - self.updated_at
                self.tokens = min(float(self.rate), self.tokens + elapsed * (self.rate / self.per))
                self.updated_at = now

                if self.tokens >= 1:
                    break
                await asyncio.sleep((1 - self.tokens) * (self.per / self.rate))

            self.tokens -= 1


def _retry_after(response: httpx.Response) -> Optional[float]:
    value = response.headers.get("Retry-After")
    if value is None:
        return None
    try:
        return float(value)
    except ValueError:
        return None


def _error_detail(response: httpx.Response) -> str:
    try:
        data = response.json()
    except ValueError:
        return response.text
    if isinstance(data, dict):
        error = data.get("error")
        if isinstance(error, dict):
            return str(error.get("message") or error)
        return str(error or data.get("message") or data)
    return str(data)


def raise_for_directory_status(response: httpx.Response, operation: str) -> None:
    """Map an unsuccessful response onto the error taxonomy."""
    status = response.status_code
    if status < 400:
        return

    detail = _error_detail(response)
    context = {"operation": operation, "status_code": status}
    message = f"{operation} failed with HTTP {status}: {detail}"

    if status == 409:
        raise ConflictError(message, context)
    if status in (400, 422):
        raise PayloadRejectedError(message, context)
    if status in (401, 403):
        raise AuthenticationError(message, context)
    if status in (408, 429) or status >= 500:
        raise RecoverableError(message, context, retry_after=_retry_after(response))
    raise MigrationError(message, context)


class RestDirectoryClient:
    """Directory API client with rate limiting.

    Objects live under ``{base_url}/{object_type}``. Listings are either a
    JSON array or an object with ``value`` (or ``items``) and an optional
    ``nextLink`` URL for the following page.
    """

    def __init__(
        self,
        config: TenantConfig,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        """Initialize the client.

        Args:
            config: Tenant configuration
            transport: Optional transport override (used by tests)
        """
        self.config = config
        self.logger = get_logger("directory_client")
        self.rate_limiter = RateLimiter(config.rate_limit, per=60.0)
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None

    async def __aenter__(self) -> "RestDirectoryClient":
        """Enter async context."""
        self._client = httpx.AsyncClient(
            base_url=self.config.base_url.rstrip("/") + "/",
            headers=self.config.get_headers(),
            timeout=httpx.Timeout(self.config.timeout),
            transport=self._transport,
        )
        return self

    async def __aexit__(self, *args: Any) -> None:
        """Exit async context."""
        if self._client:
            await self._client.aclose()
            self._client = None

    async def _request(
        self,
        method: str,
        url: str,
        operation: str,
        **kwargs: Any,
    ) -> httpx.Response:
        if not self._client:
            raise RuntimeError("Client not initialized. Use async context manager.")

        await self.rate_limiter.acquire()
        start_time = time.monotonic()

        try:
            response = await self._client.request(method, url, **kwargs)
        except httpx.TransportError as e:
            logger.log_api_request(method, url, error=str(e))
            raise RecoverableError(f"{operation}: {e}", {"operation": operation}) from e

        duration_ms = (time.monotonic() - start_time) * 1000
        if response.status_code >= 400:
            logger.log_api_request(
                method,
                url,
                status_code=response.status_code,
                duration_ms=duration_ms,
                error=response.reason_phrase,
            )
        else:
            logger.log_api_request(
                method, url, status_code=response.status_code, duration_ms=duration_ms
            )

        raise_for_directory_status(response, operation)
        return response

    async def list_objects(
        self,
        object_type: str,
        filter: Optional[str] = None,
    ) -> AsyncIterator[Dict[str, Any]]:
        """Yield every object of ``object_type``, following pagination."""
        params = {"filter": filter} if filter else None
        url: Optional[str] = object_type

        while url:
            response = await self._request("GET", url, f"list {object_type}", params=params)
            data = response.json()

            if isinstance(data, list):
                items, url = data, None
            else:
                items = data.get("value", data.get("items", []))
                url = data.get("nextLink")
            params = None  # nextLink already carries the query

            for item in items:
                yield item

    async def find_object(self, object_type: str, filter: str) -> Optional[Dict[str, Any]]:
        async with aclosing(self.list_objects(object_type, filter)) as items:
            async for item in items:
                return item
        return None

    async def create_object(self, object_type: str, payload: Dict[str, Any]) -> str:
        response = await self._request(
            "POST", object_type, f"create {object_type}", json=payload
        )
        data = response.json()
        object_id = data.get("id") if isinstance(data, dict) else None
        if not object_id:
            raise MigrationError(
                f"create {object_type} returned no id",
                {"operation": f"create {object_type}"},
            )
        return str(object_id)

    async def delete_object(self, object_type: str, object_id: str) -> None:
        try:
            await self._request(
                "DELETE", f"{object_type}/{object_id}", f"delete {object_type}"
            )
        except MigrationError as e:
            if e.context.get("status_code") == 404:
                self.logger.info("object_already_deleted", object_type=object_type, id=object_id)
                return
            raise
