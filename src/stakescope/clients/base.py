"""Base async JSON-RPC client with rate limiting and connection pooling.

All RPC clients inherit from this base to ensure consistent behavior:
- Async/await for non-blocking I/O
- Connection pooling for performance
- Token-bucket rate limiting to respect provider quotas
- Transport and protocol errors normalised into ``RPCError``

The base client performs exactly one round trip per call. Retrying is the
batch fetcher's job, so the retry policy lives in one place.

Usage:
    class MyRPCClient(BaseAsyncClient):
        async def get_height(self) -> int:
            return await self._rpc("getBlockHeight")
"""

import asyncio
import itertools
import logging
from typing import Any

import httpx


logger = logging.getLogger(__name__)

# JSON-RPC error codes used by providers to signal throttling
_RATE_LIMIT_RPC_CODES = {-32429, -32005}
_RATE_LIMIT_PHRASES = ("rate limit", "rate-limit", "too many requests")


class RateLimiter:
    """Token bucket rate limiter for async operations.

    Args:
        rate: Maximum requests per second
    """

    def __init__(self, rate: int) -> None:
        self.rate = rate
        self.tokens = rate
        self.updated_at: float = 0.0
        self._initialized: bool = False
        self._lock = asyncio.Lock()

    async def acquire(self) -> None:
        """Acquire a token, waiting if necessary."""
        async with self._lock:
            loop = asyncio.get_running_loop()

            if not self._initialized:
                self.updated_at = loop.time()
                self._initialized = True

            while self.tokens < 1:
                now = loop.time()
                elapsed = now - self.updated_at
                self.tokens = min(self.rate, self.tokens + elapsed * self.rate)
                self.updated_at = now

                if self.tokens < 1:
                    await asyncio.sleep((1 - self.tokens) / self.rate)

            self.tokens -= 1
            self.updated_at = loop.time()


class RPCError(Exception):
    """Transport or protocol failure of a single RPC round trip."""

    def __init__(
        self,
        message: str,
        status_code: int | None = None,
        rpc_code: int | None = None,
        rate_limited: bool = False,
    ) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.rpc_code = rpc_code
        self.rate_limited = rate_limited


def _is_rate_limit_message(message: str) -> bool:
    lowered = message.lower()
    return any(phrase in lowered for phrase in _RATE_LIMIT_PHRASES)


class BaseAsyncClient:
    """Base async JSON-RPC client.

    Args:
        endpoint: Full RPC URL (query string may carry an API key)
        headers: Extra headers for all requests
        rate_limit: Maximum requests per second (default: 5)
        timeout: Request timeout in seconds (default: 30)
    """

    def __init__(
        self,
        endpoint: str,
        headers: dict[str, str] | None = None,
        rate_limit: int = 5,
        timeout: float = 30.0,
    ) -> None:
        self.endpoint = endpoint
        self.headers = {"Content-Type": "application/json", **(headers or {})}
        self.timeout = timeout
        self._rate_limiter = RateLimiter(rate=rate_limit)
        self._client: httpx.AsyncClient | None = None
        self._ids = itertools.count(1)

    async def __aenter__(self) -> "BaseAsyncClient":
        """Async context manager entry."""
        self._client = httpx.AsyncClient(
            headers=self.headers,
            timeout=self.timeout,
            limits=httpx.Limits(max_keepalive_connections=5, max_connections=10),
        )
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        """Async context manager exit."""
        if self._client:
            await self._client.aclose()
            self._client = None

    async def _rpc(self, method: str, params: list[Any] | None = None) -> Any:
        """Perform one JSON-RPC call and return its ``result`` member.

        Args:
            method: JSON-RPC method name (e.g. "getEpochInfo")
            params: Positional parameters

        Returns:
            The decoded ``result`` value (may be None for "not found")

        Raises:
            RPCError: On HTTP errors, timeouts, network errors, invalid
                JSON or a JSON-RPC ``error`` member
        """
        if not self._client:
            raise RuntimeError("Client not initialized. Use async with context manager.")

        await self._rate_limiter.acquire()

        payload = {
            "jsonrpc": "2.0",
            "id": next(self._ids),
            "method": method,
            "params": params or [],
        }
        logger.debug("RPC %s params=%s", method, params)

        try:
            response = await self._client.post(self.endpoint, json=payload)
        except httpx.TimeoutException as e:
            raise RPCError(f"{method}: request timeout: {e}") from e
        except httpx.NetworkError as e:
            raise RPCError(f"{method}: network error: {e}") from e
        except httpx.HTTPError as e:
            raise RPCError(f"{method}: transport error: {e}") from e

        logger.debug("Response: %d for %s", response.status_code, method)

        if response.status_code >= 400:
            body = response.text[:500]
            raise RPCError(
                f"{method}: HTTP {response.status_code} {body}".rstrip(),
                status_code=response.status_code,
                rate_limited=response.status_code == 429 or _is_rate_limit_message(body),
            )

        try:
            data = response.json()
        except ValueError as e:
            raise RPCError(
                f"{method}: invalid JSON response: {e}",
                status_code=response.status_code,
            ) from e

        if not isinstance(data, dict):
            raise RPCError(f"{method}: unexpected response envelope", status_code=response.status_code)

        error = data.get("error")
        if error:
            code = error.get("code") if isinstance(error, dict) else None
            message = error.get("message", str(error)) if isinstance(error, dict) else str(error)
            raise RPCError(
                f"{method}: RPC error {code}: {message}",
                status_code=response.status_code,
                rpc_code=code,
                rate_limited=code in _RATE_LIMIT_RPC_CODES or _is_rate_limit_message(message),
            )

        if "result" not in data:
            raise RPCError(f"{method}: response has no result", status_code=response.status_code)

        return data["result"]
