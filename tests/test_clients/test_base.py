"""Tests for base async JSON-RPC client."""

import asyncio
import json

import httpx
import pytest

from stakescope.clients.base import BaseAsyncClient, RateLimiter, RPCError

RPC_URL = "https://rpc.example.com/"


class TestRateLimiter:
    """Tests for token bucket rate limiter."""

    @pytest.mark.asyncio
    async def test_allows_requests_under_limit(self):
        """Rate limiter should allow requests under the limit."""
        limiter = RateLimiter(rate=10)  # 10 req/s

        # Should allow 5 requests immediately
        for _ in range(5):
            await limiter.acquire()

    @pytest.mark.asyncio
    async def test_blocks_when_over_limit(self):
        """Rate limiter should block when over limit."""
        limiter = RateLimiter(rate=2)  # 2 req/s
        loop = asyncio.get_running_loop()

        # First 2 requests should be instant
        start = loop.time()
        await limiter.acquire()
        await limiter.acquire()
        first_duration = loop.time() - start

        # Third request should wait ~0.5s
        start = loop.time()
        await limiter.acquire()
        third_duration = loop.time() - start

        assert first_duration < 0.1  # Nearly instant
        assert third_duration > 0.3  # Had to wait


class TestBaseAsyncClient:
    """Tests for base async JSON-RPC client."""

    @pytest.mark.asyncio
    async def test_context_manager_lifecycle(self, respx_mock):
        """Client should properly initialize and cleanup."""
        respx_mock.post(RPC_URL).mock(
            return_value=httpx.Response(200, json={"jsonrpc": "2.0", "id": 1, "result": 42})
        )

        async with BaseAsyncClient(endpoint=RPC_URL) as client:
            assert client._client is not None
            assert await client._rpc("getSlot") == 42

        # Client should be closed after exiting context
        assert client._client is None

    @pytest.mark.asyncio
    async def test_raises_if_used_without_context_manager(self):
        """Client should raise if used without async with."""
        client = BaseAsyncClient(endpoint=RPC_URL)

        with pytest.raises(RuntimeError, match="not initialized"):
            await client._rpc("getSlot")

    @pytest.mark.asyncio
    async def test_sends_jsonrpc_envelope(self, respx_mock):
        """Body carries jsonrpc version, method, params and an increasing id."""
        route = respx_mock.post(RPC_URL).mock(
            return_value=httpx.Response(200, json={"jsonrpc": "2.0", "id": 1, "result": None})
        )

        async with BaseAsyncClient(endpoint=RPC_URL) as client:
            await client._rpc("getBlockTime", [100])
            await client._rpc("getSlot")

        first = json.loads(route.calls[0].request.content)
        second = json.loads(route.calls[1].request.content)
        assert first["jsonrpc"] == "2.0"
        assert first["method"] == "getBlockTime"
        assert first["params"] == [100]
        assert second["params"] == []
        assert second["id"] > first["id"]

    @pytest.mark.asyncio
    async def test_none_result_is_returned(self, respx_mock):
        """A null result (e.g. unknown account) is a value, not an error."""
        respx_mock.post(RPC_URL).mock(
            return_value=httpx.Response(200, json={"jsonrpc": "2.0", "id": 1, "result": None})
        )

        async with BaseAsyncClient(endpoint=RPC_URL) as client:
            assert await client._rpc("getBlockTime", [1]) is None


class TestErrorNormalisation:
    """Transport and protocol failures become RPCError."""

    @pytest.mark.asyncio
    async def test_http_429_is_rate_limited(self, respx_mock):
        respx_mock.post(RPC_URL).mock(return_value=httpx.Response(429, text="Too Many Requests"))

        async with BaseAsyncClient(endpoint=RPC_URL) as client:
            with pytest.raises(RPCError) as exc_info:
                await client._rpc("getVoteAccounts")

        assert exc_info.value.status_code == 429
        assert exc_info.value.rate_limited is True

    @pytest.mark.asyncio
    async def test_http_500_is_not_rate_limited(self, respx_mock):
        respx_mock.post(RPC_URL).mock(return_value=httpx.Response(500, text="Internal error"))

        async with BaseAsyncClient(endpoint=RPC_URL) as client:
            with pytest.raises(RPCError) as exc_info:
                await client._rpc("getVoteAccounts")

        assert exc_info.value.status_code == 500
        assert exc_info.value.rate_limited is False

    @pytest.mark.asyncio
    async def test_rpc_error_member(self, respx_mock):
        respx_mock.post(RPC_URL).mock(
            return_value=httpx.Response(200, json={
                "jsonrpc": "2.0",
                "id": 1,
                "error": {"code": -32602, "message": "Invalid param"},
            })
        )

        async with BaseAsyncClient(endpoint=RPC_URL) as client:
            with pytest.raises(RPCError, match="Invalid param") as exc_info:
                await client._rpc("getAccountInfo", ["bad"])

        assert exc_info.value.rpc_code == -32602
        assert exc_info.value.rate_limited is False

    @pytest.mark.asyncio
    async def test_rpc_error_rate_limit_message(self, respx_mock):
        """Providers that answer 200 with a throttling error are rate limited."""
        respx_mock.post(RPC_URL).mock(
            return_value=httpx.Response(200, json={
                "jsonrpc": "2.0",
                "id": 1,
                "error": {"code": -32000, "message": "Rate limit exceeded"},
            })
        )

        async with BaseAsyncClient(endpoint=RPC_URL) as client:
            with pytest.raises(RPCError) as exc_info:
                await client._rpc("getInflationReward", [[]])

        assert exc_info.value.rate_limited is True

    @pytest.mark.asyncio
    async def test_invalid_json(self, respx_mock):
        respx_mock.post(RPC_URL).mock(return_value=httpx.Response(200, text="<html>oops</html>"))

        async with BaseAsyncClient(endpoint=RPC_URL) as client:
            with pytest.raises(RPCError, match="invalid JSON"):
                await client._rpc("getSlot")

    @pytest.mark.asyncio
    async def test_missing_result(self, respx_mock):
        respx_mock.post(RPC_URL).mock(
            return_value=httpx.Response(200, json={"jsonrpc": "2.0", "id": 1})
        )

        async with BaseAsyncClient(endpoint=RPC_URL) as client:
            with pytest.raises(RPCError, match="no result"):
                await client._rpc("getSlot")

    @pytest.mark.asyncio
    async def test_timeout(self, respx_mock):
        respx_mock.post(RPC_URL).mock(side_effect=httpx.ReadTimeout("slow"))

        async with BaseAsyncClient(endpoint=RPC_URL) as client:
            with pytest.raises(RPCError, match="timeout"):
                await client._rpc("getSlot")

    @pytest.mark.asyncio
    async def test_network_error(self, respx_mock):
        respx_mock.post(RPC_URL).mock(side_effect=httpx.ConnectError("refused"))

        async with BaseAsyncClient(endpoint=RPC_URL) as client:
            with pytest.raises(RPCError, match="network error"):
                await client._rpc("getSlot")
