"""Tests for the Solana JSON-RPC client."""

import base64
import json

import httpx
import pytest

from stakescope.cache.response_cache import CacheTTL, ResponseCache
from stakescope.clients.schemas import Block, PerformanceSample
from stakescope.clients.solana import SolanaRPCClient, compute_tps, summarize_block
from stakescope.result import Failure, Success

RPC_URL = "https://rpc.example.com/"

VOTE_ACCOUNTS = {
    "current": [
        {
            "votePubkey": "Vote111",
            "nodePubkey": "Node111",
            "activatedStake": 600_000_000_000_000,
            "commission": 5,
            "lastVote": 1_000,
            "rootSlot": 968,
            "epochVoteAccount": True,
            "epochCredits": [[700, 1000, 500], [701, 1400, 1000]],
        }
    ],
    "delinquent": [
        {
            "votePubkey": "Vote222",
            "nodePubkey": "Node222",
            "activatedStake": 1_000_000_000,
            "commission": 100,
            "lastVote": 10,
            "epochCredits": [],
        }
    ],
}

EPOCH_INFO = {
    "epoch": 701,
    "slotIndex": 1_234,
    "slotsInEpoch": 432_000,
    "absoluteSlot": 1_050,
    "blockHeight": 900,
    "transactionCount": 123_456,
}


def rpc_router(results: dict, calls: list | None = None):
    """side_effect answering each JSON-RPC method from ``results``."""

    def _handler(request: httpx.Request) -> httpx.Response:
        body = json.loads(request.content)
        if calls is not None:
            calls.append(body["method"])
        answer = results[body["method"]]
        if isinstance(answer, httpx.Response):
            return answer
        if callable(answer):
            answer = answer(body["params"])
        return httpx.Response(200, json={"jsonrpc": "2.0", "id": body["id"], "result": answer})

    return _handler


class TestTypedQueries:
    """Each query returns Success with a validated model."""

    @pytest.mark.asyncio
    async def test_get_vote_accounts(self, respx_mock):
        respx_mock.post(RPC_URL).mock(side_effect=rpc_router({"getVoteAccounts": VOTE_ACCOUNTS}))

        async with SolanaRPCClient(RPC_URL) as client:
            result = await client.get_vote_accounts()

        assert isinstance(result, Success)
        assert len(result.value.current) == 1
        account = result.value.current[0]
        assert account.vote_pubkey == "Vote111"
        assert account.node_pubkey == "Node111"
        assert account.epoch_credits[-1] == [701, 1400, 1000]
        assert result.value.delinquent[0].root_slot is None

    @pytest.mark.asyncio
    async def test_get_epoch_info(self, respx_mock):
        respx_mock.post(RPC_URL).mock(side_effect=rpc_router({"getEpochInfo": EPOCH_INFO}))

        async with SolanaRPCClient(RPC_URL) as client:
            result = await client.get_epoch_info()

        assert result.ok
        assert result.value.epoch == 701
        assert result.value.absolute_slot == 1_050

    @pytest.mark.asyncio
    async def test_get_supply_unwraps_value(self, respx_mock):
        respx_mock.post(RPC_URL).mock(side_effect=rpc_router({
            "getSupply": {
                "context": {"slot": 1},
                "value": {"total": 500, "circulating": 400, "nonCirculating": 100},
            }
        }))

        async with SolanaRPCClient(RPC_URL) as client:
            result = await client.get_supply()

        assert result.value.total == 500
        assert result.value.non_circulating == 100

    @pytest.mark.asyncio
    async def test_inflation_reward_keeps_alignment(self, respx_mock):
        """Null entries stay None and positions match the input keys."""
        respx_mock.post(RPC_URL).mock(side_effect=rpc_router({
            "getInflationReward": [
                {"epoch": 700, "effectiveSlot": 5, "amount": 2_500, "postBalance": 9_000, "commission": 5},
                None,
            ]
        }))

        async with SolanaRPCClient(RPC_URL) as client:
            result = await client.get_inflation_reward(["Vote111", "Vote222"], epoch=700)

        assert result.ok
        assert result.value[0].amount == 2_500
        assert result.value[1] is None

    @pytest.mark.asyncio
    async def test_inflation_reward_length_mismatch_is_failure(self, respx_mock):
        respx_mock.post(RPC_URL).mock(side_effect=rpc_router({"getInflationReward": [None]}))

        async with SolanaRPCClient(RPC_URL) as client:
            result = await client.get_inflation_reward(["a", "b"], epoch=1)

        assert isinstance(result, Failure)
        assert "unexpected response shape" in result.cause

    @pytest.mark.asyncio
    async def test_account_info_missing_account(self, respx_mock):
        respx_mock.post(RPC_URL).mock(side_effect=rpc_router({
            "getAccountInfo": {"context": {"slot": 1}, "value": None}
        }))

        async with SolanaRPCClient(RPC_URL) as client:
            result = await client.get_account_info("Node111")

        assert result == Success(None)

    @pytest.mark.asyncio
    async def test_account_info_data(self, respx_mock):
        payload = base64.b64encode(b'{"name":"Alpha"}').decode()
        respx_mock.post(RPC_URL).mock(side_effect=rpc_router({
            "getAccountInfo": {
                "context": {"slot": 1},
                "value": {
                    "data": [payload, "base64"],
                    "lamports": 10,
                    "owner": "Config1111111111111111111111111111111111111",
                    "executable": False,
                },
            }
        }))

        async with SolanaRPCClient(RPC_URL) as client:
            result = await client.get_account_info("Node111")

        assert result.value.data == [payload, "base64"]

    @pytest.mark.asyncio
    async def test_skipped_block_is_none(self, respx_mock):
        respx_mock.post(RPC_URL).mock(side_effect=rpc_router({"getBlock": None}))

        async with SolanaRPCClient(RPC_URL) as client:
            result = await client.get_block(123)

        assert result == Success(None)

    @pytest.mark.asyncio
    async def test_recent_blocks_skip_missing_slots(self, respx_mock):
        blocks = {
            100: {
                "blockHeight": 90,
                "blockTime": 1_700_000_000,
                "transactions": [{"meta": {"fee": 5_000}}, {"meta": {"fee": 10_000}}],
                "rewards": [{"pubkey": "Leader1", "lamports": 7_500, "rewardType": "Fee"}],
            },
            99: None,
            98: {"blockHeight": 89, "blockTime": None, "transactions": [], "rewards": []},
        }
        respx_mock.post(RPC_URL).mock(side_effect=rpc_router({
            "getSlot": 100,
            "getBlock": lambda params: blocks[params[0]],
        }))

        async with SolanaRPCClient(RPC_URL) as client:
            result = await client.get_recent_blocks(limit=3)

        assert [b.slot for b in result.value] == [100, 98]
        assert result.value[0].leader == "Leader1"
        assert result.value[0].transactions == 2
        assert result.value[0].fees == pytest.approx(15_000 / 1e9)
        assert result.value[1].leader == "Unknown"


class TestFailures:
    """Nothing raises to the caller."""

    @pytest.mark.asyncio
    async def test_rate_limited_failure(self, respx_mock):
        respx_mock.post(RPC_URL).mock(return_value=httpx.Response(429, text="slow down"))

        async with SolanaRPCClient(RPC_URL) as client:
            result = await client.get_vote_accounts()

        assert isinstance(result, Failure)
        assert result.rate_limited is True
        assert result.status_code == 429

    @pytest.mark.asyncio
    async def test_malformed_payload_is_failure(self, respx_mock):
        respx_mock.post(RPC_URL).mock(side_effect=rpc_router({"getEpochInfo": {"epoch": "x"}}))

        async with SolanaRPCClient(RPC_URL) as client:
            result = await client.get_epoch_info()

        assert isinstance(result, Failure)
        assert result.rate_limited is False


class TestCaching:
    """Read-through caching of cacheable queries."""

    @pytest.mark.asyncio
    async def test_repeat_call_served_from_cache(self, respx_mock):
        calls: list[str] = []
        respx_mock.post(RPC_URL).mock(
            side_effect=rpc_router({"getEpochInfo": EPOCH_INFO}, calls)
        )

        async with SolanaRPCClient(RPC_URL, cache=ResponseCache()) as client:
            first = await client.get_epoch_info()
            second = await client.get_epoch_info()

        assert first == second
        assert calls == ["getEpochInfo"]

    @pytest.mark.asyncio
    async def test_uncacheable_query_always_calls(self, respx_mock):
        calls: list[str] = []
        respx_mock.post(RPC_URL).mock(side_effect=rpc_router({"getSlot": 5}, calls))

        async with SolanaRPCClient(RPC_URL, cache=ResponseCache()) as client:
            await client.get_slot()
            await client.get_slot()

        assert calls == ["getSlot", "getSlot"]

    @pytest.mark.asyncio
    async def test_failure_not_cached(self, respx_mock):
        calls: list[str] = []
        responses = iter([
            httpx.Response(503, text="unavailable"),
            httpx.Response(200, json={"jsonrpc": "2.0", "id": 2, "result": EPOCH_INFO}),
        ])

        def _handler(request: httpx.Request) -> httpx.Response:
            calls.append(json.loads(request.content)["method"])
            return next(responses)

        respx_mock.post(RPC_URL).mock(side_effect=_handler)

        async with SolanaRPCClient(RPC_URL, cache=ResponseCache()) as client:
            first = await client.get_epoch_info()
            second = await client.get_epoch_info()

        assert isinstance(first, Failure)
        assert second.ok
        assert len(calls) == 2

    def test_ttl_overrides(self):
        client = SolanaRPCClient(RPC_URL, ttl_overrides={CacheTTL.SHORT: 5})
        assert client._ttls[CacheTTL.SHORT] == 5
        assert client._ttls[CacheTTL.LONG] == 3600


class TestHelpers:
    def test_compute_tps(self):
        samples = [
            PerformanceSample(slot=1, numTransactions=6_000, numSlots=150, samplePeriodSecs=60),
            PerformanceSample(slot=2, numTransactions=3_000, numSlots=150, samplePeriodSecs=60),
        ]
        assert compute_tps(samples) == pytest.approx(75.0)

    def test_compute_tps_empty(self):
        assert compute_tps([]) == 0.0

    def test_summarize_block_defaults_height_to_slot(self):
        summary = summarize_block(42, Block())
        assert summary.block_height == 42
        assert summary.leader == "Unknown"
        assert summary.fees == 0
