"""Solana JSON-RPC client returning typed results.

Every public method performs (at most) one round trip per call — except
``get_recent_blocks``, which is a convenience fan-out — and returns an
``RpcResult``: ``Success`` with a validated pydantic model, or ``Failure``
with a readable cause. Nothing raises to the caller.

When a ``ResponseCache`` is supplied, cacheable queries are read through it
with the TTL class that fits how fast the data moves.

RPC Docs: https://solana.com/docs/rpc/http

Usage:
    from stakescope.config import settings
    from stakescope.clients.solana import SolanaRPCClient

    async with SolanaRPCClient(settings.rpc_url) as client:
        accounts = await client.get_vote_accounts()
        if accounts.ok:
            print(len(accounts.value.current))
"""

import logging
from typing import Any, Callable, TypeVar

from pydantic import ValidationError

from stakescope.cache.response_cache import CacheTTL, ResponseCache, make_key
from stakescope.clients.base import BaseAsyncClient, RPCError
from stakescope.clients.schemas import (
    AccountInfo,
    Block,
    BlockSummary,
    EpochInfo,
    InflationReward,
    PerformanceSample,
    StakeActivation,
    Supply,
    VoteAccounts,
)
from stakescope.models import LAMPORTS_PER_SOL
from stakescope.result import Failure, RpcResult, Success

logger = logging.getLogger(__name__)

T = TypeVar("T")


class SolanaRPCClient(BaseAsyncClient):
    """Async client for the Solana JSON-RPC API.

    Args:
        endpoint: RPC URL (from settings.rpc_url)
        rate_limit: Max requests per second (default: 5)
        timeout: Request timeout in seconds (default: 30)
        cache: Optional read-through cache for cacheable queries
        ttl_overrides: Seconds to use instead of a CacheTTL class default
    """

    def __init__(
        self,
        endpoint: str,
        rate_limit: int = 5,
        timeout: float = 30.0,
        cache: ResponseCache | None = None,
        ttl_overrides: dict[CacheTTL, float] | None = None,
    ) -> None:
        super().__init__(endpoint=endpoint, rate_limit=rate_limit, timeout=timeout)
        self.cache = cache
        self._ttls = {ttl_class: float(ttl_class) for ttl_class in CacheTTL}
        self._ttls.update(ttl_overrides or {})

    async def call(
        self,
        method: str,
        params: list[Any] | None = None,
        ttl: float | None = None,
    ) -> RpcResult[Any]:
        """Raw RPC call returning the untyped ``result`` member.

        Args:
            method: JSON-RPC method name
            params: Positional parameters
            ttl: Cache TTL in seconds; None bypasses the cache
        """
        if self.cache is not None and ttl:
            return await self.cache.get_or_compute(
                make_key(method, params),
                ttl,
                lambda: self._call_once(method, params),
            )
        return await self._call_once(method, params)

    async def _call_once(self, method: str, params: list[Any] | None) -> RpcResult[Any]:
        try:
            return Success(await self._rpc(method, params))
        except RPCError as e:
            if e.rate_limited:
                logger.warning("Rate limited on %s: %s", method, e)
            else:
                logger.warning("RPC call failed: %s", e)
            return Failure(cause=str(e), rate_limited=e.rate_limited, status_code=e.status_code)

    @staticmethod
    def _parse(method: str, result: RpcResult[Any], parser: Callable[[Any], T]) -> RpcResult[T]:
        """Validate a raw result into a typed value; shape errors become Failures."""
        if isinstance(result, Failure):
            return result
        try:
            return Success(parser(result.value))
        except (ValidationError, TypeError, KeyError, ValueError) as e:
            logger.warning("Unexpected %s response shape: %s", method, e)
            return Failure(cause=f"{method}: unexpected response shape: {e}")

    # --- Network state ---

    async def get_vote_accounts(self) -> RpcResult[VoteAccounts]:
        """Current and delinquent vote accounts.

        Returns:
            VoteAccounts with ``current`` and ``delinquent`` lists. Each entry
            has votePubkey, nodePubkey, commission, activatedStake, lastVote,
            epochCredits.
        """
        raw = await self.call("getVoteAccounts", [], ttl=self._ttls[CacheTTL.SHORT])
        return self._parse("getVoteAccounts", raw, VoteAccounts.model_validate)

    async def get_epoch_info(self) -> RpcResult[EpochInfo]:
        """Current epoch, slot index, slots per epoch and absolute slot."""
        raw = await self.call("getEpochInfo", [], ttl=self._ttls[CacheTTL.SHORT])
        return self._parse("getEpochInfo", raw, EpochInfo.model_validate)

    async def get_slot(self) -> RpcResult[int]:
        raw = await self.call("getSlot", [])
        return self._parse("getSlot", raw, int)

    async def get_supply(self) -> RpcResult[Supply]:
        """Total, circulating and non-circulating supply (lamports)."""
        raw = await self.call(
            "getSupply",
            [{"excludeNonCirculatingAccountsList": True}],
            ttl=self._ttls[CacheTTL.LONG],
        )
        return self._parse("getSupply", raw, lambda v: Supply.model_validate(v["value"]))

    async def get_recent_performance_samples(self, limit: int = 5) -> RpcResult[list[PerformanceSample]]:
        """Recent performance samples (transaction counts per sample period)."""
        raw = await self.call("getRecentPerformanceSamples", [limit], ttl=self._ttls[CacheTTL.SHORT])
        return self._parse(
            "getRecentPerformanceSamples",
            raw,
            lambda v: [PerformanceSample.model_validate(s) for s in v],
        )

    async def get_current_tps(self, samples: int = 5) -> RpcResult[float]:
        """Throughput (transactions/second) averaged over recent samples."""
        result = await self.get_recent_performance_samples(samples)
        if isinstance(result, Failure):
            return result
        return Success(compute_tps(result.value))

    # --- Per-account / per-epoch ---

    async def get_inflation_reward(
        self,
        vote_pubkeys: list[str],
        epoch: int | None = None,
    ) -> RpcResult[list[InflationReward | None]]:
        """Inflation rewards for a list of addresses.

        Returns:
            List aligned with ``vote_pubkeys``; None where the address
            received no reward in that epoch.
        """
        params: list[Any] = [list(vote_pubkeys)]
        if epoch is not None:
            params.append({"epoch": epoch})
        raw = await self.call("getInflationReward", params, ttl=self._ttls[CacheTTL.MEDIUM])

        def _parse_rewards(value: Any) -> list[InflationReward | None]:
            if len(value) != len(vote_pubkeys):
                raise ValueError(f"expected {len(vote_pubkeys)} entries, got {len(value)}")
            return [InflationReward.model_validate(r) if r else None for r in value]

        return self._parse("getInflationReward", raw, _parse_rewards)

    async def get_account_info(self, pubkey: str) -> RpcResult[AccountInfo | None]:
        """Account data (base64). Success(None) if the account does not exist."""
        raw = await self.call(
            "getAccountInfo", [pubkey, {"encoding": "base64"}], ttl=self._ttls[CacheTTL.MEDIUM]
        )

        def _parse_account(value: Any) -> AccountInfo | None:
            inner = value.get("value") if isinstance(value, dict) else None
            return AccountInfo.model_validate(inner) if inner else None

        return self._parse("getAccountInfo", raw, _parse_account)

    async def get_stake_activation(self, pubkey: str) -> RpcResult[StakeActivation]:
        """Activation state (active/inactive/activating/deactivating) of a stake account."""
        raw = await self.call("getStakeActivation", [pubkey], ttl=self._ttls[CacheTTL.MEDIUM])
        return self._parse("getStakeActivation", raw, StakeActivation.model_validate)

    # --- Blocks ---

    async def get_block(self, slot: int) -> RpcResult[Block | None]:
        """Block at ``slot``; Success(None) if the slot was skipped."""
        raw = await self.call(
            "getBlock",
            [slot, {"maxSupportedTransactionVersion": 0, "rewards": True}],
        )
        return self._parse("getBlock", raw, lambda v: Block.model_validate(v) if v else None)

    async def get_recent_blocks(self, limit: int = 10) -> RpcResult[list[BlockSummary]]:
        """Summaries of the most recent ``limit`` slots.

        Skipped slots and slots whose block cannot be fetched are left out;
        only a failure to read the current slot fails the whole call.
        """
        slot_result = await self.get_slot()
        if isinstance(slot_result, Failure):
            return slot_result

        current = slot_result.value
        summaries: list[BlockSummary] = []
        for slot in range(current, current - limit, -1):
            block_result = await self.get_block(slot)
            if isinstance(block_result, Failure):
                logger.debug("Skipping slot %d: %s", slot, block_result.cause)
                continue
            if block_result.value is None:
                continue
            summaries.append(summarize_block(slot, block_result.value))
        return Success(summaries)


def compute_tps(samples: list[PerformanceSample]) -> float:
    """Transactions per second over a set of samples (0.0 if empty)."""
    seconds = sum(s.sample_period_secs for s in samples)
    if seconds <= 0:
        return 0.0
    return sum(s.num_transactions for s in samples) / seconds


def summarize_block(slot: int, block: Block) -> BlockSummary:
    """Reduce a full block to time, height, leader, tx count and fees (SOL)."""
    leader = next(
        (r.pubkey for r in block.rewards if (r.reward_type or "").lower() == "fee"),
        "Unknown",
    )
    fees = sum((tx.get("meta") or {}).get("fee", 0) or 0 for tx in block.transactions)
    return BlockSummary(
        slot=slot,
        block_time=block.block_time,
        block_height=block.block_height if block.block_height is not None else slot,
        leader=leader,
        transactions=len(block.transactions),
        fees=fees / LAMPORTS_PER_SOL,
    )
