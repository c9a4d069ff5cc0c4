"""Read-through response cache keyed by query signature.

Avoids redundant RPC calls for data that is volatile but not per-second
fresh. Entries hold the payload plus an absolute expiry; expired entries are
ignored on read and overwritten on the next successful compute.

Only successful results are cached. A ``Failure`` returned by the compute
function is handed back to the caller and the next lookup computes again.

Concurrent misses on the same key may both compute; the last write wins.
There is no cross-key coordination.

Usage:
    cache = ResponseCache()
    result = await cache.get_or_compute(
        make_key("getEpochInfo", []),
        CacheTTL.SHORT,
        lambda: client.call_uncached("getEpochInfo"),
    )
"""

import asyncio
import hashlib
import json
import logging
import time
from dataclasses import dataclass
from enum import IntEnum
from typing import Any, Awaitable, Callable, Protocol

from stakescope.result import Failure, RpcResult, Success
from stakescope.storage.database import Database
from stakescope.storage.models import CACHE_KEY_LENGTH

logger = logging.getLogger(__name__)


class CacheTTL(IntEnum):
    """TTL classes in seconds."""

    SHORT = 60        # Fast-moving network state (slot, epoch, vote accounts)
    MEDIUM = 300      # Per-account and per-epoch data
    LONG = 3600       # Slowly changing aggregates (supply, identity metadata)


@dataclass(frozen=True)
class CacheEntry:
    payload: Any
    expires_at: float

    def is_fresh(self, now: float) -> bool:
        return now < self.expires_at


def make_key(method: str, params: list[Any] | None = None) -> str:
    """Cache key for an RPC call: method plus canonical JSON of its params.

    Keys longer than the rpc_cache column (e.g. a getInflationReward chunk of
    25 pubkeys) replace the params with their SHA-256 digest.
    """
    encoded = json.dumps(params or [], sort_keys=True, separators=(",", ":"))
    key = f"{method}:{encoded}"
    if len(key) <= CACHE_KEY_LENGTH:
        return key
    return f"{method}:sha256:{hashlib.sha256(encoded.encode()).hexdigest()}"


class CacheBackend(Protocol):
    async def get(self, key: str) -> CacheEntry | None: ...

    async def set(self, key: str, entry: CacheEntry) -> None: ...


class MemoryCacheBackend:
    """Process-local backend."""

    def __init__(self) -> None:
        self._entries: dict[str, CacheEntry] = {}

    async def get(self, key: str) -> CacheEntry | None:
        return self._entries.get(key)

    async def set(self, key: str, entry: CacheEntry) -> None:
        self._entries[key] = entry

    def __len__(self) -> int:
        return len(self._entries)

    def clear(self) -> None:
        self._entries.clear()


class DatabaseCacheBackend:
    """Backend shared through the ``rpc_cache`` table.

    Payloads must be JSON-serialisable (raw RPC ``result`` members are).
    """

    def __init__(self, database: Database) -> None:
        self.database = database

    async def get(self, key: str) -> CacheEntry | None:
        row = await asyncio.to_thread(self.database.get_cache_entry, key)
        if row is None:
            return None
        payload, expires_at = row
        return CacheEntry(payload=payload, expires_at=expires_at)

    async def set(self, key: str, entry: CacheEntry) -> None:
        await asyncio.to_thread(
            self.database.put_cache_entry, key, entry.payload, entry.expires_at
        )


class ResponseCache:
    """Read-through cache over a pluggable backend.

    Args:
        backend: Storage for entries (default: process-local memory)
        clock: Returns "now" in seconds (default: time.time)

    Backend errors never break a fetch: a failed read counts as a miss and a
    failed write is logged.
    """

    def __init__(
        self,
        backend: CacheBackend | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.backend = backend if backend is not None else MemoryCacheBackend()
        self._clock = clock
        self.hits = 0
        self.misses = 0

    async def get_or_compute(
        self,
        key: str,
        ttl: float,
        compute_fn: Callable[[], Awaitable[RpcResult]],
    ) -> RpcResult:
        """Return the cached value for ``key`` or compute, store and return it.

        Args:
            key: Query signature (see make_key)
            ttl: Seconds the computed value stays fresh
            compute_fn: Zero-argument coroutine function producing an RpcResult

        Returns:
            Success with the cached or freshly computed value, or the
            Failure produced by compute_fn (never cached)
        """
        entry = await self._read(key)
        if entry is not None and entry.is_fresh(self._clock()):
            self.hits += 1
            logger.debug("Cache hit: %s", key)
            return Success(entry.payload)

        self.misses += 1
        result = await compute_fn()
        if isinstance(result, Failure):
            return result

        await self._write(key, CacheEntry(payload=result.value, expires_at=self._clock() + ttl))
        return result

    async def _read(self, key: str) -> CacheEntry | None:
        try:
            return await self.backend.get(key)
        except Exception as e:
            logger.warning("Cache read failed for %s: %s — treating as miss", key, e)
            return None

    async def _write(self, key: str, entry: CacheEntry) -> None:
        try:
            await self.backend.set(key, entry)
        except Exception as e:
            logger.warning("Cache write failed for %s: %s", key, e)
