"""Caching layers for StakeScope.

- response_cache: Read-through TTL cache in front of RPC calls
- parquet_store: Epoch-partitioned Parquet archive of raw snapshots
"""

from stakescope.cache.parquet_store import ParquetStore
from stakescope.cache.response_cache import (
    CacheTTL,
    DatabaseCacheBackend,
    MemoryCacheBackend,
    ResponseCache,
    make_key,
)

__all__ = [
    "CacheTTL",
    "DatabaseCacheBackend",
    "MemoryCacheBackend",
    "ParquetStore",
    "ResponseCache",
    "make_key",
]
