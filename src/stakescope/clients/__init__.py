"""RPC client layer for StakeScope.

Async JSON-RPC clients that return tagged results instead of raising:
- base: Rate-limited httpx transport, RPCError
- Success / Failure results (from stakescope.result) re-exported for callers
- schemas: Pydantic models of RPC payloads
- solana: Typed Solana queries (vote accounts, epoch info, rewards, ...)
"""

from stakescope.clients.base import BaseAsyncClient, RateLimiter, RPCError
from stakescope.clients.solana import SolanaRPCClient
from stakescope.result import Failure, RpcResult, Success

__all__ = [
    "BaseAsyncClient",
    "RateLimiter",
    "RPCError",
    "Failure",
    "RpcResult",
    "Success",
    "SolanaRPCClient",
]
