"""Rate-limited batch fetcher.

Splits identifier lists into bounded chunks and drives them through a small
worker pool:

- chunks hold at most ``batch_size`` identifiers, input order preserved
- at most ``concurrency`` chunks are in flight at once
- a rate-limited Failure is retried with exponential backoff
  (``backoff_base * 2**attempt``) up to ``max_retries`` attempts, after which
  the chunk's identifiers are marked failed and the run moves on
- every worker pauses ``batch_delay`` after each chunk call so the upstream
  limiter is not triggered pre-emptively
- once the run budget is spent no new chunk is started; the remaining
  identifiers come back absent and are listed as skipped

The result covers every distinct input identifier exactly once.
"""

import asyncio
import functools
import logging
import time
from dataclasses import dataclass, field
from typing import Awaitable, Callable, Generic, Iterable, TypeVar

from stakescope.result import Failure, RpcResult

logger = logging.getLogger(__name__)

T = TypeVar("T")

ChunkFn = Callable[[list[str]], Awaitable[RpcResult[list]]]
ItemFn = Callable[[str], Awaitable[RpcResult]]


@dataclass
class RunBudget:
    """Wall-clock budget of one pipeline run.

    Args:
        deadline: Absolute clock value after which the budget is spent
            (None = unlimited)
        clock: Monotonic clock (default: time.monotonic)
    """

    deadline: float | None = None
    clock: Callable[[], float] = time.monotonic

    @classmethod
    def start(cls, seconds: float | None, clock: Callable[[], float] = time.monotonic) -> "RunBudget":
        return cls(deadline=None if seconds is None else clock() + seconds, clock=clock)

    def expired(self) -> bool:
        return self.deadline is not None and self.clock() >= self.deadline

    def remaining(self) -> float | None:
        if self.deadline is None:
            return None
        return max(0.0, self.deadline - self.clock())


@dataclass
class BatchResult(Generic[T]):
    """Outcome of a batched fetch.

    Attributes:
        values: Identifier → value, or None when absent
        failed: Identifiers that could not be fetched after retries
        skipped: Identifiers never requested because the budget ran out
        chunks_issued: Chunks for which at least one call was made
    """

    values: dict[str, T | None] = field(default_factory=dict)
    failed: list[str] = field(default_factory=list)
    skipped: list[str] = field(default_factory=list)
    chunks_issued: int = 0

    @property
    def succeeded(self) -> int:
        return len(self.values) - len(self.failed) - len(self.skipped)

    def get(self, identifier: str, default: T | None = None) -> T | None:
        value = self.values.get(identifier)
        return default if value is None else value


def chunked(identifiers: Iterable[str], size: int) -> list[list[str]]:
    """Split into consecutive chunks of at most ``size`` items."""
    if size < 1:
        raise ValueError(f"Chunk size ({size}) must be >= 1")
    items = list(identifiers)
    return [items[i:i + size] for i in range(0, len(items), size)]


class BatchFetcher:
    """Bounded worker pool with pacing and rate-limit retries.

    Args:
        batch_size: Identifiers per chunk (default: 25)
        max_retries: Attempts per chunk (or item) on rate limiting (default: 3)
        batch_delay: Pause after each chunk call, in seconds (default: 2.0)
        backoff_base: First retry delay, doubled per attempt (default: 1.0)
        concurrency: Chunks in flight at once (default: 1)
        sleep: Awaitable sleep (default: asyncio.sleep)

    Usage:
        fetcher = BatchFetcher(batch_size=25)
        rewards = await fetcher.fetch_chunked(
            vote_keys, lambda chunk: client.get_inflation_reward(chunk, epoch)
        )
        infos = await fetcher.fetch_each(identity_keys, client.get_account_info)
    """

    def __init__(
        self,
        batch_size: int = 25,
        max_retries: int = 3,
        batch_delay: float = 2.0,
        backoff_base: float = 1.0,
        concurrency: int = 1,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        if batch_size < 1:
            raise ValueError(f"batch_size ({batch_size}) must be >= 1")
        if max_retries < 1:
            raise ValueError(f"max_retries ({max_retries}) must be >= 1")
        if concurrency < 1:
            raise ValueError(f"concurrency ({concurrency}) must be >= 1")
        self.batch_size = batch_size
        self.max_retries = max_retries
        self.batch_delay = batch_delay
        self.backoff_base = backoff_base
        self.concurrency = concurrency
        self._sleep = sleep

    async def fetch_chunked(
        self,
        identifiers: Iterable[str],
        chunk_fn: ChunkFn,
        budget: RunBudget | None = None,
    ) -> BatchResult:
        """One call per chunk; the call returns values aligned with the chunk."""

        async def _process(chunk: list[str], result: BatchResult) -> None:
            outcome = await self._with_retry(
                f"chunk of {len(chunk)}", functools.partial(chunk_fn, chunk)
            )
            if isinstance(outcome, Failure):
                logger.warning("Chunk of %d failed: %s", len(chunk), outcome.cause)
                result.failed.extend(chunk)
                return

            values = outcome.value
            if len(values) != len(chunk):
                logger.warning(
                    "Chunk of %d returned %d values — marking failed", len(chunk), len(values)
                )
                result.failed.extend(chunk)
                return

            for identifier, value in zip(chunk, values):
                result.values[identifier] = value

        return await self._run(identifiers, _process, budget)

    async def fetch_each(
        self,
        identifiers: Iterable[str],
        item_fn: ItemFn,
        budget: RunBudget | None = None,
    ) -> BatchResult:
        """One call per identifier; the calls of a chunk run concurrently.

        A failing item never affects its siblings.
        """

        async def _process(chunk: list[str], result: BatchResult) -> None:
            outcomes = await asyncio.gather(*(
                self._with_retry(identifier, functools.partial(item_fn, identifier))
                for identifier in chunk
            ))
            for identifier, outcome in zip(chunk, outcomes):
                if isinstance(outcome, Failure):
                    logger.debug("%s failed: %s", identifier, outcome.cause)
                    result.failed.append(identifier)
                else:
                    result.values[identifier] = outcome.value

        return await self._run(identifiers, _process, budget)

    async def _run(
        self,
        identifiers: Iterable[str],
        process: Callable[[list[str], BatchResult], Awaitable[None]],
        budget: RunBudget | None,
    ) -> BatchResult:
        unique = list(dict.fromkeys(identifiers))
        # Every identifier starts absent; successful fetches overwrite.
        result: BatchResult = BatchResult(values=dict.fromkeys(unique))
        chunks = chunked(unique, self.batch_size)
        if not chunks:
            return result

        pending = iter(chunks)

        async def _worker() -> None:
            # Workers share one iterator, so each chunk is taken exactly once.
            for chunk in pending:
                if budget is not None and budget.expired():
                    result.skipped.extend(chunk)
                    continue

                result.chunks_issued += 1
                try:
                    await process(chunk, result)
                except Exception as e:
                    logger.error("Chunk processing raised %s: %s", type(e).__name__, e)
                    result.failed.extend(i for i in chunk if i not in result.failed)
                    for identifier in chunk:
                        result.values[identifier] = None

                if self.batch_delay > 0:
                    await self._sleep(self.batch_delay)

        workers = min(self.concurrency, len(chunks))
        await asyncio.gather(*(_worker() for _ in range(workers)))

        if result.skipped:
            logger.warning(
                "Run budget spent: %d identifiers skipped", len(result.skipped)
            )
        logger.info(
            "Batch fetch: %d identifiers in %d chunks — %d ok, %d failed, %d skipped",
            len(unique), result.chunks_issued, result.succeeded,
            len(result.failed), len(result.skipped),
        )
        return result

    async def _with_retry(
        self,
        label: str,
        call: Callable[[], Awaitable[RpcResult]],
    ) -> RpcResult:
        """Call, retrying only on rate-limited Failures."""
        outcome: RpcResult = Failure(cause=f"{label}: not attempted")
        for attempt in range(self.max_retries):
            outcome = await call()
            if not (isinstance(outcome, Failure) and outcome.rate_limited):
                return outcome

            if attempt + 1 < self.max_retries:
                backoff = self.backoff_base * (2 ** attempt)
                logger.warning(
                    "Rate limited on %s, retrying in %.1fs (attempt %d/%d)",
                    label, backoff, attempt + 1, self.max_retries,
                )
                await self._sleep(backoff)

        logger.warning("Giving up on %s after %d rate-limited attempts", label, self.max_retries)
        return outcome
