"""Orchestrator — Main pipeline coordinator.

Two run modes:
  collect:   base queries → optional network state → score → reconcile
  fetch-all: collect + batched enrichment (rewards, metadata, stake state)
             + next-epoch predictions

Failure handling per stage:
  - configuration problems raise ConfigurationError before any fetch
  - the two base queries (vote accounts, epoch info) are required; if either
    fails the run returns success=False without writing anything
  - optional network state and enrichment degrade to missing values
  - persistence failures are counted per batch by the reconciler

Usage:
    async with SolanaRPCClient(settings.rpc_url) as client:
        orchestrator = Orchestrator(client, Database(settings.database_url))
        result = await orchestrator.collect()
        print(result.to_dict())
"""

import asyncio
import logging
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

from sqlalchemy.exc import SQLAlchemyError

from stakescope.cache.parquet_store import ParquetStore
from stakescope.cache.response_cache import (
    CacheTTL,
    DatabaseCacheBackend,
    MemoryCacheBackend,
    ResponseCache,
)
from stakescope.clients.schemas import EpochInfo, VoteAccounts
from stakescope.clients.solana import SolanaRPCClient
from stakescope.config import Settings, settings as default_settings
from stakescope.engine.metadata import decode_validator_info
from stakescope.engine.prediction import predict_next_epoch
from stakescope.errors import ConfigurationError
from stakescope.models import ScoredValidator, ValidatorSnapshot
from stakescope.pipeline.batching import BatchFetcher, RunBudget
from stakescope.pipeline.processor import NetworkState, Processor, build_snapshots
from stakescope.result import Failure
from stakescope.storage.database import Database
from stakescope.storage.models import ModelPrediction
from stakescope.storage.reconciler import Reconciler, SyncResult

logger = logging.getLogger(__name__)

MODE_COLLECT = "collect"
MODE_FETCH_ALL = "fetch-all"

# Stored observations consulted per validator for the prediction trend
PREDICTION_HISTORY = 10


@dataclass
class PipelineRunResult:
    """Outcome of one pipeline run.

    ``success`` means the run completed: base queries answered and records
    handed to the store. ``partial`` flags a completed run that still lost
    something (fetch failures, failed batches, spent budget).
    """

    mode: str
    success: bool = False
    epoch: int | None = None
    validators_processed: int = 0
    records_attempted: int = 0
    records_stored: int = 0
    records_failed: int = 0
    fetch_failures: int = 0
    timed_out: bool = False
    tables: dict[str, SyncResult] = field(default_factory=dict)
    errors: list[str] = field(default_factory=list)
    duration_seconds: float = 0.0

    @property
    def partial(self) -> bool:
        return self.success and (
            self.records_failed > 0 or self.fetch_failures > 0 or self.timed_out
        )

    def add_tables(self, tables: dict[str, SyncResult]) -> None:
        for name, sync in tables.items():
            self.tables[name] = sync
            self.records_attempted += sync.attempted
            self.records_stored += sync.stored
            self.records_failed += sync.failed
            self.errors.extend(sync.errors)

    def to_dict(self) -> dict[str, Any]:
        return {
            "mode": self.mode,
            "success": self.success,
            "partial": self.partial,
            "epoch": self.epoch,
            "validators_processed": self.validators_processed,
            "records_attempted": self.records_attempted,
            "records_stored": self.records_stored,
            "records_failed": self.records_failed,
            "fetch_failures": self.fetch_failures,
            "timed_out": self.timed_out,
            "tables": {name: sync.to_dict() for name, sync in self.tables.items()},
            "errors": list(self.errors),
            "duration_seconds": round(self.duration_seconds, 3),
        }


def build_cache(cfg: Settings, database: Database | None = None) -> ResponseCache:
    """Response cache on the configured backend."""
    if cfg.cache_backend == "database":
        if database is None:
            raise ConfigurationError("cache_backend 'database' needs a database handle")
        return ResponseCache(DatabaseCacheBackend(database))
    return ResponseCache(MemoryCacheBackend())


def build_client(cfg: Settings, cache: ResponseCache | None = None) -> SolanaRPCClient:
    """RPC client configured from settings (not yet entered)."""
    return SolanaRPCClient(
        endpoint=cfg.rpc_url,
        rate_limit=cfg.rpc_rate_limit,
        timeout=cfg.rpc_timeout,
        cache=cache,
        ttl_overrides={
            CacheTTL.SHORT: cfg.cache_ttl_short,
            CacheTTL.MEDIUM: cfg.cache_ttl_medium,
            CacheTTL.LONG: cfg.cache_ttl_long,
        },
    )


class Orchestrator:
    """Main pipeline orchestrator for StakeScope.

    Coordinates client, batch fetcher, processor and reconciler. The store
    handle is passed in; nothing here reaches for a global connection.

    Args:
        client: Entered SolanaRPCClient
        database: Store handle
        settings: Configuration (default: global settings)
        fetcher: Batch fetcher (default: built from settings)
        reconciler: Reconciler (default: built from settings)
        processor: Processor (default: Processor())
        archive: Optional Parquet snapshot archive (default: from
            settings.archive_dir)
        clock: Monotonic clock for the run budget
    """

    def __init__(
        self,
        client: SolanaRPCClient,
        database: Database,
        settings: Settings | None = None,
        fetcher: BatchFetcher | None = None,
        reconciler: Reconciler | None = None,
        processor: Processor | None = None,
        archive: ParquetStore | None = None,
        clock=time.monotonic,
    ) -> None:
        self.client = client
        self.database = database
        self.settings = settings or default_settings
        cfg = self.settings
        self.fetcher = fetcher or BatchFetcher(
            batch_size=cfg.batch_size,
            max_retries=cfg.max_retries,
            batch_delay=cfg.batch_delay,
            backoff_base=cfg.backoff_base,
            concurrency=cfg.fetch_concurrency,
        )
        self.reconciler = reconciler or Reconciler(database, batch_size=cfg.sync_batch_size)
        self.processor = processor or Processor()
        if archive is None and cfg.archive_dir:
            archive = ParquetStore(cfg.archive_dir)
        self.archive = archive
        self._clock = clock

    async def collect(self) -> PipelineRunResult:
        """Snapshot, score and persist the validator set."""
        return await self._run(MODE_COLLECT)

    async def fetch_all(self) -> PipelineRunResult:
        """collect() plus rewards, metadata, stake state and predictions."""
        return await self._run(MODE_FETCH_ALL)

    def validate_config(self) -> None:
        """Raise ConfigurationError if the run cannot start."""
        if self.client is None:
            raise ConfigurationError("No RPC client configured")
        endpoint = getattr(self.client, "endpoint", "")
        if not endpoint or not str(endpoint).startswith(("http://", "https://")):
            raise ConfigurationError(f"RPC endpoint must be an http(s) URL, got '{endpoint}'")
        if self.database is None:
            raise ConfigurationError("No database configured")
        if self.settings.run_timeout <= 0:
            raise ConfigurationError("run_timeout must be > 0")

    async def _run(self, mode: str) -> PipelineRunResult:
        self.validate_config()

        started = self._clock()
        budget = RunBudget.start(self.settings.run_timeout, clock=self._clock)
        result = PipelineRunResult(mode=mode)
        recorded_at = datetime.now(timezone.utc)
        logger.info("Starting %s run", mode)

        # --- Base queries (required) ---
        accounts_result, epoch_result = await asyncio.gather(
            self.client.get_vote_accounts(),
            self.client.get_epoch_info(),
        )
        for name, outcome in (("getVoteAccounts", accounts_result), ("getEpochInfo", epoch_result)):
            if isinstance(outcome, Failure):
                result.errors.append(f"{name}: {outcome.cause}")
        if result.errors:
            logger.error("Base queries failed, aborting run: %s", "; ".join(result.errors))
            result.duration_seconds = self._clock() - started
            return result

        accounts: VoteAccounts = accounts_result.value
        epoch_info: EpochInfo = epoch_result.value
        result.epoch = epoch_info.epoch

        snapshots = build_snapshots(accounts)
        logger.info(
            "Epoch %d: %d validators (%d delinquent)",
            epoch_info.epoch, len(snapshots), len(accounts.delinquent),
        )

        # --- Optional network state ---
        network = await self._network_state(budget)

        # --- Enrichment (fetch-all only) ---
        rewards: dict[str, int | None] = {}
        if mode == MODE_FETCH_ALL:
            snapshots, rewards = await self._enrich(snapshots, epoch_info.epoch, budget, result)

        result.timed_out = budget.expired()
        if result.timed_out:
            logger.warning("Run budget spent; persisting what was scored")

        # --- Score + persist ---
        scored = self.processor.score_all(snapshots, epoch_info.absolute_slot, rewards)
        result.validators_processed = len(scored)

        records = self.processor.build_records(
            scored,
            epoch_info,
            network,
            recorded_at=recorded_at,
            include_metadata=mode == MODE_FETCH_ALL,
            include_rewards=mode == MODE_FETCH_ALL,
        )
        result.add_tables(await self.reconciler.reconcile_many(records))

        if mode == MODE_FETCH_ALL:
            result.add_tables(await self._predict(scored, epoch_info.epoch, recorded_at))

        await self._archive(epoch_info.epoch, snapshots, result)
        await self._purge_cache()

        result.success = True
        result.duration_seconds = self._clock() - started
        logger.info(
            "%s run done in %.1fs: %d validators, %d/%d records stored, %d failed, "
            "%d fetch failures%s",
            mode, result.duration_seconds, result.validators_processed,
            result.records_stored, result.records_attempted, result.records_failed,
            result.fetch_failures, " (timed out)" if result.timed_out else "",
        )
        return result

    async def _purge_cache(self) -> None:
        """Drop expired rows from the shared rpc_cache table."""
        if self.settings.cache_backend != "database":
            return
        try:
            await asyncio.to_thread(self.database.purge_expired_cache, time.time())
        except SQLAlchemyError as e:
            logger.warning("Cache purge failed: %s", e)

    async def _network_state(self, budget: RunBudget) -> NetworkState:
        """Supply, throughput and recent blocks. Each failure leaves a gap."""
        network = NetworkState()
        if budget.expired():
            return network

        cfg = self.settings
        supply, tps = await asyncio.gather(
            self.client.get_supply(),
            self.client.get_current_tps(cfg.performance_samples),
        )
        if isinstance(supply, Failure):
            logger.warning("Supply unavailable: %s", supply.cause)
        else:
            network.supply = supply.value
        if isinstance(tps, Failure):
            logger.warning("TPS unavailable: %s", tps.cause)
        else:
            network.tps = tps.value

        if cfg.recent_blocks > 0 and not budget.expired():
            blocks = await self.client.get_recent_blocks(cfg.recent_blocks)
            if isinstance(blocks, Failure):
                logger.warning("Recent blocks unavailable: %s", blocks.cause)
            else:
                network.blocks = blocks.value
        return network

    async def _enrich(
        self,
        snapshots: list[ValidatorSnapshot],
        epoch: int,
        budget: RunBudget,
        result: PipelineRunResult,
    ) -> tuple[list[ValidatorSnapshot], dict[str, int | None]]:
        """Batched per-validator lookups. Returns enriched snapshots and rewards."""
        vote_keys = [s.vote_pubkey for s in snapshots]
        identity_keys = [s.identity_pubkey for s in snapshots]

        # Rewards are paid at the start of an epoch for the one before it.
        reward_epoch = max(0, epoch - 1)
        logger.info("Fetching inflation rewards for epoch %d...", reward_epoch)
        reward_batch = await self.fetcher.fetch_chunked(
            vote_keys,
            lambda chunk: self.client.get_inflation_reward(chunk, reward_epoch),
            budget=budget,
        )
        rewards = {
            key: (reward.amount if reward is not None else None)
            for key, reward in reward_batch.values.items()
        }

        logger.info("Fetching identity metadata...")
        info_batch = await self.fetcher.fetch_each(
            identity_keys, self.client.get_account_info, budget=budget
        )

        logger.info("Fetching stake activation...")
        stake_batch = await self.fetcher.fetch_each(
            vote_keys, self.client.get_stake_activation, budget=budget
        )

        for batch in (reward_batch, info_batch, stake_batch):
            result.fetch_failures += len(batch.failed)

        enriched = []
        for snapshot in snapshots:
            changes: dict[str, Any] = {}
            account = info_batch.get(snapshot.identity_pubkey)
            if account is not None:
                info = decode_validator_info(account.data)
                if info is not None:
                    changes.update(name=info.name, website=info.website)
            activation = stake_batch.get(snapshot.vote_pubkey)
            if activation is not None:
                changes["stake_state"] = activation.state
            enriched.append(snapshot.with_updates(**changes) if changes else snapshot)

        named = sum(1 for s in enriched if s.name)
        logger.info("Enrichment: %d/%d validators named", named, len(enriched))
        return enriched, rewards

    async def _predict(
        self,
        scored: list[ScoredValidator],
        epoch: int,
        recorded_at: datetime,
    ) -> dict[str, SyncResult]:
        """Next-epoch predictions from stored reward history."""
        pubkeys = [s.snapshot.identity_pubkey for s in scored]
        history = await asyncio.to_thread(
            self.database.recent_rewards, pubkeys, PREDICTION_HISTORY
        )

        rows = []
        for item in scored:
            pubkey = item.snapshot.identity_pubkey
            recent = [row.apy for row in history.get(pubkey, [])]
            prediction = predict_next_epoch(
                pubkey, epoch, item.metrics.apy, item.metrics.risk_score, recent
            )
            if prediction is not None:
                rows.append({**prediction.to_record(), "created_at": recorded_at})

        if not rows:
            logger.info("No validator has enough history for a prediction yet")
            return {}
        logger.info("Predicted epoch %d for %d validators", epoch + 1, len(rows))
        return {ModelPrediction.__tablename__: await self.reconciler.reconcile(ModelPrediction, rows)}

    async def _archive(
        self,
        epoch: int,
        snapshots: list[ValidatorSnapshot],
        result: PipelineRunResult,
    ) -> None:
        if self.archive is None:
            return
        try:
            path = await self.archive.write_snapshots(epoch, snapshots)
        except (OSError, ValueError) as e:
            logger.warning("Snapshot archive failed: %s", e)
            result.errors.append(f"archive: {e}")
            return
        if path is not None:
            logger.info("Archived %d snapshots to %s", len(snapshots), path)
