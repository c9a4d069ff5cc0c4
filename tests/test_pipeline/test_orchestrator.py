"""Tests for Orchestrator — pipeline coordination.

Tests the Orchestrator with a stubbed RPC client and a real SQLite store to
verify:
- collect writes one row per validator per table and is idempotent
- fetch-all enriches names, rewards and stake state and predicts
- base query failures fail the run without writing
- optional failures and a spent budget degrade instead of failing
"""

import base64
import itertools
import time
from unittest.mock import AsyncMock, MagicMock

import pytest

from stakescope.clients.schemas import (
    AccountInfo,
    BlockSummary,
    EpochInfo,
    InflationReward,
    StakeActivation,
    Supply,
    VoteAccounts,
)
from stakescope.config import Settings
from stakescope.errors import ConfigurationError
from stakescope.pipeline.batching import BatchFetcher
from stakescope.pipeline.orchestrator import Orchestrator
from stakescope.result import Failure, Success
from stakescope.storage.database import Database
from stakescope.storage.models import (
    BlockRecord,
    EpochInfoRecord,
    ModelPrediction,
    RewardHistory,
    RiskAssessment,
    RpcCacheEntry,
    Validator,
    ValidatorHistory,
)

# --- Fixtures ---

VOTE_ACCOUNTS = VoteAccounts.model_validate({
    "current": [
        {"votePubkey": "Vote1", "nodePubkey": "Node1", "activatedStake": 600_000_000_000,
         "commission": 12, "lastVote": 9_950},
        {"votePubkey": "Vote2", "nodePubkey": "Node2", "activatedStake": 2_000_000,
         "commission": 3, "lastVote": 9_990},
    ],
    "delinquent": [
        {"votePubkey": "Vote3", "nodePubkey": "Node3", "activatedStake": 5_000,
         "commission": 0, "lastVote": 100},
    ],
})

EPOCH_INFO = EpochInfo(epoch=700, slotIndex=10, slotsInEpoch=432_000, absoluteSlot=10_000)

NAMES = {"Node1": "Alpha", "Node2": "Beta"}


def account_for(pubkey: str):
    if pubkey not in NAMES:
        return Success(None)
    raw = b"\x00\x01" + f'{{"name":"{NAMES[pubkey]}","website":"https://{pubkey}.example"}}'.encode()
    return Success(AccountInfo(
        data=[base64.b64encode(raw).decode(), "base64"],
        lamports=1,
        owner="Config1111111111111111111111111111111111111",
    ))


def rewards_for(keys: list[str], epoch: int):
    return Success([
        InflationReward(epoch=epoch, effectiveSlot=1, amount=1_000 * (i + 1), postBalance=0)
        if key != "Vote3" else None
        for i, key in enumerate(keys)
    ])


def make_client() -> MagicMock:
    """Stub exposing the SolanaRPCClient surface the orchestrator uses."""
    client = MagicMock()
    client.endpoint = "https://rpc.example.com"
    client.get_vote_accounts = AsyncMock(return_value=Success(VOTE_ACCOUNTS))
    client.get_epoch_info = AsyncMock(return_value=Success(EPOCH_INFO))
    client.get_supply = AsyncMock(return_value=Success(Supply(total=600, circulating=500)))
    client.get_current_tps = AsyncMock(return_value=Success(2_800.0))
    client.get_recent_blocks = AsyncMock(return_value=Success([
        BlockSummary(slot=9_999, block_time=1_700_000_000, block_height=9_000,
                     leader="Node1", transactions=10, fees=0.0005),
        BlockSummary(slot=9_998, block_time=None, block_height=8_999,
                     leader="Unknown", transactions=0, fees=0.0),
    ]))
    client.get_inflation_reward = AsyncMock(side_effect=rewards_for)
    client.get_account_info = AsyncMock(side_effect=account_for)
    client.get_stake_activation = AsyncMock(side_effect=lambda key: (
        Failure(cause="not a stake account") if key == "Vote3"
        else Success(StakeActivation(state="active", active=1, inactive=0))
    ))
    return client


@pytest.fixture
def cfg() -> Settings:
    return Settings(batch_delay=0, recent_blocks=2, archive_dir=None, run_timeout=600)


@pytest.fixture
def database(tmp_path):
    db = Database(f"sqlite:///{tmp_path / 'stakescope.db'}")
    db.create_all()
    yield db
    db.dispose()


def make_orchestrator(client, database, cfg, **kwargs) -> Orchestrator:
    fetcher = BatchFetcher(batch_size=2, batch_delay=0, sleep=AsyncMock())
    return Orchestrator(client, database, settings=cfg, fetcher=fetcher, **kwargs)


class TestCollect:
    @pytest.mark.asyncio
    async def test_one_row_per_validator_per_table(self, database, cfg) -> None:
        result = await make_orchestrator(make_client(), database, cfg).collect()

        assert result.success is True
        assert result.partial is False
        assert result.epoch == 700
        assert result.validators_processed == 3
        for model in (Validator, ValidatorHistory, RiskAssessment, RewardHistory):
            assert database.count(model) == 3
        assert database.count(EpochInfoRecord) == 1
        assert database.count(BlockRecord) == 2
        assert result.records_failed == 0
        assert result.records_stored == result.records_attempted == 3 * 4 + 1 + 2

    @pytest.mark.asyncio
    async def test_scores_persisted(self, database, cfg) -> None:
        await make_orchestrator(make_client(), database, cfg).collect()

        rows = {row.pubkey: row for row in database.all_rows(Validator)}
        assert rows["Node1"].risk_score == 55
        assert rows["Node2"].performance_score == 95
        assert rows["Node3"].delinquent is True
        assert rows["Node3"].risk_score == 75
        assert rows["Node1"].name is None

        rewards = database.all_rows(RewardHistory)
        assert {r.reward for r in rewards} == {None}

        epoch_row = database.all_rows(EpochInfoRecord)[0]
        assert epoch_row.tps == 2_800.0
        assert epoch_row.total_supply == 600

    @pytest.mark.asyncio
    async def test_idempotent_across_runs(self, database, cfg) -> None:
        orchestrator = make_orchestrator(make_client(), database, cfg)
        await orchestrator.collect()
        first = {r.pubkey: (r.performance_score, r.risk_score, r.apy) for r in database.all_rows(Validator)}

        result = await orchestrator.collect()

        second = {r.pubkey: (r.performance_score, r.risk_score, r.apy) for r in database.all_rows(Validator)}
        assert result.success
        assert first == second
        for model in (Validator, ValidatorHistory, RiskAssessment, RewardHistory):
            assert database.count(model) == 3
        assert database.count(EpochInfoRecord) == 1

    @pytest.mark.asyncio
    async def test_collect_does_not_fetch_enrichment(self, database, cfg) -> None:
        client = make_client()
        await make_orchestrator(client, database, cfg).collect()

        client.get_inflation_reward.assert_not_awaited()
        client.get_account_info.assert_not_awaited()


class TestBaseQueryFailure:
    @pytest.mark.asyncio
    async def test_vote_accounts_failure_fails_run(self, database, cfg) -> None:
        client = make_client()
        client.get_vote_accounts.return_value = Failure(cause="HTTP 503")

        result = await make_orchestrator(client, database, cfg).collect()

        assert result.success is False
        assert any("getVoteAccounts" in e for e in result.errors)
        assert database.count(Validator) == 0
        client.get_supply.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_epoch_info_failure_fails_run(self, database, cfg) -> None:
        client = make_client()
        client.get_epoch_info.return_value = Failure(cause="timeout")

        result = await make_orchestrator(client, database, cfg).fetch_all()

        assert result.success is False
        assert result.epoch is None
        assert database.count(EpochInfoRecord) == 0


class TestOptionalFailures:
    @pytest.mark.asyncio
    async def test_network_state_gaps_are_tolerated(self, database, cfg) -> None:
        client = make_client()
        client.get_supply.return_value = Failure(cause="boom")
        client.get_current_tps.return_value = Failure(cause="boom")
        client.get_recent_blocks.return_value = Failure(cause="boom")

        result = await make_orchestrator(client, database, cfg).collect()

        assert result.success is True
        epoch_row = database.all_rows(EpochInfoRecord)[0]
        assert epoch_row.tps is None
        assert epoch_row.total_supply is None
        assert database.count(BlockRecord) == 0


class TestConfiguration:
    @pytest.mark.asyncio
    async def test_bad_endpoint_raises_before_fetch(self, database, cfg) -> None:
        client = make_client()
        client.endpoint = "ftp://rpc.example.com"

        with pytest.raises(ConfigurationError):
            await make_orchestrator(client, database, cfg).collect()

        client.get_vote_accounts.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_missing_database_raises(self, cfg) -> None:
        client = make_client()
        orchestrator = Orchestrator(client, None, settings=cfg)

        with pytest.raises(ConfigurationError):
            await orchestrator.collect()


class TestFetchAll:
    @pytest.mark.asyncio
    async def test_enrichment_persisted(self, database, cfg) -> None:
        result = await make_orchestrator(make_client(), database, cfg).fetch_all()

        assert result.success is True
        # Vote3 stake activation failed
        assert result.fetch_failures == 1
        assert result.partial is True

        rows = {row.pubkey: row for row in database.all_rows(Validator)}
        assert rows["Node1"].name == "Alpha"
        assert rows["Node1"].website == "https://Node1.example"
        assert rows["Node3"].name is None
        assert rows["Node2"].stake_state == "active"
        assert rows["Node3"].stake_state is None

        rewards = {r.validator_pubkey: r.reward for r in database.all_rows(RewardHistory)}
        # Chunks of 2: [Vote1, Vote2] then [Vote3]; Vote3 has no reward
        assert rewards == {"Node1": 1_000, "Node2": 2_000, "Node3": 0}

    @pytest.mark.asyncio
    async def test_rewards_requested_for_previous_epoch(self, database, cfg) -> None:
        client = make_client()
        await make_orchestrator(client, database, cfg).fetch_all()

        epochs = {call.args[1] for call in client.get_inflation_reward.await_args_list}
        assert epochs == {699}

    @pytest.mark.asyncio
    async def test_collect_keeps_enriched_metadata(self, database, cfg) -> None:
        """A later collect run does not wipe names or rewards."""
        orchestrator = make_orchestrator(make_client(), database, cfg)
        await orchestrator.fetch_all()
        await orchestrator.collect()

        rows = {row.pubkey: row for row in database.all_rows(Validator)}
        assert rows["Node1"].name == "Alpha"
        rewards = {r.validator_pubkey: r.reward for r in database.all_rows(RewardHistory)}
        assert rewards["Node2"] == 2_000

    @pytest.mark.asyncio
    async def test_predictions_need_history(self, database, cfg) -> None:
        result = await make_orchestrator(make_client(), database, cfg).fetch_all()

        assert database.count(ModelPrediction) == 0
        assert ModelPrediction.__tablename__ not in result.tables

    @pytest.mark.asyncio
    async def test_predictions_from_stored_history(self, database, cfg) -> None:
        database.upsert(RewardHistory, [
            {"validator_pubkey": "Node1", "epoch": epoch, "reward": 1, "apy": apy}
            for epoch, apy in ((698, 5.5), (699, 5.6))
        ])

        result = await make_orchestrator(make_client(), database, cfg).fetch_all()

        predictions = database.all_rows(ModelPrediction)
        assert len(predictions) == 1
        prediction = predictions[0]
        assert prediction.validator_pubkey == "Node1"
        assert prediction.epoch == 701
        # current APY 5.72 (commission 12); trend 0.5 * (5.72 - 5.6)
        assert prediction.predicted_apy == pytest.approx(5.72 + 0.5 * (5.72 - 5.6))
        assert result.tables[ModelPrediction.__tablename__].stored == 1


class TestRunBudget:
    @pytest.mark.asyncio
    async def test_spent_budget_persists_scores(self, database) -> None:
        cfg = Settings(batch_delay=0, recent_blocks=2, archive_dir=None, run_timeout=1)
        ticks = itertools.count(0, 5)
        client = make_client()

        orchestrator = make_orchestrator(client, database, cfg, clock=lambda: next(ticks))
        result = await orchestrator.fetch_all()

        assert result.success is True
        assert result.timed_out is True
        assert result.partial is True
        client.get_supply.assert_not_awaited()
        client.get_account_info.assert_not_awaited()
        assert database.count(Validator) == 3


class TestArchive:
    @pytest.mark.asyncio
    async def test_snapshots_archived(self, database, cfg, tmp_path) -> None:
        from stakescope.cache.parquet_store import ParquetStore

        archive = ParquetStore(tmp_path / "archive")
        await make_orchestrator(make_client(), database, cfg, archive=archive).collect()

        assert await archive.list_epochs() == [700]


class TestCachePurge:
    @pytest.mark.asyncio
    async def test_expired_cache_rows_purged_with_database_backend(self, database, cfg) -> None:
        cfg = cfg.model_copy(update={"cache_backend": "database"})
        database.put_cache_entry("getSlot:[]", 10_000, 0.0)
        database.put_cache_entry("getSupply:[]", {"total": 600}, time.time() + 3_600)

        await make_orchestrator(make_client(), database, cfg).collect()

        assert database.get_cache_entry("getSlot:[]") is None
        assert database.get_cache_entry("getSupply:[]") is not None

    @pytest.mark.asyncio
    async def test_memory_backend_leaves_table_alone(self, database, cfg) -> None:
        cfg = cfg.model_copy(update={"cache_backend": "memory"})
        database.put_cache_entry("getSlot:[]", 10_000, 0.0)

        await make_orchestrator(make_client(), database, cfg).collect()

        assert database.count(RpcCacheEntry) == 1
