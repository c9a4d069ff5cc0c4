"""Processor — snapshots → scores → store records.

Pure transformation step between fetching and reconciliation:

    VoteAccounts → ValidatorSnapshot → ScoredValidator → {table: rows}

Every row carries the run timestamp explicitly, so re-running with the same
inputs and timestamp writes identical rows.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any

from stakescope.clients.schemas import BlockSummary, EpochInfo, Supply, VoteAccounts
from stakescope.engine.scoring import Scorer
from stakescope.models import ScoredValidator, ValidatorSnapshot
from stakescope.storage.models import (
    Base,
    BlockRecord,
    EpochInfoRecord,
    RewardHistory,
    RiskAssessment,
    Validator,
    ValidatorHistory,
)

logger = logging.getLogger(__name__)

Records = dict[type[Base], list[dict[str, Any]]]


@dataclass
class NetworkState:
    """Optional network-wide observations of one run (each may be missing)."""

    supply: Supply | None = None
    tps: float | None = None
    blocks: list[BlockSummary] | None = None


def build_snapshots(accounts: VoteAccounts) -> list[ValidatorSnapshot]:
    """One snapshot per vote account; delinquent list entries are flagged."""
    snapshots = [ValidatorSnapshot.from_vote_account(a, delinquent=False) for a in accounts.current]
    snapshots.extend(
        ValidatorSnapshot.from_vote_account(a, delinquent=True) for a in accounts.delinquent
    )
    return snapshots


class Processor:
    """Scores snapshots and shapes them into table rows.

    Args:
        scorer: Scoring engine (default: Scorer())

    Usage:
        processor = Processor()
        scored = processor.score_all(snapshots, current_slot=epoch_info.absolute_slot)
        records = processor.build_records(scored, epoch_info, NetworkState(), now)
    """

    def __init__(self, scorer: Scorer | None = None) -> None:
        self.scorer = scorer or Scorer()

    def score_all(
        self,
        snapshots: list[ValidatorSnapshot],
        current_slot: int,
        rewards: dict[str, int | None] | None = None,
    ) -> list[ScoredValidator]:
        """Score every snapshot.

        Args:
            snapshots: Validators observed this run
            current_slot: Absolute slot used for vote-lag scoring
            rewards: Vote pubkey → reward (lamports) for the previous epoch
        """
        rewards = rewards or {}
        return [
            ScoredValidator(
                snapshot=snapshot,
                metrics=self.scorer.score(snapshot, current_slot),
                risk=self.scorer.assess_risk(snapshot, current_slot),
                reward=rewards.get(snapshot.vote_pubkey),
            )
            for snapshot in snapshots
        ]

    def build_records(
        self,
        scored: list[ScoredValidator],
        epoch_info: EpochInfo,
        network: NetworkState,
        recorded_at: datetime | None = None,
        include_metadata: bool = False,
        include_rewards: bool = False,
    ) -> Records:
        """Shape a run's results into rows per table.

        Args:
            scored: Scored validators
            epoch_info: Epoch the run observed
            network: Supply / TPS / recent blocks (each optional)
            recorded_at: Run timestamp (default: now, UTC)
            include_metadata: Write name/website/stake_state columns. Off for
                runs that did not enrich, so stored metadata is kept.
            include_rewards: Reward rows carry the observed reward (missing
                reward ⇒ 0). Otherwise the reward column is left out: NULL
                on insert, unchanged on update
        """
        now = recorded_at or datetime.now(timezone.utc)
        epoch = epoch_info.epoch

        validators, history, risks, rewards = [], [], [], []
        for item in scored:
            snap, metrics, risk = item.snapshot, item.metrics, item.risk

            row = {
                "pubkey": snap.identity_pubkey,
                "vote_pubkey": snap.vote_pubkey,
                "commission": snap.commission,
                "activated_stake": snap.activated_stake,
                "last_vote": snap.last_vote,
                "root_slot": snap.root_slot,
                "delinquent": snap.delinquent,
                "performance_score": metrics.performance_score,
                "risk_score": metrics.risk_score,
                "apy": metrics.apy,
                "updated_at": now,
            }
            if include_metadata:
                row.update(name=snap.name, website=snap.website, stake_state=snap.stake_state)
            validators.append(row)

            history.append({
                "validator_pubkey": snap.identity_pubkey,
                "epoch": epoch,
                "commission": snap.commission,
                "activated_stake": snap.activated_stake,
                "delinquent": snap.delinquent,
                "uptime": None,
                "skip_rate": None,
                "performance_score": metrics.performance_score,
                "recorded_at": now,
            })

            risks.append({
                "validator_pubkey": snap.identity_pubkey,
                "epoch": epoch,
                "risk_score": risk.risk_score,
                "delinquency_risk": risk.delinquency_risk,
                "concentration_risk": risk.concentration_risk,
                "uptime_risk": risk.uptime_risk,
                "skip_rate_risk": None,
                "commission_change_risk": None,
                "recorded_at": now,
            })

            reward_row = {
                "validator_pubkey": snap.identity_pubkey,
                "epoch": epoch,
                "apy": metrics.apy,
                "recorded_at": now,
            }
            if include_rewards:
                reward_row["reward"] = item.reward or 0
            rewards.append(reward_row)

        records: Records = {
            Validator: validators,
            ValidatorHistory: history,
            RiskAssessment: risks,
            RewardHistory: rewards,
            EpochInfoRecord: [self._epoch_row(epoch_info, network, scored, now)],
        }
        if network.blocks:
            records[BlockRecord] = [self._block_row(block) for block in network.blocks]

        logger.debug(
            "Built records: %s",
            {model.__tablename__: len(rows) for model, rows in records.items()},
        )
        return records

    @staticmethod
    def _epoch_row(
        epoch_info: EpochInfo,
        network: NetworkState,
        scored: list[ScoredValidator],
        now: datetime,
    ) -> dict[str, Any]:
        return {
            "epoch": epoch_info.epoch,
            "slot_index": epoch_info.slot_index,
            "slots_in_epoch": epoch_info.slots_in_epoch,
            "absolute_slot": epoch_info.absolute_slot,
            "block_height": epoch_info.block_height,
            "transaction_count": epoch_info.transaction_count,
            "tps": network.tps,
            "total_supply": network.supply.total if network.supply else None,
            "circulating_supply": network.supply.circulating if network.supply else None,
            "validator_count": len(scored),
            "active_stake": sum(
                s.snapshot.activated_stake for s in scored if not s.snapshot.delinquent
            ),
            "recorded_at": now,
        }

    @staticmethod
    def _block_row(block: BlockSummary) -> dict[str, Any]:
        block_time = None
        if block.block_time is not None:
            block_time = datetime.fromtimestamp(block.block_time, tz=timezone.utc)
        return {
            "slot": block.slot,
            "block_time": block_time,
            "block_height": block.block_height,
            "leader": block.leader,
            "transactions": block.transactions,
            "fees": block.fees,
        }
