"""Validator listing sources, tried in a declared order.

Readers of the validator list (the ``validators`` command) want an answer
even when the store is empty or the RPC endpoint is down. Instead of
scattering fallbacks across callers, each way of producing the list is a
source and ``LayeredSource`` walks them in order:

    StoreSource → RemoteSource → SyntheticSource

The result names the layer that answered, so synthetic data is never
mistaken for observed data.
"""

import asyncio
import logging
import random
from dataclasses import asdict, dataclass
from typing import Protocol

from stakescope.clients.solana import SolanaRPCClient
from stakescope.engine.scoring import Scorer
from stakescope.errors import StakeScopeError
from stakescope.models import LAMPORTS_PER_SOL, ScoredValidator, ValidatorSnapshot
from stakescope.pipeline.processor import build_snapshots
from stakescope.result import Failure
from stakescope.storage.database import Database

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ValidatorSummary:
    """One row of the validator listing."""

    pubkey: str
    vote_pubkey: str
    name: str | None
    commission: int
    activated_stake: int
    delinquent: bool
    performance_score: float | None
    risk_score: float | None
    apy: float | None

    @property
    def stake_sol(self) -> float:
        return self.activated_stake / LAMPORTS_PER_SOL

    @classmethod
    def from_scored(cls, scored: ScoredValidator) -> "ValidatorSummary":
        snap = scored.snapshot
        return cls(
            pubkey=snap.identity_pubkey,
            vote_pubkey=snap.vote_pubkey,
            name=snap.name,
            commission=snap.commission,
            activated_stake=snap.activated_stake,
            delinquent=snap.delinquent,
            performance_score=scored.metrics.performance_score,
            risk_score=scored.metrics.risk_score,
            apy=scored.metrics.apy,
        )

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass
class SourceResult:
    source: str
    validators: list[ValidatorSummary]


class SourceUnavailableError(StakeScopeError):
    """No layer produced a validator listing."""


class ValidatorSource(Protocol):
    name: str

    async def load(self, limit: int) -> list[ValidatorSummary]: ...


def _by_stake(summaries: list[ValidatorSummary], limit: int) -> list[ValidatorSummary]:
    return sorted(summaries, key=lambda v: v.activated_stake, reverse=True)[:limit]


class StoreSource:
    """Validators persisted by earlier pipeline runs."""

    name = "store"

    def __init__(self, database: Database) -> None:
        self.database = database

    async def load(self, limit: int) -> list[ValidatorSummary]:
        rows = await asyncio.to_thread(self.database.top_validators, limit)
        return [
            ValidatorSummary(
                pubkey=row.pubkey,
                vote_pubkey=row.vote_pubkey,
                name=row.name,
                commission=row.commission,
                activated_stake=row.activated_stake,
                delinquent=row.delinquent,
                performance_score=row.performance_score,
                risk_score=row.risk_score,
                apy=row.apy,
            )
            for row in rows
        ]


class RemoteSource:
    """Live vote accounts, scored on the fly (nothing is persisted)."""

    name = "remote"

    def __init__(self, client: SolanaRPCClient, scorer: Scorer | None = None) -> None:
        self.client = client
        self.scorer = scorer or Scorer()

    async def load(self, limit: int) -> list[ValidatorSummary]:
        accounts, epoch_info = await asyncio.gather(
            self.client.get_vote_accounts(),
            self.client.get_epoch_info(),
        )
        for outcome in (accounts, epoch_info):
            if isinstance(outcome, Failure):
                raise StakeScopeError(outcome.cause)

        current_slot = epoch_info.value.absolute_slot
        summaries = [
            ValidatorSummary.from_scored(ScoredValidator(
                snapshot=snapshot,
                metrics=self.scorer.score(snapshot, current_slot),
                risk=self.scorer.assess_risk(snapshot, current_slot),
            ))
            for snapshot in build_snapshots(accounts.value)
        ]
        return _by_stake(summaries, limit)


class SyntheticSource:
    """Deterministic placeholder validators for demos and empty installs.

    Args:
        count: Validators to generate (default: 20)
        seed: RNG seed; the same seed always yields the same listing
        current_slot: Slot the generated last votes are relative to
    """

    name = "synthetic"

    def __init__(self, count: int = 20, seed: int = 0, current_slot: int = 250_000_000) -> None:
        self.count = count
        self.seed = seed
        self.current_slot = current_slot
        self.scorer = Scorer()

    def snapshots(self) -> list[ValidatorSnapshot]:
        rng = random.Random(self.seed)
        snapshots = []
        for i in range(self.count):
            delinquent = rng.random() < 0.1
            snapshots.append(ValidatorSnapshot(
                identity_pubkey=f"Synthetic{i:04d}Identity{rng.getrandbits(32):08x}",
                vote_pubkey=f"Synthetic{i:04d}Vote{rng.getrandbits(32):08x}",
                commission=rng.choice([0, 0, 5, 7, 8, 10, 100]),
                activated_stake=rng.randint(1_000, 2_000_000) * LAMPORTS_PER_SOL,
                last_vote=self.current_slot - rng.randint(0, 2_000),
                delinquent=delinquent,
                name=f"Synthetic Validator {i + 1}",
            ))
        return snapshots

    async def load(self, limit: int) -> list[ValidatorSummary]:
        summaries = [
            ValidatorSummary.from_scored(ScoredValidator(
                snapshot=snapshot,
                metrics=self.scorer.score(snapshot, self.current_slot),
                risk=self.scorer.assess_risk(snapshot, self.current_slot),
            ))
            for snapshot in self.snapshots()
        ]
        return _by_stake(summaries, limit)


class LayeredSource:
    """Try sources in order; the first non-empty listing wins.

    Usage:
        layered = LayeredSource([StoreSource(db), RemoteSource(client), SyntheticSource()])
        result = await layered.load(limit=50)
        print(result.source, len(result.validators))
    """

    def __init__(self, sources: list[ValidatorSource]) -> None:
        if not sources:
            raise ValueError("LayeredSource needs at least one source")
        self.sources = sources

    async def load(self, limit: int = 50) -> SourceResult:
        """Return the first non-empty listing.

        Raises:
            SourceUnavailableError: If every layer failed or came back empty
        """
        problems = []
        for source in self.sources:
            try:
                validators = await source.load(limit)
            except Exception as e:
                logger.warning("Source '%s' failed: %s", source.name, e)
                problems.append(f"{source.name}: {e}")
                continue

            if validators:
                logger.info("Loaded %d validators from '%s'", len(validators), source.name)
                return SourceResult(source=source.name, validators=validators)

            logger.info("Source '%s' returned no validators, trying next", source.name)
            problems.append(f"{source.name}: empty")

        raise SourceUnavailableError("No validator source available (" + "; ".join(problems) + ")")
