"""Domain types shared across the pipeline.

ValidatorSnapshot is captured once per run from the vote-account listing and
never mutated; enrichment (metadata, stake state) produces a new instance.
"""

from dataclasses import dataclass, field, replace
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from stakescope.clients.schemas import VoteAccount


LAMPORTS_PER_SOL = 1_000_000_000


@dataclass(frozen=True)
class ValidatorSnapshot:
    """One validator as observed during a single run.

    Attributes:
        identity_pubkey: Node identity key
        vote_pubkey: Vote account key (unique per validator)
        commission: Commission percentage (0-100)
        activated_stake: Active stake in lamports
        last_vote: Slot of the most recent vote
        delinquent: Flagged by the RPC node as not voting
        name: Display name from on-chain validator info, if any
    """

    identity_pubkey: str
    vote_pubkey: str
    commission: int
    activated_stake: int
    last_vote: int
    delinquent: bool
    name: str | None = None
    website: str | None = None
    root_slot: int | None = None
    stake_state: str | None = None
    epoch_credits: tuple[tuple[int, ...], ...] = field(default=(), compare=False)

    @classmethod
    def from_vote_account(cls, account: "VoteAccount", delinquent: bool) -> "ValidatorSnapshot":
        return cls(
            identity_pubkey=account.node_pubkey,
            vote_pubkey=account.vote_pubkey,
            commission=account.commission,
            activated_stake=account.activated_stake,
            last_vote=account.last_vote,
            delinquent=delinquent,
            root_slot=account.root_slot,
            epoch_credits=tuple(tuple(entry) for entry in account.epoch_credits),
        )

    @classmethod
    def from_record(cls, record: dict[str, Any]) -> "ValidatorSnapshot":
        """Rebuild from a flat record (archive row), coercing numeric columns."""

        def _int(value: Any) -> int | None:
            return None if value is None else int(value)

        return cls(
            identity_pubkey=record["identity_pubkey"],
            vote_pubkey=record["vote_pubkey"],
            commission=int(record["commission"]),
            activated_stake=int(record["activated_stake"]),
            last_vote=int(record["last_vote"]),
            delinquent=bool(record["delinquent"]),
            name=record.get("name"),
            website=record.get("website"),
            root_slot=_int(record.get("root_slot")),
            stake_state=record.get("stake_state"),
        )

    def with_updates(self, **changes: Any) -> "ValidatorSnapshot":
        return replace(self, **changes)


@dataclass(frozen=True)
class ValidatorMetrics:
    """Derived scores for one snapshot."""

    performance_score: float
    risk_score: float
    apy: float


@dataclass(frozen=True)
class RiskBreakdown:
    """Risk score with its contributing sub-scores."""

    risk_score: float
    delinquency_risk: float
    concentration_risk: float
    uptime_risk: float


@dataclass(frozen=True)
class ScoredValidator:
    snapshot: ValidatorSnapshot
    metrics: ValidatorMetrics
    risk: RiskBreakdown
    reward: int | None = None
