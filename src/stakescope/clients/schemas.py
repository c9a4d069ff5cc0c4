"""Pydantic models for Solana JSON-RPC response payloads.

Field names follow the wire format (camelCase) through aliases so that raw
``result`` members can be validated directly. Unknown keys are ignored:
providers add fields over time and the pipeline only needs a subset.

RPC Docs: https://solana.com/docs/rpc/http
"""

from pydantic import BaseModel, ConfigDict, Field


class _RPCModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore", frozen=True)


class VoteAccount(_RPCModel):
    """One entry of getVoteAccounts (current or delinquent list)."""

    vote_pubkey: str = Field(alias="votePubkey")
    node_pubkey: str = Field(alias="nodePubkey")
    activated_stake: int = Field(alias="activatedStake", ge=0)
    commission: int = Field(ge=0, le=100)
    last_vote: int = Field(alias="lastVote", ge=0)
    root_slot: int | None = Field(default=None, alias="rootSlot")
    epoch_vote_account: bool = Field(default=True, alias="epochVoteAccount")
    # [epoch, credits, previous_credits] triples, oldest first
    epoch_credits: list[list[int]] = Field(default_factory=list, alias="epochCredits")


class VoteAccounts(_RPCModel):
    """getVoteAccounts result."""

    current: list[VoteAccount] = Field(default_factory=list)
    delinquent: list[VoteAccount] = Field(default_factory=list)


class EpochInfo(_RPCModel):
    """getEpochInfo result."""

    epoch: int
    slot_index: int = Field(alias="slotIndex")
    slots_in_epoch: int = Field(alias="slotsInEpoch")
    absolute_slot: int = Field(alias="absoluteSlot")
    block_height: int | None = Field(default=None, alias="blockHeight")
    transaction_count: int | None = Field(default=None, alias="transactionCount")


class InflationReward(_RPCModel):
    """One non-null entry of getInflationReward."""

    epoch: int
    effective_slot: int = Field(alias="effectiveSlot")
    amount: int
    post_balance: int = Field(alias="postBalance")
    commission: int | None = None


class AccountInfo(_RPCModel):
    """``value`` member of getAccountInfo with base64 encoding."""

    # [payload, encoding]
    data: list[str]
    lamports: int
    owner: str
    executable: bool = False


class StakeActivation(_RPCModel):
    """getStakeActivation result."""

    state: str
    active: int = 0
    inactive: int = 0


class PerformanceSample(_RPCModel):
    """One entry of getRecentPerformanceSamples."""

    slot: int
    num_transactions: int = Field(alias="numTransactions")
    num_slots: int = Field(alias="numSlots")
    sample_period_secs: int = Field(alias="samplePeriodSecs")
    num_non_vote_transactions: int | None = Field(default=None, alias="numNonVoteTransactions")


class BlockReward(_RPCModel):
    pubkey: str
    lamports: int
    reward_type: str | None = Field(default=None, alias="rewardType")


class Block(_RPCModel):
    """Subset of getBlock used to summarise a slot."""

    block_height: int | None = Field(default=None, alias="blockHeight")
    block_time: int | None = Field(default=None, alias="blockTime")
    parent_slot: int | None = Field(default=None, alias="parentSlot")
    transactions: list[dict] = Field(default_factory=list)
    rewards: list[BlockReward] = Field(default_factory=list)


class Supply(_RPCModel):
    """``value`` member of getSupply."""

    total: int
    circulating: int
    non_circulating: int = Field(default=0, alias="nonCirculating")


class BlockSummary(_RPCModel):
    """Per-slot summary derived from getBlock."""

    slot: int
    block_time: int | None = None
    block_height: int
    leader: str
    transactions: int
    fees: float  # SOL
