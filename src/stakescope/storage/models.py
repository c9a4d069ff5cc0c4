"""SQLAlchemy table definitions for the StakeScope store.

Every table uses its natural key as the primary key so that upserts
(``INSERT ... ON CONFLICT (key) DO UPDATE``) are idempotent:

    validators           (pubkey)
    validator_history    (validator_pubkey, epoch)
    rewards_history      (validator_pubkey, epoch)
    risk_assessments     (validator_pubkey, epoch)
    model_predictions    (validator_pubkey, epoch)
    epoch_info           (epoch)
    blocks               (slot)
    rpc_cache            (cache_key)
"""

from datetime import datetime
from typing import Any, Optional

from sqlalchemy import JSON, BigInteger, Boolean, DateTime, Float, Integer, String, func
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

CACHE_KEY_LENGTH = 512


class Base(DeclarativeBase):
    pass


class Validator(Base):
    """Latest known state of a validator, keyed by identity pubkey."""

    __tablename__ = "validators"

    pubkey: Mapped[str] = mapped_column(String(64), primary_key=True)
    vote_pubkey: Mapped[str] = mapped_column(String(64), index=True)
    name: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    website: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    commission: Mapped[int] = mapped_column(Integer)
    activated_stake: Mapped[int] = mapped_column(BigInteger)
    last_vote: Mapped[Optional[int]] = mapped_column(BigInteger, nullable=True)
    root_slot: Mapped[Optional[int]] = mapped_column(BigInteger, nullable=True)
    delinquent: Mapped[bool] = mapped_column(Boolean, default=False)
    performance_score: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    risk_score: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    apy: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    stake_state: Mapped[Optional[str]] = mapped_column(String(32), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )
    updated_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)


class ValidatorHistory(Base):
    """Point-in-time copy of a validator's state for one epoch."""

    __tablename__ = "validator_history"

    validator_pubkey: Mapped[str] = mapped_column(String(64), primary_key=True)
    epoch: Mapped[int] = mapped_column(Integer, primary_key=True)
    commission: Mapped[int] = mapped_column(Integer)
    activated_stake: Mapped[int] = mapped_column(BigInteger)
    delinquent: Mapped[bool] = mapped_column(Boolean, default=False)
    uptime: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    skip_rate: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    performance_score: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    recorded_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)


class RewardHistory(Base):
    """Observed reward and derived APY for one validator and epoch."""

    __tablename__ = "rewards_history"

    validator_pubkey: Mapped[str] = mapped_column(String(64), primary_key=True)
    epoch: Mapped[int] = mapped_column(Integer, primary_key=True)
    reward: Mapped[Optional[int]] = mapped_column(BigInteger, nullable=True)
    apy: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    recorded_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)


class RiskAssessment(Base):
    """Risk score and its contributing sub-scores for one epoch."""

    __tablename__ = "risk_assessments"

    validator_pubkey: Mapped[str] = mapped_column(String(64), primary_key=True)
    epoch: Mapped[int] = mapped_column(Integer, primary_key=True)
    risk_score: Mapped[float] = mapped_column(Float)
    delinquency_risk: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    concentration_risk: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    uptime_risk: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    skip_rate_risk: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    commission_change_risk: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    recorded_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)


class ModelPrediction(Base):
    """Heuristic next-epoch yield and risk estimate."""

    __tablename__ = "model_predictions"

    validator_pubkey: Mapped[str] = mapped_column(String(64), primary_key=True)
    epoch: Mapped[int] = mapped_column(Integer, primary_key=True)
    predicted_apy: Mapped[float] = mapped_column(Float)
    min_apy: Mapped[float] = mapped_column(Float)
    max_apy: Mapped[float] = mapped_column(Float)
    predicted_risk: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    confidence: Mapped[float] = mapped_column(Float)
    created_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)


class EpochInfoRecord(Base):
    """Network-wide state captured once per epoch."""

    __tablename__ = "epoch_info"

    epoch: Mapped[int] = mapped_column(Integer, primary_key=True)
    slot_index: Mapped[int] = mapped_column(BigInteger)
    slots_in_epoch: Mapped[int] = mapped_column(BigInteger)
    absolute_slot: Mapped[int] = mapped_column(BigInteger)
    block_height: Mapped[Optional[int]] = mapped_column(BigInteger, nullable=True)
    transaction_count: Mapped[Optional[int]] = mapped_column(BigInteger, nullable=True)
    tps: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    total_supply: Mapped[Optional[int]] = mapped_column(BigInteger, nullable=True)
    circulating_supply: Mapped[Optional[int]] = mapped_column(BigInteger, nullable=True)
    validator_count: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    active_stake: Mapped[Optional[int]] = mapped_column(BigInteger, nullable=True)
    recorded_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)


class BlockRecord(Base):
    """Summary of one produced block."""

    __tablename__ = "blocks"

    slot: Mapped[int] = mapped_column(BigInteger, primary_key=True)
    block_time: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    block_height: Mapped[int] = mapped_column(BigInteger)
    leader: Mapped[str] = mapped_column(String(64))
    transactions: Mapped[int] = mapped_column(Integer)
    fees: Mapped[float] = mapped_column(Float)


class RpcCacheEntry(Base):
    """Shared response cache entry (payload plus absolute expiry)."""

    __tablename__ = "rpc_cache"

    cache_key: Mapped[str] = mapped_column(String(CACHE_KEY_LENGTH), primary_key=True)
    payload: Mapped[Any] = mapped_column(JSON)
    expires_at: Mapped[float] = mapped_column(Float, index=True)
