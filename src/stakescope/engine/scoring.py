"""Scoring engine: validator snapshot → performance, risk and yield.

Heuristic, fixed-weight formulas. They are part of the observable contract
of the store (the presentation layer ranks by them), so the arithmetic is
kept exactly as defined here:

Performance (0-100):
    delinquent                  → 50 (flat)
    otherwise base 80
        vote lag < 100 slots    → +10
        vote lag > 1000 slots   → -10
        commission < 5          → +5
        commission > 10         → -5

Risk (0-100):
    delinquent                  → 75 (flat)
    otherwise base 25
        stake > 500,000 SOL     → +20
        commission > 10         → +10

APY (%):
    6.5 - (commission / 100) × 6.5

All functions are pure, total and deterministic.
"""

from stakescope.models import RiskBreakdown, ValidatorMetrics, ValidatorSnapshot

BASE_PERFORMANCE = 80.0
DELINQUENT_PERFORMANCE = 50.0
BASE_RISK = 25.0
DELINQUENT_RISK = 75.0
BASE_APY = 6.5

RECENT_VOTE_SLOTS = 100
STALE_VOTE_SLOTS = 1000
LOW_COMMISSION = 5
HIGH_COMMISSION = 10
# 500,000 SOL in lamports
HIGH_STAKE_LAMPORTS = 500_000_000_000


def _clamp(value: float, low: float = 0.0, high: float = 100.0) -> float:
    return max(low, min(high, value))


def performance_score(snapshot: ValidatorSnapshot, current_slot: int) -> float:
    """Reliability score in [0, 100]."""
    if snapshot.delinquent:
        return DELINQUENT_PERFORMANCE

    score = BASE_PERFORMANCE
    slots_behind = current_slot - snapshot.last_vote
    if slots_behind < RECENT_VOTE_SLOTS:
        score += 10
    elif slots_behind > STALE_VOTE_SLOTS:
        score -= 10

    if snapshot.commission < LOW_COMMISSION:
        score += 5
    elif snapshot.commission > HIGH_COMMISSION:
        score -= 5

    return _clamp(score)


def risk_score(snapshot: ValidatorSnapshot) -> float:
    """Delegation risk in [0, 100]; higher is riskier."""
    if snapshot.delinquent:
        return DELINQUENT_RISK

    score = BASE_RISK
    if snapshot.activated_stake > HIGH_STAKE_LAMPORTS:
        score += 20
    if snapshot.commission > HIGH_COMMISSION:
        score += 10

    return _clamp(score)


def apy(commission: int, base_apy: float = BASE_APY) -> float:
    """Annualized yield after commission (commission-discount model), never negative."""
    return max(0.0, base_apy - (commission / 100) * base_apy)


def delinquency_risk(snapshot: ValidatorSnapshot) -> float:
    return 80.0 if snapshot.delinquent else 10.0


def concentration_risk(snapshot: ValidatorSnapshot) -> float:
    return 60.0 if snapshot.activated_stake > HIGH_STAKE_LAMPORTS else 20.0


def uptime_risk(snapshot: ValidatorSnapshot, current_slot: int) -> float:
    """Complement of the performance score."""
    return _clamp(100.0 - performance_score(snapshot, current_slot))


class Scorer:
    """Applies the scoring formulas to snapshots.

    Args:
        base_apy: Network yield before commission, in percent (default: 6.5)

    Example:
        >>> scorer = Scorer()
        >>> metrics = scorer.score(snapshot, current_slot=250_000_000)
        >>> metrics.performance_score
        95.0
    """

    def __init__(self, base_apy: float = BASE_APY) -> None:
        if base_apy < 0:
            raise ValueError(f"base_apy ({base_apy}) must be >= 0")
        self.base_apy = base_apy

    def score(self, snapshot: ValidatorSnapshot, current_slot: int) -> ValidatorMetrics:
        return ValidatorMetrics(
            performance_score=performance_score(snapshot, current_slot),
            risk_score=risk_score(snapshot),
            apy=apy(snapshot.commission, self.base_apy),
        )

    def assess_risk(self, snapshot: ValidatorSnapshot, current_slot: int) -> RiskBreakdown:
        return RiskBreakdown(
            risk_score=risk_score(snapshot),
            delinquency_risk=delinquency_risk(snapshot),
            concentration_risk=concentration_risk(snapshot),
            uptime_risk=uptime_risk(snapshot, current_slot),
        )
