"""Scoring engine for StakeScope.

Modules:
    - metadata: Best-effort decoding of on-chain validator info
    - scoring: Performance / risk / APY formulas
    - prediction: Next-epoch yield heuristic
"""

from stakescope.engine.metadata import ValidatorInfo, decode_validator_info
from stakescope.engine.prediction import Prediction, predict_next_epoch
from stakescope.engine.scoring import (
    Scorer,
    apy,
    concentration_risk,
    delinquency_risk,
    performance_score,
    risk_score,
    uptime_risk,
)

__all__ = [
    "ValidatorInfo",
    "decode_validator_info",
    "Prediction",
    "predict_next_epoch",
    "Scorer",
    "apy",
    "concentration_risk",
    "delinquency_risk",
    "performance_score",
    "risk_score",
    "uptime_risk",
]
