"""Next-epoch yield estimate from recent reward history.

Not a trained model: the current APY is nudged by half of the most recent
epoch-over-epoch change, with a fixed ±5% band and a confidence that grows
with the amount of history (capped at 0.7).
"""

from dataclasses import dataclass

MIN_HISTORY = 3
TREND_WEIGHT = 0.5
BAND = 0.05
MAX_CONFIDENCE = 0.7


@dataclass(frozen=True)
class Prediction:
    validator_pubkey: str
    epoch: int
    predicted_apy: float
    min_apy: float
    max_apy: float
    predicted_risk: float | None
    confidence: float

    def to_record(self) -> dict:
        return {
            "validator_pubkey": self.validator_pubkey,
            "epoch": self.epoch,
            "predicted_apy": self.predicted_apy,
            "min_apy": self.min_apy,
            "max_apy": self.max_apy,
            "predicted_risk": self.predicted_risk,
            "confidence": self.confidence,
        }


def predict_next_epoch(
    validator_pubkey: str,
    current_epoch: int,
    current_apy: float,
    risk_score: float | None,
    recent_apys: list[float | None],
) -> Prediction | None:
    """Predict APY for ``current_epoch + 1``.

    Args:
        validator_pubkey: Validator identity key
        current_epoch: Epoch the inputs were observed in
        current_apy: APY computed this run
        risk_score: Current risk score, carried forward as the predicted risk
        recent_apys: Stored APY observations, newest first

    Returns:
        Prediction, or None with fewer than 3 observations
    """
    if len(recent_apys) < MIN_HISTORY:
        return None

    predicted = current_apy
    latest, previous = recent_apys[0], recent_apys[1]
    if latest is not None and previous is not None:
        predicted += (latest - previous) * TREND_WEIGHT

    return Prediction(
        validator_pubkey=validator_pubkey,
        epoch=current_epoch + 1,
        predicted_apy=predicted,
        min_apy=max(0.0, predicted * (1 - BAND)),
        max_apy=predicted * (1 + BAND),
        predicted_risk=risk_score,
        confidence=min(MAX_CONFIDENCE, 0.5 + len(recent_apys) / 20),
    )
