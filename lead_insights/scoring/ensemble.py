"""
Ensemble aggregator — confidence-weighted mean of factor sub-scores.

    effective_i = weight_i × confidence_i
    score       = Σ effective_i × sub_score_i / Σ effective_i
    confidence  = Σ effective_i / Σ weight_i

Factors with confidence 0 (failed, timed out, no data) drop out of the score
instead of pulling it toward 50. When nothing is left the result is 50 / 0
and marked insufficient_data.
"""
from dataclasses import dataclass, field
from typing import Dict

from lead_insights.scoring.base import FactorName, FactorScore, FACTOR_ORDER, NEUTRAL_SCORE


@dataclass
class EnsembleResult:
    score: float
    confidence: float
    insufficient_data: bool = False
    # factor → share of the final score's effective weight (sums to 1 unless insufficient)
    shares: Dict[FactorName, float] = field(default_factory=dict)

    @property
    def dominant_factor(self):
        if not self.shares:
            return None
        best = max(self.shares.values())
        if best <= 0:
            return None
        return next(f for f in FACTOR_ORDER if self.shares.get(f) == best)


def aggregate(factor_scores: Dict[FactorName, FactorScore], weights: Dict[FactorName, float]) -> EnsembleResult:
    total_weight = 0.0
    total_effective = 0.0
    weighted_sum = 0.0
    effective = {}

    for factor in FACTOR_ORDER:
        fs = factor_scores.get(factor)
        weight = max(0.0, float(weights.get(factor, 0.0)))
        total_weight += weight
        if fs is None:
            effective[factor] = 0.0
            continue
        eff = weight * fs.sub_confidence
        effective[factor] = eff
        total_effective += eff
        weighted_sum += eff * fs.sub_score

    if total_effective <= 0 or total_weight <= 0:
        return EnsembleResult(
            score=NEUTRAL_SCORE,
            confidence=0.0,
            insufficient_data=True,
            shares={f: 0.0 for f in FACTOR_ORDER},
        )

    score = max(0.0, min(100.0, weighted_sum / total_effective))
    confidence = max(0.0, min(1.0, total_effective / total_weight))
    return EnsembleResult(
        score=round(score, 2),
        confidence=round(confidence, 4),
        shares={f: effective[f] / total_effective for f in FACTOR_ORDER},
    )
