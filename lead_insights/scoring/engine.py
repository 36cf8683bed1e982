"""
Scoring engine — runs the four factor scorers and assembles one result.

Scorers run concurrently in a thread pool. Each gets the tenant's
scorer_timeout_ms; whatever has not settled by then is recorded as timed out
and the engine moves on without waiting for the thread. A scorer that raises
is recorded as failed. Either way the factor gets a neutral, confidence-0
FactorScore, so one bad scorer never blocks or fails the recomputation.
"""
import logging
import math
import time
from concurrent.futures import ThreadPoolExecutor, wait
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Type

from lead_insights.errors import ScorerTimeoutError
from lead_insights.scoring.base import (
    FactorName, FactorScore, FactorScorer, FactorStatus, LeadSnapshot, ActivityWindow,
    FACTOR_ORDER, get_scorer, neutral_factor_score,
)
from lead_insights.scoring.behavioral import BehavioralScorer
from lead_insights.scoring.conversational import ConversationalScorer
from lead_insights.scoring.demographic import DemographicScorer
from lead_insights.scoring.ensemble import EnsembleResult, aggregate
from lead_insights.scoring.explain import (
    build_explanation, build_recommendations, build_risk_factors, tier_for,
)
from lead_insights.scoring.settings import ScoringSettings
from lead_insights.scoring.temporal import TemporalScorer

logger = logging.getLogger('scoring.engine')


# ── Scorer registry ──────────────────────────────────────────────────────────

SCORER_REGISTRY: Dict[FactorName, Type[FactorScorer]] = {
    FactorName.DEMOGRAPHIC: DemographicScorer,
    FactorName.BEHAVIORAL: BehavioralScorer,
    FactorName.TEMPORAL: TemporalScorer,
    FactorName.CONVERSATIONAL: ConversationalScorer,
}


@dataclass
class ScoreComputation:
    """Everything one recomputation produces, before it is persisted."""
    score: float
    confidence: float
    tier: str
    insufficient_data: bool
    model_version: str
    factor_scores: Dict[FactorName, FactorScore]
    explanation: List[str] = field(default_factory=list)
    recommendations: List[str] = field(default_factory=list)
    risk_factors: List[str] = field(default_factory=list)
    elapsed_ms: float = 0.0

    def factor_breakdown(self) -> Dict[str, dict]:
        return {f.value: self.factor_scores[f].to_dict() for f in FACTOR_ORDER if f in self.factor_scores}


class ScoringEngine:
    """
    Usage:
        engine = ScoringEngine()
        result = engine.compute(lead_snapshot, activity_window, settings)

    Pass `scorers` to replace individual strategies (tests, tenant experiments):
        ScoringEngine(scorers={FactorName.BEHAVIORAL: MyScorer()})
    """

    def __init__(self, scorers: Optional[Dict[FactorName, FactorScorer]] = None):
        self.scorers: Dict[FactorName, FactorScorer] = {
            factor: get_scorer(SCORER_REGISTRY, factor) for factor in FACTOR_ORDER
        }
        if scorers:
            self.scorers.update(scorers)

    def compute(self, lead: LeadSnapshot, window: ActivityWindow, settings: ScoringSettings) -> ScoreComputation:
        started = time.monotonic()
        factor_scores = self.run_scorers(lead, window, settings)
        ensemble: EnsembleResult = aggregate(factor_scores, settings.factor_weights)

        result = ScoreComputation(
            score=ensemble.score,
            confidence=ensemble.confidence,
            tier=tier_for(ensemble.score),
            insufficient_data=ensemble.insufficient_data,
            model_version=settings.model_version,
            factor_scores=factor_scores,
            explanation=build_explanation(factor_scores, ensemble, settings.explanation_top_n),
            recommendations=build_recommendations(factor_scores, ensemble),
            risk_factors=build_risk_factors(factor_scores, window),
        )
        result.elapsed_ms = (time.monotonic() - started) * 1000.0
        logger.debug("Lead %s scored %.2f (confidence %.3f) in %.0f ms",
                     lead.id, result.score, result.confidence, result.elapsed_ms,
                     extra={'lead_id': lead.id, 'organization_id': lead.organization_id})
        return result

    def run_scorers(self, lead: LeadSnapshot, window: ActivityWindow,
                    settings: ScoringSettings) -> Dict[FactorName, FactorScore]:
        """Run every scorer in parallel; always returns one FactorScore per factor."""
        budget_ms = settings.scorer_timeout_ms
        executor = ThreadPoolExecutor(max_workers=len(self.scorers), thread_name_prefix='scorer')
        try:
            futures = {
                executor.submit(scorer.score, lead, window, settings): factor
                for factor, scorer in self.scorers.items()
            }
            done, _ = wait(futures, timeout=budget_ms / 1000.0)

            results = {}
            for future, factor in futures.items():
                if future not in done:
                    err = ScorerTimeoutError(factor.value, budget_ms)
                    logger.warning("%s", err, extra={'lead_id': lead.id})
                    results[factor] = neutral_factor_score(
                        factor, f"Scorer timed out after {budget_ms} ms; factor excluded from the score",
                        FactorStatus.TIMED_OUT,
                    )
                    continue
                try:
                    fs = future.result()
                    if not isinstance(fs, FactorScore):
                        raise TypeError(f"scorer returned {type(fs).__name__}, expected FactorScore")
                    if not (math.isfinite(fs.sub_score) and math.isfinite(fs.sub_confidence)):
                        raise ValueError(f"scorer returned non-finite score {fs.sub_score!r}")
                    results[factor] = fs
                except Exception as e:
                    logger.error("Scorer '%s' failed for lead %s: %s", factor.value, lead.id, e,
                                 exc_info=True, extra={'lead_id': lead.id})
                    results[factor] = neutral_factor_score(
                        factor, f"Scorer failed ({type(e).__name__}); factor excluded from the score",
                        FactorStatus.FAILED,
                    )
        finally:
            # Never join a hung scorer thread; it finishes (or not) in the background
            executor.shutdown(wait=False, cancel_futures=True)

        return {factor: results[factor] for factor in FACTOR_ORDER if factor in results}
