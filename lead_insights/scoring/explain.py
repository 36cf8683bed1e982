"""
Explanation, recommendation, and risk generation. Pure Python, no API calls.

Everything is template-filled from factor data, so the same inputs always
produce the same strings in the same order.
"""
from typing import Dict, List, NamedTuple, Optional

from lead_insights.scoring.base import (
    FactorName, FactorScore, FactorStatus, ActivityWindow, FACTOR_ORDER,
)
from lead_insights.scoring.ensemble import EnsembleResult


INSUFFICIENT_DATA_MARKER = 'Insufficient data: no factor produced a confident signal, score held at neutral 50'

MAX_RECOMMENDATIONS = 4
NO_RECENT_CONTACT_DAYS = 14


# ── Tiers ────────────────────────────────────────────────────────────────────

TIER_THRESHOLDS = [
    ('hot', 75.0),
    ('warm', 55.0),
    ('cool', 35.0),
]


def tier_for(score: float) -> str:
    for name, threshold in TIER_THRESHOLDS:
        if score >= threshold:
            return name
    return 'cold'


# ── Explanation ──────────────────────────────────────────────────────────────

def _factor_title(factor: FactorName) -> str:
    return factor.value.capitalize()


def build_explanation(factor_scores: Dict[FactorName, FactorScore], ensemble: EnsembleResult,
                      top_n: int) -> List[str]:
    """
    Ordered explanation lines.

    Status notices come first and are never truncated: the insufficient-data
    marker, then one line per failed or timed-out factor. The remaining
    signals are ranked by absolute contribution to the final score and cut to
    top_n. Ties keep factor order, then the scorer's own signal order.
    """
    lines = []
    if ensemble.insufficient_data:
        lines.append(INSUFFICIENT_DATA_MARKER)

    ranked = []
    for factor_idx, factor in enumerate(FACTOR_ORDER):
        fs = factor_scores.get(factor)
        if fs is None:
            continue
        if fs.status in (FactorStatus.FAILED, FactorStatus.TIMED_OUT):
            for signal in fs.signals:
                lines.append(f"{_factor_title(factor)}: {signal.label}")
            continue
        share = ensemble.shares.get(factor, 0.0)
        for signal_idx, signal in enumerate(fs.signals):
            contribution = signal.weight * share
            ranked.append((-abs(contribution), factor_idx, signal_idx, factor, signal, contribution))

    ranked.sort(key=lambda row: row[:3])
    for _, _, _, factor, signal, contribution in ranked[:max(0, top_n)]:
        if abs(contribution) >= 0.05:
            lines.append(f"{_factor_title(factor)}: {signal.label} ({contribution:+.1f} pts)")
        else:
            lines.append(f"{_factor_title(factor)}: {signal.label}")
    return lines


# ── Recommendations ──────────────────────────────────────────────────────────

class RuleContext(NamedTuple):
    scores: Dict[FactorName, Optional[float]]   # None when the factor had no confidence
    factor_scores: Dict[FactorName, FactorScore]
    tier: str
    dominant: Optional[FactorName]

    def sub(self, factor: FactorName) -> Optional[float]:
        return self.scores.get(factor)

    def meta(self, factor: FactorName, key: str, default=None):
        fs = self.factor_scores.get(factor)
        return (fs.meta or {}).get(key, default) if fs else default

    def fmt(self, factor: FactorName) -> str:
        value = self.sub(factor)
        return 'n/a' if value is None else f"{value:.0f}"


def _at_least(ctx, factor, threshold):
    value = ctx.sub(factor)
    return value is not None and value >= threshold


def _below(ctx, factor, threshold):
    value = ctx.sub(factor)
    return value is not None and value < threshold


def _below_or_unknown(ctx, factor, threshold):
    value = ctx.sub(factor)
    return value is None or value < threshold


D, B, T, C = FactorName.DEMOGRAPHIC, FactorName.BEHAVIORAL, FactorName.TEMPORAL, FactorName.CONVERSATIONAL

# (predicate, template); every matching rule fires, in table order
RECOMMENDATION_RULES: List[tuple] = [
    (lambda c: _at_least(c, T, 70) and _below_or_unknown(c, C, 50),
     lambda c: f"Contact within 24 hours before urgency decays (temporal {c.fmt(T)}, conversational {c.fmt(C)})"),
    (lambda c: _at_least(c, B, 70) and _below(c, T, 50),
     lambda c: f"Nurture, not urgent: engagement is high (behavioral {c.fmt(B)}) but urgency is low (temporal {c.fmt(T)})"),
    (lambda c: bool(c.meta(T, 'cooling')),
     lambda c: "Re-engage with a timely follow-up: activity is cooling"),
    (lambda c: _at_least(c, C, 70) and c.meta(C, 'buying_signals', 0) > 0,
     lambda c: f"Move toward a proposal: buying signals detected (conversational {c.fmt(C)})"),
    (lambda c: _at_least(c, D, 70) and _below_or_unknown(c, B, 40),
     lambda c: f"Start a personalised outreach sequence: strong profile fit (demographic {c.fmt(D)}) with little engagement"),
    (lambda c: _below(c, C, 35),
     lambda c: f"Address concerns raised in recent conversations before pitching (conversational {c.fmt(C)})"),
    (lambda c: c.tier in ('hot', 'warm') and c.dominant == D,
     lambda c: "Validate interest before investing sales time: the score rests mostly on profile fit"),
]

TIER_ACTIONS = {
    'hot': 'Schedule a meeting or proposal this week',
    'warm': 'Send relevant case studies and book a discovery call',
    'cool': 'Nurture with educational content',
    'cold': "Re-qualify the lead's requirements",
}


def build_recommendations(factor_scores: Dict[FactorName, FactorScore], ensemble: EnsembleResult) -> List[str]:
    if ensemble.insufficient_data:
        return ['Log a first interaction or complete the lead profile so the lead can be scored']

    scores = {
        f: (fs.sub_score if fs is not None and fs.sub_confidence > 0 else None)
        for f, fs in ((f, factor_scores.get(f)) for f in FACTOR_ORDER)
    }
    tier = tier_for(ensemble.score)
    ctx = RuleContext(scores=scores, factor_scores=factor_scores, tier=tier, dominant=ensemble.dominant_factor)

    recommendations = []
    for predicate, template in RECOMMENDATION_RULES:
        if predicate(ctx):
            text = template(ctx)
            if text not in recommendations:
                recommendations.append(text)
    recommendations.append(TIER_ACTIONS[tier])
    return recommendations[:MAX_RECOMMENDATIONS]


# ── Risk factors ─────────────────────────────────────────────────────────────

def build_risk_factors(factor_scores: Dict[FactorName, FactorScore], window: ActivityWindow) -> List[str]:
    risks = []

    if not len(window):
        risks.append('No recorded activities: engagement unknown')
    else:
        inbound_ages = [window.age_days(a) for a in window.activities if a.inbound]
        if not inbound_ages:
            risks.append('Lead has never initiated contact')
        elif min(inbound_ages) > NO_RECENT_CONTACT_DAYS:
            risks.append(f"No lead-initiated contact in {min(inbound_ages):.0f} days")

    temporal = factor_scores.get(FactorName.TEMPORAL)
    if temporal is not None and (temporal.meta or {}).get('cooling'):
        risks.append('Activity is cooling compared to the previous period')

    conversational = factor_scores.get(FactorName.CONVERSATIONAL)
    negative = (conversational.meta or {}).get('negative_conversations', 0) if conversational else 0
    if negative:
        risks.append(f"Negative sentiment detected in {negative} conversation(s)")

    for factor in FACTOR_ORDER:
        fs = factor_scores.get(factor)
        if fs is not None and fs.status in (FactorStatus.FAILED, FactorStatus.TIMED_OUT):
            risks.append(f"{_factor_title(factor)} factor unavailable for this score")

    return risks
