"""
Behavioral factor — exponentially-decayed engagement index.

    E = Σ value(type) × direction_multiplier × 0.5 ** (age_days / half_life)
    sub_score = 100 × (1 − e^(−E / saturation))

Inbound (lead-initiated) activity counts fully; outbound is discounted by
`outbound_multiplier`. Confidence grows with the number of scored activities.
"""
import math
from collections import OrderedDict

from lead_insights.scoring.base import (
    FactorScorer, FactorScore, FactorName, Signal, LeadSnapshot, ActivityWindow,
    direction_of,
)


def decay(age_days: float, half_life_days: float) -> float:
    return 0.5 ** (age_days / half_life_days)


def _plural(count: int, noun: str) -> str:
    return f"{count} {noun}" if count == 1 else f"{count} {noun}s"


class BehavioralScorer(FactorScorer):
    factor = FactorName.BEHAVIORAL
    description = 'Recency- and frequency-weighted engagement, inbound first'

    def score(self, lead: LeadSnapshot, window: ActivityWindow, settings) -> FactorScore:
        cfg = settings.behavioral or {}
        values = cfg.get('activity_values') or {}
        outbound_multiplier = float(cfg.get('outbound_multiplier', 0.35))
        saturation = float(cfg.get('saturation', 0.6))
        half_life = float(settings.behavioral_decay_half_life_days)

        if not len(window):
            return self.neutral('No activity in the scoring window')

        # (type, direction) → [engagement, count, youngest age]
        groups = OrderedDict()
        scored = 0
        for activity in window.activities:
            value = float(values.get(activity.type, 0.0))
            if value <= 0:
                continue
            multiplier = 1.0 if activity.inbound else outbound_multiplier
            age = window.age_days(activity)
            key = (activity.type, 'inbound' if activity.inbound else 'outbound')
            group = groups.setdefault(key, [0.0, 0, age])
            group[0] += value * multiplier * decay(age, half_life)
            group[1] += 1
            group[2] = min(group[2], age)
            scored += 1

        engagement = sum(g[0] for g in groups.values())
        if engagement <= 0:
            return self.neutral('No scoreable activity in the scoring window')

        sub_score = 100.0 * (1.0 - math.exp(-engagement / saturation))

        signals = []
        for (activity_type, direction), (group_engagement, count, youngest) in groups.items():
            contribution = (sub_score - 50.0) * group_engagement / engagement
            noun = activity_type.replace('_', ' ')
            label = (f"{_plural(count, direction + ' ' + noun)}, "
                     f"most recent {youngest:.0f} day(s) ago")
            signals.append(Signal(label=label, weight=contribution, direction=direction_of(contribution)))

        inbound = sum(g[1] for (t, d), g in groups.items() if d == 'inbound')
        return FactorScore(
            factor=self.factor,
            sub_score=sub_score,
            sub_confidence=min(1.0, 0.4 + 0.2 * scored),
            signals=signals,
            meta={
                'engagement_index': round(engagement, 4),
                'activities_scored': scored,
                'inbound_share': round(inbound / scored, 3),
            },
        )
