"""
Temporal factor — urgency from the declared timeframe and activity velocity.

Velocity compares activity counts in the last N days against the N days
before that. A negative trend (or activity that stopped entirely) flags the
lead as *cooling*; a lead with no activity at all is *never engaged*. The
two are reported separately because they call for different follow-ups.
"""
import re
from typing import Optional, Tuple

from lead_insights.scoring.base import (
    FactorScorer, FactorScore, FactorName, Signal, LeadSnapshot, ActivityWindow,
    FactorStatus, direction_of,
)


_UNIT_DAYS = {'day': 1, 'week': 7, 'month': 30, 'year': 365}

# Velocity score when activity stopped before the comparison windows
STOPPED_VELOCITY_SCORE = 15.0


def normalize_timeframe(raw: str, known) -> Optional[str]:
    """Map free text like 'Within 30 days' or '2 weeks' onto a urgency key."""
    text = raw.strip().lower()
    if not text:
        return None
    key = re.sub(r'[\s\-]+', '_', text)
    if key in known:
        return key
    if 'asap' in text or 'immediate' in text or text == 'now':
        return 'immediate'
    if 'brows' in text or 'curious' in text:
        return 'just_browsing'
    match = re.search(r'(\d+)\s*(day|week|month|year)', text)
    if not match:
        return None
    days = int(match.group(1)) * _UNIT_DAYS[match.group(2)]
    if days <= 7:
        return 'immediate'
    if days <= 30:
        return 'within_30_days'
    if days <= 90:
        return 'within_90_days'
    if days <= 180:
        return '3_6_months'
    return '6_plus_months'


def velocity(window: ActivityWindow, days: int) -> Tuple[int, int, int]:
    """Return (recent, prior, older) activity counts for two N-day windows."""
    recent = prior = older = 0
    for activity in window.activities:
        age = window.age_days(activity)
        if age < days:
            recent += 1
        elif age < 2 * days:
            prior += 1
        else:
            older += 1
    return recent, prior, older


class TemporalScorer(FactorScorer):
    factor = FactorName.TEMPORAL
    description = 'Declared timeframe urgency and activity acceleration'

    def score(self, lead: LeadSnapshot, window: ActivityWindow, settings) -> FactorScore:
        cfg = settings.temporal or {}
        urgency_table = cfg.get('timeframe_urgency') or {}
        days = int(cfg.get('velocity_window_days', 14))
        timeframe_weight = float(cfg.get('timeframe_weight', 0.6))

        timeframe_key = normalize_timeframe(lead.timeframe, urgency_table) if lead.timeframe else None
        timeframe_score = float(urgency_table[timeframe_key]) if timeframe_key in urgency_table else None

        recent, prior, older = velocity(window, days)
        never_engaged = not len(window)
        cooling = False
        velocity_score = None
        velocity_label = ''

        if recent or prior:
            trend = (recent - prior) / max(recent, prior)
            velocity_score = min(100.0, 50.0 + 40.0 * trend + min(10.0, 2.0 * recent))
            cooling = trend < 0
            if cooling:
                velocity_label = f"Cooling: {recent} activities in the last {days} days vs {prior} in the prior {days}"
            elif trend > 0:
                velocity_label = f"Accelerating: {recent} activities in the last {days} days vs {prior} in the prior {days}"
            else:
                velocity_label = f"Steady: {recent} activities in each of the last two {days}-day periods"
        elif older:
            velocity_score = STOPPED_VELOCITY_SCORE
            cooling = True
            velocity_label = f"Cooling: no activity in the last {2 * days} days"

        meta = {
            'recent': recent,
            'prior': prior,
            'cooling': cooling,
            'never_engaged': never_engaged,
            'timeframe': timeframe_key,
        }

        if timeframe_score is None and velocity_score is None:
            result = self.neutral('Never engaged and no declared timeframe')
            result.meta = meta
            return result

        if timeframe_score is not None and velocity_score is not None:
            tf_share, vel_share, confidence = timeframe_weight, 1.0 - timeframe_weight, 1.0
        elif timeframe_score is not None:
            tf_share, vel_share, confidence = 1.0, 0.0, 0.6
        else:
            tf_share, vel_share, confidence = 0.0, 1.0, 0.5

        signals = []
        sub_score = 0.0
        if timeframe_score is not None:
            sub_score += tf_share * timeframe_score
            contribution = tf_share * (timeframe_score - 50.0)
            signals.append(Signal(
                label=f"Declared timeframe '{lead.timeframe}' ({timeframe_key.replace('_', ' ')})",
                weight=contribution,
                direction=direction_of(contribution),
            ))
        if velocity_score is not None:
            sub_score += vel_share * velocity_score
            contribution = vel_share * (velocity_score - 50.0)
            signals.append(Signal(label=velocity_label, weight=contribution, direction=direction_of(contribution)))
        if never_engaged:
            signals.append(Signal(label='Never engaged: no activity recorded yet', weight=0.0,
                                  direction=direction_of(0.0)))

        return FactorScore(
            factor=self.factor,
            sub_score=sub_score,
            sub_confidence=confidence,
            signals=signals,
            status=FactorStatus.OK,
            meta=meta,
        )
