"""
Conversational factor — sentiment, sentiment trend, buying signals, intent.

Consumes hints an upstream NLP collaborator attached to message/call
activity payloads:

    payload = {
        'sentiment': 'positive' | 0.4,          # level name or -1..1
        'intent': 'evaluate',                   # primary intent
        'buying_signals': ['pricing', 'demo'],  # detected keywords
    }

No NLP happens here. Without any hinted conversation the scorer returns a
neutral, confidence-0 result instead of guessing.
"""
from typing import Any, Dict, Optional

from lead_insights.scoring.base import (
    FactorScorer, FactorScore, FactorName, Signal, LeadSnapshot, ActivityWindow,
    direction_of,
)


CONVERSATION_TYPES = ('message', 'call')


def parse_sentiment(value: Any, levels: Dict[str, float]) -> Optional[float]:
    """Return sentiment in -1..1, or None when the hint is absent/unreadable."""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return max(-1.0, min(1.0, float(value)))
    if isinstance(value, str):
        key = value.strip().lower().replace(' ', '_')
        if key in levels:
            return float(levels[key])
    return None


def _has_hint(payload: Dict[str, Any]) -> bool:
    return any(payload.get(k) not in (None, '', []) for k in ('sentiment', 'intent', 'buying_signals'))


class ConversationalScorer(FactorScorer):
    factor = FactorName.CONVERSATIONAL
    description = 'Upstream sentiment and intent hints on messages and calls'

    def score(self, lead: LeadSnapshot, window: ActivityWindow, settings) -> FactorScore:
        cfg = settings.conversational or {}
        levels = cfg.get('sentiment_levels') or {}
        purchase_intents = set(cfg.get('purchase_intents') or [])

        conversations = [a for a in window.of_types(*CONVERSATION_TYPES) if _has_hint(a.payload or {})]
        if not conversations:
            return self.neutral('No conversational activity with sentiment or intent')

        sentiments = []
        buying_signals = []
        intents = 0
        negative = 0
        for activity in conversations:
            payload = activity.payload or {}
            sentiment = parse_sentiment(payload.get('sentiment'), levels)
            if sentiment is not None:
                sentiments.append(sentiment)
                if sentiment < -0.3:
                    negative += 1
            signals_found = payload.get('buying_signals') or []
            if isinstance(signals_found, str):
                signals_found = [signals_found]
            buying_signals.extend(str(s) for s in signals_found)
            if str(payload.get('intent', '')).lower() in purchase_intents:
                intents += 1

        signals = []
        sub_score = 50.0

        if sentiments:
            average = sum(sentiments) / len(sentiments)
            points = 25.0 * average
            sub_score += points
            signals.append(Signal(
                label=f"Average sentiment {average:+.2f} across {len(sentiments)} conversation(s)",
                weight=points,
                direction=direction_of(points),
            ))
            if len(sentiments) >= 2:
                half = len(sentiments) // 2
                earlier = sum(sentiments[:half]) / half
                later = sum(sentiments[half:]) / (len(sentiments) - half)
                points = max(-10.0, min(10.0, 10.0 * (later - earlier)))
                if points:
                    sub_score += points
                    trend = 'improving' if points > 0 else 'declining'
                    signals.append(Signal(label=f"Sentiment {trend} over recent conversations",
                                          weight=points, direction=direction_of(points)))

        if buying_signals:
            points = min(float(cfg.get('buying_signal_cap', 20)),
                         float(cfg.get('buying_signal_points', 5)) * len(buying_signals))
            sub_score += points
            unique = sorted(set(buying_signals))
            signals.append(Signal(
                label=f"Buying signals detected: {', '.join(unique[:5])}",
                weight=points,
                direction=direction_of(points),
            ))

        if intents:
            points = min(float(cfg.get('intent_cap', 15)), float(cfg.get('intent_points', 6)) * intents)
            sub_score += points
            signals.append(Signal(label=f"Purchase intent expressed in {intents} conversation(s)",
                                  weight=points, direction=direction_of(points)))

        if not signals:
            signals.append(Signal(label='Conversations show no sentiment or buying signal',
                                  weight=0.0, direction=direction_of(0.0)))

        return FactorScore(
            factor=self.factor,
            sub_score=sub_score,
            sub_confidence=min(1.0, 0.3 + 0.15 * len(conversations)),
            signals=signals,
            meta={
                'conversations': len(conversations),
                'negative_conversations': negative,
                'buying_signals': len(buying_signals),
            },
        )
