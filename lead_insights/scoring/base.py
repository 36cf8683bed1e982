"""
Factor scorer contracts.

Every factor scorer implements FactorScorer.score() and returns a FactorScore.
Scorers are pure: they see a LeadSnapshot and an ActivityWindow (plain
dataclasses, detached from the DB session) and never do I/O. The engine only
sees the uniform interface, so any strategy can be swapped per factor.
"""
import math
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Dict, List, Any, Optional, Type


class FactorName(str, Enum):
    DEMOGRAPHIC = 'demographic'
    BEHAVIORAL = 'behavioral'
    TEMPORAL = 'temporal'
    CONVERSATIONAL = 'conversational'


# Evaluation and tie-break order everywhere factors are listed
FACTOR_ORDER = [
    FactorName.DEMOGRAPHIC,
    FactorName.BEHAVIORAL,
    FactorName.TEMPORAL,
    FactorName.CONVERSATIONAL,
]


class Direction(str, Enum):
    POSITIVE = 'positive'
    NEGATIVE = 'negative'
    NEUTRAL = 'neutral'


class FactorStatus(str, Enum):
    OK = 'ok'
    NO_DATA = 'no_data'
    FAILED = 'failed'
    TIMED_OUT = 'timed_out'


NEUTRAL_SCORE = 50.0


@dataclass(frozen=True)
class Signal:
    """One explainable reason behind a sub-score.

    weight is the signal's signed contribution to the factor's sub-score,
    in points away from neutral (50).
    """
    label: str
    weight: float
    direction: Direction

    def to_dict(self) -> Dict[str, Any]:
        return {'label': self.label, 'weight': round(self.weight, 2), 'direction': self.direction.value}


@dataclass
class FactorScore:
    """Uniform output from every factor scorer."""
    factor: FactorName
    sub_score: float
    sub_confidence: float
    signals: List[Signal] = field(default_factory=list)
    status: FactorStatus = FactorStatus.OK
    meta: Dict[str, Any] = field(default_factory=dict)

    def __post_init__(self):
        self.sub_score = _clamp(self.sub_score, 0.0, 100.0)
        self.sub_confidence = _clamp(self.sub_confidence, 0.0, 1.0)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'factor': self.factor.value,
            'subScore': round(self.sub_score, 2),
            'subConfidence': round(self.sub_confidence, 3),
            'status': self.status.value,
            'signals': [s.to_dict() for s in self.signals],
            'meta': self.meta,
        }


@dataclass(frozen=True)
class LeadSnapshot:
    """Read-only copy of the lead fields scorers may look at."""
    id: str
    organization_id: str
    company: Optional[str] = None
    company_size: Optional[int] = None
    industry: Optional[str] = None
    job_title: Optional[str] = None
    email: Optional[str] = None
    budget: Optional[float] = None
    equity: Optional[float] = None
    timeframe: Optional[str] = None


@dataclass(frozen=True)
class ActivitySnapshot:
    id: str
    type: str
    direction: str
    occurred_at: datetime
    payload: Dict[str, Any] = field(default_factory=dict)

    @property
    def inbound(self) -> bool:
        return self.direction == 'inbound'


@dataclass(frozen=True)
class ActivityWindow:
    """Activities for one lead, oldest first, evaluated as of `now`."""
    activities: List[ActivitySnapshot]
    now: datetime

    def age_days(self, activity: ActivitySnapshot) -> float:
        return max(0.0, (self.now - activity.occurred_at).total_seconds() / 86400.0)

    def of_types(self, *types: str) -> List[ActivitySnapshot]:
        return [a for a in self.activities if a.type in types]

    def __len__(self):
        return len(self.activities)


class FactorScorer(ABC):
    """
    Base class for all factor scorers.

    Subclasses set `factor` and implement score(). Raising is allowed; the
    engine turns any exception into a failed, confidence-0 FactorScore.
    """
    factor: FactorName = None
    description: str = ''

    @abstractmethod
    def score(self, lead: LeadSnapshot, window: ActivityWindow, settings: Any) -> FactorScore:
        """
        Score one dimension of a lead.

        Args:
            lead:     Snapshot of the lead's attributes.
            window:   Activities inside the tenant's scoring window.
            settings: ScoringSettings for the lead's tenant.

        Returns:
            FactorScore with sub_score in 0-100 and sub_confidence in 0-1.
        """
        ...

    def neutral(self, label: str, status: FactorStatus = FactorStatus.NO_DATA) -> FactorScore:
        """Neutral score with zero confidence, used when there is nothing to judge."""
        return neutral_factor_score(self.factor, label, status)


def neutral_factor_score(factor: FactorName, label: str,
                         status: FactorStatus = FactorStatus.NO_DATA) -> FactorScore:
    return FactorScore(
        factor=factor,
        sub_score=NEUTRAL_SCORE,
        sub_confidence=0.0,
        signals=[Signal(label=label, weight=0.0, direction=Direction.NEUTRAL)],
        status=status,
    )


def direction_of(weight: float) -> Direction:
    if weight > 0:
        return Direction.POSITIVE
    if weight < 0:
        return Direction.NEGATIVE
    return Direction.NEUTRAL


def _clamp(value: float, low: float, high: float) -> float:
    value = float(value)
    if not math.isfinite(value):
        raise ValueError(f"non-finite value {value!r}")
    return max(low, min(high, value))


# ── Scorer registry ──────────────────────────────────────────────────────────
# Each factor module exposes a scorer class; engine.SCORER_REGISTRY maps
#   FactorName → scorer class
# Tenants could swap a strategy by registering a different class per factor.


def get_scorer(registry: Dict[FactorName, Type[FactorScorer]], factor: FactorName) -> FactorScorer:
    """Look up and instantiate the scorer for a factor."""
    scorer_cls = registry.get(factor)
    if not scorer_cls:
        raise ValueError(f"No scorer registered for factor '{factor.value}'")
    return scorer_cls()


def get_registry_info(registry: Dict[FactorName, Type[FactorScorer]]) -> Dict[str, Any]:
    """Serialize the scorer registry into a JSON-friendly dict."""
    return {
        factor.value: {
            'scorer': cls.__name__,
            'description': cls.description or '',
        }
        for factor, cls in registry.items()
    }
