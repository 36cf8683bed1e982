"""
Scoring settings — YAML defaults merged with per-tenant overrides.

The YAML file is read once and cached; if it is missing the hardcoded
_default_config() is used. Tenant overrides arrive from the API in camelCase
and are validated by validate_overrides() before they reach the database.
"""
import copy
import logging
import os
from dataclasses import dataclass, field
from typing import Dict, Any, Optional

import yaml

from lead_insights.config import SCORING_CONFIG_PATH
from lead_insights.errors import ValidationError
from lead_insights.scoring.base import FactorName, FACTOR_ORDER

logger = logging.getLogger('scoring.settings')


_scoring_config = None


def _default_config():
    """Hardcoded fallback if YAML is missing."""
    return {
        'version': 'ensemble-v1',
        'factor_weights': {f.value: 1.0 for f in FACTOR_ORDER},
        'behavioral_decay_half_life_days': 14,
        'explanation_top_n': 5,
        'scorer_timeout_ms': 2000,
        'recompute_timeout_ms': 5000,
        'activity_window_days': 90,
        'behavioral': {
            'activity_values': {
                'meeting': 1.0, 'call': 0.7, 'stage_change': 0.5,
                'message': 0.4, 'page_view': 0.2, 'note': 0.1,
            },
            'outbound_multiplier': 0.35,
            'saturation': 0.6,
        },
        'temporal': {
            'velocity_window_days': 14,
            'timeframe_weight': 0.6,
            'timeframe_urgency': {
                'immediate': 95, 'within_30_days': 85, 'within_90_days': 65,
                '3_6_months': 45, '6_plus_months': 25, 'just_browsing': 10,
            },
        },
        'conversational': {
            'sentiment_levels': {
                'very_positive': 1.0, 'positive': 0.5, 'neutral': 0.0,
                'negative': -0.5, 'very_negative': -1.0,
            },
            'purchase_intents': ['purchase', 'evaluate', 'compare'],
            'buying_signal_points': 5,
            'buying_signal_cap': 20,
            'intent_points': 6,
            'intent_cap': 15,
        },
        'ideal_profile': {
            'industries': ['software', 'saas', 'technology', 'real estate', 'financial services'],
            'company_size': {'min': 50, 'max': 5000},
            'min_budget': 10000,
            'min_equity': 50000,
            'attribute_weights': {
                'industry': 0.25, 'company_size': 0.20, 'role': 0.25,
                'budget': 0.15, 'equity': 0.05, 'email_domain': 0.10,
            },
        },
    }


def load_scoring_config():
    """Load scoring config from YAML, with in-memory cache and hardcoded fallback."""
    global _scoring_config
    if _scoring_config is not None:
        return _scoring_config

    config_path = SCORING_CONFIG_PATH or os.path.join(os.path.dirname(__file__), 'scoring_config.yaml')
    try:
        with open(config_path, 'r') as f:
            _scoring_config = yaml.safe_load(f)
        logger.info("Config loaded from YAML (version=%s)", _scoring_config.get('version', '?'))
    except (OSError, yaml.YAMLError) as e:
        logger.warning("YAML config not usable (%s), using defaults", e)
        _scoring_config = _default_config()

    return _scoring_config


@dataclass
class ScoringSettings:
    """Effective scoring options for one tenant."""
    model_version: str
    factor_weights: Dict[FactorName, float]
    behavioral_decay_half_life_days: int = 14
    explanation_top_n: int = 5
    scorer_timeout_ms: int = 2000
    recompute_timeout_ms: int = 5000
    activity_window_days: int = 90
    behavioral: Dict[str, Any] = field(default_factory=dict)
    temporal: Dict[str, Any] = field(default_factory=dict)
    conversational: Dict[str, Any] = field(default_factory=dict)
    ideal_profile: Dict[str, Any] = field(default_factory=dict)

    def weight(self, factor: FactorName) -> float:
        return self.factor_weights.get(factor, 0.0)

    def to_dict(self) -> Dict[str, Any]:
        """Tenant-facing view of the recognized options (camelCase, as in the API)."""
        return {
            'modelVersion': self.model_version,
            'factorWeights': {f.value: self.weight(f) for f in FACTOR_ORDER},
            'behavioralDecayHalfLifeDays': self.behavioral_decay_half_life_days,
            'explanationTopN': self.explanation_top_n,
            'scorerTimeoutMs': self.scorer_timeout_ms,
            'recomputeTimeoutMs': self.recompute_timeout_ms,
            'idealProfile': self.ideal_profile,
        }


def build_settings(tenant_config=None, base: Optional[Dict[str, Any]] = None) -> ScoringSettings:
    """
    Merge a TenantScoringConfig row (or None) over the YAML defaults.

    Null tenant columns keep the default. Missing factors in a tenant's
    factor_weights keep their default weight.
    """
    base = copy.deepcopy(base if base is not None else load_scoring_config())

    weights = dict(base.get('factor_weights') or {})
    ideal_profile = base.get('ideal_profile') or {}
    overrides = {}
    if tenant_config is not None:
        weights.update(tenant_config.factor_weights or {})
        if tenant_config.ideal_profile:
            ideal_profile = {**ideal_profile, **tenant_config.ideal_profile}
        for name in ('behavioral_decay_half_life_days', 'explanation_top_n',
                     'scorer_timeout_ms', 'recompute_timeout_ms'):
            value = getattr(tenant_config, name, None)
            if value is not None:
                overrides[name] = value

    return ScoringSettings(
        model_version=str(base.get('version', 'ensemble-v1')),
        factor_weights={f: float(weights.get(f.value, 1.0)) for f in FACTOR_ORDER},
        behavioral_decay_half_life_days=overrides.get(
            'behavioral_decay_half_life_days', base.get('behavioral_decay_half_life_days', 14)),
        explanation_top_n=overrides.get('explanation_top_n', base.get('explanation_top_n', 5)),
        scorer_timeout_ms=overrides.get('scorer_timeout_ms', base.get('scorer_timeout_ms', 2000)),
        recompute_timeout_ms=overrides.get('recompute_timeout_ms', base.get('recompute_timeout_ms', 5000)),
        activity_window_days=base.get('activity_window_days', 90),
        behavioral=base.get('behavioral') or {},
        temporal=base.get('temporal') or {},
        conversational=base.get('conversational') or {},
        ideal_profile=ideal_profile,
    )


# ── API override validation ──────────────────────────────────────────────────

_POSITIVE_INT_OPTIONS = {
    'behavioralDecayHalfLifeDays': 'behavioral_decay_half_life_days',
    'explanationTopN': 'explanation_top_n',
    'scorerTimeoutMs': 'scorer_timeout_ms',
    'recomputeTimeoutMs': 'recompute_timeout_ms',
}


def validate_overrides(data: Dict[str, Any]) -> Dict[str, Any]:
    """
    Validate a camelCase config payload and return snake_case column values.

    Raises ValidationError on unknown keys, negative weights, or non-positive
    integer options.
    """
    if not isinstance(data, dict):
        raise ValidationError('Config payload must be a JSON object')

    known = set(_POSITIVE_INT_OPTIONS) | {'factorWeights', 'idealProfile'}
    unknown = sorted(set(data) - known)
    if unknown:
        raise ValidationError(f"Unknown config option(s): {', '.join(unknown)}")

    result = {}

    if 'factorWeights' in data:
        weights = data['factorWeights']
        if not isinstance(weights, dict):
            raise ValidationError('factorWeights must be an object')
        valid_names = {f.value for f in FACTOR_ORDER}
        clean = {}
        for name, value in weights.items():
            if name not in valid_names:
                raise ValidationError(f"Unknown factor '{name}' in factorWeights")
            if isinstance(value, bool) or not isinstance(value, (int, float)):
                raise ValidationError(f"Weight for '{name}' must be a number")
            if value < 0:
                raise ValidationError(f"Weight for '{name}' must be non-negative")
            clean[name] = float(value)
        result['factor_weights'] = clean

    for api_name, column in _POSITIVE_INT_OPTIONS.items():
        if api_name not in data:
            continue
        value = data[api_name]
        if isinstance(value, bool) or not isinstance(value, int) or value <= 0:
            raise ValidationError(f'{api_name} must be a positive integer')
        result[column] = value

    if 'idealProfile' in data:
        if not isinstance(data['idealProfile'], dict):
            raise ValidationError('idealProfile must be an object')
        result['ideal_profile'] = data['idealProfile']

    return result
