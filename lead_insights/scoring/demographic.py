"""
Demographic factor — fit against the tenant's ideal customer profile.

Each known attribute (industry, company size, role seniority, declared budget,
equity, email domain) gets a match value in 0..1. The sub-score is the
weighted mean match over the *known* attributes; confidence is the share of
attribute weight that was actually known. Deterministic, no external calls.
"""
import re
from typing import Dict, List, Optional, Tuple

from lead_insights.scoring.base import (
    FactorScorer, FactorScore, FactorName, Signal, LeadSnapshot, ActivityWindow,
    direction_of,
)


FREE_EMAIL_PROVIDERS = {
    'gmail.com', 'yahoo.com', 'hotmail.com', 'outlook.com', 'aol.com',
    'icloud.com', 'proton.me', 'protonmail.com',
}

# Checked in order against whole words; first tier with a hit wins.
# "vice" sits in the senior tier ahead of "president" in the executive tier.
ROLE_TIERS: List[Tuple[Tuple[str, ...], float, str]] = [
    (('vice', 'vp', 'svp', 'evp'), 0.85, 'senior leader'),
    (('ceo', 'founder', 'cofounder', 'president', 'principal'), 1.0, 'executive decision maker'),
    (('cto', 'cfo', 'coo', 'cmo', 'director', 'head'), 0.85, 'senior leader'),
    (('manager', 'lead', 'senior', 'broker'), 0.5, 'manager-level'),
]
DEFAULT_ROLE_MATCH = 0.15


def role_match(title: str) -> Tuple[float, str]:
    words = set(re.findall(r'[a-z]+', title.lower()))
    for keywords, match, label in ROLE_TIERS:
        if words.intersection(keywords):
            return match, label
    return DEFAULT_ROLE_MATCH, 'individual contributor'


def industry_match(industry: str, ideal: List[str]) -> float:
    lowered = industry.strip().lower()
    if not lowered:
        return 0.0
    for target in ideal:
        t = target.lower()
        if t == lowered or t in lowered or lowered in t:
            return 1.0
    return 0.0


def size_match(size: int, bounds: Dict[str, int]) -> float:
    low = bounds.get('min') or 0
    high = bounds.get('max')
    if size < low:
        return max(0.0, size / low) * 0.6 if low else 0.0
    if high and size > high:
        # Oversized accounts still fit partially; decays with distance
        return max(0.3, high / size)
    return 1.0


def threshold_match(value: float, minimum: Optional[float]) -> float:
    if not minimum:
        return 1.0 if value > 0 else 0.0
    return max(0.0, min(1.0, value / minimum))


def email_domain_match(email: str) -> Optional[float]:
    if '@' not in email:
        return None
    domain = email.rsplit('@', 1)[1].strip().lower()
    if not domain:
        return None
    return 0.0 if domain in FREE_EMAIL_PROVIDERS else 1.0


class DemographicScorer(FactorScorer):
    factor = FactorName.DEMOGRAPHIC
    description = 'Ideal-customer-profile match on firmographics and role'

    def score(self, lead: LeadSnapshot, window: ActivityWindow, settings) -> FactorScore:
        profile = settings.ideal_profile or {}
        weights: Dict[str, float] = profile.get('attribute_weights') or {}
        total_weight = sum(w for w in weights.values() if w > 0)

        matches = self._attribute_matches(lead, profile)
        known = {name: m for name, m in matches.items() if weights.get(name, 0) > 0}
        known_weight = sum(weights[name] for name in known)

        if not known or known_weight <= 0:
            return self.neutral('No demographic attributes on file')

        fit = sum(weights[name] * m for name, (m, _) in known.items()) / known_weight
        sub_score = 100.0 * fit

        signals = []
        for name, (m, label) in known.items():
            # Points this attribute moves the sub-score away from neutral
            contribution = 100.0 * weights[name] * (m - 0.5) / known_weight
            signals.append(Signal(label=label, weight=contribution, direction=direction_of(contribution)))

        return FactorScore(
            factor=self.factor,
            sub_score=sub_score,
            sub_confidence=known_weight / total_weight if total_weight else 0.0,
            signals=signals,
            meta={'known_attributes': sorted(known)},
        )

    def _attribute_matches(self, lead: LeadSnapshot, profile) -> Dict[str, Tuple[float, str]]:
        matches = {}

        if lead.industry:
            m = industry_match(lead.industry, profile.get('industries') or [])
            verdict = 'matches' if m else 'is outside'
            matches['industry'] = (m, f"Industry '{lead.industry}' {verdict} the ideal customer profile")

        if lead.company_size is not None and lead.company_size > 0:
            m = size_match(lead.company_size, profile.get('company_size') or {})
            verdict = 'in' if m >= 1.0 else 'outside'
            matches['company_size'] = (m, f"Company size {lead.company_size} is {verdict} the target range")

        if lead.job_title:
            m, seniority = role_match(lead.job_title)
            matches['role'] = (m, f"Role '{lead.job_title}' is {seniority}")

        if lead.budget is not None:
            m = threshold_match(lead.budget, profile.get('min_budget'))
            verdict = 'meets' if m >= 1.0 else 'is below'
            matches['budget'] = (m, f"Declared budget {lead.budget:,.0f} {verdict} the target")

        if lead.equity is not None:
            m = threshold_match(lead.equity, profile.get('min_equity'))
            verdict = 'meets' if m >= 1.0 else 'is below'
            matches['equity'] = (m, f"Equity {lead.equity:,.0f} {verdict} the target")

        if lead.email:
            m = email_domain_match(lead.email)
            if m is not None:
                label = 'Corporate email domain' if m else 'Free email provider'
                matches['email_domain'] = (m, label)

        return matches
