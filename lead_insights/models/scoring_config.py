"""
TenantScoringConfig model — per-organization overrides of scoring options.

Null columns fall back to the YAML defaults (see scoring.settings).
"""
from sqlalchemy import Column, Integer, Text, DateTime, JSON
from sqlalchemy.sql import func

from lead_insights.database import Base


class TenantScoringConfig(Base):
    __tablename__ = 'tenant_scoring_configs'

    organization_id = Column(Text, primary_key=True)
    factor_weights = Column(JSON, nullable=True)
    behavioral_decay_half_life_days = Column(Integer, nullable=True)
    explanation_top_n = Column(Integer, nullable=True)
    scorer_timeout_ms = Column(Integer, nullable=True)
    recompute_timeout_ms = Column(Integer, nullable=True)
    ideal_profile = Column(JSON, nullable=True)
    updated_by = Column(Text, nullable=True)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())
