"""
LeadScore model — append-only history, one row per accepted recomputation.

(lead_id, activity_id) is unique: the causing activity is the idempotency key.
`sequence` and `created_at` strictly increase per lead; rows are never updated
except for published_at, which is set once the lead.scored event is out.
"""
import uuid

from sqlalchemy import (
    Column, Integer, Float, Text, Boolean, DateTime, JSON, ForeignKey,
    UniqueConstraint, Index,
)

from lead_insights.database import Base, as_utc


class LeadScore(Base):
    __tablename__ = 'lead_scores'

    id = Column(Text, primary_key=True, default=lambda: str(uuid.uuid4()))
    lead_id = Column(Text, ForeignKey('leads.id'), nullable=False)
    organization_id = Column(Text, nullable=False)
    activity_id = Column(Text, nullable=False)
    sequence = Column(Integer, nullable=False)
    score = Column(Float, nullable=False)                  # 0-100
    confidence = Column(Float, nullable=False)             # 0.0-1.0
    tier = Column(Text, nullable=False)                    # hot/warm/cool/cold
    insufficient_data = Column(Boolean, default=False)
    model_version = Column(Text, nullable=False)
    factor_breakdown = Column(JSON, default=dict)          # {factor: FactorScore.to_dict()}
    explanation = Column(JSON, default=list)
    recommendations = Column(JSON, default=list)
    risk_factors = Column(JSON, default=list)
    created_at = Column(DateTime(timezone=True), nullable=False)
    published_at = Column(DateTime(timezone=True), nullable=True)   # set once lead.scored went out

    __table_args__ = (
        UniqueConstraint('lead_id', 'activity_id', name='uq_lead_score_activity'),
        Index('ix_lead_scores_lead_id_sequence', 'lead_id', 'sequence'),
    )

    def to_dict(self, stale: bool = False) -> dict:
        return {
            'scoreId': self.id,
            'leadId': self.lead_id,
            'organizationId': self.organization_id,
            'activityId': self.activity_id,
            'score': self.score,
            'confidence': self.confidence,
            'tier': self.tier,
            'insufficientData': bool(self.insufficient_data),
            'modelVersion': self.model_version,
            'factorBreakdown': self.factor_breakdown or {},
            'explanation': self.explanation or [],
            'recommendations': self.recommendations or [],
            'riskFactors': self.risk_factors or [],
            'createdAt': as_utc(self.created_at).isoformat() if self.created_at else None,
            'publishedAt': as_utc(self.published_at).isoformat() if self.published_at else None,
            'stale': stale,
        }
