"""
Lead model — tenant-scoped prospect with demographic fields and a score cache.

Demographic columns are written by CRUD layers outside this service. The
current_score / score_confidence / latest_score_id triple is a denormalized
cache of the newest LeadScore row and is only written by ScoreStore.
"""
import uuid

from sqlalchemy import Column, Integer, Float, Text, DateTime, JSON, Index
from sqlalchemy.sql import func

from lead_insights.database import Base


class Lead(Base):
    __tablename__ = 'leads'

    id = Column(Text, primary_key=True, default=lambda: str(uuid.uuid4()))
    organization_id = Column(Text, nullable=False)
    name = Column(Text, default='')
    email = Column(Text, nullable=True)
    company = Column(Text, nullable=True)
    company_size = Column(Integer, nullable=True)     # employee count
    industry = Column(Text, nullable=True)
    job_title = Column(Text, nullable=True)
    budget = Column(Float, nullable=True)            # declared budget
    equity = Column(Float, nullable=True)            # real-estate variants: owner equity
    timeframe = Column(Text, nullable=True)          # declared, e.g. "within 30 days"
    extra_data = Column(JSON, nullable=True)
    current_score = Column(Float, nullable=True)     # 0-100
    score_confidence = Column(Float, nullable=True)  # 0.0-1.0
    latest_score_id = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    __table_args__ = (
        Index('ix_leads_organization_id', 'organization_id'),
    )
