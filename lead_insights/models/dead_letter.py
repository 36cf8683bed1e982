"""
DeadLetter model — score triggers that exhausted retries or failed fatally.

Operators list and replay these from /api/dead-letters. An unresolved row
marks the lead's score as stale.
"""
from sqlalchemy import Column, Integer, Text, DateTime, Index
from sqlalchemy.sql import func

from lead_insights.database import Base, as_utc


class DeadLetter(Base):
    __tablename__ = 'dead_letters'

    id = Column(Integer, primary_key=True, autoincrement=True)
    organization_id = Column(Text, nullable=False)
    lead_id = Column(Text, nullable=False)
    activity_id = Column(Text, nullable=False)
    reason = Column(Text, nullable=False)
    attempts = Column(Integer, default=0)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    resolved_at = Column(DateTime(timezone=True), nullable=True)

    __table_args__ = (
        Index('ix_dead_letters_lead_id', 'lead_id'),
    )

    def to_dict(self) -> dict:
        return {
            'id': self.id,
            'organizationId': self.organization_id,
            'leadId': self.lead_id,
            'activityId': self.activity_id,
            'reason': self.reason,
            'attempts': self.attempts,
            'createdAt': as_utc(self.created_at).isoformat() if self.created_at else None,
            'resolvedAt': as_utc(self.resolved_at).isoformat() if self.resolved_at else None,
        }
