"""
Activity model — immutable interaction event tied to exactly one lead.

Created by CRUD/integration layers; the engine only reads it. `direction` is
'inbound' when the lead initiated the interaction. `payload` carries the
upstream hints the scorers consume: duration_seconds, sentiment, intent,
buying_signals, outcome.
"""
import uuid

from sqlalchemy import Column, Text, DateTime, JSON, ForeignKey, Index
from sqlalchemy.sql import func

from lead_insights.database import Base


class Activity(Base):
    __tablename__ = 'activities'

    id = Column(Text, primary_key=True, default=lambda: str(uuid.uuid4()))
    lead_id = Column(Text, ForeignKey('leads.id'), nullable=False)
    organization_id = Column(Text, nullable=False)
    type = Column(Text, nullable=False)                   # message/call/meeting/page_view/stage_change/note
    direction = Column(Text, nullable=False, default='outbound')
    occurred_at = Column(DateTime(timezone=True), nullable=False)
    recorded_at = Column(DateTime(timezone=True), server_default=func.now())
    payload = Column(JSON, default=dict)

    __table_args__ = (
        Index('ix_activities_lead_id_occurred_at', 'lead_id', 'occurred_at'),
    )
