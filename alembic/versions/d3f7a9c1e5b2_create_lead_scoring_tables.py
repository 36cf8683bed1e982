"""Create lead scoring tables: leads, activities, lead_scores, tenant_scoring_configs, dead_letters

Revision ID: d3f7a9c1e5b2
Revises:
Create Date: 2026-10-19 10:00:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = 'd3f7a9c1e5b2'
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Upgrade schema."""
    op.create_table('leads',
        sa.Column('id', sa.Text(), nullable=False),
        sa.Column('organization_id', sa.Text(), nullable=False),
        sa.Column('name', sa.Text(), nullable=True),
        sa.Column('email', sa.Text(), nullable=True),
        sa.Column('company', sa.Text(), nullable=True),
        sa.Column('company_size', sa.Integer(), nullable=True),
        sa.Column('industry', sa.Text(), nullable=True),
        sa.Column('job_title', sa.Text(), nullable=True),
        sa.Column('budget', sa.Float(), nullable=True),
        sa.Column('equity', sa.Float(), nullable=True),
        sa.Column('timeframe', sa.Text(), nullable=True),
        sa.Column('extra_data', sa.JSON(), nullable=True),
        sa.Column('current_score', sa.Float(), nullable=True),
        sa.Column('score_confidence', sa.Float(), nullable=True),
        sa.Column('latest_score_id', sa.Text(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=True),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=True),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_leads_organization_id', 'leads', ['organization_id'])

    op.create_table('activities',
        sa.Column('id', sa.Text(), nullable=False),
        sa.Column('lead_id', sa.Text(), nullable=False),
        sa.Column('organization_id', sa.Text(), nullable=False),
        sa.Column('type', sa.Text(), nullable=False),
        sa.Column('direction', sa.Text(), nullable=False),
        sa.Column('occurred_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('recorded_at', sa.DateTime(timezone=True), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=True),
        sa.Column('payload', sa.JSON(), nullable=True),
        sa.ForeignKeyConstraint(['lead_id'], ['leads.id']),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_activities_lead_id_occurred_at', 'activities', ['lead_id', 'occurred_at'])

    op.create_table('lead_scores',
        sa.Column('id', sa.Text(), nullable=False),
        sa.Column('lead_id', sa.Text(), nullable=False),
        sa.Column('organization_id', sa.Text(), nullable=False),
        sa.Column('activity_id', sa.Text(), nullable=False),
        sa.Column('sequence', sa.Integer(), nullable=False),
        sa.Column('score', sa.Float(), nullable=False),
        sa.Column('confidence', sa.Float(), nullable=False),
        sa.Column('tier', sa.Text(), nullable=False),
        sa.Column('insufficient_data', sa.Boolean(), nullable=True),
        sa.Column('model_version', sa.Text(), nullable=False),
        sa.Column('factor_breakdown', sa.JSON(), nullable=True),
        sa.Column('explanation', sa.JSON(), nullable=True),
        sa.Column('recommendations', sa.JSON(), nullable=True),
        sa.Column('risk_factors', sa.JSON(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('published_at', sa.DateTime(timezone=True), nullable=True),
        sa.ForeignKeyConstraint(['lead_id'], ['leads.id']),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('lead_id', 'activity_id', name='uq_lead_score_activity'),
    )
    op.create_index('ix_lead_scores_lead_id_sequence', 'lead_scores', ['lead_id', 'sequence'])

    op.create_table('tenant_scoring_configs',
        sa.Column('organization_id', sa.Text(), nullable=False),
        sa.Column('factor_weights', sa.JSON(), nullable=True),
        sa.Column('behavioral_decay_half_life_days', sa.Integer(), nullable=True),
        sa.Column('explanation_top_n', sa.Integer(), nullable=True),
        sa.Column('scorer_timeout_ms', sa.Integer(), nullable=True),
        sa.Column('recompute_timeout_ms', sa.Integer(), nullable=True),
        sa.Column('ideal_profile', sa.JSON(), nullable=True),
        sa.Column('updated_by', sa.Text(), nullable=True),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=True),
        sa.PrimaryKeyConstraint('organization_id'),
    )

    op.create_table('dead_letters',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('organization_id', sa.Text(), nullable=False),
        sa.Column('lead_id', sa.Text(), nullable=False),
        sa.Column('activity_id', sa.Text(), nullable=False),
        sa.Column('reason', sa.Text(), nullable=False),
        sa.Column('attempts', sa.Integer(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=True),
        sa.Column('resolved_at', sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_dead_letters_lead_id', 'dead_letters', ['lead_id'])


def downgrade() -> None:
    """Downgrade schema."""
    op.drop_index('ix_dead_letters_lead_id', 'dead_letters')
    op.drop_table('dead_letters')
    op.drop_table('tenant_scoring_configs')
    op.drop_index('ix_lead_scores_lead_id_sequence', 'lead_scores')
    op.drop_table('lead_scores')
    op.drop_index('ix_activities_lead_id_occurred_at', 'activities')
    op.drop_table('activities')
    op.drop_index('ix_leads_organization_id', 'leads')
    op.drop_table('leads')
