"""Create network engine tables

Revision ID: 001_create_network_engine_tables
Revises:
Create Date: 2024-06-01 12:00:00.000000

"""
from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision = '001_create_network_engine_tables'
down_revision = None
branch_labels = None
depends_on = None


def _timestamps():
    return [
        sa.Column('created_at', sa.DateTime(), nullable=False, server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.Column('updated_at', sa.DateTime(), nullable=False, server_default=sa.text('CURRENT_TIMESTAMP')),
    ]


def upgrade():
    """Contacts, relationship graph, opportunities and notification state"""

    op.create_table(
        'contacts',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('account_id', sa.String(36), nullable=False, index=True),
        sa.Column('first_name', sa.String(100), server_default=''),
        sa.Column('last_name', sa.String(100), server_default=''),
        sa.Column('email', sa.String(255), index=True),
        sa.Column('company', sa.String(255), index=True),
        sa.Column('position', sa.String(255)),
        sa.Column('industry', sa.String(100)),
        sa.Column('city', sa.String(100)),
        sa.Column('state', sa.String(100)),
        sa.Column('country', sa.String(100)),
        sa.Column('tags', sa.JSON()),
        sa.Column('source', sa.String(50), server_default='manual'),
        sa.Column('status', sa.String(20), server_default='ACTIVE', index=True),
        sa.Column('tier', sa.String(20)),
        sa.Column('relationship_type', sa.String(30)),
        sa.Column('profile_updated_at', sa.DateTime()),
        sa.Column('last_contact_date', sa.DateTime()),
        sa.Column('connection_date', sa.DateTime()),
        sa.Column('outreach_sent', sa.Integer(), server_default='0'),
        sa.Column('outreach_responded', sa.Integer(), server_default='0'),
        sa.Column('campaign_contacts', sa.Integer(), server_default='0'),
        sa.Column('campaign_responses', sa.Integer(), server_default='0'),
        sa.Column('influence_score', sa.Float()),
        sa.Column('betweenness_centrality', sa.Float()),
        sa.Column('total_connections', sa.Integer()),
        sa.Column('priority_score', sa.Float()),
        sa.Column('opportunity_score', sa.Float()),
        sa.Column('strategic_value', sa.Float()),
        sa.Column('opportunity_flags', sa.JSON()),
        sa.Column('scoring_factors', sa.JSON()),
        sa.Column('last_scored_at', sa.DateTime()),
        sa.Column('notes', sa.Text()),
        *_timestamps(),
    )

    op.create_table(
        'contact_relationships',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('contact_id', sa.String(36), sa.ForeignKey('contacts.id', ondelete='CASCADE'),
                  nullable=False, index=True),
        sa.Column('related_contact_id', sa.String(36), sa.ForeignKey('contacts.id', ondelete='CASCADE'),
                  nullable=False, index=True),
        sa.Column('relationship_type', sa.String(30), nullable=False),
        sa.Column('strength', sa.Float(), server_default='0.5'),
        sa.Column('confidence', sa.Float(), server_default='1.0'),
        sa.Column('notes', sa.Text()),
        sa.Column('is_verified', sa.Boolean(), server_default=sa.false()),
        sa.Column('is_mutual', sa.Boolean(), server_default=sa.false()),
        sa.Column('source', sa.String(50), server_default='manual'),
        *_timestamps(),
        sa.UniqueConstraint('contact_id', 'related_contact_id', 'relationship_type', name='uq_relationship_triple'),
    )

    op.create_table(
        'potential_relationships',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('account_id', sa.String(36), nullable=False, index=True),
        sa.Column('contact_id', sa.String(36), sa.ForeignKey('contacts.id', ondelete='CASCADE'), nullable=False),
        sa.Column('related_contact_id', sa.String(36), sa.ForeignKey('contacts.id', ondelete='CASCADE'),
                  nullable=False),
        sa.Column('inferred_type', sa.String(30), nullable=False),
        sa.Column('confidence', sa.Float(), nullable=False),
        sa.Column('evidence', sa.JSON()),
        sa.Column('fingerprint', sa.String(64), nullable=False, unique=True, index=True),
        sa.Column('status', sa.String(20), server_default='PENDING', index=True),
        sa.Column('source', sa.String(50), server_default='auto_discovery'),
        sa.Column('reviewed_at', sa.DateTime()),
        *_timestamps(),
    )

    op.create_table(
        'opportunity_suggestions',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('account_id', sa.String(36), nullable=False, index=True),
        sa.Column('category', sa.String(30), nullable=False, index=True),
        sa.Column('type', sa.String(30), nullable=False),
        sa.Column('title', sa.String(255), nullable=False),
        sa.Column('description', sa.Text()),
        sa.Column('confidence_score', sa.Float(), nullable=False),
        sa.Column('impact_score', sa.Float(), nullable=False),
        sa.Column('urgency_score', sa.Float(), server_default='50.0'),
        sa.Column('priority', sa.String(20), nullable=False, index=True),
        sa.Column('status', sa.String(20), server_default='PENDING', index=True),
        sa.Column('primary_contact_id', sa.String(36), sa.ForeignKey('contacts.id', ondelete='CASCADE'),
                  nullable=False),
        sa.Column('secondary_contact_id', sa.String(36), sa.ForeignKey('contacts.id', ondelete='SET NULL')),
        sa.Column('path_signature', sa.String(255), server_default=''),
        sa.Column('reasoning', sa.JSON()),
        sa.Column('narrative', sa.Text()),
        sa.Column('expires_at', sa.DateTime()),
        sa.Column('acted_at', sa.DateTime()),
        sa.Column('completed_at', sa.DateTime()),
        sa.Column('metadata', sa.JSON()),
        *_timestamps(),
    )
    op.create_index(
        'idx_opportunity_dedup',
        'opportunity_suggestions',
        ['category', 'primary_contact_id', 'path_signature'],
    )

    op.create_table(
        'opportunity_feedback',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('opportunity_id', sa.String(36),
                  sa.ForeignKey('opportunity_suggestions.id', ondelete='CASCADE'), nullable=False, unique=True),
        sa.Column('user_id', sa.String(36)),
        sa.Column('rating', sa.Integer(), nullable=False),
        sa.Column('actual_outcome', sa.String(30), nullable=False),
        sa.Column('actual_impact', sa.Float(), nullable=False),
        sa.Column('time_invested', sa.Float(), server_default='0'),
        sa.Column('feedback', sa.Text()),
        sa.Column('would_recommend', sa.Boolean()),
        *_timestamps(),
    )

    op.create_table(
        'notification_settings',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('user_id', sa.String(36), nullable=False, unique=True, index=True),
        sa.Column('account_id', sa.String(36), nullable=False, index=True),
        sa.Column('enabled_categories', sa.JSON()),
        sa.Column('min_confidence', sa.Float(), server_default='0.4'),
        sa.Column('min_impact', sa.Float(), server_default='60.0'),
        sa.Column('daily_digest', sa.Boolean(), server_default=sa.true()),
        sa.Column('real_time_alerts', sa.Boolean(), server_default=sa.true()),
        sa.Column('urgent_only', sa.Boolean(), server_default=sa.false()),
        *_timestamps(),
    )

    op.create_table(
        'notification_deliveries',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('user_id', sa.String(36), nullable=False, index=True),
        sa.Column('opportunity_id', sa.String(36), nullable=False),
        sa.Column('state', sa.String(20), server_default='sent'),
        *_timestamps(),
        sa.UniqueConstraint('user_id', 'opportunity_id', name='uq_delivery_user_opportunity'),
    )


def downgrade():
    """Drop all network engine tables"""

    op.drop_table('notification_deliveries')
    op.drop_table('notification_settings')
    op.drop_table('opportunity_feedback')
    op.drop_index('idx_opportunity_dedup', 'opportunity_suggestions')
    op.drop_table('opportunity_suggestions')
    op.drop_table('potential_relationships')
    op.drop_table('contact_relationships')
    op.drop_table('contacts')
