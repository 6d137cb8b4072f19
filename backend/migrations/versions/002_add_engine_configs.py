"""Add per-account engine config versions

Revision ID: 002_add_engine_configs
Revises: 001_create_network_engine_tables
Create Date: 2024-06-15 09:00:00.000000

"""
from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision = '002_add_engine_configs'
down_revision = '001_create_network_engine_tables'
branch_labels = None
depends_on = None


def upgrade():
    """Recalibrated engine configs, one row per account and version"""

    op.create_table(
        'engine_configs',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('account_id', sa.String(36), nullable=False, index=True),
        sa.Column('version', sa.Integer(), nullable=False),
        sa.Column('payload', sa.JSON(), nullable=False),
        sa.Column('created_at', sa.DateTime(), nullable=False, server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.Column('updated_at', sa.DateTime(), nullable=False, server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.UniqueConstraint('account_id', 'version', name='uq_engine_config_account_version'),
    )


def downgrade():
    """Drop engine config versions"""

    op.drop_table('engine_configs')
