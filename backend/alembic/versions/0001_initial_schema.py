"""Initial schema: profiles, analyses, usage_logs

Revision ID: 0001_initial_schema
Revises:
Create Date: 2026-10-19

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = '0001_initial_schema'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Create the profile, analysis and usage log tables."""

    op.create_table(
        'profiles',
        sa.Column('id', sa.String(64), primary_key=True),
        sa.Column('email', sa.String(320)),

        # Plan and usage cycle
        sa.Column('plan', sa.String(10), server_default='none', nullable=False),
        sa.Column('analyses_used', sa.Integer(), server_default='0', nullable=False),
        sa.Column('analyses_limit', sa.Integer(), server_default='0', nullable=False),
        sa.Column('billing_cycle_start', sa.DateTime(timezone=True), nullable=False),

        # Paddle correlation
        sa.Column('paddle_subscription_id', sa.String(255)),
        sa.Column('paddle_customer_id', sa.String(255)),

        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index('ix_profiles_paddle_customer_id', 'profiles', ['paddle_customer_id'])

    op.create_table(
        'analyses',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('user_id', sa.String(64), nullable=False),
        sa.Column('file_name', sa.String(2048), nullable=False),
        sa.Column('source_type', sa.String(10), server_default='upload', nullable=False),
        sa.Column('audio_path', sa.String(1024)),
        sa.Column('tier', sa.String(10), nullable=False),
        sa.Column('status', sa.String(20), server_default='pending', nullable=False),
        sa.Column('paddle_transaction_id', sa.String(255)),
        sa.Column('transcript', sa.Text()),
        sa.Column('result', sa.JSON()),
        sa.Column('processing_error', sa.Text()),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False),
        sa.CheckConstraint(
            "status IN ('pending', 'paid', 'processing', 'completed', 'error')",
            name='ck_analyses_status',
        ),
    )
    op.create_index('ix_analyses_user_id', 'analyses', ['user_id'])
    op.create_index('ix_analyses_status', 'analyses', ['status'])
    op.create_index('ix_analyses_paddle_transaction_id', 'analyses', ['paddle_transaction_id'])

    op.create_table(
        'usage_logs',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('user_id', sa.String(64), nullable=False),
        sa.Column('analysis_id', sa.String(36)),
        sa.Column('plan_at_time', sa.String(10), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index('ix_usage_logs_user_id', 'usage_logs', ['user_id'])
    op.create_index('ix_usage_logs_analysis_id', 'usage_logs', ['analysis_id'])


def downgrade() -> None:
    """Drop all tables."""
    op.drop_index('ix_usage_logs_analysis_id', table_name='usage_logs')
    op.drop_index('ix_usage_logs_user_id', table_name='usage_logs')
    op.drop_table('usage_logs')

    op.drop_index('ix_analyses_paddle_transaction_id', table_name='analyses')
    op.drop_index('ix_analyses_status', table_name='analyses')
    op.drop_index('ix_analyses_user_id', table_name='analyses')
    op.drop_table('analyses')

    op.drop_index('ix_profiles_paddle_customer_id', table_name='profiles')
    op.drop_table('profiles')
