"""Add webhook event log table for payment webhook idempotency

Revision ID: 002_add_webhook_event_log
Revises: 001_initial_schema
Create Date: 2026-10-18 00:00:00.000000
"""

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects.postgresql import UUID, JSONB

# revision identifiers
revision = '002_add_webhook_event_log'
down_revision = '001_initial_schema'
branch_labels = None
depends_on = None

def upgrade() -> None:
    op.execute("CREATE EXTENSION IF NOT EXISTS pgcrypto;")

    # One row per consumed delivery; event_key is derived from event type and order id
    op.create_table(
        'webhook_event_log',
        sa.Column('id', UUID(as_uuid=True), primary_key=True, server_default=sa.text('gen_random_uuid()')),
        sa.Column('event_key', sa.String(255), unique=True, nullable=False),
        sa.Column('source', sa.String(40), nullable=False),
        sa.Column('event_type', sa.String(100), nullable=False),
        sa.Column('event_data', JSONB),
        sa.Column('processed', sa.Boolean, server_default=sa.text('false'), nullable=False),
        sa.Column('processing_attempts', sa.Integer, server_default=sa.text('0'), nullable=False),
        sa.Column('error_message', sa.Text),
        sa.Column('processed_at', sa.DateTime(timezone=True)),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.CheckConstraint('processing_attempts >= 0', name='ck_webhook_attempts_non_negative')
    )

    op.create_index('ix_webhook_event_processed', 'webhook_event_log', ['processed', 'created_at'])
    op.create_index('ix_webhook_event_type', 'webhook_event_log', ['source', 'event_type'])

def downgrade() -> None:
    op.drop_index('ix_webhook_event_type', 'webhook_event_log')
    op.drop_index('ix_webhook_event_processed', 'webhook_event_log')
    op.drop_table('webhook_event_log')
