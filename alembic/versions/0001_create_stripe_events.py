from __future__ import annotations
from alembic import op
import sqlalchemy as sa

revision = '0001_create_stripe_events'
down_revision = None
branch_labels = None
depends_on = None


def upgrade():
    op.create_table(
        'stripe_events',
        sa.Column('id', sa.Integer, primary_key=True),
        sa.Column('event_id', sa.String(255), nullable=False),
        sa.Column('type', sa.String(255), nullable=False),
        sa.Column('payload', sa.Text, nullable=False),
        sa.Column('status', sa.String(16), nullable=False, server_default='pending'),
        sa.Column('created_at', sa.DateTime(timezone=True)),
        sa.Column('updated_at', sa.DateTime(timezone=True)),
    )
    op.create_index('ix_stripe_events_event_id', 'stripe_events', ['event_id'], unique=True)
    op.create_index('ix_stripe_events_type', 'stripe_events', ['type'])
    op.create_index('ix_stripe_events_status', 'stripe_events', ['status'])
    op.create_index('ix_stripe_events_created_at', 'stripe_events', ['created_at'])


def downgrade():
    op.drop_table('stripe_events')
