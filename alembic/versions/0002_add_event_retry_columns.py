from __future__ import annotations
from alembic import op
import sqlalchemy as sa

revision = '0002_add_event_retry_columns'
down_revision = '0001_create_stripe_events'
branch_labels = None
depends_on = None


def upgrade():
    with op.batch_alter_table('stripe_events') as batch:
        batch.add_column(sa.Column('attempts', sa.Integer, nullable=False, server_default='0'))
        batch.add_column(sa.Column('last_error', sa.Text, nullable=True))
        batch.add_column(sa.Column('processed_at', sa.DateTime(timezone=True), nullable=True))
    op.create_index('ix_stripe_events_status_updated', 'stripe_events', ['status', 'updated_at'])


def downgrade():
    op.drop_index('ix_stripe_events_status_updated', table_name='stripe_events')
    with op.batch_alter_table('stripe_events') as batch:
        batch.drop_column('processed_at')
        batch.drop_column('last_error')
        batch.drop_column('attempts')
