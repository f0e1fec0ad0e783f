from __future__ import annotations
from alembic import op
import sqlalchemy as sa

revision = '0004_add_event_claim_token'
down_revision = '0003_create_order_tables'
branch_labels = None
depends_on = None


def upgrade():
    with op.batch_alter_table('stripe_events') as batch:
        batch.add_column(sa.Column('claim_token', sa.String(64), nullable=True))


def downgrade():
    with op.batch_alter_table('stripe_events') as batch:
        batch.drop_column('claim_token')
