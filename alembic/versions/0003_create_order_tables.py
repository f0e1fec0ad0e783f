from __future__ import annotations
from alembic import op
import sqlalchemy as sa

revision = '0003_create_order_tables'
down_revision = '0002_add_event_retry_columns'
branch_labels = None
depends_on = None


def upgrade():
    op.create_table(
        'customers',
        sa.Column('id', sa.Integer, primary_key=True),
        sa.Column('company_id', sa.String(64), index=True),
        sa.Column('name', sa.String(255)),
        sa.Column('email', sa.String(255), index=True),
        sa.Column('phone', sa.String(64)),
        sa.Column('type', sa.String(32)),
        sa.Column('created_at', sa.DateTime(timezone=True)),
    )
    op.create_index('ix_customers_company_email', 'customers', ['company_id', 'email'])
    op.create_table(
        'places',
        sa.Column('id', sa.Integer, primary_key=True),
        sa.Column('company_id', sa.String(64), index=True),
        sa.Column('name', sa.String(255), index=True),
        sa.Column('street1', sa.String(255)),
        sa.Column('street2', sa.String(255)),
        sa.Column('city', sa.String(128)),
        sa.Column('province', sa.String(128)),
        sa.Column('postal_code', sa.String(32)),
        sa.Column('country', sa.String(8)),
        sa.Column('latitude', sa.Float),
        sa.Column('longitude', sa.Float),
        sa.Column('created_at', sa.DateTime(timezone=True), index=True),
    )
    op.create_table(
        'orders',
        sa.Column('id', sa.Integer, primary_key=True),
        sa.Column('public_id', sa.String(64), unique=True, index=True),
        sa.Column('company_id', sa.String(64), index=True),
        sa.Column('customer_id', sa.Integer, sa.ForeignKey('customers.id'), index=True),
        sa.Column('pickup_place_id', sa.Integer, sa.ForeignKey('places.id')),
        sa.Column('dropoff_place_id', sa.Integer, sa.ForeignKey('places.id')),
        sa.Column('provider_session_id', sa.String(255), unique=True, index=True),
        sa.Column('type', sa.String(32)),
        sa.Column('status', sa.String(32), index=True),
        sa.Column('meta', sa.JSON),
        sa.Column('created_at', sa.DateTime(timezone=True), index=True),
    )
    op.create_table(
        'order_items',
        sa.Column('id', sa.Integer, primary_key=True),
        sa.Column('order_id', sa.Integer, sa.ForeignKey('orders.id'), index=True),
        sa.Column('name', sa.String(255)),
        sa.Column('description', sa.String(512)),
        sa.Column('quantity', sa.Integer),
        sa.Column('amount_total', sa.Integer),
        sa.Column('currency', sa.String(8)),
    )


def downgrade():
    op.drop_table('order_items')
    op.drop_table('orders')
    op.drop_table('places')
    op.drop_table('customers')
