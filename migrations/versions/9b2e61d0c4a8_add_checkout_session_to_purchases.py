"""Add stripe_checkout_session_id to purchases

Links each purchase to the checkout session that paid for it and makes
(user_id, product_id, stripe_checkout_session_id) unique. Until this runs,
the webhook records purchases without the session link.

Revision ID: 9b2e61d0c4a8
Revises: 4f1c2a9b7d30
Create Date: 2026-09-16 09:30:00.000000

"""
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = '9b2e61d0c4a8'
down_revision = '4f1c2a9b7d30'
branch_labels = None
depends_on = None


def upgrade():
    with op.batch_alter_table('purchases', schema=None) as batch_op:
        batch_op.add_column(sa.Column('stripe_checkout_session_id', sa.String(length=255), nullable=True))
        batch_op.create_index('ix_purchases_stripe_checkout_session_id', ['stripe_checkout_session_id'])
        batch_op.create_unique_constraint(
            'uq_purchases_user_product_session',
            ['user_id', 'product_id', 'stripe_checkout_session_id'],
        )


def downgrade():
    with op.batch_alter_table('purchases', schema=None) as batch_op:
        batch_op.drop_constraint('uq_purchases_user_product_session', type_='unique')
        batch_op.drop_index('ix_purchases_stripe_checkout_session_id')
        batch_op.drop_column('stripe_checkout_session_id')
