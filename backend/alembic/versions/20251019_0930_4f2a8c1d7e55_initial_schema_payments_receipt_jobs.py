"""Initial schema: payments, receipt jobs

Revision ID: 4f2a8c1d7e55
Revises:
Create Date: 2025-10-19 09:30:12.482913

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = '4f2a8c1d7e55'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Create the payment and receipt queue tables."""
    # 1. Payments table (self-referencing for recurring series)
    op.create_table(
        'payments',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), nullable=False),
        sa.Column('uuid', sa.String(length=36), nullable=False),
        sa.Column('code', sa.String(length=64), nullable=False),
        sa.Column('form_id', sa.String(), nullable=True),
        sa.Column('payment_id', sa.String(), nullable=True),
        sa.Column('customer_id', sa.String(), nullable=True),
        sa.Column('authorized_amount', sa.Numeric(precision=12, scale=2), nullable=False),
        sa.Column('currency', sa.String(length=3), nullable=False, server_default='USD'),
        sa.Column('status', sa.String(length=64), nullable=False),
        sa.Column('submitted', sa.DateTime(), nullable=True),
        sa.Column('environment', sa.String(length=32), nullable=False),
        sa.Column('order_details_long', sa.Text(), nullable=True),
        sa.Column('recurring', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('recurring_active', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('recurring_max', sa.Integer(), nullable=False, server_default='12'),
        sa.Column('recurring_next', sa.DateTime(), nullable=True),
        sa.Column('parent_id', sa.Integer(), nullable=True),
        sa.ForeignKeyConstraint(['parent_id'], ['payments.id']),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('uuid')
    )
    op.create_index(op.f('ix_payments_created_at'), 'payments', ['created_at'])
    op.create_index(op.f('ix_payments_code'), 'payments', ['code'])
    op.create_index(op.f('ix_payments_payment_id'), 'payments', ['payment_id'])
    op.create_index(op.f('ix_payments_status'), 'payments', ['status'])
    op.create_index(op.f('ix_payments_recurring_next'), 'payments', ['recurring_next'])
    op.create_index(op.f('ix_payments_parent_id'), 'payments', ['parent_id'])

    # Payments: recurring + recurring_active + recurring_next (find series due for a charge)
    op.create_index(
        'ix_payments_recurring_due',
        'payments',
        ['recurring', 'recurring_active', 'recurring_next'],
        unique=False
    )

    # 2. Receipt jobs table (references payments by ID, no foreign key)
    op.create_table(
        'receipt_jobs',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), nullable=False),
        sa.Column('queue_name', sa.String(), nullable=False, server_default='receipt_queue'),
        sa.Column('environment', sa.String(length=32), nullable=False),
        sa.Column('payment_record_id', sa.Integer(), nullable=False),
        sa.Column('mail_key', sa.String(), nullable=False, server_default='receipt'),
        sa.Column('recipient_override', sa.String(), nullable=True),
        sa.Column('attempts', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('last_error', sa.Text(), nullable=True),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index(op.f('ix_receipt_jobs_created_at'), 'receipt_jobs', ['created_at'])
    op.create_index(op.f('ix_receipt_jobs_queue_name'), 'receipt_jobs', ['queue_name'])
    op.create_index(op.f('ix_receipt_jobs_payment_record_id'), 'receipt_jobs', ['payment_record_id'])


def downgrade() -> None:
    """Drop all tables."""
    op.drop_index('ix_payments_recurring_due', table_name='payments')
    op.drop_table('receipt_jobs')
    op.drop_table('payments')
