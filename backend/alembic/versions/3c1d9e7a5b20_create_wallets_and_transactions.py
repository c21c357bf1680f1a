"""create wallets and transactions

Revision ID: 3c1d9e7a5b20
Revises:
Create Date: 2026-10-17 12:00:00.000000

"""
from typing import Sequence, Union
from alembic import op
import sqlalchemy as sa

revision: str = '3c1d9e7a5b20'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

TRANSACTION_TYPES = ('DEPOSIT', 'WITHDRAWAL', 'BUY', 'SELL', 'TRANSFER_IN', 'TRANSFER_OUT')
TRANSACTION_STATUSES = ('PENDING', 'COMPLETED', 'FAILED', 'CANCELLED')


def upgrade() -> None:
    op.create_table(
        'wallets',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('user_id', sa.String(length=320), nullable=False),
        sa.Column('asset', sa.String(length=20), nullable=False),
        sa.Column('name', sa.String(length=100), nullable=False),
        sa.Column('balance', sa.Numeric(precision=28, scale=8), nullable=False, server_default='0'),
        sa.Column('cached_price', sa.Numeric(precision=28, scale=8), nullable=True),
        sa.Column('version', sa.Integer(), nullable=False, server_default='1'),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.UniqueConstraint('user_id', 'asset', name='uq_wallet_user_asset'),
        sa.CheckConstraint('balance >= 0', name='ck_wallet_balance_non_negative'),
    )
    op.create_index('ix_wallets_user_id', 'wallets', ['user_id'])

    op.create_table(
        'transactions',
        sa.Column('id', sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column('user_id', sa.String(length=320), nullable=False),
        sa.Column('asset', sa.String(length=20), nullable=False),
        sa.Column('type', sa.Enum(*TRANSACTION_TYPES, name='transaction_type'), nullable=False),
        sa.Column('amount', sa.Numeric(precision=28, scale=8), nullable=False),
        sa.Column('price', sa.Numeric(precision=28, scale=8), nullable=True),
        sa.Column('value', sa.Numeric(precision=28, scale=8), nullable=True),
        sa.Column('fee', sa.Numeric(precision=28, scale=8), nullable=False, server_default='0'),
        sa.Column('status', sa.Enum(*TRANSACTION_STATUSES, name='transaction_status'), nullable=False),
        sa.Column('description', sa.String(length=255), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column('completed_at', sa.DateTime(timezone=True), nullable=True),
    )
    op.create_index('ix_transactions_user_created', 'transactions', ['user_id', 'created_at'])


def downgrade() -> None:
    op.drop_index('ix_transactions_user_created', table_name='transactions')
    op.drop_table('transactions')
    op.drop_index('ix_wallets_user_id', table_name='wallets')
    op.drop_table('wallets')
    sa.Enum(name='transaction_status').drop(op.get_bind(), checkfirst=True)
    sa.Enum(name='transaction_type').drop(op.get_bind(), checkfirst=True)
