"""create custody tables

Revision ID: 20261019_000001
Revises: 
Create Date: 2026-10-19

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = '20261019_000001'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Create users, custodial accounts, deposit, sweep and scanner tables."""
    op.create_table(
        'users',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('telegram_id', sa.BigInteger(), nullable=False),
        sa.Column('username', sa.String(255), nullable=True),
        sa.Column('ticket_balance', sa.BigInteger(), nullable=False, server_default='0'),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sa.CheckConstraint('ticket_balance >= 0', name='check_user_ticket_balance_non_negative'),
    )
    op.create_index('ix_users_telegram_id', 'users', ['telegram_id'], unique=True)

    op.create_table(
        'custodial_accounts',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('user_id', sa.Integer(), nullable=False),
        sa.Column('address', sa.String(42), nullable=False),
        sa.Column('encrypted_private_key', sa.Text(), nullable=False),
        sa.Column('last_sweep_status', sa.String(32), nullable=True),
        sa.Column('last_sweep_key', sa.String(64), nullable=True),
        sa.Column('last_sweep_reason', sa.Text(), nullable=True),
        sa.Column('last_sweep_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sa.ForeignKeyConstraint(['user_id'], ['users.id'], ondelete='CASCADE'),
    )
    op.create_index('ix_custodial_accounts_user_id', 'custodial_accounts', ['user_id'], unique=True)
    op.create_index('ix_custodial_accounts_address', 'custodial_accounts', ['address'], unique=True)

    op.create_table(
        'deposit_records',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('idempotency_key', sa.String(64), nullable=False),
        sa.Column('user_id', sa.Integer(), nullable=False),
        sa.Column('custodial_account_id', sa.Integer(), nullable=False),
        sa.Column('amount_requested', sa.Integer(), nullable=False),
        sa.Column('status', sa.String(32), nullable=False),
        sa.Column('source', sa.String(20), nullable=False),
        sa.Column('chain_tx_hash', sa.String(66), nullable=True),
        sa.Column('value_wei', sa.DECIMAL(38, 0), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sa.ForeignKeyConstraint(['user_id'], ['users.id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(
            ['custodial_account_id'], ['custodial_accounts.id'], ondelete='CASCADE'
        ),
        sa.CheckConstraint('amount_requested > 0', name='check_deposit_record_amount_positive'),
    )
    op.create_index('ix_deposit_records_idempotency_key', 'deposit_records', ['idempotency_key'], unique=True)
    op.create_index('ix_deposit_records_user_id', 'deposit_records', ['user_id'])
    op.create_index('ix_deposit_records_custodial_account_id', 'deposit_records', ['custodial_account_id'])
    op.create_index('ix_deposit_records_status', 'deposit_records', ['status'])
    op.create_index('idx_deposit_record_status_created', 'deposit_records', ['status', 'created_at'])

    op.create_table(
        'balance_history',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('user_id', sa.Integer(), nullable=False),
        sa.Column('entry_type', sa.String(20), nullable=False),
        sa.Column('amount', sa.BigInteger(), nullable=False),
        sa.Column('idempotency_key', sa.String(64), nullable=False),
        sa.Column('balance_after', sa.BigInteger(), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sa.ForeignKeyConstraint(['user_id'], ['users.id'], ondelete='CASCADE'),
    )
    op.create_index('ix_balance_history_user_id', 'balance_history', ['user_id'])
    op.create_index('ix_balance_history_idempotency_key', 'balance_history', ['idempotency_key'], unique=True)

    op.create_table(
        'sweep_records',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('idempotency_key', sa.String(64), nullable=False),
        sa.Column('custodial_account_id', sa.Integer(), nullable=False),
        sa.Column('status', sa.String(32), nullable=False),
        sa.Column('amount_wei', sa.DECIMAL(38, 0), nullable=True),
        sa.Column('tx_hash', sa.String(66), nullable=True),
        sa.Column('attempts', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('reason', sa.Text(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sa.ForeignKeyConstraint(
            ['custodial_account_id'], ['custodial_accounts.id'], ondelete='CASCADE'
        ),
    )
    op.create_index('ix_sweep_records_idempotency_key', 'sweep_records', ['idempotency_key'], unique=True)
    op.create_index('ix_sweep_records_custodial_account_id', 'sweep_records', ['custodial_account_id'])
    op.create_index('ix_sweep_records_status', 'sweep_records', ['status'])

    op.create_table(
        'sweep_status_events',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('idempotency_key', sa.String(64), nullable=False),
        sa.Column('custodial_account_id', sa.Integer(), nullable=False),
        sa.Column('status', sa.String(32), nullable=False),
        sa.Column('reason', sa.Text(), nullable=True),
        sa.Column('amount_wei', sa.DECIMAL(38, 0), nullable=True),
        sa.Column('tx_hash', sa.String(66), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sa.ForeignKeyConstraint(
            ['custodial_account_id'], ['custodial_accounts.id'], ondelete='CASCADE'
        ),
    )
    op.create_index('ix_sweep_status_events_idempotency_key', 'sweep_status_events', ['idempotency_key'])

    op.create_table(
        'chain_cursors',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('name', sa.String(50), nullable=False),
        sa.Column('last_processed_block', sa.BigInteger(), nullable=False, server_default='0'),
        sa.Column('last_error', sa.Text(), nullable=True),
        sa.Column('error_count', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_chain_cursors_name', 'chain_cursors', ['name'], unique=True)

    op.create_table(
        'unprocessed_transactions',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('block_number', sa.BigInteger(), nullable=False),
        sa.Column('tx_hash', sa.String(66), nullable=False),
        sa.Column('payload', sa.JSON(), nullable=False),
        sa.Column('attempts', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('last_error', sa.Text(), nullable=True),
        sa.Column('abandoned', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_unprocessed_transactions_block_number', 'unprocessed_transactions', ['block_number'])
    op.create_index('ix_unprocessed_transactions_tx_hash', 'unprocessed_transactions', ['tx_hash'], unique=True)
    op.create_index('ix_unprocessed_transactions_abandoned', 'unprocessed_transactions', ['abandoned'])


def downgrade() -> None:
    """Drop custody tables."""
    op.drop_table('unprocessed_transactions')
    op.drop_table('chain_cursors')
    op.drop_table('sweep_status_events')
    op.drop_table('sweep_records')
    op.drop_table('balance_history')
    op.drop_table('deposit_records')
    op.drop_table('custodial_accounts')
    op.drop_table('users')
