"""initial ledger schema: wallets, trading, funding, alerts, notifications

Revision ID: 3f9a1c7e2b40
Revises:
Create Date: 2026-10-17 00:00:00.000000

"""
from typing import Sequence, Union
from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

revision: str = '3f9a1c7e2b40'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

AMOUNT = sa.Numeric(precision=20, scale=8)

# shared by trading_positions and trading_orders
trade_side = postgresql.ENUM('BUY', 'SELL', name='tradeside', create_type=False)


def upgrade() -> None:
    trade_side.create(op.get_bind(), checkfirst=True)

    op.create_table(
        'users',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('email', sa.String(length=255), nullable=False),
        sa.Column('name', sa.String(length=100), nullable=True),
        sa.Column('demo_mode_enabled', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index('ix_users_email', 'users', ['email'], unique=True)

    op.create_table(
        'wallets',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('user_id', sa.Integer(), sa.ForeignKey('users.id'), nullable=False),
        sa.Column('currency', sa.String(length=10), nullable=False),
        sa.Column('currency_type', sa.Enum('FIAT', 'CRYPTO', name='currencytype'), nullable=False),
        sa.Column('balance', AMOUNT, nullable=False, server_default='0'),
        sa.Column('available_balance', AMOUNT, nullable=False, server_default='0'),
        sa.Column('locked_balance', AMOUNT, nullable=False, server_default='0'),
        sa.Column('is_default', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('version', sa.Integer(), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.CheckConstraint('balance >= 0', name='ck_wallet_balance_non_negative'),
        sa.CheckConstraint('available_balance >= 0', name='ck_wallet_available_non_negative'),
        sa.CheckConstraint('locked_balance >= 0', name='ck_wallet_locked_non_negative'),
    )
    op.create_index('ix_wallets_user_id', 'wallets', ['user_id'])

    op.create_table(
        'wallet_transactions',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('wallet_id', sa.Integer(), sa.ForeignKey('wallets.id', ondelete='RESTRICT'), nullable=False),
        sa.Column('user_id', sa.Integer(), sa.ForeignKey('users.id'), nullable=False),
        sa.Column('transaction_type', sa.Enum(
            'DEPOSIT', 'WITHDRAWAL', 'TRANSFER_IN', 'TRANSFER_OUT', 'LOCK', 'UNLOCK',
            name='transactiontype'), nullable=False),
        sa.Column('amount', AMOUNT, nullable=False),
        sa.Column('fee', AMOUNT, nullable=False, server_default='0'),
        sa.Column('status', sa.String(length=20), nullable=False, server_default='COMPLETED'),
        sa.Column('description', sa.String(length=255), nullable=True),
        sa.Column('reference_id', sa.String(length=64), nullable=True),
        sa.Column('metadata', sa.JSON(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index('ix_wallet_transactions_wallet_id', 'wallet_transactions', ['wallet_id'])
    op.create_index('ix_wallet_transactions_user_id', 'wallet_transactions', ['user_id'])
    op.create_index('ix_wallet_transactions_reference_id', 'wallet_transactions', ['reference_id'])

    op.create_table(
        'trading_wallets',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('user_id', sa.Integer(), sa.ForeignKey('users.id'), nullable=False),
        sa.Column('wallet_type', sa.Enum('DEMO', 'LIVE', name='tradingwallettype'), nullable=False),
        sa.Column('balance', AMOUNT, nullable=False, server_default='0'),
        sa.Column('available_margin', AMOUNT, nullable=False, server_default='0'),
        sa.Column('used_margin', AMOUNT, nullable=False, server_default='0'),
        sa.Column('equity', AMOUNT, nullable=False, server_default='0'),
        sa.Column('leverage', sa.Integer(), nullable=False, server_default='50'),
        sa.Column('margin_call_level', sa.Numeric(5, 2), nullable=False, server_default='80'),
        sa.Column('margin_stop_out_level', sa.Numeric(5, 2), nullable=False, server_default='50'),
        sa.Column('risk_percentage', sa.Numeric(5, 2), nullable=False, server_default='2'),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('version', sa.Integer(), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.UniqueConstraint('user_id', 'wallet_type', name='uq_trading_wallet_user_type'),
    )

    op.create_table(
        'trading_positions',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('user_id', sa.Integer(), sa.ForeignKey('users.id'), nullable=False),
        sa.Column('trading_wallet_id', sa.Integer(), sa.ForeignKey('trading_wallets.id'), nullable=False),
        sa.Column('currency_pair', sa.String(length=20), nullable=False),
        sa.Column('trade_type', trade_side, nullable=False),
        sa.Column('entry_price', AMOUNT, nullable=False),
        sa.Column('quantity', AMOUNT, nullable=False),
        sa.Column('margin', AMOUNT, nullable=False, server_default='0'),
        sa.Column('stop_loss', AMOUNT, nullable=True),
        sa.Column('take_profit', AMOUNT, nullable=True),
        sa.Column('status', sa.Enum('OPEN', 'CLOSED', name='positionstatus'), nullable=False),
        sa.Column('entry_time', sa.DateTime(timezone=True), nullable=False),
        sa.Column('exit_price', AMOUNT, nullable=True),
        sa.Column('exit_time', sa.DateTime(timezone=True), nullable=True),
        sa.Column('profit_loss', AMOUNT, nullable=True),
        sa.Column('close_reason', sa.String(length=30), nullable=True),
    )
    op.create_index('ix_trading_positions_user_id', 'trading_positions', ['user_id'])

    op.create_table(
        'trading_orders',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('user_id', sa.Integer(), sa.ForeignKey('users.id'), nullable=False),
        sa.Column('trading_wallet_id', sa.Integer(), sa.ForeignKey('trading_wallets.id'), nullable=False),
        sa.Column('position_id', sa.Integer(), sa.ForeignKey('trading_positions.id'), nullable=True),
        sa.Column('currency_pair', sa.String(length=20), nullable=False),
        sa.Column('order_type', sa.Enum('MARKET', 'LIMIT', 'STOP', 'STOP_LIMIT', name='ordertype'), nullable=False),
        sa.Column('side', trade_side, nullable=False),
        sa.Column('quantity', AMOUNT, nullable=False),
        sa.Column('price', AMOUNT, nullable=True),
        sa.Column('stop_loss', AMOUNT, nullable=True),
        sa.Column('take_profit', AMOUNT, nullable=True),
        sa.Column('time_in_force', sa.String(length=10), nullable=False, server_default='GTC'),
        sa.Column('status', sa.Enum('PENDING', 'FILLED', 'CANCELED', name='orderstatus'), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index('ix_trading_orders_user_id', 'trading_orders', ['user_id'])

    op.create_table(
        'connected_accounts',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('user_id', sa.Integer(), sa.ForeignKey('users.id'), nullable=False),
        sa.Column('institution_name', sa.String(length=100), nullable=False),
        sa.Column('account_name', sa.String(length=100), nullable=False),
        sa.Column('account_type', sa.String(length=30), nullable=True),
        sa.Column('account_mask', sa.String(length=4), nullable=True),
        sa.Column('currency', sa.String(length=10), nullable=False, server_default='USD'),
        sa.Column('available_balance', AMOUNT, nullable=False, server_default='0'),
        sa.Column('current_balance', AMOUNT, nullable=False, server_default='0'),
        sa.Column('is_verified', sa.Boolean(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index('ix_connected_accounts_user_id', 'connected_accounts', ['user_id'])

    op.create_table(
        'funding_transactions',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('user_id', sa.Integer(), sa.ForeignKey('users.id'), nullable=False),
        sa.Column('connected_account_id', sa.Integer(), sa.ForeignKey('connected_accounts.id'), nullable=False),
        sa.Column('wallet_id', sa.Integer(), sa.ForeignKey('wallets.id', ondelete='SET NULL'), nullable=True),
        sa.Column('transaction_type', sa.Enum('DEPOSIT', 'WITHDRAWAL', name='fundingtype'), nullable=False),
        sa.Column('amount', AMOUNT, nullable=False),
        sa.Column('status', sa.Enum('PENDING', 'COMPLETED', 'CANCELED', name='fundingstatus'), nullable=False),
        sa.Column('reference_id', sa.String(length=64), nullable=False, unique=True),
        sa.Column('description', sa.String(length=255), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column('processed_at', sa.DateTime(timezone=True), nullable=True),
    )
    op.create_index('ix_funding_transactions_user_id', 'funding_transactions', ['user_id'])

    op.create_table(
        'price_alerts',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('user_id', sa.Integer(), sa.ForeignKey('users.id'), nullable=False),
        sa.Column('symbol', sa.String(length=20), nullable=False),
        sa.Column('condition', sa.String(length=20), nullable=False),
        sa.Column('price', AMOUNT, nullable=False),
        sa.Column('percent_change', sa.Numeric(8, 4), nullable=True),
        sa.Column('is_recurring', sa.Boolean(), nullable=True),
        sa.Column('is_triggered', sa.Boolean(), nullable=True),
        sa.Column('triggered_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index('ix_price_alerts_user_id', 'price_alerts', ['user_id'])
    op.create_index('ix_price_alerts_symbol', 'price_alerts', ['symbol'])

    op.create_table(
        'notifications',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('user_id', sa.Integer(), sa.ForeignKey('users.id'), nullable=False),
        sa.Column('type', sa.String(length=50), nullable=False),
        sa.Column('title', sa.String(length=200), nullable=False),
        sa.Column('body', sa.String(length=1000), nullable=True),
        sa.Column('data', sa.JSON(), nullable=True),
        sa.Column('is_read', sa.Boolean(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index('ix_notifications_user_id', 'notifications', ['user_id'])


def downgrade() -> None:
    op.drop_table('notifications')
    op.drop_table('price_alerts')
    op.drop_table('funding_transactions')
    op.drop_table('connected_accounts')
    op.drop_table('trading_orders')
    op.drop_table('trading_positions')
    op.drop_table('trading_wallets')
    op.drop_table('wallet_transactions')
    op.drop_table('wallets')
    op.drop_table('users')
    bind = op.get_bind()
    for name in ('fundingstatus', 'fundingtype', 'orderstatus', 'ordertype', 'positionstatus',
                 'tradingwallettype', 'transactiontype', 'currencytype'):
        sa.Enum(name=name).drop(bind, checkfirst=True)
    trade_side.drop(bind, checkfirst=True)
