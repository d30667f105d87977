"""Initial schema: users, sessions, watch addresses, wallets, balance history,
preferences and activity logs.

Revision ID: 001_initial
Revises:
Create Date: 2026-10-19

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = '001_initial'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _timestamps() -> list:
    return [
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False),
    ]


def upgrade() -> None:
    # Users table
    op.create_table(
        'users',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        *_timestamps(),
        sa.Column('deleted_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('username', sa.String(50), nullable=False),
        sa.Column('email', sa.String(100), nullable=False),
        sa.Column('password_hash', sa.String(255), nullable=False),
        sa.Column('salt', sa.String(255), nullable=False),
        sa.Column('avatar_url', sa.String(500), nullable=True),
        sa.Column('is_active', sa.Boolean(), nullable=False),
        sa.Column('last_login_at', sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('username'),
        sa.UniqueConstraint('email'),
    )
    op.create_index('ix_users_username', 'users', ['username'])
    op.create_index('ix_users_email', 'users', ['email'])
    op.create_index('ix_users_deleted_at', 'users', ['deleted_at'])

    # Sessions table
    op.create_table(
        'user_sessions',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        *_timestamps(),
        sa.Column('user_id', sa.Integer(), nullable=False),
        sa.Column('session_token', sa.String(255), nullable=False),
        sa.Column('refresh_token', sa.String(255), nullable=False),
        sa.Column('device_info', sa.JSON(), nullable=False),
        sa.Column('ip_address', sa.String(45), nullable=True),
        sa.Column('user_agent', sa.Text(), nullable=True),
        sa.Column('expires_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('refresh_expires_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('is_active', sa.Boolean(), nullable=False),
        sa.ForeignKeyConstraint(['user_id'], ['users.id']),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('session_token'),
        sa.UniqueConstraint('refresh_token'),
    )
    op.create_index('ix_user_sessions_user_id', 'user_sessions', ['user_id'])
    op.create_index('ix_user_sessions_session_token', 'user_sessions', ['session_token'])
    op.create_index('ix_user_sessions_refresh_token', 'user_sessions', ['refresh_token'])
    op.create_index('ix_user_sessions_expires_at', 'user_sessions', ['expires_at'])
    op.create_index(
        'ix_user_sessions_user_active', 'user_sessions', ['user_id', 'is_active', 'expires_at']
    )

    # Preferences table
    op.create_table(
        'user_preferences',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        *_timestamps(),
        sa.Column('user_id', sa.Integer(), nullable=False),
        sa.Column('default_currency', sa.String(10), nullable=False),
        sa.Column('theme', sa.String(20), nullable=False),
        sa.Column('language', sa.String(10), nullable=False),
        sa.Column('notifications', sa.JSON(), nullable=False),
        sa.Column('display_settings', sa.JSON(), nullable=False),
        sa.Column('privacy_settings', sa.JSON(), nullable=False),
        sa.ForeignKeyConstraint(['user_id'], ['users.id']),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('user_id'),
    )

    # Watch addresses table
    op.create_table(
        'watch_addresses',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        *_timestamps(),
        sa.Column('deleted_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('user_id', sa.Integer(), nullable=False),
        sa.Column('address', sa.String(42), nullable=False),
        sa.Column('network_id', sa.Integer(), nullable=False),
        sa.Column('label', sa.String(100), nullable=True),
        sa.Column('address_type', sa.String(20), nullable=False),
        sa.Column('tags', sa.JSON(), nullable=False),
        sa.Column('notes', sa.Text(), nullable=True),
        sa.Column('is_favorite', sa.Boolean(), nullable=False),
        sa.Column('notification_enabled', sa.Boolean(), nullable=False),
        sa.Column('balance_cache', sa.String(80), nullable=True),
        sa.Column('last_activity_at', sa.DateTime(timezone=True), nullable=True),
        sa.ForeignKeyConstraint(['user_id'], ['users.id']),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint(
            'user_id', 'address', 'network_id', name='uq_watch_user_address_network'
        ),
    )
    op.create_index('ix_watch_addresses_user_id', 'watch_addresses', ['user_id'])
    op.create_index('ix_watch_addresses_address', 'watch_addresses', ['address'])
    op.create_index('ix_watch_addresses_network_id', 'watch_addresses', ['network_id'])
    op.create_index('ix_watch_addresses_deleted_at', 'watch_addresses', ['deleted_at'])
    op.create_index(
        'ix_watch_addresses_user_network_fav',
        'watch_addresses',
        ['user_id', 'network_id', 'is_favorite'],
    )

    # Wallets table
    op.create_table(
        'user_wallets',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        *_timestamps(),
        sa.Column('deleted_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('user_id', sa.Integer(), nullable=False),
        sa.Column('address', sa.String(42), nullable=False),
        sa.Column('network_id', sa.Integer(), nullable=False),
        sa.Column('wallet_name', sa.String(100), nullable=False),
        sa.Column('wallet_type', sa.String(20), nullable=False),
        sa.Column('derivation_path', sa.String(100), nullable=True),
        sa.Column('is_primary', sa.Boolean(), nullable=False),
        sa.Column('last_used_at', sa.DateTime(timezone=True), nullable=True),
        sa.ForeignKeyConstraint(['user_id'], ['users.id']),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint(
            'user_id', 'address', 'network_id', name='uq_wallet_user_address_network'
        ),
    )
    op.create_index('ix_user_wallets_user_id', 'user_wallets', ['user_id'])
    op.create_index('ix_user_wallets_address', 'user_wallets', ['address'])
    op.create_index('ix_user_wallets_network_id', 'user_wallets', ['network_id'])
    op.create_index('ix_user_wallets_deleted_at', 'user_wallets', ['deleted_at'])

    # Balance history table
    op.create_table(
        'address_balance_history',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        *_timestamps(),
        sa.Column('watch_address_id', sa.Integer(), nullable=False),
        sa.Column('balance', sa.String(80), nullable=False),
        sa.Column('token_address', sa.String(42), nullable=True),
        sa.Column('token_symbol', sa.String(20), nullable=True),
        sa.Column('block_number', sa.BigInteger(), nullable=True),
        sa.Column('recorded_at', sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(['watch_address_id'], ['watch_addresses.id']),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index(
        'ix_address_balance_history_watch_address_id',
        'address_balance_history',
        ['watch_address_id'],
    )
    op.create_index(
        'ix_address_balance_history_token_address', 'address_balance_history', ['token_address']
    )
    op.create_index(
        'ix_address_balance_history_recorded_at', 'address_balance_history', ['recorded_at']
    )
    op.create_index(
        'ix_balance_history_stream',
        'address_balance_history',
        ['watch_address_id', 'token_address', 'block_number'],
    )
    # One observation per block and stream
    op.create_index(
        'uq_balance_history_block',
        'address_balance_history',
        ['watch_address_id', sa.text("coalesce(token_address, '')"), 'block_number'],
        unique=True,
        sqlite_where=sa.text('block_number IS NOT NULL'),
        postgresql_where=sa.text('block_number IS NOT NULL'),
    )

    # Activity log table
    op.create_table(
        'user_activity_logs',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        *_timestamps(),
        sa.Column('user_id', sa.Integer(), nullable=True),
        sa.Column('action', sa.String(50), nullable=False),
        sa.Column('resource_type', sa.String(50), nullable=True),
        sa.Column('resource_id', sa.String(100), nullable=True),
        sa.Column('details', sa.JSON(), nullable=False),
        sa.Column('ip_address', sa.String(45), nullable=True),
        sa.Column('user_agent', sa.Text(), nullable=True),
        sa.Column('status', sa.String(20), nullable=False),
        sa.ForeignKeyConstraint(['user_id'], ['users.id']),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_user_activity_logs_user_id', 'user_activity_logs', ['user_id'])
    op.create_index('ix_user_activity_logs_action', 'user_activity_logs', ['action'])


def downgrade() -> None:
    op.drop_table('user_activity_logs')
    op.drop_index('uq_balance_history_block', table_name='address_balance_history')
    op.drop_table('address_balance_history')
    op.drop_table('user_wallets')
    op.drop_table('watch_addresses')
    op.drop_table('user_preferences')
    op.drop_table('user_sessions')
    op.drop_table('users')
