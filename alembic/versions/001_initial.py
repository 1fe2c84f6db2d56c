"""Initial schema

Revision ID: 001_initial
Revises: 
Create Date: 2026-02-03

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = '001_initial'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    # Creator tokens table
    op.create_table(
        'creator_tokens',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('creator_user_id', sa.String(36), nullable=False, index=True),
        sa.Column('mint_address', sa.String(64), nullable=False, unique=True),
        sa.Column('ticker_symbol', sa.String(16), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
    )

    # Posts table
    op.create_table(
        'posts',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('creator_token_id', sa.String(36), sa.ForeignKey('creator_tokens.id'), nullable=True),
        sa.Column('access_level', sa.Enum('public', 'hold_gated', 'burn_gated', name='accesslevel'),
                  nullable=False, server_default='public'),
        sa.Column('token_threshold', sa.String(78), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
    )

    # Trades table
    op.create_table(
        'trades',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('user_id', sa.String(36), nullable=False),
        sa.Column('creator_token_id', sa.String(36), sa.ForeignKey('creator_tokens.id'), nullable=False),
        sa.Column('mint_address', sa.String(64), nullable=False),
        sa.Column('type', sa.Enum('buy', 'sell', name='tradetype'), nullable=False),
        sa.Column('sol_amount', sa.String(78), nullable=False),
        sa.Column('token_amount', sa.String(78), nullable=False, server_default='0'),
        sa.Column('tx_signature', sa.String(128), nullable=False, unique=True),
        sa.Column('status', sa.Enum('pending', 'confirmed', 'failed', name='tradestatus'),
                  nullable=False, server_default='pending'),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column('confirmed_at', sa.DateTime(timezone=True), nullable=True),
    )
    op.create_index('ix_trades_holders', 'trades', ['mint_address', 'type', 'status'])

    # Notifications table
    op.create_table(
        'notifications',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('user_id', sa.String(36), nullable=False),
        sa.Column('type', sa.String(32), nullable=False),
        sa.Column('title', sa.String(255), nullable=False),
        sa.Column('body', sa.Text(), nullable=False),
        sa.Column('link_url', sa.String(500), nullable=False),
        sa.Column('related_mint_address', sa.String(64), nullable=True),
        sa.Column('tx_signature', sa.String(128), nullable=True),
        sa.Column('is_read', sa.Boolean(), nullable=False, server_default='false'),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index('ix_notifications_user_created', 'notifications', ['user_id', 'created_at'])
    op.create_index('ix_notifications_tx', 'notifications', ['tx_signature'])

    # Content unlocks table
    op.create_table(
        'content_unlocks',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('user_id', sa.String(36), nullable=False),
        sa.Column('post_id', sa.String(36), sa.ForeignKey('posts.id'), nullable=False),
        sa.Column('tx_signature', sa.String(128), nullable=False),
        sa.Column('tokens_burned', sa.String(78), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index('ix_content_unlocks_user_post', 'content_unlocks', ['user_id', 'post_id'], unique=True)

    # Token balance cache table
    op.create_table(
        'token_balance_cache',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('wallet_address', sa.String(64), nullable=False),
        sa.Column('mint_address', sa.String(64), nullable=False),
        sa.Column('balance', sa.String(78), nullable=False),
        sa.Column('checked_at', sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index(
        'ix_token_balance_cache_wallet_mint', 'token_balance_cache',
        ['wallet_address', 'mint_address'], unique=True,
    )


def downgrade() -> None:
    # Drop tables
    op.drop_table('token_balance_cache')
    op.drop_table('content_unlocks')
    op.drop_table('notifications')
    op.drop_table('trades')
    op.drop_table('posts')
    op.drop_table('creator_tokens')

    # Drop enum types
    op.execute("DROP TYPE IF EXISTS tradestatus")
    op.execute("DROP TYPE IF EXISTS tradetype")
    op.execute("DROP TYPE IF EXISTS accesslevel")
