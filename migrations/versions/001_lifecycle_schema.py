"""Opportunity lifecycle schema.

Creates:
- rss_feeds, processing_history: feed sources and their processing log
- opportunities, duplicate_tracking, user_favorites: the catalog and its dependents
- system_settings: versioned JSON documents (cleanup and access policies)
- cleanup_runs: one summary row per cleanup sweep

Revision ID: 001_lifecycle_schema
Revises:
Create Date: 2026-10-19
"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = '001_lifecycle_schema'
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Create lifecycle tables."""

    # -------------------------------------------------------------------------
    # 1. Feeds
    # -------------------------------------------------------------------------
    print("  Creating rss_feeds and processing_history tables...")

    op.create_table(
        'rss_feeds',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('name', sa.String(length=255), nullable=False),
        sa.Column('url', sa.Text(), nullable=True),
        sa.Column('category', sa.String(length=32), nullable=True),
        sa.Column('output_type', sa.String(length=32), nullable=False, server_default='opportunity'),
        sa.Column('total_processed', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('total_published', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('error_count', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('last_fetched', sa.DateTime(timezone=True), nullable=True),
        sa.Column('last_error', sa.Text(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_rss_feeds_category', 'rss_feeds', ['category'], unique=False)
    op.create_index('ix_rss_feeds_category_output', 'rss_feeds', ['category', 'output_type'], unique=False)

    op.create_table(
        'processing_history',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('feed_id', sa.Uuid(), nullable=False),
        sa.Column('item_url', sa.Text(), nullable=True),
        sa.Column('outcome', sa.String(length=32), nullable=True),
        sa.Column('processed_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.ForeignKeyConstraint(['feed_id'], ['rss_feeds.id']),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_processing_history_feed_id', 'processing_history', ['feed_id'], unique=False)

    # -------------------------------------------------------------------------
    # 2. Opportunities and dependents
    # -------------------------------------------------------------------------
    print("  Creating opportunities, duplicate_tracking and user_favorites tables...")

    op.create_table(
        'opportunities',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('title', sa.Text(), nullable=False),
        sa.Column('category', sa.String(length=32), nullable=False),
        sa.Column('status', sa.String(length=16), nullable=False, server_default='draft'),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column('deadline', sa.DateTime(timezone=True), nullable=True),
        sa.Column('feed_id', sa.Uuid(), nullable=True),
        sa.ForeignKeyConstraint(['feed_id'], ['rss_feeds.id']),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_opportunities_category', 'opportunities', ['category'], unique=False)
    op.create_index('ix_opportunities_status_created', 'opportunities', ['status', 'created_at'], unique=False)
    op.create_index('ix_opportunities_deadline', 'opportunities', ['deadline'], unique=False)
    op.create_index('ix_opportunities_feed_id', 'opportunities', ['feed_id'], unique=False)

    op.create_table(
        'duplicate_tracking',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('opportunity_id', sa.Uuid(), nullable=True),
        sa.Column('feed_id', sa.Uuid(), nullable=True),
        sa.Column('content_hash', sa.String(length=64), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.ForeignKeyConstraint(['opportunity_id'], ['opportunities.id']),
        sa.ForeignKeyConstraint(['feed_id'], ['rss_feeds.id']),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_duplicate_tracking_opportunity_id', 'duplicate_tracking', ['opportunity_id'], unique=False)
    op.create_index('ix_duplicate_tracking_feed_id', 'duplicate_tracking', ['feed_id'], unique=False)

    op.create_table(
        'user_favorites',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('user_id', sa.String(length=64), nullable=False),
        sa.Column('opportunity_id', sa.Uuid(), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.ForeignKeyConstraint(['opportunity_id'], ['opportunities.id']),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('user_id', 'opportunity_id', name='uq_user_favorites_user_opportunity'),
    )
    op.create_index('ix_user_favorites_user_id', 'user_favorites', ['user_id'], unique=False)
    op.create_index('ix_user_favorites_opportunity_id', 'user_favorites', ['opportunity_id'], unique=False)

    # -------------------------------------------------------------------------
    # 3. Policy store and run history
    # -------------------------------------------------------------------------
    print("  Creating system_settings and cleanup_runs tables...")

    op.create_table(
        'system_settings',
        sa.Column('key', sa.String(length=128), nullable=False),
        sa.Column('value', sa.JSON(), nullable=False),
        sa.Column('category', sa.String(length=64), nullable=False, server_default='general'),
        sa.Column('version', sa.Integer(), nullable=False, server_default='1'),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column('updated_by', sa.String(length=64), nullable=True),
        sa.PrimaryKeyConstraint('key'),
    )

    op.create_table(
        'cleanup_runs',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('started_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('finished_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('initiated_by', sa.String(length=32), nullable=False, server_default='scheduler'),
        sa.Column('scanned_count', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('deleted_count', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('deleted_by_category', sa.JSON(), nullable=False),
        sa.Column('skipped_never_expire', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('errors', sa.JSON(), nullable=False),
        sa.Column('timed_out', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_cleanup_runs_started_at', 'cleanup_runs', ['started_at'], unique=False)

    # Policies are not seeded: version 0 (built-in defaults) applies until
    # an operator saves a document.
    print("  Migration complete!")


def downgrade() -> None:
    """Drop lifecycle tables."""

    print("  Dropping cleanup_runs and system_settings tables...")
    op.drop_index('ix_cleanup_runs_started_at', table_name='cleanup_runs')
    op.drop_table('cleanup_runs')
    op.drop_table('system_settings')

    print("  Dropping user_favorites, duplicate_tracking and opportunities tables...")
    op.drop_index('ix_user_favorites_opportunity_id', table_name='user_favorites')
    op.drop_index('ix_user_favorites_user_id', table_name='user_favorites')
    op.drop_table('user_favorites')
    op.drop_index('ix_duplicate_tracking_feed_id', table_name='duplicate_tracking')
    op.drop_index('ix_duplicate_tracking_opportunity_id', table_name='duplicate_tracking')
    op.drop_table('duplicate_tracking')
    op.drop_index('ix_opportunities_feed_id', table_name='opportunities')
    op.drop_index('ix_opportunities_deadline', table_name='opportunities')
    op.drop_index('ix_opportunities_status_created', table_name='opportunities')
    op.drop_index('ix_opportunities_category', table_name='opportunities')
    op.drop_table('opportunities')

    print("  Dropping processing_history and rss_feeds tables...")
    op.drop_index('ix_processing_history_feed_id', table_name='processing_history')
    op.drop_table('processing_history')
    op.drop_index('ix_rss_feeds_category_output', table_name='rss_feeds')
    op.drop_index('ix_rss_feeds_category', table_name='rss_feeds')
    op.drop_table('rss_feeds')
