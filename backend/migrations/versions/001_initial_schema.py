"""
Alembic migration: Initial marketplace order lifecycle schema.

This migration creates the users, services, orders and notifications tables.
Order collections (status history, milestones, messages, files) and
negotiation sub-records are JSONB columns owned by the order row, and the
version_id column backs optimistic concurrency control.

Revision ID: 001
Revises:
Create Date: 2026-10-18 09:00:00.000000
"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# Revision identifiers, used by Alembic
revision: str = '001'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

JSON_TYPE = sa.JSON().with_variant(postgresql.JSONB(), 'postgresql')


def _id_column() -> sa.Column:
    return sa.Column(
        'id',
        sa.String(24),
        primary_key=True,
        comment='Opaque 24-hex identifier',
    )


def _timestamp_columns() -> list[sa.Column]:
    return [
        sa.Column(
            'created_at',
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
        ),
        sa.Column(
            'updated_at',
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
        ),
    ]


def upgrade() -> None:
    """
    Upgrade database schema to the initial order lifecycle tables.
    """
    op.create_table(
        'users',
        _id_column(),
        sa.Column('email', sa.String(255), nullable=False, comment='User email address'),
        sa.Column('name', sa.String(255), nullable=False, server_default=''),
        sa.Column('is_admin', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('is_seller', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('completed_projects', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('ongoing_projects', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('purchased_services', JSON_TYPE, nullable=False),
        *_timestamp_columns(),
        sa.CheckConstraint('completed_projects >= 0', name='ck_users_completed_projects'),
        sa.CheckConstraint('ongoing_projects >= 0', name='ck_users_ongoing_projects'),
    )
    op.create_index('ix_users_email', 'users', ['email'], unique=True)

    op.create_table(
        'services',
        _id_column(),
        sa.Column(
            'seller_id',
            sa.String(24),
            sa.ForeignKey('users.id', ondelete='CASCADE'),
            nullable=False,
        ),
        sa.Column('title', sa.String(255), nullable=False),
        sa.Column('pricing_packages', JSON_TYPE, nullable=False),
        sa.Column('reviews', JSON_TYPE, nullable=False),
        sa.Column('average_rating', sa.Float(), nullable=False, server_default='0'),
        sa.Column('total_reviews', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('total_sales', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.true()),
        *_timestamp_columns(),
        sa.CheckConstraint(
            'average_rating >= 0 AND average_rating <= 5',
            name='ck_services_average_rating_range',
        ),
    )
    op.create_index('ix_services_seller_id', 'services', ['seller_id'])

    op.create_table(
        'orders',
        _id_column(),
        sa.Column(
            'service_id',
            sa.String(24),
            sa.ForeignKey('services.id', ondelete='RESTRICT'),
            nullable=False,
        ),
        sa.Column('service_title', sa.String(255), nullable=False),
        sa.Column('package_selected', sa.String(16), nullable=False),
        sa.Column(
            'buyer_id',
            sa.String(24),
            sa.ForeignKey('users.id', ondelete='CASCADE'),
            nullable=False,
        ),
        sa.Column(
            'seller_id',
            sa.String(24),
            sa.ForeignKey('users.id', ondelete='CASCADE'),
            nullable=False,
        ),
        sa.Column('price', sa.Numeric(precision=10, scale=2), nullable=False),
        sa.Column('delivery_time', sa.Integer(), nullable=False),
        sa.Column('due_date', sa.DateTime(timezone=True), nullable=False),
        sa.Column('approved_extension_days', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('requirements', sa.Text(), nullable=True),
        sa.Column('revisions_available', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('revisions_used', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('status', sa.String(32), nullable=False, server_default='Pending'),
        sa.Column('progress', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('completed_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('status_history', JSON_TYPE, nullable=False),
        sa.Column('milestones', JSON_TYPE, nullable=False),
        sa.Column('messages', JSON_TYPE, nullable=False),
        sa.Column('files', JSON_TYPE, nullable=False),
        sa.Column('review', JSON_TYPE, nullable=True),
        sa.Column('extended_delivery', JSON_TYPE, nullable=True),
        sa.Column('cancellation_request', JSON_TYPE, nullable=True),
        sa.Column('version_id', sa.Integer(), nullable=False),
        *_timestamp_columns(),
        sa.CheckConstraint('progress >= 0 AND progress <= 100', name='ck_orders_progress_range'),
        sa.CheckConstraint('price >= 0', name='ck_orders_price_non_negative'),
        sa.CheckConstraint('delivery_time >= 1', name='ck_orders_delivery_time_positive'),
        sa.CheckConstraint('revisions_used >= 0', name='ck_orders_revisions_used_non_negative'),
    )
    op.create_index('ix_orders_service_id', 'orders', ['service_id'])
    op.create_index('ix_orders_buyer_id', 'orders', ['buyer_id'])
    op.create_index('ix_orders_seller_id', 'orders', ['seller_id'])
    op.create_index('ix_orders_status', 'orders', ['status'])
    op.create_index('ix_orders_due_date', 'orders', ['due_date'])
    op.create_index('ix_orders_buyer_status', 'orders', ['buyer_id', 'status'])
    op.create_index('ix_orders_seller_status', 'orders', ['seller_id', 'status'])

    op.create_table(
        'notifications',
        _id_column(),
        sa.Column(
            'user_id',
            sa.String(24),
            sa.ForeignKey('users.id', ondelete='CASCADE'),
            nullable=False,
        ),
        sa.Column('event', sa.String(64), nullable=False),
        sa.Column('payload', JSON_TYPE, nullable=False),
        sa.Column('is_read', sa.Boolean(), nullable=False, server_default=sa.false()),
        *_timestamp_columns(),
    )
    op.create_index(
        'ix_notifications_user_unread', 'notifications', ['user_id', 'is_read']
    )


def downgrade() -> None:
    """
    Downgrade database schema by removing all order lifecycle tables.
    """
    op.drop_index('ix_notifications_user_unread', table_name='notifications')
    op.drop_table('notifications')

    for index in (
        'ix_orders_seller_status',
        'ix_orders_buyer_status',
        'ix_orders_due_date',
        'ix_orders_status',
        'ix_orders_seller_id',
        'ix_orders_buyer_id',
        'ix_orders_service_id',
    ):
        op.drop_index(index, table_name='orders')
    op.drop_table('orders')

    op.drop_index('ix_services_seller_id', table_name='services')
    op.drop_table('services')

    op.drop_index('ix_users_email', table_name='users')
    op.drop_table('users')
