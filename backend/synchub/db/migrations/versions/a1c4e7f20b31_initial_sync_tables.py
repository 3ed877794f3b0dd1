"""initial sync hub tables

Revision ID: a1c4e7f20b31
Revises:
Create Date: 2026-10-19 09:00:00.000000

"""
from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql


# revision identifiers, used by Alembic.
revision = 'a1c4e7f20b31'
down_revision = None
branch_labels = None
depends_on = None


JSON = sa.JSON().with_variant(postgresql.JSONB(), 'postgresql')


def _timestamps():
    return [
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
    ]


def upgrade() -> None:
    # ---- scheduling ----
    op.create_table(
        'sync_schedules',
        sa.Column('id', sa.String(length=32), nullable=False),
        sa.Column('name', sa.String(length=128), nullable=False),
        sa.Column('provider', sa.String(length=64), nullable=False),
        sa.Column('enabled', sa.Boolean(), nullable=False),
        sa.Column('frequency_type', sa.String(length=16), nullable=False),
        sa.Column('frequency_value', sa.String(length=128), nullable=False),
        sa.Column('timezone', sa.String(length=64), nullable=False),
        sa.Column('settings', JSON, nullable=False),
        sa.Column('filters', JSON, nullable=True),
        sa.Column('notifications', JSON, nullable=True),
        sa.Column('status', sa.String(length=16), nullable=False),
        sa.Column('last_run', sa.DateTime(timezone=True), nullable=True),
        sa.Column('next_run', sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
        sa.Column('created_by', sa.String(length=64), nullable=True),
        sa.Column('updated_by', sa.String(length=64), nullable=True),
        sa.CheckConstraint("frequency_type IN ('interval','cron')", name='ck_sync_schedules_frequency_type'),
        sa.CheckConstraint("status IN ('active','paused','error')", name='ck_sync_schedules_status'),
        sa.PrimaryKeyConstraint('id', name='pk_sync_schedules'),
    )
    op.create_index('ix_sync_schedules_provider', 'sync_schedules', ['provider'])
    op.create_index('ix_sync_schedules_enabled_next_run', 'sync_schedules', ['enabled', 'next_run'])

    op.create_table(
        'schedule_executions',
        sa.Column('id', sa.String(length=32), nullable=False),
        sa.Column('schedule_id', sa.String(length=32), nullable=False),
        sa.Column('sync_id', sa.String(length=32), nullable=False),
        sa.Column('provider', sa.String(length=64), nullable=False),
        sa.Column('status', sa.String(length=16), nullable=False),
        sa.Column('start_time', sa.DateTime(timezone=True), nullable=False),
        sa.Column('end_time', sa.DateTime(timezone=True), nullable=True),
        sa.Column('duration_ms', sa.Integer(), nullable=True),
        sa.Column('retry_count', sa.Integer(), nullable=False, server_default=sa.text('0')),
        sa.Column('next_retry', sa.DateTime(timezone=True), nullable=True),
        sa.Column('result', JSON, nullable=True),
        sa.Column('error', sa.Text(), nullable=True),
        sa.Column('created_by', sa.String(length=64), nullable=True),
        sa.Column('updated_by', sa.String(length=64), nullable=True),
        sa.CheckConstraint("status IN ('pending','completed','failed')", name='ck_schedule_executions_status'),
        sa.PrimaryKeyConstraint('id', name='pk_schedule_executions'),
    )
    op.create_index('ix_schedule_executions_sync_id', 'schedule_executions', ['sync_id'])
    op.create_index('ix_schedule_executions_schedule_status_start', 'schedule_executions',
                    ['schedule_id', 'status', 'start_time'])
    op.create_index('ix_schedule_executions_status_next_retry', 'schedule_executions', ['status', 'next_retry'])

    # ---- inventory ----
    op.create_table(
        'inventory_items',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('sku', sa.String(length=128), nullable=False),
        sa.Column('product_id', sa.String(length=64), nullable=True),
        sa.Column('quantity', sa.Integer(), nullable=False, server_default=sa.text('0')),
        sa.Column('reserved_quantity', sa.Integer(), nullable=False, server_default=sa.text('0')),
        sa.Column('warehouse_id', sa.String(length=64), nullable=True),
        sa.Column('provider', sa.String(length=64), nullable=True),
        sa.Column('last_synced_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('threshold_low', sa.Integer(), nullable=False, server_default=sa.text('0')),
        sa.Column('threshold_reorder', sa.Integer(), nullable=False, server_default=sa.text('0')),
        sa.Column('threshold_max', sa.Integer(), nullable=True),
        sa.Column('metadata', JSON, nullable=True),
        *_timestamps(),
        sa.PrimaryKeyConstraint('id', name='pk_inventory_items'),
        sa.UniqueConstraint('sku', name='uq_inventory_items_sku'),
    )

    op.create_table(
        'inventory_adjustments',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('item_id', sa.Integer(), nullable=False),
        sa.Column('type', sa.String(length=16), nullable=False),
        sa.Column('quantity', sa.Integer(), nullable=False),
        sa.Column('reason', sa.String(length=255), nullable=True),
        sa.Column('previous_quantity', sa.Integer(), nullable=False),
        sa.Column('new_quantity', sa.Integer(), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column('created_by', sa.String(length=64), nullable=True),
        sa.ForeignKeyConstraint(['item_id'], ['inventory_items.id'], ondelete='CASCADE',
                                name='fk_inventory_adjustments_item_id_inventory_items'),
        sa.PrimaryKeyConstraint('id', name='pk_inventory_adjustments'),
    )
    op.create_index('ix_inventory_adjustments_item_id', 'inventory_adjustments', ['item_id'])

    # ---- webhooks ----
    op.create_table(
        'webhook_subscriptions',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('user_id', sa.String(length=64), nullable=False),
        sa.Column('url', sa.String(length=1024), nullable=False),
        sa.Column('events', JSON, nullable=False),
        sa.Column('secret', sa.String(length=128), nullable=False),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.text('true')),
        sa.Column('retry_count', sa.Integer(), nullable=False, server_default=sa.text('0')),
        sa.Column('last_triggered', sa.DateTime(timezone=True), nullable=True),
        sa.Column('last_error', sa.Text(), nullable=True),
        *_timestamps(),
        sa.PrimaryKeyConstraint('id', name='pk_webhook_subscriptions'),
    )
    op.create_index('ix_webhook_subscriptions_user_id', 'webhook_subscriptions', ['user_id'])

    # ---- provider integrations ----
    op.create_table(
        'provider_integrations',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('provider_name', sa.String(length=64), nullable=False),
        sa.Column('type', sa.String(length=32), nullable=False),
        sa.Column('api_url', sa.String(length=512), nullable=True),
        sa.Column('auth_type', sa.String(length=16), nullable=True),
        sa.Column('credentials', JSON, nullable=True),
        sa.Column('token_url', sa.String(length=512), nullable=True),
        sa.Column('max_retries', sa.Integer(), nullable=True),
        sa.Column('initial_delay_ms', sa.Integer(), nullable=True),
        sa.Column('response_mapping', JSON, nullable=True),
        sa.Column('api_endpoints', JSON, nullable=True),
        *_timestamps(),
        sa.CheckConstraint("auth_type IS NULL OR auth_type IN ('OAuth','APIKey','Basic')",
                           name='ck_provider_integrations_auth_type'),
        sa.PrimaryKeyConstraint('id', name='pk_provider_integrations'),
        sa.UniqueConstraint('provider_name', name='uq_provider_integrations_provider_name'),
    )

    op.create_table(
        'tenant_connections',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('user_id', sa.String(length=64), nullable=False),
        sa.Column('integration_id', sa.Integer(), nullable=False),
        sa.Column('access_token', sa.Text(), nullable=True),
        sa.Column('refresh_token', sa.Text(), nullable=True),
        sa.Column('expires_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('status', sa.String(length=16), nullable=False, server_default='connected'),
        sa.Column('webhook_url', sa.String(length=1024), nullable=True),
        sa.Column('webhook_secret', sa.String(length=128), nullable=True),
        sa.Column('webhook_enabled', sa.Boolean(), nullable=False, server_default=sa.text('false')),
        *_timestamps(),
        sa.CheckConstraint("status IN ('connected','needs_reauth','disconnected')",
                           name='ck_tenant_connections_status'),
        sa.ForeignKeyConstraint(['integration_id'], ['provider_integrations.id'], ondelete='CASCADE',
                                name='fk_tenant_connections_integration_id_provider_integrations'),
        sa.PrimaryKeyConstraint('id', name='pk_tenant_connections'),
    )
    op.create_index('ix_tenant_connections_user_id', 'tenant_connections', ['user_id'])

    op.create_table(
        'provider_products',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('connection_id', sa.Integer(), nullable=False),
        sa.Column('sku', sa.String(length=128), nullable=True),
        sa.Column('external_id', sa.String(length=128), nullable=False),
        sa.Column('payload', JSON, nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column('created_by', sa.String(length=64), nullable=True),
        sa.ForeignKeyConstraint(['connection_id'], ['tenant_connections.id'], ondelete='CASCADE',
                                name='fk_provider_products_connection_id_tenant_connections'),
        sa.PrimaryKeyConstraint('id', name='pk_provider_products'),
    )
    op.create_index('ix_provider_products_connection_id', 'provider_products', ['connection_id'])


def downgrade() -> None:
    op.drop_index('ix_provider_products_connection_id', table_name='provider_products')
    op.drop_table('provider_products')
    op.drop_index('ix_tenant_connections_user_id', table_name='tenant_connections')
    op.drop_table('tenant_connections')
    op.drop_table('provider_integrations')
    op.drop_index('ix_webhook_subscriptions_user_id', table_name='webhook_subscriptions')
    op.drop_table('webhook_subscriptions')
    op.drop_index('ix_inventory_adjustments_item_id', table_name='inventory_adjustments')
    op.drop_table('inventory_adjustments')
    op.drop_table('inventory_items')
    op.drop_index('ix_schedule_executions_status_next_retry', table_name='schedule_executions')
    op.drop_index('ix_schedule_executions_schedule_status_start', table_name='schedule_executions')
    op.drop_index('ix_schedule_executions_sync_id', table_name='schedule_executions')
    op.drop_table('schedule_executions')
    op.drop_index('ix_sync_schedules_enabled_next_run', table_name='sync_schedules')
    op.drop_index('ix_sync_schedules_provider', table_name='sync_schedules')
    op.drop_table('sync_schedules')
