"""create_strategy_status_tables

Revision ID: a1c3e5f7b9d2
Revises:
Create Date: 2026-10-17 11:20:04.118203

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = 'a1c3e5f7b9d2'
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Upgrade schema."""
    op.create_table(
        'live_ea_instances',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('user_id', sa.String(36), nullable=False, comment='Owning user ID'),
        sa.Column('ea_name', sa.String(100), nullable=False),
        sa.Column('status', sa.String(20), nullable=False, server_default='OFFLINE',
                  comment='ONLINE/OFFLINE/ERROR'),
        sa.Column('last_heartbeat', sa.DateTime(timezone=True), nullable=True),
        sa.Column('lifecycle_phase', sa.String(20), nullable=False, server_default='NEW',
                  comment='NEW/PROVING/PROVEN/RETIRED'),
        sa.Column('strategy_version_id', sa.String(36), nullable=True),
        sa.Column('strategy_status', sa.String(20), nullable=True,
                  comment='Last resolved StrategyStatus'),
        sa.Column('strategy_status_updated_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False,
                  server_default=sa.func.now()),
        sa.Column('deleted_at', sa.DateTime(timezone=True), nullable=True,
                  comment='Soft-delete marker'),
    )
    op.create_index('ix_live_ea_instances_user_id', 'live_ea_instances', ['user_id'])
    op.create_index(
        'ix_live_ea_instances_strategy_version_id', 'live_ea_instances', ['strategy_version_id']
    )
    op.create_index(
        'ix_live_ea_deleted_status', 'live_ea_instances', ['deleted_at', 'strategy_status']
    )

    op.create_table(
        'health_snapshots',
        sa.Column('id', sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column('instance_id', sa.String(36),
                  sa.ForeignKey('live_ea_instances.id', ondelete='CASCADE'), nullable=False),
        sa.Column('status', sa.String(20), nullable=False,
                  comment='HEALTHY/WARNING/DEGRADED/INSUFFICIENT_DATA'),
        sa.Column('drift_detected', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('trades_sampled', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('window_days', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('confidence_lower', sa.Float(), nullable=False,
                  comment='Lower bound of the metric CI'),
        sa.Column('confidence_upper', sa.Float(), nullable=False,
                  comment='Upper bound of the metric CI'),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False,
                  server_default=sa.func.now()),
    )
    op.create_index('ix_health_snapshots_instance_id', 'health_snapshots', ['instance_id'])
    op.create_index(
        'ix_health_snapshot_instance_created', 'health_snapshots', ['instance_id', 'created_at']
    )

    op.create_table(
        'backtest_baselines',
        sa.Column('id', sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column('strategy_version_id', sa.String(36), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False,
                  server_default=sa.func.now()),
    )
    op.create_index(
        'ix_backtest_baselines_strategy_version_id', 'backtest_baselines',
        ['strategy_version_id'], unique=True
    )

    op.create_table(
        'track_record_states',
        sa.Column('instance_id', sa.String(36),
                  sa.ForeignKey('live_ea_instances.id', ondelete='CASCADE'), primary_key=True),
        sa.Column('last_seq_no', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False,
                  server_default=sa.func.now()),
    )

    op.create_table(
        'strategy_status_transitions',
        sa.Column('id', sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column('instance_id', sa.String(36),
                  sa.ForeignKey('live_ea_instances.id', ondelete='CASCADE'), nullable=False),
        sa.Column('from_status', sa.String(20), nullable=True,
                  comment='Previous cached status (NULL = first resolution)'),
        sa.Column('to_status', sa.String(20), nullable=False, comment='Newly resolved status'),
        sa.Column('confidence', sa.String(10), nullable=False,
                  comment='LOW/MEDIUM/HIGH at transition time'),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False,
                  server_default=sa.func.now()),
    )
    op.create_index(
        'ix_strategy_status_transitions_instance_id', 'strategy_status_transitions',
        ['instance_id']
    )
    op.create_index(
        'ix_status_transition_instance_ts', 'strategy_status_transitions',
        ['instance_id', 'created_at']
    )

    op.create_table(
        'ea_alert_configs',
        sa.Column('id', sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column('user_id', sa.String(36), nullable=False),
        sa.Column('instance_id', sa.String(36), nullable=True),
        sa.Column('alert_type', sa.String(50), nullable=False,
                  comment='e.g. STRATEGY_STATUS_CHANGE'),
        sa.Column('channel', sa.String(20), nullable=False, comment='TELEGRAM/WEBHOOK'),
        sa.Column('enabled', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('webhook_url', sa.String(500), nullable=True),
        sa.Column('telegram_chat_id', sa.String(50), nullable=True),
        sa.Column('last_triggered', sa.DateTime(timezone=True), nullable=True),
    )
    op.create_index('ix_ea_alert_configs_user_id', 'ea_alert_configs', ['user_id'])
    op.create_index(
        'ix_alert_config_user_type', 'ea_alert_configs', ['user_id', 'alert_type', 'enabled']
    )

    op.create_table(
        'audit_logs',
        sa.Column('id', sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column('user_id', sa.String(36), nullable=True),
        sa.Column('event_type', sa.String(100), nullable=False),
        sa.Column('resource_type', sa.String(50), nullable=True),
        sa.Column('resource_id', sa.String(36), nullable=True),
        sa.Column('metadata', sa.JSON(), nullable=True, comment='Event metadata'),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False,
                  server_default=sa.func.now()),
    )
    op.create_index('ix_audit_logs_user_id', 'audit_logs', ['user_id'])
    op.create_index('ix_audit_logs_event_type', 'audit_logs', ['event_type'])
    op.create_index('ix_audit_logs_resource_id', 'audit_logs', ['resource_id'])
    op.create_index('ix_audit_logs_created_at', 'audit_logs', ['created_at'])


def downgrade() -> None:
    """Downgrade schema."""
    op.drop_table('audit_logs')
    op.drop_table('ea_alert_configs')
    op.drop_table('strategy_status_transitions')
    op.drop_table('track_record_states')
    op.drop_table('backtest_baselines')
    op.drop_table('health_snapshots')
    op.drop_table('live_ea_instances')
