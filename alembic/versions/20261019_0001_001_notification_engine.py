"""Notification engine schema.

Revision ID: 001
Revises: None
Create Date: 2026-10-19

Creates every table the engine reads or writes:
- profiles, device_registrations
- habits, habit_completions, streak_celebrations
- scheduled_notifications
- bulk_communications, communication_recipients
- webhook_events, rate_limit_windows
- print_orders, audit_logs

Enum columns store member names, matching SQLModel's default mapping.
"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision: str = '001'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

channel = sa.Enum('SMS', 'VOICE', 'PUSH', 'EMAIL', name='channel')
notification_kind = sa.Enum(
    'HABIT_REMINDER', 'MILESTONE', 'PACE_WARNING', 'WEEKLY_REVIEW', 'MORNING_BRIEFING', 'CUSTOM',
    name='notificationkind',
)
notification_status = sa.Enum('PENDING', 'SENT', 'FAILED', 'SKIPPED', name='notificationstatus')
urgency = sa.Enum('LOW', 'NORMAL', 'HIGH', name='urgency')
communication_status = sa.Enum(
    'SCHEDULED', 'SENDING', 'PARTIAL', 'SENT', 'FAILED', name='communicationstatus'
)
recipient_status = sa.Enum('PENDING', 'SENT', 'FAILED', 'SKIPPED', name='recipientstatus')
delivery_state = sa.Enum(
    'DELIVERED', 'OPENED', 'CLICKED', 'BOUNCED', 'COMPLAINED', name='deliverystate'
)
processing_status = sa.Enum('PROCESSING', 'COMPLETED', 'FAILED', name='processingstatus')
order_status = sa.Enum('PENDING', 'PAID', 'SUBMITTED', 'SHIPPED', name='orderstatus')


def upgrade() -> None:
    op.create_table(
        'profiles',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('full_name', sa.String(200), nullable=True),
        sa.Column('email', sa.String(255), nullable=True, index=True),
        sa.Column('phone_number', sa.String(32), nullable=True),
        sa.Column('phone_verified', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('timezone', sa.String(64), nullable=True),
        sa.Column('quiet_start_hour', sa.Integer(), nullable=True),
        sa.Column('quiet_end_hour', sa.Integer(), nullable=True),
        sa.Column('preferred_channel', channel, nullable=True),
        sa.Column('notifications_enabled', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('team_announcements_enabled', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('streak_celebrations_enabled', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('celebration_channel', channel, nullable=True),
        sa.Column('subscription_tier', sa.String(20), nullable=False, server_default='FREE'),
        sa.Column('subscription_status', sa.String(30), nullable=True),
        sa.Column('credits', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('stripe_customer_id', sa.String(255), nullable=True, index=True),
        sa.Column('stripe_subscription_id', sa.String(255), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
    )

    op.create_table(
        'device_registrations',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('user_id', sa.Uuid(), sa.ForeignKey('profiles.id'), nullable=False, index=True),
        sa.Column('device_token', sa.String(255), nullable=False, unique=True),
        sa.Column('platform', sa.String(20), nullable=False, server_default='ios'),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.true(), index=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('last_used_at', sa.DateTime(), nullable=True),
    )

    op.create_table(
        'habits',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('user_id', sa.Uuid(), sa.ForeignKey('profiles.id'), nullable=False, index=True),
        sa.Column('title', sa.String(200), nullable=False),
        sa.Column('reminder_time', sa.String(5), nullable=True),
        sa.Column('reminder_channel', channel, nullable=True),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.true(), index=True),
        sa.Column('last_streak_value', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('streak_started_on', sa.Date(), nullable=True),
        sa.Column('streak_epoch', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('created_at', sa.DateTime(), nullable=False),
    )

    op.create_table(
        'habit_completions',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('habit_id', sa.Uuid(), sa.ForeignKey('habits.id'), nullable=False, index=True),
        sa.Column('completed_on', sa.Date(), nullable=False, index=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.UniqueConstraint('habit_id', 'completed_on'),
    )

    op.create_table(
        'streak_celebrations',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('habit_id', sa.Uuid(), sa.ForeignKey('habits.id'), nullable=False, index=True),
        sa.Column('user_id', sa.Uuid(), sa.ForeignKey('profiles.id'), nullable=False, index=True),
        sa.Column('milestone', sa.Integer(), nullable=False),
        sa.Column('streak_epoch', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('message', sa.String(), nullable=False),
        sa.Column('notification_sent', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('notification_channel', channel, nullable=True),
        sa.Column('celebrated_at', sa.DateTime(), nullable=False),
        sa.UniqueConstraint('habit_id', 'milestone', 'streak_epoch'),
    )

    op.create_table(
        'scheduled_notifications',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('recipient_id', sa.Uuid(), sa.ForeignKey('profiles.id'), nullable=False, index=True),
        sa.Column('kind', notification_kind, nullable=False),
        sa.Column('channel', channel, nullable=True),
        sa.Column('urgency', urgency, nullable=False),
        sa.Column('scheduled_for', sa.DateTime(), nullable=False, index=True),
        sa.Column('status', notification_status, nullable=False, index=True),
        sa.Column('payload', postgresql.JSONB(), nullable=True),
        sa.Column('habit_id', sa.Uuid(), sa.ForeignKey('habits.id'), nullable=True, index=True),
        sa.Column('claim_token', sa.Uuid(), nullable=True),
        sa.Column('claimed_at', sa.DateTime(), nullable=True),
        sa.Column('delivered_channel', channel, nullable=True),
        sa.Column('provider_message_id', sa.String(255), nullable=True),
        sa.Column('last_error', sa.String(1000), nullable=True),
        sa.Column('sent_at', sa.DateTime(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
    )
    # Due-queue scan: status + time range
    op.create_index(
        'ix_scheduled_notifications_due', 'scheduled_notifications', ['status', 'scheduled_for']
    )

    op.create_table(
        'bulk_communications',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('sender_id', sa.Uuid(), sa.ForeignKey('profiles.id'), nullable=True),
        sa.Column('subject', sa.String(300), nullable=False),
        sa.Column('body', sa.String(), nullable=False),
        sa.Column('template_type', sa.String(50), nullable=False),
        sa.Column('channel', channel, nullable=False),
        sa.Column('status', communication_status, nullable=False, index=True),
        sa.Column('scheduled_for', sa.DateTime(), nullable=True, index=True),
        sa.Column('total_recipients', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('sent_count', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('failed_count', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('skipped_count', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('delivered_count', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('bounced_count', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('started_at', sa.DateTime(), nullable=True),
        sa.Column('completed_at', sa.DateTime(), nullable=True),
    )

    op.create_table(
        'communication_recipients',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('communication_id', sa.Uuid(), sa.ForeignKey('bulk_communications.id'), nullable=False, index=True),
        sa.Column('user_id', sa.Uuid(), sa.ForeignKey('profiles.id'), nullable=True, index=True),
        sa.Column('address', sa.String(255), nullable=False),
        sa.Column('status', recipient_status, nullable=False, index=True),
        sa.Column('attempts', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('next_attempt_at', sa.DateTime(), nullable=True, index=True),
        sa.Column('last_error', sa.String(1000), nullable=True),
        sa.Column('sent_at', sa.DateTime(), nullable=True),
        sa.Column('provider_message_id', sa.String(255), nullable=True, index=True),
        sa.Column('delivery_state', delivery_state, nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
    )

    op.create_table(
        'webhook_events',
        sa.Column('event_id', sa.String(255), primary_key=True),
        sa.Column('source', sa.String(30), nullable=False, index=True),
        sa.Column('event_type', sa.String(100), nullable=False, index=True),
        sa.Column('processing_status', processing_status, nullable=False, index=True),
        sa.Column('attempts', sa.Integer(), nullable=False, server_default='1'),
        sa.Column('payload', postgresql.JSONB(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False, index=True),
        sa.Column('processed_at', sa.DateTime(), nullable=True),
        sa.Column('error_message', sa.String(1000), nullable=True),
    )

    op.create_table(
        'rate_limit_windows',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('client_key', sa.String(255), nullable=False),
        sa.Column('function_name', sa.String(100), nullable=False),
        sa.Column('window_start', sa.DateTime(), nullable=False),
        sa.Column('window_expires_at', sa.DateTime(), nullable=False),
        sa.Column('count', sa.Integer(), nullable=False, server_default='0'),
        sa.UniqueConstraint('client_key', 'function_name'),
    )

    op.create_table(
        'print_orders',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('user_id', sa.Uuid(), sa.ForeignKey('profiles.id'), nullable=False, index=True),
        sa.Column('status', order_status, nullable=False, index=True),
        sa.Column('paid_at', sa.DateTime(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
    )

    op.create_table(
        'audit_logs',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('user_id', sa.Uuid(), nullable=True, index=True),
        sa.Column('action', sa.String(50), nullable=False, index=True),
        sa.Column('entity_type', sa.String(50), nullable=False, index=True),
        sa.Column('entity_id', sa.String(255), nullable=True, index=True),
        sa.Column('details', postgresql.JSONB(), nullable=True),
        sa.Column('timestamp', sa.DateTime(), nullable=False, index=True),
    )


def downgrade() -> None:
    op.drop_table('audit_logs')
    op.drop_table('print_orders')
    op.drop_table('rate_limit_windows')
    op.drop_table('webhook_events')
    op.drop_table('communication_recipients')
    op.drop_table('bulk_communications')
    op.drop_index('ix_scheduled_notifications_due', table_name='scheduled_notifications')
    op.drop_table('scheduled_notifications')
    op.drop_table('streak_celebrations')
    op.drop_table('habit_completions')
    op.drop_table('habits')
    op.drop_table('device_registrations')
    op.drop_table('profiles')

    for enum in (
        order_status, processing_status, delivery_state, recipient_status,
        communication_status, urgency, notification_status, notification_kind, channel,
    ):
        enum.drop(op.get_bind(), checkfirst=True)
