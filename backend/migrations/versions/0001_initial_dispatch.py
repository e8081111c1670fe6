"""initial dispatch tables

Revision ID: 0001_initial_dispatch
Revises:
Create Date: 2026-10-19
"""
from __future__ import annotations
from alembic import op
import sqlalchemy as sa
from sqlalchemy import inspect

revision = '0001_initial_dispatch'
down_revision = None
branch_labels = None
depends_on = None

TABLES = ['realtime_outbox', 'notifications', 'system_settings', 'audit_logs', 'ticket_audit_logs', 'tickets', 'users']


def upgrade():
    op.create_table('users',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('name', sa.String(length=128), nullable=False),
        sa.Column('role', sa.String(length=16), nullable=False),
        sa.Column('mobile', sa.String(length=32)),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.text('1')),
        sa.Column('chassis_number', sa.String(length=64)),
        sa.Column('wallet_balance', sa.Float(), nullable=False, server_default=sa.text('0')),
        sa.Column('team_leader_name', sa.String(length=128)),
        sa.Column('team_leader_mobile', sa.String(length=32)),
        sa.Column('is_online', sa.Boolean(), nullable=False, server_default=sa.text('0')),
        sa.Column('is_available', sa.Boolean(), nullable=False, server_default=sa.text('0')),
        sa.Column('last_assigned_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('assign_seq', sa.Integer(), nullable=False, server_default=sa.text('0')),
        sa.Column('current_lat', sa.Float(), nullable=True),
        sa.Column('current_lng', sa.Float(), nullable=True),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.text('CURRENT_TIMESTAMP')),
    )
    op.create_index('ix_users_role', 'users', ['role'])
    op.create_index('ix_users_mobile', 'users', ['mobile'])
    op.create_index('ix_users_last_assigned_at', 'users', ['last_assigned_at'])

    op.create_table('tickets',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('code', sa.String(length=16), unique=True),
        sa.Column('requester_id', sa.Integer(), nullable=False),
        sa.Column('technician_id', sa.Integer(), nullable=True),
        sa.Column('type', sa.String(length=16), nullable=False),
        sa.Column('category', sa.String(length=120), nullable=False),
        sa.Column('description', sa.Text()),
        sa.Column('location_address', sa.String(length=255)),
        sa.Column('notes', sa.Text()),
        sa.Column('location_lat', sa.Float(), nullable=False),
        sa.Column('location_lng', sa.Float(), nullable=False),
        sa.Column('status', sa.String(length=16), nullable=False, server_default='PENDING'),
        sa.Column('priority', sa.String(length=8), nullable=False, server_default='NORMAL'),
        sa.Column('paused', sa.Boolean(), nullable=False, server_default=sa.text('0')),
        sa.Column('requester_snapshot', sa.JSON(), nullable=False),
        sa.Column('accepted_at', sa.DateTime(timezone=True)),
        sa.Column('on_way_at', sa.DateTime(timezone=True)),
        sa.Column('in_progress_at', sa.DateTime(timezone=True)),
        sa.Column('completed_at', sa.DateTime(timezone=True)),
        sa.Column('rejection_reason', sa.Text()),
        sa.Column('technician_remarks', sa.Text()),
        sa.Column('parts_replaced', sa.Text()),
        sa.Column('images', sa.JSON()),
        sa.Column('voice_notes', sa.JSON()),
        sa.Column('completion_images', sa.JSON()),
        sa.Column('completion_voice_notes', sa.JSON()),
        sa.Column('customer_rating', sa.Integer()),
        sa.Column('customer_feedback', sa.Text()),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.Column('version', sa.Integer(), nullable=False, server_default=sa.text('1')),
    )
    op.create_index('ix_tickets_code', 'tickets', ['code'])
    op.create_index('ix_tickets_requester_id', 'tickets', ['requester_id'])
    op.create_index('ix_tickets_technician_id', 'tickets', ['technician_id'])
    op.create_index('ix_tickets_status', 'tickets', ['status'])

    op.create_table('ticket_audit_logs',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('ticket_id', sa.Integer(), nullable=False),
        sa.Column('actor_id', sa.Integer(), nullable=False),
        sa.Column('action_type', sa.String(length=32), nullable=False),
        sa.Column('previous_state', sa.JSON(), nullable=False),
        sa.Column('new_state', sa.JSON(), nullable=False),
        sa.Column('reason', sa.Text(), nullable=False),
        sa.Column('rolled_back_entry_id', sa.Integer(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index('ix_ticket_audit_logs_ticket_id', 'ticket_audit_logs', ['ticket_id'])
    op.create_index('ix_ticket_audit_logs_actor_id', 'ticket_audit_logs', ['actor_id'])
    op.create_index('ix_ticket_audit_logs_action_type', 'ticket_audit_logs', ['action_type'])

    op.create_table('audit_logs',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('actor_user_id', sa.Integer(), nullable=False),
        sa.Column('action', sa.String(length=64), nullable=False),
        sa.Column('entity', sa.String(length=64)),
        sa.Column('entity_id', sa.String(length=64)),
        sa.Column('perms_snapshot', sa.JSON()),
        sa.Column('meta', sa.JSON()),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index('ix_audit_logs_actor_user_id', 'audit_logs', ['actor_user_id'])
    op.create_index('ix_audit_logs_action', 'audit_logs', ['action'])

    op.create_table('system_settings',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('auto_assign_enabled', sa.Boolean(), nullable=False, server_default=sa.text('0')),
        sa.Column('version', sa.Integer(), nullable=False, server_default=sa.text('1')),
        sa.Column('updated_by', sa.Integer(), nullable=True),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.text('CURRENT_TIMESTAMP')),
    )

    op.create_table('notifications',
        sa.Column('id', sa.String(length=36), primary_key=True),
        sa.Column('user_id', sa.Integer(), nullable=False),
        sa.Column('target_role', sa.String(length=16)),
        sa.Column('title', sa.String(length=160), nullable=False),
        sa.Column('message', sa.Text(), nullable=False),
        sa.Column('type', sa.String(length=8), nullable=False, server_default='INFO'),
        sa.Column('is_read', sa.Boolean(), nullable=False, server_default=sa.text('0')),
        sa.Column('reference_id', sa.Integer()),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index('ix_notifications_user_id', 'notifications', ['user_id'])
    op.create_index('ix_notifications_is_read', 'notifications', ['is_read'])

    op.create_table('realtime_outbox',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('topic', sa.String(length=64), nullable=False),
        sa.Column('event', sa.String(length=64), nullable=False),
        sa.Column('payload', sa.JSON(), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column('published_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('attempts', sa.Integer(), nullable=False, server_default=sa.text('0')),
        sa.Column('last_error', sa.Text()),
        sa.Column('event_id', sa.String(length=36)),
        sa.Column('notified_at', sa.DateTime(timezone=True), nullable=True),
    )
    op.create_index('ix_realtime_outbox_topic', 'realtime_outbox', ['topic'])
    op.create_index('ix_realtime_outbox_published_at', 'realtime_outbox', ['published_at'])
    op.create_index('ix_realtime_outbox_notified_at', 'realtime_outbox', ['notified_at'])


def downgrade():
    bind = op.get_bind(); insp = inspect(bind)
    for table in TABLES:
        if insp.has_table(table):
            op.drop_table(table)
