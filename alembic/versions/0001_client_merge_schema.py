"""client merge schema

Revision ID: 0001_client_merge_schema
Revises:
Create Date: 2026-10-19 09:00:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = '0001_client_merge_schema'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

# Tables owned by a single client through client_id, with their own columns
CLIENT_OWNED_TABLES = {
    'appointments': [
        sa.Column('service_name', sa.String(length=255), nullable=True),
        sa.Column('starts_at', sa.DateTime(), nullable=True),
        sa.Column('status', sa.String(length=30), nullable=False, server_default='booked'),
    ],
    'archived_appointments': [
        sa.Column('service_name', sa.String(length=255), nullable=True),
        sa.Column('starts_at', sa.DateTime(), nullable=True),
        sa.Column('archived_at', sa.DateTime(), nullable=False, server_default=sa.func.now()),
    ],
    'client_notes': [
        sa.Column('body', sa.Text(), nullable=False),
        sa.Column('author_id', sa.Integer(), sa.ForeignKey('users.id'), nullable=True),
    ],
    'client_email_preferences': [
        sa.Column('marketing_opt_in', sa.Boolean(), nullable=False, server_default=sa.text('false')),
        sa.Column('reminders_opt_in', sa.Boolean(), nullable=False, server_default=sa.text('true')),
    ],
    'client_feedback_responses': [
        sa.Column('rating', sa.Integer(), nullable=True),
        sa.Column('comment', sa.Text(), nullable=True),
    ],
    'client_form_signatures': [
        sa.Column('form_name', sa.String(length=255), nullable=False),
        sa.Column('signed_at', sa.DateTime(), nullable=False, server_default=sa.func.now()),
    ],
    'client_portal_tokens': [
        sa.Column('token_hash', sa.String(length=128), nullable=False),
        sa.Column('expires_at', sa.DateTime(), nullable=True),
    ],
    'client_automation_log': [
        sa.Column('automation_key', sa.String(length=100), nullable=False),
    ],
    'email_send_log': [
        sa.Column('template_key', sa.String(length=100), nullable=True),
        sa.Column('status', sa.String(length=30), nullable=True),
    ],
    'reengagement_outreach': [
        sa.Column('channel', sa.String(length=20), nullable=True),
    ],
    'refund_records': [
        sa.Column('amount', sa.Numeric(12, 2), nullable=False),
        sa.Column('reason', sa.Text(), nullable=True),
    ],
    'promotion_redemptions': [
        sa.Column('promotion_code', sa.String(length=50), nullable=False),
    ],
    'kiosk_analytics': [
        sa.Column('event_type', sa.String(length=50), nullable=False),
    ],
    'service_email_queue': [
        sa.Column('send_at', sa.DateTime(), nullable=True),
        sa.Column('sent', sa.Boolean(), nullable=False, server_default=sa.text('false')),
    ],
    'balance_transactions': [
        sa.Column('amount', sa.Numeric(12, 2), nullable=False),
        sa.Column('balance_type', sa.String(length=30), nullable=False),
    ],
    'points_transactions': [
        sa.Column('points', sa.Integer(), nullable=False),
    ],
}


def upgrade() -> None:
    op.create_table(
        'organizations',
        sa.Column('id', sa.Integer(), primary_key=True, index=True),
        sa.Column('name', sa.String(length=255), nullable=False),
        sa.Column('slug', sa.String(length=100), nullable=False, unique=True, index=True),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.text('true')),
        sa.Column('created_at', sa.DateTime(), nullable=False, server_default=sa.func.now()),
    )
    op.create_table(
        'users',
        sa.Column('id', sa.Integer(), primary_key=True, index=True),
        sa.Column('organization_id', sa.Integer(), sa.ForeignKey('organizations.id'), nullable=True, index=True),
        sa.Column('email', sa.String(length=255), nullable=False, unique=True, index=True),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.text('true')),
        sa.Column('created_at', sa.DateTime(), nullable=False, server_default=sa.func.now()),
    )

    # Role and permission tables (read by the merge permission gate)
    op.create_table(
        'permissions',
        sa.Column('id', sa.Integer(), primary_key=True, index=True),
        sa.Column('name', sa.String(length=100), nullable=False, unique=True, index=True),
        sa.Column('description', sa.String(length=255), nullable=True),
    )
    op.create_table(
        'role_permissions',
        sa.Column('id', sa.Integer(), primary_key=True, index=True),
        sa.Column('role', sa.String(length=50), nullable=False, index=True),
        sa.Column('permission_id', sa.Integer(), sa.ForeignKey('permissions.id', ondelete='CASCADE'), nullable=False),
        sa.Column('created_at', sa.DateTime(), nullable=False, server_default=sa.func.now()),
        sa.UniqueConstraint('role', 'permission_id', name='uq_role_permission'),
    )
    op.create_table(
        'user_roles',
        sa.Column('id', sa.Integer(), primary_key=True, index=True),
        sa.Column('user_id', sa.Integer(), sa.ForeignKey('users.id', ondelete='CASCADE'), nullable=False, index=True),
        sa.Column('organization_id', sa.Integer(), sa.ForeignKey('organizations.id', ondelete='CASCADE'), nullable=False, index=True),
        sa.Column('role', sa.String(length=50), nullable=False),
        sa.Column('created_at', sa.DateTime(), nullable=False, server_default=sa.func.now()),
        sa.UniqueConstraint('user_id', 'organization_id', 'role', name='uq_user_org_role'),
    )
    op.create_table(
        'platform_roles',
        sa.Column('id', sa.Integer(), primary_key=True, index=True),
        sa.Column('user_id', sa.Integer(), sa.ForeignKey('users.id', ondelete='CASCADE'), nullable=False, index=True),
        sa.Column('role', sa.String(length=50), nullable=False),
        sa.Column('created_at', sa.DateTime(), nullable=False, server_default=sa.func.now()),
    )

    op.create_table(
        'clients',
        sa.Column('id', sa.Integer(), primary_key=True, index=True),
        sa.Column('organization_id', sa.Integer(), sa.ForeignKey('organizations.id'), nullable=False, index=True),
        sa.Column('first_name', sa.String(length=100), nullable=True),
        sa.Column('last_name', sa.String(length=100), nullable=True),
        sa.Column('email', sa.String(length=255), nullable=True, index=True),
        sa.Column('phone', sa.String(length=50), nullable=True, index=True),
        sa.Column('notes', sa.Text(), nullable=True),
        sa.Column('is_vip', sa.Boolean(), nullable=False, server_default=sa.text('false')),
        sa.Column('lead_source', sa.String(length=100), nullable=True),
        sa.Column('preferred_stylist_id', sa.Integer(), nullable=True),
        sa.Column('location_id', sa.Integer(), nullable=True),
        sa.Column('phorest_client_id', sa.String(length=100), nullable=True, index=True),
        sa.Column('status', sa.String(length=20), nullable=False, server_default='active', index=True),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.text('true')),
        sa.Column('merged_into_client_id', sa.Integer(), sa.ForeignKey('clients.id'), nullable=True, index=True),
        sa.Column('merged_at', sa.DateTime(), nullable=True),
        sa.Column('merged_by', sa.Integer(), sa.ForeignKey('users.id'), nullable=True),
        sa.Column('merge_locked_at', sa.DateTime(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False, server_default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime(), nullable=False, server_default=sa.func.now()),
    )

    for name, columns in CLIENT_OWNED_TABLES.items():
        op.create_table(
            name,
            sa.Column('id', sa.Integer(), primary_key=True, index=True),
            sa.Column('organization_id', sa.Integer(), sa.ForeignKey('organizations.id'), nullable=False, index=True),
            sa.Column('client_id', sa.Integer(), sa.ForeignKey('clients.id'), nullable=True, index=True),
            *columns,
            sa.Column('created_at', sa.DateTime(), nullable=False, server_default=sa.func.now()),
        )

    op.create_table(
        'vouchers',
        sa.Column('id', sa.Integer(), primary_key=True, index=True),
        sa.Column('organization_id', sa.Integer(), sa.ForeignKey('organizations.id'), nullable=False, index=True),
        sa.Column('code', sa.String(length=50), nullable=False),
        sa.Column('issued_to_client_id', sa.Integer(), sa.ForeignKey('clients.id'), nullable=True, index=True),
        sa.Column('redeemed_by_client_id', sa.Integer(), sa.ForeignKey('clients.id'), nullable=True, index=True),
        sa.Column('created_at', sa.DateTime(), nullable=False, server_default=sa.func.now()),
    )
    op.create_table(
        'phorest_appointments',
        sa.Column('id', sa.Integer(), primary_key=True, index=True),
        sa.Column('organization_id', sa.Integer(), sa.ForeignKey('organizations.id'), nullable=False, index=True),
        sa.Column('phorest_id', sa.String(length=100), nullable=False),
        sa.Column('phorest_client_id', sa.String(length=100), nullable=True, index=True),
        sa.Column('starts_at', sa.DateTime(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False, server_default=sa.func.now()),
    )

    # Stored-value balances
    op.create_table(
        'client_balances',
        sa.Column('id', sa.Integer(), primary_key=True, index=True),
        sa.Column('organization_id', sa.Integer(), sa.ForeignKey('organizations.id'), nullable=False, index=True),
        sa.Column('client_id', sa.Integer(), sa.ForeignKey('clients.id'), nullable=False, unique=True, index=True),
        sa.Column('salon_credit_balance', sa.Numeric(12, 2), nullable=False, server_default='0'),
        sa.Column('gift_card_balance', sa.Numeric(12, 2), nullable=False, server_default='0'),
        sa.Column('updated_at', sa.DateTime(), nullable=False, server_default=sa.func.now()),
    )
    op.create_table(
        'client_loyalty_points',
        sa.Column('id', sa.Integer(), primary_key=True, index=True),
        sa.Column('organization_id', sa.Integer(), sa.ForeignKey('organizations.id'), nullable=False, index=True),
        sa.Column('client_id', sa.Integer(), sa.ForeignKey('clients.id'), nullable=False, unique=True, index=True),
        sa.Column('points_balance', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('updated_at', sa.DateTime(), nullable=False, server_default=sa.func.now()),
    )

    # Merge audit trail
    op.create_table(
        'client_merge_logs',
        sa.Column('id', sa.Integer(), primary_key=True, index=True),
        sa.Column('organization_id', sa.Integer(), sa.ForeignKey('organizations.id', ondelete='CASCADE'), nullable=False, index=True),
        sa.Column('primary_client_id', sa.Integer(), sa.ForeignKey('clients.id'), nullable=False, index=True),
        sa.Column('secondary_client_ids', sa.JSON(), nullable=False),
        sa.Column('performed_by', sa.Integer(), sa.ForeignKey('users.id'), nullable=False),
        sa.Column('field_resolutions', sa.JSON(), nullable=True),
        sa.Column('before_snapshots', sa.JSON(), nullable=False),
        sa.Column('reparenting_counts', sa.JSON(), nullable=False),
        sa.Column('skipped_tables', sa.JSON(), nullable=True),
        sa.Column('reparented_rows', sa.JSON(), nullable=True),
        sa.Column('balance_transfers', sa.JSON(), nullable=True),
        sa.Column('repointed_tombstones', sa.JSON(), nullable=True),
        sa.Column('undo_expires_at', sa.DateTime(), nullable=False),
        sa.Column('created_at', sa.DateTime(), nullable=False, server_default=sa.func.now(), index=True),
    )
    op.create_table(
        'client_merge_undos',
        sa.Column('id', sa.Integer(), primary_key=True, index=True),
        sa.Column('organization_id', sa.Integer(), sa.ForeignKey('organizations.id', ondelete='CASCADE'), nullable=False, index=True),
        sa.Column('merge_log_id', sa.Integer(), sa.ForeignKey('client_merge_logs.id'), nullable=False, unique=True),
        sa.Column('performed_by', sa.Integer(), sa.ForeignKey('users.id'), nullable=False),
        sa.Column('restored_counts', sa.JSON(), nullable=False),
        sa.Column('skipped_tables', sa.JSON(), nullable=True),
        sa.Column('completed_at', sa.DateTime(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False, server_default=sa.func.now()),
    )

    # Seed the merge permission
    op.execute("INSERT INTO permissions (name, description) VALUES ('client_merge', 'Merge duplicate client records')")


def downgrade() -> None:
    op.drop_table('client_merge_undos')
    op.drop_table('client_merge_logs')
    op.drop_table('client_loyalty_points')
    op.drop_table('client_balances')
    op.drop_table('phorest_appointments')
    op.drop_table('vouchers')
    for name in reversed(list(CLIENT_OWNED_TABLES)):
        op.drop_table(name)
    op.drop_table('clients')
    op.drop_table('platform_roles')
    op.drop_table('user_roles')
    op.drop_table('role_permissions')
    op.drop_table('permissions')
    op.drop_table('users')
    op.drop_table('organizations')
