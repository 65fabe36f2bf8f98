"""Create users, admin_roles, approval_requests and audit_logs"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

revision: str | None = '0001'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Apply schema changes."""
    # Users (base role only; identity lives upstream)
    op.create_table(
        'users',
        sa.Column('id', postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column('email', sa.String(length=255), nullable=False),
        sa.Column('role', sa.String(length=20), server_default='VIEWER', nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.PrimaryKeyConstraint('id', name=op.f('pk_users')),
        sa.CheckConstraint(
            "role IN ('ADMIN', 'CREATOR', 'BRAND', 'VIEWER')",
            name='valid_role',
        ),
    )
    op.create_index('ix_users_email', 'users', ['email'], unique=True)
    op.create_index('ix_users_role', 'users', ['role'], unique=False)

    # Admin role assignments
    op.create_table(
        'admin_roles',
        sa.Column('id', postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column('user_id', postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column('department', sa.String(length=40), nullable=False),
        sa.Column('seniority', sa.String(length=20), nullable=True),
        sa.Column('permissions', postgresql.JSONB(astext_type=sa.Text()), server_default=sa.text("'[]'::jsonb"), nullable=False),
        sa.Column('is_active', sa.Boolean(), server_default='true', nullable=False),
        sa.Column('expires_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('created_by', postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column('deleted_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('deleted_by', postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column('deletion_reason', sa.Text(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.ForeignKeyConstraint(['user_id'], ['users.id'], name=op.f('fk_admin_roles_user_id_users'), ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['created_by'], ['users.id'], name=op.f('fk_admin_roles_created_by_users'), ondelete='SET NULL'),
        sa.ForeignKeyConstraint(['deleted_by'], ['users.id'], name=op.f('fk_admin_roles_deleted_by_users'), ondelete='SET NULL'),
        sa.PrimaryKeyConstraint('id', name=op.f('pk_admin_roles')),
        sa.UniqueConstraint('user_id', 'department', name='uq_admin_roles_user_id_department'),
        sa.CheckConstraint(
            "department IN ('SUPER_ADMIN', 'CONTENT_MANAGER', 'FINANCE_LICENSING', "
            "'CREATOR_APPLICATIONS', 'BRAND_APPLICATIONS', 'CUSTOMER_SERVICE', "
            "'OPERATIONS', 'CONTRACTOR')",
            name='valid_department',
        ),
        sa.CheckConstraint(
            "seniority IS NULL OR seniority IN ('JUNIOR', 'SENIOR')",
            name='valid_seniority',
        ),
        sa.CheckConstraint(
            "department <> 'CONTRACTOR' OR expires_at IS NOT NULL",
            name='contractor_requires_expiry',
        ),
    )
    op.create_index('ix_admin_roles_user_id', 'admin_roles', ['user_id'], unique=False)
    op.create_index('ix_admin_roles_department', 'admin_roles', ['department'], unique=False)
    op.create_index('ix_admin_roles_expires_at', 'admin_roles', ['expires_at'], unique=False)
    op.create_index(
        'ix_admin_roles_effective',
        'admin_roles',
        ['department', 'is_active'],
        unique=False,
        postgresql_where=sa.text('deleted_at IS NULL'),
    )

    # Dual-control approval requests
    op.create_table(
        'approval_requests',
        sa.Column('id', postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column('action_type', sa.String(length=100), nullable=False),
        sa.Column('requested_by', postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column('department', sa.String(length=40), nullable=False),
        sa.Column('payload', postgresql.JSONB(astext_type=sa.Text()), nullable=False),
        sa.Column('status', sa.String(length=20), server_default='PENDING', nullable=False),
        sa.Column('reviewed_by', postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column('reviewed_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('review_comments', sa.Text(), nullable=True),
        sa.Column('metadata', postgresql.JSONB(astext_type=sa.Text()), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.ForeignKeyConstraint(['requested_by'], ['users.id'], name=op.f('fk_approval_requests_requested_by_users'), ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['reviewed_by'], ['users.id'], name=op.f('fk_approval_requests_reviewed_by_users'), ondelete='SET NULL'),
        sa.PrimaryKeyConstraint('id', name=op.f('pk_approval_requests')),
        sa.CheckConstraint(
            "status IN ('PENDING', 'APPROVED', 'REJECTED')",
            name='valid_status',
        ),
        sa.CheckConstraint(
            "status = 'PENDING' OR (reviewed_by IS NOT NULL AND reviewed_at IS NOT NULL)",
            name='reviewed_when_terminal',
        ),
        sa.CheckConstraint(
            'reviewed_by IS NULL OR reviewed_by <> requested_by',
            name='no_self_review',
        ),
    )
    op.create_index('ix_approval_requests_action_type', 'approval_requests', ['action_type'], unique=False)
    op.create_index('ix_approval_requests_requested_by', 'approval_requests', ['requested_by'], unique=False)
    op.create_index('ix_approval_requests_department', 'approval_requests', ['department'], unique=False)
    op.create_index('ix_approval_requests_status', 'approval_requests', ['status'], unique=False)
    op.create_index('ix_approval_requests_created_at', 'approval_requests', ['created_at'], unique=False)

    # Audit trail
    op.create_table(
        'audit_logs',
        sa.Column('id', postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column('actor_id', postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column('actor_type', sa.String(length=20), server_default='user', nullable=False),
        sa.Column('action', sa.String(length=100), nullable=False),
        sa.Column('resource_type', sa.String(length=100), nullable=False),
        sa.Column('resource_id', sa.String(length=255), nullable=True),
        sa.Column('before', postgresql.JSONB(astext_type=sa.Text()), nullable=True),
        sa.Column('after', postgresql.JSONB(astext_type=sa.Text()), nullable=True),
        sa.Column('reason', sa.Text(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.ForeignKeyConstraint(['actor_id'], ['users.id'], name=op.f('fk_audit_logs_actor_id_users'), ondelete='SET NULL'),
        sa.PrimaryKeyConstraint('id', name=op.f('pk_audit_logs')),
        sa.CheckConstraint(
            "actor_type IN ('user', 'system')",
            name='valid_actor_type',
        ),
    )
    op.create_index('ix_audit_logs_actor_id', 'audit_logs', ['actor_id'], unique=False)
    op.create_index('ix_audit_logs_action', 'audit_logs', ['action'], unique=False)
    op.create_index('ix_audit_logs_resource_type', 'audit_logs', ['resource_type'], unique=False)
    op.create_index('ix_audit_logs_resource_id', 'audit_logs', ['resource_id'], unique=False)
    op.create_index('ix_audit_logs_created_at', 'audit_logs', ['created_at'], unique=False)


def downgrade() -> None:
    """Revert schema changes."""
    op.drop_index('ix_audit_logs_created_at', table_name='audit_logs')
    op.drop_index('ix_audit_logs_resource_id', table_name='audit_logs')
    op.drop_index('ix_audit_logs_resource_type', table_name='audit_logs')
    op.drop_index('ix_audit_logs_action', table_name='audit_logs')
    op.drop_index('ix_audit_logs_actor_id', table_name='audit_logs')
    op.drop_table('audit_logs')

    op.drop_index('ix_approval_requests_created_at', table_name='approval_requests')
    op.drop_index('ix_approval_requests_status', table_name='approval_requests')
    op.drop_index('ix_approval_requests_department', table_name='approval_requests')
    op.drop_index('ix_approval_requests_requested_by', table_name='approval_requests')
    op.drop_index('ix_approval_requests_action_type', table_name='approval_requests')
    op.drop_table('approval_requests')

    op.drop_index('ix_admin_roles_effective', table_name='admin_roles')
    op.drop_index('ix_admin_roles_expires_at', table_name='admin_roles')
    op.drop_index('ix_admin_roles_department', table_name='admin_roles')
    op.drop_index('ix_admin_roles_user_id', table_name='admin_roles')
    op.drop_table('admin_roles')

    op.drop_index('ix_users_role', table_name='users')
    op.drop_index('ix_users_email', table_name='users')
    op.drop_table('users')
