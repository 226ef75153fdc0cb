"""Built-in tenant schema migrations, in application order.

Append only. A name, once released, identifies its migration forever; change
behaviour by adding a new step. Bodies check the live schema first so a retry
after a partial run is harmless.
"""
from __future__ import annotations
from typing import Optional
import sqlalchemy as sa

from tenantgate.services.migrations import MigrationRegistry, TenantMigrationContext

registry = MigrationRegistry()


@registry.register('0001_user_org_fields')
def user_org_fields(ctx: TenantMigrationContext):
    """Profile fields used by org charts: job title, phone, timezone."""
    columns = [
        sa.Column('job_title', sa.String(100)),
        sa.Column('phone', sa.String(32)),
        sa.Column('timezone', sa.String(64), nullable=False, server_default='UTC'),
    ]
    for column in columns:
        if not ctx.has_column('users', column.name):
            ctx.op.add_column('users', column, schema=ctx.schema)


@registry.register('0002_user_invitations')
def user_invitations(ctx: TenantMigrationContext):
    """Pending invitations; accepted ones become users."""
    if not ctx.has_table('user_invitations'):
        ctx.op.create_table(
            'user_invitations',
            sa.Column('id', sa.Integer(), primary_key=True),
            sa.Column('email', sa.String(255), nullable=False),
            sa.Column('role_id', sa.Integer()),
            sa.Column('invited_by', sa.Integer()),
            sa.Column('token', sa.String(128), nullable=False, unique=True),
            sa.Column('status', sa.String(20), nullable=False, server_default='pending'),
            sa.Column('expires_at', sa.DateTime(timezone=True)),
            sa.Column('accepted_at', sa.DateTime(timezone=True)),
            sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
            schema=ctx.schema,
        )
    if not ctx.has_index('user_invitations', 'idx_user_invitations_email'):
        ctx.op.create_index('idx_user_invitations_email', 'user_invitations', ['email'], schema=ctx.schema)


@registry.register('0003_role_custom_flag')
def role_custom_flag(ctx: TenantMigrationContext):
    """Distinguish roles created or cloned by tenant admins from seeded ones."""
    if not ctx.has_column('roles', 'is_custom'):
        ctx.op.add_column(
            'roles', sa.Column('is_custom', sa.Boolean(), nullable=False, server_default=sa.false()), schema=ctx.schema,
        )


@registry.register('0004_audit_logs')
def audit_logs(ctx: TenantMigrationContext):
    """Audit trail with previous values and free-form metadata (login method, IP, org changes)."""
    if not ctx.has_table('audit_logs'):
        ctx.op.create_table(
            'audit_logs',
            sa.Column('id', sa.Integer(), primary_key=True),
            sa.Column('entity_type', sa.String(50), nullable=False),
            sa.Column('entity_id', sa.String(64)),
            sa.Column('action', sa.String(50), nullable=False),
            sa.Column('changes', sa.JSON()),
            sa.Column('previous_values', sa.JSON()),
            sa.Column('metadata', sa.JSON()),
            sa.Column('performed_by', sa.Integer()),
            sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
            schema=ctx.schema,
        )
    for name, column in (('idx_audit_logs_created_at', 'created_at'), ('idx_audit_logs_performed_by', 'performed_by')):
        if not ctx.has_index('audit_logs', name):
            ctx.op.create_index(name, 'audit_logs', [column], schema=ctx.schema)


def build_registry(extra_dir: Optional[str] = None) -> MigrationRegistry:
    """Built-in steps followed by the *.sql files of extra_dir (TENANT_MIGRATIONS_DIR)."""
    out = MigrationRegistry(registry)
    if extra_dir:
        out.extend_from_directory(extra_dir)
    return out


__all__ = ['registry', 'build_registry']
