"""Per-tenant table template.

Tables are declared once without a schema and copied into a schema-qualified
MetaData per tenant by tenant_tables(); every tenant schema gets the same shape.
"""
from __future__ import annotations
from functools import lru_cache
from types import SimpleNamespace
from sqlalchemy import (
    MetaData, Table, Column, Integer, String, Text, Boolean, DateTime, ForeignKey,
    JSON, UniqueConstraint, Index, func,
)
from sqlalchemy.dialects.postgresql import JSONB

JSONType = JSON().with_variant(JSONB(), 'postgresql')

template = MetaData()

roles = Table(
    'roles', template,
    Column('id', Integer, primary_key=True),
    Column('name', String(100), nullable=False, unique=True),
    Column('description', Text),
    Column('level', Integer, nullable=False, server_default='0'),
    Column('is_system', Boolean, nullable=False, default=False),
    Column('permissions', JSONType, nullable=False, default=dict),
    Column('record_access', JSONType, nullable=False, default=dict),
    Column('field_permissions', JSONType, nullable=False, default=dict),
    Column('created_at', DateTime(timezone=True), server_default=func.now()),
    Column('updated_at', DateTime(timezone=True), server_default=func.now(), onupdate=func.now()),
)

departments = Table(
    'departments', template,
    Column('id', Integer, primary_key=True),
    Column('name', String(100), nullable=False),
    Column('parent_department_id', Integer, ForeignKey('departments.id', ondelete='SET NULL')),
    Column('created_at', DateTime(timezone=True), server_default=func.now()),
)

users = Table(
    'users', template,
    Column('id', Integer, primary_key=True),
    Column('email', String(255), nullable=False, unique=True),
    Column('password_hash', String(255), nullable=False),
    Column('first_name', String(100), nullable=False, server_default=''),
    Column('last_name', String(100), nullable=False, server_default=''),
    Column('role_id', Integer, ForeignKey('roles.id')),
    Column('department_id', Integer, ForeignKey('departments.id', ondelete='SET NULL')),
    Column('manager_id', Integer, ForeignKey('users.id', ondelete='SET NULL')),
    Column('status', String(20), nullable=False, server_default='active'),
    Column('last_login_at', DateTime(timezone=True)),
    Column('created_at', DateTime(timezone=True), server_default=func.now()),
    Column('updated_at', DateTime(timezone=True), server_default=func.now(), onupdate=func.now()),
    Index('idx_users_role', 'role_id'),
    Index('idx_users_department', 'department_id'),
)

teams = Table(
    'teams', template,
    Column('id', Integer, primary_key=True),
    Column('name', String(100), nullable=False),
    Column('department_id', Integer, ForeignKey('departments.id', ondelete='SET NULL')),
    Column('is_active', Boolean, nullable=False, default=True),
    Column('created_at', DateTime(timezone=True), server_default=func.now()),
)

user_teams = Table(
    'user_teams', template,
    Column('id', Integer, primary_key=True),
    Column('user_id', Integer, ForeignKey('users.id', ondelete='CASCADE'), nullable=False),
    Column('team_id', Integer, ForeignKey('teams.id', ondelete='CASCADE'), nullable=False),
    Column('role', String(20), nullable=False, server_default='member'),
    UniqueConstraint('user_id', 'team_id', name='uq_user_team'),
    Index('idx_user_teams_team', 'team_id'),
)

schema_migrations = Table(
    'schema_migrations', template,
    Column('id', Integer, primary_key=True),
    Column('migration_name', String(255), nullable=False, unique=True),
    Column('executed_at', DateTime(timezone=True), server_default=func.now()),
)

# Tables whose absence means the schema never received its baseline
BASELINE_TABLES = ('roles', 'users')
TRACKING_TABLE = 'schema_migrations'


@lru_cache(maxsize=256)
def tenant_tables(schema: str) -> SimpleNamespace:
    """Return the template tables bound to one schema, e.g. tenant_tables('tenant_acme').users."""
    md = MetaData()
    # Copy in dependency order so foreign keys resolve inside the new MetaData
    copies = {t.name: t.to_metadata(md, schema=schema) for t in template.sorted_tables}
    return SimpleNamespace(metadata=md, schema=schema, **copies)
