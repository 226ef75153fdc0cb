"""Tenant provisioning: registry row, schema namespace, baseline tables, seed roles.

Provisioning is two-phase. The registry row is committed as 'pending' first, then
the schema DDL runs and the tenant flips to 'active' in the same transaction as the
DDL (atomic on PostgreSQL, which has transactional DDL). A crash in between leaves
a 'pending' tenant: it cannot authenticate, is skipped by the migration runner and
is repaired by reconcile().
"""
from __future__ import annotations
import logging
from dataclasses import dataclass
from typing import List, Optional
from sqlalchemy import insert, select
from sqlalchemy.engine import Connection
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from tenantgate.constants.permissions import SYSTEM_ROLES
from tenantgate.errors import ProvisioningConflict, ProvisioningFailure
from tenantgate.models.tenant import Tenant
from tenantgate.models.tenant_schema import BASELINE_TABLES, tenant_tables
from tenantgate.services.registry import TenantRegistry
from tenantgate.services.schemas import SchemaManager, validate_slug

log = logging.getLogger(__name__)

INITIAL_MIGRATION = '0000_initial_schema'


def baseline_present(conn: Connection, schemas: SchemaManager, schema_name: str) -> bool:
    if not schemas.schema_exists(conn, schema_name):
        return False
    existing = set(schemas.table_names(conn, schema_name))
    return all(t in existing for t in BASELINE_TABLES)


def bootstrap_baseline(conn: Connection, schema_name: str) -> None:
    """Create the full tenant template inside an existing namespace. Safe to repeat."""
    tables = tenant_tables(schema_name)
    tables.metadata.create_all(bind=conn, checkfirst=True)
    existing = set(conn.execute(select(tables.roles.c.name)).scalars())
    rows = [
        {
            'name': name, 'description': description, 'level': level, 'is_system': True,
            'permissions': permissions, 'record_access': record_access, 'field_permissions': {},
        }
        for name, description, level, permissions, record_access in SYSTEM_ROLES
        if name not in existing
    ]
    if rows:
        conn.execute(insert(tables.roles), rows)
    recorded = conn.execute(
        select(tables.schema_migrations.c.id).where(tables.schema_migrations.c.migration_name == INITIAL_MIGRATION)
    ).first()
    if recorded is None:
        conn.execute(insert(tables.schema_migrations).values(migration_name=INITIAL_MIGRATION))


@dataclass
class ReconcileResult:
    tenant_id: int
    slug: str
    schema_name: str
    ok: bool
    error: Optional[str] = None

    def to_dict(self):
        return {'tenant_id': self.tenant_id, 'slug': self.slug, 'schema': self.schema_name, 'ok': self.ok, 'error': self.error}


class TenantProvisioner:
    """The only component that creates schema namespaces."""

    def __init__(self, session: Session, schemas: SchemaManager):
        self.session = session
        self.schemas = schemas
        self.registry = TenantRegistry(session)

    def create(self, name: str, slug: str) -> Tenant:
        slug = validate_slug(slug)
        if not name or not name.strip():
            raise ValueError('name required')
        schema_name = self.schemas.schema_for_slug(slug)
        # Any registration holds the slug: schema identifiers are immutable even for suspended tenants
        if self.registry.get_by_slug(slug, active_only=False) or self.registry.get_by_schema(schema_name):
            raise ProvisioningConflict(f'slug {slug} already taken')
        try:
            tenant = self.registry.add(name.strip(), slug, schema_name)
            self.session.commit()
        except IntegrityError as exc:
            self.session.rollback()
            raise ProvisioningConflict(f'slug {slug} already taken') from exc
        log.info('registered tenant %s (id=%s, schema=%s)', slug, tenant.id, schema_name)
        self.provision(tenant)
        return tenant

    def provision(self, tenant: Tenant) -> Tenant:
        """Create namespace + baseline for a registered tenant and mark it active."""
        slug, schema_name = tenant.slug, tenant.schema_name
        try:
            conn = self.session.connection()
            self.schemas.create_schema(conn, schema_name)
            bootstrap_baseline(conn, schema_name)
            self.registry.set_status(tenant, Tenant.STATUS_ACTIVE)
            self.session.commit()
        except (SQLAlchemyError, OSError) as exc:
            self.session.rollback()
            log.exception('provisioning failed for tenant %s (%s)', slug, schema_name)
            raise ProvisioningFailure(slug, schema_name, exc) from exc
        log.info('provisioned tenant %s (%s)', slug, schema_name)
        return tenant

    def reconcile(self, include_active: bool = False) -> List[ReconcileResult]:
        """Re-run provisioning for pending tenants (and, optionally, active tenants missing their baseline)."""
        candidates = self.registry.list_by_status(Tenant.STATUS_PENDING)
        if include_active:
            for tenant in self.registry.list_active():
                if not baseline_present(self.session.connection(), self.schemas, tenant.schema_name):
                    candidates.append(tenant)
            self.session.commit()
        results: List[ReconcileResult] = []
        for tenant in candidates:
            result = ReconcileResult(tenant.id, tenant.slug, tenant.schema_name, True)
            try:
                self.provision(tenant)
            except ProvisioningFailure as exc:
                result.ok, result.error = False, str(exc.cause)
            results.append(result)
        return results


__all__ = ['TenantProvisioner', 'ReconcileResult', 'bootstrap_baseline', 'baseline_present', 'INITIAL_MIGRATION']
