"""Per-tenant schema migrations.

A migration is identified by its name forever: the per-schema tracking table
(schema_migrations) records every applied name and the runner never executes a
recorded name again. Bodies must still be safe to re-run, since a crash between
executing a body and committing its tracking row leaves the name unrecorded.

Tenants are migrated one at a time, in the order given; within a tenant,
migrations run strictly in registry order. A failure stops that tenant only and is
returned as data in the MigrationReport.
"""
from __future__ import annotations
import logging
import os
import re
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Iterable, Iterator, List, Optional, Sequence, Set, Union
from alembic.migration import MigrationContext
from alembic.operations import Operations
from sqlalchemy import insert, inspect, select, text
from sqlalchemy.engine import Connection
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from tenantgate.errors import MigrationFailure, MigrationRegistryError
from tenantgate.models.tenant import Tenant
from tenantgate.models.tenant_schema import TRACKING_TABLE, tenant_tables
from tenantgate.services.provisioner import baseline_present, bootstrap_baseline
from tenantgate.services.schemas import SchemaManager

log = logging.getLogger(__name__)

SCHEMA_PLACEHOLDER = 'TENANT_SCHEMA'
_PLACEHOLDER_RE = re.compile(r'\b' + SCHEMA_PLACEHOLDER + r'\b')
MIGRATION_NAME_RE = re.compile(r'^[0-9A-Za-z_.-]{1,255}$')
_DOLLAR_TAG_RE = re.compile(r'\$[A-Za-z_]*\$')


def render_sql(sql: str, schema_name: str) -> str:
    return _PLACEHOLDER_RE.sub(schema_name, sql)


def split_sql(script: str) -> List[str]:
    """Split a script on top-level ';', keeping quoted strings, identifiers and $$ bodies intact.

    Comments are dropped. sqlite3 refuses multi-statement strings, so scripts are
    always executed statement by statement.
    """
    statements: List[str] = []
    buf: List[str] = []
    i, n = 0, len(script)
    while i < n:
        ch = script[i]
        if script.startswith('--', i):
            end = script.find('\n', i)
            i = n if end == -1 else end
            continue
        if script.startswith('/*', i):
            end = script.find('*/', i + 2)
            i = n if end == -1 else end + 2
            continue
        if ch in ("'", '"'):
            end = i + 1
            while end < n:
                if script[end] == ch:
                    if end + 1 < n and script[end + 1] == ch:  # doubled quote escape
                        end += 2
                        continue
                    break
                end += 1
            buf.append(script[i:end + 1])
            i = end + 1
            continue
        if ch == '$':
            m = _DOLLAR_TAG_RE.match(script, i)
            if m:
                close = script.find(m.group(0), m.end())
                end = n if close == -1 else close + len(m.group(0))
                buf.append(script[i:end])
                i = end
                continue
        if ch == ';':
            stmt = ''.join(buf).strip()
            if stmt:
                statements.append(stmt)
            buf = []
            i += 1
            continue
        buf.append(ch)
        i += 1
    tail = ''.join(buf).strip()
    if tail:
        statements.append(tail)
    return statements


@dataclass
class TenantMigrationContext:
    """What a callable migration body receives: an alembic Operations bound to the tenant connection."""
    connection: Connection
    schema: str
    schemas: SchemaManager
    op: Operations = field(init=False)

    def __post_init__(self):
        self.op = Operations(MigrationContext.configure(self.connection))

    def has_table(self, table: str) -> bool:
        return self.schemas.has_table(self.connection, self.schema, table)

    def has_column(self, table: str, column: str) -> bool:
        return self.has_table(table) and column in self.schemas.column_names(self.connection, self.schema, table)

    def has_index(self, table: str, index: str) -> bool:
        return self.has_table(table) and any(
            ix['name'] == index for ix in inspect(self.connection).get_indexes(table, schema=self.schema)
        )

    def execute(self, sql: str, params: Optional[Dict[str, Any]] = None):
        return self.connection.execute(text(render_sql(sql, self.schema)), params or {})


@dataclass(frozen=True)
class NamedMigration:
    """One schema-evolution step. Exactly one of sql / apply is set.

    sql: script containing the TENANT_SCHEMA placeholder, may hold several statements.
    apply: callable receiving a TenantMigrationContext.
    """
    name: str
    sql: Optional[str] = None
    apply: Optional[Callable[[TenantMigrationContext], None]] = None
    description: str = ''

    def __post_init__(self):
        if not isinstance(self.name, str) or not MIGRATION_NAME_RE.match(self.name):
            raise MigrationRegistryError(f'invalid migration name {self.name!r}')
        if (self.sql is None) == (self.apply is None):
            raise MigrationRegistryError(f'migration {self.name} needs exactly one of sql/apply')

    def run(self, ctx: TenantMigrationContext) -> None:
        if self.apply is not None:
            self.apply(ctx)
            return
        for stmt in split_sql(render_sql(self.sql, ctx.schema)):
            ctx.connection.exec_driver_sql(stmt, execution_options={'no_parameters': True})


class MigrationRegistry:
    """Ordered, append-only list of migrations with unique names."""

    def __init__(self, migrations: Iterable[NamedMigration] = ()):
        self._items: List[NamedMigration] = []
        self._names: Set[str] = set()
        for m in migrations:
            self.append(m)

    def append(self, migration: NamedMigration) -> NamedMigration:
        if not isinstance(migration, NamedMigration):
            raise MigrationRegistryError(f'not a NamedMigration: {migration!r}')
        if migration.name in self._names:
            raise MigrationRegistryError(f'duplicate migration name {migration.name}')
        self._items.append(migration)
        self._names.add(migration.name)
        return migration

    def sql(self, name: str, sql: str, description: str = '') -> NamedMigration:
        return self.append(NamedMigration(name=name, sql=sql, description=description))

    def register(self, name: str, description: str = ''):
        """Decorator form: @registry.register('0002_x') def upgrade(ctx): ..."""
        def outer(fn):
            self.append(NamedMigration(name=name, apply=fn, description=description or (fn.__doc__ or '').strip()))
            return fn
        return outer

    def extend_from_directory(self, path: str) -> List[NamedMigration]:
        """Append every *.sql file in path, sorted by file name; the file stem is the migration name."""
        if not os.path.isdir(path):
            log.warning('migrations directory not found: %s', path)
            return []
        added = []
        for filename in sorted(f for f in os.listdir(path) if f.endswith('.sql')):
            with open(os.path.join(path, filename), encoding='utf-8') as fh:
                added.append(self.sql(filename[:-len('.sql')], fh.read()))
        return added

    @property
    def names(self) -> List[str]:
        return [m.name for m in self._items]

    def __iter__(self) -> Iterator[NamedMigration]:
        return iter(list(self._items))

    def __len__(self) -> int:
        return len(self._items)

    def __contains__(self, name: object) -> bool:
        return name in self._names


MigrationSource = Union[MigrationRegistry, Sequence[NamedMigration]]


@dataclass
class TenantMigrationResult:
    tenant_id: int
    slug: str
    schema_name: str
    applied: List[str] = field(default_factory=list)
    skipped: List[str] = field(default_factory=list)
    bootstrapped: bool = False
    failure: Optional[MigrationFailure] = None

    @property
    def ok(self) -> bool:
        return self.failure is None

    def to_dict(self) -> Dict[str, Any]:
        return {
            'tenant_id': self.tenant_id,
            'slug': self.slug,
            'schema': self.schema_name,
            'ok': self.ok,
            'bootstrapped': self.bootstrapped,
            'applied': list(self.applied),
            'skipped': list(self.skipped),
            'failed_migration': self.failure.migration_name if self.failure else None,
            'error': str(self.failure.cause) if self.failure else None,
        }


@dataclass
class MigrationReport:
    results: List[TenantMigrationResult] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return all(r.ok for r in self.results)

    @property
    def failed(self) -> List[TenantMigrationResult]:
        return [r for r in self.results if not r.ok]

    def for_schema(self, schema_name: str) -> Optional[TenantMigrationResult]:
        return next((r for r in self.results if r.schema_name == schema_name), None)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'ok': self.ok,
            'tenants': len(self.results),
            'failed': len(self.failed),
            'results': [r.to_dict() for r in self.results],
        }


@dataclass
class TenantMigrationStatus:
    tenant_id: int
    slug: str
    schema_name: str
    executed: List[str]
    pending: List[str]

    def to_dict(self) -> Dict[str, Any]:
        return {
            'tenant_id': self.tenant_id,
            'slug': self.slug,
            'schema': self.schema_name,
            'executed': len(self.executed),
            'pending': len(self.pending),
            'pending_names': list(self.pending),
        }


def _as_registry(migrations: MigrationSource) -> MigrationRegistry:
    if isinstance(migrations, MigrationRegistry):
        return migrations
    return MigrationRegistry(migrations)


class MigrationRunner:

    def __init__(self, session: Session, schemas: SchemaManager):
        self.session = session
        self.schemas = schemas

    def run_pending(self, tenants: Iterable[Tenant], migrations: MigrationSource) -> MigrationReport:
        """Bring every given tenant up to date. Never raises for a single tenant's failure."""
        registry = _as_registry(migrations)
        report = MigrationReport()
        for tenant in tenants:
            result = TenantMigrationResult(tenant.id, tenant.slug, tenant.schema_name)
            try:
                self._migrate_tenant(tenant, registry, result)
            except MigrationFailure as exc:
                result.failure = exc
                log.error('tenant %s (%s): migration %s failed: %s',
                          result.slug, result.schema_name, exc.migration_name or '<baseline>', exc.cause)
            report.results.append(result)
        log.info('migration run finished: %d tenants, %d failed', len(report.results), len(report.failed))
        return report

    def run_for_tenant(self, tenant: Tenant, migrations: MigrationSource) -> TenantMigrationResult:
        """Migrate a single tenant; raises MigrationFailure."""
        result = TenantMigrationResult(tenant.id, tenant.slug, tenant.schema_name)
        self._migrate_tenant(tenant, _as_registry(migrations), result)
        return result

    def status(self, tenants: Iterable[Tenant], migrations: MigrationSource) -> List[TenantMigrationStatus]:
        """Executed / pending names per tenant. Read-only: creates no tracking table."""
        registry = _as_registry(migrations)
        out = []
        for tenant in tenants:
            executed = self._executed_names(tenant.schema_name)
            out.append(TenantMigrationStatus(
                tenant.id, tenant.slug, tenant.schema_name,
                executed=sorted(executed),
                pending=[n for n in registry.names if n not in executed],
            ))
        self.session.commit()
        return out

    # --- internals ---

    def _executed_names(self, schema_name: str) -> Set[str]:
        conn = self.session.connection()
        if not self.schemas.schema_exists(conn, schema_name) or not self.schemas.has_table(conn, schema_name, TRACKING_TABLE):
            return set()
        tracking = tenant_tables(schema_name).schema_migrations
        return set(conn.execute(select(tracking.c.migration_name)).scalars())

    def _prepare(self, tenant: Tenant, result: TenantMigrationResult) -> Set[str]:
        """Check namespace and baseline, ensure the tracking table, and return the executed names."""
        slug, schema_name = tenant.slug, tenant.schema_name
        try:
            conn = self.session.connection()
            if not self.schemas.schema_exists(conn, schema_name):
                raise LookupError(f'schema {schema_name} does not exist; reconcile the tenant')
            if not baseline_present(conn, self.schemas, schema_name):
                log.warning('baseline missing in %s, bootstrapping from template', schema_name)
                bootstrap_baseline(conn, schema_name)
                result.bootstrapped = True
            tenant_tables(schema_name).schema_migrations.create(bind=conn, checkfirst=True)
            executed = self._executed_names(schema_name)
            self.session.commit()
        except Exception as exc:
            self.session.rollback()
            raise MigrationFailure(slug, None, exc) from exc
        return executed

    def _migrate_tenant(self, tenant: Tenant, registry: MigrationRegistry, result: TenantMigrationResult) -> None:
        log.info('running migrations for tenant %s (%s)', tenant.slug, tenant.schema_name)
        executed = self._prepare(tenant, result)
        for migration in registry:
            if migration.name in executed:
                result.skipped.append(migration.name)
                continue
            if self._apply(tenant, migration):
                result.applied.append(migration.name)
            else:
                result.skipped.append(migration.name)
        log.info('tenant %s: %d applied, %d already applied', tenant.slug, len(result.applied), len(result.skipped))

    def _is_recorded(self, conn: Connection, tracking, name: str) -> bool:
        return conn.execute(select(tracking.c.id).where(tracking.c.migration_name == name)).first() is not None

    def _apply(self, tenant: Tenant, migration: NamedMigration) -> bool:
        """Run one migration and record it. Returns False when another runner recorded it first."""
        slug, schema_name = tenant.slug, tenant.schema_name
        tracking = tenant_tables(schema_name).schema_migrations
        try:
            conn = self.session.connection()
            self.schemas.enter_schema(conn, schema_name)
            if self._is_recorded(conn, tracking, migration.name):
                self.session.commit()
                return False
            log.info('executing migration %s for %s', migration.name, schema_name)
            migration.run(TenantMigrationContext(conn, schema_name, self.schemas))
        except Exception as exc:
            self.session.rollback()
            raise MigrationFailure(slug, migration.name, exc) from exc
        try:
            conn.execute(insert(tracking).values(migration_name=migration.name))
            self.session.commit()
        except IntegrityError:
            # Unique violation on the tracking table: a concurrent runner recorded it
            self.session.rollback()
            log.info('migration %s already recorded for %s by another runner', migration.name, schema_name)
            return False
        except Exception as exc:
            self.session.rollback()
            raise MigrationFailure(slug, migration.name, exc) from exc
        log.info('migration %s completed for %s', migration.name, schema_name)
        return True


__all__ = [
    'SCHEMA_PLACEHOLDER', 'render_sql', 'split_sql', 'TenantMigrationContext', 'NamedMigration',
    'MigrationRegistry', 'MigrationRunner', 'MigrationReport', 'TenantMigrationResult', 'TenantMigrationStatus',
]
