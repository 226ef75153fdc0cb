"""Schema identifiers and schema namespace management.

PostgreSQL keeps each tenant in its own schema. SQLite has no schemas, so a
tenant schema is an ATTACHed database carrying the schema name: an in-memory
database when the main database is in-memory, otherwise a file
<TENANT_SQLITE_DIR>/<schema_name>.db re-attached on every new connection.
"""
from __future__ import annotations
import logging
import os
import re
from typing import List, Optional
from sqlalchemy import event, inspect, text
from sqlalchemy.engine import Connection, Engine

from tenantgate.errors import InvalidSlug

log = logging.getLogger(__name__)

SLUG_RE = re.compile(r'^[a-z0-9]+(?:-[a-z0-9]+)*$')
SLUG_MIN, SLUG_MAX = 2, 48
DEFAULT_PREFIX = 'tenant_'


def validate_slug(slug: str) -> str:
    if not isinstance(slug, str) or not (SLUG_MIN <= len(slug) <= SLUG_MAX) or not SLUG_RE.match(slug):
        raise InvalidSlug(f'invalid slug {slug!r}: use {SLUG_MIN}-{SLUG_MAX} lowercase letters, digits and single hyphens')
    return slug


def schema_for_slug(slug: str, prefix: str = DEFAULT_PREFIX) -> str:
    """Map a slug onto its schema identifier: 'acme-corp' -> 'tenant_acme_corp'.

    Slugs never contain '_', so the mapping is reversible with slug_for_schema().
    """
    return prefix + validate_slug(slug).replace('-', '_')


def slug_for_schema(schema_name: str, prefix: str = DEFAULT_PREFIX) -> str:
    if not schema_name.startswith(prefix):
        raise ValueError(f'{schema_name!r} is not a tenant schema')
    return validate_slug(schema_name[len(prefix):].replace('_', '-'))


class SchemaManager:
    """Creates and inspects tenant schema namespaces for the configured dialect."""

    def __init__(self, prefix: str = DEFAULT_PREFIX, sqlite_dir: Optional[str] = None, sqlite_memory: bool = False):
        self.prefix = prefix
        self.sqlite_dir = sqlite_dir
        self.sqlite_memory = sqlite_memory

    @classmethod
    def from_app_config(cls, config, engine: Engine) -> 'SchemaManager':
        prefix = config.get('TENANT_SCHEMA_PREFIX') or DEFAULT_PREFIX
        if engine.dialect.name != 'sqlite':
            return cls(prefix=prefix)
        database = engine.url.database
        if not database or database == ':memory:':
            return cls(prefix=prefix, sqlite_memory=True)
        sqlite_dir = config.get('TENANT_SQLITE_DIR') or os.path.dirname(os.path.abspath(database))
        return cls(prefix=prefix, sqlite_dir=sqlite_dir)

    def schema_for_slug(self, slug: str) -> str:
        return schema_for_slug(slug, self.prefix)

    def slug_for_schema(self, schema_name: str) -> str:
        return slug_for_schema(schema_name, self.prefix)

    # --- namespace ---

    def quote(self, conn: Connection, schema_name: str) -> str:
        return conn.dialect.identifier_preparer.quote_identifier(schema_name)

    def schema_exists(self, conn: Connection, schema_name: str) -> bool:
        return schema_name in inspect(conn).get_schema_names()

    def create_schema(self, conn: Connection, schema_name: str) -> bool:
        """Create the namespace if missing. Returns True when it was created.

        On SQLite this must run before any DML in the current transaction (ATTACH
        is refused inside an open transaction).
        """
        if self.schema_exists(conn, schema_name):
            return False
        if conn.dialect.name == 'sqlite':
            conn.execute(text(f'ATTACH DATABASE :path AS {self.quote(conn, schema_name)}'),
                         {'path': self._sqlite_path(schema_name)})
        else:
            conn.execute(text(f'CREATE SCHEMA IF NOT EXISTS {self.quote(conn, schema_name)}'))
        log.info('created schema %s', schema_name)
        return True

    def has_table(self, conn: Connection, schema_name: str, table: str) -> bool:
        return inspect(conn).has_table(table, schema=schema_name)

    def table_names(self, conn: Connection, schema_name: str) -> List[str]:
        return inspect(conn).get_table_names(schema=schema_name)

    def column_names(self, conn: Connection, schema_name: str, table: str) -> List[str]:
        return [c['name'] for c in inspect(conn).get_columns(table, schema=schema_name)]

    # --- per-migration session scoping ---

    def enter_schema(self, conn: Connection, schema_name: str) -> None:
        """Point unqualified names at the tenant schema and serialize runners per schema.

        Both settings are transaction-scoped on PostgreSQL; SQLite migrations must
        qualify names through the TENANT_SCHEMA placeholder instead.
        """
        if conn.dialect.name != 'postgresql':
            return
        conn.execute(text('SELECT pg_advisory_xact_lock(hashtext(:s))'), {'s': schema_name})
        conn.execute(text(f'SET LOCAL search_path TO {self.quote(conn, schema_name)}, public'))

    # --- sqlite support ---

    def _sqlite_path(self, schema_name: str) -> str:
        if self.sqlite_memory or not self.sqlite_dir:
            return ':memory:'
        os.makedirs(self.sqlite_dir, exist_ok=True)
        return os.path.join(self.sqlite_dir, f'{schema_name}.db')

    def sqlite_files(self) -> List[str]:
        if not self.sqlite_dir or not os.path.isdir(self.sqlite_dir):
            return []
        return sorted(
            f for f in os.listdir(self.sqlite_dir)
            if f.startswith(self.prefix) and f.endswith('.db')
        )


def install_sqlite_attach_hook(engine: Engine, schemas: SchemaManager) -> None:
    """Attach every tenant database file on each new DBAPI connection."""

    @event.listens_for(engine, 'connect')
    def _attach_tenants(dbapi_conn, _record):  # pragma: no cover - exercised through engine use
        cursor = dbapi_conn.cursor()
        try:
            for filename in schemas.sqlite_files():
                schema_name = filename[:-len('.db')]
                cursor.execute(f'ATTACH DATABASE ? AS "{schema_name}"', (os.path.join(schemas.sqlite_dir, filename),))
        finally:
            cursor.close()


__all__ = [
    'validate_slug', 'schema_for_slug', 'slug_for_schema', 'SchemaManager', 'install_sqlite_attach_hook',
]
