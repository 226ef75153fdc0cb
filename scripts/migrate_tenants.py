#!/usr/bin/env python
"""Operator CLI for tenant schemas.

Usage:
    python scripts/migrate_tenants.py run                     # apply pending migrations to every active tenant
    python scripts/migrate_tenants.py run --tenant acme       # one tenant only
    python scripts/migrate_tenants.py status --json           # executed / pending per tenant
    python scripts/migrate_tenants.py reconcile               # finish provisioning of pending tenants
    python scripts/migrate_tenants.py create --name "Acme Inc" --slug acme

Exit status is 1 when any tenant failed.
"""
from __future__ import annotations
import os, sys, argparse, textwrap, json

# Allow running from repo root
sys.path.append(os.path.abspath(os.path.join(os.path.dirname(__file__), '..')))

from sqlalchemy import inspect  # noqa: E402
from tenantgate import create_app, get_db  # noqa: E402
from tenantgate.errors import ProvisioningConflict, ProvisioningFailure, InvalidSlug  # noqa: E402
from tenantgate.models.tenant import Base, Tenant  # noqa: E402
from tenantgate.services.migrations import MigrationRunner  # noqa: E402
from tenantgate.services.provisioner import TenantProvisioner  # noqa: E402
from tenantgate.services.registry import TenantRegistry  # noqa: E402
from tenantgate.tenant_migrations.builtin import build_registry  # noqa: E402


def parse_args(argv=None):
    p = argparse.ArgumentParser(
        description="Provision and migrate tenant schemas",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=textwrap.dedent("""Examples:\n  migrate all: migrate_tenants.py run\n  one tenant: migrate_tenants.py run --tenant acme\n  pending list: migrate_tenants.py status --json\n""")
    )
    common = argparse.ArgumentParser(add_help=False)
    common.add_argument('--json', action='store_true', help='Print machine readable JSON instead of text')
    sub = p.add_subparsers(dest='command', required=True)
    run = sub.add_parser('run', parents=[common], help='Apply pending migrations')
    run.add_argument('--tenant', metavar='SLUG', help='Only this tenant')
    status = sub.add_parser('status', parents=[common], help='Show executed / pending migrations')
    status.add_argument('--tenant', metavar='SLUG', help='Only this tenant')
    reconcile = sub.add_parser('reconcile', parents=[common], help='Re-run provisioning for pending tenants')
    reconcile.add_argument('--include-active', action='store_true', help='Also repair active tenants missing their baseline tables')
    create = sub.add_parser('create', parents=[common], help='Register and provision a tenant')
    create.add_argument('--name', required=True)
    create.add_argument('--slug', required=True)
    return p.parse_args(argv)


def ensure_registry_table(session):
    # Bootstrap fallback; in real environments prefer `alembic upgrade head`
    engine = session.get_bind()
    if not inspect(engine).has_table(Tenant.__tablename__):
        Base.metadata.create_all(engine)


def select_tenants(session, slug=None):
    registry = TenantRegistry(session)
    if slug is None:
        return registry.list_active()
    tenant = registry.get_by_slug(slug)
    if tenant is None:
        raise SystemExit(f"[ERROR] no active tenant with slug '{slug}'")
    return [tenant]


def cmd_run(app, args) -> int:
    session = get_db()
    tenants = select_tenants(session, args.tenant)
    registry = build_registry(app.config.get('TENANT_MIGRATIONS_DIR'))
    report = MigrationRunner(session, app.extensions['tenant_schemas']).run_pending(tenants, registry)
    if args.json:
        print(json.dumps(report.to_dict(), indent=2))
    else:
        for r in report.results:
            state = 'OK' if r.ok else 'FAIL'
            line = f"[{state}] {r.slug} ({r.schema_name}): applied {len(r.applied)}, skipped {len(r.skipped)}"
            if r.bootstrapped:
                line += ', baseline bootstrapped'
            if not r.ok:
                line += f" -- {r.failure.migration_name or '<baseline>'}: {r.failure.cause}"
            print(line)
        print(f"[DONE] {len(report.results)} tenant(s), {len(report.failed)} failed")
    return 0 if report.ok else 1


def cmd_status(app, args) -> int:
    session = get_db()
    tenants = select_tenants(session, args.tenant)
    registry = build_registry(app.config.get('TENANT_MIGRATIONS_DIR'))
    rows = MigrationRunner(session, app.extensions['tenant_schemas']).status(tenants, registry)
    if args.json:
        print(json.dumps([r.to_dict() for r in rows], indent=2))
        return 0
    if not rows:
        print('[INFO] No active tenants.')
        return 0
    slug_w = max(len(r.slug) for r in rows)
    print(f"{'Tenant'.ljust(slug_w)} | Executed | Pending")
    print('-' * (slug_w + 30))
    for r in rows:
        print(f"{r.slug.ljust(slug_w)} | {str(len(r.executed)).rjust(8)} | {', '.join(r.pending) or '-'}")
    return 0


def cmd_reconcile(app, args) -> int:
    session = get_db()
    results = TenantProvisioner(session, app.extensions['tenant_schemas']).reconcile(include_active=args.include_active)
    if args.json:
        print(json.dumps([r.to_dict() for r in results], indent=2))
    else:
        for r in results:
            print(f"[{'OK' if r.ok else 'FAIL'}] {r.slug} ({r.schema_name})" + (f" -- {r.error}" if r.error else ''))
        print(f"[DONE] {len(results)} tenant(s) reconciled")
    return 0 if all(r.ok for r in results) else 1


def cmd_create(app, args) -> int:
    session = get_db()
    try:
        tenant = TenantProvisioner(session, app.extensions['tenant_schemas']).create(args.name, args.slug)
    except (ProvisioningConflict, InvalidSlug) as e:
        print(f"[ERROR] {e.detail}")
        return 1
    except ProvisioningFailure as e:
        print(f"[FAIL] {e.detail}: {e.cause} (run `reconcile` to retry)")
        return 1
    if args.json:
        print(json.dumps(tenant.to_dict(), indent=2))
    else:
        print(f"[DONE] tenant {tenant.slug} provisioned in schema {tenant.schema_name}")
    return 0


COMMANDS = {'run': cmd_run, 'status': cmd_status, 'reconcile': cmd_reconcile, 'create': cmd_create}


def main(argv=None, app=None) -> int:
    args = parse_args(argv)
    app = app or create_app()
    with app.app_context():
        ensure_registry_table(get_db())
        return COMMANDS[args.command](app, args)


if __name__ == '__main__':
    sys.exit(main())
