"""Test seeding utilities to reduce duplication.

These helpers centralize creation of tenants, roles, users, departments and teams
inside tenant schemas. They commit, so the data is visible to the next request.
"""
from typing import Dict, Iterable, Optional
from sqlalchemy import insert, select, update

from tenantgate import get_db
from tenantgate.models.tenant import Tenant
from tenantgate.models.tenant_schema import tenant_tables
from tenantgate.services.provisioner import TenantProvisioner
from tenantgate.services.users import create_user, find_role_id, find_user_by_email, set_user_teams
from tests.test_helpers import DEFAULT_PASSWORD


def provision_tenant(app, slug: str, name: Optional[str] = None) -> Tenant:
    return TenantProvisioner(get_db(), app.extensions['tenant_schemas']).create(name or slug.title(), slug)


def ensure_role(schema: str, name: str, permissions: dict, record_access: Optional[dict] = None,
                field_permissions: Optional[dict] = None, level: int = 10) -> int:
    session = get_db()
    roles = tenant_tables(schema).roles
    role_id = find_role_id(session, schema, name)
    values = dict(permissions=permissions, record_access=record_access or {},
                  field_permissions=field_permissions or {}, level=level)
    if role_id is None:
        role_id = session.execute(insert(roles).values(name=name, is_system=False, **values)).inserted_primary_key[0]
    else:
        session.execute(update(roles).where(roles.c.id == role_id).values(**values))
    session.commit()
    return role_id


def ensure_department(schema: str, name: str) -> int:
    session = get_db()
    departments = tenant_tables(schema).departments
    dept_id = session.execute(select(departments.c.id).where(departments.c.name == name)).scalar_one_or_none()
    if dept_id is None:
        dept_id = session.execute(insert(departments).values(name=name)).inserted_primary_key[0]
        session.commit()
    return dept_id


def ensure_user(schema: str, email: str, role_name: str = 'user', password: str = DEFAULT_PASSWORD,
                department_id: Optional[int] = None, status: str = 'active') -> int:
    session = get_db()
    existing = find_user_by_email(session, schema, email)
    if existing:
        return existing['id']
    user_id = create_user(session, schema, email, password, role_name=role_name, department_id=department_id)
    if status != 'active':
        users = tenant_tables(schema).users
        session.execute(update(users).where(users.c.id == user_id).values(status=status))
    session.commit()
    return user_id


def ensure_team(schema: str, name: str, department_id: Optional[int] = None) -> int:
    session = get_db()
    teams = tenant_tables(schema).teams
    team_id = session.execute(select(teams.c.id).where(teams.c.name == name)).scalar_one_or_none()
    if team_id is None:
        team_id = session.execute(insert(teams).values(name=name, department_id=department_id)).inserted_primary_key[0]
        session.commit()
    return team_id


def assign_teams(schema: str, user_id: int, team_ids: Iterable[int]):
    session = get_db()
    set_user_teams(session, schema, user_id, team_ids)
    session.commit()


def seed_tenant_with_users(app, slug: str, users: Dict[str, str]):
    """High level convenience: tenant + {email: role_name} users. Returns (tenant, {email: id})."""
    tenant = provision_tenant(app, slug)
    ids = {email: ensure_user(tenant.schema_name, email, role_name) for email, role_name in users.items()}
    return tenant, ids


__all__ = [
    'provision_tenant', 'ensure_role', 'ensure_department', 'ensure_user', 'ensure_team', 'assign_teams',
    'seed_tenant_with_users',
]
