from __future__ import annotations
from typing import Any, Dict, Iterable, Optional
from sqlalchemy import delete, func, insert, select, update
from sqlalchemy.orm import Session
from werkzeug.security import check_password_hash, generate_password_hash

from tenantgate.models.tenant_schema import tenant_tables

USER_ACTIVE = 'active'


def find_role_id(session: Session, schema: str, role_name: str) -> Optional[int]:
    roles = tenant_tables(schema).roles
    return session.execute(select(roles.c.id).where(roles.c.name == role_name)).scalar_one_or_none()


def get_user(session: Session, schema: str, user_id: int) -> Optional[Dict[str, Any]]:
    users = tenant_tables(schema).users
    row = session.execute(select(users).where(users.c.id == user_id)).mappings().first()
    return dict(row) if row else None


def find_user_by_email(session: Session, schema: str, email: str) -> Optional[Dict[str, Any]]:
    users = tenant_tables(schema).users
    row = session.execute(select(users).where(func.lower(users.c.email) == email.strip().lower())).mappings().first()
    return dict(row) if row else None


def create_user(
    session: Session,
    schema: str,
    email: str,
    password: str,
    role_name: Optional[str] = None,
    first_name: str = '',
    last_name: str = '',
    department_id: Optional[int] = None,
    manager_id: Optional[int] = None,
) -> int:
    """Insert a user into the tenant schema and return its id. Does not commit."""
    users = tenant_tables(schema).users
    role_id = find_role_id(session, schema, role_name) if role_name else None
    if role_name and role_id is None:
        raise LookupError(f'role {role_name} not found in {schema}')
    result = session.execute(insert(users).values(
        email=email.strip().lower(),
        password_hash=generate_password_hash(password),
        first_name=first_name or '',
        last_name=last_name or '',
        role_id=role_id,
        department_id=department_id,
        manager_id=manager_id,
        status=USER_ACTIVE,
    ))
    return result.inserted_primary_key[0]


def verify_password(user: Dict[str, Any], password: str) -> bool:
    return bool(user.get('password_hash')) and check_password_hash(user['password_hash'], password)


def touch_last_login(session: Session, schema: str, user_id: int) -> None:
    users = tenant_tables(schema).users
    session.execute(update(users).where(users.c.id == user_id).values(last_login_at=func.now()))


def set_user_teams(session: Session, schema: str, user_id: int, team_ids: Iterable[int]) -> None:
    user_teams = tenant_tables(schema).user_teams
    session.execute(delete(user_teams).where(user_teams.c.user_id == user_id))
    rows = [{'user_id': user_id, 'team_id': t} for t in sorted(set(team_ids))]
    if rows:
        session.execute(insert(user_teams), rows)


__all__ = ['find_role_id', 'get_user', 'find_user_by_email', 'create_user', 'verify_password', 'touch_last_login', 'set_user_teams']
