"""CapabilitySnapshot: a user's access state frozen into their session token.

The snapshot reflects the role as of token issuance. Role edits take effect for
a caller only when a new token is issued (login or /auth/refresh); issued_at
marks the start of that staleness window.
"""
from __future__ import annotations
import time
from dataclasses import asdict, dataclass, field
from typing import Any, Dict, Optional, Tuple
from flask import g
from flask_jwt_extended import get_jwt
from sqlalchemy import select
from sqlalchemy.orm import Session

from tenantgate.models.tenant import Tenant
from tenantgate.models.tenant_schema import tenant_tables
from tenantgate.services.permissions import PermissionMatrix


@dataclass(frozen=True)
class CapabilitySnapshot:
    user_id: int
    email: str
    tenant_id: int
    tenant_slug: str
    tenant_schema: str
    role_id: Optional[int]
    role_name: Optional[str]
    role_level: int = 0
    permissions: Dict[str, Any] = field(default_factory=dict)
    record_access: Dict[str, str] = field(default_factory=dict)
    field_permissions: Dict[str, Dict[str, str]] = field(default_factory=dict)
    department_id: Optional[int] = None
    team_ids: Tuple[int, ...] = ()
    manager_id: Optional[int] = None
    issued_at: int = 0

    @property
    def identity(self) -> str:
        # flask-jwt-extended v4 requires a string subject
        return str(self.user_id)

    @property
    def matrix(self) -> PermissionMatrix:
        return PermissionMatrix.from_json(self.permissions)

    def to_claims(self) -> Dict[str, Any]:
        return {
            'tenant_id': self.tenant_id,
            'tenant': self.tenant_slug,
            'schema': self.tenant_schema,
            'email': self.email,
            'role': self.role_name,
            'role_id': self.role_id,
            'role_level': self.role_level,
            'permissions': self.permissions,
            'record_access': self.record_access,
            'field_permissions': self.field_permissions,
            'department_id': self.department_id,
            'team_ids': list(self.team_ids),
            'manager_id': self.manager_id,
            'snapshot_at': self.issued_at,
        }

    @classmethod
    def from_claims(cls, claims: Dict[str, Any]) -> 'CapabilitySnapshot':
        return cls(
            user_id=int(claims['sub']),
            email=claims.get('email') or '',
            tenant_id=claims['tenant_id'],
            tenant_slug=claims['tenant'],
            tenant_schema=claims['schema'],
            role_id=claims.get('role_id'),
            role_name=claims.get('role'),
            role_level=claims.get('role_level') or 0,
            permissions=claims.get('permissions') or {},
            record_access=claims.get('record_access') or {},
            field_permissions=claims.get('field_permissions') or {},
            department_id=claims.get('department_id'),
            team_ids=tuple(claims.get('team_ids') or ()),
            manager_id=claims.get('manager_id'),
            issued_at=claims.get('snapshot_at') or claims.get('iat') or 0,
        )

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data['team_ids'] = list(self.team_ids)
        return data


def load_snapshot(session: Session, tenant: Tenant, user_id: int) -> Optional[CapabilitySnapshot]:
    """Read the user's live role and team state from the tenant schema. None if the user is missing."""
    t = tenant_tables(tenant.schema_name)
    row = session.execute(
        select(
            t.users.c.id, t.users.c.email, t.users.c.department_id, t.users.c.manager_id,
            t.roles.c.id.label('role_id'), t.roles.c.name.label('role_name'), t.roles.c.level,
            t.roles.c.permissions, t.roles.c.record_access, t.roles.c.field_permissions,
        )
        .select_from(t.users.outerjoin(t.roles, t.users.c.role_id == t.roles.c.id))
        .where(t.users.c.id == user_id)
    ).mappings().first()
    if row is None:
        return None
    team_ids = session.execute(
        select(t.user_teams.c.team_id).where(t.user_teams.c.user_id == user_id).order_by(t.user_teams.c.team_id)
    ).scalars().all()
    return CapabilitySnapshot(
        user_id=row['id'],
        email=row['email'],
        tenant_id=tenant.id,
        tenant_slug=tenant.slug,
        tenant_schema=tenant.schema_name,
        role_id=row['role_id'],
        role_name=row['role_name'],
        role_level=row['level'] or 0,
        permissions=PermissionMatrix.from_json(row['permissions']).to_json(),
        record_access=dict(row['record_access'] or {}),
        field_permissions=dict(row['field_permissions'] or {}),
        department_id=row['department_id'],
        team_ids=tuple(team_ids),
        manager_id=row['manager_id'],
        issued_at=int(time.time()),
    )


def current_snapshot() -> CapabilitySnapshot:
    """Snapshot of the caller of the current request (requires a verified JWT)."""
    claims = get_jwt()
    cached = g.get('capability_snapshot')
    # Keyed by token id: an app context can outlive a single request
    if cached is None or cached[0] != claims.get('jti'):
        cached = (claims.get('jti'), CapabilitySnapshot.from_claims(claims))
        g.capability_snapshot = cached
    return cached[1]


__all__ = ['CapabilitySnapshot', 'load_snapshot', 'current_snapshot']
