from flask import Blueprint, abort, current_app, request
from sqlalchemy import delete, func, insert, select, update

from tenantgate import get_db
from tenantgate.config.pagination import normalize_pagination, pagination_meta
from tenantgate.constants.permissions import ADMIN_ROLE
from tenantgate.decorators.auth import require_permissions
from tenantgate.errors import TenantUnavailable
from tenantgate.models.tenant_schema import tenant_tables
from tenantgate.services.capabilities import current_snapshot
from tenantgate.services.migrations import MigrationRunner
from tenantgate.services.permissions import validate_field_permissions, validate_matrix
from tenantgate.services.registry import TenantRegistry
from tenantgate.services.scope import validate_record_access
from tenantgate.tenant_migrations.builtin import build_registry

admin_bp = Blueprint('admin', __name__)

ADMIN_LEVEL = 100


def _tables():
    return tenant_tables(current_snapshot().tenant_schema)


def _role_dict(row, user_count=None):
    out = {
        'id': row['id'],
        'name': row['name'],
        'description': row['description'],
        'level': row['level'],
        'is_system': row['is_system'],
        'permissions': row['permissions'] or {},
        'record_access': row['record_access'] or {},
        'field_permissions': row['field_permissions'] or {},
    }
    if user_count is not None:
        out['user_count'] = user_count
    return out


def _get_role_or_404(session, role_id: int):
    roles = _tables().roles
    row = session.execute(select(roles).where(roles.c.id == role_id)).mappings().first()
    if not row:
        abort(404)
    return row


def _validate_role_payload(data, check_level: bool = True):
    problems = []
    if 'permissions' in data:
        problems += validate_matrix(data['permissions'])
    if 'record_access' in data:
        problems += validate_record_access(data['record_access'])
    if 'field_permissions' in data:
        problems += validate_field_permissions(data['field_permissions'])
    level = data.get('level', 0)
    if check_level and (not isinstance(level, int) or isinstance(level, bool) or not 0 <= level < ADMIN_LEVEL):
        problems.append(f'level must be an integer between 0 and {ADMIN_LEVEL - 1}')
    if problems:
        abort(400, description='; '.join(problems))


def _name_taken(session, name: str, exclude_id=None) -> bool:
    roles = _tables().roles
    q = select(roles.c.id).where(func.upper(roles.c.name) == name.upper())
    if exclude_id is not None:
        q = q.where(roles.c.id != exclude_id)
    return session.execute(q).first() is not None


@admin_bp.get('/roles')
@require_permissions('roles.view')
def list_roles():
    session = get_db()
    t = _tables()
    try:
        limit, offset = normalize_pagination(request.args.get('limit'), request.args.get('offset'))
    except ValueError as e:
        abort(400, description=str(e))
    total = session.execute(select(func.count()).select_from(t.roles)).scalar_one()
    counts = (
        select(t.users.c.role_id, func.count().label('n'))
        .group_by(t.users.c.role_id)
        .subquery()
    )
    rows = session.execute(
        select(t.roles, func.coalesce(counts.c.n, 0).label('user_count'))
        .select_from(t.roles.outerjoin(counts, counts.c.role_id == t.roles.c.id))
        .order_by(t.roles.c.level.desc(), t.roles.c.id.asc())
        .offset(offset).limit(limit)
    ).mappings().all()
    return {
        'data': [_role_dict(r, r['user_count']) for r in rows],
        'pagination': pagination_meta(total, limit, offset, len(rows)),
    }


@admin_bp.get('/roles/<int:role_id>')
@require_permissions('roles.view')
def get_role(role_id: int):
    return _role_dict(_get_role_or_404(get_db(), role_id))


@admin_bp.post('/roles')
@require_permissions('roles.create')
def create_role():
    data = request.json or {}
    name = (data.get('name') or '').strip()
    if not name:
        abort(400, description='name required')
    _validate_role_payload(data)
    session = get_db()
    if _name_taken(session, name):
        abort(409, description=f'role {name} already exists')
    roles = _tables().roles
    result = session.execute(insert(roles).values(
        name=name,
        description=data.get('description'),
        level=data.get('level', 0),
        is_system=False,
        permissions=data.get('permissions') or {},
        record_access=data.get('record_access') or {},
        field_permissions=data.get('field_permissions') or {},
    ))
    role_id = result.inserted_primary_key[0]
    session.commit()
    current_app.logger.info('role %s created in %s', name, roles.schema)
    return _role_dict(_get_role_or_404(session, role_id)), 201


@admin_bp.put('/roles/<int:role_id>')
@require_permissions('roles.edit')
def update_role(role_id: int):
    """Replace any of name, description, level, permissions, record_access, field_permissions.

    Changes reach holders of the role when their token is next issued.
    """
    session = get_db()
    existing = _get_role_or_404(session, role_id)
    data = request.json or {}
    if existing['is_system'] and existing['name'] == ADMIN_ROLE:
        if 'name' in data and data['name'] != ADMIN_ROLE:
            abort(403, description='cannot rename the system admin role')
        if 'level' in data and data['level'] != existing['level']:
            abort(403, description='cannot change the admin role level')
        if 'permissions' in data:
            abort(403, description='cannot change the admin role permissions')
    values = {}
    if 'name' in data:
        name = (data.get('name') or '').strip()
        if not name:
            abort(400, description='name cannot be empty')
        if _name_taken(session, name, exclude_id=role_id):
            abort(409, description=f'role {name} already exists')
        values['name'] = name
    _validate_role_payload(data, check_level=not existing['is_system'])
    for key in ('description', 'permissions', 'record_access', 'field_permissions'):
        if key in data:
            values[key] = data[key]
    # Seeded role levels are fixed
    if 'level' in data and not existing['is_system']:
        values['level'] = data['level']
    if values:
        roles = _tables().roles
        session.execute(update(roles).where(roles.c.id == role_id).values(**values, updated_at=func.now()))
        session.commit()
    return _role_dict(_get_role_or_404(session, role_id))


@admin_bp.post('/roles/<int:role_id>/clone')
@require_permissions('roles.create')
def clone_role(role_id: int):
    session = get_db()
    source = _get_role_or_404(session, role_id)
    name = ((request.json or {}).get('name') or '').strip()
    if not name:
        abort(400, description='name required')
    if _name_taken(session, name):
        abort(409, description=f'role {name} already exists')
    roles = _tables().roles
    description = f"Clone of {source['name']}"
    if source['description']:
        description += f": {source['description']}"
    result = session.execute(insert(roles).values(
        name=name,
        description=description,
        level=min(source['level'], ADMIN_LEVEL - 1),
        is_system=False,
        permissions=source['permissions'] or {},
        record_access=source['record_access'] or {},
        field_permissions=source['field_permissions'] or {},
    ))
    new_id = result.inserted_primary_key[0]
    session.commit()
    return _role_dict(_get_role_or_404(session, new_id)), 201


@admin_bp.delete('/roles/<int:role_id>')
@require_permissions('roles.delete')
def delete_role(role_id: int):
    session = get_db()
    t = _tables()
    existing = _get_role_or_404(session, role_id)
    if existing['is_system']:
        abort(400, description=f"cannot delete system role {existing['name']}")
    assigned = session.execute(
        select(func.count()).select_from(t.users).where(t.users.c.role_id == role_id)
    ).scalar_one()
    if assigned:
        abort(400, description=f"role {existing['name']} has {assigned} assigned user(s); reassign them first")
    session.execute(delete(t.roles).where(t.roles.c.id == role_id))
    session.commit()
    current_app.logger.info('role %s deleted in %s', existing['name'], t.schema)
    return {'status': 'deleted'}


# --- tenant migrations (caller's own tenant only) ---

def _own_tenant(session):
    snap = current_snapshot()
    tenant = TenantRegistry(session).get(snap.tenant_id)
    if tenant is None or not tenant.is_active or tenant.schema_name != snap.tenant_schema:
        raise TenantUnavailable('tenant not found or inactive')
    return tenant


@admin_bp.get('/migrations/status')
@require_permissions('admin.view', scope=False)
def migrations_status():
    session = get_db()
    tenant = _own_tenant(session)
    registry = build_registry(current_app.config.get('TENANT_MIGRATIONS_DIR'))
    runner = MigrationRunner(session, current_app.extensions['tenant_schemas'])
    status = runner.status([tenant], registry)[0]
    return status.to_dict()


@admin_bp.post('/migrations/run')
@require_permissions('admin.edit', scope=False)
def migrations_run():
    session = get_db()
    tenant = _own_tenant(session)
    registry = build_registry(current_app.config.get('TENANT_MIGRATIONS_DIR'))
    runner = MigrationRunner(session, current_app.extensions['tenant_schemas'])
    report = runner.run_pending([tenant], registry)
    return report.to_dict(), (200 if report.ok else 500)
