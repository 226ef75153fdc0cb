from flask import Blueprint, abort, current_app, request
from flask_jwt_extended import create_access_token, create_refresh_token, get_jwt, jwt_required

from tenantgate import get_db
from tenantgate.constants.permissions import ADMIN_ROLE
from tenantgate.errors import TenantUnavailable
from tenantgate.services.capabilities import CapabilitySnapshot, current_snapshot, load_snapshot
from tenantgate.services.provisioner import TenantProvisioner
from tenantgate.services.registry import TenantRegistry
from tenantgate.services.users import USER_ACTIVE, create_user, find_user_by_email, get_user, touch_last_login, verify_password

auth_bp = Blueprint('auth', __name__)


def _issue_tokens(snap: CapabilitySnapshot, refresh: bool = True):
    out = {
        'access_token': create_access_token(identity=snap.identity, additional_claims=snap.to_claims()),
    }
    if refresh:
        # Refresh tokens only pin the tenant; the snapshot is reloaded when they are used
        out['refresh_token'] = create_refresh_token(
            identity=snap.identity,
            additional_claims={'tenant_id': snap.tenant_id, 'schema': snap.tenant_schema},
        )
    return out


@auth_bp.post('/register')
def register():
    """Create a tenant with its schema plus the first (admin) user."""
    data = request.json or {}
    company = (data.get('company_name') or '').strip()
    slug = (data.get('slug') or '').strip().lower()
    email = (data.get('email') or '').strip()
    password = data.get('password') or ''
    if not company or not slug or not email or not password:
        abort(400, description='company_name, slug, email & password required')
    if len(password) < 8:
        abort(400, description='password must be at least 8 characters')
    session = get_db()
    provisioner = TenantProvisioner(session, current_app.extensions['tenant_schemas'])
    tenant = provisioner.create(company, slug)
    user_id = create_user(
        session, tenant.schema_name, email, password, role_name=ADMIN_ROLE,
        first_name=data.get('first_name') or '', last_name=data.get('last_name') or '',
    )
    session.commit()
    snap = load_snapshot(session, tenant, user_id)
    session.commit()
    body = _issue_tokens(snap)
    body['tenant'] = tenant.to_dict()
    return body, 201


@auth_bp.post('/login')
def login():
    data = request.json or {}
    slug = (data.get('tenant') or '').strip().lower()
    email = data.get('email'); password = data.get('password')
    if not slug or not email or not password:
        abort(400, description='tenant, email & password required')
    session = get_db()
    tenant = TenantRegistry(session).get_by_slug(slug)
    if tenant is None:
        raise TenantUnavailable(f'tenant {slug} not found or inactive')
    user = find_user_by_email(session, tenant.schema_name, email)
    if not user or not verify_password(user, password):
        abort(401, description='invalid credentials')
    if user['status'] != USER_ACTIVE:
        abort(401, description='account is not active')
    touch_last_login(session, tenant.schema_name, user['id'])
    snap = load_snapshot(session, tenant, user['id'])
    session.commit()
    return _issue_tokens(snap)


@auth_bp.post('/refresh')
@jwt_required(refresh=True)
def refresh():
    """New access token carrying a snapshot of the role as it is now."""
    claims = get_jwt()
    session = get_db()
    tenant = TenantRegistry(session).get(claims['tenant_id']) if claims.get('tenant_id') else None
    if tenant is None or not tenant.is_active or tenant.schema_name != claims.get('schema'):
        raise TenantUnavailable('tenant not found or inactive')
    user_id = int(claims['sub'])
    user = get_user(session, tenant.schema_name, user_id)
    if not user or user['status'] != USER_ACTIVE:
        abort(401, description='account is not active')
    snap = load_snapshot(session, tenant, user_id)
    session.commit()
    return _issue_tokens(snap, refresh=False)


@auth_bp.get('/me')
@jwt_required()
def me():
    # Served from the token: shows exactly what authorization decisions see
    return current_snapshot().to_dict()
