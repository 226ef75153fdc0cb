from tenantgate import create_app, get_db
from tenantgate.models.tenant import Base
from tenantgate.services.capabilities import CapabilitySnapshot, load_snapshot
from tests.test_helpers import login
from tests.test_utils_seed import (
    assign_teams, ensure_department, ensure_role, ensure_team, ensure_user, provision_tenant,
)


def test_load_snapshot_reads_role_teams_and_department(app_instance):
    tenant = provision_tenant(app_instance, 'acme')
    ensure_role('tenant_acme', 'rep', {'contacts': {'view': True}, 'starships': {'fly': True}},
                record_access={'contacts': 'team'}, field_permissions={'contacts': {'salary': 'hidden'}}, level=20)
    dept = ensure_department('tenant_acme', 'Sales')
    uid = ensure_user('tenant_acme', 'rep@acme.test', 'rep', department_id=dept)
    t1, t2 = ensure_team('tenant_acme', 'North'), ensure_team('tenant_acme', 'South')
    assign_teams('tenant_acme', uid, [t2, t1])

    snap = load_snapshot(get_db(), tenant, uid)
    assert snap.user_id == uid and snap.email == 'rep@acme.test'
    assert snap.tenant_schema == 'tenant_acme' and snap.tenant_slug == 'acme'
    assert snap.role_name == 'rep' and snap.role_level == 20
    # Unknown catalog keys never reach the token
    assert snap.permissions == {'contacts': {'view': True}}
    assert snap.record_access == {'contacts': 'team'}
    assert snap.field_permissions == {'contacts': {'salary': 'hidden'}}
    assert snap.department_id == dept
    assert snap.team_ids == (t1, t2)
    assert snap.issued_at > 0
    assert load_snapshot(get_db(), tenant, 9999) is None


def test_claims_round_trip():
    snap = CapabilitySnapshot(
        user_id=5, email='e@x.test', tenant_id=2, tenant_slug='x', tenant_schema='tenant_x',
        role_id=3, role_name='rep', role_level=20, permissions={'contacts': {'view': True}},
        record_access={'contacts': 'own'}, team_ids=(4, 6), department_id=1, issued_at=1700000000,
    )
    claims = snap.to_claims()
    assert claims['team_ids'] == [4, 6]
    assert claims['snapshot_at'] == 1700000000
    claims['sub'] = snap.identity
    assert CapabilitySnapshot.from_claims(claims) == snap
    assert snap.matrix.allows('contacts', 'view')
    assert snap.to_dict()['team_ids'] == [4, 6]


def test_file_backed_sqlite_reattaches_tenant_databases(tmp_path):
    app = create_app({
        'DATABASE_URL': f"sqlite:///{tmp_path / 'master.db'}",
        'JWT_SECRET_KEY': 'test-secret-key-with-enough-length-for-hs256',
        'TESTING': True,
    })
    with app.app_context():
        Base.metadata.create_all(get_db().get_bind())
    try:
        provision_tenant(app, 'acme')
        assert (tmp_path / 'tenant_acme.db').exists()
        assert app.extensions['tenant_schemas'].sqlite_files() == ['tenant_acme.db']
        # Every new connection re-attaches the tenant file
        ensure_user('tenant_acme', 'u@acme.test')
        assert login(app.test_client(), 'acme', 'u@acme.test')['access_token']
    finally:
        get_db().close()
