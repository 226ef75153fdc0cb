from tests.test_helpers import login_headers
from tests.test_utils_seed import ensure_role, ensure_user, provision_tenant

SCHEMA = 'tenant_acme'


def _admin(client, app_instance):
    provision_tenant(app_instance, 'acme')
    ensure_user(SCHEMA, 'admin@acme.test', 'admin')
    return login_headers(client, 'acme', 'admin@acme.test')


def _role_id(client, headers, name):
    roles = client.get('/admin/roles', headers=headers).get_json()['data']
    return next(r['id'] for r in roles if r['name'] == name)


def test_role_crud_flow(client, app_instance):
    headers = _admin(client, app_instance)
    resp = client.post('/admin/roles', json={
        'name': 'Support',
        'description': 'Helpdesk',
        'level': 20,
        'permissions': {'contacts': {'view': True, 'edit': True}},
        'record_access': {'contacts': 'team'},
        'field_permissions': {'contacts': {'salary': 'hidden'}},
    }, headers=headers)
    assert resp.status_code == 201, resp.get_json()
    role = resp.get_json()
    assert role['is_system'] is False
    assert role['record_access'] == {'contacts': 'team'}

    got = client.get(f"/admin/roles/{role['id']}", headers=headers).get_json()
    assert got['permissions'] == {'contacts': {'view': True, 'edit': True}}

    upd = client.put(f"/admin/roles/{role['id']}", json={'level': 30, 'permissions': {'contacts': {'view': True}}},
                     headers=headers)
    assert upd.status_code == 200
    assert upd.get_json()['level'] == 30
    assert upd.get_json()['permissions'] == {'contacts': {'view': True}}

    clone = client.post(f"/admin/roles/{role['id']}/clone", json={'name': 'Support 2'}, headers=headers)
    assert clone.status_code == 201
    assert clone.get_json()['description'] == 'Clone of Support: Helpdesk'
    assert clone.get_json()['permissions'] == {'contacts': {'view': True}}

    assert client.delete(f"/admin/roles/{role['id']}", headers=headers).get_json() == {'status': 'deleted'}
    assert client.get(f"/admin/roles/{role['id']}", headers=headers).status_code == 404


def test_list_roles_counts_users_and_paginates(client, app_instance):
    headers = _admin(client, app_instance)
    ensure_user(SCHEMA, 'u1@acme.test', 'user')
    ensure_user(SCHEMA, 'u2@acme.test', 'user')
    body = client.get('/admin/roles', headers=headers).get_json()
    assert [r['name'] for r in body['data']] == ['admin', 'manager', 'user']
    counts = {r['name']: r['user_count'] for r in body['data']}
    assert counts == {'admin': 1, 'manager': 0, 'user': 2}
    assert body['pagination'] == {'total': 3, 'limit': 50, 'offset': 0, 'returned': 3}

    page = client.get('/admin/roles?limit=1&offset=1', headers=headers).get_json()
    assert [r['name'] for r in page['data']] == ['manager']
    assert page['pagination']['returned'] == 1
    assert client.get('/admin/roles?limit=abc', headers=headers).status_code == 400


def test_role_payload_validation(client, app_instance):
    headers = _admin(client, app_instance)
    assert client.post('/admin/roles', json={'description': 'nameless'}, headers=headers).status_code == 400
    resp = client.post('/admin/roles', json={'name': 'Bad', 'permissions': {'spaceships': {'view': True}}},
                       headers=headers)
    assert resp.status_code == 400
    assert 'unknown module spaceships' in resp.get_json()['error']['detail']
    resp = client.post('/admin/roles', json={'name': 'Bad', 'record_access': {'contacts': 'galaxy'}}, headers=headers)
    assert resp.status_code == 400
    # Only the seeded admin role sits at the top level
    resp = client.post('/admin/roles', json={'name': 'Boss', 'level': 100}, headers=headers)
    assert resp.status_code == 400
    assert 'level' in resp.get_json()['error']['detail']


def test_duplicate_role_name_conflicts(client, app_instance):
    headers = _admin(client, app_instance)
    assert client.post('/admin/roles', json={'name': 'Support'}, headers=headers).status_code == 201
    assert client.post('/admin/roles', json={'name': 'SUPPORT'}, headers=headers).status_code == 409
    manager_id = _role_id(client, headers, 'manager')
    assert client.post(f'/admin/roles/{manager_id}/clone', json={'name': 'support'}, headers=headers).status_code == 409
    assert client.put(f'/admin/roles/{manager_id}', json={'name': 'Support'}, headers=headers).status_code == 409


def test_system_roles_are_protected(client, app_instance):
    headers = _admin(client, app_instance)
    admin_id = _role_id(client, headers, 'admin')
    user_id = _role_id(client, headers, 'user')

    resp = client.delete(f'/admin/roles/{user_id}', headers=headers)
    assert resp.status_code == 400
    assert 'system role' in resp.get_json()['error']['detail']
    assert client.put(f'/admin/roles/{admin_id}', json={'name': 'root'}, headers=headers).status_code == 403
    assert client.put(f'/admin/roles/{admin_id}', json={'level': 5}, headers=headers).status_code == 403
    assert client.put(f'/admin/roles/{admin_id}', json={'permissions': {}}, headers=headers).status_code == 403
    # Description edits are fine
    ok = client.put(f'/admin/roles/{admin_id}', json={'description': 'Owners'}, headers=headers)
    assert ok.status_code == 200
    assert ok.get_json()['description'] == 'Owners'
    # Seeded levels stay put
    kept = client.put(f'/admin/roles/{user_id}', json={'level': 42}, headers=headers)
    assert kept.status_code == 200
    assert kept.get_json()['level'] == 10


def test_role_with_users_cannot_be_deleted(client, app_instance):
    headers = _admin(client, app_instance)
    role_id = ensure_role(SCHEMA, 'rep', {'contacts': {'view': True}})
    ensure_user(SCHEMA, 'rep@acme.test', 'rep')
    resp = client.delete(f'/admin/roles/{role_id}', headers=headers)
    assert resp.status_code == 400
    assert '1 assigned user' in resp.get_json()['error']['detail']


def test_role_endpoints_require_permissions(client, app_instance):
    provision_tenant(app_instance, 'acme')
    ensure_user(SCHEMA, 'u@acme.test', 'user')
    ensure_user(SCHEMA, 'm@acme.test', 'manager')
    user = login_headers(client, 'acme', 'u@acme.test')
    resp = client.get('/admin/roles', headers=user)
    assert resp.status_code == 403
    assert resp.get_json()['error']['detail'] == 'no view access to roles'
    manager = login_headers(client, 'acme', 'm@acme.test')
    assert client.get('/admin/roles', headers=manager).status_code == 200
    resp = client.post('/admin/roles', json={'name': 'X'}, headers=manager)
    assert resp.status_code == 403
    assert resp.get_json()['error']['detail'] == 'no create access to roles'
