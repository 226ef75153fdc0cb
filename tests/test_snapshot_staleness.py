from tests.test_helpers import auth_headers, create_records_table, login
from tests.test_utils_seed import assign_teams, ensure_role, ensure_team, ensure_user, provision_tenant

SCHEMA = 'tenant_acme'


def test_role_edit_applies_on_next_token_only(client, app_instance):
    provision_tenant(app_instance, 'acme')
    ensure_role(SCHEMA, 'rep', {'accounts': {'view': True}})
    ensure_user(SCHEMA, 'rep@acme.test', 'rep')
    create_records_table(SCHEMA, 'accounts')
    tokens = login(client, 'acme', 'rep@acme.test')
    old = auth_headers(tokens['access_token'])
    assert client.get('/test/accounts', headers=old).status_code == 200

    ensure_role(SCHEMA, 'rep', {'accounts': {'view': False}})
    # Issued before the edit: still carries the old grant
    assert client.get('/test/accounts', headers=old).status_code == 200

    refreshed = client.post('/auth/refresh', headers=auth_headers(tokens['refresh_token'])).get_json()
    resp = client.get('/test/accounts', headers=auth_headers(refreshed['access_token']))
    assert resp.status_code == 403
    assert resp.get_json()['error']['detail'] == 'no view access to accounts'


def test_team_changes_apply_on_next_token(client, app_instance):
    provision_tenant(app_instance, 'acme')
    ensure_role(SCHEMA, 'rep', {'accounts': {'view': True}}, record_access={'accounts': 'team'})
    uid = ensure_user(SCHEMA, 'rep@acme.test', 'rep')
    tokens = login(client, 'acme', 'rep@acme.test')
    me = client.get('/auth/me', headers=auth_headers(tokens['access_token'])).get_json()
    assert me['team_ids'] == []

    team = ensure_team(SCHEMA, 'North')
    assign_teams(SCHEMA, uid, [team])
    assert client.get('/auth/me', headers=auth_headers(tokens['access_token'])).get_json()['team_ids'] == []
    refreshed = client.post('/auth/refresh', headers=auth_headers(tokens['refresh_token'])).get_json()
    assert client.get('/auth/me', headers=auth_headers(refreshed['access_token'])).get_json()['team_ids'] == [team]


def test_role_edit_through_admin_api_reaches_holders_after_refresh(client, app_instance):
    provision_tenant(app_instance, 'acme')
    role_id = ensure_role(SCHEMA, 'rep', {'accounts': {'view': True}})
    ensure_user(SCHEMA, 'admin@acme.test', 'admin')
    ensure_user(SCHEMA, 'rep@acme.test', 'rep')
    create_records_table(SCHEMA, 'accounts')
    admin = auth_headers(login(client, 'acme', 'admin@acme.test')['access_token'])
    rep_tokens = login(client, 'acme', 'rep@acme.test')

    resp = client.put(f'/admin/roles/{role_id}', json={'permissions': {}}, headers=admin)
    assert resp.status_code == 200, resp.get_json()
    assert client.get('/test/accounts', headers=auth_headers(rep_tokens['access_token'])).status_code == 200
    refreshed = client.post('/auth/refresh', headers=auth_headers(rep_tokens['refresh_token'])).get_json()
    resp = client.get('/test/accounts', headers=auth_headers(refreshed['access_token']))
    assert resp.status_code == 403
    assert resp.get_json()['error']['detail'] == 'no access to accounts'
