import logging

import pytest

from tenantgate.constants.permissions import MODULE_ACTIONS, SYSTEM_ROLES, build_matrix
from tenantgate.services.permissions import (
    PermissionMatrix, check, field_access, hidden_fields, parse_required, strip_hidden_fields,
    validate_field_permissions, validate_matrix,
)

SUPER = {'*': {'*': 'all'}}


def test_super_admin_allows_anything():
    assert check(SUPER, ['contacts.delete', 'roles.create', 'admin.edit']).allowed
    assert PermissionMatrix.from_json(SUPER).super_admin


@pytest.mark.parametrize('raw', [
    {'*': {'*': True}},
    {'*': {'*': 'ALL'}},
    {'*': {'view': 'all'}},
    {'*': 'all'},
])
def test_anything_but_the_exact_sentinel_fails_closed(raw):
    decision = check(raw, ['contacts.view'])
    assert not decision.allowed
    assert decision.reason == 'no access to contacts'


def test_action_wildcard_within_module():
    matrix = {'contacts': {'*': True}}
    assert check(matrix, ['contacts.view', 'contacts.export']).allowed
    assert check(matrix, ['accounts.view']).reason == 'no access to accounts'


def test_missing_module_reason():
    decision = check({'contacts': {'view': True}}, ['deals.view'])
    assert decision.allowed is False
    assert decision.reason == 'no access to deals'


def test_missing_or_false_action_reason():
    matrix = {'contacts': {'view': True, 'delete': False}}
    assert check(matrix, ['contacts.delete']).reason == 'no delete access to contacts'
    assert check(matrix, ['contacts.export']).reason == 'no export access to contacts'


def test_empty_requirement_set_allows():
    assert check({}, []).allowed
    assert check(None, []).allowed


def test_requirements_are_anded_and_first_failure_reported():
    matrix = {'contacts': {'view': True}, 'accounts': {'view': True}}
    assert check(matrix, ['contacts.view', ('accounts', 'view')]).allowed
    decision = check(matrix, ['contacts.view', 'contacts.edit', 'leads.view'])
    assert decision.reason == 'no edit access to contacts'
    decision = check(matrix, ['leads.view', 'contacts.edit'])
    assert decision.reason == 'no access to leads'


def test_decision_is_truthy_only_when_allowed():
    assert check(SUPER, ['contacts.view'])
    assert not check({}, ['contacts.view'])


def test_unknown_keys_dropped_at_load(caplog):
    raw = {
        'contacts': {'view': True, 'teleport': True},
        'spaceships': {'view': True},
    }
    with caplog.at_level(logging.WARNING, logger='tenantgate.services.permissions'):
        matrix = PermissionMatrix.from_json(raw)
    assert matrix.modules == {'contacts': {'view': True}}
    assert 'contacts.teleport' in caplog.text and 'spaceships' in caplog.text
    assert not matrix.allows('spaceships', 'view')
    assert matrix.allows('contacts', 'view')


def test_non_object_matrix_denies_everything():
    assert PermissionMatrix.from_json(['contacts']).modules == {}
    assert not check('contacts.view', ['contacts.view']).allowed


def test_to_json_keeps_sentinel_and_known_keys():
    matrix = PermissionMatrix.from_json({**SUPER, 'contacts': {'view': 1}})
    assert matrix.to_json() == {'contacts': {'view': True}, '*': {'*': 'all'}}


def test_parse_required_forms():
    assert parse_required(['contacts.view', ('deals', 'edit')]) == [('contacts', 'view'), ('deals', 'edit')]
    for bad in ('contacts', 'contacts.', '.view'):
        with pytest.raises(ValueError):
            parse_required([bad])


def test_validate_matrix_reports_problems():
    assert validate_matrix(build_matrix({'contacts': ['view']})) == []
    assert validate_matrix(SUPER) == []
    problems = validate_matrix({
        'spaceships': {'view': True},
        'contacts': {'teleport': True, 'view': 'yes'},
        '*': {'*': True},
    })
    assert 'unknown module spaceships' in problems
    assert 'unknown action contacts.teleport' in problems
    assert 'contacts.view must be boolean' in problems
    assert any(p.startswith("'*' only accepts") for p in problems)
    assert validate_matrix([]) == ['permissions must be an object']


def test_seeded_roles_use_catalog_keys_only():
    for name, _desc, _level, permissions, _scopes in SYSTEM_ROLES:
        assert validate_matrix(permissions) == [], name
    manager = dict((r[0], r[3]) for r in SYSTEM_ROLES)['manager']
    assert set(manager) == set(MODULE_ACTIONS)
    assert check(manager, ['contacts.delete']).allowed
    assert check(manager, ['roles.edit']).reason == 'no edit access to roles'


def test_field_access_defaults_to_editable():
    fields = {'contacts': {'salary': 'hidden', 'email': 'read_only', 'phone': 'bogus'}}
    assert field_access(fields, 'contacts', 'salary') == 'hidden'
    assert field_access(fields, 'contacts', 'email') == 'read_only'
    assert field_access(fields, 'contacts', 'phone') == 'editable'
    assert field_access(fields, 'contacts', 'name') == 'editable'
    assert field_access(None, 'deals', 'amount') == 'editable'
    assert hidden_fields(fields, 'contacts') == ['salary']


def test_strip_hidden_fields():
    fields = {'contacts': {'salary': 'hidden'}}
    record = {'id': 1, 'name': 'Ann', 'salary': 100}
    assert strip_hidden_fields(record, fields, 'contacts') == {'id': 1, 'name': 'Ann'}
    assert strip_hidden_fields(record, fields, 'accounts') == record


def test_validate_field_permissions():
    assert validate_field_permissions({'contacts': {'salary': 'hidden'}}) == []
    problems = validate_field_permissions({'contacts': {'salary': 'secret'}, 'planets': {}})
    assert any(p.startswith('contacts.salary') for p in problems)
    assert 'unknown module planets' in problems
