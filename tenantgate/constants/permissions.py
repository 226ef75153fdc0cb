"""Central definitions of the permission catalog to avoid typos in module/action strings.
Extend cautiously; never rename modules or actions silently, stored role matrices reference them by name.
"""
from __future__ import annotations
from typing import Dict, List, Tuple

WILDCARD = '*'
# Value of permissions['*']['*'] that grants every module and action
SUPER_ADMIN = 'all'

DATA_MODULE_ACTIONS = ['view', 'create', 'edit', 'delete', 'export', 'import']
USER_MODULE_ACTIONS = ['view', 'create', 'edit', 'delete', 'invite']
ROLE_MODULE_ACTIONS = ['view', 'create', 'edit', 'delete']
ADMIN_MODULE_ACTIONS = ['view', 'edit']

MODULE_ACTIONS: Dict[str, List[str]] = {
    'contacts': DATA_MODULE_ACTIONS,
    'accounts': DATA_MODULE_ACTIONS,
    'leads': DATA_MODULE_ACTIONS,
    'opportunities': DATA_MODULE_ACTIONS,
    'deals': DATA_MODULE_ACTIONS,
    'tasks': DATA_MODULE_ACTIONS,
    'reports': DATA_MODULE_ACTIONS,
    'users': USER_MODULE_ACTIONS,
    'roles': ROLE_MODULE_ACTIONS,
    'settings': ADMIN_MODULE_ACTIONS,
    'admin': ADMIN_MODULE_ACTIONS,
}

MODULES = list(MODULE_ACTIONS)

# Only data modules carry an owner and support own/team/department/all scoping
RECORD_SCOPED_MODULES = ['contacts', 'accounts', 'leads', 'opportunities', 'deals', 'tasks', 'reports']

SCOPE_OWN = 'own'
SCOPE_TEAM = 'team'
SCOPE_DEPARTMENT = 'department'
SCOPE_ALL = 'all'
RECORD_SCOPES = [SCOPE_OWN, SCOPE_TEAM, SCOPE_DEPARTMENT, SCOPE_ALL]

FIELD_HIDDEN = 'hidden'
FIELD_READ_ONLY = 'read_only'
FIELD_EDITABLE = 'editable'
FIELD_ACCESS_LEVELS = [FIELD_HIDDEN, FIELD_READ_ONLY, FIELD_EDITABLE]


def build_matrix(grants: Dict[str, List[str]]) -> Dict[str, Dict[str, bool]]:
    """Expand {module: [granted actions]} into a full boolean matrix over the catalog."""
    return {
        module: {action: action in grants.get(module, []) for action in actions}
        for module, actions in MODULE_ACTIONS.items()
    }


def _scopes(scope: str) -> Dict[str, str]:
    return {module: scope for module in RECORD_SCOPED_MODULES}


_READ_WRITE = ['view', 'create', 'edit', 'delete', 'export']

# Seeded into every tenant schema; (name, description, level, permissions, record_access)
SYSTEM_ROLES: List[Tuple[str, str, int, dict, dict]] = [
    ('admin', 'Full access to everything', 100, {WILDCARD: {WILDCARD: SUPER_ADMIN}}, _scopes(SCOPE_ALL)),
    ('manager', 'Manage team and data', 50, build_matrix({
        **{m: _READ_WRITE for m in RECORD_SCOPED_MODULES},
        'reports': ['view', 'create', 'export'],
        'users': ['view'],
        'roles': ['view'],
        'settings': ['view'],
    }), _scopes(SCOPE_TEAM)),
    ('user', 'Standard user access', 10, build_matrix({
        **{m: ['view', 'create', 'edit'] for m in RECORD_SCOPED_MODULES},
        'tasks': ['view', 'create', 'edit', 'delete'],
        'reports': ['view'],
    }), _scopes(SCOPE_OWN)),
]

ADMIN_ROLE = 'admin'
