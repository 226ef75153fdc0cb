"""Record-level access scopes turned into composable SQL predicates.

A Predicate is a WHERE fragment plus its bound values. Placeholders are named
:p<n> and numbered from the caller-supplied start index, so the fragment can be
appended to a filter that already uses :p1..:p<start-1> without renumbering.

    own        owner_col = :p1
    team       owner_col IN (caller + users sharing one of the caller's teams)
    department owner_col IN (caller + users of the caller's department)
    all        no restriction
"""
from __future__ import annotations
import logging
import re
from dataclasses import dataclass, field
from typing import Any, Dict, FrozenSet, Iterable, List, Mapping, Optional, Set, Tuple

from sqlalchemy import select, text, true
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from tenantgate.constants.permissions import (
    RECORD_SCOPED_MODULES, RECORD_SCOPES, SCOPE_ALL, SCOPE_DEPARTMENT, SCOPE_OWN, SCOPE_TEAM,
)
from tenantgate.errors import AccessScopeLookupFailure
from tenantgate.models.tenant_schema import tenant_tables

log = logging.getLogger(__name__)

_COLUMN_RE = re.compile(r'^[A-Za-z_][A-Za-z0-9_]*(\.[A-Za-z_][A-Za-z0-9_]*)?$')


@dataclass(frozen=True)
class Predicate:
    fragment: str = ''
    params: Dict[str, Any] = field(default_factory=dict)
    next_index: int = 1

    @property
    def is_empty(self) -> bool:
        return not self.fragment

    def clause(self):
        """SQLAlchemy clause usable in select().where()."""
        if self.is_empty:
            return true()
        return text(self.fragment).bindparams(**self.params)

    def append_to(self, where_sql: str, params: Optional[Mapping[str, Any]] = None) -> Tuple[str, Dict[str, Any]]:
        """AND this predicate onto an existing WHERE body."""
        merged = dict(params or {})
        clash = set(merged) & set(self.params)
        if clash:
            raise ValueError(f'parameter names already bound: {sorted(clash)}')
        merged.update(self.params)
        if self.is_empty:
            return where_sql, merged
        if not where_sql or not where_sql.strip():
            return self.fragment, merged
        return f'({where_sql}) AND {self.fragment}', merged


def scope_for_module(record_access: Optional[Mapping[str, Any]], module: str) -> str:
    """Effective scope for module.

    Modules without an owner are never row-restricted. Record-scoped modules
    without an entry get 'own', and unrecognized values are coerced to 'own'.
    """
    if module not in RECORD_SCOPED_MODULES:
        return SCOPE_ALL
    value = (record_access or {}).get(module)
    if value is None:
        return SCOPE_OWN
    if value not in RECORD_SCOPES:
        log.warning('unknown record scope %r for module %s, falling back to own', value, module)
        return SCOPE_OWN
    return value


def validate_record_access(raw: Any) -> List[str]:
    if not isinstance(raw, Mapping):
        return ['record_access must be an object']
    problems = []
    for module, scope in raw.items():
        if module not in RECORD_SCOPED_MODULES:
            problems.append(f'{module} does not support record access scoping')
        elif scope not in RECORD_SCOPES:
            problems.append(f'{module}: scope must be one of {", ".join(RECORD_SCOPES)}')
    return problems


class TeamDirectory:
    """Team and department membership lookups for one tenant schema, cached for its lifetime.

    Create one per request; any lookup error is raised as AccessScopeLookupFailure.
    """

    def __init__(self, session: Session, schema: str):
        self.session = session
        self.schema = schema
        self._teammates: Dict[FrozenSet[int], Set[int]] = {}
        self._departments: Dict[int, Set[int]] = {}
        self.lookups = 0

    def teammates(self, team_ids: Iterable[int]) -> Set[int]:
        key = frozenset(team_ids)
        if not key:
            return set()
        if key not in self._teammates:
            user_teams = tenant_tables(self.schema).user_teams
            q = select(user_teams.c.user_id).where(user_teams.c.team_id.in_(sorted(key))).distinct()
            self._teammates[key] = self._fetch(q, f'teams {sorted(key)}')
        return set(self._teammates[key])

    def department_members(self, department_id: int) -> Set[int]:
        if department_id not in self._departments:
            users = tenant_tables(self.schema).users
            q = select(users.c.id).where(users.c.department_id == department_id)
            self._departments[department_id] = self._fetch(q, f'department {department_id}')
        return set(self._departments[department_id])

    def _fetch(self, query, what: str) -> Set[int]:
        self.lookups += 1
        try:
            return set(self.session.execute(query).scalars())
        except SQLAlchemyError as exc:
            log.error('membership lookup for %s in %s failed: %s', what, self.schema, exc)
            raise AccessScopeLookupFailure(f'could not resolve {what} membership') from exc


def _in_predicate(column: str, ids: Iterable[int], start: int) -> Predicate:
    ordered = sorted(set(ids))
    names = [f'p{start + i}' for i in range(len(ordered))]
    if len(names) == 1:
        fragment = f'{column} = :{names[0]}'
    else:
        fragment = f'{column} IN ({", ".join(":" + n for n in names)})'
    return Predicate(fragment, dict(zip(names, ordered)), start + len(names))


def resolve_predicate(
    scope: str,
    caller_id: int,
    owner_column: str = 'owner_id',
    team_ids: Iterable[int] = (),
    teammate_ids: Optional[Iterable[int]] = None,
    directory: Optional[TeamDirectory] = None,
    department_id: Optional[int] = None,
    param_start: int = 1,
) -> Predicate:
    """Build the visibility predicate for one scope.

    For 'team', pass either teammate_ids (already resolved) or team_ids plus a
    directory to resolve them. The caller always sees their own records.
    """
    if not _COLUMN_RE.match(owner_column or ''):
        raise ValueError(f'invalid owner column {owner_column!r}')
    if param_start < 1:
        raise ValueError('param_start must be >= 1')
    if scope not in RECORD_SCOPES:
        log.warning('unknown record scope %r, falling back to own', scope)
        scope = SCOPE_OWN
    if scope == SCOPE_ALL:
        return Predicate(next_index=param_start)
    visible = {caller_id}
    if scope == SCOPE_TEAM:
        if teammate_ids is None:
            team_ids = list(team_ids or ())
            if team_ids and directory is None:
                raise AccessScopeLookupFailure('team scope needs a membership directory')
            teammate_ids = directory.teammates(team_ids) if team_ids else ()
        visible.update(teammate_ids)
    elif scope == SCOPE_DEPARTMENT and department_id is not None:
        if directory is None:
            raise AccessScopeLookupFailure('department scope needs a membership directory')
        visible.update(directory.department_members(department_id))
    return _in_predicate(owner_column, visible, param_start)


__all__ = [
    'Predicate', 'TeamDirectory', 'scope_for_module', 'resolve_predicate', 'validate_record_access',
]
