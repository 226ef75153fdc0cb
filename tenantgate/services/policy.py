from __future__ import annotations
from typing import Callable, Optional
from flask import g

from tenantgate import get_db
from tenantgate.errors import PermissionDenied
from tenantgate.services.capabilities import CapabilitySnapshot, current_snapshot
from tenantgate.services.permissions import Decision, RequirementLike, check, field_access, strip_hidden_fields
from tenantgate.services.scope import Predicate, TeamDirectory, resolve_predicate, scope_for_module


class AuthorizationGate:
    """Request-time authorization for one caller.

    Permission checks run on the in-memory snapshot only. Team and department
    lookups go through a single TeamDirectory, created on first use, so a
    request performs at most one lookup per distinct team set.
    """

    def __init__(self, snapshot: CapabilitySnapshot, directory_factory: Optional[Callable[[], TeamDirectory]] = None):
        self.snapshot = snapshot
        self._directory_factory = directory_factory
        self._directory: Optional[TeamDirectory] = None

    @property
    def directory(self) -> Optional[TeamDirectory]:
        if self._directory is None and self._directory_factory is not None:
            self._directory = self._directory_factory()
        return self._directory

    def check(self, *required: RequirementLike) -> Decision:
        return check(self.snapshot.permissions, required)

    def authorize(self, *required: RequirementLike) -> None:
        decision = self.check(*required)
        if not decision:
            raise PermissionDenied(decision.reason)

    def scope_for(self, module: str) -> str:
        return scope_for_module(self.snapshot.record_access, module)

    def record_predicate(self, module: str, owner_column: str = 'owner_id', param_start: int = 1) -> Predicate:
        snap = self.snapshot
        return resolve_predicate(
            self.scope_for(module),
            snap.user_id,
            owner_column=owner_column,
            team_ids=snap.team_ids,
            directory=self.directory,
            department_id=snap.department_id,
            param_start=param_start,
        )

    def field_access(self, module: str, field: str) -> str:
        return field_access(self.snapshot.field_permissions, module, field)

    def visible_fields(self, module: str, record: dict) -> dict:
        return strip_hidden_fields(record, self.snapshot.field_permissions, module)


def current_gate() -> AuthorizationGate:
    """Gate for the current request, cached on flask.g."""
    snap = current_snapshot()
    gate = g.get('authorization_gate')
    if gate is None or gate.snapshot is not snap:
        gate = AuthorizationGate(snap, lambda: TeamDirectory(get_db(), snap.tenant_schema))
        g.authorization_gate = gate
    return gate


__all__ = ['AuthorizationGate', 'current_gate']
