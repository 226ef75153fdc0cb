"""Module/action permission evaluation over a role's permission matrix.

Matrices are loaded once through PermissionMatrix.from_json, which keeps only
keys from the closed catalog in tenantgate.constants.permissions. Anything
outside the catalog is dropped at load time and is therefore denied.
"""
from __future__ import annotations
import logging
from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Mapping, Optional, Tuple, Union

from tenantgate.constants.permissions import (
    FIELD_ACCESS_LEVELS, FIELD_EDITABLE, FIELD_HIDDEN, MODULE_ACTIONS, SUPER_ADMIN, WILDCARD,
)

log = logging.getLogger(__name__)

Requirement = Tuple[str, str]
RequirementLike = Union[str, Tuple[str, str]]


def parse_required(required: Iterable[RequirementLike]) -> List[Requirement]:
    """Normalize 'module.action' strings and (module, action) pairs into pairs."""
    out: List[Requirement] = []
    for item in required:
        if isinstance(item, str):
            module, sep, action = item.partition('.')
            if not sep or not module or not action:
                raise ValueError(f"permission '{item}' missing module.action pattern")
            out.append((module, action))
        else:
            module, action = item
            out.append((module, action))
    return out


class PermissionMatrix:
    """Two-level {module: {action: bool}} mapping with the super-admin sentinel split out."""

    def __init__(self, modules: Optional[Dict[str, Dict[str, bool]]] = None, super_admin: bool = False):
        self.modules: Dict[str, Dict[str, bool]] = modules or {}
        self.super_admin = super_admin

    @classmethod
    def from_json(cls, raw: Any) -> 'PermissionMatrix':
        if isinstance(raw, PermissionMatrix):
            return raw
        if not isinstance(raw, Mapping):
            if raw is not None:
                log.warning('permission matrix is not an object (%s), denying everything', type(raw).__name__)
            return cls()
        super_admin = False
        modules: Dict[str, Dict[str, bool]] = {}
        dropped: List[str] = []
        for module, actions in raw.items():
            if module == WILDCARD:
                # Only the exact sentinel grants everything; other values fail closed
                if isinstance(actions, Mapping) and actions.get(WILDCARD) == SUPER_ADMIN:
                    super_admin = True
                else:
                    dropped.append(WILDCARD)
                continue
            known = MODULE_ACTIONS.get(module)
            if known is None or not isinstance(actions, Mapping):
                dropped.append(str(module))
                continue
            kept: Dict[str, bool] = {}
            for action, value in actions.items():
                if action == WILDCARD or action in known:
                    kept[action] = bool(value)
                else:
                    dropped.append(f'{module}.{action}')
            modules[module] = kept
        if dropped:
            log.warning('dropped unknown permission keys: %s', ', '.join(sorted(dropped)))
        return cls(modules, super_admin)

    def to_json(self) -> Dict[str, Dict[str, Any]]:
        out: Dict[str, Dict[str, Any]] = {m: dict(a) for m, a in self.modules.items()}
        if self.super_admin:
            out[WILDCARD] = {WILDCARD: SUPER_ADMIN}
        return out

    def allows(self, module: str, action: str) -> bool:
        return check(self, [(module, action)]).allowed

    def __repr__(self) -> str:
        return f'<PermissionMatrix super_admin={self.super_admin} modules={sorted(self.modules)}>'


@dataclass(frozen=True)
class Decision:
    allowed: bool
    reason: Optional[str] = None

    def __bool__(self) -> bool:
        return self.allowed


ALLOW = Decision(True)


def check(matrix: Union[PermissionMatrix, Mapping, None], required: Iterable[RequirementLike]) -> Decision:
    """Allow when every required (module, action) pair passes; deny with the first failing reason."""
    pairs = parse_required(required)
    if not pairs:
        return ALLOW
    matrix = PermissionMatrix.from_json(matrix)
    if matrix.super_admin:
        return ALLOW
    for module, action in pairs:
        actions = matrix.modules.get(module)
        if actions is None:
            return Decision(False, f'no access to {module}')
        if actions.get(WILDCARD) or actions.get(action):
            continue
        return Decision(False, f'no {action} access to {module}')
    return ALLOW


def validate_matrix(raw: Any) -> List[str]:
    """Return problems with a matrix submitted through the admin API (empty when valid)."""
    if not isinstance(raw, Mapping):
        return ['permissions must be an object']
    problems = []
    for module, actions in raw.items():
        if module == WILDCARD:
            if not isinstance(actions, Mapping) or set(actions) != {WILDCARD} or actions[WILDCARD] != SUPER_ADMIN:
                problems.append(f"'*' only accepts {{'*': '{SUPER_ADMIN}'}}")
            continue
        known = MODULE_ACTIONS.get(module)
        if known is None:
            problems.append(f'unknown module {module}')
            continue
        if not isinstance(actions, Mapping):
            problems.append(f'{module} must map actions to booleans')
            continue
        for action, value in actions.items():
            if action != WILDCARD and action not in known:
                problems.append(f'unknown action {module}.{action}')
            elif not isinstance(value, bool):
                problems.append(f'{module}.{action} must be boolean')
    return problems


# --- field level ---

def validate_field_permissions(raw: Any) -> List[str]:
    if not isinstance(raw, Mapping):
        return ['field_permissions must be an object']
    problems = []
    for module, fields in raw.items():
        if module not in MODULE_ACTIONS:
            problems.append(f'unknown module {module}')
        elif not isinstance(fields, Mapping):
            problems.append(f'{module} must map fields to access levels')
        else:
            problems.extend(
                f'{module}.{f}: access must be one of {", ".join(FIELD_ACCESS_LEVELS)}'
                for f, level in fields.items() if level not in FIELD_ACCESS_LEVELS
            )
    return problems


def field_access(field_permissions: Optional[Mapping], module: str, field: str) -> str:
    level = ((field_permissions or {}).get(module) or {}).get(field)
    return level if level in FIELD_ACCESS_LEVELS else FIELD_EDITABLE


def hidden_fields(field_permissions: Optional[Mapping], module: str) -> List[str]:
    return sorted(f for f, level in ((field_permissions or {}).get(module) or {}).items() if level == FIELD_HIDDEN)


def strip_hidden_fields(record: Mapping[str, Any], field_permissions: Optional[Mapping], module: str) -> Dict[str, Any]:
    hidden = set(hidden_fields(field_permissions, module))
    return {k: v for k, v in record.items() if k not in hidden}


__all__ = [
    'PermissionMatrix', 'Decision', 'check', 'parse_required', 'validate_matrix', 'validate_field_permissions',
    'field_access', 'hidden_fields', 'strip_hidden_fields',
]
