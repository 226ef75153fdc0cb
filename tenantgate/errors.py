"""Error taxonomy for tenant provisioning, migrations and authorization.

Each error carries the HTTP status the app-level handler maps it to, so route
handlers can let them propagate instead of translating them one by one.
"""
from __future__ import annotations
from typing import Optional


class TenantGateError(Exception):
    """Base error for tenantgate."""
    status = 500
    title = 'Internal Server Error'

    def __init__(self, detail: str = ''):
        super().__init__(detail)
        self.detail = detail or self.title


class InvalidSlug(TenantGateError):
    """Slug cannot be mapped onto a safe schema identifier."""
    status = 400
    title = 'Bad Request'


class ProvisioningConflict(TenantGateError):
    """Slug already registered."""
    status = 409
    title = 'Conflict'


class ProvisioningFailure(TenantGateError):
    """Schema or seed DDL failed after the registry row was committed."""
    status = 500
    title = 'Provisioning Failed'

    def __init__(self, slug: str, schema_name: str, cause: Optional[BaseException] = None):
        super().__init__(f'provisioning failed for tenant {slug} ({schema_name})')
        self.slug = slug
        self.schema_name = schema_name
        self.cause = cause


class MigrationFailure(TenantGateError):
    """A named migration failed for one tenant schema."""
    title = 'Migration Failed'

    def __init__(self, tenant: str, migration_name: Optional[str], cause: BaseException):
        step = migration_name or '<baseline>'
        super().__init__(f'migration {step} failed for {tenant}: {cause}')
        self.tenant = tenant
        self.migration_name = migration_name
        self.cause = cause


class MigrationRegistryError(TenantGateError):
    """Duplicate or malformed migration definition."""


class PermissionDenied(TenantGateError):
    status = 403
    title = 'Forbidden'

    def __init__(self, reason: str):
        super().__init__(reason)
        self.reason = reason


class AccessScopeLookupFailure(TenantGateError):
    """Team or department membership could not be resolved; the operation fails closed."""
    title = 'Access Scope Unavailable'


class TenantUnavailable(TenantGateError):
    """Unknown or non-active tenant during authentication."""
    status = 401
    title = 'Unauthorized'


__all__ = [
    'TenantGateError', 'InvalidSlug', 'ProvisioningConflict', 'ProvisioningFailure',
    'MigrationFailure', 'MigrationRegistryError', 'PermissionDenied',
    'AccessScopeLookupFailure', 'TenantUnavailable',
]
