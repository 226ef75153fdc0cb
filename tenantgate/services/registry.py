from __future__ import annotations
from typing import List, Optional
from sqlalchemy import select
from sqlalchemy.orm import Session

from tenantgate.models.tenant import Tenant


class TenantRegistry:
    """Durable record of tenants in the master schema."""

    def __init__(self, session: Session):
        self.session = session

    def get(self, tenant_id: int) -> Optional[Tenant]:
        return self.session.get(Tenant, tenant_id)

    def get_by_slug(self, slug: str, active_only: bool = True) -> Optional[Tenant]:
        q = select(Tenant).where(Tenant.slug == slug)
        if active_only:
            q = q.where(Tenant.status == Tenant.STATUS_ACTIVE)
        return self.session.execute(q).scalar_one_or_none()

    def get_by_schema(self, schema_name: str) -> Optional[Tenant]:
        return self.session.execute(select(Tenant).where(Tenant.schema_name == schema_name)).scalar_one_or_none()

    def list_by_status(self, status: str) -> List[Tenant]:
        q = select(Tenant).where(Tenant.status == status).order_by(Tenant.id.asc())
        return list(self.session.execute(q).scalars())

    def list_active(self) -> List[Tenant]:
        """Active tenants in registry order (id ascending)."""
        return self.list_by_status(Tenant.STATUS_ACTIVE)

    def list_all(self) -> List[Tenant]:
        return list(self.session.execute(select(Tenant).order_by(Tenant.id.asc())).scalars())

    def add(self, name: str, slug: str, schema_name: str) -> Tenant:
        tenant = Tenant(name=name, slug=slug, schema_name=schema_name, status=Tenant.STATUS_PENDING, settings={})
        self.session.add(tenant)
        self.session.flush()
        return tenant

    def set_status(self, tenant: Tenant, status: str) -> Tenant:
        if status not in Tenant.STATUSES:
            raise ValueError(f'unknown tenant status {status!r}')
        tenant.status = status
        self.session.flush()
        return tenant


__all__ = ['TenantRegistry']
