from __future__ import annotations
from sqlalchemy.orm import declarative_base, Mapped, mapped_column
from sqlalchemy import String, Integer, JSON, DateTime, func
from typing import Optional, Dict, Any

Base = declarative_base()


class Tenant(Base):
    """Master registry row. schema_name is derived from slug once and never changes."""
    __tablename__ = 'tenants'

    STATUS_PENDING = 'pending'
    STATUS_ACTIVE = 'active'
    STATUS_SUSPENDED = 'suspended'
    STATUSES = (STATUS_PENDING, STATUS_ACTIVE, STATUS_SUSPENDED)

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    slug: Mapped[str] = mapped_column(String(100), unique=True, nullable=False, index=True)
    schema_name: Mapped[str] = mapped_column(String(100), unique=True, nullable=False)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default=STATUS_PENDING, index=True)
    plan: Mapped[str] = mapped_column(String(50), nullable=False, default='trial')
    settings: Mapped[Dict[str, Any]] = mapped_column(JSON, default=dict)
    max_users: Mapped[int] = mapped_column(Integer, nullable=False, default=10)
    created_at: Mapped[Optional[str]] = mapped_column(DateTime(timezone=True), server_default=func.now())
    updated_at: Mapped[Optional[str]] = mapped_column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    @property
    def is_active(self) -> bool:
        return self.status == self.STATUS_ACTIVE

    def to_dict(self) -> Dict[str, Any]:
        return {
            'id': self.id,
            'name': self.name,
            'slug': self.slug,
            'schema_name': self.schema_name,
            'status': self.status,
            'plan': self.plan,
        }

    def __repr__(self) -> str:
        return f'<Tenant {self.slug} ({self.schema_name}, {self.status})>'
