"""
Tenant model - one organization, two facets

A tenant acts as a client through its TC- facet and as a vendor through its
TV- facet. Relationships, cases, payments and invoices reference facets, not
the tenant id.
"""

from dataclasses import dataclass
from sqlmodel import Field, SQLModel
from sqlalchemy import event, inspect
from datetime import datetime
from typing import Optional
from enum import Enum

from opsportal.models.base import enum_column


class TenantStatus(str, Enum):
    """Lifecycle status of a tenant"""
    ACTIVE = "active"
    PENDING = "pending"
    SUSPENDED = "suspended"
    ARCHIVED = "archived"


class ContextRole(str, Enum):
    """The side of a relationship a tenant is acting on"""
    CLIENT = "client"
    VENDOR = "vendor"


@dataclass(frozen=True)
class TenantFacets:
    """The pair of role-tagged identifiers a tenant owns"""
    client_id: str
    vendor_id: str

    def facet_for(self, role: ContextRole) -> str:
        return self.client_id if ContextRole(role) == ContextRole.CLIENT else self.vendor_id


class Tenant(SQLModel, table=True):
    """Tenant model for multi-tenant architecture"""

    __tablename__ = "tenants"

    tenant_id: str = Field(primary_key=True, max_length=32, description="TNT- primary id")
    tenant_client_id: str = Field(unique=True, index=True, max_length=32, description="TC- facet id, immutable")
    tenant_vendor_id: str = Field(unique=True, index=True, max_length=32, description="TV- facet id, immutable")

    name: str = Field(index=True, max_length=255)
    display_name: Optional[str] = Field(default=None, max_length=255)
    email: Optional[str] = Field(default=None, max_length=255)
    phone: Optional[str] = Field(default=None, max_length=50)
    address: Optional[str] = None

    status: TenantStatus = Field(
        default=TenantStatus.ACTIVE,
        index=True,
        sa_type=enum_column(TenantStatus),
    )

    # Timestamps
    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: Optional[datetime] = None

    @property
    def facets(self) -> TenantFacets:
        return TenantFacets(client_id=self.tenant_client_id, vendor_id=self.tenant_vendor_id)

    def owns_facet(self, facet_id: str) -> bool:
        return facet_id in (self.tenant_client_id, self.tenant_vendor_id)


@event.listens_for(Tenant, "before_update")
def _guard_facet_ids(mapper, connection, target: Tenant) -> None:
    state = inspect(target)
    for column in ("tenant_client_id", "tenant_vendor_id"):
        if state.attrs[column].history.has_changes():
            raise ValueError(f"Cannot change {column}: facet ids are immutable once issued")
