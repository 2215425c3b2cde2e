"""
Pydantic schemas for the portal context
"""

from pydantic import BaseModel, Field
from typing import List, Optional

from opsportal.models.tenant import ContextRole


class CounterpartyRead(BaseModel):
    relationship_id: str
    counterparty_facet_id: str
    counterparty_tenant_id: Optional[str] = None
    counterparty_name: Optional[str] = None

    class Config:
        from_attributes = True


class ContextResponse(BaseModel):
    """Which sides a tenant holds and which one it is acting on"""
    tenant_id: str
    tenant_name: str
    has_client_context: bool
    has_vendor_context: bool
    has_dual_context: bool
    vendor_count: int
    client_count: int
    active_context: Optional[ContextRole] = None
    active_context_id: Optional[str] = None
    active_counterparty: Optional[str] = None
    needs_selection: bool
    vendors: List[CounterpartyRead] = Field(default_factory=list, description="Counterparties while acting as client")
    clients: List[CounterpartyRead] = Field(default_factory=list, description="Counterparties while acting as vendor")


class SwitchContextRequest(BaseModel):
    role: ContextRole
    counterparty_id: Optional[str] = Field(default=None, max_length=32)
