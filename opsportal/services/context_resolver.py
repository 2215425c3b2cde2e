"""
Context Resolver

Decides which side of its relationships a tenant is acting on for the current
session. A single-context tenant is placed in its only context automatically;
a dual-context tenant stays unresolved until it chooses.
"""

from dataclasses import dataclass, field
from typing import List, Optional

import structlog
from sqlmodel.ext.asyncio.session import AsyncSession

from opsportal.core.errors import AuthorizationDenied, ContextSelectionRequired
from opsportal.core.events import ContextSwitched, event_bus
from opsportal.models import ContextRole, PortalSession, Tenant
from opsportal.services.access_guard import OwnerScope
from opsportal.services.relationship_graph import (
    RelationshipView,
    TenantRelationships,
    get_tenant_relationships,
)

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class ContextSummary:
    has_client_context: bool
    has_vendor_context: bool
    has_dual_context: bool
    vendor_count: int       # vendors I buy from (I am the client)
    client_count: int       # clients I serve (I am the vendor)
    active_context: Optional[ContextRole] = None
    active_context_id: Optional[str] = None
    active_counterparty: Optional[str] = None
    as_client: List[RelationshipView] = field(default_factory=list)
    as_vendor: List[RelationshipView] = field(default_factory=list)

    @property
    def needs_selection(self) -> bool:
        return self.has_dual_context and self.active_context is None

    def to_dict(self) -> dict:
        return {
            "has_client_context": self.has_client_context,
            "has_vendor_context": self.has_vendor_context,
            "has_dual_context": self.has_dual_context,
            "vendor_count": self.vendor_count,
            "client_count": self.client_count,
            "active_context": self.active_context.value if self.active_context else None,
            "active_context_id": self.active_context_id,
            "active_counterparty": self.active_counterparty,
        }


def _holds(relationships: TenantRelationships, role: ContextRole) -> bool:
    return bool(relationships.for_role(role))


def initial_context(tenant: Tenant, relationships: TenantRelationships) -> Optional[ContextRole]:
    """Context a new session starts in: the only side held, or nothing"""
    has_client = _holds(relationships, ContextRole.CLIENT)
    has_vendor = _holds(relationships, ContextRole.VENDOR)
    if has_client and not has_vendor:
        return ContextRole.CLIENT
    if has_vendor and not has_client:
        return ContextRole.VENDOR
    return None


def resolve_context(
    session: PortalSession,
    tenant: Tenant,
    relationships: TenantRelationships,
) -> ContextSummary:
    """Combine the stored session context with the tenant's current relationships"""
    has_client = _holds(relationships, ContextRole.CLIENT)
    has_vendor = _holds(relationships, ContextRole.VENDOR)

    active = session.active_context
    counterparty = session.active_counterparty
    if active is not None and not _holds(relationships, active):
        # side was lost since the session stored it
        active = None
    if active is None:
        active = initial_context(tenant, relationships)
        counterparty = None

    if counterparty and active is not None:
        held = {view.counterparty_facet_id for view in relationships.for_role(active)}
        if counterparty not in held:
            counterparty = None

    return ContextSummary(
        has_client_context=has_client,
        has_vendor_context=has_vendor,
        has_dual_context=has_client and has_vendor,
        vendor_count=len(relationships.as_client),
        client_count=len(relationships.as_vendor),
        active_context=active,
        active_context_id=tenant.facets.facet_for(active) if active else None,
        active_counterparty=counterparty if active else None,
        as_client=list(relationships.as_client),
        as_vendor=list(relationships.as_vendor),
    )


def require_active_scope(summary: ContextSummary, tenant: Tenant) -> OwnerScope:
    """Scope for a tenant-scoped operation, or the error that blocks it"""
    if summary.active_context is not None:
        return OwnerScope.for_tenant(tenant, summary.active_context)
    if summary.has_dual_context:
        raise ContextSelectionRequired()
    raise AuthorizationDenied("You have no client or vendor relationships yet")


async def load_context(db: AsyncSession, session: PortalSession, tenant: Tenant) -> ContextSummary:
    """Resolve against fresh relationships and persist any change to the session"""
    relationships = await get_tenant_relationships(db, tenant)
    summary = resolve_context(session, tenant, relationships)

    if (
        summary.active_context != session.active_context
        or summary.active_context_id != session.active_context_id
        or summary.active_counterparty != session.active_counterparty
    ):
        session.set_active_context(summary.active_context, summary.active_context_id, summary.active_counterparty)
        db.add(session)
        await db.commit()
    return summary


async def switch_context(
    db: AsyncSession,
    session: PortalSession,
    tenant: Tenant,
    role: ContextRole,
    counterparty_facet_id: Optional[str] = None,
) -> ContextSummary:
    """Explicitly select the side (and optionally the counterparty) to act on"""
    role = ContextRole(role)
    relationships = await get_tenant_relationships(db, tenant)
    views = relationships.for_role(role)

    if not views:
        side = "vendor" if role == ContextRole.CLIENT else "client"
        raise AuthorizationDenied(f"You have no {side} relationships yet")

    if counterparty_facet_id and counterparty_facet_id not in {v.counterparty_facet_id for v in views}:
        raise AuthorizationDenied("You have no active relationship with that counterparty")

    facet_id = tenant.facets.facet_for(role)
    session.set_active_context(role, facet_id, counterparty_facet_id)
    db.add(session)
    await db.commit()

    logger.info(
        "Context switched",
        tenant_id=tenant.tenant_id,
        user_id=session.user_id,
        active_context=role.value,
        active_context_id=facet_id,
    )
    await event_bus.publish(
        ContextSwitched(
            session_id=session.id,
            tenant_id=tenant.tenant_id,
            user_id=session.user_id,
            active_context=role.value,
            active_context_id=facet_id,
            active_counterparty=counterparty_facet_id,
        )
    )
    return resolve_context(session, tenant, relationships)
