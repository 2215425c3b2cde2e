"""
Portal context API endpoints
"""

from fastapi import APIRouter, Depends
from sqlmodel.ext.asyncio.session import AsyncSession
import structlog

from opsportal.core.database import get_session
from opsportal.core.dependencies import RequestContext, get_request_context
from opsportal.models import Tenant
from opsportal.schemas.portal import ContextResponse, CounterpartyRead, SwitchContextRequest
from opsportal.services.context_resolver import ContextSummary, switch_context

logger = structlog.get_logger(__name__)
router = APIRouter()


def _context_response(tenant: Tenant, summary: ContextSummary) -> ContextResponse:
    return ContextResponse(
        tenant_id=tenant.tenant_id,
        tenant_name=tenant.display_name or tenant.name,
        needs_selection=summary.needs_selection,
        vendors=[CounterpartyRead.model_validate(view) for view in summary.as_client],
        clients=[CounterpartyRead.model_validate(view) for view in summary.as_vendor],
        **summary.to_dict(),
    )


@router.get("/context", response_model=ContextResponse)
async def get_context(context: RequestContext = Depends(get_request_context)):
    """Sides held by the tenant and the one currently active"""
    return _context_response(context.tenant, context.summary)


@router.post("/context/switch", response_model=ContextResponse)
async def switch(
    switch_data: SwitchContextRequest,
    context: RequestContext = Depends(get_request_context),
    db: AsyncSession = Depends(get_session),
):
    """Choose the side (and optionally the counterparty) to act on"""
    summary = await switch_context(
        db,
        context.session,
        context.tenant,
        switch_data.role,
        switch_data.counterparty_id,
    )
    return _context_response(context.tenant, summary)
