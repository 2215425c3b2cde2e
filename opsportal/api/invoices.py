"""
Invoices API endpoints (read-only)
"""

from fastapi import APIRouter, Depends, Query
from sqlmodel.ext.asyncio.session import AsyncSession
from typing import List, Optional

from opsportal.core.database import get_session
from opsportal.core.dependencies import RequestContext, require_permission
from opsportal.core.permissions import Permission
from opsportal.models import InvoiceStatus
from opsportal.schemas.finance import InvoiceRead
from opsportal.services import access_guard

router = APIRouter()


@router.get("/", response_model=List[InvoiceRead])
async def list_invoices(
    status: Optional[InvoiceStatus] = None,
    overdue: bool = False,
    limit: int = Query(default=50, ge=1, le=200),
    offset: int = Query(default=0, ge=0),
    context: RequestContext = Depends(require_permission(Permission.INVOICE_VIEW)),
    db: AsyncSession = Depends(get_session),
):
    invoices = await access_guard.list_invoices(
        db, context.scope, status=status, overdue_only=overdue, limit=limit, offset=offset
    )
    return [InvoiceRead.model_validate(invoice) for invoice in invoices]


@router.get("/{invoice_id}", response_model=InvoiceRead)
async def get_invoice(
    invoice_id: str,
    context: RequestContext = Depends(require_permission(Permission.INVOICE_VIEW)),
    db: AsyncSession = Depends(get_session),
):
    invoice = await access_guard.get_invoice(db, invoice_id, context.scope)
    return InvoiceRead.model_validate(invoice)
