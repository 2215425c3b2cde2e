"""
Payments API endpoints
"""

from fastapi import APIRouter, Depends, Query
from sqlmodel.ext.asyncio.session import AsyncSession
from typing import List, Optional
import structlog

from opsportal.core.database import get_session
from opsportal.core.dependencies import RequestContext, require_permission
from opsportal.core.permissions import Permission
from opsportal.models import PaymentStatus
from opsportal.schemas.finance import PaymentRead, PaymentStatusUpdate
from opsportal.services import access_guard

logger = structlog.get_logger(__name__)
router = APIRouter()


@router.get("/", response_model=List[PaymentRead])
async def list_payments(
    status: Optional[PaymentStatus] = None,
    limit: int = Query(default=50, ge=1, le=200),
    offset: int = Query(default=0, ge=0),
    context: RequestContext = Depends(require_permission(Permission.PAYMENT_VIEW)),
    db: AsyncSession = Depends(get_session),
):
    """Payments sent (as client) or received (as vendor) by the active facet"""
    payments = await access_guard.list_payments(db, context.scope, status=status, limit=limit, offset=offset)
    return [PaymentRead.model_validate(payment) for payment in payments]


@router.get("/{payment_id}", response_model=PaymentRead)
async def get_payment(
    payment_id: str,
    context: RequestContext = Depends(require_permission(Permission.PAYMENT_VIEW)),
    db: AsyncSession = Depends(get_session),
):
    payment = await access_guard.get_payment(db, payment_id, context.scope)
    return PaymentRead.model_validate(payment)


@router.post("/{payment_id}/status", response_model=PaymentRead)
async def update_payment_status(
    payment_id: str,
    status_data: PaymentStatusUpdate,
    context: RequestContext = Depends(require_permission(Permission.PAYMENT_UPDATE_STATUS)),
    db: AsyncSession = Depends(get_session),
):
    """Record a new payment status and notify the other party"""
    payment = await access_guard.update_payment_status(db, payment_id, context.scope, status_data.status)
    return PaymentRead.model_validate(payment)
