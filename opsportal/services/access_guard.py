"""
Access-Control Guard

Every tenant-scoped read goes through here with an OwnerScope, and the scope
is part of the query itself. A record that exists but belongs to someone else
and a record that does not exist produce the same NotFound.
"""

from dataclasses import dataclass
from datetime import datetime
from typing import List, Optional, Tuple

import structlog
from sqlmodel import col, func, or_, select
from sqlmodel.ext.asyncio.session import AsyncSession

from opsportal.core.errors import NotFound
from opsportal.core.events import PaymentStatusChanged, event_bus
from opsportal.core.ids import CLIENT_FACET_PREFIX, VENDOR_FACET_PREFIX
from opsportal.models import (
    Case,
    CaseEvidence,
    CasePriority,
    CaseStatus,
    ContextRole,
    Invoice,
    InvoiceStatus,
    Payment,
    PaymentStatus,
    Tenant,
)

logger = structlog.get_logger(__name__)

_FACET_PREFIX = {
    ContextRole.CLIENT: f"{CLIENT_FACET_PREFIX}-",
    ContextRole.VENDOR: f"{VENDOR_FACET_PREFIX}-",
}


@dataclass(frozen=True)
class OwnerScope:
    """The facet a request is acting as"""
    role: ContextRole
    facet_id: str

    def __post_init__(self):
        role = ContextRole(self.role)
        object.__setattr__(self, "role", role)
        if not self.facet_id or not self.facet_id.startswith(_FACET_PREFIX[role]):
            raise ValueError(f"Facet '{self.facet_id}' is not a {role.value} facet")

    @classmethod
    def for_tenant(cls, tenant: Tenant, role: ContextRole) -> "OwnerScope":
        return cls(role=ContextRole(role), facet_id=tenant.facets.facet_for(role))

    @property
    def is_client(self) -> bool:
        return self.role == ContextRole.CLIENT


def _case_owner_clause(scope: OwnerScope):
    return Case.client_id == scope.facet_id if scope.is_client else Case.vendor_id == scope.facet_id


def _payment_owner_clause(scope: OwnerScope):
    return Payment.from_id == scope.facet_id if scope.is_client else Payment.to_id == scope.facet_id


def _invoice_owner_clause(scope: OwnerScope):
    return Invoice.client_id == scope.facet_id if scope.is_client else Invoice.vendor_id == scope.facet_id


def _miss(resource: str, record_id: str, scope: OwnerScope) -> NotFound:
    logger.debug("Scoped lookup missed", resource=resource, record_id=record_id, role=scope.role.value)
    return NotFound(resource)


# Cases

async def get_case(db: AsyncSession, case_id: str, scope: OwnerScope) -> Case:
    result = await db.exec(select(Case).where(Case.case_id == case_id, _case_owner_clause(scope)))
    case = result.first()
    if case is None:
        raise _miss("Case", case_id, scope)
    return case


async def list_cases(
    db: AsyncSession,
    scope: OwnerScope,
    status: Optional[CaseStatus] = None,
    priority: Optional[CasePriority] = None,
    search: Optional[str] = None,
    counterparty_id: Optional[str] = None,
    limit: int = 50,
    offset: int = 0,
) -> Tuple[List[Case], int]:
    """Cases visible to scope, newest first, with the unpaginated total"""
    conditions = [_case_owner_clause(scope)]
    if status is not None:
        conditions.append(Case.status == status)
    if priority is not None:
        conditions.append(Case.priority == priority)
    if counterparty_id:
        conditions.append(
            Case.vendor_id == counterparty_id if scope.is_client else Case.client_id == counterparty_id
        )
    if search:
        pattern = f"%{search.strip()}%"
        conditions.append(or_(col(Case.subject).ilike(pattern), col(Case.case_id).ilike(pattern)))

    total = (await db.exec(select(func.count()).select_from(Case).where(*conditions))).one()
    result = await db.exec(
        select(Case)
        .where(*conditions)
        .order_by(col(Case.created_at).desc())
        .offset(offset)
        .limit(limit)
    )
    return list(result.all()), total


async def get_evidence(db: AsyncSession, case_id: str, evidence_id: str, scope: OwnerScope) -> CaseEvidence:
    result = await db.exec(
        select(CaseEvidence)
        .join(Case, Case.case_id == CaseEvidence.case_id)
        .where(
            CaseEvidence.evidence_id == evidence_id,
            CaseEvidence.case_id == case_id,
            _case_owner_clause(scope),
        )
    )
    evidence = result.first()
    if evidence is None:
        raise _miss("Evidence", evidence_id, scope)
    return evidence


# Payments

async def get_payment(db: AsyncSession, payment_id: str, scope: OwnerScope) -> Payment:
    result = await db.exec(
        select(Payment).where(Payment.payment_id == payment_id, _payment_owner_clause(scope))
    )
    payment = result.first()
    if payment is None:
        raise _miss("Payment", payment_id, scope)
    return payment


async def list_payments(
    db: AsyncSession,
    scope: OwnerScope,
    status: Optional[PaymentStatus] = None,
    limit: int = 50,
    offset: int = 0,
) -> List[Payment]:
    conditions = [_payment_owner_clause(scope)]
    if status is not None:
        conditions.append(Payment.status == status)
    result = await db.exec(
        select(Payment)
        .where(*conditions)
        .order_by(col(Payment.created_at).desc())
        .offset(offset)
        .limit(limit)
    )
    return list(result.all())


async def update_payment_status(
    db: AsyncSession,
    payment_id: str,
    scope: OwnerScope,
    new_status: PaymentStatus,
) -> Payment:
    """Either party may record a new status; the write follows the scoped read"""
    payment = await get_payment(db, payment_id, scope)
    previous = payment.set_status(new_status)
    db.add(payment)
    await db.commit()
    await db.refresh(payment)

    logger.info(
        "Payment status updated",
        payment_id=payment_id,
        from_status=previous.value,
        to_status=payment.status.value,
        role=scope.role.value,
    )
    await event_bus.publish(
        PaymentStatusChanged(
            payment_id=payment.payment_id,
            from_id=payment.from_id,
            to_id=payment.to_id,
            from_status=previous.value,
            to_status=payment.status.value,
            changed_by_context=scope.role.value,
        )
    )
    return payment


# Invoices

async def get_invoice(db: AsyncSession, invoice_id: str, scope: OwnerScope) -> Invoice:
    result = await db.exec(
        select(Invoice).where(Invoice.invoice_id == invoice_id, _invoice_owner_clause(scope))
    )
    invoice = result.first()
    if invoice is None:
        raise _miss("Invoice", invoice_id, scope)
    return invoice


async def list_invoices(
    db: AsyncSession,
    scope: OwnerScope,
    status: Optional[InvoiceStatus] = None,
    overdue_only: bool = False,
    limit: int = 50,
    offset: int = 0,
) -> List[Invoice]:
    conditions = [_invoice_owner_clause(scope)]
    if status is not None:
        conditions.append(Invoice.status == status)
    if overdue_only:
        conditions.append(Invoice.due_date < datetime.utcnow().date())
        conditions.append(
            col(Invoice.status).not_in([InvoiceStatus.PAID, InvoiceStatus.CANCELLED, InvoiceStatus.WRITTEN_OFF])
        )
    result = await db.exec(
        select(Invoice)
        .where(*conditions)
        .order_by(col(Invoice.due_date))
        .offset(offset)
        .limit(limit)
    )
    return list(result.all())
