"""
API schemas for payments and invoices
"""

from pydantic import BaseModel
from datetime import date, datetime
from decimal import Decimal
from typing import Optional

from opsportal.models.invoice import InvoiceStatus
from opsportal.models.payment import PaymentStatus


class PaymentRead(BaseModel):
    payment_id: str
    from_id: str
    to_id: str
    relationship_id: Optional[str] = None
    case_id: Optional[str] = None
    invoice_id: Optional[str] = None
    amount: Decimal
    currency: str
    reference: Optional[str] = None
    status: PaymentStatus
    created_at: datetime
    updated_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class PaymentStatusUpdate(BaseModel):
    status: PaymentStatus


class InvoiceRead(BaseModel):
    invoice_id: str
    vendor_id: str
    client_id: str
    relationship_id: Optional[str] = None
    invoice_number: Optional[str] = None
    invoice_date: date
    due_date: date
    total_amount: Decimal
    amount_paid: Decimal
    amount_outstanding: Decimal
    currency: str
    status: InvoiceStatus
    case_id: Optional[str] = None
    description: Optional[str] = None
    created_at: datetime

    class Config:
        from_attributes = True
