"""
Invoice model - read-only in the portal core
"""

from sqlmodel import Field, SQLModel
from sqlalchemy import Column, Numeric
from decimal import Decimal
from datetime import date, datetime
from typing import Optional
from enum import Enum

from opsportal.models.base import enum_column


class InvoiceStatus(str, Enum):
    DRAFT = "draft"
    SENT = "sent"
    VIEWED = "viewed"
    PARTIAL = "partial"
    PAID = "paid"
    OVERDUE = "overdue"
    DISPUTED = "disputed"
    CANCELLED = "cancelled"
    WRITTEN_OFF = "written_off"


class Invoice(SQLModel, table=True):
    """Invoice sent by a vendor facet to a client facet"""

    __tablename__ = "invoices"

    invoice_id: str = Field(primary_key=True, max_length=32)
    vendor_id: str = Field(index=True, max_length=32, description="Issuer TV- facet")
    client_id: str = Field(index=True, max_length=32, description="Recipient TC- facet")
    relationship_id: Optional[str] = Field(default=None, max_length=32)

    invoice_number: Optional[str] = Field(default=None, max_length=100)
    invoice_date: date
    due_date: date = Field(index=True)

    total_amount: Decimal = Field(sa_column=Column(Numeric(15, 2), nullable=False))
    amount_paid: Decimal = Field(default=Decimal("0.00"), sa_column=Column(Numeric(15, 2), nullable=False))
    currency: str = Field(default="USD", max_length=3)

    status: InvoiceStatus = Field(default=InvoiceStatus.DRAFT, index=True, sa_type=enum_column(InvoiceStatus))
    case_id: Optional[str] = Field(default=None, max_length=32)
    description: Optional[str] = None

    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: Optional[datetime] = None

    @property
    def amount_outstanding(self) -> Decimal:
        return self.total_amount - self.amount_paid
