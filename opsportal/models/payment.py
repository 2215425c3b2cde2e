"""
Payment model
Payments flow from a client facet (payer) to a vendor facet (payee)
"""

from sqlmodel import Field, SQLModel
from sqlalchemy import Column, Numeric
from decimal import Decimal
from datetime import datetime
from typing import Optional
from enum import Enum

from opsportal.models.base import enum_column


class PaymentStatus(str, Enum):
    """Status of a payment"""
    PENDING = "pending"             # Payment announced, not yet processed
    PROCESSING = "processing"       # Being processed by the payer's bank
    COMPLETED = "completed"         # Funds received
    FAILED = "failed"               # Rejected or bounced
    CANCELLED = "cancelled"         # Withdrawn by the payer
    DISPUTED = "disputed"           # Contested by either side


class Payment(SQLModel, table=True):
    """Payment between two facets of a relationship"""

    __tablename__ = "payments"

    payment_id: str = Field(primary_key=True, max_length=32)
    from_id: str = Field(index=True, max_length=32, description="Payer TC- facet")
    to_id: str = Field(index=True, max_length=32, description="Payee TV- facet")

    relationship_id: Optional[str] = Field(default=None, max_length=32)
    case_id: Optional[str] = Field(default=None, max_length=32)
    invoice_id: Optional[str] = Field(default=None, max_length=32)

    amount: Decimal = Field(
        description="Payment amount",
        sa_column=Column(Numeric(15, 2), nullable=False)
    )
    currency: str = Field(
        default="USD",
        max_length=3,
        description="Currency code (default: USD)"
    )
    reference: Optional[str] = Field(default=None, max_length=255)

    status: PaymentStatus = Field(
        default=PaymentStatus.PENDING,
        index=True,
        sa_type=enum_column(PaymentStatus),
        description="Current status of payment"
    )

    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: Optional[datetime] = None
    completed_at: Optional[datetime] = Field(
        default=None,
        nullable=True,
        description="When the payee confirmed receipt"
    )

    def set_status(self, new_status: PaymentStatus) -> PaymentStatus:
        """Record a new status, returns the previous one"""
        previous = self.status
        self.status = PaymentStatus(new_status)
        self.updated_at = datetime.utcnow()
        if self.status == PaymentStatus.COMPLETED:
            self.completed_at = self.updated_at
        return previous
