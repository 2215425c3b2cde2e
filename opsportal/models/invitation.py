"""
Relationship invitation model

A client tenant invites a vendor by email. Accepting the invitation creates
the vendor tenant (or links an existing one) and an active relationship.
"""

from sqlmodel import Field, SQLModel
from datetime import datetime, timedelta
from typing import Dict, Optional
from enum import Enum

from opsportal.models.base import enum_column


class InvitationStatus(str, Enum):
    """Status of a relationship invitation"""
    PENDING = "pending"
    ACCEPTED = "accepted"
    EXPIRED = "expired"
    REVOKED = "revoked"


TERMINAL_INVITATION_STATUSES = {
    InvitationStatus.ACCEPTED,
    InvitationStatus.EXPIRED,
    InvitationStatus.REVOKED,
}


class RelationshipInvitation(SQLModel, table=True):
    """Pending vendor invitation issued by a client tenant"""

    __tablename__ = "relationship_invites"

    token: str = Field(primary_key=True, max_length=64, description="64 hex chars, single use")
    inviting_tenant_id: str = Field(foreign_key="tenants.tenant_id", index=True)
    inviting_client_id: str = Field(max_length=32, description="TC- facet of the inviter")

    invitee_email: str = Field(index=True, max_length=255)
    invitee_name: Optional[str] = Field(default=None, max_length=255)

    status: InvitationStatus = Field(
        default=InvitationStatus.PENDING,
        index=True,
        sa_type=enum_column(InvitationStatus),
    )

    created_at: datetime = Field(default_factory=datetime.utcnow)
    expires_at: datetime = Field(
        default_factory=lambda: datetime.utcnow() + timedelta(days=7),
        index=True,
        description="Invitation expiration timestamp (default 7 days)",
    )
    accepted_at: Optional[datetime] = None
    accepted_by_tenant_id: Optional[str] = Field(default=None, max_length=32)
    accepted_by_vendor_id: Optional[str] = Field(default=None, max_length=32)

    # State machine methods
    def is_expired(self, now: Optional[datetime] = None) -> bool:
        return (now or datetime.utcnow()) > self.expires_at

    def can_accept(self, now: Optional[datetime] = None) -> tuple[bool, str]:
        if self.status != InvitationStatus.PENDING:
            return False, f"Invitation is {self.status.value}"
        if self.is_expired(now):
            return False, "Invitation has expired"
        return True, "Can accept invitation"

    def acceptance_values(self, tenant_id: str, vendor_id: str) -> Dict[str, object]:
        """Column values for accepting; written only where the row is still pending"""
        can_accept, reason = self.can_accept()
        if not can_accept:
            raise ValueError(f"Cannot accept invitation: {reason}")

        return {
            "status": InvitationStatus.ACCEPTED,
            "accepted_at": datetime.utcnow(),
            "accepted_by_tenant_id": tenant_id,
            "accepted_by_vendor_id": vendor_id,
        }

    def transition_to_revoked(self) -> None:
        if self.status in TERMINAL_INVITATION_STATUSES:
            raise ValueError(f"Cannot revoke invitation: already {self.status.value}")
        self.status = InvitationStatus.REVOKED

    def transition_to_expired(self, now: Optional[datetime] = None) -> None:
        if self.status != InvitationStatus.PENDING or not self.is_expired(now):
            raise ValueError("Cannot expire invitation: not pending or not past expiry")
        self.status = InvitationStatus.EXPIRED
