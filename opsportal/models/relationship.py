"""
Tenant relationship model - directed client facet to vendor facet edge
"""

from sqlmodel import Field, SQLModel
from sqlalchemy import Index, text
from datetime import datetime
from typing import Optional
from enum import Enum

from opsportal.models.base import enum_column


class RelationshipStatus(str, Enum):
    """Status of a client/vendor relationship"""
    PENDING = "pending"         # Created, not yet confirmed by both sides
    ACTIVE = "active"           # Grants context and case access
    SUSPENDED = "suspended"     # Temporarily paused, may be reactivated
    TERMINATED = "terminated"   # Final, row retained for history


RELATIONSHIP_TRANSITIONS = {
    RelationshipStatus.PENDING: {RelationshipStatus.ACTIVE, RelationshipStatus.TERMINATED},
    RelationshipStatus.ACTIVE: {RelationshipStatus.SUSPENDED, RelationshipStatus.TERMINATED},
    RelationshipStatus.SUSPENDED: {RelationshipStatus.ACTIVE, RelationshipStatus.TERMINATED},
    RelationshipStatus.TERMINATED: set(),
}


class TenantRelationship(SQLModel, table=True):
    """Client facet (TC-) works with vendor facet (TV-)"""

    __tablename__ = "tenant_relationships"
    __table_args__ = (
        Index(
            "uq_relationship_active_pair",
            "client_id",
            "vendor_id",
            unique=True,
            postgresql_where=text("status = 'active'"),
            sqlite_where=text("status = 'active'"),
        ),
    )

    relationship_id: str = Field(primary_key=True, max_length=32)
    client_id: str = Field(foreign_key="tenants.tenant_client_id", index=True, max_length=32)
    vendor_id: str = Field(foreign_key="tenants.tenant_vendor_id", index=True, max_length=32)

    status: RelationshipStatus = Field(
        default=RelationshipStatus.PENDING,
        index=True,
        sa_type=enum_column(RelationshipStatus),
    )

    invite_token: Optional[str] = Field(default=None, max_length=64, description="Invitation that produced this edge")

    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: Optional[datetime] = None
    accepted_at: Optional[datetime] = None
    terminated_at: Optional[datetime] = None

    # State machine methods
    def can_transition_to(self, new_status: RelationshipStatus) -> bool:
        return new_status in RELATIONSHIP_TRANSITIONS[self.status]

    def _transition(self, new_status: RelationshipStatus) -> None:
        if not self.can_transition_to(new_status):
            raise ValueError(
                f"Cannot move relationship from '{self.status.value}' to '{new_status.value}'"
            )
        self.status = new_status
        self.updated_at = datetime.utcnow()

    def activate(self) -> None:
        """Pending or suspended relationship becomes active"""
        self._transition(RelationshipStatus.ACTIVE)
        if self.accepted_at is None:
            self.accepted_at = self.updated_at

    def suspend(self) -> None:
        self._transition(RelationshipStatus.SUSPENDED)

    def reactivate(self) -> None:
        if self.status != RelationshipStatus.SUSPENDED:
            raise ValueError("Cannot reactivate relationship: not suspended")
        self._transition(RelationshipStatus.ACTIVE)

    def terminate(self) -> None:
        self._transition(RelationshipStatus.TERMINATED)
        self.terminated_at = self.updated_at

    @property
    def is_active(self) -> bool:
        return self.status == RelationshipStatus.ACTIVE
