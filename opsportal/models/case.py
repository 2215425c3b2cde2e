"""
Case model with the lifecycle state machine

The adjacency map is data: the workflow can be audited or extended without
touching the engine. Intake states are read-only here and have no outbound
edges.
"""

from sqlmodel import Field, SQLModel
from sqlalchemy import event, inspect
from datetime import datetime
from typing import Dict, List, Optional, Tuple
from enum import Enum

from opsportal.core.errors import InvalidTransition
from opsportal.models.base import enum_column


class CaseStatus(str, Enum):
    """Status of a case"""
    DRAFT = "draft"
    OPEN = "open"
    IN_PROGRESS = "in_progress"
    PENDING_CLIENT = "pending_client"
    PENDING_VENDOR = "pending_vendor"
    ESCALATED = "escalated"
    RESOLVED = "resolved"
    CLOSED = "closed"
    CANCELLED = "cancelled"


class CasePriority(str, Enum):
    LOW = "low"
    NORMAL = "normal"
    HIGH = "high"
    URGENT = "urgent"


class CaseType(str, Enum):
    GENERAL = "general"
    DISPUTE = "dispute"
    PAYMENT = "payment"
    DELIVERY = "delivery"
    QUALITY = "quality"
    CONTRACT = "contract"
    COMPLIANCE = "compliance"
    OTHER = "other"


STATUS_TRANSITIONS: Dict[CaseStatus, Tuple[CaseStatus, ...]] = {
    CaseStatus.OPEN: (CaseStatus.IN_PROGRESS,),
    CaseStatus.IN_PROGRESS: (CaseStatus.RESOLVED,),
    CaseStatus.RESOLVED: (CaseStatus.CLOSED,),
    # Terminal
    CaseStatus.CLOSED: (),
    CaseStatus.CANCELLED: (),
    # Intake states, read-only in this workflow
    CaseStatus.DRAFT: (),
    CaseStatus.PENDING_CLIENT: (),
    CaseStatus.PENDING_VENDOR: (),
    CaseStatus.ESCALATED: (),
}

TRANSITION_LABELS: Dict[CaseStatus, str] = {
    CaseStatus.IN_PROGRESS: "Mark In Progress",
    CaseStatus.RESOLVED: "Mark Resolved",
    CaseStatus.CLOSED: "Close Case",
}


def _status_value(status) -> str:
    return status.value if isinstance(status, CaseStatus) else str(status)


def validate_transition(from_status, to_status) -> None:
    """Raise InvalidTransition unless from_status -> to_status is an edge"""
    from_value = _status_value(from_status)
    to_value = _status_value(to_status)

    try:
        source = CaseStatus(from_value)
    except ValueError:
        raise InvalidTransition(
            from_value, to_value, f"Current status '{from_value}' is not recognized"
        )

    allowed = STATUS_TRANSITIONS[source]
    if not allowed:
        raise InvalidTransition(
            from_value,
            to_value,
            f"Cannot transition from '{from_value}' - case is in a terminal state",
        )

    if to_value not in {status.value for status in allowed}:
        raise InvalidTransition(
            from_value,
            to_value,
            f"Invalid transition: '{from_value}' -> '{to_value}'. "
            f"Allowed: {', '.join(status.value for status in allowed)}",
        )


def available_transitions(status) -> List[Tuple[CaseStatus, str]]:
    """Next statuses reachable from status, with their action labels"""
    try:
        source = CaseStatus(_status_value(status))
    except ValueError:
        return []
    return [(target, TRANSITION_LABELS.get(target, target.value)) for target in STATUS_TRANSITIONS[source]]


class Case(SQLModel, table=True):
    """Case raised between a client facet and a vendor facet"""

    __tablename__ = "cases"

    case_id: str = Field(primary_key=True, max_length=32)
    client_id: str = Field(index=True, max_length=32, description="TC- facet, immutable")
    vendor_id: str = Field(index=True, max_length=32, description="TV- facet, immutable")
    relationship_id: Optional[str] = Field(
        default=None,
        foreign_key="tenant_relationships.relationship_id",
        nullable=True,
    )

    subject: str = Field(max_length=500)
    description: Optional[str] = None
    case_type: CaseType = Field(default=CaseType.GENERAL, sa_type=enum_column(CaseType))
    priority: CasePriority = Field(default=CasePriority.NORMAL, index=True, sa_type=enum_column(CasePriority))
    status: CaseStatus = Field(default=CaseStatus.OPEN, index=True, sa_type=enum_column(CaseStatus))

    created_by_user_id: Optional[str] = Field(default=None, max_length=32)

    resolved_at: Optional[datetime] = None
    resolved_by: Optional[str] = Field(default=None, max_length=32)
    closed_at: Optional[datetime] = None
    closed_by: Optional[str] = Field(default=None, max_length=32)

    created_at: datetime = Field(default_factory=datetime.utcnow, index=True)
    updated_at: Optional[datetime] = None
    version: int = Field(
        default=0,
        description="Optimistic concurrency version",
    )

    def transition_values(self, to_status: CaseStatus, user_id: str) -> Dict[str, object]:
        """
        Column values for moving to to_status, after validating the edge

        The caller writes them conditionally on the version it read, so the
        instance itself is left untouched.
        """
        validate_transition(self.status, to_status)
        target = CaseStatus(_status_value(to_status))
        now = datetime.utcnow()

        values: Dict[str, object] = {
            "status": target,
            "updated_at": now,
            "version": self.version + 1,
        }
        if target == CaseStatus.RESOLVED:
            values.update(resolved_at=now, resolved_by=user_id)
        elif target == CaseStatus.CLOSED:
            values.update(closed_at=now, closed_by=user_id)
        return values

    def available_transitions(self) -> List[Tuple[CaseStatus, str]]:
        return available_transitions(self.status)


@event.listens_for(Case, "before_update")
def _guard_case_parties(mapper, connection, target: Case) -> None:
    state = inspect(target)
    for column in ("client_id", "vendor_id"):
        if state.attrs[column].history.has_changes():
            raise ValueError(f"Cannot change {column} of an existing case")
