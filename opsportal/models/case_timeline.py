"""
Case timeline entry - append-only audit and conversation log
"""

from sqlmodel import Field, SQLModel
from sqlalchemy import Column, JSON, event
from datetime import datetime
from typing import Optional
from enum import Enum

from opsportal.models.base import enum_column


class SenderContext(str, Enum):
    SYSTEM = "system"
    CLIENT = "client"
    VENDOR = "vendor"


class TimelineMessageType(str, Enum):
    STATUS_CHANGE = "status_change"
    NOTE = "note"
    MESSAGE = "message"


class CaseTimelineEntry(SQLModel, table=True):
    """Immutable entry on a case timeline"""

    __tablename__ = "case_timeline_entries"

    message_id: str = Field(primary_key=True, max_length=32)
    case_id: str = Field(foreign_key="cases.case_id", index=True)

    sender_user_id: str = Field(max_length=32)
    sender_tenant_id: str = Field(max_length=32)
    sender_context: SenderContext = Field(sa_type=enum_column(SenderContext, length=16))
    sender_context_id: Optional[str] = Field(default=None, max_length=32)

    body: str
    message_type: TimelineMessageType = Field(
        default=TimelineMessageType.MESSAGE,
        sa_type=enum_column(TimelineMessageType),
    )
    entry_metadata: dict = Field(
        default_factory=dict,
        sa_column=Column("metadata", JSON, nullable=False),
    )

    created_at: datetime = Field(default_factory=datetime.utcnow, index=True)


@event.listens_for(CaseTimelineEntry, "before_update")
def _reject_update(mapper, connection, target: CaseTimelineEntry) -> None:
    raise ValueError(f"Timeline entry {target.message_id} is append-only")


@event.listens_for(CaseTimelineEntry, "before_delete")
def _reject_delete(mapper, connection, target: CaseTimelineEntry) -> None:
    raise ValueError(f"Timeline entry {target.message_id} is append-only")
