"""
API schemas for cases, timeline entries and evidence
"""

from pydantic import BaseModel, Field
from datetime import datetime
from typing import Any, Dict, List, Optional

from opsportal.models.case import CasePriority, CaseStatus, CaseType
from opsportal.models.case_evidence import EvidenceType
from opsportal.models.case_timeline import SenderContext, TimelineMessageType
from opsportal.models.tenant import ContextRole


class CaseCreate(BaseModel):
    counterparty_id: str = Field(..., max_length=32, description="Facet on the other side of the relationship")
    subject: str = Field(..., min_length=1, max_length=500)
    description: Optional[str] = None
    case_type: CaseType = CaseType.GENERAL
    priority: CasePriority = CasePriority.NORMAL


class CaseTransitionRequest(BaseModel):
    to_status: CaseStatus
    note: Optional[str] = Field(default=None, max_length=5000)


class CaseMessageCreate(BaseModel):
    body: str = Field(..., min_length=1, max_length=10000)
    message_type: TimelineMessageType = TimelineMessageType.MESSAGE


class CaseRead(BaseModel):
    case_id: str
    client_id: str
    vendor_id: str
    relationship_id: Optional[str] = None
    subject: str
    description: Optional[str] = None
    case_type: CaseType
    priority: CasePriority
    status: CaseStatus
    created_by_user_id: Optional[str] = None
    resolved_at: Optional[datetime] = None
    resolved_by: Optional[str] = None
    closed_at: Optional[datetime] = None
    closed_by: Optional[str] = None
    created_at: datetime
    updated_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class CaseListResponse(BaseModel):
    items: List[CaseRead]
    total: int
    limit: int
    offset: int


class TimelineEntryRead(BaseModel):
    message_id: str
    case_id: str
    sender_user_id: str
    sender_context: SenderContext
    sender_context_id: Optional[str] = None
    body: str
    message_type: TimelineMessageType
    metadata: Dict[str, Any] = Field(default_factory=dict, validation_alias="entry_metadata")
    created_at: datetime

    class Config:
        from_attributes = True


class EvidenceRead(BaseModel):
    evidence_id: str
    case_id: str
    uploader_user_id: str
    uploader_context: ContextRole
    original_filename: str
    file_type: str
    file_size: int
    evidence_type: EvidenceType
    created_at: datetime

    class Config:
        from_attributes = True


class TransitionOption(BaseModel):
    status: CaseStatus
    label: str


class CaseDetailResponse(BaseModel):
    case: CaseRead
    timeline: List[TimelineEntryRead]
    evidence: List[EvidenceRead]
    available_transitions: List[TransitionOption]


class CaseTransitionResponse(BaseModel):
    case: CaseRead
    from_status: CaseStatus
    to_status: CaseStatus
    events: List[TimelineEntryRead]


class EvidenceUrlResponse(BaseModel):
    url: str
    expires_in: int
