"""
Evidence file attached to a case
"""

from sqlmodel import Field, SQLModel
from datetime import datetime
from enum import Enum

from opsportal.models.base import enum_column
from opsportal.models.tenant import ContextRole


class EvidenceType(str, Enum):
    DOCUMENT = "document"
    IMAGE = "image"
    OTHER = "other"


class CaseEvidence(SQLModel, table=True):
    """Metadata row for a stored evidence object"""

    __tablename__ = "case_evidence"

    evidence_id: str = Field(primary_key=True, max_length=32)
    case_id: str = Field(foreign_key="cases.case_id", index=True)

    uploader_user_id: str = Field(max_length=32)
    uploader_tenant_id: str = Field(max_length=32)
    uploader_context: ContextRole = Field(sa_type=enum_column(ContextRole, length=16))

    original_filename: str = Field(max_length=255)
    file_type: str = Field(max_length=255, description="MIME type")
    file_size: int
    storage_path: str = Field(max_length=500, unique=True)
    evidence_type: EvidenceType = Field(default=EvidenceType.DOCUMENT, sa_type=enum_column(EvidenceType))

    created_at: datetime = Field(default_factory=datetime.utcnow)
