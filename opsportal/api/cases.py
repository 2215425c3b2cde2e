"""
Cases API endpoints
"""

from fastapi import APIRouter, Depends, File, Query, UploadFile
from sqlmodel.ext.asyncio.session import AsyncSession
from typing import List, Optional
import structlog

from opsportal.core.config import get_settings
from opsportal.core.database import get_session
from opsportal.core.dependencies import RequestContext, get_evidence_storage, require_permission
from opsportal.core.permissions import Permission
from opsportal.models import CasePriority, CaseStatus
from opsportal.schemas.case import (
    CaseCreate,
    CaseDetailResponse,
    CaseListResponse,
    CaseMessageCreate,
    CaseRead,
    CaseTransitionRequest,
    CaseTransitionResponse,
    EvidenceRead,
    EvidenceUrlResponse,
    TimelineEntryRead,
    TransitionOption,
)
from opsportal.services import access_guard, case_lifecycle
from opsportal.services.evidence_storage import EvidenceStorage

logger = structlog.get_logger(__name__)
router = APIRouter()
settings = get_settings()


@router.get("/", response_model=CaseListResponse)
async def list_cases(
    status: Optional[CaseStatus] = None,
    priority: Optional[CasePriority] = None,
    search: Optional[str] = Query(default=None, max_length=200),
    counterparty_id: Optional[str] = None,
    limit: int = Query(default=50, ge=1, le=200),
    offset: int = Query(default=0, ge=0),
    context: RequestContext = Depends(require_permission(Permission.CASE_VIEW)),
    db: AsyncSession = Depends(get_session),
):
    """Cases of the active facet, newest first"""
    cases, total = await access_guard.list_cases(
        db,
        context.scope,
        status=status,
        priority=priority,
        search=search,
        counterparty_id=counterparty_id,
        limit=limit,
        offset=offset,
    )
    return CaseListResponse(
        items=[CaseRead.model_validate(case) for case in cases],
        total=total,
        limit=limit,
        offset=offset,
    )


@router.post("/", response_model=CaseRead, status_code=201)
async def create_case(
    case_data: CaseCreate,
    context: RequestContext = Depends(require_permission(Permission.CASE_CREATE)),
    db: AsyncSession = Depends(get_session),
):
    """Open a case with a counterparty of the active facet"""
    case = await case_lifecycle.create_case(
        db,
        context.scope,
        context.user,
        counterparty_facet_id=case_data.counterparty_id,
        subject=case_data.subject,
        description=case_data.description,
        case_type=case_data.case_type,
        priority=case_data.priority,
    )
    return CaseRead.model_validate(case)


@router.get("/{case_id}", response_model=CaseDetailResponse)
async def get_case(
    case_id: str,
    context: RequestContext = Depends(require_permission(Permission.CASE_VIEW)),
    db: AsyncSession = Depends(get_session),
):
    """Case with its timeline, evidence and next available transitions"""
    detail = await case_lifecycle.get_case_detail(db, case_id, context.scope)
    return CaseDetailResponse(
        case=CaseRead.model_validate(detail.case),
        timeline=[TimelineEntryRead.model_validate(entry) for entry in detail.timeline],
        evidence=[EvidenceRead.model_validate(item) for item in detail.evidence],
        available_transitions=[
            TransitionOption(status=status, label=label) for status, label in detail.available_transitions
        ],
    )


@router.get("/{case_id}/timeline", response_model=List[TimelineEntryRead])
async def get_timeline(
    case_id: str,
    context: RequestContext = Depends(require_permission(Permission.CASE_VIEW)),
    db: AsyncSession = Depends(get_session),
):
    entries = await case_lifecycle.get_timeline(db, case_id, context.scope)
    return [TimelineEntryRead.model_validate(entry) for entry in entries]


@router.post("/{case_id}/transition", response_model=CaseTransitionResponse)
async def transition_case(
    case_id: str,
    transition_data: CaseTransitionRequest,
    context: RequestContext = Depends(require_permission(Permission.CASE_TRANSITION)),
    db: AsyncSession = Depends(get_session),
):
    """Move the case to its next workflow status"""
    result = await case_lifecycle.transition_case(
        db,
        case_id,
        context.scope,
        context.user,
        transition_data.to_status,
        note=transition_data.note,
    )
    return CaseTransitionResponse(
        case=CaseRead.model_validate(result.case),
        from_status=result.from_status,
        to_status=result.to_status,
        events=[TimelineEntryRead.model_validate(entry) for entry in result.events],
    )


@router.post("/{case_id}/messages", response_model=TimelineEntryRead, status_code=201)
async def post_message(
    case_id: str,
    message_data: CaseMessageCreate,
    context: RequestContext = Depends(require_permission(Permission.CASE_MESSAGE)),
    db: AsyncSession = Depends(get_session),
):
    entry = await case_lifecycle.add_message(
        db,
        case_id,
        context.scope,
        context.user,
        message_data.body,
        message_data.message_type,
    )
    return TimelineEntryRead.model_validate(entry)


@router.post("/{case_id}/evidence", response_model=EvidenceRead, status_code=201)
async def upload_evidence(
    case_id: str,
    file: UploadFile = File(...),
    context: RequestContext = Depends(require_permission(Permission.CASE_EVIDENCE_UPLOAD)),
    db: AsyncSession = Depends(get_session),
    storage: EvidenceStorage = Depends(get_evidence_storage),
):
    """Attach a file to the case"""
    data = await file.read()
    evidence = await case_lifecycle.attach_evidence(
        db,
        storage,
        case_id,
        context.scope,
        context.user,
        filename=file.filename or "",
        content_type=file.content_type or "application/octet-stream",
        data=data,
    )
    return EvidenceRead.model_validate(evidence)


@router.get("/{case_id}/evidence/{evidence_id}/url", response_model=EvidenceUrlResponse)
async def evidence_url(
    case_id: str,
    evidence_id: str,
    context: RequestContext = Depends(require_permission(Permission.CASE_VIEW)),
    db: AsyncSession = Depends(get_session),
    storage: EvidenceStorage = Depends(get_evidence_storage),
):
    """Short-lived download link for an evidence file"""
    url = await case_lifecycle.evidence_download_url(db, storage, case_id, evidence_id, context.scope)
    return EvidenceUrlResponse(url=url, expires_in=settings.EVIDENCE_URL_TTL_SECONDS)
