"""
Case Lifecycle Engine

Creation, transitions, messages and evidence for cases. Every operation
starts from a scoped read through the access guard; nothing is written
unless that read returned the case.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import List, Optional, Tuple

import structlog
from sqlalchemy import update
from sqlmodel import col, select
from sqlmodel.ext.asyncio.session import AsyncSession

from opsportal.core.config import get_settings
from opsportal.core.errors import AuthorizationDenied, EvidenceRejected, InvalidTransition
from opsportal.core.events import (
    CaseCreated,
    CaseMessagePosted,
    CaseStatusChanged,
    EvidenceAttached,
    event_bus,
)
from opsportal.core.ids import generate_id
from opsportal.models import (
    Case,
    CaseEvidence,
    CasePriority,
    CaseStatus,
    CaseTimelineEntry,
    CaseType,
    EvidenceType,
    SenderContext,
    TimelineMessageType,
    User,
)
from opsportal.services import access_guard
from opsportal.services.access_guard import OwnerScope
from opsportal.services.evidence_storage import EvidenceStorage
from opsportal.services.relationship_graph import get_active_relationship

logger = structlog.get_logger(__name__)

MAX_EVIDENCE_BYTES = 10 * 1024 * 1024

ALLOWED_EVIDENCE_TYPES = {
    "application/pdf": (".pdf",),
    "image/png": (".png",),
    "image/jpeg": (".jpg", ".jpeg"),
    "image/jpg": (".jpg", ".jpeg"),
    "application/vnd.openxmlformats-officedocument.wordprocessingml.document": (".docx",),
    "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet": (".xlsx",),
}


@dataclass
class TransitionResult:
    case: Case
    from_status: CaseStatus
    to_status: CaseStatus
    events: List[CaseTimelineEntry] = field(default_factory=list)


@dataclass
class CaseDetail:
    case: Case
    timeline: List[CaseTimelineEntry]
    evidence: List[CaseEvidence]
    available_transitions: List[Tuple[CaseStatus, str]]


def _counterparty(case: Case, scope: OwnerScope) -> str:
    return case.vendor_id if scope.is_client else case.client_id


async def create_case(
    db: AsyncSession,
    scope: OwnerScope,
    actor: User,
    counterparty_facet_id: str,
    subject: str,
    description: Optional[str] = None,
    case_type: CaseType = CaseType.GENERAL,
    priority: CasePriority = CasePriority.NORMAL,
) -> Case:
    """Open a case against a counterparty the scope has an active relationship with"""
    client_id, vendor_id = (
        (scope.facet_id, counterparty_facet_id) if scope.is_client else (counterparty_facet_id, scope.facet_id)
    )
    relationship = await get_active_relationship(db, client_id, vendor_id)
    if relationship is None:
        raise AuthorizationDenied("You have no active relationship with that counterparty")

    case = Case(
        case_id=generate_id("CASE"),
        client_id=client_id,
        vendor_id=vendor_id,
        relationship_id=relationship.relationship_id,
        subject=subject.strip(),
        description=description,
        case_type=case_type,
        priority=priority,
        status=CaseStatus.OPEN,
        created_by_user_id=actor.user_id,
    )
    db.add(case)
    await db.commit()
    await db.refresh(case)

    logger.info("Case created", case_id=case.case_id, client_id=client_id, vendor_id=vendor_id, role=scope.role.value)
    await event_bus.publish(
        CaseCreated(
            case_id=case.case_id,
            client_id=client_id,
            vendor_id=vendor_id,
            created_by_user_id=actor.user_id,
            created_by_context=scope.role.value,
            subject=case.subject,
        )
    )
    return case


async def transition_case(
    db: AsyncSession,
    case_id: str,
    scope: OwnerScope,
    actor: User,
    to_status: CaseStatus,
    note: Optional[str] = None,
) -> TransitionResult:
    """
    Move a case along one edge of the workflow

    The status update, the system timeline entry and the optional note are
    committed together. The update only matches the version that was read,
    so of two overlapping identical requests one wins and the other gets
    InvalidTransition.
    """
    case = await access_guard.get_case(db, case_id, scope)
    from_status = CaseStatus(case.status)
    values = case.transition_values(to_status, actor.user_id)
    target = values["status"]

    result = await db.execute(
        update(Case)
        .where(col(Case.case_id) == case.case_id, col(Case.version) == case.version)
        .values(**values)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        logger.warning("Case transition lost to a concurrent update", case_id=case.case_id, to_status=target.value)
        await db.rollback()
        raise InvalidTransition(
            from_status.value,
            target.value,
            "Case was modified by another request. Refresh and try again.",
        )

    system_entry = CaseTimelineEntry(
        message_id=generate_id("MSG"),
        case_id=case.case_id,
        sender_user_id=actor.user_id,
        sender_tenant_id=actor.tenant_id,
        sender_context=SenderContext.SYSTEM,
        sender_context_id=scope.facet_id,
        body=f"Status changed from {from_status.value} to {target.value}",
        message_type=TimelineMessageType.STATUS_CHANGE,
        entry_metadata={
            "from_status": from_status.value,
            "to_status": target.value,
            "changed_by_user_id": actor.user_id,
            "changed_by_tenant_id": actor.tenant_id,
            "changed_by_context": scope.role.value,
        },
    )
    entries = [system_entry]

    if note and note.strip():
        entries.append(
            CaseTimelineEntry(
                message_id=generate_id("MSG"),
                case_id=case.case_id,
                sender_user_id=actor.user_id,
                sender_tenant_id=actor.tenant_id,
                sender_context=SenderContext(scope.role.value),
                sender_context_id=scope.facet_id,
                body=note.strip(),
                message_type=TimelineMessageType.NOTE,
            )
        )

    for entry in entries:
        db.add(entry)
    await db.commit()
    await db.refresh(case)

    logger.info(
        "Case transitioned",
        case_id=case.case_id,
        from_status=from_status.value,
        to_status=case.status.value,
        role=scope.role.value,
        user_id=actor.user_id,
    )
    await event_bus.publish(
        CaseStatusChanged(
            case_id=case.case_id,
            client_id=case.client_id,
            vendor_id=case.vendor_id,
            from_status=from_status.value,
            to_status=case.status.value,
            changed_by_user_id=actor.user_id,
            changed_by_tenant_id=actor.tenant_id,
            changed_by_context=scope.role.value,
        )
    )
    return TransitionResult(case=case, from_status=from_status, to_status=case.status, events=entries)


async def add_message(
    db: AsyncSession,
    case_id: str,
    scope: OwnerScope,
    actor: User,
    body: str,
    message_type: TimelineMessageType = TimelineMessageType.MESSAGE,
) -> CaseTimelineEntry:
    """Append a message or note from the acting side"""
    if message_type == TimelineMessageType.STATUS_CHANGE:
        raise ValueError("Status changes are recorded by transitions only")

    case = await access_guard.get_case(db, case_id, scope)
    entry = CaseTimelineEntry(
        message_id=generate_id("MSG"),
        case_id=case.case_id,
        sender_user_id=actor.user_id,
        sender_tenant_id=actor.tenant_id,
        sender_context=SenderContext(scope.role.value),
        sender_context_id=scope.facet_id,
        body=body.strip(),
        message_type=message_type,
    )
    db.add(entry)
    case.updated_at = datetime.utcnow()
    db.add(case)
    await db.commit()
    await db.refresh(entry)

    await event_bus.publish(
        CaseMessagePosted(
            case_id=case.case_id,
            message_id=entry.message_id,
            recipient_id=_counterparty(case, scope),
            sender_user_id=actor.user_id,
            sender_context=scope.role.value,
            message_type=message_type.value,
        )
    )
    return entry


async def get_timeline(db: AsyncSession, case_id: str, scope: OwnerScope) -> List[CaseTimelineEntry]:
    case = await access_guard.get_case(db, case_id, scope)
    result = await db.exec(
        select(CaseTimelineEntry)
        .where(CaseTimelineEntry.case_id == case.case_id)
        .order_by(col(CaseTimelineEntry.created_at), col(CaseTimelineEntry.message_id))
    )
    return list(result.all())


async def get_case_detail(db: AsyncSession, case_id: str, scope: OwnerScope) -> CaseDetail:
    case = await access_guard.get_case(db, case_id, scope)
    timeline = await db.exec(
        select(CaseTimelineEntry)
        .where(CaseTimelineEntry.case_id == case.case_id)
        .order_by(col(CaseTimelineEntry.created_at), col(CaseTimelineEntry.message_id))
    )
    evidence = await db.exec(
        select(CaseEvidence)
        .where(CaseEvidence.case_id == case.case_id)
        .order_by(col(CaseEvidence.created_at))
    )
    return CaseDetail(
        case=case,
        timeline=list(timeline.all()),
        evidence=list(evidence.all()),
        available_transitions=case.available_transitions(),
    )


def validate_evidence_file(filename: str, content_type: str, size: int) -> None:
    """Raise EvidenceRejected unless the file fits size and type constraints"""
    if not filename or size <= 0:
        raise EvidenceRejected("No file provided")
    if size > MAX_EVIDENCE_BYTES:
        raise EvidenceRejected(f"File too large. Maximum size is {MAX_EVIDENCE_BYTES // (1024 * 1024)}MB")

    extensions = ALLOWED_EVIDENCE_TYPES.get(content_type)
    if extensions is None:
        raise EvidenceRejected("Invalid file type. Allowed: PDF, PNG, JPG, DOCX, XLSX")
    if not filename.lower().endswith(extensions):
        raise EvidenceRejected("Invalid file extension")


def evidence_type_for(content_type: str) -> EvidenceType:
    if content_type.startswith("image/"):
        return EvidenceType.IMAGE
    if content_type == "application/pdf" or "spreadsheet" in content_type or "wordprocessing" in content_type:
        return EvidenceType.DOCUMENT
    return EvidenceType.OTHER


async def attach_evidence(
    db: AsyncSession,
    storage: EvidenceStorage,
    case_id: str,
    scope: OwnerScope,
    actor: User,
    filename: str,
    content_type: str,
    data: bytes,
) -> CaseEvidence:
    """Store a file and link it to the case. Case status is never touched."""
    case = await access_guard.get_case(db, case_id, scope)
    validate_evidence_file(filename, content_type, len(data))

    evidence_id = generate_id("EVD")
    extension = filename.rsplit(".", 1)[-1].lower()
    storage_path = f"cases/{case.case_id}/{evidence_id}_{int(datetime.utcnow().timestamp() * 1000)}.{extension}"

    await storage.upload(storage_path, data, content_type)

    evidence = CaseEvidence(
        evidence_id=evidence_id,
        case_id=case.case_id,
        uploader_user_id=actor.user_id,
        uploader_tenant_id=actor.tenant_id,
        uploader_context=scope.role,
        original_filename=filename,
        file_type=content_type,
        file_size=len(data),
        storage_path=storage_path,
        evidence_type=evidence_type_for(content_type),
    )
    db.add(evidence)
    try:
        await db.commit()
    except Exception:
        await db.rollback()
        await storage.remove(storage_path)
        raise
    await db.refresh(evidence)

    logger.info("Evidence attached", case_id=case.case_id, evidence_id=evidence_id, size=len(data))
    await event_bus.publish(
        EvidenceAttached(
            case_id=case.case_id,
            evidence_id=evidence_id,
            recipient_id=_counterparty(case, scope),
            uploaded_by_user_id=actor.user_id,
            file_name=filename,
        )
    )
    return evidence


async def evidence_download_url(
    db: AsyncSession,
    storage: EvidenceStorage,
    case_id: str,
    evidence_id: str,
    scope: OwnerScope,
) -> str:
    evidence = await access_guard.get_evidence(db, case_id, evidence_id, scope)
    return await storage.signed_url(evidence.storage_path, get_settings().EVIDENCE_URL_TTL_SECONDS)
