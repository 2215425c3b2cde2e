"""
Tests for case evidence upload, validation and download links
"""

import httpx
import pytest
from unittest.mock import AsyncMock

from sqlalchemy.exc import SQLAlchemyError

from opsportal.core.config import Settings
from opsportal.core.errors import EvidenceRejected, EvidenceUploadFailed, NotFound
from opsportal.models import Case, CaseEvidence, CaseStatus, ContextRole, EvidenceType
from opsportal.services import case_lifecycle
from opsportal.services.case_lifecycle import MAX_EVIDENCE_BYTES, validate_evidence_file
from opsportal.services.evidence_storage import HttpEvidenceStorage

PDF = b"%PDF-1.4 delivery note"


@pytest.mark.parametrize(
    "filename,content_type,size,message",
    [
        ("", "application/pdf", 10, "No file provided"),
        ("note.pdf", "application/pdf", 0, "No file provided"),
        ("huge.pdf", "application/pdf", MAX_EVIDENCE_BYTES + 1, "File too large. Maximum size is 10MB"),
        ("script.sh", "text/x-shellscript", 10, "Invalid file type. Allowed: PDF, PNG, JPG, DOCX, XLSX"),
        ("photo.png", "application/pdf", 10, "Invalid file extension"),
    ],
)
def test_rejected_files(filename, content_type, size, message):
    with pytest.raises(EvidenceRejected) as exc_info:
        validate_evidence_file(filename, content_type, size)
    assert exc_info.value.message == message


def test_accepted_files():
    validate_evidence_file("scan.JPEG", "image/jpeg", 2048)
    validate_evidence_file("ledger.xlsx", "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet", 1)
    validate_evidence_file("exact.pdf", "application/pdf", MAX_EVIDENCE_BYTES)


async def test_attach_evidence(db, portal_graph, storage, notifications):
    beta = portal_graph.beta

    evidence = await case_lifecycle.attach_evidence(
        db, storage, portal_graph.case_id, beta.as_vendor, beta.user, "POD.pdf", "application/pdf", PDF
    )

    assert evidence.storage_path.startswith(f"cases/{portal_graph.case_id}/{evidence.evidence_id}_")
    assert evidence.storage_path.endswith(".pdf")
    assert storage.objects[evidence.storage_path] == PDF
    assert evidence.uploader_context == ContextRole.VENDOR
    assert evidence.evidence_type == EvidenceType.DOCUMENT
    assert evidence.file_size == len(PDF)

    case = await db.get(Case, portal_graph.case_id)
    assert case.status == CaseStatus.OPEN
    assert notifications.of_type("case_evidence")[0]["recipient"] == portal_graph.alpha.tenant.tenant_client_id


async def test_failed_upload_leaves_no_row(db, portal_graph, storage):
    alpha = portal_graph.alpha
    storage.fail_uploads = True

    with pytest.raises(EvidenceUploadFailed):
        await case_lifecycle.attach_evidence(
            db, storage, portal_graph.case_id, alpha.as_client, alpha.user, "POD.pdf", "application/pdf", PDF
        )

    detail = await case_lifecycle.get_case_detail(db, portal_graph.case_id, alpha.as_client)
    assert detail.evidence == []
    assert detail.case.status == CaseStatus.OPEN


async def test_failed_insert_removes_stored_object(db, portal_graph, storage, monkeypatch):
    alpha = portal_graph.alpha
    monkeypatch.setattr(db, "commit", AsyncMock(side_effect=SQLAlchemyError("insert failed")))

    with pytest.raises(SQLAlchemyError):
        await case_lifecycle.attach_evidence(
            db, storage, portal_graph.case_id, alpha.as_client, alpha.user, "POD.pdf", "application/pdf", PDF
        )

    assert len(storage.removed) == 1
    assert storage.objects == {}


async def test_outsider_cannot_attach(db, portal_graph, storage):
    gamma = portal_graph.gamma
    with pytest.raises(NotFound):
        await case_lifecycle.attach_evidence(
            db, storage, portal_graph.case_id, gamma.as_client, gamma.user, "POD.pdf", "application/pdf", PDF
        )
    assert storage.objects == {}


async def test_download_url_is_scoped(db, portal_graph, storage):
    alpha, gamma = portal_graph.alpha, portal_graph.gamma
    evidence = await case_lifecycle.attach_evidence(
        db, storage, portal_graph.case_id, alpha.as_client, alpha.user, "photo.png", "image/png", b"\x89PNG"
    )

    url = await case_lifecycle.evidence_download_url(
        db, storage, portal_graph.case_id, evidence.evidence_id, portal_graph.beta.as_vendor
    )
    assert url == f"https://storage.test/signed/{evidence.storage_path}?expires_in=3600"

    with pytest.raises(NotFound):
        await case_lifecycle.evidence_download_url(
            db, storage, portal_graph.case_id, evidence.evidence_id, gamma.as_vendor
        )
    stored = await db.get(CaseEvidence, evidence.evidence_id)
    assert stored.evidence_type == EvidenceType.IMAGE


# HTTP storage client

def _storage(handler) -> HttpEvidenceStorage:
    settings = Settings(STORAGE_URL="https://storage.example/storage/v1", STORAGE_BUCKET="evidence")
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler), base_url=settings.STORAGE_URL)
    return HttpEvidenceStorage(settings, client=client)


async def test_http_upload_never_overwrites():
    seen = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(200, json={"Key": "evidence/cases/x.pdf"})

    storage = _storage(handler)
    await storage.upload("cases/CASE-1/x.pdf", PDF, "application/pdf")

    (request,) = seen
    assert request.url.path == "/storage/v1/object/evidence/cases/CASE-1/x.pdf"
    assert request.headers["x-upsert"] == "false"
    assert request.headers["content-type"] == "application/pdf"
    assert request.content == PDF


async def test_http_upload_rejected():
    storage = _storage(lambda request: httpx.Response(409, json={"error": "Duplicate"}))
    with pytest.raises(EvidenceUploadFailed):
        await storage.upload("cases/CASE-1/x.pdf", PDF, "application/pdf")


async def test_http_signed_url_made_absolute():
    storage = _storage(lambda request: httpx.Response(200, json={"signedURL": "/object/sign/evidence/x.pdf?token=t"}))
    url = await storage.signed_url("x.pdf", 60)
    assert url == "https://storage.example/storage/v1/object/sign/evidence/x.pdf?token=t"


async def test_http_remove_failure_is_logged_not_raised():
    storage = _storage(lambda request: httpx.Response(500))
    await storage.remove("cases/CASE-1/x.pdf")
