"""
Test configuration for pytest
"""

import os

# Test environment variables, set before any opsportal import reads settings
os.environ["DATABASE_URL"] = "sqlite+aiosqlite:///:memory:"
os.environ["ENVIRONMENT"] = "test"
os.environ["DEBUG"] = "false"
os.environ["SECRET_KEY"] = "test-secret-key"
os.environ["IDENTITY_PROVIDER_JWT_SECRET"] = "test-jwt-secret"

import email_validator

# Fixtures use addresses under the reserved ".test" TLD, which email-validator
# rejects by default; allow it for the test environment only
email_validator.SPECIAL_USE_DOMAIN_NAMES = [
    name for name in email_validator.SPECIAL_USE_DOMAIN_NAMES if name != "test"
]

import pytest
from dataclasses import dataclass
from typing import Dict, List, Optional
from unittest.mock import AsyncMock

from sqlmodel import SQLModel
from sqlmodel.ext.asyncio.session import AsyncSession

import opsportal.models  # noqa: F401  registers tables
from opsportal.core.database import build_engine
from opsportal.core.events import event_bus
from opsportal.core.errors import EvidenceUploadFailed
from opsportal.models import ContextRole, Tenant, User, UserRole
from opsportal.services import case_lifecycle
from opsportal.services import relationship_graph as graph
from opsportal.services.access_guard import OwnerScope
from opsportal.services.evidence_storage import EvidenceStorage
from opsportal.services.identity_provider import IdentityProviderGateway
from opsportal.services.notifications import RecordingNotificationDispatcher, register_notification_handlers


@pytest.fixture
async def db():
    """Create a clean database session for each test"""
    engine = build_engine("sqlite+aiosqlite://")
    async with engine.begin() as conn:
        await conn.run_sync(SQLModel.metadata.create_all)

    async with AsyncSession(engine, expire_on_commit=False) as session:
        yield session

    await engine.dispose()


@pytest.fixture(autouse=True)
def clean_event_bus():
    event_bus.clear_subscribers()
    yield
    event_bus.clear_subscribers()


@pytest.fixture
def notifications() -> RecordingNotificationDispatcher:
    dispatcher = RecordingNotificationDispatcher()
    register_notification_handlers(event_bus, dispatcher)
    return dispatcher


@pytest.fixture
def gateway() -> AsyncMock:
    """Identity provider double; tests set return values per call"""
    return AsyncMock(spec=IdentityProviderGateway)


class InMemoryEvidenceStorage(EvidenceStorage):
    """Evidence storage double that keeps objects in a dict"""

    def __init__(self):
        self.objects: Dict[str, bytes] = {}
        self.removed: List[str] = []
        self.fail_uploads = False

    async def upload(self, path: str, data: bytes, content_type: str) -> None:
        if self.fail_uploads:
            raise EvidenceUploadFailed()
        if path in self.objects:
            raise EvidenceUploadFailed("Object already exists")
        self.objects[path] = data

    async def signed_url(self, path: str, expires_in: int) -> str:
        return f"https://storage.test/signed/{path}?expires_in={expires_in}"

    async def remove(self, path: str) -> None:
        self.removed.append(path)
        self.objects.pop(path, None)


@pytest.fixture
def storage() -> InMemoryEvidenceStorage:
    return InMemoryEvidenceStorage()


@dataclass
class Member:
    tenant: Tenant
    user: User

    def scope(self, role: ContextRole) -> OwnerScope:
        return OwnerScope.for_tenant(self.tenant, role)

    @property
    def as_client(self) -> OwnerScope:
        return self.scope(ContextRole.CLIENT)

    @property
    def as_vendor(self) -> OwnerScope:
        return self.scope(ContextRole.VENDOR)


@pytest.fixture
def make_member(db: AsyncSession):
    """Create a tenant with an owner user"""

    async def _make(
        name: str,
        email: Optional[str] = None,
        password: Optional[str] = None,
        role: UserRole = UserRole.OWNER,
        auth_user_id: Optional[str] = None,
    ) -> Member:
        email = email or f"owner@{name.lower().replace(' ', '-')}.test"
        tenant = await graph.create_tenant(db, name=name, email=email)
        user = await graph.create_user(
            db,
            tenant,
            email=email,
            display_name=f"{name} Owner",
            password=password,
            role=role,
            auth_user_id=auth_user_id,
        )
        await db.commit()
        return Member(tenant=tenant, user=user)

    return _make


@pytest.fixture
def link(db: AsyncSession):
    """Create an active relationship: client buys from vendor"""

    async def _link(client: Member, vendor: Member):
        relationship = await graph.create_relationship(
            db, client.tenant.tenant_client_id, vendor.tenant.tenant_vendor_id
        )
        await db.commit()
        return relationship

    return _link


@dataclass
class PortalGraph:
    """
    alpha buys from beta; gamma is unrelated to both

    CASE-1 is open between alpha's client facet and beta's vendor facet.
    """
    alpha: Member
    beta: Member
    gamma: Member
    case_id: str


@pytest.fixture
async def portal_graph(db, make_member, link) -> PortalGraph:
    alpha = await make_member("Alpha Foods")
    beta = await make_member("Beta Logistics")
    gamma = await make_member("Gamma Traders")
    await link(alpha, beta)

    case = await case_lifecycle.create_case(
        db,
        alpha.as_client,
        alpha.user,
        counterparty_facet_id=beta.tenant.tenant_vendor_id,
        subject="Late delivery of order 1042",
    )
    return PortalGraph(alpha=alpha, beta=beta, gamma=gamma, case_id=case.case_id)
