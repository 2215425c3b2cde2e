"""
Request dependencies for FastAPI

Services created at startup live on app.state; these functions hand them to
endpoints and resolve the session, user, tenant and active context of a
request.
"""

from dataclasses import dataclass
from typing import Callable

from fastapi import Depends, Request
from sqlmodel.ext.asyncio.session import AsyncSession
import structlog

from opsportal.core.config import get_settings
from opsportal.core.database import get_session
from opsportal.core.errors import AuthenticationFailure
from opsportal.core.permissions import Permission, ensure_permission
from opsportal.models import PortalSession, Tenant, User
from opsportal.services.access_guard import OwnerScope
from opsportal.services.context_resolver import ContextSummary, load_context, require_active_scope
from opsportal.services.evidence_storage import EvidenceStorage
from opsportal.services.identity_provider import IdentityProviderGateway
from opsportal.services.session_sync import SessionClaimsSynchronizer

logger = structlog.get_logger(__name__)
settings = get_settings()


def get_gateway(request: Request) -> IdentityProviderGateway:
    return request.app.state.identity_gateway


def get_evidence_storage(request: Request) -> EvidenceStorage:
    return request.app.state.evidence_storage


def get_synchronizer(request: Request) -> SessionClaimsSynchronizer:
    return request.app.state.synchronizer


async def get_current_session(
    request: Request,
    db: AsyncSession = Depends(get_session),
    synchronizer: SessionClaimsSynchronizer = Depends(get_synchronizer),
) -> PortalSession:
    """Portal session from the session cookie"""
    session = await synchronizer.get_session(db, request.cookies.get(settings.SESSION_COOKIE_NAME))
    if session is None:
        raise AuthenticationFailure("Not authenticated")
    return session


@dataclass
class RequestContext:
    session: PortalSession
    user: User
    tenant: Tenant
    summary: ContextSummary

    @property
    def scope(self) -> OwnerScope:
        return require_active_scope(self.summary, self.tenant)


async def get_request_context(
    session: PortalSession = Depends(get_current_session),
    db: AsyncSession = Depends(get_session),
) -> RequestContext:
    user = await db.get(User, session.user_id)
    if user is None or not user.is_active:
        logger.info("Session user missing or inactive", user_id=session.user_id)
        raise AuthenticationFailure("Not authenticated")

    tenant = await db.get(Tenant, session.tenant_id)
    if tenant is None:
        raise AuthenticationFailure("Not authenticated")

    summary = await load_context(db, session, tenant)
    return RequestContext(session=session, user=user, tenant=tenant, summary=summary)


async def require_scope(context: RequestContext = Depends(get_request_context)) -> OwnerScope:
    """Active owner scope; dual-context tenants without a selection are refused"""
    return context.scope


def require_permission(permission: Permission) -> Callable:
    """Dependency factory that checks the user's role grants permission"""

    async def checker(context: RequestContext = Depends(get_request_context)) -> RequestContext:
        ensure_permission(context.user.role, permission)
        return context

    return checker
