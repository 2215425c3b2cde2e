"""
Authentication API endpoints
"""

from fastapi import APIRouter, Depends, Request, Response
from sqlmodel.ext.asyncio.session import AsyncSession
from typing import Optional
import structlog

from opsportal.core.auth import create_pending_profile_token, decode_pending_profile_token
from opsportal.core.config import get_settings
from opsportal.core.database import get_session
from opsportal.core.dependencies import get_current_session, get_synchronizer
from opsportal.core.errors import AuthenticationFailure
from opsportal.models import PortalSession, User
from opsportal.schemas.auth import (
    AcceptInviteRequest,
    CompleteProfileRequest,
    ForgotPasswordRequest,
    LoginRequest,
    LoginResponse,
    MessageResponse,
    OAuthExchangeRequest,
    OAuthExchangeResponse,
    RealtimeTokenResponse,
    SessionUserResponse,
    SignUpRequest,
)
from opsportal.services import relationship_graph as graph
from opsportal.services.session_sync import PendingProfile, SessionClaimsSynchronizer

logger = structlog.get_logger(__name__)
router = APIRouter()
settings = get_settings()


def _set_session_cookie(response: Response, session: PortalSession) -> None:
    response.set_cookie(
        key=settings.SESSION_COOKIE_NAME,
        value=session.id,
        max_age=settings.SESSION_TTL_HOURS * 3600,
        httponly=True,
        secure=not settings.is_development,
        samesite="lax",
        path="/",
    )


def _client_address(request: Request) -> Optional[str]:
    """Network origin of the request; X-Forwarded-For counts only from trusted proxies"""
    peer = request.client.host if request.client else None
    trusted = settings.TRUSTED_PROXIES
    if peer is None or peer not in trusted:
        return peer

    hops = [hop.strip() for hop in request.headers.get("x-forwarded-for", "").split(",") if hop.strip()]
    for hop in reversed(hops):
        if hop not in trusted:
            return hop
    return peer


async def _login_response(db: AsyncSession, session: PortalSession) -> LoginResponse:
    user = await db.get(User, session.user_id)
    return LoginResponse(
        user=SessionUserResponse.model_validate(user),
        active_context=session.active_context,
        active_context_id=session.active_context_id,
        # No active context yet: the portal page lets the tenant pick one
        redirect="/dashboard" if session.active_context else "/portal",
    )


@router.post("/login", response_model=LoginResponse)
async def login(
    login_data: LoginRequest,
    response: Response,
    db: AsyncSession = Depends(get_session),
    synchronizer: SessionClaimsSynchronizer = Depends(get_synchronizer),
):
    """Password login"""
    session = await synchronizer.login(db, login_data.email, login_data.password)
    _set_session_cookie(response, session)
    return await _login_response(db, session)


@router.post("/sign-up", response_model=LoginResponse, status_code=201)
async def sign_up(
    sign_up_data: SignUpRequest,
    response: Response,
    db: AsyncSession = Depends(get_session),
    synchronizer: SessionClaimsSynchronizer = Depends(get_synchronizer),
):
    """Register a tenant with a password and sign its owner in"""
    session = await synchronizer.sign_up(
        db,
        name=sign_up_data.name,
        email=sign_up_data.email,
        password=sign_up_data.password,
        role=sign_up_data.role,
        phone=sign_up_data.phone,
        client_code=sign_up_data.client_code,
    )
    _set_session_cookie(response, session)
    return await _login_response(db, session)


@router.post("/logout", response_model=MessageResponse)
async def logout(
    request: Request,
    response: Response,
    db: AsyncSession = Depends(get_session),
    synchronizer: SessionClaimsSynchronizer = Depends(get_synchronizer),
):
    """Logout; succeeds even when the session is already gone"""
    session = await synchronizer.get_session(db, request.cookies.get(settings.SESSION_COOKIE_NAME))
    if session is not None:
        await synchronizer.logout(db, session)
    response.delete_cookie(settings.SESSION_COOKIE_NAME, path="/")
    return MessageResponse(message="Logged out")


@router.post("/oauth/exchange", response_model=OAuthExchangeResponse)
async def oauth_exchange(
    exchange_data: OAuthExchangeRequest,
    response: Response,
    db: AsyncSession = Depends(get_session),
    synchronizer: SessionClaimsSynchronizer = Depends(get_synchronizer),
):
    """Finish an OAuth sign-in; first-time subjects must complete a profile"""
    result = await synchronizer.login_with_oauth_code(db, exchange_data.code, exchange_data.code_verifier)

    if result.needs_profile:
        response.set_cookie(
            key=settings.PENDING_PROFILE_COOKIE_NAME,
            value=create_pending_profile_token(result.pending.to_dict()),
            max_age=settings.PENDING_PROFILE_TTL_MINUTES * 60,
            httponly=True,
            secure=not settings.is_development,
            samesite="lax",
            path="/",
        )
        return OAuthExchangeResponse(needs_profile=True, email=result.pending.email, name=result.pending.name)

    _set_session_cookie(response, result.session)
    return OAuthExchangeResponse(needs_profile=False, login=await _login_response(db, result.session))


@router.post("/oauth/complete-profile", response_model=LoginResponse)
async def complete_profile(
    profile_data: CompleteProfileRequest,
    request: Request,
    response: Response,
    db: AsyncSession = Depends(get_session),
    synchronizer: SessionClaimsSynchronizer = Depends(get_synchronizer),
):
    """Create the tenant for a first-time OAuth user and sign them in"""
    token = request.cookies.get(settings.PENDING_PROFILE_COOKIE_NAME)
    payload = decode_pending_profile_token(token) if token else None
    if payload is None:
        raise AuthenticationFailure("Sign-up session expired. Please sign in again.")

    session = await synchronizer.complete_profile(
        db,
        PendingProfile.from_dict(payload),
        name=profile_data.name,
        role=profile_data.role,
        phone=profile_data.phone,
        client_code=profile_data.client_code,
    )
    response.delete_cookie(settings.PENDING_PROFILE_COOKIE_NAME, path="/")
    _set_session_cookie(response, session)
    return await _login_response(db, session)


@router.post("/forgot-password", response_model=MessageResponse)
async def forgot_password(
    reset_data: ForgotPasswordRequest,
    db: AsyncSession = Depends(get_session),
    synchronizer: SessionClaimsSynchronizer = Depends(get_synchronizer),
):
    """Request a password reset email. The response is the same for every address."""
    await synchronizer.request_password_reset(
        db,
        reset_data.email,
        reset_data.redirect_url or f"{settings.BASE_URL}/reset-password",
    )
    return MessageResponse(message="If an account exists for this email, a reset link has been sent")


@router.post("/accept-invite", response_model=LoginResponse, status_code=201)
async def accept_invite(
    invite_data: AcceptInviteRequest,
    response: Response,
    db: AsyncSession = Depends(get_session),
    synchronizer: SessionClaimsSynchronizer = Depends(get_synchronizer),
):
    """Onboard an invited vendor and sign in its new owner"""
    tenant, user, relationship = await graph.accept_invite(
        db,
        invite_data.token,
        company_name=invite_data.company_name,
        email=invite_data.email,
        password=invite_data.password,
        display_name=invite_data.display_name,
        phone=invite_data.phone,
        address=invite_data.address,
    )
    logger.info(
        "Vendor onboarded from invitation",
        tenant_id=tenant.tenant_id,
        user_id=user.user_id,
        relationship_id=relationship.relationship_id,
    )

    session = await synchronizer.login(db, invite_data.email, invite_data.password)
    _set_session_cookie(response, session)
    return await _login_response(db, session)


@router.get("/realtime-token", response_model=RealtimeTokenResponse)
async def realtime_token(
    request: Request,
    response: Response,
    session: PortalSession = Depends(get_current_session),
    db: AsyncSession = Depends(get_session),
    synchronizer: SessionClaimsSynchronizer = Depends(get_synchronizer),
):
    """Access token for the browser's realtime channel. The refresh token never leaves the server."""
    token = await synchronizer.issue_realtime_token(db, session, _client_address(request))
    response.headers["Cache-Control"] = "no-store"
    return RealtimeTokenResponse(access_token=token.access_token, expires_at=token.expires_at)
