"""
Session & Claims Synchronizer

Owns the lifecycle of portal sessions and keeps the identity provider's view
of a user (the claims row-level security reads) in step with the portal's own
user and tenant ids.

Two failure rules:
- During login, a claims write that cannot be followed by a successful token
  refresh aborts the login. A session holding a claims-less token is never
  created.
- For an existing session, a token that cannot be refreshed surfaces as
  ReAuthenticationRequired so the caller sends the user back to login.
"""

import random
import time
from dataclasses import asdict, dataclass
from datetime import datetime, timedelta
from typing import Callable, Optional

import structlog
from sqlmodel.ext.asyncio.session import AsyncSession

from opsportal.core.auth import get_unverified_claims, verify_password
from opsportal.core.config import Settings, get_settings
from opsportal.core.errors import (
    AuthenticationFailure,
    ClaimsSyncFailure,
    IdentityProviderError,
    NotFound,
    ReAuthenticationRequired,
    RelationshipConflict,
)
from opsportal.core.ids import generate_token
from opsportal.core.rate_limit import RateLimiter
from opsportal.models import ContextRole, PortalSession, Tenant, User, UserRole
from opsportal.services import relationship_graph as graph
from opsportal.services.context_resolver import initial_context
from opsportal.services.identity_provider import (
    CLAIM_TENANT_ID,
    CLAIM_USER_ID,
    IdentityProviderGateway,
    ProviderSession,
)

logger = structlog.get_logger(__name__)


def needs_refresh(expires_at: Optional[int], now: int, threshold: int, jitter: float) -> bool:
    """True when the token expires sooner than threshold + jitter seconds from now"""
    return (expires_at or 0) - now < threshold + jitter


def _short(subject: Optional[str]) -> Optional[str]:
    return f"{subject[:8]}..." if subject else None


@dataclass
class PendingProfile:
    """A provider subject with no portal user yet"""
    auth_user_id: str
    email: str
    name: str
    access_token: str
    refresh_token: Optional[str] = None
    expires_at: Optional[int] = None

    def to_dict(self) -> dict:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict) -> "PendingProfile":
        return cls(
            auth_user_id=data["auth_user_id"],
            email=data["email"],
            name=data.get("name") or data["email"].split("@")[0],
            access_token=data["access_token"],
            refresh_token=data.get("refresh_token"),
            expires_at=data.get("expires_at"),
        )


@dataclass
class OAuthLoginResult:
    session: Optional[PortalSession] = None
    pending: Optional[PendingProfile] = None

    @property
    def needs_profile(self) -> bool:
        return self.pending is not None


@dataclass(frozen=True)
class RealtimeToken:
    """What the browser receives for realtime subscriptions. No refresh token."""
    access_token: str
    expires_at: int


class SessionClaimsSynchronizer:
    """Login, logout, claim synchronization and token freshness"""

    def __init__(
        self,
        gateway: IdentityProviderGateway,
        rate_limiter: RateLimiter,
        settings: Optional[Settings] = None,
        jitter: Optional[Callable[[], float]] = None,
    ):
        """
        Args:
            gateway: Identity provider client
            rate_limiter: Budget for realtime token issuance
            settings: Application settings (defaults to cached settings)
            jitter: Returns the extra refresh lead time in seconds; uniform
                over [0, TOKEN_REFRESH_JITTER_SECONDS] unless given
        """
        self.gateway = gateway
        self.rate_limiter = rate_limiter
        self.settings = settings or get_settings()
        self._jitter = jitter or (lambda: random.uniform(0, self.settings.TOKEN_REFRESH_JITTER_SECONDS))

    # Login paths

    async def login(self, db: AsyncSession, email: str, password: str) -> PortalSession:
        """Password login, provider first for linked users, legacy hash otherwise"""
        user = await graph.get_user_by_email(db, email)
        if user is None or not user.is_active:
            logger.info("Login rejected", reason="unknown_or_inactive")
            raise AuthenticationFailure()

        provider_session: Optional[ProviderSession] = None
        if user.is_linked:
            try:
                auth = await self.gateway.sign_in(user.email, password)
            except IdentityProviderError as e:
                logger.info(
                    "Provider sign-in failed, trying legacy credentials",
                    user_id=user.user_id,
                    provider_status=e.provider_status,
                )
            else:
                provider_session = await self.sync_claims(user, auth.session.refresh_token)

        if provider_session is None and not verify_password(password, user.password_hash):
            logger.info("Login rejected", reason="bad_credentials", user_id=user.user_id)
            raise AuthenticationFailure()

        tenant = await self._tenant_for(db, user)
        session = await self._open_session(db, user, tenant, provider_session)
        logger.info(
            "Login success",
            auth_uid=_short(user.auth_user_id),
            user_id=user.user_id,
            tenant_id=user.tenant_id,
            provider_auth=provider_session is not None,
        )
        return session

    async def login_with_oauth_code(
        self,
        db: AsyncSession,
        code: str,
        code_verifier: Optional[str] = None,
    ) -> OAuthLoginResult:
        """Exchange an OAuth code; unknown subjects come back as a PendingProfile"""
        try:
            auth = await self.gateway.exchange_oauth_code(code, code_verifier)
        except IdentityProviderError as e:
            logger.info("OAuth code exchange failed", provider_status=e.provider_status)
            raise AuthenticationFailure("Sign-in could not be completed") from e

        provider_user = auth.user
        user = await graph.get_user_by_auth_id(db, provider_user.id)
        if user is None and provider_user.email:
            user = await graph.get_user_by_email(db, provider_user.email)
            if user is not None:
                if user.auth_user_id and user.auth_user_id != provider_user.id:
                    logger.warning("OAuth subject does not match linked account", user_id=user.user_id)
                    raise AuthenticationFailure()
                user.auth_user_id = provider_user.id
                db.add(user)
                await db.commit()
                logger.info("Linked provider subject to user", user_id=user.user_id, auth_uid=_short(provider_user.id))

        if user is None:
            email = provider_user.email or ""
            name = provider_user.user_metadata.get("full_name") or email.split("@")[0]
            return OAuthLoginResult(
                pending=PendingProfile(
                    auth_user_id=provider_user.id,
                    email=email,
                    name=name,
                    access_token=auth.session.access_token,
                    refresh_token=auth.session.refresh_token,
                    expires_at=auth.session.expires_at,
                )
            )

        if not user.is_active:
            raise AuthenticationFailure()

        provider_session = await self.sync_claims(user, auth.session.refresh_token)
        tenant = await self._tenant_for(db, user)
        session = await self._open_session(db, user, tenant, provider_session)
        logger.info("OAuth login success", auth_uid=_short(user.auth_user_id), user_id=user.user_id, tenant_id=user.tenant_id)
        return OAuthLoginResult(session=session)

    async def complete_profile(
        self,
        db: AsyncSession,
        pending: PendingProfile,
        name: str,
        role: ContextRole,
        phone: Optional[str] = None,
        client_code: Optional[str] = None,
    ) -> PortalSession:
        """Create tenant and owner user for a first-time OAuth subject, then sign in"""
        if await graph.get_user_by_auth_id(db, pending.auth_user_id) or await graph.get_user_by_email(db, pending.email):
            raise RelationshipConflict("Email already registered")

        tenant = await graph.create_tenant(db, name=name, email=pending.email, phone=phone)
        user = await graph.create_user(
            db,
            tenant,
            email=pending.email,
            display_name=name,
            role=UserRole.OWNER,
            auth_user_id=pending.auth_user_id,
            phone=phone,
            email_verified=True,
        )

        await self._link_client_code(db, tenant, role, client_code)

        await db.commit()
        await db.refresh(tenant)
        await db.refresh(user)

        provider_session = await self.sync_claims(user, pending.refresh_token)
        session = await self._open_session(db, user, tenant, provider_session)
        logger.info("Profile completed", user_id=user.user_id, tenant_id=tenant.tenant_id, role=ContextRole(role).value)
        return session

    async def sign_up(
        self,
        db: AsyncSession,
        name: str,
        email: str,
        password: str,
        role: ContextRole,
        phone: Optional[str] = None,
        client_code: Optional[str] = None,
    ) -> PortalSession:
        """
        Register a tenant and its owner with a password, then log in

        The owner keeps a password hash so the account works even when the
        identity provider could not create its side; in that case the user
        stays unlinked and logs in on the hash. A vendor that names a client
        code is linked to that client straight away.
        """
        email = email.strip().lower()
        if await graph.get_user_by_email(db, email):
            raise RelationshipConflict("Email already registered")

        tenant = await graph.create_tenant(db, name=name, email=email, phone=phone)
        user = await graph.create_user(
            db,
            tenant,
            email=email,
            display_name=name,
            password=password,
            role=UserRole.OWNER,
            phone=phone,
        )
        try:
            provider_user = await self.gateway.admin_create_user(
                email,
                password,
                {"display_name": name, "tenant_id": tenant.tenant_id, "sign_up_role": ContextRole(role).value},
            )
        except IdentityProviderError as e:
            logger.warning("Provider account not created, using password hash", tenant_id=tenant.tenant_id, error=e.message)
        else:
            user.auth_user_id = provider_user.id
            db.add(user)

        await self._link_client_code(db, tenant, role, client_code)
        await db.commit()
        logger.info("Sign-up complete", user_id=user.user_id, tenant_id=tenant.tenant_id, role=ContextRole(role).value)

        return await self.login(db, email, password)

    async def _link_client_code(
        self,
        db: AsyncSession,
        tenant: Tenant,
        role: ContextRole,
        client_code: Optional[str],
    ) -> None:
        if ContextRole(role) != ContextRole.VENDOR or not client_code:
            return
        client = await graph.get_tenant_by_code(db, client_code)
        if client is None:
            logger.warning("Client code did not match a tenant", tenant_id=tenant.tenant_id)
            return
        await graph.create_relationship(db, client.tenant_client_id, tenant.tenant_vendor_id)

    async def sync_claims(self, user: User, refresh_token: Optional[str]) -> ProviderSession:
        """
        Write portal ids into the provider's app_metadata and return a token
        that carries them. Raises ClaimsSyncFailure if either step fails.
        """
        claims = {CLAIM_USER_ID: user.user_id, CLAIM_TENANT_ID: user.tenant_id}
        try:
            await self.gateway.admin_set_claims(user.auth_user_id, claims)
            if not refresh_token:
                raise IdentityProviderError("No refresh token to exchange after claims update")
            refreshed = await self.gateway.refresh_session(refresh_token)
        except IdentityProviderError as e:
            logger.error(
                "Claims sync failed",
                auth_uid=_short(user.auth_user_id),
                user_id=user.user_id,
                tenant_id=user.tenant_id,
                claims_ok=False,
                error=e.message,
            )
            raise ClaimsSyncFailure() from e

        if self.settings.is_development:
            self._check_token_claims(refreshed.access_token, claims)
        logger.info("Claims synced", auth_uid=_short(user.auth_user_id), user_id=user.user_id, claims_ok=True)
        return refreshed

    def _check_token_claims(self, access_token: str, expected: dict) -> None:
        payload = get_unverified_claims(access_token)
        if payload is None:
            logger.warning("Could not decode refreshed token for claim check")
            return
        got = payload.get("app_metadata") or {}
        if any(got.get(key) != value for key, value in expected.items()):
            logger.warning(
                "Token claims mismatch after refresh",
                expected=expected,
                got={key: got.get(key) for key in expected},
            )

    async def _tenant_for(self, db: AsyncSession, user: User) -> Tenant:
        tenant = await graph.get_tenant(db, user.tenant_id)
        if tenant is None:
            raise NotFound("Tenant")
        return tenant

    async def _open_session(
        self,
        db: AsyncSession,
        user: User,
        tenant: Tenant,
        provider_session: Optional[ProviderSession],
    ) -> PortalSession:
        relationships = await graph.get_tenant_relationships(db, tenant)
        role = initial_context(tenant, relationships)
        now = datetime.utcnow()

        session = PortalSession(
            id=generate_token(32),
            user_id=user.user_id,
            tenant_id=tenant.tenant_id,
            created_at=now,
            last_active_at=now,
            expires_at=now + timedelta(hours=self.settings.SESSION_TTL_HOURS),
        )
        session.set_active_context(role, tenant.facets.facet_for(role) if role else None)
        if provider_session is not None:
            session.store_tokens(
                provider_session.access_token,
                provider_session.refresh_token,
                provider_session.expires_at,
            )

        user.last_login_at = now
        db.add(session)
        db.add(user)
        await db.commit()
        await db.refresh(session)
        return session

    # Session lifecycle

    async def get_session(self, db: AsyncSession, session_id: Optional[str]) -> Optional[PortalSession]:
        """Load an unexpired session and mark it active"""
        if not session_id:
            return None
        session = await db.get(PortalSession, session_id)
        if session is None or session.is_expired():
            return None
        session.last_active_at = datetime.utcnow()
        db.add(session)
        await db.commit()
        return session

    async def logout(self, db: AsyncSession, session: PortalSession) -> None:
        """Delete the session; a provider sign-out failure never blocks logout"""
        if session.auth_token:
            try:
                await self.gateway.sign_out(session.auth_token)
            except IdentityProviderError as e:
                logger.warning("Provider sign-out failed", user_id=session.user_id, error=e.message)
        await db.delete(session)
        await db.commit()
        logger.info("Logout", user_id=session.user_id, tenant_id=session.tenant_id)

    async def ensure_fresh_tokens(
        self,
        db: AsyncSession,
        session: PortalSession,
        now: Optional[int] = None,
    ) -> PortalSession:
        """Refresh the stored provider tokens when they are close to expiry"""
        if not session.auth_token:
            raise ReAuthenticationRequired(
                "LEGACY_AUTH", "Realtime requires a provider sign-in. Please log in again."
            )

        now = int(time.time()) if now is None else now
        if not needs_refresh(
            session.auth_expires_at,
            now,
            self.settings.TOKEN_REFRESH_THRESHOLD_SECONDS,
            self._jitter(),
        ):
            return session

        if not session.refresh_token:
            raise ReAuthenticationRequired("TOKEN_EXPIRED")

        try:
            refreshed = await self.gateway.refresh_session(session.refresh_token)
        except IdentityProviderError as e:
            logger.warning("Token refresh failed", user_id=session.user_id, error=e.message)
            raise ReAuthenticationRequired("REFRESH_FAILED") from e

        session.store_tokens(refreshed.access_token, refreshed.refresh_token, refreshed.expires_at)
        db.add(session)
        await db.commit()
        logger.info("Provider tokens refreshed", user_id=session.user_id, expires_at=refreshed.expires_at)
        return session

    async def issue_realtime_token(
        self,
        db: AsyncSession,
        session: PortalSession,
        origin: Optional[str],
    ) -> RealtimeToken:
        """Short-lived access token for the browser's realtime channel"""
        await self.rate_limiter.hit_all(
            [
                (f"session:{session.id}", self.settings.RATE_LIMIT_PER_SESSION),
                (f"ip:{origin or 'unknown'}", self.settings.RATE_LIMIT_PER_IP),
            ]
        )

        session = await self.ensure_fresh_tokens(db, session)
        return RealtimeToken(access_token=session.auth_token, expires_at=session.auth_expires_at)

    async def request_password_reset(
        self,
        db: AsyncSession,
        email: str,
        redirect_url: Optional[str] = None,
    ) -> None:
        """Send a reset link to linked users; the caller learns nothing either way"""
        user = await graph.get_user_by_email(db, email)
        if user is None:
            return
        if not user.is_linked:
            logger.info("Password reset requested for unlinked user", user_id=user.user_id)
            return
        try:
            await self.gateway.send_password_reset(user.email, redirect_url)
        except IdentityProviderError as e:
            logger.warning("Password reset email failed", user_id=user.user_id, error=e.message)
