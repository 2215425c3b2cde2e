"""
Identity Provider Gateway
Thin async client for a GoTrue-compatible authentication service
"""

import time
from dataclasses import dataclass, field
from typing import Any, Dict, Optional

import httpx
import structlog
from jose import JWTError, jwt

from opsportal.core.config import Settings, get_settings
from opsportal.core.errors import IdentityProviderError

logger = structlog.get_logger(__name__)

# Keys written into app_metadata and read back by row-level security policies
CLAIM_USER_ID = "portal_user_id"
CLAIM_TENANT_ID = "portal_tenant_id"


@dataclass
class ProviderUser:
    """User record as the provider reports it"""
    id: str
    email: Optional[str] = None
    app_metadata: Dict[str, Any] = field(default_factory=dict)
    user_metadata: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_payload(cls, payload: Dict[str, Any]) -> "ProviderUser":
        return cls(
            id=payload["id"],
            email=payload.get("email"),
            app_metadata=payload.get("app_metadata") or {},
            user_metadata=payload.get("user_metadata") or {},
        )


@dataclass
class ProviderSession:
    """Access/refresh token pair issued by the provider"""
    access_token: str
    refresh_token: Optional[str]
    expires_at: int
    user: Optional[ProviderUser] = None

    @classmethod
    def from_payload(cls, payload: Dict[str, Any]) -> "ProviderSession":
        access_token = payload.get("access_token")
        if not access_token:
            raise IdentityProviderError("Provider returned no access token")

        expires_at = payload.get("expires_at")
        if expires_at is None:
            expires_at = int(time.time()) + int(payload.get("expires_in") or 3600)

        user = payload.get("user")
        return cls(
            access_token=access_token,
            refresh_token=payload.get("refresh_token"),
            expires_at=int(expires_at),
            user=ProviderUser.from_payload(user) if user else None,
        )


@dataclass
class ProviderAuth:
    """Result of a successful sign-in or code exchange"""
    user: ProviderUser
    session: ProviderSession


class IdentityProviderGateway:
    """Identity provider REST client"""

    def __init__(self, settings: Optional[Settings] = None, client: Optional[httpx.AsyncClient] = None):
        """
        Initialize the gateway

        Args:
            settings: Application settings (defaults to cached settings)
            client: Pre-built httpx client, injected by tests and by the app lifespan
        """
        self.settings = settings or get_settings()
        self.base_url = self.settings.IDENTITY_PROVIDER_URL.rstrip("/")
        self._client = client or httpx.AsyncClient(
            base_url=self.base_url,
            timeout=self.settings.IDENTITY_PROVIDER_TIMEOUT_SECONDS,
        )

    async def aclose(self) -> None:
        await self._client.aclose()

    def _anon_headers(self, access_token: Optional[str] = None) -> Dict[str, str]:
        key = self.settings.IDENTITY_PROVIDER_ANON_KEY
        return {
            "apikey": key,
            "Authorization": f"Bearer {access_token or key}",
        }

    def _service_headers(self) -> Dict[str, str]:
        key = self.settings.IDENTITY_PROVIDER_SERVICE_KEY
        return {"apikey": key, "Authorization": f"Bearer {key}"}

    async def _request(self, method: str, path: str, **kwargs) -> Dict[str, Any]:
        try:
            response = await self._client.request(method, path, **kwargs)
        except httpx.HTTPError as e:
            logger.error("Identity provider unreachable", path=path, error=type(e).__name__)
            raise IdentityProviderError(f"Identity provider unreachable: {type(e).__name__}") from e

        if response.status_code >= 400:
            message = _error_message(response)
            logger.warning("Identity provider rejected request", path=path, status=response.status_code)
            raise IdentityProviderError(message, provider_status=response.status_code)

        if not response.content:
            return {}
        try:
            return response.json()
        except ValueError as e:
            raise IdentityProviderError("Identity provider returned invalid JSON") from e

    async def sign_in(self, email: str, password: str) -> ProviderAuth:
        """Password grant"""
        payload = await self._request(
            "POST",
            "/token",
            params={"grant_type": "password"},
            json={"email": email, "password": password},
            headers=self._anon_headers(),
        )
        session = ProviderSession.from_payload(payload)
        if session.user is None:
            raise IdentityProviderError("Provider returned no user for sign-in")
        return ProviderAuth(user=session.user, session=session)

    async def admin_set_claims(self, provider_user_id: str, claims: Dict[str, Any]) -> ProviderUser:
        """Write app_metadata claims with the service key"""
        payload = await self._request(
            "PUT",
            f"/admin/users/{provider_user_id}",
            json={"app_metadata": claims},
            headers=self._service_headers(),
        )
        if not payload.get("id"):
            raise IdentityProviderError("Claims update returned no user")
        return ProviderUser.from_payload(payload)

    async def admin_create_user(
        self,
        email: str,
        password: str,
        user_metadata: Optional[Dict[str, Any]] = None,
    ) -> ProviderUser:
        """Create a confirmed password account with the service key"""
        payload = await self._request(
            "POST",
            "/admin/users",
            json={
                "email": email,
                "password": password,
                "email_confirm": True,
                "user_metadata": user_metadata or {},
            },
            headers=self._service_headers(),
        )
        if not payload.get("id"):
            raise IdentityProviderError("Account creation returned no user")
        return ProviderUser.from_payload(payload)

    async def refresh_session(self, refresh_token: str) -> ProviderSession:
        """Refresh-token grant"""
        payload = await self._request(
            "POST",
            "/token",
            params={"grant_type": "refresh_token"},
            json={"refresh_token": refresh_token},
            headers=self._anon_headers(),
        )
        return ProviderSession.from_payload(payload)

    async def get_user(self, access_token: str) -> ProviderUser:
        payload = await self._request("GET", "/user", headers=self._anon_headers(access_token))
        return ProviderUser.from_payload(payload)

    async def verify_token(self, access_token: str) -> Dict[str, Any]:
        """
        Return the verified claims of an access token

        Verified locally with the shared JWT secret when one is configured,
        otherwise by asking the provider for the token's user.
        """
        secret = self.settings.IDENTITY_PROVIDER_JWT_SECRET
        if secret:
            try:
                return jwt.decode(
                    access_token,
                    secret,
                    algorithms=[self.settings.JWT_ALGORITHM],
                    audience=self.settings.JWT_AUDIENCE,
                )
            except JWTError as e:
                raise IdentityProviderError(f"Invalid access token: {e}", provider_status=401) from e

        user = await self.get_user(access_token)
        return {"sub": user.id, "email": user.email, "app_metadata": user.app_metadata}

    async def send_password_reset(self, email: str, redirect_url: Optional[str] = None) -> None:
        params = {"redirect_to": redirect_url} if redirect_url else None
        await self._request(
            "POST",
            "/recover",
            params=params,
            json={"email": email},
            headers=self._anon_headers(),
        )

    async def exchange_oauth_code(self, code: str, code_verifier: Optional[str] = None) -> ProviderAuth:
        """PKCE authorization-code grant"""
        body = {"auth_code": code}
        if code_verifier:
            body["code_verifier"] = code_verifier
        payload = await self._request(
            "POST",
            "/token",
            params={"grant_type": "pkce"},
            json=body,
            headers=self._anon_headers(),
        )
        session = ProviderSession.from_payload(payload)
        if session.user is None:
            raise IdentityProviderError("Provider returned no user for code exchange")
        return ProviderAuth(user=session.user, session=session)

    async def sign_out(self, access_token: str) -> None:
        await self._request("POST", "/logout", headers=self._anon_headers(access_token))


def _error_message(response: httpx.Response) -> str:
    try:
        body = response.json()
    except ValueError:
        return f"Identity provider error ({response.status_code})"
    return (
        body.get("error_description")
        or body.get("msg")
        or body.get("message")
        or body.get("error")
        or f"Identity provider error ({response.status_code})"
    )
