"""
Server-side portal session

The browser holds only the opaque session id in a cookie. Provider tokens and
the active context live on this row.
"""

from sqlmodel import Field, SQLModel
from datetime import datetime, timedelta
from typing import Optional

from opsportal.models.base import enum_column
from opsportal.models.tenant import ContextRole


class PortalSession(SQLModel, table=True):
    """Authenticated user session with active tenant context"""

    __tablename__ = "portal_sessions"

    id: str = Field(primary_key=True, max_length=64, description="64 hex chars")
    user_id: str = Field(foreign_key="users.user_id", index=True)
    tenant_id: str = Field(foreign_key="tenants.tenant_id", index=True)

    # Active context, null until resolved or chosen
    active_context: Optional[ContextRole] = Field(
        default=None,
        nullable=True,
        sa_type=enum_column(ContextRole, length=16),
    )
    active_context_id: Optional[str] = Field(default=None, max_length=32)
    active_counterparty: Optional[str] = Field(default=None, max_length=32)

    # Provider tokens; absent for legacy-only logins
    auth_token: Optional[str] = Field(default=None)
    refresh_token: Optional[str] = Field(default=None)
    auth_expires_at: Optional[int] = Field(default=None, description="Access token expiry, epoch seconds")

    created_at: datetime = Field(default_factory=datetime.utcnow)
    expires_at: datetime = Field(
        default_factory=lambda: datetime.utcnow() + timedelta(hours=24),
        index=True,
    )
    last_active_at: datetime = Field(default_factory=datetime.utcnow)

    def is_expired(self, now: Optional[datetime] = None) -> bool:
        return (now or datetime.utcnow()) > self.expires_at

    def set_active_context(
        self,
        role: Optional[ContextRole],
        facet_id: Optional[str],
        counterparty: Optional[str] = None,
    ) -> None:
        self.active_context = role
        self.active_context_id = facet_id
        self.active_counterparty = counterparty

    def store_tokens(self, access_token: str, refresh_token: Optional[str], expires_at: Optional[int]) -> None:
        self.auth_token = access_token
        if refresh_token:
            self.refresh_token = refresh_token
        self.auth_expires_at = expires_at
