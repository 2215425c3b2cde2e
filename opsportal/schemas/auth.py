"""
Pydantic schemas for authentication and sessions
"""

from pydantic import BaseModel, Field, EmailStr
from typing import Optional
from datetime import datetime

from opsportal.models.tenant import ContextRole
from opsportal.models.user import UserRole


class LoginRequest(BaseModel):
    """Password login"""
    email: EmailStr
    password: str = Field(..., min_length=1, max_length=200)


class OAuthExchangeRequest(BaseModel):
    """Authorization code returned to the OAuth callback"""
    code: str = Field(..., min_length=1)
    code_verifier: Optional[str] = Field(default=None, description="PKCE verifier")


class CompleteProfileRequest(BaseModel):
    """First-time OAuth sign-up details"""
    name: str = Field(..., min_length=1, max_length=255, description="Company name")
    role: ContextRole = Field(..., description="Side the new tenant starts on")
    phone: Optional[str] = Field(default=None, max_length=50)
    client_code: Optional[str] = Field(
        default=None,
        max_length=32,
        description="TNT- or TC- id of a client to link when signing up as a vendor",
    )


class SignUpRequest(CompleteProfileRequest):
    """Password sign-up for a new tenant"""
    email: EmailStr
    password: str = Field(..., min_length=8, max_length=100)


class ForgotPasswordRequest(BaseModel):
    email: EmailStr
    redirect_url: Optional[str] = None


class AcceptInviteRequest(BaseModel):
    """Vendor onboarding from an invitation"""
    token: str = Field(..., min_length=1, max_length=64)
    company_name: str = Field(..., min_length=1, max_length=255)
    email: EmailStr
    password: str = Field(..., min_length=8, max_length=100)
    display_name: Optional[str] = Field(default=None, max_length=255)
    phone: Optional[str] = Field(default=None, max_length=50)
    address: Optional[str] = None


class SessionUserResponse(BaseModel):
    """Signed-in user"""
    user_id: str
    tenant_id: str
    email: str
    display_name: Optional[str] = None
    role: UserRole
    last_login_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class LoginResponse(BaseModel):
    """Outcome of a login; the session id travels only in the cookie"""
    user: SessionUserResponse
    active_context: Optional[ContextRole] = None
    active_context_id: Optional[str] = None
    redirect: str = "/dashboard"


class OAuthExchangeResponse(BaseModel):
    needs_profile: bool
    email: Optional[str] = None
    name: Optional[str] = None
    login: Optional[LoginResponse] = None


class RealtimeTokenResponse(BaseModel):
    """Short-lived token for realtime subscriptions"""
    access_token: str
    expires_at: int


class MessageResponse(BaseModel):
    success: bool = True
    message: Optional[str] = None
