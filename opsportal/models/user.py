"""
User model with roles and tenant scoping
"""

from sqlmodel import Field, SQLModel
from datetime import datetime
from typing import Optional
from enum import Enum

from opsportal.models.base import enum_column


class UserRole(str, Enum):
    """User roles within a tenant"""
    OWNER = "owner"
    ADMIN = "admin"
    MEMBER = "member"


class UserStatus(str, Enum):
    ACTIVE = "active"
    INACTIVE = "inactive"
    SUSPENDED = "suspended"


class User(SQLModel, table=True):
    """User model with tenant isolation"""

    __tablename__ = "users"

    user_id: str = Field(primary_key=True, max_length=32)
    tenant_id: str = Field(foreign_key="tenants.tenant_id", index=True, description="Tenant ID for multi-tenant isolation")

    # Authentication
    email: str = Field(unique=True, index=True, nullable=False, max_length=255)
    password_hash: Optional[str] = Field(default=None, description="Legacy bcrypt hash, absent for provider-only users")
    auth_user_id: Optional[str] = Field(
        default=None,
        unique=True,
        index=True,
        max_length=64,
        description="Subject id at the identity provider once linked",
    )

    # Profile
    display_name: Optional[str] = Field(default=None, max_length=255)
    first_name: Optional[str] = Field(default=None, max_length=100)
    last_name: Optional[str] = Field(default=None, max_length=100)
    phone: Optional[str] = Field(default=None, max_length=50)

    role: UserRole = Field(default=UserRole.MEMBER, nullable=False, sa_type=enum_column(UserRole))

    # Status
    status: UserStatus = Field(default=UserStatus.ACTIVE, index=True, sa_type=enum_column(UserStatus))
    email_verified: bool = Field(default=False)

    # Timestamps
    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: Optional[datetime] = None
    last_login_at: Optional[datetime] = None

    @property
    def is_active(self) -> bool:
        return self.status == UserStatus.ACTIVE

    @property
    def is_linked(self) -> bool:
        """True once the user has a subject at the identity provider"""
        return self.auth_user_id is not None
