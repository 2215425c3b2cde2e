"""
API schemas for relationships and invitations
"""

from pydantic import BaseModel, EmailStr, Field
from datetime import datetime
from typing import Optional

from opsportal.models.invitation import InvitationStatus
from opsportal.models.relationship import RelationshipStatus


class RelationshipRead(BaseModel):
    relationship_id: str
    client_id: str
    vendor_id: str
    status: RelationshipStatus
    created_at: datetime
    accepted_at: Optional[datetime] = None
    terminated_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class InviteCreate(BaseModel):
    """Invite a vendor by email"""
    email: EmailStr
    name: Optional[str] = Field(default=None, max_length=255)


class InviteRead(BaseModel):
    """Invitation as shown to the inviter; the token is sent only by email"""
    invitee_email: str
    invitee_name: Optional[str] = None
    status: InvitationStatus
    created_at: datetime
    expires_at: datetime

    class Config:
        from_attributes = True
