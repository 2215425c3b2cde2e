"""
Relationships and invitations API endpoints
"""

from fastapi import APIRouter, Depends
from sqlmodel.ext.asyncio.session import AsyncSession
from typing import List
import structlog

from opsportal.core.database import get_session
from opsportal.core.dependencies import RequestContext, get_request_context, require_permission
from opsportal.core.errors import NotFound
from opsportal.core.permissions import Permission
from opsportal.schemas.relationship import InviteCreate, InviteRead, RelationshipRead
from opsportal.services import relationship_graph as graph

logger = structlog.get_logger(__name__)
router = APIRouter()


@router.get("/", response_model=List[RelationshipRead])
async def list_relationships(
    context: RequestContext = Depends(get_request_context),
    db: AsyncSession = Depends(get_session),
):
    """Every relationship the tenant is part of, on either side, any status"""
    relationships = await graph.list_relationships(db, context.tenant)
    return [RelationshipRead.model_validate(rel) for rel in relationships]


@router.post("/invites", response_model=InviteRead, status_code=201)
async def create_invite(
    invite_data: InviteCreate,
    context: RequestContext = Depends(require_permission(Permission.RELATIONSHIP_INVITE)),
    db: AsyncSession = Depends(get_session),
):
    """Invite a vendor by email; the tenant's client facet is the inviting side"""
    invite = await graph.create_invite(db, context.tenant, invite_data.email, invite_data.name)
    return InviteRead.model_validate(invite)


@router.post("/invites/{token}/revoke", response_model=InviteRead)
async def revoke_invite(
    token: str,
    context: RequestContext = Depends(require_permission(Permission.RELATIONSHIP_INVITE)),
    db: AsyncSession = Depends(get_session),
):
    invite = await graph.revoke_invite(db, context.tenant, token)
    return InviteRead.model_validate(invite)


@router.post("/invites/{token}/accept", response_model=RelationshipRead, status_code=201)
async def accept_invite(
    token: str,
    context: RequestContext = Depends(require_permission(Permission.RELATIONSHIP_MANAGE)),
    db: AsyncSession = Depends(get_session),
):
    """Accept an invitation as an already registered tenant"""
    relationship = await graph.accept_invite_as_existing(db, token, context.tenant)
    return RelationshipRead.model_validate(relationship)


@router.post("/{relationship_id}/{action}", response_model=RelationshipRead)
async def change_status(
    relationship_id: str,
    action: str,
    context: RequestContext = Depends(require_permission(Permission.RELATIONSHIP_MANAGE)),
    db: AsyncSession = Depends(get_session),
):
    """Suspend, reactivate or terminate a relationship"""
    if action not in graph.RELATIONSHIP_ACTIONS:
        raise NotFound("Action")
    relationship = await graph.change_relationship_status(db, context.tenant, relationship_id, action)
    return RelationshipRead.model_validate(relationship)
