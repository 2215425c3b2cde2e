"""
Relationship Graph Store

Tenants, their users, client/vendor relationships and the invitations that
create them. Every read is a fresh query; nothing here is cached between
requests.
"""

from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import List, Optional

import structlog
from sqlalchemy import update
from sqlmodel import col, select, or_
from sqlmodel.ext.asyncio.session import AsyncSession

from opsportal.core.auth import hash_password
from opsportal.core.config import get_settings
from opsportal.core.errors import (
    InvalidInvitation,
    NotFound,
    RelationshipConflict,
)
from opsportal.core.events import (
    InviteAccepted,
    InviteCreated,
    RelationshipStatusChanged,
    event_bus,
)
from opsportal.core.ids import (
    CLIENT_FACET_PREFIX,
    TENANT_PREFIX,
    generate_id,
    generate_tenant_ids,
    generate_token,
)
from opsportal.models import (
    ContextRole,
    InvitationStatus,
    RelationshipInvitation,
    RelationshipStatus,
    Tenant,
    TenantRelationship,
    User,
    UserRole,
)

logger = structlog.get_logger(__name__)

RELATIONSHIP_ACTIONS = ("suspend", "reactivate", "terminate")


@dataclass(frozen=True)
class RelationshipView:
    """One active relationship seen from one side"""
    relationship_id: str
    own_facet_id: str
    counterparty_facet_id: str
    counterparty_tenant_id: Optional[str]
    counterparty_name: Optional[str]


@dataclass(frozen=True)
class TenantRelationships:
    """Active relationships of a tenant, grouped by the side it plays"""
    as_client: List[RelationshipView] = field(default_factory=list)  # my vendors
    as_vendor: List[RelationshipView] = field(default_factory=list)  # my clients

    def for_role(self, role: ContextRole) -> List[RelationshipView]:
        return self.as_client if ContextRole(role) == ContextRole.CLIENT else self.as_vendor


# Tenants and users

async def get_tenant(db: AsyncSession, tenant_id: str) -> Optional[Tenant]:
    return await db.get(Tenant, tenant_id)


async def get_tenant_by_facet(db: AsyncSession, facet_id: str) -> Optional[Tenant]:
    result = await db.exec(
        select(Tenant).where(
            or_(Tenant.tenant_client_id == facet_id, Tenant.tenant_vendor_id == facet_id)
        )
    )
    return result.first()


async def get_tenant_by_code(db: AsyncSession, code: str) -> Optional[Tenant]:
    """Resolve a code a user typed: a primary id (TNT-) or a client facet id (TC-)"""
    code = code.strip().upper()
    if code.startswith(f"{TENANT_PREFIX}-"):
        return await get_tenant(db, code)
    if code.startswith(f"{CLIENT_FACET_PREFIX}-"):
        result = await db.exec(select(Tenant).where(Tenant.tenant_client_id == code))
        return result.first()
    return None


async def create_tenant(
    db: AsyncSession,
    name: str,
    email: Optional[str] = None,
    phone: Optional[str] = None,
    address: Optional[str] = None,
) -> Tenant:
    """Create a tenant with freshly issued primary and facet ids (not committed)"""
    ids = generate_tenant_ids(name)
    tenant = Tenant(
        tenant_id=ids.tenant_id,
        tenant_client_id=ids.tenant_client_id,
        tenant_vendor_id=ids.tenant_vendor_id,
        name=name,
        display_name=name,
        email=email.lower() if email else None,
        phone=phone,
        address=address,
    )
    db.add(tenant)
    await db.flush()
    logger.info("Tenant created", tenant_id=tenant.tenant_id)
    return tenant


async def get_user_by_email(db: AsyncSession, email: str) -> Optional[User]:
    result = await db.exec(select(User).where(User.email == email.strip().lower()))
    return result.first()


async def get_user_by_auth_id(db: AsyncSession, auth_user_id: str) -> Optional[User]:
    result = await db.exec(select(User).where(User.auth_user_id == auth_user_id))
    return result.first()


async def create_user(
    db: AsyncSession,
    tenant: Tenant,
    email: str,
    display_name: Optional[str] = None,
    password: Optional[str] = None,
    role: UserRole = UserRole.MEMBER,
    auth_user_id: Optional[str] = None,
    phone: Optional[str] = None,
    email_verified: bool = False,
) -> User:
    """Create a user inside tenant (not committed)"""
    email = email.strip().lower()
    if await get_user_by_email(db, email):
        raise RelationshipConflict("Email already registered")

    user = User(
        user_id=generate_id("USR", display_name),
        tenant_id=tenant.tenant_id,
        email=email,
        password_hash=hash_password(password) if password else None,
        auth_user_id=auth_user_id,
        display_name=display_name,
        phone=phone,
        role=role,
        email_verified=email_verified,
    )
    db.add(user)
    await db.flush()
    logger.info("User created", user_id=user.user_id, tenant_id=tenant.tenant_id, role=role.value)
    return user


# Relationships

async def get_tenant_relationships(db: AsyncSession, tenant: Tenant) -> TenantRelationships:
    """Active relationships for both facets of tenant"""
    as_client = await db.exec(
        select(TenantRelationship, Tenant)
        .join(Tenant, Tenant.tenant_vendor_id == TenantRelationship.vendor_id, isouter=True)
        .where(
            TenantRelationship.client_id == tenant.tenant_client_id,
            TenantRelationship.status == RelationshipStatus.ACTIVE,
        )
        .order_by(TenantRelationship.created_at)
    )
    as_vendor = await db.exec(
        select(TenantRelationship, Tenant)
        .join(Tenant, Tenant.tenant_client_id == TenantRelationship.client_id, isouter=True)
        .where(
            TenantRelationship.vendor_id == tenant.tenant_vendor_id,
            TenantRelationship.status == RelationshipStatus.ACTIVE,
        )
        .order_by(TenantRelationship.created_at)
    )

    return TenantRelationships(
        as_client=[
            RelationshipView(
                relationship_id=rel.relationship_id,
                own_facet_id=rel.client_id,
                counterparty_facet_id=rel.vendor_id,
                counterparty_tenant_id=other.tenant_id if other else None,
                counterparty_name=other.name if other else None,
            )
            for rel, other in as_client.all()
        ],
        as_vendor=[
            RelationshipView(
                relationship_id=rel.relationship_id,
                own_facet_id=rel.vendor_id,
                counterparty_facet_id=rel.client_id,
                counterparty_tenant_id=other.tenant_id if other else None,
                counterparty_name=other.name if other else None,
            )
            for rel, other in as_vendor.all()
        ],
    )


async def get_active_relationship(
    db: AsyncSession, client_id: str, vendor_id: str
) -> Optional[TenantRelationship]:
    result = await db.exec(
        select(TenantRelationship).where(
            TenantRelationship.client_id == client_id,
            TenantRelationship.vendor_id == vendor_id,
            TenantRelationship.status == RelationshipStatus.ACTIVE,
        )
    )
    return result.first()


async def list_relationships(db: AsyncSession, tenant: Tenant) -> List[TenantRelationship]:
    """Every relationship row touching either facet, any status"""
    result = await db.exec(
        select(TenantRelationship)
        .where(
            or_(
                TenantRelationship.client_id == tenant.tenant_client_id,
                TenantRelationship.vendor_id == tenant.tenant_vendor_id,
            )
        )
        .order_by(TenantRelationship.created_at.desc())
    )
    return list(result.all())


async def create_relationship(
    db: AsyncSession,
    client_id: str,
    vendor_id: str,
    invite_token: Optional[str] = None,
) -> TenantRelationship:
    """Create an active client -> vendor edge (not committed)"""
    client = await get_tenant_by_facet(db, client_id)
    vendor = await get_tenant_by_facet(db, vendor_id)
    if client is None or client.tenant_client_id != client_id:
        raise NotFound("Client")
    if vendor is None or vendor.tenant_vendor_id != vendor_id:
        raise NotFound("Vendor")
    if client.tenant_id == vendor.tenant_id:
        raise RelationshipConflict("A tenant cannot be its own vendor")
    if await get_active_relationship(db, client_id, vendor_id):
        raise RelationshipConflict("An active relationship already exists for this client and vendor")

    relationship = TenantRelationship(
        relationship_id=generate_id("REL"),
        client_id=client_id,
        vendor_id=vendor_id,
        invite_token=invite_token,
    )
    relationship.activate()
    db.add(relationship)
    await db.flush()
    logger.info(
        "Relationship created",
        relationship_id=relationship.relationship_id,
        client_id=client_id,
        vendor_id=vendor_id,
    )
    return relationship


async def _get_owned_relationship(db: AsyncSession, tenant: Tenant, relationship_id: str) -> TenantRelationship:
    result = await db.exec(
        select(TenantRelationship).where(
            TenantRelationship.relationship_id == relationship_id,
            or_(
                TenantRelationship.client_id == tenant.tenant_client_id,
                TenantRelationship.vendor_id == tenant.tenant_vendor_id,
            ),
        )
    )
    relationship = result.first()
    if relationship is None:
        raise NotFound("Relationship")
    return relationship


async def change_relationship_status(
    db: AsyncSession,
    tenant: Tenant,
    relationship_id: str,
    action: str,
) -> TenantRelationship:
    """Apply suspend, reactivate or terminate to a relationship tenant is part of"""
    if action not in RELATIONSHIP_ACTIONS:
        raise RelationshipConflict(f"Unknown relationship action '{action}'")
    relationship = await _get_owned_relationship(db, tenant, relationship_id)
    from_status = relationship.status

    if action == "reactivate" and await get_active_relationship(
        db, relationship.client_id, relationship.vendor_id
    ):
        raise RelationshipConflict("An active relationship already exists for this client and vendor")

    try:
        getattr(relationship, action)()
    except ValueError as e:
        raise RelationshipConflict(str(e))

    db.add(relationship)
    await db.commit()
    await db.refresh(relationship)

    logger.info(
        "Relationship status changed",
        relationship_id=relationship_id,
        from_status=from_status.value,
        to_status=relationship.status.value,
    )
    await event_bus.publish(
        RelationshipStatusChanged(
            relationship_id=relationship.relationship_id,
            client_id=relationship.client_id,
            vendor_id=relationship.vendor_id,
            from_status=from_status.value,
            to_status=relationship.status.value,
        )
    )
    return relationship


# Invitations

async def create_invite(
    db: AsyncSession,
    tenant: Tenant,
    invitee_email: str,
    invitee_name: Optional[str] = None,
) -> RelationshipInvitation:
    """Client tenant invites a vendor by email"""
    settings = get_settings()
    invite = RelationshipInvitation(
        token=generate_token(32),
        inviting_tenant_id=tenant.tenant_id,
        inviting_client_id=tenant.tenant_client_id,
        invitee_email=invitee_email.strip().lower(),
        invitee_name=invitee_name,
        expires_at=datetime.utcnow() + timedelta(days=settings.INVITE_TTL_DAYS),
    )
    db.add(invite)
    await db.commit()
    await db.refresh(invite)

    logger.info("Invite created", inviting_tenant_id=tenant.tenant_id, expires_at=invite.expires_at.isoformat())
    await event_bus.publish(
        InviteCreated(
            invite_token=invite.token,
            inviting_tenant_id=tenant.tenant_id,
            invitee_email=invite.invitee_email,
            invitee_name=invitee_name,
            expires_at=invite.expires_at,
        )
    )
    return invite


async def get_pending_invite(db: AsyncSession, token: str) -> RelationshipInvitation:
    """Return a usable invitation or raise InvalidInvitation"""
    invite = await db.get(RelationshipInvitation, token)
    if invite is None:
        raise InvalidInvitation("Invitation not found")

    can_accept, reason = invite.can_accept()
    if not can_accept:
        if invite.status == InvitationStatus.PENDING and invite.is_expired():
            invite.transition_to_expired()
            db.add(invite)
            await db.commit()
        raise InvalidInvitation(reason)
    return invite


async def revoke_invite(db: AsyncSession, tenant: Tenant, token: str) -> RelationshipInvitation:
    result = await db.exec(
        select(RelationshipInvitation).where(
            RelationshipInvitation.token == token,
            RelationshipInvitation.inviting_tenant_id == tenant.tenant_id,
        )
    )
    invite = result.first()
    if invite is None:
        raise NotFound("Invitation")
    try:
        invite.transition_to_revoked()
    except ValueError as e:
        raise InvalidInvitation(str(e))
    db.add(invite)
    await db.commit()
    logger.info("Invite revoked", inviting_tenant_id=tenant.tenant_id)
    return invite


async def _complete_invite(
    db: AsyncSession,
    invite: RelationshipInvitation,
    vendor: Tenant,
) -> TenantRelationship:
    try:
        values = invite.acceptance_values(vendor.tenant_id, vendor.tenant_vendor_id)
    except ValueError as e:
        raise InvalidInvitation(str(e))

    # Claim the row only while it is still pending; a concurrent acceptance
    # that committed first leaves nothing to update.
    result = await db.execute(
        update(RelationshipInvitation)
        .where(
            col(RelationshipInvitation.token) == invite.token,
            col(RelationshipInvitation.status) == InvitationStatus.PENDING,
        )
        .values(**values)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        logger.warning("Invite already claimed", inviting_tenant_id=invite.inviting_tenant_id)
        await db.rollback()
        raise InvalidInvitation("Invitation has already been used")

    relationship = await create_relationship(
        db,
        client_id=invite.inviting_client_id,
        vendor_id=vendor.tenant_vendor_id,
        invite_token=invite.token,
    )
    return relationship


async def accept_invite(
    db: AsyncSession,
    token: str,
    company_name: str,
    email: str,
    password: Optional[str] = None,
    display_name: Optional[str] = None,
    phone: Optional[str] = None,
    address: Optional[str] = None,
) -> tuple[Tenant, User, TenantRelationship]:
    """
    Onboard a new vendor from an invitation

    Creates the vendor tenant, its owner user and an active relationship to
    the inviting client, then marks the invitation accepted. All rows commit
    together.
    """
    invite = await get_pending_invite(db, token)

    tenant = await create_tenant(db, name=company_name, email=email, phone=phone, address=address)
    user = await create_user(
        db,
        tenant,
        email=email,
        display_name=display_name or company_name,
        password=password,
        role=UserRole.OWNER,
        phone=phone,
        email_verified=True,
    )
    relationship = await _complete_invite(db, invite, tenant)
    await db.commit()
    await db.refresh(invite)
    await db.refresh(tenant)
    await db.refresh(user)
    await db.refresh(relationship)

    await event_bus.publish(
        InviteAccepted(
            relationship_id=relationship.relationship_id,
            client_id=relationship.client_id,
            vendor_id=relationship.vendor_id,
            inviting_tenant_id=invite.inviting_tenant_id,
            accepting_tenant_id=tenant.tenant_id,
        )
    )
    return tenant, user, relationship


async def accept_invite_as_existing(db: AsyncSession, token: str, tenant: Tenant) -> TenantRelationship:
    """Link an already registered tenant as the invited vendor"""
    invite = await get_pending_invite(db, token)
    relationship = await _complete_invite(db, invite, tenant)
    await db.commit()
    await db.refresh(invite)
    await db.refresh(relationship)

    await event_bus.publish(
        InviteAccepted(
            relationship_id=relationship.relationship_id,
            client_id=relationship.client_id,
            vendor_id=relationship.vendor_id,
            inviting_tenant_id=invite.inviting_tenant_id,
            accepting_tenant_id=tenant.tenant_id,
        )
    )
    return relationship


async def expire_stale_invites(db: AsyncSession, now: Optional[datetime] = None) -> int:
    """Mark pending invitations past expiry as expired, returns how many"""
    now = now or datetime.utcnow()
    result = await db.exec(
        select(RelationshipInvitation).where(
            RelationshipInvitation.status == InvitationStatus.PENDING,
            RelationshipInvitation.expires_at < now,
        )
    )
    expired = 0
    for invite in result.all():
        invite.transition_to_expired(now)
        db.add(invite)
        expired += 1
    await db.commit()
    return expired
