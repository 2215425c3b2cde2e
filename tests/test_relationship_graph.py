"""
Tests for tenants, relationships and invitations
"""

import pytest
from datetime import datetime, timedelta

from sqlmodel import select
from sqlmodel.ext.asyncio.session import AsyncSession

from opsportal.core.errors import InvalidInvitation, NotFound, RelationshipConflict
from opsportal.core.events import event_bus
from opsportal.models import (
    InvitationStatus,
    RelationshipInvitation,
    RelationshipStatus,
    Tenant,
    TenantRelationship,
)
from opsportal.services import relationship_graph as graph


async def test_tenant_facets_share_code(db):
    tenant = await graph.create_tenant(db, name="Harbor Supply", email="Ops@Harbor.test")

    assert tenant.tenant_id.startswith("TNT-HARB")
    code = tenant.tenant_id.split("-", 1)[1]
    assert tenant.tenant_client_id == f"TC-{code}"
    assert tenant.tenant_vendor_id == f"TV-{code}"
    assert tenant.email == "ops@harbor.test"


async def test_get_tenant_by_code(db, make_member):
    alpha = await make_member("Alpha Foods")

    assert (await graph.get_tenant_by_code(db, alpha.tenant.tenant_id.lower())).tenant_id == alpha.tenant.tenant_id
    assert (await graph.get_tenant_by_code(db, f" {alpha.tenant.tenant_client_id} ")).tenant_id == alpha.tenant.tenant_id
    assert await graph.get_tenant_by_code(db, alpha.tenant.tenant_vendor_id) is None
    assert await graph.get_tenant_by_code(db, "TC-NOPE0000") is None


async def test_relationships_grouped_by_side(db, make_member, link):
    alpha = await make_member("Alpha Foods")
    beta = await make_member("Beta Logistics")
    await link(alpha, beta)

    alpha_view = await graph.get_tenant_relationships(db, alpha.tenant)
    beta_view = await graph.get_tenant_relationships(db, beta.tenant)

    (vendor,) = alpha_view.as_client
    assert alpha_view.as_vendor == []
    assert vendor.own_facet_id == alpha.tenant.tenant_client_id
    assert vendor.counterparty_facet_id == beta.tenant.tenant_vendor_id
    assert vendor.counterparty_name == "Beta Logistics"

    (client,) = beta_view.as_vendor
    assert client.counterparty_facet_id == alpha.tenant.tenant_client_id


async def test_self_relationship_rejected(db, make_member):
    alpha = await make_member("Alpha Foods")
    with pytest.raises(RelationshipConflict):
        await graph.create_relationship(db, alpha.tenant.tenant_client_id, alpha.tenant.tenant_vendor_id)


async def test_facets_must_be_on_the_right_side(db, make_member):
    alpha = await make_member("Alpha Foods")
    beta = await make_member("Beta Logistics")
    with pytest.raises(NotFound):
        await graph.create_relationship(db, alpha.tenant.tenant_vendor_id, beta.tenant.tenant_vendor_id)
    with pytest.raises(NotFound):
        await graph.create_relationship(db, alpha.tenant.tenant_client_id, beta.tenant.tenant_client_id)


async def test_duplicate_active_pair_rejected(db, make_member, link):
    alpha = await make_member("Alpha Foods")
    beta = await make_member("Beta Logistics")
    await link(alpha, beta)

    with pytest.raises(RelationshipConflict):
        await link(alpha, beta)


async def test_suspended_relationship_leaves_context(db, make_member, link):
    alpha = await make_member("Alpha Foods")
    beta = await make_member("Beta Logistics")
    relationship = await link(alpha, beta)

    updated = await graph.change_relationship_status(db, beta.tenant, relationship.relationship_id, "suspend")

    assert updated.status == RelationshipStatus.SUSPENDED
    assert (await graph.get_tenant_relationships(db, alpha.tenant)).as_client == []


async def test_reactivate_conflicts_with_newer_active_edge(db, make_member, link):
    alpha = await make_member("Alpha Foods")
    beta = await make_member("Beta Logistics")
    first = await link(alpha, beta)
    await graph.change_relationship_status(db, alpha.tenant, first.relationship_id, "suspend")
    await link(alpha, beta)

    with pytest.raises(RelationshipConflict):
        await graph.change_relationship_status(db, alpha.tenant, first.relationship_id, "reactivate")


async def test_terminated_relationship_is_final(db, make_member, link):
    alpha = await make_member("Alpha Foods")
    beta = await make_member("Beta Logistics")
    relationship = await link(alpha, beta)
    terminated = await graph.change_relationship_status(db, alpha.tenant, relationship.relationship_id, "terminate")
    assert terminated.terminated_at is not None

    with pytest.raises(RelationshipConflict):
        await graph.change_relationship_status(db, alpha.tenant, relationship.relationship_id, "reactivate")


async def test_outsider_cannot_change_relationship(db, make_member, link):
    alpha = await make_member("Alpha Foods")
    beta = await make_member("Beta Logistics")
    gamma = await make_member("Gamma Traders")
    relationship = await link(alpha, beta)

    with pytest.raises(NotFound):
        await graph.change_relationship_status(db, gamma.tenant, relationship.relationship_id, "terminate")


async def test_unknown_action_rejected(db, make_member, link):
    alpha = await make_member("Alpha Foods")
    beta = await make_member("Beta Logistics")
    relationship = await link(alpha, beta)
    with pytest.raises(RelationshipConflict):
        await graph.change_relationship_status(db, alpha.tenant, relationship.relationship_id, "delete")


async def test_status_change_publishes_event(db, make_member, link):
    alpha = await make_member("Alpha Foods")
    beta = await make_member("Beta Logistics")
    relationship = await link(alpha, beta)
    received = []

    async def handler(event):
        received.append(event.to_dict())

    event_bus.subscribe("RelationshipStatusChanged", handler)
    await graph.change_relationship_status(db, alpha.tenant, relationship.relationship_id, "suspend")

    assert received[0]["from_status"] == "active"
    assert received[0]["to_status"] == "suspended"


# Invitations

async def test_invite_and_accept_as_new_vendor(db, make_member):
    alpha = await make_member("Alpha Foods")
    invite = await graph.create_invite(db, alpha.tenant, " Sales@NewVendor.test ", "New Vendor")
    assert invite.invitee_email == "sales@newvendor.test"
    assert len(invite.token) == 64

    tenant, user, relationship = await graph.accept_invite(
        db,
        invite.token,
        company_name="New Vendor Ltd",
        email="sales@newvendor.test",
        password="longenough",
    )

    assert relationship.client_id == alpha.tenant.tenant_client_id
    assert relationship.vendor_id == tenant.tenant_vendor_id
    assert relationship.status == RelationshipStatus.ACTIVE
    assert relationship.invite_token == invite.token
    assert user.tenant_id == tenant.tenant_id
    assert user.email_verified

    await db.refresh(invite)
    assert invite.status == InvitationStatus.ACCEPTED
    assert invite.accepted_by_vendor_id == tenant.tenant_vendor_id

    with pytest.raises(InvalidInvitation):
        await graph.accept_invite(db, invite.token, company_name="Again", email="again@newvendor.test")


async def test_invite_is_claimed_once(db, make_member):
    """Two acceptances that both read the invite as pending create one vendor"""
    alpha = await make_member("Alpha Foods")
    invite = await graph.create_invite(db, alpha.tenant, "sales@newvendor.test")

    async with AsyncSession(db.bind, expire_on_commit=False) as other:
        stale = await graph.get_pending_invite(other, invite.token)
        assert stale.status == InvitationStatus.PENDING

        await graph.accept_invite(db, invite.token, company_name="First Vendor", email="first@newvendor.test")
        with pytest.raises(InvalidInvitation) as exc_info:
            await graph.accept_invite(other, invite.token, company_name="Second Vendor", email="second@newvendor.test")

    assert exc_info.value.message == "Invitation has already been used"
    relationships = (
        await db.exec(select(TenantRelationship).where(TenantRelationship.invite_token == invite.token))
    ).all()
    assert len(relationships) == 1
    assert (await db.exec(select(Tenant).where(Tenant.name == "Second Vendor"))).first() is None


async def test_accept_as_existing_tenant(db, make_member):
    alpha = await make_member("Alpha Foods")
    beta = await make_member("Beta Logistics")
    invite = await graph.create_invite(db, alpha.tenant, "owner@beta-logistics.test")

    relationship = await graph.accept_invite_as_existing(db, invite.token, beta.tenant)

    assert relationship.vendor_id == beta.tenant.tenant_vendor_id
    assert (await graph.get_tenant_relationships(db, beta.tenant)).as_vendor


async def test_expired_invite_is_marked_on_access(db, make_member):
    alpha = await make_member("Alpha Foods")
    invite = await graph.create_invite(db, alpha.tenant, "late@vendor.test")
    invite.expires_at = datetime.utcnow() - timedelta(minutes=1)
    db.add(invite)
    await db.commit()

    with pytest.raises(InvalidInvitation) as exc_info:
        await graph.get_pending_invite(db, invite.token)
    assert exc_info.value.message == "Invitation has expired"

    stored = await db.get(RelationshipInvitation, invite.token)
    assert stored.status == InvitationStatus.EXPIRED


async def test_unknown_invite_token(db):
    with pytest.raises(InvalidInvitation):
        await graph.get_pending_invite(db, "0" * 64)


async def test_revoke_invite(db, make_member):
    alpha = await make_member("Alpha Foods")
    beta = await make_member("Beta Logistics")
    invite = await graph.create_invite(db, alpha.tenant, "vendor@x.test")

    with pytest.raises(NotFound):
        await graph.revoke_invite(db, beta.tenant, invite.token)

    revoked = await graph.revoke_invite(db, alpha.tenant, invite.token)
    assert revoked.status == InvitationStatus.REVOKED

    with pytest.raises(InvalidInvitation):
        await graph.revoke_invite(db, alpha.tenant, invite.token)
    with pytest.raises(InvalidInvitation):
        await graph.accept_invite_as_existing(db, invite.token, beta.tenant)


async def test_expire_stale_invites(db, make_member):
    alpha = await make_member("Alpha Foods")
    stale = await graph.create_invite(db, alpha.tenant, "stale@x.test")
    fresh = await graph.create_invite(db, alpha.tenant, "fresh@x.test")
    stale.expires_at = datetime.utcnow() - timedelta(days=1)
    db.add(stale)
    await db.commit()

    assert await graph.expire_stale_invites(db) == 1

    await db.refresh(stale)
    await db.refresh(fresh)
    assert stale.status == InvitationStatus.EXPIRED
    assert fresh.status == InvitationStatus.PENDING


async def test_invite_event_omits_token(db, make_member):
    alpha = await make_member("Alpha Foods")
    received = []

    async def handler(event):
        received.append(event.to_dict())

    event_bus.subscribe("InviteCreated", handler)
    invite = await graph.create_invite(db, alpha.tenant, "vendor@x.test")

    assert received[0]["invitee_email"] == "vendor@x.test"
    assert invite.token not in received[0].values()
