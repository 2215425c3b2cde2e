"""
Tests for the invitation and session cleanup job
"""

import pytest
from datetime import datetime, timedelta
from unittest.mock import AsyncMock

from sqlalchemy.exc import OperationalError
from sqlmodel import select

from opsportal.core.ids import generate_token
from opsportal.models import InvitationStatus, PortalSession
from opsportal.scripts import expire_invites
from opsportal.scripts.expire_invites import purge_expired_sessions, run_cleanup
from opsportal.services import relationship_graph as graph


async def test_purge_expired_sessions(db, make_member):
    alpha = await make_member("Alpha Foods")
    now = datetime.utcnow()
    for expires_at in (now - timedelta(hours=1), now + timedelta(hours=1)):
        db.add(
            PortalSession(
                id=generate_token(),
                user_id=alpha.user.user_id,
                tenant_id=alpha.tenant.tenant_id,
                expires_at=expires_at,
            )
        )
    await db.commit()

    assert await purge_expired_sessions(db, now) == 1
    remaining = (await db.exec(select(PortalSession))).all()
    assert len(remaining) == 1
    assert remaining[0].expires_at > now


async def test_run_cleanup(db, make_member):
    alpha = await make_member("Alpha Foods")
    invite = await graph.create_invite(db, alpha.tenant, "late@vendor.test")

    results = await run_cleanup(db, now=invite.expires_at + timedelta(seconds=1))

    assert results == {"expired_invites": 1, "purged_sessions": 0}
    await db.refresh(invite)
    assert invite.status == InvitationStatus.EXPIRED


async def test_run_cleanup_rolls_back_on_failure(db, monkeypatch):
    monkeypatch.setattr(
        expire_invites,
        "expire_stale_invites",
        AsyncMock(side_effect=OperationalError("UPDATE", {}, Exception("database is locked"))),
    )
    rollback = AsyncMock(wraps=db.rollback)
    monkeypatch.setattr(db, "rollback", rollback)

    with pytest.raises(OperationalError):
        await run_cleanup(db)
    rollback.assert_awaited_once()
