"""
Background job to expire stale invitations and purge expired sessions

This script should be run periodically (e.g., via cron) so that pending
invitations past their TTL are marked expired and dead portal sessions do
not keep provider tokens around.
"""

import asyncio
import sys
from datetime import datetime

from sqlalchemy import delete
from sqlmodel.ext.asyncio.session import AsyncSession
import structlog

from opsportal.core.database import async_session_maker
from opsportal.models import PortalSession
from opsportal.services.relationship_graph import expire_stale_invites

logger = structlog.get_logger(__name__)


async def purge_expired_sessions(db: AsyncSession, now: datetime) -> int:
    """Delete sessions past their expiry, returns how many"""
    result = await db.execute(delete(PortalSession).where(PortalSession.expires_at < now))
    await db.commit()
    return result.rowcount or 0


async def run_cleanup(db: AsyncSession, now: datetime = None) -> dict:
    """Expire invitations and purge sessions in one pass"""
    now = now or datetime.utcnow()
    try:
        expired_invites = await expire_stale_invites(db, now)
        purged_sessions = await purge_expired_sessions(db, now)
    except Exception:
        await db.rollback()
        logger.exception("Cleanup failed")
        raise

    results = {"expired_invites": expired_invites, "purged_sessions": purged_sessions}
    logger.info("Cleanup finished", **results)
    return results


async def _main() -> dict:
    async with async_session_maker() as db:
        return await run_cleanup(db)


def main():
    """Main entry point for cleanup job"""
    logger.info("Starting invitation and session cleanup job")
    try:
        results = asyncio.run(_main())
    except Exception as e:
        logger.error("Fatal error in cleanup job", error=str(e))
        sys.exit(1)
    logger.info("Cleanup job complete", **results)


if __name__ == "__main__":
    main()
