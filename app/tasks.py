import asyncio
import logging

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from config import RETENTION_DAYS, SWEEP_INTERVAL_SECONDS
from app.database import async_session_maker
from app.store import LinkStore

logger = logging.getLogger(__name__)


async def run_retention_sweep(db: AsyncSession, retention_days: int = RETENTION_DAYS) -> dict:
    store = LinkStore(db)
    counts = {
        "deactivated": await store.deactivate_expired_links(),
        "deleted_links": await store.delete_old_inactive_links(retention_days),
        "deleted_clicks": await store.delete_old_clicks(retention_days),
    }
    logger.info(
        f"Retention sweep: deactivated {counts['deactivated']} expired links, "
        f"deleted {counts['deleted_links']} inactive links and {counts['deleted_clicks']} clicks"
    )
    return counts


async def periodic_task(interval: int = SWEEP_INTERVAL_SECONDS):
    while True:
        try:
            async with async_session_maker() as session:
                await run_retention_sweep(session)
        except SQLAlchemyError:
            logger.exception("Retention sweep failed, retrying next interval")
        await asyncio.sleep(interval)


async def sweep_once():
    async with async_session_maker() as session:
        return await run_retention_sweep(session)


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO)
    asyncio.run(sweep_once())
