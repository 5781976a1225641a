"""
Order-related background jobs.
"""

import logging
from datetime import datetime, timezone

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from bakery.database import get_db_session

logger = logging.getLogger(__name__)


async def release_expired_reservations(session_factory: async_sessionmaker[AsyncSession] = None) -> int:
    """
    Cancel card-payment orders whose reservation TTL has passed and give
    their stock back.

    Runs every RESERVATION_SWEEP_INTERVAL_MINUTES.
    """
    from bakery.services.order_pipeline import OrderPricingPipeline

    start_time = datetime.now(timezone.utc)

    try:
        async with get_db_session(session_factory) as session:
            expired = await OrderPricingPipeline(session).expire_stale_reservations()
    except Exception:
        logger.exception("Reservation expiry sweep failed")
        raise

    duration = (datetime.now(timezone.utc) - start_time).total_seconds()
    if expired:
        logger.info(f"Released {expired} expired reservation(s) in {duration:.2f}s")
    else:
        logger.debug(f"No expired reservations ({duration:.2f}s)")
    return expired
