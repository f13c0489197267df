"""
Payout and cache maintenance jobs run by the in-process scheduler.

The payout job shares the ``payout_run`` lock with GET /api/v1/cron/payouts,
so an external cron and this scheduler can both be enabled.
"""
import logging
from typing import Any, Dict, Optional

from bazaarmkt.database import get_db_session
from bazaarmkt.services.cache_service import CacheBackend, InMemoryCache
from bazaarmkt.services.payout_service import PayoutScheduler, PayoutRunInProgressError

logger = logging.getLogger(__name__)


async def run_payout_sweep(cache: Optional[CacheBackend] = None) -> Optional[Dict[str, Any]]:
    """
    Run one payout sweep in its own session.

    Returns:
        The run summary, or None when another run held the lock
    """
    async with get_db_session() as db:
        try:
            summary = await PayoutScheduler(db, cache=cache).run()
        except PayoutRunInProgressError:
            logger.info("Scheduled payout run skipped: another run holds the lock")
            return None

    logger.info(
        f"Scheduled payout run: {summary['processed']} processed, "
        f"{summary['skipped']} skipped, {summary['errors']} errors"
    )
    return summary


async def cleanup_cache(cache: CacheBackend) -> int:
    """Drop expired in-memory entries. Redis expires keys itself."""
    if not isinstance(cache, InMemoryCache):
        return 0
    removed = await cache.cleanup_expired()
    if removed:
        logger.debug(f"Removed {removed} expired cache entries")
    return removed
