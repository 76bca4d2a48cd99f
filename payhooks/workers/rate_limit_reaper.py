"""
Rate limit reaper - drops expired rate-limit windows so memory stays bounded
no matter how many distinct client addresses show up.
Runs every RATE_LIMIT_REAP_INTERVAL_SECONDS (default 60).
"""
import asyncio
import logging

logger = logging.getLogger(__name__)

POLL_INTERVAL_SECONDS = 60


async def run_rate_limit_reaper(limiter, interval: float = POLL_INTERVAL_SECONDS):
    """Main reaper loop. Runs until cancelled."""
    logger.info("Rate limit reaper started (interval=%ss)", interval)

    while True:
        await asyncio.sleep(interval)
        try:
            removed = limiter.reap()
            if removed:
                logger.debug("Rate limit reaper removed %d expired windows", removed)
        except Exception as e:
            logger.error("Rate limit reaper error: %s", str(e), exc_info=True)
