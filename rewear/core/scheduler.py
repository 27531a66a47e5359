import asyncio
import logging

logger = logging.getLogger("scheduler")

async def expire_stale_swaps(swap_service):
    """
    Cancel or dispute swaps that have sat too long in one status.

    What counts as "too long" is decided by the service's expiry policy.
    """
    try:
        logger.info("Starting stale swap check")
        expired = await swap_service.expire_stale_swaps()
        logger.info(f"Expired {expired} stale swaps")
    except Exception as e:
        logger.error(f"Error in expire_stale_swaps: {str(e)}")

async def run_scheduled_tasks(swap_service, interval_seconds: int = 3600):
    """
    Run all scheduled tasks periodically.
    """
    while True:
        await expire_stale_swaps(swap_service)

        # Wait for next run
        await asyncio.sleep(interval_seconds)
