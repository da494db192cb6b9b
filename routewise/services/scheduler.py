"""
Trip Maintenance Scheduler
Runs as a background asyncio task on app startup when ENABLE_SCHEDULER is on.
Each cycle reschedules yesterday's underfilled trips and then deletes trips
older than the retention window. Deployments that use an external cron
against /api/cron/* leave it off.
"""
import asyncio
import logging

from routewise.services.container import ServiceContainer

logger = logging.getLogger(__name__)


async def run_maintenance(container: ServiceContainer) -> None:
    """One reschedule + cleanup cycle. Errors are logged, never raised."""
    try:
        report = await container.rescheduler.reschedule_underfilled()
        if report.rescheduled or report.failed:
            print(f"🔁 Trip Scheduler: {report.rescheduled} passenger(s) moved, {report.failed} failed.")
    except Exception as exc:
        logger.error("❌ Error rescheduling underfilled trips: %s", exc)

    try:
        deleted = await container.synchronizer.cleanup_past_trips()
        if deleted:
            print(f"🧹 Trip Scheduler: {deleted} old trip(s) deleted.")
    except Exception as exc:
        logger.error("❌ Error cleaning up past trips: %s", exc)


async def run_trip_scheduler(container: ServiceContainer, interval_seconds: int = 60 * 60 * 24) -> None:
    """
    Infinite loop that calls run_maintenance() every `interval_seconds`.
    Launched as an asyncio background task from the app lifespan.
    """
    print(f"🕐 Trip Scheduler started (interval: {interval_seconds}s)")
    await run_maintenance(container)
    while True:
        await asyncio.sleep(interval_seconds)
        await run_maintenance(container)
