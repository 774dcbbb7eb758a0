"""
Background work running inside the API process.

- Retention sweep: APScheduler interval job, every 24 hours with up to an
  hour of jitter so replicas don't sweep in lockstep.
- Delivery workers: long-running loops draining the delivery queue. They
  are plain asyncio tasks rather than scheduler jobs because they pace
  themselves (idle sleep and error backoff).
"""

from apscheduler import AsyncScheduler, ConflictPolicy
from apscheduler.datastores.memory import MemoryDataStore
from apscheduler.triggers.interval import IntervalTrigger

from techhub.config import get_config, get_settings
from techhub.core.database import AsyncSessionLocal
from techhub.core.logging import get_logger
from techhub.services.delivery_worker import DeliveryWorker
from techhub.services.retention import run_retention_sweep

logger = get_logger(__name__)

# Global scheduler instance
scheduler: AsyncScheduler | None = None

delivery_workers: list[DeliveryWorker] = []


async def retention_sweep_job() -> None:
    """Delete expired idempotency records and issues."""
    logger.info("scheduled_retention_sweep_started")
    stats = await run_retention_sweep(AsyncSessionLocal, get_config().retention)
    logger.bind(
        idempotency_deleted=stats["idempotency_deleted"],
        issues_deleted=stats["issues_deleted"],
    ).info("scheduled_retention_sweep_completed")


async def start_scheduler() -> AsyncScheduler | None:
    """Initialize and start the scheduler."""
    global scheduler

    settings = get_settings()
    if not settings.scheduler_enabled:
        logger.info("scheduler_disabled_by_config")
        return None

    retention = get_config().retention

    # Schedules are rebuilt on every start, nothing to persist
    scheduler = AsyncScheduler(data_store=MemoryDataStore())

    # Required before calling other methods in APScheduler 4.x
    await scheduler.__aenter__()

    await scheduler.add_schedule(
        retention_sweep_job,
        IntervalTrigger(hours=retention.interval_hours),
        id="retention_sweep",
        conflict_policy=ConflictPolicy.replace,
        max_jitter=retention.max_jitter_seconds,
    )

    await scheduler.start_in_background()

    logger.bind(jobs=["retention_sweep"]).info("scheduler_started")

    return scheduler


async def stop_scheduler() -> None:
    """Gracefully stop the scheduler."""
    global scheduler
    if scheduler:
        await scheduler.__aexit__(None, None, None)
        logger.info("scheduler_stopped")
        scheduler = None


def start_delivery_workers() -> list[DeliveryWorker]:
    """Start the configured number of delivery workers on the running loop."""
    settings = get_settings()
    if not settings.delivery_worker_enabled:
        logger.info("delivery_workers_disabled_by_config")
        return []

    config = get_config().delivery
    for index in range(config.worker_count):
        worker = DeliveryWorker(AsyncSessionLocal, config, name=f"delivery-worker-{index}")
        worker.start()
        delivery_workers.append(worker)

    logger.bind(worker_count=len(delivery_workers)).info("delivery_workers_started")
    return delivery_workers


async def stop_delivery_workers() -> None:
    """Stop all delivery workers, letting in-flight tasks finish."""
    for worker in delivery_workers:
        await worker.stop()
    if delivery_workers:
        logger.bind(worker_count=len(delivery_workers)).info("delivery_workers_stopped")
    delivery_workers.clear()
