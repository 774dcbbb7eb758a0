"""
Periodic cleanup of idempotency records and old newsletter issues.

Each table is pruned in its own transaction so one failing delete does not
undo the other. Deleting an issue also deletes any of its tasks still
waiting in the queue.
"""

from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from techhub.config import RetentionConfig
from techhub.core.datetime_utils import get_cutoff
from techhub.core.logging import get_logger
from techhub.services.delivery_queue import delete_issues_older_than
from techhub.services.idempotency import delete_expired_records

logger = get_logger(__name__)


async def run_retention_sweep(
    session_factory: async_sessionmaker[AsyncSession],
    config: RetentionConfig,
) -> dict[str, Any]:
    """
    Delete idempotency records older than idempotency_ttl_hours and issues
    older than issue_ttl_days.

    Never raises: failures are logged and reported in the result, and the
    next scheduled run tries again.

    Returns:
        Dict with idempotency_deleted, issues_deleted and errors
    """
    stats: dict[str, Any] = {
        "idempotency_deleted": 0,
        "issues_deleted": 0,
        "errors": [],
    }

    async with session_factory() as db:
        try:
            cutoff = get_cutoff(hours=config.idempotency_ttl_hours)
            stats["idempotency_deleted"] = await delete_expired_records(db, cutoff)
            await db.commit()
        except Exception as e:
            await db.rollback()
            logger.bind(error=str(e)).error("idempotency_cleanup_failed")
            stats["errors"].append(f"idempotency: {e}")

    async with session_factory() as db:
        try:
            cutoff = get_cutoff(days=config.issue_ttl_days)
            stats["issues_deleted"] = await delete_issues_older_than(db, cutoff)
            await db.commit()
        except Exception as e:
            await db.rollback()
            logger.bind(error=str(e)).error("issue_cleanup_failed")
            stats["errors"].append(f"issues: {e}")

    logger.bind(
        idempotency_deleted=stats["idempotency_deleted"],
        issues_deleted=stats["issues_deleted"],
        error_count=len(stats["errors"]),
    ).info("retention_sweep_completed")
    return stats
