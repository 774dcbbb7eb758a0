"""Persistent delivery queue for newsletter issues.

The queue is a table living next to the business data so that an issue and
its per-recipient tasks are written in one transaction (outbox pattern).
Workers take one task at a time with SELECT ... FOR UPDATE SKIP LOCKED and
keep the row lock until they commit or roll back.
"""

import uuid
from dataclasses import dataclass
from datetime import datetime

from sqlalchemy import Uuid, delete, func, insert, literal, select, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from techhub.core.database import db_utc_now
from techhub.core.datetime_utils import get_expiry
from techhub.core.logging import get_logger
from techhub.models.newsletter import DeliveryTask, NewsletterIssue
from techhub.models.user import User
from techhub.schemas.newsletter import PublishNewsletterRequest

logger = get_logger(__name__)


class IssueNotFoundError(Exception):
    """A live delivery task references an issue that does not exist."""


@dataclass
class DequeuedTask:
    """A locked task plus the session whose open transaction holds the lock.

    The caller owns the session: it must commit or roll back, then close it.
    """

    session: AsyncSession
    issue_id: uuid.UUID
    recipient_email: str
    retry_count: int


async def enqueue_issue_and_tasks(
    db: AsyncSession,
    newsletter: PublishNewsletterRequest,
) -> uuid.UUID:
    """Store a newsletter issue and fan it out to every current subscriber.

    Runs inside the caller's transaction and does not commit. Only users who
    are both activated and subscribed at this moment get a task.

    Args:
        db: Session with the caller's open transaction
        newsletter: Validated newsletter payload

    Returns:
        The new issue id
    """
    issue = NewsletterIssue(
        id=uuid.uuid4(),
        title=newsletter.title,
        text_content=newsletter.content.text,
        html_content=newsletter.content.html,
    )
    db.add(issue)
    await db.flush()

    recipients = select(
        literal(issue.id, Uuid()),
        User.email,
        literal(0),
        db_utc_now(),
    ).where(
        User.is_activated == True,  # noqa: E712
        User.is_subscribed == True,  # noqa: E712
    )
    result = await db.execute(
        insert(DeliveryTask).from_select(
            ["newsletter_issue_id", "recipient_email", "retry_count", "execute_after"],
            recipients,
        )
    )

    logger.bind(issue_id=str(issue.id), task_count=result.rowcount).info(
        "newsletter_issue_enqueued"
    )
    return issue.id


async def dequeue_task(
    session_factory: async_sessionmaker[AsyncSession],
) -> DequeuedTask | None:
    """Lock one eligible task in a fresh transaction.

    Rows locked by another worker are skipped rather than waited on, so
    concurrent workers never block each other or process the same task.

    Returns:
        The locked task, or None when nothing is eligible right now
    """
    session = session_factory()
    try:
        result = await session.execute(
            select(
                DeliveryTask.newsletter_issue_id,
                DeliveryTask.recipient_email,
                DeliveryTask.retry_count,
            )
            .where(DeliveryTask.execute_after <= db_utc_now())
            .order_by(DeliveryTask.execute_after)
            .limit(1)
            .with_for_update(skip_locked=True)
        )
        row = result.first()
    except Exception:
        await session.rollback()
        await session.close()
        raise

    if row is None:
        await session.rollback()
        await session.close()
        return None

    return DequeuedTask(
        session=session,
        issue_id=row.newsletter_issue_id,
        recipient_email=row.recipient_email,
        retry_count=row.retry_count,
    )


async def reschedule_task(
    db: AsyncSession,
    issue_id: uuid.UUID,
    recipient_email: str,
    retry_count: int,
    delay_seconds: float,
) -> datetime:
    """Record a failed attempt and push the task into the future.

    Returns:
        The new execute_after timestamp
    """
    execute_after = get_expiry(seconds=delay_seconds)
    await db.execute(
        update(DeliveryTask)
        .where(
            DeliveryTask.newsletter_issue_id == issue_id,
            DeliveryTask.recipient_email == recipient_email,
        )
        .values(retry_count=retry_count, execute_after=execute_after)
    )
    return execute_after


async def delete_task(db: AsyncSession, issue_id: uuid.UUID, recipient_email: str) -> None:
    await db.execute(
        delete(DeliveryTask).where(
            DeliveryTask.newsletter_issue_id == issue_id,
            DeliveryTask.recipient_email == recipient_email,
        )
    )


async def get_issue_content(db: AsyncSession, issue_id: uuid.UUID) -> NewsletterIssue:
    """Fetch the issue a task points at.

    Raises:
        IssueNotFoundError: If the issue is gone
    """
    issue = await db.get(NewsletterIssue, issue_id)
    if issue is None:
        raise IssueNotFoundError(f"Newsletter issue {issue_id} does not exist")
    return issue


async def count_pending_tasks(db: AsyncSession) -> int:
    result = await db.execute(select(func.count()).select_from(DeliveryTask))
    return result.scalar_one()


async def delete_issues_older_than(db: AsyncSession, cutoff: datetime) -> int:
    """Delete issues created before cutoff that have no tasks left to deliver.

    Returns:
        Number of issues deleted
    """
    pending = select(DeliveryTask.newsletter_issue_id).where(
        DeliveryTask.newsletter_issue_id == NewsletterIssue.id
    )
    result = await db.execute(
        delete(NewsletterIssue).where(
            NewsletterIssue.created_at < cutoff,
            ~pending.exists(),
        )
    )
    return result.rowcount
