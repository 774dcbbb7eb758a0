"""Background delivery of queued newsletter issues.

Each iteration locks one due task, tries to email it and then, in the same
transaction, either deletes the task (delivered, undeliverable, or out of
retries) or reschedules it with exponential backoff.

Two backoffs are at play and they are deliberately separate:

- per task: a failed delivery is retried after 1, 2, 4, 8, 16 and 32 minutes
  (plus jitter) and dropped after max_retries retries;
- per loop: when the worker itself fails (database down, commit error) the
  loop sleeps 1s, 2s, 4s... up to 120s before trying again.

Delivery is at-least-once: a crash between the provider accepting an email
and the commit means the email is sent again on the next attempt.
"""

import asyncio
import enum
import random

from pydantic import EmailStr, TypeAdapter, ValidationError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from techhub.config import DeliveryConfig
from techhub.core.logging import get_logger
from techhub.core.retry import ExponentialBackoff, capped_exponential_delay
from techhub.services.delivery_queue import (
    DequeuedTask,
    delete_task,
    dequeue_task,
    get_issue_content,
    reschedule_task,
)
from techhub.services.email_service import EmailDeliveryError, send_newsletter_email

logger = get_logger(__name__)

_email_adapter = TypeAdapter(EmailStr)


class ExecutionOutcome(enum.Enum):
    TASK_COMPLETED = "task_completed"
    EMPTY_QUEUE = "empty_queue"


class TaskStateUnknownError(Exception):
    """Both the commit and the rollback of a task transaction failed.

    The task's row may or may not reflect this attempt.
    """

    def __init__(self, commit_error: BaseException, rollback_error: BaseException) -> None:
        super().__init__(
            f"Failed to commit task transaction ({commit_error!r}) "
            f"and to roll it back ({rollback_error!r})"
        )
        self.commit_error = commit_error
        self.rollback_error = rollback_error


def parse_recipient(address: str) -> str | None:
    """Return the normalized address, or None if it can never be delivered to."""
    try:
        return str(_email_adapter.validate_python(address.strip()))
    except ValidationError:
        return None


def next_retry_delay(
    retry_count: int, config: DeliveryConfig, rng: random.Random | None = None
) -> float:
    """Seconds until a task that has failed retry_count times before is retried."""
    return capped_exponential_delay(
        retry_count,
        base_seconds=config.retry_base_seconds,
        max_multiplier=config.retry_max_multiplier,
        jitter_seconds=config.retry_jitter_seconds,
        rng=rng,
    )


async def _deliver(
    db: AsyncSession,
    task: DequeuedTask,
    config: DeliveryConfig,
    rng: random.Random | None,
    log,
) -> None:
    recipient = parse_recipient(task.recipient_email)
    if recipient is None:
        log.warning("invalid_recipient_discarded")
        await delete_task(db, task.issue_id, task.recipient_email)
        return

    issue = await get_issue_content(db, task.issue_id)

    try:
        await asyncio.wait_for(
            send_newsletter_email(
                recipient=recipient,
                subject=issue.title,
                html_content=issue.html_content,
                text_content=issue.text_content,
            ),
            timeout=config.send_timeout_seconds,
        )
    except (EmailDeliveryError, TimeoutError) as e:
        next_retry = task.retry_count + 1
        error = str(e) or type(e).__name__

        if next_retry > config.max_retries:
            log.bind(retry_count=task.retry_count, error=error).error(
                "newsletter_delivery_abandoned"
            )
            await delete_task(db, task.issue_id, task.recipient_email)
            return

        delay = next_retry_delay(task.retry_count, config, rng)
        execute_after = await reschedule_task(
            db, task.issue_id, task.recipient_email, next_retry, delay
        )
        log.bind(
            retry_count=next_retry,
            delay_seconds=round(delay, 1),
            execute_after=execute_after.isoformat(),
            error=error,
        ).warning("newsletter_delivery_failed")
        return

    await delete_task(db, task.issue_id, task.recipient_email)
    log.info("newsletter_delivered")


async def _commit(db: AsyncSession, log) -> None:
    try:
        await db.commit()
    except Exception as commit_error:
        try:
            await db.rollback()
        except Exception as rollback_error:
            log.bind(
                commit_error=str(commit_error),
                rollback_error=str(rollback_error),
            ).critical("task_transaction_state_unknown")
            raise TaskStateUnknownError(commit_error, rollback_error) from rollback_error
        raise


async def try_execute_task(
    session_factory: async_sessionmaker[AsyncSession],
    config: DeliveryConfig,
    rng: random.Random | None = None,
) -> ExecutionOutcome:
    """
    Run one unit of work: dequeue a task, attempt it, persist the outcome.

    Delivery failures are not errors here; they reschedule or drop the task
    and still count as a completed unit. Errors raised from this function
    are infrastructure failures, and the task's transaction has been rolled
    back so its lock is released.

    Args:
        session_factory: Factory for worker sessions
        config: Delivery settings (timeouts and retry schedule)
        rng: Random source for retry jitter

    Returns:
        EMPTY_QUEUE if no task was due, TASK_COMPLETED otherwise
    """
    task = await dequeue_task(session_factory)
    if task is None:
        return ExecutionOutcome.EMPTY_QUEUE

    db = task.session
    log = logger.bind(issue_id=str(task.issue_id), recipient=task.recipient_email)
    try:
        try:
            await _deliver(db, task, config, rng, log)
        except Exception:
            await db.rollback()
            raise
        await _commit(db, log)
    finally:
        await db.close()

    return ExecutionOutcome.TASK_COMPLETED


class DeliveryWorker:
    """
    Long-running loop draining the delivery queue.

    Several workers (in one process or many) can run against the same
    database; the lock-skipping dequeue keeps them from colliding.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        config: DeliveryConfig,
        name: str = "delivery-worker",
        rng: random.Random | None = None,
    ) -> None:
        self.session_factory = session_factory
        self.config = config
        self.name = name
        self.rng = rng or random.Random()
        self.backoff = ExponentialBackoff(
            initial=config.loop_backoff_initial_seconds,
            maximum=config.loop_backoff_max_seconds,
            jitter_ratio=config.loop_backoff_jitter_ratio,
            rng=self.rng,
        )
        self._stop_event = asyncio.Event()
        self._task: asyncio.Task | None = None

    async def step(self) -> float:
        """Run one iteration and return how long to sleep before the next."""
        try:
            outcome = await try_execute_task(self.session_factory, self.config, self.rng)
        except Exception as e:
            delay = self.backoff.next_delay()
            logger.bind(
                worker=self.name,
                error=str(e),
                error_type=type(e).__name__,
                retry_in_seconds=round(delay, 2),
            ).warning("delivery_worker_iteration_failed")
            return delay

        self.backoff.reset()
        if outcome is ExecutionOutcome.EMPTY_QUEUE:
            return self.config.idle_sleep_seconds
        return 0.0

    async def run_until_stopped(self) -> None:
        logger.bind(worker=self.name).info("delivery_worker_started")
        while not self._stop_event.is_set():
            delay = await self.step()
            if delay > 0:
                try:
                    await asyncio.wait_for(self._stop_event.wait(), timeout=delay)
                except TimeoutError:
                    pass
        logger.bind(worker=self.name).info("delivery_worker_stopped")

    async def drain(self) -> int:
        """Process tasks until none is due. Errors propagate to the caller.

        Returns:
            Number of tasks processed (delivered, rescheduled or dropped)
        """
        processed = 0
        while await try_execute_task(self.session_factory, self.config, self.rng) is (
            ExecutionOutcome.TASK_COMPLETED
        ):
            processed += 1
        return processed

    def start(self) -> None:
        """Run the loop as a background task on the current event loop."""
        if self._task is not None and not self._task.done():
            return
        self._stop_event.clear()
        self._task = asyncio.create_task(self.run_until_stopped(), name=self.name)

    async def stop(self) -> None:
        """Ask the loop to stop and wait for the current iteration to finish."""
        self._stop_event.set()
        if self._task is not None:
            await self._task
            self._task = None
