"""Request-time half of newsletter publishing.

Turns one publish request into exactly one issue plus its delivery tasks,
no matter how many times the client retries with the same idempotency key.
The reservation, the issue, the tasks and the saved response commit together
or not at all.
"""

import uuid

from fastapi import Response, status
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from techhub.config import IdempotencyConfig
from techhub.core.logging import get_logger
from techhub.schemas.newsletter import PublishNewsletterRequest
from techhub.services.delivery_queue import enqueue_issue_and_tasks
from techhub.services.idempotency import (
    IdempotencyKey,
    SavedResponse,
    get_saved_response,
    save_response,
    try_reserve,
    wait_for_saved_response,
)

logger = get_logger(__name__)


async def publish_newsletter(
    session_factory: async_sessionmaker[AsyncSession],
    user_id: uuid.UUID,
    idempotency_key: IdempotencyKey,
    newsletter: PublishNewsletterRequest,
    config: IdempotencyConfig,
) -> SavedResponse:
    """
    Publish a newsletter once per (user, idempotency key).

    1. A completed response for the key is replayed as is.
    2. Otherwise the key is reserved; if another request holds it, wait for
       that request to finish and replay its response.
    3. The issue and one task per subscriber are written in the reservation's
       transaction, the response is saved and everything commits at once.

    Any error after the reservation rolls the whole transaction back, which
    also releases the key so a retry can succeed.

    Args:
        session_factory: Factory for sessions owning their own transactions
        user_id: Authenticated publisher
        idempotency_key: Validated key from the Idempotency-Key header
        newsletter: Validated payload
        config: Idempotency wait settings

    Returns:
        The response to send, identical for the original request and replays

    Raises:
        IdempotencyConflictError: If a concurrent holder did not finish in time
    """
    log = logger.bind(user_id=str(user_id), idempotency_key=idempotency_key.value)

    async with session_factory() as db:
        saved = await get_saved_response(db, user_id, idempotency_key)
    if saved is not None:
        log.info("idempotent_replay")
        return saved

    while True:
        async with session_factory() as db:
            if await try_reserve(db, user_id, idempotency_key):
                try:
                    issue_id = await enqueue_issue_and_tasks(db, newsletter)
                    response = SavedResponse.from_response(Response(status_code=status.HTTP_200_OK))
                    await save_response(db, user_id, idempotency_key, response)
                    await db.commit()
                except Exception:
                    await db.rollback()
                    raise

                log.bind(issue_id=str(issue_id)).info("newsletter_published")
                return response

        saved = await wait_for_saved_response(
            session_factory,
            user_id,
            idempotency_key,
            timeout_seconds=config.wait_timeout_seconds,
            poll_interval_seconds=config.poll_interval_seconds,
        )
        if saved is not None:
            log.info("idempotent_replay_after_wait")
            return saved

        # The holder rolled back; the key is free again
        log.info("idempotency_reservation_released")
