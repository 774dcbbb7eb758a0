"""Admin endpoints for publishing newsletter issues."""

from fastapi import APIRouter, Header, HTTPException, Response, status

from techhub.core.logging import get_logger
from techhub.dependencies import Config, CurrentAdmin, SessionFactory
from techhub.schemas.newsletter import PublishNewsletterRequest
from techhub.services.idempotency import (
    IdempotencyConflictError,
    IdempotencyKey,
    InvalidIdempotencyKeyError,
)
from techhub.services.publish import publish_newsletter

logger = get_logger(__name__)

router = APIRouter()


@router.post("/newsletters/publish")
async def publish(
    body: PublishNewsletterRequest,
    user: CurrentAdmin,
    session_factory: SessionFactory,
    config: Config,
    idempotency_key: str | None = Header(default=None, alias="Idempotency-Key"),
) -> Response:
    """
    Publish a newsletter issue to every subscriber.

    Requires an admin session and an `Idempotency-Key` header. Repeating the
    request with the same key returns the original response without
    publishing again, even when the two requests arrive concurrently.
    Emails go out asynchronously through the delivery queue.
    """
    try:
        key = IdempotencyKey.parse(idempotency_key, max_length=config.idempotency.max_key_length)
    except InvalidIdempotencyKeyError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e)) from e

    try:
        saved = await publish_newsletter(
            session_factory,
            user_id=user.id,
            idempotency_key=key,
            newsletter=body,
            config=config.idempotency,
        )
    except IdempotencyConflictError as e:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail="A request with this idempotency key is still being processed",
        ) from e
    except Exception as e:
        logger.bind(
            user_id=str(user.id),
            idempotency_key=key.value,
            error=str(e),
            error_type=type(e).__name__,
        ).exception("newsletter_publish_failed")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="An unexpected error occurred",
        ) from e

    return saved.to_response()
