import asyncio

import resend

from techhub.config import get_settings
from techhub.core.logging import get_logger

logger = get_logger(__name__)


class EmailDeliveryError(Exception):
    """The email provider did not accept a message."""


def _init_resend() -> None:
    """Initialize Resend API with API key."""
    settings = get_settings()
    if settings.resend_api_key:
        resend.api_key = settings.resend_api_key


async def send_newsletter_email(
    recipient: str,
    subject: str,
    html_content: str,
    text_content: str,
) -> None:
    """
    Send one newsletter issue to one recipient.

    The Resend SDK is synchronous, so the call runs in a worker thread.
    Callers bound the wait with their own timeout.

    Args:
        recipient: Validated recipient address
        subject: Issue title
        html_content: HTML body
        text_content: Plain-text body

    Raises:
        EmailDeliveryError: If the provider rejected the message or was unreachable,
            or no API key is configured outside debug mode
    """
    _init_resend()
    settings = get_settings()

    if not settings.resend_api_key:
        logger.bind(recipient=recipient).warning("resend_api_key_not_set")
        if settings.debug:
            return
        raise EmailDeliveryError("RESEND_API_KEY is not configured")

    params = {
        "from": settings.email_sender,
        "to": [recipient],
        "subject": subject,
        "html": html_content,
        "text": text_content,
    }

    try:
        await asyncio.to_thread(resend.Emails.send, params)
    except Exception as e:
        raise EmailDeliveryError(f"Failed to send newsletter to {recipient}") from e

    logger.bind(recipient=recipient).debug("newsletter_email_sent")
