"""Newsletter issues and the per-recipient delivery queue."""

from __future__ import annotations

import uuid
from datetime import datetime

from sqlalchemy import ForeignKey, Integer, String, Text, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from techhub.core.datetime_utils import utc_now
from techhub.models.base import Base, TimestampMixin


class NewsletterIssue(Base, TimestampMixin):
    """Immutable content of one published newsletter."""

    __tablename__ = "newsletter_issues"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    title: Mapped[str] = mapped_column(Text)
    text_content: Mapped[str] = mapped_column(Text)
    html_content: Mapped[str] = mapped_column(Text)

    def __repr__(self) -> str:
        return f"<NewsletterIssue {self.id}>"


class DeliveryTask(Base):
    """One pending delivery of an issue to one recipient.

    Rows are only mutated while holding the row lock taken at dequeue time.
    A row is eligible for dequeue once execute_after <= now.
    """

    __tablename__ = "issue_delivery_queue"

    newsletter_issue_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("newsletter_issues.id"),
        primary_key=True,
    )
    recipient_email: Mapped[str] = mapped_column(String(320), primary_key=True)
    retry_count: Mapped[int] = mapped_column(Integer, default=0)
    execute_after: Mapped[datetime] = mapped_column(default=utc_now, index=True)

    def __repr__(self) -> str:
        return (
            f"<DeliveryTask issue={self.newsletter_issue_id} "
            f"to={self.recipient_email} retries={self.retry_count}>"
        )
