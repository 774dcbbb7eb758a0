from techhub.models.base import Base
from techhub.models.idempotency import IdempotencyRecord
from techhub.models.newsletter import DeliveryTask, NewsletterIssue
from techhub.models.user import Session, User

__all__ = [
    "Base",
    "User",
    "Session",
    "NewsletterIssue",
    "DeliveryTask",
    "IdempotencyRecord",
]
