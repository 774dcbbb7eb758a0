from techhub.schemas.newsletter import NewsletterContent, PublishNewsletterRequest

__all__ = [
    "NewsletterContent",
    "PublishNewsletterRequest",
]
