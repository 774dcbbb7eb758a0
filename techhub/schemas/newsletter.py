"""Request bodies and value validators for newsletter publishing."""

import regex
from bs4 import BeautifulSoup
from pydantic import BaseModel, field_validator

TITLE_MAX_GRAPHEMES = 200
HTML_MAX_CHARS = 100_000
TEXT_MAX_CHARS = 50_000


def validate_title(value: str) -> str:
    """Validate a newsletter title and return it trimmed.

    Length is counted in user-perceived characters (extended grapheme
    clusters), so an emoji with modifiers counts once.
    """
    trimmed = value.strip()
    if not trimmed:
        raise ValueError("Invalid newsletter title: cannot be empty.")

    if len(regex.findall(r"\X", trimmed)) > TITLE_MAX_GRAPHEMES:
        raise ValueError(
            f"Invalid newsletter title: cannot be longer than {TITLE_MAX_GRAPHEMES} characters."
        )

    if not any(not c.isnumeric() and not c.isspace() for c in trimmed):
        raise ValueError("Invalid newsletter title: cannot contain only numbers.")

    return trimmed


def validate_html(value: str) -> str:
    """Validate newsletter HTML: non-empty, bounded, with at least one element."""
    trimmed = value.strip()
    if not trimmed:
        raise ValueError("Invalid newsletter HTML: cannot be empty.")

    if len(trimmed) > HTML_MAX_CHARS:
        raise ValueError(
            f"Invalid newsletter HTML: cannot be longer than {HTML_MAX_CHARS:,} characters."
        )

    # html.parser never invents wrapper elements, so plain text yields no tags
    if BeautifulSoup(trimmed, "html.parser").find() is None:
        raise ValueError("Invalid newsletter HTML: must contain valid HTML tags.")

    return trimmed


def validate_text(value: str) -> str:
    trimmed = value.strip()
    if not trimmed:
        raise ValueError("Invalid newsletter text: cannot be empty.")

    if len(trimmed) > TEXT_MAX_CHARS:
        raise ValueError(
            f"Invalid newsletter text: cannot be longer than {TEXT_MAX_CHARS:,} characters."
        )

    return trimmed


class NewsletterContent(BaseModel):
    """HTML and plain-text bodies of a newsletter."""

    html: str
    text: str

    @field_validator("html")
    @classmethod
    def check_html(cls, v: str) -> str:
        return validate_html(v)

    @field_validator("text")
    @classmethod
    def check_text(cls, v: str) -> str:
        return validate_text(v)


class PublishNewsletterRequest(BaseModel):
    """Request body for POST /admin/newsletters/publish."""

    title: str
    content: NewsletterContent

    @field_validator("title")
    @classmethod
    def check_title(cls, v: str) -> str:
        return validate_title(v)
