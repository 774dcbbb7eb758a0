"""Idempotency keys for retried and duplicated HTTP requests.

A request that carries an Idempotency-Key first tries to insert an empty
record for (user, key). The primary key turns that insert into a lock:
whoever inserts first does the work and fills in the response in the same
transaction; anyone else either finds the saved response or waits for it.
"""

import asyncio
import time
import uuid
from dataclasses import dataclass, field
from datetime import datetime

from fastapi import Response
from sqlalchemy import delete, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from techhub.core.logging import get_logger
from techhub.models.idempotency import IdempotencyRecord

logger = get_logger(__name__)


class InvalidIdempotencyKeyError(ValueError):
    """The Idempotency-Key header is missing, empty or too long."""


class IdempotencyConflictError(Exception):
    """Another request still holds the key after the wait timeout."""


@dataclass(frozen=True)
class IdempotencyKey:
    value: str

    @classmethod
    def parse(cls, raw: str | None, max_length: int = 50) -> "IdempotencyKey":
        """Validate a caller-supplied key.

        Raises:
            InvalidIdempotencyKeyError: If the key is empty or longer than max_length
        """
        trimmed = (raw or "").strip()
        if not trimmed:
            raise InvalidIdempotencyKeyError("The idempotency key cannot be empty")
        if len(trimmed) > max_length:
            raise InvalidIdempotencyKeyError(
                f"The idempotency key must be at most {max_length} characters long"
            )
        return cls(trimmed)

    def __str__(self) -> str:
        return self.value


@dataclass
class SavedResponse:
    """The parts of an HTTP response needed to replay it byte for byte."""

    status_code: int
    headers: list[tuple[str, str]] = field(default_factory=list)
    body: bytes = b""

    @classmethod
    def from_response(cls, response: Response) -> "SavedResponse":
        headers = [
            (name.decode("latin-1"), value.decode("latin-1"))
            for name, value in response.raw_headers
        ]
        return cls(status_code=response.status_code, headers=headers, body=bytes(response.body))

    def to_response(self) -> Response:
        response = Response(content=self.body, status_code=self.status_code)
        # Drop the defaults Response computed and restore the saved ones verbatim
        response.raw_headers = [
            (name.encode("latin-1"), value.encode("latin-1")) for name, value in self.headers
        ]
        return response

    @classmethod
    def from_record(cls, record: IdempotencyRecord) -> "SavedResponse":
        return cls(
            status_code=record.response_status_code or 0,
            headers=[(name, value) for name, value in (record.response_headers or [])],
            body=record.response_body or b"",
        )


def _encode_headers(headers: list[tuple[str, str]]) -> list[list[str]]:
    return [[name, value] for name, value in headers]


async def _get_record(
    db: AsyncSession, user_id: uuid.UUID, key: IdempotencyKey
) -> IdempotencyRecord | None:
    result = await db.execute(
        select(IdempotencyRecord).where(
            IdempotencyRecord.user_id == user_id,
            IdempotencyRecord.idempotency_key == key.value,
        )
    )
    return result.scalar_one_or_none()


async def get_saved_response(
    db: AsyncSession, user_id: uuid.UUID, key: IdempotencyKey
) -> SavedResponse | None:
    """Return the completed response for (user, key), if there is one.

    An in-progress reservation counts as no saved response.
    """
    record = await _get_record(db, user_id, key)
    if record is None or not record.is_complete:
        return None
    return SavedResponse.from_record(record)


async def try_reserve(db: AsyncSession, user_id: uuid.UUID, key: IdempotencyKey) -> bool:
    """Insert an in-progress record as the first write of db's transaction.

    On PostgreSQL a concurrent insert of the same key blocks until the
    holder's transaction ends, then fails with a unique violation if the
    holder committed. The reservation stays invisible to others until commit.

    Returns:
        True if this transaction now owns the key. False if another request
        already holds it; db has been rolled back in that case.
    """
    db.add(IdempotencyRecord(user_id=user_id, idempotency_key=key.value))
    try:
        await db.flush()
    except IntegrityError:
        await db.rollback()
        logger.bind(user_id=str(user_id), idempotency_key=key.value).info(
            "idempotency_key_already_reserved"
        )
        return False
    return True


async def save_response(
    db: AsyncSession,
    user_id: uuid.UUID,
    key: IdempotencyKey,
    response: SavedResponse,
) -> None:
    """Complete a reservation with the final response. Does not commit."""
    record = await _get_record(db, user_id, key)
    if record is None:
        raise RuntimeError(f"No reservation for idempotency key {key} to complete")

    record.response_status_code = response.status_code
    record.response_headers = _encode_headers(response.headers)
    record.response_body = response.body
    await db.flush()


async def wait_for_saved_response(
    session_factory: async_sessionmaker[AsyncSession],
    user_id: uuid.UUID,
    key: IdempotencyKey,
    timeout_seconds: float = 10.0,
    poll_interval_seconds: float = 0.05,
) -> SavedResponse | None:
    """Poll until the request holding key finishes.

    Each poll runs in its own short session so it sees freshly committed rows.

    Returns:
        The saved response once it is complete, or None if the reservation
        disappeared (the holder rolled back and the key is free again)

    Raises:
        IdempotencyConflictError: If the holder is still running after timeout_seconds
    """
    deadline = time.monotonic() + timeout_seconds
    interval = poll_interval_seconds

    while True:
        async with session_factory() as db:
            record = await _get_record(db, user_id, key)
            if record is None:
                return None
            if record.is_complete:
                return SavedResponse.from_record(record)

        if time.monotonic() >= deadline:
            raise IdempotencyConflictError(
                f"Request with idempotency key {key} is still being processed"
            )

        await asyncio.sleep(interval)
        interval = min(interval * 2, 1.0)


async def delete_expired_records(db: AsyncSession, cutoff: datetime) -> int:
    """Delete records created before cutoff.

    Returns:
        Number of records deleted
    """
    result = await db.execute(
        delete(IdempotencyRecord).where(IdempotencyRecord.created_at < cutoff)
    )
    return result.rowcount
