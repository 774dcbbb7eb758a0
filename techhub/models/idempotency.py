from __future__ import annotations

import uuid
from typing import Any

from sqlalchemy import JSON, ForeignKey, Integer, LargeBinary, String, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from techhub.models.base import Base, TimestampMixin


class IdempotencyRecord(Base, TimestampMixin):
    """Saved HTTP response for a (user, idempotency key) pair.

    A row whose response columns are NULL is a reservation: some request is
    still processing the key inside an open transaction.
    """

    __tablename__ = "idempotency"

    user_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("users.id", ondelete="CASCADE"), primary_key=True
    )
    idempotency_key: Mapped[str] = mapped_column(String(255), primary_key=True)
    response_status_code: Mapped[int | None] = mapped_column(Integer, nullable=True)
    response_headers: Mapped[list[Any] | None] = mapped_column(JSON, nullable=True)
    response_body: Mapped[bytes | None] = mapped_column(LargeBinary, nullable=True)

    @property
    def is_complete(self) -> bool:
        return self.response_status_code is not None

    def __repr__(self) -> str:
        return f"<IdempotencyRecord user={self.user_id} key={self.idempotency_key}>"
