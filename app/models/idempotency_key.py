from __future__ import annotations

import uuid
from datetime import datetime
from typing import Any, Dict

from sqlalchemy import String, DateTime, Uuid, UniqueConstraint, Index, func, text
from sqlalchemy.orm import Mapped, mapped_column

from app.db.base import Base
from app.models.wallet_transaction import JSONType


class IdempotencyKeyRecord(Base):
    """
    Stores the response of a POST carrying an Idempotency-Key header so a
    retried request is answered from here instead of re-running the operation.

    Scope is strict:
      (caller_id, endpoint_key, idem_key) must be unique.
    """
    __tablename__ = "idempotency_key_records"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)

    caller_id: Mapped[str] = mapped_column(String(128), nullable=False)

    endpoint_key: Mapped[str] = mapped_column(String(160), nullable=False)  # e.g. "POST:/api/v1/bids/{id}/accept"
    idem_key: Mapped[str] = mapped_column(String(128), nullable=False)

    request_hash: Mapped[str] = mapped_column(String(128), nullable=False)

    response_status: Mapped[str] = mapped_column(String(16), nullable=False, server_default=text("'200'"))
    response_json: Mapped[Dict[str, Any]] = mapped_column(JSONType, nullable=False, default=dict)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())

    __table_args__ = (
        UniqueConstraint("caller_id", "endpoint_key", "idem_key", name="uq_idem_scope"),
        Index("ix_idem_lookup", "caller_id", "endpoint_key"),
    )
