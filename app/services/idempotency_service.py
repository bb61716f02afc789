from __future__ import annotations

import hashlib
import json
import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional, Tuple

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.core.errors import IdempotencyKeyReused
from app.models.idempotency_key import IdempotencyKeyRecord

logger = logging.getLogger(__name__)


def request_fingerprint(payload: Any) -> str:
    raw = json.dumps(payload, sort_keys=True, separators=(",", ":"), ensure_ascii=False, default=str)
    return hashlib.sha256(raw.encode("utf-8")).hexdigest()


@dataclass(frozen=True)
class IdempotencyScope:
    caller_id: str
    endpoint_key: str
    idem_key: str


@dataclass(frozen=True)
class StoredResponse:
    body: Dict[str, Any]
    status_code: int


class IdempotencyService:
    """
    Replays stored responses for retried POSTs carrying an Idempotency-Key.

    This is an HTTP convenience on top of the settlement core, which is
    already at-most-once on its own through deterministic ledger references.
    """

    def _find(self, db: Session, scope: IdempotencyScope) -> Optional[IdempotencyKeyRecord]:
        return db.execute(
            select(IdempotencyKeyRecord).where(
                IdempotencyKeyRecord.caller_id == scope.caller_id,
                IdempotencyKeyRecord.endpoint_key == scope.endpoint_key,
                IdempotencyKeyRecord.idem_key == scope.idem_key,
            )
        ).scalar_one_or_none()

    def check(
        self, db: Session, scope: IdempotencyScope, request_payload: Any
    ) -> Tuple[Optional[StoredResponse], str]:
        """
        Returns (stored response or None, fingerprint of this request).
        A stored response for a different payload is IdempotencyKeyReused.
        """
        fingerprint = request_fingerprint(request_payload)
        row = self._find(db, scope)
        if row is None:
            return None, fingerprint

        if row.request_hash != fingerprint:
            raise IdempotencyKeyReused()

        logger.info(
            "idempotent replay",
            extra={"caller_id": scope.caller_id, "endpoint_key": scope.endpoint_key},
        )
        return StoredResponse(body=row.response_json, status_code=int(row.response_status)), fingerprint

    def remember(
        self,
        db: Session,
        scope: IdempotencyScope,
        *,
        fingerprint: str,
        body: Dict[str, Any],
        status_code: int = 200,
    ) -> None:
        # first stored response wins
        if self._find(db, scope) is not None:
            return

        db.add(
            IdempotencyKeyRecord(
                caller_id=scope.caller_id,
                endpoint_key=scope.endpoint_key,
                idem_key=scope.idem_key,
                request_hash=fingerprint,
                response_status=str(status_code),
                response_json=body,
            )
        )
        try:
            db.commit()
        except IntegrityError:
            # a concurrent retry stored first
            db.rollback()
