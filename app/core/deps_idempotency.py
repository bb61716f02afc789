from __future__ import annotations

from typing import Optional

from fastapi import Depends, HTTPException, Request
from sqlalchemy.orm import Session

from app.db.session import get_db
from app.core.auth_deps import get_current_principal
from app.core.errors import IdempotencyKeyReused
from app.policies.rbac import Principal
from app.services.idempotency_service import IdempotencyScope, IdempotencyService

IDEMPOTENCY_HEADER = "Idempotency-Key"


async def optional_idempotency_key(request: Request) -> Optional[str]:
    key = request.headers.get(IDEMPOTENCY_HEADER)
    if key is None:
        return None
    if not key or len(key) > 128:
        raise HTTPException(status_code=400, detail="Idempotency-Key must be 1-128 characters.")
    return key


async def idempotency_guard(
    request: Request,
    idem_key: Optional[str] = Depends(optional_idempotency_key),
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
) -> Optional[str]:
    """
    Use on POST endpoints that move money.

    Leaves on request.state:
      - idempotency_scope (None without the header)
      - idempotency_fingerprint
      - idempotency_replay: StoredResponse to return as-is, or None
    """
    request.state.idempotency_scope = None
    request.state.idempotency_fingerprint = None
    request.state.idempotency_replay = None
    if not idem_key:
        return None

    # the route template, not the concrete path, so ids stay out of the key length
    route = request.scope.get("route")
    path = getattr(route, "path", request.url.path)
    scope = IdempotencyScope(
        caller_id=principal.user_id,
        endpoint_key=f"{request.method}:{path}",
        idem_key=idem_key,
    )

    try:
        body = await request.json()
    except ValueError:
        body = None

    # path params are part of the request: the same key on another bid is a reuse
    payload = {"path": dict(request.path_params), "body": body}

    try:
        replay, fingerprint = IdempotencyService().check(db, scope, payload)
    except IdempotencyKeyReused as e:
        raise HTTPException(status_code=e.status_code, detail=str(e))

    request.state.idempotency_scope = scope
    request.state.idempotency_fingerprint = fingerprint
    request.state.idempotency_replay = replay
    return idem_key


def store_idempotent_response(request: Request, db: Session, response_json: dict, status_code: int = 200) -> None:
    scope = getattr(request.state, "idempotency_scope", None)
    if scope is None:
        return
    IdempotencyService().remember(
        db,
        scope,
        fingerprint=request.state.idempotency_fingerprint,
        body=response_json,
        status_code=status_code,
    )
