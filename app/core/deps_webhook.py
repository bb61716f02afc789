from __future__ import annotations

import hashlib
import hmac
import json
from typing import Any, Dict

from fastapi import HTTPException, Request

from app.core.config import get_settings


def sign_payload(secret: str, body: bytes) -> str:
    return hmac.new(secret.encode("utf-8"), body, hashlib.sha512).hexdigest()


async def verified_provider_event(request: Request) -> Dict[str, Any]:
    """
    Parsed webhook body, only if the provider's HMAC-SHA512 signature over
    the raw body matches.
    """
    settings = get_settings()
    if not settings.payment_webhook_secret:
        raise HTTPException(status_code=503, detail="Funding webhook is not configured.")

    body = await request.body()
    signature = request.headers.get(settings.payment_webhook_signature_header, "")
    expected = sign_payload(settings.payment_webhook_secret, body)
    if not hmac.compare_digest(signature, expected):
        raise HTTPException(status_code=401, detail="Invalid webhook signature.")

    try:
        payload = json.loads(body)
    except ValueError:
        raise HTTPException(status_code=400, detail="Webhook body must be JSON.")
    if not isinstance(payload, dict):
        raise HTTPException(status_code=400, detail="Webhook body must be a JSON object.")
    return payload
