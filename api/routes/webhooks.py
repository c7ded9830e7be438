"""
api/routes/webhooks.py -- Inbound provider webhooks.

Routes:
  POST /api/webhooks/identity -- user.created / user.updated / user.deleted
                                 from the hosted identity provider

The body is read raw because the signature covers the exact bytes sent.
Unsigned, stale or tampered deliveries get a 400 and change nothing.
"""

import logging

from fastapi import APIRouter, HTTPException, Request

from auth.external import WebhookVerificationError, apply_identity_event, verify_webhook
from core.config import get_settings

logger = logging.getLogger("lalisure.api.webhooks")

router = APIRouter(prefix="/webhooks")


@router.post("/identity")
async def identity_webhook(request: Request) -> dict:
    body = await request.body()
    try:
        event = verify_webhook(get_settings().identity_webhook_secret, request.headers, body)
    except WebhookVerificationError as exc:
        logger.warning("Rejected identity webhook: %s", exc)
        raise HTTPException(
            status_code=400,
            detail={"code": "invalid_webhook", "message": "Webhook verification failed."},
        ) from exc

    outcome = apply_identity_event(request.app.state.user_store, event)
    logger.info("Identity webhook %s -> %s", event.get("type", "?"), outcome)
    return {"received": True, "result": outcome}
