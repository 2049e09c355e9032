"""
BharatCRM - Routes Webhooks

Facebook / Instagram leadgen deliveries. The integration is found by its
webhook_secret (?secret= or X-Webhook-Secret), which also signs the body.
"""

import json
import logging
from fastapi import APIRouter, HTTPException, Request, Query
from fastapi.responses import PlainTextResponse
from typing import Optional

from services.ingestion import find_webhook_integration, ingest_webhook_leads
from services.platforms.facebook import FacebookClient
from services.platforms.factory import get_platform_client

logger = logging.getLogger("routes.webhooks")

router = APIRouter(prefix="/webhooks", tags=["Webhooks"])


def _webhook_secret(request: Request, secret: Optional[str]) -> str:
    return secret or request.headers.get("x-webhook-secret") or ""


@router.get("/facebook")
async def verify_facebook_webhook(
    request: Request,
    secret: Optional[str] = None,
    hub_mode: Optional[str] = Query(None, alias="hub.mode"),
    hub_verify_token: Optional[str] = Query(None, alias="hub.verify_token"),
    hub_challenge: Optional[str] = Query(None, alias="hub.challenge"),
):
    """Subscription handshake: echo hub.challenge"""
    webhook_secret = _webhook_secret(request, secret)
    if not webhook_secret:
        raise HTTPException(status_code=401, detail="Webhook secret required")

    if hub_mode == "subscribe" and hub_verify_token == webhook_secret:
        return PlainTextResponse(hub_challenge or "")
    raise HTTPException(status_code=403, detail="Invalid verification")


@router.post("/facebook")
async def receive_facebook_webhook(request: Request, secret: Optional[str] = None):
    webhook_secret = _webhook_secret(request, secret)
    if not webhook_secret:
        raise HTTPException(status_code=401, detail="Webhook secret required")

    body = await request.body()
    signature = request.headers.get("x-hub-signature-256", "")
    if not FacebookClient().verify_webhook_signature(body, signature, webhook_secret):
        logger.warning("[WEBHOOK] Invalid signature")
        raise HTTPException(status_code=401, detail="Invalid signature")

    try:
        payload = json.loads(body or b"{}")
    except ValueError:
        raise HTTPException(status_code=400, detail="Invalid JSON payload")

    integration = await find_webhook_integration(webhook_secret)
    if not integration:
        raise HTTPException(status_code=404, detail="Integration not found")

    client = get_platform_client(integration.get("platform") or "facebook")
    raws = client.extract_leads_from_webhook(payload)
    if not raws:
        raise HTTPException(status_code=400, detail="No lead data found in webhook")

    result = await ingest_webhook_leads(integration, raws)
    return {"success": True, **result}
