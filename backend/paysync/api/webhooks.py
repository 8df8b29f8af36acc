"""
Webhook Endpoint

Receives Stripe events. Authenticated by the stripe-signature header, not by
the public API key gate.
"""
from fastapi import APIRouter, Depends, Request
from typing import Dict, Any
import logging

from ..container import ServiceContainer
from .deps import get_services

logger = logging.getLogger(__name__)

router = APIRouter()


@router.post("/webhooks")
async def stripe_webhook_endpoint(
    request: Request,
    services: ServiceContainer = Depends(get_services)
) -> Dict[str, Any]:
    """
    Verify and apply a gateway event.

    Returns 200 {"received": true} for processed and ignored events, 400 on a
    bad signature. Datastore failures surface as 500 so the gateway retries.
    """
    payload = await request.body()
    signature = request.headers.get("stripe-signature")

    result = await services.webhooks.process(payload, signature)
    logger.debug(f"Webhook {result.get('event_id')} {result['status']}")
    return {"received": True}
