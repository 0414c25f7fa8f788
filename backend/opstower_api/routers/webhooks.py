"""Webhooks router - single entry point for every gateway notification."""

import json
import logging

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse

from opstower_api.dependencies import get_orchestrator
from opstower_api.services.gateways.base import WebhookPayload
from opstower_api.services.orchestrator import PaymentOrchestrator
from opstower_api.services.webhook_router import detect_provider

logger = logging.getLogger("opstower.webhooks")
router = APIRouter()


@router.post("/webhook")
async def receive_webhook(
    request: Request,
    orchestrator: PaymentOrchestrator = Depends(get_orchestrator),
):
    raw_body = await request.body()
    headers = {k.lower(): v for k, v in request.headers.items()}

    try:
        body = json.loads(raw_body)
    except ValueError:
        logger.warning("Webhook body is not valid JSON")
        body = None

    provider = detect_provider(headers, body) if isinstance(body, dict) else None
    payload = WebhookPayload(
        headers=headers,
        body=body if isinstance(body, dict) else {},
        raw_body=raw_body,
    )
    results = await orchestrator.route_webhook(provider, payload)

    if provider is None:
        return JSONResponse(
            {
                "received": False,
                "error": "UNKNOWN_PROVIDER",
                "results": [r.to_json() for r in results],
            },
            status_code=400,
        )

    # Gateways always get a 200; failures are in the audit trail and dead-letter queue
    return {
        "received": True,
        "provider": provider.value,
        "results": [r.to_json() for r in results],
    }
