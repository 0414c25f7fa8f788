"""Identify which gateway sent an inbound webhook."""

import logging
from typing import Optional

from opstower_shared.models import Provider

logger = logging.getLogger("opstower.webhook_router")

SIGNATURE_HEADERS = {
    "x-maya-signature": Provider.MAYA,
    "x-ebanx-signature": Provider.GCASH,
}


def _looks_like_maya(body: dict) -> bool:
    data = body.get("data")
    return "name" in body and isinstance(data, dict) and "checkoutId" in data


def _looks_like_ebanx(body: dict) -> bool:
    return "notification_type" in body and "hash_codes" in body


def detect_provider(headers: dict, body) -> Optional[Provider]:
    """Return the sending provider, or None when the delivery is ambiguous.

    Signature headers win, but a header that contradicts an unambiguous
    body shape is rejected rather than trusted.
    """
    names = {k.lower() for k in headers}
    by_header = {provider for header, provider in SIGNATURE_HEADERS.items() if header in names}

    if not isinstance(body, dict):
        body = {}
    by_shape = set()
    if _looks_like_maya(body):
        by_shape.add(Provider.MAYA)
    if _looks_like_ebanx(body):
        by_shape.add(Provider.GCASH)

    if len(by_header) > 1:
        logger.warning("Webhook carries signature headers for several providers")
        return None
    if len(by_shape) > 1:
        logger.warning("Webhook body matches several provider shapes")
        return None

    if by_header:
        provider = by_header.pop()
        if by_shape and provider not in by_shape:
            logger.warning(f"Webhook header says {provider.value} but body shape disagrees")
            return None
        return provider

    if by_shape:
        return by_shape.pop()
    return None
