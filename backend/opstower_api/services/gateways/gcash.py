"""GCash payments through the EBANX direct API."""

import logging
from datetime import timedelta
from decimal import Decimal
from typing import Optional

import httpx

from opstower_shared.models import NormalizedEvent, Provider, TransactionStatus, utcnow
from opstower_api.config import EBANXConfig
from opstower_api.services.errors import ProviderRejected
from opstower_api.services.gateways.base import (
    GatewayAdapter,
    PaymentIntent,
    ProviderInitiationResult,
    ProviderRefundResult,
    ProviderStatus,
    WebhookPayload,
    format_amount,
    map_provider_status,
    parse_timestamp,
)

logger = logging.getLogger("opstower.gateways.gcash")

EBANX_STATUS_MAP: dict[str, TransactionStatus] = {
    "OP": TransactionStatus.PENDING,
    "PE": TransactionStatus.PROCESSING,
    "CO": TransactionStatus.COMPLETED,
    "CA": TransactionStatus.CANCELLED,
    "RF": TransactionStatus.REFUNDED,
    "EX": TransactionStatus.EXPIRED,
    "FA": TransactionStatus.FAILED,
}

EBANX_REFUND_STATUS = {
    "CONFIRMED": "processed",
    "PENDING": "pending",
    "CANCELLED": "failed",
}


def _hash_codes(body: dict) -> list[str]:
    raw = body.get("hash_codes") or []
    if isinstance(raw, str):
        raw = raw.split(",")
    return [h.strip() for h in raw if isinstance(h, str) and h.strip()]


class GCashGateway(GatewayAdapter):
    provider = Provider.GCASH
    signature_header = "x-ebanx-signature"

    def __init__(self, config: EBANXConfig, transport: Optional[httpx.AsyncBaseTransport] = None):
        super().__init__(
            base_url=config.base_url,
            webhook_secret=config.webhook_secret,
            max_amount=config.max_amount,
            timeout_seconds=config.timeout_seconds,
            transport=transport,
        )
        self.config = config

    async def _call(self, path: str, body: dict) -> dict:
        data = await self._send("POST", path, json={"integration_key": self.config.integration_key, **body})
        if data.get("status") != "SUCCESS":
            error = data.get("error") or {}
            # EBANX reports business errors inside a 200 response
            raise ProviderRejected(
                self.provider.value,
                f"{error.get('code', 'UNKNOWN')}: {error.get('message', 'request failed')}",
            )
        return data

    async def initiate(self, intent: PaymentIntent) -> ProviderInitiationResult:
        self.validate_intent(intent)

        payment = {
            "amount_total": format_amount(intent.amount),
            "currency_code": intent.currency,
            "merchant_payment_code": intent.transaction_id,
            "name": intent.customer_name,
            "email": intent.customer_email,
            "type": "gcash",
            "redirect_url": intent.success_url,
            "cancel_url": intent.failure_url,
        }
        if intent.customer_phone:
            payment["phone_number"] = intent.customer_phone

        data = await self._call("/request", {"operation": "request", "mode": "full", "payment": payment})
        result = data.get("payment") or {}
        payment_hash = result.get("hash")
        gcash = result.get("gcash") or {}
        redirect_url = gcash.get("callback_url") or result.get("redirect_url")
        if not payment_hash or not redirect_url:
            raise ProviderRejected(self.provider.value, "Payment response missing hash or callback_url")

        logger.info(f"Created EBANX GCash payment {payment_hash} for {intent.transaction_id}")
        return ProviderInitiationResult(
            provider_transaction_id=payment_hash,
            reference_number=result.get("order_number") or payment_hash,
            redirect_url=redirect_url,
            expires_at=utcnow() + timedelta(minutes=self.config.payment_timeout_minutes),
            provider_status=result.get("status", "OP"),
            qr_code_url=gcash.get("qr_code_url"),
            deep_link_url=gcash.get("deep_link_url"),
        )

    async def parse_webhook_events(self, payload: WebhookPayload) -> list[NormalizedEvent]:
        """Resolve each notified hash into an event.

        EBANX notifications name the changed payments but not their status,
        so every hash is queried. A failed query propagates and the whole
        delivery is retried from the dead-letter queue.
        """
        notification_type = payload.body.get("notification_type")
        events = []
        for payment_hash in _hash_codes(payload.body):
            status = await self.query_status(payment_hash)
            if status.new_status is None:
                logger.warning(
                    f"Ignoring EBANX status {status.provider_status!r} for {payment_hash}"
                )
                continue
            status_date = status.raw.get("payment", {}).get("status_date") or ""
            events.append(NormalizedEvent(
                provider=self.provider,
                provider_transaction_id=payment_hash,
                transaction_id=status.raw.get("payment", {}).get("merchant_payment_code"),
                new_status=status.new_status,
                provider_status=status.provider_status,
                occurred_at=status.occurred_at or utcnow(),
                dedupe_key=f"gcash:{payment_hash}:{status.provider_status}:{status_date}",
                event_type=notification_type,
            ))
        return events

    async def query_status(self, provider_transaction_id: str) -> ProviderStatus:
        data = await self._call("/query", {"hash": provider_transaction_id})
        payment = data.get("payment") or {}
        provider_status = payment.get("status") or "UNKNOWN"
        return ProviderStatus(
            provider_transaction_id=provider_transaction_id,
            new_status=map_provider_status(provider_status, EBANX_STATUS_MAP),
            provider_status=provider_status,
            occurred_at=parse_timestamp(payment.get("status_date")),
            raw=data,
        )

    async def refund(
        self,
        provider_transaction_id: str,
        amount: Decimal,
        reason: str,
        refund_id: str,
    ) -> ProviderRefundResult:
        data = await self._call("/refund", {
            "operation": "request",
            "hash": provider_transaction_id,
            "amount": format_amount(amount),
            "description": reason,
            "merchant_refund_code": refund_id,
        })
        refund = data.get("refund") or {}
        status = EBANX_REFUND_STATUS.get(str(refund.get("status", "")).upper(), "pending")
        return ProviderRefundResult(
            provider_refund_id=refund.get("id"),
            status=status,
            failure_reason="Refund cancelled by EBANX" if status == "failed" else None,
        )

    async def query_refund(
        self,
        provider_transaction_id: str,
        refund_id: str,
        provider_refund_id: Optional[str] = None,
    ) -> ProviderRefundResult:
        data = await self._call("/query", {"hash": provider_transaction_id})
        for entry in (data.get("payment") or {}).get("refunds") or []:
            if entry.get("merchant_refund_code") == refund_id or (
                provider_refund_id and str(entry.get("id")) == provider_refund_id
            ):
                status = EBANX_REFUND_STATUS.get(str(entry.get("status", "")).upper(), "pending")
                return ProviderRefundResult(
                    provider_refund_id=str(entry["id"]) if entry.get("id") is not None else None,
                    status=status,
                    failure_reason="Refund cancelled by EBANX" if status == "failed" else None,
                )
        logger.warning(f"Refund {refund_id} not listed on EBANX payment {provider_transaction_id}")
        return ProviderRefundResult(provider_refund_id=provider_refund_id, status="pending")
