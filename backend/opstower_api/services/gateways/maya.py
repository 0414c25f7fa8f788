"""Maya (PayMaya) checkout gateway."""

import base64
import logging
from datetime import timedelta
from decimal import Decimal
from typing import Optional

import httpx

from opstower_shared.models import NormalizedEvent, Provider, TransactionStatus, utcnow
from opstower_api.config import MayaConfig
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

logger = logging.getLogger("opstower.gateways.maya")

MAYA_STATUS_MAP: dict[str, TransactionStatus] = {
    "PENDING_PAYMENT": TransactionStatus.PENDING,
    "PENDING_TOKEN": TransactionStatus.PENDING,
    "CREATED": TransactionStatus.PENDING,
    "PAYMENT_PROCESSING": TransactionStatus.PROCESSING,
    "AUTH_SUCCESS": TransactionStatus.PROCESSING,
    "PAYMENT_SUCCESS": TransactionStatus.COMPLETED,
    "PAYMENT_PAID": TransactionStatus.COMPLETED,
    "COMPLETED": TransactionStatus.COMPLETED,
    "PAYMENT_FAILED": TransactionStatus.FAILED,
    "PAYMENT_DECLINED": TransactionStatus.FAILED,
    "AUTH_FAILED": TransactionStatus.FAILED,
    "PAYMENT_EXPIRED": TransactionStatus.EXPIRED,
    "EXPIRED": TransactionStatus.EXPIRED,
    "PAYMENT_CANCELLED": TransactionStatus.CANCELLED,
    "CANCELLED": TransactionStatus.CANCELLED,
    "VOIDED": TransactionStatus.CANCELLED,
    "REFUNDED": TransactionStatus.REFUNDED,
}

MAYA_REFUND_STATUS = {
    "COMPLETED": "processed",
    "SUCCESS": "processed",
    "PENDING": "pending",
    "FAILED": "failed",
}


class MayaGateway(GatewayAdapter):
    provider = Provider.MAYA
    signature_header = "x-maya-signature"

    def __init__(self, config: MayaConfig, transport: Optional[httpx.AsyncBaseTransport] = None):
        super().__init__(
            base_url=config.base_url,
            webhook_secret=config.webhook_secret,
            max_amount=config.max_amount,
            timeout_seconds=config.timeout_seconds,
            transport=transport,
        )
        self.config = config

    def _auth_headers(self, use_secret: bool = False) -> dict[str, str]:
        # Basic auth with the key as username and an empty password
        key = self.config.secret_key if use_secret else self.config.public_key
        token = base64.b64encode(f"{key}:".encode()).decode()
        return {"Authorization": f"Basic {token}"}

    async def initiate(self, intent: PaymentIntent) -> ProviderInitiationResult:
        self.validate_intent(intent)

        amount = {"value": format_amount(intent.amount), "currency": intent.currency}
        first_name, _, last_name = intent.customer_name.strip().partition(" ")
        contact = {"email": intent.customer_email}
        if intent.customer_phone:
            contact["phone"] = intent.customer_phone

        body = {
            "totalAmount": amount,
            "buyer": {
                "firstName": first_name,
                "lastName": last_name,
                "contact": contact,
            },
            "items": [{
                "name": intent.description,
                "quantity": 1,
                "description": intent.description,
                "amount": amount,
                "totalAmount": amount,
            }],
            "redirectUrl": {
                "success": intent.success_url,
                "failure": intent.failure_url,
                "cancel": intent.failure_url,
            },
            "requestReferenceNumber": intent.transaction_id,
            "metadata": {k: v for k, v in intent.metadata.items() if isinstance(v, (str, int, float, bool))},
        }

        data = await self._send("POST", "/checkout/v1/checkouts", json=body)
        checkout_id = data.get("checkoutId")
        redirect_url = data.get("redirectUrl")
        if not checkout_id or not redirect_url:
            raise ProviderRejected(self.provider.value, "Checkout response missing checkoutId or redirectUrl")

        expires_at = parse_timestamp(data.get("expiresAt")) or (
            utcnow() + timedelta(minutes=self.config.checkout_expiry_minutes)
        )
        logger.info(f"Created Maya checkout {checkout_id} for {intent.transaction_id}")
        return ProviderInitiationResult(
            provider_transaction_id=checkout_id,
            reference_number=checkout_id,
            redirect_url=redirect_url,
            expires_at=expires_at,
            provider_status=data.get("status", "PENDING_PAYMENT"),
        )

    async def parse_webhook_events(self, payload: WebhookPayload) -> list[NormalizedEvent]:
        body = payload.body
        enveloped = isinstance(body.get("data"), dict)
        data = body["data"] if enveloped else body

        provider_transaction_id = data.get("checkoutId") or data.get("id")
        if not provider_transaction_id:
            logger.warning("Maya webhook without checkoutId or payment id")
            return []

        provider_status = data.get("paymentStatus") or data.get("status") or body.get("name")
        new_status = map_provider_status(provider_status, MAYA_STATUS_MAP)
        if new_status is None:
            logger.warning(f"Ignoring Maya webhook with unmapped status {provider_status!r}")
            return []

        occurred_at = (
            parse_timestamp(data.get("paymentAt"))
            or parse_timestamp(data.get("updatedAt"))
            or parse_timestamp(body.get("createdAt"))
            or utcnow()
        )
        if enveloped and body.get("id"):
            dedupe_key = f"maya:{body['id']}"
        else:
            dedupe_key = f"maya:{provider_transaction_id}:{provider_status}"

        return [NormalizedEvent(
            provider=self.provider,
            provider_transaction_id=provider_transaction_id,
            transaction_id=data.get("requestReferenceNumber"),
            new_status=new_status,
            provider_status=provider_status,
            occurred_at=occurred_at,
            dedupe_key=dedupe_key,
            event_type=body.get("name"),
        )]

    async def query_status(self, provider_transaction_id: str) -> ProviderStatus:
        data = await self._send(
            "GET", f"/checkout/v1/checkouts/{provider_transaction_id}", use_secret=True
        )
        provider_status = data.get("paymentStatus") or data.get("status") or "UNKNOWN"
        return ProviderStatus(
            provider_transaction_id=provider_transaction_id,
            new_status=map_provider_status(provider_status, MAYA_STATUS_MAP),
            provider_status=provider_status,
            occurred_at=parse_timestamp(data.get("paymentAt")) or parse_timestamp(data.get("updatedAt")),
            raw=data,
        )

    async def refund(
        self,
        provider_transaction_id: str,
        amount: Decimal,
        reason: str,
        refund_id: str,
    ) -> ProviderRefundResult:
        body = {
            "reason": reason,
            "totalAmount": {"value": format_amount(amount), "currency": "PHP"},
            "requestReferenceNumber": refund_id,
        }
        data = await self._send(
            "POST", f"/payments/v1/payments/{provider_transaction_id}/refunds",
            json=body, use_secret=True,
        )
        status = MAYA_REFUND_STATUS.get(str(data.get("status", "")).upper(), "pending")
        return ProviderRefundResult(
            provider_refund_id=data.get("id"),
            status=status,
            failure_reason=data.get("errorMessage") if status == "failed" else None,
        )

    async def query_refund(
        self,
        provider_transaction_id: str,
        refund_id: str,
        provider_refund_id: Optional[str] = None,
    ) -> ProviderRefundResult:
        data = await self._send(
            "GET", f"/payments/v1/payments/{provider_transaction_id}/refunds", use_secret=True,
        )
        refunds = data if isinstance(data, list) else data.get("refunds") or []
        for entry in refunds:
            if entry.get("requestReferenceNumber") == refund_id or (
                provider_refund_id and entry.get("id") == provider_refund_id
            ):
                status = MAYA_REFUND_STATUS.get(str(entry.get("status", "")).upper(), "pending")
                return ProviderRefundResult(
                    provider_refund_id=entry.get("id"),
                    status=status,
                    failure_reason=entry.get("errorMessage") if status == "failed" else None,
                )
        logger.warning(f"Refund {refund_id} not listed on Maya payment {provider_transaction_id}")
        return ProviderRefundResult(provider_refund_id=provider_refund_id, status="pending")
