"""Provider-neutral gateway contract and shared HTTP/signature plumbing.

Adapters translate between the canonical payment vocabulary and one
gateway's wire format. They never persist anything and never retry: a
retried checkout or refund call can double-charge, so retry policy belongs
to the caller.
"""

import hmac
import hashlib
import logging
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Optional

import httpx
from pydantic import BaseModel, Field

from opstower_shared.models import NormalizedEvent, Provider, TransactionStatus
from opstower_shared.request_context import get_request_id
from opstower_api.services.errors import ProviderRejected, ProviderUnavailable, ValidationError

logger = logging.getLogger("opstower.gateways")

# Words any gateway may use, matched case-insensitively after the
# provider-specific table has been consulted.
GENERIC_STATUS_WORDS: dict[str, TransactionStatus] = {
    "pending": TransactionStatus.PENDING,
    "waiting": TransactionStatus.PENDING,
    "processing": TransactionStatus.PROCESSING,
    "paid": TransactionStatus.COMPLETED,
    "completed": TransactionStatus.COMPLETED,
    "success": TransactionStatus.COMPLETED,
    "declined": TransactionStatus.FAILED,
    "error": TransactionStatus.FAILED,
    "failed": TransactionStatus.FAILED,
    "cancelled": TransactionStatus.CANCELLED,
    "canceled": TransactionStatus.CANCELLED,
    "voided": TransactionStatus.CANCELLED,
    "expired": TransactionStatus.EXPIRED,
    "refunded": TransactionStatus.REFUNDED,
}


def map_provider_status(
    provider_status: Optional[str],
    table: dict[str, TransactionStatus],
) -> Optional[TransactionStatus]:
    if not provider_status:
        return None
    mapped = table.get(provider_status.upper())
    if mapped is not None:
        return mapped
    return GENERIC_STATUS_WORDS.get(provider_status.lower())


def parse_timestamp(value: Any) -> Optional[datetime]:
    if not value or not isinstance(value, str):
        return None
    try:
        parsed = datetime.fromisoformat(value.strip().replace("Z", "+00:00"))
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def format_amount(amount: Decimal) -> str:
    return f"{amount:.2f}"


# === Contract types ===

class PaymentIntent(BaseModel):
    transaction_id: str
    amount: Decimal
    currency: str = "PHP"
    description: str
    user_id: str
    customer_name: str
    customer_email: str
    customer_phone: Optional[str] = None
    success_url: str
    failure_url: str
    metadata: dict = Field(default_factory=dict)


class ProviderInitiationResult(BaseModel):
    provider_transaction_id: str
    reference_number: str
    redirect_url: str
    expires_at: datetime
    provider_status: str = "pending"
    qr_code_url: Optional[str] = None
    deep_link_url: Optional[str] = None


class ProviderStatus(BaseModel):
    provider_transaction_id: str
    new_status: Optional[TransactionStatus] = None
    provider_status: str
    occurred_at: Optional[datetime] = None
    raw: dict = Field(default_factory=dict)


class ProviderRefundResult(BaseModel):
    provider_refund_id: Optional[str] = None
    status: str  # processed | pending | failed
    failure_reason: Optional[str] = None


class WebhookPayload(BaseModel):
    headers: dict[str, str] = Field(default_factory=dict)
    body: dict = Field(default_factory=dict)
    raw_body: bytes = b""

    def header(self, name: str) -> Optional[str]:
        return self.headers.get(name.lower())


# === Adapter base ===

class GatewayAdapter(ABC):
    provider: Provider
    signature_header: str

    def __init__(
        self,
        base_url: str,
        webhook_secret: str,
        max_amount: Decimal,
        timeout_seconds: float,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.webhook_secret = webhook_secret
        self.max_amount = max_amount
        self.timeout_seconds = timeout_seconds
        self._transport = transport

    @abstractmethod
    async def initiate(self, intent: PaymentIntent) -> ProviderInitiationResult:
        ...

    @abstractmethod
    async def parse_webhook_events(self, payload: WebhookPayload) -> list[NormalizedEvent]:
        ...

    @abstractmethod
    async def query_status(self, provider_transaction_id: str) -> ProviderStatus:
        ...

    @abstractmethod
    async def refund(
        self,
        provider_transaction_id: str,
        amount: Decimal,
        reason: str,
        refund_id: str,
    ) -> ProviderRefundResult:
        ...

    @abstractmethod
    async def query_refund(
        self,
        provider_transaction_id: str,
        refund_id: str,
        provider_refund_id: Optional[str] = None,
    ) -> ProviderRefundResult:
        """Look up a submitted refund by our refund_id or the gateway's id."""
        ...

    def validate_intent(self, intent: PaymentIntent) -> None:
        if intent.amount <= 0:
            raise ValidationError("Payment amount must be greater than 0")
        if intent.amount > self.max_amount:
            raise ValidationError(
                f"Payment amount exceeds {self.provider.value} maximum of {self.currency_label(self.max_amount)}"
            )

    @staticmethod
    def currency_label(amount: Decimal) -> str:
        return f"PHP {amount:,.2f}"

    def verify_webhook_signature(self, payload: WebhookPayload) -> bool:
        signature = payload.header(self.signature_header)
        if not signature:
            logger.error(f"Missing {self.signature_header} header")
            return False
        if not self.webhook_secret:
            logger.error(f"No webhook secret configured for {self.provider.value}")
            return False
        expected = hmac.new(
            self.webhook_secret.encode(), payload.raw_body, hashlib.sha256
        ).hexdigest()
        return hmac.compare_digest(expected, signature.strip().lower())

    def _auth_headers(self, use_secret: bool = False) -> dict[str, str]:
        return {}

    async def _send(
        self,
        method: str,
        path: str,
        json: Optional[dict] = None,
        use_secret: bool = False,
    ) -> dict:
        headers = {
            "Accept": "application/json",
            "X-Request-Id": get_request_id(),
            **self._auth_headers(use_secret),
        }
        try:
            async with httpx.AsyncClient(
                base_url=self.base_url,
                transport=self._transport,
                timeout=self.timeout_seconds,
            ) as client:
                resp = await client.request(method, path, json=json, headers=headers)
        except httpx.TimeoutException:
            raise ProviderUnavailable(self.provider.value, f"{method} {path} timed out")
        except httpx.TransportError as e:
            raise ProviderUnavailable(self.provider.value, f"{method} {path} failed: {e}")

        if resp.status_code >= 500:
            raise ProviderUnavailable(
                self.provider.value, f"HTTP {resp.status_code}", status_code=resp.status_code
            )
        if resp.status_code >= 400:
            raise ProviderRejected(
                self.provider.value, f"HTTP {resp.status_code}: {resp.text[:200]}",
                status_code=resp.status_code,
            )
        try:
            return resp.json()
        except ValueError:
            raise ProviderUnavailable(self.provider.value, f"Malformed response from {path}")
