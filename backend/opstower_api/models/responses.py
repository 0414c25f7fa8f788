"""API response models, serialized with camelCase keys."""

from datetime import datetime
from decimal import Decimal
from typing import Optional

from opstower_shared.models import (
    CircuitState,
    PaymentFees,
    Provider,
    Refund,
    RefundStatus,
    Transaction,
    TransactionStatus,
)
from opstower_api.models.base import CamelModel


class FeesResponse(CamelModel):
    provider_fee: Decimal
    platform_fee: Decimal
    total_fee: Decimal
    fee_percentage: Decimal

    @classmethod
    def from_fees(cls, fees: PaymentFees) -> "FeesResponse":
        return cls(**fees.model_dump())


class UnifiedPaymentResponse(CamelModel):
    transaction_id: str
    reference_number: str
    provider: Provider
    provider_transaction_id: Optional[str] = None
    amount: Decimal
    currency: str
    fees: FeesResponse
    net_amount: Decimal
    status: TransactionStatus
    redirect_url: Optional[str] = None
    qr_code_url: Optional[str] = None
    deep_link_url: Optional[str] = None
    expires_at: Optional[datetime] = None
    created_at: datetime

    @classmethod
    def from_transaction(cls, txn: Transaction) -> "UnifiedPaymentResponse":
        return cls(
            transaction_id=txn.transaction_id,
            reference_number=txn.reference_number,
            provider=txn.provider,
            provider_transaction_id=txn.provider_transaction_id,
            amount=txn.amount,
            currency=txn.currency,
            fees=FeesResponse.from_fees(txn.fees),
            net_amount=txn.amount - txn.fees.total_fee,
            status=txn.status,
            redirect_url=txn.redirect_url,
            qr_code_url=txn.qr_code_url,
            deep_link_url=txn.deep_link_url,
            expires_at=txn.expires_at,
            created_at=txn.created_at,
        )


class ProviderDetails(CamelModel):
    provider_transaction_id: Optional[str] = None
    provider_status: Optional[str] = None


class PaymentStatusResponse(CamelModel):
    transaction_id: str
    reference_number: str
    provider: Provider
    status: TransactionStatus
    amount: Decimal
    currency: str
    fees: FeesResponse
    description: str
    booking_id: Optional[str] = None
    created_at: datetime
    updated_at: datetime
    completed_at: Optional[datetime] = None
    failure_reason: Optional[str] = None
    expires_at: Optional[datetime] = None
    refunded_amount: Decimal
    refundable_amount: Decimal
    provider_details: ProviderDetails


class RefundResponse(CamelModel):
    refund_id: str
    transaction_id: str
    provider: Provider
    amount: Decimal
    currency: str
    status: RefundStatus
    reason: str
    requested_by: str
    approved_by: Optional[str] = None
    processed_by: Optional[str] = None
    provider_refund_id: Optional[str] = None
    failure_reason: Optional[str] = None
    created_at: datetime
    approved_at: Optional[datetime] = None
    processed_at: Optional[datetime] = None
    rejected_at: Optional[datetime] = None
    failed_at: Optional[datetime] = None

    @classmethod
    def from_refund(cls, refund: Refund) -> "RefundResponse":
        return cls(**refund.model_dump(exclude={"metadata", "updated_at"}))


class WebhookProcessingResult(CamelModel):
    outcome: str
    provider: Optional[Provider] = None
    transaction_id: Optional[str] = None
    provider_transaction_id: Optional[str] = None
    previous_status: Optional[TransactionStatus] = None
    new_status: Optional[TransactionStatus] = None
    dedupe_key: Optional[str] = None
    detail: Optional[str] = None


class PaymentMethodInfo(CamelModel):
    provider: Provider
    display_name: str
    available: bool
    max_amount: Optional[Decimal] = None
    circuit_state: Optional[CircuitState] = None
    fees: Optional[FeesResponse] = None
