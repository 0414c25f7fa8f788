"""Domain models, state machines, and enums shared across all services."""

from pydantic import BaseModel, Field
from enum import Enum
from datetime import datetime, timezone
from decimal import Decimal
from typing import Optional
import uuid


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


# === Enums ===

class Provider(str, Enum):
    MAYA = "maya"
    GCASH = "gcash"
    CASH = "cash"


class UserType(str, Enum):
    PASSENGER = "passenger"
    DRIVER = "driver"
    OPERATOR = "operator"


class TransactionStatus(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"
    EXPIRED = "expired"
    REFUND_PENDING = "refund_pending"
    REFUNDED = "refunded"


class RefundStatus(str, Enum):
    PENDING = "pending"
    APPROVED = "approved"
    PROCESSED = "processed"
    REJECTED = "rejected"
    FAILED = "failed"


class TransitionSource(str, Enum):
    WEBHOOK = "webhook"
    SYNC = "sync"
    EXPIRY_SWEEP = "expiry_sweep"
    REFUND = "refund"


class TransitionOutcome(str, Enum):
    APPLIED = "applied"
    DUPLICATE = "duplicate"
    ILLEGAL = "illegal"
    STALE = "stale"
    NOT_FOUND = "not_found"


class CircuitState(str, Enum):
    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


# === State Machine Transitions ===

TRANSACTION_TRANSITIONS: dict[TransactionStatus, list[TransactionStatus]] = {
    TransactionStatus.PENDING: [
        TransactionStatus.PROCESSING,
        TransactionStatus.COMPLETED,
        TransactionStatus.FAILED,
        TransactionStatus.CANCELLED,
        TransactionStatus.EXPIRED,
    ],
    TransactionStatus.PROCESSING: [
        TransactionStatus.COMPLETED,
        TransactionStatus.FAILED,
        TransactionStatus.CANCELLED,
        TransactionStatus.EXPIRED,
    ],
    TransactionStatus.COMPLETED: [TransactionStatus.REFUND_PENDING],
    # Back to completed when a full refund fails at the gateway
    TransactionStatus.REFUND_PENDING: [TransactionStatus.REFUNDED, TransactionStatus.COMPLETED],
    TransactionStatus.FAILED: [],
    TransactionStatus.CANCELLED: [],
    TransactionStatus.EXPIRED: [],
    TransactionStatus.REFUNDED: [],
}

TERMINAL_STATUSES = frozenset({
    TransactionStatus.COMPLETED,
    TransactionStatus.FAILED,
    TransactionStatus.CANCELLED,
    TransactionStatus.EXPIRED,
    TransactionStatus.REFUNDED,
})

# Still waiting on the gateway
OPEN_STATUSES = (TransactionStatus.PENDING, TransactionStatus.PROCESSING)

# Edges that only a specific actor may take
RESTRICTED_TRANSITIONS: dict[tuple[TransactionStatus, TransactionStatus], TransitionSource] = {
    (TransactionStatus.PENDING, TransactionStatus.EXPIRED): TransitionSource.EXPIRY_SWEEP,
}

REFUND_TRANSITIONS: dict[RefundStatus, list[RefundStatus]] = {
    RefundStatus.PENDING: [RefundStatus.APPROVED, RefundStatus.REJECTED],
    RefundStatus.APPROVED: [RefundStatus.PROCESSED, RefundStatus.FAILED],
    RefundStatus.PROCESSED: [],
    RefundStatus.REJECTED: [],
    RefundStatus.FAILED: [],
}

# Refunds in these states hold a claim on the refundable balance
RESERVING_REFUND_STATUSES = frozenset({
    RefundStatus.PENDING,
    RefundStatus.APPROVED,
    RefundStatus.PROCESSED,
})


# === Domain Models ===

class PaymentFees(BaseModel):
    provider_fee: Decimal = Decimal("0.00")
    platform_fee: Decimal = Decimal("0.00")
    total_fee: Decimal = Decimal("0.00")
    fee_percentage: Decimal = Decimal("0")


class Transaction(BaseModel):
    transaction_id: str
    reference_number: str
    provider: Provider
    provider_transaction_id: Optional[str] = None
    amount: Decimal
    currency: str = "PHP"
    status: TransactionStatus = TransactionStatus.PENDING
    description: str
    user_id: str
    user_type: UserType = UserType.PASSENGER
    booking_id: Optional[str] = None
    metadata: dict = Field(default_factory=dict)
    fees: PaymentFees = Field(default_factory=PaymentFees)
    redirect_url: Optional[str] = None
    qr_code_url: Optional[str] = None
    deep_link_url: Optional[str] = None
    provider_status: Optional[str] = None
    failure_reason: Optional[str] = None
    expires_at: Optional[datetime] = None
    last_event_at: Optional[datetime] = None
    applied_dedupe_keys: list[str] = Field(default_factory=list)
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)
    completed_at: Optional[datetime] = None

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES


class Refund(BaseModel):
    refund_id: str = Field(default_factory=lambda: f"RFD-{uuid.uuid4().hex[:16].upper()}")
    transaction_id: str
    provider: Provider
    amount: Decimal
    currency: str = "PHP"
    status: RefundStatus = RefundStatus.PENDING
    reason: str
    requested_by: str
    approved_by: Optional[str] = None
    processed_by: Optional[str] = None
    provider_refund_id: Optional[str] = None
    failure_reason: Optional[str] = None
    metadata: dict = Field(default_factory=dict)
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)
    approved_at: Optional[datetime] = None
    processed_at: Optional[datetime] = None
    rejected_at: Optional[datetime] = None
    failed_at: Optional[datetime] = None


class NormalizedEvent(BaseModel):
    """A gateway notification translated into canonical vocabulary."""

    provider: Provider
    provider_transaction_id: str
    transaction_id: Optional[str] = None
    new_status: TransactionStatus
    provider_status: str
    occurred_at: datetime
    dedupe_key: str
    event_type: Optional[str] = None


class TransitionResult(BaseModel):
    outcome: TransitionOutcome
    transaction: Optional[Transaction] = None
    previous_status: Optional[TransactionStatus] = None
    new_status: Optional[TransactionStatus] = None

    @property
    def applied(self) -> bool:
        return self.outcome == TransitionOutcome.APPLIED


class AuditEvent(BaseModel):
    event_id: str = Field(default_factory=lambda: f"aud_{uuid.uuid4().hex[:12]}")
    type: str
    ref: str
    provider: Optional[str] = None
    severity: str = "info"
    request_id: Optional[str] = None
    timestamp: datetime = Field(default_factory=utcnow)
    details: dict = Field(default_factory=dict)


class ProviderStateModel(BaseModel):
    provider_id: str
    circuit_state: CircuitState = CircuitState.CLOSED
    failure_count: int = 0
    success_count: int = 0
    last_failure_at: Optional[datetime] = None
    last_success_at: Optional[datetime] = None
    opened_at: Optional[datetime] = None
    half_open_calls: int = 0
