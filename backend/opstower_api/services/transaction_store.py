"""Transaction store - durable payment and refund records.

Every mutation is a single read-modify-write of one JSON document under a
file lock. Nothing is awaited while the lock is held, so each method is
atomic against other coroutines in this process and against other worker
processes sharing the data directory.
"""

import os
import logging
from abc import ABC, abstractmethod
from datetime import datetime
from decimal import Decimal
from typing import Optional

from opstower_shared.file_store import FileStore
from opstower_shared.models import (
    OPEN_STATUSES,
    Provider,
    Refund,
    RefundStatus,
    RESERVING_REFUND_STATUSES,
    Transaction,
    TransactionStatus,
    TransitionOutcome,
    TransitionResult,
    TransitionSource,
    utcnow,
)
from opstower_api.services.errors import DuplicateReference, NotFound, ValidationError
from opstower_api.services.state_machine import (
    transaction_transition_path,
    validate_refund_transition,
)

logger = logging.getLogger("opstower.store")

# Sources whose occurred_at is the gateway's own clock
GATEWAY_SOURCES = frozenset({TransitionSource.WEBHOOK, TransitionSource.SYNC})

_REFUND_TIMESTAMPS = {
    RefundStatus.APPROVED: "approved_at",
    RefundStatus.PROCESSED: "processed_at",
    RefundStatus.REJECTED: "rejected_at",
    RefundStatus.FAILED: "failed_at",
}


class TransactionStore(ABC):

    @abstractmethod
    async def create(self, transaction: Transaction) -> Transaction:
        ...

    @abstractmethod
    async def get_by_transaction_id(self, transaction_id: str) -> Optional[Transaction]:
        ...

    @abstractmethod
    async def get_by_provider_transaction_id(
        self, provider: Provider, provider_transaction_id: str
    ) -> Optional[Transaction]:
        ...

    @abstractmethod
    async def apply_status_transition(
        self,
        transaction_id: str,
        new_status: TransactionStatus,
        occurred_at: datetime,
        dedupe_key: str,
        source: TransitionSource,
        failure_reason: Optional[str] = None,
        provider_status: Optional[str] = None,
    ) -> TransitionResult:
        ...

    @abstractmethod
    async def list_transactions(
        self,
        status: Optional[TransactionStatus] = None,
        older_than: Optional[datetime] = None,
        expires_before: Optional[datetime] = None,
    ) -> list[Transaction]:
        ...

    @abstractmethod
    async def create_refund(
        self,
        transaction_id: str,
        amount: Optional[Decimal],
        reason: str,
        requested_by: str,
        metadata: Optional[dict] = None,
    ) -> Refund:
        ...

    @abstractmethod
    async def get_refund(self, refund_id: str) -> Optional[Refund]:
        ...

    @abstractmethod
    async def list_refunds(
        self,
        transaction_id: Optional[str] = None,
        status: Optional[RefundStatus] = None,
    ) -> list[Refund]:
        ...

    @abstractmethod
    async def apply_refund_transition(
        self,
        refund_id: str,
        new_status: RefundStatus,
        actor: Optional[str] = None,
        provider_refund_id: Optional[str] = None,
        failure_reason: Optional[str] = None,
    ) -> Refund:
        ...


def refunded_amount(refunds: list[Refund]) -> Decimal:
    return sum((r.amount for r in refunds if r.status == RefundStatus.PROCESSED), Decimal("0"))


def refundable_amount(transaction: Transaction, refunds: list[Refund]) -> Decimal:
    if transaction.status != TransactionStatus.COMPLETED:
        return Decimal("0")
    reserved = sum(
        (r.amount for r in refunds if r.status in RESERVING_REFUND_STATUSES), Decimal("0")
    )
    return max(transaction.amount - reserved, Decimal("0"))


class FileTransactionStore(TransactionStore):

    def __init__(self, data_dir: str):
        self.path = os.path.join(data_dir, "store", "payments.json")

    @staticmethod
    def _empty() -> dict:
        return {"transactions": {}, "refunds": {}, "provider_index": {}}

    @staticmethod
    def _provider_key(provider: Provider, provider_transaction_id: str) -> str:
        return f"{Provider(provider).value}:{provider_transaction_id}"

    @staticmethod
    def _refunds_for(doc: dict, transaction_id: str) -> list[Refund]:
        return [
            Refund.model_validate(r)
            for r in doc["refunds"].values()
            if r["transaction_id"] == transaction_id
        ]

    def _read(self) -> dict:
        return FileStore.read_json(self.path, default=self._empty())

    # === Transactions ===

    async def create(self, transaction: Transaction) -> Transaction:
        with FileStore.locked_json(self.path, default=self._empty()) as doc:
            if transaction.transaction_id in doc["transactions"]:
                raise DuplicateReference("transaction_id", transaction.transaction_id)
            for existing in doc["transactions"].values():
                if existing["reference_number"] == transaction.reference_number:
                    raise DuplicateReference("reference_number", transaction.reference_number)
            if transaction.provider_transaction_id:
                key = self._provider_key(transaction.provider, transaction.provider_transaction_id)
                if key in doc["provider_index"]:
                    raise DuplicateReference(
                        "provider_transaction_id", transaction.provider_transaction_id
                    )
                doc["provider_index"][key] = transaction.transaction_id

            doc["transactions"][transaction.transaction_id] = transaction.model_dump(mode="json")

        logger.info(
            f"Stored transaction {transaction.transaction_id} "
            f"({transaction.provider.value}, {transaction.status.value})"
        )
        return transaction

    async def get_by_transaction_id(self, transaction_id: str) -> Optional[Transaction]:
        raw = self._read()["transactions"].get(transaction_id)
        return Transaction.model_validate(raw) if raw else None

    async def get_by_provider_transaction_id(
        self, provider: Provider, provider_transaction_id: str
    ) -> Optional[Transaction]:
        doc = self._read()
        transaction_id = doc["provider_index"].get(
            self._provider_key(provider, provider_transaction_id)
        )
        if not transaction_id:
            return None
        return Transaction.model_validate(doc["transactions"][transaction_id])

    async def apply_status_transition(
        self,
        transaction_id: str,
        new_status: TransactionStatus,
        occurred_at: datetime,
        dedupe_key: str,
        source: TransitionSource,
        failure_reason: Optional[str] = None,
        provider_status: Optional[str] = None,
    ) -> TransitionResult:
        """Apply one status change behind the dedupe, staleness and state checks.

        The dedupe key is stored in the same write as the new status, and
        only when the change is applied.
        """
        with FileStore.locked_json(self.path, default=self._empty()) as doc:
            raw = doc["transactions"].get(transaction_id)
            if raw is None:
                return TransitionResult(outcome=TransitionOutcome.NOT_FOUND, new_status=new_status)

            txn = Transaction.model_validate(raw)
            previous = txn.status

            def result(outcome: TransitionOutcome) -> TransitionResult:
                return TransitionResult(
                    outcome=outcome, transaction=txn,
                    previous_status=previous, new_status=new_status,
                )

            if dedupe_key in txn.applied_dedupe_keys or previous == new_status:
                logger.info(f"Duplicate event {dedupe_key} for {transaction_id}")
                return result(TransitionOutcome.DUPLICATE)

            # Gateway clocks only order moves between open statuses; a move to a
            # terminal status is gated by the state machine alone
            from_gateway = source in GATEWAY_SOURCES
            if (
                from_gateway
                and new_status in OPEN_STATUSES
                and txn.last_event_at
                and occurred_at < txn.last_event_at
            ):
                logger.warning(
                    f"Stale event {dedupe_key} for {transaction_id}: "
                    f"{occurred_at.isoformat()} < {txn.last_event_at.isoformat()}"
                )
                return result(TransitionOutcome.STALE)

            path = transaction_transition_path(previous, new_status, source)
            if not path:
                logger.warning(
                    f"Illegal transition {previous.value} -> {new_status.value} "
                    f"for {transaction_id} from {source.value}"
                )
                return result(TransitionOutcome.ILLEGAL)

            now = utcnow()
            txn.status = new_status
            txn.updated_at = now
            if from_gateway:
                txn.last_event_at = max(occurred_at, txn.last_event_at) if txn.last_event_at else occurred_at
            txn.applied_dedupe_keys.append(dedupe_key)
            if provider_status:
                txn.provider_status = provider_status
            if failure_reason:
                txn.failure_reason = failure_reason
            if new_status == TransactionStatus.COMPLETED and txn.completed_at is None:
                txn.completed_at = occurred_at

            if new_status == TransactionStatus.REFUNDED:
                # Gateway confirmed the refund: settle what was waiting on it
                for refund_id, refund_raw in doc["refunds"].items():
                    if refund_raw["transaction_id"] != transaction_id:
                        continue
                    refund = Refund.model_validate(refund_raw)
                    if refund.status != RefundStatus.APPROVED:
                        continue
                    refund.status = RefundStatus.PROCESSED
                    refund.processed_at = now
                    refund.updated_at = now
                    refund.processed_by = refund.processed_by or source.value
                    doc["refunds"][refund_id] = refund.model_dump(mode="json")

            doc["transactions"][transaction_id] = txn.model_dump(mode="json")

        logger.info(
            f"Transaction {transaction_id}: {' -> '.join([previous.value] + [s.value for s in path])} "
            f"({source.value}, {dedupe_key})"
        )
        return result(TransitionOutcome.APPLIED)

    async def list_transactions(
        self,
        status: Optional[TransactionStatus] = None,
        older_than: Optional[datetime] = None,
        expires_before: Optional[datetime] = None,
    ) -> list[Transaction]:
        results = []
        for raw in self._read()["transactions"].values():
            txn = Transaction.model_validate(raw)
            if status is not None and txn.status != status:
                continue
            if older_than is not None and txn.created_at >= older_than:
                continue
            if expires_before is not None and (txn.expires_at is None or txn.expires_at >= expires_before):
                continue
            results.append(txn)
        results.sort(key=lambda t: t.created_at)
        return results

    # === Refunds ===

    async def create_refund(
        self,
        transaction_id: str,
        amount: Optional[Decimal],
        reason: str,
        requested_by: str,
        metadata: Optional[dict] = None,
    ) -> Refund:
        """Create a pending refund, reserving its amount against the payment."""
        with FileStore.locked_json(self.path, default=self._empty()) as doc:
            raw = doc["transactions"].get(transaction_id)
            if raw is None:
                raise NotFound("Transaction", transaction_id)
            txn = Transaction.model_validate(raw)
            if txn.status != TransactionStatus.COMPLETED:
                raise ValidationError(
                    f"Cannot refund transaction with status '{txn.status.value}'"
                )

            available = refundable_amount(txn, self._refunds_for(doc, transaction_id))
            if amount is None:
                amount = available
            if amount <= 0:
                raise ValidationError("Refund amount must be greater than 0")
            if amount > available:
                raise ValidationError(
                    f"Refund amount {amount:.2f} exceeds refundable balance {available:.2f}"
                )

            refund = Refund(
                transaction_id=transaction_id,
                provider=txn.provider,
                amount=amount,
                currency=txn.currency,
                reason=reason,
                requested_by=requested_by,
                metadata=metadata or {},
            )
            doc["refunds"][refund.refund_id] = refund.model_dump(mode="json")

        logger.info(f"Reserved refund {refund.refund_id} of {amount:.2f} on {transaction_id}")
        return refund

    async def get_refund(self, refund_id: str) -> Optional[Refund]:
        raw = self._read()["refunds"].get(refund_id)
        return Refund.model_validate(raw) if raw else None

    async def list_refunds(
        self,
        transaction_id: Optional[str] = None,
        status: Optional[RefundStatus] = None,
    ) -> list[Refund]:
        refunds = []
        for raw in self._read()["refunds"].values():
            if transaction_id is not None and raw["transaction_id"] != transaction_id:
                continue
            if status is not None and raw["status"] != status.value:
                continue
            refunds.append(Refund.model_validate(raw))
        refunds.sort(key=lambda r: r.created_at)
        return refunds

    async def apply_refund_transition(
        self,
        refund_id: str,
        new_status: RefundStatus,
        actor: Optional[str] = None,
        provider_refund_id: Optional[str] = None,
        failure_reason: Optional[str] = None,
    ) -> Refund:
        """Move a refund along its lifecycle.

        A parent sitting in refund_pending follows its refund in the same
        write: to refunded once processed refunds cover the full amount, or
        back to completed when the refund fails.
        """
        with FileStore.locked_json(self.path, default=self._empty()) as doc:
            raw = doc["refunds"].get(refund_id)
            if raw is None:
                raise NotFound("Refund", refund_id)
            refund = Refund.model_validate(raw)
            validate_refund_transition(refund.status, new_status)

            now = utcnow()
            refund.status = new_status
            refund.updated_at = now
            setattr(refund, _REFUND_TIMESTAMPS[new_status], now)
            if new_status == RefundStatus.APPROVED:
                refund.approved_by = actor
            elif new_status == RefundStatus.PROCESSED:
                refund.processed_by = actor
            if provider_refund_id:
                refund.provider_refund_id = provider_refund_id
            if failure_reason:
                refund.failure_reason = failure_reason
            doc["refunds"][refund_id] = refund.model_dump(mode="json")

            txn_raw = doc["transactions"].get(refund.transaction_id)
            if txn_raw and txn_raw["status"] == TransactionStatus.REFUND_PENDING.value:
                txn = Transaction.model_validate(txn_raw)
                target = None
                if new_status == RefundStatus.PROCESSED:
                    if refunded_amount(self._refunds_for(doc, txn.transaction_id)) >= txn.amount:
                        target = TransactionStatus.REFUNDED
                elif new_status == RefundStatus.FAILED:
                    target = TransactionStatus.COMPLETED
                if target is not None:
                    txn.status = target
                    txn.updated_at = now
                    txn.applied_dedupe_keys.append(f"refund:{refund_id}:{new_status.value}")
                    doc["transactions"][txn.transaction_id] = txn.model_dump(mode="json")
                    logger.info(
                        f"Transaction {txn.transaction_id}: refund_pending -> {target.value} "
                        f"(refund {refund_id})"
                    )

        logger.info(f"Refund {refund_id} -> {new_status.value}")
        return refund
