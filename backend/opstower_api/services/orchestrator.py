"""Payment orchestrator - routes payments to gateways and reconciles their state.

All status changes, whether they come from a webhook, a status sync, the
expiry sweep or a refund, go through TransactionStore.apply_status_transition.
"""

import re
import uuid
import logging
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Awaitable, Optional, TypeVar
from urllib.parse import urlparse

import httpx

from opstower_shared.models import (
    NormalizedEvent,
    OPEN_STATUSES,
    Provider,
    Refund,
    RefundStatus,
    TERMINAL_STATUSES,
    Transaction,
    TransactionStatus,
    TransitionOutcome,
    TransitionSource,
    utcnow,
)
from opstower_api.config import Settings
from opstower_api.models.requests import UnifiedPaymentRequest, UnifiedRefundRequest
from opstower_api.models.responses import (
    FeesResponse,
    PaymentMethodInfo,
    PaymentStatusResponse,
    ProviderDetails,
    RefundResponse,
    UnifiedPaymentResponse,
    WebhookProcessingResult,
)
from opstower_api.services.audit import AuditLog
from opstower_api.services.circuit_breaker import CircuitBreaker
from opstower_api.services.dead_letter import DeadLetterQueue
from opstower_api.services.errors import (
    DuplicateReference,
    NotFound,
    PersistenceFailure,
    ProviderError,
    ProviderRejected,
    ProviderUnavailable,
    SignatureInvalid,
    ValidationError,
)
from opstower_api.services.fees import CENTAVO, calculate_fees, to_money
from opstower_api.services.gateways.base import (
    GatewayAdapter,
    PaymentIntent,
    ProviderRefundResult,
    WebhookPayload,
)
from opstower_api.services.gateways.gcash import GCashGateway
from opstower_api.services.gateways.maya import MayaGateway
from opstower_api.services.routing import RoutingEngine
from opstower_api.services.transaction_store import (
    FileTransactionStore,
    TransactionStore,
    refundable_amount,
    refunded_amount,
)

logger = logging.getLogger("opstower.orchestrator")

T = TypeVar("T")

EMAIL_PATTERN = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")
SUPPORTED_CURRENCIES = {"PHP"}

DISPLAY_NAMES = {
    Provider.MAYA: "Maya",
    Provider.GCASH: "GCash",
    Provider.CASH: "Cash",
}


def _valid_url(value: str) -> bool:
    parsed = urlparse(value or "")
    return parsed.scheme in ("http", "https") and bool(parsed.netloc)


def new_transaction_id(provider: Provider) -> str:
    return f"TXN-{provider.value.upper()}-{uuid.uuid4().hex[:16].upper()}"


class PaymentOrchestrator:

    def __init__(
        self,
        settings: Settings,
        store: TransactionStore,
        adapters: dict[Provider, GatewayAdapter],
        routing: RoutingEngine,
        audit: AuditLog,
        dead_letters: DeadLetterQueue,
    ):
        self.settings = settings
        self.store = store
        self.adapters = adapters
        self.routing = routing
        self.audit = audit
        self.dead_letters = dead_letters

    # === Gateway calls ===

    async def _call_gateway(self, provider: Provider, call: Awaitable[T]) -> T:
        breaker = self.routing.breakers.get(provider)
        try:
            result = await call
        except ProviderUnavailable:
            if breaker:
                breaker.record_failure()
            raise
        except ProviderRejected:
            # The gateway answered, so it is reachable
            if breaker:
                breaker.record_success()
            raise
        if breaker:
            breaker.record_success()
        return result

    def _adapter(self, provider: Provider) -> GatewayAdapter:
        adapter = self.adapters.get(provider)
        if adapter is None:
            raise ValidationError(f"Provider '{provider.value}' does not support online payments")
        return adapter

    # === Initiation ===

    def _validate_payment_request(self, req: UnifiedPaymentRequest) -> None:
        errors = []
        if req.amount <= 0:
            errors.append("Amount must be greater than 0")
        elif req.amount > self.settings.max_amount:
            errors.append(f"Amount must not exceed PHP {self.settings.max_amount:,.2f}")
        elif req.amount != req.amount.quantize(CENTAVO):
            errors.append("Amount must have at most two decimal places")
        currency = req.currency or self.settings.default_currency
        if currency not in SUPPORTED_CURRENCIES:
            errors.append(f"Unsupported currency '{currency}'")
        if not req.description.strip():
            errors.append("Description is required")
        if not req.user_id.strip():
            errors.append("User ID is required")
        if not req.customer_name.strip():
            errors.append("Customer name is required")
        if not EMAIL_PATTERN.match(req.customer_email or ""):
            errors.append("A valid customer email is required")
        if not _valid_url(req.success_url):
            errors.append("A valid success URL is required")
        if not _valid_url(req.failure_url):
            errors.append("A valid failure URL is required")
        if req.preferred_provider == Provider.CASH:
            errors.append("Cash payments are collected offline and cannot be initiated online")
        if errors:
            raise ValidationError("; ".join(errors), errors)

    async def initiate_payment(self, req: UnifiedPaymentRequest) -> UnifiedPaymentResponse:
        self._validate_payment_request(req)

        provider = self.routing.select_provider(req.preferred_provider)
        adapter = self._adapter(provider)
        transaction_id = new_transaction_id(provider)
        amount = to_money(req.amount)
        currency = req.currency or self.settings.default_currency

        intent = PaymentIntent(
            transaction_id=transaction_id,
            amount=amount,
            currency=currency,
            description=req.description,
            user_id=req.user_id,
            customer_name=req.customer_name,
            customer_email=req.customer_email,
            customer_phone=req.customer_phone,
            success_url=req.success_url,
            failure_url=req.failure_url,
            metadata={**req.metadata, "bookingId": req.booking_id} if req.booking_id else req.metadata,
        )
        txn = Transaction(
            transaction_id=transaction_id,
            reference_number=transaction_id,
            provider=provider,
            amount=amount,
            currency=currency,
            description=req.description,
            user_id=req.user_id,
            user_type=req.user_type,
            booking_id=req.booking_id,
            metadata=req.metadata,
            fees=calculate_fees(amount, provider),
        )

        try:
            result = await self._call_gateway(provider, adapter.initiate(intent))
        except ProviderRejected as e:
            logger.warning(f"{provider.value} rejected {transaction_id}: {e.detail}")
            txn.status = TransactionStatus.FAILED
            txn.failure_reason = f"Rejected by {DISPLAY_NAMES[provider]}"
            txn.provider_status = str(e.status_code or "rejected")
            await self.store.create(txn)
            self.audit.log_event(
                "payment.rejected", transaction_id, provider=provider.value,
                severity="warning", detail=e.detail,
            )
            raise
        except ProviderUnavailable as e:
            logger.error(f"{provider.value} unavailable for {transaction_id}: {e.detail}")
            self.audit.log_event(
                "payment.provider_unavailable", transaction_id, provider=provider.value,
                severity="error", detail=e.detail,
            )
            raise

        txn.provider_transaction_id = result.provider_transaction_id
        txn.reference_number = result.reference_number
        txn.redirect_url = result.redirect_url
        txn.qr_code_url = result.qr_code_url
        txn.deep_link_url = result.deep_link_url
        txn.expires_at = result.expires_at
        txn.provider_status = result.provider_status

        try:
            await self.store.create(txn)
        except Exception as e:
            # The gateway already holds this payment
            logger.critical(
                f"Orphaned {provider.value} charge {result.provider_transaction_id} "
                f"for {transaction_id}: {e}"
            )
            self.audit.log_event(
                "payment.persistence_failed", transaction_id, provider=provider.value,
                severity="critical", provider_transaction_id=result.provider_transaction_id,
                amount=str(amount), error=str(e),
            )
            self.dead_letters.record_orphaned_charge(
                transaction_id, provider, result.provider_transaction_id, str(amount), str(e),
            )
            if isinstance(e, DuplicateReference):
                raise
            raise PersistenceFailure(transaction_id, provider.value, str(e)) from e

        self.audit.log_event(
            "payment.initiated", transaction_id, provider=provider.value,
            amount=str(amount), provider_transaction_id=txn.provider_transaction_id,
        )
        logger.info(f"Initiated {transaction_id} via {provider.value} for PHP {amount}")
        return UnifiedPaymentResponse.from_transaction(txn)

    # === Webhooks ===

    async def route_webhook(
        self,
        provider: Optional[Provider],
        payload: WebhookPayload,
        raise_errors: bool = False,
    ) -> list[WebhookProcessingResult]:
        """Verify, parse and apply one webhook delivery.

        Processing failures are dead-lettered and reported in the result;
        with raise_errors they propagate instead, for the replay job, and a
        bad signature raises SignatureInvalid.
        """
        adapter = self.adapters.get(provider) if provider else None
        if adapter is None:
            logger.warning("Webhook from an unidentified provider dropped")
            self.audit.log_event("webhook.unknown_provider", "unknown", severity="warning")
            return [WebhookProcessingResult(outcome="unknown_provider")]

        self.audit.log_event("webhook.received", provider.value, provider=provider.value)

        if not adapter.verify_webhook_signature(payload):
            logger.error(f"Invalid {provider.value} webhook signature, delivery dropped")
            self.audit.log_event(
                "webhook.signature_invalid", provider.value, provider=provider.value,
                severity="error",
            )
            if raise_errors:
                raise SignatureInvalid(provider.value)
            return [WebhookProcessingResult(outcome="signature_invalid", provider=provider)]

        try:
            events = await adapter.parse_webhook_events(payload)
            results = []
            for event in events:
                results.append(await self._apply_event(event, TransitionSource.WEBHOOK))
        except Exception as e:
            if raise_errors:
                raise
            logger.exception(f"Failed to process {provider.value} webhook")
            entry_id = self.dead_letters.push(provider, payload.headers, payload.raw_body, str(e))
            self.audit.log_event(
                "webhook.dead_lettered", entry_id, provider=provider.value,
                severity="error", error=str(e),
            )
            return [WebhookProcessingResult(outcome="dead_lettered", provider=provider, detail=entry_id)]

        if not results:
            results.append(WebhookProcessingResult(outcome="ignored", provider=provider))
        return results

    async def _find_transaction(self, event: NormalizedEvent) -> Optional[Transaction]:
        txn = await self.store.get_by_provider_transaction_id(
            event.provider, event.provider_transaction_id
        )
        if txn is None and event.transaction_id:
            txn = await self.store.get_by_transaction_id(event.transaction_id)
            if txn is not None and txn.provider != event.provider:
                return None
        return txn

    async def _apply_event(self, event: NormalizedEvent, source: TransitionSource) -> WebhookProcessingResult:
        txn = await self._find_transaction(event)
        if txn is None:
            logger.warning(
                f"No transaction for {event.provider.value} payment {event.provider_transaction_id}"
            )
            return WebhookProcessingResult(
                outcome=TransitionOutcome.NOT_FOUND.value,
                provider=event.provider,
                provider_transaction_id=event.provider_transaction_id,
                new_status=event.new_status,
                dedupe_key=event.dedupe_key,
            )

        failure_reason = None
        if event.new_status in (TransactionStatus.FAILED, TransactionStatus.CANCELLED):
            failure_reason = f"{DISPLAY_NAMES[event.provider]} reported {event.provider_status}"

        result = await self.store.apply_status_transition(
            txn.transaction_id,
            event.new_status,
            event.occurred_at,
            event.dedupe_key,
            source,
            failure_reason=failure_reason,
            provider_status=event.provider_status,
        )

        if result.applied:
            self.audit.log_event(
                f"payment.{event.new_status.value}", txn.transaction_id,
                provider=event.provider.value, source=source.value,
                previous_status=result.previous_status.value,
                provider_status=event.provider_status, dedupe_key=event.dedupe_key,
            )
        elif (
            result.outcome == TransitionOutcome.ILLEGAL
            and event.new_status == TransactionStatus.COMPLETED
            and result.previous_status in TERMINAL_STATUSES
            and result.previous_status != TransactionStatus.REFUNDED
        ):
            # Money moved after the payment was given up on locally
            logger.error(
                f"Late success for {txn.transaction_id}: gateway reports completed, "
                f"local status is {result.previous_status.value}"
            )
            self.audit.log_event(
                "payment.late_success", txn.transaction_id, provider=event.provider.value,
                severity="error", local_status=result.previous_status.value,
                provider_status=event.provider_status,
            )

        return WebhookProcessingResult(
            outcome=result.outcome.value,
            provider=event.provider,
            transaction_id=txn.transaction_id,
            provider_transaction_id=event.provider_transaction_id,
            previous_status=result.previous_status,
            new_status=event.new_status,
            dedupe_key=event.dedupe_key,
        )

    # === Status ===

    async def _sync_with_gateway(self, txn: Transaction) -> Transaction:
        """Poll the gateway and apply its status through the usual guard.

        Raises ProviderError when the gateway cannot be queried.
        """
        if not txn.provider_transaction_id or txn.provider not in self.adapters:
            return txn
        status = await self._call_gateway(
            txn.provider, self.adapters[txn.provider].query_status(txn.provider_transaction_id)
        )
        if status.new_status is None or status.new_status == txn.status:
            return txn

        occurred_at = status.occurred_at or utcnow()
        event = NormalizedEvent(
            provider=txn.provider,
            provider_transaction_id=txn.provider_transaction_id,
            transaction_id=txn.transaction_id,
            new_status=status.new_status,
            provider_status=status.provider_status,
            occurred_at=occurred_at,
            dedupe_key=(
                f"sync:{txn.provider.value}:{txn.provider_transaction_id}:"
                f"{status.provider_status}:{occurred_at.isoformat()}"
            ),
        )
        await self._apply_event(event, TransitionSource.SYNC)
        return await self.store.get_by_transaction_id(txn.transaction_id) or txn

    async def get_payment_status(self, transaction_id: str, sync: bool = False) -> PaymentStatusResponse:
        txn = await self.store.get_by_transaction_id(transaction_id)
        if txn is None:
            raise NotFound("Transaction", transaction_id)

        if sync:
            try:
                txn = await self._sync_with_gateway(txn)
            except ProviderError as e:
                logger.warning(f"Status sync for {transaction_id} failed, serving local state: {e}")

        refunds = await self.store.list_refunds(transaction_id)
        return PaymentStatusResponse(
            transaction_id=txn.transaction_id,
            reference_number=txn.reference_number,
            provider=txn.provider,
            status=txn.status,
            amount=txn.amount,
            currency=txn.currency,
            fees=FeesResponse.from_fees(txn.fees),
            description=txn.description,
            booking_id=txn.booking_id,
            created_at=txn.created_at,
            updated_at=txn.updated_at,
            completed_at=txn.completed_at,
            failure_reason=txn.failure_reason,
            expires_at=txn.expires_at,
            refunded_amount=to_money(refunded_amount(refunds)),
            refundable_amount=to_money(refundable_amount(txn, refunds)),
            provider_details=ProviderDetails(
                provider_transaction_id=txn.provider_transaction_id,
                provider_status=txn.provider_status,
            ),
        )

    # === Refunds ===

    async def process_refund(self, req: UnifiedRefundRequest) -> RefundResponse:
        errors = []
        if not req.reason.strip():
            errors.append("Refund reason is required")
        if not req.requested_by.strip():
            errors.append("Requester is required")
        if req.amount is not None:
            if req.amount <= 0:
                errors.append("Refund amount must be greater than 0")
            elif req.amount != req.amount.quantize(CENTAVO):
                errors.append("Refund amount must have at most two decimal places")
        if errors:
            raise ValidationError("; ".join(errors), errors)

        amount = to_money(req.amount) if req.amount is not None else None
        refund = await self.store.create_refund(
            req.transaction_id, amount, req.reason, req.requested_by, req.metadata,
        )
        self.audit.log_event(
            "refund.requested", refund.refund_id, provider=refund.provider.value,
            transaction_id=refund.transaction_id, amount=str(refund.amount),
            requested_by=refund.requested_by,
        )

        if refund.amount <= self.settings.refund_auto_approve_limit:
            refund = await self.store.apply_refund_transition(
                refund.refund_id, RefundStatus.APPROVED, actor="system"
            )
            self.audit.log_event(
                "refund.approved", refund.refund_id, provider=refund.provider.value,
                approved_by="system",
            )
            refund = await self._execute_refund(refund)
        else:
            logger.info(
                f"Refund {refund.refund_id} of {refund.amount} awaits operator approval"
            )

        return RefundResponse.from_refund(refund)

    async def get_refund(self, refund_id: str) -> RefundResponse:
        refund = await self.store.get_refund(refund_id)
        if refund is None:
            raise NotFound("Refund", refund_id)
        return RefundResponse.from_refund(refund)

    async def approve_refund(self, refund_id: str, approver: str) -> RefundResponse:
        refund = await self.store.get_refund(refund_id)
        if refund is None:
            raise NotFound("Refund", refund_id)
        if not approver:
            raise ValidationError("Approver is required")
        if approver == refund.requested_by:
            raise ValidationError("Maker-checker violation: approver cannot be the requester")

        refund = await self.store.apply_refund_transition(
            refund_id, RefundStatus.APPROVED, actor=approver
        )
        self.audit.log_event(
            "refund.approved", refund_id, provider=refund.provider.value, approved_by=approver,
        )
        refund = await self._execute_refund(refund)
        return RefundResponse.from_refund(refund)

    async def reject_refund(self, refund_id: str, approver: str, reason: str) -> RefundResponse:
        refund = await self.store.get_refund(refund_id)
        if refund is None:
            raise NotFound("Refund", refund_id)
        if not approver:
            raise ValidationError("Approver is required")

        refund = await self.store.apply_refund_transition(
            refund_id, RefundStatus.REJECTED, actor=approver,
            failure_reason=reason or "Rejected by operator",
        )
        self.audit.log_event(
            "refund.rejected", refund_id, provider=refund.provider.value,
            rejected_by=approver, reason=reason,
        )
        return RefundResponse.from_refund(refund)

    async def _execute_refund(self, refund: Refund) -> Refund:
        txn = await self.store.get_by_transaction_id(refund.transaction_id)
        refunds = await self.store.list_refunds(refund.transaction_id)
        # This refund is already approved; approved refunds still at the
        # gateway count towards the full amount
        committed = sum(
            (r.amount for r in refunds if r.status in (RefundStatus.APPROVED, RefundStatus.PROCESSED)),
            Decimal("0"),
        )

        if committed >= txn.amount:
            result = await self.store.apply_status_transition(
                txn.transaction_id,
                TransactionStatus.REFUND_PENDING,
                utcnow(),
                f"refund:{refund.refund_id}:start",
                TransitionSource.REFUND,
            )
            if not result.applied and txn.status != TransactionStatus.REFUND_PENDING:
                return await self._fail_refund(refund, "Transaction is no longer refundable")

        try:
            outcome = await self._call_gateway(
                refund.provider,
                self._adapter(refund.provider).refund(
                    txn.provider_transaction_id, refund.amount, refund.reason, refund.refund_id,
                ),
            )
        except ProviderError as e:
            logger.error(f"Gateway refund for {refund.refund_id} failed: {e}")
            return await self._fail_refund(refund, "Gateway refund request failed")

        if outcome.status == "pending":
            # Settled later by a refunded notification or settle_pending_refunds
            logger.info(f"Refund {refund.refund_id} pending at {refund.provider.value}")
            self.audit.log_event(
                "refund.submitted", refund.refund_id, provider=refund.provider.value,
                provider_refund_id=outcome.provider_refund_id,
            )
            return refund
        return await self._settle_refund(refund, outcome)

    async def _settle_refund(self, refund: Refund, outcome: ProviderRefundResult) -> Refund:
        if outcome.status == "processed":
            refund = await self.store.apply_refund_transition(
                refund.refund_id, RefundStatus.PROCESSED, actor="system",
                provider_refund_id=outcome.provider_refund_id,
            )
            self.audit.log_event(
                "refund.processed", refund.refund_id, provider=refund.provider.value,
                transaction_id=refund.transaction_id, amount=str(refund.amount),
                provider_refund_id=outcome.provider_refund_id,
            )
            return refund
        return await self._fail_refund(refund, outcome.failure_reason or "Refund declined by gateway")

    async def _fail_refund(self, refund: Refund, reason: str) -> Refund:
        refund = await self.store.apply_refund_transition(
            refund.refund_id, RefundStatus.FAILED, failure_reason=reason,
        )
        self.audit.log_event(
            "refund.failed", refund.refund_id, provider=refund.provider.value,
            severity="error", reason=reason,
        )
        return refund

    # === Payment methods ===

    def get_available_payment_methods(self, amount: Optional[Decimal] = None) -> list[PaymentMethodInfo]:
        methods = []
        for provider, adapter in self.adapters.items():
            breaker = self.routing.breakers.get(provider)
            within_limit = amount is None or Decimal("0") < amount <= adapter.max_amount
            methods.append(PaymentMethodInfo(
                provider=provider,
                display_name=DISPLAY_NAMES[provider],
                available=self.routing.is_available(provider) and within_limit,
                max_amount=adapter.max_amount,
                circuit_state=breaker.get_state().circuit_state if breaker else None,
                fees=FeesResponse.from_fees(calculate_fees(amount, provider)) if amount else None,
            ))
        methods.append(PaymentMethodInfo(
            provider=Provider.CASH,
            display_name=DISPLAY_NAMES[Provider.CASH],
            available=True,
            fees=FeesResponse.from_fees(calculate_fees(amount, Provider.CASH)) if amount else None,
        ))
        return methods

    def provider_health(self) -> list[dict]:
        providers = []
        for provider, breaker in self.routing.breakers.items():
            state = breaker.get_state()
            providers.append({
                "providerId": provider.value,
                "circuitState": state.circuit_state.value,
                "failureCount": state.failure_count,
                "successCount": state.success_count,
                "lastFailureAt": state.last_failure_at.isoformat() if state.last_failure_at else None,
                "lastSuccessAt": state.last_success_at.isoformat() if state.last_success_at else None,
                "canExecute": self.routing.is_available(provider),
            })
        return providers

    # === Sweeps ===

    async def expire_stale_payments(self, now: Optional[datetime] = None) -> list[str]:
        """Expire open payments whose checkout window closed, after a grace period."""
        now = now or utcnow()
        cutoff = now - timedelta(seconds=self.settings.expiry_grace_seconds)
        expired = []
        for status in OPEN_STATUSES:
            for txn in await self.store.list_transactions(status=status, expires_before=cutoff):
                result = await self.store.apply_status_transition(
                    txn.transaction_id,
                    TransactionStatus.EXPIRED,
                    now,
                    f"expiry:{txn.transaction_id}",
                    TransitionSource.EXPIRY_SWEEP,
                    failure_reason="Payment window expired",
                )
                if result.applied:
                    expired.append(txn.transaction_id)
                    self.audit.log_event(
                        "payment.expired", txn.transaction_id, provider=txn.provider.value,
                        source=TransitionSource.EXPIRY_SWEEP.value,
                        previous_status=result.previous_status.value,
                    )
        if expired:
            logger.info(f"Expired {len(expired)} stale payments")
        return expired

    async def reconcile_open_payments(self, older_than: Optional[datetime] = None) -> dict:
        """Poll the gateway for open payments that no webhook has resolved."""
        cutoff = older_than or utcnow() - timedelta(seconds=self.settings.reconcile_after_seconds)
        checked = 0
        updated = []
        errors = []
        for status in OPEN_STATUSES:
            for txn in await self.store.list_transactions(status=status, older_than=cutoff):
                checked += 1
                try:
                    synced = await self._sync_with_gateway(txn)
                except ProviderError as e:
                    logger.warning(f"Reconciliation query for {txn.transaction_id} failed: {e}")
                    errors.append({"transaction_id": txn.transaction_id, "error": str(e)})
                    continue
                if synced.status != txn.status:
                    updated.append({
                        "transaction_id": txn.transaction_id,
                        "provider": txn.provider.value,
                        "from": txn.status.value,
                        "to": synced.status.value,
                    })
        logger.info(
            f"Reconciled {checked} open payments: {len(updated)} updated, {len(errors)} errors"
        )
        return {"checked": checked, "updated": updated, "errors": errors}

    async def settle_pending_refunds(self) -> dict:
        """Ask the gateway about approved refunds it accepted but has not confirmed."""
        checked = 0
        settled = []
        errors = []
        for refund in await self.store.list_refunds(status=RefundStatus.APPROVED):
            txn = await self.store.get_by_transaction_id(refund.transaction_id)
            if txn is None or not txn.provider_transaction_id or refund.provider not in self.adapters:
                continue
            checked += 1
            try:
                outcome = await self._call_gateway(
                    refund.provider,
                    self.adapters[refund.provider].query_refund(
                        txn.provider_transaction_id, refund.refund_id, refund.provider_refund_id,
                    ),
                )
            except ProviderError as e:
                logger.warning(f"Refund query for {refund.refund_id} failed: {e}")
                errors.append({"refund_id": refund.refund_id, "error": str(e)})
                continue
            if outcome.status == "pending":
                continue
            refund = await self._settle_refund(refund, outcome)
            settled.append({
                "refund_id": refund.refund_id,
                "transaction_id": refund.transaction_id,
                "provider": refund.provider.value,
                "to": refund.status.value,
            })
        logger.info(
            f"Checked {checked} approved refunds: {len(settled)} settled, {len(errors)} errors"
        )
        return {"checked": checked, "settled": settled, "errors": errors}


def build_orchestrator(
    settings: Settings,
    transports: Optional[dict[Provider, httpx.AsyncBaseTransport]] = None,
) -> PaymentOrchestrator:
    transports = transports or {}
    adapters: dict[Provider, GatewayAdapter] = {
        Provider.MAYA: MayaGateway(settings.maya, transport=transports.get(Provider.MAYA)),
        Provider.GCASH: GCashGateway(settings.ebanx, transport=transports.get(Provider.GCASH)),
    }
    breakers = {
        provider: CircuitBreaker(
            provider.value,
            settings.data_dir,
            failure_threshold=settings.cb_failure_threshold,
            recovery_timeout=settings.cb_recovery_timeout,
            half_open_max=settings.cb_half_open_max_calls,
        )
        for provider in adapters
    }
    return PaymentOrchestrator(
        settings=settings,
        store=FileTransactionStore(settings.data_dir),
        adapters=adapters,
        routing=RoutingEngine(breakers, settings.provider_priority, settings.default_provider),
        audit=AuditLog(settings.data_dir),
        dead_letters=DeadLetterQueue(settings.data_dir),
    )
