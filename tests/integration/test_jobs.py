"""Tests for the background jobs: expiry sweep, reconciliation and dead-letter replay."""

from datetime import timedelta
from decimal import Decimal

import httpx
import pytest

from helpers import (
    EBANX_WEBHOOK_SECRET,
    ebanx_payment_response,
    ebanx_query_response,
    ebanx_webhook_body,
    encode,
    maya_status_response,
    payment_request_body,
    sign,
)
from opstower_shared.file_store import FileStore
from opstower_shared.models import Provider, RefundStatus, Transaction, TransactionStatus, utcnow
from opstower_api.models.requests import UnifiedPaymentRequest
from opstower_api.services.gateways.base import WebhookPayload
from opstower_jobs.dead_letter_replay import DeadLetterReplayJob
from opstower_jobs.expiry_sweep import ExpirySweepJob
from opstower_jobs.reconciliation import ReconciliationJob


async def store_payment(orchestrator, n: int, **overrides) -> Transaction:
    fields = dict(
        transaction_id=f"TXN-MAYA-{n:04d}",
        reference_number=f"TXN-MAYA-{n:04d}",
        provider=Provider.MAYA,
        provider_transaction_id=f"chk-{n}",
        amount=Decimal("250.00"),
        description="Ride fare",
        user_id="passenger-42",
    )
    fields.update(overrides)
    return await orchestrator.store.create(Transaction(**fields))


async def status_of(orchestrator, transaction_id: str) -> TransactionStatus:
    return (await orchestrator.store.get_by_transaction_id(transaction_id)).status


class TestExpirySweep:

    @pytest.mark.asyncio
    async def test_expires_open_payments_past_grace(self, orchestrator):
        now = utcnow()
        pending = await store_payment(orchestrator, 1, expires_at=now - timedelta(minutes=10))
        processing = await store_payment(
            orchestrator, 2, status=TransactionStatus.PROCESSING, expires_at=now - timedelta(minutes=10),
        )
        in_grace = await store_payment(orchestrator, 3, expires_at=now - timedelta(seconds=10))
        completed = await store_payment(
            orchestrator, 4, status=TransactionStatus.COMPLETED, expires_at=now - timedelta(minutes=10),
        )

        expired = await ExpirySweepJob(orchestrator).run_once()

        assert sorted(expired) == [pending.transaction_id, processing.transaction_id]
        assert await status_of(orchestrator, pending.transaction_id) == TransactionStatus.EXPIRED
        assert await status_of(orchestrator, in_grace.transaction_id) == TransactionStatus.PENDING
        assert await status_of(orchestrator, completed.transaction_id) == TransactionStatus.COMPLETED

        txn = await orchestrator.store.get_by_transaction_id(pending.transaction_id)
        assert txn.failure_reason == "Payment window expired"

    @pytest.mark.asyncio
    async def test_second_sweep_is_a_no_op(self, orchestrator):
        await store_payment(orchestrator, 1, expires_at=utcnow() - timedelta(minutes=10))
        job = ExpirySweepJob(orchestrator)

        await job.run_once()

        assert await job.run_once() == []


class TestReconciliation:

    @pytest.mark.asyncio
    async def test_resolves_payments_missing_a_webhook(self, orchestrator, maya_api, settings):
        old = utcnow() - timedelta(hours=1)
        resolved = await store_payment(orchestrator, 1, created_at=old)
        unreachable = await store_payment(orchestrator, 2, created_at=old)
        await store_payment(orchestrator, 3)
        maya_api.on("GET", "/checkout/v1/checkouts/chk-1", maya_status_response("chk-1", "PAYMENT_SUCCESS"))
        maya_api.on("GET", "/checkout/v1/checkouts/chk-2", httpx.Response(504))
        job = ReconciliationJob(orchestrator, settings.data_dir)

        result = await job.run_once()

        assert result["checked"] == 2
        assert result["updated"] == [{
            "transaction_id": resolved.transaction_id,
            "provider": "maya",
            "from": "pending",
            "to": "completed",
        }]
        assert [e["transaction_id"] for e in result["errors"]] == [unreachable.transaction_id]
        assert maya_api.calls("GET", "/checkout/v1/checkouts/chk-3") == []

        txn = await orchestrator.store.get_by_transaction_id(resolved.transaction_id)
        assert txn.status == TransactionStatus.COMPLETED
        assert any(k.startswith("sync:maya:chk-1:PAYMENT_SUCCESS:") for k in txn.applied_dedupe_keys)

    @pytest.mark.asyncio
    async def test_daily_report_accumulates_runs(self, orchestrator, maya_api, settings):
        await store_payment(orchestrator, 1, created_at=utcnow() - timedelta(hours=1))
        maya_api.on("GET", "/checkout/v1/checkouts/chk-1", maya_status_response("chk-1", "PAYMENT_SUCCESS"))
        job = ReconciliationJob(orchestrator, settings.data_dir)

        await job.run_once()
        await job.run_once()

        date = utcnow().strftime("%Y-%m-%d")
        report = FileStore.read_json(job.report_path(date))
        assert report["runs"] == 2
        assert report["checked"] == 1
        assert len(report["updated"]) == 1
        assert report["status"] == "clean"

    @pytest.mark.asyncio
    async def test_settles_refunds_the_gateway_confirmed_later(self, orchestrator, maya_api, settings):
        payment = await store_payment(orchestrator, 1, status=TransactionStatus.COMPLETED)
        refund = await orchestrator.store.create_refund(
            payment.transaction_id, Decimal("100.00"), "Route deviation", "ops-agent-1",
        )
        await orchestrator.store.apply_refund_transition(refund.refund_id, RefundStatus.APPROVED, actor="system")
        maya_api.on("GET", "/payments/v1/payments/chk-1/refunds", httpx.Response(200, json=[
            {"id": "rf-1", "requestReferenceNumber": refund.refund_id, "status": "COMPLETED"},
        ]))
        job = ReconciliationJob(orchestrator, settings.data_dir)

        result = await job.run_once()

        assert [r["refund_id"] for r in result["refunds_settled"]] == [refund.refund_id]
        assert (await orchestrator.store.get_refund(refund.refund_id)).status == RefundStatus.PROCESSED
        report = FileStore.read_json(job.report_path(utcnow().strftime("%Y-%m-%d")))
        assert report["refunds_settled"][0]["to"] == "processed"
        assert report["status"] == "clean"

    @pytest.mark.asyncio
    async def test_unchanged_status_is_not_reported(self, orchestrator, maya_api, settings):
        await store_payment(orchestrator, 1, created_at=utcnow() - timedelta(hours=1))
        maya_api.on("GET", "/checkout/v1/checkouts/chk-1", maya_status_response("chk-1", "PENDING_PAYMENT"))

        result = await ReconciliationJob(orchestrator, settings.data_dir).run_once()

        assert result["checked"] == 1
        assert result["updated"] == []


class TestDeadLetterReplay:

    async def dead_letter_gcash_completion(self, orchestrator, ebanx_api) -> str:
        ebanx_api.on("POST", "/ws/request", ebanx_payment_response("hash-1"))
        payment = await orchestrator.initiate_payment(
            UnifiedPaymentRequest.model_validate(payment_request_body(preferredProvider="gcash"))
        )
        ebanx_api.on("POST", "/ws/query", httpx.Response(503))
        body = ebanx_webhook_body("hash-1")
        raw = encode(body)
        results = await orchestrator.route_webhook(Provider.GCASH, WebhookPayload(
            headers={"x-ebanx-signature": sign(EBANX_WEBHOOK_SECRET, raw)}, body=body, raw_body=raw,
        ))
        assert results[0].outcome == "dead_lettered"
        return payment.transaction_id

    @pytest.mark.asyncio
    async def test_replay_applies_once_gateway_recovers(self, orchestrator, ebanx_api):
        transaction_id = await self.dead_letter_gcash_completion(orchestrator, ebanx_api)
        entry_id = orchestrator.dead_letters.pending()[0]["entry_id"]
        ebanx_api.on("POST", "/ws/query", ebanx_query_response("hash-1", "CO"))

        replayed = await DeadLetterReplayJob(orchestrator).run_once()

        assert replayed == 1
        assert await status_of(orchestrator, transaction_id) == TransactionStatus.COMPLETED
        assert orchestrator.dead_letters.pending() == []
        assert orchestrator.dead_letters.get(entry_id)["status"] == "replayed"

    @pytest.mark.asyncio
    async def test_failed_replay_stays_queued_then_parks(self, orchestrator, ebanx_api):
        transaction_id = await self.dead_letter_gcash_completion(orchestrator, ebanx_api)
        entry_id = orchestrator.dead_letters.pending()[0]["entry_id"]
        job = DeadLetterReplayJob(orchestrator)

        assert await job.run_once() == 0
        assert orchestrator.dead_letters.get(entry_id)["attempts"] == 1
        assert orchestrator.dead_letters.get(entry_id)["status"] == "pending"

        for _ in range(orchestrator.dead_letters.max_attempts - 1):
            await job.run_once()

        entry = orchestrator.dead_letters.get(entry_id)
        assert entry["status"] == "parked"
        assert entry["attempts"] == orchestrator.dead_letters.max_attempts
        assert orchestrator.dead_letters.pending() == []
        assert await status_of(orchestrator, transaction_id) == TransactionStatus.PENDING
