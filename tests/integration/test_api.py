"""HTTP tests for the payments API."""

import logging

import httpx
import pytest

from helpers import (
    MAYA_WEBHOOK_SECRET,
    encode,
    maya_checkout_response,
    maya_webhook_body,
    payment_request_body,
    sign,
)
from opstower_api.main import create_app

REFUND_PATH = "/payments/v1/payments/chk-1/refunds"


async def initiate(client, maya_api, headers=None, **overrides) -> httpx.Response:
    maya_api.on("POST", "/checkout/v1/checkouts", maya_checkout_response("chk-1"))
    return await client.post(
        "/payments/initiate", json=payment_request_body(**overrides), headers=headers or {}
    )


async def post_maya_webhook(client, body: dict, secret: str = MAYA_WEBHOOK_SECRET) -> httpx.Response:
    raw = encode(body)
    return await client.post(
        "/payments/webhook",
        content=raw,
        headers={"content-type": "application/json", "x-maya-signature": sign(secret, raw)},
    )


async def completed_payment(client, maya_api, **overrides) -> str:
    resp = await initiate(client, maya_api, **overrides)
    await post_maya_webhook(client, maya_webhook_body("chk-1", "PAYMENT_SUCCESS"))
    return resp.json()["transactionId"]


class TestInitiateEndpoint:
    """Tests for POST /payments/initiate."""

    @pytest.mark.asyncio
    async def test_returns_created_payment_in_camel_case(self, client, maya_api):
        resp = await initiate(client, maya_api)

        assert resp.status_code == 201
        data = resp.json()
        assert data["provider"] == "maya"
        assert data["status"] == "pending"
        assert data["providerTransactionId"] == "chk-1"
        assert data["amount"] == "1500.00"
        assert data["fees"]["totalFee"] == "52.50"
        assert data["netAmount"] == "1447.50"
        assert data["redirectUrl"].endswith("chk-1")
        assert resp.headers["X-Request-Id"]

    @pytest.mark.asyncio
    async def test_echoes_request_id(self, client, maya_api):
        resp = await initiate(client, maya_api, headers={"X-Request-Id": "req_from_client"})
        assert resp.headers["X-Request-Id"] == "req_from_client"

    @pytest.mark.asyncio
    async def test_malformed_body_is_400(self, client):
        body = payment_request_body()
        del body["amount"]
        resp = await client.post("/payments/initiate", json=body)

        assert resp.status_code == 400
        assert resp.json()["detail"]["message"] == "Invalid request"

    @pytest.mark.asyncio
    async def test_business_validation_is_400(self, client, maya_api):
        resp = await initiate(client, maya_api, amount=0, customerEmail="nope")

        assert resp.status_code == 400
        assert len(resp.json()["detail"]["errors"]) == 2

    @pytest.mark.asyncio
    async def test_rejected_by_gateway_is_502(self, client, maya_api):
        maya_api.on("POST", "/checkout/v1/checkouts", httpx.Response(400, json={"code": "2553"}))
        resp = await client.post("/payments/initiate", json=payment_request_body())
        assert resp.status_code == 502

    @pytest.mark.asyncio
    async def test_gateway_down_is_503(self, client, maya_api):
        maya_api.on("POST", "/checkout/v1/checkouts", httpx.Response(500))
        resp = await client.post("/payments/initiate", json=payment_request_body())
        assert resp.status_code == 503


class TestIdempotency:
    """Tests for Idempotency-Key replay."""

    @pytest.mark.asyncio
    async def test_same_key_replays_first_response(self, client, maya_api):
        headers = {"Idempotency-Key": "idem-001"}
        first = await initiate(client, maya_api, headers=headers)
        second = await initiate(client, maya_api, headers=headers)

        assert first.status_code == second.status_code == 201
        assert first.json() == second.json()
        assert len(maya_api.calls("POST", "/checkout/v1/checkouts")) == 1

    @pytest.mark.asyncio
    async def test_same_key_different_body_is_422(self, client, maya_api):
        headers = {"Idempotency-Key": "idem-002"}
        await initiate(client, maya_api, headers=headers)
        resp = await initiate(client, maya_api, headers=headers, amount=2000)

        assert resp.status_code == 422

    @pytest.mark.asyncio
    async def test_without_key_each_request_creates_a_payment(self, client, maya_api):
        maya_api.on(
            "POST", "/checkout/v1/checkouts",
            maya_checkout_response("chk-a"), maya_checkout_response("chk-b"),
        )
        first = await client.post("/payments/initiate", json=payment_request_body())
        second = await client.post("/payments/initiate", json=payment_request_body())

        assert first.json()["transactionId"] != second.json()["transactionId"]


class TestStatusEndpoint:

    @pytest.mark.asyncio
    async def test_unknown_transaction_is_404(self, client):
        resp = await client.get("/payments/status/TXN-MAYA-NOPE")
        assert resp.status_code == 404

    @pytest.mark.asyncio
    async def test_reports_completed_payment(self, client, maya_api):
        transaction_id = await completed_payment(client, maya_api)

        resp = await client.get(f"/payments/status/{transaction_id}")

        assert resp.status_code == 200
        data = resp.json()
        assert data["status"] == "completed"
        assert data["refundableAmount"] == "1500.00"
        assert data["refundedAmount"] == "0.00"
        assert data["providerDetails"]["providerTransactionId"] == "chk-1"


class TestWebhookEndpoint:
    """Tests for POST /payments/webhook."""

    @pytest.mark.asyncio
    async def test_applies_maya_notification(self, client, maya_api):
        await initiate(client, maya_api)

        resp = await post_maya_webhook(client, maya_webhook_body("chk-1", "PAYMENT_SUCCESS"))

        assert resp.status_code == 200
        data = resp.json()
        assert data["received"] is True
        assert data["provider"] == "maya"
        assert data["results"][0]["outcome"] == "applied"
        assert data["results"][0]["newStatus"] == "completed"

    @pytest.mark.asyncio
    async def test_invalid_signature_still_acknowledged(self, client, maya_api):
        await initiate(client, maya_api)

        resp = await post_maya_webhook(
            client, maya_webhook_body("chk-1", "PAYMENT_SUCCESS"), secret="forged"
        )

        assert resp.status_code == 200
        assert resp.json()["results"][0]["outcome"] == "signature_invalid"

    @pytest.mark.asyncio
    async def test_unknown_provider_is_400(self, client):
        resp = await client.post("/payments/webhook", json={"hello": "world"})

        assert resp.status_code == 400
        assert resp.json()["error"] == "UNKNOWN_PROVIDER"
        assert resp.json()["received"] is False

    @pytest.mark.asyncio
    async def test_non_json_body_is_400(self, client):
        resp = await client.post("/payments/webhook", content=b"not json")
        assert resp.status_code == 400


class TestRefundEndpoints:
    """Tests for refund request, approval and rejection."""

    @pytest.mark.asyncio
    async def test_small_refund_is_processed_immediately(self, client, maya_api):
        transaction_id = await completed_payment(client, maya_api)
        maya_api.on("POST", REFUND_PATH, httpx.Response(200, json={"id": "rf-1", "status": "COMPLETED"}))

        resp = await client.post("/payments/refund", json={
            "transactionId": transaction_id,
            "amount": "200",
            "reason": "Route deviation",
            "requestedBy": "ops-agent-1",
        })

        assert resp.status_code == 201
        data = resp.json()
        assert data["status"] == "processed"
        assert data["amount"] == "200.00"
        assert data["approvedBy"] == "system"

        fetched = await client.get(f"/payments/refunds/{data['refundId']}")
        assert fetched.status_code == 200
        assert fetched.json()["providerRefundId"] == "rf-1"

    @pytest.mark.asyncio
    async def test_maker_checker_approval(self, client, maya_api):
        transaction_id = await completed_payment(client, maya_api, amount=8000)
        maya_api.on("POST", REFUND_PATH, httpx.Response(200, json={"id": "rf-1", "status": "COMPLETED"}))
        created = await client.post("/payments/refund", json={
            "transactionId": transaction_id,
            "reason": "Trip cancelled by driver",
            "requestedBy": "ops-agent-1",
        })
        assert created.json()["status"] == "pending"
        refund_id = created.json()["refundId"]

        same = await client.post(
            f"/payments/refunds/{refund_id}/approve", headers={"X-Operator-Id": "ops-agent-1"}
        )
        assert same.status_code == 400

        approved = await client.post(
            f"/payments/refunds/{refund_id}/approve", headers={"X-Operator-Id": "ops-supervisor-2"}
        )
        assert approved.status_code == 200
        assert approved.json()["status"] == "processed"

        again = await client.post(
            f"/payments/refunds/{refund_id}/approve", headers={"X-Operator-Id": "ops-supervisor-3"}
        )
        assert again.status_code == 409

        status = await client.get(f"/payments/status/{transaction_id}")
        assert status.json()["status"] == "refunded"

    @pytest.mark.asyncio
    async def test_reject(self, client, maya_api):
        transaction_id = await completed_payment(client, maya_api, amount=8000)
        created = await client.post("/payments/refund", json={
            "transactionId": transaction_id,
            "amount": "7000",
            "reason": "Disputed fare",
            "requestedBy": "ops-agent-1",
        })

        resp = await client.post(
            f"/payments/refunds/{created.json()['refundId']}/reject",
            json={"reason": "Fare was correct"},
            headers={"X-Operator-Id": "ops-supervisor-2"},
        )

        assert resp.status_code == 200
        assert resp.json()["status"] == "rejected"
        assert resp.json()["failureReason"] == "Fare was correct"

    @pytest.mark.asyncio
    async def test_approve_requires_operator_header(self, client, maya_api):
        resp = await client.post("/payments/refunds/RFD-ANY/approve")
        assert resp.status_code == 400

    @pytest.mark.asyncio
    async def test_unknown_refund_is_404(self, client):
        resp = await client.get("/payments/refunds/RFD-NOPE")
        assert resp.status_code == 404

    @pytest.mark.asyncio
    async def test_refund_of_unknown_transaction_is_404(self, client):
        resp = await client.post("/payments/refund", json={
            "transactionId": "TXN-MAYA-NOPE", "reason": "x", "requestedBy": "ops-agent-1",
        })
        assert resp.status_code == 404


class TestMethodsAndHealth:

    @pytest.mark.asyncio
    async def test_available_methods(self, client):
        resp = await client.get("/payments/methods/available", params={"amount": "1500"})

        assert resp.status_code == 200
        methods = {m["provider"]: m for m in resp.json()["methods"]}
        assert set(methods) == {"maya", "gcash", "cash"}
        assert methods["gcash"]["displayName"] == "GCash"
        assert methods["gcash"]["fees"]["totalFee"] == "62.50"
        assert methods["maya"]["circuitState"] == "closed"

    @pytest.mark.asyncio
    async def test_non_positive_amount_is_400(self, client):
        resp = await client.get("/payments/methods/available", params={"amount": "0"})
        assert resp.status_code == 400

    @pytest.mark.asyncio
    async def test_health(self, client):
        resp = await client.get("/health")
        assert resp.json() == {"status": "healthy", "service": "opstower-payments"}

    @pytest.mark.asyncio
    async def test_provider_health(self, client):
        resp = await client.get("/payments/providers/health")
        providers = {p["providerId"] for p in resp.json()["providers"]}
        assert providers == {"maya", "gcash"}


class TestAppSettings:

    def test_log_level_applies_to_service_loggers(self, settings, orchestrator):
        service_logger = logging.getLogger("opstower")
        original = service_logger.level
        try:
            create_app(settings=settings.model_copy(update={"log_level": "warning"}), orchestrator=orchestrator)
            assert service_logger.level == logging.WARNING
            assert not logging.getLogger("opstower.orchestrator").isEnabledFor(logging.INFO)
        finally:
            service_logger.setLevel(original)

    @pytest.mark.asyncio
    async def test_initiate_without_currency(self, client, maya_api):
        body = payment_request_body()
        del body["currency"]
        maya_api.on("POST", "/checkout/v1/checkouts", maya_checkout_response("chk-1"))

        resp = await client.post("/payments/initiate", json=body)

        assert resp.status_code == 201
        assert resp.json()["currency"] == "PHP"
