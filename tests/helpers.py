"""Shared test helpers: scripted gateway APIs and payload builders."""

import hashlib
import hmac
import json
from typing import Callable, Union

import httpx

MAYA_WEBHOOK_SECRET = "maya-webhook-secret"
EBANX_WEBHOOK_SECRET = "ebanx-webhook-secret"

Scripted = Union[httpx.Response, Exception, Callable[[httpx.Request], httpx.Response]]


class GatewayStub:
    """A fake gateway HTTP API served through httpx.MockTransport.

    Responses are scripted per (method, path); the last scripted response
    for a route is reused once earlier ones are consumed.
    """

    def __init__(self):
        self.routes: dict[tuple[str, str], list[Scripted]] = {}
        self.requests: list[httpx.Request] = []

    def on(self, method: str, path: str, *responses: Scripted) -> "GatewayStub":
        self.routes[(method, path)] = list(responses)
        return self

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        scripted = self.routes.get((request.method, request.url.path))
        if not scripted:
            return httpx.Response(404, json={"error": f"no route {request.method} {request.url.path}"})
        response = scripted.pop(0) if len(scripted) > 1 else scripted[0]
        if isinstance(response, Exception):
            raise response
        if callable(response):
            return response(request)
        # Fresh copy so a scripted response can be served more than once
        return httpx.Response(
            response.status_code, headers=response.headers, content=response.content
        )

    @property
    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handler)

    def calls(self, method: str, path: str) -> list[httpx.Request]:
        return [r for r in self.requests if r.method == method and r.url.path == path]


def sign(secret: str, raw_body: bytes) -> str:
    return hmac.new(secret.encode(), raw_body, hashlib.sha256).hexdigest()


def encode(body: dict) -> bytes:
    return json.dumps(body).encode()


# === Maya ===

def maya_checkout_response(checkout_id: str = "chk-0001") -> httpx.Response:
    return httpx.Response(200, json={
        "checkoutId": checkout_id,
        "redirectUrl": f"https://payments.maya.test/v2/checkout?id={checkout_id}",
    })


def maya_status_response(checkout_id: str, status: str, updated_at: str = "2026-01-10T08:05:00Z") -> httpx.Response:
    return httpx.Response(200, json={
        "id": checkout_id,
        "paymentStatus": status,
        "updatedAt": updated_at,
    })


def maya_webhook_body(
    checkout_id: str,
    status: str,
    event_id: str = "evt-0001",
    transaction_id: str = None,
    paid_at: str = "2026-01-10T08:00:00Z",
) -> dict:
    data = {
        "id": f"pay-{checkout_id}",
        "checkoutId": checkout_id,
        "status": status,
        "paymentAt": paid_at,
    }
    if transaction_id:
        data["requestReferenceNumber"] = transaction_id
    return {"id": event_id, "name": status, "data": data}


# === EBANX ===

def ebanx_payment_response(payment_hash: str = "hash-0001", order_number: str = "ORD-0001") -> httpx.Response:
    return httpx.Response(200, json={
        "status": "SUCCESS",
        "payment": {
            "hash": payment_hash,
            "order_number": order_number,
            "status": "OP",
            "gcash": {
                "callback_url": f"https://gcash.ebanx.test/pay/{payment_hash}",
                "deep_link_url": f"gcash://pay/{payment_hash}",
                "qr_code_url": f"https://gcash.ebanx.test/qr/{payment_hash}.png",
            },
        },
    })


def ebanx_query_response(
    payment_hash: str,
    status: str,
    merchant_payment_code: str = None,
    status_date: str = "2026-01-10T08:00:00Z",
) -> httpx.Response:
    return httpx.Response(200, json={
        "status": "SUCCESS",
        "payment": {
            "hash": payment_hash,
            "merchant_payment_code": merchant_payment_code,
            "status": status,
            "status_date": status_date,
        },
    })


def ebanx_webhook_body(*hash_codes: str, notification_type: str = "update") -> dict:
    return {"notification_type": notification_type, "hash_codes": list(hash_codes)}


# === Requests ===

def payment_request_body(**overrides) -> dict:
    body = {
        "amount": 1500,
        "currency": "PHP",
        "description": "Ride BK-1001 Makati to BGC",
        "userId": "passenger-42",
        "userType": "passenger",
        "customerName": "Juan Dela Cruz",
        "customerEmail": "juan@example.ph",
        "customerPhone": "+639171234567",
        "bookingId": "BK-1001",
        "successUrl": "https://opstower.test/payments/success",
        "failureUrl": "https://opstower.test/payments/failure",
    }
    body.update(overrides)
    return body
