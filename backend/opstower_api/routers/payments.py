"""Payments router - initiation, status, refunds and available methods."""

import logging
from decimal import Decimal
from typing import Optional

from fastapi import APIRouter, Depends, Header, HTTPException, Query
from fastapi.responses import JSONResponse

from opstower_api.dependencies import get_idempotency, get_orchestrator, http_error
from opstower_api.models.requests import UnifiedPaymentRequest, UnifiedRefundRequest
from opstower_api.services.errors import PaymentError
from opstower_api.services.idempotency import IdempotencyConflictError, IdempotencyService
from opstower_api.services.orchestrator import PaymentOrchestrator

logger = logging.getLogger("opstower.payments")
router = APIRouter()


def _replay(
    idempotency: IdempotencyService,
    key: Optional[str],
    scope: str,
    body: dict,
) -> tuple[Optional[str], Optional[JSONResponse]]:
    if not key:
        return None, None
    request_hash = idempotency.compute_hash(scope, body)
    try:
        cached = idempotency.check(key, request_hash)
    except IdempotencyConflictError as e:
        raise HTTPException(status_code=422, detail=str(e))
    if cached:
        logger.info(f"Replaying {scope} response for idempotency key {key}")
        return request_hash, JSONResponse(cached.response, status_code=cached.status_code)
    return request_hash, None


@router.post("/initiate", status_code=201)
async def initiate_payment(
    req: UnifiedPaymentRequest,
    idempotency_key: Optional[str] = Header(None, alias="Idempotency-Key"),
    orchestrator: PaymentOrchestrator = Depends(get_orchestrator),
    idempotency: IdempotencyService = Depends(get_idempotency),
):
    request_hash, cached = _replay(
        idempotency, idempotency_key, "initiate", req.model_dump(mode="json")
    )
    if cached:
        return cached

    try:
        response = await orchestrator.initiate_payment(req)
    except PaymentError as e:
        raise http_error(e)

    body = response.to_json()
    if idempotency_key:
        idempotency.store(idempotency_key, request_hash, body, 201)
    return JSONResponse(body, status_code=201)


@router.get("/status/{transaction_id}")
async def get_payment_status(
    transaction_id: str,
    sync: bool = Query(False),
    orchestrator: PaymentOrchestrator = Depends(get_orchestrator),
):
    try:
        status = await orchestrator.get_payment_status(transaction_id, sync=sync)
    except PaymentError as e:
        raise http_error(e)
    return status.to_json()


@router.post("/refund", status_code=201)
async def request_refund(
    req: UnifiedRefundRequest,
    idempotency_key: Optional[str] = Header(None, alias="Idempotency-Key"),
    orchestrator: PaymentOrchestrator = Depends(get_orchestrator),
    idempotency: IdempotencyService = Depends(get_idempotency),
):
    request_hash, cached = _replay(
        idempotency, idempotency_key, "refund", req.model_dump(mode="json")
    )
    if cached:
        return cached

    try:
        refund = await orchestrator.process_refund(req)
    except PaymentError as e:
        raise http_error(e)

    body = refund.to_json()
    if idempotency_key:
        idempotency.store(idempotency_key, request_hash, body, 201)
    return JSONResponse(body, status_code=201)


@router.get("/methods/available")
async def available_methods(
    amount: Optional[Decimal] = Query(None, gt=0),
    orchestrator: PaymentOrchestrator = Depends(get_orchestrator),
):
    methods = orchestrator.get_available_payment_methods(amount)
    return {"methods": [m.to_json() for m in methods]}
