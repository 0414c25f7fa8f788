"""Refunds router - lookup and maker-checker approval."""

import logging

from fastapi import APIRouter, Depends, Header

from opstower_api.dependencies import get_orchestrator, http_error
from opstower_api.models.requests import RejectRefundRequest
from opstower_api.services.errors import PaymentError
from opstower_api.services.orchestrator import PaymentOrchestrator

logger = logging.getLogger("opstower.refunds")
router = APIRouter()


@router.get("/{refund_id}")
async def get_refund(
    refund_id: str,
    orchestrator: PaymentOrchestrator = Depends(get_orchestrator),
):
    try:
        refund = await orchestrator.get_refund(refund_id)
    except PaymentError as e:
        raise http_error(e)
    return refund.to_json()


@router.post("/{refund_id}/approve")
async def approve_refund(
    refund_id: str,
    x_operator_id: str = Header(..., alias="X-Operator-Id"),
    orchestrator: PaymentOrchestrator = Depends(get_orchestrator),
):
    try:
        refund = await orchestrator.approve_refund(refund_id, x_operator_id)
    except PaymentError as e:
        raise http_error(e)
    logger.info(f"Refund {refund_id} approved by {x_operator_id}")
    return refund.to_json()


@router.post("/{refund_id}/reject")
async def reject_refund(
    refund_id: str,
    req: RejectRefundRequest,
    x_operator_id: str = Header(..., alias="X-Operator-Id"),
    orchestrator: PaymentOrchestrator = Depends(get_orchestrator),
):
    try:
        refund = await orchestrator.reject_refund(refund_id, x_operator_id, req.reason)
    except PaymentError as e:
        raise http_error(e)
    logger.info(f"Refund {refund_id} rejected by {x_operator_id}")
    return refund.to_json()
