"""Request-scoped access to the services built in create_app."""

import logging

from fastapi import HTTPException, Request

from opstower_api.services.errors import (
    DuplicateReference,
    IllegalTransition,
    NotFound,
    PaymentError,
    PersistenceFailure,
    ProviderRejected,
    ProviderUnavailable,
    ValidationError,
)
from opstower_api.services.idempotency import IdempotencyService
from opstower_api.services.orchestrator import PaymentOrchestrator

logger = logging.getLogger("opstower.api")


def get_orchestrator(request: Request) -> PaymentOrchestrator:
    return request.app.state.orchestrator


def get_idempotency(request: Request) -> IdempotencyService:
    return request.app.state.idempotency


def http_error(e: PaymentError) -> HTTPException:
    """Map a payment error onto the response the client sees.

    Gateway and persistence details stay in the logs.
    """
    if isinstance(e, ValidationError):
        return HTTPException(status_code=400, detail={"message": str(e), "errors": e.errors})
    if isinstance(e, NotFound):
        return HTTPException(status_code=404, detail=str(e))
    if isinstance(e, (DuplicateReference, IllegalTransition)):
        return HTTPException(status_code=409, detail=str(e))
    if isinstance(e, ProviderRejected):
        return HTTPException(
            status_code=502,
            detail="The payment provider declined the request. Please try another payment method.",
        )
    if isinstance(e, ProviderUnavailable):
        return HTTPException(
            status_code=503,
            detail="The payment provider is temporarily unavailable. Please try again.",
        )
    if isinstance(e, PersistenceFailure):
        return HTTPException(
            status_code=500,
            detail="The payment could not be recorded. Please contact support before retrying.",
        )
    logger.error(f"Unmapped payment error: {e}")
    return HTTPException(status_code=500, detail="Payment processing failed. Please try again.")
