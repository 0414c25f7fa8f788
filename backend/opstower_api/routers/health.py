"""Health and provider status endpoints."""

from fastapi import APIRouter, Depends

from opstower_api.dependencies import get_orchestrator
from opstower_api.services.orchestrator import PaymentOrchestrator

router = APIRouter()


@router.get("/health")
async def health():
    return {"status": "healthy", "service": "opstower-payments"}


@router.get("/payments/providers/health")
async def provider_health(orchestrator: PaymentOrchestrator = Depends(get_orchestrator)):
    return {"providers": orchestrator.provider_health()}
