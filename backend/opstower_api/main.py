"""OpsTower Payments API - application entry point."""

import logging
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from opstower_shared.middleware import RequestIdMiddleware, RequestMetricsMiddleware
from opstower_api.config import Settings
from opstower_api.routers import health, payments, refunds, webhooks
from opstower_api.services.idempotency import IdempotencyService
from opstower_api.services.orchestrator import PaymentOrchestrator, build_orchestrator

logging.basicConfig(format="%(asctime)s %(name)s %(levelname)s %(message)s")


async def request_validation_handler(request: Request, exc: RequestValidationError):
    errors = [
        f"{'.'.join(str(p) for p in err['loc'] if p != 'body')}: {err['msg']}"
        for err in exc.errors()
    ]
    return JSONResponse(
        status_code=400,
        content={"detail": {"message": "Invalid request", "errors": errors}},
    )


def create_app(
    settings: Optional[Settings] = None,
    orchestrator: Optional[PaymentOrchestrator] = None,
) -> FastAPI:
    settings = settings or Settings.from_env()
    logging.getLogger("opstower").setLevel(settings.log_level.upper())

    app = FastAPI(
        title="OpsTower Payments",
        version="1.0.0",
        description="Payment orchestration and webhook reconciliation for the ops tower",
    )
    app.state.settings = settings
    app.state.orchestrator = orchestrator or build_orchestrator(settings)
    app.state.idempotency = IdempotencyService(settings.data_dir)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["*"],
        allow_headers=["*"],
    )
    # Outermost last: request ids must be set before metrics are recorded
    app.add_middleware(RequestMetricsMiddleware, data_dir=settings.data_dir)
    app.add_middleware(RequestIdMiddleware)

    app.add_exception_handler(RequestValidationError, request_validation_handler)

    app.include_router(payments.router, prefix="/payments", tags=["Payments"])
    app.include_router(refunds.router, prefix="/payments/refunds", tags=["Refunds"])
    app.include_router(webhooks.router, prefix="/payments", tags=["Webhooks"])
    app.include_router(health.router, tags=["Health"])

    logging.getLogger("opstower").info(
        f"OpsTower Payments ready (data_dir={settings.data_dir}, "
        f"priority={[p.value for p in settings.provider_priority]})"
    )
    return app


app = create_app()
