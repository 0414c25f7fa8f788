"""Expiry sweep - closes out payments whose checkout window has passed."""

import asyncio
import logging

from opstower_api.services.orchestrator import PaymentOrchestrator

logger = logging.getLogger("opstower.jobs.expiry")


class ExpirySweepJob:

    def __init__(self, orchestrator: PaymentOrchestrator):
        self.orchestrator = orchestrator

    async def run_once(self) -> list[str]:
        return await self.orchestrator.expire_stale_payments()

    async def run_loop(self, interval: int = 60):
        logger.info(f"Expiry sweep started (interval={interval}s)")
        while True:
            try:
                await self.run_once()
            except Exception as e:
                logger.error(f"Expiry sweep error: {e}")
            await asyncio.sleep(interval)
