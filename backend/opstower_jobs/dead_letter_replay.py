"""Dead-letter replay - re-feeds failed webhook deliveries through the orchestrator."""

import json
import asyncio
import logging

from opstower_shared.models import Provider
from opstower_api.services.gateways.base import WebhookPayload
from opstower_api.services.orchestrator import PaymentOrchestrator

logger = logging.getLogger("opstower.jobs.dead_letter")


class DeadLetterReplayJob:

    def __init__(self, orchestrator: PaymentOrchestrator):
        self.orchestrator = orchestrator
        self.queue = orchestrator.dead_letters

    async def replay(self, entry: dict) -> bool:
        raw_body = self.queue.raw_body(entry)
        payload = WebhookPayload(
            headers=entry["headers"],
            body=json.loads(raw_body),
            raw_body=raw_body,
        )
        try:
            results = await self.orchestrator.route_webhook(
                Provider(entry["provider"]), payload, raise_errors=True
            )
        except Exception as e:
            status = self.queue.mark_failed(entry["entry_id"], str(e))
            logger.warning(f"Replay of {entry['entry_id']} failed ({status}): {e}")
            return False

        self.queue.mark_replayed(entry["entry_id"])
        logger.info(
            f"Replayed {entry['entry_id']}: {[r.outcome for r in results]}"
        )
        return True

    async def run_once(self) -> int:
        replayed = 0
        for entry in self.queue.pending():
            if await self.replay(entry):
                replayed += 1
        return replayed

    async def run_loop(self, interval: int = 120):
        logger.info(f"Dead-letter replay started (interval={interval}s)")
        while True:
            try:
                await self.run_once()
            except Exception as e:
                logger.error(f"Dead-letter replay error: {e}")
            await asyncio.sleep(interval)
