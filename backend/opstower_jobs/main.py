"""OpsTower jobs - expiry sweep, reconciliation and dead-letter replay."""

import os
import asyncio
import logging

from opstower_api.config import Settings
from opstower_api.services.orchestrator import build_orchestrator
from opstower_jobs.dead_letter_replay import DeadLetterReplayJob
from opstower_jobs.expiry_sweep import ExpirySweepJob
from opstower_jobs.reconciliation import ReconciliationJob

logging.basicConfig(format="%(asctime)s %(name)s %(levelname)s %(message)s")
logger = logging.getLogger("opstower.jobs")


async def main():
    settings = Settings.from_env()
    logging.getLogger("opstower").setLevel(settings.log_level.upper())
    orchestrator = build_orchestrator(settings)
    logger.info(f"OpsTower jobs starting (data_dir={settings.data_dir})")

    await asyncio.gather(
        ExpirySweepJob(orchestrator).run_loop(interval=int(os.environ.get("EXPIRY_SWEEP_INTERVAL", 60))),
        ReconciliationJob(orchestrator, settings.data_dir).run_loop(
            interval=int(os.environ.get("RECONCILIATION_INTERVAL", 300))
        ),
        DeadLetterReplayJob(orchestrator).run_loop(
            interval=int(os.environ.get("DLQ_REPLAY_INTERVAL", 120))
        ),
    )


if __name__ == "__main__":
    asyncio.run(main())
