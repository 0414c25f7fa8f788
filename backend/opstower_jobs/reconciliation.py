"""Reconciliation job - re-queries gateways for payments and refunds no webhook resolved."""

import os
import asyncio
import logging

from opstower_shared.file_store import FileStore
from opstower_shared.models import utcnow
from opstower_api.services.orchestrator import PaymentOrchestrator

logger = logging.getLogger("opstower.jobs.reconciliation")


class ReconciliationJob:

    def __init__(self, orchestrator: PaymentOrchestrator, data_dir: str):
        self.orchestrator = orchestrator
        self.recon_dir = os.path.join(data_dir, "reconciliation")

    def report_path(self, date: str) -> str:
        return os.path.join(self.recon_dir, f"reconciliation_report_{date}.json")

    async def run_once(self) -> dict:
        now = utcnow()
        date = now.strftime("%Y-%m-%d")
        result = await self.orchestrator.reconcile_open_payments()
        refunds = await self.orchestrator.settle_pending_refunds()
        result["refunds_settled"] = refunds["settled"]
        result["errors"] = result["errors"] + refunds["errors"]

        # One report per day, accumulating every run
        with FileStore.locked_json(self.report_path(date), default={
            "date": date, "runs": 0, "checked": 0, "updated": [], "refunds_settled": [], "errors": [],
        }) as report:
            report["runs"] += 1
            report["checked"] += result["checked"]
            report["updated"].extend(result["updated"])
            report.setdefault("refunds_settled", []).extend(result["refunds_settled"])
            report["errors"] = result["errors"]
            report["status"] = "clean" if not result["errors"] else "errors_found"
            report["generated_at"] = now.isoformat()

        logger.info(
            f"Reconciliation {date}: {result['checked']} checked, "
            f"{len(result['updated'])} updated, {len(result['refunds_settled'])} refunds settled, "
            f"{len(result['errors'])} errors"
        )
        return result

    async def run_loop(self, interval: int = 300):
        logger.info(f"Reconciliation job started (interval={interval}s)")
        while True:
            try:
                await self.run_once()
            except Exception as e:
                logger.error(f"Reconciliation error: {e}")
            await asyncio.sleep(interval)
