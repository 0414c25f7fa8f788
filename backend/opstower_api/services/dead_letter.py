"""Dead-letter queue for webhook deliveries that failed mid-processing,
and the alert queue for charges the gateway holds but the store does not."""

import os
import base64
import logging
import uuid
from typing import Optional

from opstower_shared.file_store import FileStore
from opstower_shared.models import Provider, utcnow

logger = logging.getLogger("opstower.dead_letter")

MAX_ATTEMPTS = 5


class DeadLetterQueue:

    def __init__(self, data_dir: str, max_attempts: int = MAX_ATTEMPTS):
        self.path = os.path.join(data_dir, "dead_letter", "webhooks.json")
        self.alerts_path = os.path.join(data_dir, "alerts", "orphaned_charges.jsonl")
        self.max_attempts = max_attempts

    def push(
        self,
        provider: Provider,
        headers: dict,
        raw_body: bytes,
        reason: str,
    ) -> str:
        entry_id = f"dlq_{uuid.uuid4().hex[:12]}"
        now = utcnow().isoformat()
        with FileStore.locked_json(self.path, default={}) as entries:
            entries[entry_id] = {
                "entry_id": entry_id,
                "provider": Provider(provider).value,
                "headers": headers,
                "raw_body": base64.b64encode(raw_body).decode(),
                "reason": reason,
                "status": "pending",
                "attempts": 0,
                "created_at": now,
                "updated_at": now,
            }
        logger.warning(f"Dead-lettered {provider} webhook as {entry_id}: {reason}")
        return entry_id

    def pending(self) -> list[dict]:
        entries = FileStore.read_json(self.path, default={})
        return sorted(
            (e for e in entries.values() if e["status"] == "pending"),
            key=lambda e: e["created_at"],
        )

    def get(self, entry_id: str) -> Optional[dict]:
        return FileStore.read_json(self.path, default={}).get(entry_id)

    @staticmethod
    def raw_body(entry: dict) -> bytes:
        return base64.b64decode(entry["raw_body"])

    def mark_replayed(self, entry_id: str) -> None:
        with FileStore.locked_json(self.path, default={}) as entries:
            entry = entries[entry_id]
            entry["attempts"] += 1
            entry["status"] = "replayed"
            entry["updated_at"] = utcnow().isoformat()
        logger.info(f"Replayed dead-lettered webhook {entry_id}")

    def mark_failed(self, entry_id: str, reason: str) -> str:
        with FileStore.locked_json(self.path, default={}) as entries:
            entry = entries[entry_id]
            entry["attempts"] += 1
            entry["reason"] = reason
            entry["updated_at"] = utcnow().isoformat()
            if entry["attempts"] >= self.max_attempts:
                entry["status"] = "parked"
            status = entry["status"]
        if status == "parked":
            logger.error(f"Parked dead-lettered webhook {entry_id} after {self.max_attempts} attempts")
        return status

    # === Orphaned charges ===

    def record_orphaned_charge(
        self,
        transaction_id: str,
        provider: Provider,
        provider_transaction_id: str,
        amount: str,
        detail: str,
    ) -> None:
        FileStore.append_jsonl(self.alerts_path, {
            "transaction_id": transaction_id,
            "provider": Provider(provider).value,
            "provider_transaction_id": provider_transaction_id,
            "amount": amount,
            "detail": detail,
            "created_at": utcnow().isoformat(),
        })

    def orphaned_charges(self) -> list[dict]:
        return FileStore.read_jsonl(self.alerts_path)
