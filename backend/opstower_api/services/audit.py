"""Audit trail - append-only record of webhooks, transitions, and failures."""

import os
import logging
from typing import Optional

from opstower_shared.file_store import FileStore
from opstower_shared.models import AuditEvent
from opstower_shared.request_context import get_request_id

logger = logging.getLogger("opstower.audit")

_LEVELS = {
    "info": logging.INFO,
    "warning": logging.WARNING,
    "error": logging.ERROR,
    "critical": logging.CRITICAL,
}


class AuditLog:

    def __init__(self, data_dir: str):
        self.events_path = os.path.join(data_dir, "audit", "events.jsonl")

    def log_event(
        self,
        event_type: str,
        ref: str,
        provider: Optional[str] = None,
        severity: str = "info",
        **details,
    ) -> AuditEvent:
        event = AuditEvent(
            type=event_type,
            ref=ref,
            provider=provider,
            severity=severity,
            request_id=get_request_id(),
            details=details,
        )
        logger.log(_LEVELS.get(severity, logging.INFO), f"{event_type} {ref}")
        FileStore.append_jsonl(self.events_path, event.model_dump(mode="json"))
        return event

    def get_events_for_ref(self, ref: str) -> list[dict]:
        entries = FileStore.read_jsonl(self.events_path)
        return [e for e in entries if e.get("ref") == ref]
