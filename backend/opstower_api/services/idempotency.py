"""Idempotency keys - replay the first response for a repeated client request."""

import os
import hashlib
import json
from datetime import datetime, timedelta
from typing import Optional

from opstower_shared.file_store import FileStore
from opstower_shared.models import utcnow

TTL_HOURS = 24


class IdempotencyConflictError(Exception):
    pass


class CachedResponse:
    def __init__(self, response: dict, status_code: int):
        self.response = response
        self.status_code = status_code


class IdempotencyService:

    def __init__(self, data_dir: str, ttl_hours: int = TTL_HOURS):
        self.keys_path = os.path.join(data_dir, "idempotency", "idempotency_keys.json")
        self.ttl = timedelta(hours=ttl_hours)

    @staticmethod
    def compute_hash(scope: str, body: dict) -> str:
        serialized = json.dumps({"scope": scope, "body": body}, sort_keys=True, default=str)
        return hashlib.sha256(serialized.encode()).hexdigest()

    def check(self, key: str, request_hash: str) -> Optional[CachedResponse]:
        keys = FileStore.read_json(self.keys_path, default={})
        stored = keys.get(key)
        if stored is None:
            return None

        created = datetime.fromisoformat(stored["created_at"])
        if utcnow() - created > self.ttl:
            # Expired, allow reuse
            return None

        if stored["request_hash"] != request_hash:
            raise IdempotencyConflictError(
                f"Idempotency key '{key}' already used with a different request"
            )

        return CachedResponse(
            response=stored["response"],
            status_code=stored["status_code"],
        )

    def store(self, key: str, request_hash: str, response: dict, status_code: int) -> None:
        now = utcnow()
        with FileStore.locked_json(self.keys_path, default={}) as keys:
            for stale in [k for k, v in keys.items()
                          if now - datetime.fromisoformat(v["created_at"]) > self.ttl]:
                del keys[stale]
            keys[key] = {
                "request_hash": request_hash,
                "response": response,
                "status_code": status_code,
                "created_at": now.isoformat(),
            }
