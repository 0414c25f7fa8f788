"""Request id propagation for logs and the audit trail."""

import uuid
from contextvars import ContextVar

request_id_var: ContextVar[str] = ContextVar("request_id", default="")


def generate_request_id() -> str:
    return f"req_{uuid.uuid4().hex[:16]}"


def get_request_id() -> str:
    rid = request_id_var.get()
    if not rid:
        rid = generate_request_id()
        request_id_var.set(rid)
    return rid


def set_request_id(rid: str) -> None:
    request_id_var.set(rid)
