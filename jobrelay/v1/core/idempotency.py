"""
Idempotency key derivation for dispatched jobs.

A key identifies a real-world event, not a delivery attempt: the provider may
redeliver one job_id several times, and the same event may be enqueued twice
under different job_ids. Keys are therefore derived only from domain
identifiers (event ids, user ids, template names), never from clocks.
"""

import hashlib
from datetime import date, datetime
from typing import Any

KEY_SEPARATOR = "\x1f"


def derive_idempotency_key(namespace: str, *identifiers: Any) -> str:
    """
    Derive a deterministic idempotency key from domain identifiers.

    Args:
        namespace: Event family, usually the job type (e.g. "send-email")
        *identifiers: Values that uniquely identify the event

    Returns:
        "<namespace>:<32 hex chars>", identical for identical inputs

    Raises:
        ValueError: If no identifiers are given, one is empty, or one is a
            date/datetime (timestamps differ between retries of one event)
    """
    if not namespace:
        raise ValueError("namespace is required for idempotency keys")
    if not identifiers:
        raise ValueError("at least one identifier is required for idempotency keys")

    parts: list[str] = []
    for identifier in identifiers:
        if isinstance(identifier, (datetime, date)):
            raise ValueError(
                "idempotency keys must not be derived from timestamps"
            )
        text = str(identifier)
        if not text:
            raise ValueError("idempotency key identifiers must not be empty")
        parts.append(text)

    key_data = KEY_SEPARATOR.join([namespace, *parts])
    digest = hashlib.sha256(key_data.encode("utf-8")).hexdigest()[:32]
    return f"{namespace}:{digest}"
