"""Call Recording Ingest - Audit event logging with sensitive-field masking.

The ingestion orchestrator never logs through ambient state: it receives an
``AuditLogger`` callable. ``log_ingest_event`` is the production implementation.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Mapping
from typing import Any

logger = logging.getLogger("callrec.audit")

AuditLogger = Callable[[str, Mapping[str, Any]], None]

# Key fragments whose values are never written to logs
SENSITIVE_KEY_FRAGMENTS = (
    "password",
    "token",
    "authorization",
    "secret",
    "api_key",
    "access_key",
    "private_key",
    "credit_card",
    "ssn",
    "audiodata",
)

MASK = "***"


def _is_sensitive(key: str) -> bool:
    lowered = key.lower().replace("_", "")
    return any(fragment.replace("_", "") in lowered for fragment in SENSITIVE_KEY_FRAGMENTS)


def mask_sensitive_data(data: Any) -> Any:
    """Return a copy of data with sensitive values replaced by a mask.

    Walks nested mappings and lists. Non-container values are returned as-is.

    Args:
        data: Value to mask.

    Returns:
        Masked copy (inputs are never mutated).
    """
    if isinstance(data, Mapping):
        return {
            key: MASK if isinstance(key, str) and _is_sensitive(key) else mask_sensitive_data(value)
            for key, value in data.items()
        }
    if isinstance(data, list | tuple):
        return [mask_sensitive_data(item) for item in data]
    return data


def log_ingest_event(event: str, data: Mapping[str, Any]) -> None:
    """Emit a masked, structured audit record for an ingestion event.

    Args:
        event: Event name (e.g. "recording_stored").
        data: Event attributes.
    """
    masked = mask_sensitive_data(data)
    logger.info("ingest event=%s %s", event, masked, extra={"event": event, "data": masked})
