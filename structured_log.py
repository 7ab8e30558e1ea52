"""Structured JSON log events shared by the tutoring engines."""

from __future__ import annotations

import json
import logging
from typing import Any, Dict, Optional

_LOGGER = logging.getLogger("tutor.events")


def log_json(event: str, payload: Dict[str, Any], *, logger: Optional[logging.Logger] = None) -> None:
    """Emit ``payload`` as a single JSON line tagged with ``event``."""

    record = {"event": event, **payload}
    try:
        message = json.dumps(record, ensure_ascii=False, sort_keys=True, default=str)
    except (TypeError, ValueError):
        fallback = {
            "event": event,
            "error": "serialization_failed",
            "payload_repr": repr(payload),
        }
        message = json.dumps(fallback, ensure_ascii=False, sort_keys=True)
    (logger or _LOGGER).info(message)


__all__ = ["log_json"]
