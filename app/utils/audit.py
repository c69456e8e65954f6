"""
Audit sink - write-only structured event stream.

Components receive an AuditSink in their constructor instead of reaching for a
global logger. emit() never raises: a broken sink must not break a request.
"""
import json
import logging
import re
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Protocol, Tuple

logger = logging.getLogger(__name__)

_EMAIL_MASK = re.compile(r"(.{2}).*@(.*)")


def mask_email(email: Optional[str]) -> str:
    """Keep the first two characters and the domain: ab***@example.com"""
    if not email:
        return "unknown"
    return _EMAIL_MASK.sub(r"\1***@\2", email)


def redact(value: Optional[str], keep: int = 8) -> str:
    """Redacted form of a session id or token, safe to log."""
    if not value:
        return "none"
    return value[:keep] + "..."


class AuditSink(Protocol):
    def emit(self, event: str, **fields: Any) -> None:
        ...


class LoggingAuditSink:
    """Writes one JSON document per event to the ``app.audit`` logger."""

    def __init__(self, logger_name: str = "app.audit"):
        self._logger = logging.getLogger(logger_name)

    def emit(self, event: str, **fields: Any) -> None:
        try:
            level = fields.pop("level", logging.INFO)
            payload = {
                "event": event,
                "timestamp": datetime.now(timezone.utc).isoformat(),
                **fields,
            }
            self._logger.log(level, json.dumps(payload, default=str, sort_keys=True))
        except Exception:  # pragma: no cover - sink failures are swallowed by contract
            logger.debug("Audit sink failed to record %s", event)


class RecordingAuditSink:
    """In-memory sink, used by tests and local debugging."""

    def __init__(self):
        self.events: List[Tuple[str, Dict[str, Any]]] = []

    def emit(self, event: str, **fields: Any) -> None:
        self.events.append((event, fields))

    def names(self) -> List[str]:
        return [name for name, _ in self.events]
