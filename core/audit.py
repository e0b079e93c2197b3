"""
Audit trail for provisioning lifecycle actions.

Every state change a super-admin makes (queue, approve, reject, cancel,
completion, failure) is recorded here with the acting identity. Events are
redacted, kept in a bounded in-memory ring for inspection and forwarded to
an optional sink (a SIEM forwarder, a DB writer, ...).

Usage:
    from core.audit import log_audit_event, get_audit_log

    log_audit_event(
        "provision_job_approved",
        actor="alice",
        target_type="provision_job",
        target_id=42,
        detail={"tenant_id": 7, "reason": "change window"},
    )

    # Pluggable sink
    from core.audit import audit_logger
    audit_logger.set_sink(my_callable)
"""

import json
import logging
import os
import re
import threading
from collections import deque
from typing import Any, Callable, Optional

from core.timestamps import isonow

logger = logging.getLogger(__name__)

MAX_EVENTS = 500

# =============================================================================
# Log Redaction (OWASP A02:2021 - Cryptographic Failures / Sensitive Data)
# =============================================================================

# Feature flag (default: enabled)
ENABLE_LOG_REDACTION = os.getenv("ENABLE_LOG_REDACTION", "true").lower() == "true"
MAX_REDACTION_LENGTH = 10240  # Skip redaction on strings > 10KB (performance)

# Pre-compiled patterns (order matters - more specific first)
REDACTION_PATTERNS = [
    # Explicit key=value patterns
    (re.compile(r'\b(password|passwd|pwd)\s*[=:]\s*\S+', re.IGNORECASE), r'\1=***REDACTED***'),
    (re.compile(r'\b(secret|api[_-]?key|auth[_-]?token|token)\s*[=:]\s*\S+', re.IGNORECASE), r'\1=***REDACTED***'),
    (re.compile(r'\b(private[_-]?key|access[_-]?key)\s*[=:]\s*\S+', re.IGNORECASE), r'\1=***REDACTED***'),

    # Bearer tokens
    (re.compile(r'(Bearer\s+)[A-Za-z0-9\-_\.]{20,}', re.IGNORECASE), r'\1***REDACTED***'),

    # JSON-style "key": "value"
    (re.compile(r'(["\'](?:password|secret|token|key)["\'])\s*:\s*["\'][^"\']+["\']', re.IGNORECASE), r'\1: "***REDACTED***"'),
]


def redact_sensitive(text: Optional[str]) -> Optional[str]:
    """
    Remove sensitive data from log text.

    Returns original text if:
    - ENABLE_LOG_REDACTION is false
    - Text is None or empty
    - Text exceeds MAX_REDACTION_LENGTH (performance guard)
    """
    if not ENABLE_LOG_REDACTION or not text:
        return text
    if len(text) > MAX_REDACTION_LENGTH:
        return text

    result = text
    for pattern, replacement in REDACTION_PATTERNS:
        result = pattern.sub(replacement, result)
    return result


def _redact_value(value: Any) -> Any:
    if isinstance(value, str):
        return redact_sensitive(value)
    if isinstance(value, dict):
        return {
            k: "***REDACTED***" if re.search(r"password|secret|token", str(k), re.IGNORECASE) else _redact_value(v)
            for k, v in value.items()
        }
    if isinstance(value, (list, tuple)):
        return [_redact_value(v) for v in value]
    return value


AuditSink = Callable[[dict], Any]


class AuditLogger:
    """
    Thread-safe audit logger with a pluggable sink.

    Sink failures are logged and never interrupt the provisioning flow:
    the DB state is the source of truth, the audit stream is a copy.
    """

    def __init__(self, max_events: int = MAX_EVENTS):
        self._max_events = max_events
        self._events: deque = deque(maxlen=max_events)
        self._sink: Optional[AuditSink] = None
        self._lock = threading.Lock()

    def log(
        self,
        action: str,
        actor: Optional[str],
        target_type: str,
        target_id: Any,
        detail: Optional[dict] = None,
    ) -> dict:
        """
        Record an audit event.

        Args:
            action: e.g. "provision_job_approved"
            actor: Identity that performed the action
            target_type: "provision_job" or "tenant"
            target_id: Primary key of the target
            detail: Extra context (tenant_id, reason, ...), redacted before storage

        Returns:
            The event dict that was recorded
        """
        event = {
            "timestamp": isonow(),
            "action": action,
            "actor": actor,
            "target_type": target_type,
            "target_id": target_id,
            "detail": _redact_value(detail or {}),
        }
        with self._lock:
            self._events.append(event)

        logger.info(
            f"audit {action} {target_type}={target_id} by {actor}",
            extra={"actor": actor, "audit": json.dumps(event["detail"], default=str)},
        )

        if self._sink is not None:
            try:
                self._sink(event)
            except Exception:
                logger.exception(f"Audit sink failed for {action}")

        return event

    def get_events(self, limit: int = 50, action: Optional[str] = None) -> list[dict]:
        """Most recent events first, optionally filtered by action."""
        with self._lock:
            events = list(self._events)
        if action:
            events = [e for e in events if e["action"] == action]
        return list(reversed(events[-limit:]))

    def clear(self) -> None:
        with self._lock:
            self._events.clear()

    def set_sink(self, sink: Optional[AuditSink]) -> None:
        """Install (or remove with None) the forwarder called for every event."""
        self._sink = sink


# Global singleton instance
audit_logger = AuditLogger()


def log_audit_event(
    action: str,
    actor: Optional[str],
    target_type: str,
    target_id: Any,
    detail: Optional[dict] = None,
) -> dict:
    """Record an audit event on the global audit logger."""
    return audit_logger.log(action, actor, target_type, target_id, detail)


def get_audit_log(limit: int = 50, action: Optional[str] = None) -> list[dict]:
    """Get audit events, most recent first."""
    return audit_logger.get_events(limit, action)


def clear_audit_log() -> None:
    audit_logger.clear()
