"""
Core shared utilities for the tenant provisioning control plane.

This module consolidates common functionality used across:
- dashboard/ (Flask API)
- scripts/provisionctl.py (operator CLI)
- core/provisioning/ (planner, job store, executor)
"""

from .audit import (
    AuditLogger,
    audit_logger,
    log_audit_event,
    get_audit_log,
    clear_audit_log,
)

from .async_utils import run_sync

__all__ = [
    # Audit trail
    "AuditLogger",
    "audit_logger",
    "log_audit_event",
    "get_audit_log",
    "clear_audit_log",
    # Async utilities
    "run_sync",
]
