"""
Health check endpoints for the provisioning API.

Provides Kubernetes-compatible liveness and readiness probes.
"""

import os
import logging
from datetime import datetime, timezone
from flask import Blueprint, jsonify

logger = logging.getLogger(__name__)

# Create blueprint
health_bp = Blueprint('health', __name__)


# =============================================================================
# Health Check Helper Functions
# =============================================================================

def check_database_health() -> tuple[bool, str]:
    """Check control-plane database connectivity."""
    try:
        from core.db import DatabaseManager
        with DatabaseManager.get_instance().connect() as conn:
            conn.execute("SELECT 1").fetchone()
        return True, "connected"
    except Exception as e:
        logger.warning(f"Database health check failed: {e}")
        return False, "connection failed"


def check_provisioner_health() -> tuple[bool, str]:
    """Report whether the privileged daemon socket is present (daemon mode only)."""
    from config.settings import get_settings
    prov = get_settings().provisioning
    if prov.mode != "daemon":
        return True, f"mode={prov.mode}"
    if os.path.exists(prov.socket_path):
        return True, "socket present"
    return False, "socket missing"


# =============================================================================
# Liveness Probe
# =============================================================================

@health_bp.route('/healthz')
@health_bp.route('/health/live')
def liveness():
    """
    Liveness probe - is the process running?
    """
    return jsonify({
        "status": "ok",
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "service": "tenantops-api",
        "version": os.getenv("APP_VERSION", "0.1.0"),
    })


# =============================================================================
# Readiness Probe
# =============================================================================

@health_bp.route('/readyz')
@health_bp.route('/health/ready')
def readiness():
    """
    Readiness probe - is the service ready to accept traffic?

    The database is critical. A missing daemon socket only degrades the
    service: queueing and approvals still work, live runs do not.
    """
    checks = {}

    db_ok, db_msg = check_database_health()
    checks["database"] = {"healthy": db_ok, "message": db_msg}

    prov_ok, prov_msg = check_provisioner_health()
    checks["provisioner"] = {"healthy": prov_ok, "message": prov_msg}

    if db_ok and prov_ok:
        status, http_status = "ok", 200
    elif db_ok:
        status, http_status = "degraded", 200
    else:
        status, http_status = "unavailable", 503

    return jsonify({
        "status": status,
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "checks": checks,
    }), http_status
