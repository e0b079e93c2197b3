"""
Super-admin Tenant Provisioning API Routes.

Create tenants, queue bootstrap / decommission jobs, approve / reject /
cancel them under the two-person rule, and run approved jobs.
"""

import logging
from functools import wraps

from flask import Blueprint, jsonify, request

from core.async_utils import run_sync
from core.errors import safe_error_response
from dashboard.auth import actor_required, get_current_user

logger = logging.getLogger(__name__)

tenants_bp = Blueprint('tenants', __name__, url_prefix='/api/super')


def feature_flag_required(flag_name: str):
    """Decorator to check if a feature flag is enabled."""
    def decorator(f):
        @wraps(f)
        def wrapped(*args, **kwargs):
            from core.feature_flags import is_enabled
            if not is_enabled(flag_name):
                return jsonify({
                    "error": f"Feature '{flag_name}' is not enabled",
                    "message": "Contact your administrator to enable tenant provisioning"
                }), 403
            return f(*args, **kwargs)
        return wrapped
    return decorator


def _service():
    from core.provisioning import get_provisioning_service
    return get_provisioning_service()


# =============================================================================
# Tenants
# =============================================================================

@tenants_bp.route('/tenants', methods=['GET'])
@feature_flag_required('tenant_provisioning')
@actor_required
def list_tenants():
    """List tenants with their most recent provision job."""
    try:
        tenants = _service().list_tenants()
        return jsonify({
            "tenants": [t.to_dict() for t in tenants],
            "count": len(tenants),
        })
    except Exception as e:
        return safe_error_response(e, "list tenants")


@tenants_bp.route('/tenants', methods=['POST'])
@feature_flag_required('tenant_provisioning')
@actor_required
def create_tenant():
    """Create a tenant and queue its bootstrap job (dry-run by default)."""
    try:
        created = _service().create_tenant_and_bootstrap_job(
            request.get_json(silent=True),
            actor=get_current_user(),
        )
        return jsonify({
            "tenant": created["tenant"].to_dict(),
            "job": created["job"].to_dict(include_events=True),
        }), 201
    except Exception as e:
        return safe_error_response(e, "create tenant")


@tenants_bp.route('/tenants/<int:tenant_id>/decommission', methods=['POST'])
@feature_flag_required('tenant_provisioning')
@actor_required
def decommission_tenant(tenant_id):
    """Queue a decommission job for a tenant."""
    try:
        created = _service().create_tenant_decommission_job(
            tenant_id,
            request.get_json(silent=True) or {},
            actor=get_current_user(),
        )
        return jsonify({
            "tenant": created["tenant"].to_dict(),
            "job": created["job"].to_dict(include_events=True),
        }), 201
    except Exception as e:
        return safe_error_response(e, f"decommission tenant {tenant_id}")


# =============================================================================
# Provision Jobs
# =============================================================================

@tenants_bp.route('/provision-jobs', methods=['GET'])
@feature_flag_required('tenant_provisioning')
@actor_required
def list_provision_jobs():
    """List provision jobs, newest first (limit clamped to 1..500)."""
    try:
        jobs = _service().list_provision_jobs(
            tenant_id=request.args.get('tenant_id', type=int),
            status=request.args.get('status') or None,
            limit=request.args.get('limit', 100),
        )
        return jsonify({
            "jobs": [j.to_dict() for j in jobs],
            "count": len(jobs),
        })
    except Exception as e:
        return safe_error_response(e, "list provision jobs")


@tenants_bp.route('/provision-jobs/<int:job_id>', methods=['GET'])
@feature_flag_required('tenant_provisioning')
@actor_required
def get_provision_job(job_id):
    """Get a provision job with its ordered events."""
    try:
        job = _service().get_provision_job(job_id)
        return jsonify({"job": job.to_dict(include_events=True)})
    except Exception as e:
        return safe_error_response(e, f"get provision job {job_id}")


@tenants_bp.route('/provision-jobs/<int:job_id>', methods=['POST'])
@feature_flag_required('tenant_provisioning')
@actor_required
def transition_provision_job(job_id):
    """Approve, reject or cancel a provision job.

    Body: {"action": "approve" | "reject" | "cancel", "reason": "..."}
    """
    try:
        data = request.get_json(silent=True) or {}
        job = _service().transition_provision_job_status(
            job_id,
            actor=get_current_user(),
            action=data.get('action'),
            reason=data.get('reason'),
        )
        return jsonify({"job": job.to_dict(include_events=True)})
    except Exception as e:
        return safe_error_response(e, f"update provision job {job_id}")


@tenants_bp.route('/provision-jobs/<int:job_id>/run', methods=['POST'])
@feature_flag_required('tenant_provisioning')
@actor_required
def run_provision_job(job_id):
    """Execute an approved provision job and return its final state."""
    try:
        job = run_sync(_service().execute_provision_job(job_id, actor=get_current_user()))
        return jsonify({"job": job.to_dict(include_events=True)})
    except Exception as e:
        return safe_error_response(e, f"run provision job {job_id}")
