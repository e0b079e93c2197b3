"""
Provisioning service: the operations exposed to the HTTP API and the CLI.

Wires TenantRegistry, ProvisionJobStore, ApprovalGate and StepExecutor
together. Request validation happens before any transaction is opened;
a tenant and its bootstrap job are created in one transaction.
"""

import logging
from typing import Any, Optional, Union

from core.audit import log_audit_event
from core.db import DatabaseManager
from core.errors import AuthorizationError, ValidationError
from core.provisioning.approval import ApprovalGate
from core.provisioning.artifacts import artifact_dir
from core.provisioning.backends import StepBackend, build_step_backend
from core.provisioning.executor import StepExecutor
from core.provisioning.jobs import ProvisionJobStore, check_transition
from core.provisioning.lease import TenantLease
from core.provisioning.models import (
    EventLevel,
    JobAction,
    JobStatus,
    JobType,
    ProvisionJob,
    Tenant,
)
from core.provisioning.planner import (
    PlanPaths,
    PlanTarget,
    build_bootstrap_plan,
    build_decommission_plan,
    tenant_paths,
)
from core.provisioning.policy import ExecutionPolicy
from core.provisioning.schemas import (
    BootstrapJobRequest,
    DecommissionJobRequest,
    TenantBootstrapRequest,
    TenantDecommissionRequest,
    TransitionRequest,
    parse_request,
)
from core.provisioning.tenants import TenantRegistry

logger = logging.getLogger(__name__)

_ACTION_EVENTS = {
    JobAction.APPROVE: (EventLevel.INFO, "approval", "Approved"),
    JobAction.REJECT: (EventLevel.WARN, "approval", "Rejected"),
    JobAction.CANCEL: (EventLevel.WARN, "cancel", "Cancelled"),
}


def _require_actor(actor: Optional[str]) -> str:
    actor = (actor or "").strip()
    if not actor:
        raise AuthorizationError("An authenticated actor is required")
    return actor


class ProvisioningService:
    """Tenant lifecycle operations for super-admins."""

    def __init__(
        self,
        settings=None,
        dm: Optional[DatabaseManager] = None,
        policy: Optional[ExecutionPolicy] = None,
        backend: Optional[StepBackend] = None,
    ):
        if settings is None:
            from config.settings import get_settings
            settings = get_settings()
        self.settings = settings
        self._dm = dm or DatabaseManager.get_instance()

        self.tenants = TenantRegistry(self._dm)
        self.jobs = ProvisionJobStore(self._dm)
        self.gate = ApprovalGate()
        self.policy = policy or ExecutionPolicy.from_settings(settings)
        self.lease = TenantLease(self._dm, ttl_seconds=settings.provisioning.lease_ttl_seconds)
        self.executor = StepExecutor(
            store=self.jobs,
            tenants=self.tenants,
            gate=self.gate,
            backend=backend or build_step_backend(self.policy, settings),
            policy=self.policy,
            lease=self.lease,
            dm=self._dm,
            artifact_root=settings.provisioning.artifact_root,
            runner_host=settings.provisioning.effective_runner_host,
        )

    # =========================================================================
    # Tenants
    # =========================================================================

    def create_tenant_and_bootstrap_job(
        self,
        request: Union[TenantBootstrapRequest, dict[str, Any]],
        actor: str,
    ) -> dict:
        """
        Validate, then insert the tenant and its queued bootstrap job atomically.

        Returns:
            {"tenant": Tenant, "job": ProvisionJob}
        """
        actor = _require_actor(actor)
        req = parse_request(TenantBootstrapRequest, request)
        prov = self.settings.provisioning

        template_config_path = (prov.template_config_path or "").strip()
        if not template_config_path:
            raise ValidationError(
                "Missing OpenClaw template config. Set PROVISION_TEMPLATE_CONFIG_PATH "
                "to an openclaw.json to seed new tenants."
            )

        owner_gateway = req.owner_gateway or prov.default_owner_gateway or "primary"
        openclaw_home, workspace_root = tenant_paths(
            prov.tenant_home_root, req.linux_user, prov.workspace_dirname,
        )

        target = PlanTarget(
            slug=req.slug,
            linux_user=req.linux_user,
            openclaw_home=openclaw_home,
            workspace_root=workspace_root,
            gateway_port=req.gateway_port,
            dashboard_port=req.dashboard_port,
        )
        plan = build_bootstrap_plan(target, PlanPaths(
            template_config_path=template_config_path,
            unit_template_path=prov.unit_template_path,
            artifact_dir=str(artifact_dir(prov.artifact_root, req.slug)),
            tenant_home_root=prov.tenant_home_root,
        ))
        snapshot = BootstrapJobRequest(
            slug=req.slug,
            display_name=req.display_name,
            linux_user=req.linux_user,
            gateway_port=req.gateway_port,
            dashboard_port=req.dashboard_port,
            plan_tier=req.plan_tier,
            dry_run=req.dry_run,
            config=req.config,
            owner_gateway=owner_gateway,
        )
        mode = "dry-run" if req.dry_run else "execute"

        with self._dm.connect() as conn:
            tenant_id = self.tenants.insert(
                conn,
                slug=req.slug,
                display_name=req.display_name,
                linux_user=req.linux_user,
                plan_tier=req.plan_tier,
                openclaw_home=openclaw_home,
                workspace_root=workspace_root,
                gateway_port=req.gateway_port,
                dashboard_port=req.dashboard_port,
                owner_gateway=owner_gateway,
                config=req.config,
                created_by=actor,
            )
            job_id = self.jobs.insert_job(
                conn,
                tenant_id=tenant_id,
                job_type=JobType.BOOTSTRAP,
                dry_run=req.dry_run,
                requested_by=actor,
                request=snapshot,
                plan=plan,
            )
            self.jobs.append_event(
                job_id, EventLevel.INFO, "queued",
                f"Provisioning request queued ({mode})",
                {"actor": actor},
                conn=conn,
            )

        log_audit_event(
            "provision_job_queued",
            actor=actor,
            target_type="provision_job",
            target_id=job_id,
            detail={
                "tenant_id": tenant_id,
                "job_type": JobType.BOOTSTRAP.value,
                "dry_run": req.dry_run,
                "slug": req.slug,
                "linux_user": req.linux_user,
                "owner_gateway": owner_gateway,
            },
        )
        return {
            "tenant": self.tenants.require(tenant_id),
            "job": self.jobs.require_job(job_id),
        }

    def list_tenants(self) -> list[Tenant]:
        return self.tenants.list_tenants()

    def create_tenant_decommission_job(
        self,
        tenant_id: int,
        request: Union[TenantDecommissionRequest, dict[str, Any], None],
        actor: str,
    ) -> dict:
        """Queue a decommission job for an existing tenant."""
        actor = _require_actor(actor)
        try:
            tenant_id = int(tenant_id)
        except (TypeError, ValueError):
            raise ValidationError("Invalid tenant id") from None
        if tenant_id <= 0:
            raise ValidationError("Invalid tenant id")
        req = parse_request(TenantDecommissionRequest, request)

        tenant = self.tenants.require(tenant_id)
        plan = build_decommission_plan(
            PlanTarget(
                slug=tenant.slug,
                linux_user=tenant.linux_user,
                openclaw_home=tenant.openclaw_home,
                workspace_root=tenant.workspace_root,
            ),
            remove_linux_user=req.remove_linux_user,
            remove_state_dirs=req.remove_state_dirs,
        )
        snapshot = DecommissionJobRequest(
            tenant_id=tenant.id,
            slug=tenant.slug,
            linux_user=tenant.linux_user,
            dry_run=req.dry_run,
            remove_linux_user=req.remove_linux_user,
            remove_state_dirs=req.remove_state_dirs,
            reason=req.reason,
        )
        mode = "dry-run" if req.dry_run else "execute"

        with self._dm.connect() as conn:
            job_id = self.jobs.insert_job(
                conn,
                tenant_id=tenant.id,
                job_type=JobType.DECOMMISSION,
                dry_run=req.dry_run,
                requested_by=actor,
                request=snapshot,
                plan=plan,
            )
            self.jobs.append_event(
                job_id, EventLevel.WARN, "queued",
                f"Decommission request queued ({mode})",
                {
                    "actor": actor,
                    "reason": req.reason,
                    "remove_linux_user": req.remove_linux_user,
                    "remove_state_dirs": req.remove_state_dirs,
                },
                conn=conn,
            )

        log_audit_event(
            "provision_job_queued",
            actor=actor,
            target_type="provision_job",
            target_id=job_id,
            detail={
                "tenant_id": tenant.id,
                "job_type": JobType.DECOMMISSION.value,
                "dry_run": req.dry_run,
                "remove_linux_user": req.remove_linux_user,
                "remove_state_dirs": req.remove_state_dirs,
                "reason": req.reason,
            },
        )
        return {"tenant": tenant, "job": self.jobs.require_job(job_id)}

    # =========================================================================
    # Jobs
    # =========================================================================

    def list_provision_jobs(
        self,
        tenant_id: Optional[int] = None,
        status: Optional[Union[JobStatus, str]] = None,
        limit: int = 100,
    ) -> list[ProvisionJob]:
        if status:
            try:
                status = JobStatus(str(status).strip().lower())
            except ValueError:
                raise ValidationError(f"Unknown job status: {status}") from None
        if tenant_id is not None:
            try:
                tenant_id = int(tenant_id)
            except (TypeError, ValueError):
                raise ValidationError("Invalid tenant id") from None
        return self.jobs.list_jobs(tenant_id=tenant_id, status=status, limit=limit)

    def get_provision_job(self, job_id: int) -> ProvisionJob:
        """Job with its events ordered by (created_at, id)."""
        return self.jobs.require_job(int(job_id))

    def transition_provision_job_status(
        self,
        job_id: int,
        actor: str,
        action: Union[JobAction, str],
        reason: Optional[str] = None,
    ) -> ProvisionJob:
        """approve / reject / cancel with source-state validation."""
        actor = _require_actor(actor)
        req = parse_request(TransitionRequest, {"action": getattr(action, "value", action), "reason": reason})
        action = JobAction(req.action)
        reason = (req.reason or "").strip() or None

        job = self.jobs.require_job(int(job_id), include_events=False)
        check_transition(job, action)

        if action == JobAction.APPROVE:
            try:
                self.gate.check_approval(job, actor)
            except AuthorizationError as e:
                self.jobs.append_event(job.id, EventLevel.WARN, "approval", str(e), {"actor": actor})
                raise

        level, step_key, verb = _ACTION_EVENTS[action]
        with self._dm.connect() as conn:
            target = self.jobs.apply_transition(conn, job, action, actor)
            self.jobs.append_event(
                job.id, level, step_key,
                f"{verb} by {actor}{f': {reason}' if reason else ''}",
                {"actor": actor, "reason": reason},
                conn=conn,
            )

        log_audit_event(
            f"provision_job_{target.value}",
            actor=actor,
            target_type="provision_job",
            target_id=job.id,
            detail={"tenant_id": job.tenant_id, "reason": reason, "from_status": job.status.value},
        )
        return self.jobs.require_job(job.id)

    async def execute_provision_job(self, job_id: int, actor: str) -> ProvisionJob:
        actor = _require_actor(actor)
        return await self.executor.execute(int(job_id), actor)


# =============================================================================
# Global Instance
# =============================================================================

_service: Optional[ProvisioningService] = None


def get_provisioning_service() -> ProvisioningService:
    """Get the global provisioning service instance."""
    global _service
    if _service is None:
        _service = ProvisioningService()
    return _service


def reset_provisioning_service() -> None:
    """Drop the global instance. For testing only."""
    global _service
    _service = None
