"""
Provision job execution.

Walks an approved job's frozen plan one step at a time through the injected
StepBackend, recording an event per step. The first failure aborts the rest
of the plan; nothing already applied is rolled back (an operator inspects,
re-approves and re-runs).

Flow:
    approved --(lease + conditional update)--> running --> completed | failed
"""

import logging
from typing import Optional

from core.audit import log_audit_event
from core.db import DatabaseManager
from core.errors import (
    AuthorizationError,
    CommandFailedError,
    ExecutionDisabledError,
    ExecutionError,
    StateConflictError,
    ValidationError,
)
from core.provisioning.approval import ApprovalGate
from core.provisioning.artifacts import write_gateway_env
from core.provisioning.backends import StepBackend
from core.provisioning.jobs import ProvisionJobStore
from core.provisioning.lease import TenantLease
from core.provisioning.models import (
    EventLevel,
    JobStatus,
    JobType,
    ProvisionJob,
    StepOutcome,
    Tenant,
    TenantStatus,
)
from core.provisioning.policy import ExecutionPolicy
from core.provisioning.schemas import ProvisionStep, load_job_request, load_plan
from core.provisioning.tenants import TenantRegistry

logger = logging.getLogger(__name__)

OUTPUT_LIMIT = 4000

_STARTED_STATUS = {
    JobType.BOOTSTRAP: TenantStatus.PROVISIONING,
    JobType.DECOMMISSION: TenantStatus.DECOMMISSIONING,
}
_FINISHED_STATUS = {
    JobType.BOOTSTRAP: TenantStatus.ACTIVE,
    JobType.DECOMMISSION: TenantStatus.SUSPENDED,
}


def _bound(text: Optional[str]) -> str:
    return (text or "")[:OUTPUT_LIMIT]


class StepExecutor:
    """
    Executes provision jobs.

    Usage:
        executor = StepExecutor(store, tenants, gate, backend, policy, lease)
        job = await executor.execute(job_id, actor="bob")
    """

    def __init__(
        self,
        store: ProvisionJobStore,
        tenants: TenantRegistry,
        gate: ApprovalGate,
        backend: StepBackend,
        policy: ExecutionPolicy,
        lease: TenantLease,
        dm: Optional[DatabaseManager] = None,
        artifact_root=None,
        runner_host: str = "unknown",
    ):
        self.store = store
        self.tenants = tenants
        self.gate = gate
        self.backend = backend
        self.policy = policy
        self.lease = lease
        self._dm = dm or DatabaseManager.get_instance()
        self.artifact_root = artifact_root
        self.runner_host = runner_host

    async def execute(self, job_id: int, actor: str) -> ProvisionJob:
        """
        Run an approved job to completion or first failure.

        Raises:
            StateConflictError: job not approved, or tenant leased by another job
            ValidationError: empty plan, snapshot mismatch, bad artifact inputs
            AuthorizationError: two-person rule (job left untouched)
            ExecutionDisabledError / ExecutionError: after the job is marked failed
        """
        job = self.store.require_job(job_id, include_events=False)
        log_extra = {"job_id": job.id, "tenant_id": job.tenant_id, "actor": actor}

        if job.status != JobStatus.APPROVED:
            raise StateConflictError(
                f"Job must be approved before execution. Current status: {job.status.value}"
            )

        plan = load_plan(job.plan)
        if not plan:
            raise ValidationError("Job plan is empty")

        request = load_job_request(job.request, job.job_type.value)
        if request.dry_run != job.dry_run:
            raise ValidationError("Job dry_run metadata mismatch detected")

        try:
            self.gate.check_execution(job, actor)
        except AuthorizationError as e:
            self.store.append_event(job.id, EventLevel.WARN, "gate", str(e), {"actor": actor})
            raise

        tenant = self.tenants.require(job.tenant_id)

        if job.job_type == JobType.BOOTSTRAP and job.is_live and self.policy.execution_enabled:
            write_gateway_env(
                self.artifact_root,
                request.slug,
                tenant.linux_user,
                tenant.openclaw_home,
                request.gateway_port,
            )

        # Lease, running and the start event land together or not at all
        try:
            with self._dm.connect() as conn:
                self.lease.acquire(conn, tenant.id, job.id, self.runner_host)
                # The job may have been re-run and re-approved since it was read above
                current = self.store.require_job(job.id, conn=conn, include_events=False)
                if current.status != JobStatus.APPROVED:
                    raise StateConflictError(
                        f"Job must be approved before execution. Current status: {current.status.value}"
                    )
                self.gate.check_execution(current, actor)
                self.store.mark_running(conn, job.id, self.runner_host, approved_by=current.approved_by)
                if job.is_live:
                    self.tenants.set_status(conn, tenant.id, _STARTED_STATUS[job.job_type])
                self.store.append_event(
                    job.id,
                    EventLevel.INFO,
                    "start",
                    f"Execution started by {actor}{' (dry-run)' if job.dry_run else ''}",
                    {"actor": actor, "runner_host": self.runner_host, "backend": self.backend.name},
                    conn=conn,
                )
        except AuthorizationError as e:
            self.store.append_event(job.id, EventLevel.WARN, "gate", str(e), {"actor": actor})
            raise
        logger.info(f"Executing {job.job_type.value} job {job.id} ({len(plan)} steps)", extra=log_extra)

        try:
            return await self._run_plan(job, tenant, plan, actor)
        finally:
            self.lease.release(tenant.id, job.id)

    async def _run_plan(
        self,
        job: ProvisionJob,
        tenant: Tenant,
        plan: list[ProvisionStep],
        actor: str,
    ) -> ProvisionJob:
        outcomes: list[StepOutcome] = []

        try:
            for step in plan:
                await self._run_step(job, step, outcomes)
        except Exception as e:
            self._record_failure(job, tenant, actor, e, outcomes)
            raise

        result = {
            "dry_run": job.dry_run,
            "steps_executed": len(outcomes),
            "steps": [o.to_dict() for o in outcomes],
        }
        mode = "dry-run" if job.dry_run else "execute"
        with self._dm.connect() as conn:
            self.store.mark_completed(conn, job.id, result)
            if job.is_live:
                self.tenants.set_status(conn, tenant.id, _FINISHED_STATUS[job.job_type])
            self.store.append_event(
                job.id, EventLevel.INFO, "finish",
                f"{job.job_type.value} job completed ({mode})",
                conn=conn,
            )

        log_audit_event(
            "provision_job_completed",
            actor=actor,
            target_type="provision_job",
            target_id=job.id,
            detail={
                "tenant_id": tenant.id,
                "job_type": job.job_type.value,
                "dry_run": job.dry_run,
                "steps_executed": len(outcomes),
            },
        )
        logger.info(
            f"Job {job.id} completed ({mode})",
            extra={"job_id": job.id, "tenant_id": tenant.id, "actor": actor},
        )
        return self.store.require_job(job.id)

    async def _run_step(self, job: ProvisionJob, step: ProvisionStep, outcomes: list[StepOutcome]) -> None:
        self.store.append_event(job.id, EventLevel.INFO, step.key, f"Running: {step.title}")

        if job.is_live and not self.policy.execution_enabled:
            raise ExecutionDisabledError(
                "Execution disabled. Set PROVISION_EXEC_ENABLED=true to allow non-dry-run provisioning."
            )

        if job.dry_run:
            outcomes.append(StepOutcome(key=step.key, ok=True, skipped=True))
            self.store.append_event(
                job.id, EventLevel.INFO, step.key,
                "Dry-run: command execution skipped",
                {"command": list(step.command), "requires_root": step.requires_root},
            )
            return

        try:
            result = await self.backend.run(step)
        except ExecutionError as e:
            outcomes.append(StepOutcome(key=step.key, ok=False, skipped=False, stderr=_bound(str(e))))
            self.store.append_event(
                job.id, EventLevel.ERROR, step.key, str(e),
                {"error_type": type(e).__name__},
            )
            raise

        data = {"code": result.code, "stdout": _bound(result.stdout), "stderr": _bound(result.stderr)}
        outcomes.append(StepOutcome(
            key=step.key,
            ok=result.ok,
            skipped=result.skipped,
            code=result.code,
            stdout=data["stdout"],
            stderr=data["stderr"],
        ))

        if result.skipped:
            self.store.append_event(job.id, EventLevel.INFO, step.key, "Skipped by provisioner", data)
            return

        if not result.ok:
            self.store.append_event(
                job.id, EventLevel.ERROR, step.key,
                f"Failed with exit code {result.code}", data,
            )
            raise CommandFailedError(step.key, result.code, result.stderr)

        self.store.append_event(job.id, EventLevel.INFO, step.key, "Completed", data)

    def _record_failure(
        self,
        job: ProvisionJob,
        tenant: Tenant,
        actor: str,
        error: Exception,
        outcomes: list[StepOutcome],
    ) -> None:
        """Mark the job failed and the tenant errored; the caller re-raises."""
        message = str(error) or type(error).__name__
        result = {
            "dry_run": job.dry_run,
            "steps_executed": len(outcomes),
            "steps": [o.to_dict() for o in outcomes],
        }

        try:
            with self._dm.connect() as conn:
                self.store.mark_failed(conn, job.id, message, result)
                if job.is_live:
                    self.tenants.set_status(conn, tenant.id, TenantStatus.ERROR)
                self.store.append_event(
                    job.id, EventLevel.ERROR, "error", message,
                    {"error_type": type(error).__name__},
                    conn=conn,
                )
        except Exception:
            logger.exception(f"Could not record failure of job {job.id}", extra={"job_id": job.id})

        log_audit_event(
            "provision_job_failed",
            actor=actor,
            target_type="provision_job",
            target_id=job.id,
            detail={
                "tenant_id": tenant.id,
                "job_type": job.job_type.value,
                "dry_run": job.dry_run,
                "error": message,
            },
        )
        logger.error(
            f"Job {job.id} failed: {message}",
            extra={"job_id": job.id, "tenant_id": tenant.id, "actor": actor},
        )
