"""
Tenant provisioning control plane.

This package creates, approves, executes and audits tenant lifecycle jobs:
- Planner: deterministic bootstrap / decommission step lists
- TenantRegistry and ProvisionJobStore: persistence and the job state machine
- ApprovalGate: two-person rule at approval and at execution
- StepExecutor: sequential plan walk through an injected StepBackend
- ProvisionerIPCClient: one-shot JSON exchange with the privileged daemon

Usage:
    from core.provisioning import get_provisioning_service

    service = get_provisioning_service()

    created = service.create_tenant_and_bootstrap_job(
        {"slug": "acme", "display_name": "Acme", "gateway_port": 19001},
        actor="alice",
    )
    job_id = created["job"].id

    service.transition_provision_job_status(job_id, actor="bob", action="approve")
    job = await service.execute_provision_job(job_id, actor="carol")
"""

from core.provisioning.models import (
    CommandResult,
    EventLevel,
    JobAction,
    JobStatus,
    JobType,
    ProvisionEvent,
    ProvisionJob,
    StepOutcome,
    Tenant,
    TenantStatus,
)
from core.provisioning.policy import ExecutionMode, ExecutionPolicy
from core.provisioning.service import (
    ProvisioningService,
    get_provisioning_service,
    reset_provisioning_service,
)

__all__ = [
    "CommandResult",
    "EventLevel",
    "JobAction",
    "JobStatus",
    "JobType",
    "ProvisionEvent",
    "ProvisionJob",
    "StepOutcome",
    "Tenant",
    "TenantStatus",
    "ExecutionMode",
    "ExecutionPolicy",
    "ProvisioningService",
    "get_provisioning_service",
    "reset_provisioning_service",
]
