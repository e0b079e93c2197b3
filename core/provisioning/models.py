"""
Domain models for tenant provisioning.

Rows from tenants / provision_jobs / provision_events are converted to these
dataclasses by the stores; to_dict() is the API representation.
"""

import json
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional


class TenantStatus(str, Enum):
    PENDING = "pending"
    PROVISIONING = "provisioning"
    DECOMMISSIONING = "decommissioning"
    ACTIVE = "active"
    SUSPENDED = "suspended"
    ERROR = "error"


class JobType(str, Enum):
    BOOTSTRAP = "bootstrap"
    DECOMMISSION = "decommission"


class JobStatus(str, Enum):
    QUEUED = "queued"
    APPROVED = "approved"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    REJECTED = "rejected"
    CANCELLED = "cancelled"


class JobAction(str, Enum):
    APPROVE = "approve"
    REJECT = "reject"
    CANCEL = "cancel"


class EventLevel(str, Enum):
    INFO = "info"
    WARN = "warn"
    ERROR = "error"


def _loads(raw: Any, default: Any) -> Any:
    if raw is None or raw == "":
        return default
    if isinstance(raw, (dict, list)):
        return raw
    return json.loads(raw)


@dataclass
class Tenant:
    """A provisioned customer environment (OS user, paths, gateway unit)."""
    id: int
    slug: str
    display_name: str
    linux_user: str
    plan_tier: str
    status: TenantStatus
    openclaw_home: str
    workspace_root: str
    gateway_port: Optional[int] = None
    dashboard_port: Optional[int] = None
    owner_gateway: str = "primary"
    config: dict = field(default_factory=dict)
    created_by: Optional[str] = None
    created_at: str = ""
    updated_at: str = ""
    # Populated by list_tenants only
    latest_job_id: Optional[int] = None
    latest_job_status: Optional[str] = None
    latest_job_created_at: Optional[str] = None

    @classmethod
    def from_row(cls, row) -> "Tenant":
        keys = row.keys()
        return cls(
            id=row["id"],
            slug=row["slug"],
            display_name=row["display_name"],
            linux_user=row["linux_user"],
            plan_tier=row["plan_tier"],
            status=TenantStatus(row["status"]),
            openclaw_home=row["openclaw_home"],
            workspace_root=row["workspace_root"],
            gateway_port=row["gateway_port"],
            dashboard_port=row["dashboard_port"],
            owner_gateway=row["owner_gateway"],
            config=_loads(row["config_json"], {}),
            created_by=row["created_by"],
            created_at=row["created_at"],
            updated_at=row["updated_at"],
            latest_job_id=row["latest_job_id"] if "latest_job_id" in keys else None,
            latest_job_status=row["latest_job_status"] if "latest_job_status" in keys else None,
            latest_job_created_at=row["latest_job_created_at"] if "latest_job_created_at" in keys else None,
        )

    def to_dict(self) -> dict:
        data = {
            "id": self.id,
            "slug": self.slug,
            "display_name": self.display_name,
            "linux_user": self.linux_user,
            "plan_tier": self.plan_tier,
            "status": self.status.value,
            "openclaw_home": self.openclaw_home,
            "workspace_root": self.workspace_root,
            "gateway_port": self.gateway_port,
            "dashboard_port": self.dashboard_port,
            "owner_gateway": self.owner_gateway,
            "config": self.config,
            "created_by": self.created_by,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
        }
        if self.latest_job_id is not None:
            data["latest_job_id"] = self.latest_job_id
            data["latest_job_status"] = self.latest_job_status
            data["latest_job_created_at"] = self.latest_job_created_at
        return data


@dataclass
class ProvisionEvent:
    """One append-only log line of a job's execution."""
    id: int
    job_id: int
    level: EventLevel
    step_key: Optional[str]
    message: str
    data: dict = field(default_factory=dict)
    created_at: str = ""

    @classmethod
    def from_row(cls, row) -> "ProvisionEvent":
        return cls(
            id=row["id"],
            job_id=row["job_id"],
            level=EventLevel(row["level"]),
            step_key=row["step_key"],
            message=row["message"],
            data=_loads(row["data_json"], {}),
            created_at=row["created_at"],
        )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "job_id": self.job_id,
            "level": self.level.value,
            "step_key": self.step_key,
            "message": self.message,
            "data": self.data,
            "created_at": self.created_at,
        }


@dataclass
class ProvisionJob:
    """
    A bootstrap or decommission operation against one tenant.

    request and plan are the raw snapshots stored at creation; they are never
    rewritten. Use core.provisioning.schemas to get typed views of them.
    """
    id: int
    tenant_id: int
    job_type: JobType
    status: JobStatus
    dry_run: bool
    requested_by: str
    approved_by: Optional[str] = None
    runner_host: Optional[str] = None
    idempotency_key: Optional[str] = None
    request: dict = field(default_factory=dict)
    plan: list = field(default_factory=list)
    result: Optional[dict] = None
    error_text: Optional[str] = None
    started_at: Optional[str] = None
    completed_at: Optional[str] = None
    created_at: str = ""
    updated_at: str = ""
    tenant_slug: Optional[str] = None
    tenant_display_name: Optional[str] = None
    events: list[ProvisionEvent] = field(default_factory=list)

    @property
    def is_live(self) -> bool:
        return not self.dry_run

    @classmethod
    def from_row(cls, row) -> "ProvisionJob":
        keys = row.keys()
        return cls(
            id=row["id"],
            tenant_id=row["tenant_id"],
            job_type=JobType(row["job_type"]),
            status=JobStatus(row["status"]),
            dry_run=bool(row["dry_run"]),
            requested_by=row["requested_by"],
            approved_by=row["approved_by"],
            runner_host=row["runner_host"],
            idempotency_key=row["idempotency_key"],
            request=_loads(row["request_json"], {}),
            plan=_loads(row["plan_json"], []),
            result=_loads(row["result_json"], None),
            error_text=row["error_text"],
            started_at=row["started_at"],
            completed_at=row["completed_at"],
            created_at=row["created_at"],
            updated_at=row["updated_at"],
            tenant_slug=row["tenant_slug"] if "tenant_slug" in keys else None,
            tenant_display_name=row["tenant_display_name"] if "tenant_display_name" in keys else None,
        )

    def to_dict(self, include_events: bool = False) -> dict:
        data = {
            "id": self.id,
            "tenant_id": self.tenant_id,
            "tenant_slug": self.tenant_slug,
            "tenant_display_name": self.tenant_display_name,
            "job_type": self.job_type.value,
            "status": self.status.value,
            "dry_run": self.dry_run,
            "requested_by": self.requested_by,
            "approved_by": self.approved_by,
            "runner_host": self.runner_host,
            "idempotency_key": self.idempotency_key,
            "request": self.request,
            "plan": self.plan,
            "result": self.result,
            "error_text": self.error_text,
            "started_at": self.started_at,
            "completed_at": self.completed_at,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
        }
        if include_events:
            data["events"] = [e.to_dict() for e in self.events]
        return data


@dataclass
class CommandResult:
    """Exit status and captured output of one dispatched command."""
    code: int
    stdout: str = ""
    stderr: str = ""
    skipped: bool = False

    @property
    def ok(self) -> bool:
        return self.code == 0


@dataclass
class StepOutcome:
    """Per-step entry of result_json."""
    key: str
    ok: bool
    skipped: bool
    code: Optional[int] = None
    stdout: str = ""
    stderr: str = ""

    def to_dict(self) -> dict:
        return {
            "key": self.key,
            "ok": self.ok,
            "skipped": self.skipped,
            "code": self.code,
            "stdout": self.stdout,
            "stderr": self.stderr,
        }
