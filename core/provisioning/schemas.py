"""
Provisioning request and snapshot schemas.

Inbound requests (TenantBootstrapRequest, TenantDecommissionRequest) are
validated here before any transaction starts. The normalized request is
frozen into provision_jobs.request_json as a tagged snapshot keyed by
job_type, and the plan as a list of ProvisionStep.
"""

import re
from typing import Annotated, Any, Literal, Optional, Type, TypeVar, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, field_validator, model_validator
from pydantic import ValidationError as PydanticValidationError

from core.errors import ValidationError

SLUG_RE = re.compile(r"^[a-z0-9][a-z0-9-]{1,30}[a-z0-9]$")
LINUX_USER_RE = re.compile(r"^[a-z_][a-z0-9_-]{1,30}$")

MIN_PORT = 1024
MAX_PORT = 65535
MAX_OWNER_GATEWAY_LEN = 120
DEFAULT_STEP_TIMEOUT_MS = 15000

M = TypeVar("M", bound=BaseModel)


def _validate_port(v: Any) -> Optional[int]:
    if v is None or v == "":
        return None
    if isinstance(v, bool):
        raise ValueError(f"Port must be an integer between {MIN_PORT} and {MAX_PORT}")
    try:
        n = int(v)
    except (TypeError, ValueError):
        raise ValueError(f"Port must be an integer between {MIN_PORT} and {MAX_PORT}") from None
    if isinstance(v, float) and n != v:
        raise ValueError(f"Port must be an integer between {MIN_PORT} and {MAX_PORT}")
    if n < MIN_PORT or n > MAX_PORT:
        raise ValueError(f"Port must be an integer between {MIN_PORT} and {MAX_PORT}")
    return n


# =============================================================================
# Inbound requests
# =============================================================================

class TenantBootstrapRequest(BaseModel):
    """Create a tenant and queue its bootstrap job."""
    slug: str = Field(..., description="Unique tenant slug, 3-32 chars")
    display_name: str = Field(..., description="Human readable tenant name")
    linux_user: Optional[str] = Field(default=None, description="OS user, defaults to oc-<slug>")
    plan_tier: str = Field(default="standard")
    gateway_port: Optional[int] = Field(default=None)
    dashboard_port: Optional[int] = Field(default=None)
    owner_gateway: Optional[str] = Field(default=None, description="Defaults to the configured gateway")
    config: dict = Field(default_factory=dict)
    dry_run: bool = Field(default=True, description="Walk the plan without executing commands")

    @field_validator("slug", mode="before")
    @classmethod
    def validate_slug(cls, v):
        slug = str(v or "").strip().lower()
        if not SLUG_RE.match(slug):
            raise ValueError("Invalid slug. Use lowercase letters, numbers, and dashes (3-32 chars).")
        return slug

    @field_validator("display_name", mode="before")
    @classmethod
    def validate_display_name(cls, v):
        name = str(v or "").strip()
        if not name:
            raise ValueError("display_name is required")
        return name

    @field_validator("plan_tier", mode="before")
    @classmethod
    def normalize_plan_tier(cls, v):
        return str(v or "").strip().lower() or "standard"

    @field_validator("gateway_port", "dashboard_port", mode="before")
    @classmethod
    def validate_ports(cls, v):
        return _validate_port(v)

    @field_validator("owner_gateway", mode="before")
    @classmethod
    def validate_owner_gateway(cls, v):
        raw = str(v or "").strip()
        if not raw:
            return None
        if len(raw) > MAX_OWNER_GATEWAY_LEN:
            raise ValueError("owner_gateway is too long")
        return raw

    @field_validator("config", mode="before")
    @classmethod
    def default_config(cls, v):
        return v or {}

    @model_validator(mode="after")
    def resolve_linux_user(self):
        """Default linux_user from the slug and require a gateway port."""
        linux_user = (self.linux_user or f"oc-{self.slug}").strip().lower()
        if not LINUX_USER_RE.match(linux_user):
            raise ValueError("Invalid linux_user format")
        self.linux_user = linux_user

        if self.gateway_port is None:
            raise ValueError("gateway_port is required for tenant bootstrap")
        return self


class TenantDecommissionRequest(BaseModel):
    """Queue a decommission job for an existing tenant."""
    dry_run: bool = Field(default=True)
    remove_linux_user: bool = Field(default=False, description="userdel -r; implies the home directory")
    remove_state_dirs: bool = Field(default=False, description="Remove state/workspace, keep the OS user")
    reason: Optional[str] = Field(default=None, max_length=2000)

    @field_validator("reason", mode="before")
    @classmethod
    def strip_reason(cls, v):
        reason = str(v or "").strip()
        return reason or None


class TransitionRequest(BaseModel):
    """approve / reject / cancel a provision job."""
    action: Literal["approve", "reject", "cancel"]
    reason: Optional[str] = Field(default=None, max_length=2000)

    @field_validator("action", mode="before")
    @classmethod
    def normalize_action(cls, v):
        return str(v or "").strip().lower()


# =============================================================================
# Snapshots (write-once, stored on provision_jobs)
# =============================================================================

class ProvisionStep(BaseModel):
    """One command of a plan."""
    model_config = ConfigDict(frozen=True)

    key: str
    title: str
    command: list[str] = Field(..., min_length=1)
    requires_root: bool = True
    timeout_ms: int = DEFAULT_STEP_TIMEOUT_MS

    @property
    def executable(self) -> str:
        return self.command[0]

    @property
    def args(self) -> list[str]:
        return list(self.command[1:])


class BootstrapJobRequest(BaseModel):
    model_config = ConfigDict(frozen=True)

    job_type: Literal["bootstrap"] = "bootstrap"
    slug: str
    display_name: str
    linux_user: str
    gateway_port: int
    dashboard_port: Optional[int] = None
    plan_tier: str = "standard"
    dry_run: bool = True
    config: dict = Field(default_factory=dict)
    owner_gateway: str


class DecommissionJobRequest(BaseModel):
    model_config = ConfigDict(frozen=True)

    job_type: Literal["decommission"] = "decommission"
    tenant_id: int
    slug: str
    linux_user: str
    dry_run: bool = True
    remove_linux_user: bool = False
    remove_state_dirs: bool = False
    reason: Optional[str] = None


JobRequest = Annotated[
    Union[BootstrapJobRequest, DecommissionJobRequest],
    Field(discriminator="job_type"),
]

_job_request_adapter: TypeAdapter = TypeAdapter(JobRequest)
_plan_adapter: TypeAdapter = TypeAdapter(list[ProvisionStep])


def load_job_request(data: dict, job_type: Optional[str] = None) -> Union[BootstrapJobRequest, DecommissionJobRequest]:
    """Typed view of a stored request snapshot.

    Snapshots written before job_type was embedded are tagged from the
    job row.
    """
    payload = dict(data or {})
    if "job_type" not in payload and job_type:
        payload["job_type"] = job_type
    try:
        return _job_request_adapter.validate_python(payload)
    except PydanticValidationError as e:
        raise ValidationError(f"Stored job request is malformed: {_first_error(e)}") from e


def load_plan(data: list) -> list[ProvisionStep]:
    """Typed view of a stored plan snapshot."""
    try:
        return _plan_adapter.validate_python(data or [])
    except PydanticValidationError as e:
        raise ValidationError(f"Stored job plan is malformed: {_first_error(e)}") from e


def dump_plan(plan: list[ProvisionStep]) -> list[dict]:
    return [step.model_dump(mode="json") for step in plan]


# =============================================================================
# Helpers
# =============================================================================

def _first_error(e: PydanticValidationError) -> str:
    err = e.errors()[0]
    msg = str(err.get("msg", "invalid value"))
    if msg.startswith("Value error, "):
        msg = msg[len("Value error, "):]
    loc = ".".join(str(part) for part in err.get("loc", ()) if part != "__root__")
    return f"{loc}: {msg}" if loc else msg


def parse_request(model: Type[M], payload: Any) -> M:
    """Validate a request payload, raising core.errors.ValidationError (400)."""
    if payload is None:
        payload = {}
    if isinstance(payload, BaseModel):
        payload = payload.model_dump()
    if not isinstance(payload, dict):
        raise ValidationError("Request body must be a JSON object")
    try:
        return model.model_validate(payload)
    except PydanticValidationError as e:
        raise ValidationError(_first_error(e)) from e
