"""
Provisioning plan builder.

Pure functions: the same target and paths always yield the same plan (no
clock, no randomness, no configuration reads). The plan is snapshotted on
the job at creation, so what was approved is exactly what runs.

Usage:
    from core.provisioning.planner import PlanTarget, PlanPaths, build_bootstrap_plan

    plan = build_bootstrap_plan(target, paths)
"""

import posixpath
from dataclasses import dataclass
from typing import Optional

from core.provisioning.schemas import ProvisionStep

TENANT_ENV_DIR = "/etc/openclaw-tenants"
SYSTEMD_UNIT_TEMPLATE = "/etc/systemd/system/openclaw-gateway@.service"
GATEWAY_ENV_FILENAME = "openclaw-gateway.env"
OPENCLAW_CONFIG_FILENAME = "openclaw.json"


@dataclass(frozen=True)
class PlanTarget:
    """The tenant fields a plan depends on."""
    slug: str
    linux_user: str
    openclaw_home: str
    workspace_root: str
    gateway_port: Optional[int] = None
    dashboard_port: Optional[int] = None


@dataclass(frozen=True)
class PlanPaths:
    """Host paths consumed by the bootstrap plan.

    artifact_dir is the tenant's own artifact directory (holding the
    rendered gateway env file), not the artifact root.
    """
    template_config_path: str
    unit_template_path: str
    artifact_dir: str
    tenant_home_root: str


def join_posix(*parts: str) -> str:
    """Join path segments, dropping trailing slashes from each."""
    cleaned = [str(p or "").rstrip("/") or "/" for p in parts]
    return posixpath.join(*cleaned)


def tenant_paths(home_root: str, linux_user: str, workspace_dirname: str) -> tuple[str, str]:
    """(openclaw_home, workspace_root) for a tenant user."""
    return (
        join_posix(home_root, linux_user, ".openclaw"),
        join_posix(home_root, linux_user, workspace_dirname),
    )


def gateway_unit(linux_user: str) -> str:
    return f"openclaw-gateway@{linux_user}.service"


def build_bootstrap_plan(target: PlanTarget, paths: PlanPaths) -> list[ProvisionStep]:
    """Ordered steps creating a tenant's user, directories, config and gateway unit.

    Every step requires root.
    """
    user = target.linux_user
    home_dir = join_posix(paths.tenant_home_root, user)

    return [
        ProvisionStep(
            key="create-linux-user",
            title=f"Create linux user {user}",
            command=["/usr/sbin/useradd", "-m", "-s", "/bin/bash", user],
            timeout_ms=10000,
        ),
        ProvisionStep(
            key="create-openclaw-state",
            title=f"Create OpenClaw state directory {target.openclaw_home}",
            command=["/usr/bin/install", "-d", "-m", "0750", "-o", user, "-g", user, target.openclaw_home],
            timeout_ms=10000,
        ),
        ProvisionStep(
            key="create-workspace-root",
            title=f"Create workspace root {target.workspace_root}",
            command=["/usr/bin/install", "-d", "-m", "0750", "-o", user, "-g", user, target.workspace_root],
            timeout_ms=10000,
        ),
        ProvisionStep(
            key="seed-openclaw-template",
            title="Seed base OpenClaw config scaffold",
            # -n: never clobber a config the tenant already has
            command=[
                "/usr/bin/cp", "-n", paths.template_config_path,
                f"{target.openclaw_home}/{OPENCLAW_CONFIG_FILENAME}",
            ],
            timeout_ms=12000,
        ),
        ProvisionStep(
            key="set-owner-home",
            title=f"Ensure ownership of {home_dir}",
            command=["/usr/bin/chown", "-R", f"{user}:{user}", home_dir],
            timeout_ms=20000,
        ),
        ProvisionStep(
            key="ensure-tenant-env-dir",
            title=f"Ensure {TENANT_ENV_DIR} exists",
            command=["/usr/bin/install", "-d", "-m", "0750", "-o", "root", "-g", "root", TENANT_ENV_DIR],
            timeout_ms=5000,
        ),
        ProvisionStep(
            key="install-gateway-systemd-template",
            title="Install openclaw-gateway@.service template",
            command=["/usr/bin/cp", "-n", paths.unit_template_path, SYSTEMD_UNIT_TEMPLATE],
            timeout_ms=5000,
        ),
        ProvisionStep(
            key="install-tenant-gateway-env",
            title="Install tenant gateway env file",
            command=[
                "/usr/bin/cp", "-f", f"{paths.artifact_dir}/{GATEWAY_ENV_FILENAME}",
                f"{TENANT_ENV_DIR}/{user}.env",
            ],
            timeout_ms=5000,
        ),
        ProvisionStep(
            key="systemd-daemon-reload",
            title="Reload systemd units",
            command=["/usr/bin/systemctl", "daemon-reload"],
            timeout_ms=10000,
        ),
        ProvisionStep(
            key="enable-start-gateway",
            title=f"Enable/start {gateway_unit(user)}",
            command=["/usr/bin/systemctl", "enable", "--now", gateway_unit(user)],
            timeout_ms=5000,
        ),
    ]


def build_decommission_plan(
    target: PlanTarget,
    remove_linux_user: bool = False,
    remove_state_dirs: bool = False,
) -> list[ProvisionStep]:
    """Ordered steps stopping a tenant's gateway and optionally removing its data.

    remove_linux_user wins over remove_state_dirs: userdel -r already
    deletes the home directory holding both state and workspace.
    """
    user = target.linux_user
    plan = [
        ProvisionStep(
            key="disable-stop-gateway",
            title=f"Disable/stop {gateway_unit(user)}",
            command=["/usr/bin/systemctl", "disable", "--now", gateway_unit(user)],
            timeout_ms=10000,
        ),
        ProvisionStep(
            key="remove-tenant-gateway-env",
            title=f"Remove {TENANT_ENV_DIR}/{user}.env",
            command=["/usr/bin/rm", "-f", f"{TENANT_ENV_DIR}/{user}.env"],
            timeout_ms=5000,
        ),
    ]

    if remove_linux_user:
        plan.append(ProvisionStep(
            key="remove-linux-user",
            title=f"Remove linux user {user}",
            command=["/usr/sbin/userdel", "-r", user],
            timeout_ms=15000,
        ))
    elif remove_state_dirs:
        plan.extend([
            ProvisionStep(
                key="remove-state-dir",
                title=f"Remove {target.openclaw_home}",
                command=["/usr/bin/rm", "-rf", target.openclaw_home],
                timeout_ms=10000,
            ),
            ProvisionStep(
                key="remove-workspace-dir",
                title=f"Remove {target.workspace_root}",
                command=["/usr/bin/rm", "-rf", target.workspace_root],
                timeout_ms=10000,
            ),
        ])

    return plan
