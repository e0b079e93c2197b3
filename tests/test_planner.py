"""
Tests for provisioning plan builders.

The planner is pure: same inputs, same plan, nothing read from settings.
"""

import pytest

from core.provisioning.planner import (
    GATEWAY_ENV_FILENAME,
    SYSTEMD_UNIT_TEMPLATE,
    TENANT_ENV_DIR,
    PlanPaths,
    PlanTarget,
    build_bootstrap_plan,
    build_decommission_plan,
    gateway_unit,
    join_posix,
    tenant_paths,
)

BOOTSTRAP_KEYS = [
    "create-linux-user",
    "create-openclaw-state",
    "create-workspace-root",
    "seed-openclaw-template",
    "set-owner-home",
    "ensure-tenant-env-dir",
    "install-gateway-systemd-template",
    "install-tenant-gateway-env",
    "systemd-daemon-reload",
    "enable-start-gateway",
]


@pytest.fixture
def target():
    home, workspace = tenant_paths("/home", "oc-acme", "workspace")
    return PlanTarget(
        slug="acme",
        linux_user="oc-acme",
        openclaw_home=home,
        workspace_root=workspace,
        gateway_port=19001,
    )


@pytest.fixture
def paths():
    return PlanPaths(
        template_config_path="/opt/openclaw/templates/openclaw.json",
        unit_template_path="/srv/tenantops/ops/templates/openclaw-gateway@.service",
        artifact_dir="/srv/tenantops/data/provisioner/acme",
        tenant_home_root="/home",
    )


class TestPathHelpers:
    def test_tenant_paths(self):
        assert tenant_paths("/home", "oc-acme", "workspace") == (
            "/home/oc-acme/.openclaw",
            "/home/oc-acme/workspace",
        )

    def test_tenant_paths_trailing_slash(self):
        home, workspace = tenant_paths("/srv/tenants/", "oc-acme", "ws")
        assert home == "/srv/tenants/oc-acme/.openclaw"
        assert workspace == "/srv/tenants/oc-acme/ws"

    def test_join_posix_root(self):
        assert join_posix("/", "oc-acme") == "/oc-acme"

    def test_gateway_unit(self):
        assert gateway_unit("oc-acme") == "openclaw-gateway@oc-acme.service"


class TestBootstrapPlan:
    def test_step_order(self, target, paths):
        plan = build_bootstrap_plan(target, paths)
        assert [s.key for s in plan] == BOOTSTRAP_KEYS

    def test_all_steps_require_root(self, target, paths):
        assert all(s.requires_root for s in build_bootstrap_plan(target, paths))

    def test_deterministic(self, target, paths):
        assert build_bootstrap_plan(target, paths) == build_bootstrap_plan(target, paths)

    def test_seed_does_not_clobber(self, target, paths):
        step = {s.key: s for s in build_bootstrap_plan(target, paths)}["seed-openclaw-template"]
        assert step.command == [
            "/usr/bin/cp", "-n",
            "/opt/openclaw/templates/openclaw.json",
            "/home/oc-acme/.openclaw/openclaw.json",
        ]

    def test_owner_home_is_recursive_chown(self, target, paths):
        step = {s.key: s for s in build_bootstrap_plan(target, paths)}["set-owner-home"]
        assert step.command == ["/usr/bin/chown", "-R", "oc-acme:oc-acme", "/home/oc-acme"]

    def test_unit_template_installed_without_clobber(self, target, paths):
        step = {s.key: s for s in build_bootstrap_plan(target, paths)}["install-gateway-systemd-template"]
        assert step.command[:2] == ["/usr/bin/cp", "-n"]
        assert step.command[-1] == SYSTEMD_UNIT_TEMPLATE

    def test_gateway_env_overwritten_from_artifact_dir(self, target, paths):
        step = {s.key: s for s in build_bootstrap_plan(target, paths)}["install-tenant-gateway-env"]
        assert step.command == [
            "/usr/bin/cp", "-f",
            f"/srv/tenantops/data/provisioner/acme/{GATEWAY_ENV_FILENAME}",
            f"{TENANT_ENV_DIR}/oc-acme.env",
        ]

    def test_enable_start_targets_tenant_unit(self, target, paths):
        last = build_bootstrap_plan(target, paths)[-1]
        assert last.command == ["/usr/bin/systemctl", "enable", "--now", "openclaw-gateway@oc-acme.service"]

    def test_executable_and_args(self, target, paths):
        first = build_bootstrap_plan(target, paths)[0]
        assert first.executable == "/usr/sbin/useradd"
        assert first.args == ["-m", "-s", "/bin/bash", "oc-acme"]


class TestDecommissionPlan:
    def test_minimal_plan(self, target):
        plan = build_decommission_plan(target)
        assert [s.key for s in plan] == ["disable-stop-gateway", "remove-tenant-gateway-env"]

    def test_remove_linux_user_is_single_final_step(self, target):
        plan = build_decommission_plan(target, remove_linux_user=True)
        keys = [s.key for s in plan]

        assert keys.count("remove-linux-user") == 1
        assert keys[-1] == "remove-linux-user"
        assert "remove-state-dir" not in keys
        assert "remove-workspace-dir" not in keys
        assert plan[-1].command == ["/usr/sbin/userdel", "-r", "oc-acme"]

    def test_remove_linux_user_wins_over_state_dirs(self, target):
        plan = build_decommission_plan(target, remove_linux_user=True, remove_state_dirs=True)
        assert [s.key for s in plan][-1] == "remove-linux-user"
        assert len(plan) == 3

    def test_remove_state_dirs(self, target):
        plan = build_decommission_plan(target, remove_state_dirs=True)
        assert [s.key for s in plan] == [
            "disable-stop-gateway",
            "remove-tenant-gateway-env",
            "remove-state-dir",
            "remove-workspace-dir",
        ]
        assert plan[2].command == ["/usr/bin/rm", "-rf", "/home/oc-acme/.openclaw"]
        assert plan[3].command == ["/usr/bin/rm", "-rf", "/home/oc-acme/workspace"]
