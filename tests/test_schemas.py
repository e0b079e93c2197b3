"""Tests for provisioning request validation and snapshot schemas."""

import pytest

from core.errors import ValidationError
from core.provisioning.schemas import (
    BootstrapJobRequest,
    DecommissionJobRequest,
    ProvisionStep,
    TenantBootstrapRequest,
    TenantDecommissionRequest,
    TransitionRequest,
    dump_plan,
    load_job_request,
    load_plan,
    parse_request,
)


class TestTenantBootstrapRequest:
    def test_defaults(self):
        req = parse_request(TenantBootstrapRequest, {
            "slug": "  ACME ",
            "display_name": "Acme",
            "gateway_port": 19001,
        })
        assert req.slug == "acme"
        assert req.linux_user == "oc-acme"
        assert req.plan_tier == "standard"
        assert req.dry_run is True
        assert req.owner_gateway is None
        assert req.config == {}

    def test_explicit_linux_user_lowercased(self):
        req = parse_request(TenantBootstrapRequest, {
            "slug": "acme", "display_name": "Acme", "gateway_port": 19001,
            "linux_user": "Tenant_Acme",
        })
        assert req.linux_user == "tenant_acme"

    @pytest.mark.parametrize("slug", ["a", "-acme", "acme-", "ac me", "x" * 33, ""])
    def test_invalid_slug(self, slug):
        with pytest.raises(ValidationError, match="Invalid slug"):
            parse_request(TenantBootstrapRequest, {
                "slug": slug, "display_name": "Acme", "gateway_port": 19001,
            })

    def test_invalid_linux_user(self):
        with pytest.raises(ValidationError, match="linux_user"):
            parse_request(TenantBootstrapRequest, {
                "slug": "acme", "display_name": "Acme", "gateway_port": 19001,
                "linux_user": "9root",
            })

    def test_blank_display_name(self):
        with pytest.raises(ValidationError, match="display_name is required"):
            parse_request(TenantBootstrapRequest, {
                "slug": "acme", "display_name": "   ", "gateway_port": 19001,
            })

    @pytest.mark.parametrize("port", [80, 1023, 65536, "abc", 19001.5, True])
    def test_invalid_port(self, port):
        with pytest.raises(ValidationError, match="Port must be an integer"):
            parse_request(TenantBootstrapRequest, {
                "slug": "acme", "display_name": "Acme", "gateway_port": port,
            })

    def test_port_string_accepted(self):
        req = parse_request(TenantBootstrapRequest, {
            "slug": "acme", "display_name": "Acme", "gateway_port": "19001",
        })
        assert req.gateway_port == 19001

    def test_gateway_port_required(self):
        with pytest.raises(ValidationError, match="gateway_port is required"):
            parse_request(TenantBootstrapRequest, {"slug": "acme", "display_name": "Acme"})

    def test_owner_gateway_too_long(self):
        with pytest.raises(ValidationError, match="owner_gateway is too long"):
            parse_request(TenantBootstrapRequest, {
                "slug": "acme", "display_name": "Acme", "gateway_port": 19001,
                "owner_gateway": "g" * 121,
            })

    def test_non_object_body(self):
        with pytest.raises(ValidationError, match="JSON object"):
            parse_request(TenantBootstrapRequest, ["acme"])


class TestOtherRequests:
    def test_decommission_defaults(self):
        req = parse_request(TenantDecommissionRequest, None)
        assert req.dry_run is True
        assert req.remove_linux_user is False
        assert req.remove_state_dirs is False
        assert req.reason is None

    def test_decommission_blank_reason(self):
        assert parse_request(TenantDecommissionRequest, {"reason": "  "}).reason is None

    def test_transition_action_normalized(self):
        assert parse_request(TransitionRequest, {"action": " Approve "}).action == "approve"

    def test_transition_unknown_action(self):
        with pytest.raises(ValidationError, match="action"):
            parse_request(TransitionRequest, {"action": "delete"})


class TestSnapshots:
    def test_job_request_tagged_by_job_type(self):
        snap = BootstrapJobRequest(
            slug="acme", display_name="Acme", linux_user="oc-acme",
            gateway_port=19001, owner_gateway="primary",
        )
        loaded = load_job_request(snap.model_dump(mode="json"))
        assert isinstance(loaded, BootstrapJobRequest)
        assert loaded == snap

    def test_untagged_snapshot_uses_row_job_type(self):
        loaded = load_job_request(
            {"tenant_id": 1, "slug": "acme", "linux_user": "oc-acme", "dry_run": False},
            job_type="decommission",
        )
        assert isinstance(loaded, DecommissionJobRequest)
        assert loaded.dry_run is False

    def test_malformed_snapshot(self):
        with pytest.raises(ValidationError, match="Stored job request is malformed"):
            load_job_request({"job_type": "bootstrap", "slug": "acme"})

    def test_snapshot_is_frozen(self):
        snap = DecommissionJobRequest(tenant_id=1, slug="acme", linux_user="oc-acme")
        with pytest.raises(Exception):
            snap.dry_run = False

    def test_plan_roundtrip(self):
        plan = [ProvisionStep(key="a", title="A", command=["/bin/true"], requires_root=False)]
        assert load_plan(dump_plan(plan)) == plan

    def test_step_requires_command(self):
        with pytest.raises(ValidationError, match="Stored job plan is malformed"):
            load_plan([{"key": "a", "title": "A", "command": []}])
