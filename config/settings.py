"""
Central configuration using Pydantic BaseSettings.

Validates all env vars at startup (fail-fast). A live daemon deployment
refuses to start without its bearer token, but TESTING mode gets safe
defaults.

Usage:
    from config.settings import get_settings

    settings = get_settings()
    print(settings.provisioning.mode)

Lazy initialization: get_settings() creates the singleton on first call.
Tests can reset via get_settings.cache_clear().
"""

import os
import socket
from functools import lru_cache
from pathlib import Path
from typing import Literal, Optional

from pydantic import SecretStr, model_validator
from pydantic_settings import BaseSettings

_PROJECT_ROOT = Path(__file__).parent.parent


def _is_testing() -> bool:
    """Check if running in test mode."""
    return (
        os.getenv("TESTING", "").lower() in ("true", "1")
        or os.getenv("FLASK_ENV", "") == "testing"
    )


# =============================================================================
# Nested Settings Groups
# =============================================================================


class ProvisioningSettings(BaseSettings):
    """Tenant provisioning execution configuration."""

    model_config = {"env_prefix": "PROVISION_", "extra": "ignore"}

    # daemon: root steps go to the privileged daemon over a Unix socket
    # sudo:   root steps are wrapped in `sudo -n`
    # direct: every step runs as the current (unprivileged) user
    mode: Literal["daemon", "sudo", "direct"] = "daemon"

    # Global kill switch for live (non dry-run) execution
    exec_enabled: bool = False

    default_owner_gateway: str = "primary"
    tenant_home_root: str = "/home"
    workspace_dirname: str = "workspace"

    # Privileged daemon
    socket_path: str = "/run/tenantops-provisioner.sock"
    daemon_token: SecretStr = SecretStr("")

    # Per-tenant artifacts (rendered env files) and templates
    artifact_root: Path = _PROJECT_ROOT / "data" / "provisioner"
    template_config_path: str = ""
    unit_template_path: str = str(_PROJECT_ROOT / "ops" / "templates" / "openclaw-gateway@.service")

    # Per-tenant execution lease
    lease_ttl_seconds: int = 3600

    runner_host: str = ""

    @property
    def effective_runner_host(self) -> str:
        """Hostname recorded on jobs this process runs."""
        return self.runner_host or os.getenv("HOSTNAME") or socket.gethostname() or "unknown"


class DatabaseSettings(BaseSettings):
    """Database configuration."""

    model_config = {"env_prefix": "", "extra": "ignore"}

    database_url: Optional[str] = None  # PostgreSQL URL (optional)
    database_path: Path = _PROJECT_ROOT / "data" / "tenantops.db"


# =============================================================================
# Root Settings
# =============================================================================


class AppSettings(BaseSettings):
    """Root application settings composing all sub-settings."""

    model_config = {"env_prefix": "", "extra": "ignore", "env_file": ".env", "env_file_encoding": "utf-8"}

    # Logging
    log_level: str = "INFO"
    log_format: str = "json"
    log_file: str = ""

    # Header the upstream auth proxy uses to pass the caller identity
    actor_header: str = "X-Remote-User"

    # Nested groups (initialized separately to support env_prefix)
    provisioning: ProvisioningSettings = None  # type: ignore[assignment]
    database: DatabaseSettings = None  # type: ignore[assignment]

    @model_validator(mode="before")
    @classmethod
    def _init_nested(cls, values):
        """Initialize nested settings from environment."""
        if values.get("provisioning") is None:
            values["provisioning"] = ProvisioningSettings()
        if values.get("database") is None:
            values["database"] = DatabaseSettings()
        return values

    @model_validator(mode="after")
    def _validate_required_secrets(self):
        """Require the daemon token for live daemon execution; bypass in TESTING mode."""
        if _is_testing():
            return self

        prov = self.provisioning
        if prov.mode == "daemon" and prov.exec_enabled and not prov.daemon_token.get_secret_value():
            raise ValueError(
                "PROVISION_DAEMON_TOKEN env var is required when PROVISION_MODE=daemon "
                "and PROVISION_EXEC_ENABLED=true."
            )

        return self


@lru_cache(maxsize=1)
def get_settings() -> AppSettings:
    """
    Get the application settings singleton.

    Lazy-initialized on first call. Validates all env vars (fail-fast).
    Tests can reset via: get_settings.cache_clear()
    """
    return AppSettings()
