"""
Tenant registry.

Persists tenant identity (slug, linux_user, paths, ports) and lifecycle
status. Status is written only at creation and by the job execution flow;
there is no general-purpose status setter exposed to the API.
"""

import json
import logging
from typing import Optional

from core.db import DatabaseManager, is_integrity_error
from core.errors import NotFoundError, ValidationError
from core.provisioning.models import Tenant, TenantStatus
from core.timestamps import isonow

logger = logging.getLogger(__name__)


class TenantRegistry:
    """CRUD over the tenants table. Methods accept an open connection to join a transaction."""

    def __init__(self, dm: Optional[DatabaseManager] = None):
        self._dm = dm or DatabaseManager.get_instance()

    def insert(
        self,
        conn,
        *,
        slug: str,
        display_name: str,
        linux_user: str,
        plan_tier: str,
        openclaw_home: str,
        workspace_root: str,
        gateway_port: Optional[int],
        dashboard_port: Optional[int],
        owner_gateway: str,
        config: dict,
        created_by: str,
    ) -> int:
        """
        Insert a tenant in status pending and return its id.

        Raises:
            ValidationError: slug or linux_user already taken
        """
        taken = conn.execute(
            "SELECT slug, linux_user FROM tenants WHERE slug = ? OR linux_user = ?",
            (slug, linux_user),
        ).fetchone()
        if taken:
            if taken["slug"] == slug:
                raise ValidationError(f"Tenant slug '{slug}' already exists")
            raise ValidationError(f"Linux user '{linux_user}' is already assigned to a tenant")

        ts = isonow()
        try:
            cur = conn.execute(
                """
                INSERT INTO tenants (
                    slug, display_name, linux_user, plan_tier, status,
                    openclaw_home, workspace_root, gateway_port, dashboard_port,
                    owner_gateway, config_json, created_by, created_at, updated_at
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    slug, display_name, linux_user, plan_tier, TenantStatus.PENDING.value,
                    openclaw_home, workspace_root, gateway_port, dashboard_port,
                    owner_gateway, json.dumps(config), created_by, ts, ts,
                ),
            )
        except Exception as e:
            # Lost a race with a concurrent create of the same slug/user
            if is_integrity_error(e):
                raise ValidationError("Tenant slug or linux_user already exists") from e
            raise

        tenant_id = cur.lastrowid
        logger.info(f"Registered tenant {slug} ({linux_user})", extra={"tenant_id": tenant_id})
        return tenant_id

    def get(self, tenant_id: int, conn=None) -> Optional[Tenant]:
        with self._dm.use(conn) as c:
            row = c.execute("SELECT * FROM tenants WHERE id = ?", (tenant_id,)).fetchone()
        return Tenant.from_row(row) if row else None

    def require(self, tenant_id: int, conn=None) -> Tenant:
        tenant = self.get(tenant_id, conn=conn)
        if tenant is None:
            raise NotFoundError(f"Tenant {tenant_id} not found")
        return tenant

    def get_by_slug(self, slug: str) -> Optional[Tenant]:
        with self._dm.connect() as conn:
            row = conn.execute("SELECT * FROM tenants WHERE slug = ?", (slug,)).fetchone()
        return Tenant.from_row(row) if row else None

    def list_tenants(self) -> list[Tenant]:
        """All tenants, newest first, each with its most recent job."""
        with self._dm.connect() as conn:
            rows = conn.execute(
                """
                SELECT t.*,
                       pj.id AS latest_job_id,
                       pj.status AS latest_job_status,
                       pj.created_at AS latest_job_created_at
                FROM tenants t
                LEFT JOIN provision_jobs pj ON pj.id = (
                    SELECT p2.id FROM provision_jobs p2
                    WHERE p2.tenant_id = t.id
                    ORDER BY p2.created_at DESC, p2.id DESC
                    LIMIT 1
                )
                ORDER BY t.created_at DESC, t.id DESC
                """
            ).fetchall()
        return [Tenant.from_row(row) for row in rows]

    def set_status(self, conn, tenant_id: int, status: TenantStatus) -> None:
        """Lifecycle status change; only the execution flow calls this."""
        conn.execute(
            "UPDATE tenants SET status = ?, updated_at = ? WHERE id = ?",
            (status.value, isonow(), tenant_id),
        )
        logger.info(f"Tenant {tenant_id} status -> {status.value}", extra={"tenant_id": tenant_id})
