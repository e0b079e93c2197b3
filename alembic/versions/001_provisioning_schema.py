"""Provisioning schema: tenants, provision jobs, provision events, tenant leases.

Revision ID: 001
Revises: None
Create Date: 2026-10-19
"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

revision: str = "001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    # =========================================================================
    # Tenants
    # =========================================================================

    op.create_table(
        "tenants",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column("slug", sa.Text, unique=True, nullable=False),
        sa.Column("display_name", sa.Text, nullable=False),
        sa.Column("linux_user", sa.Text, unique=True, nullable=False),
        sa.Column("plan_tier", sa.Text, nullable=False, server_default="standard"),
        sa.Column("status", sa.Text, nullable=False, server_default="pending"),
        sa.Column("openclaw_home", sa.Text, nullable=False),
        sa.Column("workspace_root", sa.Text, nullable=False),
        sa.Column("gateway_port", sa.Integer),
        sa.Column("dashboard_port", sa.Integer),
        sa.Column("owner_gateway", sa.Text, nullable=False, server_default="primary"),
        sa.Column("config_json", sa.Text, nullable=False, server_default="{}"),
        sa.Column("created_by", sa.Text, nullable=False, server_default="system"),
        sa.Column("created_at", sa.Text, server_default=sa.text("CURRENT_TIMESTAMP")),
        sa.Column("updated_at", sa.Text, server_default=sa.text("CURRENT_TIMESTAMP")),
    )
    op.create_index("idx_tenants_status", "tenants", ["status"])
    op.create_index("idx_tenants_owner_gateway", "tenants", ["owner_gateway"])

    # =========================================================================
    # Provision jobs (request_json / plan_json are write-once snapshots)
    # =========================================================================

    op.create_table(
        "provision_jobs",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column(
            "tenant_id", sa.Integer,
            sa.ForeignKey("tenants.id", ondelete="CASCADE"), nullable=False,
        ),
        sa.Column("job_type", sa.Text, nullable=False, server_default="bootstrap"),
        sa.Column("status", sa.Text, nullable=False, server_default="queued"),
        sa.Column("dry_run", sa.Integer, nullable=False, server_default="1"),
        sa.Column("requested_by", sa.Text, nullable=False, server_default="system"),
        sa.Column("approved_by", sa.Text),
        sa.Column("runner_host", sa.Text),
        sa.Column("idempotency_key", sa.Text, unique=True),
        sa.Column("request_json", sa.Text, nullable=False, server_default="{}"),
        sa.Column("plan_json", sa.Text, nullable=False, server_default="[]"),
        sa.Column("result_json", sa.Text),
        sa.Column("error_text", sa.Text),
        sa.Column("started_at", sa.Text),
        sa.Column("completed_at", sa.Text),
        sa.Column("created_at", sa.Text, server_default=sa.text("CURRENT_TIMESTAMP")),
        sa.Column("updated_at", sa.Text, server_default=sa.text("CURRENT_TIMESTAMP")),
    )
    op.create_index("idx_provision_jobs_tenant_id", "provision_jobs", ["tenant_id"])
    op.create_index("idx_provision_jobs_status", "provision_jobs", ["status"])
    op.create_index("idx_provision_jobs_created_at", "provision_jobs", ["created_at"])

    # =========================================================================
    # Provision events (append-only)
    # =========================================================================

    op.create_table(
        "provision_events",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column(
            "job_id", sa.Integer,
            sa.ForeignKey("provision_jobs.id", ondelete="CASCADE"), nullable=False,
        ),
        sa.Column("level", sa.Text, nullable=False, server_default="info"),
        sa.Column("step_key", sa.Text),
        sa.Column("message", sa.Text, nullable=False),
        sa.Column("data_json", sa.Text),
        sa.Column("created_at", sa.Text, server_default=sa.text("CURRENT_TIMESTAMP")),
    )
    op.create_index("idx_provision_events_job_id", "provision_events", ["job_id"])
    op.create_index("idx_provision_events_created_at", "provision_events", ["created_at"])

    # =========================================================================
    # Per-tenant execution lease (one running job per tenant)
    # =========================================================================

    op.create_table(
        "tenant_leases",
        sa.Column(
            "tenant_id", sa.Integer,
            sa.ForeignKey("tenants.id", ondelete="CASCADE"), primary_key=True,
        ),
        sa.Column(
            "job_id", sa.Integer,
            sa.ForeignKey("provision_jobs.id", ondelete="CASCADE"), nullable=False,
        ),
        sa.Column("holder", sa.Text, nullable=False),
        sa.Column("acquired_at", sa.Text, nullable=False),
        sa.Column("expires_at", sa.Text, nullable=False),
    )


def downgrade() -> None:
    op.drop_table("tenant_leases")
    op.drop_index("idx_provision_events_created_at", table_name="provision_events")
    op.drop_index("idx_provision_events_job_id", table_name="provision_events")
    op.drop_table("provision_events")
    op.drop_index("idx_provision_jobs_created_at", table_name="provision_jobs")
    op.drop_index("idx_provision_jobs_status", table_name="provision_jobs")
    op.drop_index("idx_provision_jobs_tenant_id", table_name="provision_jobs")
    op.drop_table("provision_jobs")
    op.drop_index("idx_tenants_owner_gateway", table_name="tenants")
    op.drop_index("idx_tenants_status", table_name="tenants")
    op.drop_table("tenants")
