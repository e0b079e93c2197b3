"""
Per-tenant execution lease.

At most one job per tenant may be running. The lease row is inserted in the
same transaction that moves a job to running, so either both happen or
neither does. Leases expire so a runner that died mid-job does not lock
its tenant forever; an expired lease is taken over on the next acquire.
"""

import logging
from typing import Optional

from core.db import DatabaseManager, is_integrity_error
from core.errors import StateConflictError
from core.timestamps import isoafter, isonow

logger = logging.getLogger(__name__)

DEFAULT_LEASE_TTL_SECONDS = 3600


class TenantLease:
    """DB-backed lease keyed by tenant_id."""

    def __init__(self, dm: Optional[DatabaseManager] = None, ttl_seconds: int = DEFAULT_LEASE_TTL_SECONDS):
        self._dm = dm or DatabaseManager.get_instance()
        self.ttl_seconds = ttl_seconds

    def acquire(self, conn, tenant_id: int, job_id: int, holder: str) -> None:
        """
        Take the tenant lease for job_id inside the caller's transaction.

        Raises:
            StateConflictError: another job holds an unexpired lease
        """
        ts = isonow()
        # Reclaim a lease whose runner never released it
        reclaimed = conn.execute(
            "DELETE FROM tenant_leases WHERE tenant_id = ? AND expires_at <= ?",
            (tenant_id, ts),
        ).rowcount
        if reclaimed:
            logger.warning(f"Reclaimed expired lease on tenant {tenant_id}", extra={"tenant_id": tenant_id})

        held = conn.execute(
            "SELECT job_id, holder FROM tenant_leases WHERE tenant_id = ?",
            (tenant_id,),
        ).fetchone()
        if held:
            raise StateConflictError(
                f"Tenant {tenant_id} is locked by running job {held['job_id']} on {held['holder']}"
            )

        try:
            conn.execute(
                """
                INSERT INTO tenant_leases (tenant_id, job_id, holder, acquired_at, expires_at)
                VALUES (?, ?, ?, ?, ?) RETURNING tenant_id
                """,
                (tenant_id, job_id, holder, ts, isoafter(self.ttl_seconds)),
            ).fetchall()
        except Exception as e:
            if is_integrity_error(e):
                raise StateConflictError(f"Tenant {tenant_id} is locked by another running job") from e
            raise

        logger.info(f"Lease on tenant {tenant_id} acquired by job {job_id}", extra={"tenant_id": tenant_id, "job_id": job_id})

    def release(self, tenant_id: int, job_id: int) -> None:
        """Drop the lease if job_id still holds it."""
        with self._dm.connect() as conn:
            conn.execute(
                "DELETE FROM tenant_leases WHERE tenant_id = ? AND job_id = ?",
                (tenant_id, job_id),
            )
        logger.info(f"Lease on tenant {tenant_id} released by job {job_id}", extra={"tenant_id": tenant_id, "job_id": job_id})

    def holder(self, tenant_id: int) -> Optional[dict]:
        with self._dm.connect() as conn:
            row = conn.execute("SELECT * FROM tenant_leases WHERE tenant_id = ?", (tenant_id,)).fetchone()
        return dict(row) if row else None
