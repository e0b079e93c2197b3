"""
Provision job store and state machine.

    queued    -> approved | rejected | cancelled
    approved  -> running  | rejected | cancelled
    running   -> completed | failed            (executor only)
    failed    -> approved | rejected | cancelled
    rejected  -> cancelled
    completed -> (none)
    cancelled -> (none)

Every status write is a conditional UPDATE guarded by the status the caller
observed, so two writers racing on the same job cannot silently overwrite
each other: the loser gets StateConflictError and nothing is written.

request_json and plan_json are written by insert_job only.
"""

import json
import logging
import uuid
from typing import Optional, Union

from pydantic import BaseModel

from core.audit import redact_sensitive
from core.db import DatabaseManager
from core.errors import NotFoundError, StateConflictError
from core.provisioning.models import (
    EventLevel,
    JobAction,
    JobStatus,
    JobType,
    ProvisionEvent,
    ProvisionJob,
)
from core.provisioning.schemas import ProvisionStep, dump_plan
from core.timestamps import isonow

logger = logging.getLogger(__name__)

MAX_LIST_LIMIT = 500
DEFAULT_LIST_LIMIT = 100

# Source states each operator action may start from
ALLOWED_TRANSITIONS: dict[JobAction, frozenset[JobStatus]] = {
    JobAction.APPROVE: frozenset({JobStatus.QUEUED, JobStatus.FAILED}),
    JobAction.REJECT: frozenset({JobStatus.QUEUED, JobStatus.APPROVED, JobStatus.FAILED}),
    JobAction.CANCEL: frozenset({JobStatus.QUEUED, JobStatus.APPROVED, JobStatus.FAILED, JobStatus.REJECTED}),
}

ACTION_TARGETS: dict[JobAction, JobStatus] = {
    JobAction.APPROVE: JobStatus.APPROVED,
    JobAction.REJECT: JobStatus.REJECTED,
    JobAction.CANCEL: JobStatus.CANCELLED,
}

IMMUTABLE_STATUSES = frozenset({JobStatus.RUNNING, JobStatus.COMPLETED, JobStatus.CANCELLED})

_LOG_LEVELS = {
    EventLevel.INFO: logging.INFO,
    EventLevel.WARN: logging.WARNING,
    EventLevel.ERROR: logging.ERROR,
}

_JOB_SELECT = """
    SELECT pj.*, t.slug AS tenant_slug, t.display_name AS tenant_display_name
    FROM provision_jobs pj
    JOIN tenants t ON t.id = pj.tenant_id
"""


def clamp_limit(limit) -> int:
    try:
        n = int(limit or DEFAULT_LIST_LIMIT)
    except (TypeError, ValueError):
        n = DEFAULT_LIST_LIMIT
    return min(max(n, 1), MAX_LIST_LIMIT)


def check_transition(job: ProvisionJob, action: Union[JobAction, str]) -> JobStatus:
    """
    Validate an operator action against the job's current status.

    Returns:
        The status the job would move to.

    Raises:
        StateConflictError: naming the current status
    """
    action = JobAction(action)
    if job.status in IMMUTABLE_STATUSES:
        raise StateConflictError(f"Job status {job.status.value} is immutable")
    if job.status not in ALLOWED_TRANSITIONS[action]:
        raise StateConflictError(f"Cannot {action.value} job from status {job.status.value}")
    return ACTION_TARGETS[action]


class ProvisionJobStore:
    """Persistence for provision_jobs and provision_events."""

    def __init__(self, dm: Optional[DatabaseManager] = None):
        self._dm = dm or DatabaseManager.get_instance()

    # ----- creation -----------------------------------------------------------

    def insert_job(
        self,
        conn,
        *,
        tenant_id: int,
        job_type: JobType,
        dry_run: bool,
        requested_by: str,
        request: BaseModel,
        plan: list[ProvisionStep],
        idempotency_key: Optional[str] = None,
    ) -> int:
        """Insert a queued job with its request and plan snapshots."""
        ts = isonow()
        cur = conn.execute(
            """
            INSERT INTO provision_jobs (
                tenant_id, job_type, status, dry_run, requested_by, idempotency_key,
                request_json, plan_json, created_at, updated_at
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                tenant_id,
                JobType(job_type).value,
                JobStatus.QUEUED.value,
                1 if dry_run else 0,
                requested_by,
                idempotency_key or str(uuid.uuid4()),
                json.dumps(request.model_dump(mode="json")),
                json.dumps(dump_plan(plan)),
                ts,
                ts,
            ),
        )
        job_id = cur.lastrowid
        logger.info(
            f"Queued {JobType(job_type).value} job {job_id} ({len(plan)} steps, "
            f"{'dry-run' if dry_run else 'execute'})",
            extra={"job_id": job_id, "tenant_id": tenant_id, "actor": requested_by},
        )
        return job_id

    # ----- reads --------------------------------------------------------------

    def get_job(self, job_id: int, conn=None, include_events: bool = True) -> Optional[ProvisionJob]:
        with self._dm.use(conn) as c:
            row = c.execute(_JOB_SELECT + " WHERE pj.id = ?", (job_id,)).fetchone()
            if not row:
                return None
            job = ProvisionJob.from_row(row)
            if include_events:
                job.events = self.list_events(job_id, conn=c)
        return job

    def require_job(self, job_id: int, conn=None, include_events: bool = True) -> ProvisionJob:
        job = self.get_job(job_id, conn=conn, include_events=include_events)
        if job is None:
            raise NotFoundError(f"Provision job {job_id} not found")
        return job

    def list_jobs(
        self,
        tenant_id: Optional[int] = None,
        status: Optional[Union[JobStatus, str]] = None,
        limit: int = DEFAULT_LIST_LIMIT,
    ) -> list[ProvisionJob]:
        """Jobs newest first, optionally filtered, limit clamped to 1..500."""
        query = _JOB_SELECT + " WHERE 1=1"
        params: list = []

        if tenant_id is not None:
            query += " AND pj.tenant_id = ?"
            params.append(int(tenant_id))
        if status:
            query += " AND pj.status = ?"
            params.append(JobStatus(status).value)

        query += " ORDER BY pj.created_at DESC, pj.id DESC LIMIT ?"
        params.append(clamp_limit(limit))

        with self._dm.connect() as conn:
            rows = conn.execute(query, params).fetchall()
        return [ProvisionJob.from_row(row) for row in rows]

    def list_events(self, job_id: int, conn=None) -> list[ProvisionEvent]:
        with self._dm.use(conn) as c:
            rows = c.execute(
                "SELECT * FROM provision_events WHERE job_id = ? ORDER BY created_at ASC, id ASC",
                (job_id,),
            ).fetchall()
        return [ProvisionEvent.from_row(row) for row in rows]

    # ----- events -------------------------------------------------------------

    def append_event(
        self,
        job_id: int,
        level: Union[EventLevel, str],
        step_key: Optional[str],
        message: str,
        data: Optional[dict] = None,
        conn=None,
    ) -> int:
        """Append one event; events are never updated or deleted."""
        level = EventLevel(level)
        with self._dm.use(conn) as c:
            cur = c.execute(
                """
                INSERT INTO provision_events (job_id, level, step_key, message, data_json, created_at)
                VALUES (?, ?, ?, ?, ?, ?)
                """,
                (
                    job_id,
                    level.value,
                    step_key,
                    redact_sensitive(message),
                    json.dumps(data) if data is not None else None,
                    isonow(),
                ),
            )
            event_id = cur.lastrowid

        logger.log(
            _LOG_LEVELS[level],
            f"[job {job_id}] {step_key or '-'}: {redact_sensitive(message)}",
            extra={"job_id": job_id},
        )
        return event_id

    # ----- status writes ------------------------------------------------------

    def _conditional_update(
        self,
        conn,
        job_id: int,
        expected: JobStatus,
        target: JobStatus,
        expected_approver: Optional[str] = None,
        **columns,
    ) -> None:
        """UPDATE ... WHERE status = expected; conflict if another writer got there first."""
        assignments = ["status = ?", "updated_at = ?"]
        params: list = [target.value, isonow()]
        for column, value in columns.items():
            assignments.append(f"{column} = ?")
            params.append(value)
        params.extend([job_id, expected.value])

        where = "id = ? AND status = ?"
        if expected_approver is not None:
            where += " AND approved_by = ?"
            params.append(expected_approver)

        cur = conn.execute(
            f"UPDATE provision_jobs SET {', '.join(assignments)} WHERE {where}",
            params,
        )
        if cur.rowcount != 1:
            row = conn.execute(
                "SELECT status, approved_by FROM provision_jobs WHERE id = ?", (job_id,)
            ).fetchone()
            if row is None:
                raise NotFoundError(f"Provision job {job_id} not found")
            if row['status'] == expected.value and expected_approver is not None:
                raise StateConflictError(
                    f"Job {job_id} changed concurrently: expected approver {expected_approver}, "
                    f"found {row['approved_by']}"
                )
            raise StateConflictError(
                f"Job {job_id} changed concurrently: expected status {expected.value}, "
                f"found {row['status']}"
            )
        logger.info(
            f"Job {job_id} status {expected.value} -> {target.value}",
            extra={"job_id": job_id},
        )

    def apply_transition(
        self,
        conn,
        job: ProvisionJob,
        action: Union[JobAction, str],
        actor: str,
    ) -> JobStatus:
        """Validate and apply approve / reject / cancel from the observed status."""
        action = JobAction(action)
        target = check_transition(job, action)

        if action == JobAction.APPROVE:
            self._conditional_update(conn, job.id, job.status, target, approved_by=actor, error_text=None)
        elif action == JobAction.CANCEL:
            self._conditional_update(conn, job.id, job.status, target, completed_at=isonow())
        else:
            self._conditional_update(conn, job.id, job.status, target)
        return target

    def mark_running(self, conn, job_id: int, runner_host: str, approved_by: Optional[str] = None) -> str:
        """approved -> running; with approved_by, also require that approval to still stand."""
        started_at = isonow()
        self._conditional_update(
            conn, job_id, JobStatus.APPROVED, JobStatus.RUNNING,
            expected_approver=approved_by, started_at=started_at, runner_host=runner_host,
        )
        return started_at

    def mark_completed(self, conn, job_id: int, result: dict) -> None:
        self._conditional_update(
            conn, job_id, JobStatus.RUNNING, JobStatus.COMPLETED,
            completed_at=isonow(), result_json=json.dumps(result), error_text=None,
        )

    def mark_failed(self, conn, job_id: int, error_text: str, result: dict) -> None:
        self._conditional_update(
            conn, job_id, JobStatus.RUNNING, JobStatus.FAILED,
            completed_at=isonow(), result_json=json.dumps(result), error_text=error_text,
        )
