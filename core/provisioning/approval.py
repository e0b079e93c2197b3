"""
Two-person rule for provision jobs.

A live job needs an approver who is neither the requester nor the person
running it. Dry-run jobs only need an approver: they cannot touch the host.
The gate is consulted when a job is approved and again when it is run, so
an approval cannot be replayed by a disallowed actor pairing.
"""

import logging
from typing import Optional

from core.errors import AuthorizationError
from core.provisioning.models import ProvisionJob

logger = logging.getLogger(__name__)


class ApprovalGate:
    """Stateless checks; raise AuthorizationError on violation."""

    def check_approval(self, job: ProvisionJob, approver: str) -> None:
        """Called before approve: no self-approval of live jobs."""
        if not approver:
            raise AuthorizationError("An approving actor is required")
        if job.is_live and approver == job.requested_by:
            raise AuthorizationError(
                "Two-person rule violation: live jobs require an approver different from the requester."
            )

    def check_execution(self, job: ProvisionJob, actor: str) -> None:
        """Called before run, against the stored approver."""
        approved_by: Optional[str] = job.approved_by
        if not approved_by:
            raise AuthorizationError("Missing approver. Approve the job before run.")

        if job.is_live:
            if approved_by == job.requested_by:
                raise AuthorizationError(
                    "Two-person rule violation: live jobs require an approver different from the requester."
                )
            if approved_by == actor:
                raise AuthorizationError(
                    "Two-person rule violation: approver cannot be the execution runner for live jobs."
                )
