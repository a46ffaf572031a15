"""Driver for swap jobs: lease, advance one step, record failures, release."""

from settlement.core.models import JobStatus
from settlement.core.settings import Settings
from settlement.core.utils import get_logger
from settlement.services.job_store import JobStore
from settlement.services.lease import LeaseManager
from settlement.workers.swap_workflow import SwapWorkflow

logger = get_logger("settlement.worker")


class JobRunner:
    """JobRunner advances swap jobs under a lease, one transition per job per pass."""

    def __init__(self, settings: Settings, jobs: JobStore, leases: LeaseManager, workflow: SwapWorkflow) -> None:
        """Initialize JobRunner with the job store, lease manager and workflow."""
        self.settings = settings
        self.jobs = jobs
        self.leases = leases
        self.workflow = workflow

    def process_pending_jobs_once(self, limit: int | None = None) -> int:
        """Advance every non-terminal job that is not leased elsewhere; return how many were advanced."""
        batch = limit if limit is not None else self.settings.swap_worker_batch_size
        advanced = 0
        for job in self.jobs.list_pending(batch):
            if self.process_job(job.id) is not None:
                advanced += 1
        return advanced

    def process_job(self, job_id: str) -> JobStatus | None:
        """Advance one job by one step; None if its lease is held or it no longer exists."""
        if not self.leases.try_acquire_lease(job_id, self.settings.swap_lease_seconds):
            return None
        try:
            # Re-read under the lease; the listed copy may be stale.
            job = self.jobs.get(job_id)
            if job is None:
                logger.warning(f"Swap job {job_id} disappeared")
                return None
            try:
                return self.workflow.advance(job)
            except Exception as exc:
                logger.exception(f"Error advancing swap job {job_id}")
                return self.workflow.fail(job, str(exc) or exc.__class__.__name__)
        finally:
            self.leases.release_lease(job_id)
