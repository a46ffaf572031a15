"""JobStore: durable swap job records with natural deduplication and guarded status moves."""

from typing import Any

from sqlalchemy import insert, select, update
from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError

from settlement.core.db import make_session_factory, swap_jobs_table
from settlement.core.models import PENDING_JOB_STATUSES, JobStatus, RouteArtifact, SwapJob
from settlement.core.utils import get_logger, utcnow_iso

logger = get_logger("settlement.jobs")


def _row_to_job(row: Any) -> SwapJob:
    data = dict(row)
    raw_route = data.pop("route", None)
    return SwapJob(**data, route=RouteArtifact(raw=raw_route) if raw_route is not None else None)


class JobStore:
    """CRUD over the swap_jobs table."""

    def __init__(self, engine: Engine) -> None:
        """Initialize the store with a database engine."""
        self.Session = make_session_factory(engine)

    def create_if_absent(self, job: SwapJob) -> bool:
        """Insert the job unless one with the same id exists; return True if created."""
        now = utcnow_iso()
        values = job.model_dump(mode="json", exclude={"route"})
        values.update(
            route=job.route.raw if job.route else None,
            lease_expires_at=None,
            created_at=now,
            updated_at=now,
        )
        try:
            with self.Session() as session, session.begin():
                existing = session.execute(
                    select(swap_jobs_table.c.id).where(swap_jobs_table.c.id == job.id)
                ).first()
                if existing:
                    return False
                session.execute(insert(swap_jobs_table).values(**values))
        except IntegrityError:
            logger.info(f"Swap job {job.id} created concurrently; keeping existing record")
            return False
        return True

    def get(self, job_id: str) -> SwapJob | None:
        """Fetch a job by id."""
        with self.Session() as session:
            row = session.execute(select(swap_jobs_table).where(swap_jobs_table.c.id == job_id)).mappings().first()
        return _row_to_job(row) if row else None

    def update(self, job_id: str, status: JobStatus | None = None, **fields: Any) -> bool:
        """Apply a partial update; return False if it would move status backwards.

        A ``RouteArtifact`` passed as ``route`` is stored verbatim.
        """
        values: dict[str, Any] = dict(fields)
        if isinstance(values.get("route"), RouteArtifact):
            values["route"] = values["route"].raw
        with self.Session() as session, session.begin():
            current = session.execute(
                select(swap_jobs_table.c.status).where(swap_jobs_table.c.id == job_id)
            ).scalar_one_or_none()
            if current is None:
                logger.warning(f"Update for unknown swap job {job_id}")
                return False
            if status is not None:
                if not JobStatus(current).can_move_to(status):
                    logger.warning(f"Refusing status move {current} -> {status} for swap job {job_id}")
                    return False
                values["status"] = status.value
            values["updated_at"] = utcnow_iso()
            session.execute(update(swap_jobs_table).where(swap_jobs_table.c.id == job_id).values(**values))
        return True

    def list_pending(self, limit: int) -> list[SwapJob]:
        """List up to ``limit`` non-terminal jobs, least recently touched first."""
        stmt = (
            select(swap_jobs_table)
            .where(swap_jobs_table.c.status.in_([s.value for s in PENDING_JOB_STATUSES]))
            .order_by(swap_jobs_table.c.updated_at.asc())
            .limit(limit)
        )
        with self.Session() as session:
            rows = session.execute(stmt).mappings().all()
        return [_row_to_job(row) for row in rows]
