"""LeaseManager: anonymous, time-bounded advisory locks on swap jobs.

A lease is the ``lease_expires_at`` column of a job row. Acquisition is one
conditional UPDATE that only matches when the column is null or in the past,
so two workers racing on the same job cannot both observe "unlocked": the
database applies the updates one at a time and only the first matches.
"""

import time
from collections.abc import Callable

from sqlalchemy import or_, update
from sqlalchemy.engine import Engine

from settlement.core.db import make_session_factory, swap_jobs_table
from settlement.core.utils import get_logger, utcnow_iso

logger = get_logger("settlement.lease")


class LeaseManager:
    """Acquire and release job leases."""

    def __init__(self, engine: Engine, clock: Callable[[], float] = time.time) -> None:
        """Initialize with a database engine and an epoch-seconds clock."""
        self.Session = make_session_factory(engine)
        self.clock = clock

    def try_acquire_lease(self, job_id: str, lease_seconds: float) -> bool:
        """Take the lease on ``job_id`` for ``lease_seconds``; False if someone holds it."""
        now = self.clock()
        column = swap_jobs_table.c.lease_expires_at
        stmt = (
            update(swap_jobs_table)
            .where(swap_jobs_table.c.id == job_id)
            .where(or_(column.is_(None), column <= now))
            .values(lease_expires_at=now + lease_seconds, updated_at=utcnow_iso())
        )
        with self.Session() as session, session.begin():
            result = session.execute(stmt)
        acquired = result.rowcount == 1
        if not acquired:
            logger.debug(f"Lease on swap job {job_id} is held elsewhere")
        return acquired

    def release_lease(self, job_id: str) -> None:
        """Clear the lease on ``job_id`` whoever holds it. Safe to call repeatedly."""
        stmt = update(swap_jobs_table).where(swap_jobs_table.c.id == job_id).values(lease_expires_at=None)
        with self.Session() as session, session.begin():
            session.execute(stmt)
