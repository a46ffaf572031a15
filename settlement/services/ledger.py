"""LedgerWriter: idempotent, merge-only upserts of owner-facing transaction records.

Every record is keyed by ``(owner_id, record_id)`` where ``record_id`` is derived
from the originating external event (``<txId>``, ``swap:<depositId>``, ...).
Repeated observations of the same event converge on one row: omitted fields
are kept, metadata is merged key by key, ``updated_at`` never moves backwards,
and a status that would regress the record is ignored.
"""

from typing import Any

from sqlalchemy import insert, select, update
from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError

from settlement.core.db import ledger_table, make_session_factory
from settlement.core.models import LedgerEntry, LedgerRecord, LedgerStatus
from settlement.core.utils import get_logger, utcnow_iso

logger = get_logger("settlement.ledger")

_STATUS_RANK = {
    LedgerStatus.PENDING: 0,
    LedgerStatus.CONFIRMED: 1,
    LedgerStatus.BRIDGING: 2,
    LedgerStatus.COMPLETED: 3,
}

_OPTIONAL_FIELDS = ("symbol", "chain", "source_chain", "destination_chain", "tx_hash", "related_id")


def ledger_status_applies(current: LedgerStatus, new: LedgerStatus) -> bool:
    """Return True if moving a record from ``current`` to ``new`` is not a regression.

    FAILED may overwrite anything but COMPLETED. A FAILED record only moves on
    to BRIDGING (a bridge retry) or COMPLETED.
    """
    if current == new:
        return True
    if new == LedgerStatus.FAILED:
        return current != LedgerStatus.COMPLETED
    if current == LedgerStatus.FAILED:
        return new in (LedgerStatus.BRIDGING, LedgerStatus.COMPLETED)
    return _STATUS_RANK[new] >= _STATUS_RANK[current]


class LedgerWriter:
    """Writes and reads unified transaction records."""

    def __init__(self, engine: Engine) -> None:
        """Initialize the writer with a database engine."""
        self.Session = make_session_factory(engine)

    def upsert(self, owner_id: str, record_id: str, entry: LedgerEntry) -> LedgerRecord:
        """Create or merge the record ``(owner_id, record_id)`` and return the stored state."""
        try:
            return self._upsert_once(owner_id, record_id, entry)
        except IntegrityError:
            # Lost an insert race with another writer; the row exists now, so merge into it.
            logger.info(f"Ledger insert race on {owner_id}/{record_id}, merging")
            return self._upsert_once(owner_id, record_id, entry)

    def _upsert_once(self, owner_id: str, record_id: str, entry: LedgerEntry) -> LedgerRecord:
        now = utcnow_iso()
        key = (ledger_table.c.owner_id == owner_id) & (ledger_table.c.id == record_id)
        with self.Session() as session, session.begin():
            row = session.execute(select(ledger_table).where(key)).mappings().first()
            if row is None:
                values = {
                    "owner_id": owner_id,
                    "id": record_id,
                    **entry.model_dump(mode="json"),
                    "created_at": now,
                    "updated_at": now,
                }
                session.execute(insert(ledger_table).values(**values))
                return LedgerRecord(**values)

            values = self._merge(dict(row), entry)
            values["updated_at"] = max(row["updated_at"], now)
            session.execute(update(ledger_table).where(key).values(**values))
            return LedgerRecord(**{**dict(row), **values})

    def _merge(self, current: dict[str, Any], entry: LedgerEntry) -> dict[str, Any]:
        values: dict[str, Any] = {"kind": entry.kind.value, "amount": entry.amount}
        current_status = LedgerStatus(current["status"])
        if ledger_status_applies(current_status, entry.status):
            values["status"] = entry.status.value
        else:
            logger.info(
                f"Ignoring ledger status regression {current_status} -> {entry.status} "
                f"for {current['owner_id']}/{current['id']}"
            )
        for field in _OPTIONAL_FIELDS:
            value = getattr(entry, field)
            if value is not None:
                values[field] = value
        values["metadata"] = {**(current.get("metadata") or {}), **entry.metadata}
        return values

    def get(self, owner_id: str, record_id: str) -> LedgerRecord | None:
        """Fetch one ledger record."""
        stmt = select(ledger_table).where(ledger_table.c.owner_id == owner_id, ledger_table.c.id == record_id)
        with self.Session() as session:
            row = session.execute(stmt).mappings().first()
        return LedgerRecord(**row) if row else None

    def list_for_owner(self, owner_id: str, limit: int = 50) -> list[LedgerRecord]:
        """List an owner's ledger records, most recently updated first."""
        stmt = (
            select(ledger_table)
            .where(ledger_table.c.owner_id == owner_id)
            .order_by(ledger_table.c.updated_at.desc())
            .limit(limit)
        )
        with self.Session() as session:
            rows = session.execute(stmt).mappings().all()
        return [LedgerRecord(**row) for row in rows]
