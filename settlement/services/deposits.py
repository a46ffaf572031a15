"""DepositStore: inbound deposit records and their bridge-to-hub sub-state."""

from typing import Any

from sqlalchemy import insert, or_, select, update
from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError

from settlement.core.db import deposits_table, make_session_factory
from settlement.core.models import BridgeStatus, TxStateBucket, classify_tx_state
from settlement.core.utils import get_logger, utcnow_iso

logger = get_logger("settlement.deposits")

_DEPOSIT_FIELDS = ("wallet_id", "chain", "tx_hash", "state", "symbol", "token_address", "decimals", "amount")

# A deposit state only moves forward: PENDING, then FAILED, then DONE.
_STATE_RANK = {TxStateBucket.PENDING: 0, TxStateBucket.FAILED: 1, TxStateBucket.DONE: 2}


def _state_regresses(current: str | None, incoming: str) -> bool:
    if current is None:
        return False
    return _STATE_RANK[classify_tx_state(incoming)] < _STATE_RANK[classify_tx_state(current)]


class DepositStore:
    """Merge-upserts deposits keyed by (owner, inbound transaction id)."""

    def __init__(self, engine: Engine) -> None:
        """Initialize the store with a database engine."""
        self.Session = make_session_factory(engine)

    @staticmethod
    def _key(owner_id: str, deposit_id: str) -> Any:
        return (deposits_table.c.owner_id == owner_id) & (deposits_table.c.id == deposit_id)

    def upsert(self, owner_id: str, deposit_id: str, **fields: Any) -> None:
        """Create the deposit or merge non-null fields into it.

        A stale observation never moves ``state`` back to an earlier bucket.
        """
        values = {k: v for k, v in fields.items() if k in _DEPOSIT_FIELDS and v is not None}
        try:
            self._upsert_once(owner_id, deposit_id, values)
        except IntegrityError:
            self._upsert_once(owner_id, deposit_id, values)

    def _upsert_once(self, owner_id: str, deposit_id: str, values: dict[str, Any]) -> None:
        now = utcnow_iso()
        key = self._key(owner_id, deposit_id)
        with self.Session() as session, session.begin():
            existing = session.execute(select(deposits_table.c.state).where(key)).first()
            if existing is None:
                row = {"amount": "0", **values}
                session.execute(
                    insert(deposits_table).values(
                        owner_id=owner_id, id=deposit_id, created_at=now, updated_at=now, **row
                    )
                )
            else:
                if "state" in values and _state_regresses(existing.state, values["state"]):
                    logger.info(f"Keeping deposit {deposit_id} state {existing.state}; ignoring stale {values['state']}")
                    values = {k: v for k, v in values.items() if k != "state"}
                session.execute(update(deposits_table).where(key).values(updated_at=now, **values))

    def get(self, owner_id: str, deposit_id: str) -> dict[str, Any] | None:
        """Fetch a deposit as a dict."""
        with self.Session() as session:
            row = session.execute(select(deposits_table).where(self._key(owner_id, deposit_id))).mappings().first()
        return dict(row) if row else None

    def find_by_bridge_destination_tx_hash(self, owner_id: str, tx_hash: str) -> str | None:
        """Return the id of the deposit whose bridge landed as ``tx_hash`` on the hub chain."""
        stmt = (
            select(deposits_table.c.id)
            .where(deposits_table.c.owner_id == owner_id)
            .where(deposits_table.c.bridge_destination_tx_hash == tx_hash)
            .limit(1)
        )
        with self.Session() as session:
            return session.execute(stmt).scalar_one_or_none()

    def claim_bridge(self, owner_id: str, deposit_id: str, source_chain: str, destination_chain: str) -> bool:
        """Mark the deposit's bridge PENDING unless one is already pending or done.

        Only an absent or FAILED bridge can be claimed. The check and the write
        are one conditional UPDATE, so concurrent observers cannot both win.
        """
        stmt = (
            update(deposits_table)
            .where(self._key(owner_id, deposit_id))
            .where(
                or_(
                    deposits_table.c.bridge_status.is_(None),
                    deposits_table.c.bridge_status == BridgeStatus.FAILED.value,
                )
            )
            .values(
                bridge_status=BridgeStatus.PENDING.value,
                bridge_source_chain=source_chain,
                bridge_destination_chain=destination_chain,
                bridge_error=None,
                bridge_attempts=deposits_table.c.bridge_attempts + 1,
                updated_at=utcnow_iso(),
            )
        )
        with self.Session() as session, session.begin():
            result = session.execute(stmt)
        return result.rowcount == 1

    def start_bridge(self, owner_id: str, deposit_id: str) -> int | None:
        """Move a claimed bridge from PENDING to IN_PROGRESS; return the attempt number, or None.

        None means the bridge is not awaiting a run (already running, done,
        failed or never claimed), so the caller must not call the provider.
        """
        key = self._key(owner_id, deposit_id)
        stmt = (
            update(deposits_table)
            .where(key)
            .where(deposits_table.c.bridge_status == BridgeStatus.PENDING.value)
            .values(bridge_status=BridgeStatus.IN_PROGRESS.value, updated_at=utcnow_iso())
        )
        with self.Session() as session, session.begin():
            if session.execute(stmt).rowcount != 1:
                return None
            return session.execute(select(deposits_table.c.bridge_attempts).where(key)).scalar_one()

    def set_bridge_state(
        self,
        owner_id: str,
        deposit_id: str,
        status: BridgeStatus,
        *,
        source_chain: str | None = None,
        destination_chain: str | None = None,
        destination_tx_hash: str | None = None,
        error: str | None = None,
        result: dict[str, Any] | None = None,
    ) -> None:
        """Record the outcome of a bridge attempt on the deposit."""
        values: dict[str, Any] = {
            "bridge_status": status.value,
            "bridge_error": error,
            "updated_at": utcnow_iso(),
        }
        if source_chain is not None:
            values["bridge_source_chain"] = source_chain
        if destination_chain is not None:
            values["bridge_destination_chain"] = destination_chain
        if destination_tx_hash is not None:
            values["bridge_destination_tx_hash"] = destination_tx_hash
        if result is not None:
            values["bridge_result"] = result
        with self.Session() as session, session.begin():
            session.execute(update(deposits_table).where(self._key(owner_id, deposit_id)).values(**values))
        logger.info(f"Deposit {owner_id}/{deposit_id} bridge -> {status}")
