"""Per-owner account state: wallet directory, inbound alerts, aggregate balances and liquidity positions."""

from typing import Any

from sqlalchemy import delete, insert, select, update
from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError

from settlement.core.chains import SUPPORTED_CHAINS, USDC_DECIMALS, USDC_TOKEN_ADDRESS_BY_CHAIN, normalize_chain
from settlement.core.db import alerts_table, balances_table, make_session_factory, positions_table, wallets_table
from settlement.core.utils import from_base_units, get_logger, to_base_units, utcnow_iso
from settlement.services.base import CustodialSigner

logger = get_logger("settlement.accounts")

INBOUND_ALERT = "inbound_usdc"


class WalletDirectory:
    """Maps custodial wallets to owners and chains."""

    def __init__(self, engine: Engine) -> None:
        """Initialize the directory with a database engine."""
        self.Session = make_session_factory(engine)

    def register_wallet(self, owner_id: str, wallet_id: str, chain: str, address: str) -> None:
        """Record (or re-point) a wallet; the chain is stored in canonical form."""
        canonical = normalize_chain(chain) or chain
        with self.Session() as session, session.begin():
            exists = session.execute(
                select(wallets_table.c.wallet_id).where(wallets_table.c.wallet_id == wallet_id)
            ).first()
            values = {"owner_id": owner_id, "chain": canonical, "address": address}
            if exists:
                session.execute(update(wallets_table).where(wallets_table.c.wallet_id == wallet_id).values(**values))
            else:
                session.execute(insert(wallets_table).values(wallet_id=wallet_id, **values))

    def owner_for_wallet(self, wallet_id: str) -> str | None:
        """Resolve the owner of a custodial wallet."""
        with self.Session() as session:
            return session.execute(
                select(wallets_table.c.owner_id).where(wallets_table.c.wallet_id == wallet_id)
            ).scalar_one_or_none()

    def wallets_for_owner(self, owner_id: str) -> dict[str, dict[str, str]]:
        """Return ``{chain: {"wallet_id": ..., "address": ...}}`` for an owner."""
        with self.Session() as session:
            rows = session.execute(select(wallets_table).where(wallets_table.c.owner_id == owner_id)).mappings().all()
        return {row["chain"]: {"wallet_id": row["wallet_id"], "address": row["address"]} for row in rows}

    def wallet_for_chain(self, owner_id: str, chain: str) -> dict[str, str] | None:
        """Return the owner's wallet on ``chain``, if any."""
        return self.wallets_for_owner(owner_id).get(chain)

    def address_for_wallet(self, wallet_id: str) -> str | None:
        """Return the on-chain address of a custodial wallet."""
        with self.Session() as session:
            return session.execute(
                select(wallets_table.c.address).where(wallets_table.c.wallet_id == wallet_id)
            ).scalar_one_or_none()


class AlertStore:
    """Owner-facing "incoming funds" alerts."""

    def __init__(self, engine: Engine) -> None:
        """Initialize the store with a database engine."""
        self.Session = make_session_factory(engine)

    def get(self, owner_id: str, kind: str = INBOUND_ALERT) -> dict[str, Any] | None:
        """Fetch an alert."""
        stmt = select(alerts_table).where(alerts_table.c.owner_id == owner_id, alerts_table.c.kind == kind)
        with self.Session() as session:
            row = session.execute(stmt).mappings().first()
        return dict(row) if row else None

    def upsert_inbound_alert(
        self, owner_id: str, *, tx_id: str, state: str, chain: str | None, amount: str, symbol: str | None
    ) -> bool:
        """Write the inbound alert unless it already holds the same values; True if written."""
        payload = {"tx_id": tx_id, "state": state, "chain": chain, "amount": amount, "symbol": symbol}
        current = self.get(owner_id)
        if current and all(current[k] == v for k, v in payload.items()):
            return False
        key = (alerts_table.c.owner_id == owner_id) & (alerts_table.c.kind == INBOUND_ALERT)
        try:
            with self.Session() as session, session.begin():
                if current:
                    session.execute(update(alerts_table).where(key).values(updated_at=utcnow_iso(), **payload))
                else:
                    session.execute(
                        insert(alerts_table).values(
                            owner_id=owner_id, kind=INBOUND_ALERT, updated_at=utcnow_iso(), **payload
                        )
                    )
        except IntegrityError:
            with self.Session() as session, session.begin():
                session.execute(update(alerts_table).where(key).values(updated_at=utcnow_iso(), **payload))
        return True

    def clear_inbound_alert(self, owner_id: str) -> None:
        """Remove the inbound alert; no-op if absent."""
        with self.Session() as session, session.begin():
            session.execute(
                delete(alerts_table).where(alerts_table.c.owner_id == owner_id, alerts_table.c.kind == INBOUND_ALERT)
            )


class BalanceService:
    """Recomputes an owner's settlement-asset balance across all their wallets."""

    def __init__(self, engine: Engine, signer: CustodialSigner, wallets: WalletDirectory) -> None:
        """Initialize with a database engine, the signer and the wallet directory."""
        self.Session = make_session_factory(engine)
        self.signer = signer
        self.wallets = wallets

    def recompute(self, owner_id: str) -> dict[str, Any]:
        """Sum the owner's USDC across supported chains and store the result."""
        wallets = self.wallets.wallets_for_owner(owner_id)
        if not wallets:
            msg = f"User {owner_id} has no custodial wallets yet."
            raise ValueError(msg)
        per_chain: dict[str, dict[str, str]] = {}
        total = 0
        for chain in SUPPORTED_CHAINS:
            wallet = wallets.get(chain)
            if wallet is None:
                continue
            amount = self.signer.get_wallet_token_balance(wallet["wallet_id"], USDC_TOKEN_ADDRESS_BY_CHAIN[chain])
            base_units = to_base_units(amount, USDC_DECIMALS)
            total += base_units
            per_chain[chain] = {"amount": amount, "base_units": str(base_units)}

        values = {
            "symbol": "USDC",
            "decimals": USDC_DECIMALS,
            "base_units": str(total),
            "amount": from_base_units(total, USDC_DECIMALS),
            "per_chain": per_chain,
            "updated_at": utcnow_iso(),
        }
        with self.Session() as session, session.begin():
            exists = session.execute(
                select(balances_table.c.owner_id).where(balances_table.c.owner_id == owner_id)
            ).first()
            if exists:
                session.execute(update(balances_table).where(balances_table.c.owner_id == owner_id).values(**values))
            else:
                session.execute(insert(balances_table).values(owner_id=owner_id, **values))
        logger.info(f"Recomputed USDC balance for {owner_id}: {values['amount']}")
        return values

    def get(self, owner_id: str) -> dict[str, Any] | None:
        """Fetch the stored aggregate balance."""
        with self.Session() as session:
            row = session.execute(select(balances_table).where(balances_table.c.owner_id == owner_id)).mappings().first()
        return dict(row) if row else None


class PositionStore:
    """Liquidity positions waiting on, or updated by, contract executions."""

    def __init__(self, engine: Engine) -> None:
        """Initialize the store with a database engine."""
        self.Session = make_session_factory(engine)

    @staticmethod
    def _key(owner_id: str, position_id: str) -> Any:
        return (positions_table.c.owner_id == owner_id) & (positions_table.c.id == position_id)

    def get(self, owner_id: str, position_id: str) -> dict[str, Any] | None:
        """Fetch a position."""
        with self.Session() as session:
            row = session.execute(select(positions_table).where(self._key(owner_id, position_id))).mappings().first()
        return dict(row) if row else None

    def upsert(self, owner_id: str, position_id: str, **fields: Any) -> None:
        """Create the position or merge the given fields into it."""
        values = {**fields, "updated_at": utcnow_iso()}
        with self.Session() as session, session.begin():
            exists = session.execute(select(positions_table.c.id).where(self._key(owner_id, position_id))).first()
            if exists:
                session.execute(update(positions_table).where(self._key(owner_id, position_id)).values(**values))
            else:
                session.execute(
                    insert(positions_table).values(
                        owner_id=owner_id, id=position_id, **{"status": "PENDING", **values}
                    )
                )

    def find_by_pending_tx(self, owner_id: str, pending_tx_id: str) -> dict[str, Any] | None:
        """Return the position waiting on ``pending_tx_id``, if any."""
        stmt = (
            select(positions_table)
            .where(positions_table.c.owner_id == owner_id)
            .where(positions_table.c.pending_tx_id == pending_tx_id)
            .limit(1)
        )
        with self.Session() as session:
            row = session.execute(stmt).mappings().first()
        return dict(row) if row else None

    def record_execution(
        self, owner_id: str, pending_tx_id: str, *, state: str | None, tx_hash: str | None, failed: bool
    ) -> int:
        """Store the latest observation of a liquidity execution on its position."""
        values: dict[str, Any] = {"last_tx_state": state, "last_tx_hash": tx_hash, "updated_at": utcnow_iso()}
        stmt = (
            update(positions_table)
            .where(positions_table.c.owner_id == owner_id)
            .where(positions_table.c.pending_tx_id == pending_tx_id)
        )
        if failed:
            stmt = stmt.where(positions_table.c.status == "PENDING")
            values["status"] = "FAILED"
        with self.Session() as session, session.begin():
            result = session.execute(stmt.values(**values))
        return result.rowcount

    def attach_token_id(self, owner_id: str, pending_tx_id: str, token_id: str) -> int:
        """Set ``token_id`` on pending positions that reference ``pending_tx_id``; return rows touched."""
        stmt = (
            update(positions_table)
            .where(positions_table.c.owner_id == owner_id)
            .where(positions_table.c.pending_tx_id == pending_tx_id)
            .where(positions_table.c.status == "PENDING")
            .values(token_id=token_id, status="ACTIVE", updated_at=utcnow_iso())
        )
        with self.Session() as session, session.begin():
            result = session.execute(stmt)
        return result.rowcount
