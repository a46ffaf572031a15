"""DB tables, engine and session helpers for the settlement engine."""

from sqlalchemy import (
    JSON,
    Column,
    Float,
    Integer,
    MetaData,
    PrimaryKeyConstraint,
    String,
    Table,
    Text,
    create_engine,
    event,
)
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker

metadata = MetaData()

swap_jobs_table = Table(
    "swap_jobs",
    metadata,
    Column("id", String, primary_key=True),
    Column("owner_id", String, nullable=False, index=True),
    Column("wallet_id", String, nullable=False),
    Column("chain", String, nullable=False),
    Column("chain_id", Integer, nullable=False),
    Column("from_token_address", String, nullable=False),
    Column("from_token_symbol", String, nullable=True),
    Column("from_token_decimals", Integer, nullable=False),
    Column("from_amount", String, nullable=False),
    Column("from_amount_base_units", String, nullable=False),
    Column("to_token_address", String, nullable=False),
    Column("to_token_symbol", String, nullable=False),
    Column("to_token_decimals", Integer, nullable=False),
    Column("route", Text, nullable=True),
    Column("approval_address", String, nullable=True),
    Column("approval_tx_id", String, nullable=True),
    Column("swap_tx_id", String, nullable=True),
    Column("last_tx_state", String, nullable=True),
    Column("status", String, nullable=False, index=True),
    Column("error", Text, nullable=True),
    Column("lease_expires_at", Float, nullable=True),
    Column("created_at", String, nullable=False),
    Column("updated_at", String, nullable=False),
)

ledger_table = Table(
    "ledger_transactions",
    metadata,
    Column("owner_id", String, nullable=False),
    Column("id", String, nullable=False),
    Column("kind", String, nullable=False),
    Column("status", String, nullable=False),
    Column("amount", String, nullable=False),
    Column("symbol", String, nullable=True),
    Column("chain", String, nullable=True),
    Column("source_chain", String, nullable=True),
    Column("destination_chain", String, nullable=True),
    Column("tx_hash", String, nullable=True),
    Column("related_id", String, nullable=True),
    Column("metadata", JSON, nullable=False, default=dict),
    Column("created_at", String, nullable=False),
    Column("updated_at", String, nullable=False),
    PrimaryKeyConstraint("owner_id", "id"),
)

deposits_table = Table(
    "deposits",
    metadata,
    Column("owner_id", String, nullable=False),
    Column("id", String, nullable=False),
    Column("wallet_id", String, nullable=True),
    Column("chain", String, nullable=True),
    Column("tx_hash", String, nullable=True),
    Column("state", String, nullable=True),
    Column("symbol", String, nullable=True),
    Column("token_address", String, nullable=True),
    Column("decimals", Integer, nullable=True),
    Column("amount", String, nullable=False),
    Column("bridge_status", String, nullable=True),
    Column("bridge_source_chain", String, nullable=True),
    Column("bridge_destination_chain", String, nullable=True),
    Column("bridge_destination_tx_hash", String, nullable=True, index=True),
    Column("bridge_error", Text, nullable=True),
    Column("bridge_result", JSON, nullable=True),
    Column("bridge_attempts", Integer, nullable=False, default=0),
    Column("created_at", String, nullable=False),
    Column("updated_at", String, nullable=False),
    PrimaryKeyConstraint("owner_id", "id"),
)

alerts_table = Table(
    "alerts",
    metadata,
    Column("owner_id", String, nullable=False),
    Column("kind", String, nullable=False),
    Column("tx_id", String, nullable=False),
    Column("state", String, nullable=False),
    Column("chain", String, nullable=True),
    Column("amount", String, nullable=False),
    Column("symbol", String, nullable=True),
    Column("updated_at", String, nullable=False),
    PrimaryKeyConstraint("owner_id", "kind"),
)

wallets_table = Table(
    "wallets",
    metadata,
    Column("wallet_id", String, primary_key=True),
    Column("owner_id", String, nullable=False, index=True),
    Column("chain", String, nullable=False),
    Column("address", String, nullable=False),
)

balances_table = Table(
    "balances",
    metadata,
    Column("owner_id", String, primary_key=True),
    Column("symbol", String, nullable=False),
    Column("decimals", Integer, nullable=False),
    Column("base_units", String, nullable=False),
    Column("amount", String, nullable=False),
    Column("per_chain", JSON, nullable=False, default=dict),
    Column("updated_at", String, nullable=False),
)

positions_table = Table(
    "positions",
    metadata,
    Column("owner_id", String, nullable=False),
    Column("id", String, nullable=False),
    Column("status", String, nullable=False),
    Column("pending_tx_id", String, nullable=True, index=True),
    Column("token_id", String, nullable=True),
    Column("last_tx_state", String, nullable=True),
    Column("last_tx_hash", String, nullable=True),
    Column("last_deposit_amount", String, nullable=True),
    Column("last_withdraw_amount", String, nullable=True),
    Column("updated_at", String, nullable=False),
    PrimaryKeyConstraint("owner_id", "id"),
)


def get_engine(database_url: str) -> Engine:
    """Create a SQLAlchemy engine for the given database URL."""
    if database_url.startswith("sqlite"):
        engine = create_engine(database_url, connect_args={"check_same_thread": False, "timeout": 30})

        @event.listens_for(engine, "connect")
        def _sqlite_wal(dbapi_connection: object, _record: object) -> None:
            cursor = dbapi_connection.cursor()
            cursor.execute("PRAGMA journal_mode=WAL")
            cursor.close()

        return engine
    return create_engine(database_url, pool_pre_ping=True)


def init_db(engine: Engine) -> None:
    """Create all settlement tables if they do not exist."""
    metadata.create_all(engine)


def make_session_factory(engine: Engine) -> sessionmaker[Session]:
    """Build a session factory bound to the engine."""
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)
