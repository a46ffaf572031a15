"""Pydantic models and enumerations for the settlement engine.

This module defines the job and ledger records persisted by the stores, the
typed views of custodial-signer transactions consumed by the reconciler, and
the single normalization point for vendor transaction states.
"""

from enum import StrEnum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class JobStatus(StrEnum):
    """Swap workflow states, in forward order."""

    QUEUED = "QUEUED"
    APPROVAL_REQUIRED = "APPROVAL_REQUIRED"
    APPROVAL_PENDING = "APPROVAL_PENDING"
    SWAP_READY = "SWAP_READY"
    SWAP_PENDING = "SWAP_PENDING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"

    @property
    def is_terminal(self) -> bool:
        """Return True for COMPLETED and FAILED."""
        return self in TERMINAL_JOB_STATUSES

    def can_move_to(self, target: "JobStatus") -> bool:
        """Return True if the transition keeps status monotonic.

        Forward moves and staying put are allowed; FAILED is reachable from any
        non-terminal state; nothing leaves a terminal state.
        """
        if self.is_terminal:
            return target == self
        if target == JobStatus.FAILED:
            return True
        return _JOB_ORDER.index(target) >= _JOB_ORDER.index(self)


_JOB_ORDER = list(JobStatus)
TERMINAL_JOB_STATUSES = frozenset({JobStatus.COMPLETED, JobStatus.FAILED})
PENDING_JOB_STATUSES = tuple(s for s in JobStatus if s not in TERMINAL_JOB_STATUSES)


class LedgerKind(StrEnum):
    """Kinds of owner-facing financial events."""

    DEPOSIT = "DEPOSIT"
    WITHDRAW = "WITHDRAW"
    SEND = "SEND"
    SWAP = "SWAP"
    BRIDGE = "BRIDGE"
    EARN = "EARN"


class LedgerStatus(StrEnum):
    """Owner-facing status of a ledger record."""

    PENDING = "PENDING"
    CONFIRMED = "CONFIRMED"
    BRIDGING = "BRIDGING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"


class BridgeStatus(StrEnum):
    """Status of the bridge-to-hub sub-flow recorded on a deposit."""

    PENDING = "PENDING"
    IN_PROGRESS = "IN_PROGRESS"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"
    SKIPPED = "SKIPPED"


class TransactionType(StrEnum):
    """Declared type of a custodial-signer transaction."""

    INBOUND = "INBOUND"
    OUTBOUND = "OUTBOUND"
    CONTRACT_EXECUTION = "CONTRACT_EXECUTION"


class TxStateBucket(StrEnum):
    """Local classification of free-form vendor transaction states."""

    DONE = "DONE"
    FAILED = "FAILED"
    PENDING = "PENDING"


DONE_TX_STATES = frozenset({"CONFIRMED", "COMPLETE", "COMPLETED"})
FAILED_TX_STATES = frozenset({"FAILED", "CANCELLED", "DENIED", "REJECTED"})


def normalize_tx_state(state: str | None) -> str:
    """Upper-case a vendor state string, treating None as empty."""
    return (state or "").strip().upper()


def classify_tx_state(state: str | None) -> TxStateBucket:
    """Classify a vendor transaction state into DONE, FAILED or PENDING."""
    normalized = normalize_tx_state(state)
    if normalized in DONE_TX_STATES:
        return TxStateBucket.DONE
    if normalized in FAILED_TX_STATES:
        return TxStateBucket.FAILED
    return TxStateBucket.PENDING


class RouteArtifact(BaseModel):
    """Opaque aggregator route payload, stored and replayed verbatim.

    Only the aggregator adapter interprets ``raw``; the workflow never parses it.
    """

    model_config = ConfigDict(frozen=True)

    raw: str


class RouteQuote(BaseModel):
    """A chosen route plus the spender that must be approved before executing it."""

    artifact: RouteArtifact
    approval_address: str | None = None


class ExecutableTransaction(BaseModel):
    """Concrete call built by the aggregator for a route."""

    to: str | None = None
    data: str | None = None
    value: str = "0"


class TokenInfo(BaseModel):
    """Token metadata resolved from the custodial signer."""

    symbol: str | None = None
    token_address: str | None = None
    decimals: int | None = None


class ExternalTransaction(BaseModel):
    """A transaction as reported by the custodial signer (webhook or lookup)."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    id: str
    transaction_type: str | None = Field(default=None, alias="transactionType")
    state: str | None = None
    wallet_id: str | None = Field(default=None, alias="walletId")
    token_id: str | None = Field(default=None, alias="tokenId")
    amounts: list[str] = []
    tx_hash: str | None = Field(default=None, alias="txHash")
    ref_id: str | None = Field(default=None, alias="refId")
    blockchain: str | None = None
    destination_address: str | None = Field(default=None, alias="destinationAddress")

    @property
    def amount(self) -> str:
        """First reported amount, or "0"."""
        return self.amounts[0] if self.amounts else "0"

    @property
    def bucket(self) -> TxStateBucket:
        """State classification of this transaction."""
        return classify_tx_state(self.state)


class SwapJob(BaseModel):
    """Durable record of one deposit-to-settlement-asset swap."""

    id: str
    owner_id: str
    wallet_id: str
    chain: str
    chain_id: int
    from_token_address: str
    from_token_symbol: str | None = None
    from_token_decimals: int
    from_amount: str
    from_amount_base_units: str
    to_token_address: str
    to_token_symbol: str = "USDC"
    to_token_decimals: int = 6
    route: RouteArtifact | None = None
    approval_address: str | None = None
    approval_tx_id: str | None = None
    swap_tx_id: str | None = None
    last_tx_state: str | None = None
    status: JobStatus = JobStatus.QUEUED
    error: str | None = None
    lease_expires_at: float | None = None
    created_at: str | None = None
    updated_at: str | None = None


class LedgerEntry(BaseModel):
    """Fields written to a ledger record by one observation."""

    kind: LedgerKind
    status: LedgerStatus
    amount: str
    symbol: str | None = None
    chain: str | None = None
    source_chain: str | None = None
    destination_chain: str | None = None
    tx_hash: str | None = None
    related_id: str | None = None
    metadata: dict[str, Any] = {}


class LedgerRecord(LedgerEntry):
    """A stored ledger record."""

    id: str
    owner_id: str
    created_at: str
    updated_at: str


class SwapJobView(BaseModel):
    """Public view of a swap job returned by the status endpoint."""

    id: str
    status: JobStatus
    chain: str
    from_token_symbol: str | None = None
    from_amount: str
    error: str | None = None
    created_at: str | None = None
    updated_at: str | None = None
