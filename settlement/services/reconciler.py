"""EventReconciler: turn custodial-signer transaction events into ledger state and follow-up work.

Events arrive from signed webhooks and from polled lookups, possibly more
than once and out of order. Every write is a merge keyed by the external
transaction id, so repeated observations converge. Follow-up jobs (bridge to
the settlement chain, swap to the settlement asset) are created only through
claim-if-absent or create-if-absent checks, so the first trigger wins.
"""

from datetime import datetime
from typing import Any

from settlement.core.chains import normalize_chain
from settlement.core.models import (
    ExternalTransaction,
    LedgerEntry,
    LedgerKind,
    LedgerStatus,
    TokenInfo,
    TransactionType,
    TxStateBucket,
    normalize_tx_state,
)
from settlement.core.settings import Settings
from settlement.core.utils import get_logger
from settlement.services.accounts import AlertStore, BalanceService, PositionStore, WalletDirectory
from settlement.services.base import ChainReader, CustodialSigner
from settlement.services.bridge_service import BridgeService, BridgeToHubJob
from settlement.services.chain_reader import extract_minted_token_id
from settlement.services.deposits import DepositStore
from settlement.services.ledger import LedgerWriter
from settlement.services.queue_service import BRIDGE_TO_HUB, WorkDispatcher
from settlement.services.webhook_security import is_replayed, parse_notification_timestamp
from settlement.workers.swap_workflow import SwapWorkflow

logger = get_logger("settlement.reconciler")

LIQUIDITY_DEPOSIT_PREFIX = "liquidity-deposit:"
LIQUIDITY_WITHDRAW_PREFIX = "liquidity-withdraw:"
OUTBOUND_KIND_BY_PREFIX = {"p2p:": LedgerKind.SEND, "withdraw:": LedgerKind.WITHDRAW}
SETTLED_LEDGER_STATUSES = frozenset({LedgerStatus.CONFIRMED, LedgerStatus.COMPLETED})


def _status_for_bucket(bucket: TxStateBucket, done: LedgerStatus) -> LedgerStatus:
    if bucket == TxStateBucket.FAILED:
        return LedgerStatus.FAILED
    if bucket == TxStateBucket.DONE:
        return done
    return LedgerStatus.PENDING


def bridge_job_id(deposit_tx_id: str) -> str:
    """Stable dispatcher id of the bridge-to-hub job for a deposit."""
    return f"bridge:{deposit_tx_id}"


class EventReconciler:
    """Classifies transaction events and triggers dependent work exactly once per event."""

    def __init__(
        self,
        settings: Settings,
        signer: CustodialSigner,
        ledger: LedgerWriter,
        deposits: DepositStore,
        wallets: WalletDirectory,
        alerts: AlertStore,
        balances: BalanceService,
        positions: PositionStore,
        chain_reader: ChainReader,
        dispatcher: WorkDispatcher,
        bridges: BridgeService,
        swaps: SwapWorkflow,
    ) -> None:
        """Initialize with collaborators."""
        self.settings = settings
        self.signer = signer
        self.ledger = ledger
        self.deposits = deposits
        self.wallets = wallets
        self.alerts = alerts
        self.balances = balances
        self.positions = positions
        self.chain_reader = chain_reader
        self.dispatcher = dispatcher
        self.bridges = bridges
        self.swaps = swaps

    # --- Notification boundary ----------------------------------------------

    def handle_notification(self, payload: dict[str, Any], now: datetime | None = None) -> str:
        """Process a verified webhook notification and return what happened to it.

        Outcomes: ``ignored`` (not a transaction notification, or nothing to
        look up), ``replayed`` (older than the replay window), ``unknown_owner``
        and ``processed``.
        """
        notification_type = payload.get("notificationType") or ""
        if not notification_type.startswith("transactions."):
            return "ignored"
        timestamp = parse_notification_timestamp(payload.get("timestamp"))
        if is_replayed(timestamp, self.settings.webhook_replay_window_seconds, now):
            logger.warning(f"Dropping replayed notification {payload.get('notificationId')} sent at {timestamp}")
            return "replayed"
        tx_id = (payload.get("notification") or {}).get("id")
        if not tx_id:
            return "ignored"

        tx = self.signer.get_transaction(tx_id)
        if not tx.wallet_id:
            return "ignored"
        owner_id = self.wallets.owner_for_wallet(tx.wallet_id)
        if not owner_id:
            logger.info(f"No owner for wallet {tx.wallet_id}; ignoring transaction {tx_id}")
            return "unknown_owner"
        self.handle_external_transaction_event(owner_id, tx)
        return "processed"

    # --- Dispatch ----------------------------------------------------------

    def handle_external_transaction_event(self, owner_id: str, tx: ExternalTransaction) -> None:
        """Route one transaction observation by its declared type."""
        tx_type = normalize_tx_state(tx.transaction_type)
        ref_id = tx.ref_id or ""
        logger.info(f"Reconciling {tx_type or 'UNKNOWN'} transaction {tx.id} for {owner_id} state={tx.state}")
        if tx_type == TransactionType.OUTBOUND:
            if ref_id.startswith((LIQUIDITY_DEPOSIT_PREFIX, LIQUIDITY_WITHDRAW_PREFIX)):
                self._handle_liquidity_execution(owner_id, tx)
            else:
                self._handle_outbound(owner_id, tx)
        elif tx_type == TransactionType.CONTRACT_EXECUTION:
            self._handle_liquidity_execution(owner_id, tx)
        else:
            self._handle_inbound(owner_id, tx)

    def _token_info(self, token_id: str | None) -> TokenInfo:
        if not token_id:
            return TokenInfo()
        return self.signer.get_token(token_id)

    def _is_settlement_asset(self, symbol: str | None) -> bool:
        return (symbol or "").upper() == self.settings.settlement_symbol.upper()

    # --- Outbound ----------------------------------------------------------

    def _handle_outbound(self, owner_id: str, tx: ExternalTransaction) -> None:
        ref_id = tx.ref_id or ""
        kind = next((k for prefix, k in OUTBOUND_KIND_BY_PREFIX.items() if ref_id.startswith(prefix)), None)
        if kind is None:
            return
        token = self._token_info(tx.token_id)
        self.ledger.upsert(
            owner_id,
            tx.id,
            LedgerEntry(
                kind=kind,
                status=_status_for_bucket(tx.bucket, LedgerStatus.CONFIRMED),
                amount=tx.amount,
                symbol=token.symbol,
                chain=normalize_chain(tx.blockchain) or tx.blockchain,
                tx_hash=tx.tx_hash,
                related_id=tx.id,
                metadata={
                    "direction": "OUTGOING",
                    "recipient_address": tx.destination_address,
                    "ref_id": ref_id or None,
                },
            ),
        )

    # --- Liquidity / contract execution --------------------------------------

    def _handle_liquidity_execution(self, owner_id: str, tx: ExternalTransaction) -> None:
        ref_id = tx.ref_id or ""
        bucket = tx.bucket
        chain = normalize_chain(tx.blockchain)
        is_deposit = ref_id.startswith(LIQUIDITY_DEPOSIT_PREFIX)
        is_withdraw = ref_id.startswith(LIQUIDITY_WITHDRAW_PREFIX)

        if is_deposit or is_withdraw:
            position = self.positions.find_by_pending_tx(owner_id, tx.id) or {}
            amount_field = "last_deposit_amount" if is_deposit else "last_withdraw_amount"
            action = "deposit" if is_deposit else "withdraw"
            self.ledger.upsert(
                owner_id,
                f"earn:liquidity:{action}:{tx.id}",
                LedgerEntry(
                    kind=LedgerKind.EARN,
                    status=_status_for_bucket(bucket, LedgerStatus.COMPLETED),
                    amount=position.get(amount_field) or "0",
                    symbol=self.settings.settlement_symbol,
                    chain=chain or self.settings.settlement_chain,
                    tx_hash=tx.tx_hash,
                    related_id=tx.id,
                    metadata={"action": "ADD_LIQUIDITY" if is_deposit else "WITHDRAW_LIQUIDITY"},
                ),
            )
        self.positions.record_execution(
            owner_id, tx.id, state=tx.state, tx_hash=tx.tx_hash, failed=bucket == TxStateBucket.FAILED
        )

        if bucket == TxStateBucket.DONE:
            self._attach_minted_token_id(owner_id, tx, chain)

    def _attach_minted_token_id(self, owner_id: str, tx: ExternalTransaction, chain: str | None) -> None:
        """Best-effort: copy the minted position NFT id onto the pending position."""
        if not tx.tx_hash or not chain:
            return
        try:
            token_id = extract_minted_token_id(self.chain_reader.get_receipt_logs(chain, tx.tx_hash))
            if token_id is None:
                return
            updated = self.positions.attach_token_id(owner_id, tx.id, token_id)
            logger.info(f"Attached token id {token_id} to {updated} position(s) for {owner_id} (tx {tx.id})")
        except Exception:
            logger.exception(f"Failed to attach minted token id for transaction {tx.id}")

    # --- Inbound -----------------------------------------------------------

    def _handle_inbound(self, owner_id: str, tx: ExternalTransaction) -> None:
        token = self._token_info(tx.token_id)
        state = normalize_tx_state(tx.state)
        bucket = tx.bucket
        amount = tx.amount
        chain = normalize_chain(tx.blockchain)
        hub = self.settings.settlement_chain
        is_hub = chain == hub
        settlement_asset = self._is_settlement_asset(token.symbol)

        # A bridged deposit lands on the hub as a new inbound tx; fold it into the original.
        deposit_id = tx.id
        if is_hub and tx.tx_hash:
            deposit_id = self.deposits.find_by_bridge_destination_tx_hash(owner_id, tx.tx_hash) or tx.id

        self.deposits.upsert(
            owner_id,
            deposit_id,
            wallet_id=tx.wallet_id,
            chain=chain or tx.blockchain,
            tx_hash=tx.tx_hash,
            state=state,
            symbol=token.symbol,
            token_address=token.token_address,
            decimals=token.decimals,
            amount=amount,
        )
        self.ledger.upsert(
            owner_id,
            deposit_id,
            LedgerEntry(
                kind=LedgerKind.DEPOSIT,
                status=_status_for_bucket(bucket, LedgerStatus.CONFIRMED),
                amount=amount,
                symbol=token.symbol,
                chain=chain or tx.blockchain,
                tx_hash=tx.tx_hash,
                related_id=tx.id,
            ),
        )

        if settlement_asset:
            if is_hub:
                self._settle_on_hub(owner_id, deposit_id, tx, state, bucket)
            elif bucket == TxStateBucket.DONE:
                self._start_bridge(owner_id, tx, chain, amount, token.symbol)
        elif bucket == TxStateBucket.DONE and self.settings.enable_non_usdc_swaps:
            try:
                self.swaps.enqueue_swap_for_deposit(
                    owner_id=owner_id,
                    deposit_tx_id=tx.id,
                    wallet_id=tx.wallet_id,
                    chain=chain,
                    token_symbol=token.symbol,
                    token_address=token.token_address,
                    token_decimals=token.decimals,
                    amount=amount,
                )
            except Exception:
                logger.exception(
                    f"Failed to enqueue swap for deposit {tx.id} owner={owner_id} chain={chain} "
                    f"token={token.symbol or token.token_address} amount={amount}"
                )

    def _settle_on_hub(
        self, owner_id: str, deposit_id: str, tx: ExternalTransaction, state: str, bucket: TxStateBucket
    ) -> None:
        if bucket == TxStateBucket.DONE:
            self.alerts.clear_inbound_alert(owner_id)
            self.balances.recompute(owner_id)
        elif bucket == TxStateBucket.PENDING:
            record = self.ledger.get(owner_id, deposit_id)
            if record is not None and record.status in SETTLED_LEDGER_STATUSES:
                logger.info(f"Deposit {deposit_id} already settled; ignoring stale {state} observation")
                return
            self.alerts.upsert_inbound_alert(
                owner_id,
                tx_id=deposit_id,
                state=state,
                chain=self.settings.settlement_chain,
                amount=tx.amount,
                symbol=self.settings.settlement_symbol,
            )

    def _start_bridge(
        self, owner_id: str, tx: ExternalTransaction, chain: str | None, amount: str, symbol: str | None
    ) -> None:
        hub = self.settings.settlement_chain
        if chain is None:
            logger.warning(f"Skipping auto-bridge for unknown inbound chain {tx.blockchain!r} (tx {tx.id})")
            return
        if not self.deposits.claim_bridge(owner_id, tx.id, chain, hub):
            logger.info(f"Bridge for deposit {tx.id} already claimed")
            return

        self.ledger.upsert(
            owner_id,
            tx.id,
            LedgerEntry(
                kind=LedgerKind.DEPOSIT,
                status=LedgerStatus.BRIDGING,
                amount=amount,
                symbol=symbol,
                chain=hub,
                source_chain=chain,
                destination_chain=hub,
                related_id=tx.id,
                metadata={"bridged": True},
            ),
        )
        job = BridgeToHubJob(
            owner_id=owner_id, tx_id=tx.id, wallet_id=tx.wallet_id, source_chain=chain, amount=amount, symbol=symbol
        )
        self.dispatcher.enqueue(
            BRIDGE_TO_HUB,
            job.model_dump(),
            job_id=bridge_job_id(tx.id),
            fallback=lambda: self.bridges.process_bridge_to_hub_job(job),
        )
