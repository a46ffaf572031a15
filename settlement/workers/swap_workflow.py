"""Swap workflow: convert a deposited token into the settlement asset, one step per call.

States advance QUEUED -> APPROVAL_REQUIRED -> APPROVAL_PENDING -> SWAP_READY ->
SWAP_PENDING -> COMPLETED, with FAILED reachable from any of them. Each call
to :meth:`SwapWorkflow.advance` performs at most one transition so the caller's
lease is held only for one external round trip. A step whose external
transaction id is already recorded is polled, never resubmitted.
"""

from settlement.core.chains import EVM_CHAIN_ID_BY_CHAIN, USDC_TOKEN_ADDRESS_BY_CHAIN, is_evm_chain, same_address
from settlement.core.errors import WorkflowInputError
from settlement.core.models import (
    JobStatus,
    LedgerEntry,
    LedgerKind,
    LedgerStatus,
    SwapJob,
    TxStateBucket,
    classify_tx_state,
)
from settlement.core.settings import Settings
from settlement.core.utils import from_base_units, get_logger, parse_int_maybe_hex, to_base_units
from settlement.services.accounts import BalanceService, WalletDirectory
from settlement.services.base import CustodialSigner, RouteAggregator
from settlement.services.job_store import JobStore
from settlement.services.ledger import LedgerWriter
from settlement.services.queue_service import SWAP_PROCESS, WorkDispatcher

logger = get_logger("settlement.swap")

NATIVE_DECIMALS = 18
DEFAULT_TOKEN_DECIMALS = 18
APPROVE_SIGNATURE = "approve(address,uint256)"


def swap_ledger_id(deposit_tx_id: str) -> str:
    """Ledger record id of the swap triggered by a deposit."""
    return f"swap:{deposit_tx_id}"


class SwapWorkflow:
    """State machine that advances swap jobs."""

    def __init__(
        self,
        settings: Settings,
        jobs: JobStore,
        ledger: LedgerWriter,
        signer: CustodialSigner,
        aggregator: RouteAggregator,
        wallets: WalletDirectory,
        balances: BalanceService,
        dispatcher: WorkDispatcher,
    ) -> None:
        """Initialize with collaborators."""
        self.settings = settings
        self.jobs = jobs
        self.ledger = ledger
        self.signer = signer
        self.aggregator = aggregator
        self.wallets = wallets
        self.balances = balances
        self.dispatcher = dispatcher

    def is_chain_disabled(self, chain: str | None) -> bool:
        """Return True if auto-swap is switched off for ``chain``."""
        return chain in set(self.settings.swap_disabled_chains)

    def is_lp_token(self, token_address: str | None) -> bool:
        """Return True if the token is one of the configured liquidity-pool tokens."""
        return any(same_address(token_address, lp) for lp in self.settings.lp_token_addresses)

    # --- Enqueue -----------------------------------------------------------

    def enqueue_swap_for_deposit(
        self,
        *,
        owner_id: str,
        deposit_tx_id: str,
        wallet_id: str,
        chain: str | None,
        token_symbol: str | None,
        token_address: str | None,
        token_decimals: int | None,
        amount: str,
    ) -> bool:
        """Create the swap job for a deposit unless it exists or is excluded; True if created."""
        if self.is_chain_disabled(chain):
            logger.info(f"Auto-swap disabled on chain {chain}; skipping deposit {deposit_tx_id}")
            return False
        if not is_evm_chain(chain) or not token_address:
            return False
        if (token_symbol or "").upper() == self.settings.settlement_symbol.upper():
            return False
        if self.is_lp_token(token_address):
            logger.info(f"Skipping auto-swap for LP token {token_address} (deposit {deposit_tx_id})")
            return False

        decimals = token_decimals if token_decimals is not None else DEFAULT_TOKEN_DECIMALS
        job = SwapJob(
            id=deposit_tx_id,
            owner_id=owner_id,
            wallet_id=wallet_id,
            chain=chain,
            chain_id=EVM_CHAIN_ID_BY_CHAIN[chain],
            from_token_address=token_address,
            from_token_symbol=token_symbol,
            from_token_decimals=decimals,
            from_amount=amount,
            from_amount_base_units=str(to_base_units(amount, decimals)),
            to_token_address=USDC_TOKEN_ADDRESS_BY_CHAIN[chain],
            to_token_symbol=self.settings.settlement_symbol,
        )
        if not self.jobs.create_if_absent(job):
            logger.info(f"Swap job for deposit {deposit_tx_id} already exists")
            return False

        self._record_ledger(job, LedgerStatus.PENDING)
        # No inline fallback: the interval driver picks up QUEUED jobs.
        self.dispatcher.enqueue(SWAP_PROCESS, {"job_id": job.id}, job_id=swap_ledger_id(job.id), group_id=job.id)
        logger.info(
            f"Enqueued same-chain swap to {job.to_token_symbol}: deposit={deposit_tx_id} owner={owner_id} "
            f"chain={chain} token={token_symbol or token_address} amount={amount}"
        )
        return True

    # --- Advance -----------------------------------------------------------

    def advance(self, job: SwapJob) -> JobStatus:
        """Perform at most one transition for ``job`` and return its resulting status.

        Input errors fail the job here. Any other exception propagates to the
        driver, which records the failure.
        """
        if job.status.is_terminal:
            return job.status
        if self.is_chain_disabled(job.chain):
            return self.fail(job, f"Auto-swap disabled on chain {job.chain}.")
        step = {
            JobStatus.QUEUED: self._request_route,
            JobStatus.APPROVAL_REQUIRED: self._submit_approval,
            JobStatus.APPROVAL_PENDING: self._poll_approval,
            JobStatus.SWAP_READY: self._submit_swap,
            JobStatus.SWAP_PENDING: self._poll_swap,
        }[job.status]
        try:
            return step(job)
        except WorkflowInputError as exc:
            return self.fail(job, str(exc))

    def fail(self, job: SwapJob, reason: str) -> JobStatus:
        """Move the job to FAILED and mirror the reason into the ledger."""
        logger.error(f"Swap job {job.id} failed in {job.status}: {reason}")
        self.jobs.update(job.id, status=JobStatus.FAILED, error=reason)
        self._record_ledger(job, LedgerStatus.FAILED, error=reason)
        return JobStatus.FAILED

    def _move(self, job: SwapJob, status: JobStatus, **fields: object) -> JobStatus:
        self.jobs.update(job.id, status=status, **fields)
        logger.info(f"Swap job {job.id}: {job.status} -> {status}")
        return status

    def _request_route(self, job: SwapJob) -> JobStatus:
        quote = self.aggregator.get_route(
            job.chain_id,
            job.chain_id,
            job.from_token_address,
            job.to_token_address,
            job.from_amount_base_units,
        )
        next_status = JobStatus.APPROVAL_REQUIRED if quote.approval_address else JobStatus.SWAP_READY
        return self._move(job, next_status, route=quote.artifact, approval_address=quote.approval_address)

    def _submit_approval(self, job: SwapJob) -> JobStatus:
        if job.approval_tx_id:
            return self._move(job, JobStatus.APPROVAL_PENDING)
        if not job.approval_address:
            return self._move(job, JobStatus.SWAP_READY)
        approval_tx_id = self.signer.submit_contract_execution(
            job.wallet_id,
            job.from_token_address,
            ref_id=f"approve:{job.id}",
            abi_function_signature=APPROVE_SIGNATURE,
            abi_parameters=[job.approval_address, job.from_amount_base_units],
        )
        return self._move(job, JobStatus.APPROVAL_PENDING, approval_tx_id=approval_tx_id)

    def _poll_approval(self, job: SwapJob) -> JobStatus:
        if not job.approval_tx_id:
            msg = "Missing approval transaction id."
            raise WorkflowInputError(msg)
        tx = self.signer.get_transaction(job.approval_tx_id)
        self.jobs.update(job.id, last_tx_state=tx.state)
        bucket = classify_tx_state(tx.state)
        if bucket == TxStateBucket.FAILED:
            return self.fail(job, f"Approval failed: {tx.state}")
        if bucket == TxStateBucket.PENDING:
            return job.status
        return self._move(job, JobStatus.SWAP_READY)

    def _submit_swap(self, job: SwapJob) -> JobStatus:
        if job.swap_tx_id:
            return self._move(job, JobStatus.SWAP_PENDING)
        if job.route is None:
            msg = "Missing swap route."
            raise WorkflowInputError(msg)
        address = self.wallets.address_for_wallet(job.wallet_id)
        if not address:
            msg = f"Missing address for wallet {job.wallet_id}."
            raise WorkflowInputError(msg)

        request = self.aggregator.get_executable_transaction(job.route, address, address)
        if not request.to or not request.data:
            msg = "Aggregator did not return a transaction request (to/data)."
            raise WorkflowInputError(msg)
        value = parse_int_maybe_hex(request.value)
        swap_tx_id = self.signer.submit_contract_execution(
            job.wallet_id,
            request.to,
            ref_id=swap_ledger_id(job.id),
            call_data=request.data,
            amount=from_base_units(value, NATIVE_DECIMALS) if value else None,
        )
        return self._move(job, JobStatus.SWAP_PENDING, swap_tx_id=swap_tx_id)

    def _poll_swap(self, job: SwapJob) -> JobStatus:
        if not job.swap_tx_id:
            msg = "Missing swap transaction id."
            raise WorkflowInputError(msg)
        tx = self.signer.get_transaction(job.swap_tx_id)
        self.jobs.update(job.id, last_tx_state=tx.state)
        bucket = classify_tx_state(tx.state)
        if bucket == TxStateBucket.FAILED:
            return self.fail(job, f"Swap failed: {tx.state}")
        if bucket == TxStateBucket.PENDING:
            return job.status

        status = self._move(job, JobStatus.COMPLETED)
        self._record_ledger(job, LedgerStatus.COMPLETED, tx_hash=tx.tx_hash)
        try:
            self.balances.recompute(job.owner_id)
        except Exception:
            logger.exception(f"Balance recompute failed for {job.owner_id} after swap {job.id}")
        return status

    def _record_ledger(
        self, job: SwapJob, status: LedgerStatus, *, tx_hash: str | None = None, error: str | None = None
    ) -> None:
        metadata = {
            "from_token_address": job.from_token_address,
            "from_token_symbol": job.from_token_symbol,
            "to_token_address": job.to_token_address,
            "to_token_symbol": job.to_token_symbol,
        }
        if error is not None:
            metadata["error"] = error
        self.ledger.upsert(
            job.owner_id,
            swap_ledger_id(job.id),
            LedgerEntry(
                kind=LedgerKind.SWAP,
                status=status,
                amount=job.from_amount,
                symbol=job.from_token_symbol,
                chain=job.chain,
                tx_hash=tx_hash,
                related_id=job.id,
                metadata=metadata,
            ),
        )
