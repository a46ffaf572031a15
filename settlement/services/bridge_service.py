"""Bridge-to-hub job: move a confirmed settlement-asset deposit onto the settlement chain.

The job is keyed by the deposit transaction id. The reconciler claims the
deposit's bridge sub-state (PENDING) before dispatching, and the job itself
moves it PENDING -> IN_PROGRESS before calling the provider, so a redelivered
message never bridges twice. A FAILED bridge may be claimed again by a later
observation, with a new idempotency key.
"""

import json
from typing import Any

import httpx
from pydantic import BaseModel

from settlement.core.chains import normalize_chain
from settlement.core.models import BridgeStatus, LedgerEntry, LedgerKind, LedgerStatus
from settlement.core.settings import Settings
from settlement.core.utils import get_logger
from settlement.services.accounts import AlertStore, BalanceService, WalletDirectory
from settlement.services.base import BridgeProvider
from settlement.services.circle_client import idempotency_key_for
from settlement.services.deposits import DepositStore
from settlement.services.http import build_client, request_with_retry
from settlement.services.ledger import LedgerWriter

logger = get_logger("settlement.bridge")

IDEMPOTENCY_HEADER = "Idempotency-Key"


def bridge_idempotency_key(deposit_tx_id: str, attempt: int) -> str:
    """Stable key for one bridge attempt of a deposit; a re-claimed bridge gets a new one."""
    return idempotency_key_for(f"bridge:{deposit_tx_id}:{attempt}")


class BridgeToHubJob(BaseModel):
    """Queue payload for a bridge-to-hub job."""

    owner_id: str
    tx_id: str
    wallet_id: str | None = None
    source_chain: str
    amount: str
    symbol: str | None = None


class HttpBridgeProvider(BridgeProvider):
    """Bridge provider that delegates to an HTTP bridge service."""

    def __init__(self, settings: Settings, client: httpx.Client | None = None) -> None:
        """Initialize with settings and an optional preconfigured HTTP client."""
        self.settings = settings
        self.client = client or build_client(settings.bridge_api_url or "", settings.http_timeout_seconds)

    def bridge(
        self,
        source_chain: str,
        destination_chain: str,
        source_address: str,
        destination_address: str,
        amount: str,
        *,
        idempotency_key: str | None = None,
    ) -> dict[str, Any]:
        """POST the transfer to the bridge service and return its JSON result."""
        body = {
            "sourceChain": source_chain,
            "destinationChain": destination_chain,
            "sourceAddress": source_address,
            "destinationAddress": destination_address,
            "amount": amount,
        }
        # Without a key a retried POST could move funds twice.
        headers = {IDEMPOTENCY_HEADER: idempotency_key} if idempotency_key else None
        retries = self.settings.http_retries if idempotency_key else 0
        response = request_with_retry(self.client, "POST", "/bridge", json=body, headers=headers, retries=retries)
        return response.json()


def bridge_destination_tx_hash(result: dict[str, Any]) -> str | None:
    """Find the destination-chain tx hash in a bridge result (the ``mint`` step)."""
    steps = result.get("steps") or (result.get("result") or {}).get("steps") or []
    if not isinstance(steps, list):
        return None
    for step in steps:
        if isinstance(step, dict) and step.get("name") == "mint":
            tx_hash = step.get("txHash") or (step.get("data") or {}).get("txHash")
            return tx_hash if isinstance(tx_hash, str) else None
    return None


class BridgeService:
    """Runs bridge-to-hub jobs and records their outcome on the deposit and ledger."""

    def __init__(
        self,
        settings: Settings,
        provider: BridgeProvider,
        deposits: DepositStore,
        ledger: LedgerWriter,
        wallets: WalletDirectory,
        alerts: AlertStore,
        balances: BalanceService,
    ) -> None:
        """Initialize with collaborators."""
        self.settings = settings
        self.provider = provider
        self.deposits = deposits
        self.ledger = ledger
        self.wallets = wallets
        self.alerts = alerts
        self.balances = balances

    def process_bridge_to_hub_job(self, job: BridgeToHubJob) -> None:
        """Bridge the deposit to the settlement chain; failures are recorded, not raised."""
        hub = self.settings.settlement_chain
        source_chain = normalize_chain(job.source_chain)
        attempt = self.deposits.start_bridge(job.owner_id, job.tx_id)
        if attempt is None:
            logger.info(f"Bridge for deposit {job.tx_id} is not awaiting a run; skipping job")
            return
        logger.info(f"Bridge job start tx={job.tx_id} owner={job.owner_id} from={job.source_chain} amount={job.amount}")
        try:
            if source_chain is None:
                msg = f"Unsupported source chain for bridge job: {job.source_chain}"
                raise ValueError(msg)
            if source_chain == hub:
                self.deposits.set_bridge_state(
                    job.owner_id,
                    job.tx_id,
                    BridgeStatus.SKIPPED,
                    source_chain=source_chain,
                    destination_chain=hub,
                    error="Source chain is already hub chain",
                )
                return

            source = self.wallets.wallet_for_chain(job.owner_id, source_chain)
            destination = self.wallets.wallet_for_chain(job.owner_id, hub)
            if source is None or destination is None:
                msg = "Missing source or hub wallet address for user."
                raise ValueError(msg)

            result = self.provider.bridge(
                source_chain,
                hub,
                source["address"],
                destination["address"],
                job.amount,
                idempotency_key=bridge_idempotency_key(job.tx_id, attempt),
            )
            safe_result = json.loads(json.dumps(result, default=str))
            self.deposits.set_bridge_state(
                job.owner_id,
                job.tx_id,
                BridgeStatus.COMPLETED,
                source_chain=source_chain,
                destination_chain=hub,
                destination_tx_hash=bridge_destination_tx_hash(result),
                result=safe_result,
            )
            self.ledger.upsert(
                job.owner_id,
                job.tx_id,
                LedgerEntry(
                    kind=LedgerKind.DEPOSIT,
                    status=LedgerStatus.COMPLETED,
                    amount=job.amount,
                    symbol=job.symbol,
                    chain=hub,
                    source_chain=source_chain,
                    destination_chain=hub,
                    related_id=job.tx_id,
                    metadata={"bridged": True},
                ),
            )
            self.alerts.upsert_inbound_alert(
                job.owner_id, tx_id=job.tx_id, state="BRIDGED", chain=hub, amount=job.amount, symbol=job.symbol
            )
            self.balances.recompute(job.owner_id)
        except Exception as exc:
            logger.exception(f"Failed to bridge deposit {job.tx_id} for {job.owner_id} to hub chain")
            self.deposits.set_bridge_state(
                job.owner_id,
                job.tx_id,
                BridgeStatus.FAILED,
                source_chain=source_chain or job.source_chain,
                destination_chain=hub,
                error=str(exc),
            )
            self.ledger.upsert(
                job.owner_id,
                job.tx_id,
                LedgerEntry(
                    kind=LedgerKind.DEPOSIT,
                    status=LedgerStatus.FAILED,
                    amount=job.amount,
                    symbol=job.symbol,
                    chain=hub,
                    source_chain=source_chain or job.source_chain,
                    destination_chain=hub,
                    related_id=job.tx_id,
                    metadata={"bridged": True, "error": str(exc)},
                ),
            )
