"""On-chain reads over JSON-RPC and receipt log decoding."""

from typing import Any

import httpx

from settlement.core.errors import ExternalServiceError, WorkflowInputError
from settlement.core.settings import Settings
from settlement.services.base import ChainReader
from settlement.services.http import build_client, request_with_retry

# keccak256("Transfer(address,address,uint256)")
TRANSFER_EVENT_TOPIC = "0xddf252ad1be2c89b69c2b068fc378daa952ba7f163c4a11628f55a4df523b3ef"


def extract_minted_token_id(logs: list[dict[str, Any]], contract_address: str | None = None) -> str | None:
    """Return the id of the first ERC-721 token minted in ``logs``, as a decimal string.

    A mint is a ``Transfer`` with four topics whose ``from`` is the zero
    address. When ``contract_address`` is given, only its logs are considered.
    """
    for log in logs:
        topics = [str(t).lower() for t in log.get("topics") or []]
        if len(topics) != 4 or topics[0] != TRANSFER_EVENT_TOPIC:
            continue
        if int(topics[1], 16) != 0:
            continue
        if contract_address and (log.get("address") or "").lower() != contract_address.lower():
            continue
        return str(int(topics[3], 16))
    return None


class JsonRpcChainReader(ChainReader):
    """Chain reader that calls ``eth_getTransactionReceipt`` on a per-chain RPC URL."""

    def __init__(self, settings: Settings, client: httpx.Client | None = None) -> None:
        """Initialize with settings and an optional preconfigured HTTP client."""
        self.settings = settings
        self.client = client or build_client("", settings.http_timeout_seconds)

    def get_receipt_logs(self, chain: str, tx_hash: str) -> list[dict[str, Any]]:
        """Return the receipt logs for ``tx_hash``; empty while the receipt is unavailable."""
        url = self.settings.chain_rpc_urls.get(chain)
        if not url:
            msg = f"No RPC URL configured for chain {chain}."
            raise WorkflowInputError(msg)
        body = {"jsonrpc": "2.0", "id": 1, "method": "eth_getTransactionReceipt", "params": [tx_hash]}
        payload = request_with_retry(self.client, "POST", url, json=body, retries=self.settings.http_retries).json()
        if payload.get("error"):
            msg = f"eth_getTransactionReceipt failed on {chain}: {payload['error']}"
            raise ExternalServiceError(msg)
        receipt = payload.get("result") or {}
        return receipt.get("logs") or []
