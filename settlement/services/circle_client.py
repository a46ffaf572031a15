"""CircleSigner: Circle developer-controlled wallets adapter for the custodial signer interface."""

import base64
import uuid
from typing import Any

import httpx
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import padding, rsa

from settlement.core.errors import ExternalServiceError, WorkflowInputError
from settlement.core.models import ExternalTransaction, TokenInfo
from settlement.core.settings import Settings
from settlement.core.utils import get_logger
from settlement.services.base import CustodialSigner
from settlement.services.http import build_client, request_with_retry

logger = get_logger("settlement.circle")

IDEMPOTENCY_NAMESPACE = uuid.UUID("6f1c3b7e-2d4a-4f5e-9a8b-1c2d3e4f5a6b")


def idempotency_key_for(ref_id: str) -> str:
    """Derive a stable UUID idempotency key from a step reference id."""
    return str(uuid.uuid5(IDEMPOTENCY_NAMESPACE, ref_id))


class CircleSigner(CustodialSigner):
    """Custodial signer backed by the Circle W3S REST API."""

    def __init__(self, settings: Settings, client: httpx.Client | None = None) -> None:
        """Initialize with settings and an optional preconfigured HTTP client."""
        self.settings = settings
        self.client = client or build_client(
            settings.circle_base_url,
            settings.http_timeout_seconds,
            headers={"Authorization": f"Bearer {settings.circle_api_key}"},
        )
        self._entity_public_key: rsa.RSAPublicKey | None = None

    def _get(self, url: str, params: dict[str, Any] | None = None) -> dict[str, Any]:
        response = request_with_retry(self.client, "GET", url, params=params, retries=self.settings.http_retries)
        return response.json().get("data") or {}

    def _entity_secret_ciphertext(self) -> str:
        """Encrypt the entity secret for one request; Circle rejects reused ciphertexts."""
        if not self.settings.circle_entity_secret:
            msg = "Missing Circle config. Set CIRCLE_ENTITY_SECRET."
            raise WorkflowInputError(msg)
        if self._entity_public_key is None:
            pem = self._get("/v1/w3s/config/entity/publicKey").get("publicKey")
            if not pem:
                msg = "Circle did not return an entity public key."
                raise ExternalServiceError(msg)
            self._entity_public_key = serialization.load_pem_public_key(pem.encode())
        ciphertext = self._entity_public_key.encrypt(
            bytes.fromhex(self.settings.circle_entity_secret),
            padding.OAEP(mgf=padding.MGF1(algorithm=hashes.SHA256()), algorithm=hashes.SHA256(), label=None),
        )
        return base64.b64encode(ciphertext).decode()

    def submit_contract_execution(
        self,
        wallet_id: str,
        contract_address: str,
        *,
        ref_id: str,
        call_data: str | None = None,
        abi_function_signature: str | None = None,
        abi_parameters: list[Any] | None = None,
        amount: str | None = None,
    ) -> str:
        """Submit a contract execution and return Circle's transaction id."""
        body: dict[str, Any] = {
            "idempotencyKey": idempotency_key_for(ref_id),
            "entitySecretCiphertext": self._entity_secret_ciphertext(),
            "walletId": wallet_id,
            "contractAddress": contract_address,
            "feeLevel": self.settings.circle_fee_level,
            "refId": ref_id,
        }
        if call_data:
            body["callData"] = call_data
        else:
            body["abiFunctionSignature"] = abi_function_signature
            body["abiParameters"] = abi_parameters or []
        if amount:
            body["amount"] = amount
        logger.info(f"Submitting contract execution refId={ref_id} wallet={wallet_id} contract={contract_address}")
        response = request_with_retry(
            self.client,
            "POST",
            "/v1/w3s/developer/transactions/contractExecution",
            json=body,
            retries=self.settings.http_retries,
        )
        data = response.json().get("data") or {}
        tx_id = data.get("id") or data.get("transactionId")
        if not tx_id:
            msg = "Circle did not return transaction id."
            raise ExternalServiceError(msg)
        return tx_id

    def get_transaction(self, tx_id: str) -> ExternalTransaction:
        """Look up a transaction by Circle id."""
        transaction = self._get(f"/v1/w3s/transactions/{tx_id}").get("transaction")
        if not transaction:
            msg = f"Circle returned no transaction for {tx_id}."
            raise ExternalServiceError(msg)
        return ExternalTransaction.model_validate(transaction)

    def get_token(self, token_id: str) -> TokenInfo:
        """Resolve token symbol, address and decimals."""
        token = self._get(f"/v1/w3s/tokens/{token_id}").get("token") or {}
        return TokenInfo(
            symbol=token.get("symbol"),
            token_address=token.get("tokenAddress"),
            decimals=token.get("decimals"),
        )

    def get_wallet_token_balance(self, wallet_id: str, token_address: str) -> str:
        """Return the wallet's balance of ``token_address`` as a decimal string."""
        data = self._get(
            f"/v1/w3s/wallets/{wallet_id}/balances",
            params={"tokenAddress": token_address, "includeAll": "true"},
        )
        for entry in data.get("tokenBalances") or []:
            address = ((entry.get("token") or {}).get("tokenAddress") or "").lower()
            if address == token_address.lower():
                return entry.get("amount") or "0"
        return "0"

    def get_notification_public_key(self, key_id: str) -> str:
        """Return the base64 DER public key that signs webhook notifications."""
        public_key = self._get(f"/v2/notifications/publicKey/{key_id}").get("publicKey")
        if not public_key:
            msg = "Missing publicKey from Circle."
            raise ExternalServiceError(msg)
        return public_key
