"""Abstract interfaces for the external collaborators the workflow engine depends on.

Concrete adapters (Circle, LI.FI, JSON-RPC, bridge service) implement these;
tests substitute in-process fakes.
"""

from abc import ABC, abstractmethod
from typing import Any

from settlement.core.models import ExecutableTransaction, ExternalTransaction, RouteArtifact, RouteQuote, TokenInfo


class CustodialSigner(ABC):
    """Custodial wallet API that signs and submits transactions."""

    @abstractmethod
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
        """Submit a contract call and return the external transaction id.

        Implementations derive the idempotency key from ``ref_id`` so that a
        resubmission of the same step cannot create a second transaction.
        """

    @abstractmethod
    def get_transaction(self, tx_id: str) -> ExternalTransaction:
        """Look up a transaction by external id."""

    @abstractmethod
    def get_token(self, token_id: str) -> TokenInfo:
        """Resolve token metadata."""

    @abstractmethod
    def get_wallet_token_balance(self, wallet_id: str, token_address: str) -> str:
        """Return a wallet's balance of one token as a decimal string."""

    @abstractmethod
    def get_notification_public_key(self, key_id: str) -> str:
        """Return the base64 DER public key that signs webhook notifications."""


class RouteAggregator(ABC):
    """Swap/bridge aggregator that quotes routes and builds their transactions."""

    @abstractmethod
    def get_route(
        self,
        from_chain_id: int,
        to_chain_id: int,
        from_token_address: str,
        to_token_address: str,
        from_amount_base_units: str,
    ) -> RouteQuote:
        """Return the first route candidate for the conversion."""

    @abstractmethod
    def get_executable_transaction(
        self, route: RouteArtifact, from_address: str, to_address: str
    ) -> ExecutableTransaction:
        """Build the concrete call (to/data/value) for a previously quoted route."""


class BridgeProvider(ABC):
    """Cross-chain transfer of the settlement asset between an owner's wallets."""

    @abstractmethod
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
        """Move ``amount`` and return the provider's result document.

        Repeating a call with the same ``idempotency_key`` must not move funds twice.
        """


class ChainReader(ABC):
    """Read-only on-chain access."""

    @abstractmethod
    def get_receipt_logs(self, chain: str, tx_hash: str) -> list[dict[str, Any]]:
        """Return the log entries emitted by a mined transaction."""
