"""Shared fixtures: file-backed SQLite, in-process fakes for every external collaborator."""

import base64
from typing import Any

import pytest
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import ec

from settlement.core.models import ExecutableTransaction, ExternalTransaction, RouteArtifact, RouteQuote, TokenInfo
from settlement.core.settings import Settings
from settlement.services.base import BridgeProvider, ChainReader, CustodialSigner, RouteAggregator
from settlement.services.container import Services

OWNER = "owner-1"
BASE_WALLET = "wallet-base"
HUB_WALLET = "wallet-arb"
OWNER_ADDRESS = "0x00000000000000000000000000000000000000aa"
WETH = "0x4200000000000000000000000000000000000006"
SPENDER = "0x1231deb6f5749ef6ce6943a275a1d3e7486f4eae"


class FakeSigner(CustodialSigner):
    """Custodial signer that keeps transactions in memory; same ref id returns the same tx."""

    def __init__(self) -> None:
        self.transactions: dict[str, ExternalTransaction] = {}
        self.submissions: list[dict[str, Any]] = []
        self.tokens: dict[str, TokenInfo] = {}
        self.balances: dict[str, str] = {}
        self.public_keys: dict[str, str] = {}
        self.lookups: list[str] = []
        self._by_ref: dict[str, str] = {}

    def submit_contract_execution(self, wallet_id: str, contract_address: str, *, ref_id: str, **kwargs: Any) -> str:
        if ref_id in self._by_ref:
            return self._by_ref[ref_id]
        tx_id = f"circle-tx-{len(self.submissions) + 1}"
        self.submissions.append({"wallet_id": wallet_id, "contract_address": contract_address, "ref_id": ref_id, **kwargs})
        self._by_ref[ref_id] = tx_id
        self.transactions[tx_id] = ExternalTransaction(
            id=tx_id, transaction_type="CONTRACT_EXECUTION", state="INITIATED", wallet_id=wallet_id, ref_id=ref_id
        )
        return tx_id

    def set_state(self, tx_id: str, state: str, tx_hash: str | None = None) -> None:
        self.transactions[tx_id] = self.transactions[tx_id].model_copy(update={"state": state, "tx_hash": tx_hash})

    def get_transaction(self, tx_id: str) -> ExternalTransaction:
        self.lookups.append(tx_id)
        return self.transactions[tx_id]

    def get_token(self, token_id: str) -> TokenInfo:
        return self.tokens.get(token_id, TokenInfo())

    def get_wallet_token_balance(self, wallet_id: str, token_address: str) -> str:
        return self.balances.get(wallet_id, "0")

    def get_notification_public_key(self, key_id: str) -> str:
        return self.public_keys[key_id]


class FakeAggregator(RouteAggregator):
    """Aggregator returning a fixed route and transaction."""

    def __init__(self, approval_address: str | None = SPENDER) -> None:
        self.approval_address = approval_address
        self.route_calls: list[tuple] = []
        self.tx_calls: list[tuple] = []
        self.transaction = ExecutableTransaction(to="0xrouter", data="0xdeadbeef", value="0")

    def get_route(self, from_chain_id: int, to_chain_id: int, from_token_address: str, to_token_address: str,
                  from_amount_base_units: str) -> RouteQuote:
        self.route_calls.append((from_chain_id, to_chain_id, from_token_address, to_token_address, from_amount_base_units))
        return RouteQuote(artifact=RouteArtifact(raw='{"tool": "fake", "id": "step-1"}'),
                          approval_address=self.approval_address)

    def get_executable_transaction(self, route: RouteArtifact, from_address: str, to_address: str) -> ExecutableTransaction:
        self.tx_calls.append((route.raw, from_address, to_address))
        return self.transaction


class FakeBridgeProvider(BridgeProvider):
    """Bridge provider that records calls and reports a mint on the destination chain."""

    def __init__(self) -> None:
        self.calls: list[tuple] = []
        self.idempotency_keys: list[str | None] = []
        self.error: Exception | None = None

    def bridge(self, source_chain: str, destination_chain: str, source_address: str, destination_address: str,
               amount: str, *, idempotency_key: str | None = None) -> dict[str, Any]:
        self.calls.append((source_chain, destination_chain, source_address, destination_address, amount))
        self.idempotency_keys.append(idempotency_key)
        if self.error is not None:
            raise self.error
        return {"state": "success", "steps": [{"name": "burn", "txHash": "0xburn"}, {"name": "mint", "txHash": "0xminted"}]}


class FakeChainReader(ChainReader):
    """Chain reader serving canned receipt logs."""

    def __init__(self) -> None:
        self.logs: dict[str, list[dict[str, Any]]] = {}
        self.error: Exception | None = None

    def get_receipt_logs(self, chain: str, tx_hash: str) -> list[dict[str, Any]]:
        if self.error is not None:
            raise self.error
        return self.logs.get(tx_hash, [])


@pytest.fixture
def settings(tmp_path: Any) -> Settings:
    """Settings pointing at a file-backed SQLite database in tmp_path."""
    return Settings(
        database_url=f"sqlite:///{tmp_path / 'settlement.db'}",
        log_file=None,
        sqs_queue_url=None,
        settlement_chain="ARB-SEPOLIA",
        enable_non_usdc_swaps=True,
        webhook_replay_window_seconds=0,
        http_retries=0,
    )


@pytest.fixture
def signer() -> FakeSigner:
    return FakeSigner()


@pytest.fixture
def aggregator() -> FakeAggregator:
    return FakeAggregator()


@pytest.fixture
def bridge_provider() -> FakeBridgeProvider:
    return FakeBridgeProvider()


@pytest.fixture
def chain_reader() -> FakeChainReader:
    return FakeChainReader()


@pytest.fixture
def services(
    settings: Settings,
    signer: FakeSigner,
    aggregator: FakeAggregator,
    bridge_provider: FakeBridgeProvider,
    chain_reader: FakeChainReader,
) -> Services:
    """A container wired to the fakes, with the owner's wallets registered."""
    container = Services.build(
        settings,
        signer=signer,
        aggregator=aggregator,
        bridge_provider=bridge_provider,
        chain_reader=chain_reader,
    )
    container.wallets.register_wallet(OWNER, BASE_WALLET, "BASE-SEPOLIA", OWNER_ADDRESS)
    container.wallets.register_wallet(OWNER, HUB_WALLET, "ARB-SEPOLIA", OWNER_ADDRESS)
    return container


@pytest.fixture
def webhook_key(signer: FakeSigner) -> ec.EllipticCurvePrivateKey:
    """An EC signing key whose public half the fake signer serves as key ``key-1``."""
    private_key = ec.generate_private_key(ec.SECP256R1())
    der = private_key.public_key().public_bytes(
        serialization.Encoding.DER, serialization.PublicFormat.SubjectPublicKeyInfo
    )
    signer.public_keys["key-1"] = base64.b64encode(der).decode()
    return private_key


def inbound(
    tx_id: str, state: str, token_id: str, chain: str, tx_hash: str | None = None, amount: str = "25"
) -> ExternalTransaction:
    """An INBOUND transaction into the owner's wallet on ``chain``."""
    return ExternalTransaction(
        id=tx_id,
        transaction_type="INBOUND",
        state=state,
        wallet_id=HUB_WALLET if chain == "ARB-SEPOLIA" else BASE_WALLET,
        token_id=token_id,
        amounts=[amount],
        tx_hash=tx_hash or f"0x{tx_id}",
        blockchain=chain,
    )
