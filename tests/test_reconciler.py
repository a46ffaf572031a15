"""Reconciler tests: inbound settlement, bridging, swaps, duplicates, replay and liquidity executions."""

from datetime import UTC, datetime, timedelta

import pytest

from settlement.core.models import BridgeStatus, ExternalTransaction, LedgerKind, LedgerStatus, TokenInfo
from settlement.services.chain_reader import TRANSFER_EVENT_TOPIC
from settlement.services.container import Services
from tests.conftest import (
    HUB_WALLET,
    OWNER,
    OWNER_ADDRESS,
    WETH,
    FakeBridgeProvider,
    FakeChainReader,
    FakeSigner,
    inbound,
)


@pytest.fixture(autouse=True)
def tokens(signer: FakeSigner) -> None:
    signer.tokens["usdc-base"] = TokenInfo(symbol="USDC", token_address="0x036CbD53842c5426634e7929541eC2318f3dCF7e", decimals=6)
    signer.tokens["usdc-arb"] = TokenInfo(symbol="USDC", token_address="0x75faf114eafb1BDbe2F0316DF893fd58CE46AA4d", decimals=6)
    signer.tokens["weth-base"] = TokenInfo(symbol="WETH", token_address=WETH, decimals=18)


def test_settlement_asset_on_hub_settles_without_swap(services: Services, signer: FakeSigner) -> None:
    signer.balances[HUB_WALLET] = "25"
    services.reconciler.handle_external_transaction_event(OWNER, inbound("in-1", "SENT", "usdc-arb", "ARB-SEPOLIA"))
    if services.alerts.get(OWNER) is None:
        msg = "A pending settlement-asset deposit on the hub should raise the inbound alert"
        raise AssertionError(msg)

    services.reconciler.handle_external_transaction_event(OWNER, inbound("in-1", "COMPLETE", "usdc-arb", "ARB-SEPOLIA"))
    if services.jobs.get("in-1") is not None:
        msg = "The settlement asset on the settlement chain must never be swapped"
        raise AssertionError(msg)
    if services.alerts.get(OWNER) is not None:
        msg = "The inbound alert should be cleared once the deposit settles"
        raise AssertionError(msg)
    if services.balances.get(OWNER)["amount"] != "25":
        msg = "The aggregate balance should be recomputed"
        raise AssertionError(msg)
    record = services.ledger.get(OWNER, "in-1")
    if record.kind != LedgerKind.DEPOSIT or record.status != LedgerStatus.CONFIRMED:
        msg = f"Unexpected deposit ledger record: {record}"
        raise AssertionError(msg)


def test_duplicate_delivery_converges_to_one_record_and_one_job(services: Services) -> None:
    event = inbound("in-2", "COMPLETE", "weth-base", "BASE-SEPOLIA", amount="0.5")
    services.reconciler.handle_external_transaction_event(OWNER, event)
    services.reconciler.handle_external_transaction_event(OWNER, event)

    ids = sorted(record.id for record in services.ledger.list_for_owner(OWNER))
    if ids != ["in-2", "swap:in-2"]:
        msg = f"Expected one deposit and one swap record, got {ids}"
        raise AssertionError(msg)
    pending = services.jobs.list_pending(10)
    if [job.id for job in pending] != ["in-2"]:
        msg = f"Expected exactly one swap job, got {pending}"
        raise AssertionError(msg)
    deposit = services.deposits.get(OWNER, "in-2")
    if deposit["symbol"] != "WETH" or deposit["decimals"] != 18 or deposit["amount"] != "0.5":  # noqa: PLR2004
        msg = f"Deposit not merged correctly: {deposit}"
        raise AssertionError(msg)


def test_non_settlement_asset_is_not_swapped_when_disabled(services: Services) -> None:
    services.settings.enable_non_usdc_swaps = False
    services.reconciler.handle_external_transaction_event(OWNER, inbound("in-3", "COMPLETE", "weth-base", "BASE-SEPOLIA"))
    if services.jobs.get("in-3") is not None:
        msg = "No swap job without auto-conversion enabled"
        raise AssertionError(msg)


def test_bridge_is_claimed_once_and_hub_arrival_folds_into_deposit(
    services: Services, bridge_provider: FakeBridgeProvider
) -> None:
    event = inbound("in-4", "CONFIRMED", "usdc-base", "BASE-SEPOLIA")
    services.reconciler.handle_external_transaction_event(OWNER, event)
    services.reconciler.handle_external_transaction_event(OWNER, event)

    if bridge_provider.calls != [("BASE-SEPOLIA", "ARB-SEPOLIA", OWNER_ADDRESS, OWNER_ADDRESS, "25")]:
        msg = f"Expected exactly one bridge, got {bridge_provider.calls}"
        raise AssertionError(msg)
    deposit = services.deposits.get(OWNER, "in-4")
    if deposit["bridge_status"] != BridgeStatus.COMPLETED or deposit["bridge_destination_tx_hash"] != "0xminted":
        msg = f"Unexpected bridge sub-state: {deposit}"
        raise AssertionError(msg)
    if services.ledger.get(OWNER, "in-4").status != LedgerStatus.COMPLETED:
        msg = "A later CONFIRMED observation must not regress the bridged deposit"
        raise AssertionError(msg)

    arrival = inbound("hub-arrival", "COMPLETE", "usdc-arb", "ARB-SEPOLIA", tx_hash="0xminted")
    services.reconciler.handle_external_transaction_event(OWNER, arrival)
    if services.ledger.get(OWNER, "hub-arrival") is not None or services.deposits.get(OWNER, "hub-arrival") is not None:
        msg = "The hub arrival of a bridge should fold into the original deposit"
        raise AssertionError(msg)
    if services.deposits.get(OWNER, "in-4")["state"] != "COMPLETE":
        msg = "The original deposit should carry the hub arrival's state"
        raise AssertionError(msg)


def test_failed_bridge_can_be_claimed_again(services: Services, bridge_provider: FakeBridgeProvider) -> None:
    bridge_provider.error = RuntimeError("bridge down")
    event = inbound("in-5", "CONFIRMED", "usdc-base", "BASE-SEPOLIA")
    services.reconciler.handle_external_transaction_event(OWNER, event)
    deposit = services.deposits.get(OWNER, "in-5")
    if deposit["bridge_status"] != BridgeStatus.FAILED or deposit["bridge_error"] != "bridge down":
        msg = f"Expected a FAILED bridge, got {deposit}"
        raise AssertionError(msg)
    if services.ledger.get(OWNER, "in-5").status != LedgerStatus.FAILED:
        msg = "A failed bridge should be mirrored into the ledger"
        raise AssertionError(msg)

    bridge_provider.error = None
    services.reconciler.handle_external_transaction_event(OWNER, event)
    if len(bridge_provider.calls) != 2 or services.ledger.get(OWNER, "in-5").status != LedgerStatus.COMPLETED:  # noqa: PLR2004
        msg = "A redelivery after a failed bridge should retry it"
        raise AssertionError(msg)


def test_unknown_chain_is_not_bridged(services: Services, bridge_provider: FakeBridgeProvider) -> None:
    services.reconciler.handle_external_transaction_event(OWNER, inbound("in-6", "CONFIRMED", "usdc-base", "DOGE-MAINNET"))
    if bridge_provider.calls or services.deposits.get(OWNER, "in-6")["bridge_status"] is not None:
        msg = "Deposits on unknown chains must not be bridged"
        raise AssertionError(msg)


def test_outbound_transfers_are_ledgered_by_prefix(services: Services) -> None:
    send = ExternalTransaction(
        id="out-1", transaction_type="OUTBOUND", state="COMPLETE", ref_id="p2p:abc", amounts=["3"],
        blockchain="ARB-SEPOLIA", destination_address="0xfriend", token_id="usdc-arb",
    )
    other = send.model_copy(update={"id": "out-2", "ref_id": "sweep:abc"})
    services.reconciler.handle_external_transaction_event(OWNER, send)
    services.reconciler.handle_external_transaction_event(OWNER, other)

    record = services.ledger.get(OWNER, "out-1")
    if record.kind != LedgerKind.SEND or record.status != LedgerStatus.CONFIRMED or record.symbol != "USDC":
        msg = f"Unexpected SEND record: {record}"
        raise AssertionError(msg)
    if record.metadata.get("recipient_address") != "0xfriend":
        msg = "The recipient should be recorded"
        raise AssertionError(msg)
    if services.ledger.get(OWNER, "out-2") is not None:
        msg = "Unknown outbound prefixes are ignored"
        raise AssertionError(msg)


def mint_log(token_id: int) -> dict:
    return {
        "address": "0xpositionmanager",
        "topics": [
            TRANSFER_EVENT_TOPIC,
            "0x" + "0" * 64,
            "0x" + "0" * 24 + OWNER_ADDRESS[2:],
            f"0x{token_id:064x}",
        ],
    }


def test_contract_execution_attaches_minted_token_id(services: Services, chain_reader: FakeChainReader) -> None:
    services.positions.upsert(OWNER, "liquidity", pending_tx_id="ce-1", last_deposit_amount="50")
    chain_reader.logs["0xce1"] = [mint_log(77)]
    tx = ExternalTransaction(
        id="ce-1", transaction_type="CONTRACT_EXECUTION", state="COMPLETE", ref_id="liquidity-deposit:owner-1:1",
        tx_hash="0xce1", blockchain="ARB-SEPOLIA",
    )
    services.reconciler.handle_external_transaction_event(OWNER, tx)

    position = services.positions.get(OWNER, "liquidity")
    if position["token_id"] != "77" or position["status"] != "ACTIVE":
        msg = f"Expected the minted token id on an ACTIVE position, got {position}"
        raise AssertionError(msg)
    record = services.ledger.get(OWNER, "earn:liquidity:deposit:ce-1")
    if record.kind != LedgerKind.EARN or record.status != LedgerStatus.COMPLETED or record.amount != "50":
        msg = f"Unexpected EARN record: {record}"
        raise AssertionError(msg)


def test_token_id_lookup_errors_are_swallowed(services: Services, chain_reader: FakeChainReader) -> None:
    services.positions.upsert(OWNER, "liquidity", pending_tx_id="ce-2")
    chain_reader.error = RuntimeError("rpc down")
    tx = ExternalTransaction(
        id="ce-2", transaction_type="CONTRACT_EXECUTION", state="COMPLETE", tx_hash="0xce2", blockchain="ARB-SEPOLIA"
    )
    services.reconciler.handle_external_transaction_event(OWNER, tx)
    if services.positions.get(OWNER, "liquidity")["token_id"] is not None:
        msg = "No token id should be attached when the receipt lookup fails"
        raise AssertionError(msg)


def notification(tx_id: str, sent_at: datetime) -> dict:
    return {
        "notificationId": f"n-{tx_id}",
        "notificationType": "transactions.inbound",
        "timestamp": sent_at.isoformat().replace("+00:00", "Z"),
        "notification": {"id": tx_id},
    }


def test_replayed_notification_is_not_processed(services: Services, signer: FakeSigner) -> None:
    services.settings.webhook_replay_window_seconds = 60
    now = datetime(2026, 1, 1, 12, 0, tzinfo=UTC)
    signer.transactions["in-7"] = inbound("in-7", "COMPLETE", "weth-base", "BASE-SEPOLIA")

    outcome = services.reconciler.handle_notification(notification("in-7", now - timedelta(minutes=5)), now=now)
    if outcome != "replayed" or signer.lookups or services.ledger.list_for_owner(OWNER):
        msg = f"A replayed notification must cause no lookup or mutation (outcome={outcome})"
        raise AssertionError(msg)

    outcome = services.reconciler.handle_notification(notification("in-7", now - timedelta(seconds=5)), now=now)
    if outcome != "processed" or services.ledger.get(OWNER, "in-7") is None:
        msg = f"A fresh notification should be processed (outcome={outcome})"
        raise AssertionError(msg)


def test_notification_for_unknown_wallet_is_ignored(services: Services, signer: FakeSigner) -> None:
    tx = inbound("in-8", "COMPLETE", "usdc-base", "BASE-SEPOLIA").model_copy(update={"wallet_id": "stranger"})
    signer.transactions["in-8"] = tx
    outcome = services.reconciler.handle_notification(notification("in-8", datetime.now(UTC)))
    if outcome != "unknown_owner":
        msg = f"Expected unknown_owner, got {outcome}"
        raise AssertionError(msg)
    if services.reconciler.handle_notification({"notificationType": "webhooks.test"}) != "ignored":
        msg = "Non-transaction notifications are ignored"
        raise AssertionError(msg)


def test_stale_pending_after_hub_settlement_raises_no_alert(services: Services) -> None:
    services.reconciler.handle_external_transaction_event(OWNER, inbound("in-9", "COMPLETE", "usdc-arb", "ARB-SEPOLIA"))
    services.reconciler.handle_external_transaction_event(OWNER, inbound("in-9", "SENT", "usdc-arb", "ARB-SEPOLIA"))
    if services.alerts.get(OWNER) is not None:
        msg = f"A stale PENDING observation must not re-raise the alert, got {services.alerts.get(OWNER)}"
        raise AssertionError(msg)
    if services.deposits.get(OWNER, "in-9")["state"] != "COMPLETE":
        msg = "The deposit state must not regress to a stale PENDING state"
        raise AssertionError(msg)
    if services.ledger.get(OWNER, "in-9").status != LedgerStatus.CONFIRMED:
        msg = "The ledger record must stay CONFIRMED"
        raise AssertionError(msg)


def test_failed_deposit_state_is_not_overwritten_by_stale_pending(services: Services) -> None:
    services.reconciler.handle_external_transaction_event(OWNER, inbound("in-10", "FAILED", "weth-base", "BASE-SEPOLIA"))
    services.reconciler.handle_external_transaction_event(OWNER, inbound("in-10", "QUEUED", "weth-base", "BASE-SEPOLIA"))
    if services.deposits.get(OWNER, "in-10")["state"] != "FAILED":
        msg = "A FAILED deposit must not move back to PENDING"
        raise AssertionError(msg)
    services.reconciler.handle_external_transaction_event(OWNER, inbound("in-10", "COMPLETE", "weth-base", "BASE-SEPOLIA"))
    if services.deposits.get(OWNER, "in-10")["state"] != "COMPLETE":
        msg = "A later DONE observation should still win over FAILED"
        raise AssertionError(msg)


def test_retried_bridge_uses_a_new_idempotency_key(services: Services, bridge_provider: FakeBridgeProvider) -> None:
    bridge_provider.error = RuntimeError("bridge down")
    event = inbound("in-11", "CONFIRMED", "usdc-base", "BASE-SEPOLIA")
    services.reconciler.handle_external_transaction_event(OWNER, event)
    bridge_provider.error = None
    services.reconciler.handle_external_transaction_event(OWNER, event)

    keys = bridge_provider.idempotency_keys
    if len(keys) != 2 or None in keys or keys[0] == keys[1]:  # noqa: PLR2004
        msg = f"Each bridge attempt should carry its own idempotency key, got {keys}"
        raise AssertionError(msg)
    if services.deposits.get(OWNER, "in-11")["bridge_attempts"] != 2:  # noqa: PLR2004
        msg = "The deposit should count both bridge attempts"
        raise AssertionError(msg)
