"""Tests for state classification, job status ordering, unit conversion and chain helpers."""

import pytest

from settlement.core.chains import normalize_chain
from settlement.core.models import JobStatus, TxStateBucket, classify_tx_state
from settlement.core.utils import from_base_units, parse_int_maybe_hex, to_base_units


@pytest.mark.parametrize(
    ("state", "bucket"),
    [
        ("CONFIRMED", TxStateBucket.DONE),
        ("COMPLETE", TxStateBucket.DONE),
        ("COMPLETED", TxStateBucket.DONE),
        ("complete", TxStateBucket.DONE),
        ("FAILED", TxStateBucket.FAILED),
        ("CANCELLED", TxStateBucket.FAILED),
        ("DENIED", TxStateBucket.FAILED),
        ("REJECTED", TxStateBucket.FAILED),
        ("cancelled", TxStateBucket.FAILED),
        ("INITIATED", TxStateBucket.PENDING),
        ("QUEUED", TxStateBucket.PENDING),
        ("SENT", TxStateBucket.PENDING),
        ("PENDING_RISK_SCREENING", TxStateBucket.PENDING),
        ("", TxStateBucket.PENDING),
        (None, TxStateBucket.PENDING),
    ],
)
def test_classify_tx_state(state: str | None, bucket: TxStateBucket) -> None:
    if classify_tx_state(state) != bucket:
        msg = f"{state!r} should classify as {bucket}, got {classify_tx_state(state)}"
        raise AssertionError(msg)


def test_job_status_moves_forward_or_to_failed_only() -> None:
    if not JobStatus.QUEUED.can_move_to(JobStatus.SWAP_READY):
        msg = "Forward moves are allowed"
        raise AssertionError(msg)
    if JobStatus.SWAP_PENDING.can_move_to(JobStatus.APPROVAL_PENDING):
        msg = "Backward moves are refused"
        raise AssertionError(msg)
    if not JobStatus.SWAP_PENDING.can_move_to(JobStatus.FAILED):
        msg = "FAILED is reachable from any non-terminal state"
        raise AssertionError(msg)
    if JobStatus.COMPLETED.can_move_to(JobStatus.FAILED) or JobStatus.FAILED.can_move_to(JobStatus.QUEUED):
        msg = "Terminal states never move"
        raise AssertionError(msg)


@pytest.mark.parametrize(
    ("amount", "decimals", "base_units"),
    [
        ("100.5", 6, 100500000),
        ("0.5", 18, 500000000000000000),
        ("1", 6, 1000000),
        (".25", 6, 250000),
        ("0.0000009", 6, 0),
        ("123456789.123456789", 6, 123456789123456),
    ],
)
def test_to_base_units(amount: str, decimals: int, base_units: int) -> None:
    if to_base_units(amount, decimals) != base_units:
        msg = f"to_base_units({amount!r}, {decimals}) = {to_base_units(amount, decimals)}, expected {base_units}"
        raise AssertionError(msg)


@pytest.mark.parametrize("amount", ["", "-1", "abc", "1.2.3", "1e5"])
def test_to_base_units_rejects_invalid(amount: str) -> None:
    with pytest.raises(ValueError, match="mount"):
        to_base_units(amount, 6)


def test_from_base_units() -> None:
    cases = {(100500000, 6): "100.5", (0, 6): "0", (1, 6): "0.000001", (10**16, 18): "0.01", (42, 0): "42"}
    for (value, decimals), expected in cases.items():
        if from_base_units(value, decimals) != expected:
            msg = f"from_base_units({value}, {decimals}) = {from_base_units(value, decimals)!r}, expected {expected!r}"
            raise AssertionError(msg)


def test_parse_int_maybe_hex() -> None:
    if parse_int_maybe_hex("0x10") != 16 or parse_int_maybe_hex("10") != 10 or parse_int_maybe_hex(None) != 0:  # noqa: PLR2004
        msg = "Hex and decimal strings should both parse"
        raise AssertionError(msg)


def test_normalize_chain_aliases() -> None:
    if normalize_chain("arbitrum_sepolia") != "ARB-SEPOLIA" or normalize_chain("POLYGON-AMOY") != "MATIC-AMOY":
        msg = "Vendor chain aliases should normalize"
        raise AssertionError(msg)
    if normalize_chain("DOGE-MAINNET") is not None:
        msg = "Unsupported chains normalize to None"
        raise AssertionError(msg)
