"""Deposit settlement engine: durable swap/bridge workflows driven by custodial wallet events."""
