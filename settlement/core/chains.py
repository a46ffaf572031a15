"""Supported networks, chain aliases and settlement-asset addresses."""

SUPPORTED_EVM_CHAINS = ("ETH-SEPOLIA", "MATIC-AMOY", "ARB-SEPOLIA", "OP-SEPOLIA", "BASE-SEPOLIA")
SUPPORTED_SOL_CHAINS = ("SOL-DEVNET",)
SUPPORTED_CHAINS = SUPPORTED_EVM_CHAINS + SUPPORTED_SOL_CHAINS

USDC_DECIMALS = 6

EVM_CHAIN_ID_BY_CHAIN = {
    "ETH-SEPOLIA": 11155111,
    "MATIC-AMOY": 80002,
    "ARB-SEPOLIA": 421614,
    "OP-SEPOLIA": 11155420,
    "BASE-SEPOLIA": 84532,
}

# Balance lookups filter by token address (EVM) or mint (Solana).
USDC_TOKEN_ADDRESS_BY_CHAIN = {
    "ETH-SEPOLIA": "0x1c7D4B196Cb0C7B01d743Fbc6116a902379C7238",
    "MATIC-AMOY": "0x41E94Eb019C0762f9Bfcf9Fb1E58725BfB0e7582",
    "ARB-SEPOLIA": "0x75faf114eafb1BDbe2F0316DF893fd58CE46AA4d",
    "OP-SEPOLIA": "0x5fd84259d66Cd46123540766Be93DFE6D43130D7",
    "BASE-SEPOLIA": "0x036CbD53842c5426634e7929541eC2318f3dCF7e",
    "SOL-DEVNET": "4zMMC9srt5Ri5X14GAgXhaHii3GnPAEERYPJgZJDncDU",
}

_CHAIN_ALIASES = {
    "ETH-SEPOLIA": "ETH-SEPOLIA",
    "ETHEREUM-SEPOLIA": "ETH-SEPOLIA",
    "MATIC-AMOY": "MATIC-AMOY",
    "POLYGON-AMOY": "MATIC-AMOY",
    "POLYGON-AMOY-TESTNET": "MATIC-AMOY",
    "ARB-SEPOLIA": "ARB-SEPOLIA",
    "ARBITRUM-SEPOLIA": "ARB-SEPOLIA",
    "OP-SEPOLIA": "OP-SEPOLIA",
    "OPTIMISM-SEPOLIA": "OP-SEPOLIA",
    "BASE-SEPOLIA": "BASE-SEPOLIA",
    "SOL-DEVNET": "SOL-DEVNET",
    "SOLANA-DEVNET": "SOL-DEVNET",
}


def normalize_chain(value: str | None) -> str | None:
    """Map a vendor chain name to its canonical identifier, or None if unsupported."""
    if not value:
        return None
    key = value.strip().upper().replace("_", "-")
    return _CHAIN_ALIASES.get(key)


def is_evm_chain(chain: str | None) -> bool:
    """Return True if the chain has an EVM chain id."""
    return chain in EVM_CHAIN_ID_BY_CHAIN


def same_address(left: str | None, right: str | None) -> bool:
    """Compare two addresses case-insensitively; empty never matches."""
    if not left or not right:
        return False
    return left.lower() == right.lower()
