"""Asset aliases and chain constants for the market relay."""

# Wrapped SOL mint; the provider keys the native asset by this address
NATIVE_ASSET_ADDRESS = "So11111111111111111111111111111111111111112"
NATIVE_SYMBOL = "SOL"
NATIVE_NAME = "Solana"

DEFAULT_CHAIN = "solana"

# Case-insensitive aliases that all mean the chain's native asset
NATIVE_ALIASES: dict[str, str] = {
    "sol": NATIVE_ASSET_ADDRESS,
    "solana": NATIVE_ASSET_ADDRESS,
    NATIVE_ASSET_ADDRESS.lower(): NATIVE_ASSET_ADDRESS,
}

# Pool discovery returns many pools; this many are kept per asset
MAX_POOLS_PER_ASSET = 3

# Recent trades kept per asset (ring size and snapshot fetch size)
TRADE_HISTORY_SIZE = 20


def normalize_asset_id(asset_id: str) -> str:
    """Strip whitespace and map native aliases to the canonical address.

    Anything that is not an alias is returned as given (addresses are
    case-sensitive on Solana).
    """
    stripped = asset_id.strip()
    return NATIVE_ALIASES.get(stripped.lower(), stripped)


def is_native_asset(asset_id: str) -> bool:
    return normalize_asset_id(asset_id) == NATIVE_ASSET_ADDRESS


def looks_native(symbol: str | None, name: str | None) -> bool:
    """True when a provider payload describes the native asset by symbol or name."""
    return (symbol or "").upper() == NATIVE_SYMBOL or (name or "").lower() == NATIVE_NAME.lower()
