"""Canonical asset identifiers.

Every source writes positions against the same id for the same token, so
wallet scans and lending readers converge on one Asset row.
"""

SOLANA_CHAIN_KEY = "solana:mainnet-beta"


def evm_chain_key(chain_id: int) -> str:
    return f"evm:{chain_id}"


def canonical_evm_native_asset_id(chain_id: int) -> str:
    """e.g. ``evm:1:native`` for Ether on mainnet."""
    return f"{evm_chain_key(chain_id)}:native"


def canonical_erc20_asset_id(chain_id: int, address: str) -> str:
    """ERC-20 ids use the lower-cased contract address."""
    return f"{evm_chain_key(chain_id)}:erc20:{address.strip().lower()}"


def canonical_sol_native_asset_id() -> str:
    return f"{SOLANA_CHAIN_KEY}:native"


def canonical_spl_asset_id(mint_address: str) -> str:
    """SPL mints are base58 and case-sensitive, so they are kept verbatim."""
    return f"{SOLANA_CHAIN_KEY}:spl:{mint_address.strip()}"
