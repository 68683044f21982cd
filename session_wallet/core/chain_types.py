"""
Chain identification types and utilities.

A session holds exactly one key per supported ledger. Ledgers are identified
by the ``Chain`` enum; each carries a native asset whose decimal exponent is
used for exact conversion between whole-coin and atomic units.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Dict, Tuple


class Chain(str, Enum):
    """Ledgers a session key is provisioned for."""
    SOLANA = "solana"
    ETHEREUM = "ethereum"


@dataclass(frozen=True)
class NativeAsset:
    """Native unit of a ledger."""
    symbol: str
    name: str
    decimals: int


NATIVE_ASSETS: Dict[Chain, NativeAsset] = {
    Chain.SOLANA: NativeAsset(symbol="SOL", name="Solana", decimals=9),
    Chain.ETHEREUM: NativeAsset(symbol="ETH", name="Ether", decimals=18),
}

SUPPORTED_CHAINS: Tuple[Chain, ...] = tuple(Chain)

_CHAIN_ALIASES = {
    "sol": Chain.SOLANA,
    "solana": Chain.SOLANA,
    "eth": Chain.ETHEREUM,
    "ethereum": Chain.ETHEREUM,
    "sepolia": Chain.ETHEREUM,
    "evm": Chain.ETHEREUM,
}


def normalize_chain(chain: str | Chain) -> Chain:
    """
    Convert user input to a ``Chain``.

    Raises:
        ValueError: If the identifier is not a supported ledger.

    Examples:
        >>> normalize_chain("SOL")
        <Chain.SOLANA: 'solana'>
        >>> normalize_chain("sepolia")
        <Chain.ETHEREUM: 'ethereum'>
    """
    if isinstance(chain, Chain):
        return chain
    canonical = _CHAIN_ALIASES.get(str(chain).lower().strip())
    if canonical is None:
        raise ValueError(f"Unknown chain identifier: {chain!r}")
    return canonical


def native_symbol(chain: Chain) -> str:
    return NATIVE_ASSETS[chain].symbol


def native_decimals(chain: Chain) -> int:
    return NATIVE_ASSETS[chain].decimals


__all__ = [
    "Chain",
    "NativeAsset",
    "NATIVE_ASSETS",
    "SUPPORTED_CHAINS",
    "normalize_chain",
    "native_symbol",
    "native_decimals",
]
