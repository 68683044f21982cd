"""Helpers for validating wallet addresses and reducing them to canonical form."""

from __future__ import annotations

import re
from functools import lru_cache

from eth_utils import is_checksum_address, to_checksum_address

from ..core.chain_types import Chain, normalize_chain
from ..core.errors import InvalidAddress
from .base58 import base58_decode

_BASE58_ALPHABET = set("123456789ABCDEFGHJKLMNPQRSTUVWXYZabcdefghijkmnopqrstuvwxyz")

_EVM_ADDRESS_RE = re.compile(r"^0x[a-fA-F0-9]{40}$")


@lru_cache(maxsize=256)
def is_valid_solana_address(address: str) -> bool:
    """Base58 text that decodes to a 32-byte public key."""
    if not address:
        return False
    length = len(address)
    if length < 32 or length > 44:
        return False
    if not all(ch in _BASE58_ALPHABET for ch in address):
        return False
    return len(base58_decode(address)) == 32


def is_valid_evm_address(address: str) -> bool:
    """
    20-byte hex address. Mixed-case input must carry a valid EIP-55
    checksum; all-lower / all-upper input is accepted as unchecksummed.
    """
    if not address or not _EVM_ADDRESS_RE.fullmatch(address):
        return False
    body = address[2:]
    if body.islower() or body.isupper() or body.isdigit():
        return True
    return is_checksum_address(address)


def is_valid_address_for_chain(address: str, chain: str | Chain) -> bool:
    if not address:
        return False
    chain = normalize_chain(chain)
    if chain == Chain.SOLANA:
        return is_valid_solana_address(address)
    return is_valid_evm_address(address)


def canonical_address(address: str, chain: str | Chain) -> str:
    """
    Return the canonical encoding used for comparisons (allow-lists).

    Solana addresses are already canonical base58; EVM addresses are
    returned in EIP-55 checksum form.

    Raises:
        InvalidAddress: If the address is not valid for the chain.
    """
    chain = normalize_chain(chain)
    candidate = (address or "").strip()
    if not is_valid_address_for_chain(candidate, chain):
        raise InvalidAddress(
            f"Invalid {chain.value} address: {address!r}",
            address=address,
            chain=chain.value,
        )
    if chain == Chain.ETHEREUM:
        return to_checksum_address(candidate)
    return candidate


__all__ = [
    "is_valid_solana_address",
    "is_valid_evm_address",
    "is_valid_address_for_chain",
    "canonical_address",
]
