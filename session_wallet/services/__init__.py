"""Service layer helpers"""

from .address import (
    canonical_address,
    is_valid_address_for_chain,
    is_valid_evm_address,
    is_valid_solana_address,
)
from .base58 import base58_decode, base58_encode

__all__ = [
    "canonical_address",
    "is_valid_address_for_chain",
    "is_valid_evm_address",
    "is_valid_solana_address",
    "base58_decode",
    "base58_encode",
]
