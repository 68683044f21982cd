"""
Key Vault

Generates, restores and erases session keypairs.

Solana keys are ed25519 (PyNaCl) and exported as the 64-byte
``seed || public key`` secret, the layout wallet tooling expects. Ethereum
keys are secp256k1 (eth-account) exported as 0x-prefixed hex.
"""

from __future__ import annotations

import json
import logging
import secrets
from typing import Callable, Dict, Iterable, Mapping, Optional

from eth_account import Account
from nacl.signing import SigningKey

from ..chain_types import SUPPORTED_CHAINS, Chain
from ..errors import KeyGenerationError, MalformedSecret
from ...services.base58 import base58_decode, looks_base58
from .models import SECRET_LENGTHS, STORAGE_KEYS, ChainKey, SessionKeys

logger = logging.getLogger(__name__)

EntropySource = Callable[[int], bytes]

# A random 32-byte string is almost never outside the secp256k1 range
_MAX_KEYGEN_ATTEMPTS = 4


class KeyVault:
    """
    Usage:
        vault = KeyVault()
        keys = vault.generate()
        store_all(keys.secrets())
        ...
        keys = vault.restore(load_all())
        vault.erase(keys)
    """

    def __init__(
        self,
        chains: Iterable[Chain] = SUPPORTED_CHAINS,
        entropy: Optional[EntropySource] = None,
    ):
        self._chains = tuple(chains)
        self._entropy = entropy or secrets.token_bytes

    def generate(self) -> SessionKeys:
        """
        Fresh random keys for every chain at once.

        Raises:
            KeyGenerationError: The entropy source failed.
        """
        keys: Dict[Chain, ChainKey] = {}
        try:
            for chain in self._chains:
                keys[chain] = ChainKey(chain, self._generate_secret(chain))
        except (OSError, NotImplementedError) as e:
            for key in keys.values():
                key.erase()
            raise KeyGenerationError(f"Entropy source failed: {e}") from e

        session_keys = SessionKeys(keys)
        logger.info(
            "Generated session keys: "
            + ", ".join(f"{c.value}={a}" for c, a in session_keys.addresses().items())
        )
        return session_keys

    def _random(self, length: int) -> bytes:
        data = self._entropy(length)
        if len(data) != length:
            raise OSError(f"Entropy source returned {len(data)} bytes, expected {length}")
        return data

    def _generate_secret(self, chain: Chain) -> bytearray:
        if chain == Chain.SOLANA:
            signing_key = SigningKey(self._random(32))
            return bytearray(bytes(signing_key) + bytes(signing_key.verify_key))

        for _ in range(_MAX_KEYGEN_ATTEMPTS):
            candidate = self._random(32)
            try:
                Account.from_key(candidate)
            except ValueError:
                continue
            return bytearray(candidate)
        raise OSError("Could not derive a valid secp256k1 key from the entropy source")

    def restore(self, stored: Mapping[str, Optional[str]]) -> SessionKeys:
        """
        Rebuild keys from their storage blobs.

        Raises:
            MalformedSecret: Missing entry, bad encoding, wrong length, or a
                Solana secret whose public half does not match its seed.
        """
        keys: Dict[Chain, ChainKey] = {}
        for chain in self._chains:
            storage_key = STORAGE_KEYS[chain]
            blob = stored.get(storage_key)
            if not blob:
                raise MalformedSecret(f"No stored secret under {storage_key}")
            if chain == Chain.SOLANA:
                secret = _decode_solana_secret(blob)
            else:
                secret = _decode_ethereum_secret(blob)
            keys[chain] = ChainKey(chain, secret)
        return SessionKeys(keys)

    @staticmethod
    def erase(keys: Optional[SessionKeys]) -> None:
        """Zeroise key material. Idempotent."""
        if keys is not None:
            keys.erase()


def _decode_solana_secret(blob: str) -> bytearray:
    text = blob.strip()
    if text.startswith("["):
        try:
            values = json.loads(text)
        except ValueError as e:
            raise MalformedSecret("Solana secret is not valid JSON") from e
        if not isinstance(values, list) or not all(
            isinstance(v, int) and not isinstance(v, bool) and 0 <= v <= 255 for v in values
        ):
            raise MalformedSecret("Solana secret must be an array of byte values")
        secret = bytearray(values)
    elif looks_base58(text):
        secret = bytearray(base58_decode(text))
    else:
        raise MalformedSecret("Unsupported Solana secret encoding")

    expected = SECRET_LENGTHS[Chain.SOLANA]
    if len(secret) != expected:
        raise MalformedSecret(f"Solana secret must be {expected} bytes, got {len(secret)}")

    derived = bytes(SigningKey(bytes(secret[:32])).verify_key)
    if derived != bytes(secret[32:]):
        raise MalformedSecret("Solana secret public key does not match its seed")
    return secret


def _decode_ethereum_secret(blob: str) -> bytearray:
    text = blob.strip()
    if text[:2].lower() == "0x":
        text = text[2:]
    try:
        secret = bytearray(bytes.fromhex(text))
    except ValueError as e:
        raise MalformedSecret("Ethereum secret is not valid hex") from e

    expected = SECRET_LENGTHS[Chain.ETHEREUM]
    if len(secret) != expected:
        raise MalformedSecret(f"Ethereum secret must be {expected} bytes, got {len(secret)}")
    try:
        Account.from_key(bytes(secret))
    except ValueError as e:
        raise MalformedSecret("Ethereum secret is not a valid secp256k1 key") from e
    return secret


__all__ = ["KeyVault", "EntropySource"]
