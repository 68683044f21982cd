"""
Session key and wallet management models.

A session owns one disposable keypair per supported chain. Secret bytes are
kept in mutable buffers so they can be zeroised on revoke, and public
addresses are derived from the secret on every access rather than cached.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, Iterator, Mapping, Optional

from eth_account import Account
from nacl.signing import SigningKey

from ..chain_types import SUPPORTED_CHAINS, Chain
from ..errors import KeyErasedError
from ..execution.amounts import format_amount
from ...services.base58 import base58_encode


# Fixed storage keys for the persisted secret of each chain
SOLANA_STORAGE_KEY = "ai_session_key"
ETHEREUM_STORAGE_KEY = "ai_session_key_eth"

STORAGE_KEYS: Dict[Chain, str] = {
    Chain.SOLANA: SOLANA_STORAGE_KEY,
    Chain.ETHEREUM: ETHEREUM_STORAGE_KEY,
}

# Secret lengths: ed25519 seed + public key, secp256k1 private key
SECRET_LENGTHS: Dict[Chain, int] = {
    Chain.SOLANA: 64,
    Chain.ETHEREUM: 32,
}


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class SessionStatus(str, Enum):
    """Lifecycle of a session."""
    UNINITIALIZED = "uninitialized"
    ACTIVE = "active"
    REVOKED = "revoked"      # Terminal


def derive_address(chain: Chain, secret: bytes) -> str:
    """Public address for a chain secret."""
    if chain == Chain.SOLANA:
        return base58_encode(bytes(SigningKey(bytes(secret[:32])).verify_key))
    return Account.from_key(bytes(secret)).address


class ChainKey:
    """
    One chain's session keypair.

    The secret lives in a ``bytearray`` that ``erase`` overwrites with
    zeros. After erasure the key can neither sign nor derive its address.
    """

    def __init__(self, chain: Chain, secret: bytes | bytearray):
        expected = SECRET_LENGTHS[chain]
        if len(secret) != expected:
            raise ValueError(f"{chain.value} secret must be {expected} bytes, got {len(secret)}")
        self._chain = chain
        self._secret = bytearray(secret)
        self._erased = False

    @property
    def chain(self) -> Chain:
        return self._chain

    @property
    def is_erased(self) -> bool:
        return self._erased

    @property
    def address(self) -> str:
        return derive_address(self._chain, self.secret_bytes())

    def secret_bytes(self) -> bytes:
        if self._erased:
            raise KeyErasedError(f"{self._chain.value} session key has been erased")
        return bytes(self._secret)

    def export(self) -> str:
        """Storage encoding: JSON byte array (Solana) or 0x hex (Ethereum)."""
        secret = self.secret_bytes()
        if self._chain == Chain.SOLANA:
            return json.dumps(list(secret))
        return "0x" + secret.hex()

    def erase(self) -> None:
        for i in range(len(self._secret)):
            self._secret[i] = 0
        self._erased = True

    def __repr__(self) -> str:
        state = "erased" if self._erased else "active"
        return f"ChainKey(chain={self._chain.value}, {state})"


class SessionKeys:
    """Exactly one ``ChainKey`` per supported chain."""

    def __init__(self, keys: Mapping[Chain, ChainKey]):
        missing = [c.value for c in SUPPORTED_CHAINS if c not in keys]
        if missing:
            raise ValueError(f"Session keys missing for: {', '.join(missing)}")
        for chain, key in keys.items():
            if key.chain != chain:
                raise ValueError(f"Key for {key.chain.value} registered under {chain.value}")
        self._keys: Dict[Chain, ChainKey] = dict(keys)

    def __getitem__(self, chain: Chain) -> ChainKey:
        return self._keys[chain]

    def __iter__(self) -> Iterator[Chain]:
        return iter(self._keys)

    def __len__(self) -> int:
        return len(self._keys)

    @property
    def is_erased(self) -> bool:
        return all(key.is_erased for key in self._keys.values())

    def address(self, chain: Chain) -> str:
        return self._keys[chain].address

    def addresses(self) -> Dict[Chain, str]:
        return {chain: key.address for chain, key in self._keys.items()}

    def secrets(self) -> Dict[str, str]:
        """Opaque per-chain blobs keyed by their storage key."""
        return {STORAGE_KEYS[chain]: key.export() for chain, key in self._keys.items()}

    def erase(self) -> None:
        for key in self._keys.values():
            key.erase()

    def __repr__(self) -> str:
        return f"SessionKeys({', '.join(repr(k) for k in self._keys.values())})"


@dataclass(frozen=True)
class FundingConfirmation:
    """A funding transfer from the user's wallet into the session."""
    chain: Chain
    tx_id: str
    amount: Decimal
    from_address: str
    to_address: str
    confirmed: bool = False
    confirmed_at: Optional[datetime] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "chain": self.chain.value,
            "txId": self.tx_id,
            "amount": format_amount(self.amount),
            "from": self.from_address,
            "to": self.to_address,
            "confirmed": self.confirmed,
            "confirmedAt": self.confirmed_at.isoformat() if self.confirmed_at else None,
        }


class RefundStatus(str, Enum):
    REFUNDED = "refunded"
    SKIPPED = "skipped"      # Balance did not exceed the fee buffer
    FAILED = "failed"


@dataclass(frozen=True)
class RefundOutcome:
    """What revoke did with one chain's residual balance."""
    chain: Chain
    status: RefundStatus
    amount: Decimal = Decimal(0)
    tx_id: Optional[str] = None
    to_address: Optional[str] = None
    detail: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return {
            "chain": self.chain.value,
            "status": self.status.value,
            "amount": format_amount(self.amount),
            "txId": self.tx_id,
            "to": self.to_address,
            "detail": self.detail,
        }


@dataclass(frozen=True)
class RevokeResult:
    already_revoked: bool
    refunds: Dict[Chain, RefundOutcome] = field(default_factory=dict)
    revoked_at: datetime = field(default_factory=_utcnow)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "alreadyRevoked": self.already_revoked,
            "refunds": {chain.value: r.to_dict() for chain, r in self.refunds.items()},
            "revokedAt": self.revoked_at.isoformat(),
        }


__all__ = [
    "SOLANA_STORAGE_KEY",
    "ETHEREUM_STORAGE_KEY",
    "STORAGE_KEYS",
    "SECRET_LENGTHS",
    "SessionStatus",
    "derive_address",
    "ChainKey",
    "SessionKeys",
    "FundingConfirmation",
    "RefundStatus",
    "RefundOutcome",
    "RevokeResult",
]
