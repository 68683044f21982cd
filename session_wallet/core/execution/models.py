"""
Ledger adapter models and types.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, Optional

from ..chain_types import Chain, native_symbol
from .amounts import format_amount


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class TransferStatus(str, Enum):
    """On-chain status of a submitted transfer."""
    PENDING = "pending"          # Seen by the node, not yet final
    CONFIRMED = "confirmed"      # Reached the required finality
    FAILED = "failed"            # Landed with an error / revert
    NOT_FOUND = "not_found"      # Unknown to the node (dropped or never sent)


@dataclass(frozen=True)
class StatusSnapshot:
    """One status read of a submitted transfer."""
    status: TransferStatus
    block: Optional[int] = None                 # Slot / block number
    fee_atomic: Optional[int] = None
    error: Optional[str] = None


@dataclass(frozen=True)
class Balance:
    """Read-only balance snapshot of one address."""
    chain: Chain
    address: str
    amount: Decimal                             # Whole-coin units
    atomic: int                                 # Lamports / wei
    read_at: datetime = field(default_factory=_utcnow)

    def __post_init__(self):
        if self.atomic < 0:
            raise ValueError("Balance cannot be negative")

    @property
    def symbol(self) -> str:
        return native_symbol(self.chain)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "chain": self.chain.value,
            "address": self.address,
            "amount": format_amount(self.amount),
            "symbol": self.symbol,
            "atomic": str(self.atomic),
            "readAt": self.read_at.isoformat(),
        }


@dataclass(frozen=True)
class PrebuiltTransaction:
    """Serialized transaction produced by an external service (e.g. a swap)."""
    serialized: str                             # Base64 wire transaction
    last_valid_block_height: Optional[int] = None
    description: str = ""


@dataclass
class UnsignedTransfer:
    """
    A transfer ready to be signed.

    ``body`` is chain specific: the serialized Solana message (bytes) for
    native transfers, the full versioned transaction for prebuilt swaps, or
    the EIP-1559 transaction dict for EVM.
    """
    chain: Chain
    from_address: str
    to_address: str
    amount: Decimal
    atomic: int
    body: Any
    fee_atomic: int = 0
    reason: Optional[str] = None
    # Solana blockhash expiry
    last_valid_block_height: Optional[int] = None
    prebuilt: bool = False
    created_at: datetime = field(default_factory=_utcnow)


@dataclass
class SignedTransfer:
    """A signed, wire-encoded transfer. ``tx_id`` is known before broadcast."""
    unsigned: UnsignedTransfer
    raw: bytes
    tx_id: str

    @property
    def chain(self) -> Chain:
        return self.unsigned.chain


@dataclass(frozen=True)
class TransferReceipt:
    """Proof that a transfer reached finality."""
    chain: Chain
    tx_id: str
    from_address: str
    to_address: str
    amount: Decimal
    fee_atomic: Optional[int] = None
    block: Optional[int] = None                 # Slot / block number
    confirmed_at: datetime = field(default_factory=_utcnow)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "chain": self.chain.value,
            "txId": self.tx_id,
            "from": self.from_address,
            "to": self.to_address,
            "amount": format_amount(self.amount),
            "symbol": native_symbol(self.chain),
            "fee": self.fee_atomic,
            "block": self.block,
            "confirmedAt": self.confirmed_at.isoformat(),
        }


@dataclass(frozen=True)
class SweepPlan:
    """
    What a refund of the full session balance would look like.

    ``transfer`` is None when the balance does not exceed the fee buffer.
    """
    chain: Chain
    balance: Balance
    fee_buffer_atomic: int
    transfer: Optional[UnsignedTransfer] = None

    @property
    def is_empty(self) -> bool:
        return self.transfer is None


__all__ = [
    "TransferStatus",
    "StatusSnapshot",
    "Balance",
    "PrebuiltTransaction",
    "UnsignedTransfer",
    "SignedTransfer",
    "TransferReceipt",
    "SweepPlan",
]
