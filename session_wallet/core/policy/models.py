"""
Spend guard models and types.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from types import MappingProxyType
from typing import TYPE_CHECKING, Any, Dict, FrozenSet, Iterable, Mapping, Optional

from ..chain_types import Chain, native_symbol
from ..errors import ConfigError, InvalidAddress
from ..execution.amounts import format_amount
from ..execution.models import PrebuiltTransaction
from ...services.address import canonical_address

if TYPE_CHECKING:
    from ...config import Settings


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class GuardStatus(str, Enum):
    ACTIVE = "active"
    CLOSED = "closed"


class RejectionCode(str, Enum):
    """Why the spend guard refused a transfer."""
    CHAIN_NOT_CONFIGURED = "chain_not_configured"
    SESSION_CLOSED = "session_closed"
    RECIPIENT_NOT_ALLOWED = "recipient_not_allowed"
    PER_TRANSACTION_LIMIT_EXCEEDED = "per_transaction_limit_exceeded"
    SESSION_LIMIT_EXCEEDED = "session_limit_exceeded"


@dataclass(frozen=True)
class TransferRequest:
    """
    A well-formed outgoing transfer.

    Built by the intent dispatcher only after the recipient and amount have
    been validated, so the spend guard never sees malformed input.
    """
    chain: Chain
    recipient: str
    amount: Decimal
    reason: Optional[str] = None
    payload: Optional[PrebuiltTransaction] = None


def _as_limit(value: Any, name: str) -> Decimal:
    try:
        limit = Decimal(str(value))
    except ArithmeticError as e:
        raise ConfigError(f"{name} is not a number: {value!r}") from e
    if not limit.is_finite():
        raise ConfigError(f"{name} must be finite, got {value!r}")
    if limit < 0:
        raise ConfigError(f"{name} cannot be negative, got {limit}")
    return limit


@dataclass(frozen=True)
class ChainLimits:
    """Spending ceilings for one chain, in whole-coin units. Inclusive."""
    max_total: Decimal
    max_per_transaction: Decimal
    allow_list: FrozenSet[str] = field(default_factory=frozenset)

    def __post_init__(self):
        max_total = _as_limit(self.max_total, "max_total")
        max_per_tx = _as_limit(self.max_per_transaction, "max_per_transaction")
        if max_per_tx > max_total:
            raise ConfigError(
                f"max_per_transaction ({max_per_tx}) cannot exceed max_total ({max_total})"
            )
        object.__setattr__(self, "max_total", max_total)
        object.__setattr__(self, "max_per_transaction", max_per_tx)
        object.__setattr__(self, "allow_list", frozenset(self.allow_list))

    def to_dict(self) -> Dict[str, Any]:
        return {
            "maxTotal": format_amount(self.max_total),
            "maxPerTransaction": format_amount(self.max_per_transaction),
            "allowList": sorted(self.allow_list),
        }


@dataclass(frozen=True)
class SpendGuardConfig:
    """
    Per-chain limits. Immutable once built.

    A chain without an entry cannot spend at all.
    """
    limits: Mapping[Chain, ChainLimits]

    def __post_init__(self):
        for chain, limits in self.limits.items():
            if not isinstance(chain, Chain):
                raise ConfigError(f"Unknown chain in spend guard config: {chain!r}")
            if not isinstance(limits, ChainLimits):
                raise ConfigError(f"Limits for {chain.value} must be ChainLimits")
        object.__setattr__(self, "limits", MappingProxyType(dict(self.limits)))

    def limits_for(self, chain: Chain) -> Optional[ChainLimits]:
        return self.limits.get(chain)

    @classmethod
    def build(
        cls,
        max_spend_sol: Any,
        max_per_tx_sol: Any,
        max_spend_eth: Any,
        max_per_tx_eth: Any,
        allowed_recipients_sol: Iterable[str] = (),
        allowed_recipients_eth: Iterable[str] = (),
    ) -> "SpendGuardConfig":
        """Build a two-chain config, canonicalising allow-list entries."""
        return cls(limits={
            Chain.SOLANA: ChainLimits(
                max_total=max_spend_sol,
                max_per_transaction=max_per_tx_sol,
                allow_list=_canonical_allow_list(allowed_recipients_sol, Chain.SOLANA),
            ),
            Chain.ETHEREUM: ChainLimits(
                max_total=max_spend_eth,
                max_per_transaction=max_per_tx_eth,
                allow_list=_canonical_allow_list(allowed_recipients_eth, Chain.ETHEREUM),
            ),
        })

    @classmethod
    def from_settings(cls, settings: "Settings") -> "SpendGuardConfig":
        return cls.build(
            max_spend_sol=settings.max_spend_sol,
            max_per_tx_sol=settings.max_per_tx_sol,
            max_spend_eth=settings.max_spend_eth,
            max_per_tx_eth=settings.max_per_tx_eth,
            allowed_recipients_sol=settings.allowed_recipients_sol,
            allowed_recipients_eth=settings.allowed_recipients_eth,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {chain.value: limits.to_dict() for chain, limits in self.limits.items()}


def _canonical_allow_list(addresses: Iterable[str], chain: Chain) -> FrozenSet[str]:
    canonical = set()
    for address in addresses:
        try:
            canonical.add(canonical_address(address, chain))
        except InvalidAddress as e:
            raise ConfigError(f"Invalid {chain.value} allow-list entry: {address!r}") from e
    return frozenset(canonical)


@dataclass(frozen=True)
class Approval:
    """A granted authorization holding a provisional reservation."""
    reservation_id: str
    chain: Chain
    recipient: str
    amount: Decimal
    approved_at: datetime = field(default_factory=_utcnow)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "reservationId": self.reservation_id,
            "chain": self.chain.value,
            "recipient": self.recipient,
            "amount": format_amount(self.amount),
            "approvedAt": self.approved_at.isoformat(),
        }


@dataclass(frozen=True)
class Rejection:
    """A refused authorization. No reservation was made."""
    code: RejectionCode
    chain: Chain
    message: str
    details: Dict[str, Any] = field(default_factory=dict)
    suggestion: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "code": self.code.value,
            "chain": self.chain.value,
            "message": self.message,
            "details": self.details,
            "suggestion": self.suggestion,
        }


@dataclass(frozen=True)
class ChainUsage:
    """Read-only usage snapshot for one chain."""
    chain: Chain
    spent: Decimal                              # Committed + pending reservations
    pending: Decimal                            # Reserved, not yet confirmed
    max_total: Decimal
    max_per_transaction: Decimal

    @property
    def remaining(self) -> Decimal:
        return max(self.max_total - self.spent, Decimal(0))

    def to_dict(self) -> Dict[str, Any]:
        return {
            "chain": self.chain.value,
            "symbol": native_symbol(self.chain),
            "spent": format_amount(self.spent),
            "pending": format_amount(self.pending),
            "remaining": format_amount(self.remaining),
            "maxTotal": format_amount(self.max_total),
            "maxPerTransaction": format_amount(self.max_per_transaction),
        }


__all__ = [
    "GuardStatus",
    "RejectionCode",
    "TransferRequest",
    "ChainLimits",
    "SpendGuardConfig",
    "Approval",
    "Rejection",
    "ChainUsage",
]
