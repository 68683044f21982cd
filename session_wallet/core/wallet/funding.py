"""
Funding signer interface.

Funding is the one inbound flow: the user's own wallet sends a bounded amount
to the session address. The session core never sees the user's credentials;
it only asks the signer to move funds and then waits for finality.
"""

from __future__ import annotations

import asyncio
import logging
from decimal import Decimal
from typing import Dict, Mapping, Optional, Protocol, runtime_checkable

from ..chain_types import Chain
from ..errors import ErrorCategory, SessionWalletError, ValidationError
from ...services.address import canonical_address
from .models import FundingConfirmation

logger = logging.getLogger(__name__)


@runtime_checkable
class FundingSigner(Protocol):
    """The user's wallet, as seen by the session core."""

    def primary_address(self, chain: Chain) -> str:
        """Address that funds the session and receives refunds."""
        ...

    async def request_transfer(
        self,
        from_address: str,
        to_address: str,
        amount: Decimal,
        chain: Chain,
    ) -> FundingConfirmation:
        ...


class FundingUnavailableError(SessionWalletError):
    """The signer has no owner address or no submitted transfer for a chain."""

    category = ErrorCategory.VALIDATION


class ClientFundingSigner:
    """
    Funding signer for browser wallets.

    The client signs and broadcasts the funding transfer itself, then reports
    the transaction id; ``request_transfer`` hands that id back so the session
    can wait for its finality.

    Usage:
        signer = ClientFundingSigner({Chain.SOLANA: owner_pubkey})
        signer.submitted(Chain.SOLANA, signature)
        confirmation = await manager.fund(Chain.SOLANA, Decimal("0.05"))
    """

    def __init__(self, owners: Optional[Mapping[Chain, str]] = None):
        self._owners: Dict[Chain, str] = {}
        self._pending: Dict[Chain, str] = {}
        self._lock = asyncio.Lock()
        for chain, address in (owners or {}).items():
            self.set_owner(chain, address)

    def set_owner(self, chain: Chain, address: str) -> None:
        self._owners[chain] = canonical_address(address, chain)

    def primary_address(self, chain: Chain) -> str:
        try:
            return self._owners[chain]
        except KeyError:
            raise FundingUnavailableError(f"No owner address registered for {chain.value}") from None

    def submitted(self, chain: Chain, tx_id: str) -> None:
        if not tx_id or not tx_id.strip():
            raise ValidationError("Funding transaction id is required")
        self._pending[chain] = tx_id.strip()

    def pending(self, chain: Chain) -> Optional[str]:
        return self._pending.get(chain)

    def discard(self, chain: Chain, tx_id: str) -> None:
        """Drop a submitted id that no funding call consumed."""
        if self._pending.get(chain) == tx_id.strip():
            del self._pending[chain]

    async def request_transfer(
        self,
        from_address: str,
        to_address: str,
        amount: Decimal,
        chain: Chain,
    ) -> FundingConfirmation:
        async with self._lock:
            tx_id = self._pending.pop(chain, None)
        if tx_id is None:
            raise FundingUnavailableError(
                f"No funding transaction submitted for {chain.value}; "
                "sign the transfer in the wallet first"
            )
        logger.info(f"Funding {chain.value} session {to_address} via client transaction {tx_id}")
        return FundingConfirmation(
            chain=chain,
            tx_id=tx_id,
            amount=amount,
            from_address=from_address,
            to_address=to_address,
            confirmed=False,
        )


__all__ = ["FundingSigner", "ClientFundingSigner", "FundingUnavailableError"]
