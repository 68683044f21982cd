"""
Ledger adapter interface.

One implementation per supported chain. Adapters hold configuration and an
HTTP client only; all session state lives in the SessionManager. Amounts
cross this boundary as ``Decimal`` whole-coin units.
"""

from __future__ import annotations

import asyncio
import logging
from abc import ABC, abstractmethod
from decimal import Decimal
from typing import TYPE_CHECKING, Any, Awaitable, Callable, Dict, Optional

from ..chain_types import Chain, native_symbol
from ..errors import NetworkError, Rejected, RpcError, SubmissionFailed, rejection_category
from .amounts import from_atomic
from .models import (
    Balance,
    SignedTransfer,
    StatusSnapshot,
    SweepPlan,
    TransferReceipt,
    TransferStatus,
    UnsignedTransfer,
)
from .rpc import JsonRpcClient

if TYPE_CHECKING:
    from ..wallet.models import ChainKey

logger = logging.getLogger(__name__)


class LedgerAdapter(ABC):
    """
    Chain access for a single ledger.

    Usage:
        unsigned = await adapter.build_transfer(session_addr, recipient, Decimal("0.01"))
        signed = adapter.sign(unsigned, key)
        receipt = await adapter.submit(signed)
    """

    chain: Chain

    def __init__(
        self,
        rpc: JsonRpcClient,
        confirmation_timeout_s: float = 60.0,
        poll_interval_s: float = 1.0,
    ):
        self._rpc = rpc
        self._confirmation_timeout_s = confirmation_timeout_s
        self._poll_interval_s = poll_interval_s

    @property
    def symbol(self) -> str:
        return native_symbol(self.chain)

    # ------------------------------------------------------------------
    # Interface
    # ------------------------------------------------------------------

    @abstractmethod
    def validate_address(self, address: str) -> str:
        """Return the canonical form of ``address`` or raise ``InvalidAddress``."""

    @abstractmethod
    async def get_balance(self, address: str) -> Balance:
        """Read the native balance. Transport failure raises ``NetworkError``."""

    @abstractmethod
    async def build_transfer(
        self,
        from_address: str,
        to_address: str,
        amount: Decimal,
        reason: Optional[str] = None,
    ) -> UnsignedTransfer:
        """Build a native transfer. Only reads fee/nonce/blockhash data."""

    @abstractmethod
    def sign(self, unsigned: UnsignedTransfer, key: "ChainKey") -> SignedTransfer:
        """Sign locally. Pure, no network access."""

    @abstractmethod
    async def submit(self, signed: SignedTransfer) -> TransferReceipt:
        """
        Broadcast and wait for finality.

        Raises:
            SubmissionFailed: transient failure; ``funds_may_have_moved`` is
                True when the outcome is ambiguous.
            Rejected: deterministic rejection, no value moved.
        """

    @abstractmethod
    async def estimate_transfer_fee(self, from_address: str, to_address: str) -> int:
        """Live fee (atomic units) of one native transfer."""

    @abstractmethod
    async def _fetch_status(self, tx_id: str) -> StatusSnapshot:
        """One status read of a submitted transfer."""

    async def get_transfer_status(self, tx_id: str) -> TransferStatus:
        return (await self._fetch_status(tx_id)).status

    async def build_sweep(self, from_address: str, to_address: str) -> SweepPlan:
        """
        Plan a transfer of the whole balance minus the live fee buffer.

        The plan carries no transfer when the balance does not exceed the
        buffer.
        """
        balance = await self.get_balance(from_address)
        fee_buffer = await self._sweep_fee_buffer(from_address, to_address)
        sendable = balance.atomic - fee_buffer
        if sendable <= 0:
            return SweepPlan(chain=self.chain, balance=balance, fee_buffer_atomic=fee_buffer)

        unsigned = await self.build_transfer(
            from_address,
            to_address,
            from_atomic(sendable, self.chain),
            reason="Session refund",
        )
        return SweepPlan(
            chain=self.chain,
            balance=balance,
            fee_buffer_atomic=fee_buffer,
            transfer=unsigned,
        )

    async def _sweep_fee_buffer(self, from_address: str, to_address: str) -> int:
        return await self.estimate_transfer_fee(from_address, to_address)

    async def wait_for_finality(
        self,
        tx_id: str,
        timeout_s: Optional[float] = None,
    ) -> StatusSnapshot:
        """
        Wait until ``tx_id`` is final.

        Raises:
            Rejected: the transfer landed with an error.
            SubmissionFailed: deadline reached, outcome unknown.
        """
        return await self._await_final(tx_id, timeout_s=timeout_s)

    async def health_check(self) -> Dict[str, Any]:
        try:
            detail = await self._health_probe()
        except (NetworkError, RpcError) as e:
            return {"chain": self.chain.value, "healthy": False, "error": e.message}
        return {"chain": self.chain.value, "healthy": True, **detail}

    @abstractmethod
    async def _health_probe(self) -> Dict[str, Any]:
        ...

    async def close(self) -> None:
        await self._rpc.close()

    # ------------------------------------------------------------------
    # Shared confirmation loop
    # ------------------------------------------------------------------

    async def _await_final(
        self,
        tx_id: str,
        timeout_s: Optional[float] = None,
        is_expired: Optional[Callable[[], Awaitable[bool]]] = None,
    ) -> StatusSnapshot:
        """
        Poll until the transfer is final, with exponential backoff.

        ``is_expired`` lets a chain prove that a transfer still unknown to the
        node can no longer land (Solana blockhash expiry).
        """
        loop = asyncio.get_running_loop()
        timeout = timeout_s if timeout_s is not None else self._confirmation_timeout_s
        deadline = loop.time() + timeout
        interval = self._poll_interval_s

        while True:
            try:
                snapshot = await self._fetch_status(tx_id)
            except (NetworkError, RpcError) as e:
                logger.warning(f"Error checking {self.chain.value} transfer {tx_id}: {e.message}")
                snapshot = None

            if snapshot is not None:
                if snapshot.status == TransferStatus.CONFIRMED:
                    return snapshot
                if snapshot.status == TransferStatus.FAILED:
                    reason = snapshot.error or "Transaction failed on-chain"
                    raise Rejected(
                        f"{self.symbol} transfer failed: {reason}",
                        tx_id=tx_id,
                        reason=reason,
                        category=rejection_category(reason),
                    )
                if snapshot.status == TransferStatus.NOT_FOUND and is_expired is not None:
                    if await is_expired():
                        raise SubmissionFailed(
                            f"{self.symbol} transfer {tx_id} expired before landing",
                            tx_id=tx_id,
                            funds_may_have_moved=False,
                            provider=self._rpc.name,
                        )

            remaining = deadline - loop.time()
            if remaining <= 0:
                raise SubmissionFailed(
                    f"{self.symbol} transfer {tx_id} not final after {timeout:.0f}s",
                    tx_id=tx_id,
                    funds_may_have_moved=True,
                    provider=self._rpc.name,
                )
            await asyncio.sleep(min(interval, remaining))
            # Exponential backoff, max 5 seconds
            interval = min(interval * 1.5, 5.0)

    def _receipt(self, signed: SignedTransfer, snapshot: StatusSnapshot) -> TransferReceipt:
        unsigned = signed.unsigned
        return TransferReceipt(
            chain=self.chain,
            tx_id=signed.tx_id,
            from_address=unsigned.from_address,
            to_address=unsigned.to_address,
            amount=unsigned.amount,
            fee_atomic=snapshot.fee_atomic if snapshot.fee_atomic is not None else unsigned.fee_atomic,
            block=snapshot.block,
        )


__all__ = ["LedgerAdapter"]
