"""
EVM Ledger Adapter.

Native ETH transfers from a session key as EIP-1559 (type 2) transactions,
signed locally with eth-account and broadcast over JSON-RPC.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from decimal import ROUND_CEILING, Decimal
from typing import TYPE_CHECKING, Any, Dict, Optional, Tuple

import httpx
from eth_account import Account
from eth_utils import to_hex

from ..chain_types import Chain
from ..errors import (
    InvalidAddress,
    NetworkError,
    Rejected,
    RpcError,
    SubmissionFailed,
    rejection_category,
)
from ...services.address import canonical_address
from .amounts import from_atomic, to_atomic
from .base import LedgerAdapter
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
    from ...config import Settings
    from ..wallet.models import ChainKey

logger = logging.getLogger(__name__)

NATIVE_TRANSFER_GAS = 21_000
DEFAULT_PRIORITY_FEE_WEI = 1_000_000_000  # 1 gwei


def quantity(value: Any, field: str) -> int:
    """Decode a hex QUANTITY from a node reply; anything else is a bad reply."""
    if not isinstance(value, str) or not value.startswith("0x"):
        raise NetworkError(f"Malformed {field} in RPC response: {value!r}", provider="ethereum")
    try:
        return int(value, 16)
    except ValueError:
        raise NetworkError(f"Malformed {field} in RPC response: {value!r}", provider="ethereum") from None


@dataclass
class EvmRpcConfig:
    """Configuration for an EVM JSON-RPC connection."""
    rpc_url: str
    chain_id: int = 11155111
    confirmations: int = 1
    max_retries: int = 3
    timeout_s: float = 15.0
    confirmation_timeout_s: float = 60.0
    poll_interval_s: float = 1.0
    refund_fee_multiplier: Decimal = Decimal("1.1")

    @classmethod
    def from_settings(cls, settings: "Settings") -> "EvmRpcConfig":
        return cls(
            rpc_url=settings.ethereum_rpc_url,
            chain_id=settings.ethereum_chain_id,
            confirmations=settings.ethereum_confirmations,
            max_retries=settings.rpc_max_retries,
            timeout_s=settings.rpc_timeout_seconds,
            confirmation_timeout_s=settings.confirmation_timeout_seconds,
            poll_interval_s=settings.confirmation_poll_interval_seconds,
            refund_fee_multiplier=settings.evm_refund_fee_multiplier,
        )


@dataclass(frozen=True)
class FeeQuote:
    """EIP-1559 fee parameters (wei per gas)."""
    max_fee_per_gas: int
    max_priority_fee_per_gas: int

    @property
    def transfer_cost_wei(self) -> int:
        return NATIVE_TRANSFER_GAS * self.max_fee_per_gas


class EvmAdapter(LedgerAdapter):
    """
    Ledger adapter for Ethereum-compatible chains.

    Finality means a receipt with ``status == 1`` buried under the configured
    number of confirmations. A receipt with ``status == 0`` is a deterministic
    rejection.
    """

    chain = Chain.ETHEREUM

    def __init__(self, config: EvmRpcConfig, client: Optional[httpx.AsyncClient] = None):
        super().__init__(
            JsonRpcClient(
                config.rpc_url,
                timeout_s=config.timeout_s,
                max_retries=config.max_retries,
                client=client,
                name="ethereum",
            ),
            confirmation_timeout_s=config.confirmation_timeout_s,
            poll_interval_s=config.poll_interval_s,
        )
        self._config = config

    @property
    def chain_id(self) -> int:
        return self._config.chain_id

    def validate_address(self, address: str) -> str:
        return canonical_address(address, Chain.ETHEREUM)

    async def get_balance(self, address: str) -> Balance:
        address = self.validate_address(address)
        result = await self._rpc.call("eth_getBalance", [address, "latest"])
        wei = quantity(result, "eth_getBalance result")
        return Balance(
            chain=self.chain,
            address=address,
            amount=from_atomic(wei, self.chain),
            atomic=wei,
        )

    async def get_fee_quote(self) -> FeeQuote:
        """
        EIP-1559 fees from ``eth_feeHistory``; falls back to
        ``eth_gasPrice`` on nodes without fee history.
        """
        try:
            history = await self._rpc.call("eth_feeHistory", [1, "latest", [50]])
            base_fee = int(history["baseFeePerGas"][-1], 16)
            reward = history.get("reward")
            priority_fee = int(reward[0][0], 16) if reward and reward[0] else DEFAULT_PRIORITY_FEE_WEI
        except (RpcError, KeyError, IndexError, TypeError, ValueError) as e:
            logger.debug(f"eth_feeHistory unavailable, using eth_gasPrice: {e}")
            gas_price = quantity(await self._rpc.call("eth_gasPrice", []), "gas price")
            return FeeQuote(
                max_fee_per_gas=gas_price,
                max_priority_fee_per_gas=min(DEFAULT_PRIORITY_FEE_WEI, gas_price),
            )

        return FeeQuote(
            max_fee_per_gas=base_fee * 2 + priority_fee,
            max_priority_fee_per_gas=priority_fee,
        )

    async def get_nonce(self, address: str) -> int:
        result = await self._rpc.call("eth_getTransactionCount", [address, "pending"])
        return quantity(result, "nonce")

    def _addresses(self, from_address: str, to_address: str) -> Tuple[str, str]:
        from_address = self.validate_address(from_address)
        to_address = self.validate_address(to_address)
        if from_address == to_address:
            raise InvalidAddress(
                "Recipient must differ from the session address",
                address=to_address,
                chain=self.chain.value,
            )
        return from_address, to_address

    async def build_transfer(
        self,
        from_address: str,
        to_address: str,
        amount: Decimal,
        reason: Optional[str] = None,
    ) -> UnsignedTransfer:
        from_address, to_address = self._addresses(from_address, to_address)
        wei = to_atomic(amount, self.chain)
        fees = await self.get_fee_quote()
        return await self._build(from_address, to_address, wei, fees, reason)

    async def _build(
        self,
        from_address: str,
        to_address: str,
        wei: int,
        fees: FeeQuote,
        reason: Optional[str],
    ) -> UnsignedTransfer:
        nonce = await self.get_nonce(from_address)
        tx = {
            "type": 2,
            "chainId": self._config.chain_id,
            "nonce": nonce,
            "to": to_address,
            "value": wei,
            "gas": NATIVE_TRANSFER_GAS,
            "maxFeePerGas": fees.max_fee_per_gas,
            "maxPriorityFeePerGas": fees.max_priority_fee_per_gas,
        }
        return UnsignedTransfer(
            chain=self.chain,
            from_address=from_address,
            to_address=to_address,
            amount=from_atomic(wei, self.chain),
            atomic=wei,
            body=tx,
            fee_atomic=fees.transfer_cost_wei,
            reason=reason,
        )

    async def estimate_transfer_fee(self, from_address: str, to_address: str) -> int:
        self._addresses(from_address, to_address)
        return (await self.get_fee_quote()).transfer_cost_wei

    def _refund_buffer(self, fees: FeeQuote) -> int:
        buffer = Decimal(fees.transfer_cost_wei) * self._config.refund_fee_multiplier
        return int(buffer.to_integral_value(rounding=ROUND_CEILING))

    async def _sweep_fee_buffer(self, from_address: str, to_address: str) -> int:
        return self._refund_buffer(await self.get_fee_quote())

    async def build_sweep(self, from_address: str, to_address: str) -> SweepPlan:
        # One fee read so the transaction's max fee always fits in the buffer
        from_address, to_address = self._addresses(from_address, to_address)
        balance = await self.get_balance(from_address)
        fees = await self.get_fee_quote()
        fee_buffer = self._refund_buffer(fees)
        sendable = balance.atomic - fee_buffer
        if sendable <= 0:
            return SweepPlan(chain=self.chain, balance=balance, fee_buffer_atomic=fee_buffer)

        unsigned = await self._build(from_address, to_address, sendable, fees, "Session refund")
        return SweepPlan(
            chain=self.chain,
            balance=balance,
            fee_buffer_atomic=fee_buffer,
            transfer=unsigned,
        )

    def sign(self, unsigned: UnsignedTransfer, key: "ChainKey") -> SignedTransfer:
        if key.chain != self.chain:
            raise ValueError(f"Cannot sign an EVM transfer with a {key.chain.value} key")

        account = Account.from_key(key.secret_bytes())
        if account.address != unsigned.from_address:
            raise ValueError("Session key does not match the transfer sender")

        signed = account.sign_transaction(unsigned.body)
        return SignedTransfer(
            unsigned=unsigned,
            raw=bytes(signed.raw_transaction),
            tx_id=to_hex(signed.hash),
        )

    async def submit(self, signed: SignedTransfer) -> TransferReceipt:
        try:
            await self._rpc.call("eth_sendRawTransaction", [to_hex(signed.raw)], retry=False)
        except RpcError as e:
            lowered = e.message.lower()
            if "already known" in lowered or "known transaction" in lowered:
                logger.info(f"Transaction already in mempool: {signed.tx_id}")
            elif "nonce too low" in lowered:
                raise SubmissionFailed(
                    f"ETH transfer not accepted: {e.message}",
                    tx_id=signed.tx_id,
                    funds_may_have_moved=False,
                    provider="ethereum",
                ) from e
            else:
                raise Rejected(
                    f"ETH transfer rejected: {e.message}",
                    tx_id=signed.tx_id,
                    reason=e.message,
                    category=rejection_category(e.message),
                ) from e
        except NetworkError as e:
            raise SubmissionFailed(
                f"ETH transfer submission failed: {e.message}",
                tx_id=signed.tx_id,
                funds_may_have_moved=e.request_sent,
                provider="ethereum",
            ) from e
        else:
            logger.info(f"Transaction submitted: {signed.tx_id}")

        snapshot = await self._await_final(signed.tx_id)
        logger.info(f"Transaction confirmed: {signed.tx_id} (block {snapshot.block})")
        return self._receipt(signed, snapshot)

    async def _fetch_status(self, tx_id: str) -> StatusSnapshot:
        receipt = await self._rpc.call("eth_getTransactionReceipt", [tx_id])
        if not receipt:
            tx = await self._rpc.call("eth_getTransactionByHash", [tx_id])
            return StatusSnapshot(status=TransferStatus.PENDING if tx else TransferStatus.NOT_FOUND)
        if not isinstance(receipt, dict):
            raise NetworkError(f"Malformed receipt for {tx_id}", provider="ethereum")

        block = quantity(receipt.get("blockNumber"), "receipt block number")
        fee = None
        if receipt.get("gasUsed") and receipt.get("effectiveGasPrice"):
            fee = quantity(receipt["gasUsed"], "gasUsed") * quantity(
                receipt["effectiveGasPrice"], "effectiveGasPrice"
            )

        # 0x1 = success, 0x0 = revert
        if quantity(receipt.get("status", "0x1"), "receipt status") == 0:
            return StatusSnapshot(
                status=TransferStatus.FAILED,
                block=block,
                fee_atomic=fee,
                error="Transaction reverted",
            )

        current_block = quantity(await self._rpc.call("eth_blockNumber", []), "block number")
        confirmations = current_block - block + 1
        if confirmations >= self._config.confirmations:
            return StatusSnapshot(status=TransferStatus.CONFIRMED, block=block, fee_atomic=fee)
        return StatusSnapshot(status=TransferStatus.PENDING, block=block, fee_atomic=fee)

    async def _health_probe(self) -> Dict[str, Any]:
        chain_id = quantity(await self._rpc.call("eth_chainId", []), "chain id")
        block = quantity(await self._rpc.call("eth_blockNumber", []), "block number")
        if chain_id != self._config.chain_id:
            raise NetworkError(
                f"RPC chain id {chain_id} does not match configured {self._config.chain_id}",
                provider="ethereum",
            )
        return {"chainId": chain_id, "blockNumber": block}


__all__ = ["EvmRpcConfig", "EvmAdapter", "FeeQuote", "NATIVE_TRANSFER_GAS"]
