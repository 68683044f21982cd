"""
Solana Ledger Adapter.

Builds, signs and submits native SOL transfers from a session key, and
signs prebuilt transactions (Jupiter swaps) in which the session key is a
required signer. Messages and transactions are built with solders; the
node is spoken to over plain JSON-RPC.
"""

from __future__ import annotations

import base64
import binascii
import logging
from dataclasses import dataclass
from decimal import Decimal
from typing import TYPE_CHECKING, Any, Dict, Optional, Tuple

import httpx
from solders.errors import BincodeError
from solders.hash import Hash
from solders.keypair import Keypair
from solders.message import Message, to_bytes_versioned
from solders.pubkey import Pubkey
from solders.system_program import TransferParams, transfer
from solders.transaction import Transaction, VersionedTransaction

from ..chain_types import Chain
from ..errors import (
    InvalidAddress,
    NetworkError,
    Rejected,
    RpcError,
    SubmissionFailed,
    ValidationError,
    rejection_category,
)
from ...services.address import canonical_address
from ...services.base58 import base58_decode
from .amounts import from_atomic, parse_amount, to_atomic
from .base import LedgerAdapter
from .models import (
    Balance,
    SignedTransfer,
    StatusSnapshot,
    TransferReceipt,
    TransferStatus,
    UnsignedTransfer,
)
from .rpc import JsonRpcClient

if TYPE_CHECKING:
    from ...config import Settings
    from ..wallet.models import ChainKey

logger = logging.getLogger(__name__)

# Base fee per signature, used when the node cannot price a message
DEFAULT_SIGNATURE_FEE_LAMPORTS = 5000

_COMMITMENT_RANK = {"processed": 0, "confirmed": 1, "finalized": 2}


def lamports_value(result: Any, method: str) -> int:
    """``value`` of an RpcResponse holding a non-negative integer."""
    value = result.get("value") if isinstance(result, dict) else None
    if isinstance(value, bool) or not isinstance(value, int) or value < 0:
        raise NetworkError(f"Malformed {method} response: {result!r}", provider="solana")
    return value


def transfer_message(from_pubkey: Pubkey, to_pubkey: Pubkey, lamports: int, blockhash: Hash) -> Message:
    """Legacy message with a single System Program transfer, paid by the sender."""
    instruction = transfer(TransferParams(from_pubkey=from_pubkey, to_pubkey=to_pubkey, lamports=lamports))
    return Message.new_with_blockhash([instruction], from_pubkey, blockhash)


def parse_prebuilt(raw: bytes) -> VersionedTransaction:
    try:
        tx = VersionedTransaction.from_bytes(raw)
    except (BincodeError, ValueError) as e:
        raise ValueError(f"not a Solana transaction ({e})") from e
    if len(tx.signatures) != tx.message.header.num_required_signatures:
        raise ValueError("signature count does not match the message header")
    return tx


def signer_index(tx: VersionedTransaction, pubkey: Pubkey) -> int:
    signers = list(tx.message.account_keys[: tx.message.header.num_required_signatures])
    try:
        return signers.index(pubkey)
    except ValueError:
        raise ValueError("session key is not a required signer of this transaction") from None


@dataclass
class SolanaRpcConfig:
    """Configuration for Solana RPC connection."""
    rpc_url: str
    commitment: str = "confirmed"
    max_retries: int = 3
    timeout_s: float = 15.0
    confirmation_timeout_s: float = 60.0
    poll_interval_s: float = 1.0

    @classmethod
    def from_settings(cls, settings: "Settings") -> "SolanaRpcConfig":
        return cls(
            rpc_url=settings.solana_rpc_url,
            commitment=settings.solana_commitment,
            max_retries=settings.rpc_max_retries,
            timeout_s=settings.rpc_timeout_seconds,
            confirmation_timeout_s=settings.confirmation_timeout_seconds,
            poll_interval_s=settings.confirmation_poll_interval_seconds,
        )


class SolanaAdapter(LedgerAdapter):
    """
    Ledger adapter for Solana.

    Native transfers are legacy messages with a single System Program
    instruction, signed with the session's ed25519 key. Finality means the
    signature status reached the configured commitment level. A transfer that
    is still unknown once its blockhash has expired can never land and is
    reported as a non-ambiguous failure.
    """

    chain = Chain.SOLANA

    def __init__(self, config: SolanaRpcConfig, client: Optional[httpx.AsyncClient] = None):
        if config.commitment not in _COMMITMENT_RANK:
            raise ValueError(f"Unknown Solana commitment level: {config.commitment}")
        super().__init__(
            JsonRpcClient(
                config.rpc_url,
                timeout_s=config.timeout_s,
                max_retries=config.max_retries,
                client=client,
                name="solana",
            ),
            confirmation_timeout_s=config.confirmation_timeout_s,
            poll_interval_s=config.poll_interval_s,
        )
        self._config = config

    def validate_address(self, address: str) -> str:
        return canonical_address(address, Chain.SOLANA)

    async def get_balance(self, address: str) -> Balance:
        address = self.validate_address(address)
        result = await self._rpc.call(
            "getBalance",
            [address, {"commitment": self._config.commitment}],
        )
        lamports = lamports_value(result, "getBalance")
        return Balance(
            chain=self.chain,
            address=address,
            amount=from_atomic(lamports, self.chain),
            atomic=lamports,
        )

    async def get_latest_blockhash(self) -> Tuple[Hash, int]:
        """Return ``(blockhash, lastValidBlockHeight)``."""
        result = await self._rpc.call(
            "getLatestBlockhash",
            [{"commitment": self._config.commitment}],
        )
        value = result.get("value") if isinstance(result, dict) else None
        if not isinstance(value, dict) or not value.get("blockhash"):
            raise NetworkError("No blockhash returned from getLatestBlockhash", provider="solana")
        try:
            blockhash = Hash(base58_decode(value["blockhash"]))
            last_valid = int(value.get("lastValidBlockHeight", 0))
        except (TypeError, ValueError) as e:
            raise NetworkError(f"Malformed getLatestBlockhash response: {e}", provider="solana") from e
        return blockhash, last_valid

    async def _fee_for_message(self, message: Message) -> int:
        result = await self._rpc.call(
            "getFeeForMessage",
            [base64.b64encode(bytes(message)).decode("ascii"), {"commitment": self._config.commitment}],
        )
        if not isinstance(result, dict) or result.get("value") is None:
            logger.debug("getFeeForMessage returned no value, using default signature fee")
            return DEFAULT_SIGNATURE_FEE_LAMPORTS
        return lamports_value(result, "getFeeForMessage")

    def _pubkeys(self, from_address: str, to_address: str) -> Tuple[str, str, Pubkey, Pubkey]:
        from_address = self.validate_address(from_address)
        to_address = self.validate_address(to_address)
        if from_address == to_address:
            raise InvalidAddress(
                "Recipient must differ from the session address",
                address=to_address,
                chain=self.chain.value,
            )
        return from_address, to_address, Pubkey.from_string(from_address), Pubkey.from_string(to_address)

    async def build_transfer(
        self,
        from_address: str,
        to_address: str,
        amount: Decimal,
        reason: Optional[str] = None,
    ) -> UnsignedTransfer:
        from_address, to_address, from_pub, to_pub = self._pubkeys(from_address, to_address)
        lamports = to_atomic(amount, self.chain)

        blockhash, last_valid = await self.get_latest_blockhash()
        message = transfer_message(from_pub, to_pub, lamports, blockhash)
        fee = await self._fee_for_message(message)

        return UnsignedTransfer(
            chain=self.chain,
            from_address=from_address,
            to_address=to_address,
            amount=parse_amount(amount),
            atomic=lamports,
            body=bytes(message),
            fee_atomic=fee,
            reason=reason,
            last_valid_block_height=last_valid,
        )

    async def estimate_transfer_fee(self, from_address: str, to_address: str) -> int:
        _, _, from_pub, to_pub = self._pubkeys(from_address, to_address)
        blockhash, _ = await self.get_latest_blockhash()
        return await self._fee_for_message(transfer_message(from_pub, to_pub, 1, blockhash))

    def load_prebuilt(
        self,
        from_address: str,
        to_address: str,
        payload: str,
        amount: Decimal,
        reason: Optional[str] = None,
        last_valid_block_height: Optional[int] = None,
    ) -> UnsignedTransfer:
        """
        Accept a base64 serialized transaction built by an external service.

        The session key must be one of the transaction's required signers.
        ``amount`` is the native value the transaction moves, as authorized by
        the spend guard.
        """
        from_address = self.validate_address(from_address)
        try:
            raw = base64.b64decode(payload, validate=True)
            signer_index(parse_prebuilt(raw), Pubkey.from_string(from_address))
        except (binascii.Error, ValueError) as e:
            raise ValidationError(f"Invalid prebuilt Solana transaction: {e}") from e

        return UnsignedTransfer(
            chain=self.chain,
            from_address=from_address,
            to_address=to_address,
            amount=parse_amount(amount),
            atomic=to_atomic(amount, self.chain),
            body=raw,
            reason=reason,
            last_valid_block_height=last_valid_block_height,
            prebuilt=True,
        )

    def sign(self, unsigned: UnsignedTransfer, key: "ChainKey") -> SignedTransfer:
        if key.chain != self.chain:
            raise ValueError(f"Cannot sign a Solana transfer with a {key.chain.value} key")

        keypair = Keypair.from_seed(key.secret_bytes()[:32])

        if unsigned.prebuilt:
            tx = parse_prebuilt(unsigned.body)
            signatures = list(tx.signatures)
            signatures[signer_index(tx, keypair.pubkey())] = keypair.sign_message(
                to_bytes_versioned(tx.message)
            )
            signed_tx = VersionedTransaction.populate(tx.message, signatures)
        else:
            if str(keypair.pubkey()) != unsigned.from_address:
                raise ValueError("Session key does not match the transfer sender")
            message = Message.from_bytes(unsigned.body)
            signed_tx = Transaction([keypair], message, message.recent_blockhash)

        return SignedTransfer(
            unsigned=unsigned,
            raw=bytes(signed_tx),
            tx_id=str(signed_tx.signatures[0]),
        )

    async def submit(self, signed: SignedTransfer) -> TransferReceipt:
        options = {
            "encoding": "base64",
            "skipPreflight": False,
            "preflightCommitment": self._config.commitment,
            "maxRetries": self._config.max_retries,
        }
        try:
            await self._rpc.call(
                "sendTransaction",
                [base64.b64encode(signed.raw).decode("ascii"), options],
                retry=False,
            )
        except RpcError as e:
            # Preflight failed: nothing was broadcast
            raise Rejected(
                f"SOL transfer rejected: {e.message}",
                tx_id=signed.tx_id,
                reason=e.message,
                category=rejection_category(e.message),
            ) from e
        except NetworkError as e:
            raise SubmissionFailed(
                f"SOL transfer submission failed: {e.message}",
                tx_id=signed.tx_id,
                funds_may_have_moved=e.request_sent,
                provider="solana",
            ) from e

        logger.info(f"Solana transaction submitted: {signed.tx_id}")

        last_valid = signed.unsigned.last_valid_block_height

        async def blockhash_expired() -> bool:
            if last_valid is None:
                return False
            try:
                height = await self.get_block_height()
            except (NetworkError, RpcError) as e:
                logger.warning(f"Could not read Solana block height: {e.message}")
                return False
            return height > last_valid

        snapshot = await self._await_final(signed.tx_id, is_expired=blockhash_expired)
        logger.info(f"Solana transaction confirmed: {signed.tx_id} (slot {snapshot.block})")
        return self._receipt(signed, snapshot)

    async def get_block_height(self) -> int:
        result = await self._rpc.call("getBlockHeight", [{"commitment": self._config.commitment}])
        if isinstance(result, bool) or not isinstance(result, int):
            raise NetworkError(f"Malformed getBlockHeight response: {result!r}", provider="solana")
        return result

    async def _fetch_status(self, tx_id: str) -> StatusSnapshot:
        result = await self._rpc.call(
            "getSignatureStatuses",
            [[tx_id], {"searchTransactionHistory": True}],
        )
        values = result.get("value") if isinstance(result, dict) else None
        if not isinstance(values, list):
            raise NetworkError(f"Malformed getSignatureStatuses response: {result!r}", provider="solana")
        status: Optional[Dict[str, Any]] = values[0] if values else None

        if status is None:
            return StatusSnapshot(status=TransferStatus.NOT_FOUND)

        slot = status.get("slot")
        if status.get("err") is not None:
            return StatusSnapshot(status=TransferStatus.FAILED, block=slot, error=str(status["err"]))

        if self._meets_commitment(status):
            return StatusSnapshot(status=TransferStatus.CONFIRMED, block=slot)
        return StatusSnapshot(status=TransferStatus.PENDING, block=slot)

    def _meets_commitment(self, status: Dict[str, Any]) -> bool:
        reached = status.get("confirmationStatus")
        if reached is None:
            # Older nodes report finalized transactions as confirmations=None
            reached = "finalized" if status.get("confirmations") is None else "processed"
        return _COMMITMENT_RANK.get(reached, -1) >= _COMMITMENT_RANK[self._config.commitment]

    async def _health_probe(self) -> Dict[str, Any]:
        health = await self._rpc.call("getHealth", [])
        height = await self.get_block_height()
        return {"status": health, "blockHeight": height}


__all__ = ["SolanaRpcConfig", "SolanaAdapter", "DEFAULT_SIGNATURE_FEE_LAMPORTS"]
