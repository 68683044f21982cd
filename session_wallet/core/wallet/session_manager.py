"""
Session Manager

Owns one session: its keys, its spend guard, and the lifecycle
``UNINITIALIZED -> ACTIVE -> REVOKED``. Every agent-initiated transfer goes
through the spend guard before it reaches a ledger adapter.

Reservation policy for failed transfers: a reservation is rolled back only
when the failure provably happened before any funds could move (the
transfer was never broadcast, the node rejected it deterministically, or the
chain proved it can no longer land). Ambiguous failures such as confirmation
timeouts keep the reservation, so retries can never push the session past
its ceiling.
"""

from __future__ import annotations

import asyncio
import dataclasses
import logging
from contextlib import AsyncExitStack
from datetime import datetime, timezone
from decimal import Decimal
from typing import Dict, Mapping, Optional

from ..chain_types import SUPPORTED_CHAINS, Chain, native_symbol, normalize_chain
from ..errors import (
    ConfigError,
    MalformedSecret,
    Rejected,
    SecurityRejection,
    SessionNotActiveError,
    SessionRevokedError,
    SessionWalletError,
    SubmissionFailed,
    ValidationError,
)
from ..execution.amounts import parse_amount, require_positive
from ..execution.base import LedgerAdapter
from ..execution.models import Balance, TransferReceipt, TransferStatus, UnsignedTransfer
from ..policy.models import ChainUsage, Rejection, SpendGuardConfig, TransferRequest
from ..policy.spend_guard import SpendGuard
from .funding import FundingSigner
from .key_vault import KeyVault
from .models import (
    STORAGE_KEYS,
    ChainKey,
    FundingConfirmation,
    RefundOutcome,
    RefundStatus,
    RevokeResult,
    SessionKeys,
    SessionStatus,
)
from .secret_store import InMemorySecretStore, SecretStore

logger = logging.getLogger(__name__)


class SessionManager:
    """
    Manages one agent session.

    Usage:
        manager = SessionManager(adapters, funding_signer, store=store)
        keys = await manager.start()
        await manager.fund(Chain.SOLANA, Decimal("0.05"))
        receipt = await manager.transfer(TransferRequest(
            chain=Chain.SOLANA,
            recipient="...",
            amount=Decimal("0.01"),
        ))
        result = await manager.revoke()
    """

    def __init__(
        self,
        adapters: Mapping[Chain, LedgerAdapter],
        funding_signer: FundingSigner,
        store: Optional[SecretStore] = None,
        vault: Optional[KeyVault] = None,
        guard_config: Optional[SpendGuardConfig] = None,
        funding_timeout_s: float = 120.0,
        balance_timeout_s: Optional[float] = 30.0,
    ):
        missing = [c.value for c in SUPPORTED_CHAINS if c not in adapters]
        if missing:
            raise ConfigError(f"No ledger adapter configured for: {', '.join(missing)}")

        self._adapters: Dict[Chain, LedgerAdapter] = dict(adapters)
        self._signer = funding_signer
        self._store = store if store is not None else InMemorySecretStore()
        self._vault = vault or KeyVault()
        self._default_config = guard_config
        self._funding_timeout_s = funding_timeout_s
        self._balance_timeout_s = balance_timeout_s

        self._status = SessionStatus.UNINITIALIZED
        self._keys: Optional[SessionKeys] = None
        self._guard: Optional[SpendGuard] = None
        self._lifecycle_lock = asyncio.Lock()
        self._chain_locks: Dict[Chain, asyncio.Lock] = {c: asyncio.Lock() for c in self._adapters}

    # ------------------------------------------------------------------
    # State
    # ------------------------------------------------------------------

    @property
    def status(self) -> SessionStatus:
        return self._status

    @property
    def is_active(self) -> bool:
        return self._status == SessionStatus.ACTIVE

    @property
    def adapters(self) -> Dict[Chain, LedgerAdapter]:
        return dict(self._adapters)

    @property
    def funding_signer(self) -> FundingSigner:
        return self._signer

    def _require_active(self) -> SessionKeys:
        if self._status == SessionStatus.REVOKED:
            raise SessionRevokedError("Session has been revoked; start a new session to continue")
        if self._status != SessionStatus.ACTIVE or self._keys is None:
            raise SessionNotActiveError("Session has not been started")
        return self._keys

    def _adapter(self, chain: Chain) -> LedgerAdapter:
        try:
            return self._adapters[chain]
        except KeyError:
            raise ValidationError(f"Chain {chain.value} is not supported by this session") from None

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def start(self, config: Optional[SpendGuardConfig] = None) -> SessionKeys:
        """
        Restore the persisted session, or create and persist a new one.

        Idempotent while the session is active.

        Raises:
            SessionRevokedError: The session was revoked.
            KeyGenerationError: Fresh keys could not be generated.
        """
        async with self._lifecycle_lock:
            if self._status == SessionStatus.REVOKED:
                raise SessionRevokedError("Session has been revoked; create a new session manager")
            if self._status == SessionStatus.ACTIVE and self._keys is not None:
                return self._keys

            guard_config = config or self._default_config
            if guard_config is None:
                from ...config import settings
                guard_config = SpendGuardConfig.from_settings(settings)

            keys = self._load_or_generate()
            self._guard = SpendGuard(guard_config)
            self._keys = keys
            self._status = SessionStatus.ACTIVE

        logger.info(
            "Session started: "
            + ", ".join(f"{c.value}={a}" for c, a in keys.addresses().items())
        )
        return keys

    def _load_or_generate(self) -> SessionKeys:
        stored = {key: self._store.get(key) for key in STORAGE_KEYS.values()}
        if any(stored.values()):
            try:
                keys = self._vault.restore(stored)
            except MalformedSecret as e:
                logger.warning(f"Stored session secret is unusable ({e.message}); generating new keys")
            else:
                logger.info("Restored session keys from storage")
                return keys

        keys = self._vault.generate()
        for storage_key, blob in keys.secrets().items():
            self._store.put(storage_key, blob)
        return keys

    # ------------------------------------------------------------------
    # Funding (inbound, not guarded)
    # ------------------------------------------------------------------

    async def fund(self, chain: Chain | str, amount: Decimal) -> FundingConfirmation:
        """
        Ask the funding signer to move ``amount`` into the session, then wait
        for the transfer to become final.

        Raises:
            SubmissionFailed: Funding was not final within the funding timeout.
            Rejected: The funding transfer failed on-chain.
        """
        keys = self._require_active()
        chain = normalize_chain(chain)
        amount = require_positive(parse_amount(amount))
        adapter = self._adapter(chain)

        from_address = self._signer.primary_address(chain)
        to_address = keys.address(chain)
        logger.info(f"Funding {chain.value} session with {amount} {native_symbol(chain)} from {from_address}")

        try:
            return await asyncio.wait_for(
                self._fund(adapter, chain, from_address, to_address, amount),
                timeout=self._funding_timeout_s,
            )
        except asyncio.TimeoutError:
            raise SubmissionFailed(
                f"Funding of the {chain.value} session not confirmed within {self._funding_timeout_s:.0f}s",
                funds_may_have_moved=True,
            ) from None

    async def _fund(
        self,
        adapter: LedgerAdapter,
        chain: Chain,
        from_address: str,
        to_address: str,
        amount: Decimal,
    ) -> FundingConfirmation:
        confirmation = await self._signer.request_transfer(from_address, to_address, amount, chain)
        if not confirmation.confirmed:
            await adapter.wait_for_finality(confirmation.tx_id, timeout_s=self._funding_timeout_s)
            confirmation = dataclasses.replace(
                confirmation,
                confirmed=True,
                confirmed_at=datetime.now(timezone.utc),
            )
        logger.info(f"Funding confirmed on {chain.value}: {confirmation.tx_id}")
        return confirmation

    # ------------------------------------------------------------------
    # Guarded transfers
    # ------------------------------------------------------------------

    async def transfer(self, request: TransferRequest) -> TransferReceipt:
        """
        Authorize, sign and submit an outgoing transfer.

        Raises:
            SecurityRejection: The spend guard refused the transfer.
            SubmissionFailed / Rejected: Propagated from the ledger adapter.
        """
        keys = self._require_active()
        adapter = self._adapter(request.chain)
        guard = self._guard
        assert guard is not None

        decision = guard.authorize(request)
        if isinstance(decision, Rejection):
            raise SecurityRejection(decision)
        approval = decision

        broadcast = False
        try:
            async with self._chain_locks[request.chain]:
                key = keys[request.chain]
                unsigned = await self._build(adapter, key, request)
                signed = adapter.sign(unsigned, key)
                broadcast = True
                receipt = await adapter.submit(signed)
        except asyncio.CancelledError:
            if not broadcast:
                guard.record_failure(approval)
            raise
        except Exception as e:
            if _proven_pre_movement(e, broadcast):
                guard.record_failure(approval)
            else:
                logger.warning(
                    f"Outcome of {request.chain.value} transfer unknown ({e}); "
                    f"keeping reservation {approval.reservation_id}"
                )
            raise

        guard.record_success(approval)
        logger.info(
            f"Transfer confirmed on {request.chain.value}: {receipt.amount} "
            f"{native_symbol(request.chain)} to {receipt.to_address} ({receipt.tx_id})"
        )
        return receipt

    async def _build(
        self,
        adapter: LedgerAdapter,
        key: ChainKey,
        request: TransferRequest,
    ) -> UnsignedTransfer:
        if request.payload is None:
            return await adapter.build_transfer(
                key.address,
                request.recipient,
                request.amount,
                reason=request.reason,
            )

        load_prebuilt = getattr(adapter, "load_prebuilt", None)
        if load_prebuilt is None:
            raise ValidationError(f"Prebuilt transactions are not supported on {request.chain.value}")
        return load_prebuilt(
            key.address,
            request.recipient,
            request.payload.serialized,
            request.amount,
            reason=request.reason,
            last_valid_block_height=request.payload.last_valid_block_height,
        )

    async def transfer_status(self, chain: Chain | str, tx_id: str) -> TransferStatus:
        """On-chain re-check of a transfer, e.g. before retrying an ambiguous one."""
        return await self._adapter(normalize_chain(chain)).get_transfer_status(tx_id)

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def address(self, chain: Chain | str) -> str:
        return self._require_active().address(normalize_chain(chain))

    async def balances(self) -> Dict[Chain, Optional[Balance]]:
        """
        Balance of every session address. A chain whose read fails or times
        out reports None without affecting the others.
        """
        keys = self._require_active()
        addresses = keys.addresses()

        async def read(chain: Chain) -> Optional[Balance]:
            try:
                return await asyncio.wait_for(
                    self._adapters[chain].get_balance(addresses[chain]),
                    timeout=self._balance_timeout_s,
                )
            except asyncio.TimeoutError:
                logger.warning(f"Balance read timed out on {chain.value}")
            except SessionWalletError as e:
                logger.warning(f"Balance read failed on {chain.value}: {e.message}")
            except Exception as e:  # noqa: BLE001
                logger.error(f"Balance read on {chain.value} crashed: {e}", exc_info=True)
            return None

        chains = list(self._adapters)
        results = await asyncio.gather(*(read(chain) for chain in chains))
        return dict(zip(chains, results))

    def usage(self) -> Dict[Chain, ChainUsage]:
        if self._guard is None:
            raise SessionNotActiveError("Session has not been started")
        return self._guard.usage()

    # ------------------------------------------------------------------
    # Revoke
    # ------------------------------------------------------------------

    async def revoke(self) -> RevokeResult:
        """
        Refund residual balances to the user, erase the keys and close the
        session for good.

        Per-chain refund failures are logged and reported in the result; they
        never abort the revoke. A second call is a no-op.

        Raises:
            ValidationError: A chain has no refund address; the session stays
                active and nothing is erased.
        """
        async with self._lifecycle_lock:
            if self._status == SessionStatus.REVOKED:
                return RevokeResult(already_revoked=True)
            keys = self._require_active()
            guard = self._guard
            assert guard is not None
            owners = self._refund_destinations()

            guard.close()
            logger.info("Revoking session")

            refunds: Dict[Chain, RefundOutcome] = {}
            try:
                async with AsyncExitStack() as stack:
                    # Wait for in-flight transfers so the sweep sees final balances
                    for chain in sorted(self._chain_locks, key=lambda c: c.value):
                        await stack.enter_async_context(self._chain_locks[chain])
                    outcomes = await asyncio.gather(
                        *(self._refund(chain, keys[chain], owners[chain]) for chain in self._adapters)
                    )
                    refunds = {outcome.chain: outcome for outcome in outcomes}
            finally:
                self._vault.erase(keys)
                self._delete_stored_secrets()
                self._status = SessionStatus.REVOKED
                self._keys = None

            for outcome in refunds.values():
                if outcome.status == RefundStatus.FAILED:
                    logger.error(
                        f"Refund failed on {outcome.chain.value}; residual funds remain at the "
                        f"erased session address: {outcome.detail}"
                    )

        logger.info("Session revoked")
        return RevokeResult(already_revoked=False, refunds=refunds)

    def _refund_destinations(self) -> Dict[Chain, str]:
        """Owner address per chain. Keys are never erased without somewhere to refund to."""
        owners: Dict[Chain, str] = {}
        missing: Dict[str, str] = {}
        for chain in self._adapters:
            try:
                owners[chain] = self._signer.primary_address(chain)
            except SessionWalletError as e:
                missing[chain.value] = e.message
        if missing:
            raise ValidationError(
                f"Cannot revoke without a refund address for: {', '.join(missing)}",
                details={"missing": missing},
            )
        return owners

    async def _refund(self, chain: Chain, key: ChainKey, owner: str) -> RefundOutcome:
        adapter = self._adapters[chain]
        symbol = native_symbol(chain)
        try:
            plan = await adapter.build_sweep(key.address, owner)
            if plan.transfer is None:
                detail = (
                    f"Balance {plan.balance.amount} {symbol} does not exceed the refund fee buffer"
                )
                logger.info(f"Skipping {chain.value} refund: {detail}")
                return RefundOutcome(chain=chain, status=RefundStatus.SKIPPED, to_address=owner, detail=detail)

            signed = adapter.sign(plan.transfer, key)
            receipt = await adapter.submit(signed)
        except SessionWalletError as e:
            logger.warning(f"Refund on {chain.value} failed: {e.message}")
            return RefundOutcome(
                chain=chain,
                status=RefundStatus.FAILED,
                to_address=owner,
                tx_id=getattr(e, "tx_id", None),
                detail=e.message,
            )
        except Exception as e:  # noqa: BLE001
            logger.error(f"Refund on {chain.value} crashed: {e}", exc_info=True)
            return RefundOutcome(chain=chain, status=RefundStatus.FAILED, to_address=owner, detail=str(e))

        logger.info(f"Refunded {receipt.amount} {symbol} to {owner} ({receipt.tx_id})")
        return RefundOutcome(
            chain=chain,
            status=RefundStatus.REFUNDED,
            amount=receipt.amount,
            tx_id=receipt.tx_id,
            to_address=owner,
        )

    def _delete_stored_secrets(self) -> None:
        for storage_key in STORAGE_KEYS.values():
            try:
                self._store.delete(storage_key)
            except OSError as e:
                logger.error(f"Could not delete stored secret {storage_key}: {e}")


def _proven_pre_movement(error: Exception, broadcast: bool) -> bool:
    if not broadcast:
        return True
    if isinstance(error, Rejected):
        return True
    if isinstance(error, SubmissionFailed) and not error.funds_may_have_moved:
        return True
    return False


__all__ = ["SessionManager"]
