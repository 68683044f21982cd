"""
Spend Guard

Authorizes agent-initiated transfers against per-chain session limits.

Checks run in a fixed order and the first failure wins:
1. chain configured / guard still active
2. recipient allow-list (when non-empty)
3. per-transaction ceiling
4. session ceiling (running total + amount)

An approval reserves its amount immediately, under the same lock as the
checks, so concurrent authorizations can never jointly exceed a ceiling.
A reservation is later either committed (``record_success``) or rolled back
(``record_failure``) exactly once.
"""

from __future__ import annotations

import logging
import threading
import uuid
from decimal import Decimal
from typing import Dict, Union

from ..chain_types import Chain, native_symbol
from ..errors import InvalidAmount
from .models import (
    Approval,
    ChainUsage,
    GuardStatus,
    Rejection,
    RejectionCode,
    SpendGuardConfig,
    TransferRequest,
)

logger = logging.getLogger(__name__)


class SpendGuard:
    """
    Spend limits for one session.

    Thread-safe: ``authorize`` is a single atomic check-and-reserve step, so
    it is safe from concurrent asyncio tasks and from worker threads.
    """

    def __init__(self, config: SpendGuardConfig):
        self._config = config
        self._lock = threading.Lock()
        self._status = GuardStatus.ACTIVE
        self._spent: Dict[Chain, Decimal] = {chain: Decimal(0) for chain in config.limits}
        self._pending: Dict[str, Approval] = {}

    @property
    def config(self) -> SpendGuardConfig:
        return self._config

    @property
    def status(self) -> GuardStatus:
        return self._status

    @property
    def is_closed(self) -> bool:
        return self._status == GuardStatus.CLOSED

    def authorize(self, request: TransferRequest) -> Union[Approval, Rejection]:
        """
        Check ``request`` against the limits and reserve its amount.

        Raises:
            InvalidAmount: non-positive or non-finite amount (requests are
                expected to be validated before they get here).
        """
        amount = request.amount
        if not isinstance(amount, Decimal) or not amount.is_finite() or amount <= 0:
            raise InvalidAmount(f"Amount must be a positive decimal, got {amount!r}", amount=amount)

        chain = request.chain
        with self._lock:
            rejection = self._check(request)
            if rejection is not None:
                logger.info(
                    f"Transfer rejected on {chain.value}: {rejection.code.value} "
                    f"({amount} {native_symbol(chain)} to {request.recipient})"
                )
                return rejection

            self._spent[chain] += amount
            approval = Approval(
                reservation_id=uuid.uuid4().hex,
                chain=chain,
                recipient=request.recipient,
                amount=amount,
            )
            self._pending[approval.reservation_id] = approval
            spent = self._spent[chain]

        logger.info(
            f"Transfer approved on {chain.value}: {amount} {native_symbol(chain)} "
            f"(session spend now {spent})"
        )
        return approval

    def _check(self, request: TransferRequest) -> Rejection | None:
        chain = request.chain
        symbol = native_symbol(chain)
        limits = self._config.limits_for(chain)

        if limits is None:
            return Rejection(
                code=RejectionCode.CHAIN_NOT_CONFIGURED,
                chain=chain,
                message=f"Security Blocked: No spending limits are configured for {chain.value}.",
                suggestion="Configure limits for this chain before spending on it",
            )

        if self._status == GuardStatus.CLOSED:
            return Rejection(
                code=RejectionCode.SESSION_CLOSED,
                chain=chain,
                message="Security Blocked: Session has been revoked.",
                suggestion="Start a new session to continue",
            )

        if limits.allow_list and request.recipient not in limits.allow_list:
            return Rejection(
                code=RejectionCode.RECIPIENT_NOT_ALLOWED,
                chain=chain,
                message=f"Security Blocked: Address {request.recipient} is not in the allowed list.",
                details={"recipient": request.recipient, "allowList": sorted(limits.allow_list)},
                suggestion="Send only to an address on the session allow-list",
            )

        if request.amount > limits.max_per_transaction:
            return Rejection(
                code=RejectionCode.PER_TRANSACTION_LIMIT_EXCEEDED,
                chain=chain,
                message=(
                    f"Security Blocked: Amount {request.amount} {symbol} exceeds "
                    f"per-transaction limit of {limits.max_per_transaction}."
                ),
                details={
                    "amount": str(request.amount),
                    "maxPerTransaction": str(limits.max_per_transaction),
                },
                suggestion=f"Split the transfer or keep it at or below {limits.max_per_transaction} {symbol}",
            )

        spent = self._spent[chain]
        if spent + request.amount > limits.max_total:
            remaining = limits.max_total - spent
            return Rejection(
                code=RejectionCode.SESSION_LIMIT_EXCEEDED,
                chain=chain,
                message=(
                    f"Security Blocked: Session limit reached. "
                    f"Remaining: {remaining:.4f} {symbol}."
                ),
                details={
                    "amount": str(request.amount),
                    "spent": str(spent),
                    "maxTotal": str(limits.max_total),
                    "remaining": str(remaining),
                },
                suggestion="Start a new session with a higher limit to continue",
            )

        return None

    def record_failure(self, approval: Approval) -> bool:
        """
        Roll back a reservation whose transfer provably never moved funds.

        Returns False if the reservation was already settled.
        """
        with self._lock:
            pending = self._pending.pop(approval.reservation_id, None)
            if pending is None:
                return False
            self._spent[pending.chain] -= pending.amount
            spent = self._spent[pending.chain]

        logger.info(
            f"Reservation {pending.reservation_id} rolled back on {pending.chain.value} "
            f"(session spend now {spent})"
        )
        return True

    def record_success(self, approval: Approval) -> bool:
        """Commit a reservation. It can no longer be rolled back."""
        with self._lock:
            return self._pending.pop(approval.reservation_id, None) is not None

    def close(self) -> None:
        """Refuse all further authorizations. Irreversible."""
        with self._lock:
            self._status = GuardStatus.CLOSED

    def usage(self) -> Dict[Chain, ChainUsage]:
        with self._lock:
            pending: Dict[Chain, Decimal] = {chain: Decimal(0) for chain in self._spent}
            for approval in self._pending.values():
                pending[approval.chain] += approval.amount
            return {
                chain: ChainUsage(
                    chain=chain,
                    spent=self._spent[chain],
                    pending=pending[chain],
                    max_total=limits.max_total,
                    max_per_transaction=limits.max_per_transaction,
                )
                for chain, limits in self._config.limits.items()
            }


__all__ = ["SpendGuard"]
