"""
Error Classification

Defines the error taxonomy for session wallets. Every error carries a
category and a ``recoverable`` flag:

- recoverable errors (network, ambiguous submission) may be attempted again
  after re-checking chain state with fresh nonce/blockhash data;
- unrecoverable errors (validation, security rejection, deterministic on-chain
  rejection, bad configuration) need the request or the setup to change.
"""

from __future__ import annotations

from enum import Enum
from typing import TYPE_CHECKING, Any, Dict, Optional

if TYPE_CHECKING:
    from .policy.models import Rejection


class ErrorCategory(str, Enum):
    """Categories of errors for reporting and retry decisions."""

    CONFIG = "config"                  # Invalid spend guard / settings
    VALIDATION = "validation"          # Malformed request, never reached the network
    SECURITY = "security"              # Allow-list or limit violation
    NETWORK = "network"                # Transport failure before finality
    TIMEOUT = "timeout"                # Deadline reached, outcome unknown
    INSUFFICIENT_FUNDS = "insufficient_funds"
    REJECTED = "rejected"              # Deterministic node / on-chain rejection
    SECRET = "secret"                  # Persisted key material unusable
    SESSION = "session"                # Operation not valid in the session's state
    PROVIDER = "provider"              # External quote service error
    UNKNOWN = "unknown"


class SessionWalletError(Exception):
    """Base class for all session wallet errors."""

    category: ErrorCategory = ErrorCategory.UNKNOWN
    recoverable: bool = False

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> Dict[str, Any]:
        return {
            "error": type(self).__name__,
            "category": self.category.value,
            "recoverable": self.recoverable,
            "message": self.message,
            "details": self.details,
        }


class ConfigError(SessionWalletError):
    """Invalid spend guard configuration. Fatal at construction."""

    category = ErrorCategory.CONFIG


class ValidationError(SessionWalletError):
    """Malformed request, rejected before authorization."""

    category = ErrorCategory.VALIDATION


class InvalidAddress(ValidationError):
    """Address is not valid for the target ledger."""

    def __init__(self, message: str, address: Optional[str] = None, chain: Optional[str] = None):
        super().__init__(message, details={"address": address, "chain": chain})
        self.address = address


class InvalidAmount(ValidationError):
    """Amount is non-positive, non-finite or finer than the atomic unit."""

    def __init__(self, message: str, amount: Any = None):
        super().__init__(message, details={"amount": str(amount) if amount is not None else None})
        self.amount = amount


class SecurityRejection(SessionWalletError):
    """The spend guard refused the transfer. The session stays active."""

    category = ErrorCategory.SECURITY

    def __init__(self, rejection: "Rejection"):
        super().__init__(rejection.message, details=rejection.to_dict())
        self.rejection = rejection


class NetworkError(SessionWalletError):
    """
    Transport failure talking to a chain RPC endpoint.

    ``request_sent`` is False only when the request provably never left
    (connection refused / connect timeout).
    """

    category = ErrorCategory.NETWORK
    recoverable = True

    def __init__(
        self,
        message: str = "Network error",
        provider: Optional[str] = None,
        request_sent: bool = True,
    ):
        super().__init__(message, details={"provider": provider, "requestSent": request_sent})
        self.provider = provider
        self.request_sent = request_sent


class RpcError(SessionWalletError):
    """The node answered with a JSON-RPC error object."""

    category = ErrorCategory.REJECTED

    def __init__(self, message: str, code: Optional[int] = None, data: Any = None):
        super().__init__(message, details={"code": code, "data": data})
        self.code = code
        self.data = data


class SubmissionFailed(NetworkError):
    """
    Broadcast or confirmation failed before finality.

    When ``funds_may_have_moved`` is True the outcome is ambiguous (e.g. a
    timeout): the transfer may still land, so it must not be blindly resent
    and its spend reservation is kept.
    """

    def __init__(
        self,
        message: str = "Transaction submission failed",
        tx_id: Optional[str] = None,
        funds_may_have_moved: bool = True,
        provider: Optional[str] = None,
    ):
        super().__init__(message, provider=provider, request_sent=funds_may_have_moved)
        self.category = ErrorCategory.TIMEOUT if funds_may_have_moved else ErrorCategory.NETWORK
        self.tx_id = tx_id
        self.funds_may_have_moved = funds_may_have_moved
        self.details.update({"txId": tx_id, "fundsMayHaveMoved": funds_may_have_moved})


class Rejected(SessionWalletError):
    """Deterministic rejection (insufficient funds, on-chain error). No funds moved."""

    category = ErrorCategory.REJECTED

    def __init__(
        self,
        message: str = "Transaction rejected",
        tx_id: Optional[str] = None,
        reason: Optional[str] = None,
        category: ErrorCategory = ErrorCategory.REJECTED,
    ):
        super().__init__(message, details={"txId": tx_id, "reason": reason})
        self.category = category
        self.tx_id = tx_id
        self.reason = reason


class MalformedSecret(SessionWalletError):
    """Persisted session secret cannot be decoded. Callers regenerate."""

    category = ErrorCategory.SECRET


class KeyGenerationError(SessionWalletError):
    """The entropy source failed. Fatal, not retryable."""

    category = ErrorCategory.SECRET


class KeyErasedError(SessionWalletError):
    """Key material was zeroised and can no longer sign or derive addresses."""

    category = ErrorCategory.SECRET


class SessionStateError(SessionWalletError):
    """Operation is not valid in the session's current state."""

    category = ErrorCategory.SESSION


class SessionNotActiveError(SessionStateError):
    """Session has not been started."""


class SessionRevokedError(SessionStateError):
    """Session was revoked; start a new session to continue."""


class SwapQuoteError(SessionWalletError):
    """The swap quote service refused or failed to produce a usable quote."""

    category = ErrorCategory.PROVIDER


_INSUFFICIENT_FUNDS_PATTERNS = (
    "insufficient funds",
    "insufficient lamports",
    "insufficient balance",
    "attempt to debit an account but found no record of a prior credit",
    "not enough",
    "exceeds balance",
)

_REVERT_PATTERNS = (
    "revert",
    "execution reverted",
    "instructionerror",
    "custom program error",
    "transaction failed",
)


def classify_rejection(message: str) -> ErrorCategory:
    """
    Classify a node or on-chain error message.

    Returns ``INSUFFICIENT_FUNDS`` or ``REJECTED`` for the deterministic cases
    and ``UNKNOWN`` otherwise.
    """
    lowered = message.lower()
    if any(p in lowered for p in _INSUFFICIENT_FUNDS_PATTERNS):
        return ErrorCategory.INSUFFICIENT_FUNDS
    if any(p in lowered for p in _REVERT_PATTERNS):
        return ErrorCategory.REJECTED
    return ErrorCategory.UNKNOWN


def rejection_category(message: str) -> ErrorCategory:
    """Category for a ``Rejected`` error: insufficient funds or plain rejection."""
    category = classify_rejection(message)
    return ErrorCategory.REJECTED if category == ErrorCategory.UNKNOWN else category


__all__ = [
    "ErrorCategory",
    "SessionWalletError",
    "ConfigError",
    "ValidationError",
    "InvalidAddress",
    "InvalidAmount",
    "SecurityRejection",
    "NetworkError",
    "RpcError",
    "SubmissionFailed",
    "Rejected",
    "MalformedSecret",
    "KeyGenerationError",
    "KeyErasedError",
    "SessionStateError",
    "SessionNotActiveError",
    "SessionRevokedError",
    "SwapQuoteError",
    "classify_rejection",
    "rejection_category",
]
