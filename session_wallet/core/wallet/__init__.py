"""
Wallet Management Module

Disposable session keys for autonomous agent execution:
- KeyVault: generate, restore and erase per-chain session keys
- SessionManager: start, fund, guarded transfers, balances, revoke
- BalanceMonitor: background balance refresh

Usage:
    from session_wallet.core.wallet import SessionManager, ClientFundingSigner

    manager = SessionManager(adapters, ClientFundingSigner(owners))
    keys = await manager.start()
    print(keys.addresses())

    # Guarded outgoing transfer
    receipt = await manager.transfer(request)

    # Refund residual funds and erase the keys
    result = await manager.revoke()
"""

from .funding import ClientFundingSigner, FundingSigner, FundingUnavailableError
from .key_vault import KeyVault
from .models import (
    ETHEREUM_STORAGE_KEY,
    SOLANA_STORAGE_KEY,
    STORAGE_KEYS,
    ChainKey,
    FundingConfirmation,
    RefundOutcome,
    RefundStatus,
    RevokeResult,
    SessionKeys,
    SessionStatus,
)
from .monitor import BalanceMonitor
from .secret_store import FileSecretStore, InMemorySecretStore, SecretStore, create_secret_store
from .session_manager import SessionManager

__all__ = [
    # Manager
    "SessionManager",
    "BalanceMonitor",
    "KeyVault",
    # Funding
    "FundingSigner",
    "ClientFundingSigner",
    "FundingUnavailableError",
    # Storage
    "SecretStore",
    "InMemorySecretStore",
    "FileSecretStore",
    "create_secret_store",
    # Models
    "SOLANA_STORAGE_KEY",
    "ETHEREUM_STORAGE_KEY",
    "STORAGE_KEYS",
    "ChainKey",
    "SessionKeys",
    "SessionStatus",
    "FundingConfirmation",
    "RefundOutcome",
    "RefundStatus",
    "RevokeResult",
]
