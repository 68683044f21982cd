"""
Ledger Access Layer

One adapter per supported ledger, behind a common interface:
- SolanaAdapter: native SOL transfers and prebuilt (swap) transactions
- EvmAdapter: native ETH transfers as EIP-1559 transactions

Usage:
    from session_wallet.core.execution import SolanaAdapter, SolanaRpcConfig

    adapter = SolanaAdapter(SolanaRpcConfig(rpc_url="https://api.devnet.solana.com"))
    balance = await adapter.get_balance(address)

    unsigned = await adapter.build_transfer(address, recipient, Decimal("0.01"))
    receipt = await adapter.submit(adapter.sign(unsigned, key))
"""

from .amounts import from_atomic, parse_amount, to_atomic
from .base import LedgerAdapter
from .evm_adapter import EvmAdapter, EvmRpcConfig
from .models import (
    Balance,
    PrebuiltTransaction,
    SignedTransfer,
    StatusSnapshot,
    SweepPlan,
    TransferReceipt,
    TransferStatus,
    UnsignedTransfer,
)
from .rpc import JsonRpcClient
from .solana_adapter import SolanaAdapter, SolanaRpcConfig

__all__ = [
    # Adapters
    "LedgerAdapter",
    "SolanaAdapter",
    "SolanaRpcConfig",
    "EvmAdapter",
    "EvmRpcConfig",
    "JsonRpcClient",
    # Models
    "Balance",
    "PrebuiltTransaction",
    "SignedTransfer",
    "StatusSnapshot",
    "SweepPlan",
    "TransferReceipt",
    "TransferStatus",
    "UnsignedTransfer",
    # Amounts
    "parse_amount",
    "to_atomic",
    "from_atomic",
]
