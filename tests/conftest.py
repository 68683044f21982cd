"""
Shared fixtures: an in-memory ledger adapter and a scripted funding signer.
"""

from __future__ import annotations

import itertools
from decimal import Decimal
from typing import Dict, List, Optional

import pytest
from eth_utils import to_checksum_address
from nacl.signing import SigningKey

from session_wallet.core.chain_types import Chain
from session_wallet.core.execution.amounts import from_atomic, to_atomic
from session_wallet.core.execution.base import LedgerAdapter
from session_wallet.core.execution.models import (
    Balance,
    SignedTransfer,
    StatusSnapshot,
    TransferReceipt,
    TransferStatus,
    UnsignedTransfer,
)
from session_wallet.core.execution.rpc import JsonRpcClient
from session_wallet.core.policy.models import SpendGuardConfig
from session_wallet.core.wallet.models import FundingConfirmation
from session_wallet.core.wallet.secret_store import InMemorySecretStore
from session_wallet.core.wallet.session_manager import SessionManager
from session_wallet.services.address import canonical_address
from session_wallet.services.base58 import base58_encode


def _sol_address(seed_byte: int) -> str:
    return base58_encode(bytes(SigningKey(bytes([seed_byte]) * 32).verify_key))


SOL_OWNER = _sol_address(1)
SOL_RECIPIENT = _sol_address(2)
ETH_OWNER = to_checksum_address("0xd8da6bf26964af9d7eed9e03e53415d37aa96045")
ETH_RECIPIENT = to_checksum_address("0x742d35cc6634c0532925a3b844bc454e4438f44e")


class FakeLedgerAdapter(LedgerAdapter):
    """In-memory ledger: balances in atomic units, instant finality."""

    def __init__(self, chain: Chain, fee_atomic: int = 5000):
        super().__init__(JsonRpcClient("http://fake.invalid", name=f"fake-{chain.value}"))
        self.chain = chain
        self.fee_atomic = fee_atomic
        self.balances: Dict[str, int] = {}
        self.submitted: List[SignedTransfer] = []
        self.statuses: Dict[str, TransferStatus] = {}
        self.balance_error: Optional[Exception] = None
        self.submit_error: Optional[Exception] = None
        self.build_error: Optional[Exception] = None
        self._tx_ids = itertools.count(1)

    def fund(self, address: str, amount: Decimal) -> None:
        self.balances[address] = self.balances.get(address, 0) + to_atomic(amount, self.chain)

    def validate_address(self, address: str) -> str:
        return canonical_address(address, self.chain)

    async def get_balance(self, address: str) -> Balance:
        if self.balance_error is not None:
            raise self.balance_error
        atomic = self.balances.get(address, 0)
        return Balance(chain=self.chain, address=address, amount=from_atomic(atomic, self.chain), atomic=atomic)

    async def build_transfer(self, from_address, to_address, amount, reason=None) -> UnsignedTransfer:
        if self.build_error is not None:
            raise self.build_error
        return UnsignedTransfer(
            chain=self.chain,
            from_address=from_address,
            to_address=self.validate_address(to_address),
            amount=amount,
            atomic=to_atomic(amount, self.chain),
            body={"to": to_address},
            fee_atomic=self.fee_atomic,
            reason=reason,
        )

    def load_prebuilt(self, from_address, to_address, payload, amount, reason=None, last_valid_block_height=None):
        return UnsignedTransfer(
            chain=self.chain,
            from_address=from_address,
            to_address=to_address,
            amount=amount,
            atomic=to_atomic(amount, self.chain),
            body=payload,
            fee_atomic=self.fee_atomic,
            reason=reason,
            last_valid_block_height=last_valid_block_height,
            prebuilt=True,
        )

    def sign(self, unsigned: UnsignedTransfer, key) -> SignedTransfer:
        assert key.chain == self.chain
        assert key.address == unsigned.from_address
        return SignedTransfer(unsigned=unsigned, raw=b"signed", tx_id=f"{self.chain.value}-tx-{next(self._tx_ids)}")

    async def submit(self, signed: SignedTransfer) -> TransferReceipt:
        self.submitted.append(signed)
        if self.submit_error is not None:
            raise self.submit_error
        unsigned = signed.unsigned
        self.balances[unsigned.from_address] = (
            self.balances.get(unsigned.from_address, 0) - unsigned.atomic - self.fee_atomic
        )
        self.balances[unsigned.to_address] = self.balances.get(unsigned.to_address, 0) + unsigned.atomic
        self.statuses[signed.tx_id] = TransferStatus.CONFIRMED
        return self._receipt(signed, StatusSnapshot(status=TransferStatus.CONFIRMED, block=1))

    async def estimate_transfer_fee(self, from_address: str, to_address: str) -> int:
        return self.fee_atomic

    async def _fetch_status(self, tx_id: str) -> StatusSnapshot:
        return StatusSnapshot(status=self.statuses.get(tx_id, TransferStatus.CONFIRMED), block=1)

    async def _health_probe(self):
        return {"fake": True}


class FakeFundingSigner:
    """Owner wallet that 'broadcasts' funding by crediting the fake ledger."""

    def __init__(self, adapters: Dict[Chain, FakeLedgerAdapter]):
        self.adapters = adapters
        self.owners = {Chain.SOLANA: SOL_OWNER, Chain.ETHEREUM: ETH_OWNER}
        self.requests: List[tuple] = []

    def primary_address(self, chain: Chain) -> str:
        return self.owners[chain]

    async def request_transfer(self, from_address, to_address, amount, chain) -> FundingConfirmation:
        self.requests.append((from_address, to_address, amount, chain))
        self.adapters[chain].fund(to_address, amount)
        return FundingConfirmation(
            chain=chain,
            tx_id=f"fund-{chain.value}-{len(self.requests)}",
            amount=amount,
            from_address=from_address,
            to_address=to_address,
        )


@pytest.fixture
def adapters() -> Dict[Chain, FakeLedgerAdapter]:
    return {
        Chain.SOLANA: FakeLedgerAdapter(Chain.SOLANA, fee_atomic=5000),
        Chain.ETHEREUM: FakeLedgerAdapter(Chain.ETHEREUM, fee_atomic=21000 * 2_000_000_000),
    }


@pytest.fixture
def funding_signer(adapters) -> FakeFundingSigner:
    return FakeFundingSigner(adapters)


@pytest.fixture
def guard_config() -> SpendGuardConfig:
    return SpendGuardConfig.build(
        max_spend_sol="0.1",
        max_per_tx_sol="0.05",
        max_spend_eth="0.01",
        max_per_tx_eth="0.005",
    )


@pytest.fixture
def store() -> InMemorySecretStore:
    return InMemorySecretStore()


@pytest.fixture
def manager(adapters, funding_signer, store, guard_config) -> SessionManager:
    return SessionManager(
        adapters,
        funding_signer,
        store=store,
        guard_config=guard_config,
        funding_timeout_s=5,
        balance_timeout_s=1,
    )
