"""
Tests for the Session Manager

Lifecycle, guarded transfers, reservation rollback, balances and revoke,
against the in-memory ledger from conftest.
"""

import asyncio
from decimal import Decimal
from unittest.mock import AsyncMock

import pytest

from session_wallet.core.chain_types import Chain
from session_wallet.core.errors import (
    ConfigError,
    InvalidAmount,
    NetworkError,
    Rejected,
    SecurityRejection,
    SessionNotActiveError,
    SessionRevokedError,
    SubmissionFailed,
    ValidationError,
)
from session_wallet.core.policy import RejectionCode, SpendGuardConfig, TransferRequest
from session_wallet.core.wallet import (
    ETHEREUM_STORAGE_KEY,
    ClientFundingSigner,
    SOLANA_STORAGE_KEY,
    KeyVault,
    RefundStatus,
    SessionManager,
    SessionStatus,
)

from conftest import ETH_OWNER, SOL_OWNER, SOL_RECIPIENT


def sol_transfer(amount: str) -> TransferRequest:
    return TransferRequest(chain=Chain.SOLANA, recipient=SOL_RECIPIENT, amount=Decimal(amount))


# =============================================================================
# Lifecycle
# =============================================================================

class TestStart:

    def test_requires_an_adapter_per_chain(self, adapters, funding_signer):
        with pytest.raises(ConfigError):
            SessionManager({Chain.SOLANA: adapters[Chain.SOLANA]}, funding_signer)

    @pytest.mark.asyncio
    async def test_start_persists_fresh_keys(self, manager, store):
        keys = await manager.start()
        assert manager.status == SessionStatus.ACTIVE
        assert store.get(SOLANA_STORAGE_KEY) is not None
        assert store.get(ETHEREUM_STORAGE_KEY) is not None
        assert KeyVault().restore({
            SOLANA_STORAGE_KEY: store.get(SOLANA_STORAGE_KEY),
            ETHEREUM_STORAGE_KEY: store.get(ETHEREUM_STORAGE_KEY),
        }).addresses() == keys.addresses()

    @pytest.mark.asyncio
    async def test_start_is_idempotent(self, manager):
        first = await manager.start()
        second = await manager.start()
        assert first is second

    @pytest.mark.asyncio
    async def test_start_restores_persisted_keys(self, adapters, funding_signer, store, guard_config):
        keys = KeyVault().generate()
        for name, blob in keys.secrets().items():
            store.put(name, blob)

        manager = SessionManager(adapters, funding_signer, store=store, guard_config=guard_config)
        restored = await manager.start()
        assert restored.addresses() == keys.addresses()

    @pytest.mark.asyncio
    async def test_malformed_secret_regenerates(self, manager, store):
        store.put(SOLANA_STORAGE_KEY, "[1, 2, 3]")
        store.put(ETHEREUM_STORAGE_KEY, "0x1234")

        keys = await manager.start()

        assert manager.is_active
        assert store.get(ETHEREUM_STORAGE_KEY) != "0x1234"
        assert store.get(ETHEREUM_STORAGE_KEY) == keys.secrets()[ETHEREUM_STORAGE_KEY]

    @pytest.mark.asyncio
    async def test_operations_require_started_session(self, manager):
        with pytest.raises(SessionNotActiveError):
            await manager.transfer(sol_transfer("0.01"))
        with pytest.raises(SessionNotActiveError):
            await manager.balances()
        with pytest.raises(SessionNotActiveError):
            manager.usage()


# =============================================================================
# Funding
# =============================================================================

class TestFund:

    @pytest.mark.asyncio
    async def test_fund_moves_owner_funds_without_spend_guard(self, manager, adapters, funding_signer):
        keys = await manager.start()

        confirmation = await manager.fund(Chain.SOLANA, Decimal("0.5"))

        assert confirmation.confirmed
        assert confirmation.from_address == SOL_OWNER
        assert confirmation.to_address == keys.address(Chain.SOLANA)
        assert adapters[Chain.SOLANA].balances[keys.address(Chain.SOLANA)] == 500_000_000
        # Funding above the session ceiling is not a spend
        assert manager.usage()[Chain.SOLANA].spent == Decimal("0")

    @pytest.mark.asyncio
    async def test_fund_then_transfer_at_per_transaction_limit(self, manager):
        await manager.start()
        await manager.fund(Chain.SOLANA, Decimal("0.05"))
        receipt = await manager.transfer(sol_transfer("0.05"))
        assert receipt.amount == Decimal("0.05")

    @pytest.mark.asyncio
    async def test_unconfirmed_funding_waits_for_finality(self, manager, adapters, monkeypatch):
        await manager.start()
        wait = AsyncMock()
        monkeypatch.setattr(adapters[Chain.SOLANA], "wait_for_finality", wait)

        confirmation = await manager.fund(Chain.SOLANA, Decimal("0.01"))

        wait.assert_awaited_once_with("fund-solana-1", timeout_s=5)
        assert confirmation.confirmed_at is not None

    @pytest.mark.asyncio
    async def test_fund_rejects_non_positive_amount(self, manager):
        await manager.start()
        with pytest.raises(InvalidAmount):
            await manager.fund(Chain.SOLANA, Decimal("0"))

    @pytest.mark.asyncio
    async def test_fund_times_out_as_ambiguous_failure(self, adapters, funding_signer, guard_config):
        async def never(*args):
            await asyncio.sleep(10)

        funding_signer.request_transfer = never
        manager = SessionManager(adapters, funding_signer, guard_config=guard_config, funding_timeout_s=0.05)
        await manager.start()

        with pytest.raises(SubmissionFailed) as exc:
            await manager.fund(Chain.ETHEREUM, Decimal("0.01"))
        assert exc.value.funds_may_have_moved


# =============================================================================
# Guarded transfers
# =============================================================================

class TestTransfer:

    @pytest.mark.asyncio
    async def test_transfer_signs_with_session_key(self, manager, adapters):
        keys = await manager.start()
        await manager.fund(Chain.SOLANA, Decimal("0.1"))

        receipt = await manager.transfer(sol_transfer("0.02"))

        signed = adapters[Chain.SOLANA].submitted[-1]
        assert signed.unsigned.from_address == keys.address(Chain.SOLANA)
        assert receipt.to_address == SOL_RECIPIENT
        assert manager.usage()[Chain.SOLANA].spent == Decimal("0.02")
        assert manager.usage()[Chain.SOLANA].pending == Decimal("0")

    @pytest.mark.asyncio
    async def test_security_rejection_never_reaches_ledger(self, manager, adapters):
        await manager.start()
        with pytest.raises(SecurityRejection) as exc:
            await manager.transfer(sol_transfer("0.06"))
        assert exc.value.rejection.code == RejectionCode.PER_TRANSACTION_LIMIT_EXCEEDED
        assert adapters[Chain.SOLANA].submitted == []
        assert manager.is_active

    @pytest.mark.asyncio
    async def test_build_failure_rolls_back(self, manager, adapters):
        await manager.start()
        adapters[Chain.SOLANA].build_error = NetworkError("rpc down")
        with pytest.raises(NetworkError):
            await manager.transfer(sol_transfer("0.05"))
        assert manager.usage()[Chain.SOLANA].spent == Decimal("0")

    @pytest.mark.asyncio
    async def test_deterministic_rejection_rolls_back(self, manager, adapters):
        await manager.start()
        adapters[Chain.SOLANA].submit_error = Rejected("insufficient lamports")
        with pytest.raises(Rejected):
            await manager.transfer(sol_transfer("0.05"))
        assert manager.usage()[Chain.SOLANA].spent == Decimal("0")

    @pytest.mark.asyncio
    async def test_proven_unsent_submission_rolls_back(self, manager, adapters):
        await manager.start()
        adapters[Chain.SOLANA].submit_error = SubmissionFailed("expired", funds_may_have_moved=False)
        with pytest.raises(SubmissionFailed):
            await manager.transfer(sol_transfer("0.05"))
        assert manager.usage()[Chain.SOLANA].spent == Decimal("0")

    @pytest.mark.asyncio
    async def test_ambiguous_timeout_keeps_reservation(self, manager, adapters):
        await manager.start()
        adapters[Chain.SOLANA].submit_error = SubmissionFailed("not final", funds_may_have_moved=True)
        with pytest.raises(SubmissionFailed):
            await manager.transfer(sol_transfer("0.05"))
        usage = manager.usage()[Chain.SOLANA]
        assert usage.spent == Decimal("0.05")
        assert usage.pending == Decimal("0.05")

    @pytest.mark.asyncio
    async def test_retries_after_ambiguous_failures_cannot_exceed_ceiling(self, manager, adapters):
        await manager.start()
        adapters[Chain.SOLANA].submit_error = SubmissionFailed("not final", funds_may_have_moved=True)
        for _ in range(2):
            with pytest.raises(SubmissionFailed):
                await manager.transfer(sol_transfer("0.05"))
        with pytest.raises(SecurityRejection) as exc:
            await manager.transfer(sol_transfer("0.05"))
        assert exc.value.rejection.code == RejectionCode.SESSION_LIMIT_EXCEEDED

    @pytest.mark.asyncio
    async def test_concurrent_transfers_respect_ceiling(self, manager, adapters):
        await manager.start()
        await manager.fund(Chain.SOLANA, Decimal("1"))

        results = await asyncio.gather(
            *(manager.transfer(sol_transfer("0.03")) for _ in range(6)),
            return_exceptions=True,
        )

        receipts = [r for r in results if not isinstance(r, Exception)]
        rejections = [r for r in results if isinstance(r, SecurityRejection)]
        assert len(receipts) == 3
        assert len(rejections) == 3
        assert manager.usage()[Chain.SOLANA].spent == Decimal("0.09")


# =============================================================================
# Balances
# =============================================================================

class TestBalances:

    @pytest.mark.asyncio
    async def test_reports_every_chain(self, manager):
        await manager.start()
        await manager.fund(Chain.ETHEREUM, Decimal("0.02"))
        balances = await manager.balances()
        assert balances[Chain.ETHEREUM].amount == Decimal("0.02")
        assert balances[Chain.SOLANA].atomic == 0

    @pytest.mark.asyncio
    async def test_one_failing_chain_does_not_block_the_other(self, manager, adapters):
        await manager.start()
        await manager.fund(Chain.SOLANA, Decimal("0.1"))
        adapters[Chain.ETHEREUM].balance_error = NetworkError("sepolia down")

        balances = await manager.balances()

        assert balances[Chain.ETHEREUM] is None
        assert balances[Chain.SOLANA].amount == Decimal("0.1")

    @pytest.mark.asyncio
    async def test_slow_chain_times_out_to_none(self, manager, adapters, monkeypatch):
        await manager.start()

        async def slow(address):
            await asyncio.sleep(5)

        monkeypatch.setattr(adapters[Chain.SOLANA], "get_balance", slow)
        balances = await manager.balances()
        assert balances[Chain.SOLANA] is None
        assert balances[Chain.ETHEREUM] is not None

    @pytest.mark.asyncio
    async def test_unexpected_decode_error_reports_none(self, manager, adapters):
        await manager.start()
        adapters[Chain.ETHEREUM].balance_error = TypeError("int() can't convert non-string with explicit base")

        balances = await manager.balances()

        assert balances[Chain.ETHEREUM] is None
        assert balances[Chain.SOLANA] is not None


# =============================================================================
# Revoke
# =============================================================================

class TestRevoke:

    @pytest.mark.asyncio
    async def test_revoke_refunds_and_erases(self, manager, adapters, store):
        keys = await manager.start()
        sol_address = keys.address(Chain.SOLANA)
        await manager.fund(Chain.SOLANA, Decimal("0.1"))

        result = await manager.revoke()

        assert not result.already_revoked
        sol_refund = result.refunds[Chain.SOLANA]
        assert sol_refund.status == RefundStatus.REFUNDED
        assert sol_refund.to_address == SOL_OWNER
        # Balance minus the live fee buffer
        assert sol_refund.amount == Decimal("0.099995")
        assert adapters[Chain.SOLANA].balances[sol_address] == 0

        assert result.refunds[Chain.ETHEREUM].status == RefundStatus.SKIPPED
        assert manager.status == SessionStatus.REVOKED
        assert keys.is_erased
        assert store.get(SOLANA_STORAGE_KEY) is None
        assert store.get(ETHEREUM_STORAGE_KEY) is None

    @pytest.mark.asyncio
    async def test_second_revoke_is_a_no_op(self, manager, adapters):
        await manager.start()
        await manager.fund(Chain.ETHEREUM, Decimal("0.01"))

        first = await manager.revoke()
        second = await manager.revoke()

        assert first.refunds[Chain.ETHEREUM].status == RefundStatus.REFUNDED
        assert second.already_revoked
        assert second.refunds == {}
        assert len(adapters[Chain.ETHEREUM].submitted) == 1

    @pytest.mark.asyncio
    async def test_balance_below_fee_buffer_is_skipped(self, manager, adapters):
        keys = await manager.start()
        adapters[Chain.SOLANA].balances[keys.address(Chain.SOLANA)] = 4000

        result = await manager.revoke()

        assert result.refunds[Chain.SOLANA].status == RefundStatus.SKIPPED
        assert adapters[Chain.SOLANA].submitted == []

    @pytest.mark.asyncio
    async def test_failed_refund_does_not_abort_revoke(self, manager, adapters):
        keys = await manager.start()
        await manager.fund(Chain.SOLANA, Decimal("0.1"))
        await manager.fund(Chain.ETHEREUM, Decimal("0.01"))
        adapters[Chain.ETHEREUM].submit_error = Rejected("execution reverted")

        result = await manager.revoke()

        assert result.refunds[Chain.SOLANA].status == RefundStatus.REFUNDED
        assert result.refunds[Chain.ETHEREUM].status == RefundStatus.FAILED
        assert manager.status == SessionStatus.REVOKED
        assert keys.is_erased

    @pytest.mark.asyncio
    async def test_revoked_session_refuses_everything(self, manager):
        await manager.start()
        await manager.revoke()

        with pytest.raises(SessionRevokedError):
            await manager.transfer(sol_transfer("0.01"))
        with pytest.raises(SessionRevokedError):
            await manager.start()
        with pytest.raises(SessionRevokedError):
            await manager.fund(Chain.SOLANA, Decimal("0.01"))

    @pytest.mark.asyncio
    async def test_revoke_before_start_is_an_error(self, manager):
        with pytest.raises(SessionNotActiveError):
            await manager.revoke()

    @pytest.mark.asyncio
    async def test_refunds_go_to_owner_addresses(self, manager, adapters):
        await manager.start()
        await manager.fund(Chain.ETHEREUM, Decimal("0.01"))

        result = await manager.revoke()

        assert result.refunds[Chain.ETHEREUM].to_address == ETH_OWNER
        assert adapters[Chain.ETHEREUM].balances[ETH_OWNER] > 0

    @pytest.mark.asyncio
    async def test_revoke_without_refund_address_keeps_the_session(self, adapters, store, guard_config):
        signer = ClientFundingSigner({Chain.ETHEREUM: ETH_OWNER})
        manager = SessionManager(adapters, signer, store=store, guard_config=guard_config)
        keys = await manager.start()
        sol_address = keys.address(Chain.SOLANA)
        adapters[Chain.SOLANA].fund(sol_address, Decimal("0.05"))

        with pytest.raises(ValidationError) as exc:
            await manager.revoke()

        assert exc.value.details["missing"].keys() == {"solana"}
        assert manager.status == SessionStatus.ACTIVE
        assert not keys.is_erased
        assert store.get(SOLANA_STORAGE_KEY) is not None
        assert adapters[Chain.SOLANA].submitted == []
        # Still guarded and usable
        await manager.transfer(sol_transfer("0.01"))

        signer.set_owner(Chain.SOLANA, SOL_OWNER)
        result = await manager.revoke()
        assert result.refunds[Chain.SOLANA].status == RefundStatus.REFUNDED
        assert result.refunds[Chain.SOLANA].to_address == SOL_OWNER


def test_default_config_comes_from_settings(adapters, funding_signer):
    from session_wallet.config import settings

    manager = SessionManager(adapters, funding_signer)
    asyncio.run(manager.start())
    assert manager.usage()[Chain.SOLANA].max_total == SpendGuardConfig.from_settings(settings).limits_for(
        Chain.SOLANA
    ).max_total
