from decimal import Decimal

from session_wallet.config import Settings
from session_wallet.core.chain_types import Chain
from session_wallet.core.policy import SpendGuardConfig


def test_default_limits():
    settings = Settings(_env_file=None)
    assert settings.max_spend_sol == Decimal("0.1")
    assert settings.max_per_tx_sol == Decimal("0.05")
    assert settings.max_spend_eth == Decimal("0.01")
    assert settings.max_per_tx_eth == Decimal("0.005")
    assert settings.has_secret_store_dir is False


def test_rpc_url_alias(monkeypatch):
    """Solana RPC URL should load from the short legacy alias."""

    monkeypatch.delenv("SOLANA_RPC_URL", raising=False)
    monkeypatch.setenv("SOL_RPC_URL", "https://rpc.alias.test")

    settings = Settings(_env_file=None)

    assert settings.solana_rpc_url == "https://rpc.alias.test"


def test_limits_and_allow_list_from_env(monkeypatch):
    monkeypatch.setenv("MAX_SPEND_ETH", "0.02")
    monkeypatch.setenv("ALLOWED_RECIPIENTS_ETH", '["0x742d35cc6634c0532925a3b844bc454e4438f44e"]')

    config = SpendGuardConfig.from_settings(Settings(_env_file=None))
    limits = config.limits_for(Chain.ETHEREUM)

    assert limits.max_total == Decimal("0.02")
    assert limits.allow_list == frozenset({"0x742d35Cc6634C0532925a3b844Bc454e4438f44e"})
