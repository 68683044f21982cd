from decimal import Decimal
from pathlib import Path
from typing import List

from pydantic import AliasChoices, Field
from pydantic_settings import BaseSettings, SettingsConfigDict


BASE_DIR = Path(__file__).resolve().parents[1]


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=BASE_DIR / ".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore"
    )

    # Server Settings
    host: str = Field(default="127.0.0.1", description="Server host")
    port: int = Field(default=8000, description="Server port")
    log_level: str = Field(default="INFO", description="Logging level")
    log_json: bool = Field(default=True, description="Render logs as JSON lines instead of console text")
    cors_origins: List[str] = Field(
        default_factory=lambda: ["http://localhost:3000"],
        description="Origins allowed to call the API from a browser (the funding UI)",
    )

    # Solana
    solana_rpc_url: str = Field(
        default="https://api.devnet.solana.com",
        description="Solana JSON-RPC endpoint",
        validation_alias=AliasChoices("solana_rpc_url", "SOLANA_RPC_URL", "SOL_RPC_URL"),
    )
    solana_commitment: str = Field(
        default="confirmed",
        description="Commitment level required before a Solana transfer counts as final",
    )

    # Ethereum / EVM
    ethereum_rpc_url: str = Field(
        default="https://ethereum-sepolia-rpc.publicnode.com",
        description="EVM JSON-RPC endpoint",
        validation_alias=AliasChoices("ethereum_rpc_url", "ETHEREUM_RPC_URL", "ETH_RPC_URL"),
    )
    ethereum_chain_id: int = Field(default=11155111, description="EVM chain id (default: Sepolia)")
    ethereum_confirmations: int = Field(
        default=1,
        ge=1,
        description="Block confirmations required before an EVM transfer counts as final",
    )

    # Network behaviour
    rpc_timeout_seconds: float = Field(default=15.0, gt=0, description="Per-request RPC timeout")
    rpc_max_retries: int = Field(default=3, ge=1, description="Retries for idempotent RPC reads")
    confirmation_timeout_seconds: float = Field(
        default=60.0,
        gt=0,
        description="Maximum time to wait for a submitted transfer to reach finality",
    )
    confirmation_poll_interval_seconds: float = Field(
        default=1.0,
        gt=0,
        description="Initial polling interval while waiting for finality",
    )
    funding_timeout_seconds: float = Field(
        default=120.0,
        gt=0,
        description="Maximum time to wait for the user's funding transfer",
    )

    # Spend limits (session defaults)
    max_spend_sol: Decimal = Field(default=Decimal("0.1"), description="Session ceiling in SOL")
    max_per_tx_sol: Decimal = Field(default=Decimal("0.05"), description="Per-transaction ceiling in SOL")
    max_spend_eth: Decimal = Field(default=Decimal("0.01"), description="Session ceiling in ETH")
    max_per_tx_eth: Decimal = Field(default=Decimal("0.005"), description="Per-transaction ceiling in ETH")
    allowed_recipients_sol: List[str] = Field(
        default_factory=list,
        description="Optional Solana recipient allow-list (empty = any recipient)",
    )
    allowed_recipients_eth: List[str] = Field(
        default_factory=list,
        description="Optional Ethereum recipient allow-list (empty = any recipient)",
    )

    # Session storage
    secret_store_dir: str = Field(
        default="",
        description="Directory for persisted session secrets (empty = in-memory only)",
    )

    # Refunds
    evm_refund_fee_multiplier: Decimal = Field(
        default=Decimal("1.1"),
        ge=1,
        description="Safety multiplier applied to the live gas cost when sweeping ETH back",
    )

    # Swap (Jupiter)
    jupiter_api_url: str = Field(
        default="https://quote-api.jup.ag/v6",
        description="Jupiter swap API base URL",
    )
    swap_slippage_bps: int = Field(default=50, ge=0, description="Swap slippage tolerance in bps")
    swap_max_price_impact_pct: float = Field(
        default=2.0,
        gt=0,
        description="Swaps whose quoted price impact exceeds this percentage are refused",
    )

    # Background refresh
    balance_poll_interval_seconds: float = Field(
        default=5.0,
        gt=0,
        description="Interval for the background session balance refresh",
    )

    @property
    def has_secret_store_dir(self) -> bool:
        return bool(self.secret_store_dir)


# Global settings instance
settings = Settings()
