"""
Process-wide session runtime.

Wires the ledger adapters, funding signer, secret store, session manager,
swap service, intent dispatcher and balance monitor together from
``Settings``. The API and the CLI share one instance via ``get_runtime()``.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Dict, Optional

from .config import Settings, settings as default_settings
from .core.agent.dispatcher import IntentDispatcher
from .core.chain_types import Chain
from .core.execution.base import LedgerAdapter
from .core.execution.evm_adapter import EvmAdapter, EvmRpcConfig
from .core.execution.solana_adapter import SolanaAdapter, SolanaRpcConfig
from .core.policy.models import SpendGuardConfig
from .core.swap.jupiter import JupiterSwapService
from .core.wallet.funding import ClientFundingSigner
from .core.wallet.models import SessionStatus
from .core.wallet.monitor import BalanceMonitor
from .core.wallet.secret_store import SecretStore, create_secret_store
from .core.wallet.session_manager import SessionManager

logger = logging.getLogger(__name__)


class SessionRuntime:
    """One active session plus the long-lived services it runs on."""

    def __init__(
        self,
        settings: Settings,
        adapters: Dict[Chain, LedgerAdapter],
        funding_signer: ClientFundingSigner,
        store: SecretStore,
        swap_service: Optional[JupiterSwapService] = None,
    ):
        self.settings = settings
        self.adapters = adapters
        self.funding_signer = funding_signer
        self.store = store
        self.swap_service = swap_service
        self.guard_config = SpendGuardConfig.from_settings(settings)
        self._lock = asyncio.Lock()
        self._new_session()

    @classmethod
    def from_settings(cls, settings: Settings) -> "SessionRuntime":
        adapters: Dict[Chain, LedgerAdapter] = {
            Chain.SOLANA: SolanaAdapter(SolanaRpcConfig.from_settings(settings)),
            Chain.ETHEREUM: EvmAdapter(EvmRpcConfig.from_settings(settings)),
        }
        return cls(
            settings=settings,
            adapters=adapters,
            funding_signer=ClientFundingSigner(),
            store=create_secret_store(settings.secret_store_dir),
            swap_service=JupiterSwapService.from_settings(settings),
        )

    def _new_session(self) -> None:
        self.manager = SessionManager(
            self.adapters,
            self.funding_signer,
            store=self.store,
            guard_config=self.guard_config,
            funding_timeout_s=self.settings.funding_timeout_seconds,
            balance_timeout_s=self.settings.rpc_timeout_seconds * 2,
        )
        self.dispatcher = IntentDispatcher(self.manager, self.swap_service)
        self.monitor = BalanceMonitor(
            self.manager,
            interval_seconds=self.settings.balance_poll_interval_seconds,
        )

    async def ensure_session(self) -> SessionManager:
        """Active manager, replacing a revoked one with a fresh session."""
        async with self._lock:
            if self.manager.status == SessionStatus.REVOKED:
                await self.monitor.stop()
                logger.info("Previous session revoked; creating a new session")
                self._new_session()
            await self.manager.start()
            await self.monitor.start()
            return self.manager

    async def close(self) -> None:
        await self.monitor.stop()
        for adapter in self.adapters.values():
            await adapter.close()
        if self.swap_service is not None:
            await self.swap_service.close()


_runtime: Optional[SessionRuntime] = None


def get_runtime() -> SessionRuntime:
    """Get or create the process-wide runtime."""
    global _runtime
    if _runtime is None:
        _runtime = SessionRuntime.from_settings(default_settings)
    return _runtime


async def shutdown_runtime() -> None:
    global _runtime
    if _runtime is not None:
        await _runtime.close()
        _runtime = None


__all__ = ["SessionRuntime", "get_runtime", "shutdown_runtime"]
