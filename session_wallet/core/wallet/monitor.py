from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from ..chain_types import Chain
from ..errors import SessionStateError
from ..execution.models import Balance
from .models import SessionStatus
from .session_manager import SessionManager


class BalanceMonitor:
    """Periodically refreshes session balances in the background."""

    def __init__(
        self,
        manager: SessionManager,
        interval_seconds: float = 5.0,
        *,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self.logger = logger or logging.getLogger(__name__)
        self._manager = manager
        self._interval = interval_seconds
        self._loop_task: asyncio.Task | None = None
        self._lock = asyncio.Lock()
        self._running = False
        self._latest: Dict[Chain, Optional[Balance]] = {}
        self._last_updated: Optional[datetime] = None
        self._refresh_count = 0
        self._failures = 0

    # ---------------------------
    # Lifecycle
    # ---------------------------
    async def start(self) -> None:
        async with self._lock:
            if self._running:
                return
            self._running = True
            self.logger.info("Balance monitor starting (every %.1fs)", self._interval)
            self._loop_task = asyncio.create_task(self._run_loop(), name="balance-monitor-loop")

    async def stop(self) -> None:
        async with self._lock:
            if not self._running:
                return
            self._running = False
            self.logger.info("Balance monitor stopping")
            if self._loop_task:
                self._loop_task.cancel()
                try:
                    await self._loop_task
                except asyncio.CancelledError:
                    pass
                self._loop_task = None

    @property
    def is_running(self) -> bool:
        return self._running

    # ---------------------------
    # Refresh
    # ---------------------------
    async def refresh(self) -> Dict[Chain, Optional[Balance]]:
        balances = await self._manager.balances()
        self._latest = balances
        self._last_updated = datetime.now(timezone.utc)
        self._refresh_count += 1
        return balances

    async def _run_loop(self) -> None:
        try:
            while self._running:
                if self._manager.status == SessionStatus.REVOKED:
                    self.logger.info("Session revoked, balance monitor exiting")
                    break
                if self._manager.is_active:
                    try:
                        await self.refresh()
                    except SessionStateError:
                        # Revoked between the status check and the read
                        continue
                    except Exception as exc:  # noqa: BLE001
                        self._failures += 1
                        self.logger.error("Balance refresh failed: %s", exc, exc_info=True)
                await asyncio.sleep(self._interval)
        except asyncio.CancelledError:
            return
        finally:
            self._running = False

    @property
    def latest(self) -> Dict[Chain, Optional[Balance]]:
        return dict(self._latest)

    def status(self) -> Dict[str, Any]:
        return {
            "running": self._running,
            "intervalSeconds": self._interval,
            "refreshCount": self._refresh_count,
            "failedRefreshes": self._failures,
            "lastUpdated": self._last_updated.isoformat() if self._last_updated else None,
            "balances": {
                chain.value: balance.to_dict() if balance else None
                for chain, balance in self._latest.items()
            },
        }
