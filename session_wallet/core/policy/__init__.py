"""
Spend Policy Module

Per-session spending limits for agent-initiated transfers.
"""

from .models import (
    Approval,
    ChainLimits,
    ChainUsage,
    GuardStatus,
    Rejection,
    RejectionCode,
    SpendGuardConfig,
    TransferRequest,
)
from .spend_guard import SpendGuard

__all__ = [
    "SpendGuard",
    # Models
    "Approval",
    "ChainLimits",
    "ChainUsage",
    "GuardStatus",
    "Rejection",
    "RejectionCode",
    "SpendGuardConfig",
    "TransferRequest",
]
