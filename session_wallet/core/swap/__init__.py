"""Token swaps on Solana via the Jupiter aggregator."""

from .jupiter import JupiterSwapService
from .models import (
    JUPITER_PROGRAM_ID,
    SUPPORTED_TOKENS,
    WRAPPED_SOL_MINT,
    SwapQuote,
    SwapToken,
    SwapTransaction,
    resolve_token,
)

__all__ = [
    "JupiterSwapService",
    "JUPITER_PROGRAM_ID",
    "SUPPORTED_TOKENS",
    "WRAPPED_SOL_MINT",
    "SwapQuote",
    "SwapToken",
    "SwapTransaction",
    "resolve_token",
]
