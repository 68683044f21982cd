"""
Swap quote models and the supported token table.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, Dict, List, Optional

from ..errors import ValidationError
from ..execution.amounts import format_amount, scale_from_atomic

# Jupiter v6 aggregator program; swap transactions are "sent" to it
JUPITER_PROGRAM_ID = "JUP6LkbZbjS1jKKwapdHNy74zcZ3tLUZoi5QNyVTaV4"
WRAPPED_SOL_MINT = "So11111111111111111111111111111111111111112"


@dataclass(frozen=True)
class SwapToken:
    symbol: str
    mint: str
    decimals: int

    @property
    def is_sol(self) -> bool:
        return self.mint == WRAPPED_SOL_MINT


SUPPORTED_TOKENS: Dict[str, SwapToken] = {
    "SOL": SwapToken(symbol="SOL", mint=WRAPPED_SOL_MINT, decimals=9),
    "USDC": SwapToken(symbol="USDC", mint="EPjFWdd5AufqSSqeM2qN1xzybapC8G4wEGGkZwyTDt1v", decimals=6),
    "USDT": SwapToken(symbol="USDT", mint="Es9vMFrzaCERmJfrF4H2FYD4KCoNkY11McCe8BenwNYB", decimals=6),
    "JUP": SwapToken(symbol="JUP", mint="JUPyiwrYJFskUPiHa7hkeR8VUtkOpSDV1c124MG2UCz", decimals=6),
}


def resolve_token(symbol: str) -> SwapToken:
    """
    Resolve a ticker symbol to its mint and decimals.

    Raises:
        ValidationError: Unknown symbol.
    """
    token = SUPPORTED_TOKENS.get((symbol or "").strip().upper())
    if token is None:
        supported = ", ".join(SUPPORTED_TOKENS)
        raise ValidationError(f"Unsupported token: {symbol!r} (supported: {supported})")
    return token


@dataclass
class SwapQuote:
    """Parsed Jupiter quote. ``raw`` is passed back verbatim to ``/swap``."""
    input_token: SwapToken
    output_token: SwapToken
    in_amount: int                              # Atomic units of the input token
    out_amount: int                             # Atomic units of the output token
    other_amount_threshold: int
    slippage_bps: int
    price_impact_pct: float
    route_labels: List[str] = field(default_factory=list)
    raw: Dict[str, Any] = field(default_factory=dict)

    @property
    def input_amount(self) -> Decimal:
        return scale_from_atomic(self.in_amount, self.input_token.decimals)

    @property
    def output_amount(self) -> Decimal:
        return scale_from_atomic(self.out_amount, self.output_token.decimals)

    @property
    def sol_value(self) -> Decimal:
        """
        SOL the swap moves: the input when selling SOL, the quoted output
        when buying SOL.

        Raises:
            ValidationError: Neither side of the swap is SOL.
        """
        if self.input_token.is_sol:
            return self.input_amount
        if self.output_token.is_sol:
            return self.output_amount
        raise ValidationError(
            f"Cannot value a {self.input_token.symbol} -> {self.output_token.symbol} swap "
            "against the session's SOL limit; one side must be SOL"
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "inputToken": self.input_token.symbol,
            "outputToken": self.output_token.symbol,
            "inputAmount": format_amount(self.input_amount),
            "outputAmount": format_amount(self.output_amount),
            "slippageBps": self.slippage_bps,
            "priceImpactPct": self.price_impact_pct,
            "route": self.route_labels,
        }


@dataclass(frozen=True)
class SwapTransaction:
    """Serialized, unsigned swap transaction from ``/swap``."""
    quote: SwapQuote
    serialized: str                             # Base64 versioned transaction
    last_valid_block_height: Optional[int] = None


__all__ = [
    "JUPITER_PROGRAM_ID",
    "WRAPPED_SOL_MINT",
    "SwapToken",
    "SUPPORTED_TOKENS",
    "resolve_token",
    "SwapQuote",
    "SwapTransaction",
]
